"""Manual and externally scheduled refresh tick entrypoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Sequence

from linkrefresh.orchestrator_refresh import RefreshOrchestrator


async def run_refresh_tick(
    *,
    orchestrator: RefreshOrchestrator | None = None,
    record_ids: Sequence[int] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run one refresh tick, optionally restricted to the given record IDs."""
    job_orchestrator = orchestrator or RefreshOrchestrator()
    return await job_orchestrator.run_tick(now, record_ids=record_ids)


def parse_record_ids(raw: Any) -> list[int] | None:
    """Positive, de-duplicated record IDs from an event payload or query param."""
    if raw is None:
        return None

    if isinstance(raw, str):
        values: Iterable[Any] = [part.strip() for part in raw.split(",")]
    elif isinstance(raw, (list, tuple, set)):
        values = raw
    else:
        values = [raw]

    record_ids: list[int] = []
    for value in values:
        try:
            record_id = int(str(value).strip())
        except ValueError:
            continue
        if record_id > 0 and record_id not in record_ids:
            record_ids.append(record_id)
    return record_ids or None
