"""Due-set selection and batch sizing for the refresh scheduler."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Iterable, Optional

from linkrefresh.crawlers.log_sanitizer import sanitize_log_extra
from linkrefresh.models.refresh import BookmarkRefreshRecord, BookmarkStatus

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24
_HASH_SPAN = float(2**64 - 1)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (as SQLite returns them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def derive_jitter_fraction(record_id: int, anchor: datetime, jitter_percent: float) -> float:
    """Deterministic jitter in ``[-jitter_percent/100, +jitter_percent/100]``.

    The value is a hash of the record id and its refresh anchor, so it stays
    fixed while the anchor is unchanged and is re-rolled only after a refresh
    moves ``last_refresh_at``.
    """
    bound = max(jitter_percent, 0.0) / 100.0
    if bound == 0:
        return 0.0
    seed = f"{record_id}:{as_utc(anchor).isoformat()}".encode("utf-8")
    digest = hashlib.sha256(seed).digest()
    unit = int.from_bytes(digest[:8], "big") / _HASH_SPAN
    return (unit * 2.0 - 1.0) * bound


def jitter_for(record: BookmarkRefreshRecord, jitter_percent: float) -> float:
    if record.jitter_fraction is not None:
        bound = max(jitter_percent, 0.0) / 100.0
        return max(-bound, min(bound, record.jitter_fraction))
    return derive_jitter_fraction(record.id, record.refresh_anchor, jitter_percent)


def compute_due_at(record: BookmarkRefreshRecord, interval_days: int, jitter_percent: float) -> datetime:
    """``(last_refresh_at or created_at) + interval_days * (1 + jitter)``."""
    jitter = jitter_for(record, jitter_percent)
    return as_utc(record.refresh_anchor) + timedelta(days=interval_days * (1.0 + jitter))


def compute_batch_size(due_count: int, interval_days: int, multiplier: float) -> int:
    """Records to dispatch this tick; never more than are due."""
    if due_count <= 0:
        return 0
    estimate = math.ceil(due_count / interval_days / HOURS_PER_DAY * multiplier)
    return min(max(1, estimate), due_count)


class InFlightIndex:
    """Record ids currently being refreshed; at most one refresh per id."""

    def __init__(self) -> None:
        self._ids: set[int] = set()

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def claim(self, record_id: int) -> bool:
        if record_id in self._ids:
            return False
        self._ids.add(record_id)
        return True

    def release(self, record_id: int) -> None:
        self._ids.discard(record_id)


@dataclass(frozen=True, slots=True)
class DueRecord:
    record: BookmarkRefreshRecord
    due_at: datetime


class DueSetSelector:
    """Reads candidates from the store and orders the ones that are due.

    Never mutates records. Store read failures propagate to the caller.
    """

    def __init__(self, store, in_flight: Optional[InFlightIndex] = None, *, skip_archived: bool = True) -> None:
        self._store = store
        self.in_flight = in_flight or InFlightIndex()
        self._skip_archived = skip_archived

    def select(self, now: datetime, interval_days: int, jitter_percent: float) -> list[DueRecord]:
        now = as_utc(now)
        # No record can be due before its anchor plus the smallest jittered interval.
        earliest_span = timedelta(days=interval_days * (1.0 - max(jitter_percent, 0.0) / 100.0))
        candidates = self._store.read_due(now - earliest_span)

        due = list(self._filter_due(candidates, now, interval_days, jitter_percent))
        due.sort(key=lambda item: (item.due_at, item.record.id))
        logger.debug(
            "Due set computed",
            extra=sanitize_log_extra(due_count=len(due), in_flight=len(self.in_flight)),
        )
        return due

    def _filter_due(
        self,
        candidates: Iterable[BookmarkRefreshRecord],
        now: datetime,
        interval_days: int,
        jitter_percent: float,
    ) -> Iterable[DueRecord]:
        for record in candidates:
            if record.id in self.in_flight:
                continue
            if self._skip_archived and record.status == BookmarkStatus.ARCHIVED:
                continue
            due_at = compute_due_at(record, interval_days, jitter_percent)
            if due_at <= now:
                yield DueRecord(record=record, due_at=due_at)
