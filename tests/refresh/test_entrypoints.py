from __future__ import annotations

import asyncio
from typing import Any

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from linkrefresh.crawlers.web_metadata import WebMetadataExtractor
from linkrefresh.handler import lambda_handler
from linkrefresh.jobs.refresh_tick import parse_record_ids, run_refresh_tick
from linkrefresh.main import create_app
from linkrefresh.orchestrator_refresh import RefreshOrchestrator
from linkrefresh.scheduler import RefreshScheduler


class FakeOrchestrator(RefreshOrchestrator):
    def __init__(self, result: dict[str, Any] | None = None) -> None:
        super().__init__(store=object(), catalog_source=object())
        self.calls: list[dict[str, Any]] = []
        self._result = result or {"success": True, "records_due": 0, "records_processed": 0}

    async def run_tick(self, now=None, *, record_ids=None, stop_event=None):
        self.calls.append({"now": now, "record_ids": record_ids})
        return self._result


def test_parse_record_ids_accepts_strings_lists_and_scalars() -> None:
    assert parse_record_ids(None) is None
    assert parse_record_ids("") is None
    assert parse_record_ids("3, 1,abc,3") == [3, 1]
    assert parse_record_ids([5, "6", -1, 0]) == [5, 6]
    assert parse_record_ids(7) == [7]


def test_run_refresh_tick_passes_record_ids() -> None:
    orchestrator = FakeOrchestrator()

    result = asyncio.run(run_refresh_tick(orchestrator=orchestrator, record_ids=[1, 2]))

    assert result["success"] is True
    assert orchestrator.calls == [{"now": None, "record_ids": [1, 2]}]


def test_handler_runs_a_tick() -> None:
    orchestrator = FakeOrchestrator({"success": True, "records_processed": 2})

    response = lambda_handler({"action": "tick", "record_ids": "4,5"}, None, orchestrator=orchestrator)

    assert response["statusCode"] == 200
    assert response["result"]["records_processed"] == 2
    assert orchestrator.calls[0]["record_ids"] == [4, 5]


def test_handler_reports_failed_tick_and_unknown_action() -> None:
    failed = lambda_handler({"action": "tick"}, None, orchestrator=FakeOrchestrator({"success": False, "error": "x"}))
    unknown = lambda_handler({"action": "reindex"}, None, orchestrator=FakeOrchestrator())

    assert failed["statusCode"] == 500
    assert unknown["statusCode"] == 400
    assert "Unknown action" in unknown["error"]


def _memory_session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return sessionmaker(bind=engine)


def test_status_endpoints() -> None:
    orchestrator = FakeOrchestrator({"success": True, "records_due": 3, "records_processed": 2, "records_failed": 1})
    scheduler = RefreshScheduler(orchestrator, tick_seconds=3600)
    app = create_app(scheduler=scheduler, session_factory=_memory_session_factory(), start_scheduler=False)

    with TestClient(app) as client:
        assert client.get("/api/health").json()["status"] == "healthy"
        assert client.get("/api/health/database").status_code == 200

        before = client.get("/api/health/scheduler").json()
        assert before["last_tick_at"] is None
        assert before["scheduler_running"] is False

        started = client.post("/api/refresh/tick", params={"record_ids": "9,10"})
        assert started.status_code == 200
        assert started.json()["record_ids"] == [9, 10]

        after = client.get("/api/health/scheduler").json()
        assert after["last_tick_at"] is not None
        assert after["records_processed"] == 2
        assert after["records_failed"] == 1
        assert after["records_skipped_rate_limited"] == 0

    assert orchestrator.calls[0]["record_ids"] == [9, 10]


def test_database_health_reports_unavailable() -> None:
    class BrokenSession:
        def execute(self, *_: Any) -> None:
            raise RuntimeError("connection refused")

        def close(self) -> None:
            return None

    app = create_app(
        scheduler=RefreshScheduler(FakeOrchestrator(), tick_seconds=3600),
        session_factory=BrokenSession,
        start_scheduler=False,
    )

    with TestClient(app) as client:
        assert client.get("/api/health/database").status_code == 503


def _scrape_app(handler) -> Any:
    return create_app(
        scheduler=RefreshScheduler(FakeOrchestrator(), tick_seconds=3600),
        session_factory=_memory_session_factory(),
        extractor_factory=lambda: WebMetadataExtractor(transport=httpx.MockTransport(handler)),
        start_scheduler=False,
    )


def test_scrape_previews_page_metadata() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/html"},
            text=(
                '<html><head><title>Tool</title><meta name="description" content="Fast tool">'
                '<link rel="icon" href="/favicon.ico"></head>'
                '<body><a href="https://github.com/acme/tool">Source</a></body></html>'
            ),
        )

    with TestClient(_scrape_app(handler)) as client:
        response = client.post("/api/scrape", json={"url": "https://tool.example.com/"})

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Tool"
    assert body["description"] == "Fast tool"
    assert body["favicon"] == "https://tool.example.com/favicon.ico"
    assert body["source_code_url"] == "https://github.com/acme/tool"


def test_scrape_maps_upstream_errors() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/missing":
            return httpx.Response(404)
        return httpx.Response(503)

    with TestClient(_scrape_app(handler)) as client:
        missing = client.post("/api/scrape", json={"url": "https://tool.example.com/missing"})
        down = client.post("/api/scrape", json={"url": "https://tool.example.com/down"})
        invalid = client.post("/api/scrape", json={"url": "not a url"})

    assert missing.status_code == 422
    assert down.status_code == 502
    assert invalid.status_code == 422
