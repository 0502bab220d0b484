"""Per-tick refresh orchestration with bounded, time-boxed workers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Optional, Sequence

from linkrefresh.config.settings import settings
from linkrefresh.crawlers.client import GitHubRepoClient
from linkrefresh.crawlers.log_sanitizer import sanitize_for_log, sanitize_log_extra
from linkrefresh.crawlers.repository_url import RepositoryRef, parse_repository_url
from linkrefresh.crawlers.web_metadata import PageMetadata, WebMetadataExtractor
from linkrefresh.errors import (
    PermanentHttpError,
    RateLimited,
    RefreshError,
    StoreError,
    TransientNetworkError,
)
from linkrefresh.models.refresh import BookmarkRefreshRecord, Catalog
from linkrefresh.services.due_selector import DueSetSelector, InFlightIndex, compute_batch_size
from linkrefresh.services.enrichment import RateLimitGate, RepositoryEnricher, RepositoryEnrichment
from linkrefresh.services.reconciler import RefreshOutcome, reconcile
from linkrefresh.services.store import SQLAlchemyBookmarkStore, SQLAlchemyCatalogSource

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecordRefreshResult:
    record_id: int
    persisted: bool = False
    failed: bool = False
    rate_limited: bool = False
    cancelled: bool = False
    written_fields: list[str] = field(default_factory=list)
    suggestions: dict[str, list[str]] = field(default_factory=dict)
    error: Optional[str] = None


class TickContext:
    """State shared by the workers of one tick: the rate-limit gate and catalogs."""

    def __init__(self, catalog_source: Any) -> None:
        self.gate = RateLimitGate()
        self._catalog_source = catalog_source
        self._catalogs: dict[int, Catalog] = {}

    def catalog_for(self, owner_id: int) -> Catalog:
        if owner_id not in self._catalogs:
            try:
                self._catalogs[owner_id] = self._catalog_source.list_for_owner(owner_id)
            except StoreError as exc:
                logger.warning(
                    "License catalog unavailable, licenses will not be matched",
                    extra=sanitize_log_extra(owner_id=owner_id, **exc.as_log_extra()),
                )
                return Catalog(owner_id=owner_id)
        return self._catalogs[owner_id]


class RefreshOrchestrator:
    """Runs refresh ticks: select due records, fetch, reconcile and persist."""

    def __init__(
        self,
        *,
        store: Any | None = None,
        catalog_source: Any | None = None,
        extractor_factory: Callable[[], Any] = WebMetadataExtractor,
        github_client_factory: Callable[[], Any] = GitHubRepoClient,
        in_flight: InFlightIndex | None = None,
        interval_days: int | None = None,
        jitter_percent: float | None = None,
        batch_multiplier: float | None = None,
        failure_threshold: int | None = None,
        max_concurrency: int | None = None,
        record_timeout_seconds: float | None = None,
        skip_archived: bool | None = None,
    ) -> None:
        self._store = store or SQLAlchemyBookmarkStore()
        self._catalog_source = catalog_source or SQLAlchemyCatalogSource()
        self._extractor_factory = extractor_factory
        self._github_client_factory = github_client_factory
        self.in_flight = in_flight or InFlightIndex()

        self._interval_days = interval_days or settings.REFRESH_INTERVAL_DAYS
        self._jitter_percent = settings.REFRESH_JITTER_PERCENT if jitter_percent is None else jitter_percent
        self._batch_multiplier = batch_multiplier or settings.REFRESH_BATCH_MULTIPLIER
        self._failure_threshold = failure_threshold or settings.REFRESH_FAILURE_THRESHOLD
        self._max_concurrency = max_concurrency or settings.REFRESH_MAX_CONCURRENCY
        self._record_timeout_seconds = record_timeout_seconds or settings.REFRESH_RECORD_TIMEOUT_SECONDS
        skip = settings.REFRESH_SKIP_ARCHIVED if skip_archived is None else skip_archived

        self._selector = DueSetSelector(self._store, self.in_flight, skip_archived=skip)

    async def run_tick(
        self,
        now: datetime | None = None,
        *,
        record_ids: Sequence[int] | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        tick_at = now or datetime.now(UTC)
        stats: dict[str, Any] = {
            "success": True,
            "started_at": tick_at.isoformat(),
            "records_due": 0,
            "batch_size": 0,
            "records_processed": 0,
            "records_failed": 0,
            "records_skipped_rate_limited": 0,
            "records_unchanged": 0,
            "records_cancelled": 0,
            "errors": [],
        }

        try:
            due = self._selector.select(tick_at, self._interval_days, self._jitter_percent)
        except StoreError as exc:
            logger.error("Refresh tick aborted: due set unavailable", extra=sanitize_log_extra(**exc.as_log_extra()))
            stats["success"] = False
            stats["error"] = sanitize_for_log(str(exc), key="error")
            return self._finish(stats)

        if record_ids:
            wanted = set(record_ids)
            due = [item for item in due if item.record.id in wanted]

        stats["records_due"] = len(due)
        if not due:
            logger.info("Refresh tick found no due records", extra=sanitize_log_extra(tick_at=tick_at.isoformat()))
            stats["skipped"] = True
            return self._finish(stats)

        batch_size = compute_batch_size(len(due), self._interval_days, self._batch_multiplier)
        stats["batch_size"] = batch_size
        logger.info(
            "Refresh tick started",
            extra=sanitize_log_extra(records_due=len(due), batch_size=batch_size, tick_at=tick_at.isoformat()),
        )

        context = TickContext(self._catalog_source)
        semaphore = asyncio.Semaphore(self._max_concurrency)
        async with self._extractor_factory() as extractor, self._github_client_factory() as github_client:
            enricher = RepositoryEnricher(github_client)
            tasks = []
            for item in due[:batch_size]:
                if not self.in_flight.claim(item.record.id):
                    continue
                tasks.append(
                    asyncio.create_task(
                        self._run_one(
                            item.record,
                            now=tick_at,
                            extractor=extractor,
                            enricher=enricher,
                            context=context,
                            semaphore=semaphore,
                            stop_event=stop_event,
                        )
                    )
                )
            results = await asyncio.gather(*tasks)

        for result in results:
            if result.cancelled:
                stats["records_cancelled"] += 1
                continue
            if result.persisted:
                stats["records_processed"] += 1
                if not result.written_fields or result.written_fields == ["last_refresh_at"]:
                    stats["records_unchanged"] += 1
            if result.failed:
                stats["records_failed"] += 1
            if result.rate_limited:
                stats["records_skipped_rate_limited"] += 1
            if result.error:
                stats["errors"].append(f"{result.record_id}: {result.error}")

        return self._finish(stats)

    async def _run_one(
        self,
        record: BookmarkRefreshRecord,
        *,
        now: datetime,
        extractor: Any,
        enricher: RepositoryEnricher,
        context: TickContext,
        semaphore: asyncio.Semaphore,
        stop_event: asyncio.Event | None,
    ) -> RecordRefreshResult:
        try:
            async with semaphore:
                if stop_event is not None and stop_event.is_set():
                    return RecordRefreshResult(record_id=record.id, cancelled=True)
                return await self.refresh_record(
                    record,
                    now=now,
                    extractor=extractor,
                    enricher=enricher,
                    context=context,
                )
        except Exception as exc:
            sanitized_error = sanitize_for_log(str(exc), key="error")
            logger.exception(
                "Refresh raised exception",
                extra=sanitize_log_extra(record_id=record.id, error=sanitized_error),
            )
            return RecordRefreshResult(record_id=record.id, failed=True, error=sanitized_error)
        finally:
            self.in_flight.release(record.id)

    async def refresh_record(
        self,
        record: BookmarkRefreshRecord,
        *,
        now: datetime,
        extractor: Any,
        enricher: RepositoryEnricher,
        context: TickContext,
    ) -> RecordRefreshResult:
        """Refresh one record; only the network phase is time-bounded."""
        try:
            outcome = await asyncio.wait_for(
                self._collect(record, extractor=extractor, enricher=enricher, context=context),
                timeout=self._record_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = TransientNetworkError(f"Refresh exceeded {self._record_timeout_seconds}s", url=record.url)
            logger.warning("Record refresh timed out", extra=sanitize_log_extra(record_id=record.id, **error.as_log_extra()))
            outcome = RefreshOutcome(page_error=error)

        reconciliation = reconcile(record, outcome, failure_threshold=self._failure_threshold)
        fields = reconciliation.writes(now)
        result = RecordRefreshResult(
            record_id=record.id,
            failed=reconciliation.counted_failure,
            rate_limited=outcome.rate_limited,
            suggestions=reconciliation.suggestions,
            error=outcome.page_error.kind if outcome.page_error else None,
        )

        if not fields:
            return result

        try:
            self._store.write(record.id, fields)
        except StoreError as exc:
            logger.warning("Refresh write failed, record stays due", extra=sanitize_log_extra(record_id=record.id, **exc.as_log_extra()))
            result.failed = True
            result.error = exc.kind
            return result

        result.persisted = True
        result.written_fields = sorted(fields)
        logger.info(
            "Record refreshed",
            extra=sanitize_log_extra(
                record_id=record.id,
                status=reconciliation.status.value,
                written_fields=result.written_fields,
                suggestions=reconciliation.suggestions or None,
            ),
        )
        return result

    async def _collect(
        self,
        record: BookmarkRefreshRecord,
        *,
        extractor: Any,
        enricher: RepositoryEnricher,
        context: TickContext,
    ) -> RefreshOutcome:
        repository = self._known_repository(record)
        enrichment: RepositoryEnrichment | None = None
        enrichment_error: RefreshError | None = None

        if repository is not None:
            (page, page_error), (enrichment, enrichment_error) = await asyncio.gather(
                self._fetch_page(extractor, record),
                self._enrich(enricher, repository, record, context),
            )
        else:
            page, page_error = await self._fetch_page(extractor, record)
            detected = parse_repository_url(page.source_code_url) if page and page.source_code_url else None
            if detected is not None:
                repository = detected
                enrichment, enrichment_error = await self._enrich(enricher, repository, record, context)

        if page is not None and enrichment is not None and enrichment.description:
            page = page.with_repository_description(enrichment.description)

        return RefreshOutcome(
            page=page,
            page_error=page_error,
            repository=repository,
            enrichment=enrichment,
            enrichment_error=enrichment_error,
        )

    @staticmethod
    def _known_repository(record: BookmarkRefreshRecord) -> RepositoryRef | None:
        if record.source_code_url is not None:
            repository = parse_repository_url(record.source_code_url.value)
            if repository is not None:
                return repository
        return parse_repository_url(record.url)

    @staticmethod
    async def _fetch_page(
        extractor: Any,
        record: BookmarkRefreshRecord,
    ) -> tuple[PageMetadata | None, RefreshError | None]:
        try:
            return await extractor.extract(record.url), None
        except PermanentHttpError as exc:
            logger.error("Primary URL rejected", extra=sanitize_log_extra(record_id=record.id, **exc.as_log_extra()))
            return None, exc
        except RefreshError as exc:
            logger.warning("Primary URL unreachable", extra=sanitize_log_extra(record_id=record.id, **exc.as_log_extra()))
            return None, exc

    @staticmethod
    async def _enrich(
        enricher: RepositoryEnricher,
        repository: RepositoryRef,
        record: BookmarkRefreshRecord,
        context: TickContext,
    ) -> tuple[RepositoryEnrichment | None, RefreshError | None]:
        try:
            catalog = context.catalog_for(record.owner_id)
            return await enricher.enrich(repository, catalog=catalog, gate=context.gate), None
        except RateLimited as exc:
            logger.info("Enrichment deferred by rate limit", extra=sanitize_log_extra(record_id=record.id, **exc.as_log_extra()))
            return None, exc
        except RefreshError as exc:
            logger.warning("Enrichment failed", extra=sanitize_log_extra(record_id=record.id, **exc.as_log_extra()))
            return None, exc

    @staticmethod
    def _finish(stats: dict[str, Any]) -> dict[str, Any]:
        stats["completed_at"] = datetime.now(UTC).isoformat()
        logger.info(
            "Refresh tick completed",
            extra=sanitize_log_extra(
                success=stats["success"],
                records_due=stats["records_due"],
                records_processed=stats["records_processed"],
                records_failed=stats["records_failed"],
                records_skipped_rate_limited=stats["records_skipped_rate_limited"],
            ),
        )
        return stats
