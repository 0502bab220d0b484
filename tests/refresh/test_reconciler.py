from __future__ import annotations

from datetime import UTC, date, datetime

from linkrefresh.crawlers.repository_url import RepositoryRef
from linkrefresh.crawlers.web_metadata import PageMetadata
from linkrefresh.errors import PermanentHttpError, RateLimited, RepositoryGone, TransientNetworkError
from linkrefresh.models.refresh import (
    AssociationLink,
    BookmarkRefreshRecord,
    BookmarkStatus,
    LicenseEntry,
    TaggedValue,
    ValueSource,
)
from linkrefresh.services.enrichment import RepositoryEnrichment
from linkrefresh.services.reconciler import RefreshOutcome, reconcile

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
REF = RepositoryRef(owner="acme", repo="tool")


def _record(**overrides) -> BookmarkRefreshRecord:
    values = dict(
        id=1,
        owner_id=10,
        url="https://tool.example.com/",
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        title="Tool",
        description="A tool",
        logo="https://tool.example.com/icon.png",
    )
    values.update(overrides)
    return BookmarkRefreshRecord(**values)


def _page(**overrides) -> PageMetadata:
    values = dict(
        requested_url="https://tool.example.com/",
        final_url="https://tool.example.com/",
        title="Tool",
        description="A tool",
        page_description="A tool",
        logo="https://tool.example.com/icon.png",
    )
    values.update(overrides)
    return PageMetadata(**values)


def _enrichment(**overrides) -> RepositoryEnrichment:
    values = dict(repository=REF, stars=100, archived=False, last_commit=date(2024, 5, 1), languages=["Python"])
    values.update(overrides)
    return RepositoryEnrichment(**values)


def _apply(record: BookmarkRefreshRecord, changes: dict) -> BookmarkRefreshRecord:
    for name, value in changes.items():
        if name == "languages":
            record.languages = [
                AssociationLink(name=language, source=ValueSource.SYSTEM, position=index)
                for index, language in enumerate(value)
            ]
        elif name == "licenses":
            record.licenses = [
                AssociationLink(name=str(entry), source=ValueSource.SYSTEM, position=index, entry_id=entry)
                for index, entry in enumerate(value)
            ]
        elif name == "consecutive_failure_count":
            record.consecutive_failure_count = value
        else:
            setattr(record, name, value)
    return record


def test_unchanged_data_produces_no_changes() -> None:
    record = _record()

    result = reconcile(record, RefreshOutcome(page=_page()), failure_threshold=3)

    assert result.changes == {}
    assert result.status == BookmarkStatus.ACTIVE
    assert result.writes(NOW) == {"last_refresh_at": NOW}


def test_reconciling_the_same_data_twice_is_idempotent() -> None:
    record = _record(title=None, github_stars=None)
    outcome = RefreshOutcome(
        page=_page(title="New title", source_code_url="https://github.com/acme/tool"),
        repository=REF,
        enrichment=_enrichment(),
    )

    first = reconcile(record, outcome, failure_threshold=3)
    assert first.changes
    _apply(record, first.changes)

    second = reconcile(record, outcome, failure_threshold=3)
    assert second.changes == {}


def test_missing_fields_never_erase_stored_values() -> None:
    record = _record()

    result = reconcile(record, RefreshOutcome(page=_page(title=None, description=None, logo=None)), failure_threshold=3)

    assert result.changes == {}


def test_only_stars_change_when_only_stars_differ() -> None:
    record = _record(
        source_code_url=TaggedValue("https://github.com/acme/tool", ValueSource.SYSTEM),
        github_stars=100,
        github_archived=False,
        github_last_commit=date(2024, 5, 1),
        languages=[AssociationLink(name="Python", source=ValueSource.SYSTEM)],
    )
    outcome = RefreshOutcome(
        page=_page(source_code_url="https://github.com/acme/tool"),
        repository=REF,
        enrichment=_enrichment(stars=120),
    )

    result = reconcile(record, outcome, failure_threshold=3)

    assert set(result.writes(NOW)) == {"github_stars", "last_refresh_at"}
    assert result.changes["github_stars"] == 120


def test_three_failures_flip_to_inaccessible_and_one_success_recovers() -> None:
    record = _record()
    failure = RefreshOutcome(page_error=TransientNetworkError("timeout", url=record.url))

    statuses = []
    for _ in range(3):
        result = reconcile(record, failure, failure_threshold=3)
        assert result.counted_failure
        _apply(record, result.changes)
        statuses.append(result.status)

    assert statuses == [BookmarkStatus.ACTIVE, BookmarkStatus.ACTIVE, BookmarkStatus.INACCESSIBLE]
    assert record.consecutive_failure_count == 3

    recovery = reconcile(record, RefreshOutcome(page=_page()), failure_threshold=3)

    assert recovery.changes == {"consecutive_failure_count": 0, "status": BookmarkStatus.ACTIVE}


def test_permanent_http_errors_count_as_failures() -> None:
    record = _record(consecutive_failure_count=2)
    outcome = RefreshOutcome(page_error=PermanentHttpError("gone", status_code=410, url=record.url))

    result = reconcile(record, outcome, failure_threshold=3)

    assert result.changes["consecutive_failure_count"] == 3
    assert result.status == BookmarkStatus.INACCESSIBLE
    assert "last_refresh_at" in result.writes(NOW)


def test_gone_repository_keeps_stars_and_sets_repo_unavailable() -> None:
    record = _record(github_stars=42, github_archived=False)
    outcome = RefreshOutcome(
        page=_page(),
        repository=REF,
        enrichment_error=RepositoryGone("gone", url=REF.html_url),
    )

    result = reconcile(record, outcome, failure_threshold=3)

    assert result.status == BookmarkStatus.REPO_UNAVAILABLE
    assert result.changes == {"status": BookmarkStatus.REPO_UNAVAILABLE}
    assert result.counted_failure is False


def test_repo_unavailable_takes_precedence_over_inaccessible() -> None:
    record = _record(consecutive_failure_count=5, status=BookmarkStatus.INACCESSIBLE)
    outcome = RefreshOutcome(
        page_error=TransientNetworkError("down", url=record.url),
        repository=REF,
        enrichment_error=RepositoryGone("gone"),
    )

    result = reconcile(record, outcome, failure_threshold=3)

    assert result.status == BookmarkStatus.REPO_UNAVAILABLE


def test_repo_unavailable_stays_until_enrichment_succeeds() -> None:
    record = _record(status=BookmarkStatus.REPO_UNAVAILABLE, github_stars=42)

    still_failing = reconcile(
        record,
        RefreshOutcome(page=_page(), repository=REF, enrichment_error=TransientNetworkError("503")),
        failure_threshold=3,
    )
    back = reconcile(
        record,
        RefreshOutcome(page=_page(), repository=REF, enrichment=_enrichment(stars=50)),
        failure_threshold=3,
    )

    assert still_failing.status == BookmarkStatus.REPO_UNAVAILABLE
    assert "github_stars" not in still_failing.changes
    assert back.status == BookmarkStatus.ACTIVE
    assert back.changes["github_stars"] == 50


def test_repo_unavailable_is_reevaluated_from_primary_health() -> None:
    record = _record(status=BookmarkStatus.REPO_UNAVAILABLE, consecutive_failure_count=2)
    outcome = RefreshOutcome(
        page_error=TransientNetworkError("down"),
        repository=REF,
        enrichment=_enrichment(),
    )

    result = reconcile(record, outcome, failure_threshold=3)

    assert result.status == BookmarkStatus.INACCESSIBLE


def test_archived_status_is_never_changed() -> None:
    record = _record(status=BookmarkStatus.ARCHIVED, consecutive_failure_count=2)

    failed = reconcile(record, RefreshOutcome(page_error=TransientNetworkError("down")), failure_threshold=3)
    gone = reconcile(record, RefreshOutcome(page=_page(), repository=REF, enrichment_error=RepositoryGone("x")), failure_threshold=3)

    assert failed.status == BookmarkStatus.ARCHIVED
    assert "status" not in failed.changes
    assert gone.status == BookmarkStatus.ARCHIVED


def test_user_set_links_are_never_replaced() -> None:
    record = _record(
        source_code_url=TaggedValue("https://github.com/me/fork", ValueSource.USER),
        documentation_url=TaggedValue("https://old.example.com/docs/", ValueSource.SYSTEM),
    )
    page = _page(
        source_code_url="https://github.com/acme/tool",
        documentation_url="https://docs.tool.example.com/",
    )

    result = reconcile(record, RefreshOutcome(page=page), failure_threshold=3)

    assert "source_code_url" not in result.changes
    assert result.changes["documentation_url"] == TaggedValue("https://docs.tool.example.com/", ValueSource.SYSTEM)


def test_user_associations_turn_detections_into_suggestions() -> None:
    record = _record(
        languages=[AssociationLink(name="Go", source=ValueSource.USER, entry_id=3)],
        licenses=[AssociationLink(name="Apache-2.0", source=ValueSource.USER, entry_id=4)],
    )
    enrichment = _enrichment(languages=["Python", "Rust"], license=LicenseEntry(id=7, name="mit"))

    result = reconcile(record, RefreshOutcome(page=_page(), repository=REF, enrichment=enrichment), failure_threshold=3)

    assert "languages" not in result.changes
    assert "licenses" not in result.changes
    assert result.suggestions == {"languages": ["Python", "Rust"], "licenses": ["mit"]}


def test_system_associations_are_replaced_when_detection_differs() -> None:
    record = _record(languages=[AssociationLink(name="Python", source=ValueSource.SYSTEM)])
    enrichment = _enrichment(languages=["Rust"], license=LicenseEntry(id=7, name="mit"))

    result = reconcile(record, RefreshOutcome(page=_page(), repository=REF, enrichment=enrichment), failure_threshold=3)

    assert result.changes["languages"] == ["Rust"]
    assert result.changes["licenses"] == [7]
    assert result.suggestions == {}


def test_rate_limited_enrichment_defers_last_refresh() -> None:
    record = _record(github_stars=100)
    outcome = RefreshOutcome(
        page=_page(title="Renamed"),
        repository=REF,
        enrichment_error=RateLimited("limited"),
    )

    result = reconcile(record, outcome, failure_threshold=3)

    assert result.deferred is True
    assert result.writes(NOW) == {"title": "Renamed"}
    assert result.counted_failure is False


def test_rate_limited_record_stays_due_even_when_the_page_fails() -> None:
    record = _record()
    outcome = RefreshOutcome(
        page_error=TransientNetworkError("connection reset"),
        repository=REF,
        enrichment_error=RateLimited("limited"),
    )

    result = reconcile(record, outcome, failure_threshold=3)

    assert result.deferred is True
    assert result.writes(NOW) == {"consecutive_failure_count": 1}


def test_languages_missing_from_the_catalog_are_suggested_not_written() -> None:
    record = _record(languages=[AssociationLink(name="Python", source=ValueSource.SYSTEM, entry_id=1)])
    enrichment = _enrichment(languages=["Python"], unmatched_languages=["Kotlin"])

    result = reconcile(record, RefreshOutcome(page=_page(), repository=REF, enrichment=enrichment), failure_threshold=3)

    assert "languages" not in result.changes
    assert result.suggestions == {"languages": ["Kotlin"]}
