"""Merge fetched page/repository data into a stored record.

``reconcile`` is pure: it never touches the store. It returns the set of
fields that actually changed, the resulting status and any detected
associations that could not be written, either because the user already chose
their own or because the owner's catalog has no entry for them. The caller
persists ``Reconciliation.writes()``.

A record whose enrichment hit the rate limit is deferred: ``last_refresh_at``
is left alone so it stays due for the next tick, whatever the page fetch did.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from linkrefresh.crawlers.repository_url import RepositoryRef
from linkrefresh.crawlers.web_metadata import PageMetadata
from linkrefresh.errors import RateLimited, RefreshError, RepositoryGone
from linkrefresh.models.refresh import BookmarkRefreshRecord, BookmarkStatus, TaggedValue, ValueSource
from linkrefresh.services.enrichment import RepositoryEnrichment

CONTENT_FIELDS = ("title", "description", "logo")
LINK_FIELDS = ("source_code_url", "documentation_url")


@dataclass(slots=True)
class RefreshOutcome:
    """Everything the network phase produced for one record."""

    page: Optional[PageMetadata] = None
    page_error: Optional[RefreshError] = None
    repository: Optional[RepositoryRef] = None
    enrichment: Optional[RepositoryEnrichment] = None
    enrichment_error: Optional[RefreshError] = None

    @property
    def primary_ok(self) -> bool:
        return self.page is not None and self.page_error is None

    @property
    def repository_gone(self) -> bool:
        return isinstance(self.enrichment_error, RepositoryGone)

    @property
    def rate_limited(self) -> bool:
        return isinstance(self.enrichment_error, RateLimited)


@dataclass(slots=True)
class Reconciliation:
    changes: dict[str, Any]
    status: BookmarkStatus
    suggestions: dict[str, list[str]] = field(default_factory=dict)
    counted_failure: bool = False
    deferred: bool = False

    def writes(self, now: datetime) -> dict[str, Any]:
        """Fields to persist, including ``last_refresh_at`` unless the refresh was deferred."""
        fields = dict(self.changes)
        if not self.deferred:
            fields["last_refresh_at"] = now
        return fields


def reconcile(
    record: BookmarkRefreshRecord,
    outcome: RefreshOutcome,
    *,
    failure_threshold: int,
) -> Reconciliation:
    changes: dict[str, Any] = {}
    suggestions: dict[str, list[str]] = {}
    counted_failure = False

    if outcome.primary_ok:
        _merge_page(record, outcome.page, changes)
        if record.consecutive_failure_count != 0:
            changes["consecutive_failure_count"] = 0
        primary_status = BookmarkStatus.ACTIVE
    else:
        failures = record.consecutive_failure_count
        if outcome.page_error is None or outcome.page_error.counts_as_failure:
            failures += 1
            counted_failure = True
            changes["consecutive_failure_count"] = failures
        if failures >= failure_threshold or record.status == BookmarkStatus.INACCESSIBLE:
            primary_status = BookmarkStatus.INACCESSIBLE
        else:
            primary_status = BookmarkStatus.ACTIVE

    if outcome.enrichment is not None:
        _merge_enrichment(record, outcome.enrichment, changes, suggestions)

    status = _next_status(record, outcome, primary_status)
    if status != record.status:
        changes["status"] = status

    return Reconciliation(
        changes=changes,
        status=status,
        suggestions=suggestions,
        counted_failure=counted_failure,
        deferred=outcome.rate_limited,
    )


def _next_status(
    record: BookmarkRefreshRecord,
    outcome: RefreshOutcome,
    primary_status: BookmarkStatus,
) -> BookmarkStatus:
    if record.status == BookmarkStatus.ARCHIVED:
        return BookmarkStatus.ARCHIVED
    if outcome.repository_gone:
        return BookmarkStatus.REPO_UNAVAILABLE
    if record.status == BookmarkStatus.REPO_UNAVAILABLE:
        repository_back = outcome.enrichment is not None
        repository_dropped = outcome.primary_ok and outcome.repository is None
        if not (repository_back or repository_dropped):
            return BookmarkStatus.REPO_UNAVAILABLE
    return primary_status


def _merge_page(record: BookmarkRefreshRecord, page: PageMetadata, changes: dict[str, Any]) -> None:
    for name in CONTENT_FIELDS:
        new_value = getattr(page, name)
        if new_value and new_value != getattr(record, name):
            changes[name] = new_value

    for name in LINK_FIELDS:
        detected = getattr(page, name)
        stored: Optional[TaggedValue] = getattr(record, name)
        if not detected:
            continue
        if stored is not None and (stored.is_user_set or stored.value == detected):
            continue
        changes[name] = TaggedValue(detected, ValueSource.SYSTEM)


def _merge_enrichment(
    record: BookmarkRefreshRecord,
    enrichment: RepositoryEnrichment,
    changes: dict[str, Any],
    suggestions: dict[str, list[str]],
) -> None:
    if enrichment.stars != record.github_stars:
        changes["github_stars"] = enrichment.stars
    if enrichment.archived != record.github_archived:
        changes["github_archived"] = enrichment.archived
    if enrichment.last_commit is not None and enrichment.last_commit != record.github_last_commit:
        changes["github_last_commit"] = enrichment.last_commit

    detected_languages = enrichment.languages + enrichment.unmatched_languages
    if record.has_user_languages():
        if detected_languages:
            suggestions["languages"] = detected_languages
    else:
        if enrichment.languages and _folded(enrichment.languages) != _folded(record.system_language_names()):
            changes["languages"] = list(enrichment.languages)
        # Names without a catalog entry cannot be linked.
        if enrichment.unmatched_languages:
            suggestions["languages"] = list(enrichment.unmatched_languages)

    if enrichment.license is not None:
        if record.has_user_licenses():
            suggestions["licenses"] = [enrichment.license.name]
        elif [enrichment.license.id] != record.system_license_ids():
            changes["licenses"] = [enrichment.license.id]


def _folded(names: list[str]) -> list[str]:
    return [name.casefold() for name in names]
