"""Repository enrichment: stars, archived flag, languages, license, last commit."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from dateutil import parser as date_parser

from linkrefresh.crawlers.contracts import FetchResult, FetchState
from linkrefresh.crawlers.log_sanitizer import sanitize_log_extra
from linkrefresh.crawlers.repository_url import RepositoryRef
from linkrefresh.errors import ParseError, RateLimited, RepositoryGone, TransientNetworkError
from linkrefresh.models.refresh import Catalog, LicenseEntry
from linkrefresh.services.language_selector import match_languages, select_languages
from linkrefresh.services.license_matcher import match_license, reported_license_identifier

logger = logging.getLogger(__name__)


class RateLimitGate:
    """Tick-scoped switch that stops enrichment once the upstream rate limits."""

    def __init__(self) -> None:
        self._tripped = False

    @property
    def is_open(self) -> bool:
        return not self._tripped

    def trip(self) -> None:
        if not self._tripped:
            logger.warning("Repository API rate limited; enrichment suspended for this tick")
        self._tripped = True


@dataclass(slots=True)
class RepositoryEnrichment:
    """Everything learned about one repository in a refresh."""

    repository: RepositoryRef
    stars: int
    archived: bool
    description: Optional[str] = None
    last_commit: Optional[date] = None
    license_identifier: Optional[str] = None
    license: Optional[LicenseEntry] = None
    languages: list[str] = field(default_factory=list)
    unmatched_languages: list[str] = field(default_factory=list)


class RepositoryEnricher:
    """Runs the three repository API calls for a record and interprets them."""

    def __init__(self, github_client: Any) -> None:
        self._client = github_client

    async def enrich(
        self,
        repository: RepositoryRef,
        *,
        catalog: Catalog,
        gate: RateLimitGate,
    ) -> RepositoryEnrichment:
        """Raises RateLimited, RepositoryGone, ParseError or TransientNetworkError."""
        if not gate.is_open:
            raise RateLimited("Enrichment suspended for this tick", url=repository.html_url)

        repo_result = await self._client.get_repo(repository.owner, repository.repo)
        payload = self._require(repo_result, repository, gate, call="repository")
        if not isinstance(payload, dict):
            raise ParseError("Repository payload is not an object", url=repository.html_url)

        languages_result, commits_result = await asyncio.gather(
            self._client.get_languages(repository.owner, repository.repo),
            self._client.get_latest_commit(repository.owner, repository.repo),
        )
        languages_payload = self._require(languages_result, repository, gate, call="languages")
        commits_payload = self._require(commits_result, repository, gate, call="commits")

        identifier = reported_license_identifier(payload)
        license_entry = match_license(identifier, catalog)
        if identifier and license_entry is None:
            logger.info(
                "Reported license has no catalog entry, discarding",
                extra=sanitize_log_extra(repository=repository.full_name, license_identifier=identifier),
            )

        detected = select_languages(languages_payload if isinstance(languages_payload, dict) else {})
        languages, unmatched_languages = match_languages(detected, catalog)
        if unmatched_languages:
            logger.info(
                "Detected languages have no catalog entry, suggesting only",
                extra=sanitize_log_extra(repository=repository.full_name, languages=unmatched_languages),
            )

        enrichment = RepositoryEnrichment(
            repository=repository,
            stars=self._as_count(payload.get("stargazers_count")),
            archived=bool(payload.get("archived") or False),
            description=self._as_text(payload.get("description")),
            last_commit=self._latest_commit_date(commits_payload) or self._parse_date(payload.get("pushed_at")),
            license_identifier=identifier,
            license=license_entry,
            languages=languages,
            unmatched_languages=unmatched_languages,
        )
        logger.info(
            "Repository enrichment fetched",
            extra=sanitize_log_extra(
                repository=repository.full_name,
                stars=enrichment.stars,
                archived=enrichment.archived,
                languages=enrichment.languages,
            ),
        )
        return enrichment

    @staticmethod
    def _require(result: FetchResult[Any], repository: RepositoryRef, gate: RateLimitGate, *, call: str) -> Any:
        if result.state == FetchState.OK:
            return result.data
        if result.state == FetchState.EMPTY:
            return result.data if result.data is not None else {}
        if result.state == FetchState.RATE_LIMITED:
            gate.trip()
            raise RateLimited(result.error or "rate limited", url=repository.html_url)
        if result.state == FetchState.GONE:
            if call == "repository":
                raise RepositoryGone(result.error or "repository gone", url=repository.html_url)
            # A sub-resource vanishing right after the repository answered is a race, not a removal.
            raise TransientNetworkError(f"{call}: {result.error or 'gone'}", url=repository.html_url)
        raise TransientNetworkError(f"{call}: {result.error or 'request failed'}", url=repository.html_url)

    @classmethod
    def _latest_commit_date(cls, commits_payload: Any) -> Optional[date]:
        if not isinstance(commits_payload, list) or not commits_payload:
            return None
        latest = commits_payload[0]
        if not isinstance(latest, dict):
            return None
        commit = latest.get("commit") if isinstance(latest.get("commit"), dict) else {}
        for role in ("committer", "author"):
            person = commit.get(role)
            if isinstance(person, dict):
                parsed = cls._parse_date(person.get("date"))
                if parsed is not None:
                    return parsed
        return None

    @staticmethod
    def _parse_date(raw: Any) -> Optional[date]:
        if not isinstance(raw, str) or not raw.strip():
            return None
        try:
            return date_parser.isoparse(raw.strip()).date()
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _as_count(value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            return 0
        return max(value, 0)

    @staticmethod
    def _as_text(value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None
