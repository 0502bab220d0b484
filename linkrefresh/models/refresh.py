"""Refresh-relevant projection of a bookmark and its catalog lookups."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional


class BookmarkStatus(str, enum.Enum):
    """Bookmark lifecycle status as seen by the refresh engine."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    INACCESSIBLE = "inaccessible"
    REPO_UNAVAILABLE = "repo_unavailable"


class ValueSource(str, enum.Enum):
    """Who set a link or association: the user or the refresh engine."""

    USER = "user"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class TaggedValue:
    """A URL field value tagged with the party that set it."""

    value: str
    source: ValueSource = ValueSource.SYSTEM

    @property
    def is_user_set(self) -> bool:
        return self.source == ValueSource.USER


@dataclass(frozen=True, slots=True)
class AssociationLink:
    """A language or license attached to a bookmark, with display order."""

    name: str
    source: ValueSource
    position: int = 0
    entry_id: Optional[int] = None


@dataclass(slots=True)
class BookmarkRefreshRecord:
    """The subset of a bookmark the refresh engine reads and writes."""

    id: int
    owner_id: int
    url: str
    created_at: datetime
    status: BookmarkStatus = BookmarkStatus.ACTIVE
    title: Optional[str] = None
    description: Optional[str] = None
    logo: Optional[str] = None
    source_code_url: Optional[TaggedValue] = None
    documentation_url: Optional[TaggedValue] = None
    github_stars: Optional[int] = None
    github_archived: Optional[bool] = None
    github_last_commit: Optional[date] = None
    consecutive_failure_count: int = 0
    last_refresh_at: Optional[datetime] = None
    jitter_fraction: Optional[float] = None
    languages: list[AssociationLink] = field(default_factory=list)
    licenses: list[AssociationLink] = field(default_factory=list)

    @property
    def refresh_anchor(self) -> datetime:
        return self.last_refresh_at or self.created_at

    def has_user_languages(self) -> bool:
        return any(link.source == ValueSource.USER for link in self.languages)

    def has_user_licenses(self) -> bool:
        return any(link.source == ValueSource.USER for link in self.licenses)

    def system_language_names(self) -> list[str]:
        ordered = sorted(
            (link for link in self.languages if link.source == ValueSource.SYSTEM),
            key=lambda link: link.position,
        )
        return [link.name for link in ordered]

    def system_license_ids(self) -> list[int]:
        ordered = sorted(
            (link for link in self.licenses if link.source == ValueSource.SYSTEM),
            key=lambda link: link.position,
        )
        return [link.entry_id for link in ordered if link.entry_id is not None]


@dataclass(frozen=True, slots=True)
class LicenseEntry:
    """A license known to the owner's catalog."""

    id: int
    name: str
    full_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LanguageEntry:
    """A language known to the owner's catalog."""

    id: int
    name: str


@dataclass(slots=True)
class Catalog:
    """Licenses and languages visible to one bookmark owner (global plus custom)."""

    owner_id: int
    licenses: list[LicenseEntry] = field(default_factory=list)
    languages: list[LanguageEntry] = field(default_factory=list)
