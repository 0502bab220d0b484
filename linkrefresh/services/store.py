"""Bookmark store and catalog adapters consumed by the refresh engine."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from linkrefresh.config.database import SessionLocal
from linkrefresh.crawlers.log_sanitizer import sanitize_log_extra
from linkrefresh.errors import StoreError
from linkrefresh.models.bookmark import Bookmark, BookmarkLanguage, BookmarkLicense, Language, License
from linkrefresh.models.refresh import (
    AssociationLink,
    BookmarkRefreshRecord,
    BookmarkStatus,
    Catalog,
    LanguageEntry,
    LicenseEntry,
    TaggedValue,
    ValueSource,
)

logger = logging.getLogger(__name__)

# Refresh field name -> bookmarks column, for plain scalar fields.
SCALAR_COLUMNS = {
    "title": "title",
    "description": "description",
    "logo": "logo",
    "github_stars": "github_stars",
    "github_archived": "github_archived",
    "github_last_commit": "github_last_commit",
    "consecutive_failure_count": "consecutive_failures",
}


class BookmarkStore(Protocol):
    def read_due(self, before: datetime) -> list[BookmarkRefreshRecord]: ...

    def write(self, record_id: int, fields: Mapping[str, Any]) -> None: ...


class CatalogSource(Protocol):
    def list_for_owner(self, owner_id: int) -> Catalog: ...


def _to_storage_time(value: datetime) -> datetime:
    """Columns hold naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_storage_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _visible_to(model: Any, owner_id: int):
    return or_(model.owner_id.is_(None), model.owner_id == owner_id)


class SQLAlchemyBookmarkStore:
    """Reads due bookmarks and applies partial writes, one transaction per write."""

    def __init__(self, session_factory: Callable[[], Any] = SessionLocal) -> None:
        self._session_factory = session_factory

    def read_due(self, before: datetime) -> list[BookmarkRefreshRecord]:
        """Bookmarks whose refresh anchor is at or before ``before``."""
        db = self._session_factory()
        try:
            anchor = func.coalesce(Bookmark.last_refresh_at, Bookmark.created_at)
            rows = (
                db.query(Bookmark)
                .filter(anchor <= _to_storage_time(before))
                .order_by(anchor.asc(), Bookmark.id.asc())
                .all()
            )
            return [self.to_record(row) for row in rows]
        except (SQLAlchemyError, ValueError) as exc:
            raise StoreError(f"Failed to read due bookmarks: {exc}") from exc
        finally:
            db.close()

    def write(self, record_id: int, fields: Mapping[str, Any]) -> None:
        if not fields:
            return

        db = self._session_factory()
        try:
            bookmark = db.query(Bookmark).filter_by(id=record_id).first()
            if bookmark is None:
                raise StoreError(f"Bookmark {record_id} no longer exists")
            self._apply(db, bookmark, fields)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreError(f"Failed to write bookmark {record_id}: {exc}") from exc
        except StoreError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.debug(
            "Bookmark refresh written",
            extra=sanitize_log_extra(record_id=record_id, fields=sorted(fields)),
        )

    def _apply(self, db: Any, bookmark: Bookmark, fields: Mapping[str, Any]) -> None:
        for field_name, value in fields.items():
            if field_name in SCALAR_COLUMNS:
                setattr(bookmark, SCALAR_COLUMNS[field_name], value)
            elif field_name == "status":
                bookmark.status = BookmarkStatus(value).value
            elif field_name == "last_refresh_at":
                bookmark.last_refresh_at = _to_storage_time(value)
            elif field_name in ("source_code_url", "documentation_url"):
                tagged: Optional[TaggedValue] = value
                setattr(bookmark, field_name, tagged.value if tagged else None)
                setattr(bookmark, f"{field_name}_source", tagged.source.value if tagged else None)
            elif field_name == "languages":
                self._replace_languages(db, bookmark, list(value))
            elif field_name == "licenses":
                self._replace_licenses(db, bookmark, list(value))
            else:
                raise StoreError(f"Unknown refresh field: {field_name}")

    def _replace_languages(self, db: Any, bookmark: Bookmark, names: Sequence[str]) -> None:
        """Point system language links at existing catalog rows, in the given order."""
        rows = (
            db.query(Language)
            .filter(_visible_to(Language, bookmark.owner_id))
            .filter(func.lower(Language.name).in_([name.lower() for name in names]))
            .all()
        )
        by_name: dict[str, Language] = {}
        for row in rows:
            key = row.name.lower()
            # An owner's own entry wins over the global one.
            if key not in by_name or row.owner_id is not None:
                by_name[key] = row

        language_ids = []
        for name in names:
            row = by_name.get(name.lower())
            if row is None:
                logger.info(
                    "Detected language has no catalog entry, skipping",
                    extra=sanitize_log_extra(record_id=bookmark.id, language=name),
                )
                continue
            language_ids.append(row.id)

        self._relink(bookmark.languages, language_ids, "language_id", BookmarkLanguage)

    def _replace_licenses(self, db: Any, bookmark: Bookmark, license_ids: Sequence[int]) -> None:
        known = {
            row.id
            for row in db.query(License)
            .filter(_visible_to(License, bookmark.owner_id))
            .filter(License.id.in_(list(license_ids)))
            .all()
        }
        self._relink(bookmark.licenses, [entry for entry in license_ids if entry in known], "license_id", BookmarkLicense)

    @staticmethod
    def _relink(links: list[Any], target_ids: Sequence[int], key: str, link_model: Any) -> None:
        """Make the system links equal ``target_ids``; user links are left alone."""
        user_ids = {getattr(link, key) for link in links if link.source == ValueSource.USER.value}
        existing = {getattr(link, key): link for link in links if link.source != ValueSource.USER.value}
        offset = len(user_ids)

        wanted: list[int] = []
        for entry_id in target_ids:
            if entry_id not in user_ids and entry_id not in wanted:
                wanted.append(entry_id)

        for entry_id, link in existing.items():
            if entry_id not in wanted:
                links.remove(link)
        for position, entry_id in enumerate(wanted, start=offset):
            link = existing.get(entry_id)
            if link is None:
                links.append(link_model(**{key: entry_id, "position": position, "source": ValueSource.SYSTEM.value}))
            else:
                link.position = position

    @staticmethod
    def to_record(bookmark: Bookmark) -> BookmarkRefreshRecord:
        return BookmarkRefreshRecord(
            id=bookmark.id,
            owner_id=bookmark.owner_id,
            url=bookmark.url,
            created_at=_from_storage_time(bookmark.created_at),
            status=BookmarkStatus(bookmark.status or BookmarkStatus.ACTIVE.value),
            title=bookmark.title,
            description=bookmark.description,
            logo=bookmark.logo,
            source_code_url=_tagged(bookmark.source_code_url, bookmark.source_code_url_source),
            documentation_url=_tagged(bookmark.documentation_url, bookmark.documentation_url_source),
            github_stars=bookmark.github_stars,
            github_archived=bookmark.github_archived,
            github_last_commit=bookmark.github_last_commit,
            consecutive_failure_count=bookmark.consecutive_failures or 0,
            last_refresh_at=_from_storage_time(bookmark.last_refresh_at),
            languages=[
                AssociationLink(
                    name=link.language.name,
                    source=_source(link.source),
                    position=link.position,
                    entry_id=link.language_id,
                )
                for link in bookmark.languages
            ],
            licenses=[
                AssociationLink(
                    name=link.license.name,
                    source=_source(link.source),
                    position=link.position,
                    entry_id=link.license_id,
                )
                for link in bookmark.licenses
            ],
        )


def _source(raw: Optional[str]) -> ValueSource:
    # Untagged values predate tagging and came from the user.
    return ValueSource.SYSTEM if raw == ValueSource.SYSTEM.value else ValueSource.USER


def _tagged(value: Optional[str], source: Optional[str]) -> Optional[TaggedValue]:
    if not value:
        return None
    return TaggedValue(value, _source(source))


class SQLAlchemyCatalogSource:
    """Catalog visible to an owner: global rows plus the owner's own."""

    def __init__(self, session_factory: Callable[[], Any] = SessionLocal) -> None:
        self._session_factory = session_factory

    def list_for_owner(self, owner_id: int) -> Catalog:
        db = self._session_factory()
        try:
            license_rows = db.query(License).filter(_visible_to(License, owner_id)).order_by(License.id.asc()).all()
            language_rows = (
                db.query(Language)
                .filter(_visible_to(Language, owner_id))
                .order_by(Language.owner_id.isnot(None), Language.id.asc())
                .all()
            )
            return Catalog(
                owner_id=owner_id,
                licenses=[LicenseEntry(id=row.id, name=row.name, full_name=row.full_name) for row in license_rows],
                languages=[LanguageEntry(id=row.id, name=row.name) for row in language_rows],
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load catalog for owner {owner_id}: {exc}") from exc
        finally:
            db.close()
