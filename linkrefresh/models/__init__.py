"""Database models and the refresh projection"""

from linkrefresh.models.bookmark import Bookmark, BookmarkLanguage, BookmarkLicense, Language, License
from linkrefresh.models.refresh import (
    AssociationLink,
    BookmarkRefreshRecord,
    BookmarkStatus,
    Catalog,
    LicenseEntry,
    TaggedValue,
    ValueSource,
)

__all__ = [
    "Bookmark",
    "BookmarkLanguage",
    "BookmarkLicense",
    "Language",
    "License",
    "AssociationLink",
    "BookmarkRefreshRecord",
    "BookmarkStatus",
    "Catalog",
    "LicenseEntry",
    "TaggedValue",
    "ValueSource",
]
