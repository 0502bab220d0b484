"""Bookmark persistence models read and written by the refresh engine."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from linkrefresh.config.database import Base


class Bookmark(Base):
    """Bookmark entity mapped to `bookmarks` table."""

    __tablename__ = "bookmarks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)

    url = Column(Text, nullable=False)
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    logo = Column(Text, nullable=True)

    source_code_url = Column(Text, nullable=True)
    source_code_url_source = Column(String(10), nullable=True)
    documentation_url = Column(Text, nullable=True)
    documentation_url_source = Column(String(10), nullable=True)

    status = Column(String(20), nullable=False, default="active")
    github_stars = Column(Integer, nullable=True)
    github_archived = Column(Boolean, nullable=True)
    github_last_commit = Column(Date, nullable=True)

    consecutive_failures = Column(Integer, nullable=False, default=0)
    last_refresh_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    # Owned by the bookmark API; the refresh engine never writes it.
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    languages = relationship(
        "BookmarkLanguage",
        order_by="BookmarkLanguage.position",
        cascade="all, delete-orphan",
    )
    licenses = relationship(
        "BookmarkLicense",
        order_by="BookmarkLicense.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_bookmarks_status", "status"),
        Index("idx_bookmarks_last_refresh_at", "last_refresh_at"),
    )

    def __repr__(self):
        return f"<Bookmark {self.id} {self.url}>"


class Language(Base):
    """Programming language catalog entry (global when owner_id is NULL)."""

    __tablename__ = "languages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=True, index=True)
    name = Column(String(100), nullable=False)

    def __repr__(self):
        return f"<Language {self.name}>"


class License(Base):
    """License catalog entry (global when owner_id is NULL)."""

    __tablename__ = "licenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=True, index=True)
    name = Column(String(100), nullable=False)
    full_name = Column(String(200), nullable=True)

    def __repr__(self):
        return f"<License {self.name}>"


class BookmarkLanguage(Base):
    """Ordered bookmark-to-language association."""

    __tablename__ = "bookmark_languages"

    bookmark_id = Column(Integer, ForeignKey("bookmarks.id", ondelete="CASCADE"), primary_key=True)
    language_id = Column(Integer, ForeignKey("languages.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, nullable=False, default=0)
    source = Column(String(10), nullable=False, default="user")

    language = relationship("Language", lazy="joined")


class BookmarkLicense(Base):
    """Ordered bookmark-to-license association."""

    __tablename__ = "bookmark_licenses"

    bookmark_id = Column(Integer, ForeignKey("bookmarks.id", ondelete="CASCADE"), primary_key=True)
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, nullable=False, default=0)
    source = Column(String(10), nullable=False, default="user")

    license = relationship("License", lazy="joined")

