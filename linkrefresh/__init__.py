"""Background metadata refresh and enrichment engine for bookmarks."""

__version__ = "1.0.0"
