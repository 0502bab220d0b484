"""Failure taxonomy for the refresh pipeline.

Every error carries a stable ``kind`` used as the logging discriminant and a
``counts_as_failure`` flag telling the reconciler whether it advances a
record's ``consecutive_failure_count``.
"""

from __future__ import annotations

from typing import Optional


class RefreshError(Exception):
    """Base class for all classified refresh failures."""

    kind = "refresh_error"
    counts_as_failure = True

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url

    def as_log_extra(self) -> dict[str, Optional[str]]:
        return {"error_kind": self.kind, "error": self.message, "url": self.url}


class TransientNetworkError(RefreshError):
    """Timeout, refused connection, DNS failure, 5xx or 429 on the primary URL."""

    kind = "transient_network"


class PermanentHttpError(RefreshError):
    """A 4xx answer (other than 429) from the primary URL."""

    kind = "permanent_http"

    def __init__(self, message: str, *, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code

    def as_log_extra(self) -> dict[str, Optional[str]]:
        extra = super().as_log_extra()
        extra["status_code"] = str(self.status_code) if self.status_code is not None else None
        return extra


class RateLimited(RefreshError):
    """The repository API refused the call because of its rate limit."""

    kind = "rate_limited"
    counts_as_failure = False


class RepositoryGone(RefreshError):
    """The repository endpoint answered 404 or 410."""

    kind = "repository_gone"
    counts_as_failure = False


class ParseError(RefreshError):
    """A page or API payload could not be parsed."""

    kind = "parse_error"


class StoreError(RefreshError):
    """Reading from or writing to the bookmark store failed."""

    kind = "store_error"
    counts_as_failure = False
