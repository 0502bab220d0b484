"""Typed fetch contracts shared by the repository API client and its callers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class FetchState(str, enum.Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"
    GONE = "gone"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Outcome of one upstream call, never raised."""

    state: FetchState
    data: Optional[T] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.state == FetchState.OK

    @property
    def is_failed(self) -> bool:
        return self.state in (FetchState.FAILED, FetchState.RATE_LIMITED, FetchState.GONE)


RepoContract = FetchResult[dict[str, Any]]
LanguagesContract = FetchResult[dict[str, int]]
CommitsContract = FetchResult[list[dict[str, Any]]]
