"""Code-hosting URL detection."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

_GITHUB_REPO_PATTERN = re.compile(
    r"^(?:https?://(?:www\.)?github\.com/|git@github\.com:)"
    r"([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+?)(?:\.git)?/?(?:[/?#].*)?$",
    re.IGNORECASE,
)

# First path segments on github.com that are product pages, not owners.
_GITHUB_RESERVED_OWNERS = frozenset(
    {
        "about",
        "apps",
        "collections",
        "contact",
        "customer-stories",
        "enterprise",
        "events",
        "explore",
        "features",
        "login",
        "marketplace",
        "orgs",
        "pricing",
        "readme",
        "search",
        "security",
        "settings",
        "site",
        "sponsors",
        "team",
        "topics",
        "trending",
        "users",
    }
)

CODE_HOSTS = frozenset(
    {
        "github.com",
        "gitlab.com",
        "bitbucket.org",
        "codeberg.org",
        "git.sr.ht",
        "sourceforge.net",
        "gitee.com",
    }
)


@dataclass(frozen=True, slots=True)
class RepositoryRef:
    """A GitHub repository addressed as owner/repo."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def html_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


def parse_repository_url(url: Optional[str]) -> Optional[RepositoryRef]:
    """Return owner/repo for a GitHub repository URL, else None.

    Accepts https and ssh forms, a trailing ``.git`` and deep links such as
    ``/tree/main`` or ``/blob/main/README.md``.
    """
    if not url:
        return None

    match = _GITHUB_REPO_PATTERN.match(url.strip())
    if match is None:
        return None

    owner, repo = match.group(1), match.group(2)
    if owner.lower() in _GITHUB_RESERVED_OWNERS or repo in (".", ".."):
        return None
    return RepositoryRef(owner=owner, repo=repo)


def code_host(url: str) -> Optional[str]:
    """Return the normalized code-hosting host of a URL, if it is one."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host if host in CODE_HOSTS else None


def is_code_repository_link(url: str) -> bool:
    """True for owner/project shaped links on a known code-hosting site."""
    if parse_repository_url(url) is not None:
        return True

    host = code_host(url)
    if host is None or host == "github.com":
        return False

    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    return len(segments) >= 2
