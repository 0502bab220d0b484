"""Async GitHub repository API client used for bookmark enrichment."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from linkrefresh.config.settings import settings
from linkrefresh.crawlers.contracts import (
    CommitsContract,
    FetchResult,
    FetchState,
    LanguagesContract,
    RepoContract,
)
from linkrefresh.crawlers.log_sanitizer import sanitize_log_extra

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS_CODES = (403, 429)
GONE_STATUS_CODES = (404, 410)
# GitHub answers 409 on /commits for a repository without any commit.
EMPTY_REPOSITORY_STATUS_CODE = 409


class _RetryableUpstreamError(Exception):
    """Server-side or transport failure worth another attempt."""


class GitHubRepoClient:
    """Unauthenticated GitHub client for repository, languages and commits."""

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    ACCEPT_JSON = "application/vnd.github+json"

    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        base_url: Optional[str] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._max_retries = max_retries or settings.GITHUB_MAX_RETRIES
        self._backoff_base_seconds = (
            settings.GITHUB_BACKOFF_BASE_SECONDS if backoff_base_seconds is None else backoff_base_seconds
        )
        self._backoff_max_seconds = (
            settings.GITHUB_BACKOFF_MAX_SECONDS if backoff_max_seconds is None else backoff_max_seconds
        )
        self._base_url = base_url or settings.GITHUB_API_BASE_URL or self.BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubRepoClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_repo(self, owner: str, repo: str) -> RepoContract:
        return await self._fetch_json_contract(f"/repos/{owner}/{repo}")

    async def get_languages(self, owner: str, repo: str) -> LanguagesContract:
        return await self._fetch_json_contract(f"/repos/{owner}/{repo}/languages")

    async def get_latest_commit(self, owner: str, repo: str) -> CommitsContract:
        return await self._fetch_json_contract(f"/repos/{owner}/{repo}/commits", params={"per_page": 1})

    async def _fetch_json_contract(
        self,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> FetchResult[Any]:
        response = await self._request(path, params=params)
        if response.state != FetchState.OK:
            return response

        payload = response.data
        if payload is None or (isinstance(payload, (list, dict)) and len(payload) == 0):
            return FetchResult(state=FetchState.EMPTY, data=payload, status_code=response.status_code)
        return response

    async def _request(self, path: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        client = await self._ensure_client()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries),
                wait=wait_exponential(multiplier=self._backoff_base_seconds, max=self._backoff_max_seconds),
                retry=retry_if_exception_type(_RetryableUpstreamError),
                reraise=True,
            ):
                with attempt:
                    try:
                        response = await client.get(path, params=params)
                    except httpx.TransportError as exc:
                        raise _RetryableUpstreamError(f"{type(exc).__name__}: {exc}") from exc

                    if response.status_code in RATE_LIMIT_STATUS_CODES:
                        logger.warning(
                            "GitHub API rate limit encountered",
                            extra=sanitize_log_extra(
                                path=path,
                                status_code=response.status_code,
                                ratelimit_remaining=response.headers.get("x-ratelimit-remaining"),
                                ratelimit_reset=response.headers.get("x-ratelimit-reset"),
                            ),
                        )
                        return FetchResult(
                            state=FetchState.RATE_LIMITED,
                            status_code=response.status_code,
                            error=f"GitHub rate limit encountered ({response.status_code})",
                        )

                    if response.status_code in GONE_STATUS_CODES:
                        return FetchResult(
                            state=FetchState.GONE,
                            status_code=response.status_code,
                            error=f"GitHub resource gone ({response.status_code})",
                        )

                    if response.status_code == EMPTY_REPOSITORY_STATUS_CODE:
                        return FetchResult(state=FetchState.EMPTY, data=[], status_code=response.status_code)

                    if response.status_code >= 500:
                        raise _RetryableUpstreamError(f"GitHub server error ({response.status_code})")

                    response.raise_for_status()
                    try:
                        payload = response.json()
                    except ValueError as exc:
                        return FetchResult(
                            state=FetchState.FAILED,
                            status_code=response.status_code,
                            error=f"Malformed GitHub payload: {exc}",
                        )
                    return FetchResult(state=FetchState.OK, data=payload, status_code=response.status_code)
        except _RetryableUpstreamError as exc:
            logger.warning(
                "GitHub request failed after retries",
                extra=sanitize_log_extra(path=path, error=str(exc), attempts=self._max_retries),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc))
        except httpx.HTTPError as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(path=path, error=str(exc), status_code=status_code),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=status_code)

        return FetchResult(state=FetchState.FAILED, error="Unknown GitHub request failure")

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Accept": self.ACCEPT_JSON,
                "User-Agent": settings.USER_AGENT,
                "X-GitHub-Api-Version": self.API_VERSION,
            },
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        return self._client
