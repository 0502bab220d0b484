"""Primary-URL fetcher and page metadata extractor."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from linkrefresh.config.settings import settings
from linkrefresh.crawlers.log_sanitizer import sanitize_log_extra
from linkrefresh.crawlers.resolvers import (
    DESCRIPTION_CHAIN,
    DOCUMENTATION_CHAIN,
    LOGO_CHAIN,
    SOURCE_CODE_CHAIN,
    TITLE_CHAIN,
    PageContext,
    resolve_first,
)
from linkrefresh.errors import ParseError, PermanentHttpError, TransientNetworkError

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
_META_REFRESH_URL = re.compile(r"url\s*=\s*['\"]?([^'\"]+)", re.IGNORECASE)


@dataclass(slots=True)
class FetchedPage:
    """Body of the last hop of a primary-URL fetch."""

    url: str
    status_code: int
    content_type: str
    body: bytes
    charset: Optional[str] = None
    truncated: bool = False

    @property
    def is_html(self) -> bool:
        return any(kind in self.content_type.lower() for kind in HTML_CONTENT_TYPES)

    def text(self) -> str:
        return self.body.decode(self.charset or "utf-8", errors="replace")


@dataclass(slots=True)
class PageMetadata:
    """Metadata resolved from a page; any field may be missing."""

    requested_url: str
    final_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    page_description: Optional[str] = None
    logo: Optional[str] = None
    source_code_url: Optional[str] = None
    documentation_url: Optional[str] = None
    partial: bool = False

    def with_repository_description(self, repository_description: Optional[str]) -> "PageMetadata":
        """Prefer the repository's own description over the page's."""
        cleaned = (repository_description or "").strip()
        return dataclasses.replace(self, description=cleaned or self.page_description)


class WebMetadataExtractor:
    """Fetches a primary URL within byte/time caps and resolves its metadata."""

    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        max_bytes: Optional[int] = None,
        max_redirects: Optional[int] = None,
        max_meta_refresh: Optional[int] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds or settings.FETCH_TIMEOUT_SECONDS
        self._max_bytes = max_bytes or settings.FETCH_MAX_BYTES
        self._max_redirects = settings.FETCH_MAX_REDIRECTS if max_redirects is None else max_redirects
        self._max_meta_refresh = settings.FETCH_MAX_META_REFRESH if max_meta_refresh is None else max_meta_refresh
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "WebMetadataExtractor":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def extract(self, url: str) -> PageMetadata:
        """Fetch `url` and resolve every field chain.

        Raises TransientNetworkError or PermanentHttpError when the URL itself
        cannot be fetched. Missing fields are not an error.
        """
        try:
            page, soup = await asyncio.wait_for(self._resolve(url), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise TransientNetworkError(
                f"Fetch exceeded {self._timeout_seconds}s", url=url
            ) from exc

        if soup is None:
            return PageMetadata(requested_url=url, final_url=page.url)

        try:
            return self.parse(
                soup,
                requested_url=url,
                final_url=page.url,
                raw_html=page.text(),
            )
        except Exception as exc:
            error = ParseError(f"Failed to extract metadata: {exc}", url=page.url)
            logger.warning("Partial page extraction", extra=sanitize_log_extra(**error.as_log_extra()))
            return PageMetadata(requested_url=url, final_url=page.url, partial=True)

    def parse(
        self,
        soup: BeautifulSoup,
        *,
        requested_url: str,
        final_url: str,
        raw_html: str = "",
    ) -> PageMetadata:
        context = PageContext(soup=soup, base_url=final_url, raw_html=raw_html)
        page_description = resolve_first(DESCRIPTION_CHAIN, context)
        return PageMetadata(
            requested_url=requested_url,
            final_url=final_url,
            title=resolve_first(TITLE_CHAIN, context),
            description=page_description,
            page_description=page_description,
            logo=resolve_first(LOGO_CHAIN, context),
            source_code_url=resolve_first(SOURCE_CODE_CHAIN, context),
            documentation_url=resolve_first(DOCUMENTATION_CHAIN, context),
        )

    async def _resolve(self, url: str) -> tuple[FetchedPage, Optional[BeautifulSoup]]:
        """Follow HTTP redirects (in the client) and HTML meta-refresh hops."""
        page = await self._fetch_once(url)
        soup = self._soup(page)
        seen = {url, page.url}

        for _ in range(self._max_meta_refresh):
            target = self._meta_refresh_target(soup, page.url) if soup is not None else None
            if target is None or target in seen:
                break
            seen.add(target)
            try:
                next_page = await self._fetch_once(target)
            except (TransientNetworkError, PermanentHttpError) as exc:
                logger.warning(
                    "Meta refresh target unreachable, keeping previous page",
                    extra=sanitize_log_extra(**exc.as_log_extra()),
                )
                break
            page, soup = next_page, self._soup(next_page)
            seen.add(page.url)

        return page, soup

    async def _fetch_once(self, url: str) -> FetchedPage:
        client = self._ensure_client()
        try:
            async with client.stream("GET", url) as response:
                status = response.status_code
                if status == 429 or status >= 500:
                    raise TransientNetworkError(f"Upstream answered {status}", url=url)
                if status >= 400:
                    raise PermanentHttpError(f"Upstream answered {status}", status_code=status, url=url)

                chunks: list[bytes] = []
                received = 0
                truncated = False
                async for chunk in response.aiter_bytes():
                    remaining = self._max_bytes - received
                    if len(chunk) >= remaining:
                        chunks.append(chunk[:remaining])
                        received += remaining
                        truncated = True
                        break
                    chunks.append(chunk)
                    received += len(chunk)

                return FetchedPage(
                    url=str(response.url),
                    status_code=status,
                    content_type=response.headers.get("content-type", ""),
                    body=b"".join(chunks),
                    charset=response.charset_encoding,
                    truncated=truncated,
                )
        except httpx.TooManyRedirects as exc:
            raise TransientNetworkError(f"Too many redirects: {exc}", url=url) from exc
        except httpx.UnsupportedProtocol as exc:
            raise PermanentHttpError(f"Unsupported URL scheme: {exc}", url=url) from exc
        except httpx.InvalidURL as exc:
            raise PermanentHttpError(f"Invalid URL: {exc}", url=url) from exc
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Timed out: {exc}", url=url) from exc
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"{type(exc).__name__}: {exc}", url=url) from exc

    def _soup(self, page: FetchedPage) -> Optional[BeautifulSoup]:
        if not page.is_html:
            logger.debug(
                "Non-HTML response, skipping extraction",
                extra=sanitize_log_extra(url=page.url, content_type=page.content_type),
            )
            return None
        if page.truncated:
            logger.debug(
                "Page body truncated at byte cap",
                extra=sanitize_log_extra(url=page.url, max_bytes=self._max_bytes),
            )
        try:
            return BeautifulSoup(page.body, "lxml", from_encoding=page.charset)
        except Exception as exc:
            error = ParseError(f"Unparsable HTML: {exc}", url=page.url)
            logger.warning("Partial page extraction", extra=sanitize_log_extra(**error.as_log_extra()))
            return None

    @staticmethod
    def _meta_refresh_target(soup: BeautifulSoup, base_url: str) -> Optional[str]:
        element = soup.find("meta", attrs={"http-equiv": re.compile(r"^refresh$", re.IGNORECASE)})
        if element is None:
            return None
        match = _META_REFRESH_URL.search(element.get("content") or "")
        if match is None:
            return None
        target = match.group(1).strip()
        return urljoin(base_url, target) if target else None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        self._client = httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=self._max_redirects,
            timeout=self._timeout_seconds,
            headers={
                "User-Agent": settings.USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
            transport=self._transport,
        )
        return self._client
