"""Ordered field resolvers for page metadata.

Each field is resolved by a chain of small functions tried in order; the
first one returning a non-empty value wins.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Sequence
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from linkrefresh.crawlers.repository_url import is_code_repository_link

MAX_DESCRIPTION_CHARS = 500

SOURCE_HINT_PATTERN = re.compile(r"\b(source(?:\s+code)?|repository|repo|github|gitlab)\b", re.IGNORECASE)
DOCS_HINT_PATTERN = re.compile(r"\b(documentation|docs|api\s+reference|guides?|manual)\b", re.IGNORECASE)
DOCS_PLATFORM_HOSTS = (
    "readthedocs.io",
    "readthedocs.org",
    "rtfd.io",
    "gitbook.io",
    "docs.rs",
    "pkg.go.dev",
    "hexdocs.pm",
    "javadoc.io",
    "mintlify.app",
)
_CODE_HOST_URL_PATTERN = re.compile(
    r"https?://(?:www\.)?(?:github\.com|gitlab\.com|bitbucket\.org|codeberg\.org|git\.sr\.ht)"
    r"/[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+",
    re.IGNORECASE,
)
_HEADER_SELECTOR = "header, nav, [role=banner], [role=navigation]"
_FOOTER_SELECTOR = "footer, [role=contentinfo]"


@dataclass(slots=True)
class PageContext:
    """Parsed page and the final URL it was served from."""

    soup: BeautifulSoup
    base_url: str
    raw_html: str = ""


@dataclass(frozen=True, slots=True)
class PageLink:
    url: str
    text: str


Resolver = Callable[[PageContext], Optional[str]]


def resolve_first(chain: Sequence[Resolver], context: PageContext) -> Optional[str]:
    for resolver in chain:
        value = resolver(context)
        if value:
            return value
    return None


# -- shared helpers -----------------------------------------------------------


def _clean(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    collapsed = re.sub(r"\s+", " ", text).strip()
    return collapsed or None


def _meta_content(soup: BeautifulSoup, key: str) -> Optional[str]:
    pattern = re.compile(rf"^{re.escape(key)}$", re.IGNORECASE)
    for attr in ("property", "name"):
        element = soup.find("meta", attrs={attr: pattern})
        if element is not None:
            content = _clean(element.get("content"))
            if content:
                return content
    return None


def _absolute(context: PageContext, href: Optional[str]) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith(("#", "javascript:", "mailto:", "tel:", "data:")):
        return None
    absolute = urljoin(context.base_url, href)
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


def _link_rel_href(context: PageContext, rel_values: Iterable[str]) -> Optional[str]:
    wanted = {value.lower() for value in rel_values}
    for element in context.soup.find_all("link", href=True):
        rels = element.get("rel") or []
        if isinstance(rels, str):
            rels = rels.split()
        if wanted.intersection(rel.lower() for rel in rels):
            absolute = _absolute(context, element.get("href"))
            if absolute:
                return absolute
    return None


def iter_links(context: PageContext, scope: Optional[Tag] = None) -> Iterator[PageLink]:
    """Yield absolute anchor links in document order."""
    root = scope if scope is not None else context.soup
    for anchor in root.find_all("a", href=True):
        url = _absolute(context, anchor.get("href"))
        if url is None:
            continue
        label = " ".join(
            part
            for part in (anchor.get_text(" ", strip=True), anchor.get("title"), anchor.get("aria-label"))
            if part
        )
        yield PageLink(url=url, text=label)


def _scoped_links(context: PageContext, selector: str) -> list[PageLink]:
    links: list[PageLink] = []
    for scope in context.soup.select(selector):
        links.extend(iter_links(context, scope))
    return links


def _body_links(context: PageContext) -> list[PageLink]:
    excluded = {
        id(anchor)
        for scope in context.soup.select(f"{_HEADER_SELECTOR}, {_FOOTER_SELECTOR}")
        for anchor in scope.find_all("a", href=True)
    }
    body = context.soup.body or context.soup
    links: list[PageLink] = []
    for anchor in body.find_all("a", href=True):
        if id(anchor) in excluded:
            continue
        url = _absolute(context, anchor.get("href"))
        if url:
            links.append(PageLink(url=url, text=anchor.get_text(" ", strip=True)))
    return links


def _prefer_hinted(links: Sequence[PageLink], hint: re.Pattern[str]) -> Optional[str]:
    """First hinted link, else first link; document order breaks ties."""
    if not links:
        return None
    for link in links:
        if hint.search(link.text):
            return link.url
    return links[0].url


def _not_self(context: PageContext, url: str) -> bool:
    return url.rstrip("/") != context.base_url.rstrip("/")


# -- title --------------------------------------------------------------------


def og_title(context: PageContext) -> Optional[str]:
    return _meta_content(context.soup, "og:title")


def title_tag(context: PageContext) -> Optional[str]:
    element = context.soup.find("title")
    return _clean(element.get_text()) if element else None


def twitter_title(context: PageContext) -> Optional[str]:
    return _meta_content(context.soup, "twitter:title")


def first_heading(context: PageContext) -> Optional[str]:
    element = context.soup.find("h1")
    return _clean(element.get_text(" ")) if element else None


TITLE_CHAIN: tuple[Resolver, ...] = (og_title, title_tag, twitter_title, first_heading)


# -- description --------------------------------------------------------------


def og_description(context: PageContext) -> Optional[str]:
    return _meta_content(context.soup, "og:description")


def meta_description(context: PageContext) -> Optional[str]:
    return _meta_content(context.soup, "description")


def twitter_description(context: PageContext) -> Optional[str]:
    return _meta_content(context.soup, "twitter:description")


def first_paragraph(context: PageContext) -> Optional[str]:
    for paragraph in context.soup.find_all("p"):
        text = _clean(paragraph.get_text(" "))
        if text:
            return text[:MAX_DESCRIPTION_CHARS]
    return None


DESCRIPTION_CHAIN: tuple[Resolver, ...] = (
    og_description,
    meta_description,
    twitter_description,
    first_paragraph,
)


# -- logo ---------------------------------------------------------------------


def apple_touch_icon(context: PageContext) -> Optional[str]:
    return _link_rel_href(context, ("apple-touch-icon", "apple-touch-icon-precomposed"))


def og_image(context: PageContext) -> Optional[str]:
    return _absolute(context, _meta_content(context.soup, "og:image"))


def favicon(context: PageContext) -> Optional[str]:
    return _link_rel_href(context, ("icon",))


LOGO_CHAIN: tuple[Resolver, ...] = (apple_touch_icon, og_image, favicon)


# -- source-code link ---------------------------------------------------------


def structured_source_link(context: PageContext) -> Optional[str]:
    """Repository declared by the page itself rather than linked from it."""
    if is_code_repository_link(context.base_url):
        return context.base_url

    for element in context.soup.find_all(attrs={"itemprop": re.compile(r"^codeRepository$", re.I)}):
        url = _absolute(context, element.get("href") or element.get("content"))
        if url:
            return url

    for script in context.soup.find_all("script", attrs={"type": "application/ld+json"}):
        url = _absolute(context, _json_ld_code_repository(script.string or script.get_text()))
        if url:
            return url

    go_source = _meta_content(context.soup, "go-source")
    if go_source:
        parts = go_source.split()
        if len(parts) >= 2:
            url = _absolute(context, parts[1])
            if url:
                return url

    return _link_rel_href(context, ("vcs-git", "code-repository"))


def _json_ld_code_repository(raw: Optional[str]) -> Optional[str]:
    if not raw or "codeRepository" not in raw:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None

    stack = [payload]
    while stack:
        item = stack.pop()
        if isinstance(item, dict):
            value = item.get("codeRepository")
            if isinstance(value, str) and value.strip():
                return value.strip()
            stack.extend(item.values())
        elif isinstance(item, list):
            stack.extend(reversed(item))
    return None


def _repository_links(context: PageContext, links: Iterable[PageLink]) -> list[PageLink]:
    return [link for link in links if is_code_repository_link(link.url) and _not_self(context, link.url)]


def header_source_link(context: PageContext) -> Optional[str]:
    links = _repository_links(context, _scoped_links(context, _HEADER_SELECTOR))
    return _prefer_hinted(links, SOURCE_HINT_PATTERN)


def footer_source_link(context: PageContext) -> Optional[str]:
    links = _repository_links(context, _scoped_links(context, _FOOTER_SELECTOR))
    return _prefer_hinted(links, SOURCE_HINT_PATTERN)


def body_source_link(context: PageContext) -> Optional[str]:
    links = _repository_links(context, _body_links(context))
    return _prefer_hinted(links, SOURCE_HINT_PATTERN)


def any_code_host_link(context: PageContext) -> Optional[str]:
    """Last resort: a repository URL mentioned anywhere in the markup."""
    for match in _CODE_HOST_URL_PATTERN.finditer(context.raw_html):
        url = match.group(0).rstrip(".")
        if is_code_repository_link(url) and _not_self(context, url):
            return url
    return None


SOURCE_CODE_CHAIN: tuple[Resolver, ...] = (
    structured_source_link,
    header_source_link,
    footer_source_link,
    body_source_link,
    any_code_host_link,
)


# -- documentation link -------------------------------------------------------


def _doc_candidates(context: PageContext) -> list[PageLink]:
    return [link for link in iter_links(context) if _not_self(context, link.url)]


def docs_subdomain_link(context: PageContext) -> Optional[str]:
    for link in _doc_candidates(context):
        host = (urlparse(link.url).hostname or "").lower()
        if host.startswith(("docs.", "documentation.")) or ".docs." in host or ".documentation." in host:
            return link.url
    return None


def docs_path_link(context: PageContext) -> Optional[str]:
    for link in _doc_candidates(context):
        path = urlparse(link.url).path.lower()
        if "/docs/" in path or path.endswith("/docs"):
            return link.url
    return None


def docs_hint_link(context: PageContext) -> Optional[str]:
    for link in _doc_candidates(context):
        if DOCS_HINT_PATTERN.search(link.text):
            return link.url
    return None


def docs_platform_link(context: PageContext) -> Optional[str]:
    for link in _doc_candidates(context):
        host = (urlparse(link.url).hostname or "").lower()
        if any(host == platform or host.endswith(f".{platform}") for platform in DOCS_PLATFORM_HOSTS):
            return link.url
    return None


DOCUMENTATION_CHAIN: tuple[Resolver, ...] = (
    docs_subdomain_link,
    docs_path_link,
    docs_hint_link,
    docs_platform_link,
)
