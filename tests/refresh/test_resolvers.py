from __future__ import annotations

from bs4 import BeautifulSoup

from linkrefresh.crawlers.resolvers import (
    DOCUMENTATION_CHAIN,
    LOGO_CHAIN,
    SOURCE_CODE_CHAIN,
    TITLE_CHAIN,
    PageContext,
    resolve_first,
)
from linkrefresh.crawlers.web_metadata import WebMetadataExtractor


def _context(html: str, base_url: str = "https://tool.example.com/") -> PageContext:
    return PageContext(soup=BeautifulSoup(html, "lxml"), base_url=base_url, raw_html=html)


def test_title_prefers_open_graph_then_falls_back_in_order() -> None:
    assert resolve_first(TITLE_CHAIN, _context(
        '<head><meta property="og:title" content="OG"><title>Tag</title></head>'
    )) == "OG"
    assert resolve_first(TITLE_CHAIN, _context(
        '<head><title> Tag  Title </title><meta name="twitter:title" content="TW"></head>'
    )) == "Tag Title"
    assert resolve_first(TITLE_CHAIN, _context(
        '<head><meta name="twitter:title" content="TW"></head><body><h1>Heading</h1></body>'
    )) == "TW"
    assert resolve_first(TITLE_CHAIN, _context("<body><h1>Heading</h1></body>")) == "Heading"
    assert resolve_first(TITLE_CHAIN, _context("<body><p>nothing</p></body>")) is None


def test_logo_chain_order_and_absolute_urls() -> None:
    html = (
        '<head><link rel="icon" href="/favicon.ico">'
        '<meta property="og:image" content="/og.png">'
        '<link rel="apple-touch-icon" href="/touch.png"></head>'
    )
    assert resolve_first(LOGO_CHAIN, _context(html)) == "https://tool.example.com/touch.png"

    html = '<head><link rel="shortcut icon" href="static/fav.png"></head>'
    assert resolve_first(LOGO_CHAIN, _context(html, "https://tool.example.com/app/")) == (
        "https://tool.example.com/app/static/fav.png"
    )
    assert resolve_first(LOGO_CHAIN, _context("<head></head>")) is None


def test_structured_source_link_wins_over_navigation() -> None:
    html = """
    <head><link rel="vcs-git" href="https://github.com/acme/declared.git"></head>
    <body><header><a href="https://github.com/acme/header">GitHub</a></header></body>
    """
    assert resolve_first(SOURCE_CODE_CHAIN, _context(html)) == "https://github.com/acme/declared.git"


def test_header_source_link_wins_over_footer_and_body() -> None:
    html = """
    <body>
      <header><nav><a href="https://github.com/acme/from-header">Code</a></nav></header>
      <main><a href="https://github.com/acme/from-body">Source</a></main>
      <footer><a href="https://github.com/acme/from-footer">GitHub</a></footer>
    </body>
    """
    assert resolve_first(SOURCE_CODE_CHAIN, _context(html)) == "https://github.com/acme/from-header"


def test_hinted_anchor_is_preferred_among_body_links() -> None:
    html = """
    <body><main>
      <a href="https://github.com/someone/unrelated">a fork we like</a>
      <a href="https://gitlab.com/acme/tool">View source code</a>
    </main></body>
    """
    assert resolve_first(SOURCE_CODE_CHAIN, _context(html)) == "https://gitlab.com/acme/tool"


def test_code_host_url_in_markup_is_last_resort() -> None:
    html = '<body><script>var repo = "https://github.com/acme/hidden";</script></body>'
    assert resolve_first(SOURCE_CODE_CHAIN, _context(html)) == "https://github.com/acme/hidden"


def test_repository_page_is_its_own_source_link() -> None:
    context = _context("<body></body>", base_url="https://github.com/acme/tool")
    assert resolve_first(SOURCE_CODE_CHAIN, context) == "https://github.com/acme/tool"


def test_documentation_chain_order() -> None:
    html = """
    <body>
      <a href="https://acme.readthedocs.io/en/latest/">Read the manual</a>
      <a href="/guide">User Guide</a>
      <a href="/product/docs/intro">Intro</a>
      <a href="https://docs.acme.dev/">Home</a>
    </body>
    """
    assert resolve_first(DOCUMENTATION_CHAIN, _context(html)) == "https://docs.acme.dev/"

    html = '<body><a href="/guide">User Guide</a><a href="/product/docs/intro">Intro</a></body>'
    assert resolve_first(DOCUMENTATION_CHAIN, _context(html)) == "https://tool.example.com/product/docs/intro"

    html = '<body><a href="https://acme.gitbook.io/x">Book</a><a href="/guide">User Guide</a></body>'
    assert resolve_first(DOCUMENTATION_CHAIN, _context(html)) == "https://tool.example.com/guide"

    html = '<body><a href="https://acme.gitbook.io/x">Book</a></body>'
    assert resolve_first(DOCUMENTATION_CHAIN, _context(html)) == "https://acme.gitbook.io/x"


def test_repository_description_overrides_parsed_page_description() -> None:
    html = """
    <head><meta property="og:description" content="Page blurb"></head>
    <body><p>First paragraph</p></body>
    """
    soup = BeautifulSoup(html, "lxml")

    metadata = WebMetadataExtractor().parse(soup, requested_url="https://tool.example.com/", final_url="https://tool.example.com/")
    with_repo = metadata.with_repository_description("Repository blurb")

    assert metadata.description == "Page blurb"
    assert with_repo.description == "Repository blurb"
    assert with_repo.page_description == "Page blurb"


def test_description_falls_back_to_first_paragraph() -> None:
    html = "<body><p>   </p><p>Fast  static site generator.</p></body>"
    metadata = WebMetadataExtractor().parse(
        BeautifulSoup(html, "lxml"),
        requested_url="https://tool.example.com/",
        final_url="https://tool.example.com/",
    )

    assert metadata.description == "Fast static site generator."
    assert metadata.title is None
