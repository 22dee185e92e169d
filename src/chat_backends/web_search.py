"""Web search by scraping a Google results page in a headless browser.

:func:`search_web_local` is the entry point. It never raises: any failure
to load or parse the page results in an empty list.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import parse_qs, quote, urljoin, urlsplit

from bs4 import BeautifulSoup
from playwright.async_api import Page, Response

from .browser import with_page
from .types import WebSearchSource
from .urls import is_url

logger = logging.getLogger(__name__)

SEARCH_ORIGIN = "https://www.google.com"
SEARCH_URL_TEMPLATE = SEARCH_ORIGIN + "/search?hl=en&q={query}"
REDIRECT_PREFIX = "/url?q="

# Characters left alone by JavaScript's encodeURIComponent.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def build_search_url(query: str) -> str:
    return SEARCH_URL_TEMPLATE.format(query=quote(query, safe=_URI_COMPONENT_SAFE))


def _redirect_target(href: str) -> Optional[str]:
    """Return the ``q`` target of an internal redirect link, if any."""
    if not href.startswith(REDIRECT_PREFIX) or "google.com/" in href:
        return None
    values = parse_qs(urlsplit(urljoin(SEARCH_ORIGIN, href)).query).get("q")
    return values[0] if values else None


def extract_links(html: str) -> List[WebSearchSource]:
    """Extract the result links of a Google results page.

    Only redirect anchors of the form ``/url?q=<target>&...`` are kept.
    Targets that are not absolute URLs are dropped, and duplicates are
    removed keeping the first occurrence.
    """
    document = BeautifulSoup(html, "html.parser")
    anchors = document.find_all("a")
    if not anchors:
        logger.warning("Webpage has no links")
        return []

    targets = []
    for anchor in anchors:
        target = _redirect_target(anchor.get("href") or "")
        if target and is_url(target):
            targets.append(target)

    return [WebSearchSource(link=link) for link in dict.fromkeys(targets)]


async def _page_content(page: Page, _response: Optional[Response]) -> str:
    return await page.content()


async def search_web_local(query: str) -> List[WebSearchSource]:
    """Search the web for ``query`` and return the result links.

    Args:
        query: Free-text search query.

    Returns:
        List[WebSearchSource]: Result links in page order, without
        duplicates. Empty when the page cannot be loaded or parsed.
    """
    url = build_search_url(query)
    try:
        html = await with_page(url, _page_content)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to fetch search results for %r", query)
        return []

    if not html:
        return []
    logger.debug("Fetched %d characters of HTML from %s", len(html), url)

    try:
        return extract_links(html)
    except Exception:  # noqa: BLE001
        logger.exception("Failed to parse search results for %r", query)
        return []
