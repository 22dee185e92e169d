"""Ad and tracker blocking for scraped pages.

Requests are matched against the EasyList and EasyPrivacy filter lists
with the ``adblock`` engine. The lists are downloaded once, on first use.
If the download fails an empty engine is used, which blocks nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional

import adblock
import httpx

logger = logging.getLogger(__name__)

ADS_AND_TRACKING_LISTS = (
    "https://easylist.to/easylist/easylist.txt",
    "https://easylist.to/easylist/easyprivacy.txt",
)

# Playwright resource types that the filter syntax names differently.
_REQUEST_TYPES = {
    "xhr": "xmlhttprequest",
    "fetch": "xmlhttprequest",
    "eventsource": "other",
    "manifest": "other",
    "texttrack": "other",
}

_blocker_singleton: Optional["asyncio.Future[adblock.Engine]"] = None


def build_blocker(filter_lists: Iterable[str]) -> adblock.Engine:
    """Compile raw filter lists into an :class:`adblock.Engine`."""
    filter_set = adblock.FilterSet()
    for rules in filter_lists:
        filter_set.add_filter_list(rules)
    return adblock.Engine(filter_set=filter_set)


async def load_blocker(
    urls: Iterable[str] = ADS_AND_TRACKING_LISTS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> adblock.Engine:
    """Download the filter lists at ``urls`` and build an engine from them.

    Any download failure is logged and results in an empty engine.
    """
    try:
        async with httpx.AsyncClient(
            timeout=30, follow_redirects=True, transport=transport
        ) as client:
            lists = []
            for url in urls:
                resp = await client.get(url)
                resp.raise_for_status()
                lists.append(resp.text)
    except httpx.HTTPError as exc:
        logger.error("Failed to load prebuilt ad and tracking lists: %r", exc)
        lists = []

    # Compiling tens of thousands of rules takes a moment.
    engine = await asyncio.to_thread(build_blocker, lists)
    logger.info("Ad blocker ready with %d filter lists", len(lists))
    return engine


async def get_blocker() -> adblock.Engine:
    """Return the shared engine, loading the filter lists on first use."""
    global _blocker_singleton

    if _blocker_singleton is None:
        _blocker_singleton = asyncio.ensure_future(load_blocker())
    try:
        return await asyncio.shield(_blocker_singleton)
    except Exception:
        _blocker_singleton = None
        raise


def is_blocked(
    engine: adblock.Engine,
    url: str,
    source_url: str,
    resource_type: str,
) -> bool:
    """Return True when ``url``, requested from ``source_url``, matches a block rule."""
    request_type = _REQUEST_TYPES.get(resource_type, resource_type)
    result = engine.check_network_urls(
        url=url, source_url=source_url, request_type=request_type
    )
    return bool(result.matched)
