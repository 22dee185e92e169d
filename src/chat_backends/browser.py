"""Shared headless Chromium and scoped pages for scraping.

This module keeps one Chromium process per Python process, started lazily
on first use and started again if it disconnects. Every scrape gets its own
browser context, opened by :func:`open_page` and closed on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple, TypeVar

import adblock
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    Response,
    Route,
    async_playwright,
)

from . import config
from .adblocker import get_blocker, is_blocked
from .exit_handler import on_exit

logger = logging.getLogger(__name__)

T = TypeVar("T")
RouteHandler = Callable[[Route], Awaitable[None]]

DEVICE_NAME = "Desktop Chrome"
# Increasing width improves spatial clustering of the rendered results.
SCREEN_SIZE = {"width": 3840, "height": 1080}

CONSENT_ORIGIN = "https://consent.google.com"
COOKIE_BUTTON_SELECTOR = "button.call-to-action"
REJECT_ALL_SELECTOR = 'button[aria-label="Reject all"]'

BLOCKED_RESOURCE_TYPES = frozenset({"font", "media", "image"})

_playwright: Optional[Playwright] = None
_browser_singleton: Optional["asyncio.Future[Browser]"] = None


async def _launch_browser() -> Browser:
    global _playwright

    if _playwright is None:
        _playwright = await async_playwright().start()
        on_exit(_shutdown)

    browser = await _playwright.chromium.launch(headless=True)
    browser.on("disconnected", _on_disconnected)
    logger.info("Chromium started (version=%s)", browser.version)
    return browser


def _current_browser() -> Optional[Browser]:
    fut = _browser_singleton
    if fut is None or not fut.done() or fut.cancelled() or fut.exception() is not None:
        return None
    return fut.result()


async def _shutdown() -> None:
    """Close the shared browser and stop the Playwright driver."""
    global _playwright, _browser_singleton

    browser = _current_browser()
    _browser_singleton = None
    if browser is not None:
        await browser.close()
    if _playwright is not None:
        await _playwright.stop()
        _playwright = None


def _on_disconnected(browser: Browser) -> None:
    global _browser_singleton

    logger.warning("Browser closed")
    current = _current_browser()
    # A browser launched after this one stays in place.
    if current is None or current is browser:
        _browser_singleton = None


async def get_browser() -> Browser:
    """Return the shared browser, launching it on first use."""
    global _browser_singleton

    if _browser_singleton is None:
        _browser_singleton = asyncio.ensure_future(_launch_browser())
    try:
        return await asyncio.shield(_browser_singleton)
    except Exception:
        _browser_singleton = None
        raise


def context_options(playwright: Playwright) -> dict:
    """Return the browser context options of a large-screen desktop profile."""
    device = {
        k: v
        for k, v in playwright.devices[DEVICE_NAME].items()
        if k != "default_browser_type"
    }
    return {
        **device,
        "screen": dict(SCREEN_SIZE),
        "viewport": dict(SCREEN_SIZE),
        "reduced_motion": "reduce",
        "accept_downloads": False,
        "timezone_id": "America/New_York",
        "locale": "en-US",
    }


def _blocked_resource_types() -> frozenset:
    if not config.WEBSEARCH_JAVASCRIPT:
        return BLOCKED_RESOURCE_TYPES | {"script"}
    return BLOCKED_RESOURCE_TYPES


def request_filter(blocker: Optional[adblock.Engine] = None) -> RouteHandler:
    """Build the route handler installed on every scraped page.

    Plain-HTTP requests are always aborted. With a ``blocker``, fonts,
    media, images and sub-frames are aborted too (scripts as well when
    JavaScript is disabled), along with every request matching the ad and
    tracker filter lists.
    """

    async def _filter_request(route: Route) -> None:
        request = route.request
        if not request.url.startswith("https://"):
            logger.warning("Blocked request to: %s", request.url)
            await route.abort()
            return

        if blocker is not None:
            resource_type = request.resource_type
            if resource_type in _blocked_resource_types():
                await route.abort()
                return
            # Sub-frames only; the main document is a frame too.
            if resource_type == "document" and request.frame.parent_frame is not None:
                await route.abort()
                return

            source_url = request.headers.get("referer") or request.url
            if is_blocked(blocker, request.url, source_url, resource_type):
                logger.debug("Blocked ad or tracker: %s", request.url)
                await route.abort()
                return

        await route.continue_()

    return _filter_request


async def dismiss_cookie_banner(page: Page) -> None:
    """Try to get rid of a cookie consent banner.

    Two layouts are handled: a plain call-to-action button on the page, or
    a "Reject all" button inside a frame served from the consent origin.
    Failures are logged and ignored.
    """
    try:
        cookie_button = page.locator(COOKIE_BUTTON_SELECTOR)
        if await cookie_button.count() > 0:
            async with page.expect_navigation(wait_until="domcontentloaded"):
                await cookie_button.first.click()
            return

        frame = next((f for f in page.frames if CONSENT_ORIGIN in f.url), None)
        if frame is not None:
            async with page.expect_navigation(wait_until="domcontentloaded"):
                await frame.click(REJECT_ALL_SELECTOR)
    except PlaywrightError as exc:
        logger.error("Failed to click cookie button: %s", exc)


async def _new_context() -> BrowserContext:
    browser = await get_browser()
    return await browser.new_context(**context_options(_playwright))


@asynccontextmanager
async def open_page(url: str) -> AsyncIterator[Tuple[Page, Optional[Response]]]:
    """Open ``url`` in a fresh browser context.

    Yields the page and the navigation response, which is ``None`` when the
    page failed to load within ``WEBSEARCH_TIMEOUT``. The context is closed
    when the block exits, including on errors.
    """
    blocker = await get_blocker() if config.PLAYWRIGHT_ADBLOCKER else None
    ctx = await _new_context()
    try:
        page = await ctx.new_page()
        await page.route("**/*", request_filter(blocker))

        response: Optional[Response] = None
        try:
            response = await page.goto(
                url, wait_until="domcontentloaded", timeout=config.WEBSEARCH_TIMEOUT
            )
        except PlaywrightError:
            logger.warning(
                "Failed to load page within %ss: %s", config.WEBSEARCH_TIMEOUT / 1000, url
            )

        await dismiss_cookie_banner(page)
        yield page, response
    finally:
        await ctx.close()


async def with_page(
    url: str,
    callback: Callable[[Page, Optional[Response]], Awaitable[T]],
) -> T:
    """Open ``url`` and return the result of ``callback(page, response)``."""
    async with open_page(url) as (page, response):
        return await callback(page, response)
