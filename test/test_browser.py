"""Tests for the browser session helper.

No browser is launched: contexts, pages and routes are mocks.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from chat_backends import browser, config, exit_handler
from chat_backends.adblocker import build_blocker

TRACKER_RULES = """
! Sample of EasyList and EasyPrivacy style rules
||doubleclick.net^
/track/pixel.js
"""


def _make_mock_page(cookie_buttons=0, frames=()):
    page = MagicMock()
    page.route = AsyncMock()
    page.goto = AsyncMock(return_value=MagicMock(status=200))
    page.content = AsyncMock(return_value="<html></html>")
    page.locator.return_value.count = AsyncMock(return_value=cookie_buttons)
    page.locator.return_value.first.click = AsyncMock()
    page.frames = list(frames)
    return page


def _make_mock_context(page):
    ctx = MagicMock()
    ctx.new_page = AsyncMock(return_value=page)
    ctx.close = AsyncMock()
    return ctx


@pytest.fixture
def mock_context(monkeypatch):
    monkeypatch.setattr(config, "PLAYWRIGHT_ADBLOCKER", False)
    page = _make_mock_page()
    ctx = _make_mock_context(page)
    monkeypatch.setattr(browser, "_new_context", AsyncMock(return_value=ctx))
    return ctx, page


def _make_route(url, resource_type="document", parent_frame=None, referer=None):
    route = MagicMock()
    route.request.url = url
    route.request.headers = {"referer": referer} if referer else {}
    route.request.resource_type = resource_type
    route.request.frame.parent_frame = parent_frame
    route.abort = AsyncMock()
    route.continue_ = AsyncMock()
    return route


@pytest.mark.asyncio
async def test_with_page_returns_callback_result(mock_context):
    ctx, page = mock_context

    async def callback(p, response):
        assert p is page
        assert response.status == 200
        return await p.content()

    assert await browser.with_page("https://example.com", callback) == "<html></html>"
    page.goto.assert_awaited_once()
    assert page.goto.await_args.kwargs["wait_until"] == "domcontentloaded"
    page.route.assert_awaited_once()
    ctx.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_with_page_closes_context_when_callback_raises(mock_context):
    ctx, _page = mock_context

    async def callback(p, response):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await browser.with_page("https://example.com", callback)
    ctx.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_navigation_failure_passes_no_response(mock_context):
    ctx, page = mock_context
    page.goto.side_effect = PlaywrightError("Timeout 10000ms exceeded")
    seen = []

    async def callback(p, response):
        seen.append(response)
        return "partial"

    assert await browser.with_page("https://slow.example", callback) == "partial"
    assert seen == [None]
    ctx.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_new_page_failure_still_closes_context(mock_context):
    ctx, _page = mock_context
    ctx.new_page.side_effect = PlaywrightError("Target closed")

    with pytest.raises(PlaywrightError):
        await browser.with_page("https://example.com", AsyncMock())
    ctx.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_dismisses_call_to_action_cookie_button():
    page = _make_mock_page(cookie_buttons=1)

    await browser.dismiss_cookie_banner(page)

    page.locator.assert_called_with("button.call-to-action")
    page.locator.return_value.first.click.assert_awaited_once()
    page.expect_navigation.assert_called_once_with(wait_until="domcontentloaded")


@pytest.mark.asyncio
async def test_dismisses_consent_frame():
    other = MagicMock(url="https://www.google.com/search")
    consent = MagicMock(url="https://consent.google.com/ml?continue=x")
    consent.click = AsyncMock()
    page = _make_mock_page(frames=[other, consent])

    await browser.dismiss_cookie_banner(page)

    consent.click.assert_awaited_once_with('button[aria-label="Reject all"]')


@pytest.mark.asyncio
async def test_cookie_banner_errors_are_ignored():
    page = _make_mock_page(cookie_buttons=1)
    page.locator.return_value.first.click.side_effect = PlaywrightError("not visible")

    await browser.dismiss_cookie_banner(page)


@pytest.mark.asyncio
async def test_plain_http_requests_are_aborted():
    route = _make_route("http://tracker.example/pixel")

    await browser.request_filter()(route)

    route.abort.assert_awaited_once()
    route.continue_.assert_not_awaited()


@pytest.mark.asyncio
async def test_https_requests_continue_without_blocker():
    route = _make_route("https://www.google.com/search?q=x", resource_type="image")

    await browser.request_filter(None)(route)

    route.continue_.assert_awaited_once()
    route.abort.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("resource_type", ["image", "font", "media"])
async def test_blocker_aborts_heavy_resources(resource_type):
    route = _make_route("https://cdn.example/asset", resource_type=resource_type)

    await browser.request_filter(build_blocker([]))(route)

    route.abort.assert_awaited_once()


@pytest.mark.asyncio
async def test_blocker_aborts_listed_trackers():
    blocker = build_blocker([TRACKER_RULES])
    page_url = "https://www.google.com/search?q=x"

    tracker = _make_route(
        "https://stats.doubleclick.net/collect?v=1", resource_type="script", referer=page_url
    )
    await browser.request_filter(blocker)(tracker)
    tracker.abort.assert_awaited_once()

    pixel = _make_route(
        "https://metrics.example/track/pixel.js", resource_type="xhr", referer=page_url
    )
    await browser.request_filter(blocker)(pixel)
    pixel.abort.assert_awaited_once()

    regular = _make_route(
        "https://www.gstatic.com/search/app.js", resource_type="script", referer=page_url
    )
    await browser.request_filter(blocker)(regular)
    regular.continue_.assert_awaited_once()
    regular.abort.assert_not_awaited()


@pytest.mark.asyncio
async def test_blocker_blocks_scripts_only_without_javascript(monkeypatch):
    blocker = build_blocker([])

    monkeypatch.setattr(config, "WEBSEARCH_JAVASCRIPT", True)
    allowed = _make_route("https://cdn.example/app.js", resource_type="script")
    await browser.request_filter(blocker)(allowed)
    allowed.continue_.assert_awaited_once()

    monkeypatch.setattr(config, "WEBSEARCH_JAVASCRIPT", False)
    blocked = _make_route("https://cdn.example/app.js", resource_type="script")
    await browser.request_filter(blocker)(blocked)
    blocked.abort.assert_awaited_once()


@pytest.mark.asyncio
async def test_blocker_blocks_subframes_but_not_main_document():
    blocker = build_blocker([])

    main = _make_route("https://www.google.com/search?q=x", parent_frame=None)
    await browser.request_filter(blocker)(main)
    main.continue_.assert_awaited_once()

    subframe = _make_route("https://ads.example/frame", parent_frame=MagicMock())
    await browser.request_filter(blocker)(subframe)
    subframe.abort.assert_awaited_once()


@pytest.mark.asyncio
async def test_open_page_installs_blocker_when_enabled(mock_context, monkeypatch):
    _ctx, page = mock_context
    engine = build_blocker([TRACKER_RULES])
    monkeypatch.setattr(config, "PLAYWRIGHT_ADBLOCKER", True)
    monkeypatch.setattr(browser, "get_blocker", AsyncMock(return_value=engine))

    async with browser.open_page("https://www.google.com/search?q=x"):
        pass

    handler = page.route.await_args.args[1]
    route = _make_route("https://ad.doubleclick.net/ad.js", resource_type="script")
    await handler(route)
    route.abort.assert_awaited_once()


@pytest.mark.unit
def test_context_options_use_large_desktop_profile():
    playwright = MagicMock()
    playwright.devices = {
        "Desktop Chrome": {
            "user_agent": "Mozilla/5.0",
            "viewport": {"width": 1280, "height": 720},
            "device_scale_factor": 1,
            "is_mobile": False,
            "has_touch": False,
            "default_browser_type": "chromium",
        }
    }

    options = browser.context_options(playwright)

    assert options["viewport"] == {"width": 3840, "height": 1080}
    assert options["screen"] == {"width": 3840, "height": 1080}
    assert options["user_agent"] == "Mozilla/5.0"
    assert options["accept_downloads"] is False
    assert options["reduced_motion"] == "reduce"
    assert "default_browser_type" not in options


@pytest.mark.asyncio
async def test_disconnect_resets_browser_singleton(monkeypatch):
    launched = []

    async def fake_launch():
        b = MagicMock(name=f"browser{len(launched)}")
        launched.append(b)
        return b

    monkeypatch.setattr(browser, "_browser_singleton", None)
    monkeypatch.setattr(browser, "_launch_browser", fake_launch)

    first = await browser.get_browser()
    assert await browser.get_browser() is first
    assert len(launched) == 1

    browser._on_disconnected(first)
    second = await browser.get_browser()

    assert second is not first
    assert len(launched) == 2


def _fake_playwright(browsers):
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(side_effect=browsers)
    playwright.stop = AsyncMock()
    manager = MagicMock()
    manager.start = AsyncMock(return_value=playwright)
    return manager, playwright


def _fake_browser(version):
    b = MagicMock(version=version)
    b.close = AsyncMock()
    return b


@pytest.fixture
def fresh_browser_state(monkeypatch):
    monkeypatch.setattr(browser, "_browser_singleton", None)
    monkeypatch.setattr(browser, "_playwright", None)
    monkeypatch.setattr(exit_handler, "_handlers", [])


@pytest.mark.asyncio
async def test_relaunch_registers_teardown_once(monkeypatch, fresh_browser_state):
    first, second = _fake_browser("1"), _fake_browser("2")
    manager, playwright = _fake_playwright([first, second])
    monkeypatch.setattr(browser, "async_playwright", lambda: manager)

    assert await browser.get_browser() is first
    browser._on_disconnected(first)
    assert await browser.get_browser() is second

    assert len(exit_handler._handlers) == 1
    await exit_handler.run_exit_handlers()

    second.close.assert_awaited_once()
    first.close.assert_not_awaited()
    playwright.stop.assert_awaited_once()
    assert browser._browser_singleton is None


@pytest.mark.asyncio
async def test_stale_disconnect_keeps_new_browser(monkeypatch, fresh_browser_state):
    first, second = _fake_browser("1"), _fake_browser("2")
    manager, _playwright = _fake_playwright([first, second])
    monkeypatch.setattr(browser, "async_playwright", lambda: manager)

    await browser.get_browser()
    browser._on_disconnected(first)
    await browser.get_browser()
    browser._on_disconnected(first)

    assert await browser.get_browser() is second


@pytest.mark.asyncio
async def test_failed_launch_is_not_cached(monkeypatch, fresh_browser_state):
    manager = MagicMock()
    manager.start = AsyncMock(side_effect=OSError("driver missing"))
    monkeypatch.setattr(browser, "async_playwright", lambda: manager)

    with pytest.raises(OSError):
        await browser.get_browser()
    assert browser._browser_singleton is None

    ok = _fake_browser("1")
    manager, _playwright = _fake_playwright([ok])
    monkeypatch.setattr(browser, "async_playwright", lambda: manager)

    assert await browser.get_browser() is ok
