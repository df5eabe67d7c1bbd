"""
Unit tests for PlaywrightDriver.

The Playwright page is mocked; no browser is launched.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from redbook.automation.driver import PlaywrightDriver, PlaywrightFileDialog, SessionProfile
from redbook.errors import DialogTimeout, NavigationFailure, TargetNotFound


@pytest.fixture
def page():
    page = MagicMock()
    page.url = "https://creator.xiaohongshu.com/publish/publish"
    page.goto = AsyncMock()
    page.reload = AsyncMock()
    page.evaluate = AsyncMock(return_value=42)
    page.wait_for_function = AsyncMock()
    page.screenshot = AsyncMock()
    page.content = AsyncMock(return_value="<html></html>")
    page.keyboard.press = AsyncMock()
    page.keyboard.insert_text = AsyncMock()
    return page


@pytest.fixture
def pw_driver(settings, tmp_path, page):
    driver = PlaywrightDriver(SessionProfile(tmp_path / "profile"), settings=settings)
    driver._page = page
    return driver


def _locator(count=1, visible=True):
    locator = MagicMock()
    locator.count = AsyncMock(return_value=count)
    locator.is_visible = AsyncMock(return_value=visible)
    locator.click = AsyncMock()
    locator.wait_for = AsyncMock()
    return locator


class TestSessionProfile:
    def test_from_settings(self, settings):
        assert SessionProfile.from_settings(settings).path == Path(settings.profile_dir)


class TestPlaywrightDriver:
    """Tests for PlaywrightDriver with a mocked page."""

    def test_not_started(self, settings, tmp_path):
        driver = PlaywrightDriver(SessionProfile(tmp_path), settings=settings)
        with pytest.raises(RuntimeError):
            driver.current_address()

    def test_headless_override(self, settings, tmp_path):
        assert PlaywrightDriver(SessionProfile(tmp_path), settings=settings, headless=True).headless is True
        assert PlaywrightDriver(SessionProfile(tmp_path), settings=settings).headless is settings.headless

    @pytest.mark.asyncio
    async def test_navigate_timeout(self, pw_driver, page):
        page.goto.side_effect = PlaywrightTimeout("Timeout 60000ms exceeded")

        with pytest.raises(NavigationFailure) as exc_info:
            await pw_driver.navigate("https://example.com")

        assert exc_info.value.timed_out is True

    @pytest.mark.asyncio
    async def test_navigate_error(self, pw_driver, page):
        page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

        with pytest.raises(NavigationFailure) as exc_info:
            await pw_driver.navigate("https://example.invalid")

        assert exc_info.value.timed_out is False

    @pytest.mark.asyncio
    async def test_wait_for(self, pw_driver, page):
        assert await pw_driver.wait_for("() => true", 100) is True
        page.wait_for_function.side_effect = PlaywrightTimeout("timeout")
        assert await pw_driver.wait_for("() => false", 100) is False

    @pytest.mark.asyncio
    async def test_click(self, pw_driver, page):
        page.locator = Mock(return_value=Mock(first=_locator(count=1)))
        assert await pw_driver.click(".upload-container") is True

        page.locator = Mock(return_value=Mock(first=_locator(count=0)))
        assert await pw_driver.click(".upload-container") is False

    @pytest.mark.asyncio
    async def test_fill_overwrites(self, pw_driver, page):
        locator = _locator()
        page.locator = Mock(return_value=Mock(first=locator))

        await pw_driver.fill('input[placeholder*="标题"]', "新标题", 1000)

        locator.click.assert_awaited_once()
        page.keyboard.press.assert_any_await("Delete")
        page.keyboard.insert_text.assert_awaited_once_with("新标题")

    @pytest.mark.asyncio
    async def test_fill_missing_field(self, pw_driver, page):
        locator = _locator()
        locator.wait_for.side_effect = PlaywrightTimeout("timeout")
        page.locator = Mock(return_value=Mock(first=locator))

        with pytest.raises(TargetNotFound):
            await pw_driver.fill(".missing", "x", 10)

    @pytest.mark.asyncio
    async def test_capture_failure_ignored(self, pw_driver, page, tmp_path):
        page.screenshot.side_effect = PlaywrightError("Target closed")
        assert await pw_driver.capture_frame(tmp_path / "shots" / "a.png") is None

        page.screenshot.side_effect = None
        path = tmp_path / "shots" / "b.png"
        assert await pw_driver.capture_frame(path) == path

    @pytest.mark.asyncio
    async def test_markup_and_address(self, pw_driver):
        assert await pw_driver.raw_markup() == "<html></html>"
        assert pw_driver.current_address().endswith("/publish/publish")


class TestPlaywrightFileDialog:
    """Tests for the intercepted file dialog."""

    @pytest.mark.asyncio
    async def test_accept_sets_all_files(self):
        chooser = Mock()
        chooser.set_files = AsyncMock()

        async def value():
            return chooser

        event_info = Mock()
        event_info.value = value()

        await PlaywrightFileDialog(event_info, 100).accept([Path("a.png"), Path("b.png")])

        chooser.set_files.assert_awaited_once_with(["a.png", "b.png"])

    @pytest.mark.asyncio
    async def test_accept_timeout(self):
        async def value():
            raise PlaywrightTimeout("waiting for event filechooser")

        event_info = Mock()
        event_info.value = value()

        with pytest.raises(DialogTimeout):
            await PlaywrightFileDialog(event_info, 100).accept([Path("a.png")])


class TestStart:
    """Tests for browser launch."""

    @pytest.mark.asyncio
    async def test_launches_persistent_context(self, settings, tmp_path, page):
        context = MagicMock()
        context.pages = [page]
        context.add_init_script = AsyncMock()
        context.close = AsyncMock()
        playwright = MagicMock()
        playwright.chromium.launch_persistent_context = AsyncMock(return_value=context)
        playwright.stop = AsyncMock()
        starter = MagicMock()
        starter.start = AsyncMock(return_value=playwright)

        with patch("redbook.automation.driver.async_playwright", return_value=starter):
            async with PlaywrightDriver(SessionProfile(tmp_path / "profile"), settings=settings) as driver:
                assert driver.page is page

        kwargs = playwright.chromium.launch_persistent_context.await_args.kwargs
        assert kwargs["user_data_dir"] == str(tmp_path / "profile")
        assert (tmp_path / "profile").is_dir()
        context.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
