"""
Redbook Automator - Browser Driver

The small set of browser capabilities both engines rely on, and a
Playwright implementation backed by a persistent browser profile.
"""

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Protocol, Sequence

from playwright.async_api import (
    Error as PlaywrightError,
    FileChooser,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from redbook.config import Settings, get_settings
from redbook.errors import DialogTimeout, NavigationFailure, TargetNotFound

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]

HIDE_WEBDRIVER_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
"""


class FileDialogHandle(Protocol):
    async def accept(self, files: Sequence[Path]) -> None:
        """Answer the intercepted dialog with every file at once."""


class Driver(Protocol):
    """Browser capabilities used by the extraction and publication engines."""

    async def navigate(self, address: str, wait_until: str = "networkidle") -> None: ...

    async def reload(self, wait_until: str = "networkidle") -> None: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def wait_for(self, script: str, timeout_ms: int, arg: Any = None) -> bool: ...

    def intercept_next_file_dialog(self, timeout_ms: int) -> Any:
        """Async context manager yielding a FileDialogHandle."""

    async def click(self, selector: str) -> bool: ...

    async def fill(self, selector: str, text: str, timeout_ms: int) -> None: ...

    async def exists(self, selector: str) -> bool: ...

    async def capture_frame(self, path: Path) -> Path | None: ...

    def current_address(self) -> str: ...

    async def raw_markup(self) -> str: ...


@dataclass(frozen=True)
class SessionProfile:
    """Directory holding the persistent browser identity (cookies, storage)."""

    path: Path

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionProfile":
        return cls(path=settings.profile_path)


class PlaywrightFileDialog:
    """File chooser intercepted by Playwright."""

    def __init__(self, event_info, timeout_ms: int) -> None:
        self._event_info = event_info
        self._timeout_ms = timeout_ms

    async def accept(self, files: Sequence[Path]) -> None:
        try:
            chooser: FileChooser = await self._event_info.value
        except PlaywrightTimeout as e:
            raise DialogTimeout(f"File dialog did not open within {self._timeout_ms}ms") from e
        await chooser.set_files([str(f) for f in files])


class PlaywrightDriver:
    """
    Driver backed by a Playwright persistent Chromium context.

    The session profile is passed in explicitly and is never cleared here;
    only an interactive login changes it.
    """

    def __init__(
        self,
        profile: SessionProfile,
        settings: Settings | None = None,
        headless: bool | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.profile = profile
        self.headless = self.settings.headless if headless is None else headless
        self._playwright = None
        self._context = None
        self._page = None

    async def __aenter__(self) -> "PlaywrightDriver":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Launch the browser on the persistent profile."""
        self.profile.path.mkdir(parents=True, exist_ok=True)
        logger.info(f"Launching browser with profile: {self.profile.path}")

        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.profile.path),
            headless=self.headless,
            viewport={
                "width": self.settings.viewport_width,
                "height": self.settings.viewport_height,
            },
            locale=self.settings.locale,
            user_agent=self.settings.user_agent,
            args=LAUNCH_ARGS,
        )
        await self._context.add_init_script(HIDE_WEBDRIVER_SCRIPT)

        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        self._page.set_default_timeout(self.settings.navigation_timeout)
        self._page.set_default_navigation_timeout(self.settings.navigation_timeout)

    async def close(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug(f"Browser context already closed: {e}")
            self._context = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    @property
    def page(self):
        if self._page is None:
            raise RuntimeError("Driver has not been started")
        return self._page

    async def navigate(self, address: str, wait_until: str = "networkidle") -> None:
        try:
            await self.page.goto(address, wait_until=wait_until, timeout=self.settings.navigation_timeout)
        except PlaywrightTimeout as e:
            raise NavigationFailure(f"Timed out loading {address}", timed_out=True) from e
        except PlaywrightError as e:
            raise NavigationFailure(f"Could not load {address}: {e}") from e

    async def reload(self, wait_until: str = "networkidle") -> None:
        try:
            await self.page.reload(wait_until=wait_until, timeout=self.settings.navigation_timeout)
        except PlaywrightTimeout as e:
            raise NavigationFailure("Timed out reloading page", timed_out=True) from e
        except PlaywrightError as e:
            raise NavigationFailure(f"Could not reload page: {e}") from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def wait_for(self, script: str, timeout_ms: int, arg: Any = None) -> bool:
        """Wait until the script returns a truthy value. Returns False on timeout."""
        try:
            await self.page.wait_for_function(script, arg=arg, timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            return False
        except PlaywrightError as e:
            # A navigation mid-wait destroys the execution context
            logger.debug(f"Wait interrupted: {e}")
            return False

    @asynccontextmanager
    async def intercept_next_file_dialog(self, timeout_ms: int) -> AsyncIterator[PlaywrightFileDialog]:
        """Arm the file chooser listener before the dialog is triggered."""
        async with self.page.expect_file_chooser(timeout=timeout_ms) as event_info:
            yield PlaywrightFileDialog(event_info, timeout_ms)

    async def click(self, selector: str) -> bool:
        locator = self.page.locator(selector).first
        try:
            if await locator.count() > 0 and await locator.is_visible():
                await locator.click()
                return True
        except PlaywrightError as e:
            logger.debug(f"Click failed for {selector}: {e}")
        return False

    async def fill(self, selector: str, text: str, timeout_ms: int) -> None:
        """Select everything in the field and overwrite it with text."""
        locator = self.page.locator(selector).first
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeout as e:
            raise TargetNotFound(f"No visible element for {selector}") from e

        await locator.click()
        shortcut = "Meta+A" if sys.platform == "darwin" else "Control+A"
        await self.page.keyboard.press(shortcut)
        await self.page.keyboard.press("Delete")
        await self.page.keyboard.insert_text(text)

    async def exists(self, selector: str) -> bool:
        try:
            return await self.page.locator(selector).count() > 0
        except PlaywrightError:
            return False

    async def capture_frame(self, path: Path) -> Path | None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(path))
            return path
        except (PlaywrightError, OSError) as e:
            logger.debug(f"Capture failed for {path}: {e}")
            return None

    def current_address(self) -> str:
        return self.page.url

    async def raw_markup(self) -> str:
        return await self.page.content()
