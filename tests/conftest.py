"""
Shared fixtures: an in-memory browser driver and fast settings.
"""

from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from redbook.automation.note_extractor import DOM_SNAPSHOT_SCRIPT
from redbook.automation.note_publisher import CLICK_BY_TEXT_SCRIPT, CLICK_NTH_SCRIPT
from redbook.automation.session import READ_SIGNALS_SCRIPT
from redbook.config import Settings
from redbook.errors import DialogTimeout, NavigationFailure, TargetNotFound

NOTE_URL = "https://www.xiaohongshu.com/explore/abc123"
PUBLISH_URL = "https://creator.xiaohongshu.com/publish/publish"
LOGIN_URL = "https://creator.xiaohongshu.com/login"

LOGGED_IN_NOTE = {"url": NOTE_URL, "documentTitle": "小红书", "noteTitle": "笔记标题"}
LOGIN_WALL = {"url": NOTE_URL, "documentTitle": "登录 - 小红书", "bodyText": "手机号登录"}
PUBLISH_PAGE = {"url": PUBLISH_URL, "documentTitle": "创作服务平台"}
LOGIN_PAGE = {"url": LOGIN_URL, "documentTitle": "登录", "hasLoginContainer": True}


class FakeDialog:
    def __init__(self, driver: "FakeDriver") -> None:
        self.driver = driver

    async def accept(self, files) -> None:
        if not self.driver.dialog_opens:
            raise DialogTimeout("no dialog")
        self.driver.accepted_files.append(list(files))


class FakeDriver:
    """
    Scriptable stand-in for PlaywrightDriver.

    Page signals are taken from a queue; the last entry stays current once
    the queue is drained.
    """

    def __init__(self) -> None:
        self.signals = [dict(LOGGED_IN_NOTE)]
        self.addresses: list[str] = []
        self.markup = ""
        self.dom_snapshot: dict | None = {}
        self.wait_results: dict[str, bool] = {}
        self.navigate_error: Exception | None = None
        self.markup_error: Exception | None = None

        self.tab_label: str | None = "上传图文"
        self.tab_by_position = False
        self.upload_text: str | None = "点击上传"
        self.clickable: set[str] = set()
        self.existing: set[str] = set()
        self.fillable: set[str] = set()
        self.dialog_opens = True

        self.navigations: list[str] = []
        self.reloads = 0
        self.evaluated: list[str] = []
        self.accepted_files: list[list[Path]] = []
        self.filled: dict[str, str] = {}
        self.captures: list[Path] = []

    def _next_signals(self) -> dict:
        if len(self.signals) > 1:
            return self.signals.pop(0)
        return self.signals[0]

    async def navigate(self, address: str, wait_until: str = "networkidle") -> None:
        self.navigations.append(address)
        if self.navigate_error:
            raise self.navigate_error

    async def reload(self, wait_until: str = "networkidle") -> None:
        self.reloads += 1

    async def evaluate(self, script: str, arg=None):
        self.evaluated.append(script)
        if script == READ_SIGNALS_SCRIPT:
            return self._next_signals()
        if script == DOM_SNAPSHOT_SCRIPT:
            return self.dom_snapshot
        if script == CLICK_BY_TEXT_SCRIPT:
            return self.tab_label if arg["exact"] else self.upload_text
        if script == CLICK_NTH_SCRIPT:
            return self.tab_by_position
        raise AssertionError("unexpected script")

    async def wait_for(self, script: str, timeout_ms: int, arg=None) -> bool:
        return self.wait_results.get(script, True)

    @asynccontextmanager
    async def intercept_next_file_dialog(self, timeout_ms: int):
        yield FakeDialog(self)

    async def click(self, selector: str) -> bool:
        return selector in self.clickable

    async def fill(self, selector: str, text: str, timeout_ms: int) -> None:
        if selector not in self.fillable:
            raise TargetNotFound(selector)
        self.filled[selector] = text

    async def exists(self, selector: str) -> bool:
        return selector in self.existing

    async def capture_frame(self, path: Path) -> Path | None:
        self.captures.append(path)
        return path

    def current_address(self) -> str:
        if self.addresses:
            if len(self.addresses) > 1:
                return self.addresses.pop(0)
            return self.addresses[0]
        return self.signals[0].get("url", "")

    async def raw_markup(self) -> str:
        if self.markup_error:
            raise self.markup_error
        return self.markup


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ready_timeout=10,
        manual_login_window=10,
        refresh_pause=0,
        settle_interval=0,
        retry_wait=0,
        login_poll_interval=0,
        tab_switch_pause=0,
        field_timeout=10,
        dialog_timeout=10,
    )


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def navigation_error() -> NavigationFailure:
    return NavigationFailure("net::ERR_NAME_NOT_RESOLVED")
