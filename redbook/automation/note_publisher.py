"""
Redbook Automator - Note Publisher

Fills the creator center publish form with a draft and its images.

The publisher never submits. A successful run leaves the filled form open
so a person can review it and press publish.

Upload protocol (one attempt):
    1. switch to the image tab (label match, then tab position),
    2. arm the file dialog listener, then click the upload trigger,
    3. hand the dialog every asset in one go,
    4. give the site a fixed settle interval,
    5. re-check the session; a login redirect ends the attempt,
    6. look for upload previews (their absence is only a warning).

Attempts are retried up to the configured budget. A login redirect does
not count against the budget: the publisher waits for a manual login and
runs the attempt again.
"""

import asyncio
import logging
from pathlib import Path
from typing import Sequence

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from redbook.automation.session import current_session_state
from redbook.automation.strategies import first_result, run_best_effort
from redbook.config import Settings, get_settings
from redbook.errors import DialogTimeout, SessionExpired, TargetNotFound
from redbook.models import (
    Draft,
    PublicationResult,
    SessionState,
    UploadFailureReason,
    UploadOutcome,
)

logger = logging.getLogger(__name__)

# Publish page - ordered fallback selectors
TAB_LABELS = ["上传图文", "图文"]
GENERIC_TAB_SELECTOR = '.creator-tab, .tab, [role="tab"]'
IMAGE_TAB_POSITION = 1
UPLOAD_TRIGGER_TEXTS = ["点击上传", "拖拽"]
UPLOAD_TRIGGER_SELECTORS = [
    ".upload-input",
    ".upload-wrapper",
    ".upload-container",
    ".file-picker",
]
THUMBNAIL_SELECTORS = [
    ".img-preview-area img",
    ".image-item",
    ".upload-item img",
    ".preview img",
]
TITLE_FIELD_SELECTORS = [
    'input[placeholder*="标题"]',
    ".title-input input",
    ".d-text",
]
CONTENT_FIELD_SELECTORS = [
    "#post-textarea",
    ".ql-editor",
    ".c-editor",
    'div[contenteditable="true"]',
]

CLICK_BY_TEXT_SCRIPT = """
(args) => {
    const elements = Array.from(document.querySelectorAll('div, span, li, button, a, p, .title'));
    for (const label of args.labels) {
        const matches = elements.filter(el => {
            const text = el.innerText ? el.innerText.trim() : '';
            return args.exact ? text === label : text.includes(label);
        });
        // Innermost match: no other match nested inside it
        const target = matches.find(el => !matches.some(other => other !== el && el.contains(other)));
        if (target) {
            target.click();
            return label;
        }
    }
    return null;
}
"""

CLICK_NTH_SCRIPT = """
(args) => {
    const elements = document.querySelectorAll(args.selector);
    if (elements.length > args.index) {
        elements[args.index].click();
        return true;
    }
    return false;
}
"""

ANY_SELECTOR_SCRIPT = """
(args) => args.selectors.some(s => document.querySelector(s))
"""


def _upload_failed(outcome: UploadOutcome) -> bool:
    return not outcome.success


def _last_outcome(retry_state) -> UploadOutcome:
    return retry_state.outcome.result()


class NotePublisher:
    """
    Publication engine for the creator center.

    Drives an already started Driver; the caller owns the browser session
    and decides when to close it after the human review.
    """

    def __init__(
        self,
        driver,
        settings: Settings | None = None,
        capture_dir: str | Path | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> None:
        """
        Initialize the publisher.

        Args:
            driver: Started browser driver.
            settings: Settings override. Defaults to get_settings().
            capture_dir: Directory for diagnostic captures. None disables them.
            abort_event: Set by the operator to cancel the manual login wait.
        """
        self.driver = driver
        self.settings = settings or get_settings()
        self.capture_dir = Path(capture_dir) if capture_dir else None
        self.abort_event = abort_event
        self.awaiting_login = False
        self._attempts = 0

    async def publish(self, draft: Draft, assets: Sequence[Path]) -> PublicationResult:
        """
        Upload assets and fill the form. Does not submit.

        Args:
            draft: Title and content to fill in.
            assets: Image files in on-page order.

        Returns:
            PublicationResult; filled is False when every upload attempt failed.

        Raises:
            ValueError: If there are no assets.
            NavigationFailure: If the publish page cannot be loaded.
            SessionExpired: If the operator aborts the login wait.
        """
        if not assets:
            raise ValueError("No images to publish")

        logger.info(f"Preparing to publish: {draft.title[:50]} ({len(assets)} images)")
        logger.info(f"Navigating to {self.settings.publish_url}...")
        await self.driver.navigate(self.settings.publish_url)
        await self._capture("debug_01_navigated.png")

        if await self._session_state() is SessionState.AUTHENTICATION_REQUIRED:
            logger.warning("Login session expired")
            await self._capture("debug_02_login_required.png")
            await self.await_manual_login()
            await self._capture("debug_03_logged_in.png")

        outcome = await self._upload_with_retries(assets)
        if not outcome.success:
            screenshot = await self._capture("debug_04_upload_failed.png")
            message = (
                f"Upload failed after {self._attempts} attempts "
                f"(last reason: {outcome.reason.value})"
            )
            logger.error(message)
            return PublicationResult(
                filled=False,
                attempts=self._attempts,
                error_message=message,
                screenshot_path=str(screenshot) if screenshot else None,
            )

        title_filled = await self.fill_title(draft.title)
        content_filled = await self.fill_content(draft.content)

        logger.info("Draft filled. Auto-publish is disabled: review the form and publish manually.")
        return PublicationResult(
            filled=True,
            attempts=self._attempts,
            title_filled=title_filled,
            content_filled=content_filled,
            thumbnails_seen=outcome.thumbnails_seen,
        )

    # ===========================================
    # Upload with retries
    # ===========================================

    async def _upload_with_retries(self, assets: Sequence[Path]) -> UploadOutcome:
        self._attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_upload_attempts),
            wait=wait_fixed(self.settings.retry_wait),
            retry=retry_if_result(_upload_failed),
            retry_error_callback=_last_outcome,
            before_sleep=self._log_retry,
        )
        return await retrying(self._attempt_until_logged_in, assets)

    def _log_retry(self, retry_state) -> None:
        outcome = retry_state.outcome.result()
        logger.warning(
            f"Upload attempt {retry_state.attempt_number} failed ({outcome.reason.value}); retrying"
        )

    async def _attempt_until_logged_in(self, assets: Sequence[Path]) -> UploadOutcome:
        """One counted attempt. Login redirects are resolved here and re-attempted."""
        self._attempts += 1
        logger.info(f"Upload attempt {self._attempts}/{self.settings.max_upload_attempts}")
        while True:
            outcome = await self.attempt_upload(assets)
            if outcome.reason is not UploadFailureReason.LOGIN_REDIRECT:
                return outcome
            logger.warning("Redirected to login during upload")
            await self.await_manual_login()

    async def attempt_upload(self, assets: Sequence[Path]) -> UploadOutcome:
        """Run the upload protocol once."""
        await self.switch_to_image_tab()

        try:
            async with self.driver.intercept_next_file_dialog(self.settings.dialog_timeout) as dialog:
                await self.trigger_file_dialog()
                await dialog.accept(list(assets))
        except TargetNotFound as e:
            logger.error(f"Upload trigger not found: {e}")
            return await self._failure(UploadFailureReason.NO_UPLOAD_TARGET)
        except DialogTimeout as e:
            logger.error(f"File dialog did not appear: {e}")
            return await self._failure(UploadFailureReason.NO_FILE_DIALOG)

        logger.info(f"Supplied {len(assets)} files; waiting for images to process...")
        await asyncio.sleep(self.settings.settle_interval)
        await self._capture("debug_05_uploaded.png")

        if await self._session_state() is SessionState.AUTHENTICATION_REQUIRED:
            return UploadOutcome.failed(UploadFailureReason.LOGIN_REDIRECT)

        thumbnails_seen = await self.has_thumbnails()
        if not thumbnails_seen:
            logger.warning("No upload preview detected; check the images before publishing")
        return UploadOutcome(success=True, thumbnails_seen=thumbnails_seen)

    async def _failure(self, reason: UploadFailureReason) -> UploadOutcome:
        await self._capture(f"debug_upload_{reason.value}.png")
        # A missing upload area is usually the login page
        if await self._session_state() is SessionState.AUTHENTICATION_REQUIRED:
            return UploadOutcome.failed(UploadFailureReason.LOGIN_REDIRECT)
        return UploadOutcome.failed(reason)

    async def switch_to_image_tab(self) -> bool:
        """Click the image tab, by label first and by position second."""

        async def by_label():
            return await self.driver.evaluate(
                CLICK_BY_TEXT_SCRIPT, {"labels": TAB_LABELS, "exact": True}
            ) or None

        async def by_position():
            return await self.driver.evaluate(
                CLICK_NTH_SCRIPT,
                {"selector": GENERIC_TAB_SELECTOR, "index": IMAGE_TAB_POSITION},
            ) or None

        clicked = await first_result(
            [("tab-label", by_label), ("tab-position", by_position)],
            label="image-tab",
        )
        if not clicked:
            logger.warning("Could not identify the image tab; assuming it is already active")
            return False

        logger.info("Switched to the image tab")
        await asyncio.sleep(self.settings.tab_switch_pause)
        return True

    async def trigger_file_dialog(self) -> str:
        """
        Click the upload area to open the file dialog.

        Raises:
            TargetNotFound: If no trigger matches.
        """

        async def by_text():
            return await self.driver.evaluate(
                CLICK_BY_TEXT_SCRIPT, {"labels": UPLOAD_TRIGGER_TEXTS, "exact": False}
            ) or None

        async def by_selector():
            for selector in UPLOAD_TRIGGER_SELECTORS:
                if await self.driver.click(selector):
                    return selector
            return None

        trigger = await first_result(
            [("upload-text", by_text), ("upload-selector", by_selector)],
            label="upload-trigger",
        )
        if not trigger:
            raise TargetNotFound("No upload trigger matched")
        logger.debug(f"Clicked upload trigger: {trigger}")
        return trigger

    async def has_thumbnails(self) -> bool:
        for selector in THUMBNAIL_SELECTORS:
            if await self.driver.exists(selector):
                return True
        return False

    # ===========================================
    # Manual login
    # ===========================================

    def _is_publish_address(self, address: str) -> bool:
        return (
            self.settings.publish_path_segment in address
            and self.settings.login_path_segment not in address
        )

    async def _is_logged_in(self) -> bool:
        """Back on the publish page and no login wall rendered over it."""
        if not self._is_publish_address(self.driver.current_address()):
            return False
        return await self._session_state() is not SessionState.AUTHENTICATION_REQUIRED

    async def await_manual_login(self) -> None:
        """
        Wait for the operator to log in, then reload the publish page.

        Polls until the publish page is shown without a login wall. Waits
        indefinitely unless login_wait_timeout is set or abort_event fires.

        Raises:
            SessionExpired: If the wait is aborted or times out.
        """
        logger.warning("ACTION REQUIRED: please log in manually in the browser window. Waiting...")
        loop = asyncio.get_running_loop()
        timeout = self.settings.login_wait_timeout
        deadline = loop.time() + timeout if timeout > 0 else None

        self.awaiting_login = True
        try:
            while True:
                if self.abort_event is not None and self.abort_event.is_set():
                    raise SessionExpired("Login wait aborted by operator")
                if await self._is_logged_in():
                    break
                if deadline is not None and loop.time() >= deadline:
                    raise SessionExpired(f"No login within {timeout:.0f}s")
                await self._pause(self.settings.login_poll_interval)
        finally:
            self.awaiting_login = False

        logger.info("Login detected; reloading the publish page")
        await self.driver.reload()

    async def _pause(self, seconds: float) -> None:
        """Sleep, waking early if the abort event fires."""
        if self.abort_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self.abort_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ===========================================
    # Form fill
    # ===========================================

    async def fill_title(self, title: str) -> bool:
        logger.info("Filling title...")
        return await self._fill_first(TITLE_FIELD_SELECTORS, title, "title")

    async def fill_content(self, content: str) -> bool:
        logger.info("Filling content...")
        return await self._fill_first(CONTENT_FIELD_SELECTORS, content, "content")

    async def _fill_first(self, selectors: list[str], text: str, label: str) -> bool:
        """Overwrite the first matching field. Failure is logged, not raised."""
        await self.driver.wait_for(
            ANY_SELECTOR_SCRIPT, self.settings.field_timeout, {"selectors": selectors}
        )
        for selector in selectors:
            if not await self.driver.exists(selector):
                continue
            try:
                await self.driver.fill(selector, text, self.settings.field_timeout)
            except TargetNotFound as e:
                logger.debug(f"{label} field {selector} not usable: {e}")
                continue
            await self._capture(f"debug_{label}_filled.png")
            return True

        logger.warning(f"Could not find the {label} field; fill it in manually")
        await self._capture(f"debug_{label}_fail.png")
        return False

    # ===========================================
    # Helpers
    # ===========================================

    async def _session_state(self) -> SessionState:
        return await current_session_state(
            self.driver,
            login_segment=self.settings.login_path_segment,
            publish_segment=self.settings.publish_path_segment,
        )

    async def _capture(self, name: str) -> Path | None:
        if self.capture_dir is None:
            return None
        return await run_best_effort(
            lambda: self.driver.capture_frame(self.capture_dir / name),
            f"Capture {name}",
        )
