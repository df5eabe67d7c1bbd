"""
Redbook Automator - Session State

Classifies the login state of the current page from a handful of signals.
The classification is recomputed every time it is needed; nothing is cached.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

from redbook.models import SessionState

logger = logging.getLogger(__name__)

# Login markers shown by the site
PHONE_LOGIN_TEXT = "手机号登录"
LOGIN_TITLE_WORD = "登录"
LOGIN_PATH_SEGMENT = "login"
PUBLISH_PATH_SEGMENT = "publish"

TITLE_SELECTORS = [".title", "#detail-title"]
LOGIN_CONTAINER_SELECTORS = [".login-container"]

READ_SIGNALS_SCRIPT = """
(args) => {
    const titleEl = args.titleSelectors
        .map(s => document.querySelector(s))
        .find(el => el);
    const loginEl = args.loginSelectors
        .map(s => document.querySelector(s))
        .find(el => el);
    return {
        url: window.location.href,
        documentTitle: document.title || '',
        bodyText: document.body ? document.body.innerText : '',
        hasLoginContainer: !!loginEl,
        noteTitle: titleEl ? titleEl.innerText : '',
    };
}
"""


@dataclass(frozen=True)
class PageSignals:
    """Observations of the live page used to derive the session state."""

    url: str = ""
    document_title: str = ""
    body_text: str = ""
    has_login_container: bool = False
    note_title: str = ""

    @property
    def has_note_title(self) -> bool:
        return is_valid_title(self.note_title)


def is_valid_title(text: str | None) -> bool:
    """A rendered title that is not the login prompt placeholder."""
    if not text:
        return False
    stripped = text.strip()
    return bool(stripped) and PHONE_LOGIN_TEXT not in stripped


def _url_path(url: str) -> str:
    try:
        return urlparse(url).path or ""
    except ValueError:
        return ""


def classify_session(
    signals: PageSignals,
    login_segment: str = LOGIN_PATH_SEGMENT,
    publish_segment: str = PUBLISH_PATH_SEGMENT,
) -> SessionState:
    """
    Derive the session state from page signals.

    Login markers take precedence over everything else: a page showing
    both a title and a login prompt is treated as logged out.
    """
    path = _url_path(signals.url)
    if (
        login_segment in path
        or signals.has_login_container
        or PHONE_LOGIN_TEXT in signals.body_text
        or LOGIN_TITLE_WORD in signals.document_title
    ):
        return SessionState.AUTHENTICATION_REQUIRED

    if signals.has_note_title or publish_segment in path:
        return SessionState.AUTHENTICATED

    return SessionState.UNKNOWN


async def read_page_signals(driver) -> PageSignals:
    """Collect page signals in one round trip. Failures yield empty signals."""
    try:
        raw = await driver.evaluate(
            READ_SIGNALS_SCRIPT,
            {
                "titleSelectors": TITLE_SELECTORS,
                "loginSelectors": LOGIN_CONTAINER_SELECTORS,
            },
        )
    except Exception as e:
        logger.debug(f"Could not read page signals: {e}")
        return PageSignals(url=_safe_address(driver))

    raw = raw or {}
    return PageSignals(
        url=raw.get("url") or _safe_address(driver),
        document_title=raw.get("documentTitle") or "",
        body_text=raw.get("bodyText") or "",
        has_login_container=bool(raw.get("hasLoginContainer")),
        note_title=raw.get("noteTitle") or "",
    )


def _safe_address(driver) -> str:
    try:
        return driver.current_address()
    except Exception:
        return ""


async def current_session_state(
    driver,
    login_segment: str = LOGIN_PATH_SEGMENT,
    publish_segment: str = PUBLISH_PATH_SEGMENT,
) -> SessionState:
    signals = await read_page_signals(driver)
    state = classify_session(signals, login_segment, publish_segment)
    logger.debug(f"Session state at {signals.url or '<unknown>'}: {state.value}")
    return state
