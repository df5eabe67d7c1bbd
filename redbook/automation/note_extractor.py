"""
Redbook Automator - Note Extractor

Reads a note (title, description, tags, images) from a live note page.

The page embeds its initial state as a script blob whose layout changes
between page variants, and may show a login wall instead of the note.
Extraction therefore runs an ordered fallback chain:

1. wait for the page to render (or for the login wall),
2. give the operator a bounded window to log in manually,
3. read the embedded state blob and probe it for a note-shaped node,
4. fill any gaps from the rendered DOM,
5. normalize the merged image list.

A page that yields nothing still produces an empty NoteContent; only a
page that never loads raises.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Iterator

from redbook.automation.session import (
    LOGIN_TITLE_WORD,
    PHONE_LOGIN_TEXT,
    TITLE_SELECTORS,
    current_session_state,
)
from redbook.automation.strategies import first_result, run_best_effort
from redbook.config import Settings, get_settings
from redbook.errors import ExtractionError, ExtractionErrorKind, NavigationFailure
from redbook.models import NoteCandidate, NoteContent, SessionState

logger = logging.getLogger(__name__)

# Ordered: first pattern that matches wins
STATE_PATTERNS = [
    re.compile(r"<script>window\.__INITIAL_STATE__\s*=\s*(.+?)</script>", re.S),
    re.compile(r"window\.__INITIAL_STATE__\s*=\s*(\{.+?\});", re.S),
    re.compile(r"__INITIAL_STATE__\s*=\s*(\{.+?\});", re.S),
]

UNDEFINED_LITERAL = re.compile(r"(?<=[:,\[])(\s*)undefined(?=\s*[,}\]])")
CSS_URL = re.compile(r"""url\(\s*(['"]?)(.*?)\1\s*\)""", re.S)

IMAGE_URL_FIELDS = ("urlOriginal", "urlDefault", "url")

DESCRIPTION_SELECTORS = [".desc", "#detail-desc"]
TAG_SELECTORS = [".tag", "#detail-tag"]
SLIDE_SELECTOR = ".swiper-slide"
CONTENT_IMAGE_SELECTORS = [".note-content img", ".media-container img", "main img"]

READY_SCRIPT = """
(args) => {
    const title = args.titleSelectors
        .map(s => document.querySelector(s))
        .find(el => el);
    const bodyText = document.body ? document.body.innerText : '';
    if (bodyText.includes(args.phoneLogin) || document.title.includes(args.loginWord)) {
        return true;
    }
    if (window.__INITIAL_STATE__ && window.__INITIAL_STATE__.note) {
        return true;
    }
    return !!(title && title.innerText.trim().length > 0 && !title.innerText.includes(args.phoneLogin));
}
"""

LOGGED_IN_SCRIPT = """
(args) => {
    const title = args.titleSelectors
        .map(s => document.querySelector(s))
        .find(el => el);
    return !!(title && title.innerText.trim().length > 0 && !title.innerText.includes(args.phoneLogin));
}
"""

DOM_SNAPSHOT_SCRIPT = """
(args) => {
    const firstText = (selectors) => {
        for (const s of selectors) {
            const el = document.querySelector(s);
            if (el) return el.innerText || '';
        }
        return '';
    };
    const tags = Array.from(document.querySelectorAll(args.tagSelectors.join(', ')))
        .map(el => el.innerText || '');
    const slides = Array.from(document.querySelectorAll(args.slideSelector)).map(slide => {
        const span = slide.querySelector('span');
        const style = window.getComputedStyle(span || slide);
        return style.backgroundImage || '';
    });
    const images = Array.from(document.querySelectorAll(args.imageSelectors.join(', '))).map(img => ({
        src: img.src || '',
        width: img.width || img.naturalWidth || 0,
        height: img.height || img.naturalHeight || 0,
    }));
    return {
        title: firstText(args.titleSelectors),
        description: firstText(args.descriptionSelectors),
        tags: tags,
        slides: slides,
        images: images,
    };
}
"""


# ===========================================
# Embedded state
# ===========================================

def find_state_blob(markup: str) -> str | None:
    """Return the raw initial-state text from page markup, if any."""
    for pattern in STATE_PATTERNS:
        match = pattern.search(markup)
        if match and match.group(1):
            return match.group(1).strip().rstrip(";").strip()
    return None


def repair_state_blob(blob: str) -> str:
    """Replace bare undefined literals, which are not valid JSON, with null."""
    return UNDEFINED_LITERAL.sub(r"\1null", blob)


def parse_state_blob(blob: str) -> Any | None:
    try:
        return json.loads(repair_state_blob(blob))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Failed to parse initial state: {e}")
        return None


def is_note_shaped(node: Any) -> bool:
    """A node exposing title, desc and an imageList array."""
    return (
        isinstance(node, dict)
        and "title" in node
        and "desc" in node
        and isinstance(node.get("imageList"), list)
    )


def iter_note_nodes(tree: Any) -> Iterator[dict]:
    """
    Walk a parsed state tree depth-first and yield every note-shaped node.

    Matching does not depend on key names above the node, only on its shape.
    The children of a matched node are not searched.
    """
    stack = [tree]
    while stack:
        node = stack.pop()
        if is_note_shaped(node):
            yield node
            continue
        if isinstance(node, dict):
            stack.extend(reversed(list(node.values())))
        elif isinstance(node, list):
            stack.extend(reversed(node))


def probe_note_shape(tree: Any) -> dict | None:
    """Return the first note-shaped node in the tree."""
    return next(iter_note_nodes(tree), None)


def _note_identity(node: dict) -> str:
    for key in ("noteId", "id"):
        value = node.get(key)
        if value:
            return str(value)
    return json.dumps([node.get("title"), node.get("desc")], ensure_ascii=False)


def pick_image_url(entry: Any) -> str | None:
    """Prefer the original resolution, then the default one, then any url."""
    if isinstance(entry, str):
        return entry or None
    if not isinstance(entry, dict):
        return None
    for key in IMAGE_URL_FIELDS:
        value = entry.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def candidate_from_note(node: dict) -> NoteCandidate:
    tags = []
    for tag in node.get("tagList") or []:
        name = tag.get("name") if isinstance(tag, dict) else None
        if isinstance(name, str) and name:
            tags.append(name)

    image_urls = []
    for entry in node.get("imageList") or []:
        url = pick_image_url(entry)
        if url:
            image_urls.append(url)

    return NoteCandidate(
        source="initial_state",
        title=_as_text(node.get("title")),
        description=_as_text(node.get("desc")),
        tags=tags,
        image_urls=image_urls,
    )


def structured_candidate(markup: str) -> NoteCandidate | None:
    """Build a candidate from the initial-state blob embedded in markup."""
    blob = find_state_blob(markup)
    if blob is None:
        logger.info("No initial state found in page markup")
        return None

    tree = parse_state_blob(blob)
    if tree is None:
        return None

    note = probe_note_shape(tree)
    if note is None:
        logger.info("Initial state found but no note-shaped data in it")
        return None

    distinct = {_note_identity(node) for node in iter_note_nodes(tree)}
    if len(distinct) > 1:
        logger.warning(
            f"Initial state holds {len(distinct)} different notes; using the first one"
        )

    candidate = candidate_from_note(note)
    logger.info(
        f"Extracted structured data from initial state ({len(candidate.image_urls)} images)"
    )
    return candidate


# ===========================================
# DOM fallback
# ===========================================

def parse_css_url(value: str | None) -> str | None:
    """Unwrap url("...") from a CSS background-image value."""
    if not value or value == "none":
        return None
    match = CSS_URL.search(value)
    if not match:
        return None
    return match.group(2).strip() or None


def _is_remote(url: str) -> bool:
    return url.startswith("http") or url.startswith("//")


def slide_image_urls(slides: list[str]) -> list[str] | None:
    """Image URLs from carousel slide backgrounds, or None if there are none."""
    urls = []
    for value in slides:
        url = parse_css_url(value)
        if url and _is_remote(url):
            urls.append(url)
    return urls or None


def content_image_urls(images: list[dict], min_dimension: int = 200) -> list[str] | None:
    """Large content images, skipping avatars and icons. None if there are none."""
    urls = []
    for image in images:
        src = image.get("src") or ""
        if not src.startswith("http"):
            continue
        width = image.get("width") or 0
        height = image.get("height") or 0
        if width > min_dimension or height > min_dimension:
            urls.append(src)
    return urls or None


async def dom_candidate_from_snapshot(snapshot: dict, min_dimension: int = 200) -> NoteCandidate:
    """Turn the raw DOM snapshot into a candidate, trying image strategies in order."""
    slides = snapshot.get("slides") or []
    images = snapshot.get("images") or []

    async def from_slides():
        return slide_image_urls(slides)

    async def from_img_tags():
        return content_image_urls(images, min_dimension)

    image_urls = await first_result(
        [("carousel-slides", from_slides), ("content-images", from_img_tags)],
        label="dom-images",
    )

    tags = []
    for raw in snapshot.get("tags") or []:
        tag = _as_text(raw).replace("#", "").strip()
        if tag:
            tags.append(tag)

    return NoteCandidate(
        source="dom",
        title=_as_text(snapshot.get("title")),
        description=_as_text(snapshot.get("description")),
        tags=tags,
        image_urls=image_urls or [],
    )


def merge_candidates(
    structured: NoteCandidate | None,
    dom: NoteCandidate | None,
) -> NoteContent:
    """
    Merge the structured and DOM candidates.

    Structured fields win whenever they are non-empty. The DOM image list is
    only used when the structured one is empty; the two lists are never mixed.
    """
    if structured is None and dom is None:
        return NoteContent.empty()

    base = structured or NoteCandidate(source="none")
    fallback = dom or NoteCandidate(source="none")

    return NoteContent(
        title=base.title or fallback.title,
        description=base.description or fallback.description,
        tags=tuple(base.tags or fallback.tags),
        image_urls=tuple(base.image_urls or fallback.image_urls),
    )


# ===========================================
# Engine
# ===========================================

class NoteExtractor:
    """
    Extraction engine for note pages.

    Drives an already started Driver; the caller owns the browser session.
    """

    def __init__(
        self,
        driver,
        settings: Settings | None = None,
        capture_dir: str | Path | None = None,
    ) -> None:
        self.driver = driver
        self.settings = settings or get_settings()
        self.capture_dir = Path(capture_dir) if capture_dir else None

    async def extract(self, address: str) -> NoteContent:
        """
        Extract a note from the page at address.

        Args:
            address: Note page URL.

        Returns:
            NoteContent, possibly empty when nothing could be read.

        Raises:
            ExtractionError: If the page never loads.
        """
        logger.info(f"Navigating to: {address}")
        await self._load(self.driver.navigate, address)

        if not await self._wait_until_ready():
            logger.warning("Initial wait timed out; continuing")

        if await self._session_state() is SessionState.AUTHENTICATION_REQUIRED:
            if await self._await_manual_login():
                await asyncio.sleep(self.settings.refresh_pause)
                logger.info("Reloading page so content renders with the new session")
                await self._load(self.driver.reload)
                await self._wait_until_ready()
        else:
            logger.info("Page loaded directly (session valid)")

        logger.info("Extracting data...")
        structured = await run_best_effort(self._read_structured, "Structured extraction")

        dom = None
        if structured is None or not structured.is_complete:
            logger.info("Falling back to DOM extraction")
            dom = await run_best_effort(self._read_dom, "DOM extraction")

        content = merge_candidates(structured, dom)

        if content.is_empty:
            logger.warning(f"Nothing could be extracted from {address}")
        elif not content.title:
            logger.warning(f"No note title could be extracted from {address}")
        if not content.title:
            await self._capture("debug_extract_empty.png")
        logger.info(f"Found {len(content.image_urls)} images")
        return content

    async def _load(self, action, *args) -> None:
        try:
            await action(*args)
        except NavigationFailure as e:
            kind = ExtractionErrorKind.TIMEOUT if e.timed_out else ExtractionErrorKind.NAVIGATION
            raise ExtractionError(kind, str(e)) from e

    def _script_args(self) -> dict:
        return {
            "titleSelectors": TITLE_SELECTORS,
            "phoneLogin": PHONE_LOGIN_TEXT,
            "loginWord": LOGIN_TITLE_WORD,
        }

    async def _wait_until_ready(self) -> bool:
        logger.info("Waiting for page content to stabilize...")
        return await self.driver.wait_for(
            READY_SCRIPT, self.settings.ready_timeout, self._script_args()
        )

    async def _session_state(self) -> SessionState:
        return await current_session_state(
            self.driver,
            login_segment=self.settings.login_path_segment,
            publish_segment=self.settings.publish_path_segment,
        )

    async def _await_manual_login(self) -> bool:
        """Give the operator a bounded window to log in. True if they did."""
        window_s = self.settings.manual_login_window / 1000
        logger.warning(
            f"Login page detected. Please log in manually in the browser window "
            f"(waiting up to {window_s:.0f}s)..."
        )
        await self._capture("debug_extract_login.png")
        if await self.driver.wait_for(
            LOGGED_IN_SCRIPT, self.settings.manual_login_window, self._script_args()
        ):
            logger.info("Login success detected")
            return True
        logger.error("Timed out waiting for login; extracting in degraded mode")
        return False

    async def _read_structured(self) -> NoteCandidate | None:
        markup = await self.driver.raw_markup()
        return structured_candidate(markup)

    async def _read_dom(self) -> NoteCandidate | None:
        snapshot = await self.driver.evaluate(
            DOM_SNAPSHOT_SCRIPT,
            {
                "titleSelectors": TITLE_SELECTORS,
                "descriptionSelectors": DESCRIPTION_SELECTORS,
                "tagSelectors": TAG_SELECTORS,
                "slideSelector": SLIDE_SELECTOR,
                "imageSelectors": CONTENT_IMAGE_SELECTORS,
            },
        )
        if not isinstance(snapshot, dict):
            return None
        return await dom_candidate_from_snapshot(snapshot, self.settings.min_image_dimension)

    async def _capture(self, name: str) -> None:
        if self.capture_dir is None:
            return
        await run_best_effort(
            lambda: self.driver.capture_frame(self.capture_dir / name),
            f"Capture {name}",
        )


def save_note_content(content: NoteContent, url: str, output_path: str | Path) -> Path:
    """
    Write the extracted note as a JSON document.

    Args:
        content: Extracted note.
        url: Source page URL, recorded in the document metadata.
        output_path: Destination file; parent directories are created.

    Returns:
        The path written.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(content.to_document(url), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    logger.info(f"Saved note data to {output_path}")
    return output_path
