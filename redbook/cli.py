"""
Redbook Automator - Command Line Interface

Usage:
    python -m redbook extract --url <NOTE_URL> --output <JSON_PATH>
    python -m redbook publish --draft <JSON_PATH> --images <DIR>
    python -m redbook login
"""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path

from redbook.assets import collect_assets
from redbook.automation.driver import PlaywrightDriver, SessionProfile
from redbook.automation.note_extractor import NoteExtractor, save_note_content
from redbook.automation.note_publisher import NotePublisher
from redbook.automation.session import current_session_state
from redbook.config import Settings, get_settings
from redbook.errors import NavigationFailure, SessionExpired
from redbook.models import Draft, SessionState

logger = logging.getLogger("redbook")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="redbook",
        description="Extract notes and fill the publish form with a persistent browser session.",
    )
    parser.add_argument("--profile-dir", help="Browser profile directory (overrides REDBOOK_PROFILE_DIR)")
    parser.add_argument("--headless", action="store_true", help="Run the browser without a window")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser("extract", help="Extract a note page to JSON")
    extract.add_argument("--url", required=True, help="Note page URL")
    extract.add_argument("--output", required=True, help="Output JSON path")

    publish = subparsers.add_parser("publish", help="Fill the publish form (never submits)")
    publish.add_argument("--draft", required=True, help="Draft JSON path")
    publish.add_argument("--images", required=True, help="Directory of rendered images")
    publish.add_argument(
        "--no-wait",
        action="store_true",
        help="Close the browser right after filling instead of waiting for review",
    )

    subparsers.add_parser("login", help="Open the publish page and wait for a manual login")
    return parser


def _driver(args: argparse.Namespace, settings: Settings) -> PlaywrightDriver:
    profile_path = Path(args.profile_dir) if args.profile_dir else settings.profile_path
    headless = True if args.headless else None
    return PlaywrightDriver(SessionProfile(profile_path), settings=settings, headless=headless)


def _on_interrupt(publisher: NotePublisher, task: asyncio.Task) -> None:
    """Cancel the login wait while it runs; otherwise cancel the command."""
    if publisher.awaiting_login and publisher.abort_event is not None:
        publisher.abort_event.set()
    else:
        task.cancel()


@contextmanager
def _route_interrupts(publisher: NotePublisher):
    """Install the Ctrl+C handler for the lifetime of one command."""
    if sys.platform == "win32":
        yield
        return
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, _on_interrupt, publisher, asyncio.current_task())
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def _wait_for_enter(prompt: str) -> None:
    """Wait for Enter on stdin without a worker thread, so cancellation ends it."""
    if sys.platform == "win32":
        await asyncio.to_thread(input, prompt)
        return
    print(prompt, end="", flush=True)
    loop = asyncio.get_running_loop()
    pressed = loop.create_future()

    def on_input() -> None:
        if not pressed.done():
            pressed.set_result(sys.stdin.readline())

    loop.add_reader(sys.stdin.fileno(), on_input)
    try:
        await pressed
    finally:
        loop.remove_reader(sys.stdin.fileno())


async def run_extract(args: argparse.Namespace, settings: Settings) -> int:
    output_path = Path(args.output)
    async with _driver(args, settings) as driver:
        extractor = NoteExtractor(driver, settings=settings, capture_dir=output_path.parent)
        try:
            content = await extractor.extract(args.url)
        except NavigationFailure as e:
            logger.error(f"Extraction failed: {e}")
            return 1

    save_note_content(content, args.url, output_path)
    logger.info(f"Title: {content.title or '<none>'}")
    return 0


async def run_publish(args: argparse.Namespace, settings: Settings) -> int:
    try:
        draft = Draft.from_file(args.draft)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load draft: {e}")
        return 1

    assets = collect_assets(args.images)
    if not assets:
        logger.error(f"No images found in {args.images}")
        return 1

    async with _driver(args, settings) as driver:
        publisher = NotePublisher(
            driver,
            settings=settings,
            capture_dir=args.images,
            abort_event=asyncio.Event(),
        )
        with _route_interrupts(publisher):
            try:
                result = await publisher.publish(draft, assets)
            except (NavigationFailure, SessionExpired) as e:
                logger.error(f"Publisher error: {e}")
                return 1

            if not result.filled:
                logger.error(result.error_message or "Upload failed")
                return 1

            if not result.thumbnails_seen:
                logger.warning("Upload previews were not detected; check the images before publishing")
            logger.info("Please review the draft in the browser window and publish manually.")
            if not args.no_wait:
                await _wait_for_enter("Press Enter to close the browser...")
    return 0


async def run_login(args: argparse.Namespace, settings: Settings) -> int:
    async with _driver(args, settings) as driver:
        await driver.navigate(settings.publish_url)
        state = await current_session_state(
            driver,
            login_segment=settings.login_path_segment,
            publish_segment=settings.publish_path_segment,
        )
        if state is not SessionState.AUTHENTICATION_REQUIRED:
            logger.info("Session is valid; no login needed")
            return 0

        publisher = NotePublisher(driver, settings=settings, abort_event=asyncio.Event())
        with _route_interrupts(publisher):
            try:
                await publisher.await_manual_login()
            except SessionExpired as e:
                logger.error(str(e))
                return 1
    logger.info("Login saved to the browser profile")
    return 0


COMMANDS = {
    "extract": run_extract,
    "publish": run_publish,
    "login": run_login,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except NavigationFailure as e:
        logger.error(f"Fatal error: {e}")
        return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
