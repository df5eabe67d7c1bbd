"""
Redbook Automator - Automation Module

Playwright-based browser automation for note extraction and publishing.
"""

from redbook.automation.driver import Driver, PlaywrightDriver, SessionProfile
from redbook.automation.note_extractor import NoteExtractor, save_note_content
from redbook.automation.note_publisher import NotePublisher
from redbook.automation.session import PageSignals, classify_session

__all__ = [
    "Driver",
    "NoteExtractor",
    "NotePublisher",
    "PageSignals",
    "PlaywrightDriver",
    "SessionProfile",
    "classify_session",
    "save_note_content",
]
