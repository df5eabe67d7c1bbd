"""
Redbook Automator - Data Models

Records passed between the extraction engine, the publication engine
and the services around them.
"""

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable


def normalize_image_url(url: str) -> str:
    """Rewrite a scheme-relative URL to https."""
    url = url.strip()
    if url.startswith("//"):
        return f"https:{url}"
    return url


def normalize_image_urls(urls: Iterable[str]) -> tuple[str, ...]:
    """
    Normalize and deduplicate image URLs, keeping first-seen order.

    Deduplication runs on the normalized form, so "//cdn/a.jpg" and
    "https://cdn/a.jpg" collapse into one entry.
    """
    seen: set[str] = set()
    normalized: list[str] = []
    for url in urls:
        if not url:
            continue
        cleaned = normalize_image_url(url)
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        normalized.append(cleaned)
    return tuple(normalized)


@dataclass(frozen=True)
class NoteContent:
    """Normalized note extracted from a live page."""

    title: str = ""
    description: str = ""
    tags: tuple[str, ...] = ()
    image_urls: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "image_urls", normalize_image_urls(self.image_urls))

    @classmethod
    def empty(cls) -> "NoteContent":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.description or self.tags or self.image_urls)

    def to_dict(self) -> dict:
        """Convert to the dictionary consumed by the planning service."""
        return {
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "image_urls": list(self.image_urls),
        }

    def to_document(self, url: str, timestamp: datetime | None = None) -> dict:
        """Wrap the record with the source URL and extraction time."""
        timestamp = timestamp or datetime.now(timezone.utc)
        return {
            "meta": {
                "url": url,
                "timestamp": timestamp.isoformat(),
            },
            "data": self.to_dict(),
        }


@dataclass
class NoteCandidate:
    """Partial note produced by a single extraction strategy."""

    source: str
    title: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """A candidate with a title and at least one image needs no fallback."""
        return bool(self.title) and bool(self.image_urls)


@dataclass(frozen=True)
class Draft:
    """Planned note ready to be published."""

    title: str
    content: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Draft":
        title = data.get("title")
        if not isinstance(title, str) or not title:
            raise ValueError("Draft is missing a title")
        content = data.get("content") or ""
        return cls(title=title, content=str(content))

    @classmethod
    def from_file(cls, path: str | Path) -> "Draft":
        """Load a draft JSON document written by the planning service."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Draft file not found: {path}")
        return cls.from_dict(json.loads(path.read_text(encoding="utf-8")))


class SessionState(str, enum.Enum):
    """Login state derived from the live page."""

    AUTHENTICATED = "authenticated"
    AUTHENTICATION_REQUIRED = "authentication_required"
    UNKNOWN = "unknown"


class UploadFailureReason(str, enum.Enum):
    NONE = "none"
    LOGIN_REDIRECT = "login_redirect"
    NO_FILE_DIALOG = "no_file_dialog"
    NO_UPLOAD_TARGET = "no_upload_target"


@dataclass
class UploadOutcome:
    """Result of one upload attempt."""

    success: bool
    reason: UploadFailureReason = UploadFailureReason.NONE
    thumbnails_seen: bool = False

    @classmethod
    def failed(cls, reason: UploadFailureReason) -> "UploadOutcome":
        return cls(success=False, reason=reason)


@dataclass
class PublicationResult:
    """Result of a publish run. The form is never submitted."""

    filled: bool
    attempts: int = 0
    title_filled: bool = False
    content_filled: bool = False
    thumbnails_seen: bool = False
    error_message: str | None = None
    screenshot_path: str | None = None
