"""
Redbook Automator - Asset Collection

Builds the ordered image list handed to the publication engine.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}
DIAGNOSTIC_PREFIX = "debug_"


def collect_assets(directory: str | Path) -> list[Path]:
    """
    Collect rendered images from a directory.

    Files are sorted by name so the page_01, page_02, ... naming decides
    the on-page order. Diagnostic captures are skipped.

    Args:
        directory: Directory holding the rendered images.

    Returns:
        Ordered list of image paths (empty if the directory is missing).
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"Asset directory not found: {directory}")
        return []

    assets = [
        path
        for path in directory.iterdir()
        if path.is_file()
        and path.suffix.lower() in IMAGE_SUFFIXES
        and not path.name.startswith(DIAGNOSTIC_PREFIX)
    ]
    return sorted(assets, key=lambda p: p.name)
