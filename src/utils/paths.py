"""Naming of download folders and files.

Each cycle downloads into a folder named after the cycle's start time
(``2026-10-19_14-05-00``) under the configured output folder. Item files are
named after the remote item id, keeping the locator's extension.
"""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from src.utils.security import sanitize_filename

FOLDER_FORMAT = "%Y-%m-%d_%H-%M-%S"
DEFAULT_EXTENSION = ".mp4"
MAX_STEM_LENGTH = 160
DIGEST_LENGTH = 12


def timestamp_folder_name(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return when.astimezone(timezone.utc).strftime(FOLDER_FORMAT)


def item_filename(item_id: str, locator: str) -> str:
    """File name for a catalog item.

    Ids that are not already safe file names get a short digest of the raw
    id appended, so ``show1/ep1`` and ``show2/ep1`` stay distinct.

    Examples:
        >>> item_filename("abc", "https://cdn.example.com/v/abc.webm?sig=1")
        'abc.webm'
        >>> item_filename("42", "https://cdn.example.com/stream/42")
        '42.mp4'
    """
    suffix = Path(urlparse(locator).path).suffix.lower()
    if not suffix or len(suffix) > 6 or not suffix[1:].isalnum():
        suffix = DEFAULT_EXTENSION

    stem = sanitize_filename(item_id, max_length=MAX_STEM_LENGTH)
    if stem != item_id:
        digest = hashlib.sha256(item_id.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
        stem = f"{stem}-{digest}"
    return f"{stem}{suffix}"


def find_existing_item(output_root: Path, filename: str) -> Optional[Path]:
    """Look for a finished download of ``filename`` in any cycle folder."""
    if not output_root.exists():
        return None

    direct = output_root / filename
    if direct.is_file():
        return direct

    for folder in output_root.iterdir():
        candidate = folder / filename
        if folder.is_dir() and candidate.is_file():
            return candidate
    return None
