"""Download service for catalog items

This service handles:
1. Streaming an item locator to local storage
2. File size enforcement
3. Atomic completion (``.part`` file renamed once complete)

Failures are reported as a ``False`` result so one broken item never
disturbs the rest of the cycle.
"""

import asyncio
import contextlib
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiohttp
import structlog

from src.utils.exceptions import DownloadError
from src.utils.paths import item_filename
from src.utils.security import PathSanitizer, SecurityError

logger = structlog.get_logger()

PART_SUFFIX = ".part"


@runtime_checkable
class Downloader(Protocol):
    """Fetches one catalog item into a destination folder."""

    async def fetch(self, locator: str, destination_folder: Path, item_id: str) -> bool:
        """Download ``locator`` as ``item_filename(item_id, locator)``.

        Returns True on success and False on failure.
        """
        ...


class HttpDownloader:
    """Streams items over HTTP(S)

    Partial files never carry the final name, so an interrupted download
    is retried on the next cycle instead of being mistaken for a finished one.
    """

    def __init__(
        self,
        timeout_seconds: float = 600.0,
        chunk_size_bytes: int = 64 * 1024,
        max_file_size_mb: int = 4096,
    ):
        """Initialize downloader

        Args:
            timeout_seconds: Total timeout for one item
            chunk_size_bytes: Streaming chunk size
            max_file_size_mb: Maximum item size in megabytes
        """
        self.timeout_seconds = timeout_seconds
        self.chunk_size_bytes = chunk_size_bytes
        self.max_size_bytes = max_file_size_mb * 1024 * 1024

    async def fetch(self, locator: str, destination_folder: Path, item_id: str) -> bool:
        """Download one item, reporting failure as False"""
        try:
            path = await self.download(locator, destination_folder, item_id)
        except DownloadError as e:
            logger.warning(
                "item_download_failed", item_id=item_id, locator=locator, error=str(e)
            )
            return False

        logger.info("item_download_success", item_id=item_id, path=str(path))
        return True

    async def download(self, locator: str, destination_folder: Path, item_id: str) -> Path:
        """Download one item

        Returns:
            Path of the finished file

        Raises:
            DownloadError: If the request, size check or write fails
        """
        if not locator.startswith(("https://", "http://")):
            raise DownloadError(f"Unsupported locator: {locator}")

        folder = Path(destination_folder)
        try:
            sanitizer = PathSanitizer(allowed_bases=[folder])
            output_path = sanitizer.safe_path(folder, item_filename(item_id, locator))
        except SecurityError as e:
            raise DownloadError(str(e)) from e

        part_path = output_path.with_name(output_path.name + PART_SUFFIX)

        logger.info("item_download_started", item_id=item_id, output_path=str(output_path))

        try:
            folder.mkdir(parents=True, exist_ok=True)
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(locator) as response:
                    if response.status != 200:
                        raise DownloadError(f"HTTP {response.status} for {locator}")

                    # Check size before downloading
                    content_length = response.headers.get("content-length")
                    if content_length:
                        try:
                            declared_bytes = int(content_length)
                        except ValueError as e:
                            raise DownloadError(
                                f"Invalid content-length: {content_length!r}"
                            ) from e
                        if declared_bytes > self.max_size_bytes:
                            raise DownloadError(
                                f"Item too large: {declared_bytes} bytes "
                                f"(max: {self.max_size_bytes})"
                            )

                    total_bytes = 0
                    with open(part_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(
                            self.chunk_size_bytes
                        ):
                            total_bytes += len(chunk)
                            if total_bytes > self.max_size_bytes:
                                raise DownloadError(
                                    f"Item exceeded size limit during download: "
                                    f"{total_bytes} bytes"
                                )
                            f.write(chunk)

            os.replace(part_path, output_path)
            return output_path

        except aiohttp.ClientError as e:
            raise DownloadError(f"Download failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise DownloadError(
                f"Download timeout after {self.timeout_seconds}s"
            ) from e
        except OSError as e:
            raise DownloadError(f"Cannot write {output_path}: {e}") from e
        finally:
            with contextlib.suppress(OSError):
                part_path.unlink(missing_ok=True)
