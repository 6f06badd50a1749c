"""Unit tests for the HTTP downloader

Tests for:
- Streaming download to the final file name
- Size enforcement
- Failure reporting as False
- No partial files left behind
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from src.services.download_service import PART_SUFFIX, Downloader, HttpDownloader
from src.utils.exceptions import DownloadError


async def _chunks(*chunks):
    for chunk in chunks:
        yield chunk


def _response(status=200, chunks=(b"video-bytes",), headers=None):
    response = MagicMock()
    response.status = status
    response.headers = headers if headers is not None else {}
    response.content.iter_chunked = MagicMock(return_value=_chunks(*chunks))
    return response


def _mock_session(response=None, get_side_effect=None):
    request = MagicMock()
    request.__aenter__ = AsyncMock(return_value=response)
    request.__aexit__ = AsyncMock(return_value=None)

    session = MagicMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)
    session.get = MagicMock(return_value=request, side_effect=get_side_effect)
    return session


@pytest.fixture
def downloader():
    return HttpDownloader(timeout_seconds=30, chunk_size_bytes=1024, max_file_size_mb=1)


@pytest.fixture
def folder(tmp_path):
    return tmp_path / "2026-10-19_14-05-00"


def test_satisfies_protocol(downloader):
    assert isinstance(downloader, Downloader)


@pytest.mark.asyncio
async def test_fetch_success(downloader, folder):
    """Test successful download creates the folder and file"""
    session = _mock_session(_response(chunks=(b"abc", b"def")))

    with patch("aiohttp.ClientSession", return_value=session):
        ok = await downloader.fetch("https://cdn.example.com/v/a1.webm", folder, "a1")

    assert ok is True
    target = folder / "a1.webm"
    assert target.read_bytes() == b"abcdef"
    assert not (folder / ("a1.webm" + PART_SUFFIX)).exists()


@pytest.mark.asyncio
async def test_download_returns_path(downloader, folder):
    """Test download defaults to .mp4 for extensionless locators"""
    session = _mock_session(_response())

    with patch("aiohttp.ClientSession", return_value=session):
        path = await downloader.download("https://cdn.example.com/stream/42", folder, "42")

    assert path == (folder / "42.mp4").resolve()


@pytest.mark.asyncio
async def test_fetch_http_error_returns_false(downloader, folder):
    """Test non-200 is reported as False"""
    session = _mock_session(_response(status=404))

    with patch("aiohttp.ClientSession", return_value=session):
        ok = await downloader.fetch("https://cdn.example.com/a.mp4", folder, "a")

    assert ok is False
    assert not (folder / "a.mp4").exists()


@pytest.mark.asyncio
async def test_download_rejects_non_http_locator(downloader, folder):
    with pytest.raises(DownloadError, match="Unsupported locator"):
        await downloader.download("ftp://cdn.example.com/a.mp4", folder, "a")


@pytest.mark.asyncio
async def test_download_rejects_declared_oversize(downloader, folder):
    """Test content-length above the limit is refused"""
    headers = {"content-length": str(2 * 1024 * 1024)}
    session = _mock_session(_response(headers=headers))

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(DownloadError, match="too large"):
            await downloader.download("https://cdn.example.com/a.mp4", folder, "a")


@pytest.mark.asyncio
async def test_download_rejects_malformed_content_length(downloader, folder):
    """Test an unparseable content-length is a DownloadError"""
    session = _mock_session(_response(headers={"content-length": "lots"}))

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(DownloadError, match="Invalid content-length"):
            await downloader.download("https://cdn.example.com/a.mp4", folder, "a")


@pytest.mark.asyncio
async def test_fetch_malformed_content_length_returns_false(downloader, folder):
    """Test fetch reports a malformed header as False instead of raising"""
    session = _mock_session(_response(headers={"content-length": "12abc"}))

    with patch("aiohttp.ClientSession", return_value=session):
        ok = await downloader.fetch("https://cdn.example.com/a.mp4", folder, "a")

    assert ok is False
    assert not (folder / "a.mp4").exists()


@pytest.mark.asyncio
async def test_download_aborts_when_stream_exceeds_limit(downloader, folder):
    """Test the limit is enforced while streaming and no part file remains"""
    big = b"x" * (1024 * 1024)
    session = _mock_session(_response(chunks=(big, b"x")))

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(DownloadError, match="size limit"):
            await downloader.download("https://cdn.example.com/a.mp4", folder, "a")

    assert list(folder.iterdir()) == []


@pytest.mark.asyncio
async def test_download_connection_error(downloader, folder):
    session = _mock_session(get_side_effect=aiohttp.ClientConnectionError("reset"))

    with patch("aiohttp.ClientSession", return_value=session):
        with pytest.raises(DownloadError, match="reset"):
            await downloader.download("https://cdn.example.com/a.mp4", folder, "a")


@pytest.mark.asyncio
async def test_download_timeout(downloader, folder):
    session = _mock_session(get_side_effect=asyncio.TimeoutError())

    with patch("aiohttp.ClientSession", return_value=session):
        ok = await downloader.fetch("https://cdn.example.com/a.mp4", folder, "a")

    assert ok is False


@pytest.mark.asyncio
async def test_item_id_cannot_escape_folder(downloader, folder):
    """Test path components in the item id are neutralized"""
    session = _mock_session(_response())

    with patch("aiohttp.ClientSession", return_value=session):
        path = await downloader.download(
            "https://cdn.example.com/a.mp4", folder, "../../etc/passwd"
        )

    assert path.parent == folder.resolve()
