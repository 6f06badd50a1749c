"""Remote video catalog client.

Lists catalog items newer than a checkpoint, one page at a time. An empty
page ends the enumeration for the current cycle.

Wire format of the listing endpoint:
    GET {base_url}{videos_path}?since=<checkpoint token>&page=<n>
    -> {"videos": {"<id>": "<locator>", ...}}
    -> or {"videos": [{"id": "<id>", "url": "<locator>"}, ...]}
"""

import asyncio
from typing import Any, Optional, Protocol, runtime_checkable

import aiohttp
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.sync import CatalogPage, Checkpoint, Credentials
from src.utils.exceptions import CatalogError, RetryableError

logger = structlog.get_logger()


@runtime_checkable
class CatalogClient(Protocol):
    """Source of new catalog items."""

    async def list(
        self,
        checkpoint: Checkpoint,
        page: int,
        credentials: Optional[Credentials] = None,
    ) -> CatalogPage:
        """Return items newer than ``checkpoint`` on ``page`` (0-based).

        Must be idempotent. Raises CatalogError on failure.
        """
        ...


class HttpCatalogClient:
    """Catalog client for the JSON listing endpoint"""

    def __init__(
        self,
        base_url: str,
        videos_path: str = "/videos",
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
    ):
        self.base_url = str(base_url).rstrip("/")
        self.videos_path = videos_path
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.videos_path}"

    async def list(
        self,
        checkpoint: Checkpoint,
        page: int,
        credentials: Optional[Credentials] = None,
    ) -> CatalogPage:
        """Fetch one catalog page, retrying transient failures

        Raises:
            CatalogError: If the page cannot be fetched or parsed
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(RetryableError),
                reraise=True,
            ):
                with attempt:
                    return await self._fetch_page(checkpoint, page, credentials)
        except RetryableError as e:
            raise CatalogError(
                f"Catalog page {page} failed after {self.max_retries} attempts: {e}"
            ) from e
        raise CatalogError(f"Catalog page {page} was not fetched")  # pragma: no cover

    async def _fetch_page(
        self,
        checkpoint: Checkpoint,
        page: int,
        credentials: Optional[Credentials],
    ) -> CatalogPage:
        params = {"since": checkpoint.token, "page": str(page)}
        headers = {"Accept": "application/json"}
        if credentials is not None:
            headers.update(credentials.auth_headers())

        logger.debug("catalog_page_requested", url=self.url, page=page, since=checkpoint.token)

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url, params=params, headers=headers) as response:
                    # Don't retry client errors (4xx) - these won't succeed on retry
                    if 400 <= response.status < 500:
                        raise CatalogError(f"HTTP {response.status} for {self.url}")
                    # Retry server errors (5xx) - might be transient
                    elif response.status >= 500:
                        raise RetryableError(
                            f"HTTP {response.status} for {self.url} (will retry)"
                        )
                    elif response.status != 200:
                        raise CatalogError(f"HTTP {response.status} for {self.url}")

                    try:
                        body = await response.json(content_type=None)
                    except ValueError as e:
                        raise CatalogError(f"Invalid catalog JSON: {e}") from e

        except aiohttp.ClientError as e:
            logger.warning("catalog_request_failed", page=page, error=str(e))
            raise RetryableError(f"Catalog request failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.warning("catalog_request_timeout", page=page)
            raise RetryableError(
                f"Catalog request timeout after {self.timeout_seconds}s"
            ) from e

        items = parse_catalog_page(body)
        logger.debug("catalog_page_received", page=page, items=len(items))
        return items


def parse_catalog_page(body: Any) -> CatalogPage:
    """Normalize a listing response into ``{item_id: locator}``.

    Raises:
        CatalogError: If the body has neither supported shape
    """
    if isinstance(body, dict) and "videos" in body:
        body = body["videos"]

    if body is None:
        return {}

    if isinstance(body, dict):
        return {str(k): str(v) for k, v in body.items()}

    if isinstance(body, list):
        page: CatalogPage = {}
        for entry in body:
            if not isinstance(entry, dict) or "id" not in entry or "url" not in entry:
                raise CatalogError(f"Malformed catalog entry: {entry!r}")
            page[str(entry["id"])] = str(entry["url"])
        return page

    raise CatalogError(f"Unexpected catalog response type: {type(body).__name__}")
