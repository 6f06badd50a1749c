"""Video sync agent.

Coordinates one sync cycle per scheduler fire:
1. Read the checkpoint from the cursor store
2. Page through the catalog from that checkpoint until an empty page
3. Download every item not already present locally into the cycle folder
4. Persist the new checkpoint if the enumeration completed
5. Publish the outcome to the notification hub
6. Rearm the scheduler
"""

import asyncio
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

import structlog

from src.models.config import SyncConfig
from src.models.sync import (
    AgentConfig,
    CatalogPage,
    Checkpoint,
    Credentials,
    SyncEvent,
)
from src.observability.context import correlation_id_context, get_correlation_id
from src.observability.metrics import (
    CATALOG_PAGES,
    CHECKPOINT_TIMESTAMP,
    CYCLE_DURATION,
    DOWNLOAD_DURATION,
    SYNC_CYCLES,
    SYNC_ITEMS,
    MetricsContext,
)
from src.orchestration.result import CycleResult
from src.scheduling.scheduler import SyncScheduler
from src.services.catalog_client import CatalogClient, HttpCatalogClient
from src.services.cursor_store import CursorStore, FileCursorStore
from src.services.download_service import Downloader, HttpDownloader
from src.services.notification_service import NotificationHub, WebhookNotifier
from src.utils.exceptions import CatalogError, ConfigurationError, PersistenceError
from src.utils.paths import find_existing_item, item_filename, timestamp_folder_name

logger = structlog.get_logger()

DEFAULT_TIMER_SECONDS = 60


class SyncVideoAgent:
    """
    Periodically mirrors new catalog videos to local storage.

    Usage:
        agent = SyncVideoAgent.from_config(config)
        agent.start()      # first cycle after interval_seconds
        agent.disable()    # later fires publish cycle.skipped
        agent.enable()
        agent.stop()       # waits for an in-flight cycle

        # One cycle on the caller's thread
        result = agent.execute()
    """

    def __init__(
        self,
        config: AgentConfig,
        catalog: CatalogClient,
        downloader: Downloader,
        cursor_store: CursorStore,
        hub: Optional[NotificationHub] = None,
        credentials: Optional[Credentials] = None,
    ):
        """
        Initialize the agent.

        Args:
            config: Enable flag, cadence and output folder
            catalog: Source of new items
            downloader: Fetches one item into a folder
            cursor_store: Durable checkpoint storage
            hub: Event hub (a private one is created if not provided)
            credentials: Catalog credentials, also settable later

        Raises:
            ConfigurationError: If config is not an AgentConfig
        """
        if not isinstance(config, AgentConfig):
            raise ConfigurationError("SyncVideoAgent requires an AgentConfig")

        self.config = config
        self.catalog = catalog
        self.downloader = downloader
        self.cursor_store = cursor_store
        self.hub = hub or NotificationHub()
        self._credentials = credentials

        self._config_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self.last_result: Optional[CycleResult] = None

        self.scheduler = SyncScheduler(
            self.execute,
            interval_seconds=config.interval_seconds,
            job_id="sync_video_agent",
        )

    @classmethod
    def from_config(
        cls, config: SyncConfig, hub: Optional[NotificationHub] = None
    ) -> "SyncVideoAgent":
        """Wire the agent with the HTTP catalog, HTTP downloader and file store."""
        hub = hub or NotificationHub()
        if config.notifications.webhook.enabled:
            hub.subscribe(WebhookNotifier(config.notifications.webhook))

        return cls(
            config=config.agent,
            catalog=HttpCatalogClient(
                base_url=str(config.catalog.base_url),
                videos_path=config.catalog.videos_path,
                timeout_seconds=config.catalog.timeout_seconds,
                max_retries=config.catalog.max_retries,
            ),
            downloader=HttpDownloader(
                timeout_seconds=config.download.timeout_seconds,
                chunk_size_bytes=config.download.chunk_size_bytes,
                max_file_size_mb=config.download.max_file_size_mb,
            ),
            cursor_store=FileCursorStore(config.state.state_file),
            hub=hub,
            credentials=config.credentials.to_credentials(),
        )

    # ------------------------------------------------------------------
    # Lifecycle and configuration
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the timer; the first cycle runs after interval_seconds."""
        logger.info(
            "sync_agent_starting",
            enabled=self.is_enabled,
            interval_seconds=self.interval_seconds,
            output_folder=str(self.config.output_folder),
        )
        self.scheduler.start()

    def stop(self, flush_timeout: Optional[float] = 5.0) -> None:
        """Stop the timer, waiting for an in-flight cycle to finish."""
        self.scheduler.stop()
        self.hub.flush(flush_timeout)
        logger.info("sync_agent_stopped")

    def enable(self) -> None:
        """Run cycles again from the next timer fire."""
        with self._config_lock:
            self.config.enabled = True
        logger.info("sync_agent_enabled")

    def disable(self) -> None:
        """Skip cycles from the next timer fire; an in-flight cycle completes."""
        with self._config_lock:
            self.config.enabled = False
        logger.info("sync_agent_disabled")

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    @property
    def interval_seconds(self) -> int:
        return self.config.interval_seconds

    def arm_timer(self, seconds: int = DEFAULT_TIMER_SECONDS) -> None:
        """Change the cadence; takes effect from the next cycle.

        Raises:
            ConfigurationError: If seconds is not a positive integer
        """
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds <= 0:
            raise ConfigurationError(
                f"Timer interval must be a positive integer: {seconds!r}"
            )

        with self._config_lock:
            self.config.interval_seconds = seconds
            self.scheduler.interval_seconds = seconds

        self.scheduler.rearm(seconds)
        logger.info("sync_timer_armed", interval_seconds=seconds)

    def set_credentials(self, credentials: Optional[Credentials]) -> None:
        """Replace credentials; an in-flight cycle keeps the ones it started with."""
        with self._config_lock:
            self._credentials = credentials
        logger.info("sync_credentials_updated", present=credentials is not None)

    @property
    def has_credentials(self) -> bool:
        return self._credentials is not None

    # ------------------------------------------------------------------
    # Checkpoint access
    # ------------------------------------------------------------------

    def get_last_update_timestamp(self) -> Checkpoint:
        """Current persisted checkpoint.

        Raises:
            PersistenceError: If the store cannot be read
        """
        return self.cursor_store.get()

    def set_last_update_timestamp(
        self, value: Optional[Checkpoint] = None
    ) -> Checkpoint:
        """Persist a checkpoint (default: now), never moving it backward.

        Returns:
            The checkpoint now stored

        Raises:
            PersistenceError: If the store cannot be read or written
        """
        candidate = value or Checkpoint.now()
        current = self.cursor_store.get()
        target = current.later_of(candidate)
        if target != current:
            self.cursor_store.set(target)
            CHECKPOINT_TIMESTAMP.set(target.timestamp.timestamp())
            logger.info(
                "checkpoint_advanced", previous=current.token, checkpoint=target.token
            )
        return target

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def execute(self) -> Optional[CycleResult]:
        """Run one cycle, or skip it when disabled, then rearm the timer.

        Returns:
            The cycle result (marked failed if the cycle crashed), or None if
            the agent is disabled or another cycle is running
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("sync_cycle_already_running")
            return None

        started = datetime.now(timezone.utc)
        with correlation_id_context(f"sync-{started.strftime('%Y%m%d-%H%M%S')}"):
            try:
                if not self.is_enabled:
                    logger.info("sync_cycle_skipped", reason="disabled")
                    SYNC_CYCLES.labels(status="skipped").inc()
                    self._publish(SyncEvent.skipped())
                    return None

                with CYCLE_DURATION.time():
                    result = asyncio.run(self.run_cycle(started))

            except Exception as e:
                logger.error("sync_cycle_crashed", error=str(e), exc_info=True)
                result = self._fail(CycleResult(), f"Unexpected error: {e}")

            finally:
                self._cycle_lock.release()
                self.scheduler.rearm(self.interval_seconds)

            self.last_result = result
            logger.debug("sync_cycle_finished", failed=result.failed)
            return result

    async def run_cycle(self, started: Optional[datetime] = None) -> CycleResult:
        """Execute the sync algorithm once.

        Args:
            started: Cycle start time; names the download folder and becomes
                the candidate checkpoint

        Returns:
            CycleResult describing the cycle
        """
        started = started or datetime.now(timezone.utc)
        with self._config_lock:
            credentials = self._credentials
            output_root = Path(self.config.output_folder)

        # Any store error fails the cycle, not only PersistenceError
        try:
            checkpoint = self.cursor_store.get()
        except Exception as e:
            return self._fail(CycleResult(), f"Checkpoint read failed: {e}")

        result = CycleResult(previous_checkpoint=checkpoint, new_checkpoint=checkpoint)
        cycle_folder = output_root / timestamp_folder_name(started)
        result.output_folder = str(cycle_folder)

        logger.info(
            "sync_cycle_started",
            checkpoint=checkpoint.token,
            output_folder=str(cycle_folder),
        )

        seen: Set[str] = set()
        page = 0
        try:
            while True:
                if page >= self.config.max_pages:
                    raise CatalogError(
                        f"Catalog still returning items after {page} pages"
                    )

                items = await self.get_videos(checkpoint, page, credentials)
                if not items:
                    break

                for item_id, locator in items.items():
                    await self._sync_item(
                        item_id, locator, output_root, cycle_folder, seen, result
                    )

                result.pages_processed += 1
                page += 1

        except CatalogError as e:
            return self._fail(result, str(e))

        new_checkpoint = checkpoint.later_of(Checkpoint(timestamp=started))
        try:
            if new_checkpoint != checkpoint:
                self.cursor_store.set(new_checkpoint)
        except Exception as e:
            return self._fail(result, f"Checkpoint write failed: {e}")

        result.new_checkpoint = new_checkpoint
        CHECKPOINT_TIMESTAMP.set(new_checkpoint.timestamp.timestamp())
        SYNC_CYCLES.labels(status="completed").inc()

        logger.info("sync_cycle_completed", **result.to_dict())
        self._publish(
            SyncEvent.completed(
                items_attempted=result.items_attempted,
                items_succeeded=result.items_succeeded,
                failed=False,
            )
        )
        return result

    async def get_videos(
        self,
        checkpoint: Checkpoint,
        page: int,
        credentials: Optional[Credentials] = None,
    ) -> CatalogPage:
        """Fetch one catalog page under the call timeout.

        Raises:
            CatalogError: On any catalog failure, including timeout
        """
        try:
            items = await asyncio.wait_for(
                self.catalog.list(checkpoint, page, credentials),
                timeout=self.config.call_timeout_seconds,
            )
        except CatalogError:
            CATALOG_PAGES.labels(status="failed").inc()
            raise
        except asyncio.TimeoutError as e:
            CATALOG_PAGES.labels(status="failed").inc()
            raise CatalogError(
                f"Catalog page {page} timed out after "
                f"{self.config.call_timeout_seconds}s"
            ) from e
        except Exception as e:
            CATALOG_PAGES.labels(status="failed").inc()
            raise CatalogError(f"Catalog page {page} failed: {e}") from e

        CATALOG_PAGES.labels(status="success").inc()
        return dict(items or {})

    async def _sync_item(
        self,
        item_id: str,
        locator: str,
        output_root: Path,
        cycle_folder: Path,
        seen: Set[str],
        result: CycleResult,
    ) -> None:
        if item_id in seen:
            return
        seen.add(item_id)

        existing = find_existing_item(output_root, item_filename(item_id, locator))
        if existing is not None:
            logger.debug("item_already_present", item_id=item_id, path=str(existing))
            result.items_skipped += 1
            SYNC_ITEMS.labels(status="skipped").inc()
            return

        succeeded = False
        with MetricsContext(
            histogram=DOWNLOAD_DURATION,
            success_counter=SYNC_ITEMS.labels(status="downloaded"),
            failure_counter=SYNC_ITEMS.labels(status="failed"),
        ) as ctx:
            try:
                succeeded = bool(
                    await asyncio.wait_for(
                        self.downloader.fetch(locator, cycle_folder, item_id),
                        timeout=self.config.call_timeout_seconds,
                    )
                )
            except asyncio.TimeoutError:
                logger.warning("item_download_timeout", item_id=item_id)
            except Exception as e:
                logger.warning("item_download_error", item_id=item_id, error=str(e))

            if succeeded:
                ctx.mark_success()

        result.record_download(item_id, succeeded)

    def _fail(self, result: CycleResult, reason: str) -> CycleResult:
        result.mark_failed(reason)
        SYNC_CYCLES.labels(status="failed").inc()
        logger.error("sync_cycle_failed", **result.to_dict())

        self._publish(SyncEvent.error(reason=reason))
        self._publish(
            SyncEvent.completed(
                items_attempted=result.items_attempted,
                items_succeeded=result.items_succeeded,
                failed=True,
            )
        )
        return result

    def _publish(self, event: SyncEvent) -> None:
        if event.correlation_id is None:
            event = event.model_copy(update={"correlation_id": get_correlation_id()})
        self.hub.publish(event)

    def get_status(self) -> Dict[str, Any]:
        """Get agent status information."""
        try:
            checkpoint: Optional[str] = self.cursor_store.get().token
        except PersistenceError as e:
            checkpoint = f"unreadable: {e}"

        return {
            "enabled": self.is_enabled,
            "interval_seconds": self.interval_seconds,
            "output_folder": str(self.config.output_folder),
            "checkpoint": checkpoint,
            "has_credentials": self.has_credentials,
            "scheduler": self.scheduler.get_status(),
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
