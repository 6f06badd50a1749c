"""Tests for SyncVideoAgent.

Collaborators are in-memory fakes; cycles are driven through execute()
and run_cycle() on the test thread unless a test needs the real timer.
"""

import asyncio
import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import MagicMock, patch

import pytest

from src.models.config import SyncConfig
from src.models.sync import AgentConfig, Checkpoint, Credentials, EventType, SyncEvent
from src.orchestration.sync_agent import SyncVideoAgent
from src.services.catalog_client import HttpCatalogClient
from src.services.cursor_store import FileCursorStore
from src.services.download_service import HttpDownloader
from src.services.notification_service import NotificationHub
from src.utils.exceptions import CatalogError, ConfigurationError, PersistenceError
from src.utils.paths import FOLDER_FORMAT, item_filename


class FakeCatalog:
    """Serves fixed pages; anything past the last page is empty."""

    def __init__(self, pages=None, error: Optional[Exception] = None, delay: float = 0):
        self.pages: List[Dict[str, str]] = pages or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def list(self, checkpoint, page, credentials=None):
        self.calls.append((checkpoint, page, credentials))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return dict(self.pages[page]) if page < len(self.pages) else {}


class FakeDownloader:
    """Writes a small file per item unless the item is listed as failing."""

    def __init__(self, failing=(), raising=(), delay: float = 0):
        self.failing = set(failing)
        self.raising = set(raising)
        self.delay = delay
        self.calls = []

    async def fetch(self, locator, destination_folder, item_id):
        self.calls.append((locator, destination_folder, item_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if item_id in self.raising:
            raise RuntimeError(f"downloader bug on {item_id}")
        if item_id in self.failing:
            return False
        destination_folder.mkdir(parents=True, exist_ok=True)
        (destination_folder / item_filename(item_id, locator)).write_bytes(b"video")
        return True


class MemoryCursorStore:
    def __init__(self, checkpoint: Optional[Checkpoint] = None):
        self.value = checkpoint or Checkpoint.epoch()
        self.get_error: Optional[Exception] = None
        self.set_error: Optional[Exception] = None
        self.gets = 0
        self.sets: List[Checkpoint] = []

    def get(self):
        self.gets += 1
        if self.get_error is not None:
            raise self.get_error
        return self.value

    def set(self, checkpoint):
        if self.set_error is not None:
            raise self.set_error
        self.sets.append(checkpoint)
        self.value = checkpoint


@pytest.fixture
def hub():
    hub = NotificationHub(name="agent-test-hub")
    yield hub
    hub.close()


@pytest.fixture
def events(hub):
    received: List[SyncEvent] = []
    hub.subscribe(received.append)
    return received


@pytest.fixture
def store():
    return MemoryCursorStore(Checkpoint.parse("2020-01-01T00:00:00Z"))


@pytest.fixture
def make_agent(tmp_path, hub, store):
    created = []

    def factory(catalog=None, downloader=None, **config_values):
        config_values.setdefault("output_folder", tmp_path / "videos")
        agent = SyncVideoAgent(
            config=AgentConfig(**config_values),
            catalog=catalog or FakeCatalog(),
            downloader=downloader or FakeDownloader(),
            cursor_store=store,
            hub=hub,
        )
        created.append(agent)
        return agent

    yield factory
    for agent in created:
        agent.scheduler.stop()


def _types(hub, events):
    hub.flush(timeout=5)
    return [e.type for e in events]


class TestConstruction:
    """Tests for agent construction and configuration."""

    def test_requires_agent_config(self, store):
        """Should reject anything but an AgentConfig."""
        with pytest.raises(ConfigurationError):
            SyncVideoAgent(
                config={"output_folder": "x"},
                catalog=FakeCatalog(),
                downloader=FakeDownloader(),
                cursor_store=store,
            )

    def test_defaults(self, make_agent):
        agent = make_agent()

        assert agent.is_enabled is True
        assert agent.interval_seconds == 60
        assert agent.is_running is False
        assert agent.has_credentials is False

    def test_enable_disable(self, make_agent):
        agent = make_agent()

        agent.disable()
        assert agent.is_enabled is False

        agent.enable()
        assert agent.is_enabled is True

    @pytest.mark.parametrize("seconds", [0, -1, True, 1.5, "60"])
    def test_arm_timer_rejects_invalid(self, make_agent, seconds):
        """Should raise ConfigurationError for anything but a positive int."""
        agent = make_agent()

        with pytest.raises(ConfigurationError):
            agent.arm_timer(seconds)

        assert agent.interval_seconds == 60

    def test_arm_timer_updates_interval_and_rearms(self, make_agent):
        agent = make_agent()

        with patch.object(agent.scheduler, "rearm") as rearm:
            agent.arm_timer(120)

        assert agent.interval_seconds == 120
        assert agent.scheduler.interval_seconds == 120
        rearm.assert_called_once_with(120)

    def test_arm_timer_default(self, make_agent):
        """Should default to 60 seconds."""
        agent = make_agent(interval_seconds=5)

        agent.arm_timer()

        assert agent.interval_seconds == 60

    def test_set_credentials(self, make_agent):
        agent = make_agent()

        agent.set_credentials(Credentials(token="tok"))
        assert agent.has_credentials is True

        agent.set_credentials(None)
        assert agent.has_credentials is False


class TestCycleScenarios:
    """End-to-end cycle behavior with fake collaborators."""

    def test_partial_download_failure_still_advances(self, make_agent, store, hub, events):
        """One failed item still completes the cycle and moves the checkpoint."""
        catalog = FakeCatalog(
            pages=[{"A": "https://cdn.example.com/A.mp4", "B": "https://cdn.example.com/B.mp4"}]
        )
        downloader = FakeDownloader(failing={"B"})
        agent = make_agent(catalog, downloader)
        previous = store.value

        with patch.object(agent.scheduler, "rearm") as rearm:
            result = agent.execute()

        assert result is not None
        assert result.items_attempted == 2
        assert result.items_succeeded == 1
        assert result.failed is False
        assert result.failed_items == ["B"]
        assert store.value.timestamp > previous.timestamp
        assert result.new_checkpoint == store.value
        rearm.assert_called_once_with(60)

        hub.flush(timeout=5)
        completed = [e for e in events if e.type == EventType.CYCLE_COMPLETED]
        assert len(completed) == 1
        assert completed[0].payload == {
            "items_attempted": 2,
            "items_succeeded": 1,
            "failed": False,
        }

    def test_catalog_failure_keeps_checkpoint(self, make_agent, store, hub, events):
        """A catalog error fails the cycle, publishes an error and rearms."""
        agent = make_agent(FakeCatalog(error=CatalogError("catalog unavailable")))
        previous = store.value

        with patch.object(agent.scheduler, "rearm") as rearm:
            result = agent.execute()

        assert result.failed is True
        assert "catalog unavailable" in result.error
        assert store.value == previous
        assert store.sets == []
        rearm.assert_called_once_with(60)

        assert _types(hub, events) == [EventType.CYCLE_ERROR, EventType.CYCLE_COMPLETED]
        assert events[0].payload["reason"] == "catalog unavailable"
        assert events[1].payload["failed"] is True

    def test_unexpected_catalog_exception_is_catalog_failure(self, make_agent, store):
        agent = make_agent(FakeCatalog(error=RuntimeError("socket closed")))
        previous = store.value

        result = agent.execute()

        assert result.failed is True
        assert "socket closed" in result.error
        assert store.value == previous

    def test_catalog_failure_on_later_page(self, make_agent, store):
        """Items from earlier pages are kept but the checkpoint does not move."""

        class FailsOnSecondPage(FakeCatalog):
            async def list(self, checkpoint, page, credentials=None):
                if page == 1:
                    raise CatalogError("page 1 broken")
                return await super().list(checkpoint, page, credentials)

        downloader = FakeDownloader()
        agent = make_agent(
            FailsOnSecondPage(pages=[{"A": "https://cdn/A.mp4"}]), downloader
        )
        previous = store.value

        result = agent.execute()

        assert result.failed is True
        assert result.items_succeeded == 1
        assert store.value == previous

    def test_catalog_timeout(self, make_agent, store):
        """A hung catalog call fails the cycle after call_timeout_seconds."""
        agent = make_agent(FakeCatalog(delay=5), call_timeout_seconds=0.05)

        result = agent.execute()

        assert result.failed is True
        assert "timed out" in result.error
        assert store.sets == []

    def test_pages_enumerated_until_empty(self, make_agent):
        catalog = FakeCatalog(
            pages=[{"A": "https://cdn/A.mp4"}, {"B": "https://cdn/B.mp4"}]
        )
        agent = make_agent(catalog)

        result = agent.execute()

        assert [call[1] for call in catalog.calls] == [0, 1, 2]
        assert result.pages_processed == 2
        assert result.items_succeeded == 2

    def test_every_page_uses_cycle_checkpoint(self, make_agent, store):
        catalog = FakeCatalog(pages=[{"A": "https://cdn/A.mp4"}])
        agent = make_agent(catalog)
        previous = store.value

        agent.execute()

        assert all(call[0] == previous for call in catalog.calls)

    def test_page_limit(self, make_agent, store):
        """A catalog that never returns an empty page fails the cycle."""

        class EndlessCatalog(FakeCatalog):
            async def list(self, checkpoint, page, credentials=None):
                self.calls.append(page)
                return {f"item-{page}": f"https://cdn/{page}.mp4"}

        agent = make_agent(EndlessCatalog(), max_pages=2)

        result = agent.execute()

        assert result.failed is True
        assert "after 2 pages" in result.error
        assert store.sets == []

    def test_empty_catalog_advances_without_folder(self, make_agent, store, tmp_path):
        """No items still advances, and no cycle folder is created."""
        agent = make_agent(FakeCatalog())
        previous = store.value

        result = agent.execute()

        assert result.failed is False
        assert result.items_attempted == 0
        assert store.value.timestamp > previous.timestamp
        assert not Path(result.output_folder).exists()


class TestItemHandling:
    """Tests for per-item download behavior."""

    def test_items_land_in_timestamped_folder(self, make_agent, tmp_path):
        agent = make_agent(FakeCatalog(pages=[{"A": "https://cdn/A.webm"}]))

        result = agent.execute()

        folder = Path(result.output_folder)
        assert folder.parent == tmp_path / "videos"
        datetime.strptime(folder.name, FOLDER_FORMAT)
        assert (folder / "A.webm").read_bytes() == b"video"

    def test_existing_items_skipped(self, make_agent, tmp_path):
        """Items downloaded by an earlier cycle are not fetched again."""
        earlier = tmp_path / "videos" / "2026-10-01_00-00-00"
        earlier.mkdir(parents=True)
        (earlier / "A.mp4").write_bytes(b"old")
        downloader = FakeDownloader()
        agent = make_agent(
            FakeCatalog(pages=[{"A": "https://cdn/A.mp4", "B": "https://cdn/B.mp4"}]),
            downloader,
        )

        result = agent.execute()

        assert [call[2] for call in downloader.calls] == ["B"]
        assert result.items_skipped == 1
        assert result.items_attempted == 1

    def test_ids_sharing_a_sanitized_name_are_all_downloaded(self, make_agent, store):
        """Distinct remote ids never shadow each other on disk."""
        downloader = FakeDownloader()
        agent = make_agent(
            FakeCatalog(
                pages=[
                    {
                        "show1/ep1": "https://cdn/a.mp4",
                        "show2/ep1": "https://cdn/b.mp4",
                        "a b": "https://cdn/c.mp4",
                        "a_b": "https://cdn/d.mp4",
                    }
                ]
            ),
            downloader,
        )

        result = agent.execute()

        assert sorted(call[2] for call in downloader.calls) == [
            "a b",
            "a_b",
            "show1/ep1",
            "show2/ep1",
        ]
        assert result.items_attempted == 4
        assert result.items_succeeded == 4
        assert result.items_skipped == 0
        assert len(list(Path(result.output_folder).iterdir())) == 4

    def test_duplicate_across_pages_fetched_once(self, make_agent):
        downloader = FakeDownloader(failing={"A"})
        agent = make_agent(
            FakeCatalog(pages=[{"A": "https://cdn/A.mp4"}, {"A": "https://cdn/A.mp4"}]),
            downloader,
        )

        result = agent.execute()

        assert len(downloader.calls) == 1
        assert result.items_attempted == 1

    def test_raising_downloader_counts_as_item_failure(self, make_agent, store):
        """A downloader exception fails the item, not the cycle."""
        agent = make_agent(
            FakeCatalog(pages=[{"A": "https://cdn/A.mp4", "B": "https://cdn/B.mp4"}]),
            FakeDownloader(raising={"A"}),
        )

        result = agent.execute()

        assert result.failed is False
        assert result.failed_items == ["A"]
        assert result.items_succeeded == 1
        assert store.sets

    def test_download_timeout_counts_as_item_failure(self, make_agent):
        agent = make_agent(
            FakeCatalog(pages=[{"A": "https://cdn/A.mp4"}]),
            FakeDownloader(delay=5),
            call_timeout_seconds=0.05,
        )

        result = agent.execute()

        assert result.failed is False
        assert result.failed_items == ["A"]


class TestCheckpointHandling:
    """Tests for checkpoint reads, writes and monotonicity."""

    def test_checkpoint_never_moves_backward(self, make_agent, store):
        """A checkpoint ahead of the clock is kept."""
        future = Checkpoint(timestamp=datetime.now(timezone.utc) + timedelta(days=1))
        store.value = future
        agent = make_agent()

        result = agent.execute()

        assert result.failed is False
        assert store.value == future
        assert store.sets == []

    def test_checkpoint_read_failure(self, make_agent, store, hub, events):
        """An unreadable checkpoint fails the cycle before the catalog is called."""
        store.get_error = PersistenceError("disk gone")
        catalog = FakeCatalog()
        agent = make_agent(catalog)

        result = agent.execute()

        assert result.failed is True
        assert "disk gone" in result.error
        assert catalog.calls == []
        assert _types(hub, events) == [EventType.CYCLE_ERROR, EventType.CYCLE_COMPLETED]

    def test_checkpoint_write_failure(self, make_agent, store, hub, events):
        """A failed write marks the cycle failed even after full enumeration."""
        store.set_error = PersistenceError("read-only filesystem")
        previous = store.value
        agent = make_agent(FakeCatalog(pages=[{"A": "https://cdn/A.mp4"}]))

        result = agent.execute()

        assert result.failed is True
        assert result.items_succeeded == 1
        assert result.new_checkpoint == previous
        assert "read-only" in result.error
        assert _types(hub, events) == [EventType.CYCLE_ERROR, EventType.CYCLE_COMPLETED]

    @pytest.mark.parametrize("error", [OSError("disk full"), RuntimeError("store bug")])
    def test_any_store_write_error_fails_cycle(self, make_agent, store, hub, events, error):
        """A store raising something other than PersistenceError still fails the cycle."""
        store.set_error = error
        previous = store.value
        agent = make_agent(FakeCatalog(pages=[{"A": "https://cdn/A.mp4"}]))

        result = agent.execute()

        assert result.failed is True
        assert str(error) in result.error
        assert result.new_checkpoint == previous
        assert _types(hub, events) == [EventType.CYCLE_ERROR, EventType.CYCLE_COMPLETED]
        assert events[1].payload["failed"] is True

    def test_any_store_read_error_fails_cycle(self, make_agent, store, hub, events):
        store.get_error = OSError("permission denied")
        catalog = FakeCatalog()
        agent = make_agent(catalog)

        result = agent.execute()

        assert result.failed is True
        assert "permission denied" in result.error
        assert catalog.calls == []
        assert _types(hub, events) == [EventType.CYCLE_ERROR, EventType.CYCLE_COMPLETED]

    def test_file_store_write_failure_fails_cycle(self, tmp_path, hub, events):
        """An unwritable state file ends in a failed cycle, not a crash."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        agent = SyncVideoAgent(
            config=AgentConfig(output_folder=tmp_path / "videos"),
            catalog=FakeCatalog(pages=[{"A": "https://cdn/A.mp4"}]),
            downloader=FakeDownloader(),
            cursor_store=FileCursorStore(blocker / "sync_state.json"),
            hub=hub,
        )

        try:
            result = agent.execute()
        finally:
            agent.scheduler.stop()

        assert result.failed is True
        assert "Checkpoint write failed" in result.error
        assert result.items_succeeded == 1
        assert _types(hub, events) == [EventType.CYCLE_ERROR, EventType.CYCLE_COMPLETED]

    def test_get_last_update_timestamp(self, make_agent, store):
        agent = make_agent()

        assert agent.get_last_update_timestamp() == store.value

    def test_set_last_update_timestamp_is_monotonic(self, make_agent, store):
        agent = make_agent()
        current = store.value

        kept = agent.set_last_update_timestamp(Checkpoint.parse("2019-01-01T00:00:00Z"))
        assert kept == current
        assert store.sets == []

        advanced = agent.set_last_update_timestamp()
        assert advanced.timestamp > current.timestamp
        assert store.value == advanced


class TestDisabledAndErrors:
    """Tests for skipped cycles and unexpected failures."""

    def test_disabled_cycle_is_skipped(self, make_agent, store, hub, events):
        """A disabled agent publishes cycle.skipped and touches nothing."""
        catalog = FakeCatalog(pages=[{"A": "https://cdn/A.mp4"}])
        downloader = FakeDownloader()
        agent = make_agent(catalog, downloader, enabled=False)

        with patch.object(agent.scheduler, "rearm") as rearm:
            result = agent.execute()

        assert result is None
        assert catalog.calls == []
        assert downloader.calls == []
        assert store.gets == 0
        assert _types(hub, events) == [EventType.CYCLE_SKIPPED]
        rearm.assert_called_once_with(60)

    def test_reenabled_agent_runs(self, make_agent, store):
        catalog = FakeCatalog()
        agent = make_agent(catalog, enabled=False)

        agent.execute()
        agent.enable()
        result = agent.execute()

        assert result is not None
        assert len(catalog.calls) == 1

    def test_unexpected_error_published(self, make_agent, hub, events):
        """A crash inside the cycle is a failed cycle and the timer is rearmed."""
        agent = make_agent()

        with patch.object(agent, "run_cycle", side_effect=RuntimeError("bug")):
            with patch.object(agent.scheduler, "rearm") as rearm:
                result = agent.execute()

        assert result is not None
        assert result.failed is True
        assert "bug" in result.error
        assert agent.last_result is result
        assert _types(hub, events) == [EventType.CYCLE_ERROR, EventType.CYCLE_COMPLETED]
        assert "bug" in events[0].payload["reason"]
        assert events[1].payload["failed"] is True
        rearm.assert_called_once()

    def test_events_carry_cycle_correlation_id(self, make_agent, hub, events):
        agent = make_agent()

        agent.execute()

        hub.flush(timeout=5)
        assert re.match(r"^sync-\d{8}-\d{6}$", events[0].correlation_id)

    def test_concurrent_execute_is_rejected(self, make_agent):
        """Only one cycle runs at a time even when triggered by hand."""
        started = threading.Event()
        release = threading.Event()

        class BlockingCatalog(FakeCatalog):
            async def list(self, checkpoint, page, credentials=None):
                started.set()
                await asyncio.get_running_loop().run_in_executor(None, release.wait, 5)
                return {}

        agent = make_agent(BlockingCatalog())
        worker = threading.Thread(target=agent.execute)
        worker.start()
        assert started.wait(5)

        assert agent.execute() is None

        release.set()
        worker.join(5)


class TestCredentials:
    """Tests for credential handling."""

    @pytest.mark.asyncio
    async def test_credentials_passed_to_catalog(self, make_agent):
        catalog = FakeCatalog()
        agent = make_agent(catalog)
        credentials = Credentials(token="tok")
        agent.set_credentials(credentials)

        await agent.run_cycle()

        assert catalog.calls[0][2] == credentials


class TestStatusAndWiring:
    """Tests for status reporting and production wiring."""

    def test_get_status(self, make_agent, store):
        agent = make_agent()

        status = agent.get_status()

        assert status["enabled"] is True
        assert status["interval_seconds"] == 60
        assert status["checkpoint"] == store.value.token
        assert status["scheduler"]["running"] is False
        assert status["last_result"] is None

        agent.execute()
        assert agent.get_status()["last_result"]["failed"] is False

    def test_get_status_with_unreadable_store(self, make_agent, store):
        store.get_error = PersistenceError("corrupt")
        agent = make_agent()

        assert agent.get_status()["checkpoint"].startswith("unreadable")

    def test_from_config(self, tmp_path):
        config = SyncConfig(
            agent={"output_folder": str(tmp_path / "videos"), "interval_seconds": 30},
            catalog={"base_url": "https://catalog.example.com"},
            state={"state_file": str(tmp_path / "state.json")},
            credentials={"token": "tok"},
            notifications={
                "webhook": {"enabled": True, "url": "https://hooks.example.com/x"}
            },
        )
        hub = NotificationHub()

        agent = SyncVideoAgent.from_config(config, hub=hub)

        assert isinstance(agent.catalog, HttpCatalogClient)
        assert isinstance(agent.downloader, HttpDownloader)
        assert isinstance(agent.cursor_store, FileCursorStore)
        assert agent.interval_seconds == 30
        assert agent.has_credentials is True
        assert hub.subscriber_count == 1
        hub.close()


class TestTimerDriven:
    """Tests running cycles from the real scheduler."""

    def test_start_runs_cycles_and_stop_waits(self, make_agent, hub):
        """The timer drives cycles until stop, which waits for the current one."""
        completed = threading.Event()
        hub.subscribe(
            lambda e: completed.set() if e.type == EventType.CYCLE_COMPLETED else None
        )
        catalog = FakeCatalog()
        agent = make_agent(catalog, interval_seconds=1)

        agent.start()
        assert agent.is_running is True
        assert completed.wait(5)

        agent.stop()

        calls = len(catalog.calls)
        assert agent.is_running is False
        assert not agent.scheduler.in_flight
        threading.Event().wait(1.5)
        assert len(catalog.calls) == calls
