"""
Cursor store for incremental sync progress.

Persists the single "last update timestamp" checkpoint between runs.
Uses atomic file writes so a reader never sees a half-written value.
"""

import contextlib
import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from src.models.sync import Checkpoint
from src.utils.exceptions import PersistenceError

logger = structlog.get_logger()

LAST_UPDATE_KEY = "last_update_timestamp"


@runtime_checkable
class CursorStore(Protocol):
    """Durable storage for the sync checkpoint."""

    def get(self) -> Checkpoint:
        """Return the stored checkpoint, or the epoch sentinel if none."""
        ...

    def set(self, checkpoint: Checkpoint) -> None:
        """Persist the checkpoint atomically. Raises PersistenceError."""
        ...


class FileCursorStore:
    """
    JSON-file backed cursor store.

    Missing file or key means "never synced" and yields the epoch sentinel.
    Any other read problem is reported, not masked.
    """

    def __init__(self, state_file: Path):
        """
        Initialize cursor store.

        Args:
            state_file: Path of the JSON state file
        """
        self.state_file = Path(state_file)
        self._lock = threading.Lock()

        logger.info("cursor_store_initialized", state_file=str(self.state_file))

    def get(self) -> Checkpoint:
        """
        Load the persisted checkpoint.

        Returns:
            Stored checkpoint, or Checkpoint.epoch() if nothing is stored

        Raises:
            PersistenceError: If the state file is unreadable or corrupt
        """
        with self._lock:
            data = self._read_state()

        value = data.get(LAST_UPDATE_KEY)
        if not value:
            logger.debug("no_checkpoint_found", state_file=str(self.state_file))
            return Checkpoint.epoch()

        try:
            return Checkpoint.parse(value)
        except (TypeError, ValueError) as e:
            logger.error(
                "checkpoint_parse_error", state_file=str(self.state_file), error=str(e)
            )
            raise PersistenceError(f"Invalid checkpoint value {value!r}: {e}") from e

    def set(self, checkpoint: Checkpoint) -> None:
        """
        Save checkpoint atomically.

        Args:
            checkpoint: Checkpoint to persist

        Raises:
            PersistenceError: If the write fails
        """
        payload = {
            LAST_UPDATE_KEY: checkpoint.token,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        with self._lock:
            self._write_state(payload)

        logger.debug("checkpoint_saved", checkpoint=checkpoint.token)

    def reset(self) -> None:
        """Forget the stored checkpoint so the next cycle starts from epoch."""
        with self._lock:
            try:
                self.state_file.unlink(missing_ok=True)
            except OSError as e:
                logger.error(
                    "checkpoint_clear_error",
                    state_file=str(self.state_file),
                    error=str(e),
                )
                raise PersistenceError(f"Failed to clear checkpoint: {e}") from e

        logger.info("checkpoint_cleared", state_file=str(self.state_file))

    def _read_state(self) -> dict:
        if not self.state_file.exists():
            return {}

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(
                "checkpoint_load_error", state_file=str(self.state_file), error=str(e)
            )
            raise PersistenceError(f"Failed to read checkpoint: {e}") from e

        if not isinstance(data, dict):
            raise PersistenceError(f"Corrupt state file: {self.state_file}")
        return data

    def _write_state(self, payload: dict) -> None:
        # Atomic write: write to temp file, then replace
        temp_file = self.state_file.with_suffix(".tmp")

        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_file, self.state_file)

        except OSError as e:
            logger.error(
                "checkpoint_save_error", state_file=str(self.state_file), error=str(e)
            )
            with contextlib.suppress(OSError):
                temp_file.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write checkpoint: {e}") from e
