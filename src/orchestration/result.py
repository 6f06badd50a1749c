"""Sync cycle result data structure."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.models.sync import Checkpoint


@dataclass
class CycleResult:
    """Result of one sync cycle.

    ``failed`` is a cycle-level flag: it is set only when the catalog could
    not be enumerated, the checkpoint could not be read or written, or the
    cycle crashed.
    Individual download failures are listed in ``failed_items``.
    """

    previous_checkpoint: Checkpoint = field(default_factory=Checkpoint.epoch)
    new_checkpoint: Checkpoint = field(default_factory=Checkpoint.epoch)
    items_attempted: int = 0
    items_succeeded: int = 0
    items_skipped: int = 0
    pages_processed: int = 0
    failed_items: List[str] = field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None
    output_folder: Optional[str] = None

    @property
    def checkpoint_advanced(self) -> bool:
        return self.new_checkpoint.timestamp > self.previous_checkpoint.timestamp

    def record_download(self, item_id: str, succeeded: bool) -> None:
        """Count one attempted download."""
        self.items_attempted += 1
        if succeeded:
            self.items_succeeded += 1
        else:
            self.failed_items.append(item_id)

    def mark_failed(self, reason: str) -> None:
        self.failed = True
        self.error = reason
        self.new_checkpoint = self.previous_checkpoint

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "previous_checkpoint": self.previous_checkpoint.token,
            "new_checkpoint": self.new_checkpoint.token,
            "items_attempted": self.items_attempted,
            "items_succeeded": self.items_succeeded,
            "items_skipped": self.items_skipped,
            "pages_processed": self.pages_processed,
            "failed_items": self.failed_items,
            "failed": self.failed,
            "error": self.error,
            "output_folder": self.output_folder,
        }
