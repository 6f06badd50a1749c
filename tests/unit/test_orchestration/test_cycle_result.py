"""Tests for CycleResult."""

from src.models.sync import Checkpoint
from src.orchestration.result import CycleResult


class TestCycleResult:
    """Tests for CycleResult counters and failure marking."""

    def test_defaults(self):
        result = CycleResult()

        assert result.items_attempted == 0
        assert result.failed is False
        assert result.previous_checkpoint.is_epoch
        assert result.checkpoint_advanced is False

    def test_record_download(self):
        """Should count attempts and remember failed ids."""
        result = CycleResult()

        result.record_download("A", True)
        result.record_download("B", False)

        assert result.items_attempted == 2
        assert result.items_succeeded == 1
        assert result.failed_items == ["B"]

    def test_mark_failed_restores_checkpoint(self):
        """Should leave the checkpoint where the cycle found it."""
        previous = Checkpoint.parse("2026-01-01T00:00:00Z")
        result = CycleResult(
            previous_checkpoint=previous,
            new_checkpoint=Checkpoint.parse("2026-02-01T00:00:00Z"),
        )
        assert result.checkpoint_advanced is True

        result.mark_failed("catalog down")

        assert result.failed is True
        assert result.error == "catalog down"
        assert result.new_checkpoint == previous
        assert result.checkpoint_advanced is False

    def test_to_dict(self):
        result = CycleResult(output_folder="/videos/2026-10-19_14-05-00")
        result.record_download("A", True)

        data = result.to_dict()

        assert data["items_succeeded"] == 1
        assert data["previous_checkpoint"] == "1970-01-01T00:00:00Z"
        assert data["output_folder"] == "/videos/2026-10-19_14-05-00"
        assert data["failed"] is False
