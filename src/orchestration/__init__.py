"""Orchestration module for the video sync cycle.

Provides:
- SyncVideoAgent: timer-driven catalog-to-disk sync
- CycleResult: outcome of one sync cycle
"""

from src.orchestration.result import CycleResult
from src.orchestration.sync_agent import SyncVideoAgent

__all__ = [
    "CycleResult",
    "SyncVideoAgent",
]
