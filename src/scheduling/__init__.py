"""Scheduling module for the video sync agent.

Provides:
- APScheduler wrapper running the sync cycle off the caller's thread
- Single-flight, fixed-cadence rearming after every run

Usage:
    from src.scheduling import SyncScheduler

    scheduler = SyncScheduler(agent.execute, interval_seconds=60)
    scheduler.start()
    ...
    scheduler.stop()
"""

from src.scheduling.scheduler import SyncScheduler

__all__ = [
    "SyncScheduler",
]
