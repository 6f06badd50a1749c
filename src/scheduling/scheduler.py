"""APScheduler wrapper driving the sync cycle.

Provides:
- A dedicated background execution context (one worker thread)
- Fixed-cadence, single-flight execution of a zero-argument task
- Rearming after every run, including failed ones
- Blocking, cooperative shutdown

Every fire is a one-shot job. The next job is created only after the
current task has returned, so runs never overlap and late fires never
queue up behind a slow cycle.

Usage:
    scheduler = SyncScheduler(agent.execute, interval_seconds=60)
    scheduler.start()
    ...
    scheduler.stop()  # returns once the in-flight run has finished
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from src.observability.metrics import SCHEDULER_JOBS
from src.utils.exceptions import ConfigurationError

logger = structlog.get_logger()


class SyncScheduler:
    """Runs a task on a fixed cadence off the caller's thread.

    Wraps APScheduler's BackgroundScheduler with:
    - A single-worker executor (the execution context)
    - In-flight tracking so rearm requests made during a run are deferred
    - Error isolation: a failing task never stops the loop
    - Graceful shutdown
    """

    def __init__(
        self,
        task: Callable[[], Any],
        interval_seconds: float = 60,
        job_id: str = "sync_cycle",
    ):
        """Initialize scheduler.

        Args:
            task: Zero-argument callable executed once per fire
            interval_seconds: Default delay between the end of a run and the next fire
            job_id: APScheduler job identifier

        Raises:
            ConfigurationError: If interval_seconds is not positive
        """
        self.task = task
        self.interval_seconds = _validate_seconds(interval_seconds)
        self.job_id = job_id

        self._lock = threading.RLock()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._stopping = False
        self._in_flight = False
        self._worker_ident: Optional[int] = None
        self._next_delay: Optional[float] = None

        self.run_count = 0
        self.error_count = 0
        self.last_run: Optional[datetime] = None

    def start(self) -> None:
        """Start the execution context and schedule the first fire.

        Calling start on a running scheduler is a no-op.
        """
        with self._lock:
            if self._scheduler is not None:
                logger.warning("scheduler_already_running", job_id=self.job_id)
                return

            self._stopping = False
            self._in_flight = False
            self._next_delay = None
            self._scheduler = BackgroundScheduler(
                timezone=timezone.utc,
                executors={"default": ThreadPoolExecutor(max_workers=1)},
                job_defaults={
                    # Second instance can only ever wait in the one-worker pool
                    "max_instances": 2,
                    "coalesce": True,
                    "misfire_grace_time": None,
                },
            )
            self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
            self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
            self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
            self._scheduler.start()

            self._arm(self.interval_seconds)

        logger.info(
            "scheduler_started",
            job_id=self.job_id,
            interval_seconds=self.interval_seconds,
        )

    def stop(self) -> None:
        """Cancel the pending fire and wait for an in-flight run to finish.

        No task invocation happens after stop returns. When called from
        inside the task itself, the scheduler is shut down without waiting.
        """
        with self._lock:
            scheduler = self._scheduler
            if scheduler is None:
                return
            self._stopping = True
            try:
                scheduler.remove_job(self.job_id)
            except JobLookupError:
                pass
            own_thread = threading.get_ident() == self._worker_ident

        logger.info("scheduler_shutting_down", job_id=self.job_id, waiting=not own_thread)

        # Blocks until the in-flight run returns
        scheduler.shutdown(wait=not own_thread)

        with self._lock:
            if self._scheduler is scheduler:
                self._scheduler = None
            self._update_metrics()

        logger.info("scheduler_stopped", job_id=self.job_id)

    def rearm(self, seconds: Optional[float] = None) -> bool:
        """Schedule the next fire.

        During a run the request is recorded and applied when the run
        returns; otherwise the pending fire is replaced.

        Args:
            seconds: Delay until the next fire (default: interval_seconds)

        Returns:
            False if the scheduler is stopped or stopping.

        Raises:
            ConfigurationError: If seconds is not positive
        """
        delay = self.interval_seconds if seconds is None else _validate_seconds(seconds)

        with self._lock:
            if self._scheduler is None or self._stopping:
                return False

            if self._in_flight:
                self._next_delay = delay
            else:
                self._arm(delay)
        return True

    def _arm(self, seconds: float) -> None:
        # Caller holds self._lock
        assert self._scheduler is not None
        run_date = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        self._scheduler.add_job(
            self._run_task,
            trigger=DateTrigger(run_date=run_date),
            id=self.job_id,
            name=self.job_id,
            replace_existing=True,
        )
        logger.debug("scheduler_armed", job_id=self.job_id, run_date=run_date.isoformat())
        self._update_metrics()

    def _run_task(self) -> None:
        with self._lock:
            if self._stopping:
                return
            self._in_flight = True
            self._next_delay = None
            self._worker_ident = threading.get_ident()
            self._update_metrics()

        try:
            self.task()
        except Exception as e:
            self.error_count += 1
            logger.error(
                "scheduled_task_failed",
                job_id=self.job_id,
                error=str(e),
                exc_info=True,
            )
        finally:
            self.run_count += 1
            self.last_run = datetime.now(timezone.utc)
            with self._lock:
                self._in_flight = False
                if self._scheduler is not None and not self._stopping:
                    delay = self._next_delay
                    self._arm(self.interval_seconds if delay is None else delay)
                self._next_delay = None

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        logger.debug(
            "job_executed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            "job_failed",
            job_id=event.job_id,
            exception=str(event.exception),
            traceback=event.traceback,
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning(
            "job_missed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )

    def _update_metrics(self) -> None:
        pending = 1 if self.next_run_time is not None else 0
        SCHEDULER_JOBS.labels(status="pending").set(pending)
        SCHEDULER_JOBS.labels(status="running").set(1 if self._in_flight else 0)

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._scheduler is not None and not self._stopping

    @property
    def in_flight(self) -> bool:
        """True while the task is executing."""
        return self._in_flight

    @property
    def next_run_time(self) -> Optional[datetime]:
        """Time of the pending fire, if any."""
        scheduler = self._scheduler
        if scheduler is None:
            return None
        job = scheduler.get_job(self.job_id)
        return getattr(job, "next_run_time", None) if job else None

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status information."""
        next_run = self.next_run_time
        return {
            "job_id": self.job_id,
            "running": self.is_running,
            "in_flight": self._in_flight,
            "interval_seconds": self.interval_seconds,
            "next_run_time": next_run.isoformat() if next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }


def _validate_seconds(seconds: float) -> float:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds <= 0:
        raise ConfigurationError(f"Interval must be a positive number of seconds: {seconds!r}")
    return seconds
