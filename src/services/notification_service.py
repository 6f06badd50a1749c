"""Notification hub for sync lifecycle events.

Provides publish/subscribe delivery of SyncEvents with:
- Handle-based, non-owning registration (optionally weak references)
- Fire-and-forget publication: a dispatcher thread delivers events FIFO
- Fail-safe observers: exceptions are logged and counted, never propagated
- Optional webhook observer posting cycle events over HTTP

Usage:
    from src.services.notification_service import NotificationHub

    hub = NotificationHub()
    handle = hub.subscribe(lambda event: print(event.type))
    hub.publish(SyncEvent.skipped())
    hub.unsubscribe(handle)
    hub.close()
"""

import asyncio
import queue
import threading
import uuid
import weakref
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
import structlog

from src.models.config import WebhookSettings
from src.models.sync import EventType, SyncEvent
from src.observability.metrics import EVENTS_PUBLISHED, OBSERVER_FAILURES

logger = structlog.get_logger()

Observer = Callable[[SyncEvent], Any]

_STOP = object()


class NotificationHub:
    """Publisher/subscriber registry for agent lifecycle events.

    ``publish`` snapshots the current subscribers and queues the event; the
    dispatcher thread then calls each observer in turn. An observer added
    after ``publish`` does not receive that event, and a slow observer only
    delays later deliveries, never the publisher.
    """

    def __init__(self, name: str = "notification-hub") -> None:
        """Initialize hub.

        Args:
            name: Name of the dispatcher thread.
        """
        self.name = name
        self._subscribers: Dict[str, Callable[[], Optional[Observer]]] = {}
        self._lock = threading.Lock()
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def subscribe(self, observer: Observer, weak: bool = False) -> str:
        """Register an observer.

        Args:
            observer: Callable receiving each SyncEvent.
            weak: Hold only a weak reference; the observer is dropped once
                its owner is garbage collected.

        Returns:
            Handle to pass to ``unsubscribe``.
        """
        if weak:
            ref: Callable[[], Optional[Observer]]
            if hasattr(observer, "__self__") and hasattr(observer, "__func__"):
                ref = weakref.WeakMethod(observer)  # type: ignore[arg-type]
            else:
                ref = weakref.ref(observer)
        else:
            ref = _strong_ref(observer)

        handle = uuid.uuid4().hex
        with self._lock:
            self._subscribers[handle] = ref

        logger.debug("observer_subscribed", handle=handle, weak=weak)
        return handle

    def unsubscribe(self, handle: str) -> bool:
        """Remove an observer.

        Returns:
            True if the handle was registered.
        """
        with self._lock:
            removed = self._subscribers.pop(handle, None) is not None

        if removed:
            logger.debug("observer_unsubscribed", handle=handle)
        return removed

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return sum(1 for ref in self._subscribers.values() if ref() is not None)

    def publish(self, event: SyncEvent) -> None:
        """Queue an event for delivery and return immediately."""
        if self._closed:
            logger.warning("event_dropped_hub_closed", event_type=event.type.value)
            return

        with self._lock:
            snapshot = list(self._subscribers.items())
            self._ensure_dispatcher()

        EVENTS_PUBLISHED.labels(event_type=event.type.value).inc()
        self._queue.put((event, snapshot))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until all queued events have been delivered.

        Returns:
            True if the queue drained within ``timeout``.
        """
        if (
            self._closed
            or self._thread is None
            or threading.current_thread() is self._thread
        ):
            return True

        done = threading.Event()
        self._queue.put(done)
        return done.wait(timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Deliver queued events, then stop the dispatcher thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread

        if thread is not None:
            self._queue.put(_STOP)
            if threading.current_thread() is not thread:
                thread.join(timeout)

        logger.debug("notification_hub_closed", name=self.name)

    def _ensure_dispatcher(self) -> None:
        # Caller holds self._lock
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(
                target=self._dispatch_loop, name=self.name, daemon=True
            )
            self._thread.start()

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            if isinstance(item, threading.Event):
                item.set()
                continue

            event, snapshot = item
            self._deliver(event, snapshot)

    def _deliver(
        self,
        event: SyncEvent,
        snapshot: List[Tuple[str, Callable[[], Optional[Observer]]]],
    ) -> None:
        for handle, ref in snapshot:
            observer = ref()
            if observer is None:
                self.unsubscribe(handle)
                continue

            try:
                observer(event)
            except Exception as e:
                OBSERVER_FAILURES.inc()
                logger.warning(
                    "observer_failed",
                    handle=handle,
                    event_type=event.type.value,
                    error=str(e),
                )


def _strong_ref(observer: Observer) -> Callable[[], Optional[Observer]]:
    return lambda: observer


class WebhookNotifier:
    """Observer that posts cycle events to a webhook.

    Errors are always posted; completed cycles only when
    ``notify_on_success`` is set. Skipped cycles are never posted.
    """

    def __init__(self, config: WebhookSettings) -> None:
        """Initialize notifier.

        Args:
            config: Webhook settings.
        """
        self.config = config

    def __call__(self, event: SyncEvent) -> None:
        if not self.should_notify(event):
            return
        # Runs on the hub's dispatcher thread, which has no event loop
        asyncio.run(self.send(event))

    def should_notify(self, event: SyncEvent) -> bool:
        if not self.config.enabled or not self.config.url:
            return False
        if event.type == EventType.CYCLE_ERROR:
            return True
        if event.type == EventType.CYCLE_COMPLETED:
            return self.config.notify_on_success or bool(event.payload.get("failed"))
        return False

    def build_payload(self, event: SyncEvent) -> Dict[str, Any]:
        """Build webhook message payload for an event."""
        if event.type == EventType.CYCLE_ERROR:
            text = f":x: Video sync error: {event.payload.get('reason', 'unknown')}"
        else:
            p = event.payload
            status = ":warning: failed" if p.get("failed") else ":white_check_mark: completed"
            text = (
                f"Video sync cycle {status}: "
                f"{p.get('items_succeeded', 0)}/{p.get('items_attempted', 0)} items downloaded"
            )

        return {
            "text": text,
            "event": event.type.value,
            "payload": event.payload,
            "timestamp": event.timestamp.isoformat(),
            "correlation_id": event.correlation_id,
        }

    async def send(self, event: SyncEvent) -> bool:
        """Post one event.

        Returns:
            True if the webhook accepted the message.
        """
        payload = self.build_payload(event)
        try:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(str(self.config.url), json=payload) as response:
                    if response.status >= 300:
                        body = await response.text()
                        logger.warning(
                            "webhook_rejected",
                            status=response.status,
                            response=body[:200],
                        )
                        return False

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("webhook_send_failed", error=str(e))
            return False

        logger.info("webhook_sent", event_type=event.type.value)
        return True
