"""
Live-update fan-out.

A Subscriber owns a bounded asyncio queue bound to the event loop it was
opened on, plus a keep-alive task that queues a ping every ping_interval
seconds. The SubscriptionBroadcaster owns the set of open subscribers and
pushes every committed mutation to all of them.

Delivery is a non-blocking enqueue. Calls made from a thread other than the
subscriber's loop are marshalled with call_soon_threadsafe, which keeps the
per-subscriber order of messages. Any failed write closes the subscriber.
"""

import asyncio
import threading
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .config import PING_INTERVAL_SEC, SUBSCRIBER_QUEUE_SIZE
from .envelope import (
    METHOD_CONNECTION_ESTABLISHED,
    METHOD_CONNECTION_PING,
    make_notification,
)
from .errors import BroadcastDeliveryError
from ..util.logging import logger

_CLOSED = object()


class SubscriberState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Subscriber:
    """One live-update connection."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE,
                 on_close: Optional[Callable[["Subscriber"], None]] = None):
        self.id = uuid.uuid4().hex
        self.state = SubscriberState.CONNECTING
        self._queue: Optional[asyncio.Queue] = None
        self._queue_size = queue_size
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._keepalive: Optional[asyncio.Task] = None
        self._on_close = on_close
        self._state_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self.state is SubscriberState.OPEN

    def open(self, ping_interval: float = PING_INTERVAL_SEC):
        """Enter OPEN on the running loop and send connection/established."""
        if self.state is not SubscriberState.CONNECTING:
            raise RuntimeError(f"Subscriber {self.id} cannot be opened from state {self.state.value}")

        self._loop = asyncio.get_running_loop()
        # One extra slot so the sentinel always fits.
        self._queue = asyncio.Queue(maxsize=self._queue_size + 1)
        self.state = SubscriberState.OPEN

        self.send(make_notification(METHOD_CONNECTION_ESTABLISHED, {
            "status": "connected",
            "subscriber_id": self.id,
        }))
        self._keepalive = self._loop.create_task(self._keepalive_loop(ping_interval))

    async def _keepalive_loop(self, interval: float):
        while self.is_open:
            await asyncio.sleep(interval)
            if not self.is_open:
                break
            try:
                self.send(make_notification(METHOD_CONNECTION_PING, {}))
            except BroadcastDeliveryError as e:
                logger.log_subscriber_event(self.id, "dropped", {"reason": str(e), "during": "ping"})
                break

    def send(self, envelope: Dict[str, Any]):
        """Queue one envelope for this subscriber.

        Raises BroadcastDeliveryError when the subscriber is not open or the
        write cannot be scheduled.
        """
        if not self.is_open:
            raise BroadcastDeliveryError(f"Subscriber {self.id} is {self.state.value}")

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._enqueue(envelope, raise_on_full=True)
            return

        try:
            self._loop.call_soon_threadsafe(self._enqueue, envelope, False)
        except RuntimeError as e:
            # Loop is closed; the connection is gone.
            self.close()
            raise BroadcastDeliveryError(f"Subscriber {self.id} loop unavailable: {e}") from e

    def _enqueue(self, envelope: Dict[str, Any], raise_on_full: bool):
        if not self.is_open:
            return
        if self._queue.qsize() >= self._queue_size:
            if raise_on_full:
                self.close()
                raise BroadcastDeliveryError(f"Subscriber {self.id} queue is full")
            # Scheduled from another thread; nobody is left to report to.
            logger.log_subscriber_event(self.id, "dropped", {"reason": "queue full"})
            self.close()
            return
        self._queue.put_nowait(envelope)

    def close(self):
        """Transition to CLOSED. Idempotent; CLOSED is terminal."""
        with self._state_lock:
            if self.state is SubscriberState.CLOSED:
                return
            was_open = self.state is SubscriberState.OPEN
            self.state = SubscriberState.CLOSED

        if was_open:
            self._cancel_keepalive()
            self._wake_reader()

        if self._on_close:
            self._on_close(self)

    def _cancel_keepalive(self):
        task = self._keepalive
        if task is None or task.done():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            task.cancel()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(task.cancel)

    def _wake_reader(self):
        def _put_sentinel():
            try:
                self._queue.put_nowait(_CLOSED)
            except asyncio.QueueFull:
                pass

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            _put_sentinel()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(_put_sentinel)

    async def next_message(self) -> Optional[Dict[str, Any]]:
        """Wait for the next queued envelope; None once the subscriber is closed."""
        if self._queue is None:
            return None
        if not self.is_open and self._queue.empty():
            return None
        message = await self._queue.get()
        if message is _CLOSED:
            return None
        return message

    def pending(self) -> List[Dict[str, Any]]:
        """Drain every envelope currently queued without waiting."""
        messages = []
        while self._queue is not None and not self._queue.empty():
            message = self._queue.get_nowait()
            if message is not _CLOSED:
                messages.append(message)
        return messages

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._iterate()

    async def _iterate(self):
        while True:
            message = await self.next_message()
            if message is None:
                return
            yield message


class SubscriptionBroadcaster:
    """Registry of open subscribers; owned by the application, not global."""

    def __init__(self, ping_interval: float = PING_INTERVAL_SEC,
                 queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.ping_interval = ping_interval
        self.queue_size = queue_size
        self._subscribers = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def snapshot(self) -> List[Subscriber]:
        with self._lock:
            return list(self._subscribers)

    def connect(self) -> Subscriber:
        """Open a new subscriber on the running event loop and register it."""
        subscriber = Subscriber(queue_size=self.queue_size, on_close=self._forget)
        subscriber.open(self.ping_interval)
        with self._lock:
            self._subscribers.add(subscriber)
        logger.log_subscriber_event(subscriber.id, "connected", {"subscribers": self.subscriber_count})
        return subscriber

    def disconnect(self, subscriber: Subscriber):
        """Close a subscriber whose peer went away."""
        subscriber.close()

    def _forget(self, subscriber: Subscriber):
        with self._lock:
            removed = subscriber in self._subscribers
            self._subscribers.discard(subscriber)
        if removed:
            logger.log_subscriber_event(subscriber.id, "closed", {"subscribers": self.subscriber_count})

    def broadcast(self, notification: Dict[str, Any]) -> int:
        """Deliver to every open subscriber. Returns the number reached.

        Never raises: a failing subscriber is dropped and the rest still
        receive the notification.
        """
        delivered = 0
        for subscriber in self.snapshot():
            if not subscriber.is_open:
                continue
            try:
                subscriber.send(notification)
                delivered += 1
            except BroadcastDeliveryError as e:
                logger.log_subscriber_event(subscriber.id, "dropped", {"reason": str(e)})
                subscriber.close()
        return delivered

    def close_all(self):
        for subscriber in self.snapshot():
            subscriber.close()
