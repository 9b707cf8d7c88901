"""Notification outbox.

Ride transitions append intents here and return immediately; a dispatcher
thread resolves push tokens and delivers them. Nothing that happens during
delivery can fail the ride operation that produced the intent.
"""
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from ridedispatch import database
from ridedispatch.config import settings
from ridedispatch.notifications.push import send_push

logger = logging.getLogger(__name__)


@dataclass
class NotificationIntent:
    user_ids: list[str]
    title: str
    body: str
    data: dict = field(default_factory=lambda: {"type": "RIDE_UPDATE"})
    priority: Optional[str] = None
    channel_id: Optional[str] = None


def deliver(intent: NotificationIntent) -> int:
    tokens = database.get_push_tokens(intent.user_ids)
    if not tokens:
        return 0
    return send_push(list(tokens.values()), intent.title, intent.body, intent.data,
                     intent.priority, intent.channel_id)


class Outbox:
    """Bounded queue; when full, the oldest intent is dropped to make room."""

    def __init__(self, maxsize: Optional[int] = None):
        self._queue: "queue.Queue[NotificationIntent]" = queue.Queue(
            maxsize=settings.outbox_max_size if maxsize is None else maxsize
        )
        self.dropped = 0

    def enqueue(self, intent: NotificationIntent) -> None:
        if not intent.user_ids:
            return
        while True:
            try:
                self._queue.put_nowait(intent)
                return
            except queue.Full:
                oldest = self.get(timeout=0)
                if oldest is not None:
                    self.dropped += 1
                    logger.warning("Outbox full, dropped '%s' for %s", oldest.title, oldest.user_ids)

    def notify(self, user_ids, title: str, body: str, **kwargs) -> None:
        ids = [user_ids] if isinstance(user_ids, str) else list(user_ids or [])
        ids = [u for u in ids if u]
        self.enqueue(NotificationIntent(ids, title, body, **kwargs))

    def get(self, timeout: float) -> Optional[NotificationIntent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> list[NotificationIntent]:
        with self._queue.mutex:
            return list(self._queue.queue)

    def clear(self) -> None:
        with self._queue.mutex:
            self._queue.queue.clear()

    def drain(self, sender: Callable[[NotificationIntent], int] = deliver) -> int:
        """Deliver everything queued right now on the calling thread."""
        delivered = 0
        while True:
            intent = self.get(timeout=0)
            if intent is None:
                return delivered
            delivered += _deliver_safely(sender, intent)


def _deliver_safely(sender, intent: NotificationIntent) -> int:
    try:
        return sender(intent)
    except Exception:
        logger.exception("Push delivery failed for '%s' to %s", intent.title, intent.user_ids)
        return 0


class NotificationDispatcher:
    """Background thread draining the outbox."""

    def __init__(self, box: "Outbox", sender: Callable[[NotificationIntent], int] = deliver):
        self.outbox = box
        self.sender = sender
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.delivered = 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="notification-dispatcher", daemon=True)
        self._thread.start()
        logger.info("Notification dispatcher started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
        logger.info("Notification dispatcher stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            intent = self.outbox.get(timeout=1.0)
            if intent is not None:
                self.delivered += _deliver_safely(self.sender, intent)


outbox = Outbox()
