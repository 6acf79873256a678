"""Toast notifications queued for display and expired after a short TTL."""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Protocol

DEFAULT_TTL_SECONDS = 3.0
DEFAULT_IDLE_SECONDS = 300.0


class NotificationKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(slots=True)
class Notification:
    id: str
    message: str
    kind: NotificationKind
    created_at: float

    def to_payload(self) -> dict[str, object]:
        return {"id": self.id, "message": self.message, "type": self.kind.value}


class NotificationSink(Protocol):
    def add(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> Notification:
        ...


class NotificationQueue:
    """Append/expire queue. Entries older than ``ttl`` seconds are dropped."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._clock = clock
        self._items: Deque[Notification] = deque()

    def add(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> Notification:
        notification = Notification(
            id=uuid.uuid4().hex[:9],
            message=message,
            kind=NotificationKind(kind),
            created_at=self._clock(),
        )
        self._items.append(notification)
        return notification

    def remove(self, notification_id: str) -> bool:
        for notification in self._items:
            if notification.id == notification_id:
                self._items.remove(notification)
                return True
        return False

    def _expire(self) -> None:
        deadline = self._clock() - self._ttl
        while self._items and self._items[0].created_at <= deadline:
            self._items.popleft()

    def active(self) -> List[Notification]:
        self._expire()
        return list(self._items)

    def __len__(self) -> int:
        return len(self.active())


class NotificationRegistry:
    """Queues keyed by browser session id.

    A queue is dropped once it has nothing pending and its session has not
    asked for it for ``idle_seconds``.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        *,
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._queues: Dict[str, NotificationQueue] = {}
        self._last_seen: Dict[str, float] = {}

    def queue_for(self, sid: str) -> NotificationQueue:
        self.sweep()
        queue = self._queues.get(sid)
        if queue is None:
            queue = NotificationQueue(self._ttl, clock=self._clock)
            self._queues[sid] = queue
        self._last_seen[sid] = self._clock()
        return queue

    def sweep(self) -> int:
        deadline = self._clock() - self._idle_seconds
        stale = [
            sid
            for sid, queue in self._queues.items()
            if self._last_seen.get(sid, 0.0) <= deadline and not queue.active()
        ]
        for sid in stale:
            self.discard(sid)
        return len(stale)

    def discard(self, sid: str) -> None:
        self._queues.pop(sid, None)
        self._last_seen.pop(sid, None)

    def __contains__(self, sid: object) -> bool:
        return sid in self._queues

    def __len__(self) -> int:
        return len(self._queues)


__all__ = [
    "DEFAULT_IDLE_SECONDS",
    "DEFAULT_TTL_SECONDS",
    "Notification",
    "NotificationKind",
    "NotificationQueue",
    "NotificationRegistry",
    "NotificationSink",
]
