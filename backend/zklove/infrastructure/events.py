"""
Event Channel — publish on state transition, subscribe via a queue.

Decouples the matching core from presentation concerns. Producers call
``publish`` after a transition has committed; consumers hold an
``asyncio.Queue`` returned by ``subscribe`` and drain it at their own pace.

Usage:
    bus = EventBus()
    queue = bus.subscribe({EventKind.MATCH_CREATED})
    ...
    event = await queue.get()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    PROFILE_CREATED = "profile_created"
    PROFILE_UPDATED = "profile_updated"
    PROFILE_DEACTIVATED = "profile_deactivated"
    SWIPE_RECORDED = "swipe_recorded"
    MATCH_CREATED = "match_created"
    DETAIL_UNLOCKED = "detail_unlocked"
    CHAT_UNLOCKED = "chat_unlocked"
    MESSAGE_POSTED = "message_posted"
    AURA_EARNED = "aura_earned"
    AURA_SPENT = "aura_spent"
    INTEGRITY_ALERT = "integrity_alert"


@dataclass(frozen=True)
class DomainEvent:
    kind: EventKind
    payload: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "payload": self.payload, "timestamp": self.timestamp}


class EventBus:
    """
    In-process fan-out of domain events to bounded subscriber queues.

    ``publish`` never blocks: when a subscriber's queue is full its oldest
    event is dropped to make room, and a warning is logged.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self._queue_size = queue_size
        self._subscribers: List[Tuple[asyncio.Queue, Optional[Set[EventKind]]]] = []
        self._published = 0

    @property
    def published_count(self) -> int:
        return self._published

    def subscribe(self, kinds: Optional[Set[EventKind]] = None) -> asyncio.Queue:
        """Register a subscriber. ``kinds=None`` receives every event."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append((queue, set(kinds) if kinds else None))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers = [(q, k) for q, k in self._subscribers if q is not queue]

    def publish(self, kind: EventKind, **payload: Any) -> DomainEvent:
        event = DomainEvent(kind=kind, payload=payload)
        self._published += 1
        for queue, kinds in self._subscribers:
            if kinds is not None and kind not in kinds:
                continue
            if queue.full():
                dropped = queue.get_nowait()
                logger.warning(
                    f"[EVENTS] Subscriber queue full — dropped {dropped.kind.value} event"
                )
            queue.put_nowait(event)
        logger.debug(f"[EVENTS] {kind.value} published")
        return event
