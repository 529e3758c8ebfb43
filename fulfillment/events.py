"""
Structured event log for the fulfillment service.

Each event goes to stdout as a single JSON line, into a bounded in-memory
history served by /history, and onto the queue of every /events subscriber.
"""

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncGenerator, Deque, Dict, List, Set


class EventType(str, Enum):
    STEP = "step"
    STAGE = "stage"
    ERROR = "error"
    SCREENSHOT = "screenshot"
    ORDER_PLACED = "order_placed"
    ACTION_REQUIRED = "action_required"
    SESSION = "session"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Event:
    type: EventType
    step: str
    url: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.ts,
            "type": self.type.value,
            "step": self.step,
            "url": self.url,
            "details": self.details,
        }

    def to_json(self) -> str:
        # Decimal amounts and paths end up in details
        return json.dumps(self.to_dict(), default=str)


class EventBroker:
    """Fans events out to stdout, history and SSE queues; tracks in-flight orders."""

    SUBSCRIBER_QUEUE_SIZE = 100

    def __init__(self, max_history: int = 100):
        self._history: Deque[Event] = deque(maxlen=max_history)
        self._queues: Set[asyncio.Queue] = set()
        self._lock = asyncio.Lock()

        self._active_orders = 0
        self._last_result: Dict[str, Any] = {}
        self._started_at = datetime.now(timezone.utc)

    @property
    def active_orders(self) -> int:
        return self._active_orders

    @property
    def last_result(self) -> Dict[str, Any]:
        return self._last_result

    @last_result.setter
    def last_result(self, value: Dict[str, Any]):
        self._last_result = value

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._started_at).total_seconds()

    def order_started(self) -> None:
        self._active_orders += 1

    def order_finished(self) -> None:
        if self._active_orders > 0:
            self._active_orders -= 1

    async def publish(self, event: Event) -> None:
        print(event.to_json(), flush=True)

        async with self._lock:
            self._history.append(event)

            # A subscriber that stopped reading loses its stream
            stalled = set()
            for queue in self._queues:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    stalled.add(queue)
            self._queues -= stalled

    async def emit(self, event_type: EventType, step: str, url: str = "", **details: Any) -> None:
        await self.publish(Event(type=event_type, step=step, url=url, details=details))

    async def subscribe(self) -> AsyncGenerator[Event, None]:
        """Yield every event published from now on until the consumer goes away."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.SUBSCRIBER_QUEUE_SIZE)
        async with self._lock:
            self._queues.add(queue)

        try:
            while True:
                yield await queue.get()
        finally:
            async with self._lock:
                self._queues.discard(queue)

    async def get_history(self, limit: int = 50) -> List[Event]:
        async with self._lock:
            events = list(self._history)
        return events[-limit:] if limit > 0 else []

    def get_status(self) -> Dict[str, Any]:
        return {
            "active_orders": self._active_orders,
            "last_result": self._last_result,
            "uptime_seconds": self.uptime_seconds,
            "subscriber_count": len(self._queues),
        }


event_broker = EventBroker()


class OrderLog:
    """
    Ordered, append-only, human-readable trace of one order attempt.

    Every entry is also published as a STEP event tagged with the user id, so
    the stdout log and the SSE stream carry the same trail as the result.
    """

    def __init__(self, user_id: str, broker: EventBroker = event_broker):
        self.user_id = user_id
        self._broker = broker
        self._entries: List[str] = []

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def __call__(self, step: str, message: str, url: str = "", **details: Any) -> None:
        self._entries.append(message)
        await self._broker.emit(
            EventType.STEP, step, url=url,
            user_id=self.user_id, message=message, **details
        )
