import queue
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional


class EventType(Enum):
    TICK = auto()       # scheduler timer fired
    CHILD = auto()      # some child changed state; reap sweep needed


@dataclass
class Event:
    type: EventType
    payload: Any = None
    time: float = field(default_factory=time.monotonic)

    def __repr__(self):
        return f"Event(type={self.type.name}, time={self.time:.3f}, payload={self.payload})"


class EventChannel:
    """Single-consumer queue funnelling every asynchronous notification.

    Producers may be signal handlers: SimpleQueue.put is reentrant.
    """

    def __init__(self):
        self._queue: 'queue.SimpleQueue[Event]' = queue.SimpleQueue()

    def post(self, etype: EventType, payload: Any = None) -> None:
        self._queue.put(Event(etype, payload))

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()
