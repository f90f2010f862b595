# Ready queue
from collections import deque
from typing import Deque, Iterator, List, Optional

from core.errors import QueueEmpty
from core.process import ProcessEntry


class ReadyQueue:
    """Circular run order of the managed processes.

    The head is the process that currently holds the CPU, or the one about
    to be started/continued. Entries are shared with the System's process
    table; the ring only decides order.
    """

    def __init__(self):
        self._ring: Deque[ProcessEntry] = deque()

    def insert(self, entry: ProcessEntry) -> None:
        self._ring.append(entry)

    def head(self) -> Optional[ProcessEntry]:
        if self._ring:
            return self._ring[0]
        return None

    def rotate(self) -> None:
        # head moves behind the current tail; no-op when empty
        self._ring.rotate(-1)

    def remove(self) -> ProcessEntry:
        if not self._ring:
            raise QueueEmpty("ready queue is empty")
        return self._ring.popleft()

    def size(self) -> int:
        return len(self._ring)

    def is_empty(self) -> bool:
        return not self._ring

    def to_list(self) -> List[ProcessEntry]:
        return list(self._ring)

    def __len__(self) -> int:
        return len(self._ring)

    def __iter__(self) -> Iterator[ProcessEntry]:
        return iter(self.to_list())

    def __repr__(self):
        return f"ReadyQueue({[e.pid for e in self._ring]})"
