import shlex
from enum import Enum, auto
from typing import List, Optional

from core.errors import ProcessStateError


class ProcessState(Enum):
    WAITING = auto()    # forked, held at the start barrier
    RUNNING = auto()    # started; may be stopped between quanta
    DEAD = auto()       # exit observed, waiting to be evicted from the ring


class ProcessEntry:
    """One workload line and the OS process that runs it."""

    def __init__(self, argv: List[str]):
        if not argv:
            raise ValueError("a process needs at least a program name")
        self.argv = list(argv)
        self.pid: Optional[int] = None
        self.state = ProcessState.WAITING
        self.ticks = 0
        self.nticks = 0
        # monitoring samples, only used to compute cpu_percent()
        self.prev_jiffies = 0.0
        self.curr_jiffies = 0.0
        self.prev_util = 0.0
        self.curr_util = 0.0

    @classmethod
    def from_line(cls, line: str) -> 'ProcessEntry':
        return cls(shlex.split(line))

    @property
    def command(self) -> str:
        return ' '.join(self.argv)

    def _require_alive(self, operation: str) -> None:
        if self.state is ProcessState.DEAD:
            raise ProcessStateError(f"cannot {operation} dead process {self.pid}")

    def assign_pid(self, pid: int) -> None:
        if self.pid is not None:
            raise ProcessStateError(f"{self.command!r} already has pid {self.pid}")
        self.pid = pid

    def assign_ticks(self, nticks: int) -> None:
        if nticks <= 0:
            raise ValueError(f"ticks per quantum must be positive, got {nticks}")
        self.ticks = self.nticks = nticks

    def decrement_tick(self) -> int:
        """Consume one tick of the current quantum.

        Returns the ticks left after the decrement. Zero means the quantum
        has expired; the counter has then already been refilled so the next
        quantum starts full.
        """
        self._require_alive("decrement ticks of")
        self.ticks -= 1
        left = self.ticks
        if self.ticks <= 0:
            self.ticks = self.nticks
        return max(left, 0)

    def wake(self) -> None:
        if self.state is not ProcessState.WAITING:
            raise ProcessStateError(f"pid {self.pid} is {self.state.name}, not WAITING")
        self.state = ProcessState.RUNNING

    def mark_dead(self) -> None:
        self.state = ProcessState.DEAD

    def poll(self, jiffies: float, util: float) -> None:
        self._require_alive("sample")
        self.prev_jiffies, self.curr_jiffies = self.curr_jiffies, jiffies
        self.prev_util, self.curr_util = self.curr_util, util

    def cpu_percent(self) -> int:
        elapsed = self.curr_jiffies - self.prev_jiffies
        if elapsed <= 0:
            return 0
        used = self.curr_util - self.prev_util
        return min(100, int(100 * used / elapsed))

    def __repr__(self) -> str:
        return f"ProcessEntry(pid={self.pid}, cmd={self.command}, state={self.state.name}, ticks={self.ticks}/{self.nticks})"
