import logging
import os
import signal
from typing import Dict, Iterable, List, Optional

from core.event import Event, EventChannel, EventType
from core.launcher import Launcher
from core.monitor import RuntimeMonitor
from core.process import ProcessEntry, ProcessState
from core.scheduler import ReadyQueue
from core.signals import SignalPump
from workload.config import QuantumConfig

logger = logging.getLogger(__name__)


class System:
    """Scheduler context: ready queue, process table and the control loop.

    Timer ticks and child exits arrive as events on one channel and are
    handled strictly one at a time by run(), so the queue and the active
    count are only ever touched from a single place.
    """

    def __init__(self, entries: Iterable[ProcessEntry], quantum: QuantumConfig,
                 monitor: Optional[RuntimeMonitor] = None, launcher: Optional[Launcher] = None):
        self.quantum = quantum
        self.monitor = monitor
        self.launcher = launcher if launcher is not None else Launcher()
        self.events = EventChannel()

        self.ready_queue = ReadyQueue()
        for entry in entries:
            self.ready_queue.insert(entry)
        self.process_table: Dict[int, ProcessEntry] = {}
        self.active = 0

    # start
    def start(self) -> None:
        if self.ready_queue.is_empty():
            print("No processes to run.")
            return
        launched = self.launcher.launch(self.ready_queue.to_list(), self.quantum.ticks)
        self.admit(launched)
        try:
            with SignalPump(self.events, self.quantum.tick_msec):
                # children killed before SIGCHLD was hooked would never post
                self.reap()
                self.prime()
                self.run()
        except BaseException:
            self.shutdown()
            raise
        self.drain()

    def admit(self, launched: List[ProcessEntry]) -> None:
        for entry in launched:
            self.process_table[entry.pid] = entry
        self.active = len(launched)
        logger.debug("admitted %d processes: %s", self.active, self.ready_queue)

    def prime(self) -> None:
        """Make the first decision by hand, starting the first entry.

        Rotating size-1 places the last entry at the head; it is WAITING,
        so the decision below rotates once more and starts the first one.
        """
        for _ in range(self.ready_queue.size() - 1):
            self.ready_queue.rotate()
        self.preempt()

    # main control loop
    def run(self) -> None:
        handlers = {
            EventType.TICK: self._handle_tick,
            EventType.CHILD: self._handle_child,
        }
        while self.active > 0:
            ev = self.events.get()
            logger.debug("handle %s", ev)
            handlers[ev.type](ev)
        logger.info("all processes finished")

    def _handle_tick(self, ev: Event) -> None:
        self.preempt()

    def _handle_child(self, ev: Event) -> None:
        self.reap()

    # preemption controller
    def preempt(self) -> None:
        head = self.ready_queue.head()
        if head is None:
            return
        if head.state is ProcessState.RUNNING:
            if head.decrement_tick():
                return
            if self._stop(head) and self.monitor is not None:
                self.monitor.sample(head)

        self.ready_queue.rotate()

        while not self.ready_queue.is_empty():
            head = self.ready_queue.head()
            if head.state is ProcessState.WAITING:
                head.wake()
                self._send(head, self.launcher.start_signal)
                logger.debug("pid=%d started", head.pid)
                return
            if head.state is ProcessState.RUNNING:
                self._send(head, signal.SIGCONT)
                logger.debug("pid=%d continued", head.pid)
                return
            self.ready_queue.remove()
            logger.debug("pid=%d removed from ready queue", head.pid)

    def _send(self, entry: ProcessEntry, signum: int) -> None:
        # unreaped children are zombies at worst, so the pid is still ours
        os.kill(entry.pid, signum)

    def _stop(self, entry: ProcessEntry) -> bool:
        """SIGSTOP entry and block until the kernel reports it stopped.

        SIGSTOP is delivered asynchronously; only after the stop report is
        /proc guaranteed to show the child in state T. Returns False when
        the child exited instead, in which case it has been retired.
        """
        self._send(entry, signal.SIGSTOP)
        try:
            pid, status = os.waitpid(entry.pid, os.WUNTRACED)
        except ChildProcessError:
            logger.debug("pid=%d already collected", entry.pid)
            return False
        if os.WIFSTOPPED(status):
            logger.debug("pid=%d quantum expired -> stopped", entry.pid)
            return True
        self.retire(pid, status)
        return False

    # termination handler
    def reap(self) -> None:
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                break
            if pid == 0:
                break
            self.retire(pid, status)

    def retire(self, pid: int, status: int) -> None:
        entry = self.process_table.get(pid)
        if entry is None:
            logger.warning("reaped unknown child pid=%d", pid)
            return
        if entry.state is ProcessState.DEAD:
            return
        entry.mark_dead()
        self.active -= 1
        code = os.waitstatus_to_exitcode(status)
        if code < 0:
            logger.info("pid=%d (%s) killed by signal %d (%s)", pid, entry.command, -code, signal.strsignal(-code))
        else:
            logger.info("pid=%d (%s) exited with status %d", pid, entry.command, code)

    # cleanup
    def shutdown(self) -> None:
        """Kill every child still alive; used when the loop is abandoned."""
        alive = [e for e in self.process_table.values() if e.state is not ProcessState.DEAD]
        if alive:
            logger.warning("killing %d remaining processes", len(alive))
        self.launcher.kill_all(alive)
        self.active = 0

    def drain(self) -> None:
        while not self.ready_queue.is_empty():
            self.ready_queue.remove()
