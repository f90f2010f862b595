import logging
import os
import signal
import sys
from typing import Iterable, List

from core.errors import LaunchError
from core.process import ProcessEntry, ProcessState

logger = logging.getLogger(__name__)

# Sent by the scheduler the first time a child is selected to run.
START_SIGNAL = signal.SIGUSR1
# Exit status of a child whose program could not be executed.
EXEC_FAILURE_STATUS = 127


class Launcher:
    """Forks one child per ProcessEntry, each held until START_SIGNAL.

    START_SIGNAL is blocked before forking so a child cannot miss it; the
    child collects it with sigwait(), restores the original mask and
    execs its program.
    """

    def __init__(self, start_signal: int = START_SIGNAL):
        self.start_signal = start_signal

    def launch(self, entries: Iterable[ProcessEntry], nticks: int) -> List[ProcessEntry]:
        launched: List[ProcessEntry] = []
        previous_mask = signal.pthread_sigmask(signal.SIG_BLOCK, {self.start_signal})
        try:
            for entry in entries:
                try:
                    pid = os.fork()
                except OSError as ex:
                    self.kill_all(launched)
                    raise LaunchError(f"fork failed for {entry.command!r}: {ex.strerror}") from ex
                if pid == 0:
                    self._exec_child(entry, previous_mask)
                entry.assign_pid(pid)
                entry.assign_ticks(nticks)
                launched.append(entry)
                logger.debug("forked pid=%d for %r", pid, entry.command)
        finally:
            signal.pthread_sigmask(signal.SIG_SETMASK, previous_mask)
        return launched

    def _exec_child(self, entry: ProcessEntry, mask) -> None:
        # Runs in the child only; never returns.
        try:
            signal.sigwait({self.start_signal})
            signal.pthread_sigmask(signal.SIG_SETMASK, mask)
            # Python ignores these; programs expect the defaults
            for name in ('SIGPIPE', 'SIGXFSZ'):
                if hasattr(signal, name):
                    signal.signal(getattr(signal, name), signal.SIG_DFL)
            os.execvp(entry.argv[0], entry.argv)
        except OSError as ex:
            sys.stderr.write(f"ERROR: Failed to execute: {entry.command}: {ex.strerror}\n")
            sys.stderr.flush()
        finally:
            os._exit(EXEC_FAILURE_STATUS)

    def kill_all(self, entries: Iterable[ProcessEntry]) -> None:
        """SIGKILL and reap every child that has not been seen to exit."""
        for entry in entries:
            if entry.pid is None or entry.state is ProcessState.DEAD:
                continue
            try:
                os.kill(entry.pid, signal.SIGKILL)
                os.waitpid(entry.pid, 0)
            except (ChildProcessError, ProcessLookupError):
                logger.debug("pid=%d already reaped", entry.pid)
            else:
                logger.debug("killed pid=%d (%s)", entry.pid, entry.command)
            entry.mark_dead()
