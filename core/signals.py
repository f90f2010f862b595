import logging
import signal
from typing import Dict

from core.errors import LaunchError
from core.event import EventChannel, EventType

logger = logging.getLogger(__name__)


class SignalPump:
    """Turns SIGALRM (interval timer) and SIGCHLD into channel events.

    Handlers only post; all scheduling work happens in the consumer of the
    channel. Usable as a context manager: the timer is disarmed and the
    previous handlers are restored on exit.
    """

    def __init__(self, channel: EventChannel, tick_msec: int):
        self.channel = channel
        self.interval = tick_msec / 1000.0
        self._previous: Dict[int, object] = {}
        self.armed = False

    def _on_alarm(self, signum, frame):
        self.channel.post(EventType.TICK, signum)

    def _on_child(self, signum, frame):
        self.channel.post(EventType.CHILD, signum)

    def install(self) -> None:
        self._previous[signal.SIGCHLD] = signal.signal(signal.SIGCHLD, self._on_child)
        self._previous[signal.SIGALRM] = signal.signal(signal.SIGALRM, self._on_alarm)
        try:
            signal.setitimer(signal.ITIMER_REAL, self.interval, self.interval)
        except (OSError, signal.ItimerError) as ex:
            self.uninstall()
            raise LaunchError(f"failed to create the quantum timer: {ex}") from ex
        self.armed = True
        logger.debug("timer armed, tick every %.3fs", self.interval)

    def uninstall(self) -> None:
        if self.armed:
            signal.setitimer(signal.ITIMER_REAL, 0)
            self.armed = False
        for signum, handler in self._previous.items():
            # None: the old handler was not installed from Python
            signal.signal(signum, signal.SIG_DFL if handler is None else handler)
        self._previous.clear()

    def __enter__(self) -> 'SignalPump':
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.uninstall()
