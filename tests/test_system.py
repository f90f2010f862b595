import os
import signal
from collections import Counter

import pytest

from core.errors import LaunchError
from core.event import EventType
from core.launcher import START_SIGNAL
from core.process import ProcessEntry, ProcessState
from core.system import System
from workload.config import TICK_MSEC, QuantumConfig

BASE_PID = 40000
# wait status of a child stopped by SIGSTOP
STOPPED = (signal.SIGSTOP << 8) | 0x7f


class FakeLauncher:
    start_signal = START_SIGNAL

    def __init__(self):
        self.killed = []

    def launch(self, entries, nticks):
        for i, e in enumerate(entries):
            e.assign_pid(BASE_PID + i)
            e.assign_ticks(nticks)
        return list(entries)

    def kill_all(self, entries):
        for e in entries:
            self.killed.append(e.pid)
            e.mark_dead()


def report_stops(pid, options):
    if options & os.WUNTRACED:
        return pid, STOPPED
    raise ChildProcessError()


@pytest.fixture
def sent(monkeypatch):
    """Record (pid, signal) instead of signalling real processes."""
    calls = []
    monkeypatch.setattr(os, 'kill', lambda pid, sig: calls.append((pid, sig)))
    monkeypatch.setattr(os, 'waitpid', report_stops)
    return calls


def make_system(n, nticks=5, monitor=None):
    entries = [ProcessEntry(['prog', str(i)]) for i in range(n)]
    for i, e in enumerate(entries):
        e.assign_pid(BASE_PID + i)
        e.assign_ticks(nticks)
    system = System(entries, QuantumConfig(nticks * TICK_MSEC), monitor=monitor, launcher=FakeLauncher())
    system.admit(entries)
    return system, entries


def tick(system, times):
    for _ in range(times):
        system.preempt()


def stops(calls):
    return [pid for pid, sig in calls if sig == signal.SIGSTOP]


def grants(calls):
    return [pid for pid, sig in calls if sig in (START_SIGNAL, signal.SIGCONT)]


def test_prime_starts_first_entry(sent):
    system, (a, b, c) = make_system(3)
    system.prime()
    assert sent == [(a.pid, START_SIGNAL)]
    assert a.state is ProcessState.RUNNING
    assert b.state is ProcessState.WAITING and c.state is ProcessState.WAITING
    assert system.ready_queue.head() is a


def test_running_process_keeps_cpu_until_quantum_expires(sent):
    system, (a, b) = make_system(2, nticks=5)
    system.prime()
    tick(system, 4)
    assert sent == [(a.pid, START_SIGNAL)]
    tick(system, 1)
    assert sent[1:] == [(a.pid, signal.SIGSTOP), (b.pid, START_SIGNAL)]


def test_three_processes_preempted_in_round_robin_order(sent):
    system, entries = make_system(3, nticks=5)
    system.prime()
    tick(system, 5 * 3 * 3)
    pids = [e.pid for e in entries]
    assert stops(sent) == pids * 3
    # first round starts, later rounds continue
    assert [sig for _, sig in sent if sig != signal.SIGSTOP] == [START_SIGNAL] * 3 + [signal.SIGCONT] * 7


@pytest.mark.parametrize('nticks', [1, 3, 5])
def test_every_grant_lasts_exactly_one_quantum(sent, nticks):
    system, _ = make_system(4, nticks=nticks)
    system.prime()
    expiries = []
    for t in range(1, 10 * nticks * 4 + 1):
        before = len(stops(sent))
        system.preempt()
        if len(stops(sent)) > before:
            expiries.append(t)
    assert expiries == list(range(nticks, 10 * nticks * 4 + 1, nticks))


@pytest.mark.parametrize('n,k', [(2, 3), (3, 4), (5, 2)])
def test_round_robin_fairness(sent, n, k):
    system, entries = make_system(n, nticks=1)
    system.prime()
    tick(system, k * n)
    counts = Counter(grants(sent))
    for e in entries:
        assert abs(counts[e.pid] - k) <= 1


def test_state_never_returns_to_waiting(sent):
    system, entries = make_system(3, nticks=2)
    system.prime()
    seen_running = set()
    for _ in range(40):
        system.preempt()
        for e in entries:
            if e.state is ProcessState.RUNNING:
                seen_running.add(e.pid)
            if e.pid in seen_running:
                assert e.state is not ProcessState.WAITING


def test_early_exit_is_reaped_lazily(sent):
    system, (a, b) = make_system(2, nticks=5)
    system.prime()
    tick(system, 5)
    assert stops(sent) == [a.pid]

    system.retire(a.pid, 0)
    assert a.state is ProcessState.DEAD
    assert system.active == 1
    # still queued until the scheduler reaches it
    assert a in system.ready_queue.to_list()

    del sent[:]
    tick(system, 5)
    assert sent == [(b.pid, signal.SIGSTOP), (b.pid, signal.SIGCONT)]
    assert system.ready_queue.to_list() == [b]

    del sent[:]
    tick(system, 10)
    assert grants(sent) == [b.pid, b.pid]
    assert a.pid not in [pid for pid, _ in sent]

    system.retire(b.pid, 0)
    assert system.active == 0


def test_dead_head_is_rotated_not_stopped(sent):
    system, (a, b, c) = make_system(3, nticks=5)
    system.prime()
    system.retire(a.pid, 0)
    del sent[:]
    system.preempt()
    # a is dead: no SIGSTOP, b starts at once, a waits at the back for removal
    assert sent == [(b.pid, START_SIGNAL)]
    assert system.ready_queue.to_list() == [b, c, a]


def test_all_dead_empties_queue(sent):
    system, entries = make_system(3, nticks=1)
    system.prime()
    for e in entries:
        system.retire(e.pid, 0)
    system.preempt()
    assert system.ready_queue.is_empty()
    system.preempt()
    assert system.ready_queue.is_empty()


def test_retire_ignores_unknown_and_duplicate_pids(sent):
    system, (a,) = make_system(1)
    system.retire(12345, 0)
    assert system.active == 1
    system.retire(a.pid, 0)
    system.retire(a.pid, 0)
    assert system.active == 0


def test_retire_logs_signal_deaths(sent, caplog):
    system, (a,) = make_system(1)
    with caplog.at_level('INFO', logger='core.system'):
        system.retire(a.pid, signal.SIGKILL)
    assert 'killed by signal 9' in caplog.text


def test_reap_collects_every_exited_child(sent, monkeypatch):
    system, (a, b, c) = make_system(3)
    results = iter([(c.pid, 0), (a.pid, 256), (0, 0)])
    monkeypatch.setattr(os, 'waitpid', lambda pid, options: next(results))
    system.reap()
    assert system.active == 1
    assert a.state is ProcessState.DEAD and c.state is ProcessState.DEAD
    assert b.state is ProcessState.WAITING


def test_reap_without_children(sent, monkeypatch):
    system, _ = make_system(2)

    def no_children(pid, options):
        raise ChildProcessError()

    monkeypatch.setattr(os, 'waitpid', no_children)
    system.reap()
    assert system.active == 2


def test_run_consumes_events_until_all_processes_exit(sent, monkeypatch, caplog):
    system, (a, b) = make_system(2, nticks=1)
    outcomes = iter([(a.pid, 0), (0, 0), (b.pid, 0), ChildProcessError()])

    def fake_waitpid(pid, options):
        if options & os.WUNTRACED:
            return pid, STOPPED
        result = next(outcomes)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(os, 'waitpid', fake_waitpid)
    system.prime()
    for etype in (EventType.TICK, EventType.CHILD, EventType.TICK, EventType.CHILD):
        system.events.post(etype)
    with caplog.at_level('DEBUG', logger='core.system'):
        system.run()

    assert system.active == 0
    assert system.events.pending() == 0
    assert sent == [
        (a.pid, START_SIGNAL),
        (a.pid, signal.SIGSTOP), (b.pid, START_SIGNAL),
        (b.pid, signal.SIGSTOP), (b.pid, signal.SIGCONT),
    ]
    assert caplog.text.count('handle Event(type=TICK') == 2


def test_monitor_samples_on_quantum_expiry(sent):
    sampled = []

    class RecordingMonitor:
        def sample(self, entry):
            sampled.append((entry.pid, entry.state))

    system, (a, b) = make_system(2, nticks=2, monitor=RecordingMonitor())
    system.prime()
    tick(system, 1)
    assert sampled == []
    tick(system, 3)
    assert sampled == [(a.pid, ProcessState.RUNNING), (b.pid, ProcessState.RUNNING)]


def test_monitor_samples_only_after_stop_is_reported(sent, monkeypatch):
    order = []

    class RecordingMonitor:
        def sample(self, entry):
            order.append(('sample', entry.pid))

    def waitpid(pid, options):
        order.append(('wait', pid))
        return report_stops(pid, options)

    monkeypatch.setattr(os, 'waitpid', waitpid)
    system, (a, _) = make_system(2, nticks=1, monitor=RecordingMonitor())
    system.prime()
    system.preempt()
    assert order == [('wait', a.pid), ('sample', a.pid)]
    assert sent[1] == (a.pid, signal.SIGSTOP)


def test_exit_reported_instead_of_stop_retires_entry(sent, monkeypatch):
    sampled = []

    class RecordingMonitor:
        def sample(self, entry):
            sampled.append(entry.pid)

    monkeypatch.setattr(os, 'waitpid', lambda pid, options: (pid, 0))
    system, (a, b) = make_system(2, nticks=1, monitor=RecordingMonitor())
    system.prime()
    system.preempt()
    assert a.state is ProcessState.DEAD
    assert system.active == 1
    assert sampled == []
    assert sent[-1] == (b.pid, START_SIGNAL)


def test_timer_failure_kills_children_and_restores_handlers(monkeypatch):
    def no_timer(which, seconds, interval=0.0):
        raise signal.ItimerError('timer unavailable')

    monkeypatch.setattr(signal, 'setitimer', no_timer)
    before_alarm = signal.getsignal(signal.SIGALRM)
    before_child = signal.getsignal(signal.SIGCHLD)
    entries = [ProcessEntry(['prog', str(i)]) for i in range(3)]
    system = System(entries, QuantumConfig(100), launcher=FakeLauncher())

    with pytest.raises(LaunchError, match='quantum timer'):
        system.start()
    assert [e.state for e in entries] == [ProcessState.DEAD] * 3
    assert system.launcher.killed == [e.pid for e in entries]
    assert system.active == 0
    assert signal.getsignal(signal.SIGALRM) == before_alarm
    assert signal.getsignal(signal.SIGCHLD) == before_child


def test_shutdown_kills_only_live_processes(sent):
    system, (a, b, c) = make_system(3)
    system.retire(b.pid, 0)
    system.shutdown()
    assert system.launcher.killed == [a.pid, c.pid]
    assert system.active == 0


def test_empty_workload_does_not_launch(capsys):
    system = System([], QuantumConfig(100), launcher=FakeLauncher())
    system.start()
    assert 'No processes to run.' in capsys.readouterr().out
