"""
Runtime statistics for a process the scheduler has just stopped.

One fixed-width row per quantum expiry:

    PID     SysReads  SysWrites State Faults  UserTime SysTime  VMSize   RSSSize  Cmd

Counts are abbreviated K/M/B/T/Q and sizes KB/MB/GB/TB by truncation, so
every column stays inside its width. The header is repeated every
HEADER_EVERY rows.
"""

import logging
import sys
from dataclasses import dataclass
from typing import Optional, TextIO

import psutil

from core.process import ProcessEntry

logger = logging.getLogger(__name__)

HEADER_EVERY = 20

ROW_FORMAT = "{:<8}{:<10}{:<10}{:<6}{:<8}{:<9}{:<9}{:<9}{:<9}{}"
HEADER = ROW_FORMAT.format(
    "PID", "SysReads", "SysWrites", "State", "Faults",
    "UserTime", "SysTime", "VMSize", "RSSSize", "Cmd",
)

_COUNT_SUFFIXES = ((15, 'Q'), (12, 'T'), (9, 'B'), (6, 'M'), (3, 'K'))
_SIZE_SUFFIXES = ((12, 'TB'), (9, 'GB'), (6, 'MB'), (3, 'KB'))

# psutil status string -> one-letter code as shown by ps(1)
_STATE_CODES = {
    psutil.STATUS_RUNNING: 'R',
    psutil.STATUS_SLEEPING: 'S',
    psutil.STATUS_DISK_SLEEP: 'D',
    psutil.STATUS_STOPPED: 'T',
    psutil.STATUS_TRACING_STOP: 't',
    psutil.STATUS_ZOMBIE: 'Z',
    psutil.STATUS_DEAD: 'X',
    psutil.STATUS_WAKING: 'W',
    psutil.STATUS_IDLE: 'I',
    psutil.STATUS_PARKED: 'P',
}


def compact_num(value: int) -> str:
    """1234 -> '1K', 12345678 -> '12M'. Digits below the suffix are dropped."""
    digits = str(value)
    for exponent, suffix in _COUNT_SUFFIXES:
        if len(digits) > exponent:
            return digits[:len(digits) - exponent] + suffix
    return digits


def compact_size(nbytes: int) -> str:
    digits = str(nbytes)
    for exponent, suffix in _SIZE_SUFFIXES:
        if len(digits) > exponent:
            return f"{digits[:len(digits) - exponent]} {suffix}"
    return digits


def read_major_faults(pid: int) -> int:
    # psutil has no accessor for majflt; field 12 of /proc/<pid>/stat.
    with open(f"/proc/{pid}/stat", 'r') as fh:
        stat = fh.read()
    # comm (field 2) may contain spaces, so split after its closing paren
    fields = stat[stat.rindex(')') + 2:].split()
    return int(fields[12 - 3])


def total_cpu_seconds() -> float:
    times = psutil.cpu_times()
    # guest time is already counted in user/nice on Linux
    return sum(value for name, value in times._asdict().items()
               if name not in ('guest', 'guest_nice'))


@dataclass
class ProcessSample:
    pid: int
    reads: int
    writes: int
    state: str
    faults: int
    user_time: float
    system_time: float
    vms: int
    rss: int
    cmdline: str


def format_row(sample: ProcessSample) -> str:
    return ROW_FORMAT.format(
        sample.pid,
        compact_num(sample.reads),
        compact_num(sample.writes),
        sample.state,
        compact_num(sample.faults),
        compact_num(int(sample.user_time)),
        compact_num(int(sample.system_time)),
        compact_size(sample.vms),
        compact_size(sample.rss),
        sample.cmdline,
    )


class RuntimeMonitor:
    def __init__(self, stream: Optional[TextIO] = None, header_every: int = HEADER_EVERY):
        self.stream = stream if stream is not None else sys.stdout
        self.header_every = header_every
        self.rows = 0

    def read(self, pid: int) -> ProcessSample:
        proc = psutil.Process(pid)
        with proc.oneshot():
            cmdline = ' '.join(proc.cmdline())
            io = proc.io_counters()
            status = proc.status()
            times = proc.cpu_times()
            mem = proc.memory_info()
        return ProcessSample(
            pid=pid,
            reads=io.read_count,
            writes=io.write_count,
            state=_STATE_CODES.get(status, '?'),
            faults=read_major_faults(pid),
            user_time=times.user,
            system_time=times.system,
            vms=mem.vms,
            rss=mem.rss,
            cmdline=cmdline,
        )

    def sample(self, entry: ProcessEntry) -> Optional[ProcessSample]:
        """Read, record and print statistics for a stopped entry.

        A process that vanished or cannot be inspected is skipped.
        """
        try:
            snapshot = self.read(entry.pid)
        except (psutil.Error, OSError) as ex:
            logger.debug("no sample for pid=%s: %s", entry.pid, ex)
            return None
        entry.poll(total_cpu_seconds(), snapshot.user_time + snapshot.system_time)
        logger.debug("pid=%d cpu=%d%%", snapshot.pid, entry.cpu_percent())
        self.emit(snapshot)
        return snapshot

    def emit(self, snapshot: ProcessSample) -> None:
        if self.rows % self.header_every == 0:
            print(HEADER, file=self.stream)
        self.rows += 1
        print(format_row(snapshot), file=self.stream, flush=True)
