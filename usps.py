"""
usps.py


User-space process scheduler: runs every command of a workload file as its
own OS process and round-robins the CPU between them by stopping and
continuing the children from this single control process.


Each workload line is one command (program + arguments). The quantum is
given in milliseconds through --quantum or the USPS_QUANTUM_MSEC
environment variable; it is clamped to [100, 1000], rounded to the nearest
100 and measured in 20 ms timer ticks. Whenever a quantum expires, the
stopped process's statistics are printed (disable with --no-monitor).


Usage:
python usps.py [--quantum=<msec>] [workload_file]
"""


import argparse
import logging
import sys
from typing import List, Optional

from core.errors import SchedulerError
from core.monitor import RuntimeMonitor
from core.system import System
from workload.config import QUANTUM_ENV, resolve_quantum
from workload.parser import load_workload

logger = logging.getLogger("usps")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='usps (user-space round-robin process scheduler)')
    parser.add_argument('workload', nargs='?', default=None,
                        help='Path to workload file, one command per line (default: stdin)')
    parser.add_argument('--quantum', metavar='MSEC', default=None,
                        help=f'Time quantum in milliseconds (default: ${QUANTUM_ENV})')
    parser.add_argument('--no-monitor', action='store_true',
                        help='Do not print process statistics at each quantum expiry')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every scheduling decision')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        quantum = resolve_quantum(args.quantum)
        entries = load_workload(args.workload)
        logger.info("found %d processes", len(entries))
        logger.info("time quantum is %d ms (%d ticks)", quantum.msec, quantum.ticks)
        monitor = None if args.no_monitor else RuntimeMonitor()
        system = System(entries, quantum, monitor=monitor)
        system.start()
    except SchedulerError as ex:
        print(f"ERROR: {ex}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("interrupted")
        return 130
    return 0


if __name__ == '__main__':
    sys.exit(main())
