# Workload file parser
import shlex
import sys
from typing import Iterable, List, Optional

from core.errors import ConfigError
from core.process import ProcessEntry


def parse_workload(lines: Iterable[str]) -> List[ProcessEntry]:
    """One ProcessEntry per command line; blank lines and # comments are skipped."""
    entries: List[ProcessEntry] = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        try:
            argv = shlex.split(line, comments=True)
        except ValueError as ex:
            raise ConfigError(f"workload line {lineno}: {ex}: {line!r}") from ex
        if argv:
            entries.append(ProcessEntry(argv))
    return entries


def load_workload(path: Optional[str] = None) -> List[ProcessEntry]:
    if path is None or path == '-':
        return parse_workload(sys.stdin)
    try:
        with open(path, 'r') as fh:
            return parse_workload(fh)
    except OSError as ex:
        raise ConfigError(f"Failed to open: {path}: {ex.strerror}") from ex
