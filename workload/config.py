# Quantum configuration
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from core.errors import ConfigError

logger = logging.getLogger(__name__)

MIN_QUANTUM_MSEC = 100
MAX_QUANTUM_MSEC = 1000
TICK_MSEC = 20              # period of the scheduler timer
QUANTUM_ENV = "USPS_QUANTUM_MSEC"


@dataclass(frozen=True)
class QuantumConfig:
    msec: int
    tick_msec: int = TICK_MSEC

    @property
    def ticks(self) -> int:
        return self.msec // self.tick_msec


def adjust_quantum(msec: int, minimum: int = MIN_QUANTUM_MSEC, maximum: int = MAX_QUANTUM_MSEC) -> int:
    """Clamp to [minimum, maximum] and round to the nearest 100 ms."""
    if msec < minimum:
        logger.warning("The specified quantum (%d ms) is less than the minimum (%d ms), setting to minimum.",
                       msec, minimum)
        msec = minimum
    if msec > maximum:
        logger.warning("The specified quantum (%d ms) is greater than the maximum (%d ms), setting to maximum.",
                       msec, maximum)
        msec = maximum
    return ((msec + 50) // 100) * 100


def resolve_quantum(flag: Optional[str], environ: Mapping[str, str] = os.environ,
                    tick_msec: int = TICK_MSEC) -> QuantumConfig:
    """Quantum from the command-line flag, falling back to USPS_QUANTUM_MSEC."""
    raw = flag if flag is not None else environ.get(QUANTUM_ENV)
    if raw is None:
        raise ConfigError(f"Quantum undefined, define through --quantum=<msec> or env var '{QUANTUM_ENV}'.")
    try:
        msec = int(raw.strip())
    except ValueError:
        raise ConfigError(f"Quantum must be an integer number of milliseconds, got {raw!r}.") from None
    return QuantumConfig(adjust_quantum(msec), tick_msec)
