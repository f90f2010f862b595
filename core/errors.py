class SchedulerError(Exception):
    """Base class for every failure the scheduler reports to the user."""


class ConfigError(SchedulerError):
    """Bad quantum or unreadable/malformed workload. Raised before any fork."""


class LaunchError(SchedulerError):
    """A child could not be created or the timer could not be armed."""


class ProcessStateError(SchedulerError):
    """An illegal transition was requested on a ProcessEntry."""


class QueueEmpty(SchedulerError, IndexError):
    """remove() was called on an empty ready queue."""
