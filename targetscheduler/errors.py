class SchedulerError(Exception):
    """Base exception for scheduler errors."""


class ConfigurationError(SchedulerError):
    """Raised for malformed project, target or exposure configuration."""


class DeviceError(SchedulerError):
    """Raised for transient device or capture failures."""


class RepositoryError(SchedulerError):
    """Raised when a repository read or write fails."""


class SequenceCancelled(SchedulerError):
    """Raised when the host interrupts a plan or exposure."""


class SequenceFailedError(SchedulerError):
    """Raised when a sequence step fails and cannot be retried."""


class SequenceFatalError(SchedulerError):
    """Raised for integration errors that must abort the whole run."""
