"""Exception hierarchy for pytend."""


class PytendError(Exception):
    """Base for all pytend errors."""


class ConfigurationError(PytendError):
    """A user, group or command string cannot be turned into something runnable."""


class ProcessTableError(PytendError):
    """The OS process listing could not be captured."""


class DaemonizationError(PytendError):
    """The daemon launcher never handed back a usable PID."""
