"""
Exception hierarchy for the DOORLOCK rolling-code core.
"""


class DoorLockError(Exception):
    """Base class for every error raised by doorlock."""
    pass


class ConfigurationError(DoorLockError):
    """Raised when settings are missing or invalid (e.g. no shared secret)."""
    pass


class ProtocolError(DoorLockError):
    """Raised when a peer sends something that is not a valid message."""
    pass


class MalformedCommandError(ProtocolError):
    """Raised when a command line cannot be parsed into a code."""
    pass


class StorageError(DoorLockError):
    """Raised when the counter cannot be durably read or written."""
    pass


class CounterExhaustedError(DoorLockError):
    """
    Raised when a counter would leave the representable range.

    Not recoverable without provisioning a new secret and resetting both
    counters.
    """
    pass


class NotConnectedError(DoorLockError):
    """Raised when a command is requested without an open transport session."""
    pass


class CommandInFlightError(DoorLockError):
    """Raised when a command is requested while a previous verdict is outstanding."""
    pass
