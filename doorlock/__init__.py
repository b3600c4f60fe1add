"""
DOORLOCK: rolling-code authentication for a remote lock toggle.
"""

from .codegen import MAX_COUNTER, CodeDeriver, CodeGenerator, HmacCodeDeriver, generate
from .config import DoorLockSettings, LockConfig, load_settings
from .errors import (
    CommandInFlightError,
    ConfigurationError,
    CounterExhaustedError,
    DoorLockError,
    MalformedCommandError,
    NotConnectedError,
    ProtocolError,
    StorageError,
)
from .protocol import LineBuffer, Verdict, encode_command, encode_verdict, parse_command, parse_verdict
from .requester import Requester
from .server import LockActuator, VerifierServer, VerifierSession
from .store import CounterStore, JsonCounterStore, MemoryCounterStore, NvramCounterStore
from .validator import Validator

__version__ = "0.1.0"

__all__ = [
    "MAX_COUNTER",
    "CodeDeriver",
    "CodeGenerator",
    "HmacCodeDeriver",
    "generate",
    "DoorLockSettings",
    "LockConfig",
    "load_settings",
    "CommandInFlightError",
    "ConfigurationError",
    "CounterExhaustedError",
    "DoorLockError",
    "MalformedCommandError",
    "NotConnectedError",
    "ProtocolError",
    "StorageError",
    "LineBuffer",
    "Verdict",
    "encode_command",
    "encode_verdict",
    "parse_command",
    "parse_verdict",
    "Requester",
    "LockActuator",
    "VerifierServer",
    "VerifierSession",
    "CounterStore",
    "JsonCounterStore",
    "MemoryCounterStore",
    "NvramCounterStore",
    "Validator",
]
