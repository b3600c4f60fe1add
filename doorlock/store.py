"""
Durable counter cells.

Each endpoint owns exactly one store. ``store()`` only returns once the
value would survive an immediate power loss: data is written to a temp
file, fsynced, atomically renamed over the target and the directory entry
is fsynced as well.
"""

from __future__ import annotations

import json
import os
import struct
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

from loguru import logger

from .codegen import ERASED_COUNTER, check_advance
from .errors import StorageError

COUNTER_STORAGE_KEY = "rollingCodeCounter"
NVRAM_CELL_SIZE = 8


def _fsync_dir(directory: Path) -> None:
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def durable_write(path: Path, data: bytes) -> None:
    """Atomically replace ``path`` with ``data`` and flush it to disk."""
    directory = path.parent
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        _fsync_dir(directory)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class CounterStore(ABC):
    """A single durable non-negative counter."""

    @abstractmethod
    def load(self) -> int:
        """Return the stored counter, or 0 when nothing was ever stored."""

    @abstractmethod
    def store(self, value: int) -> None:
        """Durably persist ``value``; raise StorageError on failure."""


class MemoryCounterStore(CounterStore):
    """Volatile store used for simulations and tests."""

    def __init__(self, initial: int = 0) -> None:
        self._value = check_advance(initial)

    def load(self) -> int:
        return self._value

    def store(self, value: int) -> None:
        self._value = check_advance(value)

    def __repr__(self) -> str:
        return f"MemoryCounterStore({self._value})"


class JsonCounterStore(CounterStore):
    """
    Key/value JSON document, the requester-side preference file.

    Other keys in the document are preserved across writes.
    """

    def __init__(self, path: Union[str, Path], key: str = COUNTER_STORAGE_KEY) -> None:
        self.path = Path(path)
        self.key = key

    def _read_document(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"cannot read counter file {self.path}: {e}") from e
        if not isinstance(document, dict):
            raise StorageError(f"counter file {self.path} is not a JSON object")
        return document

    def load(self) -> int:
        value = self._read_document().get(self.key, 0)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise StorageError(f"counter file {self.path} holds invalid value {value!r}")
        logger.debug(f"Loaded counter {value} from {self.path}")
        return value

    def store(self, value: int) -> None:
        check_advance(value)
        document = self._read_document()
        document[self.key] = value
        try:
            durable_write(self.path, json.dumps(document, sort_keys=True).encode("utf-8"))
        except OSError as e:
            raise StorageError(f"cannot write counter file {self.path}: {e}") from e
        logger.debug(f"Saved counter {value} to {self.path}")


class NvramCounterStore(CounterStore):
    """
    Fixed 8-byte big-endian cell, the verifier-side EEPROM region.

    An all-0xFF cell is how erased flash reads back and loads as 0.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> int:
        try:
            cell = self.path.read_bytes()
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise StorageError(f"cannot read NVRAM cell {self.path}: {e}") from e
        if len(cell) != NVRAM_CELL_SIZE:
            raise StorageError(f"NVRAM cell {self.path} has {len(cell)} bytes, expected {NVRAM_CELL_SIZE}")
        (value,) = struct.unpack(">Q", cell)
        if value == ERASED_COUNTER:
            logger.info(f"NVRAM cell {self.path} is erased, starting at counter 0")
            return 0
        return value

    def store(self, value: int) -> None:
        check_advance(value)
        try:
            durable_write(self.path, struct.pack(">Q", value))
        except OSError as e:
            raise StorageError(f"cannot write NVRAM cell {self.path}: {e}") from e
