"""
Line-oriented wire format shared by the requester and the verifier.

Every message is UTF-8 text terminated by ``\\n``:

    requester -> verifier   "<code>\\n"          e.g. "042117\\n"
    verifier  -> requester  "OK\\n" | "ERROR:<reason>\\n"
"""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional, Union

from .errors import MalformedCommandError, ProtocolError

LINE_DELIMITER = b"\n"
DEFAULT_MAX_LINE = 64

_DIGITS_RE = re.compile(r"[0-9]+")


class Verdict(Enum):
    """Verifier reply to one command line."""
    ACCEPTED = "OK"
    REJECTED_INVALID_CODE = "ERROR:InvalidCode"
    REJECTED_MALFORMED = "ERROR:InvalidFormat"
    STORAGE_FAILURE = "ERROR:StorageFailure"
    COUNTER_EXHAUSTED = "ERROR:CounterExhausted"
    ACTUATION_FAILED = "ERROR:ActuationFailed"

    @property
    def accepted(self) -> bool:
        return self is Verdict.ACCEPTED

    @property
    def reason(self) -> Optional[str]:
        """Machine-stable rejection tag, None for ACCEPTED."""
        if self.accepted:
            return None
        return self.value.split(":", 1)[1]


_VERDICTS = {v.value: v for v in Verdict}


class LineBuffer:
    """
    Reassembles newline-delimited lines from arbitrarily chunked bytes.

    Lines longer than ``max_line`` bytes are dropped up to the next
    delimiter and reported as ``None``.
    """

    def __init__(self, max_line: int = DEFAULT_MAX_LINE) -> None:
        self.max_line = max_line
        self._buffer = bytearray()
        self._overflow = False

    def feed(self, data: bytes) -> List[Optional[bytes]]:
        lines: List[Optional[bytes]] = []
        self._buffer.extend(data)
        while True:
            index = self._buffer.find(LINE_DELIMITER)
            if index < 0:
                break
            raw = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            if self._overflow or len(raw) > self.max_line:
                self._overflow = False
                lines.append(None)
            else:
                lines.append(raw.strip())
        if len(self._buffer) > self.max_line:
            # Keep discarding until the delimiter shows up.
            self._overflow = True
            self._buffer.clear()
        return lines

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a delimiter."""
        return len(self._buffer)


def _as_text(line: Union[bytes, str, None]) -> str:
    if line is None:
        raise MalformedCommandError("line too long")
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedCommandError("line is not valid UTF-8") from e
    return line.strip()


def encode_command(code: int, digits: int) -> bytes:
    return str(code).zfill(digits).encode("ascii") + LINE_DELIMITER


def parse_command(line: Union[bytes, str, None], digits: int, min_digits: int = 1) -> int:
    """
    Parse a command line into its numeric code.

    Leading zeros are optional; the value, not the width, identifies the
    code. The body must still hold between ``min_digits`` and ``digits``
    ASCII digits.
    """
    body = _as_text(line)
    if not body:
        raise MalformedCommandError("empty line")
    if not _DIGITS_RE.fullmatch(body):
        raise MalformedCommandError("code must be decimal digits")
    if not min_digits <= len(body) <= digits:
        raise MalformedCommandError(f"code must have {min_digits}..{digits} digits, got {len(body)}")
    return int(body)


def encode_verdict(verdict: Verdict) -> bytes:
    return verdict.value.encode("ascii") + LINE_DELIMITER


def parse_verdict(line: Union[bytes, str, None]) -> Verdict:
    try:
        body = _as_text(line)
    except MalformedCommandError as e:
        raise ProtocolError(f"unreadable verdict: {e}") from e
    try:
        return _VERDICTS[body]
    except KeyError:
        raise ProtocolError(f"unknown verdict {body!r}") from None
