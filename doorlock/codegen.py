"""
Counter-to-code derivation.

A code is HMAC(secret, counter) reduced to a fixed number of decimal
digits using the RFC 4226 dynamic truncation. The counter is always fed
to the HMAC as 8 big-endian bytes.
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from typing import TYPE_CHECKING, Optional, Protocol

from .errors import CounterExhaustedError

if TYPE_CHECKING:
    from .config import LockConfig

# 0xFFFFFFFFFFFFFFFF marks an erased NVRAM cell, so it can never be a
# persisted counter value.
ERASED_COUNTER = 2**64 - 1
MAX_COUNTER = ERASED_COUNTER - 1

MIN_DIGITS = 6
MAX_DIGITS = 10
DEFAULT_DIGEST = "sha256"


def counter_to_bytes(counter: int) -> bytes:
    """Encode a counter as the 8-byte big-endian HMAC message."""
    if counter < 0:
        raise ValueError("counter must be a non-negative integer")
    if counter > MAX_COUNTER:
        raise CounterExhaustedError(f"counter {counter} exceeds {MAX_COUNTER}")
    return struct.pack(">Q", counter)


def check_advance(counter: int) -> int:
    """Return ``counter`` if it may be persisted, else raise CounterExhaustedError."""
    if counter < 0:
        raise ValueError("counter must be a non-negative integer")
    if counter > MAX_COUNTER:
        raise CounterExhaustedError(
            f"counter {counter} exceeds {MAX_COUNTER}; provision a new secret"
        )
    return counter


class CodeDeriver(Protocol):
    """Keyed one-way function from (secret, counter) to a numeric code."""

    digits: int

    def derive(self, secret: bytes, counter: int) -> int:
        ...


class HmacCodeDeriver:
    """
    HMAC with dynamic truncation.

    :param digits: number of decimal digits in each code (6..10)
    :param digest: hashlib algorithm name; must produce at least 20 bytes
    """

    def __init__(self, digits: int = 6, digest: str = DEFAULT_DIGEST) -> None:
        if not MIN_DIGITS <= digits <= MAX_DIGITS:
            raise ValueError(f"digits must be between {MIN_DIGITS} and {MAX_DIGITS}")
        if digest not in hashlib.algorithms_available:
            raise ValueError(f"unknown digest {digest!r}")
        if hashlib.new(digest).digest_size < 20:
            raise ValueError("digest must produce at least 20 bytes")
        self.digits = digits
        self.digest = digest

    def derive(self, secret: bytes, counter: int) -> int:
        mac = hmac.new(secret, counter_to_bytes(counter), self.digest).digest()
        offset = mac[-1] & 0x0F
        code = (
            (mac[offset] & 0x7F) << 24
            | (mac[offset + 1] & 0xFF) << 16
            | (mac[offset + 2] & 0xFF) << 8
            | (mac[offset + 3] & 0xFF)
        )
        return code % 10**self.digits

    def __repr__(self) -> str:
        return f"HmacCodeDeriver(digits={self.digits}, digest={self.digest!r})"


def generate(secret: bytes, counter: int, digits: int = 6, digest: str = DEFAULT_DIGEST) -> int:
    """Derive the code for ``counter`` under ``secret``."""
    return HmacCodeDeriver(digits=digits, digest=digest).derive(secret, counter)


class CodeGenerator:
    """
    Binds a deriver to the shared secret of one deployment.

    Used by both the requester and the validator so the two ends always
    agree on digit count and algorithm.
    """

    def __init__(self, config: "LockConfig", deriver: Optional[CodeDeriver] = None) -> None:
        self._secret = config.secret.get_secret_value()
        self.deriver = deriver or HmacCodeDeriver(digits=config.digits, digest=config.digest)
        self.digits = self.deriver.digits

    def generate(self, counter: int) -> int:
        return self.deriver.derive(self._secret, counter)

    def format(self, code: int) -> str:
        return str(code).zfill(self.digits)

    def matches(self, received: int, counter: int) -> bool:
        """Constant-time check of ``received`` against the code for ``counter``."""
        expected = self.format(self.generate(counter))
        return hmac.compare_digest(self.format(received).encode("ascii"), expected.encode("ascii"))
