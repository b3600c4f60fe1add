"""
Verifier-side rolling-code validation and resynchronization.
"""

from __future__ import annotations

from typing import Optional, Union

from loguru import logger

from .codegen import MAX_COUNTER, CodeDeriver, CodeGenerator, check_advance
from .config import LockConfig
from .errors import MalformedCommandError
from .protocol import Verdict, parse_command
from .store import CounterStore


class Validator:
    """
    Accepts each code at most once, searching ``window`` positions ahead.

    The durable store is the source of truth: the counter is reloaded at
    the start of each validation and the in-memory copy only moves after
    ``store()`` succeeded. Not safe for concurrent use.
    """

    def __init__(
        self,
        config: LockConfig,
        store: CounterStore,
        deriver: Optional[CodeDeriver] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.window = config.window
        self.generator = CodeGenerator(config, deriver)
        self.counter = store.load()
        logger.info(f"Validator ready at counter {self.counter} (window={self.window})")

    def _find_offset(self, received: int, counter: int) -> Optional[int]:
        last = min(counter + self.window, MAX_COUNTER)
        for candidate in range(counter, last + 1):
            if self.generator.matches(received, candidate):
                return candidate - counter
        return None

    def validate(self, received: int) -> Verdict:
        """
        Check ``received`` against the current counter and the window ahead of it.

        Raises:
            StorageError: If the advanced counter could not be persisted.
            CounterExhaustedError: If accepting would overflow the counter.
        """
        counter = self.store.load()
        self.counter = counter

        offset = self._find_offset(received, counter)
        if offset is None:
            logger.warning(f"Rejected invalid code at counter {counter}")
            return Verdict.REJECTED_INVALID_CODE

        new_counter = check_advance(counter + offset + 1)
        self.store.store(new_counter)
        self.counter = new_counter
        if offset:
            logger.info(f"Accepted code after resync of {offset} (counter {counter} -> {new_counter})")
        else:
            logger.info(f"Accepted code (counter {counter} -> {new_counter})")
        return Verdict.ACCEPTED

    def handle_line(self, line: Union[bytes, str, None]) -> Verdict:
        """Parse one framed command line and validate it."""
        try:
            received = parse_command(line, self.config.digits, self.config.min_digits)
        except MalformedCommandError as e:
            logger.warning(f"Rejected malformed command: {e}")
            return Verdict.REJECTED_MALFORMED
        return self.validate(received)
