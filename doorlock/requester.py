"""
Requester (mobile side) of the rolling-code protocol.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional, Tuple

from loguru import logger

from .codegen import CodeDeriver, CodeGenerator, check_advance
from .config import LockConfig
from .errors import CommandInFlightError, NotConnectedError
from .protocol import Verdict, encode_command, parse_verdict
from .store import CounterStore

if TYPE_CHECKING:
    from .transport import Transport


class Requester:
    """
    Builds toggle commands and sends them one at a time.

    The counter is advanced and persisted before a code ever leaves the
    process, so a crash or a lost message wastes a code but never reuses
    one. The verifier's window absorbs the gap.
    """

    def __init__(
        self,
        config: LockConfig,
        store: CounterStore,
        deriver: Optional[CodeDeriver] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.generator = CodeGenerator(config, deriver)
        self.counter = store.load()
        self.session_open = False
        self._in_flight = False
        self._verdicts_owed = 0
        logger.info(f"Loaded sync counter: {self.counter}")

    def session_opened(self) -> None:
        self.session_open = True
        self._verdicts_owed = 0
        logger.info("Transport session open, ready to send")

    def session_closed(self) -> None:
        self.session_open = False
        logger.info("Transport session closed")

    def attach(self, transport: "Transport") -> None:
        """Follow ``transport``'s session open/close events."""
        transport.add_session_listener(self.session_opened, self.session_closed)

    def build_command(self) -> Tuple[bytes, int]:
        """
        Derive the next code and durably advance the counter.

        Returns:
            The framed command and the new counter value.

        Raises:
            StorageError: If the counter could not be read or persisted;
                nothing may be sent in that case.
            CounterExhaustedError: If the counter range is used up.
        """
        counter = self.store.load()
        code = self.generator.generate(counter)
        next_counter = check_advance(counter + 1)
        self.store.store(next_counter)
        self.counter = next_counter
        logger.debug(f"Generated code for counter {counter}, next counter {next_counter}")
        return encode_command(code, self.generator.digits), next_counter

    async def _drain_stale_verdicts(self, transport: "Transport", timeout: Optional[float]) -> None:
        while self._verdicts_owed:
            line = await asyncio.wait_for(transport.receive_line(), timeout)
            self._verdicts_owed -= 1
            logger.warning(f"Discarded late verdict for an earlier command: {line!r}")

    async def send_toggle(self, transport: "Transport", timeout: Optional[float] = None) -> Verdict:
        """
        Send one toggle command and wait for the verdict.

        A timeout or cancellation leaves the counter advanced; call again to
        send the next code. Verdicts still owed for earlier timed-out
        commands are read and discarded before a new command is built;
        reopening the session forgets them.

        Raises:
            NotConnectedError: If no session is open.
            CommandInFlightError: If a previous command is still awaiting its verdict.
            asyncio.TimeoutError: If ``timeout`` elapses before a verdict arrives.
        """
        if not self.session_open:
            raise NotConnectedError("not connected or not ready")
        if self._in_flight:
            raise CommandInFlightError("previous command is still awaiting a verdict")

        self._in_flight = True
        sent = False
        try:
            await self._drain_stale_verdicts(transport, timeout)
            message, counter = self.build_command()
            await transport.send(message)
            sent = True
            logger.info(f"Code sent (counter now {counter}), waiting for response...")
            line = await asyncio.wait_for(transport.receive_line(), timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if sent:
                self._verdicts_owed += 1
            raise
        finally:
            self._in_flight = False

        verdict = parse_verdict(line)
        if verdict.accepted:
            logger.success("Command successful")
        else:
            logger.warning(f"Command failed: {verdict.reason}")
        return verdict
