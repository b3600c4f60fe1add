"""
Verifier endpoint: turns inbound bytes into verdicts and actuations.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from loguru import logger

from .errors import CounterExhaustedError, StorageError
from .protocol import LineBuffer, Verdict, encode_verdict
from .validator import Validator

Actuator = Callable[[], None]


class LockActuator:
    """Tracks the lock state; stands in for the servo driver."""

    def __init__(self, locked: bool = True) -> None:
        self.locked = locked
        self.toggles = 0

    def __call__(self) -> None:
        self.locked = not self.locked
        self.toggles += 1
        logger.info(f"Lock toggled -> {'LOCKED' if self.locked else 'UNLOCKED'}")


class VerifierSession:
    """
    Processes one inbound byte stream to completion, line by line.

    Each line is parsed, validated, persisted on accept, actuated and
    answered before the next line is looked at.
    """

    def __init__(self, validator: Validator, actuator: Actuator) -> None:
        self.validator = validator
        self.actuator = actuator
        self.framer = LineBuffer()
        self.fatal: Optional[CounterExhaustedError] = None

    def handle_line(self, line: Optional[bytes]) -> Verdict:
        try:
            verdict = self.validator.handle_line(line)
        except StorageError as e:
            logger.error(f"Counter persistence failed, not accepting: {e}")
            return Verdict.STORAGE_FAILURE
        if verdict.accepted:
            try:
                self.actuator()
            except Exception:
                logger.exception("Actuator failed after accepting code")
                return Verdict.ACTUATION_FAILED
        return verdict

    def feed(self, data: bytes) -> List[bytes]:
        """
        Consume a chunk of inbound bytes and return the reply lines.

        Once the counter is exhausted the session stops processing input;
        ``fatal`` then holds the CounterExhaustedError.
        """
        replies: List[bytes] = []
        if self.fatal is not None:
            return replies
        for line in self.framer.feed(data):
            try:
                verdict = self.handle_line(line)
            except CounterExhaustedError as e:
                logger.critical(f"Counter exhausted: {e}")
                self.fatal = e
                replies.append(encode_verdict(Verdict.COUNTER_EXHAUSTED))
                break
            replies.append(encode_verdict(verdict))
        return replies


class VerifierServer:
    """
    Asyncio stream server for the verifier.

    Connections are accepted concurrently but every chunk goes through the
    same lock, so validation is strictly sequential.
    """

    def __init__(self, validator: Validator, actuator: Optional[Actuator] = None) -> None:
        self.validator = validator
        self.actuator = actuator or LockActuator()
        self._lock = asyncio.Lock()
        self._server: Optional[asyncio.AbstractServer] = None
        self._fatal: Optional[BaseException] = None

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        logger.info(f"Requester connected: {peer}")
        session = VerifierSession(self.validator, self.actuator)
        try:
            while True:
                chunk = await reader.read(256)
                if not chunk:
                    break
                async with self._lock:
                    replies = session.feed(chunk)
                for reply in replies:
                    writer.write(reply)
                await writer.drain()
                if session.fatal is not None:
                    logger.critical("Shutting down verifier; provision a new secret and reset counters")
                    self._fatal = session.fatal
                    self.close()
                    break
        except ConnectionError as e:
            logger.warning(f"Connection to {peer} lost: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error while closing connection to {peer}: {e}")
            logger.info(f"Requester disconnected: {peer}")

    async def start(self, host: str, port: int) -> asyncio.AbstractServer:
        self._server = await asyncio.start_server(self._handle_client, host, port)
        for sock in self._server.sockets:
            logger.info(f"Verifier listening on {sock.getsockname()}")
        return self._server

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    def close(self) -> None:
        if self._server is not None:
            self._server.close()

    async def serve_forever(self, host: str, port: int) -> None:
        """
        Serve until closed.

        Raises:
            CounterExhaustedError: If the verifier stopped because its counter ran out.
        """
        server = await self.start(host, port)
        try:
            await server.serve_forever()
        except asyncio.CancelledError:
            if self._fatal is None:
                raise
        if self._fatal is not None:
            raise self._fatal
