"""
Byte transports between the requester and the verifier.

``BleTransport`` talks to a BLE serial module (HC-05 style) through bleak;
``StreamTransport`` uses plain asyncio streams, which is what a TCP serial
bridge or the local simulation server offers.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from loguru import logger

from .errors import NotConnectedError, ProtocolError
from .protocol import LineBuffer

SessionListener = Callable[[], None]


class Transport(ABC):
    """Ordered, newline-framed byte stream to the peer."""

    def __init__(self) -> None:
        self._on_open: List[SessionListener] = []
        self._on_close: List[SessionListener] = []

    def add_session_listener(self, on_open: SessionListener, on_close: SessionListener) -> None:
        """Register callbacks fired when the session opens and closes."""
        self._on_open.append(on_open)
        self._on_close.append(on_close)

    def _session_opened(self) -> None:
        for callback in self._on_open:
            callback()

    def _session_closed(self) -> None:
        for callback in self._on_close:
            callback()

    @abstractmethod
    async def open(self) -> None:
        """Establish the session and notify listeners."""

    @abstractmethod
    async def send(self, data: bytes) -> None:
        ...

    @abstractmethod
    async def receive_line(self) -> str:
        """Return the next complete, stripped line."""

    @abstractmethod
    async def close(self) -> None:
        ...

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class StreamTransport(Transport):
    """Transport over an asyncio StreamReader/StreamWriter pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        super().__init__()
        self._reader = reader
        self._writer = writer
        self._framer = LineBuffer()
        self._lines: List[Optional[bytes]] = []
        self._closed = False
        self._session_ended = False

    @classmethod
    async def connect(cls, host: str, port: int) -> "StreamTransport":
        reader, writer = await asyncio.open_connection(host, port)
        logger.info(f"Connected to {host}:{port}")
        return cls(reader, writer)

    async def open(self) -> None:
        """Announce the session to listeners; call after registering them."""
        self._session_opened()

    async def send(self, data: bytes) -> None:
        if self._closed:
            raise NotConnectedError("transport is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def receive_line(self) -> str:
        while not self._lines:
            chunk = await self._reader.read(256)
            if not chunk:
                self._mark_closed()
                raise NotConnectedError("connection closed by peer")
            self._lines.extend(self._framer.feed(chunk))
        line = self._lines.pop(0)
        if line is None:
            raise ProtocolError("oversized line from peer")
        return line.decode("utf-8", errors="replace")

    def _mark_closed(self) -> None:
        if self._session_ended:
            return
        self._session_ended = True
        self._session_closed()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing stream: {e}")
        self._mark_closed()


class BleTransport(Transport):
    """
    Transport over a BLE UART-style module.

    Writes go to the first writable characteristic (or the configured
    one); replies arrive as notifications and are reassembled into lines.
    """

    def __init__(
        self,
        device_name: str = "HC-05",
        scan_timeout: float = 5.0,
        write_characteristic: Optional[str] = None,
        notify_characteristic: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.device_name = device_name
        self.scan_timeout = scan_timeout
        self.write_uuid = write_characteristic
        self.notify_uuid = notify_characteristic
        self._client: Optional[BleakClient] = None
        self._write_char: Optional[BleakGATTCharacteristic] = None
        self._notify_char: Optional[BleakGATTCharacteristic] = None
        self._framer = LineBuffer()
        self._lines: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()

    async def scan_for_device(self) -> Optional[BLEDevice]:
        devices = await BleakScanner.discover(timeout=self.scan_timeout)
        for d in devices:
            if d.name == self.device_name:
                logger.info(f"Found {self.device_name} at {d.address}")
                return d
        return None

    def _pick_characteristics(self, client: BleakClient) -> None:
        for service in client.services:
            for char in service.characteristics:
                props = char.properties
                if self.write_uuid is None and ("write" in props or "write-without-response" in props):
                    self._write_char = self._write_char or char
                elif self.write_uuid is not None and char.uuid.lower() == self.write_uuid.lower():
                    self._write_char = char
                if self.notify_uuid is None and "notify" in props:
                    self._notify_char = self._notify_char or char
                elif self.notify_uuid is not None and char.uuid.lower() == self.notify_uuid.lower():
                    self._notify_char = char
        if self._write_char is None:
            raise NotConnectedError("write characteristic not found")
        if self._notify_char is None:
            logger.warning("No notify characteristic found; verdicts will not be received")

    def _on_notify(self, _sender: BleakGATTCharacteristic, data: bytearray) -> None:
        for line in self._framer.feed(bytes(data)):
            self._lines.put_nowait(line)

    def _on_disconnect(self, _client: BleakClient) -> None:
        logger.info(f"Disconnected from {self.device_name}")
        self._write_char = None
        self._session_closed()

    async def open(self) -> None:
        """Scan, connect, discover characteristics and announce the session."""
        device = await self.scan_for_device()
        if device is None:
            raise NotConnectedError(f"{self.device_name} device not found")

        # Replies still queued from a previous connection are dropped.
        self._framer = LineBuffer()
        self._lines = asyncio.Queue()
        self._write_char = None
        self._notify_char = None
        client = BleakClient(device, disconnected_callback=self._on_disconnect)
        await client.connect()
        logger.info(f"Connected to {device.address}")
        self._client = client
        try:
            self._pick_characteristics(client)
            if self._notify_char is not None:
                await client.start_notify(self._notify_char, self._on_notify)
        except BaseException:
            await client.disconnect()
            raise
        self._session_opened()

    async def send(self, data: bytes) -> None:
        if self._client is None or self._write_char is None or not self._client.is_connected:
            raise NotConnectedError("not connected or not ready")
        without_response = "write-without-response" in self._write_char.properties
        await self._client.write_gatt_char(self._write_char, data, response=not without_response)
        logger.debug(f"Sent {len(data)} bytes")

    async def receive_line(self) -> str:
        line = await self._lines.get()
        if line is None:
            raise ProtocolError("oversized line from peer")
        return line.decode("utf-8", errors="replace")

    async def close(self) -> None:
        if self._client is not None and self._client.is_connected:
            await self._client.disconnect()
        self._client = None
