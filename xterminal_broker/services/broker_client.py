"""
MQTT broker connection.

Only the connection lifecycle is implemented: connect, send a clean-session
CONNECT handshake, read packets until the broker goes away, and disconnect.
CONNACK and PUBLISH are received and logged but not acted on.
"""

import asyncio
import socket
import struct
import time
from typing import Optional, Tuple

from xterminal_broker.core.logger import get_logger

logger = get_logger(__name__)

# ── MQTT 3.1.1 constants ──
PROTOCOL_NAME: bytes = b"MQTT"
PROTOCOL_LEVEL: int = 4
CLEAN_SESSION: int = 0x02
KEEP_ALIVE_SECONDS: int = 60
CONNECT_TIMEOUT_SECONDS: float = 10.0
MAX_CLIENT_ID_LENGTH: int = 31

CONNECT: int = 1
CONNACK: int = 2
PUBLISH: int = 3
DISCONNECT: int = 14


class BrokerAddressError(Exception):
    """The broker host name does not resolve."""


def encode_remaining_length(length: int) -> bytes:
    out = bytearray()
    while True:
        byte = length % 128
        length //= 128
        if length:
            byte |= 0x80
        out.append(byte)
        if not length:
            return bytes(out)


def _utf8_field(value: str) -> bytes:
    data = value.encode("utf-8")
    return struct.pack("!H", len(data)) + data


def build_connect_packet(client_id: str, keep_alive: int = KEEP_ALIVE_SECONDS) -> bytes:
    """CONNECT with the clean-session flag and no will, username or password."""
    variable_header = (
        _utf8_field(PROTOCOL_NAME.decode("ascii"))
        + bytes([PROTOCOL_LEVEL, CLEAN_SESSION])
        + struct.pack("!H", keep_alive)
    )
    payload = _utf8_field(client_id)
    body = variable_header + payload
    return bytes([CONNECT << 4]) + encode_remaining_length(len(body)) + body


def build_disconnect_packet() -> bytes:
    return bytes([DISCONNECT << 4, 0])


def make_client_id(prefix: str = "xterminal", now: Optional[float] = None) -> str:
    if now is None:
        now = time.time()
    return f"{prefix}:{now:f}"[:MAX_CLIENT_ID_LENGTH]


async def read_packet(reader: asyncio.StreamReader) -> Tuple[int, int, bytes]:
    """Read one packet; returns (type, flags, body)."""
    first = (await reader.readexactly(1))[0]
    length = 0
    multiplier = 1
    for _ in range(4):
        byte = (await reader.readexactly(1))[0]
        length += (byte & 0x7F) * multiplier
        if not byte & 0x80:
            break
        multiplier *= 128
    else:
        raise ValueError("malformed remaining length")
    body = await reader.readexactly(length) if length else b""
    return first >> 4, first & 0x0F, body


class BrokerClient:
    def __init__(
        self,
        host: str,
        port: int,
        client_prefix: str = "xterminal",
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
    ):
        self.host = host
        self.port = port
        self.client_prefix = client_prefix
        self.connect_timeout = connect_timeout
        self.client_id: Optional[str] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def resolve(self) -> None:
        """
        Check that the broker host name resolves.

        Raises:
            BrokerAddressError: the name is unknown to the resolver
        """
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.getaddrinfo(self.host, self.port, type=socket.SOCK_STREAM),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Resolving {self.host} timed out, will still try to connect")
        except socket.gaierror as e:
            raise BrokerAddressError(f"Cannot resolve MQTT broker {self.host}: {e}") from e

    def start(self) -> asyncio.Task:
        """Connect in the background; HTTP serving does not wait for the broker."""
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.get_running_loop().create_task(self.connect())
        return self._connect_task

    async def connect(self) -> bool:
        """
        Open the broker connection and send the CONNECT handshake.

        Returns:
            False if the connection could not be established
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"connect() failed: timed out after {self.connect_timeout}s")
            return False
        except OSError as e:
            logger.error(f"connect() failed: {e.strerror or e}")
            return False

        self.client_id = make_client_id(self.client_prefix)
        try:
            self._writer.write(build_connect_packet(self.client_id))
            await self._writer.drain()
        except OSError as e:
            logger.error(f"MQTT handshake failed: {e}")
            self._writer.close()
            self._reader, self._writer = None, None
            return False
        logger.info(f"MQTT handshake sent to {self.host}:{self.port} as {self.client_id}")

        self._read_task = asyncio.get_running_loop().create_task(self._read_loop())
        return True

    async def disconnect(self) -> None:
        if self._connect_task is not None:
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
            self._connect_task = None

        if self._read_task is not None:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
            self._read_task = None

        if self._writer is None:
            return
        writer, self._writer, self._reader = self._writer, None, None
        try:
            if not writer.is_closing():
                writer.write(build_disconnect_packet())
                await writer.drain()
            writer.close()
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing broker connection: {e}")

    async def _read_loop(self) -> None:
        try:
            while True:
                packet_type, _, body = await read_packet(self._reader)
                if packet_type == CONNACK:
                    logger.debug(f"CONNACK received: {body.hex()}")
                elif packet_type == PUBLISH:
                    logger.debug(f"PUBLISH received ({len(body)} bytes)")
                else:
                    logger.debug(f"Ignoring MQTT packet type {packet_type}")
        except asyncio.IncompleteReadError:
            logger.warning(f"Broker {self.host}:{self.port} closed the connection")
        except (OSError, ValueError) as e:
            logger.error(f"Broker connection error: {e}")
        if self._writer is not None:
            self._writer.close()
