import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from ..errors import ChannelError
from ..utils.logging import get_logger

logger = get_logger("channel")

FRAME_LIMIT = 1024 * 1024  # 1MB per frame


@dataclass
class ChannelMessage:
    event: str
    data: Any = None


class Channel(ABC):
    """A duplex, event-framed connection to the backend."""

    @abstractmethod
    async def open(self):
        """Open the connection; raises ChannelError on failure."""

    @abstractmethod
    async def send(self, event: str, data: Any = None):
        """Send one event frame; raises ChannelError on failure."""

    @abstractmethod
    def messages(self) -> AsyncIterator[ChannelMessage]:
        """
        Yield inbound frames until the peer closes the connection.
        Raises ChannelError if the connection breaks.
        """

    @abstractmethod
    async def close(self):
        pass


class StreamChannel(Channel):
    """Newline-delimited JSON frames ``{"event": ..., "data": ...}`` over TCP."""

    def __init__(self, host: str, port: int, connect_timeout: float = 10.0, frame_limit: int = FRAME_LIMIT):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.frame_limit = frame_limit
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def open(self):
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=self.frame_limit),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ChannelError(f"Cannot reach backend at {self.host}:{self.port}: {e}") from e
        logger.info(f"Channel open to {self.host}:{self.port}")

    async def send(self, event: str, data: Any = None):
        if not self._writer:
            raise ChannelError("Channel is not open")

        frame = {"event": event}
        if data is not None:
            frame["data"] = data

        try:
            self._writer.write(json.dumps(frame).encode() + b"\n")
            await self._writer.drain()
        except OSError as e:
            raise ChannelError(f"Failed to send {event}: {e}") from e

    async def messages(self) -> AsyncIterator[ChannelMessage]:
        reader = self._reader
        if not reader:
            raise ChannelError("Channel is not open")

        while True:
            try:
                line = await self._read_frame(reader)
            except asyncio.IncompleteReadError:
                # Peer closed the stream
                return
            except OSError as e:
                raise ChannelError(f"Channel read failed: {e}") from e

            if line is None:
                continue

            try:
                frame = json.loads(line.decode())
            except ValueError as e:
                logger.warning(f"Dropping undecodable frame: {e}")
                continue

            if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                logger.warning(f"Dropping frame without an event name: {line[:200]!r}")
                continue

            yield ChannelMessage(event=frame["event"], data=frame.get("data"))

    async def _read_frame(self, reader: asyncio.StreamReader) -> Optional[bytes]:
        """Next frame, or None when an oversized frame was skipped."""
        try:
            return await reader.readuntil(b"\n")
        except asyncio.LimitOverrunError as e:
            skipped = await self._skip_frame(reader, e.consumed)
            logger.warning(f"Dropping frame over {self.frame_limit} bytes ({skipped} bytes skipped)")
            return None

    @staticmethod
    async def _skip_frame(reader: asyncio.StreamReader, consumed: int) -> int:
        """Discard the rest of an oversized frame, up to and including its newline."""
        skipped = 0
        while True:
            skipped += len(await reader.readexactly(consumed))
            try:
                skipped += len(await reader.readuntil(b"\n"))
                return skipped
            except asyncio.LimitOverrunError as e:
                consumed = e.consumed

    async def close(self):
        writer, self._writer, self._reader = self._writer, None, None
        if not writer:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing channel: {e}")
