import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..errors import ChannelError
from ..events import EventDispatcher, EventKind
from ..utils.logging import get_logger
from .channel import Channel, ChannelMessage

logger = get_logger("connection")

SUBSCRIBE_EVENT = "subscribe_threats"

Hook = Callable[[], Awaitable[None]]
MessageHandler = Callable[[ChannelMessage], Awaitable[None]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ConnectionManager:
    """
    Owns the duplex channel to the backend and its reconnect policy.

    After a failure the next attempt is scheduled ``base_delay * attempt``
    seconds later. Once ``max_attempts`` retries have failed the state
    becomes FAILED and nothing else is scheduled until ``connect()`` is
    called again. Every open and every retry timer is tagged with a
    generation number; ``disconnect()`` and ``connect()`` bump it, so a
    stale timer or reader wakes up to find itself outdated and does nothing.
    """

    def __init__(
        self,
        channel_factory: Callable[[], Channel],
        dispatcher: EventDispatcher,
        base_delay: float = 3.0,
        max_attempts: int = 5,
        on_connected: Optional[Hook] = None,
        on_disconnected: Optional[Hook] = None,
        on_message: Optional[MessageHandler] = None,
    ):
        self._channel_factory = channel_factory
        self._dispatcher = dispatcher
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._on_message = on_message

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._generation = 0
        self._channel: Optional[Channel] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    @property
    def session(self) -> int:
        """Generation of the current open; changes on every open and disconnect."""
        return self._generation

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def connect(self):
        """Open the channel unless already connecting or connected; resets the attempt counter."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._cancel_retry()
        self._attempts = 0
        await self._open()

    async def disconnect(self):
        """Close the channel on purpose and drop any pending retry."""
        self._generation += 1
        self._cancel_retry()

        reader, self._reader_task = self._reader_task, None
        if reader and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        channel, self._channel = self._channel, None
        if channel:
            await self._close_quietly(channel)

        was_connected = self._state == ConnectionState.CONNECTED
        self._set_state(ConnectionState.DISCONNECTED)
        if was_connected:
            await self._run_hook(self._on_disconnected, "on_disconnected")

    async def send(self, event: str, data=None) -> bool:
        if not self._channel or self._state != ConnectionState.CONNECTED:
            return False
        try:
            await self._channel.send(event, data)
            return True
        except ChannelError as e:
            logger.warning(f"Send of {event} failed: {e}")
            return False

    async def _open(self):
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)

        channel = self._channel_factory()
        try:
            await channel.open()
        except ChannelError as e:
            logger.warning(f"Connection attempt failed: {e}")
            await self._close_quietly(channel)
            if generation == self._generation:
                self._schedule_retry()
            return

        if generation != self._generation:
            # disconnect() won the race while we were opening
            await self._close_quietly(channel)
            return

        self._channel = channel
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTED)

        try:
            await channel.send(SUBSCRIBE_EVENT)
        except ChannelError as e:
            await self._connection_lost(generation, channel, e)
            return

        self._reader_task = asyncio.create_task(self._read(channel, generation))
        await self._run_hook(self._on_connected, "on_connected")

    async def _read(self, channel: Channel, generation: int):
        error: Optional[Exception] = None
        try:
            async for message in channel.messages():
                if generation != self._generation:
                    return
                await self._deliver(message)
        except ChannelError as e:
            error = e
        await self._connection_lost(generation, channel, error)

    async def _deliver(self, message: ChannelMessage):
        if not self._on_message:
            return
        try:
            await self._on_message(message)
        except Exception:
            logger.exception(f"Error handling {message.event} message")

    async def _connection_lost(self, generation: int, channel: Channel, error: Optional[Exception]):
        if generation != self._generation or self._state != ConnectionState.CONNECTED:
            return

        if error:
            logger.warning(f"Connection to backend lost: {error}")
        else:
            logger.warning("Backend closed the connection")

        self._channel = None
        self._reader_task = None
        self._set_state(ConnectionState.RECONNECTING)
        await self._close_quietly(channel)
        await self._run_hook(self._on_disconnected, "on_disconnected")

        # The hook may have called disconnect() or connect()
        if generation == self._generation:
            self._schedule_retry()

    def _schedule_retry(self):
        self._set_state(ConnectionState.RECONNECTING)

        if self._attempts >= self.max_attempts:
            logger.error(
                f"Max reconnection attempts ({self.max_attempts}) reached. Backend connection failed."
            )
            self._set_state(ConnectionState.FAILED)
            return

        self._attempts += 1
        delay = self.base_delay * self._attempts
        logger.info(f"Reconnecting to backend in {delay:.1f}s ({self._attempts}/{self.max_attempts})")
        self._retry_task = asyncio.create_task(self._retry_after(delay, self._generation))

    async def _retry_after(self, delay: float, generation: int):
        await asyncio.sleep(delay)
        if generation != self._generation:
            return
        if self._retry_task is asyncio.current_task():
            self._retry_task = None
        await self._open()

    def _cancel_retry(self):
        task, self._retry_task = self._retry_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _set_state(self, state: ConnectionState):
        if state == self._state:
            return
        logger.info(f"Connection state: {self._state.value} -> {state.value}")
        self._state = state
        self._dispatcher.publish(EventKind.CONNECTION, state)

    async def _run_hook(self, hook: Optional[Hook], name: str):
        if not hook:
            return
        try:
            await hook()
        except Exception:
            logger.exception(f"Error in connection {name} hook")

    @staticmethod
    async def _close_quietly(channel: Channel):
        try:
            await channel.close()
        except ChannelError as e:
            logger.debug(f"Error closing channel: {e}")
