"""Signaling channel adapter.

Wraps a :class:`~meshcall.core.protocols.RelayChannel` and translates
between relay frames and the typed messages of
:mod:`meshcall.core.signaling.messages`.
"""

import asyncio
import logging
from typing import Optional, Union

from pyee.asyncio import AsyncIOEventEmitter

from meshcall.core.exceptions import ChannelDisconnected, MalformedMessage
from meshcall.core.observability import metrics
from meshcall.core.protocols import RelayChannel
from meshcall.core.signaling.messages import OutboundMessage, parse_inbound, serialize
from meshcall.core.utils.utils import cancel_and_wait

logger = logging.getLogger(__name__)


class SignalingChannel(AsyncIOEventEmitter):
    """Bidirectional translation layer over the relay.

    Events:
        ``connected``: the relay connection is (re-)established.
        ``disconnected`` (ChannelDisconnected): the relay connection was lost.
            Each reconnect starts a new signaling session.
        ``message`` (InboundMessage): a parsed inbound message.

    Malformed frames are logged and dropped. They never reach listeners.
    """

    def __init__(
        self,
        relay: RelayChannel,
        *,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ) -> None:
        super().__init__()
        self._relay = relay
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._run_task: Optional[asyncio.Task[None]] = None
        self._closing = False
        self._connected = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._relay.connected

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        """Wait until the relay is connected.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def start(self) -> None:
        """Start the connect/receive loop in the background."""
        if self._run_task is not None:
            return
        self._closing = False
        self._run_task = asyncio.create_task(self._run(), name="signaling-channel")

    async def close(self) -> None:
        self._closing = True
        self._connected.clear()
        if self._run_task is not None:
            await cancel_and_wait(self._run_task)
            self._run_task = None
        await self._relay.close()

    async def send(self, message: OutboundMessage) -> None:
        """Serialize and send an outbound message.

        Raises:
            ChannelDisconnected: If the relay is not connected.
        """
        if not self._relay.connected:
            raise ChannelDisconnected(f"Cannot send {message.type!r}: relay not connected")
        logger.debug(f"-> {message.type} {getattr(message, 'target', '')}")
        await self._relay.send(serialize(message))

    async def _run(self) -> None:
        delay = self._reconnect_delay
        while not self._closing:
            try:
                await self._relay.connect()
            except ChannelDisconnected as exc:
                logger.warning(f"Relay connection failed: {exc}; retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._max_reconnect_delay)
                continue

            delay = self._reconnect_delay
            logger.info("Relay connected")
            self._connected.set()
            self.emit("connected")

            reason = "relay connection closed"
            try:
                async for raw in self._relay.messages():
                    self._handle_frame(raw)
            except ChannelDisconnected as exc:
                reason = str(exc) or reason

            self._connected.clear()
            if self._closing:
                break
            logger.warning(f"Relay connection lost: {reason}")
            self.emit("disconnected", ChannelDisconnected(reason))
            await asyncio.sleep(delay)

    def _handle_frame(self, raw: Union[str, bytes]) -> None:
        metrics.signaling_messages_received.add(1)
        try:
            message = parse_inbound(raw)
        except MalformedMessage as exc:
            metrics.signaling_messages_dropped.add(1, {"reason": "malformed"})
            logger.warning(f"Dropping malformed relay message: {exc}")
            return
        logger.debug(f"<- {message.type}")
        self.emit("message", message)
