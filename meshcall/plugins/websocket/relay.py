"""Relay connection over a plain websocket, one JSON text frame per message."""

import logging
from typing import AsyncIterator, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from meshcall.core.exceptions import ChannelDisconnected

logger = logging.getLogger(__name__)


class WebsocketRelay:
    """Moves text frames between the signaling channel and a websocket relay.

    Args:
        url: Relay URL, e.g. ``ws://localhost:3001``.
        additional_headers: Extra HTTP headers for the opening handshake.
    """

    def __init__(self, url: str, additional_headers: Optional[dict[str, str]] = None):
        self.url = url
        self._additional_headers = additional_headers or {}
        self._ws: Optional[websockets.ClientConnection] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def connect(self) -> None:
        """Open the websocket.

        Raises:
            ChannelDisconnected: If the relay cannot be reached.
        """
        if self.connected:
            return
        try:
            self._ws = await websockets.connect(
                self.url, additional_headers=self._additional_headers
            )
        except (OSError, InvalidURI, InvalidHandshake) as exc:
            raise ChannelDisconnected(f"Cannot connect to {self.url}: {exc}") from exc
        logger.debug(f"Websocket to {self.url} open")

    async def send(self, data: str) -> None:
        ws = self._ws
        if ws is None:
            raise ChannelDisconnected("Websocket not connected")
        try:
            await ws.send(data)
        except ConnectionClosed as exc:
            raise ChannelDisconnected(f"Websocket closed: {exc}") from exc

    async def messages(self) -> AsyncIterator[Union[str, bytes]]:
        """Yield frames until the connection ends.

        Raises:
            ChannelDisconnected: If the connection is lost abnormally.
        """
        ws = self._ws
        if ws is None:
            raise ChannelDisconnected("Websocket not connected")
        try:
            async for message in ws:
                yield message
        except ConnectionClosed as exc:
            raise ChannelDisconnected(f"Websocket closed: {exc}") from exc

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
