"""Duplex message channels used by the two call legs.

Both legs speak JSON text frames over a WebSocket. The legs only depend on
the DuplexChannel protocol, so the server side (Starlette) and the client
side (websockets) connections are wrapped behind the same four operations.
"""

from typing import Dict, Optional, Protocol, runtime_checkable

import structlog
import websockets
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.asyncio.client import ClientConnection
from websockets.protocol import State


class ChannelClosed(ConnectionError):
    """Raised by receive_text/send_text once the channel has closed."""


@runtime_checkable
class DuplexChannel(Protocol):
    """Reliable, ordered, message-delimited duplex channel."""

    @property
    def open(self) -> bool:
        """True while the channel accepts writes."""
        ...

    async def send_text(self, text: str) -> None:
        """Send one text frame.

        Raises:
            ChannelClosed: If the channel is no longer open
        """
        ...

    async def receive_text(self) -> str:
        """Wait for the next inbound frame.

        Raises:
            ChannelClosed: When the peer closes or close() was called
        """
        ...

    async def close(self) -> None:
        """Close the channel. Closing twice is a no-op."""
        ...


class StarletteChannel:
    """Server-side channel over an accepted Starlette/FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._closed = False
        self._logger = structlog.get_logger(__name__)

    @property
    def open(self) -> bool:
        if self._closed:
            return False
        return (
            self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, text: str) -> None:
        if not self.open:
            raise ChannelClosed("Telephony channel is closed")
        try:
            await self._ws.send_text(text)
        except (WebSocketDisconnect, RuntimeError) as e:
            # Starlette raises RuntimeError when sending after close
            self._closed = True
            raise ChannelClosed(f"Telephony send failed: {e}") from e

    async def receive_text(self) -> str:
        if self._closed:
            raise ChannelClosed("Telephony channel is closed")
        try:
            message = await self._ws.receive()
        except RuntimeError as e:
            self._closed = True
            raise ChannelClosed(f"Telephony receive failed: {e}") from e

        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise ChannelClosed(f"Telephony peer disconnected (code={message.get('code')})")

        text = message.get("text")
        if text is not None:
            return text

        data = message.get("bytes") or b""
        return data.decode("utf-8", errors="replace")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._ws.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self._ws.close()
        except RuntimeError as e:
            self._logger.debug("Telephony close after disconnect", error=str(e))


class WebsocketsChannel:
    """Client-side channel over a websockets connection."""

    def __init__(self, connection: ClientConnection) -> None:
        self._conn = connection

    @property
    def open(self) -> bool:
        return self._conn.state is State.OPEN

    async def send_text(self, text: str) -> None:
        try:
            await self._conn.send(text)
        except websockets.exceptions.ConnectionClosed as e:
            raise ChannelClosed(f"Backend send failed: {e}") from e

    async def receive_text(self) -> str:
        try:
            message = await self._conn.recv()
        except websockets.exceptions.ConnectionClosed as e:
            raise ChannelClosed(f"Backend connection closed: {e}") from e

        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    async def close(self) -> None:
        # websockets makes close() idempotent
        await self._conn.close()


async def open_websockets_channel(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    open_timeout: float = 10.0,
) -> WebsocketsChannel:
    """Open a client WebSocket and wrap it as a DuplexChannel.

    Raises:
        ConnectionError: If the handshake fails or times out
    """
    try:
        connection = await websockets.connect(
            url,
            additional_headers=headers,
            open_timeout=open_timeout,
            max_size=16 * 1024 * 1024,
        )
    except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
        raise ConnectionError(f"Failed to connect to {url.split('?')[0]}: {e}") from e

    return WebsocketsChannel(connection)
