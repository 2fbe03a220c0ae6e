"""Transport — how the event bus reaches the server.

Learn: The bus only needs three things from a connection: send a text
frame, receive the next text frame, close. Keeping that behind a small
protocol lets tests swap in an in-memory transport (client.fakes) while
production uses the websockets library.
"""

from typing import Optional, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed


class TransportClosed(Exception):
    """Raised by recv() once the connection is gone."""


class Connection(Protocol):
    async def send(self, frame: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


class Transport(Protocol):
    async def open(self, url: str) -> Connection: ...


class _WebSocketConnection:
    def __init__(self, ws):
        self._ws = ws

    async def send(self, frame: str) -> None:
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def recv(self) -> str:
        try:
            message = await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e
        if isinstance(message, bytes):
            return message.decode("utf-8")
        return message

    async def close(self) -> None:
        await self._ws.close()


class WebSocketTransport:
    """Opens real WebSocket connections, passing the JWT as ?token=."""

    def __init__(self, token: Optional[str] = None, open_timeout: float = 10.0):
        self.token = token
        self.open_timeout = open_timeout

    def _with_token(self, url: str) -> str:
        if not self.token:
            return url
        sep = "&" if "?" in url else "?"
        return f"{url}{sep}{urlencode({'token': self.token})}"

    async def open(self, url: str) -> Connection:
        ws = await websockets.connect(self._with_token(url), open_timeout=self.open_timeout)
        return _WebSocketConnection(ws)
