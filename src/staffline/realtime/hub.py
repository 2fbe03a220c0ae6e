"""In-process connection registry.

Learn: A user may have several tabs open, so each user id maps to a set of
sockets. The hub is always kept up to date (it answers "who is online?"),
but it only *delivers* frames when Redis is not configured — with Redis,
every socket has its own pub/sub listener and the hub stays out of the way.
"""

from collections import defaultdict

import structlog
from starlette.websockets import WebSocket

logger = structlog.get_logger()


class ConnectionHub:
    """user_id → set of live WebSocket connections."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    def register(self, user_id: str, websocket: WebSocket) -> None:
        self._connections[user_id].add(websocket)
        logger.info(
            "hub.registered",
            user_id=user_id,
            connections=len(self._connections[user_id]),
        )

    def unregister(self, user_id: str, websocket: WebSocket) -> None:
        sockets = self._connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._connections[user_id]
        logger.info(
            "hub.unregistered",
            user_id=user_id,
            connections=len(sockets),
        )

    def connection_count(self, user_id: str | None = None) -> int:
        if user_id is not None:
            return len(self._connections.get(user_id, ()))
        return sum(len(s) for s in self._connections.values())

    def online_users(self) -> list[str]:
        return sorted(self._connections)

    async def send_to_user(self, user_id: str, frame: str) -> int:
        """Send a frame to every socket of one user. Returns deliveries."""
        delivered = 0
        for websocket in list(self._connections.get(user_id, ())):
            if await self._send(websocket, frame, user_id):
                delivered += 1
        return delivered

    async def broadcast(self, frame: str) -> int:
        """Send a frame to every connected socket."""
        delivered = 0
        for user_id, sockets in list(self._connections.items()):
            for websocket in list(sockets):
                if await self._send(websocket, frame, user_id):
                    delivered += 1
        return delivered

    async def _send(self, websocket: WebSocket, frame: str, user_id: str) -> bool:
        try:
            await websocket.send_text(frame)
            return True
        except Exception as e:
            # Dead socket: drop it so later sends don't keep failing
            logger.warning("hub.send_failed", user_id=user_id, error=str(e))
            self.unregister(user_id, websocket)
            return False

    def clear(self) -> None:
        self._connections.clear()


# Singleton: one registry per server process
hub = ConnectionHub()
