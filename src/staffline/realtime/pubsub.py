"""Redis pub/sub — event delivery between services and WebSockets.

Learn: Redis pub/sub is fire-and-forget. If the user has no tab open, the
frame is lost. That's fine: notifications are also stored in PostgreSQL,
and the client reloads its inbox over REST on (re)connect.

Channel naming:
- staffline:user:{user_id}   frames addressed to one user (all their tabs)
- staffline:broadcast        presence updates everyone sees

Without Redis (STAFFLINE_REDIS_URL="" or Redis down at startup) delivery
falls back to the in-process hub, which only reaches sockets connected to
this server process.
"""

from typing import Optional

import redis.asyncio as aioredis
import structlog
from pydantic import BaseModel

from staffline.config import settings
from staffline.realtime.hub import hub
from staffline.schemas.events import dump_event

logger = structlog.get_logger()

BROADCAST_CHANNEL = "staffline:broadcast"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


def user_channel(user_id: str) -> str:
    return f"staffline:user:{user_id}"


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection before exposing it
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def redis_enabled() -> bool:
    return _redis is not None


async def publish_to_user(user_id: str, event: BaseModel) -> None:
    """Deliver an event to every connection of one user.

    Learn: Services call this after their database commit, so a frame is
    only pushed for state that already exists.
    """
    frame = dump_event(event)
    if _redis is None:
        delivered = await hub.send_to_user(user_id, frame)
        logger.debug(
            "pubsub.local_delivery",
            user_id=user_id,
            event_type=getattr(event, "type", None),
            delivered=delivered,
        )
        return
    await _redis.publish(user_channel(user_id), frame)


async def broadcast(event: BaseModel) -> None:
    """Deliver an event to every connected user."""
    frame = dump_event(event)
    if _redis is None:
        await hub.broadcast(frame)
        return
    await _redis.publish(BROADCAST_CHANNEL, frame)
