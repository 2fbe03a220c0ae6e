"""WebSocket endpoint — the server end of the client event bus.

Learn: Each browser tab keeps one connection to /ws?token=JWT. The handler:
1. Authenticates via JWT query param (required outside development)
2. Waits for the {"type": "subscribe", "data": {"user_id": ...}} handshake
   — clients resend it after every reconnect so routing resumes
3. Forwards frames addressed to that user (Redis listener, or the hub)
4. Relays call-signaling frames to the peer named in data.to, stamping
   data.from_user with the subscribed identity
5. Rebroadcasts aux_update as aux_status_update to everyone

Control replies: subscribe → subscribed (sent once the Redis subscription is
live, so an acked socket is routable), ping → pong.
"""

import asyncio
import json
from typing import Any, Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.asyncio.client import PubSub
from starlette.websockets import WebSocketState

from staffline.config import settings
from staffline.events import types as ev
from staffline.realtime import pubsub
from staffline.realtime.hub import hub
from staffline.schemas.events import EventParseError, make_event

logger = structlog.get_logger()
router = APIRouter()


async def _send_control(websocket: WebSocket, frame_type: str, data: dict[str, Any]) -> None:
    await websocket.send_text(json.dumps({"type": frame_type, "data": data}))


async def _open_redis_subscription(user_id: str) -> PubSub:
    """Subscribe to this user's channel and the broadcast channel."""
    ps = pubsub.get_redis().pubsub()
    await ps.subscribe(pubsub.user_channel(user_id), pubsub.BROADCAST_CHANNEL)
    return ps


async def _redis_listener(websocket: WebSocket, ps: PubSub) -> None:
    """Forward this user's Redis frames (and broadcasts) to the socket."""
    async for message in ps.listen():
        if message["type"] == "message":
            await websocket.send_text(message["data"])


async def _close_redis_subscription(listener: asyncio.Task, ps: PubSub, log) -> None:
    listener.cancel()
    try:
        await listener
    except asyncio.CancelledError:
        pass
    except Exception as e:
        log.warning("ws.listener_failed", error=str(e))
    await ps.unsubscribe()
    await ps.aclose()


async def _relay_signal(sender_id: str, frame_type: str, data: dict[str, Any]) -> None:
    """Relay one call-signaling frame to its recipient."""
    recipient = data.get("to")
    if not recipient:
        logger.warning("ws.signal_missing_recipient", frame_type=frame_type, sender=sender_id)
        return
    try:
        event = make_event(frame_type, {**data, "from_user": sender_id})
    except EventParseError as e:
        logger.warning("ws.signal_invalid", frame_type=frame_type, error=str(e))
        return
    await pubsub.publish_to_user(str(recipient), event)


async def _broadcast_aux(sender_id: str, data: dict[str, Any]) -> None:
    payload = {"user_id": sender_id, **data}
    try:
        event = make_event(ev.AUX_STATUS_UPDATE, payload)
    except EventParseError as e:
        logger.warning("ws.aux_invalid", error=str(e))
        return
    await pubsub.broadcast(event)


@router.websocket("/ws")
async def event_channel(websocket: WebSocket):
    """WebSocket endpoint for the per-user event channel.

    Authentication: JWT token as ?token= query param. In development mode,
    unauthenticated connections may name any user in the subscribe frame;
    with a token the token's subject always wins.
    """
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")
    token_user: Optional[str] = None

    if not token and settings.environment != "development":
        await websocket.close(code=4001, reason="Authentication required")
        return

    if token:
        from staffline.auth.jwt import TokenError, verify_token

        try:
            token_user = str(verify_token(token)["sub"])
        except TokenError:
            await websocket.close(code=4001, reason="Invalid or expired token")
            return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()

    user_id: Optional[str] = None
    listener: Optional[asyncio.Task] = None
    subscription: Optional[PubSub] = None
    log = logger

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                log.warning("ws.bad_frame")
                continue
            if not isinstance(msg, dict):
                continue

            frame_type = msg.get("type")
            data = msg.get("data") or {}
            if not isinstance(data, dict):
                log.warning("ws.bad_payload", frame_type=frame_type)
                continue

            if frame_type == ev.PING:
                await _send_control(websocket, ev.PONG, {})

            elif frame_type == ev.SUBSCRIBE:
                requested = token_user or str(data.get("user_id") or "")
                if not requested:
                    log.warning("ws.subscribe_without_user")
                    continue
                if user_id is not None and user_id != requested:
                    hub.unregister(user_id, websocket)
                    if listener:
                        await _close_redis_subscription(listener, subscription, log)
                        listener = subscription = None
                if user_id != requested:
                    user_id = requested
                    log = logger.bind(user_id=user_id)
                    hub.register(user_id, websocket)
                    if pubsub.redis_enabled():
                        # Acked only once Redis routes this user's frames
                        subscription = await _open_redis_subscription(user_id)
                        listener = asyncio.create_task(_redis_listener(websocket, subscription))
                await _send_control(websocket, ev.SUBSCRIBED, {"user_id": user_id})

            elif frame_type in ev.CALL_SIGNALS:
                if user_id is None:
                    log.warning("ws.signal_before_subscribe", frame_type=frame_type)
                    continue
                await _relay_signal(user_id, frame_type, data)

            elif frame_type == ev.AUX_UPDATE:
                if user_id is None:
                    log.warning("ws.aux_before_subscribe")
                    continue
                await _broadcast_aux(user_id, data)

            else:
                log.debug("ws.unhandled_frame", frame_type=frame_type)

    except WebSocketDisconnect:
        pass
    finally:
        if listener:
            await _close_redis_subscription(listener, subscription, log)
        if user_id is not None:
            hub.unregister(user_id, websocket)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
