"""Calls API — call logs for history and the client state machine.

Learn: Routes:
- POST /calls/start → open an initiated log, ring the receiver
- PATCH /calls/{id}/status → move a log along (409 on a disallowed move)
- POST /calls/logs → terminal record from a client (idempotent)
- GET /calls/history → the caller's call history
- GET /calls/room/{room_id} → the current user's calls from a chat room
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from staffline.auth.dependencies import CurrentIdentity, get_current_user
from staffline.db.engine import get_db
from staffline.schemas.call import CallLogCreate, CallLogRead, CallStart, CallStatusUpdate
from staffline.services.call_service import (
    CallLogImmutableError,
    CallLogNotFoundError,
    CallService,
    InvalidTransitionError,
)
from staffline.services.notification_service import NotificationService

router = APIRouter()


def _get_service(db: AsyncSession = Depends(get_db)) -> CallService:
    return CallService(db=db, notifications=NotificationService(db))


@router.post("/calls/start", response_model=CallLogRead, status_code=201)
async def start_call(
    body: CallStart,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CallService = Depends(_get_service),
):
    """Open a call log and notify the receiver."""
    if body.receiver_id == identity.user_id:
        raise HTTPException(status_code=422, detail="Cannot call yourself")
    return await svc.start_call(identity.user_id, body)


@router.patch("/calls/{call_id}/status", response_model=CallLogRead)
async def update_call_status(
    call_id: str,
    body: CallStatusUpdate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CallService = Depends(_get_service),
):
    """Move a call log to a new status."""
    try:
        return await svc.update_status(
            call_id, identity.user_id, body.status, duration=body.duration
        )
    except CallLogNotFoundError:
        raise HTTPException(status_code=404, detail="Call log not found")
    except (CallLogImmutableError, InvalidTransitionError) as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/calls/logs", response_model=CallLogRead, status_code=201)
async def record_call(
    body: CallLogCreate,
    response: Response,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CallService = Depends(_get_service),
):
    """Record a terminal call. A repeat for the same id returns the stored log."""
    try:
        call, created = await svc.record(identity.user_id, body)
    except CallLogNotFoundError:
        raise HTTPException(status_code=404, detail="Call log not found")
    if not created:
        response.status_code = 200
    return call


@router.get("/calls/history", response_model=list[CallLogRead])
async def call_history(
    limit: int = Query(100, ge=1, le=500),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CallService = Depends(_get_service),
):
    """Calls the current user made or received."""
    return await svc.history(identity.user_id, limit=limit)


@router.get("/calls/room/{room_id}", response_model=list[CallLogRead])
async def room_calls(
    room_id: str,
    limit: int = Query(100, ge=1, le=500),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: CallService = Depends(_get_service),
):
    """Calls from one chat room that the current user took part in."""
    return await svc.room_history(room_id, identity.user_id, limit=limit)
