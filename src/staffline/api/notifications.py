"""Notifications API — inbox and acknowledge-read.

Learn: Routes used by the client core:
- GET /notifications → inbox (initial load, reload after reconnect)
- PUT /notifications/{id}/read → single acknowledge
- PUT /notifications/batch-read → batch acknowledge (auto-mark-read)
- PUT /notifications/mark-by-resource → everything about one room/task
- POST /notifications → authenticated producers (HR flows, chat, calendar) notify a user

batch-read is declared before /{id}/read so the literal path wins.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from staffline.auth.dependencies import CurrentIdentity, get_current_user
from staffline.db.engine import get_db
from staffline.schemas.notification import (
    BatchReadRequest,
    MarkByResourceRequest,
    NotificationCategory,
    NotificationCreate,
    NotificationRead,
    ReadResult,
)
from staffline.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
)

router = APIRouter()


def _get_service(db: AsyncSession = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


@router.get("/notifications", response_model=list[NotificationRead])
async def list_notifications(
    unread: bool = Query(False, description="Only unread notifications"),
    category: Optional[NotificationCategory] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """The current user's notifications, newest first."""
    return await svc.list_for_user(
        identity.user_id, unread_only=unread, category=category, limit=limit
    )


@router.post("/notifications", response_model=NotificationRead, status_code=201)
async def create_notification(
    body: NotificationCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """Store a notification and push it to the recipient.

    Any signed-in producer may notify any user.
    """
    return await svc.create(body)


@router.put("/notifications/batch-read", response_model=ReadResult)
async def batch_read(
    body: BatchReadRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """Mark several notifications read. Unknown ids are ignored."""
    updated = await svc.mark_read_batch(identity.user_id, body.notification_ids)
    return ReadResult(updated=updated)


@router.put("/notifications/mark-by-resource", response_model=ReadResult)
async def mark_by_resource(
    body: MarkByResourceRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """Mark every notification about one resource read."""
    updated = await svc.mark_by_resource(identity.user_id, body.resource_id, body.category)
    return ReadResult(updated=updated)


@router.put("/notifications/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: str,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """Mark one notification read."""
    try:
        return await svc.mark_read(identity.user_id, notification_id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
