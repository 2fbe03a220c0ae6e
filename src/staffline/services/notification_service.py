"""Notification service — create, list, acknowledge.

Learn: Creation is the only path that pushes a frame: persist, commit,
then publish new_notification to the recipient. Acknowledgement is the
only mutation, and it is one-way — marking an already-read notification
read again is a no-op, which is what makes client retries safe.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from staffline.db.models import Notification
from staffline.realtime.pubsub import publish_to_user
from staffline.schemas.events import NewNotificationEvent
from staffline.schemas.notification import NotificationCreate, NotificationRead

logger = structlog.get_logger()


class NotificationNotFoundError(Exception):
    """Raised when a notification doesn't exist or isn't the caller's."""


def _parse_ids(ids: list[str]) -> list[uuid.UUID]:
    parsed = []
    for raw in ids:
        try:
            parsed.append(uuid.UUID(str(raw)))
        except ValueError:
            # Unknown ids are simply not found; batch-read stays idempotent
            continue
    return parsed


class NotificationService:
    """Notification lifecycle for one request's database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Create ───────────────────────────────────────────

    async def create(self, body: NotificationCreate, *, push: bool = True) -> Notification:
        """Persist a notification and push it to the recipient's tabs."""
        notification = Notification(
            user_id=body.user_id,
            title=body.title,
            message=body.message,
            category=body.category,
            type=body.type,
            meta=dict(body.metadata),
            is_read=False,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)

        if push:
            event = NewNotificationEvent(data=NotificationRead.model_validate(notification))
            try:
                await publish_to_user(notification.user_id, event)
            except Exception as e:
                # Stored anyway, the client picks it up on its next inbox load
                logger.warning(
                    "notification.push_failed",
                    notification_id=str(notification.id),
                    error=str(e),
                )
        return notification

    # ─── Read ─────────────────────────────────────────────

    async def list_for_user(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        category: Optional[str] = None,
        limit: int = 100,
    ) -> list[Notification]:
        """A user's notifications, newest first."""
        q = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        if unread_only:
            q = q.where(Notification.is_read.is_(False))
        if category:
            q = q.where(Notification.category == category)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    # ─── Acknowledge ──────────────────────────────────────

    async def mark_read(self, user_id: str, notification_id: str) -> Notification:
        """Mark one notification read. Idempotent."""
        ids = _parse_ids([notification_id])
        notification = await self.db.get(Notification, ids[0]) if ids else None
        if notification is None or notification.user_id != user_id:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        if not notification.is_read:
            notification.is_read = True
            await self.db.commit()
            await self.db.refresh(notification)
        return notification

    async def mark_read_batch(self, user_id: str, notification_ids: list[str]) -> int:
        """Mark several notifications read. Returns how many changed."""
        ids = _parse_ids(notification_ids)
        if not ids:
            return 0
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.id.in_(ids),
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def mark_by_resource(self, user_id: str, resource_id: str, category: str) -> int:
        """Mark every unread notification about one resource read."""
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.category == category,
                Notification.is_read.is_(False),
                Notification.meta["resource_id"].as_string() == resource_id,
            )
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()
        return result.rowcount or 0
