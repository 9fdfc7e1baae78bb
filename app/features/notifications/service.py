"""
Notification service.

`append` only adds the row to the caller's transaction: the governance
services call it inside their own unit of work so a notification is never
visible for a change that was rolled back. Read-state mutations commit on
their own.
"""
from typing import Iterable, List, Optional
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import unit_of_work
from app.core.errors import NotFound
from app.features.notifications.models import Notification, NotificationType
from app.utils import get_logger


log = get_logger(__name__)

DEFAULT_LIST_LIMIT = 50


def approved_message(permission_key: str, note: Optional[str]) -> str:
    message = f'Your request for "{permission_key}" permission has been approved.'
    return f"{message} Note: {note}" if note else message


def rejected_message(permission_key: str, note: Optional[str]) -> str:
    message = f'Your request for "{permission_key}" permission has been rejected.'
    return f"{message} Reason: {note}" if note else message


def granted_message(permission_key: str) -> str:
    return f'You have been granted the "{permission_key}" permission by a Super Admin.'


def revoked_message(permission_key: str) -> str:
    return f'Your "{permission_key}" permission has been revoked by a Super Admin.'


def honourable_message(names: Iterable[str]) -> str:
    return f"The following members were promoted to honourable: {', '.join(names)}."


class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        actor_id: str,
        type: NotificationType,
        title: str,
        message: str,
        related_permission: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            actor_id=actor_id,
            type=type,
            title=title,
            message=message,
            related_permission=related_permission,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.flush()
        log.debug("Queued %s notification for %s", type.value, actor_id)
        return notification

    async def list_for_actor(self, actor_id: str, limit: int = DEFAULT_LIST_LIMIT) -> List[Notification]:
        result = await self.db.execute(
            select(Notification)
            .where(Notification.actor_id == actor_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def mark_read(self, notification_id: str, actor_id: Optional[str] = None) -> Notification:
        """
        Flip a notification to read.

        When `actor_id` is given, notifications owned by someone else are
        reported as missing rather than forbidden.
        """
        async with unit_of_work(self.db):
            notification = await self.db.get(Notification, notification_id)
            if notification is None or (actor_id is not None and notification.actor_id != actor_id):
                raise NotFound("Notification not found")
            notification.is_read = True
        return notification

    async def mark_all_read(self, actor_id: str) -> int:
        async with unit_of_work(self.db):
            result = await self.db.execute(
                update(Notification)
                .where(Notification.actor_id == actor_id, Notification.is_read.is_(False))
                .values(is_read=True)
            )
        log.info("Marked %s notifications read for %s", result.rowcount, actor_id)
        return result.rowcount or 0

    async def unread_count(self, actor_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.actor_id == actor_id, Notification.is_read.is_(False))
        )
        return result.scalar_one()
