"""
Notification routes for the current member.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.members.dependencies import get_current_member
from app.features.members.models import Member
from app.features.notifications.schemas import NotificationResponse, UnreadCountResponse, MarkAllReadResponse
from app.features.notifications.service import NotificationService, DEFAULT_LIST_LIMIT


router = APIRouter(tags=["notifications"])


@router.get("/", response_model=list[NotificationResponse])
async def list_notifications(
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)],
    limit: int = DEFAULT_LIST_LIMIT
):
    """Latest notifications, newest first."""
    return await NotificationService(db).list_for_actor(member.id, limit=limit)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)]
):
    return UnreadCountResponse(unread=await NotificationService(db).unread_count(member.id))


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)]
):
    return MarkAllReadResponse(updated=await NotificationService(db).mark_all_read(member.id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)]
):
    return await NotificationService(db).mark_read(notification_id, actor_id=member.id)
