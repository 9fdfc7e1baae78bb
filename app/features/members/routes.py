"""
Member feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.members.dependencies import get_current_member
from app.features.members.directory import MemberDirectory
from app.features.members.models import Member, MemberRole
from app.features.members.roles import RoleTransitionService
from app.features.members.schemas import (
    MemberResponse,
    MemberPublic,
    SetRolesRequest,
    DesignationUpdate,
    DeleteMembersRequest,
    DeleteMembersResponse,
    SignupSettingsResponse,
    SignupSettingsUpdate,
)
from app.features.permissions.dependencies import require_role


router = APIRouter(tags=["members"])


@router.get("/me", response_model=MemberResponse)
async def get_current_member_profile(
    member: Annotated[Member, Depends(get_current_member)]
):
    """Get current authenticated member's profile."""
    return member


@router.get("/", response_model=list[MemberPublic])
async def list_members(
    db: Annotated[AsyncSession, Depends(get_db)],
    _admin: Annotated[Member, Depends(require_role(MemberRole.ADMIN, MemberRole.SUPER_ADMIN))],
    role: MemberRole | None = None,
    skip: int = 0,
    limit: int = 100
):
    """List members, optionally by role (admins only)."""
    return await MemberDirectory(db).list_members(role=role, skip=skip, limit=limit)


@router.get("/signup", response_model=SignupSettingsResponse)
async def get_signup_settings(
    db: Annotated[AsyncSession, Depends(get_db)],
    _admin: Annotated[Member, Depends(require_role(MemberRole.SUPER_ADMIN))],
):
    """Whether new identities may sign up (super admins only)."""
    return SignupSettingsResponse(allow_signup=await MemberDirectory(db).signups_open())


@router.put("/signup", response_model=SignupSettingsResponse)
async def update_signup_settings(
    payload: SignupSettingsUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)],
):
    """Open or close self-service signup (super admins only)."""
    allowed = await MemberDirectory(db).set_signups_open(payload.allow_signup, member.id)
    return SignupSettingsResponse(allow_signup=allowed)


@router.post("/roles", response_model=list[MemberPublic])
async def set_roles(
    payload: SetRolesRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)]
):
    """Apply one role to a batch of members, all or nothing (super admins only)."""
    return await RoleTransitionService(db).set_roles(payload.member_ids, payload.new_role, member.id)


@router.patch("/{member_id}/designation", response_model=MemberPublic)
async def update_designation(
    member_id: str,
    payload: DesignationUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)]
):
    """Set a member's organizational title (admins only)."""
    return await MemberDirectory(db).update_designation(member_id, payload.designation, member.id)


@router.post("/delete", response_model=DeleteMembersResponse)
async def delete_members(
    payload: DeleteMembersRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(get_current_member)]
):
    """Delete members and everything that references them (admins only)."""
    deleted = await MemberDirectory(db).delete_members(payload.member_ids, member.id)
    return DeleteMembersResponse(deleted=deleted)
