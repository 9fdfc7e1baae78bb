"""
Permission governance API routes.

Provides endpoints for the capability catalog, permission requests and their
review, direct grants and revokes, and authorization checks.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.members.dependencies import get_current_member
from app.features.members.directory import MemberDirectory
from app.features.members.models import Member, MemberRole
from app.features.permissions.administration import PermissionAdministration
from app.features.permissions.catalog import list_capabilities, set_capability_enabled
from app.features.permissions.dependencies import is_allowed, require_role
from app.features.permissions.schemas import (
    CapabilityResponse,
    CapabilityToggle,
    PermissionRequestCreate,
    PermissionRequestReview,
    PermissionRequestResponse,
    PendingRequestResponse,
    GrantCreate,
    GrantResponse,
    RevokeResponse,
    MyPermissionsResponse,
    AdminWithPermissions,
    PermissionCheckResponse,
)
from app.features.permissions.store import GrantedPermissionStore
from app.features.permissions.workflow import PermissionRequestWorkflow


router = APIRouter()


@router.get("/catalog", response_model=List[CapabilityResponse])
async def get_catalog(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """List the capabilities that can be requested or granted. Disabled ones are shown to super admins only."""
    return await list_capabilities(db, enabled_only=current_member.role != MemberRole.SUPER_ADMIN)


@router.patch("/catalog/{permission_key}", response_model=CapabilityResponse)
async def toggle_capability(
    permission_key: str,
    payload: CapabilityToggle,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Enable or disable a catalog capability (super admins only)."""
    return await set_capability_enabled(db, permission_key, payload.is_enabled, current_member.id)


# ============================================================================
# Permission Request Routes
# ============================================================================

@router.post("/requests", response_model=PermissionRequestResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.SUBMIT_RATE_LIMIT)
async def submit_request(
    request: Request,
    payload: PermissionRequestCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Ask a super admin for a capability (admins only)."""
    return await PermissionRequestWorkflow(db).submit(current_member.id, payload.permission_key, payload.reason)


@router.get("/requests/pending", response_model=List[PendingRequestResponse])
async def list_pending_requests(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Pending requests, newest first (super admins only)."""
    requests = await PermissionRequestWorkflow(db).list_pending(current_member.id)
    members = await MemberDirectory(db).get_many(req.actor_id for req in requests)
    names = {member.id: member.full_name for member in members}
    return [
        PendingRequestResponse(
            **PermissionRequestResponse.model_validate(req).model_dump(),
            actor_name=names.get(req.actor_id, "Unknown"),
        )
        for req in requests
    ]


@router.get("/requests/mine", response_model=List[PermissionRequestResponse])
async def list_my_requests(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Requests created by the current member, newest first."""
    return await PermissionRequestWorkflow(db).list_mine(current_member.id)


@router.post("/requests/{request_id}/approve", response_model=PermissionRequestResponse)
async def approve_request(
    request_id: str,
    review: PermissionRequestReview,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Approve a pending request and grant the capability (super admins only)."""
    return await PermissionRequestWorkflow(db).approve(request_id, current_member.id, review.note)


@router.post("/requests/{request_id}/reject", response_model=PermissionRequestResponse)
async def reject_request(
    request_id: str,
    review: PermissionRequestReview,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Reject a pending request (super admins only)."""
    return await PermissionRequestWorkflow(db).reject(request_id, current_member.id, review.note)


# ============================================================================
# Grant Routes
# ============================================================================

@router.post("/grants", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def grant_permission(
    payload: GrantCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Grant a capability directly, without a request (super admins only)."""
    return await PermissionAdministration(db).grant(payload.actor_id, payload.permission_key, current_member.id)


@router.delete("/grants/{actor_id}/{permission_key}", response_model=RevokeResponse)
async def revoke_permission(
    actor_id: str,
    permission_key: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Revoke a capability (super admins only). Revoking an inactive grant is a no-op."""
    revoked = await PermissionAdministration(db).revoke(actor_id, permission_key, current_member.id)
    return RevokeResponse(revoked=revoked)


@router.get("/grants/me", response_model=MyPermissionsResponse)
async def get_my_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
):
    """Capabilities of the current member. Super admins hold every catalog capability."""
    role = await MemberDirectory(db).get_role(current_member.id)
    if role == MemberRole.SUPER_ADMIN:
        keys = {capability.key for capability in await list_capabilities(db)}
    else:
        keys = await GrantedPermissionStore(db).list_active_by_actor(current_member.id)
    return MyPermissionsResponse(role=role, permissions=sorted(keys))


@router.get("/admins", response_model=List[AdminWithPermissions])
async def list_admins_with_permissions(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(require_role(MemberRole.SUPER_ADMIN))],
):
    """Admins and their active capabilities (super admins only)."""
    admins = await PermissionAdministration(db).list_admins_with_permissions(current_member.id)
    return [
        AdminWithPermissions(
            id=entry.member.id,
            full_name=entry.member.full_name,
            role=entry.member.role,
            permissions=sorted(entry.permissions),
        )
        for entry in admins
    ]


@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_member: Annotated[Member, Depends(get_current_member)],
    required_role: Annotated[Optional[List[MemberRole]], Query()] = None,
    permission_key: Optional[str] = None,
):
    """Evaluate the authorization gate for the current member."""
    allowed = await is_allowed(
        db,
        current_member.id,
        required_role=required_role or None,
        required_permission_key=permission_key,
    )
    return PermissionCheckResponse(allowed=allowed, required_role=required_role, permission_key=permission_key)
