"""
Authorization gate and FastAPI dependencies for route protection.

`is_allowed` is the single predicate consulted before any privileged view or
action. It never caches: each call re-reads the member's role and grants, so
a revoke or demotion is observed on the very next attempt.
"""
from typing import Annotated, Collection, Optional, Union
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import Unauthorized
from app.features.members.dependencies import get_current_member
from app.features.members.directory import MemberDirectory
from app.features.members.models import Member, MemberRole
from app.features.permissions.store import GrantedPermissionStore
from app.utils import get_logger


log = get_logger(__name__)

RoleRequirement = Union[MemberRole, Collection[MemberRole], None]


def _allowed_roles(required_role: RoleRequirement) -> Optional[frozenset]:
    if required_role is None:
        return None
    if isinstance(required_role, MemberRole):
        return frozenset({required_role})
    return frozenset(MemberRole(role) for role in required_role)


async def is_allowed(
    db: AsyncSession,
    actor_id: str,
    required_role: RoleRequirement = None,
    required_permission_key: Optional[str] = None,
) -> bool:
    """
    Check whether an actor may enter a privileged view or perform an action.

    - super_admin: always allowed, capability checks are bypassed
    - a required permission key: allowed iff the actor holds an active grant
    - otherwise: allowed iff the actor's role is in the required set
      (no requirement at all admits any known member)

    Unknown actors are never allowed.
    """
    role = await MemberDirectory(db).find_role(actor_id)
    if role is None:
        log.debug(f"Unknown actor {actor_id} denied")
        return False

    if role == MemberRole.SUPER_ADMIN:
        return True

    if required_permission_key is not None:
        allowed = await GrantedPermissionStore(db).is_active(actor_id, required_permission_key)
        log.debug(f"Actor {actor_id} {'granted' if allowed else 'denied'} capability {required_permission_key}")
        return allowed

    roles = _allowed_roles(required_role)
    if roles is None:
        return True
    return role in roles


def require_role(*roles: MemberRole):
    """
    FastAPI dependency to require one of the given roles.

    Usage:
        @router.get("/audit")
        async def list_audit(
            member: Member = Depends(require_role(MemberRole.SUPER_ADMIN))
        ):
            ...
    """
    async def role_dependency(
        db: Annotated[AsyncSession, Depends(get_db)],
        current_member: Annotated[Member, Depends(get_current_member)],
    ) -> Member:
        if not await is_allowed(db, current_member.id, required_role=roles):
            raise Unauthorized(f"Requires role: {', '.join(role.value for role in roles)}")
        return current_member

    return role_dependency


def require_permission(permission_key: str):
    """
    FastAPI dependency to require an active capability grant.

    Usage:
        @router.post("/finance/entries")
        async def submit_entry(member: Member = Depends(require_permission("finance"))):
            ...
    """
    async def permission_dependency(
        db: Annotated[AsyncSession, Depends(get_db)],
        current_member: Annotated[Member, Depends(get_current_member)],
    ) -> Member:
        if not await is_allowed(db, current_member.id, required_permission_key=permission_key):
            raise Unauthorized(f"Permission denied: {permission_key}")
        return current_member

    return permission_dependency
