"""
Direct capability administration by super admins, outside the request workflow.
"""
from dataclasses import dataclass, field
from typing import List, Set
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import unit_of_work
from app.core.errors import NotFound
from app.features.audit.service import create_audit_log
from app.features.members.directory import MemberDirectory
from app.features.members.models import Member, MemberRole
from app.features.notifications.models import NotificationType
from app.features.notifications.service import NotificationService, granted_message, revoked_message
from app.features.permissions.models import GrantedPermission
from app.features.permissions.store import GrantedPermissionStore
from app.utils import get_logger


log = get_logger(__name__)

ADMINISTRATORS = frozenset({MemberRole.SUPER_ADMIN})


@dataclass
class AdminPermissions:
    member: Member
    permissions: Set[str] = field(default_factory=set)


class PermissionAdministration:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.directory = MemberDirectory(db)
        self.store = GrantedPermissionStore(db)
        self.notifications = NotificationService(db)

    async def grant(self, actor_id: str, permission_key: str, caller_id: str) -> GrantedPermission:
        """Grant a capability directly. Granting an active capability changes nothing."""
        await self.directory.authorize(caller_id, ADMINISTRATORS)
        if await self.directory.find_role(actor_id) is None:
            raise NotFound(f"Member {actor_id} not found")

        async with unit_of_work(self.db):
            was_active = await self.store.is_active(actor_id, permission_key)
            grant = await self.store.grant(actor_id, permission_key, granted_by=caller_id)
            if not was_active:
                await self.notifications.append(
                    actor_id,
                    NotificationType.PERMISSION_GRANTED,
                    "Permission Granted",
                    granted_message(permission_key),
                    related_permission=permission_key,
                )
                await create_audit_log(
                    self.db,
                    user_id=caller_id,
                    action="grant",
                    resource_type="granted_permission",
                    resource_id=grant.id,
                    details={"actor_id": actor_id, "permission_key": permission_key},
                )

        if not was_active:
            log.info("Member %s granted %s to %s", caller_id, permission_key, actor_id)
        return grant

    async def revoke(self, actor_id: str, permission_key: str, caller_id: str) -> bool:
        """Revoke a capability. Returns False when there was nothing active to revoke."""
        await self.directory.authorize(caller_id, ADMINISTRATORS)

        async with unit_of_work(self.db):
            revoked = await self.store.revoke(actor_id, permission_key)
            if revoked:
                await self.notifications.append(
                    actor_id,
                    NotificationType.PERMISSION_REVOKED,
                    "Permission Revoked",
                    revoked_message(permission_key),
                    related_permission=permission_key,
                )
                await create_audit_log(
                    self.db,
                    user_id=caller_id,
                    action="revoke",
                    resource_type="granted_permission",
                    details={"actor_id": actor_id, "permission_key": permission_key},
                )

        if revoked:
            log.info("Member %s revoked %s from %s", caller_id, permission_key, actor_id)
        return revoked

    async def list_admins_with_permissions(self, caller_id: str) -> List[AdminPermissions]:
        """Every admin that has signed in, with their active capabilities."""
        await self.directory.authorize(caller_id, ADMINISTRATORS)
        admins = [
            admin
            for admin in await self.directory.list_members(role=MemberRole.ADMIN, limit=1000)
            if admin.external_identity is not None
        ]
        active = await self.store.list_active_for(admin.id for admin in admins)
        return [AdminPermissions(member=admin, permissions=active[admin.id]) for admin in admins]
