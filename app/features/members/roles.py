"""
Role transition service.

Every role change is a batch: all targets receive the same new role, or
none do. The checks below run in a fixed order before anything is written,
and the whole check-and-apply sequence holds the super admin count lock, so
concurrent batches cannot each pass the cap against a stale count.

    1. Unauthorized            caller must be a super admin
    2. SuperAdminCapExceeded   never more than SUPER_ADMIN_LIMIT super admins
    3. LastSuperAdminProtected never zero super admins
    4. ImmutableRole           honourable is terminal
    5. InvalidPromotionPath    only admins may become honourable
"""
from typing import Collection, List
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import unit_of_work
from app.core.database.locks import invariant_lock, SUPER_ADMIN_COUNT_LOCK
from app.core.errors import (
    NotFound,
    SuperAdminCapExceeded,
    LastSuperAdminProtected,
    ImmutableRole,
    InvalidPromotionPath,
)
from app.features.audit.service import create_audit_log
from app.features.members.directory import MemberDirectory
from app.features.members.models import Member, MemberRole, SUPER_ADMIN_LIMIT
from app.features.notifications.models import NotificationType
from app.features.notifications.service import NotificationService, honourable_message
from app.utils import get_logger


log = get_logger(__name__)


class RoleTransitionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.directory = MemberDirectory(db)
        self.notifications = NotificationService(db)

    async def set_roles(self, target_ids: Collection[str], new_role: MemberRole, caller_id: str) -> List[Member]:
        new_role = MemberRole(new_role)
        ids = list(dict.fromkeys(target_ids))

        async with invariant_lock(self.db, SUPER_ADMIN_COUNT_LOCK):
            async with unit_of_work(self.db):
                await self.directory.authorize(caller_id, {MemberRole.SUPER_ADMIN})
                if not ids:
                    return []

                targets = await self.directory.get_many(ids)
                found = {target.id for target in targets}
                missing = [member_id for member_id in ids if member_id not in found]
                if missing:
                    raise NotFound(f"Members not found: {', '.join(missing)}")

                await self._check(targets, new_role, caller_id)

                for target in targets:
                    await self.directory.set_role(target.id, new_role)

                if new_role == MemberRole.HONOURABLE:
                    await self._announce_honourables(targets)

                await create_audit_log(
                    self.db,
                    user_id=caller_id,
                    action="set_roles",
                    resource_type="member",
                    details={"member_ids": ids, "new_role": new_role.value},
                )

        log.info("Member %s set role %s on %s", caller_id, new_role.value, ids)
        return targets

    async def _check(self, targets: List[Member], new_role: MemberRole, caller_id: str) -> None:
        super_admins = await self.directory.count_super_admins()

        if new_role == MemberRole.SUPER_ADMIN:
            to_promote = sum(1 for t in targets if t.role != MemberRole.SUPER_ADMIN)
            if super_admins + to_promote > SUPER_ADMIN_LIMIT:
                log.info("Rejected promotion: %s super admins + %s > %s", super_admins, to_promote, SUPER_ADMIN_LIMIT)
                raise SuperAdminCapExceeded(f"Cannot have more than {SUPER_ADMIN_LIMIT} super_admins")
        else:
            if caller_id in {t.id for t in targets} and super_admins <= 1:
                raise LastSuperAdminProtected("Cannot change role: would remove the last super_admin")
            demoted = sum(1 for t in targets if t.role == MemberRole.SUPER_ADMIN)
            if demoted and super_admins - demoted < 1:
                raise LastSuperAdminProtected("Cannot change role: would remove the last super_admin")

        if new_role != MemberRole.HONOURABLE:
            if any(t.role == MemberRole.HONOURABLE for t in targets):
                raise ImmutableRole("Honourable members cannot change role")
        elif any(t.role != MemberRole.ADMIN for t in targets):
            raise InvalidPromotionPath("Only admins can be promoted to honourable")

    async def _announce_honourables(self, promoted: List[Member]) -> None:
        message = honourable_message(member.full_name for member in promoted)
        for super_admin in await self.directory.list_members(role=MemberRole.SUPER_ADMIN):
            await self.notifications.append(
                super_admin.id,
                NotificationType.INFO,
                "Members Promoted to Honourable",
                message,
            )
