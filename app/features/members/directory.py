"""
Member directory: the identity and role records every other component reads.

Role writes go through `set_role`, which is reserved for the role transition
service; clients never call it directly.
"""
from typing import Collection, Iterable, List, Optional
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import unit_of_work
from app.core.database.locks import invariant_lock, SUPER_ADMIN_COUNT_LOCK
from app.core.errors import NotFound, Unauthorized, LastSuperAdminProtected
from app.features.audit.service import create_audit_log
from app.features.members.models import Member, MemberRole, SignupSettings, ADMIN_ROLES
from app.features.notifications.models import Notification
from app.features.permissions.models import PermissionRequest, GrantedPermission
from app.utils import get_logger


log = get_logger(__name__)


class MemberDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, member_id: str) -> Member:
        member = await self.db.get(Member, member_id, populate_existing=True)
        if member is None:
            raise NotFound(f"Member {member_id} not found")
        return member

    async def get_role(self, member_id: str) -> MemberRole:
        result = await self.db.execute(select(Member.role).where(Member.id == member_id))
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFound(f"Member {member_id} not found")
        return role

    async def find_role(self, member_id: str) -> Optional[MemberRole]:
        """Like get_role, but None for unknown members."""
        result = await self.db.execute(select(Member.role).where(Member.id == member_id))
        return result.scalar_one_or_none()

    async def get_by_external_identity(self, external_identity: str) -> Optional[Member]:
        result = await self.db.execute(
            select(Member).where(Member.external_identity == external_identity)
        )
        return result.scalar_one_or_none()

    async def get_many(self, member_ids: Iterable[str]) -> List[Member]:
        ids = list(dict.fromkeys(member_ids))
        if not ids:
            return []
        result = await self.db.execute(
            select(Member).where(Member.id.in_(ids)).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count_super_admins(self) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Member).where(Member.role == MemberRole.SUPER_ADMIN)
        )
        return result.scalar_one()

    async def list_members(
        self,
        role: Optional[MemberRole] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Member]:
        stmt = select(Member)
        if role is not None:
            stmt = stmt.where(Member.role == role)
        stmt = stmt.order_by(Member.full_name, Member.id).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def authorize(self, caller_id: str, allowed: Collection[MemberRole]) -> Member:
        """
        Return the caller if their current role is in `allowed`.

        Unknown callers get Unauthorized too, so an unprivileged caller
        learns nothing about which ids exist.
        """
        caller = await self.db.get(Member, caller_id, populate_existing=True)
        if caller is None or caller.role not in allowed:
            raise Unauthorized("You are not allowed to perform this operation")
        return caller

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set_role(self, member_id: str, new_role: MemberRole) -> Member:
        """Apply a role inside the caller's transaction. No invariant checks here."""
        member = await self.get(member_id)
        member.role = new_role
        await self.db.flush()
        return member

    async def signups_open(self) -> bool:
        settings = await self.db.get(SignupSettings, SignupSettings.SINGLETON_ID, populate_existing=True)
        return settings is not None and settings.allow_signup

    async def set_signups_open(self, enabled: bool, caller_id: str) -> bool:
        """Open or close self-service signup (super admins only)."""
        await self.authorize(caller_id, {MemberRole.SUPER_ADMIN})
        async with unit_of_work(self.db):
            settings = await self.db.get(SignupSettings, SignupSettings.SINGLETON_ID, populate_existing=True)
            if settings is None:
                settings = SignupSettings(id=SignupSettings.SINGLETON_ID)
                self.db.add(settings)
            settings.allow_signup = enabled
            settings.updated_by = caller_id
            await create_audit_log(
                self.db,
                user_id=caller_id,
                action="enable_signup" if enabled else "disable_signup",
                resource_type="signup_settings",
                details={"allow_signup": enabled},
            )
        log.info("Member %s set allow_signup=%s", caller_id, enabled)
        return enabled

    async def create_member(
        self,
        full_name: str,
        external_identity: Optional[str] = None,
        email: Optional[str] = None,
        designation: Optional[str] = None,
    ) -> Member:
        """
        Sign a new member up.

        The very first member of an empty directory becomes the founding
        super admin, which is how the super admin count first reaches one.
        Everyone after that needs signups to be open. Signing up an identity
        that already has a member returns that member.

        Raises:
            Unauthorized: signups are closed and the directory is not empty
        """
        async with invariant_lock(self.db, SUPER_ADMIN_COUNT_LOCK):
            async with unit_of_work(self.db):
                if external_identity is not None:
                    member = await self.get_by_external_identity(external_identity)
                    if member is not None:
                        return member

                existing = await self.db.execute(select(func.count()).select_from(Member))
                bootstrap = existing.scalar_one() == 0
                if not bootstrap and not await self.signups_open():
                    raise Unauthorized("Sign ups are disabled")

                member = Member(
                    full_name=full_name,
                    external_identity=external_identity,
                    email=email,
                    designation=designation,
                    role=MemberRole.SUPER_ADMIN if bootstrap else MemberRole.MEMBER,
                )
                self.db.add(member)
                await self.db.flush()
        if bootstrap:
            log.warning("Directory was empty; %s bootstrapped as super_admin", member.id)
        log.info("Created member %s (%s)", member.id, member.role.value)
        return member

    async def update_designation(self, member_id: str, designation: Optional[str], caller_id: str) -> Member:
        await self.authorize(caller_id, ADMIN_ROLES)
        async with unit_of_work(self.db):
            member = await self.get(member_id)
            previous = member.designation
            member.designation = designation
            await create_audit_log(
                self.db,
                user_id=caller_id,
                action="update_designation",
                resource_type="member",
                resource_id=member_id,
                details={"from": previous, "to": designation},
            )
        return member

    async def delete_members(self, member_ids: Collection[str], caller_id: str) -> List[str]:
        """
        Hard delete members together with their grants, requests and notifications.

        Admins may only delete plain members. Super admins may delete anyone,
        as long as at least one super admin remains.
        """
        ids = list(dict.fromkeys(member_ids))

        async with invariant_lock(self.db, SUPER_ADMIN_COUNT_LOCK):
            async with unit_of_work(self.db):
                # Caller role is read under the same lock as role changes
                caller = await self.authorize(caller_id, ADMIN_ROLES)
                targets = await self.get_many(ids)
                found = {target.id for target in targets}
                missing = [member_id for member_id in ids if member_id not in found]
                if missing:
                    raise NotFound(f"Members not found: {', '.join(missing)}")

                if caller.role != MemberRole.SUPER_ADMIN:
                    if any(target.role != MemberRole.MEMBER for target in targets):
                        raise Unauthorized("Admins may only delete members with role=member")

                removed_super_admins = sum(1 for t in targets if t.role == MemberRole.SUPER_ADMIN)
                if removed_super_admins and await self.count_super_admins() - removed_super_admins < 1:
                    raise LastSuperAdminProtected("Cannot delete the last remaining super_admin")

                await self.db.execute(delete(Notification).where(Notification.actor_id.in_(ids)))
                await self.db.execute(delete(PermissionRequest).where(PermissionRequest.actor_id.in_(ids)))
                await self.db.execute(delete(GrantedPermission).where(GrantedPermission.actor_id.in_(ids)))
                for target in targets:
                    await self.db.delete(target)
                await create_audit_log(
                    self.db,
                    user_id=caller_id,
                    action="delete_members",
                    resource_type="member",
                    details={"member_ids": ids},
                )

        log.info("Member %s deleted members %s", caller_id, ids)
        return ids
