"""
Granted-permission store.

Grants are keyed by (actor, permission key). Writes are a single
INSERT ... ON CONFLICT statement, so concurrent or retried grants for the
same pair converge on one row instead of racing to insert duplicates.
Nothing here commits; callers run these inside their own unit of work.
"""
from typing import Dict, Iterable, Optional, Set
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid, utc_now
from app.features.permissions.models import GrantedPermission
from app.utils import get_logger


log = get_logger(__name__)


class GrantedPermissionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        if self.db.get_bind().dialect.name == "postgresql":
            return postgresql.insert(GrantedPermission)
        return sqlite.insert(GrantedPermission)

    async def grant(self, actor_id: str, permission_key: str, granted_by: Optional[str]) -> GrantedPermission:
        """
        Activate (actor, key). An already active grant is left untouched.
        """
        now = utc_now()
        stmt = self._insert().values(
            id=generate_ulid(),
            actor_id=actor_id,
            permission_key=permission_key,
            granted_by=granted_by,
            granted_at=now,
            is_active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["actor_id", "permission_key"],
            set_={"is_active": True, "granted_by": granted_by, "granted_at": now},
            where=GrantedPermission.__table__.c.is_active.is_(False),
        )
        await self.db.execute(stmt)
        grant = await self.get(actor_id, permission_key)
        log.debug("Granted %s to %s", permission_key, actor_id)
        return grant

    async def revoke(self, actor_id: str, permission_key: str) -> bool:
        """
        Deactivate (actor, key). Returns False when nothing was active,
        which is not an error.
        """
        result = await self.db.execute(
            update(GrantedPermission)
            .where(
                GrantedPermission.actor_id == actor_id,
                GrantedPermission.permission_key == permission_key,
                GrantedPermission.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def get(self, actor_id: str, permission_key: str) -> Optional[GrantedPermission]:
        result = await self.db.execute(
            select(GrantedPermission)
            .where(
                GrantedPermission.actor_id == actor_id,
                GrantedPermission.permission_key == permission_key,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def is_active(self, actor_id: str, permission_key: str) -> bool:
        result = await self.db.execute(
            select(GrantedPermission.id).where(
                GrantedPermission.actor_id == actor_id,
                GrantedPermission.permission_key == permission_key,
                GrantedPermission.is_active.is_(True),
            )
        )
        return result.first() is not None

    async def list_active_by_actor(self, actor_id: str) -> Set[str]:
        result = await self.db.execute(
            select(GrantedPermission.permission_key).where(
                GrantedPermission.actor_id == actor_id,
                GrantedPermission.is_active.is_(True),
            )
        )
        return set(result.scalars().all())

    async def list_active_for(self, actor_ids: Iterable[str]) -> Dict[str, Set[str]]:
        ids = list(actor_ids)
        permissions: Dict[str, Set[str]] = {actor_id: set() for actor_id in ids}
        if not ids:
            return permissions
        result = await self.db.execute(
            select(GrantedPermission.actor_id, GrantedPermission.permission_key).where(
                GrantedPermission.actor_id.in_(ids),
                GrantedPermission.is_active.is_(True),
            )
        )
        for actor_id, permission_key in result.all():
            permissions[actor_id].add(permission_key)
        return permissions
