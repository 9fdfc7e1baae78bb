"""
Catalog of capabilities an admin can request or be granted.
"""
from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import unit_of_work
from app.core.errors import NotFound
from app.features.audit.service import create_audit_log
from app.features.members.directory import MemberDirectory
from app.features.members.models import MemberRole
from app.features.permissions.models import Capability
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_CAPABILITIES = [
    ("member", "Members", "Manage member records"),
    ("applicant", "Applicants", "Review membership applications"),
    ("events", "Events", "Create and edit events"),
    ("exam", "Exams", "Manage exams, quizzes and results"),
    ("seminar", "Seminars", "Manage seminars and registrations"),
    ("finance", "Finance", "Submit and verify finance ledger entries"),
    ("announcement", "Announcements", "Publish announcements"),
    ("patrons", "Patrons", "Manage patrons"),
    ("feedback", "Feedback", "Read and moderate feedback"),
]


async def list_capabilities(db: AsyncSession, enabled_only: bool = False) -> List[Capability]:
    stmt = select(Capability)
    if enabled_only:
        stmt = stmt.where(Capability.is_enabled.is_(True))
    result = await db.execute(stmt.order_by(Capability.display_name))
    return list(result.scalars().all())


async def set_capability_enabled(db: AsyncSession, key: str, enabled: bool, caller_id: str) -> Capability:
    """
    Enable or disable a catalog capability (super admins only).

    Raises:
        Unauthorized: caller is not a super admin
        NotFound: no capability with this key
    """
    await MemberDirectory(db).authorize(caller_id, {MemberRole.SUPER_ADMIN})
    async with unit_of_work(db):
        capability = await db.get(Capability, key, populate_existing=True)
        if capability is None:
            raise NotFound(f"Capability {key} not found")
        capability.is_enabled = enabled
        capability.updated_by = caller_id
        await create_audit_log(
            db,
            user_id=caller_id,
            action="enable_permission" if enabled else "disable_permission",
            resource_type="capability",
            resource_id=key,
            details={"permission_key": key, "new_value": enabled},
        )
    log.info("Member %s set capability %s enabled=%s", caller_id, key, enabled)
    return capability


async def seed_capabilities(db: AsyncSession) -> int:
    """Insert missing default capabilities. Returns how many were created."""
    result = await db.execute(select(Capability.key))
    existing = set(result.scalars().all())

    created = 0
    for key, display_name, description in DEFAULT_CAPABILITIES:
        if key in existing:
            log.debug(f"Capability {key} already exists")
            continue
        db.add(Capability(key=key, display_name=display_name, description=description))
        created += 1

    await db.commit()
    log.info(f"Seeded {created} capabilities")
    return created
