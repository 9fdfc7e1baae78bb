from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.audit.schemas import AuditLogResponse
from app.features.audit.service import list_audit_logs
from app.features.members.models import Member, MemberRole
from app.features.permissions.dependencies import require_role


router = APIRouter(tags=["audit"])


@router.get("/", response_model=List[AuditLogResponse])
async def get_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    _super_admin: Annotated[Member, Depends(require_role(MemberRole.SUPER_ADMIN))],
    skip: int = 0,
    limit: int = 100,
    action: Optional[str] = None,
):
    """Governance audit trail, newest first (super admins only)."""
    return await list_audit_logs(db, skip=skip, limit=limit, action=action)
