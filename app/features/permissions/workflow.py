"""
Permission request workflow.

An admin asks for a capability, a super admin approves or rejects it. A
request moves from pending to approved or rejected exactly once:

    pending -> approved   (grants the capability, notifies the requester)
    pending -> rejected   (notifies the requester)

Authorization is always checked before anything else is looked up.
"""
from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utc_now
from app.core.database.engine import unit_of_work
from app.core.database.locks import invariant_lock
from app.core.errors import Conflict, InvalidState, NotFound
from app.features.audit.service import create_audit_log
from app.features.members.directory import MemberDirectory
from app.features.members.models import MemberRole
from app.features.notifications.models import NotificationType
from app.features.notifications.service import NotificationService, approved_message, rejected_message
from app.features.permissions.models import PermissionRequest, RequestStatus
from app.features.permissions.store import GrantedPermissionStore
from app.utils import get_logger


log = get_logger(__name__)

SUBMITTERS = frozenset({MemberRole.ADMIN})
REVIEWERS = frozenset({MemberRole.SUPER_ADMIN})


class PermissionRequestWorkflow:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.directory = MemberDirectory(db)
        self.store = GrantedPermissionStore(db)
        self.notifications = NotificationService(db)

    async def submit(self, actor_id: str, permission_key: str, reason: str) -> PermissionRequest:
        await self.directory.authorize(actor_id, SUBMITTERS)

        async with invariant_lock(self.db, f"permission_request:{actor_id}:{permission_key}"):
            async with unit_of_work(self.db):
                existing = await self.db.execute(
                    select(PermissionRequest.id).where(
                        PermissionRequest.actor_id == actor_id,
                        PermissionRequest.permission_key == permission_key,
                        PermissionRequest.status == RequestStatus.PENDING,
                    )
                )
                if existing.first() is not None:
                    raise Conflict("You already have a pending request for this permission")

                request = PermissionRequest(
                    actor_id=actor_id,
                    permission_key=permission_key,
                    reason=reason,
                    status=RequestStatus.PENDING,
                )
                self.db.add(request)
                try:
                    await self.db.flush()
                except IntegrityError as exc:
                    # Another worker inserted the same pending pair first
                    raise Conflict("You already have a pending request for this permission") from exc

        log.info("Member %s requested permission %s", actor_id, permission_key)
        return request

    async def approve(self, request_id: str, reviewer_id: str, note: Optional[str] = None) -> PermissionRequest:
        await self.directory.authorize(reviewer_id, REVIEWERS)

        async with unit_of_work(self.db):
            request = await self._resolve(request_id, reviewer_id, note, RequestStatus.APPROVED)
            await self.store.grant(request.actor_id, request.permission_key, granted_by=reviewer_id)
            await self.notifications.append(
                request.actor_id,
                NotificationType.PERMISSION_APPROVED,
                "Permission Approved",
                approved_message(request.permission_key, note),
                related_permission=request.permission_key,
            )
            await create_audit_log(
                self.db,
                user_id=reviewer_id,
                action="approve",
                resource_type="permission_request",
                resource_id=request.id,
                details={"actor_id": request.actor_id, "permission_key": request.permission_key},
            )

        log.info("Member %s approved request %s (%s)", reviewer_id, request_id, request.permission_key)
        return request

    async def reject(self, request_id: str, reviewer_id: str, note: Optional[str] = None) -> PermissionRequest:
        await self.directory.authorize(reviewer_id, REVIEWERS)

        async with unit_of_work(self.db):
            request = await self._resolve(request_id, reviewer_id, note, RequestStatus.REJECTED)
            await self.notifications.append(
                request.actor_id,
                NotificationType.PERMISSION_REJECTED,
                "Permission Rejected",
                rejected_message(request.permission_key, note),
                related_permission=request.permission_key,
            )
            await create_audit_log(
                self.db,
                user_id=reviewer_id,
                action="reject",
                resource_type="permission_request",
                resource_id=request.id,
                details={"actor_id": request.actor_id, "permission_key": request.permission_key},
            )

        log.info("Member %s rejected request %s (%s)", reviewer_id, request_id, request.permission_key)
        return request

    async def _resolve(
        self,
        request_id: str,
        reviewer_id: str,
        note: Optional[str],
        outcome: RequestStatus,
    ) -> PermissionRequest:
        request = await self.db.get(PermissionRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFound("Permission request not found")
        if request.status != RequestStatus.PENDING:
            raise InvalidState("This request has already been reviewed", rule="RequestAlreadyResolved")

        # Conditional on still being pending, so a concurrent review cannot resolve it twice
        result = await self.db.execute(
            update(PermissionRequest)
            .where(PermissionRequest.id == request_id, PermissionRequest.status == RequestStatus.PENDING)
            .values(status=outcome, reviewer_id=reviewer_id, review_note=note or None, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidState("This request has already been reviewed", rule="RequestAlreadyResolved")

        return await self.db.get(PermissionRequest, request_id, populate_existing=True)

    async def list_pending(self, caller_id: str) -> List[PermissionRequest]:
        await self.directory.authorize(caller_id, REVIEWERS)
        result = await self.db.execute(
            select(PermissionRequest)
            .where(PermissionRequest.status == RequestStatus.PENDING)
            .order_by(PermissionRequest.created_at.desc(), PermissionRequest.id.desc())
        )
        return list(result.scalars().all())

    async def list_mine(self, actor_id: str) -> List[PermissionRequest]:
        result = await self.db.execute(
            select(PermissionRequest)
            .where(PermissionRequest.actor_id == actor_id)
            .order_by(PermissionRequest.created_at.desc(), PermissionRequest.id.desc())
        )
        return list(result.scalars().all())
