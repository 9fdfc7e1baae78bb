"""
Capability catalog, permission requests and granted permissions.

This module implements the fine-grained half of governance:
- A catalog of named capabilities (e.g. "finance", "announcement")
- Requests from admins asking for a capability, reviewed by a super admin
- The effective grants, soft-deleted on revoke to keep history
"""
import enum
from datetime import datetime
from sqlalchemy import String, ForeignKey, Text, Boolean, DateTime, Index, UniqueConstraint, Enum as SQLEnum, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, enum_values, generate_ulid, utc_now


class RequestStatus(str, enum.Enum):
    """Status of permission requests. Only `pending` can change, exactly once."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Capability(Base, TimestampMixin):
    """
    A named capability an admin may be granted.

    Examples: finance, announcement, events
    """
    __tablename__ = "capabilities"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Disabled capabilities stay in the catalog but are only listed to super admins
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Capability(key={self.key!r})>"


class PermissionRequest(Base, TimestampMixin):
    """
    An admin's request for one extra capability.

    At most one request per (actor, key) may be pending; the partial unique
    index enforces it even when two submissions race.
    """
    __tablename__ = "permission_requests"
    __table_args__ = (
        Index(
            "uq_permission_requests_pending",
            "actor_id",
            "permission_key",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    actor_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    permission_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[RequestStatus] = mapped_column(
        SQLEnum(RequestStatus, values_callable=enum_values, native_enum=False, length=20),
        default=RequestStatus.PENDING,
        nullable=False,
        index=True
    )

    # Super admin response
    reviewer_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PermissionRequest(id={self.id}, actor_id={self.actor_id}, "
            f"key={self.permission_key!r}, status={self.status.value})>"
        )


class GrantedPermission(Base):
    """
    Effective grant of a capability to an actor.

    One row per (actor, key). Re-granting reactivates the row and revoking
    only flips `is_active`, so the history of who granted what survives.
    """
    __tablename__ = "granted_permissions"
    __table_args__ = (
        UniqueConstraint("actor_id", "permission_key", name="uq_granted_permissions_actor_key"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # No foreign key: the store accepts any actor id, MemberDirectory.delete_members cleans up
    actor_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    permission_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    granted_by: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<GrantedPermission(actor_id={self.actor_id}, key={self.permission_key!r}, "
            f"is_active={self.is_active})>"
        )
