"""
Per-member notifications describing governance events.

Notifications are append-only; the only mutation is flipping `is_read`.
"""
import enum
from sqlalchemy import String, ForeignKey, Boolean, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, enum_values, generate_ulid


class NotificationType(str, enum.Enum):
    PERMISSION_APPROVED = "permission_approved"
    PERMISSION_REJECTED = "permission_rejected"
    PERMISSION_REVOKED = "permission_revoked"
    PERMISSION_GRANTED = "permission_granted"
    INFO = "info"


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    actor_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, values_callable=enum_values, native_enum=False, length=30),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_permission: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, actor_id={self.actor_id}, type={self.type.value}, is_read={self.is_read})>"
