"""
Member model with ULID primary keys.

A member is the identity record every governance component reads: who the
person is, which organizational role they hold and their designation.
"""
import enum
from sqlalchemy import String, Boolean, Integer, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, enum_values, generate_ulid


class MemberRole(str, enum.Enum):
    """Coarse authority tiers. `honourable` is terminal once assigned."""
    MEMBER = "member"
    HONOURABLE = "honourable"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# An organization always has at least one and at most this many super admins
SUPER_ADMIN_LIMIT = 2

ADMIN_ROLES = frozenset({MemberRole.ADMIN, MemberRole.SUPER_ADMIN})


class Member(Base, TimestampMixin):
    """
    Member of the organization.

    `external_identity` links the row to the identity provider account and
    stays null until the person signs in for the first time.
    """
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Appwrite user ID (for linking with Appwrite authentication)
    external_identity: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    role: Mapped[MemberRole] = mapped_column(
        SQLEnum(MemberRole, values_callable=enum_values, native_enum=False, length=20),
        default=MemberRole.MEMBER,
        nullable=False,
        index=True,
    )
    # Organizational title, independent of role
    designation: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, full_name={self.full_name!r}, role={self.role.value})>"


class SignupSettings(Base, TimestampMixin):
    """
    Single-row switch for self-service signup.

    A missing row means signups are closed. The founding member of an empty
    directory is always admitted.
    """
    __tablename__ = "signup_settings"

    SINGLETON_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    allow_signup: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("members.id", ondelete="SET NULL"), nullable=True
    )
