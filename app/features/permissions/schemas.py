"""
Pydantic schemas for the capability catalog, permission requests and grants.
"""
import re
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.members.models import MemberRole
from app.features.permissions.models import RequestStatus


PERMISSION_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")


def _validate_permission_key(v: str) -> str:
    v = v.strip().lower()
    if not PERMISSION_KEY_PATTERN.match(v):
        raise ValueError("Permission key must contain only lowercase letters, digits and underscores")
    return v


class CapabilityResponse(BaseModel):
    key: str
    display_name: str
    description: Optional[str] = None
    is_enabled: bool = True

    model_config = ConfigDict(from_attributes=True)


class CapabilityToggle(BaseModel):
    is_enabled: bool


# ============================================================================
# Permission Request Schemas
# ============================================================================

class PermissionRequestCreate(BaseModel):
    """Schema for asking for a capability."""
    permission_key: str = Field(..., min_length=1, max_length=100, description="Capability key (e.g., 'finance')")
    reason: str = Field("", max_length=2000, description="Why the capability is needed")

    @field_validator("permission_key")
    @classmethod
    def permission_key_format(cls, v: str) -> str:
        return _validate_permission_key(v)


class PermissionRequestReview(BaseModel):
    """Optional note attached to an approval or rejection."""
    note: Optional[str] = Field(None, max_length=2000)


class PermissionRequestResponse(BaseModel):
    id: str
    actor_id: str
    permission_key: str
    reason: str
    status: RequestStatus
    reviewer_id: Optional[str] = None
    review_note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PendingRequestResponse(PermissionRequestResponse):
    """Pending request enriched with the requester's name."""
    actor_name: str = "Unknown"


# ============================================================================
# Grant Schemas
# ============================================================================

class GrantCreate(BaseModel):
    actor_id: str = Field(..., description="Member receiving the capability")
    permission_key: str = Field(..., min_length=1, max_length=100)

    @field_validator("permission_key")
    @classmethod
    def permission_key_format(cls, v: str) -> str:
        return _validate_permission_key(v)


class GrantResponse(BaseModel):
    id: str
    actor_id: str
    permission_key: str
    granted_by: Optional[str] = None
    granted_at: datetime
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class RevokeResponse(BaseModel):
    revoked: bool


class MyPermissionsResponse(BaseModel):
    role: MemberRole
    permissions: List[str]


class AdminWithPermissions(BaseModel):
    id: str
    full_name: str
    role: MemberRole
    permissions: List[str]


class PermissionCheckResponse(BaseModel):
    allowed: bool
    required_role: Optional[List[MemberRole]] = None
    permission_key: Optional[str] = None
