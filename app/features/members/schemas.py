"""
Pydantic schemas for member-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field

from app.features.members.models import MemberRole


class MemberResponse(BaseModel):
    """Schema for member responses."""
    id: str
    full_name: str
    email: str | None = None
    role: MemberRole
    designation: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MemberPublic(BaseModel):
    """Public member information (limited fields)."""
    id: str
    full_name: str
    role: MemberRole
    designation: str | None = None

    model_config = {"from_attributes": True}


class SetRolesRequest(BaseModel):
    """Apply one role to a batch of members."""
    member_ids: list[str] = Field(..., min_length=1, description="Members to update")
    new_role: MemberRole


class DesignationUpdate(BaseModel):
    designation: str | None = Field(None, max_length=100)


class DeleteMembersRequest(BaseModel):
    member_ids: list[str] = Field(..., min_length=1)


class DeleteMembersResponse(BaseModel):
    deleted: list[str]


class SignupSettingsResponse(BaseModel):
    allow_signup: bool


class SignupSettingsUpdate(BaseModel):
    allow_signup: bool
