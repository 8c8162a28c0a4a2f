"""
Pydantic schemas for organization and membership requests and responses.
"""
from datetime import datetime
from typing import Any, Dict
from pydantic import BaseModel, Field, EmailStr, field_validator

from app.features.organizations.models import MembershipStatus
from app.features.permissions.features import validate_features_config
from app.features.permissions.tables import ASSIGNABLE_ROLES, PlanTier, Role


def _assignable(role: Role) -> Role:
    if role not in ASSIGNABLE_ROLES:
        raise ValueError(f"Role must be one of: {', '.join(r.value for r in ASSIGNABLE_ROLES)}")
    return role


# Organization Schemas
class OrganizationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    billing_email: EmailStr | None = None
    domain: str | None = Field(None, max_length=255)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization (system admin only)."""
    slug: str = Field(..., min_length=2, max_length=100, pattern="^[a-z0-9]+(?:-[a-z0-9]+)*$")
    plan_type: PlanTier = PlanTier.STARTER


class OrganizationUpdate(BaseModel):
    """Editable organization settings. Slug and plan are deliberately absent."""
    name: str | None = Field(None, min_length=1, max_length=255)
    billing_email: EmailStr | None = None
    domain: str | None = Field(None, max_length=255)


class OrganizationPlanUpdate(BaseModel):
    """Plan tier and feature overrides (system admin only)."""
    plan_type: PlanTier
    features_config: Dict[str, Any] | None = Field(
        None, description='e.g. {"modules": {"sentiment": true}, "maxResponses": 5000}'
    )

    @field_validator("features_config")
    @classmethod
    def check_features_config(cls, v: Dict[str, Any] | None) -> Dict[str, Any] | None:
        if v is None:
            return v
        return validate_features_config(v)


class OrganizationResponse(OrganizationBase):
    id: str
    slug: str
    plan_type: str
    features_config: Dict[str, Any] | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of active members")

    model_config = {"from_attributes": True}


class OrganizationPublic(BaseModel):
    id: str
    name: str
    slug: str

    model_config = {"from_attributes": True}


# Membership Schemas
class MemberInvite(BaseModel):
    user_id: str = Field(..., description="ID of the user to invite")
    role: Role = Role.MEMBER

    @field_validator("role")
    @classmethod
    def assignable_role(cls, v: Role) -> Role:
        return _assignable(v)


class MemberRoleUpdate(BaseModel):
    role: Role

    @field_validator("role")
    @classmethod
    def assignable_role(cls, v: Role) -> Role:
        return _assignable(v)


class MemberResponse(BaseModel):
    id: str
    organization_id: str
    user_id: str
    email: str
    role: str
    status: MembershipStatus
    invited_by_id: str | None = None
    invited_at: datetime | None = None
    accepted_at: datetime | None = None

    model_config = {"from_attributes": True}


class MyOrganization(BaseModel):
    """An organization the caller belongs to, with the caller's role."""
    organization: OrganizationPublic
    role: str
    accepted_at: datetime | None = None


class SwitchOrganizationRequest(BaseModel):
    organization_id: str = Field(..., description="ID of the organization to switch to")
