"""
Pydantic schemas for access checks, navigation, and access requests.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator

from app.features.permissions.guard import GuardState
from app.features.permissions.models import AccessRequestStatus, AccessRequestType
from app.features.permissions.resolver import ResolutionState
from app.features.permissions.tables import Module, Permission, PlanTier, Role


# ============================================================================
# Role / Resolution Schemas
# ============================================================================

class RoleDefinitionResponse(BaseModel):
    role: Role
    label: str
    description: str
    level: int


class RoleResolutionResponse(BaseModel):
    """The caller's standing in one organization."""
    organization_id: Optional[str]
    state: ResolutionState
    role: Role
    is_system_admin: bool
    plan: Optional[PlanTier] = None
    error: Optional[str] = None


# ============================================================================
# Check Schemas
# ============================================================================

class AccessCheckRequest(BaseModel):
    """Permission and/or module to check. Strings so unknown keys reach the gate and fail closed."""
    permission: Optional[str] = Field(None, max_length=100, description="e.g. 'manage_questions'")
    module: Optional[str] = Field(None, max_length=100, description="e.g. 'sentiment'")

    @model_validator(mode="after")
    def require_one(self) -> "AccessCheckRequest":
        if self.permission is None and self.module is None:
            raise ValueError("permission or module is required")
        return self


class AccessDecisionResponse(BaseModel):
    state: GuardState
    organization_id: Optional[str] = None
    role: Role
    reason: Optional[str] = None
    required_role: Optional[Role] = None
    required_plan: Optional[PlanTier] = None
    can_request_access: bool = False

    model_config = ConfigDict(from_attributes=True)


class ModuleAccessResponse(BaseModel):
    """Module availability for an organization, with its plan limits."""
    organization_id: str
    plan: PlanTier
    modules: Dict[Module, bool]
    overrides: Dict[str, bool] = Field(default_factory=dict)
    max_responses: Optional[int] = None
    question_types: List[str] = Field(default_factory=list)
    features: Dict[str, bool] = Field(default_factory=dict)


# ============================================================================
# Navigation Schemas
# ============================================================================

class NavigationEntryResponse(BaseModel):
    id: str
    label: str
    module: Module
    locked: bool
    active: bool
    required_plan: Optional[PlanTier] = None

    model_config = ConfigDict(from_attributes=True)


class NavigationResponse(BaseModel):
    active_id: Optional[str]
    items: List[NavigationEntryResponse]


class NavigationActivateRequest(BaseModel):
    tab_id: str
    active_id: Optional[str] = Field(None, description="Tab currently shown by the client")


class UpgradePromptResponse(BaseModel):
    module: Module
    required_plan: Optional[PlanTier] = None
    message: str

    model_config = ConfigDict(from_attributes=True)


class NavigationActivateResponse(BaseModel):
    switched: bool
    active_id: Optional[str]
    upgrade_prompt: Optional[UpgradePromptResponse] = None
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Access Request Schemas
# ============================================================================

class AccessRequestCreate(BaseModel):
    request_type: AccessRequestType
    requested_role: Optional[Role] = None
    requested_permission: Optional[Permission] = None
    requested_module: Optional[Module] = None
    reason: Optional[str] = Field(None, max_length=1000)


class AccessRequestReview(BaseModel):
    approved: bool = Field(..., description="True to approve, False to reject")
    review_message: Optional[str] = Field(None, max_length=1000)


class AccessRequestResponse(BaseModel):
    id: str
    user_id: str
    organization_id: str
    request_type: AccessRequestType
    requested_role: Optional[str] = None
    requested_permission: Optional[str] = None
    requested_module: Optional[str] = None
    reason: Optional[str] = None
    status: AccessRequestStatus
    reviewed_by_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogResponse(BaseModel):
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
