"""
Access control API routes.

Role lookups, permission/module checks, dashboard navigation, access requests, and audit logs.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.permissions.dependencies import (
    OrganizationAccess,
    create_audit_log,
    get_organization_session,
    require_access,
)
from app.features.permissions.guard import AccessGuard, AccessSession, GuardState
from app.features.permissions.models import AccessRequest, AccessRequestStatus, AuditLog
from app.features.permissions.navigation import DASHBOARD_TABS, TabNavigator
from app.features.permissions.resolver import AccessResolution
from app.features.permissions.schemas import (
    AccessCheckRequest,
    AccessDecisionResponse,
    AccessRequestCreate,
    AccessRequestResponse,
    AccessRequestReview,
    AuditLogResponse,
    ModuleAccessResponse,
    NavigationActivateRequest,
    NavigationActivateResponse,
    NavigationEntryResponse,
    NavigationResponse,
    RoleDefinitionResponse,
    RoleResolutionResponse,
    UpgradePromptResponse,
)
from app.features.permissions.tables import (
    PLAN_FEATURE_FLAGS,
    ROLE_DEFINITIONS,
    Module,
    Permission,
    Role,
    allowed_question_types,
    assignable_roles,
    has_plan_feature,
    response_limit,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _resolution_response(resolution: AccessResolution) -> RoleResolutionResponse:
    return RoleResolutionResponse(
        organization_id=resolution.organization_id,
        state=resolution.state,
        role=resolution.role,
        is_system_admin=resolution.is_system_admin,
        plan=resolution.organization.plan if resolution.organization else None,
        error=resolution.error,
    )


def _navigator(resolution: AccessResolution, active_id: Optional[str] = None) -> TabNavigator:
    def is_accessible(module: Module) -> bool:
        return AccessGuard(module=module).decide(resolution).granted

    return TabNavigator(DASHBOARD_TABS, is_accessible, active_id=active_id)


# ============================================================================
# Roles
# ============================================================================

@router.get("/roles", response_model=List[RoleDefinitionResponse])
async def list_role_definitions():
    """Role hierarchy with labels, highest first."""
    return [
        RoleDefinitionResponse(role=role, level=role.level, **definition)
        for role, definition in ROLE_DEFINITIONS.items()
    ]


@router.get("/{organization_id}/role", response_model=RoleResolutionResponse)
async def get_my_role(
    session: Annotated[AccessSession, Depends(get_organization_session)],
):
    """Resolve the caller's role in the organization. Lookup failures are reported, not hidden."""
    resolution = await session.resolve()
    return _resolution_response(resolution)


@router.post("/{organization_id}/refresh", response_model=RoleResolutionResponse)
async def refresh_my_role(
    session: Annotated[AccessSession, Depends(get_organization_session)],
):
    """Drop the cached role and resolve again."""
    session.refresh()
    resolution = await session.resolve()
    return _resolution_response(resolution)


@router.get("/{organization_id}/assignable-roles", response_model=List[Role])
async def get_assignable_roles(
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_USERS))],
):
    """Roles the caller may grant to others in this organization."""
    return assignable_roles(access.resolution.role)


# ============================================================================
# Checks
# ============================================================================

@router.post("/{organization_id}/check", response_model=AccessDecisionResponse)
async def check_access(
    check: AccessCheckRequest,
    session: Annotated[AccessSession, Depends(get_organization_session)],
):
    """
    Evaluate a permission and/or module for the caller.

    Always answers 200; the decision state says granted, denied, or error.
    """
    guard = AccessGuard(permission=check.permission, module=check.module)
    decision = await guard.evaluate(session)
    return AccessDecisionResponse.model_validate(decision)


@router.get("/{organization_id}/modules", response_model=ModuleAccessResponse)
async def get_module_access(
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.VIEW_ANALYTICS))],
):
    """Which dashboard modules the organization's plan (plus overrides) unlocks."""
    organization = access.resolution.organization
    if organization is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    modules = {
        module: AccessGuard(module=module).decide(access.resolution).granted
        for module in Module
    }
    return ModuleAccessResponse(
        organization_id=organization.organization_id,
        plan=organization.plan,
        modules=modules,
        overrides=organization.module_overrides,
        max_responses=response_limit(organization.plan, organization.plan_overrides),
        question_types=allowed_question_types(organization.plan, organization.plan_overrides),
        features={
            name: has_plan_feature(organization.plan, organization.plan_overrides, name)
            for name in PLAN_FEATURE_FLAGS
        },
    )


# ============================================================================
# Navigation
# ============================================================================

@router.get("/{organization_id}/navigation", response_model=NavigationResponse)
async def get_navigation(
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.VIEW_ANALYTICS))],
    active_id: Optional[str] = None,
):
    """Dashboard tabs with plan-locked items marked."""
    navigator = _navigator(access.resolution, active_id)
    return NavigationResponse(
        active_id=navigator.active_id,
        items=[NavigationEntryResponse.model_validate(entry) for entry in navigator.entries()],
    )


@router.post("/{organization_id}/navigation/activate", response_model=NavigationActivateResponse)
async def activate_tab(
    body: NavigationActivateRequest,
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.VIEW_ANALYTICS))],
):
    """Switch tabs. Locked tabs return an upgrade prompt and keep the current tab."""
    navigator = _navigator(access.resolution, body.active_id)
    result = navigator.activate(body.tab_id)
    if result.upgrade_prompt is not None:
        log.info(
            "Upgrade prompt for user %s in org %s: module %s",
            access.user.id, access.organization_id, result.upgrade_prompt.module.value,
        )
    return NavigationActivateResponse(
        switched=result.switched,
        active_id=result.active_id,
        upgrade_prompt=(
            UpgradePromptResponse.model_validate(result.upgrade_prompt) if result.upgrade_prompt else None
        ),
        error=result.error,
    )


# ============================================================================
# Access Requests
# ============================================================================

@router.post(
    "/{organization_id}/requests",
    response_model=AccessRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(config.ACCESS_REQUEST_RATE_LIMIT)
async def submit_access_request(
    request: Request,
    body: AccessRequestCreate,
    session: Annotated[AccessSession, Depends(get_organization_session)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Ask the organization's admins for more access.

    This only records the request and notifies; it never grants anything.
    """
    decision = AccessGuard().decide(await session.resolve())
    if decision.state is GuardState.ERROR:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=decision.reason,
            headers={"Retry-After": "1"},
        )
    resolution = session.current
    if resolution is None or resolution.organization is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    access_request = AccessRequest(
        user_id=session.user_id,
        organization_id=session.organization_id,
        request_type=body.request_type,
        requested_role=body.requested_role.value if body.requested_role else None,
        requested_permission=body.requested_permission.value if body.requested_permission else None,
        requested_module=body.requested_module.value if body.requested_module else None,
        reason=body.reason,
    )
    db.add(access_request)
    await db.commit()
    await db.refresh(access_request)

    await create_audit_log(
        db,
        user_id=session.user_id,
        action="request_access",
        resource_type="access_request",
        resource_id=access_request.id,
        organization_id=session.organization_id,
        details=body.model_dump(mode="json", exclude_none=True),
        request=request,
    )
    return access_request


@router.get("/{organization_id}/requests", response_model=List[AccessRequestResponse])
async def list_access_requests(
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: Optional[AccessRequestStatus] = None,
    skip: int = 0,
    limit: int = 50,
):
    """Access requests for the organization, newest first."""
    stmt = select(AccessRequest).where(AccessRequest.organization_id == access.organization_id)
    if status_filter is not None:
        stmt = stmt.where(AccessRequest.status == status_filter)
    stmt = stmt.order_by(AccessRequest.created_at.desc(), AccessRequest.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/{organization_id}/requests/{request_id}/review", response_model=AccessRequestResponse)
async def review_access_request(
    request_id: str,
    review: AccessRequestReview,
    request: Request,
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Approve or reject a pending request. Role changes are made separately."""
    result = await db.execute(
        select(AccessRequest).where(
            AccessRequest.id == request_id,
            AccessRequest.organization_id == access.organization_id,
        )
    )
    access_request = result.scalar_one_or_none()
    if access_request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Access request not found")
    if access_request.status != AccessRequestStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Access request already reviewed")

    access_request.status = AccessRequestStatus.APPROVED if review.approved else AccessRequestStatus.REJECTED
    access_request.reviewed_by_id = access.user.id
    access_request.reviewed_at = datetime.now(timezone.utc)
    access_request.review_message = review.review_message
    await db.commit()
    await db.refresh(access_request)

    await create_audit_log(
        db,
        user_id=access.user.id,
        action="review_access_request",
        resource_type="access_request",
        resource_id=access_request.id,
        organization_id=access.organization_id,
        details={"status": access_request.status.value},
        request=request,
    )
    return access_request


# ============================================================================
# Audit Logs
# ============================================================================

@router.get("/{organization_id}/audit-logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Audit trail of the organization, newest first."""
    stmt = select(AuditLog).where(AuditLog.organization_id == access.organization_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()
