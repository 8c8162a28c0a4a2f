"""
FastAPI dependencies for organization-scoped access checks.

Implements:
- Explicit organization context taken from the URL path
- Route protection by permission and/or module
- Audit logging helpers
"""
from dataclasses import dataclass
from typing import Annotated, Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.guard import AccessGuard, AccessSession, GuardDecision, GuardState
from app.features.permissions.models import AuditLog
from app.features.permissions.resolver import AccessResolution, RoleResolver
from app.features.permissions.tables import Module, Permission
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def get_role_resolver(request: Request) -> RoleResolver:
    """The process-wide resolver created at application startup."""
    return request.app.state.role_resolver


async def get_organization_id(
    organization_id: str,
    x_organization_id: Annotated[Optional[str], Header()] = None,
) -> str:
    """
    The organization a request is about, from the path.

    A client that also sends X-Organization-Id must agree with the path; two
    different sources of organization truth are rejected outright.
    """
    if x_organization_id is not None and x_organization_id != organization_id:
        log.warning(
            "Conflicting organization context: path=%s header=%s", organization_id, x_organization_id
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Conflicting organization context",
        )
    return organization_id


@dataclass
class OrganizationAccess:
    """Result of a passed access check, handed to the route."""
    user: User
    organization_id: str
    resolution: AccessResolution
    decision: GuardDecision

    @property
    def is_system_admin(self) -> bool:
        return self.resolution.is_system_admin


def raise_for_decision(decision: GuardDecision) -> None:
    """Map a non-granted decision to its HTTP error."""
    if decision.state is GuardState.GRANTED:
        return
    if decision.state is GuardState.UNAUTHENTICATED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if decision.state is GuardState.DENIED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": decision.reason or "Access denied",
                "role": decision.role.value,
                "required_role": decision.required_role.value if decision.required_role else None,
                "required_plan": decision.required_plan.value if decision.required_plan else None,
                "can_request_access": decision.can_request_access,
            },
        )
    # ERROR and LOADING: access could not be verified, the client should retry
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=decision.reason or "Could not verify access",
        headers={"Retry-After": "1"},
    )


def require_access(permission: Optional[Permission] = None, module: Optional[Module] = None):
    """
    FastAPI dependency requiring a permission and/or module in the path's organization.

    Usage:
        @router.get("/{organization_id}/members")
        async def list_members(
            access: OrganizationAccess = Depends(require_access(Permission.MANAGE_USERS, Module.MEMBERS))
        ):
            ...

    Raises:
        HTTPException: 401 unauthenticated, 403 denied, 503 lookup failure
    """
    # Denied API callers can ask for access via POST /access/{org}/requests
    guard = AccessGuard(permission=permission, module=module, can_request_access=True)

    async def access_dependency(
        organization_id: Annotated[str, Depends(get_organization_id)],
        current_user: Annotated[User, Depends(get_current_user)],
        resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    ) -> OrganizationAccess:
        session = AccessSession(resolver, current_user.id, organization_id)
        resolution = await session.resolve()
        decision = guard.decide(resolution)
        raise_for_decision(decision)
        return OrganizationAccess(
            user=current_user,
            organization_id=organization_id,
            resolution=resolution,
            decision=decision,
        )

    return access_dependency


async def get_organization_session(
    organization_id: Annotated[str, Depends(get_organization_id)],
    current_user: Annotated[User, Depends(get_current_user)],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
) -> AccessSession:
    """Access session for the caller without enforcing anything."""
    return AccessSession(resolver, current_user.id, organization_id)


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "update_role", "remove")
        resource_type: Type of resource (e.g., "membership", "organization")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details
        request: Source of client IP and user agent, if available
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )

    return audit_log
