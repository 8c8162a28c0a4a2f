"""
Organization feature routes.
"""
from typing import Annotated
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.organizations.models import MembershipStatus, Organization, OrganizationMember
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationPlanUpdate,
    OrganizationResponse,
    MemberInvite,
    MemberRoleUpdate,
    MemberResponse,
    MyOrganization,
    OrganizationPublic,
    SwitchOrganizationRequest,
)
from app.features.organizations.dependencies import (
    active_member_count,
    get_membership,
    get_organization_by_id,
)
from app.features.permissions.dependencies import (
    OrganizationAccess,
    create_audit_log,
    get_organization_id,
    get_role_resolver,
    require_access,
)
from app.features.permissions.resolver import RoleResolver
from app.features.permissions.tables import Module, Permission, Role, can_manage_role
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


def _organization_response(organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = active_member_count(organization)
    return response


def _check_can_manage(access: OrganizationAccess, *roles: Role) -> None:
    """Non-admins may only manage (and grant) roles strictly below their own."""
    if access.is_system_admin:
        return
    for role in roles:
        if not can_manage_role(access.resolution.role, role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Cannot manage role '{role.value}' as '{access.resolution.role.value}'",
            )


# Organization CRUD endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization (system admin only). The creator becomes owner."""
    result = await db.execute(select(Organization).where(Organization.slug == org_data.slug))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Organization with this slug already exists"
        )

    now = datetime.now(timezone.utc)
    new_org = Organization(**org_data.model_dump(mode="json"))
    new_org.members.append(OrganizationMember(
        user_id=admin.id,
        email=admin.email,
        role=Role.OWNER.value,
        status=MembershipStatus.ACTIVE,
        invited_at=now,
        accepted_at=now,
    ))
    db.add(new_org)
    await db.commit()
    await db.refresh(new_org)

    await create_audit_log(
        db, user_id=admin.id, action="create", resource_type="organization",
        resource_id=new_org.id, organization_id=new_org.id,
        details={"slug": new_org.slug, "plan_type": new_org.plan_type}, request=request,
    )
    return _organization_response(new_org)


@router.get("/my", response_model=list[MyOrganization])
async def get_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Organizations the current user is an active member of."""
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.user_id == user.id,
            OrganizationMember.status == MembershipStatus.ACTIVE,
        )
    )
    return [
        MyOrganization(
            organization=OrganizationPublic.model_validate(member.organization),
            role=member.role,
            accepted_at=member.accepted_at,
        )
        for member in result.scalars().all()
        if member.organization.is_active
    ]


@router.post("/switch", response_model=dict)
async def switch_organization(
    switch_data: SwitchOrganizationRequest,
    user: Annotated[User, Depends(get_current_user)],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remember the organization the console should open next time."""
    resolution = await resolver.resolve(user.id, switch_data.organization_id)
    if resolution.role is Role.NONE and not resolution.is_system_admin:
        if resolution.error:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not verify membership",
                headers={"Retry-After": "1"},
            )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization"
        )

    user.current_organization_id = switch_data.organization_id
    await db.commit()
    await db.refresh(user)

    return {
        "message": "Organization switched successfully",
        "current_organization_id": user.current_organization_id,
        "role": resolution.role.value,
    }


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.VIEW_ANALYTICS))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get organization by ID (members only)."""
    organization = await get_organization_by_id(access.organization_id, db)
    return _organization_response(organization)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    update_data: OrganizationUpdate,
    request: Request,
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_ORGANIZATION, Module.SETTINGS))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization settings. Slug and plan cannot be changed here."""
    organization = await get_organization_by_id(access.organization_id, db)
    update_dict = update_data.model_dump(exclude_unset=True)
    for field, value in update_dict.items():
        setattr(organization, field, value)

    await db.commit()
    await db.refresh(organization)

    await create_audit_log(
        db, user_id=access.user.id, action="update", resource_type="organization",
        resource_id=organization.id, organization_id=organization.id,
        details=update_data.model_dump(mode="json", exclude_unset=True), request=request,
    )
    return _organization_response(organization)


@router.put("/{organization_id}/plan", response_model=OrganizationResponse)
async def update_organization_plan(
    plan_data: OrganizationPlanUpdate,
    request: Request,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    admin: Annotated[User, Depends(get_current_admin_user)],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Set plan tier and feature overrides (system admin only)."""
    organization.plan_type = plan_data.plan_type.value
    organization.features_config = plan_data.features_config
    await db.commit()
    await db.refresh(organization)

    # Cached resolutions carry the old plan
    resolver.invalidate_organization(organization.id)

    await create_audit_log(
        db, user_id=admin.id, action="update_plan", resource_type="organization",
        resource_id=organization.id, organization_id=organization.id,
        details=plan_data.model_dump(mode="json"), request=request,
    )
    return _organization_response(organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization_id: str,
    admin: Annotated[User, Depends(get_current_admin_user)],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete an organization (system admin only)."""
    organization = await get_organization_by_id(organization_id, db)
    await db.delete(organization)
    await db.commit()
    resolver.invalidate_organization(organization_id)
    log.info("Organization %s deleted by %s", organization_id, admin.id)


# Membership endpoints
@router.get("/{organization_id}/members", response_model=list[MemberResponse])
async def list_members(
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_USERS, Module.MEMBERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_cancelled: bool = False,
):
    """List organization members and pending invitations."""
    stmt = select(OrganizationMember).where(OrganizationMember.organization_id == access.organization_id)
    if not include_cancelled:
        stmt = stmt.where(OrganizationMember.status != MembershipStatus.CANCELLED)
    result = await db.execute(stmt.order_by(OrganizationMember.created_at))
    return result.scalars().all()


@router.post("/{organization_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def invite_member(
    invite: MemberInvite,
    request: Request,
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.INVITE_USERS, Module.MEMBERS))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Invite an existing user into the organization with a role below the inviter's."""
    _check_can_manage(access, invite.role)

    result = await db.execute(select(User).where(User.id == invite.user_id))
    invitee = result.scalar_one_or_none()
    if invitee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == access.organization_id,
            OrganizationMember.user_id == invite.user_id,
            OrganizationMember.status != MembershipStatus.CANCELLED,
        )
    )
    if result.scalars().first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User is already a member or has a pending invitation"
        )

    member = OrganizationMember(
        organization_id=access.organization_id,
        user_id=invitee.id,
        email=invitee.email,
        role=invite.role.value,
        status=MembershipStatus.INVITED,
        invited_by_id=access.user.id,
        invited_at=datetime.now(timezone.utc),
    )
    db.add(member)
    await db.commit()
    await db.refresh(member)

    await create_audit_log(
        db, user_id=access.user.id, action="invite", resource_type="membership",
        resource_id=member.id, organization_id=access.organization_id,
        details={"user_id": invitee.id, "role": invite.role.value}, request=request,
    )
    return member


@router.post("/{organization_id}/members/accept", response_model=MemberResponse)
async def accept_invitation(
    organization_id: Annotated[str, Depends(get_organization_id)],
    request: Request,
    user: Annotated[User, Depends(get_current_user)],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Accept the caller's pending invitation."""
    member = await get_membership(db, organization_id, user.id, MembershipStatus.INVITED)
    member.status = MembershipStatus.ACTIVE
    member.accepted_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(member)

    resolver.invalidate(user.id, organization_id)

    await create_audit_log(
        db, user_id=user.id, action="accept_invitation", resource_type="membership",
        resource_id=member.id, organization_id=organization_id, request=request,
    )
    return member


@router.patch("/{organization_id}/members/{user_id}", response_model=MemberResponse)
async def update_member_role(
    user_id: str,
    role_update: MemberRoleUpdate,
    request: Request,
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_USERS, Module.MEMBERS))],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a member's role. Both the current and the new role must be below the caller's."""
    if user_id == access.user.id and not access.is_system_admin:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change your own role")

    member = await get_membership(db, access.organization_id, user_id)
    previous = Role.parse(member.role)
    _check_can_manage(access, previous, role_update.role)

    member.role = role_update.role.value
    await db.commit()
    await db.refresh(member)

    resolver.invalidate(user_id, access.organization_id)

    await create_audit_log(
        db, user_id=access.user.id, action="update_role", resource_type="membership",
        resource_id=member.id, organization_id=access.organization_id,
        details={"user_id": user_id, "from": previous.value, "to": role_update.role.value}, request=request,
    )
    return member


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    user_id: str,
    request: Request,
    access: Annotated[OrganizationAccess, Depends(require_access(Permission.MANAGE_USERS, Module.MEMBERS))],
    resolver: Annotated[RoleResolver, Depends(get_role_resolver)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a member; the row is kept with status cancelled."""
    member = await get_membership(db, access.organization_id, user_id)
    _check_can_manage(access, Role.parse(member.role))

    member.status = MembershipStatus.CANCELLED
    await db.commit()

    resolver.invalidate(user_id, access.organization_id)

    await create_audit_log(
        db, user_id=access.user.id, action="remove", resource_type="membership",
        resource_id=member.id, organization_id=access.organization_id,
        details={"user_id": user_id}, request=request,
    )
