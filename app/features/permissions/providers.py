"""
Lookups the access-control core consumes from the data layer.

The resolver depends only on the AccessDataProvider protocol; the database
implementation below opens its own session per lookup so a single in-flight
lookup can be shared between requests.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.organizations.models import MembershipStatus, Organization, OrganizationMember
from app.features.permissions.features import parse_features_config
from app.features.permissions.tables import PlanTier, Role
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


class AccessLookupError(Exception):
    """Membership, admin, or organization data could not be fetched."""


@dataclass(frozen=True)
class MembershipRecord:
    role: Role
    status: MembershipStatus


@dataclass(frozen=True)
class OrganizationPlan:
    """Plan tier plus the validated overrides of one organization."""
    organization_id: str
    plan: PlanTier
    module_overrides: Dict[str, bool] = field(default_factory=dict)
    plan_overrides: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, organization: Organization) -> "OrganizationPlan":
        config = parse_features_config(organization.features_config)
        return cls(
            organization_id=organization.id,
            plan=PlanTier.parse(organization.plan_type),
            module_overrides=dict(config.modules),
            plan_overrides=config.plan_overrides(),
        )


class AccessDataProvider(Protocol):
    async def get_membership(self, user_id: str, organization_id: str) -> Optional[MembershipRecord]:
        """Active membership of the user in the organization, if any."""
        ...

    async def is_system_admin(self, user_id: str) -> bool:
        ...

    async def get_organization(self, organization_id: str) -> Optional[OrganizationPlan]:
        ...


class DatabaseAccessProvider:
    """AccessDataProvider backed by the SQLAlchemy models."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_membership(self, user_id: str, organization_id: str) -> Optional[MembershipRecord]:
        stmt = select(OrganizationMember).where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.status == MembershipStatus.ACTIVE,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                member = result.scalars().first()
        except SQLAlchemyError as e:
            raise AccessLookupError(f"membership lookup failed: {e}") from e
        if member is None:
            return None
        return MembershipRecord(role=Role.parse(member.role), status=member.status)

    async def is_system_admin(self, user_id: str) -> bool:
        # Read from the users table only; nothing supplied with the request is consulted
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(User.is_system_admin).where(User.id == user_id, User.is_active == True)  # noqa: E712
                )
                flag = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise AccessLookupError(f"system admin lookup failed: {e}") from e
        return bool(flag)

    async def get_organization(self, organization_id: str) -> Optional[OrganizationPlan]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Organization).where(Organization.id == organization_id)
                )
                organization = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise AccessLookupError(f"organization lookup failed: {e}") from e
        if organization is None or not organization.is_active:
            return None
        return OrganizationPlan.from_row(organization)
