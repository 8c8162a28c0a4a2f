"""
Organization and membership models.

Organizations carry the plan tier and feature overrides read by the module
gate; memberships carry the role read by the role resolver.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Boolean, Enum as SQLEnum, DateTime, Index, JSON, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Organization(Base, TimestampMixin):
    """
    Tenant of the feedback console.

    `slug` is unique and immutable after creation. `plan_type` is stored as a
    plain string so rows with legacy plan names still load; it is parsed with
    PlanTier.parse when read.
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    billing_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Subscription
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False, default="starter")
    # {"modules": {"sentiment": true}, "maxResponses": 5000, ...}
    features_config: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    members: Mapped[list["OrganizationMember"]] = relationship(
        "OrganizationMember",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r}, plan={self.plan_type})>"


class MembershipStatus(str, enum.Enum):
    """Lifecycle of an organization membership."""
    INVITED = "invited"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class OrganizationMember(Base, TimestampMixin):
    """
    Membership of a user in an organization with a role.

    At most one active row per (user, organization), enforced by a partial
    unique index.
    """
    __tablename__ = "organization_members"
    __table_args__ = (
        Index(
            "uq_organization_members_active",
            "user_id",
            "organization_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    # owner, admin, analyst, viewer, member
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    status: Mapped[MembershipStatus] = mapped_column(
        SQLEnum(MembershipStatus),
        default=MembershipStatus.INVITED,
        nullable=False,
        index=True
    )

    invited_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="members", lazy="selectin"
    )
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")  # type: ignore

    def __repr__(self) -> str:
        return (
            f"<OrganizationMember(user_id={self.user_id}, org_id={self.organization_id}, "
            f"role={self.role}, status={self.status})>"
        )
