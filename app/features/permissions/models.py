"""
Access request and audit log models.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class AccessRequestType(str, enum.Enum):
    ROLE_UPGRADE = "role_upgrade"
    PERMISSION = "permission"
    MODULE = "module"
    ADMIN_ACCESS = "admin_access"


class AccessRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AccessRequest(Base, TimestampMixin):
    """
    A denied user's request for more access, addressed to organization admins.

    Submitting or approving a request never changes a role by itself; an admin
    still performs the role or plan change separately.
    """
    __tablename__ = "access_requests"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    request_type: Mapped[AccessRequestType] = mapped_column(SQLEnum(AccessRequestType), nullable=False)
    requested_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    requested_permission: Mapped[str | None] = mapped_column(String(50), nullable=True)
    requested_module: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    status: Mapped[AccessRequestStatus] = mapped_column(
        SQLEnum(AccessRequestStatus),
        default=AccessRequestStatus.PENDING,
        nullable=False,
        index=True
    )
    reviewed_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_message: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")  # type: ignore

    def __repr__(self) -> str:
        return f"<AccessRequest(id={self.id}, user_id={self.user_id}, type={self.request_type}, status={self.status})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit trail for role, membership, plan, and access-request changes.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    organization_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
