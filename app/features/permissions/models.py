"""
Custom role and audit log models.

A custom role belongs to exactly one organization, names the system role it
inherits from and stores only the keys it overrides. Expansion against the
base role happens at resolution time, never at write time.
"""
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, Text, Boolean, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class CustomRole(Base, TimestampMixin):
    """
    Organization-scoped role inheriting from a system role with sparse overrides.

    Users reference it through ``users.role == "custom:<id>"`` together with
    ``users.custom_role_id``; the latter carries the foreign key that blocks
    deletion while the role is assigned.
    """
    __tablename__ = "custom_roles"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_custom_roles_organization_name"),
    )

    # Integer key so the wire reference stays "custom:<numeric id>"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # SystemRole value
    based_on_role: Mapped[str] = mapped_column(String(20), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Sparse override map: {"page.publish": false, ...}
    permissions: Mapped[Dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)

    # No foreign key: users.custom_role_id already points the other way
    created_by_id: Mapped[str | None] = mapped_column(String(26), nullable=True)

    def __repr__(self) -> str:
        return f"<CustomRole(id={self.id}, name={self.name!r}, org_id={self.organization_id}, base={self.based_on_role})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit log for role lifecycle and assignment changes.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Context
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
