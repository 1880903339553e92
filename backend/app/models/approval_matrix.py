"""Approval matrix models: roles, rules, rule approver steps, overrides,
user approver registrations, delegations and matrix version snapshots."""
import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, CreatedAtMixin, TimestampMixin, UUIDMixin

CATEGORIES = (
    "purchase_request",
    "purchase_order",
    "contracts",
    "capex",
    "payments",
    "float_cash",
)

OVERRIDE_TYPES = (
    "emergency_purchase",
    "single_source_justification",
    "capex_special",
    "float_cash_replenishment",
    "budget_override",
)


class ApprovalRole(Base, UUIDMixin, TimestampMixin):
    """A named approval capability, e.g. FIN_MGR / Finance Manager."""

    __tablename__ = "approval_roles"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hierarchy_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # display ordering only
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    permissions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class ApprovalRule(Base, UUIDMixin, TimestampMixin):
    """Approval policy for one category, amount band, currency and (optionally) department."""

    __tablename__ = "approval_rules"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)  # null = unbounded
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="AED")
    department_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)  # null = all
    requires_sequential: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_approve_below: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    escalation_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    conditions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )

    approvers: Mapped[list["ApprovalRuleApprover"]] = relationship(
        "ApprovalRuleApprover",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="ApprovalRuleApprover.sequence_order",
    )


class ApprovalRuleApprover(Base, UUIDMixin, TimestampMixin):
    """One ordered step template on a rule."""

    __tablename__ = "approval_rule_approvers"
    __table_args__ = (
        UniqueConstraint("rule_id", "sequence_order", name="uq_rule_approver_sequence"),
    )

    rule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_roles.id"), nullable=False
    )
    sequence_order: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_delegate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rule: Mapped["ApprovalRule"] = relationship("ApprovalRule", back_populates="approvers")
    role: Mapped["ApprovalRole"] = relationship("ApprovalRole", lazy="joined")


class ApprovalOverride(Base, UUIDMixin, TimestampMixin):
    """Exception record that bypasses levels of, or forces, the matched rule."""

    __tablename__ = "approval_overrides"

    override_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)  # null = any category
    conditions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    bypass_levels: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    force_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_justification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    valid_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )


class UserApprover(Base, UUIDMixin, TimestampMixin):
    """Registers a user as an approver for an approval role code."""

    __tablename__ = "user_approvers"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    approver_role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # ApprovalRole.code
    modules: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # categories; empty = all
    max_approval_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )


class UserDelegation(Base, UUIDMixin, TimestampMixin):
    """Temporarily delegates approval authority from one user to another."""

    __tablename__ = "user_delegations"

    delegator_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    delegate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ApprovalMatrixVersion(Base, UUIDMixin, CreatedAtMixin):
    """Full snapshot of the matrix taken after every rule change."""

    __tablename__ = "approval_matrix_versions"

    version_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    change_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
