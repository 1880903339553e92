import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDMixin


class WorkflowStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class SequentialPolicy(str, enum.Enum):
    strict = "strict"        # only the step at current_level may be resolved
    any_order = "any_order"  # any pending step may be resolved


class ApprovalWorkflow(Base, UUIDMixin, TimestampMixin):
    """One approval run for one document. Steps are copied from the rule at creation."""

    __tablename__ = "approval_workflows"
    __table_args__ = (
        # At most one live workflow per document.
        Index(
            "uq_approval_workflows_live_document",
            "reference_id",
            "category",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    reference_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    reference_code: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    department_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rule_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("approval_rules.id", ondelete="SET NULL"), nullable=True, index=True
    )
    rule_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sequential_policy: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SequentialPolicy.strict.value
    )
    escalation_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WorkflowStatus.pending.value, index=True
    )  # pending, approved, rejected
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    override_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("approval_overrides.id"), nullable=True
    )
    override_justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    initiated_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    actions: Mapped[list["WorkflowAction"]] = relationship(
        "WorkflowAction",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowAction.sequence_order",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != WorkflowStatus.pending.value


class WorkflowAction(Base, UUIDMixin, TimestampMixin):
    """One step of a workflow. Resolution (approved/rejected) is one-way."""

    __tablename__ = "approval_workflow_actions"

    workflow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_roles.id"), nullable=False
    )
    role_code: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence_order: Mapped[int] = mapped_column(Integer, nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_delegate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WorkflowStatus.pending.value
    )
    approver_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    acted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    workflow: Mapped["ApprovalWorkflow"] = relationship("ApprovalWorkflow", back_populates="actions")

    @property
    def is_pending(self) -> bool:
        return self.status == WorkflowStatus.pending.value
