"""Pydantic schemas for approval workflow API endpoints."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


# ─── Initiate ───

class WorkflowInitiateRequest(BaseModel):
    reference_id: str = Field(min_length=1, max_length=100)
    reference_code: str = Field(min_length=1, max_length=100)
    category: str = Field(min_length=1, max_length=50)
    amount: Decimal
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    department_id: str | None = None
    override_id: uuid.UUID | None = None
    override_justification: str | None = None


class InitiationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    auto_approved: bool
    reason: str
    workflow_id: uuid.UUID | None
    rule_id: uuid.UUID | None
    action_count: int


# ─── Workflow output ───

class WorkflowActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    role_id: uuid.UUID
    role_code: str
    sequence_order: int
    is_mandatory: bool
    can_delegate: bool
    status: str
    approver_id: uuid.UUID | None
    acted_at: datetime | None
    comments: str | None


class WorkflowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    reference_id: str
    reference_code: str
    category: str
    amount: Decimal
    currency: str
    department_id: str | None
    rule_id: uuid.UUID | None
    rule_version: int | None
    sequential_policy: str
    escalation_hours: int | None
    status: str
    current_level: int
    override_id: uuid.UUID | None
    initiated_by: uuid.UUID | None
    created_at: datetime
    completed_at: datetime | None
    actions: list[WorkflowActionOut] = []


# ─── Decisions ───

class ApproveRequest(BaseModel):
    action_id: uuid.UUID | None = None
    comments: str | None = None


class RejectRequest(BaseModel):
    action_id: uuid.UUID | None = None
    comments: str


class ApprovalResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workflow_id: uuid.UUID
    action_id: uuid.UUID
    completed: bool
    status: str
    next_level: int | None
    dispatch_failures: list[str] = []


class RejectionResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workflow_id: uuid.UUID
    action_id: uuid.UUID
    status: str


class CanApproveOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    can_approve: bool
    action_id: uuid.UUID | None
    reason: str | None
    via_delegation: bool = False


# ─── Approver queue ───

class PendingItemOut(BaseModel):
    workflow_id: uuid.UUID
    action_id: uuid.UUID
    reference_id: str
    reference_code: str
    category: str
    amount: Decimal
    currency: str
    level: int
    total_levels: int
    role_code: str
    aging_days: int
    via_delegation: bool
    created_at: datetime


class PendingListResponse(BaseModel):
    items: list[PendingItemOut]
    total: int
