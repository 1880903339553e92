"""Pydantic schemas for the approval matrix: roles, rules, approver steps,
overrides, user approvers, delegations, versions and simulation."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ─── Roles ───

class ApprovalRoleIn(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    hierarchy_level: int = 1
    is_active: bool = True
    permissions: dict[str, Any] = Field(default_factory=dict)


class ApprovalRoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    hierarchy_level: int | None = None
    is_active: bool | None = None
    permissions: dict[str, Any] | None = None


class ApprovalRoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    description: str | None
    hierarchy_level: int
    is_active: bool
    permissions: dict[str, Any]
    created_at: datetime
    updated_at: datetime


# ─── Rule approver steps ───

class RuleApproverIn(BaseModel):
    role_id: uuid.UUID
    sequence_order: int = Field(ge=1)
    is_mandatory: bool = True
    can_delegate: bool = False


class RuleApproverOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    rule_id: uuid.UUID
    role_id: uuid.UUID
    sequence_order: int
    is_mandatory: bool
    can_delegate: bool
    role: ApprovalRoleOut | None = None


# ─── Rules ───

class ApprovalRuleIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    department_id: str | None = None
    requires_sequential: bool = True
    auto_approve_below: Decimal | None = None
    escalation_hours: int | None = Field(default=None, ge=0)
    is_active: bool = True
    conditions: dict[str, Any] = Field(default_factory=dict)
    approvers: list[RuleApproverIn] = Field(default_factory=list)


class ApprovalRuleUpdate(BaseModel):
    name: str | None = None
    category: str | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    department_id: str | None = None
    requires_sequential: bool | None = None
    auto_approve_below: Decimal | None = None
    escalation_hours: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    conditions: dict[str, Any] | None = None


class ApprovalRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    category: str
    min_amount: Decimal
    max_amount: Decimal | None
    currency: str
    department_id: str | None
    requires_sequential: bool
    auto_approve_below: Decimal | None
    escalation_hours: int | None
    is_active: bool
    conditions: dict[str, Any]
    version: int
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
    approvers: list[RuleApproverOut] = []


# ─── Overrides ───

class ApprovalOverrideIn(BaseModel):
    override_type: str
    name: str = Field(min_length=1, max_length=255)
    category: str | None = None
    conditions: dict[str, Any] = Field(default_factory=dict)
    bypass_levels: list[int] = Field(default_factory=list)
    force_approval: bool = False
    require_justification: bool = True
    max_amount: Decimal | None = None
    valid_from: date | None = None
    valid_until: date | None = None
    is_active: bool = True


class ApprovalOverrideUpdate(BaseModel):
    override_type: str | None = None
    name: str | None = None
    category: str | None = None
    conditions: dict[str, Any] | None = None
    bypass_levels: list[int] | None = None
    force_approval: bool | None = None
    require_justification: bool | None = None
    max_amount: Decimal | None = None
    valid_from: date | None = None
    valid_until: date | None = None
    is_active: bool | None = None


class ApprovalOverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    override_type: str
    name: str
    category: str | None
    conditions: dict[str, Any]
    bypass_levels: list[int]
    force_approval: bool
    require_justification: bool
    max_amount: Decimal | None
    valid_from: date | None
    valid_until: date | None
    is_active: bool
    created_by: uuid.UUID | None
    created_at: datetime


# ─── User approvers ───

class UserApproverIn(BaseModel):
    user_id: uuid.UUID
    approver_role: str
    modules: list[str] = Field(default_factory=list)
    max_approval_amount: Decimal | None = None


class UserApproverOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    approver_role: str
    modules: list[str]
    max_approval_amount: Decimal | None
    is_active: bool
    assigned_by: uuid.UUID | None
    created_at: datetime


# ─── User Delegation schemas ───

class UserDelegationIn(BaseModel):
    delegate_id: uuid.UUID
    valid_from: date
    valid_until: date | None = None


class UserDelegationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    delegator_id: uuid.UUID
    delegate_id: uuid.UUID
    valid_from: date
    valid_until: date | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ─── Versions / export ───

class MatrixVersionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    version_number: int
    change_summary: str | None
    changed_by: uuid.UUID | None
    created_at: datetime
    snapshot: dict[str, Any]


class MatrixExportOut(BaseModel):
    exported_at: str
    version: str
    erp_compatibility: list[str]
    rules: list[dict[str, Any]]
    roles: list[dict[str, Any]]
    overrides: list[dict[str, Any]]
    approvers: list[dict[str, Any]]


# ─── Match / simulate ───

class DocumentQuery(BaseModel):
    category: str
    amount: Decimal
    currency: str | None = None
    department_id: str | None = None


class SimulatedStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence_order: int
    role_id: uuid.UUID
    role_code: str
    role_name: str
    is_mandatory: bool
    can_delegate: bool


class SimulationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: str
    amount: Decimal
    currency: str
    department_id: str | None
    rule_id: uuid.UUID | None
    rule_name: str | None
    rule_version: int | None
    auto_approved: bool
    reason: str
    requires_sequential: bool
    escalation_hours: int | None
    steps: list[SimulatedStepOut]


class MatchOut(BaseModel):
    rule: ApprovalRuleOut | None
