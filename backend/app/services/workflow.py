"""Approval workflow lifecycle: instantiate, advance, reject, and read.

All functions accept a sync SQLAlchemy Session, so they are safe to call
from Celery tasks as well as request handlers, and commit on success.

Lifecycle:
    initiate_workflow  -> matched rule's approver steps copied into actions
    approve_step       -> resolves one pending action; completes when none remain
    reject_workflow    -> resolves one action as rejected; terminal for the workflow

A workflow pins its rule id, rule version and a copy of the steps, so later
rule edits never change an in-flight workflow.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.exceptions import (
    ApprovalPermissionError,
    InvalidInputError,
    InvalidStateError,
    NoPendingActionError,
    NotFoundError,
)
from app.db.base import utcnow
from app.models.approval import ApprovalWorkflow, SequentialPolicy, WorkflowAction, WorkflowStatus
from app.models.approval_matrix import ApprovalRule
from app.models.user import User
from app.services import audit as audit_svc
from app.services import authorization, hooks, overrides, rule_matcher, rule_store
from app.services.amounts import to_amount

logger = logging.getLogger(__name__)


# ─── Results ───

@dataclass
class InitiationResult:
    auto_approved: bool
    reason: str
    workflow_id: uuid.UUID | None = None
    rule_id: uuid.UUID | None = None
    action_count: int = 0


@dataclass
class ApprovalResult:
    workflow_id: uuid.UUID
    action_id: uuid.UUID
    completed: bool
    status: str
    next_level: int | None = None
    dispatch_failures: list[str] = field(default_factory=list)


@dataclass
class RejectionResult:
    workflow_id: uuid.UUID
    action_id: uuid.UUID
    status: str = WorkflowStatus.rejected.value


@dataclass
class PendingItem:
    workflow: ApprovalWorkflow
    action: WorkflowAction
    total_levels: int
    aging_days: int
    via_delegation: bool = False


@dataclass
class OverdueWorkflow:
    workflow: ApprovalWorkflow
    waiting_since: datetime
    hours_waiting: float
    escalation_hours: int


# ─── Helpers ───

def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def resolve_policy(rule: ApprovalRule) -> SequentialPolicy:
    configured = (settings.APPROVAL_SEQUENTIAL_POLICY or "rule").lower()
    if configured in (SequentialPolicy.strict.value, SequentialPolicy.any_order.value):
        return SequentialPolicy(configured)
    return SequentialPolicy.strict if rule.requires_sequential else SequentialPolicy.any_order


def _snapshot(workflow: ApprovalWorkflow) -> dict:
    return {
        "status": workflow.status,
        "current_level": workflow.current_level,
        "completed_at": workflow.completed_at,
    }


def _completion_event(workflow: ApprovalWorkflow) -> hooks.CompletionEvent:
    return hooks.CompletionEvent(
        workflow_id=workflow.id,
        reference_id=workflow.reference_id,
        reference_code=workflow.reference_code,
        category=workflow.category,
        amount=workflow.amount,
        currency=workflow.currency,
    )


def _audit_auto_approval(
    db: Session,
    reference_id: str,
    reference_code: str,
    category: str,
    amount: Decimal,
    currency: str,
    reason: str,
    actor_id: uuid.UUID | None,
    rule: ApprovalRule | None = None,
    override_id: uuid.UUID | None = None,
) -> None:
    audit_svc.log(
        db=db,
        action="workflow_auto_approved",
        entity_type=category,
        entity_id=reference_id,
        actor_id=actor_id,
        after={
            "reference_code": reference_code,
            "amount": amount,
            "currency": currency,
            "reason": reason,
            "rule_id": rule.id if rule else None,
            "rule_version": rule.version if rule else None,
            "auto_approve_below": rule.auto_approve_below if rule else None,
            "override_id": override_id,
        },
    )


# ─── Initiate ───

def initiate_workflow(
    db: Session,
    reference_id: str,
    reference_code: str,
    category: str,
    amount,
    currency: str | None = None,
    department_id: str | None = None,
    initiated_by: uuid.UUID | None = None,
    override_id: uuid.UUID | None = None,
    override_justification: str | None = None,
) -> InitiationResult:
    """Match a rule for the document and create its approval workflow.

    Returns ``auto_approved=True`` without creating a workflow when no rule
    matches, when the amount is under the rule's ``auto_approve_below``, or
    when an override bypasses every step. A rule with no approvers produces
    a workflow that is completed immediately.

    Raises:
        InvalidInputError: missing identifiers, bad amount, unusable override
            or missing override justification.
        InvalidStateError: the document already has a pending workflow.
    """
    if not reference_id or not reference_code:
        raise InvalidInputError("reference_id and reference_code are required.")
    if not category:
        raise InvalidInputError("category is required.")
    amount = to_amount(amount)
    currency = (currency or settings.APPROVAL_DEFAULT_CURRENCY).upper()
    reference_id = str(reference_id)

    live = db.execute(
        select(ApprovalWorkflow.id).where(
            ApprovalWorkflow.reference_id == reference_id,
            ApprovalWorkflow.category == category,
            ApprovalWorkflow.status == WorkflowStatus.pending.value,
        )
    ).first()
    if live is not None:
        raise InvalidStateError(
            f"{category} {reference_code} already has a pending approval workflow ({live[0]})."
        )

    override = None
    if override_id is not None:
        override = overrides.get_applicable_override(db, override_id, category, amount)
        if override.require_justification and not (override_justification or "").strip():
            raise InvalidInputError(f"Override '{override.name}' requires a justification.")

    rule = rule_matcher.match_rule(db, category, amount, currency=currency, department_id=department_id)
    if rule is None:
        _audit_auto_approval(
            db, reference_id, reference_code, category, amount, currency,
            reason="no_matching_rule", actor_id=initiated_by,
            override_id=override.id if override else None,
        )
        db.commit()
        logger.info("Auto-approved %s %s: no matching rule", category, reference_code)
        return InitiationResult(auto_approved=True, reason="no_matching_rule")

    forced = override is not None and override.force_approval
    if rule.auto_approve_below is not None and amount < rule.auto_approve_below and not forced:
        _audit_auto_approval(
            db, reference_id, reference_code, category, amount, currency,
            reason="below_auto_approve_threshold", actor_id=initiated_by, rule=rule,
            override_id=override.id if override else None,
        )
        db.commit()
        logger.info(
            "Auto-approved %s %s: %s below threshold %s of rule %s",
            category, reference_code, amount, rule.auto_approve_below, rule.id,
        )
        return InitiationResult(auto_approved=True, reason="below_auto_approve_threshold", rule_id=rule.id)

    templates = rule_store.get_approvers(db, rule.id)
    bypassed = set(override.bypass_levels or []) if override else set()
    steps = [t for t in templates if t.sequence_order not in bypassed]

    if templates and not steps:
        _audit_auto_approval(
            db, reference_id, reference_code, category, amount, currency,
            reason="override", actor_id=initiated_by, rule=rule, override_id=override.id,
        )
        db.commit()
        logger.info("Auto-approved %s %s: override %s bypasses every level", category, reference_code, override.id)
        return InitiationResult(auto_approved=True, reason="override", rule_id=rule.id)

    workflow = ApprovalWorkflow(
        reference_id=reference_id,
        reference_code=reference_code,
        category=category,
        amount=amount,
        currency=currency,
        department_id=department_id,
        rule_id=rule.id,
        rule_version=rule.version,
        sequential_policy=resolve_policy(rule).value,
        escalation_hours=rule.escalation_hours,
        status=WorkflowStatus.pending.value,
        current_level=min((s.sequence_order for s in steps), default=1),
        override_id=override.id if override else None,
        override_justification=override_justification if override else None,
        initiated_by=initiated_by,
    )
    workflow.actions = [
        WorkflowAction(
            role_id=s.role_id,
            role_code=s.role.code,
            sequence_order=s.sequence_order,
            is_mandatory=s.is_mandatory,
            can_delegate=s.can_delegate,
            status=WorkflowStatus.pending.value,
        )
        for s in steps
    ]
    db.add(workflow)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise InvalidStateError(f"{category} {reference_code} already has a pending approval workflow.")

    audit_svc.log(
        db=db,
        action="workflow_initiated",
        entity_type=category,
        entity_id=reference_id,
        actor_id=initiated_by,
        after={
            "workflow_id": workflow.id,
            "reference_code": reference_code,
            "amount": amount,
            "currency": currency,
            "rule_id": rule.id,
            "rule_version": rule.version,
            "sequential_policy": workflow.sequential_policy,
            "approver_count": len(steps),
            "bypassed_levels": sorted(bypassed),
            "override_id": workflow.override_id,
        },
    )

    if not steps:
        # Rule with no approvers: nothing to wait for.
        before = _snapshot(workflow)
        workflow.status = WorkflowStatus.approved.value
        workflow.completed_at = utcnow()
        db.flush()
        audit_svc.log(
            db=db,
            action="workflow_approved",
            entity_type=category,
            entity_id=reference_id,
            actor_id=initiated_by,
            before=before,
            after={**_snapshot(workflow), "workflow_id": workflow.id, "reason": "rule_has_no_approvers"},
        )
        event = _completion_event(workflow)
        db.commit()
        logger.info("Workflow %s for %s %s completed: rule has no approvers", workflow.id, category, reference_code)
        hooks.dispatch(db, event)
        return InitiationResult(
            auto_approved=True,
            reason="rule_has_no_approvers",
            workflow_id=workflow.id,
            rule_id=rule.id,
        )

    db.commit()
    logger.info(
        "Workflow %s initiated for %s %s: rule=%s v%s steps=%d policy=%s",
        workflow.id, category, reference_code, rule.id, rule.version, len(steps), workflow.sequential_policy,
    )
    return InitiationResult(
        auto_approved=False,
        reason="approval_required",
        workflow_id=workflow.id,
        rule_id=rule.id,
        action_count=len(steps),
    )


# ─── Advance ───

def _load_for_update(db: Session, workflow_id: uuid.UUID) -> ApprovalWorkflow:
    workflow = db.execute(
        select(ApprovalWorkflow)
        .where(ApprovalWorkflow.id == workflow_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if workflow is None:
        raise NotFoundError(f"Workflow {workflow_id} not found.")
    if workflow.is_terminal:
        raise InvalidStateError(f"Workflow {workflow_id} is already {workflow.status}.")
    return workflow


def _target_action(workflow: ApprovalWorkflow, action_id: uuid.UUID | None) -> WorkflowAction:
    if action_id is None:
        for action in workflow.actions:
            if action.is_pending and action.sequence_order == workflow.current_level:
                return action
        raise NoPendingActionError(f"No pending action at level {workflow.current_level}.")

    action = next((a for a in workflow.actions if a.id == action_id), None)
    if action is None:
        raise NoPendingActionError(f"Action {action_id} does not belong to workflow {workflow.id}.")
    if not action.is_pending:
        raise NoPendingActionError(f"Action {action_id} is already {action.status}.")
    if (
        workflow.sequential_policy == SequentialPolicy.strict.value
        and action.sequence_order != workflow.current_level
    ):
        raise NoPendingActionError(
            f"Action {action_id} is at level {action.sequence_order}; "
            f"level {workflow.current_level} must be resolved first."
        )
    return action


def _authorize(db: Session, workflow: ApprovalWorkflow, action: WorkflowAction, actor_id: uuid.UUID) -> bool:
    actor = db.get(User, actor_id) if actor_id else None
    result = authorization.authorize_action(db, workflow, action, actor)
    if not result.can_approve:
        raise ApprovalPermissionError(result.reason or "You may not act on this step.")
    return result.via_delegation


def _resolve(
    db: Session,
    action: WorkflowAction,
    status: WorkflowStatus,
    actor_id: uuid.UUID,
    comments: str | None,
    acted_at: datetime,
) -> None:
    """Compare-and-set pending -> status. Fails if another caller got there first."""
    result = db.execute(
        update(WorkflowAction)
        .where(
            WorkflowAction.id == action.id,
            WorkflowAction.status == WorkflowStatus.pending.value,
        )
        .values(status=status.value, approver_id=actor_id, acted_at=acted_at, comments=comments)
    )
    if result.rowcount != 1:
        db.rollback()
        raise NoPendingActionError(f"Action {action.id} was already resolved.")
    db.refresh(action)


def approve_step(
    db: Session,
    workflow_id: uuid.UUID,
    actor_id: uuid.UUID,
    action_id: uuid.UUID | None = None,
    comments: str | None = None,
) -> ApprovalResult:
    """Approve one pending action and advance or complete the workflow.

    Without ``action_id`` the pending action at ``current_level`` is used.
    Post-completion hooks run after the commit; their failures are reported
    in ``dispatch_failures`` and never undo the approval.

    Raises:
        NotFoundError: unknown workflow.
        InvalidStateError: workflow already approved or rejected.
        NoPendingActionError: no matching pending action (resolved, wrong
            level under the strict policy, or not on this workflow).
        ApprovalPermissionError: actor may not act on the step.
    """
    workflow = _load_for_update(db, workflow_id)
    action = _target_action(workflow, action_id)
    via_delegation = _authorize(db, workflow, action, actor_id)

    before = _snapshot(workflow)
    now = utcnow()
    _resolve(db, action, WorkflowStatus.approved, actor_id, comments, now)

    remaining = [a.sequence_order for a in workflow.actions if a.is_pending]
    completed = not remaining
    if completed:
        workflow.status = WorkflowStatus.approved.value
        workflow.completed_at = now
    else:
        workflow.current_level = min(remaining)
    db.flush()

    audit_svc.log(
        db=db,
        action="workflow_step_approved",
        entity_type=workflow.category,
        entity_id=workflow.reference_id,
        actor_id=actor_id,
        before=before,
        after={
            **_snapshot(workflow),
            "workflow_id": workflow.id,
            "action_id": action.id,
            "level": action.sequence_order,
            "role_code": action.role_code,
            "via_delegation": via_delegation,
        },
        notes=comments,
    )
    if completed:
        audit_svc.log(
            db=db,
            action="workflow_approved",
            entity_type=workflow.category,
            entity_id=workflow.reference_id,
            actor_id=actor_id,
            before=before,
            after={**_snapshot(workflow), "workflow_id": workflow.id},
        )

    event = _completion_event(workflow) if completed else None
    db.commit()
    logger.info(
        "Workflow %s level %s approved by %s: %s",
        workflow.id, action.sequence_order, actor_id,
        "completed" if completed else f"advanced to level {workflow.current_level}",
    )

    failures = hooks.dispatch(db, event) if event else []
    return ApprovalResult(
        workflow_id=workflow.id,
        action_id=action.id,
        completed=completed,
        status=workflow.status,
        next_level=None if completed else workflow.current_level,
        dispatch_failures=[f.message for f in failures],
    )


def reject_workflow(
    db: Session,
    workflow_id: uuid.UUID,
    actor_id: uuid.UUID,
    comments: str,
    action_id: uuid.UUID | None = None,
) -> RejectionResult:
    """Reject one pending action; the whole workflow becomes rejected.

    Raises:
        InvalidInputError: comments missing or blank.
        NotFoundError, InvalidStateError, NoPendingActionError,
        ApprovalPermissionError: as for ``approve_step``.
    """
    if not (comments or "").strip():
        raise InvalidInputError("A rejection reason is required.")

    workflow = _load_for_update(db, workflow_id)
    action = _target_action(workflow, action_id)
    via_delegation = _authorize(db, workflow, action, actor_id)

    before = _snapshot(workflow)
    now = utcnow()
    _resolve(db, action, WorkflowStatus.rejected, actor_id, comments.strip(), now)

    workflow.status = WorkflowStatus.rejected.value
    workflow.completed_at = now
    db.flush()

    audit_svc.log(
        db=db,
        action="workflow_rejected",
        entity_type=workflow.category,
        entity_id=workflow.reference_id,
        actor_id=actor_id,
        before=before,
        after={
            **_snapshot(workflow),
            "workflow_id": workflow.id,
            "action_id": action.id,
            "level": action.sequence_order,
            "role_code": action.role_code,
            "via_delegation": via_delegation,
        },
        notes=comments.strip(),
    )
    db.commit()
    logger.info("Workflow %s rejected at level %s by %s", workflow.id, action.sequence_order, actor_id)
    return RejectionResult(workflow_id=workflow.id, action_id=action.id)


# ─── Reads ───

def get_workflow(db: Session, workflow_id: uuid.UUID) -> ApprovalWorkflow:
    workflow = db.get(ApprovalWorkflow, workflow_id)
    if workflow is None:
        raise NotFoundError(f"Workflow {workflow_id} not found.")
    return workflow


def get_workflow_for_document(
    db: Session,
    reference_id: str,
    category: str | None = None,
) -> ApprovalWorkflow:
    """Most recent workflow for a document."""
    stmt = select(ApprovalWorkflow).where(ApprovalWorkflow.reference_id == str(reference_id))
    if category:
        stmt = stmt.where(ApprovalWorkflow.category == category)
    stmt = stmt.order_by(ApprovalWorkflow.created_at.desc()).limit(1)
    workflow = db.execute(stmt).scalars().first()
    if workflow is None:
        raise NotFoundError(f"No approval workflow for document {reference_id}.")
    return workflow


def _pending_workflows(db: Session) -> list[ApprovalWorkflow]:
    stmt = (
        select(ApprovalWorkflow)
        .options(selectinload(ApprovalWorkflow.actions))
        .where(ApprovalWorkflow.status == WorkflowStatus.pending.value)
        .order_by(ApprovalWorkflow.created_at.asc())
    )
    return list(db.execute(stmt).scalars().all())


def list_pending_for_actor(
    db: Session,
    actor_id: uuid.UUID,
    now: datetime | None = None,
) -> list[PendingItem]:
    """The actor's approval queue, oldest first."""
    actor = db.get(User, actor_id)
    if actor is None:
        raise NotFoundError(f"User {actor_id} not found.")
    now = now or utcnow()

    items: list[PendingItem] = []
    for workflow in _pending_workflows(db):
        if workflow.sequential_policy == SequentialPolicy.any_order.value:
            candidates = [a for a in workflow.actions if a.is_pending]
        else:
            candidates = [
                a for a in workflow.actions
                if a.is_pending and a.sequence_order == workflow.current_level
            ]
        for action in candidates:
            result = authorization.authorize_action(db, workflow, action, actor)
            if not result.can_approve:
                continue
            items.append(
                PendingItem(
                    workflow=workflow,
                    action=action,
                    total_levels=len({a.sequence_order for a in workflow.actions}),
                    aging_days=(now - _aware(workflow.created_at)).days,
                    via_delegation=result.via_delegation,
                )
            )
            break
    return items


def find_overdue_workflows(db: Session, now: datetime | None = None) -> list[OverdueWorkflow]:
    """Pending workflows whose current step has waited longer than ``escalation_hours``.

    The wait starts at the latest resolved step, or at creation when no step
    has been acted on yet. Reporting only: nothing is changed.
    """
    now = now or utcnow()
    overdue: list[OverdueWorkflow] = []
    for workflow in _pending_workflows(db):
        if not workflow.escalation_hours:
            continue
        acted = [_aware(a.acted_at) for a in workflow.actions if a.acted_at is not None]
        waiting_since = max(acted) if acted else _aware(workflow.created_at)
        if now - waiting_since > timedelta(hours=workflow.escalation_hours):
            overdue.append(
                OverdueWorkflow(
                    workflow=workflow,
                    waiting_since=waiting_since,
                    hours_waiting=round((now - waiting_since).total_seconds() / 3600, 1),
                    escalation_hours=workflow.escalation_hours,
                )
            )
    return overdue
