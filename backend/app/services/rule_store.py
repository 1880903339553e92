"""Rule store: approval roles, rules, their ordered approver steps, and
matrix version snapshots.

Every mutation writes an audit entry in the same transaction. Rule and
rule-approver mutations also bump ``ApprovalRule.version`` and take a full
matrix snapshot so any past configuration can be inspected or exported.

All functions accept a sync SQLAlchemy Session and commit on success.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.exceptions import InvalidInputError, InvalidStateError, NotFoundError
from app.models.approval import ApprovalWorkflow, WorkflowStatus
from app.models.approval_matrix import (
    CATEGORIES,
    ApprovalMatrixVersion,
    ApprovalOverride,
    ApprovalRole,
    ApprovalRule,
    ApprovalRuleApprover,
)
from app.services import audit as audit_svc
from app.services.amounts import to_amount

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "name",
    "category",
    "min_amount",
    "max_amount",
    "currency",
    "department_id",
    "requires_sequential",
    "auto_approve_below",
    "escalation_hours",
    "is_active",
    "conditions",
)

ROLE_FIELDS = ("code", "name", "description", "hierarchy_level", "is_active", "permissions")


# ─── Roles ───

def list_roles(db: Session, include_inactive: bool = True) -> list[ApprovalRole]:
    stmt = select(ApprovalRole).order_by(ApprovalRole.hierarchy_level, ApprovalRole.code)
    if not include_inactive:
        stmt = stmt.where(ApprovalRole.is_active.is_(True))
    return list(db.execute(stmt).scalars().all())


def get_role(db: Session, role_id: uuid.UUID) -> ApprovalRole:
    role = db.get(ApprovalRole, role_id)
    if role is None:
        raise NotFoundError(f"Approval role {role_id} not found.")
    return role


def create_role(db: Session, fields: dict[str, Any], actor_id: uuid.UUID | None = None) -> ApprovalRole:
    code = (fields.get("code") or "").strip()
    if not code:
        raise InvalidInputError("Role code is required.")
    if not (fields.get("name") or "").strip():
        raise InvalidInputError("Role name is required.")

    existing = db.execute(
        select(ApprovalRole).where(ApprovalRole.code == code)
    ).scalars().first()
    if existing is not None:
        raise InvalidInputError(f"Role code '{code}' already exists.")

    role = ApprovalRole(**{k: v for k, v in fields.items() if k in ROLE_FIELDS and v is not None})
    role.code = code
    db.add(role)
    db.flush()

    audit_svc.log(
        db=db,
        action="role_created",
        entity_type="approval_roles",
        entity_id=role.id,
        actor_id=actor_id,
        after=role.to_dict(),
    )
    db.commit()
    logger.info("Approval role created: %s (%s)", role.code, role.id)
    return role


def update_role(
    db: Session,
    role_id: uuid.UUID,
    updates: dict[str, Any],
    actor_id: uuid.UUID | None = None,
) -> ApprovalRole:
    """Update descriptive fields. The role code is its identity and cannot change."""
    role = get_role(db, role_id)
    if "code" in updates and updates["code"] is not None and updates["code"] != role.code:
        raise InvalidInputError("Role code cannot be changed once created.")

    before = role.to_dict()
    for field, value in updates.items():
        if field in ROLE_FIELDS and field != "code":
            setattr(role, field, value)
    db.flush()

    audit_svc.log(
        db=db,
        action="role_updated",
        entity_type="approval_roles",
        entity_id=role.id,
        actor_id=actor_id,
        before=before,
        after=role.to_dict(),
    )
    db.commit()
    return role


# ─── Rules: reads ───

def get_active_rules(
    db: Session,
    category: str,
    currency: str | None = None,
) -> list[ApprovalRule]:
    """Active rules for a category (optionally one currency), lowest band first."""
    stmt = select(ApprovalRule).where(
        ApprovalRule.category == category,
        ApprovalRule.is_active.is_(True),
    )
    if currency:
        stmt = stmt.where(ApprovalRule.currency == currency.upper())
    stmt = stmt.order_by(ApprovalRule.min_amount.asc(), ApprovalRule.created_at.asc())
    return list(db.execute(stmt).scalars().all())


def get_rule(db: Session, rule_id: uuid.UUID) -> ApprovalRule:
    rule = db.get(ApprovalRule, rule_id)
    if rule is None:
        raise NotFoundError(f"Approval rule {rule_id} not found.")
    return rule


def get_approvers(db: Session, rule_id: uuid.UUID) -> list[ApprovalRuleApprover]:
    """Approver step templates for a rule, ordered by sequence_order."""
    stmt = (
        select(ApprovalRuleApprover)
        .where(ApprovalRuleApprover.rule_id == rule_id)
        .order_by(ApprovalRuleApprover.sequence_order.asc())
    )
    return list(db.execute(stmt).scalars().unique().all())


def list_rules(
    db: Session,
    category: str | None = None,
    include_inactive: bool = False,
) -> list[ApprovalRule]:
    stmt = select(ApprovalRule).options(selectinload(ApprovalRule.approvers))
    if category:
        stmt = stmt.where(ApprovalRule.category == category)
    if not include_inactive:
        stmt = stmt.where(ApprovalRule.is_active.is_(True))
    stmt = stmt.order_by(ApprovalRule.category, ApprovalRule.min_amount)
    return list(db.execute(stmt).scalars().unique().all())


# ─── Rules: writes ───

def _normalise_rule_fields(fields: dict[str, Any], current: ApprovalRule | None = None) -> dict[str, Any]:
    """Validate a (partial) rule payload against the merged result."""
    clean = {k: v for k, v in fields.items() if k in RULE_FIELDS}

    if "min_amount" in clean:
        clean["min_amount"] = to_amount(clean["min_amount"], "min_amount")
    if "max_amount" in clean:
        clean["max_amount"] = to_amount(clean["max_amount"], "max_amount", allow_none=True)
    if "auto_approve_below" in clean:
        clean["auto_approve_below"] = to_amount(
            clean["auto_approve_below"], "auto_approve_below", allow_none=True
        )
    if clean.get("currency"):
        clean["currency"] = clean["currency"].upper()
    else:
        clean.pop("currency", None)
    if "escalation_hours" in clean and clean["escalation_hours"] is not None:
        if int(clean["escalation_hours"]) < 0:
            raise InvalidInputError("escalation_hours cannot be negative.")

    def merged(name):
        if name in clean:
            return clean[name]
        return getattr(current, name) if current is not None else None

    if not merged("category"):
        raise InvalidInputError("Rule category is required.")
    if merged("category") not in CATEGORIES:
        raise InvalidInputError(f"Unknown category '{merged('category')}'.")
    if not merged("name"):
        raise InvalidInputError("Rule name is required.")

    min_amount = merged("min_amount") or 0
    max_amount = merged("max_amount")
    if max_amount is not None and max_amount <= min_amount:
        raise InvalidInputError("max_amount must be greater than min_amount.")

    return clean


def create_rule(
    db: Session,
    fields: dict[str, Any],
    approvers: list[dict[str, Any]] | None = None,
    actor_id: uuid.UUID | None = None,
) -> ApprovalRule:
    """Create a rule (version 1), optionally with its approver steps."""
    clean = _normalise_rule_fields(fields)
    clean.setdefault("min_amount", to_amount(0))
    clean.setdefault("currency", settings.APPROVAL_DEFAULT_CURRENCY.upper())
    rule = ApprovalRule(**clean, version=1, created_by=actor_id)
    db.add(rule)
    db.flush()

    for step in approvers or []:
        _add_approver_row(db, rule, step)
    db.flush()

    audit_svc.log(
        db=db,
        action="rule_created",
        entity_type="approval_rules",
        entity_id=rule.id,
        actor_id=actor_id,
        after={**rule.to_dict(), "approvers": [a.to_dict() for a in get_approvers(db, rule.id)]},
    )
    create_matrix_snapshot(db, f"Added rule: {rule.name}", changed_by=actor_id)
    db.commit()
    logger.info("Approval rule created: %s category=%s id=%s", rule.name, rule.category, rule.id)
    return rule


def update_rule(
    db: Session,
    rule_id: uuid.UUID,
    updates: dict[str, Any],
    actor_id: uuid.UUID | None = None,
) -> ApprovalRule:
    """Apply field updates and bump the rule version.

    In-flight workflows are unaffected: they hold copies of the steps.
    """
    rule = get_rule(db, rule_id)
    clean = _normalise_rule_fields(updates, current=rule)

    before = rule.to_dict()
    for field, value in clean.items():
        setattr(rule, field, value)
    rule.version = (rule.version or 0) + 1
    db.flush()

    audit_svc.log(
        db=db,
        action="rule_updated",
        entity_type="approval_rules",
        entity_id=rule.id,
        actor_id=actor_id,
        before=before,
        after=rule.to_dict(),
    )
    create_matrix_snapshot(db, f"Updated rule: {rule.name}", changed_by=actor_id)
    db.commit()
    logger.info("Approval rule updated: %s now version %s", rule.id, rule.version)
    return rule


def save_rule(
    db: Session,
    fields: dict[str, Any],
    rule_id: uuid.UUID | None = None,
    approvers: list[dict[str, Any]] | None = None,
    actor_id: uuid.UUID | None = None,
) -> ApprovalRule:
    """Create when ``rule_id`` is None, otherwise update (incrementing version)."""
    if rule_id is None:
        return create_rule(db, fields, approvers=approvers, actor_id=actor_id)
    return update_rule(db, rule_id, fields, actor_id=actor_id)


def count_live_workflows(db: Session, rule_id: uuid.UUID) -> int:
    return db.execute(
        select(func.count(ApprovalWorkflow.id)).where(
            ApprovalWorkflow.rule_id == rule_id,
            ApprovalWorkflow.status == WorkflowStatus.pending.value,
        )
    ).scalar() or 0


def delete_rule(db: Session, rule_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> None:
    """Hard-delete a rule. Refused while any pending workflow was started from it."""
    rule = get_rule(db, rule_id)
    live = count_live_workflows(db, rule_id)
    if live:
        raise InvalidStateError(
            f"Rule '{rule.name}' has {live} pending workflow(s); deactivate it instead "
            "or wait for them to complete."
        )

    before = {**rule.to_dict(), "approvers": [a.to_dict() for a in rule.approvers]}
    name = rule.name
    db.delete(rule)
    db.flush()

    audit_svc.log(
        db=db,
        action="rule_deleted",
        entity_type="approval_rules",
        entity_id=rule_id,
        actor_id=actor_id,
        before=before,
    )
    create_matrix_snapshot(db, f"Deleted rule: {name}", changed_by=actor_id)
    db.commit()
    logger.info("Approval rule deleted: %s (%s)", name, rule_id)


# ─── Rule approver steps ───

def _add_approver_row(db: Session, rule: ApprovalRule, step: dict[str, Any]) -> ApprovalRuleApprover:
    try:
        sequence_order = int(step["sequence_order"])
        role_id = uuid.UUID(str(step["role_id"]))
    except (KeyError, TypeError, ValueError):
        raise InvalidInputError("Each approver needs a role_id and an integer sequence_order.")
    if sequence_order < 1:
        raise InvalidInputError("sequence_order is 1-based.")

    role = get_role(db, role_id)
    if not role.is_active:
        raise InvalidInputError(f"Role '{role.code}' is inactive.")

    taken = db.execute(
        select(ApprovalRuleApprover.id).where(
            ApprovalRuleApprover.rule_id == rule.id,
            ApprovalRuleApprover.sequence_order == sequence_order,
        )
    ).first()
    if taken is not None:
        raise InvalidInputError(f"Rule already has a step at sequence_order {sequence_order}.")

    row = ApprovalRuleApprover(
        rule_id=rule.id,
        role_id=role.id,
        sequence_order=sequence_order,
        is_mandatory=step.get("is_mandatory", True),
        can_delegate=step.get("can_delegate", False),
    )
    rule.approvers.append(row)
    db.flush()
    return row


def add_rule_approver(
    db: Session,
    rule_id: uuid.UUID,
    step: dict[str, Any],
    actor_id: uuid.UUID | None = None,
) -> ApprovalRuleApprover:
    rule = get_rule(db, rule_id)
    row = _add_approver_row(db, rule, step)
    rule.version = (rule.version or 0) + 1
    db.flush()

    audit_svc.log(
        db=db,
        action="rule_approver_added",
        entity_type="approval_rules",
        entity_id=rule.id,
        actor_id=actor_id,
        after={**row.to_dict(), "rule_version": rule.version},
    )
    create_matrix_snapshot(db, f"Added approver step {row.sequence_order} to rule: {rule.name}", changed_by=actor_id)
    db.commit()
    return row


def remove_rule_approver(
    db: Session,
    rule_id: uuid.UUID,
    approver_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> None:
    row = db.get(ApprovalRuleApprover, approver_id)
    if row is None or row.rule_id != rule_id:
        raise NotFoundError(f"Rule approver {approver_id} not found.")
    rule = get_rule(db, rule_id)
    before = row.to_dict()

    rule.approvers.remove(row)
    rule.version = (rule.version or 0) + 1
    db.flush()

    audit_svc.log(
        db=db,
        action="rule_approver_removed",
        entity_type="approval_rules",
        entity_id=rule.id,
        actor_id=actor_id,
        before=before,
        after={"rule_version": rule.version},
    )
    create_matrix_snapshot(
        db, f"Removed approver step {before['sequence_order']} from rule: {rule.name}", changed_by=actor_id
    )
    db.commit()


# ─── Matrix snapshots / export ───

def _matrix_payload(db: Session) -> dict[str, list[dict]]:
    rules = db.execute(select(ApprovalRule).order_by(ApprovalRule.category, ApprovalRule.min_amount)).scalars().all()
    roles = db.execute(select(ApprovalRole).order_by(ApprovalRole.hierarchy_level)).scalars().all()
    overrides = db.execute(select(ApprovalOverride).order_by(ApprovalOverride.created_at)).scalars().all()
    approvers = db.execute(
        select(ApprovalRuleApprover).order_by(ApprovalRuleApprover.rule_id, ApprovalRuleApprover.sequence_order)
    ).scalars().unique().all()
    return {
        "rules": [audit_svc.jsonable(r.to_dict()) for r in rules],
        "roles": [audit_svc.jsonable(r.to_dict()) for r in roles],
        "overrides": [audit_svc.jsonable(o.to_dict()) for o in overrides],
        "approvers": [audit_svc.jsonable(a.to_dict()) for a in approvers],
    }


def create_matrix_snapshot(
    db: Session,
    change_summary: str | None = None,
    changed_by: uuid.UUID | None = None,
) -> ApprovalMatrixVersion:
    """Store the whole matrix as the next version. Flushed, not committed."""
    current = db.execute(select(func.max(ApprovalMatrixVersion.version_number))).scalar() or 0
    version = ApprovalMatrixVersion(
        version_number=current + 1,
        snapshot=_matrix_payload(db),
        change_summary=change_summary,
        changed_by=changed_by,
    )
    db.add(version)
    db.flush()
    logger.debug("Matrix snapshot v%s: %s", version.version_number, change_summary)
    return version


def list_matrix_versions(db: Session, limit: int = 50) -> list[ApprovalMatrixVersion]:
    stmt = (
        select(ApprovalMatrixVersion)
        .order_by(ApprovalMatrixVersion.version_number.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def export_matrix(db: Session) -> dict[str, Any]:
    """Portable JSON export of the full matrix."""
    return {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "version": "1.0",
        "erp_compatibility": ["SAP", "Odoo", "Zoho", "Oracle", "Dynamics"],
        **_matrix_payload(db),
    }
