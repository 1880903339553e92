"""Approval overrides: exception records consulted before normal matching.

An override can bypass specific approval levels of the matched rule or force
approval even when the amount is under the rule's auto-approve threshold.
"""
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidInputError, NotFoundError
from app.models.approval_matrix import CATEGORIES, OVERRIDE_TYPES, ApprovalOverride
from app.services import audit as audit_svc
from app.services.amounts import to_amount
from app.services.rule_store import create_matrix_snapshot

logger = logging.getLogger(__name__)

OVERRIDE_FIELDS = (
    "override_type",
    "name",
    "category",
    "conditions",
    "bypass_levels",
    "force_approval",
    "require_justification",
    "max_amount",
    "valid_from",
    "valid_until",
    "is_active",
)


def _clean(fields: dict[str, Any], current: ApprovalOverride | None = None) -> dict[str, Any]:
    clean = {k: v for k, v in fields.items() if k in OVERRIDE_FIELDS}

    override_type = clean.get("override_type", current.override_type if current else None)
    if override_type not in OVERRIDE_TYPES:
        raise InvalidInputError(
            f"override_type must be one of {', '.join(OVERRIDE_TYPES)}; got {override_type!r}."
        )
    if not clean.get("name", current.name if current else None):
        raise InvalidInputError("Override name is required.")
    if clean.get("category") and clean["category"] not in CATEGORIES:
        raise InvalidInputError(f"Unknown category '{clean['category']}'.")
    if "max_amount" in clean:
        clean["max_amount"] = to_amount(clean["max_amount"], "max_amount", allow_none=True)
    if "bypass_levels" in clean:
        levels = clean["bypass_levels"] or []
        try:
            clean["bypass_levels"] = sorted({int(level) for level in levels})
        except (TypeError, ValueError):
            raise InvalidInputError("bypass_levels must be a list of sequence orders.")

    valid_from = clean.get("valid_from", current.valid_from if current else None)
    valid_until = clean.get("valid_until", current.valid_until if current else None)
    if valid_from and valid_until and valid_until < valid_from:
        raise InvalidInputError("valid_until must not be before valid_from.")
    return clean


def list_overrides(db: Session, include_inactive: bool = True) -> list[ApprovalOverride]:
    stmt = select(ApprovalOverride).order_by(ApprovalOverride.created_at.desc())
    if not include_inactive:
        stmt = stmt.where(ApprovalOverride.is_active.is_(True))
    return list(db.execute(stmt).scalars().all())


def get_override(db: Session, override_id: uuid.UUID) -> ApprovalOverride:
    override = db.get(ApprovalOverride, override_id)
    if override is None:
        raise NotFoundError(f"Approval override {override_id} not found.")
    return override


def create_override(
    db: Session,
    fields: dict[str, Any],
    actor_id: uuid.UUID | None = None,
) -> ApprovalOverride:
    override = ApprovalOverride(**_clean(fields), created_by=actor_id)
    db.add(override)
    db.flush()

    audit_svc.log(
        db=db,
        action="override_created",
        entity_type="approval_overrides",
        entity_id=override.id,
        actor_id=actor_id,
        after=override.to_dict(),
    )
    create_matrix_snapshot(db, f"Added override: {override.name}", changed_by=actor_id)
    db.commit()
    logger.info("Approval override created: %s type=%s", override.id, override.override_type)
    return override


def update_override(
    db: Session,
    override_id: uuid.UUID,
    updates: dict[str, Any],
    actor_id: uuid.UUID | None = None,
) -> ApprovalOverride:
    override = get_override(db, override_id)
    clean = _clean(updates, current=override)
    before = override.to_dict()
    for field, value in clean.items():
        setattr(override, field, value)
    db.flush()

    audit_svc.log(
        db=db,
        action="override_updated",
        entity_type="approval_overrides",
        entity_id=override.id,
        actor_id=actor_id,
        before=before,
        after=override.to_dict(),
    )
    create_matrix_snapshot(db, f"Updated override: {override.name}", changed_by=actor_id)
    db.commit()
    return override


def get_applicable_override(
    db: Session,
    override_id: uuid.UUID,
    category: str,
    amount: Decimal,
    today: date | None = None,
) -> ApprovalOverride:
    """Load an override and check it may be applied to this document.

    Raises:
        NotFoundError: unknown override.
        InvalidInputError: inactive, outside its validity window, wrong
            category or amount above its ceiling.
    """
    override = get_override(db, override_id)
    today = today or datetime.now(timezone.utc).date()

    if not override.is_active:
        raise InvalidInputError(f"Override '{override.name}' is inactive.")
    if override.valid_from and today < override.valid_from:
        raise InvalidInputError(f"Override '{override.name}' is not valid until {override.valid_from}.")
    if override.valid_until and today > override.valid_until:
        raise InvalidInputError(f"Override '{override.name}' expired on {override.valid_until}.")
    if override.category and override.category != category:
        raise InvalidInputError(
            f"Override '{override.name}' applies to {override.category}, not {category}."
        )
    if override.max_amount is not None and amount > override.max_amount:
        raise InvalidInputError(
            f"Amount {amount} exceeds override '{override.name}' ceiling of {override.max_amount}."
        )
    return override
