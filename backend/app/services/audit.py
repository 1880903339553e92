"""Audit log helper: append-only writes to approval_audit_logs."""
import json
import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit import ApprovalAuditLog
from app.models.user import User

logger = logging.getLogger(__name__)


def jsonable(values: Any | None) -> Any | None:
    """Round-trip through json so Decimal/UUID/datetime land as plain JSON."""
    if values is None:
        return None
    return json.loads(json.dumps(values, default=str))


def log(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None = None,
    actor_id: uuid.UUID | str | None = None,
    actor_email: str | None = None,
    before: Any | None = None,
    after: Any | None = None,
    notes: str | None = None,
    ip_address: str | None = None,
) -> ApprovalAuditLog:
    """Write a single audit log entry.

    Args:
        db: Sync SQLAlchemy session. The entry is flushed, not committed;
            the caller owns the transaction so the entry lands atomically
            with the mutation it describes.
        action: Short verb, e.g. 'workflow_initiated', 'rule_updated'.
        entity_type: Domain name, e.g. 'approval_rules' or the workflow category.
        entity_id: Key of the affected record (rule id, document reference id, ...).
        actor_id: User who performed the action (None for system actions).
        actor_email: Denormalised email (preserved if user is later deleted).
            Looked up from actor_id when not given.
        before: Dict snapshot of state before the action (JSON-serialisable).
        after: Dict snapshot of state after the action.
        notes: Free-text annotation.
    """
    actor_uuid = uuid.UUID(str(actor_id)) if actor_id else None
    if actor_uuid is not None and actor_email is None:
        actor = db.get(User, actor_uuid)
        actor_email = actor.email if actor is not None else None

    entry = ApprovalAuditLog(
        actor_id=actor_uuid,
        actor_email=actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values=jsonable(before),
        new_values=jsonable(after),
        notes=notes,
        ip_address=ip_address,
    )
    db.add(entry)
    db.flush()  # get id without committing; caller controls the transaction
    logger.debug("Audit: %s %s/%s", action, entity_type, entity_id)
    return entry


def entries_query(
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
):
    """Filtered select, oldest first. Shared by the sync listing and the async API."""
    stmt = select(ApprovalAuditLog)
    if entity_type:
        stmt = stmt.where(ApprovalAuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(ApprovalAuditLog.entity_id == str(entity_id))
    if action:
        stmt = stmt.where(ApprovalAuditLog.action == action)
    if since:
        stmt = stmt.where(ApprovalAuditLog.created_at >= since)
    if until:
        stmt = stmt.where(ApprovalAuditLog.created_at <= until)
    # Chronological, stable within the same timestamp
    return stmt.order_by(ApprovalAuditLog.created_at.asc(), ApprovalAuditLog.id.asc())


def list_entries(
    db: Session,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 500,
) -> list[ApprovalAuditLog]:
    """Chronological listing for display. Oldest first."""
    stmt = entries_query(entity_type, entity_id, action, since, until).limit(limit)
    return list(db.execute(stmt).scalars().all())
