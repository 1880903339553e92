"""Tests for the audit service: append and chronological listing."""
import uuid
from datetime import datetime
from decimal import Decimal

from app.services import audit as audit_svc


def _entry(db, action, entity_id, at):
    entry = audit_svc.log(db, action, "purchase_order", entity_id=entity_id)
    entry.created_at = at
    db.flush()
    return entry


def test_log_stores_plain_json(db_session, make_user):
    actor = make_user(email="lead@example.com")
    rule_id = uuid.uuid4()

    entry = audit_svc.log(
        db_session,
        "rule_updated",
        "approval_rules",
        entity_id=rule_id,
        actor_id=actor.id,
        before={"max_amount": Decimal("10000.00")},
        after={"max_amount": Decimal("20000.00"), "rule_id": rule_id},
    )

    assert entry.entity_id == str(rule_id)
    assert entry.actor_email == "lead@example.com"
    assert entry.old_values == {"max_amount": "10000.00"}
    assert entry.new_values == {"max_amount": "20000.00", "rule_id": str(rule_id)}


def test_jsonable_passes_none_through():
    assert audit_svc.jsonable(None) is None


def test_list_entries_is_chronological_and_filtered(db_session):
    _entry(db_session, "workflow_step_approved", "PO-1", datetime(2026, 9, 1, 10, 0))
    _entry(db_session, "workflow_initiated", "PO-1", datetime(2026, 9, 1, 8, 0))
    _entry(db_session, "workflow_initiated", "PO-2", datetime(2026, 9, 2, 8, 0))

    assert [e.action for e in audit_svc.list_entries(db_session, entity_id="PO-1")] == [
        "workflow_initiated",
        "workflow_step_approved",
    ]
    assert [e.entity_id for e in audit_svc.list_entries(db_session, action="workflow_initiated")] == [
        "PO-1",
        "PO-2",
    ]

    since = audit_svc.list_entries(db_session, since=datetime(2026, 9, 1, 9, 0))
    assert [e.entity_id for e in since] == ["PO-1", "PO-2"]

    until = audit_svc.list_entries(db_session, until=datetime(2026, 9, 1, 9, 0))
    assert [e.action for e in until] == ["workflow_initiated"]

    assert len(audit_svc.list_entries(db_session, limit=2)) == 2
