"""Tests for the rule store: roles, rules, approver steps, snapshots, export."""
import pytest
from sqlalchemy import func, select

from app.core.exceptions import InvalidInputError, InvalidStateError, NotFoundError
from app.models.approval_matrix import ApprovalMatrixVersion, ApprovalRule
from app.models.audit import ApprovalAuditLog
from app.services import rule_store
from app.services import workflow as workflow_svc


def _versions(db):
    return db.execute(select(func.count(ApprovalMatrixVersion.id))).scalar()


def _audit(db, action):
    return db.execute(
        select(ApprovalAuditLog).where(ApprovalAuditLog.action == action)
    ).scalars().all()


# ─── Roles ────────────────────────────────────────────────────────────────────

def test_role_code_is_unique_and_immutable(db_session, make_role, admin):
    role = make_role("FIN_MGR", "Finance Manager", 2)

    with pytest.raises(InvalidInputError):
        make_role("FIN_MGR")
    with pytest.raises(InvalidInputError):
        rule_store.update_role(db_session, role.id, {"code": "CFO"}, actor_id=admin.id)

    updated = rule_store.update_role(db_session, role.id, {"name": "Finance Lead"}, actor_id=admin.id)
    assert updated.name == "Finance Lead"
    assert updated.code == "FIN_MGR"
    assert [e.new_values["name"] for e in _audit(db_session, "role_updated")] == ["Finance Lead"]


def test_roles_listed_by_hierarchy(db_session, make_role):
    make_role("CFO", level=4)
    make_role("BUYER_LEAD", level=1)
    assert [r.code for r in rule_store.list_roles(db_session)] == ["BUYER_LEAD", "CFO"]


# ─── Rules ────────────────────────────────────────────────────────────────────

def test_create_rule_audits_and_snapshots(db_session, make_role, make_rule, admin):
    role = make_role("FIN_MGR")
    rule = make_rule("payments", "0", "50000", roles=[role], currency="usd")

    assert rule.version == 1
    assert rule.currency == "USD"
    assert rule.created_by == admin.id
    assert [a.role.code for a in rule_store.get_approvers(db_session, rule.id)] == ["FIN_MGR"]

    created = _audit(db_session, "rule_created")
    assert len(created) == 1
    assert created[0].entity_id == str(rule.id)
    assert created[0].new_values["approvers"][0]["sequence_order"] == 1
    assert created[0].actor_email == "admin@example.com"

    latest = rule_store.list_matrix_versions(db_session)[0]
    assert latest.version_number == 1
    assert latest.change_summary == f"Added rule: {rule.name}"
    assert latest.snapshot["rules"][0]["id"] == str(rule.id)


def test_currency_defaults_from_settings(db_session, make_rule):
    assert make_rule("capex").currency == "AED"


@pytest.mark.parametrize(
    "fields",
    [
        {"category": "travel", "name": "x"},
        {"category": "capex", "name": ""},
        {"category": "capex", "name": "x", "min_amount": 100, "max_amount": 100},
        {"category": "capex", "name": "x", "min_amount": -1},
        {"category": "capex", "name": "x", "escalation_hours": -2},
    ],
)
def test_invalid_rule_is_rejected(db_session, admin, fields):
    with pytest.raises(InvalidInputError):
        rule_store.create_rule(db_session, fields, actor_id=admin.id)


def test_update_bumps_version(db_session, make_rule, admin):
    rule = make_rule("capex", "0", "1000")
    before = _versions(db_session)

    updated = rule_store.update_rule(db_session, rule.id, {"max_amount": "2000"}, actor_id=admin.id)

    assert updated.version == 2
    assert _versions(db_session) == before + 1
    entry = _audit(db_session, "rule_updated")[0]
    assert entry.old_values["max_amount"] == "1000.00"
    assert entry.new_values["max_amount"] == "2000.00"


def test_update_is_validated_against_current_values(db_session, make_rule, admin):
    rule = make_rule("capex", "500", "1000")
    with pytest.raises(InvalidInputError):
        rule_store.update_rule(db_session, rule.id, {"max_amount": "400"}, actor_id=admin.id)


def test_save_rule_creates_then_updates(db_session, admin):
    rule = rule_store.save_rule(db_session, {"name": "Capex", "category": "capex"}, actor_id=admin.id)
    again = rule_store.save_rule(db_session, {"name": "Capex all"}, rule_id=rule.id, actor_id=admin.id)
    assert again.id == rule.id
    assert again.version == 2


def test_list_rules_hides_inactive_by_default(db_session, make_rule):
    make_rule("capex", "0", "100")
    make_rule("capex", "100", None, is_active=False)
    assert len(rule_store.list_rules(db_session, category="capex")) == 1
    assert len(rule_store.list_rules(db_session, category="capex", include_inactive=True)) == 2


def test_unknown_rule_is_not_found(db_session):
    import uuid

    with pytest.raises(NotFoundError):
        rule_store.get_rule(db_session, uuid.uuid4())


# ─── Deletion ─────────────────────────────────────────────────────────────────

def test_delete_refused_while_workflows_pending(db_session, po_matrix, admin):
    rule_id = po_matrix["rule"].id
    started = workflow_svc.initiate_workflow(
        db_session, reference_id="PO-1", reference_code="PO-1", category="purchase_order", amount="10"
    )

    with pytest.raises(InvalidStateError):
        rule_store.delete_rule(db_session, rule_id, actor_id=admin.id)

    workflow_svc.approve_step(db_session, started.workflow_id, admin.id)
    workflow_svc.approve_step(db_session, started.workflow_id, admin.id)
    rule_store.delete_rule(db_session, rule_id, actor_id=admin.id)

    assert db_session.get(ApprovalRule, rule_id) is None
    deleted = _audit(db_session, "rule_deleted")[0]
    assert len(deleted.old_values["approvers"]) == 2
    # Finished workflows keep their copied history
    workflow = workflow_svc.get_workflow(db_session, started.workflow_id)
    assert workflow.status == "approved"
    assert len(workflow.actions) == 2


# ─── Approver steps ───────────────────────────────────────────────────────────

def test_approver_steps_are_unique_per_sequence(db_session, po_matrix, make_role, admin):
    rule = po_matrix["rule"]
    cfo = make_role("CFO")

    with pytest.raises(InvalidInputError):
        rule_store.add_rule_approver(db_session, rule.id, {"role_id": cfo.id, "sequence_order": 2})
    with pytest.raises(InvalidInputError):
        rule_store.add_rule_approver(db_session, rule.id, {"role_id": cfo.id, "sequence_order": 0})
    with pytest.raises(InvalidInputError):
        rule_store.add_rule_approver(db_session, rule.id, {"sequence_order": 3})

    row = rule_store.add_rule_approver(
        db_session, rule.id, {"role_id": cfo.id, "sequence_order": 3, "can_delegate": True}, actor_id=admin.id
    )
    assert row.can_delegate is True
    assert rule.version == 2
    assert [a.sequence_order for a in rule_store.get_approvers(db_session, rule.id)] == [1, 2, 3]


def test_inactive_role_cannot_be_a_step(db_session, make_role, make_rule, admin):
    role = make_role("OLD")
    rule_store.update_role(db_session, role.id, {"is_active": False}, actor_id=admin.id)
    rule = make_rule("capex")
    with pytest.raises(InvalidInputError):
        rule_store.add_rule_approver(db_session, rule.id, {"role_id": role.id, "sequence_order": 1})


def test_remove_approver_step(db_session, po_matrix, admin):
    rule = po_matrix["rule"]
    first = rule_store.get_approvers(db_session, rule.id)[0]

    rule_store.remove_rule_approver(db_session, rule.id, first.id, actor_id=admin.id)

    assert [a.role.code for a in rule_store.get_approvers(db_session, rule.id)] == ["FIN_MGR"]
    assert rule.version == 2
    assert _audit(db_session, "rule_approver_removed")[0].old_values["sequence_order"] == 1

    with pytest.raises(NotFoundError):
        rule_store.remove_rule_approver(db_session, rule.id, first.id, actor_id=admin.id)


# ─── Snapshots / export ───────────────────────────────────────────────────────

def test_every_rule_change_takes_a_snapshot(db_session, po_matrix, admin):
    versions = [v.version_number for v in rule_store.list_matrix_versions(db_session)]
    assert versions == [1]

    rule_store.update_rule(db_session, po_matrix["rule"].id, {"escalation_hours": 12}, actor_id=admin.id)
    versions = rule_store.list_matrix_versions(db_session)
    assert [v.version_number for v in versions] == [2, 1]
    assert versions[0].snapshot["rules"][0]["escalation_hours"] == 12
    assert versions[1].snapshot["rules"][0]["escalation_hours"] is None


def test_export_contains_the_whole_matrix(db_session, po_matrix):
    exported = rule_store.export_matrix(db_session)

    assert exported["version"] == "1.0"
    assert "SAP" in exported["erp_compatibility"]
    assert [r["id"] for r in exported["rules"]] == [str(po_matrix["rule"].id)]
    assert {r["code"] for r in exported["roles"]} == {"BUYER_LEAD", "FIN_MGR"}
    assert len(exported["approvers"]) == 2
    assert exported["overrides"] == []
