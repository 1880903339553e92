"""Tests for approval overrides applied at workflow initiation."""
from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import InvalidInputError, NotFoundError
from app.services import approver_registry, overrides
from app.services import workflow as workflow_svc


@pytest.fixture
def make_override(db_session, admin):
    def _make(**fields):
        payload = {
            "override_type": "emergency_purchase",
            "name": "Emergency",
            "category": "purchase_order",
            **fields,
        }
        return overrides.create_override(db_session, payload, actor_id=admin.id)
    return _make


def _initiate(db, override, amount="5000", reference_id="PO-1", justification="Line stopped"):
    return workflow_svc.initiate_workflow(
        db,
        reference_id=reference_id,
        reference_code=reference_id,
        category="purchase_order",
        amount=amount,
        override_id=override.id,
        override_justification=justification,
    )


def test_bypassed_level_is_not_copied(db_session, po_matrix, make_override):
    override = make_override(bypass_levels=["1"])
    assert override.bypass_levels == [1]

    started = _initiate(db_session, override)

    workflow = workflow_svc.get_workflow(db_session, started.workflow_id)
    assert [a.role_code for a in workflow.actions] == ["FIN_MGR"]
    assert workflow.current_level == 2
    assert workflow.override_id == override.id
    assert workflow.override_justification == "Line stopped"

    result = workflow_svc.approve_step(db_session, workflow.id, po_matrix["finance"].id)
    assert result.completed is True


def test_bypassing_every_level_auto_approves(db_session, po_matrix, make_override):
    override = make_override(bypass_levels=[1, 2])
    result = _initiate(db_session, override)
    assert result.auto_approved is True
    assert result.reason == "override"
    assert result.workflow_id is None


def test_justification_required(db_session, po_matrix, make_override):
    override = make_override(bypass_levels=[1])
    with pytest.raises(InvalidInputError):
        _initiate(db_session, override, justification="  ")

    relaxed = make_override(name="Standing", bypass_levels=[1], require_justification=False)
    assert _initiate(db_session, relaxed, justification=None).action_count == 1


def test_force_approval_ignores_auto_approve_threshold(db_session, make_role, make_rule, make_override):
    role = make_role("FIN_MGR")
    make_rule("purchase_order", "0", None, roles=[role], auto_approve_below=Decimal("1000"))

    plain = workflow_svc.initiate_workflow(
        db_session, reference_id="PO-S", reference_code="PO-S", category="purchase_order", amount="10"
    )
    assert plain.auto_approved is True

    forced = _initiate(db_session, make_override(force_approval=True), amount="10")
    assert forced.auto_approved is False
    assert forced.action_count == 1


@pytest.mark.parametrize(
    "fields, amount",
    [
        ({"is_active": False}, "100"),
        ({"category": "contracts"}, "100"),
        ({"max_amount": "500"}, "500.01"),
    ],
)
def test_unusable_override_is_refused(db_session, po_matrix, make_override, fields, amount):
    override = make_override(**fields)
    with pytest.raises(InvalidInputError):
        _initiate(db_session, override, amount=amount)


def test_override_validity_window(db_session, po_matrix, make_override):
    today = approver_registry._today()
    expired = make_override(valid_from=today - timedelta(days=9), valid_until=today - timedelta(days=1))
    future = make_override(name="Next week", valid_from=today + timedelta(days=7))

    with pytest.raises(InvalidInputError):
        overrides.get_applicable_override(db_session, expired.id, "purchase_order", Decimal("1"))
    with pytest.raises(InvalidInputError):
        overrides.get_applicable_override(db_session, future.id, "purchase_order", Decimal("1"))
    assert overrides.get_applicable_override(
        db_session, future.id, "purchase_order", Decimal("1"), today=today + timedelta(days=8)
    ) == future


def test_unknown_override(db_session, po_matrix):
    import uuid

    with pytest.raises(NotFoundError):
        overrides.get_applicable_override(db_session, uuid.uuid4(), "purchase_order", Decimal("1"))


@pytest.mark.parametrize(
    "fields",
    [
        {"override_type": "whim"},
        {"name": ""},
        {"category": "travel"},
        {"bypass_levels": ["first"]},
    ],
)
def test_invalid_override_is_rejected(make_override, fields):
    with pytest.raises(InvalidInputError):
        make_override(**fields)


def test_update_override_is_audited_and_snapshotted(db_session, make_override, admin):
    from app.services import rule_store

    override = make_override()
    updated = overrides.update_override(db_session, override.id, {"is_active": False}, actor_id=admin.id)

    assert updated.is_active is False
    latest = rule_store.list_matrix_versions(db_session)[0]
    assert latest.change_summary == "Updated override: Emergency"
    assert latest.snapshot["overrides"][0]["is_active"] is False
