"""Tests for rule matching: bands, department preference, tie-break, currency."""
import logging
import uuid
from decimal import Decimal

import pytest

from app.core.exceptions import ConfigurationAmbiguity, InvalidInputError
from app.models.approval_matrix import ApprovalRule
from app.services import rule_matcher, rule_store


def _rule(min_amount, max_amount=None, department_id=None, rule_id=None, category="purchase_order"):
    return ApprovalRule(
        id=rule_id or uuid.uuid4(),
        name="r",
        category=category,
        min_amount=Decimal(min_amount),
        max_amount=Decimal(max_amount) if max_amount is not None else None,
        department_id=department_id,
    )


# ─── Pure selection ───────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "amount, expected",
    [
        ("0", "low"),
        ("9999.99", "low"),
        ("10000", "high"),
        ("250000", "high"),
    ],
)
def test_bands_are_half_open(amount, expected):
    low = _rule("0", "10000")
    high = _rule("10000")
    picked = rule_matcher.select_rule([low, high], Decimal(amount))
    assert picked is {"low": low, "high": high}[expected]


def test_amount_outside_every_band_matches_nothing():
    rules = [_rule("100", "1000"), _rule("1000", "5000")]
    assert rule_matcher.select_rule(rules, Decimal("50")) is None
    assert rule_matcher.select_rule(rules, Decimal("5000")) is None


def test_department_rule_beats_organisation_wide_rule():
    org = _rule("0", "10000")
    dept = _rule("0", "10000", department_id="OPS")
    assert rule_matcher.select_rule([org, dept], Decimal("500"), "OPS") is dept
    # Another department's rule is not a candidate at all
    assert rule_matcher.select_rule([org, dept], Decimal("500"), "HR") is org
    assert rule_matcher.select_rule([org, dept], Decimal("500"), None) is org


def test_tie_raises_with_deterministic_winner_first():
    a = _rule("0", "10000", rule_id=uuid.UUID("00000000-0000-0000-0000-00000000000b"))
    b = _rule("500", "10000", rule_id=uuid.UUID("00000000-0000-0000-0000-00000000000a"))
    c = _rule("0", "10000", rule_id=uuid.UUID("00000000-0000-0000-0000-00000000000a"))

    with pytest.raises(ConfigurationAmbiguity) as first:
        rule_matcher.select_rule([a, b, c], Decimal("600"))
    with pytest.raises(ConfigurationAmbiguity) as second:
        rule_matcher.select_rule([b, c, a], Decimal("600"))

    # Lowest min_amount, then lowest id; independent of input order
    assert first.value.rule_ids[0] == c.id
    assert first.value.rule_ids == second.value.rule_ids
    assert set(first.value.rule_ids) == {a.id, b.id, c.id}


# ─── Against the store ───────────────────────────────────────────────────────

def test_zero_amount_matches_rule_starting_at_zero(db_session, make_rule):
    rule = make_rule("purchase_request", "0", "1000")
    assert rule_matcher.match_rule(db_session, "purchase_request", 0) == rule


def test_inactive_and_other_category_rules_are_ignored(db_session, make_rule):
    make_rule("purchase_order", "0", "1000", is_active=False)
    make_rule("contracts", "0", "1000")
    assert rule_matcher.match_rule(db_session, "purchase_order", "10") is None


def test_currency_participates_in_matching(db_session, make_rule):
    aed = make_rule("payments", "0", None, currency="AED")
    usd = make_rule("payments", "0", None, currency="USD")
    assert rule_matcher.match_rule(db_session, "payments", "10", currency="usd") == usd
    assert rule_matcher.match_rule(db_session, "payments", "10", currency="AED") == aed
    assert rule_matcher.match_rule(db_session, "payments", "10", currency="EUR") is None


def test_negative_amount_is_invalid_input(db_session):
    with pytest.raises(InvalidInputError):
        rule_matcher.match_rule(db_session, "purchase_order", "-0.01")


def test_non_numeric_amount_is_invalid_input(db_session):
    with pytest.raises(InvalidInputError):
        rule_matcher.match_rule(db_session, "purchase_order", "lots")


@pytest.mark.parametrize("amount", ["9999.995", "0.001", 9999.995])
def test_sub_cent_amount_is_rejected_not_rounded(db_session, po_matrix, amount):
    with pytest.raises(InvalidInputError):
        rule_matcher.match_rule(db_session, "purchase_order", amount)


def test_trailing_zeros_beyond_cents_are_accepted(db_session, po_matrix):
    assert rule_matcher.match_rule(db_session, "purchase_order", "9999.990") == po_matrix["rule"]


def test_ambiguous_configuration_is_logged_not_raised(db_session, make_rule, caplog):
    first = make_rule("capex", "0", "50000", name="Capex A")
    second = make_rule("capex", "0", "50000", name="Capex B")
    expected = min([first, second], key=lambda r: str(r.id))

    with caplog.at_level(logging.WARNING, logger="app.services.rule_matcher"):
        picked = rule_matcher.match_rule(db_session, "capex", "100")

    assert picked == expected
    assert "Ambiguous approval matrix" in caplog.text
    # Stable across calls
    assert rule_matcher.match_rule(db_session, "capex", "100") == expected


def test_get_active_rules_orders_by_min_amount(db_session, make_rule):
    high = make_rule("contracts", "5000")
    low = make_rule("contracts", "0", "5000")
    assert rule_store.get_active_rules(db_session, "contracts") == [low, high]


# ─── Simulation ───────────────────────────────────────────────────────────────

def test_simulate_reports_path_without_writing(db_session, po_matrix):
    from app.models.approval import ApprovalWorkflow

    result = rule_matcher.simulate_workflow(db_session, "purchase_order", "5000")

    assert result.auto_approved is False
    assert result.reason == "approval_required"
    assert result.rule_id == po_matrix["rule"].id
    assert [(s.sequence_order, s.role_code) for s in result.steps] == [(1, "BUYER_LEAD"), (2, "FIN_MGR")]
    assert db_session.query(ApprovalWorkflow).count() == 0


def test_simulate_below_threshold_and_no_rule(db_session, make_rule):
    make_rule("float_cash", "0", "5000", auto_approve_below=Decimal("1000"))

    below = rule_matcher.simulate_workflow(db_session, "float_cash", "999.99")
    assert below.auto_approved is True
    assert below.reason == "below_auto_approve_threshold"

    none = rule_matcher.simulate_workflow(db_session, "rfi", "10")
    assert none.auto_approved is True
    assert none.reason == "no_matching_rule"
    assert none.rule_id is None
