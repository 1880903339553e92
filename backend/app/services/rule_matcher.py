"""Rule matcher: picks the single applicable approval rule for a document.

Bands are half-open: a rule covers ``min_amount <= amount < max_amount``
(a null max is unbounded). A rule for the document's department beats an
organisation-wide rule (null department). Any remaining tie is broken by
lowest ``min_amount`` then lowest id, and logged as a configuration problem.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ConfigurationAmbiguity
from app.models.approval_matrix import ApprovalRule
from app.services import rule_store
from app.services.amounts import to_amount

logger = logging.getLogger(__name__)


def rule_covers(rule: ApprovalRule, amount: Decimal) -> bool:
    if rule.min_amount is not None and amount < rule.min_amount:
        return False
    if rule.max_amount is not None and amount >= rule.max_amount:
        return False
    return True


def _specificity(rule: ApprovalRule, department_id: str | None) -> int:
    """0 for a department-specific hit, 1 for an organisation-wide rule."""
    if department_id is not None and rule.department_id == department_id:
        return 0
    return 1


def select_rule(
    candidates: list[ApprovalRule],
    amount: Decimal,
    department_id: str | None = None,
) -> ApprovalRule | None:
    """Pure selection over pre-fetched active rules.

    Raises:
        ConfigurationAmbiguity: more than one rule ties on specificity.
            ``exc.rule_ids[0]`` is the deterministic winner.
    """
    eligible = [
        r for r in candidates
        if rule_covers(r, amount) and (r.department_id is None or r.department_id == department_id)
    ]
    if not eligible:
        return None

    ranked = sorted(
        eligible,
        key=lambda r: (_specificity(r, department_id), r.min_amount or Decimal("0"), str(r.id)),
    )
    best = ranked[0]
    tied = [r for r in ranked if _specificity(r, department_id) == _specificity(best, department_id)]
    if len(tied) > 1:
        raise ConfigurationAmbiguity(
            f"{len(tied)} active {best.category} rules cover amount {amount}"
            f" for department {department_id or '-'}",
            rule_ids=[r.id for r in tied],
        )
    return best


def match_rule(
    db: Session,
    category: str,
    amount,
    currency: str | None = None,
    department_id: str | None = None,
) -> ApprovalRule | None:
    """Return the best active rule, or None meaning no approval is required.

    Raises:
        InvalidInputError: amount missing, non-numeric or negative.
    """
    amount = to_amount(amount)
    currency = (currency or settings.APPROVAL_DEFAULT_CURRENCY).upper()
    candidates = rule_store.get_active_rules(db, category, currency=currency)

    try:
        rule = select_rule(candidates, amount, department_id)
    except ConfigurationAmbiguity as exc:
        winner_id = exc.rule_ids[0]
        logger.warning(
            "Ambiguous approval matrix: %s (rules=%s); using %s",
            exc.message, [str(rid) for rid in exc.rule_ids], winner_id,
        )
        rule = next(r for r in candidates if r.id == winner_id)

    if rule is None:
        logger.info(
            "No approval rule for category=%s amount=%s %s department=%s",
            category, amount, currency, department_id,
        )
    return rule


# ─── Simulation ───

@dataclass
class SimulatedStep:
    sequence_order: int
    role_id: uuid.UUID
    role_code: str
    role_name: str
    is_mandatory: bool
    can_delegate: bool


@dataclass
class SimulationResult:
    category: str
    amount: Decimal
    currency: str
    department_id: str | None
    rule_id: uuid.UUID | None = None
    rule_name: str | None = None
    rule_version: int | None = None
    auto_approved: bool = True
    reason: str = "no_matching_rule"
    requires_sequential: bool = True
    escalation_hours: int | None = None
    steps: list[SimulatedStep] = field(default_factory=list)


def simulate_workflow(
    db: Session,
    category: str,
    amount,
    currency: str | None = None,
    department_id: str | None = None,
) -> SimulationResult:
    """Show which rule and approval path a document would get. Writes nothing."""
    amount = to_amount(amount)
    currency = (currency or settings.APPROVAL_DEFAULT_CURRENCY).upper()
    result = SimulationResult(
        category=category, amount=amount, currency=currency, department_id=department_id
    )

    rule = match_rule(db, category, amount, currency=currency, department_id=department_id)
    if rule is None:
        return result

    result.rule_id = rule.id
    result.rule_name = rule.name
    result.rule_version = rule.version
    result.requires_sequential = rule.requires_sequential
    result.escalation_hours = rule.escalation_hours

    if rule.auto_approve_below is not None and amount < rule.auto_approve_below:
        result.reason = "below_auto_approve_threshold"
        return result

    result.steps = [
        SimulatedStep(
            sequence_order=a.sequence_order,
            role_id=a.role_id,
            role_code=a.role.code,
            role_name=a.role.name,
            is_mandatory=a.is_mandatory,
            can_delegate=a.can_delegate,
        )
        for a in rule_store.get_approvers(db, rule.id)
    ]
    if result.steps:
        result.auto_approved = False
        result.reason = "approval_required"
    else:
        result.reason = "rule_has_no_approvers"
    return result
