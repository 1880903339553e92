"""Who may act for which approval role.

Two sources of authority:
  - UserApprover rows register a user against an ApprovalRole code, scoped
    to categories ("modules") and an optional amount ceiling.
  - UserDelegation rows let a delegate act on steps that allow delegation,
    using the delegator's registrations, for a bounded date window.
"""
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidInputError, NotFoundError
from app.models.approval_matrix import ApprovalRole, UserApprover, UserDelegation
from app.models.user import User
from app.services import audit as audit_svc
from app.services.amounts import to_amount

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _get_active_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active or user.deleted_at is not None:
        raise NotFoundError(f"User {user_id} not found.")
    return user


# ─── User approver registrations ───

def list_user_approvers(
    db: Session,
    user_id: uuid.UUID | None = None,
    approver_role: str | None = None,
    include_inactive: bool = False,
) -> list[UserApprover]:
    stmt = select(UserApprover)
    if user_id:
        stmt = stmt.where(UserApprover.user_id == user_id)
    if approver_role:
        stmt = stmt.where(UserApprover.approver_role == approver_role)
    if not include_inactive:
        stmt = stmt.where(UserApprover.is_active.is_(True))
    stmt = stmt.order_by(UserApprover.approver_role, UserApprover.created_at)
    return list(db.execute(stmt).scalars().all())


def assign_user_approver(
    db: Session,
    user_id: uuid.UUID,
    approver_role: str,
    modules: list[str] | None = None,
    max_approval_amount: Decimal | None = None,
    actor_id: uuid.UUID | None = None,
) -> UserApprover:
    """Register a user for a role code. Re-assigning updates the existing registration."""
    _get_active_user(db, user_id)
    role = db.execute(
        select(ApprovalRole).where(ApprovalRole.code == approver_role)
    ).scalars().first()
    if role is None:
        raise NotFoundError(f"Approval role '{approver_role}' not found.")
    if not role.is_active:
        raise InvalidInputError(f"Approval role '{approver_role}' is inactive.")

    ceiling = to_amount(max_approval_amount, "max_approval_amount", allow_none=True)

    registration = db.execute(
        select(UserApprover).where(
            UserApprover.user_id == user_id,
            UserApprover.approver_role == approver_role,
        )
    ).scalars().first()
    before = registration.to_dict() if registration else None

    if registration is None:
        registration = UserApprover(user_id=user_id, approver_role=approver_role)
        db.add(registration)
    registration.modules = sorted(set(modules or []))
    registration.max_approval_amount = ceiling
    registration.is_active = True
    registration.assigned_by = actor_id
    db.flush()

    audit_svc.log(
        db=db,
        action="user_approver_assigned",
        entity_type="user_approvers",
        entity_id=registration.id,
        actor_id=actor_id,
        before=before,
        after=registration.to_dict(),
    )
    db.commit()
    logger.info("User %s registered as approver for %s", user_id, approver_role)
    return registration


def deactivate_user_approver(
    db: Session,
    registration_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> UserApprover:
    registration = db.get(UserApprover, registration_id)
    if registration is None:
        raise NotFoundError(f"User approver registration {registration_id} not found.")

    before = registration.to_dict()
    registration.is_active = False
    db.flush()

    audit_svc.log(
        db=db,
        action="user_approver_deactivated",
        entity_type="user_approvers",
        entity_id=registration.id,
        actor_id=actor_id,
        before=before,
        after=registration.to_dict(),
    )
    db.commit()
    return registration


def registrations_for(
    db: Session,
    user_ids: list[uuid.UUID],
    role_code: str,
) -> list[UserApprover]:
    """Active registrations of any of ``user_ids`` for ``role_code``."""
    if not user_ids:
        return []
    stmt = select(UserApprover).where(
        UserApprover.user_id.in_(user_ids),
        UserApprover.approver_role == role_code,
        UserApprover.is_active.is_(True),
    )
    return list(db.execute(stmt).scalars().all())


def registration_covers(registration: UserApprover, category: str, amount: Decimal) -> bool:
    if registration.modules and category not in registration.modules:
        return False
    if registration.max_approval_amount is not None and amount > registration.max_approval_amount:
        return False
    return True


# ─── Delegations ───

def set_delegation(
    db: Session,
    delegator_id: uuid.UUID,
    delegate_id: uuid.UUID,
    valid_from: date,
    valid_until: date | None = None,
    actor_id: uuid.UUID | None = None,
) -> UserDelegation:
    """Replace the delegator's active delegation with a new one."""
    if delegator_id == delegate_id:
        raise InvalidInputError("A user cannot delegate to themselves.")
    if valid_until and valid_until < valid_from:
        raise InvalidInputError("valid_until must not be before valid_from.")
    _get_active_user(db, delegator_id)
    _get_active_user(db, delegate_id)

    existing = db.execute(
        select(UserDelegation).where(
            UserDelegation.delegator_id == delegator_id,
            UserDelegation.is_active.is_(True),
        )
    ).scalars().all()
    for old in existing:
        old.is_active = False

    delegation = UserDelegation(
        delegator_id=delegator_id,
        delegate_id=delegate_id,
        valid_from=valid_from,
        valid_until=valid_until,
        is_active=True,
    )
    db.add(delegation)
    db.flush()

    audit_svc.log(
        db=db,
        action="delegation_set",
        entity_type="user_delegations",
        entity_id=delegation.id,
        actor_id=actor_id,
        before={"replaced": [str(d.id) for d in existing]} if existing else None,
        after=delegation.to_dict(),
    )
    db.commit()
    return delegation


def remove_delegation(
    db: Session,
    delegator_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> int:
    """Deactivate the delegator's active delegations. Returns how many were removed."""
    delegations = db.execute(
        select(UserDelegation).where(
            UserDelegation.delegator_id == delegator_id,
            UserDelegation.is_active.is_(True),
        )
    ).scalars().all()
    if not delegations:
        raise NotFoundError("No active delegation found.")

    for d in delegations:
        d.is_active = False
        audit_svc.log(
            db=db,
            action="delegation_removed",
            entity_type="user_delegations",
            entity_id=d.id,
            actor_id=actor_id,
            before={"is_active": True},
            after={"is_active": False},
        )
    db.commit()
    return len(delegations)


def active_delegators(db: Session, delegate_id: uuid.UUID, on: date | None = None) -> list[uuid.UUID]:
    """Users who have delegated their approval authority to ``delegate_id`` today."""
    on = on or _today()
    stmt = select(UserDelegation.delegator_id).where(
        UserDelegation.delegate_id == delegate_id,
        UserDelegation.is_active.is_(True),
        UserDelegation.valid_from <= on,
        or_(UserDelegation.valid_until.is_(None), UserDelegation.valid_until >= on),
    )
    return list(db.execute(stmt).scalars().all())
