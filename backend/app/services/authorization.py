"""Authorization check: may this actor resolve this workflow step?

Authority is always re-derived from persisted data (the actor's global role,
UserApprover registrations and delegations), never from a role the client
claims. Denials carry a reason suitable for display.
"""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.models.approval import ApprovalWorkflow, SequentialPolicy, WorkflowAction
from app.models.user import User
from app.services import approver_registry

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationResult:
    can_approve: bool
    action_id: uuid.UUID | None = None
    reason: str | None = None
    via_delegation: bool = False


def is_elevated(user: User) -> bool:
    return (user.role or "").lower() in settings.elevated_roles


def authorize_action(
    db: Session,
    workflow: ApprovalWorkflow,
    action: WorkflowAction,
    actor: User | None,
) -> AuthorizationResult:
    """Check one specific pending action for one actor."""
    if actor is None or not actor.is_active or actor.deleted_at is not None:
        return AuthorizationResult(False, action.id, "Unknown or inactive user.")
    if is_elevated(actor):
        return AuthorizationResult(True, action.id)

    own = approver_registry.registrations_for(db, [actor.id], action.role_code)
    if any(approver_registry.registration_covers(r, workflow.category, workflow.amount) for r in own):
        return AuthorizationResult(True, action.id)

    if action.can_delegate:
        delegators = approver_registry.active_delegators(db, actor.id)
        delegated = approver_registry.registrations_for(db, delegators, action.role_code)
        if any(approver_registry.registration_covers(r, workflow.category, workflow.amount) for r in delegated):
            return AuthorizationResult(True, action.id, via_delegation=True)

    if own:
        reason = (
            f"Your {action.role_code} approval authority does not cover "
            f"{workflow.category} documents of {workflow.amount} {workflow.currency}."
        )
    else:
        reason = f"This step requires an approver with role {action.role_code}."
    return AuthorizationResult(False, action.id, reason)


def can_approve(db: Session, workflow_id: uuid.UUID, actor_id: uuid.UUID) -> AuthorizationResult:
    """Whether ``actor_id`` may act on the workflow now, and on which action.

    Under the strict policy only the step at ``current_level`` is offered.
    Under any-order, the current step is preferred and any other pending
    step the actor holds authority for is returned instead.

    Raises:
        NotFoundError: unknown workflow.
    """
    workflow = db.get(ApprovalWorkflow, workflow_id)
    if workflow is None:
        raise NotFoundError(f"Workflow {workflow_id} not found.")
    if workflow.is_terminal:
        return AuthorizationResult(False, reason=f"Workflow is already {workflow.status}.")

    pending = [a for a in workflow.actions if a.is_pending]
    current = [a for a in pending if a.sequence_order == workflow.current_level]
    if not current:
        return AuthorizationResult(False, reason="No pending action at the current level.")

    actor = db.get(User, actor_id)
    result = authorize_action(db, workflow, current[0], actor)
    if result.can_approve or workflow.sequential_policy != SequentialPolicy.any_order.value:
        return result

    for action in pending:
        if action.id == current[0].id:
            continue
        other = authorize_action(db, workflow, action, actor)
        if other.can_approve:
            return other
    return result
