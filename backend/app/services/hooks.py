"""Post-completion hooks, keyed by workflow category.

Usage:
    from app.services import hooks

    hooks.register("purchase_order", my_hook)   # at startup
    hooks.dispatch(db, event)                   # by the step advancer

Hooks run after the approval is committed. A failing hook is logged and
recorded in the audit log; it never undoes the approval and never raises
out of ``dispatch``.

``register_default_hooks`` runs at API startup and on Celery worker init.
Any other process that completes workflows (scripts, shells) must call it
itself, or completions there dispatch nothing.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import DownstreamDispatchFailure
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionEvent:
    workflow_id: uuid.UUID
    reference_id: str
    reference_code: str
    category: str
    amount: Decimal
    currency: str


PostCompletionHook = Callable[[CompletionEvent], None]

_registry: dict[str, list[PostCompletionHook]] = {}


def register(category: str, hook: PostCompletionHook) -> None:
    hooks = _registry.setdefault(category, [])
    if hook not in hooks:
        hooks.append(hook)
        logger.debug("Registered completion hook for %s: %s", category, hook.__name__)


def hooks_for(category: str) -> list[PostCompletionHook]:
    return list(_registry.get(category, []))


def clear(category: str | None = None) -> None:
    """Clear hooks for one category, or all of them. Used in tests."""
    if category:
        _registry.pop(category, None)
    else:
        _registry.clear()


# ─── Default hooks ───

def enqueue_purchase_order_delivery(event: CompletionEvent) -> None:
    """Hand the approved PO to the delivery worker. Only the reference id travels."""
    from app.workers.delivery_tasks import deliver_purchase_order

    deliver_purchase_order.delay(event.reference_id)
    logger.info("Queued delivery of purchase order %s", event.reference_code)


def register_default_hooks() -> None:
    register("purchase_order", enqueue_purchase_order_delivery)


# ─── Dispatch ───

def dispatch(db: Session, event: CompletionEvent) -> list[DownstreamDispatchFailure]:
    """Run every hook registered for the event's category.

    Returns the failures (empty when all hooks succeeded).
    """
    failures: list[DownstreamDispatchFailure] = []
    for hook in hooks_for(event.category):
        try:
            hook(event)
        except Exception as exc:
            failure = DownstreamDispatchFailure(
                f"{hook.__name__} failed for {event.category} {event.reference_code}: {exc}",
                hook_name=hook.__name__,
            )
            logger.error("Completion hook failed: %s", failure.message, exc_info=True)
            failures.append(failure)
            _record_failure(db, event, failure)
    return failures


def _record_failure(db: Session, event: CompletionEvent, failure: DownstreamDispatchFailure) -> None:
    try:
        audit_svc.log(
            db=db,
            action="post_completion_hook_failed",
            entity_type=event.category,
            entity_id=event.reference_id,
            after={
                "workflow_id": str(event.workflow_id),
                "hook": failure.hook_name,
                "error": failure.message,
            },
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record hook failure for workflow %s", event.workflow_id)
