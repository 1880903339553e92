"""Approval workflow API endpoints (JWT required).

  POST /workflows                          start approval for a document
  GET  /workflows/pending                  current user's approval queue
  GET  /workflows/by-document/{ref_id}     latest workflow for a document
  GET  /workflows/{id}
  GET  /workflows/{id}/can-approve
  POST /workflows/{id}/approve
  POST /workflows/{id}/reject

The acting user always comes from the verified token, never from the body.
"""
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_current_user
from app.core.limiter import limiter
from app.db.session import get_sync_session
from app.models.user import User
from app.schemas.workflow import (
    ApprovalResultOut,
    ApproveRequest,
    CanApproveOut,
    InitiationOut,
    PendingItemOut,
    PendingListResponse,
    RejectionResultOut,
    RejectRequest,
    WorkflowInitiateRequest,
    WorkflowOut,
)
from app.services import authorization
from app.services import workflow as workflow_svc

logger = logging.getLogger(__name__)

router = APIRouter()

DbSession = Annotated[Session, Depends(get_sync_session)]
CurrentUser = Annotated[User, Depends(get_current_user)]


@router.post(
    "",
    response_model=InitiationOut,
    status_code=status.HTTP_201_CREATED,
    summary="Start the approval workflow for a document",
)
def initiate(body: WorkflowInitiateRequest, db: DbSession, current_user: CurrentUser):
    result = workflow_svc.initiate_workflow(
        db,
        reference_id=body.reference_id,
        reference_code=body.reference_code,
        category=body.category,
        amount=body.amount,
        currency=body.currency,
        department_id=body.department_id,
        initiated_by=current_user.id,
        override_id=body.override_id,
        override_justification=body.override_justification,
    )
    return InitiationOut.model_validate(result)


@router.get("/pending", response_model=PendingListResponse, summary="My approval queue")
def list_my_pending(db: DbSession, current_user: CurrentUser):
    items = [
        PendingItemOut(
            workflow_id=item.workflow.id,
            action_id=item.action.id,
            reference_id=item.workflow.reference_id,
            reference_code=item.workflow.reference_code,
            category=item.workflow.category,
            amount=item.workflow.amount,
            currency=item.workflow.currency,
            level=item.action.sequence_order,
            total_levels=item.total_levels,
            role_code=item.action.role_code,
            aging_days=item.aging_days,
            via_delegation=item.via_delegation,
            created_at=item.workflow.created_at,
        )
        for item in workflow_svc.list_pending_for_actor(db, current_user.id)
    ]
    return PendingListResponse(items=items, total=len(items))


@router.get(
    "/by-document/{reference_id}",
    response_model=WorkflowOut,
    summary="Latest workflow for a document",
)
def get_for_document(reference_id: str, db: DbSession, current_user: CurrentUser, category: str | None = None):
    return workflow_svc.get_workflow_for_document(db, reference_id, category=category)


@router.get("/{workflow_id}", response_model=WorkflowOut, summary="Workflow detail with steps")
def get_workflow(workflow_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    return workflow_svc.get_workflow(db, workflow_id)


@router.get(
    "/{workflow_id}/can-approve",
    response_model=CanApproveOut,
    summary="Whether the current user may act on the workflow now",
)
def can_approve(workflow_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    return CanApproveOut.model_validate(authorization.can_approve(db, workflow_id, current_user.id))


@router.post("/{workflow_id}/approve", response_model=ApprovalResultOut, summary="Approve a pending step")
@limiter.limit(settings.APPROVAL_DECISION_RATE_LIMIT)
def approve(
    request: Request,
    workflow_id: uuid.UUID,
    body: ApproveRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    result = workflow_svc.approve_step(
        db,
        workflow_id,
        actor_id=current_user.id,
        action_id=body.action_id,
        comments=body.comments,
    )
    return ApprovalResultOut.model_validate(result)


@router.post("/{workflow_id}/reject", response_model=RejectionResultOut, summary="Reject the workflow")
@limiter.limit(settings.APPROVAL_DECISION_RATE_LIMIT)
def reject(
    request: Request,
    workflow_id: uuid.UUID,
    body: RejectRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    result = workflow_svc.reject_workflow(
        db,
        workflow_id,
        actor_id=current_user.id,
        comments=body.comments,
        action_id=body.action_id,
    )
    return RejectionResultOut.model_validate(result)
