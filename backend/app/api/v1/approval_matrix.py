"""Approval matrix and user delegation API endpoints.

Reads are open to any authenticated user; writes require admin or manager.
Every write goes through the rule store services, which audit and snapshot.
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, require_role
from app.db.session import get_sync_session
from app.models.user import User
from app.schemas.approval_matrix import (
    ApprovalOverrideIn,
    ApprovalOverrideOut,
    ApprovalOverrideUpdate,
    ApprovalRoleIn,
    ApprovalRoleOut,
    ApprovalRoleUpdate,
    ApprovalRuleIn,
    ApprovalRuleOut,
    ApprovalRuleUpdate,
    DocumentQuery,
    MatchOut,
    MatrixExportOut,
    MatrixVersionOut,
    RuleApproverIn,
    RuleApproverOut,
    SimulationOut,
    UserApproverIn,
    UserApproverOut,
    UserDelegationIn,
    UserDelegationOut,
)
from app.services import approver_registry, overrides, rule_matcher, rule_store

router = APIRouter()

MATRIX_ADMINS = ("admin", "manager")

DbSession = Annotated[Session, Depends(get_sync_session)]
CurrentUser = Annotated[User, Depends(get_current_user)]
MatrixAdmin = Annotated[User, Depends(require_role(*MATRIX_ADMINS))]


# ─── Roles ───

@router.get("/roles", response_model=list[ApprovalRoleOut], summary="List approval roles")
def list_roles(db: DbSession, current_user: CurrentUser, include_inactive: bool = True):
    return rule_store.list_roles(db, include_inactive=include_inactive)


@router.post(
    "/roles",
    response_model=ApprovalRoleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval role",
)
def create_role(body: ApprovalRoleIn, db: DbSession, current_user: MatrixAdmin):
    return rule_store.create_role(db, body.model_dump(), actor_id=current_user.id)


@router.patch("/roles/{role_id}", response_model=ApprovalRoleOut, summary="Update an approval role")
def update_role(role_id: uuid.UUID, body: ApprovalRoleUpdate, db: DbSession, current_user: MatrixAdmin):
    return rule_store.update_role(db, role_id, body.model_dump(exclude_unset=True), actor_id=current_user.id)


# ─── Rules ───

@router.get("/rules", response_model=list[ApprovalRuleOut], summary="List approval rules")
def list_rules(
    db: DbSession,
    current_user: CurrentUser,
    category: str | None = None,
    include_inactive: bool = False,
):
    return rule_store.list_rules(db, category=category, include_inactive=include_inactive)


@router.get("/rules/{rule_id}", response_model=ApprovalRuleOut, summary="Get an approval rule")
def get_rule(rule_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    return rule_store.get_rule(db, rule_id)


@router.post(
    "/rules",
    response_model=ApprovalRuleOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval rule with its approver steps",
)
def create_rule(body: ApprovalRuleIn, db: DbSession, current_user: MatrixAdmin):
    fields = body.model_dump(exclude={"approvers"})
    approvers = [a.model_dump() for a in body.approvers]
    return rule_store.create_rule(db, fields, approvers=approvers, actor_id=current_user.id)


@router.patch(
    "/rules/{rule_id}",
    response_model=ApprovalRuleOut,
    summary="Update an approval rule (bumps its version)",
)
def update_rule(rule_id: uuid.UUID, body: ApprovalRuleUpdate, db: DbSession, current_user: MatrixAdmin):
    return rule_store.update_rule(db, rule_id, body.model_dump(exclude_unset=True), actor_id=current_user.id)


@router.delete(
    "/rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an approval rule (refused while workflows are pending on it)",
)
def delete_rule(rule_id: uuid.UUID, db: DbSession, current_user: MatrixAdmin):
    rule_store.delete_rule(db, rule_id, actor_id=current_user.id)


@router.post(
    "/rules/{rule_id}/approvers",
    response_model=RuleApproverOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add an approver step to a rule",
)
def add_rule_approver(rule_id: uuid.UUID, body: RuleApproverIn, db: DbSession, current_user: MatrixAdmin):
    return rule_store.add_rule_approver(db, rule_id, body.model_dump(), actor_id=current_user.id)


@router.delete(
    "/rules/{rule_id}/approvers/{approver_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an approver step from a rule",
)
def remove_rule_approver(
    rule_id: uuid.UUID,
    approver_id: uuid.UUID,
    db: DbSession,
    current_user: MatrixAdmin,
):
    rule_store.remove_rule_approver(db, rule_id, approver_id, actor_id=current_user.id)


# ─── Overrides ───

@router.get("/overrides", response_model=list[ApprovalOverrideOut], summary="List approval overrides")
def list_overrides(db: DbSession, current_user: CurrentUser, include_inactive: bool = True):
    return overrides.list_overrides(db, include_inactive=include_inactive)


@router.post(
    "/overrides",
    response_model=ApprovalOverrideOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval override",
)
def create_override(body: ApprovalOverrideIn, db: DbSession, current_user: MatrixAdmin):
    return overrides.create_override(db, body.model_dump(), actor_id=current_user.id)


@router.patch("/overrides/{override_id}", response_model=ApprovalOverrideOut, summary="Update an approval override")
def update_override(
    override_id: uuid.UUID,
    body: ApprovalOverrideUpdate,
    db: DbSession,
    current_user: MatrixAdmin,
):
    return overrides.update_override(db, override_id, body.model_dump(exclude_unset=True), actor_id=current_user.id)


# ─── User approvers ───

@router.get("/user-approvers", response_model=list[UserApproverOut], summary="List user approver registrations")
def list_user_approvers(
    db: DbSession,
    current_user: CurrentUser,
    user_id: uuid.UUID | None = None,
    approver_role: str | None = None,
    include_inactive: bool = False,
):
    return approver_registry.list_user_approvers(
        db, user_id=user_id, approver_role=approver_role, include_inactive=include_inactive
    )


@router.post(
    "/user-approvers",
    response_model=UserApproverOut,
    status_code=status.HTTP_201_CREATED,
    summary="Register a user as approver for a role",
)
def assign_user_approver(body: UserApproverIn, db: DbSession, current_user: MatrixAdmin):
    return approver_registry.assign_user_approver(
        db,
        user_id=body.user_id,
        approver_role=body.approver_role,
        modules=body.modules,
        max_approval_amount=body.max_approval_amount,
        actor_id=current_user.id,
    )


@router.delete(
    "/user-approvers/{registration_id}",
    response_model=UserApproverOut,
    summary="Deactivate a user approver registration",
)
def deactivate_user_approver(registration_id: uuid.UUID, db: DbSession, current_user: MatrixAdmin):
    return approver_registry.deactivate_user_approver(db, registration_id, actor_id=current_user.id)


# ─── Versions / export ───

@router.get("/versions", response_model=list[MatrixVersionOut], summary="Matrix version history, newest first")
def list_versions(
    db: DbSession,
    current_user: MatrixAdmin,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
):
    return rule_store.list_matrix_versions(db, limit=limit)


@router.get("/export", response_model=MatrixExportOut, summary="Export the full matrix as JSON")
def export_matrix(db: DbSession, current_user: MatrixAdmin):
    return rule_store.export_matrix(db)


# ─── Match / simulate ───

@router.post("/match", response_model=MatchOut, summary="Which rule applies to a document")
def match(body: DocumentQuery, db: DbSession, current_user: CurrentUser):
    rule = rule_matcher.match_rule(
        db, body.category, body.amount, currency=body.currency, department_id=body.department_id
    )
    return MatchOut(rule=ApprovalRuleOut.model_validate(rule) if rule else None)


@router.post("/simulate", response_model=SimulationOut, summary="Preview the approval path for a document")
def simulate(body: DocumentQuery, db: DbSession, current_user: CurrentUser):
    result = rule_matcher.simulate_workflow(
        db, body.category, body.amount, currency=body.currency, department_id=body.department_id
    )
    return SimulationOut.model_validate(result)


# ─── User Delegation sub-router ───

delegation_router = APIRouter()


def _check_delegation_owner(current_user: User, user_id: uuid.UUID) -> None:
    if (current_user.role or "").lower() not in MATRIX_ADMINS and current_user.id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only manage your own delegation.",
        )


@delegation_router.put(
    "/{user_id}/delegation",
    response_model=UserDelegationOut,
    summary="Set or replace delegation for a user (self, or admin/manager)",
)
def set_delegation(user_id: uuid.UUID, body: UserDelegationIn, db: DbSession, current_user: CurrentUser):
    _check_delegation_owner(current_user, user_id)
    return approver_registry.set_delegation(
        db,
        delegator_id=user_id,
        delegate_id=body.delegate_id,
        valid_from=body.valid_from,
        valid_until=body.valid_until,
        actor_id=current_user.id,
    )


@delegation_router.delete(
    "/{user_id}/delegation",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove active delegation for a user (self, or admin/manager)",
)
def remove_delegation(user_id: uuid.UUID, db: DbSession, current_user: CurrentUser):
    _check_delegation_owner(current_user, user_id)
    approver_registry.remove_delegation(db, user_id, actor_id=current_user.id)
