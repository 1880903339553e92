from app.models.user import User
from app.models.approval_matrix import (
    ApprovalRole,
    ApprovalRule,
    ApprovalRuleApprover,
    ApprovalOverride,
    UserApprover,
    UserDelegation,
    ApprovalMatrixVersion,
)
from app.models.approval import ApprovalWorkflow, WorkflowAction, WorkflowStatus, SequentialPolicy
from app.models.audit import ApprovalAuditLog

__all__ = [
    "User",
    "ApprovalRole", "ApprovalRule", "ApprovalRuleApprover", "ApprovalOverride",
    "UserApprover", "UserDelegation", "ApprovalMatrixVersion",
    "ApprovalWorkflow", "WorkflowAction", "WorkflowStatus", "SequentialPolicy",
    "ApprovalAuditLog",
]
