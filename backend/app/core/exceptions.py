"""Approval engine error taxonomy.

User-facing errors (surfaced to the caller with their message):
    InvalidInputError     -> 422
    NotFoundError         -> 404
    InvalidStateError     -> 409  (NoPendingActionError is a subclass)
    ApprovalPermissionError -> 403

Recovered locally, never propagated out of the engine:
    ConfigurationAmbiguity      several rules tie; a deterministic winner is used
    DownstreamDispatchFailure   a post-completion hook failed; the approval stands
"""


class ApprovalError(Exception):
    """Base error for the approval engine. ``str(exc)`` is safe to show to users."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(ApprovalError):
    status_code = 422


class NotFoundError(ApprovalError):
    status_code = 404


class InvalidStateError(ApprovalError):
    status_code = 409


class NoPendingActionError(InvalidStateError):
    """No pending action matches the request (resolved, wrong level, or missing)."""


class ApprovalPermissionError(ApprovalError):
    status_code = 403


class ConfigurationAmbiguity(ApprovalError):
    """Several active rules match the same document equally well."""

    def __init__(self, message: str, rule_ids: list | None = None):
        super().__init__(message)
        self.rule_ids = rule_ids or []


class DownstreamDispatchFailure(ApprovalError):
    """A post-completion hook raised."""

    def __init__(self, message: str, hook_name: str | None = None):
        super().__init__(message)
        self.hook_name = hook_name
