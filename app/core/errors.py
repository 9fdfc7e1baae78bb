"""
Structured errors raised by the governance services.

Services never build HTTP responses themselves. They raise one of the
errors below and the exception handler in app.main renders it, so the
same error kinds surface identically to route handlers, scripts and tests.
"""
from typing import Any, Dict, Optional

from fastapi import status


class GovernanceError(Exception):
    """Base class for every error surfaced to a caller."""
    kind: str = "governance_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.detail}


class Unauthorized(GovernanceError):
    """Caller lacks the role or capability the operation requires."""
    kind = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(GovernanceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(GovernanceError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidState(GovernanceError):
    """
    The operation is not valid for the current state.

    `rule` names the invariant that failed so callers can show a precise message.
    """
    kind = "invalid_state"
    status_code = status.HTTP_409_CONFLICT
    rule: Optional[str] = None

    def __init__(self, detail: str, rule: Optional[str] = None):
        super().__init__(detail)
        if rule is not None:
            self.rule = rule

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["rule"] = self.rule
        return data


class SuperAdminCapExceeded(InvalidState):
    rule = "SuperAdminCapExceeded"


class LastSuperAdminProtected(InvalidState):
    rule = "LastSuperAdminProtected"


class ImmutableRole(InvalidState):
    rule = "ImmutableRole"


class InvalidPromotionPath(InvalidState):
    rule = "InvalidPromotionPath"


class StoreUnavailable(GovernanceError):
    """Infrastructure failure (store down, lock timeout, serialization conflict). Safe to retry."""
    kind = "store_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
