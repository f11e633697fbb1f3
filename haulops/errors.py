"""
Error taxonomy for the order core.

Every error is recoverable and carries enough context (order id, current
status, attempted transition) for the boundary to render a message.
"""
from typing import Any, Dict, Optional


class CoreError(Exception):
    code = "CORE_ERROR"

    def __init__(self, message: str, *, order_id: Optional[int] = None,
                 status: Optional[str] = None, attempted: Optional[str] = None,
                 **extra: Any):
        super().__init__(message)
        self.message = message
        self.order_id = order_id
        self.status = status
        self.attempted = attempted
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.order_id is not None:
            out["order_id"] = self.order_id
        if self.status is not None:
            out["status"] = self.status
        if self.attempted is not None:
            out["attempted"] = self.attempted
        out.update(self.extra)
        return out


class InvalidTransition(CoreError):
    code = "INVALID_TRANSITION"


class CapacityExceeded(CoreError):
    code = "CAPACITY_EXCEEDED"


class AlreadyAssigned(CoreError):
    code = "ALREADY_ASSIGNED"


class NotFound(CoreError):
    code = "NOT_FOUND"


class InvalidState(CoreError):
    code = "INVALID_STATE"


class ValidationError(CoreError):
    code = "VALIDATION_ERROR"


class ConcurrencyConflict(CoreError):
    """Order lock could not be acquired in time; the caller should retry."""
    code = "CONCURRENCY_CONFLICT"
