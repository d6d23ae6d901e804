"""Service-level errors raised by plan operations and mapped to HTTP responses in main."""
from typing import Any, Dict, Optional


class PlanServiceError(Exception):
    """Base exception for plan service errors"""
    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class PlanNotFoundError(PlanServiceError):
    status_code = 404

    def __init__(self, plan_id: int, user_id: str):
        super().__init__(
            "PLAN_NOT_FOUND",
            f"Plan {plan_id} not found",
            {"plan_id": plan_id, "user_id": user_id},
        )


class InvalidPlanOperationError(PlanServiceError):
    status_code = 400


class PlanConflictError(PlanServiceError):
    """The plan changed since the client read it; re-read and retry."""
    status_code = 409

    def __init__(self, plan_id: int, expected_version: Optional[int] = None, current_version: Optional[int] = None):
        super().__init__(
            "PLAN_VERSION_CONFLICT",
            f"Plan {plan_id} was modified concurrently",
            {
                "plan_id": plan_id,
                "expected_version": expected_version,
                "current_version": current_version,
                "retryable": True,
            },
        )
