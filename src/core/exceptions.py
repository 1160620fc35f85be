from fastapi import HTTPException
from typing import Optional, Any


class AppException(HTTPException):
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Any] = None,
    ):
        super().__init__(status_code=status_code, detail={
            "error_code": error_code,
            "message": message,
            "details": details,
        })
        self.error_code = error_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class NotFoundError(AppException):
    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            status_code=404,
            error_code=f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found: {resource_id}",
        )
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(AppException):
    """A concurrent state change won the race. Recoverable by the caller."""
    def __init__(self, error_code: str, message: str, details: Optional[Any] = None):
        super().__init__(
            status_code=409,
            error_code=error_code,
            message=message,
            details=details,
        )


class InvalidStateError(AppException):
    """Operation is not legal for the entity's current status."""
    def __init__(self, resource: str, resource_id: str, status: str, operation: str):
        super().__init__(
            status_code=409,
            error_code=f"{resource.upper()}_INVALID_STATE",
            message=f"Cannot {operation} {resource} {resource_id} in status {status}",
            details={"status": status, "operation": operation},
        )
        self.resource_id = resource_id
        self.status = status


class VerificationFailedError(AppException):
    """Proof of rescue rejected; the rescuer should resubmit."""
    def __init__(self, ticket_id: str, confidence: float, threshold: float, notes: str = ""):
        super().__init__(
            status_code=422,
            error_code="VERIFICATION_FAILED",
            message=(
                f"Verification rejected for ticket {ticket_id}: "
                f"confidence {confidence:.2f} below {threshold:.2f} or verdict invalid"
            ),
            details={"confidence": confidence, "threshold": threshold, "notes": notes},
        )
        self.ticket_id = ticket_id

