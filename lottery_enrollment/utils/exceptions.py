"""
Custom exceptions for the lottery enrollment core.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the enrollment core."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"

    # Business logic errors
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    SPOT_TAKEN = "SPOT_TAKEN"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Concurrency errors
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    NOTIFICATION_DISPATCH_ERROR = "NOTIFICATION_DISPATCH_ERROR"


class EnrollmentError(Exception):
    """Base exception class for the enrollment core."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        """Initialize the exception with comprehensive error information."""
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a plain dictionary for callers and logs."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(EnrollmentError):
    """Exception raised for invalid input."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details={"field": field} if field else None,
            **kwargs
        )
        self.field = field


class NotFoundError(EnrollmentError):
    """Base exception for resource not found errors."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class EventNotFoundError(NotFoundError):
    """Exception raised when an event is missing or no longer active."""

    def __init__(self, event_id: str, **kwargs):
        super().__init__(
            f"Event {event_id} not found",
            resource_type="event",
            resource_id=event_id,
            suggestions=["Check the event ID", "Browse active events"],
            **kwargs
        )


class EntryNotFoundError(NotFoundError):
    """Exception raised when a waitlist entry is not found."""

    def __init__(self, entry_id: str, **kwargs):
        super().__init__(
            f"Waitlist entry {entry_id} not found",
            resource_type="waitlist_entry",
            resource_id=entry_id,
            **kwargs
        )


class InvitationNotFoundError(NotFoundError):
    """Exception raised when an invitation is not found."""

    def __init__(self, invitation_id: str, **kwargs):
        super().__init__(
            f"Invitation {invitation_id} not found",
            resource_type="invitation",
            resource_id=invitation_id,
            **kwargs
        )


class BusinessLogicError(EnrollmentError):
    """Base exception for business rule violations."""
    pass


class CapacityExceededError(BusinessLogicError):
    """Exception raised when a counter would pass its capacity."""

    def __init__(self, counter: str, capacity: int, event_id: Optional[str] = None, **kwargs):
        super().__init__(
            f"{counter} is full (capacity {capacity})",
            error_code=ErrorCode.CAPACITY_EXCEEDED,
            details={"counter": counter, "capacity": capacity, "event_id": event_id},
            suggestions=["Try another event", "Check back after the next draw"],
            **kwargs
        )
        self.counter = counter


class SpotTakenError(BusinessLogicError):
    """Exception raised when an acceptance loses the race for the last slot."""

    def __init__(self, invitation_id: str, event_id: Optional[str] = None, **kwargs):
        super().__init__(
            "This spot was just taken",
            error_code=ErrorCode.SPOT_TAKEN,
            details={"invitation_id": invitation_id, "event_id": event_id},
            suggestions=["Stay on the lookout for future draws"],
            **kwargs
        )


class AlreadyRegisteredError(BusinessLogicError):
    """Exception raised when a user already holds an active membership."""

    def __init__(self, event_id: str, user_id: str, **kwargs):
        super().__init__(
            "You're already registered for this event.",
            error_code=ErrorCode.ALREADY_REGISTERED,
            details={"event_id": event_id, "user_id": user_id},
            **kwargs
        )


class InvalidTransitionError(BusinessLogicError):
    """Exception raised when a record is in the wrong state for an operation."""

    def __init__(self, resource_type: str, resource_id: str, current_state: str, action: str, **kwargs):
        super().__init__(
            f"Cannot {action} {resource_type} {resource_id} in {current_state} state",
            error_code=ErrorCode.INVALID_TRANSITION,
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "current_state": current_state,
                "action": action,
            },
            **kwargs
        )
        self.current_state = current_state


class ConcurrencyError(EnrollmentError):
    """Exception raised when a concurrent write invalidated a transaction's read."""

    def __init__(self, message: str, retry_after: int = 1, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.CONCURRENCY_CONFLICT)
        kwargs.setdefault("suggestions", ["Please try again", "Wait a moment and retry"])
        super().__init__(
            message,
            retry_after=retry_after,
            **kwargs
        )


class TransactionConflict(ConcurrencyError):
    """Exception raised when a version-guarded update matched no row."""

    def __init__(self, resource_type: str, resource_id: str, **kwargs):
        super().__init__(
            f"{resource_type} {resource_id} was modified by another transaction",
            details={"resource_type": resource_type, "resource_id": resource_id},
            **kwargs
        )


class ExternalServiceError(EnrollmentError):
    """Exception raised for external collaborator failures."""

    def __init__(self, service_name: str, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.EXTERNAL_SERVICE_ERROR)
        super().__init__(
            f"{service_name} service error: {message}",
            details={"service_name": service_name},
            suggestions=["Try again later"],
            **kwargs
        )


class NotificationDispatchError(ExternalServiceError):
    """Exception raised when a notification request could not be handed off."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            "notification",
            message,
            error_code=ErrorCode.NOTIFICATION_DISPATCH_ERROR,
            **kwargs
        )
