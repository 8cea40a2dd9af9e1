"""Exceptions for the CQRS mediator."""
from typing import Any, Dict, List, Optional, Sequence


class MediatorError(Exception):
    """Base exception for all mediator errors."""
    pass


class InvalidMessageError(MediatorError, ValueError):
    """Raised when a dispatch entry point receives a missing or wrongly typed message."""

    def __init__(self, message: str, argument: str = "request"):
        self.argument = argument
        super().__init__(message)


class HandlerNotFoundError(MediatorError):
    """Raised when no handler is registered for a request or stream request type."""

    def __init__(self, message_type: type, kind: str = "request"):
        self.message_type = message_type
        self.kind = kind
        super().__init__(
            f"No {kind} handler registered for request type '{message_type.__name__}'"
        )


class OperationCancelledError(MediatorError):
    """Raised when a cooperating handler or behavior observes cancellation."""

    def __init__(self, message: str = "The operation was cancelled"):
        super().__init__(message)


class AggregateHandlerError(MediatorError):
    """
    Raised by ``publish`` when two or more notification handler chains fail.

    A single failing chain is never wrapped; its exception propagates as-is.
    """

    def __init__(self, notification_type: type, exceptions: Sequence[BaseException]):
        """
        Initialize the aggregate.

        Args:
            notification_type: The notification class that was published.
            exceptions: Individual failures, in completion order.
        """
        self.notification_type = notification_type
        self.exceptions: List[BaseException] = list(exceptions)
        super().__init__(
            f"{len(self.exceptions)} handlers failed for "
            f"{notification_type.__name__}: "
            + "; ".join(f"{type(e).__name__}: {e}" for e in self.exceptions)
        )


class ValidationError(MediatorError):
    """Raised when request or notification validation fails."""

    def __init__(self, message_type: str, errors: Dict[str, List[str]]):
        """
        Initialize validation error.

        Args:
            message_type: Name of the message type that failed.
            errors: Dictionary of validation errors {field: [messages]}.
        """
        self.message_type = message_type
        self.errors = errors
        super().__init__(f"Validation failed for {message_type}: {errors}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "error": "validation_error",
            "message_type": self.message_type,
            "errors": self.errors,
        }


class RegistrationError(MediatorError):
    """Raised when a handler or behavior cannot be registered."""

    def __init__(self, target: Any, reason: str, message_type: Optional[type] = None):
        self.target = target
        self.message_type = message_type
        name = getattr(target, "__name__", type(target).__name__)
        super().__init__(f"Cannot register {name}: {reason}")
