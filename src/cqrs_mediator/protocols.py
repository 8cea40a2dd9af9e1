"""Protocol definitions for the mediator.

All protocols use @runtime_checkable for structural typing support.
"""
from typing import Any, List, Optional, Protocol, TypeVar, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import ValidationResult

T = TypeVar("T")


@runtime_checkable
class HandlerResolver(Protocol):
    """
    Lookup the mediator consumes from its environment.

    Implementations own the lifetime of the instances they return; the
    mediator does not retain them beyond one dispatch.
    """

    def resolve_handler(
        self, request_type: type, response_type: Optional[type] = None
    ) -> Optional[Any]:
        """Return the single handler for the exact request/stream type, or None."""
        ...

    def resolve_handlers(self, notification_type: type) -> List[Any]:
        """Return every handler registered for the notification type (possibly none)."""
        ...

    def resolve_behaviors(
        self, message_type: type, response_type: Optional[type] = None
    ) -> List[Any]:
        """Return the applicable behaviors in registration order (possibly none)."""
        ...


@runtime_checkable
class Validator(Protocol[T]):
    """Validator protocol used by ValidationBehavior."""

    async def validate(self, message: T) -> "ValidationResult":
        """Validate the message and return a ValidationResult."""
        ...
