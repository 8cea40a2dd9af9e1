"""Pydantic integration for the mediator."""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict

from ..core import Command, Notification, Request, StreamRequest


# =============================================================================
# Pydantic-based Messages
# =============================================================================

_MESSAGE_CONFIG = ConfigDict(
    # Messages are immutable for the duration of dispatch
    frozen=True,
    # Allow arbitrary types (for complex domain objects)
    arbitrary_types_allowed=True,
)


class PydanticRequest(BaseModel, Request[Any]):
    """
    Base class for Pydantic-validated requests.

    Fields are validated on construction and the instance is frozen.

    Usage:
        class GetUser(PydanticRequest):
            user_id: int = Field(..., gt=0)
    """

    model_config = _MESSAGE_CONFIG

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump()


class PydanticCommand(BaseModel, Command):
    """Base class for Pydantic-validated requests without a meaningful response."""

    model_config = _MESSAGE_CONFIG

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump()


class PydanticStreamRequest(BaseModel, StreamRequest[Any]):
    """Base class for Pydantic-validated stream requests."""

    model_config = _MESSAGE_CONFIG

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump()


class PydanticNotification(BaseModel, Notification):
    """Base class for Pydantic-validated notifications."""

    model_config = _MESSAGE_CONFIG

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump()
