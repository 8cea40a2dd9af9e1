"""
# py-cqrs-mediator

An in-process mediator for Python applications following CQRS.

## Core Components

### Messages
- `Request`, `Command` - Single-handler messages with a response
- `StreamRequest` - Single-handler messages producing a lazy item sequence
- `Notification` - Messages fanned out to zero or more handlers
- `Unit` - The "no meaningful response" value

### Handlers & Behaviors
- `RequestHandler`, `StreamRequestHandler`, `NotificationHandler`
- `PipelineBehavior`, `StreamPipelineBehavior`, `NotificationPipelineBehavior`

### Dispatch
- `Mediator` - `send`, `send_stream`, `publish`
- `HandlerRegistry` - Registration and resolution of handlers and behaviors
- `CancellationToken` - Cooperative cancellation

### Behaviors
- `LoggingBehavior`, `ValidationBehavior`, `RetryBehavior`, `TimeoutBehavior`

### Integrations
- `contrib.dependency_injector` - IoC container and provider registration
- `contrib.pydantic` - Pydantic message base classes
- `contrib.tracing` - OpenTelemetry / Sentry spans
"""

from .core import (
    Unit,
    Request,
    Command,
    StreamRequest,
    Notification,
    RequestHandler,
    StreamRequestHandler,
    NotificationHandler,
    PipelineBehavior,
    StreamPipelineBehavior,
    NotificationPipelineBehavior,
)
from .cancellation import CancellationToken
from .mediator import Mediator
from .handler_registry import (
    HandlerRegistry,
    default_registry,
    register,
    get_registered_handlers,
)
from .scanning import scan_packages
from .protocols import HandlerResolver, Validator
from .validation import ValidationResult, CompositeValidator, ModelValidator
from .behaviors import (
    LoggingBehavior,
    NotificationLoggingBehavior,
    StreamLoggingBehavior,
    ValidationBehavior,
    NotificationValidationBehavior,
    RetryBehavior,
    TimeoutBehavior,
)
from .exceptions import (
    MediatorError,
    InvalidMessageError,
    HandlerNotFoundError,
    OperationCancelledError,
    AggregateHandlerError,
    ValidationError,
    RegistrationError,
)

__version__ = "0.1.0"

__all__ = [
    # Messages
    "Unit",
    "Request",
    "Command",
    "StreamRequest",
    "Notification",
    # Handlers & Behaviors
    "RequestHandler",
    "StreamRequestHandler",
    "NotificationHandler",
    "PipelineBehavior",
    "StreamPipelineBehavior",
    "NotificationPipelineBehavior",
    # Dispatch
    "Mediator",
    "CancellationToken",
    "HandlerRegistry",
    "default_registry",
    "register",
    "get_registered_handlers",
    "scan_packages",
    # Protocols
    "HandlerResolver",
    "Validator",
    # Validation
    "ValidationResult",
    "CompositeValidator",
    "ModelValidator",
    # Behaviors
    "LoggingBehavior",
    "NotificationLoggingBehavior",
    "StreamLoggingBehavior",
    "ValidationBehavior",
    "NotificationValidationBehavior",
    "RetryBehavior",
    "TimeoutBehavior",
    # Exceptions
    "MediatorError",
    "InvalidMessageError",
    "HandlerNotFoundError",
    "OperationCancelledError",
    "AggregateHandlerError",
    "ValidationError",
    "RegistrationError",
]
