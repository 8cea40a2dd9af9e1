"""
Registry for mediator handlers and pipeline behaviors.

This module maintains the mapping between:
- Requests and their single RequestHandler
- Stream requests and their single StreamRequestHandler
- Notifications and their NotificationHandlers (zero or more)
- Message types and the behaviors of each pipeline kind

`HandlerRegistry` implements the `HandlerResolver` protocol the `Mediator`
consumes. Registration targets may be:
- a class: instantiated fresh on every resolve
- a factory/provider callable (e.g. a dependency_injector provider): called on every resolve
- an instance: reused as-is
"""
from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Tuple

from .core import (
    BEHAVIOR_BASES,
    HANDLER_BASES,
    Notification,
    NotificationHandler,
    NotificationPipelineBehavior,
    PipelineBehavior,
    Request,
    RequestHandler,
    StreamPipelineBehavior,
    StreamRequest,
    StreamRequestHandler,
    declared_response_type_of,
    message_type_of,
    response_type_of,
    same_response_type,
)
from .exceptions import RegistrationError

logger = logging.getLogger("cqrs_mediator")

_MESSAGE_BASES = {
    "request": Request,
    "stream": StreamRequest,
    "notification": Notification,
}


@dataclass(frozen=True)
class Registration:
    """One registered handler or behavior."""

    message_type: type
    target: Any
    response_type: Optional[type] = None

    def materialize(self) -> Any:
        """Produce the instance to use for one dispatch."""
        target = self.target
        if isinstance(target, type):
            return target()
        # Factory or DI provider (callable returning the object)
        if callable(target) and not hasattr(target, "handle"):
            return target()
        return target

    def accepts(self, response_type: Optional[type]) -> bool:
        return same_response_type(self.response_type, response_type)


def _name(target: Any) -> str:
    return getattr(target, "__name__", type(target).__name__)


def kind_of_message(message_type: type) -> str:
    """Classify a message type as 'request', 'stream' or 'notification'."""
    if isinstance(message_type, type):
        if issubclass(message_type, StreamRequest):
            return "stream"
        if issubclass(message_type, Notification):
            return "notification"
        if issubclass(message_type, Request):
            return "request"
    raise RegistrationError(
        message_type, "not a Request, StreamRequest or Notification type"
    )


class HandlerRegistry:
    """
    In-process handler and behavior registry.

    Usage:
        registry = HandlerRegistry()
        registry.register(GetUserHandler)
        registry.register_behavior(Request, LoggingBehavior())

        mediator = Mediator(registry)
    """

    def __init__(self):
        self._handlers: Dict[str, Dict[type, Registration]] = {
            "request": {},
            "stream": {},
        }
        self._notification_handlers: Dict[type, List[Registration]] = {}
        self._behaviors: Dict[str, List[Registration]] = {
            "request": [],
            "stream": [],
            "notification": [],
        }
        self._behavior_cache: Dict[Tuple[str, type, Optional[type]], List[Registration]] = {}

    # === Registration ===

    def register_request_handler(
        self, request_type: type, handler: Any, response_type: Optional[type] = None
    ) -> None:
        """
        Register the handler for a request type.

        A second registration for the same type replaces the first.
        """
        self._register_single("request", request_type, handler, response_type)

    def register_stream_handler(
        self, request_type: type, handler: Any, item_type: Optional[type] = None
    ) -> None:
        """Register the handler for a stream request type."""
        self._register_single("stream", request_type, handler, item_type)

    def register_notification_handler(self, notification_type: type, handler: Any) -> None:
        """Add a handler for a notification type."""
        self._check_message_type("notification", notification_type, handler)
        self._notification_handlers.setdefault(notification_type, []).append(
            Registration(notification_type, handler)
        )
        logger.debug(
            f"Registered NotificationHandler {_name(handler)} for {notification_type.__name__}"
        )

    def register_behavior(
        self, message_type: type, behavior: Any, response_type: Optional[type] = None
    ) -> None:
        """
        Add a request pipeline behavior.

        Registering for a base type (e.g. ``Request``) applies the behavior to
        every subtype.
        """
        self._register_behavior("request", message_type, behavior, response_type)

    def register_stream_behavior(
        self, message_type: type, behavior: Any, item_type: Optional[type] = None
    ) -> None:
        """Add a stream pipeline behavior."""
        self._register_behavior("stream", message_type, behavior, item_type)

    def register_notification_behavior(self, message_type: type, behavior: Any) -> None:
        """Add a notification pipeline behavior."""
        self._register_behavior("notification", message_type, behavior, None)

    def register(self, target: Any, message_type: Optional[type] = None) -> Any:
        """
        Register a handler or behavior, inferring what it serves.

        The kind comes from the base class (RequestHandler, PipelineBehavior, ...)
        and the message type from its type parameters, unless ``message_type``
        is given. Returns ``target`` so it can be used as a class decorator.

        Raises:
            RegistrationError: If the kind or message type cannot be inferred.
        """
        cls = target if isinstance(target, type) else type(target)
        return self.register_as(cls, target, message_type)

    def register_as(self, cls: type, target: Any, message_type: Optional[type] = None) -> Any:
        """
        Register ``target`` (a class, factory or instance) as an implementation of ``cls``.

        Kind and message type are inferred from ``cls``; used when ``target``
        itself is a factory, e.g. a DI provider building ``cls``.
        """
        message_type = message_type or message_type_of(cls)
        if message_type is None:
            raise RegistrationError(target, "message type could not be inferred")
        response_type = declared_response_type_of(cls)

        if issubclass(cls, RequestHandler):
            self.register_request_handler(message_type, target, response_type)
        elif issubclass(cls, StreamRequestHandler):
            self.register_stream_handler(message_type, target, response_type)
        elif issubclass(cls, NotificationHandler):
            self.register_notification_handler(message_type, target)
        elif issubclass(cls, PipelineBehavior):
            self.register_behavior(message_type, target, response_type)
        elif issubclass(cls, StreamPipelineBehavior):
            self.register_stream_behavior(message_type, target, response_type)
        elif issubclass(cls, NotificationPipelineBehavior):
            self.register_notification_behavior(message_type, target)
        else:
            raise RegistrationError(
                target,
                f"does not derive from any of "
                f"{', '.join(b.__name__ for b in HANDLER_BASES + BEHAVIOR_BASES)}",
            )
        return target

    def _register_single(
        self, kind: str, message_type: type, handler: Any, response_type: Optional[type]
    ) -> None:
        self._check_message_type(kind, message_type, handler)
        self._check_response_type(message_type, handler, response_type)
        handlers = self._handlers[kind]
        if message_type in handlers:
            logger.warning(
                f"Replacing {kind} handler {_name(handlers[message_type].target)} "
                f"for {message_type.__name__} with {_name(handler)}"
            )
        handlers[message_type] = Registration(message_type, handler, response_type)
        logger.debug(f"Registered {kind} handler {_name(handler)} for {message_type.__name__}")

    def _register_behavior(
        self, kind: str, message_type: type, behavior: Any, response_type: Optional[type]
    ) -> None:
        self._check_message_type(kind, message_type, behavior)
        self._check_response_type(message_type, behavior, response_type)
        self._behaviors[kind].append(Registration(message_type, behavior, response_type))
        self._behavior_cache.clear()
        logger.debug(f"Registered {kind} behavior {_name(behavior)} for {message_type.__name__}")

    def _check_message_type(self, kind: str, message_type: type, target: Any) -> None:
        base = _MESSAGE_BASES[kind]
        if not isinstance(message_type, type) or not issubclass(message_type, base):
            raise RegistrationError(
                target, f"{message_type!r} does not inherit from {base.__name__}"
            )
        if not isinstance(target, type) and not callable(target) and not hasattr(target, "handle"):
            raise RegistrationError(target, "has no handle() method", message_type)

    def _check_response_type(
        self, message_type: type, target: Any, response_type: Optional[type]
    ) -> None:
        expected = response_type_of(message_type)
        if not same_response_type(response_type, expected):
            raise RegistrationError(
                target,
                f"declares response type {response_type!r} but "
                f"{message_type.__name__} expects {expected!r}",
                message_type,
            )

    # === Resolution (HandlerResolver) ===

    def resolve_handler(
        self, request_type: type, response_type: Optional[type] = None
    ) -> Optional[Any]:
        """Resolve the handler registered for exactly ``request_type``."""
        kind = "stream" if issubclass(request_type, StreamRequest) else "request"
        registration = self._handlers[kind].get(request_type)
        if registration is None:
            return None
        if not registration.accepts(response_type):
            logger.debug(
                f"Handler {_name(registration.target)} for {request_type.__name__} declares "
                f"{registration.response_type!r}, not {response_type!r}"
            )
            return None
        return registration.materialize()

    def resolve_handlers(self, notification_type: type) -> List[Any]:
        """Resolve every handler registered for exactly ``notification_type``."""
        return [r.materialize() for r in self._notification_handlers.get(notification_type, [])]

    def resolve_behaviors(
        self, message_type: type, response_type: Optional[type] = None
    ) -> List[Any]:
        """
        Resolve the behaviors applying to ``message_type``, in registration order.

        Exact registrations and registrations for base types are merged into
        one list, cached per concrete type.
        """
        kind = kind_of_message(message_type)
        key = (kind, message_type, response_type)
        registrations = self._behavior_cache.get(key)
        if registrations is None:
            registrations = [
                r
                for r in self._behaviors[kind]
                if issubclass(message_type, r.message_type) and r.accepts(response_type)
            ]
            self._behavior_cache[key] = registrations
        return [r.materialize() for r in registrations]

    # === Introspection ===

    def get_registered(self) -> Dict[str, Any]:
        """
        Get a snapshot of all registrations.

        Returns:
            Dict with 'requests', 'streams', 'notifications' and 'behaviors'.
        """
        return {
            "requests": {t: r.target for t, r in self._handlers["request"].items()},
            "streams": {t: r.target for t, r in self._handlers["stream"].items()},
            "notifications": {
                t: [r.target for r in regs] for t, regs in self._notification_handlers.items()
            },
            "behaviors": {
                kind: [(r.message_type, r.target) for r in regs]
                for kind, regs in self._behaviors.items()
            },
        }

    def clear(self) -> None:
        """Remove every registration."""
        for handlers in self._handlers.values():
            handlers.clear()
        self._notification_handlers.clear()
        for behaviors in self._behaviors.values():
            behaviors.clear()
        self._behavior_cache.clear()


# Registry used when no other is given to the Mediator
default_registry = HandlerRegistry()


def register(target: Any, message_type: Optional[type] = None) -> Any:
    """Register into the default registry. Usable as a class decorator."""
    return default_registry.register(target, message_type)


def get_registered_handlers() -> Dict[str, Any]:
    """Get a snapshot of the default registry."""
    return default_registry.get_registered()
