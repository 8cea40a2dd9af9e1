"""Core mediator components - Messages, Unit, Handlers and Pipeline Behaviors."""

from abc import ABC, abstractmethod
import inspect
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Optional,
    Tuple,
    TypeVar,
    get_args,
    get_origin,
    get_type_hints,
    TYPE_CHECKING,
)

if TYPE_CHECKING:
    from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

TResponse = TypeVar("TResponse")
TItem = TypeVar("TItem")
TRequest = TypeVar("TRequest", bound="Request")
TStreamRequest = TypeVar("TStreamRequest", bound="StreamRequest")
TNotification = TypeVar("TNotification", bound="Notification")

# Continuations handed to behaviors. Each captures everything downstream.
NextHandler = Callable[[], Awaitable[TResponse]]
StreamNextHandler = Callable[[], AsyncIterator[TItem]]
NotificationNextHandler = Callable[[], Awaitable[None]]


class Unit:
    """
    Zero-information value standing in for "no response".

    There is exactly one observable value: every construction returns the
    same instance, all instances compare equal and hash identically.
    """

    __slots__ = ()
    _instance: Optional["Unit"] = None

    def __new__(cls) -> "Unit":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Unit)

    def __hash__(self) -> int:
        return 0

    def __repr__(self) -> str:
        return "Unit"

    def __reduce__(self):
        return (Unit, ())

    def __copy__(self) -> "Unit":
        return self

    def __deepcopy__(self, memo) -> "Unit":
        return self


Unit.value = Unit()


# === Messages ===


class Request(Generic[TResponse]):
    """
    Marker base for requests handled by exactly one handler.

    The type parameter declares the response type. Requests should be
    immutable, e.g. ``@dataclass(frozen=True)``:

        @dataclass(frozen=True)
        class GetUser(Request[User]):
            user_id: int
    """

    pass


class Command(Request[Unit]):
    """Marker base for requests that produce no meaningful response."""

    pass


class StreamRequest(Generic[TItem]):
    """
    Marker base for requests whose handler produces a lazy sequence of items.

    The type parameter declares the item type.
    """

    pass


class Notification:
    """
    Marker base for notifications.

    Zero, one or many handlers may be registered per concrete type.
    """

    pass


def response_type_of(message_type: type) -> Optional[type]:
    """
    Get the response (or item) type declared by a request class.

    Returns None when the class does not parametrize Request/StreamRequest.
    """
    for klass in getattr(message_type, "__mro__", ()):
        for base in klass.__dict__.get("__orig_bases__", ()):
            origin = get_origin(base)
            if origin in (Request, StreamRequest):
                args = get_args(base)
                if args and not _is_open(args[0]):
                    return args[0]
    return None


def _normalize_response_type(tp: Any) -> Any:
    # List[int] and list[int] share an origin; None stands for Unit
    if tp is type(None):
        return Unit
    origin = get_origin(tp)
    if origin is None:
        return tp
    return (origin, tuple(_normalize_response_type(arg) for arg in get_args(tp)))


def same_response_type(declared: Any, expected: Any) -> bool:
    """
    Check two response types for compatibility.

    ``None`` means "unknown" and matches anything. Typing aliases match their
    builtin generics, and a handler declaring ``None`` serves ``Unit`` requests.
    """
    if declared is None or expected is None:
        return True
    return _normalize_response_type(declared) == _normalize_response_type(expected)


# === Type inference for handlers & behaviors ===


def _is_open(arg: Any) -> bool:
    """True for type arguments that constrain nothing (TypeVars, Any)."""
    return isinstance(arg, TypeVar) or arg is Any


def _generic_args(cls: type, capability: type) -> Optional[Tuple[Any, ...]]:
    """Find the type arguments the class gives to ``capability`` (most derived first)."""
    for klass in cls.__mro__:
        for base in klass.__dict__.get("__orig_bases__", ()):
            origin = get_origin(base)
            if isinstance(origin, type) and issubclass(origin, capability):
                return get_args(base)
    return None


def _as_message_type(arg: Any, message_base: type) -> Optional[type]:
    if isinstance(arg, TypeVar):
        # Open generic: applies to every message the TypeVar admits
        bound = arg.__bound__
        if isinstance(bound, type):
            return bound
        return message_base
    if isinstance(arg, type):
        return arg
    origin = get_origin(arg)
    if isinstance(origin, type):
        return origin
    return None


def _annotated_message_type(cls: type) -> Optional[type]:
    """Fallback: the annotation of the first argument of ``handle``."""
    handle = getattr(cls, "handle", None)
    if handle is None:
        return None
    try:
        params = list(inspect.signature(handle).parameters)
        hints = get_type_hints(handle)
    except Exception as e:
        logger.debug(f"Could not read annotations of {cls.__name__}.handle(): {e}")
        return None
    if len(params) < 2:
        return None
    annotation = hints.get(params[1])
    return annotation if isinstance(annotation, type) else None


def _bind_message_types(cls: type, capability: type, message_base: type) -> None:
    """Record on ``cls`` which message type (and response type) it serves."""
    if ABC in cls.__bases__:
        return

    message_type = None
    response_type = None

    args = _generic_args(cls, capability)
    if args:
        message_type = _as_message_type(args[0], message_base)
        if len(args) > 1 and not _is_open(args[1]):
            response_type = args[1]

    if message_type is None:
        message_type = _annotated_message_type(cls)

    if message_type is None:
        logger.warning(
            f"Could not infer the message type of {cls.__name__}: "
            f"parametrize {capability.__name__}[...] or annotate handle()"
        )
        return

    if not issubclass(message_type, message_base):
        logger.warning(
            f"Could not bind {cls.__name__}: {message_type.__name__} "
            f"does not inherit from {message_base.__name__}"
        )
        return

    if response_type is None and message_base is not Notification:
        response_type = response_type_of(message_type)

    cls._message_type = message_type
    cls._response_type = response_type


def message_type_of(target: Any) -> Optional[type]:
    """Get the message type a handler/behavior class (or instance) serves."""
    cls = target if isinstance(target, type) else type(target)
    return getattr(cls, "_message_type", None)


def declared_response_type_of(target: Any) -> Optional[type]:
    """Get the response type a handler/behavior class (or instance) declares."""
    cls = target if isinstance(target, type) else type(target)
    return getattr(cls, "_response_type", None)


# === Handlers ===


class RequestHandler(ABC, Generic[TRequest, TResponse]):
    """
    Base class for handling a Request.

    Each handler handles exactly one request type, declared through the
    type parameters (or the annotation of ``handle``):

        class GetUserHandler(RequestHandler[GetUser, User]):
            async def handle(self, request, cancellation_token):
                ...
    """

    _kind = "request"
    _message_type: Optional[type] = None
    _response_type: Optional[type] = None

    @abstractmethod
    async def handle(
        self, request: TRequest, cancellation_token: "CancellationToken"
    ) -> TResponse:
        """Handle the request and return the response."""
        raise NotImplementedError

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _bind_message_types(cls, RequestHandler, Request)


class StreamRequestHandler(ABC, Generic[TStreamRequest, TItem]):
    """
    Base class for handling a StreamRequest.

    ``handle`` is an async generator: nothing runs until the caller starts
    consuming. Implementations should check the cancellation token before
    each yield.
    """

    _kind = "stream"
    _message_type: Optional[type] = None
    _response_type: Optional[type] = None

    @abstractmethod
    def handle(
        self, request: TStreamRequest, cancellation_token: "CancellationToken"
    ) -> AsyncIterator[TItem]:
        """Produce the items of the stream."""
        raise NotImplementedError

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _bind_message_types(cls, StreamRequestHandler, StreamRequest)


class NotificationHandler(ABC, Generic[TNotification]):
    """
    Base class for handling a Notification.

    Handlers of the same notification run concurrently and must not assume
    any ordering relative to each other.
    """

    _kind = "notification"
    _message_type: Optional[type] = None
    _response_type: Optional[type] = None

    @abstractmethod
    async def handle(
        self, notification: TNotification, cancellation_token: "CancellationToken"
    ) -> None:
        """Handle the notification."""
        raise NotImplementedError

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _bind_message_types(cls, NotificationHandler, Notification)


# === Pipeline Behaviors ===


class PipelineBehavior(ABC, Generic[TRequest, TResponse]):
    """
    Base class for behaviors wrapped around request handlers.

    A behavior may call ``next_handler`` zero times (short-circuit), once
    (pass-through) or several times (retry). Leaving the type parameters open
    applies the behavior to every request:

        class Audit(PipelineBehavior[TRequest, TResponse]):
            async def handle(self, request, next_handler, cancellation_token):
                return await next_handler()
    """

    _kind = "request"
    _message_type: Optional[type] = None
    _response_type: Optional[type] = None

    @abstractmethod
    async def handle(
        self,
        request: TRequest,
        next_handler: NextHandler[TResponse],
        cancellation_token: "CancellationToken",
    ) -> TResponse:
        raise NotImplementedError

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _bind_message_types(cls, PipelineBehavior, Request)


class StreamPipelineBehavior(ABC, Generic[TStreamRequest, TItem]):
    """
    Base class for behaviors wrapped around stream handlers.

    ``handle`` is an async generator. It may map, filter or buffer the items
    of ``next_handler()``, or yield an entirely different sequence without
    ever consuming it.
    """

    _kind = "stream"
    _message_type: Optional[type] = None
    _response_type: Optional[type] = None

    @abstractmethod
    def handle(
        self,
        request: TStreamRequest,
        next_handler: StreamNextHandler[TItem],
        cancellation_token: "CancellationToken",
    ) -> AsyncIterator[TItem]:
        raise NotImplementedError

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _bind_message_types(cls, StreamPipelineBehavior, StreamRequest)


class NotificationPipelineBehavior(ABC, Generic[TNotification]):
    """
    Base class for behaviors wrapped around each notification handler.

    The same instance wraps every handler of a publish, concurrently, so it
    must tolerate reentry.
    """

    _kind = "notification"
    _message_type: Optional[type] = None
    _response_type: Optional[type] = None

    @abstractmethod
    async def handle(
        self,
        notification: TNotification,
        next_handler: NotificationNextHandler,
        cancellation_token: "CancellationToken",
    ) -> None:
        raise NotImplementedError

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _bind_message_types(cls, NotificationPipelineBehavior, Notification)


HANDLER_BASES = (RequestHandler, StreamRequestHandler, NotificationHandler)
BEHAVIOR_BASES = (PipelineBehavior, StreamPipelineBehavior, NotificationPipelineBehavior)
