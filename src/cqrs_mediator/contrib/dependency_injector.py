"""
Dependency Injector integration for the mediator.

This module provides:
1. A standard IoC Container for the mediator and its registry.
2. `register_provider()` to register handlers/behaviors built by providers,
   so their dependencies are injected on every dispatch.
"""

from typing import Any, Iterator, List, Optional

from dependency_injector import containers, providers

from ..handler_registry import HandlerRegistry
from ..mediator import Mediator
from ..scanning import scan_packages


def scan_registry_startup(
    registry: HandlerRegistry, packages: Optional[List[str]] = None
) -> Iterator[HandlerRegistry]:
    """Resource initializer: scan packages into the registry at startup."""
    if packages:
        scan_packages(packages, registry)
    yield registry


class Container(containers.DeclarativeContainer):
    """
    IoC Container for the mediator.

    Configuration:
        scan_packages: packages scanned for handlers and behaviors
        max_concurrent_handlers: bound on concurrent notification handlers

    The mediator is a Factory: one instance per logical operation scope.
    """

    config = providers.Configuration()

    handler_registry = providers.Singleton(HandlerRegistry)

    # Initialize this resource to scan config.scan_packages into the registry
    registry_scan = providers.Resource(
        scan_registry_startup,
        registry=handler_registry,
        packages=config.scan_packages,
    )

    mediator = providers.Factory(
        Mediator,
        registry=handler_registry,
        max_concurrent_handlers=config.max_concurrent_handlers,
    )


def register_provider(
    registry: HandlerRegistry, provider: Any, message_type: Optional[type] = None
) -> Any:
    """
    Register a provider that builds a handler or behavior.

    The provider is called on every resolve, so Factory providers yield a
    fresh, fully-injected instance per dispatch.

    Args:
        registry: Target registry.
        provider: A Factory/Singleton provider of a handler or behavior class.
        message_type: Overrides the message type inferred from the class.

    Returns:
        The provider.
    """
    cls = getattr(provider, "cls", None)
    if not isinstance(cls, type):
        raise TypeError(f"{provider!r} does not provide a class")
    return registry.register_as(cls, provider, message_type)
