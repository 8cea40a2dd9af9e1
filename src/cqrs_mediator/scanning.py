"""
Module for scanning packages and registering the handlers they define.

Every public, concrete subclass of a handler or behavior base class found in
the scanned modules is registered into the given registry.
"""
import importlib
import inspect
import logging
import pkgutil
from types import ModuleType
from typing import Iterator, List, Optional, Union

from .core import BEHAVIOR_BASES, HANDLER_BASES, message_type_of
from .exceptions import RegistrationError
from .handler_registry import HandlerRegistry, default_registry

logger = logging.getLogger(__name__)


def scan_packages(
    packages: List[Union[str, ModuleType]], registry: Optional[HandlerRegistry] = None
) -> List[type]:
    """
    Recursively import the given packages and register their handlers and behaviors.

    Args:
        packages: List of package names (str) or module objects to scan.
        registry: Target registry. Defaults to the default registry.

    Returns:
        The registered classes, in discovery order.
    """
    registry = registry if registry is not None else default_registry
    registered: List[type] = []
    seen = set()

    for module in _iter_modules(packages):
        for cls in _discover(module):
            if cls in seen:
                continue
            seen.add(cls)
            try:
                registry.register(cls)
            except RegistrationError as e:
                logger.warning(f"Skipped {cls.__module__}.{cls.__name__}: {e}")
                continue
            registered.append(cls)

    logger.debug(f"Scanning registered {len(registered)} handlers and behaviors")
    return registered


def _iter_modules(packages: List[Union[str, ModuleType]]) -> Iterator[ModuleType]:
    for package in packages:
        if isinstance(package, str):
            try:
                package_module = importlib.import_module(package)
            except ImportError as e:
                logger.error(f"Failed to import package '{package}': {e}")
                continue
        else:
            package_module = package

        yield package_module

        if not hasattr(package_module, "__path__"):
            # It's a module, not a package, nothing to scan inside
            continue

        for module_info in pkgutil.walk_packages(
            package_module.__path__, package_module.__name__ + "."
        ):
            try:
                module = importlib.import_module(module_info.name)
            except ImportError as e:
                logger.error(f"Failed to import module '{module_info.name}': {e}")
                continue
            logger.debug(f"Scanned module: {module_info.name}")
            yield module


def _discover(module: ModuleType) -> Iterator[type]:
    """Public, concrete handler/behavior classes defined in ``module``."""
    bases = HANDLER_BASES + BEHAVIOR_BASES
    for name, cls in inspect.getmembers(module, inspect.isclass):
        if cls.__module__ != module.__name__ or name.startswith("_"):
            continue
        if cls in bases or not issubclass(cls, bases):
            continue
        if inspect.isabstract(cls):
            continue
        if message_type_of(cls) is None:
            logger.debug(f"Skipped {name}: message type could not be inferred")
            continue
        yield cls
