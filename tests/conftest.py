"""Test configuration and global fixtures."""

import pytest

from cqrs_mediator.handler_registry import HandlerRegistry, default_registry
from cqrs_mediator.mediator import Mediator


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def mediator(registry):
    return Mediator(registry)


@pytest.fixture(autouse=True)
def reset_default_registry():
    # The module-level registry is process-wide; isolate tests from each other
    default_registry.clear()
    yield
    default_registry.clear()
