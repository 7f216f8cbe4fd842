"""pytest plugin exposing the compose stack to tests.

Registered through the ``pytest11`` entry point. A test that requests the
``compose_stack`` fixture gets the ``StackState`` of a running stack. The
fixture scope follows ``STACKPILOT_LIFECYCLE``: ``suite`` shares one stack
for the session, ``class`` starts one per test class and ``method`` one per
test function.
"""
import os

import pytest

from .config import ENV_LIFECYCLE, ENV_STACK, PropertySource
from .lifecycle import StackLifecycle
from .models import Lifecycle

FIXTURE_SCOPES = {
    Lifecycle.SUITE: "session",
    Lifecycle.CLASS: "class",
    Lifecycle.METHOD: "function",
}


def pytest_addoption(parser):
    group = parser.getgroup("stackpilot", "compose stacks for integration tests")
    group.addoption("--stackpilot-stack", dest="stackpilot_stack", default=None,
                    help=f"Stack to start for the compose_stack fixture (overrides {ENV_STACK})")
    group.addoption("--stackpilot-lifecycle", dest="stackpilot_lifecycle", default=None,
                    choices=[mode.value for mode in Lifecycle],
                    help=f"Lifetime of the stack (overrides {ENV_LIFECYCLE})")


def pytest_configure(config):
    properties = PropertySource()
    if config.getoption("stackpilot_stack", None):
        properties.set(ENV_STACK, config.getoption("stackpilot_stack"))
    if config.getoption("stackpilot_lifecycle", None):
        properties.set(ENV_LIFECYCLE, config.getoption("stackpilot_lifecycle"))


def stack_scope(fixture_name, config) -> str:
    """Fixture scope for the configured lifecycle."""
    value = config.getoption("stackpilot_lifecycle", None) or os.environ.get(ENV_LIFECYCLE)
    return FIXTURE_SCOPES[Lifecycle.parse(value)]


def unit_identity(request) -> str:
    """Name of the test unit owning the stack: session, class, or class plus test."""
    if request.scope == "session":
        return "session"
    owner = request.cls.__name__ if request.cls is not None else request.module.__name__.rsplit(".", 1)[-1]
    if request.scope == "function":
        return f"{owner}-{request.node.name}"
    return owner


@pytest.fixture(scope="session")
def stack_lifecycle():
    lifecycle = StackLifecycle()
    yield lifecycle
    lifecycle.close()


@pytest.fixture(scope=stack_scope)
def compose_stack(request, stack_lifecycle):
    context = stack_lifecycle.setup(unit_identity(request))
    yield context.state
    stack_lifecycle.teardown(context)
