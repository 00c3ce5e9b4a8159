"""Tests configurations and fixtures."""

from typing import TYPE_CHECKING

import pytest

from batch_loader import LoaderSettings, ResolutionContext, unit_of_work
from tests.examples.records import ORGANIZATIONS, USERS

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture(autouse=True)
def isolated_context() -> 'Iterator[ResolutionContext]':
    """Run every test inside its own unit of work.

    Loaders created without an explicit context register with the
    context installed here, so cached results never leak between tests.

    Yields:
        The current resolution context of the test.
    """
    with unit_of_work(LoaderSettings()) as context:
        yield context


@pytest.fixture(autouse=True)
def tables() -> 'Iterator[None]':
    """Provide empty in-memory tables and drop their rows afterwards."""
    USERS.clear()
    ORGANIZATIONS.clear()

    yield

    USERS.clear()
    ORGANIZATIONS.clear()


@pytest.fixture
def make_context() -> 'Callable[..., ResolutionContext]':
    """Provide a factory of resolution contexts with custom settings.

    Returns:
        A callable accepting `LoaderSettings` fields as keyword arguments.
    """
    def make(**settings: object) -> ResolutionContext:
        return ResolutionContext(LoaderSettings(**settings))

    return make
