"""Pytest plugin for tests of code using batch loaders.

This module integrates `batch_loader` with pytest by:
- registering a command-line option controlling parallel group execution;
- providing the `batch_context` fixture, which runs a test inside its
  own unit of work so cached results never leak between tests.
"""

from typing import TYPE_CHECKING

import pytest

from batch_loader.context import unit_of_work
from batch_loader.models import LoaderSettings

if TYPE_CHECKING:
    from collections.abc import Iterator

if TYPE_CHECKING:
    from _pytest.config.argparsing import Parser

if TYPE_CHECKING:
    from batch_loader.context import ResolutionContext


def pytest_addoption(parser: 'Parser') -> None:
    """Register pytest command-line options for batch-loader.

    Args:
        parser: Pytest argument parser.
    """
    parser.addoption(
        '--batch-loader-workers',
        action='store',
        type=int,
        dest='batch_loader_workers',
        default=None,
        help=(
            'Number of batch groups executed in parallel by contexts '
            'provided with the `batch_context` fixture. '
            'Defaults to the BATCH_LOADER_MAX_WORKERS environment setting.'
        ),
    )


@pytest.fixture
def batch_context(request: pytest.FixtureRequest) -> 'Iterator[ResolutionContext]':
    """Provide a fresh current resolution context for a test.

    The context is installed as the current one for the duration of the
    test and cleared afterwards.

    Yields:
        The resolution context of the test.
    """
    workers = request.config.getoption('batch_loader_workers', default=None)

    settings = LoaderSettings()
    if workers is not None:
        settings = settings.model_copy(update={'max_workers': workers})

    with unit_of_work(settings) as context:
        yield context
