"""Tests for batch specifications and settings."""

import gc
from functools import partial
from typing import TYPE_CHECKING, Any

import pydantic
import pytest

from batch_loader import BatchOptions, BatchSpec, LoaderSettings

if TYPE_CHECKING:
    from batch_loader import Poster


def noop(items: list[Any], poster: 'Poster') -> None:
    """Batch function posting nothing."""


def make_batch(offset: int) -> 'Any':
    """Return a closure created by the same source location on each call."""
    def load(items: list[int], poster: 'Poster') -> None:
        for item in items:
            poster.post(item, item + offset)

    return load


class Repository:
    """Object providing a batch method."""

    def load(self, items: list[Any], poster: 'Poster') -> None:
        """Batch method posting nothing."""


def test_closures_share_group() -> None:
    """Group closures created by the same source location together."""
    first = BatchSpec(function=make_batch(1))
    second = BatchSpec(function=make_batch(2))

    assert first.function is not second.function
    assert first.group_key == second.group_key


def test_functions_differ() -> None:
    """Keep different functions in different groups."""
    assert BatchSpec(function=noop).group_key != BatchSpec(function=make_batch(1)).group_key


def test_cache_flag_splits_groups() -> None:
    """Keep cached and non-cached loaders of one function apart."""
    cached = BatchSpec(function=noop, options=BatchOptions(cache=True))
    uncached = BatchSpec(function=noop, options=BatchOptions(cache=False))

    assert cached.group_key != uncached.group_key


def test_explicit_key() -> None:
    """Use the explicit key instead of the function identity."""
    first = BatchSpec(function=noop, options=BatchOptions(key='users'))
    second = BatchSpec(function=make_batch(1), options=BatchOptions(key='users'))

    assert first.group_key == second.group_key == ('users', True)


def test_bound_methods() -> None:
    """Distinguish bound methods by their owners."""
    first, second = Repository(), Repository()

    assert BatchSpec(function=first.load).group_key == BatchSpec(function=first.load).group_key
    assert BatchSpec(function=first.load).group_key != BatchSpec(function=second.load).group_key


class Loader:
    """Callable object used as a batch function."""

    def __call__(self, items: list[Any], poster: 'Poster') -> None:
        """Post nothing."""


def test_callable_objects() -> None:
    """Use the identity of callables without code."""
    function = Loader()

    assert BatchSpec(function=function).group_key == BatchSpec(function=function).group_key
    assert BatchSpec(function=function).group_key != BatchSpec(function=Loader()).group_key


def test_partials_share_group() -> None:
    """Group partials of one function bound to the same arguments."""
    table, other = ['rows'], ['rows']

    first = BatchSpec(function=partial(noop, table, limit=10))
    second = BatchSpec(function=partial(noop, table, limit=10))

    assert first.group_key == second.group_key
    assert first.group_key != BatchSpec(function=partial(noop, other, limit=10)).group_key
    assert first.group_key != BatchSpec(function=partial(noop, table, limit=20)).group_key


def test_bound_method_owner_lifetime() -> None:
    """Keep the owner identity in the group key after the owner is gone."""
    key = BatchSpec(function=Repository().load).group_key
    gc.collect()

    owners = [Repository() for _ in range(100)]

    assert all(BatchSpec(function=owner.load).group_key != key for owner in owners)


@pytest.mark.parametrize('function, name', (
    pytest.param(noop, 'tests.test_models.noop', id='function'),
    pytest.param(make_batch(0), 'tests.test_models.make_batch.<locals>.load', id='closure'),
    pytest.param(Repository().load, 'tests.test_models.Repository.load', id='method'),
    pytest.param(partial(noop), 'functools.partial', id='partial'),
))
def test_spec_name(function: Any, name: str) -> None:
    """Describe batch functions with qualified names."""
    assert BatchSpec(function=function).name == name


def test_spec_is_frozen() -> None:
    """Refuse to modify a specification after creation."""
    spec = BatchSpec(function=noop)

    with pytest.raises(pydantic.ValidationError, match=r'Instance is frozen'):
        spec.function = make_batch(1)


def test_spec_requires_callable() -> None:
    """Reject non-callable batch functions."""
    with pytest.raises(pydantic.ValidationError):
        BatchSpec(function='not a function')


def test_options_forbid_extra() -> None:
    """Reject unknown options."""
    with pytest.raises(pydantic.ValidationError, match=r'Extra inputs are not permitted'):
        BatchOptions(cahce=False)  # type: ignore[call-arg]


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Provide defaults when the environment is empty."""
    for name in ('CACHE', 'STRICT', 'MAX_WORKERS', 'TIMEOUT', 'MAX_PASSES'):
        monkeypatch.delenv(f'BATCH_LOADER_{name}', raising=False)

    settings = LoaderSettings()

    assert settings.cache is True
    assert settings.strict is True
    assert settings.max_workers == 1
    assert settings.timeout is None
    assert settings.max_passes == 100


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Read settings from prefixed environment variables."""
    monkeypatch.setenv('BATCH_LOADER_CACHE', 'false')
    monkeypatch.setenv('BATCH_LOADER_MAX_WORKERS', '4')
    monkeypatch.setenv('BATCH_LOADER_TIMEOUT', '2.5')
    monkeypatch.setenv('UNRELATED_VARIABLE', 'ignored')

    settings = LoaderSettings()

    assert settings.cache is False
    assert settings.max_workers == 4
    assert settings.timeout == 2.5


@pytest.mark.parametrize('field, value', (
    pytest.param('max_workers', 0, id='no workers'),
    pytest.param('timeout', 0, id='zero timeout'),
    pytest.param('max_passes', 0, id='no passes'),
))
def test_settings_validation(field: str, value: Any) -> None:
    """Reject out of range settings."""
    with pytest.raises(pydantic.ValidationError):
        LoaderSettings(**{field: value})
