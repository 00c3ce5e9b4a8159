"""Structural traversal of values containing deferred loaders.

This module defines the interface of deferred values and the walker
that locates them inside arbitrary nested structures and replaces them
with their results once they are loaded.

Supported container shapes are closed: mappings, sequences, pydantic
models, and user types implementing the `Composite` protocol. Any other
object is an opaque leaf and is never inspected.
"""

from abc import ABC, abstractmethod
from copy import copy
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

#: Runtime values are arbitrary Python objects produced by application
#: code or posted by batch functions.
type RuntimeValue = Any

MAPPINGS = (dict,)
SEQUENCES = (list, tuple, set, frozenset)


class Deferred(ABC):
    """Placeholder for a value produced later by a batch function."""

    @property
    @abstractmethod
    def loaded(self) -> bool:
        """Whether a result is available."""

    @property
    @abstractmethod
    def value(self) -> RuntimeValue:
        """The loaded result."""


@runtime_checkable
class Composite(Protocol):
    """Extension point for user-defined containers.

    Composite objects expose their children explicitly and know how to
    build a copy of themselves from rewritten children, so the walker
    never has to guess their internals.
    """

    def __batch_children__(self) -> 'Iterable[RuntimeValue]':
        """Return children that may contain deferred values."""
        ...  # pragma: no cover

    def __batch_rebuild__(self, children: list[RuntimeValue]) -> 'Composite':
        """Return a copy holding the given children in the same order."""
        ...  # pragma: no cover


def children(value: RuntimeValue) -> list[RuntimeValue] | None:
    """Return the children of a container.

    Args:
        value: Any runtime value.

    Returns:
        A list of children, or `None` if the value is a leaf.
    """
    if isinstance(value, MAPPINGS):
        return list(value.values())

    if isinstance(value, SEQUENCES):
        return list(value)

    if isinstance(value, BaseModel):
        return [getattr(value, name) for name in type(value).model_fields]

    if isinstance(value, Composite):
        return list(value.__batch_children__())

    return None


def rebuild(value: RuntimeValue, items: list[RuntimeValue]) -> RuntimeValue:
    """Build a copy of a container from rewritten children.

    Args:
        value: Original container.
        items: Rewritten children in the order returned by `children`.

    Returns:
        A container of the same type holding the new children.
    """
    if isinstance(value, MAPPINGS):
        result = copy(value)
        for key, item in zip(value.keys(), items, strict=True):
            result[key] = item
        return result

    if isinstance(value, tuple) and hasattr(value, '_make'):
        return value._make(items)

    if isinstance(value, SEQUENCES):
        return type(value)(items)

    if isinstance(value, BaseModel):
        fields = type(value).model_fields
        return value.model_copy(update=dict(zip(fields, items, strict=True)))

    return value.__batch_rebuild__(items)


def iter_pending(value: RuntimeValue) -> 'Iterator[Deferred]':
    """Iterate over deferred values that are not loaded yet.

    The walk descends into containers and into results of loaded
    deferred values, since a result may itself carry new deferred
    values. Each pending value is yielded once, and containers reached
    more than once (shared or cyclic references) are visited once.

    Every call starts a fresh walk, so the iterator reflects results
    posted since the previous call.

    Args:
        value: Structure to inspect.

    Yields:
        Pending deferred values in depth-first order.
    """
    visited: dict[int, RuntimeValue] = {}
    stack = [value]

    while stack:
        current = stack.pop()

        if isinstance(current, Deferred):
            if id(current) in visited:
                continue
            visited[id(current)] = current
            if not current.loaded:
                yield current
            else:
                stack.append(current.value)
            continue

        items = children(current)
        if items is None or id(current) in visited:
            continue

        visited[id(current)] = current
        stack.extend(reversed(items))


def rewrite(value: RuntimeValue) -> RuntimeValue:
    """Replace loaded deferred values with their results.

    Returns a structure of the same shape. Deferred values without
    a result are kept in place. Containers whose children did not change
    are returned as is, so a structure without deferred values is
    returned unchanged.

    Args:
        value: Structure to rewrite.

    Returns:
        The rewritten structure.

    Raises:
        ValueError: If the structure contains a reference cycle.
    """
    return _rewrite(value, set())


def _rewrite(value: RuntimeValue, active: set[int]) -> RuntimeValue:
    """Rewrite a value, tracking containers and loaded values on the current path."""
    if isinstance(value, Deferred) and not value.loaded:
        return value

    items = [value.value] if isinstance(value, Deferred) else children(value)
    if items is None:
        return value

    if id(value) in active:
        raise ValueError(f'Can not rewrite cyclic structure {type(value).__name__}')

    active.add(id(value))
    try:
        rewritten = [_rewrite(item, active) for item in items]
    finally:
        active.discard(id(value))

    if isinstance(value, Deferred):
        return rewritten[0]

    if all(new is old for new, old in zip(rewritten, items, strict=True)):
        return value

    return rebuild(value, rewritten)
