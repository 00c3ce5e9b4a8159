"""Base Pydantic models for batch specifications and runtime settings.

This module defines the immutable models describing how a group of
deferred values is loaded, and the settings model resolving runtime
configuration from the environment.
"""

from collections.abc import Callable, Hashable
from functools import partial
from inspect import ismodule
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from batch_loader.batch import Poster

#: Batch functions receive the deduplicated items of their group and
#: a poster handle used to publish individual results.
type BatchFunction = Callable[[list[Hashable], 'Poster'], Any]

#: Prefix of environment variables read by `LoaderSettings`.
ENV_PREFIX = 'BATCH_LOADER_'


class SchemaModel(BaseModel):
    """Base immutable model for loader configuration.

    Design principles enforced by this model:
        - Immutability: a specification can not change after it was
          attached to a deferred value, so its group identity is stable.
        - Strict schema validation: unknown or extra fields are rejected
          to avoid silent errors caused by typos.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        frozen=True,
        extra='forbid',
    )


class BatchOptions(SchemaModel):
    """Options attached together with a batch function."""

    cache: bool = Field(
        default=True,
        title='Cache results',
        description=(
            'Store posted results in the resolution context so that later '
            'loaders for the same item and batch reuse them without '
            'invoking the batch function again.'
        ),
    )

    key: Any = Field(
        default=None,
        title='Group key',
        description=(
            'Explicit hashable identity of the batch group. When omitted, '
            'the identity is derived from the batch function source.'
        ),
    )


class Identity:
    """Hashable reference comparing the wrapped object by identity.

    Holds a strong reference, so the identity of the object can not be
    reused by another one while any key containing it is alive.
    """

    __slots__ = ('target',)

    def __init__(self, target: Any) -> None:  # noqa: ANN401
        self.target = target

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Identity) and self.target is other.target

    def __hash__(self) -> int:
        return id(self.target)

    def __repr__(self) -> str:
        return f'Identity({self.target!r})'


def hashable(value: Any) -> Hashable:  # noqa: ANN401
    """Return the value itself if hashable, or its identity otherwise."""
    try:
        hash(value)
    except TypeError:
        return Identity(value)

    return value


def function_identity(function: Callable[..., Any]) -> Hashable:
    """Compute a structural identity for a batch function.

    Closures created from the same source location share a code object,
    so every loader built by the same call site joins one group even
    though each of them received a fresh function object. Bound methods
    are additionally distinguished by their owner, and partials by their
    bound arguments.

    Args:
        function: A batch function.

    Returns:
        A hashable identity of the function.
    """
    if isinstance(function, partial):
        return (
            function_identity(function.func),
            tuple(hashable(arg) for arg in function.args),
            tuple(sorted((name, hashable(arg)) for name, arg in function.keywords.items())),
        )

    code = getattr(function, '__code__', None)
    if code is None:
        return Identity(function)

    owner = getattr(function, '__self__', None)
    if owner is not None and not ismodule(owner):
        return code.co_filename, code, Identity(owner)

    return code.co_filename, code


def function_name(function: Callable[..., Any]) -> str:
    """Return a dotted qualified name of a callable for diagnostics."""
    module = getattr(function, '__module__', None)
    name = getattr(function, '__qualname__', None) or type(function).__qualname__

    if module:
        return f'{module}.{name}'

    return name


class BatchSpec(SchemaModel):
    """Batch function together with its options.

    Two specifications belong to the same group if their `group_key`
    values are equal.
    """

    function: Callable[..., Any] = Field(
        title='Batch function',
        description='Callable receiving the pending items and a poster handle.',
    )

    options: BatchOptions = Field(
        default_factory=BatchOptions,
        title='Batch options',
    )

    @property
    def cache(self) -> bool:
        """Whether posted results are cached in the context."""
        return self.options.cache

    @property
    def group_key(self) -> Hashable:
        """Identity of the batch group this specification belongs to."""
        if self.options.key is not None:
            return self.options.key, self.options.cache

        return function_identity(self.function), self.options.cache

    @property
    def name(self) -> str:
        """Qualified name of the batch function."""
        return function_name(self.function)


class SettingsModel(BaseSettings):
    """Base immutable model for runtime settings.

    Design principles enforced by this model:
        - Immutability: resolved settings cannot be modified after creation.
        - Tolerant schema handling: unknown environment variables are
          ignored.
    """

    model_config = SettingsConfigDict(
        frozen=True,
        extra='ignore',
    )


class LoaderSettings(SettingsModel):
    """Runtime settings of a resolution context.

    Values are read from environment variables prefixed with
    `BATCH_LOADER_`, for example `BATCH_LOADER_MAX_WORKERS=4`.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        frozen=True,
        extra='ignore',
    )

    cache: bool = Field(
        default=True,
        title='Default cache flag',
        description='Cache flag used when a batch function is attached without one.',
    )

    strict: bool = Field(
        default=True,
        title='Strict resolution',
        description=(
            'Raise an error when loaders are left without a result after '
            'resolution. When disabled, such loaders are kept in the result.'
        ),
    )

    max_workers: int = Field(
        default=1,
        ge=1,
        title='Maximum workers',
        description='Number of batch groups allowed to run in parallel.',
    )

    timeout: float | None = Field(
        default=None,
        gt=0,
        title='Timeout',
        description='Deadline in seconds for a single resolution call.',
    )

    max_passes: int = Field(
        default=100,
        ge=1,
        title='Maximum passes',
        description='Upper bound of resolution passes for one structure.',
    )
