"""Deferred values loaded in batches.

A `BatchLoader` is a lazy placeholder for the result of a keyed lookup.
Application code creates one loader per item while assembling a result
and attaches the batch function able to load many items at once:

    def load_users(ids, poster):
        for user in User.where(id=ids):
            poster.post(user.id, user)

    user = BatchLoader(post.user_id).batch(load_users)

Forcing any loader, or resolving a structure that contains loaders,
invokes the batch function once for all pending items of its group.
"""

from typing import TYPE_CHECKING, Any, Self

from batch_loader.context import current_context
from batch_loader.errors import BatchAlreadyAssignedError, ErrorContext, NoBatchError, UnresolvedError
from batch_loader.models import BatchOptions, BatchSpec
from batch_loader.traversal import Deferred

if TYPE_CHECKING:
    from collections.abc import Hashable

if TYPE_CHECKING:
    from batch_loader.context import ResolutionContext
    from batch_loader.models import BatchFunction
    from batch_loader.traversal import RuntimeValue

_MISSING = object()


class BatchLoader(Deferred):
    """Lazy value for one item, loaded together with its group.

    Loaders register with the resolution context that is current when
    they are created. A loader with caching enabled keeps its result once
    loaded; a loader with caching disabled loads again on every `sync`.
    """

    def __init__(self, item: 'Hashable', *,
                 context: 'ResolutionContext | None' = None) -> None:
        """Initialize an unresolved loader.

        Args:
            item: Item key passed to the batch function.
            context: Resolution context to register with. Defaults to
                the current context.
        """
        self.item = item
        self.context = context or current_context()
        self.spec: BatchSpec | None = None

        self._value: Any = _MISSING

    def __repr__(self) -> str:
        """String representation."""
        state = f'value={self._value!r}' if self.loaded else 'pending'
        return f'<{type(self).__name__} item={self.item!r} {state}>'

    @property
    def loaded(self) -> bool:
        """Whether the loader holds a result."""
        return self._value is not _MISSING

    @property
    def value(self) -> 'RuntimeValue':
        """The loaded result.

        Raises:
            UnresolvedError: If nothing was loaded yet.
        """
        value = self._value
        if value is _MISSING:
            raise UnresolvedError(
                'Loader has no result yet',
                items=[self.item],
                context=self._error_context(),
            )

        return value

    def batch(self, function: 'BatchFunction', *,
              cache: bool | None = None,
              key: 'Hashable | None' = None) -> Self:
        """Attach the batch function loading this item.

        The function is called with the deduplicated list of pending
        items of its group and a `Poster` used to publish results.

        Args:
            function: Batch function.
            cache: Cache posted results in the context. Defaults to
                the `cache` setting of the context.
            key: Explicit group key. Loaders with equal keys share one
                group regardless of their functions.

        Returns:
            The loader itself.

        Raises:
            BatchAlreadyAssignedError: If a batch function is already
                attached.
        """
        if cache is None:
            cache = self.context.settings.cache

        with self.context.lock:
            if self.spec is not None:
                raise BatchAlreadyAssignedError(context=self._error_context())

            self.spec = BatchSpec(
                function=function,
                options=BatchOptions(cache=cache, key=key),
            )

        self.context.attach(self)

        return self

    def sync(self) -> 'RuntimeValue':
        """Force the loader and return its result.

        Returns:
            The loaded result.

        Raises:
            NoBatchError: If no batch function is attached.
            UnresolvedError: If the batch function did not post the item.
            Any exception raised by the batch function.
        """
        if self.spec is None:
            raise NoBatchError(context=self._error_context())

        with self.context.lock:
            if self.loaded:
                if self.spec.cache:
                    return self._value
                self._value = _MISSING
                self.context.register(self)

        return self.context.sync(self)

    def assign(self, value: 'RuntimeValue') -> None:
        """Store the result.

        Called by batch groups while holding the lock of their context.
        """
        self._value = value

    def _error_context(self) -> ErrorContext:
        """Build an error context describing the loader."""
        if self.spec is None:
            return ErrorContext(item=self.item)

        return ErrorContext(batch=self.spec.name, item=self.item)
