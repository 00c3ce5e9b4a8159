"""Batch groups and the poster handle given to batch functions.

A batch group gathers every pending loader sharing one batch
specification, invokes the batch function once with their deduplicated
items, and hands results back to the loaders through a `Poster`.
"""

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable, Iterable

if TYPE_CHECKING:
    from batch_loader.context import ResolutionContext
    from batch_loader.loader import BatchLoader
    from batch_loader.models import BatchSpec

logger = logging.getLogger(__name__)


class Poster:
    """Handle used by a batch function to publish its results.

    A poster may be called from any thread, including workers spawned
    by the batch function itself. Every write happens under the lock of
    the owning resolution context.
    """

    def __init__(self, group: 'BatchGroup') -> None:
        """Initialize a poster for a group.

        Args:
            group: The batch group whose loaders receive results.
        """
        self.group = group

    def __call__(self, item: 'Hashable', value: Any) -> None:  # noqa: ANN401
        """Post a result, same as `post`."""
        self.post(item, value)

    def post(self, item: 'Hashable', value: Any) -> None:  # noqa: ANN401
        """Publish the result for an item.

        Every loader of the group waiting on `item` receives `value`.
        If the group caches results, the value is also stored in the
        context cache, even when no loader of this group requested it.

        Args:
            item: Item key the result belongs to.
            value: The loaded result.
        """
        group = self.group

        with group.context.lock:
            for loader in group.members.get(item, ()):
                loader.assign(value)
            group.posted[item] = value

            if group.spec.cache:
                group.context.store(group.spec, item, value)

    def update(self, item: 'Hashable',
               function: 'Callable[[Any], Any]',
               default: Any = None) -> Any:  # noqa: ANN401
        """Atomically replace the result of an item.

        Useful to accumulate several records under one item, for example
        when loading one-to-many relations:

            poster.update(post.user_id, lambda posts: [*posts, post], [])

        Args:
            item: Item key the result belongs to.
            function: Callable receiving the current result (or `default`
                if nothing was posted yet) and returning the new one.
            default: Initial value passed to `function`.

        Returns:
            The new result.
        """
        with self.group.context.lock:
            value = function(self.group.posted.get(item, default))
            self.post(item, value)

        return value


class BatchGroup:
    """Set of pending loaders sharing one batch specification.

    A group is formed for a single pass: it executes its batch function
    at most once and is discarded afterwards. Members that are still
    without a result return to the pending registry of the context and
    may join a new group in a later pass.
    """

    def __init__(self, spec: 'BatchSpec', context: 'ResolutionContext',
                 members: 'Iterable[BatchLoader]' = ()) -> None:
        """Initialize a batch group.

        Args:
            spec: Batch specification the group executes.
            context: Resolution context owning cache and registry.
            members: Loaders to include in addition to the ones pending
                in the context registry under the same group key.
        """
        self.spec = spec
        self.context = context

        self.members: dict['Hashable', list['BatchLoader']] = {}
        self.posted: dict['Hashable', Any] = {}

        self._initial = list(members)
        self._executed = False

    @property
    def group_key(self) -> 'Hashable':
        """Identity of the group."""
        return self.spec.group_key

    @property
    def items(self) -> list['Hashable']:
        """Deduplicated items of the members, in first-seen order."""
        return list(self.members)

    def add(self, loader: 'BatchLoader') -> None:
        """Add a pending loader to the group."""
        waiting = self.members.setdefault(loader.item, [])
        if not any(member is loader for member in waiting):
            waiting.append(loader)

    def pending(self) -> list['BatchLoader']:
        """Return members that are still without a result."""
        return [
            loader
            for waiting in self.members.values()
            for loader in waiting
            if not loader.loaded
        ]

    def run(self) -> int:
        """Execute the batch function once for all members.

        Errors raised by the batch function propagate unchanged; results
        posted before the error stay assigned and cached.

        Returns:
            Number of members that received a result.

        Raises:
            RuntimeError: If the group was already executed.
        """
        if self._executed:
            raise RuntimeError(f'Batch group {self.spec.name!r} was already executed')
        self._executed = True

        restored = 0
        with self.context.lock:
            for loader in (*self.context.take(self.group_key), *self._initial):
                if loader.loaded:
                    continue
                if self.context.restore(loader):
                    restored += 1
                else:
                    self.add(loader)

        total = sum(len(waiting) for waiting in self.members.values())
        if not total:
            return restored

        logger.debug('Executing batch %s with %d items', self.spec.name, len(self.members))

        try:
            self.spec.function(self.items, Poster(self))
        finally:
            with self.context.lock:
                for loader in self.pending():
                    self.context.register(loader)

        return restored + total - len(self.pending())
