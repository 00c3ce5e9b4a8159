"""Resolution context and the ambient unit-of-work handle.

A resolution context owns the result cache and the registry of pending
loaders for one unit of work (for example, one incoming request). It
drives resolution of nested structures to a fixpoint: batch results may
carry new deferred values, which are resolved in subsequent passes.

The current context is kept in a `ContextVar`, so every thread and every
asyncio task sees its own one. Applications clear it at the boundary of
each unit of work with `clear()` or by running inside `unit_of_work()`.
"""

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from contextlib import contextmanager
from contextvars import ContextVar, copy_context
from itertools import count
from threading import RLock
from time import monotonic
from typing import TYPE_CHECKING, Any

from batch_loader.batch import BatchGroup
from batch_loader.errors import (
    ErrorContext,
    NoBatchError,
    ResolutionLimitError,
    ResolutionTimeoutError,
    UnresolvedError,
)
from batch_loader.models import LoaderSettings
from batch_loader.traversal import iter_pending, rewrite

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterator, Sequence

if TYPE_CHECKING:
    from batch_loader.loader import BatchLoader
    from batch_loader.models import BatchSpec
    from batch_loader.traversal import RuntimeValue

logger = logging.getLogger(__name__)

_current: ContextVar['ResolutionContext | None'] = ContextVar('batch_loader_context', default=None)


class ResolutionContext:
    """Cache and pending-loader registry of a unit of work.

    All writes to the cache, the registry and the results of loaders
    happen under `lock`, so batch functions may post results from
    concurrent workers.
    """

    def __init__(self, settings: LoaderSettings | None = None) -> None:
        """Initialize an empty context.

        Args:
            settings: Runtime settings. Read from the environment
                if not provided.
        """
        self.settings = settings or LoaderSettings()
        self.lock = RLock()

        self._cache: dict[tuple[Hashable, Hashable], Any] = {}
        self._pending: dict[Hashable, list[BatchLoader]] = {}

    def __repr__(self) -> str:
        """String representation."""
        return f'<{type(self).__name__} cached={len(self._cache)} pending={len(self.pending)}>'

    @property
    def pending(self) -> list['BatchLoader']:
        """Loaders waiting in the registry, in registration order."""
        with self.lock:
            return [
                loader
                for loaders in self._pending.values()
                for loader in loaders
            ]

    def lookup(self, spec: 'BatchSpec', item: 'Hashable') -> tuple[bool, Any]:
        """Look up a cached result.

        Args:
            spec: Batch specification the item belongs to.
            item: Item key.

        Returns:
            A pair of a hit flag and the cached value (`None` on a miss).
        """
        key = (spec.group_key, item)

        with self.lock:
            if key in self._cache:
                return True, self._cache[key]

        return False, None

    def store(self, spec: 'BatchSpec', item: 'Hashable', value: Any) -> None:  # noqa: ANN401
        """Store a result in the cache."""
        with self.lock:
            self._cache[spec.group_key, item] = value

    def restore(self, loader: 'BatchLoader') -> bool:
        """Assign a cached result to a loader, if there is one.

        Loaders with caching disabled are never restored.

        Returns:
            Whether the loader received a cached result.
        """
        spec = loader.spec
        if spec is None or not spec.cache:
            return False

        with self.lock:
            found, value = self.lookup(spec, loader.item)
            if found:
                loader.assign(value)

        if found:
            logger.debug('Cache hit for %s item %r', spec.name, loader.item)

        return found

    def register(self, loader: 'BatchLoader') -> None:
        """Add a loader to the pending registry."""
        if loader.spec is None:
            raise NoBatchError(context=ErrorContext(item=loader.item))

        with self.lock:
            self._pending.setdefault(loader.spec.group_key, []).append(loader)

    def attach(self, loader: 'BatchLoader') -> None:
        """Resolve a loader from the cache or add it to the registry."""
        with self.lock:
            if not self.restore(loader):
                self.register(loader)

    def take(self, group_key: 'Hashable') -> list['BatchLoader']:
        """Remove and return the pending loaders of a group."""
        with self.lock:
            return self._pending.pop(group_key, [])

    def clear(self) -> None:
        """Drop the cache and every pending loader."""
        with self.lock:
            self._cache.clear()
            self._pending.clear()

        logger.debug('Resolution context cleared')

    def sync(self, loader: 'BatchLoader') -> 'RuntimeValue':
        """Run the group of a loader once and return its result.

        Every pending loader sharing the batch specification of `loader`
        joins the same group.

        Args:
            loader: Loader to resolve.

        Returns:
            The loaded result.

        Raises:
            NoBatchError: If the loader has no batch function.
            UnresolvedError: If the batch function did not post the item.
        """
        if loader.spec is None:
            raise NoBatchError(context=ErrorContext(item=loader.item))

        self._execute([BatchGroup(loader.spec, self, (loader,))], [loader], self._deadline())

        if not loader.loaded:
            raise UnresolvedError(
                items=[loader.item],
                context=ErrorContext(batch=loader.spec.name, item=loader.item),
            )

        return loader.value

    def resolve(self, value: 'RuntimeValue', *, strict: bool | None = None) -> 'RuntimeValue':
        """Resolve every deferred value inside a structure.

        Pending loaders are grouped by batch specification and every
        group runs once per pass. Passes repeat while results introduce
        new pending loaders and stop as soon as a pass resolves nothing.

        Args:
            value: Arbitrary structure possibly containing loaders.
            strict: Raise if loaders remain without a result. Defaults
                to the `strict` setting.

        Returns:
            A copy of the structure with loaders replaced by results.
            The structure itself is returned if it holds no loaders.

        Raises:
            NoBatchError: If a pending loader has no batch function.
            UnresolvedError: If loaders remain pending in strict mode.
            ResolutionLimitError: If the number of passes exceeds the limit.
            ResolutionTimeoutError: If the timeout setting expires.
            Any exception raised by batch functions.
        """
        if strict is None:
            strict = self.settings.strict

        deadline = self._deadline()

        for number in count(1):
            pending = list(iter_pending(value))
            if not pending:
                break

            if number > self.settings.max_passes:
                raise ResolutionLimitError(
                    f'Resolution did not finish in {self.settings.max_passes} passes',
                    context=ErrorContext(items=[loader.item for loader in pending]),
                )

            logger.debug('Resolution pass %d with %d pending loaders', number, len(pending))

            if not self._execute(self._group(pending), pending, deadline):
                break

        if strict and (leftovers := list(iter_pending(value))):
            raise UnresolvedError(items=[loader.item for loader in leftovers])

        return rewrite(value)

    def _group(self, pending: 'Sequence[BatchLoader]') -> list[BatchGroup]:
        """Group pending loaders by batch specification."""
        specs: dict[Hashable, BatchSpec] = {}
        members: dict[Hashable, list[BatchLoader]] = {}

        for loader in pending:
            spec = getattr(loader, 'spec', None)
            if spec is None:
                raise NoBatchError(context=ErrorContext(item=getattr(loader, 'item', None)))

            specs.setdefault(spec.group_key, spec)
            members.setdefault(spec.group_key, []).append(loader)

        return [
            BatchGroup(spec, self, members[key])
            for key, spec in specs.items()
        ]

    def _execute(self, groups: 'Sequence[BatchGroup]',
                 pending: 'Sequence[BatchLoader]',
                 deadline: float | None) -> int:
        """Execute groups, sequentially or in a worker pool.

        Returns:
            Number of loaders that received a result.
        """
        if self.settings.max_workers == 1 and deadline is None:
            return sum(group.run() for group in groups)

        executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix='batch-loader',
        )

        try:
            futures = [
                executor.submit(copy_context().run, group.run)
                for group in groups
            ]

            timeout = None if deadline is None else max(deadline - monotonic(), 0.0)
            done, running = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)

            for future in done:
                future.result()

            if running:
                raise ResolutionTimeoutError(
                    f'Resolution did not finish in {self.settings.timeout} seconds',
                    items=list(dict.fromkeys(
                        loader.item
                        for loader in pending
                        if not loader.loaded
                    )),
                )

            return sum(future.result() for future in done)

        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _deadline(self) -> float | None:
        """Compute the deadline of a resolution call."""
        if self.settings.timeout is None:
            return None

        return monotonic() + self.settings.timeout


def current_context() -> ResolutionContext:
    """Return the current resolution context, creating it on first use."""
    context = _current.get()
    if context is None:
        context = ResolutionContext()
        _current.set(context)

    return context


def clear() -> None:
    """Clear and discard the current resolution context.

    The next loader created afterwards starts a fresh context.
    Applications call this at the boundary of each unit of work.
    """
    context = _current.get()
    if context is not None:
        context.clear()

    _current.set(None)


@contextmanager
def unit_of_work(settings: LoaderSettings | None = None) -> 'Iterator[ResolutionContext]':
    """Run a block with a fresh current resolution context.

    The context is cleared when the block exits and the previous
    current context is restored.

    Args:
        settings: Runtime settings of the new context.

    Yields:
        The new resolution context.
    """
    context = ResolutionContext(settings)
    token = _current.set(context)

    try:
        yield context
    finally:
        context.clear()
        _current.reset(token)


def resolve(value: 'RuntimeValue', *, strict: bool | None = None) -> 'RuntimeValue':
    """Resolve a structure with the current resolution context.

    See `ResolutionContext.resolve`.
    """
    return current_context().resolve(value, strict=strict)
