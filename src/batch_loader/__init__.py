"""Batched loading of deferred values.

The `batch_loader` package removes N+1 lookups: instead of fetching
related data once per item, application code creates lazy loaders and
resolves them together, so every batch function runs once with all
pending items.

Key features:
- lazy `BatchLoader` values grouped by the batch function loading them;
- recursive resolution of nested structures, including results that
  carry new loaders;
- per unit of work caching with explicit clearing;
- thread-safe posting of results from concurrent workers.
"""

from .batch import BatchGroup, Poster
from .context import ResolutionContext, clear, current_context, resolve, unit_of_work
from .errors import (
    BatchAlreadyAssignedError,
    BatchLoaderError,
    NoBatchError,
    ResolutionLimitError,
    ResolutionTimeoutError,
    UnresolvedError,
)
from .loader import BatchLoader
from .middleware import BatchLoaderMiddleware
from .models import BatchOptions, BatchSpec, LoaderSettings
from .traversal import Composite, Deferred

__all__ = (
    'BatchAlreadyAssignedError',
    'BatchGroup',
    'BatchLoader',
    'BatchLoaderError',
    'BatchLoaderMiddleware',
    'BatchOptions',
    'BatchSpec',
    'Composite',
    'Deferred',
    'LoaderSettings',
    'NoBatchError',
    'Poster',
    'ResolutionContext',
    'ResolutionLimitError',
    'ResolutionTimeoutError',
    'UnresolvedError',
    'clear',
    'current_context',
    'resolve',
    'unit_of_work',
)
