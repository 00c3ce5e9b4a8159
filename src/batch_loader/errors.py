"""Core exception hierarchy.

This module defines the error types raised by the loader runtime when
a deferred value is misused or can not be resolved. Errors raised by
user-supplied batch functions are never wrapped: they reach the caller
of the resolution unchanged.
"""

from collections.abc import Mapping, Set
from os import linesep
from typing import TYPE_CHECKING, Any, TypedDict

from yaml import dump

if TYPE_CHECKING:
    from collections.abc import Hashable

SNIPPET_ELLIPSIS = f' ...{linesep}'
SNIPPET_INDENT = 2

FORMAT_REPLACER = '<runtime object>'
FORMAT_BATCH = '<unknown batch>'
FORMAT_INDENT = 4

SCALARS = (str, bytes, int, float, bool)
SEQUENCES = (list, tuple)


class ErrorContext(TypedDict, total=False):
    """Container describing contextual information for error formatting.

    All fields are optional; the formatter adapts output based on
    provided values.
    """

    #: Qualified name of the batch function involved.
    batch: str | None

    #: Item of the loader that triggered the error.
    item: Any
    #: Items still waiting for a result.
    items: list[Any] | None

    #: Underlying exception that triggered formatting.
    error: Exception | None


class ErrorFormatter:
    """Utility class for formatting loader errors.

    Produces human-readable messages with the batch location and
    a YAML snippet listing the items involved.
    """

    @classmethod
    def format(cls, message: str, context: ErrorContext | None = None) -> str:
        """Format an error message using contextual information.

        Args:
            message: Base human-readable error message.
            context: Optional error context with batch and item data.

        Returns:
            A fully formatted error message suitable for display.
        """
        if not context:
            return message

        message += linesep
        message += cls.get_location_string(context, indent=FORMAT_INDENT)
        message += cls.get_snippet_string(context, indent=FORMAT_INDENT * 2)

        return message

    @classmethod
    def get_location_string(cls, context: ErrorContext, *,
                            indent: str | int | None = None) -> str:
        """Format the batch location line.

        Args:
            context: Error context containing location metadata.
            indent: Optional indentation (string or number of spaces).

        Returns:
            A formatted location string with the batch name and,
            when available, the item.
        """
        indent = cls._ensure_indent(indent)

        batch = context.get('batch')
        if not batch:
            batch = FORMAT_BATCH

        message = f'{indent}in batch "{batch}"'
        if 'item' in context:
            message += f', item {cls._filter_unsafe(context["item"])!r}'
        message += linesep

        return message

    @classmethod
    def get_snippet_string(cls, context: ErrorContext, *,
                           indent: str | int | None = None) -> str:
        """Generate a snippet listing the pending items.

        Args:
            context: Error context containing item data.
            indent: Optional indentation (string or number of spaces).

        Returns:
            A formatted multi-line snippet string, or an empty string
            if no items are available.
        """
        indent = cls._ensure_indent(indent)

        if items := context.get('items'):
            snippet = f'{indent}{SNIPPET_ELLIPSIS}'
            snippet += cls._make_yaml({'items': list(items)}, indent)
            snippet += linesep
            return snippet

        return ''

    @classmethod
    def _filter_unsafe(cls, value: Any) -> Any:  # noqa: ANN401
        """Recursively sanitize values for safe YAML serialization.

        Args:
            value: Arbitrary value to sanitize.

        Returns:
            A YAML-safe representation of the value.
        """
        if value is None or isinstance(value, SCALARS):
            return value

        if isinstance(value, Mapping):
            return {
                cls._filter_unsafe(key): cls._filter_unsafe(item)
                for key, item in value.items()
            }

        if isinstance(value, (*SEQUENCES, Set)):
            return [
                cls._filter_unsafe(item)
                for item in value
            ]

        return FORMAT_REPLACER

    @classmethod
    def _make_yaml(cls, value: Any, indent: str = '') -> str:  # noqa: ANN401
        """Serialize a value to a YAML-formatted string.

        Args:
            value: Arbitrary value to serialize.
            indent: Optional indentation prefix.

        Returns:
            A YAML-formatted string representation of the value.
        """
        data = dump(
            cls._filter_unsafe(value),
            indent=SNIPPET_INDENT,
            sort_keys=False,
        )

        return cls._make_indent(data, indent)

    @staticmethod
    def _make_indent(value: str, indent: str) -> str:
        """Apply indentation to a multi-line string.

        Empty or whitespace-only lines are omitted.
        """
        if not indent:
            return value

        return linesep.join(
            f'{indent}{line}'
            for line in value.splitlines()
            if line.strip()
        )

    @staticmethod
    def _ensure_indent(indent: str | int | None = None) -> str:
        """Normalize indentation given as a string or a number of spaces."""
        if isinstance(indent, int) and indent > 0:
            return ' ' * indent

        if isinstance(indent, str):
            return indent

        return ''


class BatchLoaderError(Exception, ErrorFormatter):
    """Base exception for all batch-loader errors.

    All custom exceptions raised by the library inherit from this
    class to allow unified error handling by callers.
    """

    def __init__(self, message: str, *,
                 context: ErrorContext | None = None) -> None:
        """Initialize an error.

        Args:
            message: Human-readable error description.
            context: Error context containing optional runtime values.
        """
        self.message = message
        self.context = context

        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return self.format(self.message, self.context)


class NoBatchError(BatchLoaderError):
    """Raised when a loader is forced before a batch function is attached."""

    def __init__(self, message: str = 'Please provide a batch function first', *,
                 context: ErrorContext | None = None) -> None:
        super().__init__(message, context=context)


class BatchAlreadyAssignedError(BatchLoaderError):
    """Raised when a batch function is attached twice to the same loader."""

    def __init__(self, message: str = 'Batch function is already assigned', *,
                 context: ErrorContext | None = None) -> None:
        super().__init__(message, context=context)


class UnresolvedError(BatchLoaderError):
    """Raised when loaders are left without a result.

    This happens when a batch function returns without posting a value
    for some of its items and no further progress is possible.
    """

    def __init__(self, message: str = 'Items were not loaded by their batch function', *,
                 items: 'list[Hashable] | None' = None,
                 context: ErrorContext | None = None) -> None:
        """Initialize an error.

        Args:
            message: Human-readable error description.
            items: Items that remained without a result.
            context: Error context containing optional runtime values.
        """
        self.items = list(items or ())

        if self.items and context is None:
            context = ErrorContext(items=self.items)

        super().__init__(message, context=context)


class ResolutionTimeoutError(UnresolvedError, TimeoutError):
    """Raised when a resolution does not complete within the configured timeout.

    Groups still running keep committing their posted results to the
    context cache after this error is raised.
    """


class ResolutionLimitError(BatchLoaderError):
    """Raised when resolution exceeds the configured number of passes.

    Usually caused by batch functions that keep producing new deferred
    values in every result.
    """
