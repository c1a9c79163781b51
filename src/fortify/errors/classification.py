"""Exception classification for recorded and ignored failures.

Error tags are exception types; a tag matches an error when the error is an
instance of it. Callers can further refine the match with predicates.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from fortify.errors.base import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


class ErrorClass(str, Enum):
    """How a primitive treats an error raised by the decorated operation."""

    RECORDED = "recorded"
    """Counted as a failure."""

    IGNORED = "ignored"
    """Rethrown as-is and excluded from statistics."""

    NOT_RECORDED = "not_recorded"
    """Outside an explicit record set; rethrown without affecting state."""


def instance_of(*types: type[BaseException]) -> Callable[[BaseException], bool]:
    """Build a predicate matching instances of any of ``types``."""
    frozen = tuple(types)

    def predicate(error: BaseException) -> bool:
        return isinstance(error, frozen)

    return predicate


def any_of(
    *predicates: Callable[[BaseException], bool] | None,
) -> Callable[[BaseException], bool]:
    """Combine predicates with a logical OR, skipping ``None`` entries."""
    active = [p for p in predicates if p is not None]

    def predicate(error: BaseException) -> bool:
        return any(p(error) for p in active)

    return predicate


def check_disjoint(
    recorded: Iterable[type[BaseException]],
    ignored: Iterable[type[BaseException]],
    *,
    field: str,
) -> None:
    """Reject configurations that both record and ignore the same type.

    Raises:
        ConfigurationError: If a type appears in both collections
    """
    overlap = set(recorded) & set(ignored)
    if overlap:
        names = ", ".join(sorted(t.__name__ for t in overlap))
        raise ConfigurationError(
            f"Exception types cannot be both recorded and ignored: {names}",
            field=field,
        )


class ExceptionClassifier:
    """Classifies errors into recorded, ignored and not-recorded.

    An error is IGNORED when it matches ``ignore_exceptions`` or the
    ``ignore_exception`` predicate. Otherwise it is RECORDED when no explicit
    record rule is configured, or when it matches ``record_exceptions`` or
    the ``record_exception`` predicate. Anything else is NOT_RECORDED.

    Example:
        >>> classifier = ExceptionClassifier(
        ...     record_exceptions=(IOError, TimeoutError),
        ...     ignore_exceptions=(ValueError,),
        ... )
        >>> classifier.classify(IOError())
        <ErrorClass.RECORDED: 'recorded'>
    """

    def __init__(
        self,
        record_exceptions: Iterable[type[BaseException]] = (),
        ignore_exceptions: Iterable[type[BaseException]] = (),
        record_exception: Callable[[BaseException], bool] | None = None,
        ignore_exception: Callable[[BaseException], bool] | None = None,
    ) -> None:
        self._record_types = tuple(record_exceptions)
        self._ignore_types = tuple(ignore_exceptions)
        self._record_predicate = record_exception
        self._ignore_predicate = ignore_exception
        self._records_everything = not self._record_types and record_exception is None

    def is_ignored(self, error: BaseException) -> bool:
        """Check whether the error is explicitly ignored."""
        if self._ignore_types and isinstance(error, self._ignore_types):
            return True
        return bool(self._ignore_predicate and self._ignore_predicate(error))

    def is_recorded(self, error: BaseException) -> bool:
        """Check whether the error counts as a failure (ignoring exclusions)."""
        if self._records_everything:
            return True
        if self._record_types and isinstance(error, self._record_types):
            return True
        return bool(self._record_predicate and self._record_predicate(error))

    def classify(self, error: BaseException) -> ErrorClass:
        """Classify an error.

        Args:
            error: The error raised by the decorated operation

        Returns:
            ErrorClass for the error
        """
        if self.is_ignored(error):
            return ErrorClass.IGNORED
        if self.is_recorded(error):
            return ErrorClass.RECORDED
        return ErrorClass.NOT_RECORDED
