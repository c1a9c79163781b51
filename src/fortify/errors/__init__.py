"""错误体系：提供稳定的准入错误类型与异常分类。

Error hierarchy for fortify.

Provides the stable admission errors and predicate-driven classification.
"""

from fortify.errors.base import (
    BulkheadFullError,
    CallNotPermittedError,
    ConfigurationError,
    ErrorContext,
    FortifyError,
    MaxRetriesExceededError,
    OperationCancelledError,
    RequestNotPermittedError,
    TimeoutExceededError,
)
from fortify.errors.classification import (
    ErrorClass,
    ExceptionClassifier,
    any_of,
    check_disjoint,
    instance_of,
)

__all__ = [
    "BulkheadFullError",
    "CallNotPermittedError",
    # Classification
    "ErrorClass",
    "ErrorContext",
    "ExceptionClassifier",
    "ConfigurationError",
    # Base errors
    "FortifyError",
    "MaxRetriesExceededError",
    "OperationCancelledError",
    "RequestNotPermittedError",
    "TimeoutExceededError",
    "any_of",
    "check_disjoint",
    "instance_of",
]
