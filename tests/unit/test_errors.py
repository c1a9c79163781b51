"""Tests for error module."""

import pytest

from fortify.core import CancelReason
from fortify.errors import (
    BulkheadFullError,
    CallNotPermittedError,
    ConfigurationError,
    ErrorClass,
    ErrorContext,
    ExceptionClassifier,
    FortifyError,
    MaxRetriesExceededError,
    OperationCancelledError,
    RequestNotPermittedError,
    TimeoutExceededError,
    any_of,
    check_disjoint,
    instance_of,
)


class TestErrorContext:
    """Tests for ErrorContext."""

    def test_empty_context(self) -> None:
        """Test empty context string representation."""
        ctx = ErrorContext()
        assert str(ctx) == ""

    def test_context_with_source(self) -> None:
        """Test context with source."""
        ctx = ErrorContext(source="bulkhead")
        assert "[bulkhead]" in str(ctx)

    def test_context_with_hint(self) -> None:
        """Test context with hint."""
        ctx = ErrorContext(hint="Raise max_concurrent_calls")
        assert "(hint: Raise max_concurrent_calls)" in str(ctx)


class TestFortifyError:
    """Tests for base error class."""

    def test_basic_error(self) -> None:
        """Test basic error creation."""
        error = FortifyError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_with_hint(self) -> None:
        """Test adding hint to error."""
        error = FortifyError("Failed").with_hint("Check the config")
        assert error.context.hint == "Check the config"


class TestAdmissionErrors:
    """Tests for the errors raised by primitives."""

    def test_call_not_permitted(self) -> None:
        """Test circuit breaker rejection carries name and state."""
        error = CallNotPermittedError("backend", "OPEN", "open")
        assert error.name == "backend"
        assert error.state == "OPEN"
        assert error.reason == "open"
        assert "backend" in str(error)
        assert "[circuit_breaker]" in str(error)
        assert isinstance(error, FortifyError)

    def test_bulkhead_full(self) -> None:
        """Test bulkhead rejection message."""
        error = BulkheadFullError("db")
        assert error.name == "db"
        assert "Bulkhead 'db' is full" in str(error)

    def test_bulkhead_full_custom_message(self) -> None:
        """Test bulkhead rejection with a custom message."""
        error = BulkheadFullError("pool", "pool is shut down")
        assert error.message == "pool is shut down"

    def test_request_not_permitted(self) -> None:
        """Test rate limiter rejection."""
        error = RequestNotPermittedError("api")
        assert error.name == "api"
        assert "RateLimiter 'api'" in str(error)

    def test_max_retries_exceeded(self) -> None:
        """Test retry exhaustion carries the last result."""
        error = MaxRetriesExceededError("backend", 3, last_result={"status": "pending"})
        assert error.attempts == 3
        assert error.last_result == {"status": "pending"}
        assert error.context.details["attempts"] == 3

    def test_timeout_exceeded_is_timeout_error(self) -> None:
        """Test time limiter error is a builtin TimeoutError."""
        error = TimeoutExceededError("report", 2.0)
        assert isinstance(error, TimeoutError)
        assert error.timeout == 2.0
        assert "2.0s" in str(error)

    def test_operation_cancelled(self) -> None:
        """Test cancellation error carries the reason."""
        error = OperationCancelledError(CancelReason.SHUTDOWN)
        assert error.reason == CancelReason.SHUTDOWN
        assert "shutdown" in str(error)

    def test_operation_cancelled_without_reason(self) -> None:
        """Test cancellation error without reason."""
        assert "unknown" in str(OperationCancelledError())


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_is_value_error(self) -> None:
        """Test configuration errors are ValueErrors."""
        error = ConfigurationError("bad", field="max_attempts", value=0)
        assert isinstance(error, ValueError)
        assert error.field == "max_attempts"
        assert error.value == 0
        assert error.context.details == {"field": "max_attempts", "value": 0}
        assert "[config]" in str(error)


class TestExceptionClassifier:
    """Tests for ExceptionClassifier."""

    def test_records_everything_by_default(self) -> None:
        """Test every error is recorded without explicit rules."""
        classifier = ExceptionClassifier()
        assert classifier.classify(RuntimeError()) == ErrorClass.RECORDED
        assert classifier.classify(KeyError()) == ErrorClass.RECORDED

    def test_ignore_wins_over_record(self) -> None:
        """Test ignored types are never recorded."""
        classifier = ExceptionClassifier(
            record_exceptions=(OSError,),
            ignore_exceptions=(FileNotFoundError,),
        )
        assert classifier.classify(OSError()) == ErrorClass.RECORDED
        assert classifier.classify(FileNotFoundError()) == ErrorClass.IGNORED

    def test_not_recorded_outside_record_set(self) -> None:
        """Test errors outside an explicit record set are not recorded."""
        classifier = ExceptionClassifier(record_exceptions=(OSError,))
        assert classifier.classify(ValueError()) == ErrorClass.NOT_RECORDED

    def test_predicates(self) -> None:
        """Test record and ignore predicates."""
        classifier = ExceptionClassifier(
            record_exception=lambda e: "fatal" in str(e),
            ignore_exception=lambda e: "benign" in str(e),
        )
        assert classifier.classify(RuntimeError("fatal crash")) == ErrorClass.RECORDED
        assert classifier.classify(RuntimeError("benign fatal")) == ErrorClass.IGNORED
        assert classifier.classify(RuntimeError("other")) == ErrorClass.NOT_RECORDED

    def test_subclass_matches(self) -> None:
        """Test tags match subclasses."""
        classifier = ExceptionClassifier(record_exceptions=(ArithmeticError,))
        assert classifier.classify(ZeroDivisionError()) == ErrorClass.RECORDED


class TestClassificationHelpers:
    """Tests for predicate helpers."""

    def test_instance_of(self) -> None:
        """Test instance_of predicate."""
        predicate = instance_of(KeyError, IndexError)
        assert predicate(KeyError())
        assert not predicate(ValueError())

    def test_any_of_skips_none(self) -> None:
        """Test any_of combines predicates and skips None."""
        predicate = any_of(None, instance_of(KeyError), lambda e: str(e) == "x")
        assert predicate(KeyError())
        assert predicate(ValueError("x"))
        assert not predicate(ValueError("y"))

    def test_check_disjoint(self) -> None:
        """Test overlapping record and ignore sets are rejected."""
        check_disjoint((OSError,), (ValueError,), field="record_exceptions")
        with pytest.raises(ConfigurationError) as exc_info:
            check_disjoint((OSError, ValueError), (ValueError,), field="record_exceptions")
        assert "ValueError" in str(exc_info.value)
        assert exc_info.value.field == "record_exceptions"
