"""Tests for the exception hierarchy."""

import pytest

from exceptions import (
    CheckProcessingError,
    ConfigurationError,
    DatabaseException,
    DatabaseQueryError,
    MessageFormatError,
    MonitorNotFoundError,
    NotificationError,
    PulseException,
    QueueException,
    QueueUnavailableError,
    UnsupportedChannelError,
)


@pytest.mark.parametrize(
    "error, recoverable",
    [
        (QueueUnavailableError(), True),
        (DatabaseQueryError(), True),
        (NotificationError("webhook transport failed"), True),
        (MessageFormatError(), False),
        (MonitorNotFoundError(12), False),
        (UnsupportedChannelError("Unsupported alert type: pager"), False),
        (ConfigurationError("bad setting"), False),
    ],
)
def test_recoverable_defaults(error, recoverable) -> None:
    """Transient failures are recoverable, permanent ones are not."""
    assert isinstance(error, PulseException)
    assert error.recoverable is recoverable


def test_hierarchy() -> None:
    assert issubclass(MonitorNotFoundError, DatabaseException)
    assert issubclass(MessageFormatError, QueueException)
    assert issubclass(UnsupportedChannelError, NotificationError)


def test_monitor_not_found_message_and_details() -> None:
    error = MonitorNotFoundError(12)

    assert error.message == "Monitor not found: 12"
    assert error.details == {"monitor_id": "12"}
    assert str(error) == "[2003] Monitor not found: 12"


def test_query_is_sanitized() -> None:
    """Literal values never reach the logged query."""
    error = DatabaseQueryError(
        "update failed",
        query="UPDATE monitors SET name = 'secret' WHERE id = 42",
    )

    assert error.details["query"] == "UPDATE monitors SET name = '***' WHERE id = ***"


def test_to_dict_and_cause() -> None:
    cause = ValueError("boom")
    error = CheckProcessingError.from_exception(cause, message_id="m-1", monitor_id=3)

    data = error.to_dict()
    assert data["type"] == "CheckProcessingError"
    assert data["message"] == "boom"
    assert data["cause"] == "boom"
    assert data["details"] == {"message_id": "m-1", "monitor_id": "3"}
    assert "Cause: boom" in error.log_format()


def test_with_details_chains() -> None:
    error = QueueUnavailableError().with_details(stream="pulse:monitor-checks")
    assert error.details["stream"] == "pulse:monitor-checks"
