"""
Database Exception Classes for Pulse Engine

Provides specialized exceptions for data store errors raised by the
DatabaseManager and the data store gateway.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from exceptions.base import PulseException


class DatabaseException(PulseException):
    """
    Base Database Exception

    Parent class for all database-related exceptions. Data store
    failures are treated as transient: the next scheduler cycle or a
    queue redelivery retries the work.
    """

    default_error_code = 2000
    default_recoverable = True

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if query:
            self.details["query"] = self._sanitize_query(query)

        if table:
            self.details["table"] = table

    @staticmethod
    def _sanitize_query(query: str) -> str:
        """Strip literal values from a SQL string before it is logged."""
        query = re.sub(r"'[^']*'", "'***'", query)
        query = re.sub(r"= \d+", "= ***", query)

        if len(query) > 500:
            query = query[:500] + "..."

        return query


class DatabaseConnectionError(DatabaseException):
    """Raised when unable to establish or maintain a database connection."""

    default_error_code = 2001

    def __init__(
        self,
        message: str = "Unable to connect to database",
        host: Optional[str] = None,
        database: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if host:
            self.details["host"] = host

        if database:
            self.details["database"] = database


class DatabaseQueryError(DatabaseException):
    """Raised when a database statement fails to execute."""

    default_error_code = 2002

    def __init__(
        self,
        message: str = "Database query failed",
        operation: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)

        if operation:
            self.details["operation"] = operation


class MonitorNotFoundError(DatabaseException):
    """
    Monitor Not Found Error

    Raised when a check message references a monitor that no longer
    exists. Retrying cannot help, so the error is permanent.
    """

    default_error_code = 2003
    default_recoverable = False

    def __init__(
        self,
        monitor_id: Any,
        message: Optional[str] = None,
        **kwargs: Any
    ) -> None:
        super().__init__(message or f"Monitor not found: {monitor_id}", **kwargs)
        self.details["monitor_id"] = str(monitor_id)
