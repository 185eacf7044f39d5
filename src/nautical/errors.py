"""
Repository exceptions.

Database errors are caught inside the repositories and re-raised as one of
these, chained to the original with ``from``. Every exception carries an
ErrorKind so callers can branch on the failure class without importing
each type.
"""

from enum import Enum
from typing import Any, Iterable, Optional


class ErrorKind(str, Enum):
    CONSTRUCTION = "construction"
    TYPE_MISMATCH = "type_mismatch"
    QUERY = "query"
    NOT_FOUND = "not_found"
    DECODE = "decode"
    INVALID_FIELD = "invalid_field"
    STREAM = "stream"


class RepositoryException(Exception):
    """
    Base exception for all repository operations.

    Catch this for generic handling; inspect ``kind`` for the failure class.
    """

    kind: ErrorKind = ErrorKind.QUERY

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None,
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"[{self.repository_name}] {self.operation}: {self.message}"


class ConstructionError(RepositoryException):
    """Raised when the entity factory or its store handle is unusable."""

    kind = ErrorKind.CONSTRUCTION

    def __init__(self, repository_name: str, reason: str) -> None:
        super().__init__(
            message=f"Cannot construct entity: {reason}",
            repository_name=repository_name,
            operation="create",
            details={"reason": reason},
        )
        self.reason = reason


class TypeMismatchError(RepositoryException):
    """
    Raised when a constructed value is not the kind the repository manages.

    This means the factory and repository disagree, which is a wiring bug.
    The offending value is kept on ``value`` for diagnosis.
    """

    kind = ErrorKind.TYPE_MISMATCH

    def __init__(self, repository_name: str, expected: type, value: Any) -> None:
        super().__init__(
            message=f"Cannot cast to {expected.__name__}: {value!r}",
            repository_name=repository_name,
            operation="import",
            details={"expected": expected.__name__, "actual": type(value).__name__},
        )
        self.expected = expected
        self.value = value


class QueryError(RepositoryException):
    """Raised when preparing or executing a statement fails."""

    kind = ErrorKind.QUERY

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str,
    ) -> None:
        super().__init__(
            message=f"Query failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error},
        )
        self.original_error = original_error


class RecordNotFoundError(RepositoryException):
    """Raised when a point lookup matches no row."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, repository_name: str, record_id: Any, id_field: str = "id") -> None:
        super().__init__(
            message=f"Record with {id_field}={record_id} not found",
            repository_name=repository_name,
            operation="get",
            details={id_field: str(record_id)},
        )
        self.record_id = record_id
        self.id_field = id_field


class DecodeError(RepositoryException):
    """Raised when a stored row cannot be turned into a valid entity."""

    kind = ErrorKind.DECODE

    def __init__(self, repository_name: str, field: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid {field}: {reason}",
            repository_name=repository_name,
            operation="import",
            details={"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


class InvalidFieldError(RepositoryException):
    """Raised when a filter names a column outside the allowed set."""

    kind = ErrorKind.INVALID_FIELD

    def __init__(
        self,
        repository_name: str,
        operation: str,
        field: Any,
        allowed: Iterable[Any],
    ) -> None:
        allowed_names = sorted(str(getattr(a, "value", a)) for a in allowed)
        super().__init__(
            message=f"Field {field!r} not allowed, expected one of {allowed_names}",
            repository_name=repository_name,
            operation=operation,
            details={"field": str(field), "allowed": allowed_names},
        )
        self.field = field
        self.allowed = allowed_names


class StreamClosedError(RepositoryException):
    """Raised when a producer closes or writes to a stream a second time."""

    kind = ErrorKind.STREAM

    def __init__(self, operation: str) -> None:
        super().__init__(
            message="Stream already closed",
            repository_name="stream",
            operation=operation,
        )
