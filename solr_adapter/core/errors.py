"""
Error taxonomy for the SOLR adapter.

Every failure surfaced by the connection or the query generator is one of
these types. Transport failures are wrapped in TransportError with the
original exception attached as ``__cause__``.
"""

from typing import Any, Dict, List, Optional


class SolrAdapterError(Exception):
    """Base class for all adapter errors."""


class NotStarted(SolrAdapterError):
    """Raised when a data operation is attempted before ``start()``."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"{operation}: connection is not started. Call start() first."
        )


class UnsupportedOperation(SolrAdapterError):
    """Raised for operations this store class does not support."""

    def __init__(self, operation: str, dialect: str = "solr", reason: str = ""):
        self.operation = operation
        self.dialect = dialect
        message = f"{operation}: This operation is not supported for the '{dialect}' store."
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)


class UnsupportedOperator(UnsupportedOperation):
    """Raised when a condition operator cannot be translated."""

    def __init__(self, operator: str, dialect: str = "solr", reason: str = ""):
        self.operator = operator
        super().__init__(f"operator '{operator}'", dialect, reason)


class UnsupportedAggregate(UnsupportedOperation):
    """Raised when an aggregate request cannot be translated."""

    def __init__(self, aggregate: str, dialect: str = "solr", reason: str = ""):
        self.aggregate = aggregate
        super().__init__(f"aggregate '{aggregate}'", dialect, reason)


class ValidationError(SolrAdapterError, ValueError):
    """Raised when a record is missing a required field."""

    def __init__(self, entity: str, field: str):
        self.entity = entity
        self.field = field
        super().__init__(f"{entity}: required field '{field}' is missing.")


class UnknownField(SolrAdapterError, ValueError):
    """Raised when a query references a field the entity does not define."""

    def __init__(self, entity: str, field: str):
        self.entity = entity
        self.field = field
        super().__init__(f"{entity}: unknown field '{field}'.")


class MissingPrimaryKey(SolrAdapterError):
    """Raised when update/destroy receives a record without a primary key."""

    def __init__(self, entity: str, operation: str):
        self.entity = entity
        self.operation = operation
        super().__init__(
            f"{operation}: {entity} record has no primary key value."
        )


class AggregateUnavailable(SolrAdapterError):
    """Raised when the store returns no numeric result for an aggregate."""

    def __init__(self, aggregate: str, value: Any = None):
        self.aggregate = aggregate
        self.value = value
        super().__init__(
            f"aggregate '{aggregate}' returned no numeric result (got {value!r})."
        )


class TransportError(SolrAdapterError):
    """
    Raised when a request to the store fails.

    Covers network errors, timeouts and non-2xx responses. The original
    exception, if any, is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[Any] = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path
        super().__init__(message)


class BatchError(SolrAdapterError):
    """
    Raised when one batch of a bulk operation fails.

    Batches before ``batch_index`` were committed and are not rolled back;
    batches after it were never attempted.
    """

    def __init__(
        self,
        operation: str,
        batch_index: int,
        total_batches: int,
        results: Optional[List[Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.batch_index = batch_index
        self.total_batches = total_batches
        self.completed_batches = batch_index
        self.results = results or []
        self.cause = cause
        super().__init__(
            f"{operation}: batch {batch_index + 1}/{total_batches} failed "
            f"after {batch_index} committed batch(es): {cause}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "batch_index": self.batch_index,
            "total_batches": self.total_batches,
            "completed_batches": self.completed_batches,
            "committed_records": len(self.results),
            "error": str(self.cause),
        }
