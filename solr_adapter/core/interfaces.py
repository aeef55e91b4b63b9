"""
Abstract interfaces for the SOLR adapter.

These protocols define the contracts of the collaborators the connection
works with: the query generator, the HTTP transport, the entity registry
and the optional query logger.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from solr_adapter.core.models import (
    AggregateExpansion,
    EntitySchema,
    SearchQueryDocument,
    SelectedField,
)
from solr_adapter.core.query import AbstractQuery, AggregateLiteral, OrderSpec, QueryNode


class IEntityRegistry(Protocol):
    """
    Supply entity schemas by name.

    The connection only reads from the registry.
    """

    def get_entity(self, name: str) -> EntitySchema:
        """
        Get the schema registered under ``name``.

        Raises:
            KeyError: If no entity with that name is registered
        """
        ...


class IQueryGenerator(Protocol):
    """
    Translate abstract queries to store-native query documents.

    Implementations must be pure: the same input always yields the same
    output and no I/O is performed.
    """

    def translate(
        self,
        query: AbstractQuery,
        literal: Optional[Union[AggregateLiteral, Sequence[AggregateLiteral]]] = None,
    ) -> SearchQueryDocument:
        """
        Convert an abstract query (and optional aggregate) to a query document.

        Args:
            query: The abstract query
            literal: Aggregate literal replacing the projection

        Returns:
            Store-native query document
        """
        ...

    def translate_condition(self, node: Optional[QueryNode], entity: EntitySchema) -> str:
        ...

    def translate_projection(
        self, fields: Sequence[str], entity: EntitySchema
    ) -> List[SelectedField]:
        ...

    def translate_order(self, order: Sequence[OrderSpec], entity: EntitySchema) -> List[str]:
        ...

    def translate_literal(
        self,
        literal: Union[AggregateLiteral, Sequence[AggregateLiteral]],
        entity: EntitySchema,
    ) -> AggregateExpansion:
        ...


class ITransport(Protocol):
    """
    Request/response primitive used for every store call.
    """

    def request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Issue one request and return the decoded JSON response.

        Raises:
            TransportError: On network, timeout or non-2xx responses
        """
        ...

    def close(self) -> None:
        ...


class IQueryLogger(Protocol):
    """
    Receive one record per store call.

    Records have the format:
        {
            "query": {...},      # method, path and body of the request
            "params": {...},     # query-string parameters
            "result": {...},     # decoded response (on success)
            "error": "...",      # error message (on failure)
            "duration": float,   # seconds
        }
    """

    def log(self, record: Dict[str, Any]) -> None:
        ...
