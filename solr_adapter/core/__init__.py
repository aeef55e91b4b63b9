"""Core interfaces, models and errors for the SOLR adapter."""

from solr_adapter.core.interfaces import (
    IEntityRegistry,
    IQueryGenerator,
    IQueryLogger,
    ITransport,
)
from solr_adapter.core.models import (
    AggregateExpansion,
    EntitySchema,
    FieldKind,
    FieldSpec,
    Record,
    SearchQueryDocument,
    SelectedField,
    SolrConfig,
)
from solr_adapter.core.query import (
    AbstractQuery,
    AggregateKind,
    AggregateLiteral,
    Combinator,
    Condition,
    ConditionGroup,
    Operator,
    OrderSpec,
    and_,
    not_,
    or_,
    where,
)

__all__ = [
    "IEntityRegistry",
    "IQueryGenerator",
    "IQueryLogger",
    "ITransport",
    "AggregateExpansion",
    "EntitySchema",
    "FieldKind",
    "FieldSpec",
    "Record",
    "SearchQueryDocument",
    "SelectedField",
    "SolrConfig",
    "AbstractQuery",
    "AggregateKind",
    "AggregateLiteral",
    "Combinator",
    "Condition",
    "ConditionGroup",
    "Operator",
    "OrderSpec",
    "and_",
    "not_",
    "or_",
    "where",
]
