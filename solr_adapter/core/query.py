"""
Abstract query representation.

These immutable models stand in for the query-builder front-end: a tree of
conditions combined with AND/OR, annotated with projection, ordering and
pagination, plus the aggregate literals consumed by ``aggregate()``.
"""

from enum import Enum
from typing import Any, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Operator(str, Enum):
    """Condition operators understood by the query generator."""

    EQ = "EQ"
    NE = "NE"
    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"
    IN = "IN"
    NOT_IN = "NOT_IN"
    LIKE = "LIKE"
    NOT_LIKE = "NOT_LIKE"
    BETWEEN = "BETWEEN"
    IS_NULL = "IS_NULL"
    NOT_NULL = "NOT_NULL"


class Combinator(str, Enum):
    AND = "AND"
    OR = "OR"


class AggregateKind(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"


class Condition(BaseModel):
    """A single ``field <operator> value`` predicate."""

    model_config = ConfigDict(frozen=True)

    field: str
    # Kept as a plain string so operators outside ``Operator`` reach the
    # generator and fail there with UnsupportedOperator.
    operator: str
    value: Any = None

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, v: Any) -> str:
        if isinstance(v, Enum):
            v = v.value
        return str(v).upper()


class ConditionGroup(BaseModel):
    """Conditions (or nested groups) joined by one combinator."""

    model_config = ConfigDict(frozen=True)

    combinator: Combinator = Combinator.AND
    conditions: Tuple[Union[Condition, "ConditionGroup"], ...] = ()
    negated: bool = False


QueryNode = Union[Condition, ConditionGroup]


class OrderSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    descending: bool = False


class AbstractQuery(BaseModel):
    """
    Immutable query against one entity.

    Builder helpers (``filter``, ``project``, ``order_by``, ``paginate``)
    return modified copies; the receiver is never changed.
    """

    model_config = ConfigDict(frozen=True)

    entity: str
    where: Optional[QueryNode] = None
    projection: Tuple[str, ...] = ()
    order: Tuple[OrderSpec, ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None

    def filter(self, node: QueryNode) -> "AbstractQuery":
        """AND ``node`` onto the current where clause."""
        if self.where is None:
            return self.model_copy(update={"where": node})
        return self.model_copy(update={"where": and_(self.where, node)})

    def project(self, *fields: str) -> "AbstractQuery":
        return self.model_copy(update={"projection": tuple(fields)})

    def order_by(self, field: str, descending: bool = False) -> "AbstractQuery":
        order = self.order + (OrderSpec(field=field, descending=descending),)
        return self.model_copy(update={"order": order})

    def paginate(
        self, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> "AbstractQuery":
        return self.model_copy(update={"limit": limit, "offset": offset})


class AggregateLiteral(BaseModel):
    """A single aggregate request (count/sum/average/min/max) over a field."""

    model_config = ConfigDict(frozen=True)

    kind: AggregateKind
    field: str = Field(default="*")

    @property
    def is_wildcard(self) -> bool:
        return self.field == "*"

    def __str__(self) -> str:
        return f"{self.kind.value}({self.field})"


ConditionGroup.model_rebuild()
AbstractQuery.model_rebuild()


def where(field: str, operator: Union[str, Operator], value: Any = None) -> Condition:
    """Shorthand for building a Condition."""
    return Condition(field=field, operator=operator, value=value)


def and_(*nodes: QueryNode) -> ConditionGroup:
    return ConditionGroup(combinator=Combinator.AND, conditions=tuple(nodes))


def or_(*nodes: QueryNode) -> ConditionGroup:
    return ConditionGroup(combinator=Combinator.OR, conditions=tuple(nodes))


def not_(node: QueryNode) -> ConditionGroup:
    if isinstance(node, ConditionGroup):
        return node.model_copy(update={"negated": not node.negated})
    return ConditionGroup(conditions=(node,), negated=True)
