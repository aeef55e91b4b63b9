"""
SOLR query generator.

Converts abstract queries to Lucene query strings and SOLR JSON Request
API documents.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from solr_adapter.core.errors import (
    UnknownField,
    UnsupportedAggregate,
    UnsupportedOperation,
    UnsupportedOperator,
)
from solr_adapter.core.interfaces import IEntityRegistry
from solr_adapter.core.models import (
    AGGREGATE_RESULT_KEY,
    AggregateExpansion,
    EntitySchema,
    FieldSpec,
    SearchQueryDocument,
    SelectedField,
)
from solr_adapter.core.query import (
    AbstractQuery,
    AggregateKind,
    AggregateLiteral,
    Combinator,
    Condition,
    ConditionGroup,
    OrderSpec,
    QueryNode,
)
from solr_adapter.schema.type_mappings import TypeMapper

MATCH_ALL = "*:*"
MATCH_NONE = "(*:* -*:*)"

# Characters with meaning in the Lucene standard query parser
LUCENE_SPECIAL_CHARS = set('+-&|!(){}[]^"~*?:\\/')


class SolrQueryGenerator:
    """
    Translates abstract queries to SOLR query documents.

    Implements the IQueryGenerator interface. Translation is pure: it reads
    entity schemas from the registry and keeps no state between calls.
    """

    dialect = "solr"

    FACET_FUNCTIONS = {
        AggregateKind.COUNT: "countvals",
        AggregateKind.SUM: "sum",
        AggregateKind.AVERAGE: "avg",
        AggregateKind.MIN: "min",
        AggregateKind.MAX: "max",
    }

    def __init__(self, registry: IEntityRegistry):
        """
        Initialize the generator.

        Args:
            registry: Entity schema collaborator used to resolve field names
        """
        self.registry = registry
        self._operators: Dict[str, Callable[[str, Any], str]] = {
            "EQ": self._translate_eq,
            "NE": self._translate_ne,
            "GT": lambda f, v: f"{f}:{{{self._format_value(v, in_range=True)} TO *]",
            "GTE": lambda f, v: f"{f}:[{self._format_value(v, in_range=True)} TO *]",
            "LT": lambda f, v: f"{f}:[* TO {self._format_value(v, in_range=True)}}}",
            "LTE": lambda f, v: f"{f}:[* TO {self._format_value(v, in_range=True)}]",
            "IN": self._translate_in,
            "NOT_IN": lambda f, v: self._negate(self._translate_in(f, v)),
            "LIKE": self._translate_like,
            "NOT_LIKE": lambda f, v: self._negate(self._translate_like(f, v)),
            "BETWEEN": self._translate_between,
            "IS_NULL": lambda f, v: self._negate(f"{f}:*"),
            "NOT_NULL": lambda f, v: f"{f}:*",
        }

    def translate(
        self,
        query: AbstractQuery,
        literal: Optional[Union[AggregateLiteral, Sequence[AggregateLiteral]]] = None,
    ) -> SearchQueryDocument:
        """
        Convert an abstract query to a SOLR query document.

        When ``literal`` is given the projection, ordering and pagination of
        the query are replaced by the literal's aggregate expansion.

        Args:
            query: Abstract query to translate
            literal: Optional aggregate literal

        Returns:
            SearchQueryDocument for the query's entity
        """
        entity = self.registry.get_entity(query.entity)
        lucene = self.translate_condition(query.where, entity)

        if literal is not None:
            return SearchQueryDocument(
                entity=entity.name,
                table=entity.table_name,
                query=lucene,
                aggregate=self.translate_literal(literal, entity),
            )

        if query.projection:
            fields = self.translate_projection(query.projection, entity)
        else:
            fields = self.translate_projection(
                [f.name for f in entity.concrete_fields()], entity
            )

        offset, limit = self.translate_pagination(query.limit, query.offset)

        return SearchQueryDocument(
            entity=entity.name,
            table=entity.table_name,
            query=lucene,
            fields=fields,
            sort=self.translate_order(query.order, entity),
            offset=offset,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def translate_condition(self, node: Optional[QueryNode], entity: EntitySchema) -> str:
        """
        Translate a condition tree to a Lucene query string.

        Groups with more than one member are always parenthesized so the
        caller's AND/OR nesting is preserved.

        Args:
            node: Condition or group (None matches everything)
            entity: Schema of the queried entity

        Returns:
            Lucene query string
        """
        if node is None:
            return MATCH_ALL
        if isinstance(node, ConditionGroup):
            return self._translate_group(node, entity)
        if isinstance(node, Condition):
            return self._translate_predicate(node, entity)
        raise UnsupportedOperator(type(node).__name__, self.dialect, "unknown condition node")

    def _translate_group(self, group: ConditionGroup, entity: EntitySchema) -> str:
        parts = [self.translate_condition(child, entity) for child in group.conditions]

        if not parts:
            expression = MATCH_ALL
        elif len(parts) == 1:
            expression = parts[0]
        else:
            joiner = " AND " if group.combinator == Combinator.AND else " OR "
            expression = f"({joiner.join(parts)})"

        if group.negated:
            return self._negate(expression)
        return expression

    def _translate_predicate(self, condition: Condition, entity: EntitySchema) -> str:
        operator = condition.operator
        handler = self._operators.get(operator)
        if handler is None:
            raise UnsupportedOperator(operator, self.dialect)

        if isinstance(condition.value, AbstractQuery):
            raise UnsupportedOperator(
                operator, self.dialect, "Sub-queries are not supported."
            )

        field = self._resolve_field(condition.field, entity)
        if not field.is_concrete:
            raise UnsupportedOperator(
                operator,
                self.dialect,
                f"Field '{field.name}' is {field.kind.value} and can not be filtered on (no joins).",
            )

        return handler(self._escape(field.store_name), condition.value)

    def _translate_eq(self, field: str, value: Any) -> str:
        if value is None:
            return self._negate(f"{field}:*")
        return f"{field}:{self._format_value(value)}"

    def _translate_ne(self, field: str, value: Any) -> str:
        if value is None:
            return f"{field}:*"
        return self._negate(f"{field}:{self._format_value(value)}")

    def _translate_in(self, field: str, value: Any) -> str:
        values = list(value) if isinstance(value, (list, tuple, set, frozenset)) else [value]
        include_null = any(v is None for v in values)
        terms = [self._format_value(v) for v in values if v is not None]
        # Sets have no stable iteration order across processes
        if isinstance(value, (set, frozenset)):
            terms.sort()

        clauses = []
        if terms:
            clauses.append(f"{field}:({' OR '.join(terms)})")
        if include_null:
            clauses.append(self._negate(f"{field}:*"))

        if not clauses:
            return MATCH_NONE
        if len(clauses) == 1:
            return clauses[0]
        return f"({' OR '.join(clauses)})"

    def _translate_like(self, field: str, value: Any) -> str:
        if not isinstance(value, str):
            raise UnsupportedOperator("LIKE", self.dialect, "LIKE requires a string pattern.")

        pattern = []
        for char in value:
            if char == "%":
                pattern.append("*")
            elif char == "_":
                pattern.append("?")
            else:
                pattern.append(self._escape(char))
        return f"{field}:{''.join(pattern)}"

    def _translate_between(self, field: str, value: Any) -> str:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise UnsupportedOperator(
                "BETWEEN", self.dialect, "BETWEEN requires a [low, high] pair."
            )
        low, high = value
        low_term = "*" if low is None else self._format_value(low, in_range=True)
        high_term = "*" if high is None else self._format_value(high, in_range=True)
        return f"{field}:[{low_term} TO {high_term}]"

    @staticmethod
    def _negate(expression: str) -> str:
        if expression == MATCH_ALL:
            return MATCH_NONE
        if expression == MATCH_NONE:
            return MATCH_ALL
        # Pure negative clauses match nothing in Lucene; anchor on *:*
        return f"(*:* -{expression})"

    # ------------------------------------------------------------------
    # Projection, ordering, pagination
    # ------------------------------------------------------------------

    def translate_projection(
        self, fields: Sequence[str], entity: EntitySchema
    ) -> List[SelectedField]:
        """
        Translate selected field names to store columns.

        Virtual and relational fields, and fields of other entities, are
        dropped silently: the store has no joins.
        """
        selected: List[SelectedField] = []
        seen = set()

        for name in fields:
            owner, _, _ = name.rpartition(":")
            if owner and owner != entity.name:
                continue

            field = self._resolve_field(name, entity)
            if not field.is_concrete or field.name in seen:
                continue

            seen.add(field.name)
            selected.append(
                SelectedField(
                    qualified_name=entity.qualify(field.name),
                    name=field.name,
                    column=field.store_name,
                )
            )

        return selected

    def translate_order(self, order: Sequence[OrderSpec], entity: EntitySchema) -> List[str]:
        """Translate order specs to SOLR sort clauses, keeping caller order."""
        clauses = []
        for spec in order:
            field = self._resolve_field(spec.field, entity)
            if not field.is_concrete:
                raise UnsupportedOperation(
                    f"order by '{field.name}'",
                    self.dialect,
                    "Only stored fields can be sorted on.",
                )
            direction = "desc" if spec.descending else "asc"
            clauses.append(f"{field.store_name} {direction}")
        return clauses

    @staticmethod
    def translate_pagination(
        limit: Optional[int], offset: Optional[int]
    ) -> Tuple[int, Optional[int]]:
        """
        Clamp pagination bounds.

        Returns:
            (offset, limit) with negatives clamped to zero; limit stays None
            when unset
        """
        clamped_offset = max(0, offset or 0)
        clamped_limit = None if limit is None else max(0, limit)
        return clamped_offset, clamped_limit

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def translate_literal(
        self,
        literal: Union[AggregateLiteral, Sequence[AggregateLiteral]],
        entity: EntitySchema,
    ) -> AggregateExpansion:
        """
        Expand an aggregate literal to a JSON Facet API request.

        A wildcard count uses the response's ``numFound`` instead of a
        facet. Only one literal is accepted per request.

        Args:
            literal: A single aggregate literal
            entity: Schema of the queried entity

        Returns:
            AggregateExpansion describing the facet request

        Raises:
            UnsupportedAggregate: For multiple literals or invalid fields
        """
        if not isinstance(literal, AggregateLiteral):
            literals = list(literal)
            if len(literals) != 1:
                raise UnsupportedAggregate(
                    ", ".join(str(l) for l in literals) or "<none>",
                    self.dialect,
                    "Exactly one statistic can be computed per request.",
                )
            literal = literals[0]

        if literal.is_wildcard:
            if literal.kind != AggregateKind.COUNT:
                raise UnsupportedAggregate(
                    str(literal), self.dialect, f"{literal.kind.value} requires a field."
                )
            return AggregateExpansion(kind=literal.kind.value, field="*", uses_num_found=True)

        field = self._resolve_field(literal.field, entity)
        if not field.is_concrete:
            raise UnsupportedAggregate(
                str(literal), self.dialect, f"Field '{field.name}' is not stored."
            )

        function = self.FACET_FUNCTIONS[literal.kind]
        return AggregateExpansion(
            kind=literal.kind.value,
            field=entity.qualify(field.name),
            column=field.store_name,
            facet={AGGREGATE_RESULT_KEY: f"{function}({field.store_name})"},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_field(self, name: str, entity: EntitySchema) -> FieldSpec:
        field = entity.get_field(name)
        if field is None:
            raise UnknownField(entity.name, name)
        return field

    def _format_value(self, value: Any, in_range: bool = False) -> str:
        """Render a value as a Lucene term."""
        if isinstance(value, Enum):
            value = value.value

        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float, Decimal)):
            text = str(value)
            if not in_range and text.startswith("-"):
                return f"\\{text}"
            return text
        if isinstance(value, (datetime, date)):
            value = TypeMapper.format_datetime(
                value if isinstance(value, datetime) else datetime(value.year, value.month, value.day)
            )
        if isinstance(value, str):
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            return f'"{escaped}"'

        raise UnsupportedOperator(
            type(value).__name__, self.dialect, f"Can not render value {value!r} as a term."
        )

    @staticmethod
    def _escape(text: str) -> str:
        """Backslash-escape Lucene special characters and whitespace."""
        return "".join(
            f"\\{char}" if char in LUCENE_SPECIAL_CHARS or char.isspace() else char
            for char in text
        )
