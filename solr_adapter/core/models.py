"""
Shared data models for the SOLR adapter.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

# Name of the JSON facet carrying an aggregate result.
AGGREGATE_RESULT_KEY = "stat"


class FieldKind(str, Enum):
    """Storage kind of an entity field."""

    CONCRETE = "concrete"  # stored in the bucket
    VIRTUAL = "virtual"  # computed, never stored
    RELATION = "relation"  # references another entity


class FieldSpec(BaseModel):
    """Represents a single field of an entity schema."""

    name: str
    type: str = "string"  # string, text, integer, number, boolean, date
    kind: FieldKind = FieldKind.CONCRETE
    column: Optional[str] = None  # store-level field name, defaults to name
    required: bool = False
    primary_key: bool = False
    generated: Optional[bool] = None  # generate a key when missing (pk only)
    multi_valued: bool = False

    # Relation fields only
    target: Optional[str] = None  # related entity name
    many: bool = False
    foreign_key: Optional[str] = None  # local field receiving the target's key

    @property
    def store_name(self) -> str:
        return self.column or self.name

    @property
    def is_concrete(self) -> bool:
        return self.kind == FieldKind.CONCRETE

    @property
    def is_generated(self) -> bool:
        if self.generated is None:
            return self.primary_key
        return self.generated


class EntitySchema(BaseModel):
    """
    Schema of one entity type.

    ``table`` is the SOLR core/collection holding the entity's documents.
    """

    name: str
    table: Optional[str] = None
    fields: List[FieldSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_fields(self) -> "EntitySchema":
        keys = [f.name for f in self.fields if f.primary_key]
        if len(keys) > 1:
            raise ValueError(f"{self.name}: more than one primary key field {keys}")
        for f in self.fields:
            if f.primary_key and not f.is_concrete:
                raise ValueError(f"{self.name}: primary key '{f.name}' must be concrete")
            if f.kind == FieldKind.RELATION and not f.target:
                raise ValueError(f"{self.name}: relation field '{f.name}' has no target")
        return self

    @property
    def table_name(self) -> str:
        return self.table or self.name.lower()

    @property
    def primary_key(self) -> Optional[FieldSpec]:
        for f in self.fields:
            if f.primary_key:
                return f
        return None

    def get_field(self, name: str) -> Optional[FieldSpec]:
        """Look up a field by bare or ``Entity:field`` qualified name."""
        if ":" in name:
            entity, _, name = name.partition(":")
            if entity != self.name:
                return None
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def concrete_fields(self) -> List[FieldSpec]:
        return [f for f in self.fields if f.is_concrete]

    def relation_fields(self, many: Optional[bool] = None) -> List[FieldSpec]:
        relations = [f for f in self.fields if f.kind == FieldKind.RELATION]
        if many is None:
            return relations
        return [f for f in relations if f.many == many]

    def qualify(self, field_name: str) -> str:
        return f"{self.name}:{field_name}"


class Record(BaseModel):
    """
    A typed record of one entity.

    ``dirty_fields`` is supplied by the caller (or maintained through
    ``set``) and drives ``update``.
    """

    entity: str
    values: Dict[str, Any] = Field(default_factory=dict)
    dirty_fields: Set[str] = Field(default_factory=set)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        if self.values.get(name) != value or name not in self.values:
            self.dirty_fields.add(name)
        self.values[name] = value

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def __contains__(self, name: str) -> bool:
        return name in self.values

    @property
    def is_dirty(self) -> bool:
        return bool(self.dirty_fields)

    def changes(self) -> Dict[str, Any]:
        return {name: self.values.get(name) for name in sorted(self.dirty_fields)}

    def mark_clean(self) -> None:
        self.dirty_fields.clear()


class SelectedField(BaseModel):
    """A projected field: qualified entity name plus store column."""

    model_config = ConfigDict(frozen=True)

    qualified_name: str
    name: str
    column: str


class AggregateExpansion(BaseModel):
    """Store-native expansion of one aggregate literal."""

    model_config = ConfigDict(frozen=True)

    kind: str
    field: str
    column: Optional[str] = None
    facet: Optional[Dict[str, str]] = None  # JSON Facet API request
    uses_num_found: bool = False


class SearchQueryDocument(BaseModel):
    """
    Store-native query produced by the query generator.

    Serialized through ``to_request_body`` into a SOLR JSON Request API
    body.
    """

    model_config = ConfigDict(frozen=True)

    entity: str
    table: str
    query: str = "*:*"
    fields: List[SelectedField] = Field(default_factory=list)
    sort: List[str] = Field(default_factory=list)
    offset: int = 0
    limit: Optional[int] = None
    aggregate: Optional[AggregateExpansion] = None

    def to_request_body(
        self, offset: Optional[int] = None, limit: Optional[int] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"query": self.query}

        if self.fields:
            body["fields"] = [f.column for f in self.fields]
        if self.sort:
            body["sort"] = ", ".join(self.sort)

        body["offset"] = self.offset if offset is None else offset
        page_limit = self.limit if limit is None else limit
        if page_limit is not None:
            body["limit"] = page_limit

        if self.aggregate is not None:
            body["limit"] = 0
            if self.aggregate.facet:
                body["facet"] = dict(self.aggregate.facet)

        return body


class SolrConfig(BaseModel):
    """Configuration for a SOLR connection."""

    base_url: str = "http://localhost:8983/solr"
    timeout: float = 30.0
    username: Optional[str] = None
    password: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    batch_size: int = 500
    page_size: int = 100
    commit: bool = True
    transaction_mode: str = "deferred_commit"  # deferred_commit | reject

    @model_validator(mode="after")
    def _check_values(self) -> "SolrConfig":
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.transaction_mode not in ("deferred_commit", "reject"):
            raise ValueError(
                f"transaction_mode must be 'deferred_commit' or 'reject', "
                f"got '{self.transaction_mode}'"
            )
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> "SolrConfig":
        """
        Build configuration from environment variables.

        A ``.env`` file in the working directory is loaded first. Explicit
        keyword overrides win over the environment.

        Args:
            **overrides: Field values taking precedence over the environment

        Returns:
            Populated SolrConfig
        """
        load_dotenv()

        env: Dict[str, Any] = {
            "base_url": os.getenv("SOLR_URL"),
            "timeout": os.getenv("SOLR_TIMEOUT"),
            "username": os.getenv("SOLR_USERNAME"),
            "password": os.getenv("SOLR_PASSWORD"),
            "batch_size": os.getenv("SOLR_BATCH_SIZE"),
            "page_size": os.getenv("SOLR_PAGE_SIZE"),
            "transaction_mode": os.getenv("SOLR_TRANSACTION_MODE"),
        }
        values = {k: v for k, v in env.items() if v is not None}
        values.update(overrides)
        return cls(**values)
