"""
SOLR connection - main entry point.

Executes abstract queries and record writes against a SOLR instance over
HTTP, using SolrQueryGenerator for translation.
"""

import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import httpx

from solr_adapter.core.errors import (
    AggregateUnavailable,
    MissingPrimaryKey,
    NotStarted,
    UnknownField,
    UnsupportedOperation,
    ValidationError,
)
from solr_adapter.core.interfaces import IQueryGenerator, IQueryLogger
from solr_adapter.core.models import (
    AGGREGATE_RESULT_KEY,
    EntitySchema,
    FieldSpec,
    Record,
    SearchQueryDocument,
    SolrConfig,
)
from solr_adapter.core.query import AbstractQuery, AggregateKind, AggregateLiteral
from solr_adapter.execution import query_log
from solr_adapter.execution.batching import BatchPlan
from solr_adapter.execution.result_stream import ResultStream
from solr_adapter.execution.transport import HttpTransport
from solr_adapter.query.generator import MATCH_ALL, SolrQueryGenerator
from solr_adapter.schema.registry import EntityRegistry
from solr_adapter.schema.type_mappings import TypeMapper

logger = logging.getLogger(__name__)

EntityRef = Union[EntitySchema, str]
Options = Optional[Dict[str, Any]]


class SolrConnection:
    """
    Connection driver for SOLR.

    Owns at most one HTTP transport at a time. The connection is
    ``stopped`` until ``start()`` is called; every data operation requires
    it to be started. SOLR has no schema DDL through this layer and no
    transactions; see ``transaction`` for the emulation policy.
    """

    dialect = "solr"
    supports_transactions = False

    DefaultQueryGenerator = SolrQueryGenerator

    def __init__(
        self,
        config: Optional[SolrConfig] = None,
        entities: Optional[Iterable[EntitySchema]] = None,
        logger: Optional[IQueryLogger] = None,
        query_generator: Optional[IQueryGenerator] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize a SOLR connection.

        Args:
            config: Connection configuration (defaults to ``SolrConfig()``)
            entities: Entity schemas to register with the connection
            logger: Query logger receiving a record for every store call
            query_generator: Alternate query generator
            transport: Alternate httpx transport for the HTTP client
        """
        self.config = config or SolrConfig()
        self.registry = EntityRegistry(entities or ())
        self.query_logger = logger
        self.query_generator: IQueryGenerator = (
            query_generator or self.DefaultQueryGenerator(self.registry)
        )
        self._httpx_transport = transport
        self.transport: Optional[HttpTransport] = None

    @classmethod
    def from_env(
        cls,
        entities: Optional[Iterable[EntitySchema]] = None,
        logger: Optional[IQueryLogger] = None,
        **overrides: Any,
    ) -> "SolrConnection":
        """
        Create a connection configured from environment variables.

        Args:
            entities: Entity schemas to register
            logger: Query logger
            **overrides: SolrConfig fields overriding the environment

        Returns:
            Configured (not yet started) SolrConnection
        """
        return cls(config=SolrConfig.from_env(**overrides), entities=entities, logger=logger)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def register_entity(self, entity: EntitySchema) -> EntitySchema:
        return self.registry.register(entity)

    def register_entities(self, entities: Iterable[EntitySchema]) -> List[EntitySchema]:
        return [self.registry.register(entity) for entity in entities]

    def get_entity(self, name: str) -> EntitySchema:
        return self.registry.get_entity(name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_started(self) -> bool:
        return self.transport is not None

    def start(self) -> None:
        """
        Acquire the HTTP transport.

        Not idempotent: calling it again replaces the current transport
        without closing it.
        """
        if self.transport is not None:
            logger.warning(
                "start() called on a started connection; the previous transport is not closed"
            )
        self.transport = HttpTransport(self.config, transport=self._httpx_transport)
        logger.info("SOLR connection started (%s)", self.config.base_url)

    def stop(self) -> None:
        if self.transport is not None:
            self.transport.close()
        self.transport = None
        logger.info("SOLR connection stopped")

    def __enter__(self) -> "SolrConnection":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, entity: EntityRef, records: Any, options: Options = None) -> Any:
        """
        Insert one record or an ordered collection of records.

        Single-valued relation fields holding a record are inserted first
        and their key back-filled into the parent's foreign key field.
        Multi-valued relations are never cascaded. An existing primary key
        is rejected by the store.

        Args:
            entity: Entity schema or name
            records: A record (dict or Record) or a sequence of them
            options: ``batch_size``, ``commit``, ``logger``

        Returns:
            The inserted Record, or a list of Records in input order

        Raises:
            ValidationError: A required field is missing
            BatchError: A batch failed; earlier batches stay committed
        """
        self._require_started("insert")
        return self._write("insert", entity, records, options, overwrite=False)

    def upsert(self, entity: EntityRef, records: Any, options: Options = None) -> Any:
        """
        Insert records, overwriting documents with the same primary key.

        SOLR adds overwrite by unique key natively, so no existence check is
        made. Same contract as ``insert`` otherwise.
        """
        self._require_started("upsert")
        return self._write("upsert", entity, records, options, overwrite=True)

    def _write(
        self,
        operation: str,
        entity_ref: EntityRef,
        records: Any,
        options: Options,
        overwrite: bool,
    ) -> Any:
        options = options or {}
        entity = self.registry.resolve(entity_ref)
        single = isinstance(records, (Record, dict))
        items = self._to_records(entity, records)
        if not items:
            return None if single else []

        for record in items:
            self._prepare_record(entity, record)

        path = f"/{entity.table_name}/update"
        params = self._update_params(options)
        # Optimistic concurrency: _version_ -1 fails if the key already exists
        reject_existing = not overwrite and entity.primary_key is not None

        def submit(batch: List[Record]) -> List[Record]:
            self._cascade(operation, entity, batch, options, overwrite)
            documents = []
            for record in batch:
                document = self._to_document(entity, record)
                if reject_existing:
                    document["_version_"] = -1
                documents.append(document)
            self._request("POST", path, documents, params, options)
            for record in batch:
                record.mark_clean()
            return batch

        plan = BatchPlan(items, self._batch_size(options))
        inserted = plan.execute(operation, submit)
        return inserted[0] if single else inserted

    def update(self, entity: EntityRef, records: Any, options: Options = None) -> List[Record]:
        """
        Update dirty records, sending only their dirty fields.

        One atomic-update request is issued per dirty record. Clean
        records are skipped.

        Args:
            entity: Entity schema or name
            records: A record or a sequence of records
            options: ``batch_size``, ``commit``, ``logger``

        Returns:
            The records that were updated, in input order

        Raises:
            MissingPrimaryKey: A record has no primary key value
            BatchError: A batch failed; earlier batches stay committed
        """
        self._require_started("update")
        options = options or {}
        entity = self.registry.resolve(entity)
        items = self._to_records(entity, records)
        key = self._require_key_values(entity, items, "update")

        dirty = [record for record in items if record.is_dirty]
        path = f"/{entity.table_name}/update"
        params = self._update_params(options)

        def submit(batch: List[Record]) -> List[Record]:
            for record in batch:
                changes = {}
                for name, value in record.changes().items():
                    field = entity.get_field(name)
                    if field is None or not field.is_concrete or field.primary_key:
                        continue
                    changes[field.store_name] = {"set": TypeMapper.to_store(value, field)}
                if changes:
                    document = {key.store_name: TypeMapper.to_store(record.get(key.name), key)}
                    document.update(changes)
                    self._request("POST", path, [document], params, options)
                record.mark_clean()
            return batch

        return BatchPlan(dirty, self._batch_size(options)).execute("update", submit)

    def update_all(
        self, query: AbstractQuery, attributes: Dict[str, Any], options: Options = None
    ) -> Dict[str, int]:
        """
        Apply ``attributes`` to every document matched by ``query``.

        SOLR has no update-by-query: matching keys are read through the
        select path, then a single atomic-update request is sent for all of
        them.

        Returns:
            ``{"matched": n, "updated": n}``
        """
        self._require_started("update_all")
        options = options or {}
        entity = self.registry.get_entity(query.entity)
        key = entity.primary_key
        if key is None:
            raise UnsupportedOperation(
                "update_all", self.dialect, f"{entity.name} has no primary key field."
            )

        changes = {}
        for name, value in attributes.items():
            field = entity.get_field(name)
            if field is None:
                raise UnknownField(entity.name, name)
            if not field.is_concrete or field.primary_key:
                continue
            changes[field.store_name] = {"set": TypeMapper.to_store(value, field)}

        keys = self.pluck(query, key.name, options)
        if not keys or not changes:
            return {"matched": len(keys), "updated": 0}

        documents = [
            dict({key.store_name: TypeMapper.to_store(value, key)}, **changes)
            for value in keys
        ]
        self._request(
            "POST",
            f"/{entity.table_name}/update",
            documents,
            self._update_params(options),
            options,
        )
        return {"matched": len(keys), "updated": len(keys)}

    def destroy_models(
        self, entity: EntityRef, records: Any, options: Options = None
    ) -> Optional[int]:
        """
        Delete records by primary key.

        ``records=None`` is a no-op unless ``options["truncate"]`` is true,
        in which case the whole bucket is cleared.

        Returns:
            Number of records deleted (None for a truncate)
        """
        self._require_started("destroy_models")
        options = options or {}
        entity = self.registry.resolve(entity)

        if records is None:
            if options.get("truncate") is True:
                self._delete_by_lucene(entity, MATCH_ALL, options)
            return None

        items = self._to_records(entity, records)
        key = self._require_key_values(entity, items, "destroy_models")
        path = f"/{entity.table_name}/update"
        params = self._update_params(options)

        def submit(batch: List[Record]) -> List[Record]:
            ids = [TypeMapper.to_store(record.get(key.name), key) for record in batch]
            self._request("POST", path, {"delete": ids}, params, options)
            return batch

        return len(BatchPlan(items, self._batch_size(options)).execute("destroy_models", submit))

    destroy_records = destroy_models

    def destroy_by_query(self, query: AbstractQuery, options: Options = None) -> int:
        """
        Delete every document matched by ``query``.

        Queries with a limit or offset are resolved to keys first, since a
        SOLR delete-by-query can not be paginated.

        Returns:
            Number of documents deleted
        """
        self._require_started("destroy_by_query")
        options = options or {}
        entity = self.registry.get_entity(query.entity)

        if query.limit is not None or query.offset:
            key = entity.primary_key
            if key is None:
                raise UnsupportedOperation(
                    "destroy_by_query", self.dialect,
                    f"Paginated deletes need a primary key on {entity.name}.",
                )
            keys = self.pluck(query, key.name, options)
            if not keys:
                return 0
            return self.destroy_models(entity, [{key.name: value} for value in keys], options)

        document = self.query_generator.translate(query)
        count = self._num_found(document, options)
        if count:
            self._delete_by_lucene(entity, document.query, options)
        return count

    def destroy(
        self,
        query_or_entity: Union[AbstractQuery, EntityRef],
        records_or_options: Any = None,
        options: Options = None,
    ) -> Optional[int]:
        """Dispatch to ``destroy_by_query`` or ``destroy_models``."""
        if isinstance(query_or_entity, AbstractQuery):
            return self.destroy_by_query(query_or_entity, records_or_options)
        return self.destroy_models(query_or_entity, records_or_options, options)

    def truncate(self, entity: EntityRef, options: Options = None) -> None:
        """Delete every document in the entity's bucket."""
        self.destroy_models(entity, None, dict(options or {}, truncate=True))

    def _delete_by_lucene(self, entity: EntitySchema, lucene: str, options: Dict[str, Any]) -> None:
        self._request(
            "POST",
            f"/{entity.table_name}/update",
            {"delete": {"query": lucene}},
            self._update_params(options),
            options,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def select(self, query: AbstractQuery, options: Options = None) -> ResultStream:
        """
        Stream the records matched by ``query``.

        Results are fetched one page per request (``page_size``) as the
        stream is consumed. A projection with no stored field left (only
        virtual or relation fields) selects every concrete field, the same
        as an empty projection. ``pluck`` returns ``[]`` in that case
        instead, since it yields bare values.

        Args:
            query: Abstract query
            options: ``page_size``, ``logger``

        Returns:
            ResultStream yielding Records
        """
        self._require_started("select")
        options = options or {}
        entity = self.registry.get_entity(query.entity)
        document = self.query_generator.translate(query)

        if document.fields:
            fields = [entity.get_field(f.name) for f in document.fields]
        else:
            fields = entity.concrete_fields()

        def convert(raw: Dict[str, Any]) -> Record:
            return Record(entity=entity.name, values=TypeMapper.document_to_values(raw, fields))

        return self._stream(document, convert, options)

    def _stream(
        self,
        document: SearchQueryDocument,
        convert: Callable[[Dict[str, Any]], Any],
        options: Dict[str, Any],
    ) -> ResultStream:
        path = f"/{document.table}/query"

        def fetch_page(offset: int, limit: int):
            response = self._request(
                "POST", path, document.to_request_body(offset=offset, limit=limit), None, options
            )
            payload = response.get("response", {})
            return payload.get("docs", []), int(payload.get("numFound", 0))

        return ResultStream(
            fetch_page,
            convert,
            offset=document.offset,
            limit=document.limit,
            page_size=options.get("page_size", self.config.page_size),
        )

    def pluck(
        self, query: AbstractQuery, fields: Union[str, Sequence[str]], options: Options = None
    ) -> List[Any]:
        """
        Return field values without building records.

        A single field name yields a flat list; several yield one list per
        document; ``options["map_to_objects"]`` yields dicts keyed by the
        qualified field name. Fields that are not stored are dropped.
        """
        self._require_started("pluck")
        options = options or {}
        entity = self.registry.get_entity(query.entity)
        single = isinstance(fields, str)
        names = [fields] if single else list(fields)

        document = self.query_generator.translate(query.project(*names))
        if not document.fields:
            return []

        selected = [(f, entity.get_field(f.name)) for f in document.fields]

        if options.get("map_to_objects"):
            def convert(raw: Dict[str, Any]) -> Any:
                return {
                    s.qualified_name: TypeMapper.from_store(raw.get(s.column), spec)
                    for s, spec in selected
                }
        elif single:
            def convert(raw: Dict[str, Any]) -> Any:
                s, spec = selected[0]
                return TypeMapper.from_store(raw.get(s.column), spec)
        else:
            def convert(raw: Dict[str, Any]) -> Any:
                return [TypeMapper.from_store(raw.get(s.column), spec) for s, spec in selected]

        return self._stream(document, convert, options).collect()

    def exists(self, query: AbstractQuery, options: Options = None) -> bool:
        """True if at least one document matches; no document is fetched."""
        self._require_started("exists")
        document = self.query_generator.translate(query)
        return self._num_found(document, options or {}) > 0

    def _num_found(self, document: SearchQueryDocument, options: Dict[str, Any]) -> int:
        body = document.to_request_body(offset=0, limit=0)
        body.pop("sort", None)
        response = self._request("POST", f"/{document.table}/query", body, None, options)
        return int(response.get("response", {}).get("numFound", 0))

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def aggregate(
        self,
        query: AbstractQuery,
        literal: Union[AggregateLiteral, Sequence[AggregateLiteral]],
        options: Options = None,
    ) -> Union[int, float]:
        """
        Compute one aggregate over the documents matched by ``query``.

        The query's projection, order and pagination are replaced by the
        literal's facet expansion.

        Returns:
            The numeric result

        Raises:
            UnsupportedAggregate: More than one literal, or an invalid field
            AggregateUnavailable: The store returned no numeric result
        """
        self._require_started("aggregate")
        options = options or {}
        document = self.query_generator.translate(query, literal)
        expansion = document.aggregate
        response = self._request(
            "POST", f"/{document.table}/query", document.to_request_body(), None, options
        )

        if expansion.uses_num_found:
            value = response.get("response", {}).get("numFound")
        else:
            facets = response.get("facets") or {}
            value = facets.get(AGGREGATE_RESULT_KEY)
            # Facet functions are omitted for an empty match set
            if value is None and expansion.kind == AggregateKind.COUNT.value and facets.get("count", 0) == 0:
                value = 0

        label = f"{expansion.kind}({expansion.field})"
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise AggregateUnavailable(label, value)
        if expansion.kind == AggregateKind.COUNT.value:
            return int(value)
        return value

    def average(self, query: AbstractQuery, field: str, options: Options = None) -> float:
        return self.aggregate(query, AggregateLiteral(kind=AggregateKind.AVERAGE, field=field), options)

    def count(self, query: AbstractQuery, field: Optional[str] = None, options: Options = None) -> int:
        literal = AggregateLiteral(kind=AggregateKind.COUNT, field=field or "*")
        return self.aggregate(query, literal, options)

    def min(self, query: AbstractQuery, field: str, options: Options = None) -> Union[int, float]:
        return self.aggregate(query, AggregateLiteral(kind=AggregateKind.MIN, field=field), options)

    def max(self, query: AbstractQuery, field: str, options: Options = None) -> Union[int, float]:
        return self.aggregate(query, AggregateLiteral(kind=AggregateKind.MAX, field=field), options)

    def sum(self, query: AbstractQuery, field: str, options: Options = None) -> Union[int, float]:
        return self.aggregate(query, AggregateLiteral(kind=AggregateKind.SUM, field=field), options)

    # ------------------------------------------------------------------
    # Raw queries and transactions
    # ------------------------------------------------------------------

    def query(self, raw: Union[str, Dict[str, Any]], options: Options = None) -> Dict[str, Any]:
        """
        Issue a store-native request without translation.

        Args:
            raw: A Lucene query string (sent to ``options["table"]`` or the
                table of ``options["entity"]``), or a request dict with
                ``path`` and optional ``method``, ``body`` and ``params``
            options: ``table``, ``entity``, ``limit``, ``logger``

        Returns:
            Decoded SOLR response
        """
        self._require_started("query")
        options = options or {}

        if isinstance(raw, str):
            table = options.get("table")
            if table is None:
                if "entity" not in options:
                    raise ValueError("query: a Lucene string needs options['table'] or options['entity']")
                table = self.registry.resolve(options["entity"]).table_name
            body = {"query": raw, "limit": options.get("limit", self.config.page_size)}
            return self._request("POST", f"/{table}/query", body, None, options)

        return self._request(
            raw.get("method", "POST"),
            raw["path"],
            raw.get("body"),
            raw.get("params"),
            options,
        )

    def transaction(self, callback: Callable[["TransactionHandle"], Any], options: Options = None) -> Any:
        """
        Run ``callback`` with deferred commits.

        SOLR has no transactions. In ``deferred_commit`` mode the callback
        gets a TransactionHandle whose writes are sent with
        ``commit=false``; one commit per touched bucket follows a successful
        callback. This is neither atomic nor isolated: writes already sent
        are not undone if the callback raises, and the store's auto-commit
        or any other client's commit can make them visible early. In
        ``reject`` mode UnsupportedOperation is raised.

        Returns:
            The callback's return value
        """
        self._require_started("transaction")
        options = options or {}
        mode = options.get("mode", self.config.transaction_mode)
        if mode == "reject":
            raise UnsupportedOperation(
                "transaction", self.dialect, "The store has no transactions."
            )

        handle = TransactionHandle(self, options)
        try:
            result = callback(handle)
        except Exception:
            logger.warning(
                "transaction callback failed; %d uncommitted write(s) are not rolled back",
                handle.write_count,
            )
            raise

        handle.commit()
        return result

    # ------------------------------------------------------------------
    # Unsupported DDL
    # ------------------------------------------------------------------

    def _unsupported(self, operation: str) -> None:
        raise UnsupportedOperation(
            operation, self.dialect, "The store manages its schema and indexes out of band."
        )

    def create_table(self, entity: EntityRef, options: Options = None) -> Any:
        self._unsupported("create_table")

    def create_tables(self, entities: Optional[Iterable[EntityRef]], options: Options = None) -> List[Any]:
        if not entities:
            return []
        return [self.create_table(entity, options) for entity in entities]

    def drop_table(self, entity: EntityRef, options: Options = None) -> Any:
        self._unsupported("drop_table")

    def drop_tables(self, entities: Optional[Iterable[EntityRef]], options: Options = None) -> List[Any]:
        if not entities:
            return []
        return [self.drop_table(entity, options) for entity in reversed(list(entities))]

    def define_table(self, *args: Any, **kwargs: Any) -> Any:
        self._unsupported("define_table")

    def define_constraints(self, *args: Any, **kwargs: Any) -> Any:
        self._unsupported("define_constraints")

    def define_indexes(self, *args: Any, **kwargs: Any) -> Any:
        self._unsupported("define_indexes")

    def alter_table(self, entity: EntityRef, attributes: Dict[str, Any], options: Options = None) -> Any:
        self._unsupported("alter_table")

    def alter_column(self, field: FieldSpec, attributes: Dict[str, Any], options: Options = None) -> Any:
        self._unsupported("alter_column")

    def add_column(self, field: FieldSpec, options: Options = None) -> Any:
        self._unsupported("add_column")

    def drop_column(self, field: FieldSpec, options: Options = None) -> Any:
        self._unsupported("drop_column")

    def add_index(self, entity: EntityRef, index_fields: Sequence[str], options: Options = None) -> Any:
        self._unsupported("add_index")

    def drop_index(self, entity: EntityRef, index_fields: Sequence[str], options: Options = None) -> Any:
        self._unsupported("drop_index")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_started(self, operation: str) -> None:
        if self.transport is None:
            raise NotStarted(operation)

    def _request(
        self,
        method: str,
        path: str,
        body: Any,
        params: Optional[Dict[str, Any]],
        options: Dict[str, Any],
    ) -> Dict[str, Any]:
        if self.transport is None:
            raise NotStarted(f"{method} {path}")
        handle = options.get("transaction")
        if handle is not None and path.endswith("/update"):
            handle.record_write(path[1:].split("/", 1)[0])
        return query_log.dispatch(
            self.transport,
            method,
            path,
            body=body,
            params=params,
            query_loggers=(self.query_logger, options.get("logger")),
        )

    def _batch_size(self, options: Dict[str, Any]) -> int:
        return int(options.get("batch_size", self.config.batch_size))

    def _update_params(self, options: Dict[str, Any]) -> Dict[str, str]:
        commit = options.get("commit", self.config.commit)
        return {"commit": "true"} if commit else {}

    @staticmethod
    def _to_records(entity: EntitySchema, records: Any) -> List[Record]:
        if records is None:
            return []
        if isinstance(records, (Record, dict)):
            records = [records]

        result = []
        for record in records:
            if isinstance(record, Record):
                result.append(record)
            elif isinstance(record, dict):
                result.append(
                    Record(entity=entity.name, values=dict(record), dirty_fields=set(record))
                )
            else:
                raise TypeError(
                    f"{entity.name}: expected a Record or dict, got {type(record).__name__}"
                )
        return result

    @staticmethod
    def _require_key_values(entity: EntitySchema, records: List[Record], operation: str) -> FieldSpec:
        key = entity.primary_key
        if key is None:
            raise MissingPrimaryKey(entity.name, operation)
        for record in records:
            if record.get(key.name) is None:
                raise MissingPrimaryKey(entity.name, operation)
        return key

    @staticmethod
    def _prepare_record(entity: EntitySchema, record: Record) -> None:
        """Generate a missing primary key and check required fields."""
        key = entity.primary_key
        if key is not None and record.get(key.name) is None and key.is_generated:
            record.set(key.name, uuid.uuid4().hex)

        # Foreign keys filled from a cascaded relation are set later
        pending = {
            rel.foreign_key
            for rel in entity.relation_fields(many=False)
            if rel.foreign_key and record.get(rel.name) is not None
        }

        for field in entity.concrete_fields():
            required = field.required or field.primary_key
            if required and record.get(field.name) is None and field.name not in pending:
                raise ValidationError(entity.name, field.name)

    def _cascade(
        self,
        operation: str,
        entity: EntitySchema,
        batch: List[Record],
        options: Dict[str, Any],
        overwrite: bool,
    ) -> None:
        """
        Insert single-valued related records and back-fill foreign keys.

        A child shared by several parents is written once. A clean child
        that already has a primary key value is treated as stored and only
        linked.
        """
        for relation in entity.relation_fields(many=False):
            target = self.registry.get_entity(relation.target)
            target_key = target.primary_key
            owners: List[Tuple[Record, int]] = []
            children: Dict[int, Record] = {}
            pending: List[Record] = []

            for record in batch:
                value = record.get(relation.name)
                if value is None:
                    continue
                if id(value) not in children:
                    child = self._to_records(target, value)[0]
                    children[id(value)] = child
                    stored = (
                        not child.is_dirty
                        and target_key is not None
                        and child.get(target_key.name) is not None
                    )
                    if not stored:
                        pending.append(child)
                owners.append((record, id(value)))

            if pending:
                self._write(operation, target, pending, options, overwrite)

            for owner, ref in owners:
                child = children[ref]
                owner.values[relation.name] = child
                if relation.foreign_key and target_key is not None:
                    owner.set(relation.foreign_key, child.get(target_key.name))

    @staticmethod
    def _to_document(entity: EntitySchema, record: Record) -> Dict[str, Any]:
        document = {}
        for field in entity.concrete_fields():
            value = record.get(field.name)
            if value is not None:
                document[field.store_name] = TypeMapper.to_store(value, field)
        return document


class TransactionHandle:
    """
    Connection-like handle passed to ``SolrConnection.transaction`` callbacks.

    Writes are forwarded with ``commit=False`` and the handle itself under
    ``options["transaction"]``, so every bucket a write reaches (cascaded
    relation inserts included) is committed at the end. Reads go straight
    to the connection.
    """

    WRITE_OPERATIONS = (
        "insert",
        "upsert",
        "update",
        "update_all",
        "destroy",
        "destroy_models",
        "destroy_records",
        "destroy_by_query",
        "truncate",
    )

    def __init__(self, connection: SolrConnection, options: Dict[str, Any]):
        self.connection = connection
        self.options = options
        self.tables: List[str] = []
        self.write_count = 0

    def __getattr__(self, name: str) -> Any:
        attribute = getattr(self.connection, name)
        if name not in self.WRITE_OPERATIONS:
            return attribute

        def deferred(target: Any, *args: Any, **kwargs: Any) -> Any:
            args, kwargs = self._without_commit(name, target, args, kwargs)
            self.write_count += 1
            return attribute(target, *args, **kwargs)

        return deferred

    def transaction(self, callback: Callable[["TransactionHandle"], Any], options: Options = None) -> Any:
        """Nested transactions join the enclosing one."""
        return callback(self)

    def commit(self) -> None:
        """Issue one commit per bucket written through this handle."""
        for table in self.tables:
            self.connection._request(
                "POST", f"/{table}/update", {"commit": {}}, None, self.options
            )

    def record_write(self, table: str) -> None:
        if table not in self.tables:
            self.tables.append(table)

    def _without_commit(self, name: str, target: Any, args: tuple, kwargs: Dict[str, Any]):
        # Every write operation takes its options dict as the last positional
        # argument after (target, payload); destroy_by_query and truncate
        # take it right after the target.
        takes_payload = name not in ("destroy_by_query", "truncate") and not (
            name == "destroy" and isinstance(target, AbstractQuery)
        )
        position = 1 if takes_payload else 0

        args = list(args)
        if "options" in kwargs:
            kwargs["options"] = dict(kwargs["options"] or {}, commit=False, transaction=self)
        elif len(args) > position:
            args[position] = dict(args[position] or {}, commit=False, transaction=self)
        else:
            while len(args) < position:
                args.append(None)
            args.append({"commit": False, "transaction": self})
        return tuple(args), kwargs
