"""
Shared fixtures: entity schemas and an in-memory SOLR core behind
``httpx.MockTransport``.
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx
import pytest

from solr_adapter import SolrConnection
from solr_adapter.core.models import EntitySchema, FieldKind, FieldSpec, SolrConfig
from solr_adapter.query.generator import SolrQueryGenerator
from solr_adapter.schema.registry import EntityRegistry

BASE_URL = "http://solr.test/solr"

EQUALS_QUERY = re.compile(r'^(\w+):"(.*)"$')


class FakeSolr:
    """
    Minimal SOLR core emulation.

    Understands the JSON Request API (offset/limit/fields/facet), JSON
    updates (adds with optimistic ``_version_: -1``, atomic ``set``
    updates, delete by id and by query, commit) and records every request.
    Lucene queries other than ``*:*`` and ``field:"value"`` match every
    document.
    """

    def __init__(self):
        self.cores: Dict[str, List[Dict[str, Any]]] = {}
        self.requests: List[Dict[str, Any]] = []
        self.fail_requests: Dict[int, int] = {}  # request index -> status code

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path[len("/solr/"):]
        table, _, action = path.partition("/")
        index = len(self.requests)
        self.requests.append(
            {
                "method": request.method,
                "table": table,
                "action": action,
                "params": dict(request.url.params),
                "body": body,
            }
        )

        if index in self.fail_requests:
            status = self.fail_requests[index]
            return httpx.Response(status, json={"error": {"msg": "simulated failure", "code": status}})

        if action == "query":
            return httpx.Response(200, json=self._query(table, body))
        if action == "update":
            return self._update(table, body)
        return httpx.Response(404, json={"error": {"msg": f"unknown handler {action}", "code": 404}})

    def seed(self, table: str, documents: List[Dict[str, Any]]) -> None:
        self.cores.setdefault(table, []).extend(dict(d) for d in documents)

    def calls(self, action: Optional[str] = None) -> List[Dict[str, Any]]:
        return [r for r in self.requests if action is None or r["action"] == action]

    def _match(self, table: str, query: str) -> List[Dict[str, Any]]:
        documents = self.cores.get(table, [])
        match = EQUALS_QUERY.match(query or "*:*")
        if match:
            field, value = match.groups()
            return [d for d in documents if str(d.get(field)) == value]
        return list(documents)

    def _query(self, table: str, body: Dict[str, Any]) -> Dict[str, Any]:
        matched = self._match(table, body.get("query"))
        offset = body.get("offset", 0)
        limit = body.get("limit", 10)
        page = matched[offset:offset + limit]

        if "fields" in body:
            page = [{k: v for k, v in d.items() if k in body["fields"]} for d in page]

        result: Dict[str, Any] = {
            "responseHeader": {"status": 0},
            "response": {"numFound": len(matched), "start": offset, "docs": page},
        }
        if "facet" in body:
            result["facets"] = self._facets(matched, body["facet"])
        return result

    @staticmethod
    def _facets(matched: List[Dict[str, Any]], facet: Dict[str, str]) -> Dict[str, Any]:
        facets: Dict[str, Any] = {"count": len(matched)}
        if not matched:
            return facets
        for name, expression in facet.items():
            function, column = re.match(r"(\w+)\((\w+)\)", expression).groups()
            values = [d[column] for d in matched if d.get(column) is not None]
            if function == "countvals":
                facets[name] = len(values)
            elif values and function == "sum":
                facets[name] = float(sum(values))
            elif values and function == "avg":
                facets[name] = sum(values) / len(values)
            elif values and function == "min":
                facets[name] = min(values)
            elif values and function == "max":
                facets[name] = max(values)
        return facets

    def _update(self, table: str, body: Any) -> httpx.Response:
        core = self.cores.setdefault(table, [])

        if isinstance(body, list):
            for document in body:
                document = dict(document)
                version = document.pop("_version_", None)
                existing = next((d for d in core if d.get("id") == document.get("id")), None)
                if version == -1 and existing is not None:
                    return httpx.Response(
                        409,
                        json={"error": {"msg": f"version conflict for {document['id']}", "code": 409}},
                    )
                if any(isinstance(v, dict) and "set" in v for v in document.values()):
                    if existing is None:
                        existing = {"id": document["id"]}
                        core.append(existing)
                    for key, value in document.items():
                        existing[key] = value["set"] if isinstance(value, dict) else value
                elif existing is not None:
                    core[core.index(existing)] = document
                else:
                    core.append(document)
        elif isinstance(body, dict) and "delete" in body:
            target = body["delete"]
            if isinstance(target, list):
                self.cores[table] = [d for d in core if d.get("id") not in target]
            else:
                doomed = self._match(table, target["query"])
                self.cores[table] = [d for d in core if d not in doomed]

        return httpx.Response(200, json={"responseHeader": {"status": 0, "QTime": 1}})


class ListLogger:
    """Query logger collecting records."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    def log(self, record: Dict[str, Any]) -> None:
        self.records.append(record)


def make_entities() -> List[EntitySchema]:
    role = EntitySchema(
        name="Role",
        table="roles",
        fields=[
            FieldSpec(name="id", primary_key=True),
            FieldSpec(name="name", required=True),
        ],
    )
    user = EntitySchema(
        name="User",
        table="users",
        fields=[
            FieldSpec(name="id", primary_key=True),
            FieldSpec(name="name", required=True),
            FieldSpec(name="age", type="integer"),
            FieldSpec(name="email", column="email_s"),
            FieldSpec(name="created_at", type="date"),
            FieldSpec(name="role_id"),
            FieldSpec(name="role", kind=FieldKind.RELATION, target="Role", foreign_key="role_id"),
            FieldSpec(name="posts", kind=FieldKind.RELATION, target="Post", many=True),
            FieldSpec(name="display_name", kind=FieldKind.VIRTUAL),
        ],
    )
    post = EntitySchema(
        name="Post",
        table="posts",
        fields=[
            FieldSpec(name="id", primary_key=True),
            FieldSpec(name="title"),
            FieldSpec(name="user_id"),
        ],
    )
    return [role, user, post]


@pytest.fixture
def entities() -> List[EntitySchema]:
    return make_entities()


@pytest.fixture
def registry(entities) -> EntityRegistry:
    return EntityRegistry(entities)


@pytest.fixture
def generator(registry) -> SolrQueryGenerator:
    return SolrQueryGenerator(registry)


@pytest.fixture
def fake_solr() -> FakeSolr:
    return FakeSolr()


@pytest.fixture
def query_logger() -> ListLogger:
    return ListLogger()


@pytest.fixture
def connection(fake_solr, entities):
    conn = SolrConnection(
        config=SolrConfig(base_url=BASE_URL),
        entities=entities,
        transport=httpx.MockTransport(fake_solr.handle),
    )
    conn.start()
    yield conn
    conn.stop()
