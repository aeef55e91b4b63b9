"""
Example: writing and querying records through SolrConnection.

Expects a SOLR instance with ``users`` and ``roles`` cores. Connection
settings are read from the environment (or a ``.env`` file): SOLR_URL,
SOLR_USERNAME, SOLR_PASSWORD.
"""

import json
import logging

from solr_adapter import EntitySchema, FieldKind, FieldSpec, SolrConnection
from solr_adapter.core.errors import SolrAdapterError, UnsupportedOperation
from solr_adapter.core.query import AbstractQuery, Operator, or_, where

logging.basicConfig(level=logging.INFO)


class PrintLogger:
    """Prints every request sent to the store."""

    def log(self, record):
        query = record["query"]
        print(f"  -> {query['method']} {query['path']} ({record['duration'] * 1000:.1f} ms)")


ROLE = EntitySchema(
    name="Role",
    table="roles",
    fields=[
        FieldSpec(name="id", primary_key=True),
        FieldSpec(name="name", required=True),
    ],
)

USER = EntitySchema(
    name="User",
    table="users",
    fields=[
        FieldSpec(name="id", primary_key=True),
        FieldSpec(name="name", required=True),
        FieldSpec(name="age", type="integer"),
        FieldSpec(name="joined", type="date"),
        FieldSpec(name="role_id"),
        FieldSpec(name="role", kind=FieldKind.RELATION, target="Role", foreign_key="role_id"),
    ],
)


def main():
    with SolrConnection.from_env(entities=[ROLE, USER], logger=PrintLogger()) as conn:
        print("\n=== Insert ===")
        conn.insert(
            "User",
            [
                {"name": "Ada", "age": 36, "role": {"name": "admin"}},
                {"name": "Linus", "age": 28},
                {"name": "Grace", "age": 45},
            ],
        )

        print("\n=== Select ===")
        query = (
            AbstractQuery(entity="User")
            .filter(or_(where("age", Operator.GTE, 40), where("name", Operator.LIKE, "A%")))
            .order_by("age", descending=True)
        )
        for record in conn.select(query):
            print(f"  {json.dumps(record.values, default=str)}")

        print("\n=== Aggregates ===")
        everyone = AbstractQuery(entity="User")
        print(f"  count={conn.count(everyone)} average_age={conn.average(everyone, 'age')}")

        print("\n=== Transaction (deferred commit) ===")
        conn.transaction(lambda tx: tx.update_all(everyone, {"age": 50}))

        print("\n=== Schema changes ===")
        try:
            conn.create_table(USER)
        except UnsupportedOperation as e:
            print(f"  {e}")

        conn.truncate("User")
        conn.truncate("Role")


if __name__ == "__main__":
    try:
        main()
    except SolrAdapterError as e:
        print(f"❌ Error: {e}")
