"""
SOLR adapter - object-relational query execution over SOLR.

Main entry point for connecting abstract queries and records to a SOLR
instance.
"""

from solr_adapter.connection import SolrConnection, TransactionHandle
from solr_adapter.core.models import EntitySchema, FieldKind, FieldSpec, Record, SolrConfig
from solr_adapter.query.generator import SolrQueryGenerator

__all__ = [
    "SolrConnection",
    "TransactionHandle",
    "SolrQueryGenerator",
    "SolrConfig",
    "EntitySchema",
    "FieldKind",
    "FieldSpec",
    "Record",
]
