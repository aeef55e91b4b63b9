"""Entity schemas and value type mapping."""

from solr_adapter.schema.type_mappings import TypeMapper
from solr_adapter.schema.registry import EntityRegistry

__all__ = ["TypeMapper", "EntityRegistry"]
