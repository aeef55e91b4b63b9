"""Query translation for SOLR."""

from solr_adapter.query.generator import SolrQueryGenerator

__all__ = ["SolrQueryGenerator"]
