"""Request execution: transport, batching and result streaming."""

from solr_adapter.execution.batching import BatchPlan
from solr_adapter.execution.result_stream import ResultStream
from solr_adapter.execution.transport import HttpTransport

__all__ = ["BatchPlan", "ResultStream", "HttpTransport"]
