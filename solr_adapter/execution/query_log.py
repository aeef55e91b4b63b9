"""
Per-request logging.

Every store call made by the connection goes through ``dispatch``, which
times the call and hands a record to the module logger and to any query
loggers the caller supplied.
"""

import logging
import time
from typing import Any, Dict, Iterable, Optional

from solr_adapter.core.interfaces import IQueryLogger, ITransport

logger = logging.getLogger(__name__)


def dispatch(
    transport: ITransport,
    method: str,
    path: str,
    body: Optional[Any] = None,
    params: Optional[Dict[str, Any]] = None,
    query_loggers: Iterable[Optional[IQueryLogger]] = (),
) -> Dict[str, Any]:
    """
    Issue a request and log it.

    Args:
        transport: Transport to issue the request with
        method: HTTP method
        path: Request path
        body: Request body
        params: Query-string parameters
        query_loggers: Loggers with a ``log`` method; None entries are skipped

    Returns:
        Decoded response
    """
    record: Dict[str, Any] = {
        "query": {"method": method, "path": path, "body": body},
        "params": params or {},
    }
    started = time.perf_counter()

    try:
        result = transport.request(method, path, body=body, params=params)
    except Exception as e:
        record["error"] = str(e)
        record["duration"] = time.perf_counter() - started
        logger.debug("%s %s failed after %.3fs: %s", method, path, record["duration"], e)
        _emit(query_loggers, record)
        raise

    record["result"] = result
    record["duration"] = time.perf_counter() - started
    logger.debug("%s %s completed in %.3fs", method, path, record["duration"])
    _emit(query_loggers, record)
    return result


def _emit(query_loggers: Iterable[Optional[IQueryLogger]], record: Dict[str, Any]) -> None:
    for query_logger in query_loggers:
        if query_logger is not None and callable(getattr(query_logger, "log", None)):
            query_logger.log(dict(record))
