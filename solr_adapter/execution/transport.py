"""
HTTP transport for SOLR.

Thin request/response wrapper around ``httpx.Client`` that decodes JSON
responses and wraps every failure in TransportError.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from solr_adapter.core.errors import TransportError
from solr_adapter.core.models import SolrConfig

logger = logging.getLogger(__name__)


class HttpTransport:
    """
    Issues requests against a SOLR base URL.

    Implements the ITransport interface.
    """

    def __init__(
        self,
        config: SolrConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize HTTP transport.

        Args:
            config: Connection configuration (base URL, timeout, auth, headers)
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        """
        self.base_url = config.base_url
        auth = None
        if config.username:
            auth = httpx.BasicAuth(config.username, config.password or "")

        self.client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
            auth=auth,
            headers=config.headers,
            transport=transport,
        )

    def request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Issue one request and decode the JSON response.

        Args:
            method: HTTP method
            path: Path relative to the base URL (e.g. ``/users/query``)
            body: JSON-serializable request body
            params: Query-string parameters
            headers: Extra request headers

        Returns:
            Decoded JSON response

        Raises:
            TransportError: On network errors, timeouts, non-2xx statuses
                or undecodable responses
        """
        try:
            response = self.client.request(
                method, path, json=body, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransportError(
                f"{method} {path} timed out: {e}", method=method, path=path
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"{method} {path} failed: {e}", method=method, path=path
            ) from e

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            payload = self._decode_error(response)
            raise TransportError(
                f"{method} {path} failed with status {response.status_code}: "
                f"{self._error_message(payload)}",
                status_code=response.status_code,
                body=payload,
                method=method,
                path=path,
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{method} {path} returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
                method=method,
                path=path,
            ) from e

    def close(self) -> None:
        self.client.close()

    @staticmethod
    def _decode_error(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _error_message(payload: Any) -> str:
        # SOLR reports failures as {"error": {"msg": ..., "code": ...}}
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and error.get("msg"):
                return str(error["msg"])
        return str(payload)[:500]
