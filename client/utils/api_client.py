"""
REST API client wrapper.

This module provides a simplified async interface for talking to the
tile-shop REST backend: JSON requests, multipart uploads, token
authentication and normalized error handling.
"""

import json
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from config import settings
from utils.errors import ApiError, AuthenticationError, NetworkError
from utils.logging import get_logger, log_request

logger = get_logger("http.client")

# (filename, content, content_type) as accepted by httpx
FileField = Tuple[str, bytes, str]


class ApiClient:
    """
    Wrapper for the backend REST API.

    Every call accepts an optional token which is sent as
    ``Authorization: Token <token>`` when it is not blank. Non-2xx
    responses are turned into ``ApiError`` (``AuthenticationError`` for 401)
    and transport failures into ``NetworkError``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the API client.

        Args:
            base_url: Backend base URL (defaults to config)
            timeout: Request timeout in seconds (defaults to config)
            transport: Custom httpx transport, used by tests
        """
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    @staticmethod
    def build_headers(token: Optional[str] = None, json_body: bool = True) -> Dict[str, str]:
        """
        Build request headers.

        Multipart requests must not set Content-Type, httpx adds it together
        with the boundary.

        Args:
            token: Auth token (optional)
            json_body: Whether the request carries a JSON body

        Returns:
            dict: Request headers
        """
        headers = {"Accept": "application/json"}
        if json_body:
            headers["Content-Type"] = "application/json"

        if token and token.strip():
            headers["Authorization"] = f"Token {token.strip()}"

        return headers

    async def get(self, url: str, token: Optional[str] = None) -> Any:
        """GET ``url`` and return the decoded JSON body."""
        return await self._request("GET", url, token)

    async def post(self, url: str, data: Any, token: Optional[str] = None) -> Any:
        """POST ``data`` as JSON and return the decoded JSON body."""
        return await self._request("POST", url, token, json_data=data)

    async def put(self, url: str, data: Any, token: Optional[str] = None) -> Any:
        """PUT ``data`` as JSON and return the decoded JSON body."""
        return await self._request("PUT", url, token, json_data=data)

    async def patch(self, url: str, data: Any, token: Optional[str] = None) -> Any:
        """PATCH ``data`` as JSON and return the decoded JSON body."""
        return await self._request("PATCH", url, token, json_data=data)

    async def delete(self, url: str, token: Optional[str] = None) -> Any:
        """DELETE ``url``; an empty or 204 response yields ``{}``."""
        return await self._request("DELETE", url, token)

    async def upload_file(
        self,
        url: str,
        data: Dict[str, str],
        files: Dict[str, FileField],
        token: Optional[str] = None
    ) -> Any:
        """
        POST a multipart form.

        Args:
            url: Endpoint URL
            data: Plain form fields
            files: File fields as (filename, content, content_type)
            token: Auth token (optional)

        Returns:
            Decoded JSON body
        """
        return await self._request("POST", url, token, form_data=data, files=files)

    async def _request(
        self,
        method: str,
        url: str,
        token: Optional[str],
        json_data: Any = None,
        form_data: Optional[Dict[str, str]] = None,
        files: Optional[Dict[str, FileField]] = None
    ) -> Any:
        multipart = files is not None
        headers = self.build_headers(token, json_body=not multipart)

        request_kwargs: Dict[str, Any] = {"headers": headers}
        if multipart:
            request_kwargs["data"] = form_data or {}
            request_kwargs["files"] = files
        elif json_data is not None:
            request_kwargs["json"] = json_data

        start_time = time.perf_counter()
        try:
            response = await self._client.request(method, url, **request_kwargs)
        except httpx.TransportError as e:
            duration = time.perf_counter() - start_time
            log_request(method, url, None, duration, error=str(e))
            logger.error(f"No response from {method} {url}: {e}")
            raise NetworkError() from e

        duration = time.perf_counter() - start_time
        log_request(method, url, response.status_code, duration, multipart=multipart)

        if response.is_error:
            raise self._error_from_response(response, method, url)

        return self._decode_body(response)

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            logger.warning(f"Non-JSON success body from {response.request.url}")
            return {}

    @staticmethod
    def _error_from_response(response: httpx.Response, method: str, url: str) -> ApiError:
        """
        Turn a non-2xx response into an exception.

        The message is taken from the JSON ``error`` field, then ``detail``,
        then the whole JSON body; a body that is not JSON falls back to
        ``"<status> <reason>"``.
        """
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code == 401:
            logger.error(f"Unauthorized request: {method} {url}")
            return AuthenticationError(
                "Unauthorized: Please login again",
                status_code=401,
                payload=payload
            )

        if isinstance(payload, dict) and (payload.get("error") or payload.get("detail")):
            message = str(payload.get("error") or payload.get("detail"))
        elif payload is not None:
            message = json.dumps(payload)
        else:
            message = f"{response.status_code} {response.reason_phrase}"

        logger.error(f"API error on {method} {url}: {message}", status_code=response.status_code)
        return ApiError(message, status_code=response.status_code, payload=payload)


# Global client instance
_api_client: Optional[ApiClient] = None


def get_api_client() -> ApiClient:
    """
    Get or create the global API client instance.

    Returns:
        ApiClient: Client instance
    """
    global _api_client
    if _api_client is None:
        _api_client = ApiClient()
    return _api_client
