"""
Shared HTTP plumbing for the Twitch clients.

Requests are made with a ``requests.Session`` and run in a worker thread so the
event loop never blocks on network I/O. Transport failures are converted into
the caller's own network error type; raw ``requests`` exceptions never escape.
"""

import asyncio
import logging
from typing import Dict, Any, Optional, Type

import requests


logger = logging.getLogger(__name__)


class HTTPClient:
    """
    Base class for clients talking to Twitch over HTTP.

    Subclasses set ``network_error_class`` to the exception type raised when a
    request cannot be completed at the transport level.
    """

    network_error_class: Type[Exception] = ConnectionError

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        """
        Initialize the HTTP client.

        Args:
            timeout: Default timeout for requests in seconds
            session: Optional pre-configured requests session
        """
        self.timeout = timeout
        self._session = session or requests.Session()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            self._session.close()

    async def _make_request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> requests.Response:
        """
        Make an HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Absolute request URL
            headers: Request headers
            params: Query string parameters
            data: Form-encoded body
            json_body: JSON body
            timeout: Request timeout override

        Returns:
            The response, whatever its status code

        Raises:
            network_error_class: If the request times out or fails to complete
        """
        request_timeout = timeout or self.timeout

        try:
            return await asyncio.to_thread(
                self._session.request,
                method.upper(),
                url,
                headers=headers,
                params=params,
                data=data,
                json=json_body,
                timeout=request_timeout
            )
        except requests.exceptions.Timeout:
            logger.error(f"{method.upper()} {url} timed out after {request_timeout}s")
            raise self.network_error_class(f"Request timed out after {request_timeout}s")
        except requests.exceptions.RequestException as e:
            logger.error(f"{method.upper()} {url} failed: {e}")
            raise self.network_error_class(f"Request failed: {e}")

    @staticmethod
    def _parse_json(response: requests.Response) -> Optional[Dict[str, Any]]:
        """Decode a JSON object body, returning None when it is not one."""
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else None

    @staticmethod
    def _is_success(response: requests.Response) -> bool:
        return 200 <= response.status_code < 300
