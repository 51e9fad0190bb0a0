"""Base class for the JSON-over-HTTP service clients.

Subclasses provide credentials, base URL and auth headers; the base class
owns the request plumbing and maps failures onto the error taxonomy.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog

from pdfchat.errors import ConfigError, TransportError, UpstreamError, upstream_error_from_response

logger = structlog.get_logger()


class JSONServiceClient(ABC):
    """Async client for a JSON API with bounded timeouts and no retries."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (used by tests to stub the service)
        """
        self.timeout = timeout
        self._transport = transport

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Short name used in log events, e.g. "openai"."""

    @abstractmethod
    def _get_base_url(self) -> str:
        """Return the service base URL without trailing slash."""

    @abstractmethod
    def _get_auth_header(self) -> Dict[str, str]:
        """Return the authentication header for the service."""

    @abstractmethod
    def _check_credentials(self) -> None:
        """Raise ConfigError when the credentials are not configured."""

    async def do_request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        default_error: str = "Request failed",
    ) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            endpoint: Path appended to the base URL
            json: JSON body
            timeout: Per-call timeout (defaults to self.timeout)
            default_error: Message used when an error payload carries none

        Returns:
            Decoded JSON response (empty dict for empty bodies)

        Raises:
            ConfigError: If credentials are missing (checked before any I/O)
            TransportError: On connection failures and timeouts
            UpstreamError: On non-2xx responses or undecodable bodies
        """
        self._check_credentials()

        url = f"{self._get_base_url()}/{endpoint.lstrip('/')}"
        headers = {"Content-Type": "application/json"}
        headers.update(self._get_auth_header())

        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, url, json=json, headers=headers)
        except httpx.TransportError as e:
            logger.error(
                f"{self.service_name}_transport_error",
                error=str(e),
                error_type=type(e).__name__,
                endpoint=endpoint,
            )
            raise TransportError(str(e) or type(e).__name__) from e

        if not response.is_success:
            error = upstream_error_from_response(response, default_error)
            logger.error(
                f"{self.service_name}_http_error",
                status_code=response.status_code,
                error=error.message,
                endpoint=endpoint,
            )
            raise error

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON response from {self.service_name}",
                status_code=response.status_code,
            ) from e


class OpenAIHTTPClient(JSONServiceClient):
    """Shared configuration for OpenAI-compatible endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def service_name(self) -> str:
        return "openai"

    def _get_base_url(self) -> str:
        return self.base_url

    def _get_auth_header(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _check_credentials(self) -> None:
        if not self.api_key:
            raise ConfigError("OpenAI API key not configured")
