"""Error taxonomy shared by the clients, the ingestion pipeline and the chat path."""
from typing import Optional

import httpx


class ChatSupportError(Exception):
    """Base class for all service errors.

    Attributes:
        message: Human readable description, safe to log
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(ChatSupportError):
    """A required setting (usually a credential) is missing or invalid."""


class TransportError(ChatSupportError):
    """Network failure or timeout talking to an external service."""


class UpstreamError(ChatSupportError):
    """An external API answered with a non-success response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(ChatSupportError):
    """Input rejected before any external call was made."""


class RateLimitError(ChatSupportError):
    """Caller exceeded the configured request ceiling."""


def upstream_error_from_response(
    response: httpx.Response,
    default_message: str,
) -> UpstreamError:
    """Build an UpstreamError from a non-2xx response.

    OpenAI-style payloads carry ``{"error": {"message": ...}}`` while the
    vector index uses a top-level ``{"message": ...}``. Both are tried before
    falling back to ``default_message``.

    Args:
        response: The failed response
        default_message: Message used when the payload has none

    Returns:
        UpstreamError with the extracted message and status code
    """
    message = None
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
        elif isinstance(error, str):
            message = error
        if not message and isinstance(payload.get("message"), str):
            message = payload["message"]

    return UpstreamError(message or default_message, status_code=response.status_code)
