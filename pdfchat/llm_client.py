"""Chat completion client for an OpenAI-compatible API."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import structlog

from pdfchat.errors import UpstreamError
from pdfchat.http_client import OpenAIHTTPClient

logger = structlog.get_logger()


@dataclass
class Completion:
    """Result of a chat completion call."""

    content: str
    finish_reason: str = "unknown"
    usage: Dict[str, Any] = field(default_factory=dict)


class CompletionClient(OpenAIHTTPClient):
    """Async client for the chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the completion client.

        Args:
            api_key: Provider API key
            model: Chat model name
            base_url: API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport
        """
        super().__init__(api_key=api_key, base_url=base_url, timeout=timeout, transport=transport)
        self.model = model

    async def chat(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> Completion:
        """Send a non-streaming chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            max_tokens: Response token ceiling
            temperature: Sampling temperature (0.0-2.0)

        Returns:
            Completion with the assistant content

        Raises:
            ConfigError: If the API key is missing
            TransportError: On network errors
            UpstreamError: On API errors or a response without content
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }

        logger.info(
            "chat_completion_request",
            model=self.model,
            message_count=len(messages),
            max_tokens=max_tokens,
        )

        data = await self.do_request(
            "POST",
            "/chat/completions",
            json=payload,
            default_error="Failed to generate response",
        )

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError("Invalid completion response") from e

        if content is None:
            raise UpstreamError("Invalid completion response")

        completion = Completion(
            content=content,
            finish_reason=choice.get("finish_reason") or "unknown",
            usage=data.get("usage") or {},
        )

        logger.info(
            "chat_completion_response",
            model=self.model,
            response_length=len(completion.content),
            finish_reason=completion.finish_reason,
            usage=completion.usage,
        )

        return completion

    async def list_models(self) -> List[str]:
        """List model ids visible to the configured key.

        Returns:
            List of model ids
        """
        data = await self.do_request(
            "GET",
            "/models",
            timeout=min(self.timeout, 30.0),
            default_error="Connection failed",
        )
        return [m["id"] for m in data.get("data", []) if "id" in m]
