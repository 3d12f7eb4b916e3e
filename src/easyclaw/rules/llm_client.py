"""LLM client implementations for the enhanced compile strategy.

Both clients implement the LLMClient Protocol from .strategy, so the
strategy never depends on a specific provider:
- GatewayLLMClient: OpenAI-compatible endpoint of the local gateway
- GroqLLMClient: Groq's hosted API via AsyncGroq
"""

import logging
from typing import TYPE_CHECKING, Any

import httpx
from groq import AsyncGroq

from .base import RulesError

if TYPE_CHECKING:
    from ..config import LLMSettings

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_MODEL = "openclaw"
DEFAULT_GROQ_MODEL = "llama-3.1-70b-versatile"


class LLMClientError(RulesError):
    """Raised when an LLM backend returns an error or an unusable reply."""

    pass


def _build_messages(prompt: str, system: str | None) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


class GatewayLLMClient:
    """LLMClient that calls the local gateway's chat completions endpoint.

    The gateway exposes an OpenAI-compatible /v1/chat/completions API and
    routes to the configured provider itself, so no provider-specific code
    is needed here.

    Example:
        llm = GatewayLLMClient("http://127.0.0.1:18789", auth_token="...")
        strategy = LLMCompileStrategy(llm)
    """

    def __init__(
        self,
        gateway_url: str,
        auth_token: str = "",
        model: str = DEFAULT_GATEWAY_MODEL,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the gateway client.

        Args:
            gateway_url: Base URL of the gateway, e.g. http://127.0.0.1:18789.
            auth_token: Bearer token for the gateway.
            model: Model name sent in the request body.
            timeout: Request timeout in seconds.
            http_client: Optional shared AsyncClient (mainly for tests).
        """
        self._gateway_url = gateway_url.rstrip("/")
        self._auth_token = auth_token
        self._model = model
        self._timeout = timeout
        self._http_client = http_client

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    @property
    def url(self) -> str:
        """Full chat completions URL."""
        return f"{self._gateway_url}/v1/chat/completions"

    async def complete(self, prompt: str, system: str | None = None) -> str:
        """Complete a prompt and return the text response.

        Raises:
            LLMClientError: On transport errors, non-2xx responses, error
                payloads, or a reply without content.
        """
        payload = {
            "model": self._model,
            "messages": _build_messages(prompt, system),
            "temperature": 0,
        }
        headers = {"Authorization": f"Bearer {self._auth_token}"}

        logger.info("Calling gateway at %s", self._gateway_url)
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise LLMClientError(f"Gateway request timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            raise LLMClientError(f"Gateway request failed: {e}") from e

        if not response.is_success:
            raise LLMClientError(
                f"Gateway LLM error: {response.status_code} {response.reason_phrase} - "
                f"{response.text[:500]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMClientError(f"Gateway returned invalid JSON: {e}") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            error_type = error.get("type", "unknown") if isinstance(error, dict) else "unknown"
            message = error.get("message", "unknown error") if isinstance(error, dict) else error
            raise LLMClientError(f"Gateway LLM error: {error_type} - {message}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not isinstance(content, str):
            raise LLMClientError("Gateway response missing content in choices[0].message.content")

        # Upstream provider errors are sometimes forwarded as plain content.
        if content.startswith("HTTP ") and "error" in content:
            raise LLMClientError(f"Gateway upstream error: {content[:500]}")

        logger.info("LLM response received (%d chars)", len(content))
        return content


class GroqLLMClient:
    """LLMClient implementation that wraps AsyncGroq.

    Example:
        from groq import AsyncGroq

        groq = AsyncGroq(api_key="...")
        llm = GroqLLMClient(groq, model="llama-3.1-70b-versatile")
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = DEFAULT_GROQ_MODEL,
    ) -> None:
        """Initialize the Groq LLM client wrapper.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
        """
        self._client = client
        self._model = model

    async def complete(self, prompt: str, system: str | None = None) -> str:
        """Complete a prompt and return the text response."""
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=_build_messages(prompt, system),
            temperature=0,
        )

        return response.choices[0].message.content or ""

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model


def create_llm_client(settings: "LLMSettings") -> GatewayLLMClient | GroqLLMClient | None:
    """Build an LLM client from configuration.

    Args:
        settings: LLM section of the rules configuration.

    Returns:
        A client, or None if the LLM is disabled or lacks credentials.
    """
    if settings.provider is None:
        return None

    if settings.provider == "gateway":
        if not settings.gateway_url:
            logger.warning("LLM provider 'gateway' configured without gateway_url")
            return None
        return GatewayLLMClient(
            settings.gateway_url,
            auth_token=settings.auth_token or "",
            model=settings.model or DEFAULT_GATEWAY_MODEL,
            timeout=settings.timeout,
        )

    if settings.provider == "groq":
        if not settings.api_key:
            logger.warning("LLM provider 'groq' configured without an API key")
            return None
        return GroqLLMClient(
            AsyncGroq(api_key=settings.api_key),
            model=settings.model or DEFAULT_GROQ_MODEL,
        )

    logger.warning("Unknown LLM provider %r, using heuristic compiler only", settings.provider)
    return None
