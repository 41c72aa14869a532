"""
Ollama provider.

Local model server backend using the non-streaming /api/generate endpoint.
"""

import logging
from typing import List, Optional

import httpx

from ..core.results import ErrorType, OracleResult, ProviderType
from .base import Provider

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434"
DEFAULT_MODEL = "gemma3:12b"
PROBE_TIMEOUT_SECONDS = 3.0


class OllamaProvider(Provider):
    """Local backend talking to an Ollama server over HTTP."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_URL,
        timeout_seconds: float = 60.0,
        name: str = "ollama",
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the provider.

        Args:
            model: Model tag served by Ollama
            base_url: Server URL
            timeout_seconds: Per-request timeout for generation
            name: Provider name used in logs and failover state
            transport: Optional httpx transport, used to stub the server
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        super().__init__(name, model)
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def is_available(self) -> bool:
        """Probe the server with a short timeout."""
        try:
            with self._client(PROBE_TIMEOUT_SECONDS) as client:
                response = client.get("/api/tags")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def available_models(self) -> List[str]:
        """Model tags installed on the server, empty if it cannot be reached."""
        try:
            with self._client(PROBE_TIMEOUT_SECONDS) as client:
                response = client.get("/api/tags")
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            return []
        return [entry.get("name", "") for entry in payload.get("models", [])]

    def is_model_available(self, model: str) -> bool:
        """Check for a model, matching "gemma3" against "gemma3:12b"."""
        for tag in self.available_models():
            if tag == model or tag.split(":", 1)[0] == model:
                return True
        return False

    def _call(self, prompt: str) -> OracleResult:
        body = {"model": self.model, "prompt": prompt, "stream": False}
        try:
            with self._client(self.timeout_seconds) as client:
                response = client.post("/api/generate", json=body)
        except httpx.TimeoutException as exc:
            return self._failure(ErrorType.TIMEOUT, f"Ollama request timed out: {exc}")
        except httpx.RequestError as exc:
            return self._failure(ErrorType.NETWORK, f"HTTP error: {exc}")

        if response.status_code == 429:
            return self._failure(ErrorType.RATE_LIMITED, "Ollama server is busy", 429)
        if response.status_code >= 400:
            return self._failure(
                ErrorType.API_ERROR,
                f"Ollama returned HTTP {response.status_code}",
                response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            return self._failure(ErrorType.PARSE_ERROR, "Ollama returned malformed JSON")

        if not isinstance(payload, dict):
            return self._failure(ErrorType.PARSE_ERROR, "Ollama returned an unexpected payload")
        if "error" in payload:
            return self._failure(ErrorType.INVALID_RESPONSE, str(payload["error"]))
        if "response" not in payload:
            return self._failure(ErrorType.INVALID_RESPONSE, "Ollama response has no text")

        return OracleResult(
            success=True,
            text=payload["response"],
            input_tokens=int(payload.get("prompt_eval_count", 0)),
            completion_tokens=int(payload.get("eval_count", 0)),
            provider=ProviderType.OLLAMA,
            provider_name=self.name,
            model=self.model,
        )

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
        )

    def _failure(self, error_type: ErrorType, message: str, status_code: int = 0) -> OracleResult:
        logger.debug("Provider %s failed (%s): %s", self.name, error_type.value, message)
        return OracleResult.failure(
            error_type,
            message,
            provider=ProviderType.OLLAMA,
            provider_name=self.name,
            status_code=status_code,
            model=self.model,
        )
