"""
OpenAI provider.

Remote chat-completion backend. SDK exceptions are mapped onto the error
taxonomy instead of propagating.
"""

import logging
import os
from typing import Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from ..core.results import ErrorType, OracleResult, ProviderType
from ..core.token_counter import estimate_tokens
from .base import Provider

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"
API_KEY_ENV = "OPENAI_API_KEY"


class OpenAIProvider(Provider):
    """Live backend speaking the OpenAI chat completions API.

    The SDK's own retries are disabled; retry policy belongs to the
    failover controller.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_ENDPOINT,
        timeout_seconds: float = 10.0,
        name: str = "openai",
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        """Initialize the provider.

        Args:
            model: Chat model name (required)
            api_key: API key; falls back to the OPENAI_API_KEY environment variable
            base_url: API endpoint
            timeout_seconds: Per-request timeout
            name: Provider name used in logs and failover state
            max_tokens: Completion token limit (optional)
            temperature: Sampling temperature (optional)

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        super().__init__(name, model)
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self.temperature = temperature
        key = api_key if api_key is not None else os.environ.get(API_KEY_ENV)
        self.client: Optional[OpenAI] = None
        if key:
            self.client = OpenAI(
                api_key=key,
                base_url=base_url,
                timeout=timeout_seconds,
                max_retries=0,
            )
        else:
            logger.info("No API key for provider %s; it will report unavailable", name)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.OPENAI

    def is_available(self) -> bool:
        return self.client is not None

    def _call(self, prompt: str) -> OracleResult:
        if self.client is None:
            return self._failure(ErrorType.PROVIDER_UNAVAILABLE, "No API key configured")

        kwargs = {}
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                **kwargs
            )
        except APITimeoutError as exc:
            return self._failure(ErrorType.TIMEOUT, str(exc))
        except APIConnectionError as exc:
            return self._failure(ErrorType.NETWORK, str(exc))
        except RateLimitError as exc:
            return self._failure(ErrorType.RATE_LIMITED, str(exc), exc.status_code)
        except APIStatusError as exc:
            return self._failure(ErrorType.API_ERROR, str(exc), exc.status_code)
        except OpenAIError as exc:
            return self._failure(ErrorType.UNKNOWN, str(exc))

        if not response.choices or response.choices[0].message.content is None:
            return self._failure(ErrorType.INVALID_RESPONSE, "Response contained no message content")

        text = response.choices[0].message.content
        usage = response.usage
        if usage is not None:
            input_tokens = usage.prompt_tokens
            completion_tokens = usage.completion_tokens
        else:
            input_tokens = estimate_tokens(prompt)
            completion_tokens = estimate_tokens(text)

        return OracleResult(
            success=True,
            text=text,
            input_tokens=input_tokens,
            completion_tokens=completion_tokens,
            provider=ProviderType.OPENAI,
            provider_name=self.name,
            model=self.model,
        )

    def _failure(self, error_type: ErrorType, message: str, status_code: int = 0) -> OracleResult:
        logger.debug("Provider %s failed (%s): %s", self.name, error_type.value, message)
        return OracleResult.failure(
            error_type,
            message,
            provider=ProviderType.OPENAI,
            provider_name=self.name,
            status_code=status_code,
            model=self.model,
        )
