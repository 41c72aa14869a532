"""
Backend providers for Oracle Guard.

Pluggable implementations of the provider contract: a remote OpenAI-style
API, a local Ollama server and the in-process offline template engine.
"""

from .base import Provider, ProviderUsage
from .factory import build_providers, create_provider
from .offline import OfflineProvider
from .ollama_client import OllamaProvider
from .openai_client import OpenAIProvider

__all__ = [
    "Provider",
    "ProviderUsage",
    "OpenAIProvider",
    "OllamaProvider",
    "OfflineProvider",
    "create_provider",
    "build_providers",
]
