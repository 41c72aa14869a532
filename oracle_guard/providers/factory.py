"""
Provider construction.

Builds providers from configuration, preferred provider first.
"""

from typing import List, Union

from ..config.loader import OracleConfig, ProviderKind
from .base import Provider
from .offline import OfflineProvider
from .ollama_client import OllamaProvider
from .openai_client import OpenAIProvider


def create_provider(kind: Union[ProviderKind, str], config: OracleConfig) -> Provider:
    """Create one provider from configuration.

    Raises:
        ValueError: If the provider kind is unknown
    """
    kind = ProviderKind(kind) if isinstance(kind, str) else kind
    if kind == ProviderKind.OPENAI:
        return OpenAIProvider(
            model=config.openai_model,
            api_key=config.api_key or "",
            base_url=config.api_endpoint,
            timeout_seconds=config.timeout_seconds,
        )
    if kind == ProviderKind.OLLAMA:
        return OllamaProvider(
            model=config.ollama_model,
            base_url=config.ollama_url,
            timeout_seconds=config.ollama_timeout_seconds,
        )
    return OfflineProvider()


def build_providers(config: OracleConfig) -> List[Provider]:
    """Live providers in failover order, preferred first.

    The offline provider is never part of the chain; the failover
    controller answers from it directly when the chain is exhausted.
    A preferred provider of "offline" yields an empty chain.
    """
    if config.preferred_provider == ProviderKind.OFFLINE:
        return []
    order = [ProviderKind.OPENAI, ProviderKind.OLLAMA]
    order.remove(config.preferred_provider)
    order.insert(0, config.preferred_provider)

    providers = []
    for kind in order:
        if kind == ProviderKind.OPENAI and not config.has_api_key:
            continue
        providers.append(create_provider(kind, config))
    return providers
