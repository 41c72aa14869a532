"""
Configuration management and loading.

Layers defaults, an optional YAML file and environment variables into a
validated OracleConfig.
"""

import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

import yaml

from ..core.backoff import RetryStrategy
from ..core.recovery import RecoveryConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "oracle_guard.yaml"
API_KEY_ENV = "OPENAI_API_KEY"


class ProviderKind(Enum):
    """Backends that can be preferred."""
    OPENAI = "openai"
    OLLAMA = "ollama"
    OFFLINE = "offline"


@dataclass(frozen=True, repr=False)
class OracleConfig:
    """Complete oracle configuration.

    The API key is only ever read from the environment. It is masked in
    repr() and never written back to a configuration file.
    """
    preferred_provider: ProviderKind = ProviderKind.OPENAI
    api_key: Optional[str] = None
    api_endpoint: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-3.5-turbo"
    timeout_seconds: float = 10.0
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "gemma3:12b"
    ollama_timeout_seconds: float = 60.0
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    retry_strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    jitter_enabled: bool = True
    jitter_factor: float = 0.1
    fallback_enabled: bool = True
    degraded_cooldown_seconds: float = 300.0
    rate_limit_per_minute: float = 60.0
    cache_ttl_seconds: float = 300.0
    cache_offline_results: bool = False
    budget_limit: Optional[float] = None
    budget_alert_threshold: float = 0.8
    ticks_per_second: int = 60
    max_workers: int = 0
    seed: Optional[int] = None
    ledger_path: Optional[str] = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @property
    def masked_api_key(self) -> str:
        return "<set>" if self.api_key else "<not set>"

    def recovery_config(self) -> RecoveryConfig:
        return RecoveryConfig(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            strategy=self.retry_strategy,
            jitter_enabled=self.jitter_enabled,
            jitter_factor=self.jitter_factor,
            fallback_enabled=self.fallback_enabled,
            degraded_cooldown_seconds=self.degraded_cooldown_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Plain values for serialization, without the API key."""
        data = asdict(self)
        del data["api_key"]
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
        return data

    def __repr__(self) -> str:
        parts = []
        for item in fields(self):
            value = self.masked_api_key if item.name == "api_key" else getattr(self, item.name)
            parts.append(f"{item.name}={value!r}")
        return f"OracleConfig({', '.join(parts)})"


DEFAULT_CONFIG = OracleConfig()

# Environment variable -> config field; the API key is handled separately
ENV_VARS: Dict[str, str] = {
    "LLM_PROVIDER": "preferred_provider",
    "LLM_API_ENDPOINT": "api_endpoint",
    "LLM_MODEL": "openai_model",
    "LLM_TIMEOUT_SECONDS": "timeout_seconds",
    "OLLAMA_SERVER_URL": "ollama_url",
    "OLLAMA_MODEL": "ollama_model",
    "ORACLE_RATE_LIMIT": "rate_limit_per_minute",
    "ORACLE_BUDGET_USD": "budget_limit",
}

_PROVIDER_ALIASES = {"llama": ProviderKind.OLLAMA, "local": ProviderKind.OLLAMA}
_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("expected a number")
    return float(value)


def _integer(value: Any) -> int:
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError("expected an integer")
    return int(str(value).strip())


def _positive(value: Any) -> float:
    number = _number(value)
    if number <= 0:
        raise ValueError("must be > 0")
    return number


def _non_negative(value: Any) -> float:
    number = _number(value)
    if number < 0:
        raise ValueError("cannot be negative")
    return number


def _positive_int(value: Any) -> int:
    number = _integer(value)
    if number <= 0:
        raise ValueError("must be > 0")
    return number


def _non_negative_int(value: Any) -> int:
    number = _integer(value)
    if number < 0:
        raise ValueError("cannot be negative")
    return number


def _retries(value: Any) -> int:
    number = _integer(value)
    if not 0 <= number <= 10:
        raise ValueError("must be between 0 and 10")
    return number


def _fraction(value: Any) -> float:
    number = _number(value)
    if not 0 <= number <= 1:
        raise ValueError("must be between 0 and 1")
    return number


def _threshold(value: Any) -> float:
    number = _number(value)
    if not 0 < number <= 1:
        raise ValueError("must be in (0, 1]")
    return number


def _boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError("expected true or false")


def _text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("must be a non-empty string")
    return value.strip()


def _url(value: Any) -> str:
    text = _text(value)
    if not text.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return text.rstrip("/")


def _provider(value: Any) -> ProviderKind:
    text = _text(value).lower()
    if text in _PROVIDER_ALIASES:
        return _PROVIDER_ALIASES[text]
    try:
        return ProviderKind(text)
    except ValueError:
        valid = [kind.value for kind in ProviderKind]
        raise ValueError(f"must be one of: {valid}")


def _strategy(value: Any) -> RetryStrategy:
    text = _text(value).lower()
    try:
        return RetryStrategy(text)
    except ValueError:
        valid = [strategy.value for strategy in RetryStrategy]
        raise ValueError(f"must be one of: {valid}")


def _optional(validator: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def parse(value: Any) -> Any:
        if value is None or (isinstance(value, str) and value.strip().lower() in ("", "none", "null")):
            return None
        return validator(value)
    return parse


VALIDATORS: Dict[str, Callable[[Any], Any]] = {
    "preferred_provider": _provider,
    "api_endpoint": _url,
    "openai_model": _text,
    "timeout_seconds": _positive,
    "ollama_url": _url,
    "ollama_model": _text,
    "ollama_timeout_seconds": _positive,
    "max_retries": _retries,
    "base_delay_ms": _positive_int,
    "max_delay_ms": _positive_int,
    "retry_strategy": _strategy,
    "jitter_enabled": _boolean,
    "jitter_factor": _fraction,
    "fallback_enabled": _boolean,
    "degraded_cooldown_seconds": _non_negative,
    "rate_limit_per_minute": _non_negative,
    "cache_ttl_seconds": _non_negative,
    "cache_offline_results": _boolean,
    "budget_limit": _optional(_non_negative),
    "budget_alert_threshold": _threshold,
    "ticks_per_second": _positive_int,
    "max_workers": _non_negative_int,
    "seed": _optional(_integer),
    "ledger_path": _optional(_text),
}


def _apply(values: Dict[str, Any], source: Mapping[str, Any], origin: str) -> None:
    """Validate and merge one configuration layer into `values`.

    Invalid values fall back to the built-in default rather than failing.
    """
    for key, raw in source.items():
        if key == "api_key":
            logger.warning("Ignoring api_key in %s; set %s instead", origin, API_KEY_ENV)
            continue
        validator = VALIDATORS.get(key)
        if validator is None:
            logger.warning("Ignoring unknown configuration key %r in %s", key, origin)
            continue
        try:
            values[key] = validator(raw)
        except (TypeError, ValueError) as e:
            default = getattr(DEFAULT_CONFIG, key)
            logger.warning("Invalid %s in %s (%s); using default %r", key, origin, e, default)
            values[key] = default


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error("Invalid YAML in config file %s: %s; using defaults", path, e)
            return {}

    if raw_config is None:
        return {}
    if not isinstance(raw_config, dict):
        logger.error("Config file %s must contain a mapping; using defaults", path)
        return {}
    return raw_config


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> OracleConfig:
    """Load configuration from defaults, a YAML file and the environment.

    Later layers override earlier ones. Configuration errors never raise:
    bad values are logged and replaced with defaults.

    Args:
        path: YAML file; oracle_guard.yaml in the working directory if it exists
        environ: Environment mapping, os.environ by default

    Returns:
        Validated OracleConfig

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        config_path = Path(DEFAULT_CONFIG_PATH)

    if config_path.exists():
        _apply(values, _read_yaml(config_path), str(config_path))

    env_layer = {field_name: env[name] for name, field_name in ENV_VARS.items() if name in env}
    _apply(values, env_layer, "environment")

    api_key = env.get(API_KEY_ENV) or None
    return replace(DEFAULT_CONFIG, api_key=api_key, **values)


def save_config(config: OracleConfig, path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> Path:
    """Write configuration as YAML. The API key is never written.

    Returns:
        Path of the written file
    """
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
    return config_path
