"""
Configuration management and loading.

Reads streaming, quality, cache, rate-limit, quota and database settings
from a YAML file. Every section is optional and falls back to the built-in
defaults, but anything present is validated strictly: unknown keys and
out-of-range values are errors, never silently ignored.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from draftstream.core.cache import DEFAULT_TTL_SECONDS
from draftstream.core.quotas import DEFAULT_QUOTAS, QuotaLimits
from draftstream.core.rate_limit import DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_SECONDS
from draftstream.core.streaming import StreamOptions
from draftstream.sdk.provider import ModelTier
from draftstream.storage.db import DEFAULT_DB_PATH
from draftstream.storage.models import QuotaTier


@dataclass(frozen=True)
class StreamingConfig:
    """Attempt loop, timeout and delivery settings."""
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: float = 30.0
    fallback_tier: Optional[ModelTier] = None
    enable_caching: bool = True
    buffer_size: int = 10
    replay_delay: float = 0.05
    model_tier: ModelTier = ModelTier.STANDARD

    def __post_init__(self):
        """Validate streaming values."""
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.retry_delay <= 0:
            raise ValueError("retry_delay must be > 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        if self.replay_delay < 0:
            raise ValueError("replay_delay must be >= 0")


@dataclass(frozen=True)
class QualityConfig:
    min_score: float = 0.7

    def __post_init__(self):
        if not 0 <= self.min_score <= 1:
            raise ValueError("min_score must be between 0 and 1")


@dataclass(frozen=True)
class CacheConfig:
    ttl_seconds: float = DEFAULT_TTL_SECONDS

    def __post_init__(self):
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: float = DEFAULT_WINDOW_SECONDS
    max_requests: int = DEFAULT_MAX_REQUESTS

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class Settings:
    """Complete application configuration."""
    streaming: StreamingConfig = StreamingConfig()
    quality: QualityConfig = QualityConfig()
    cache: CacheConfig = CacheConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    quotas: Dict[QuotaTier, QuotaLimits] = field(default_factory=lambda: dict(DEFAULT_QUOTAS))
    database: DatabaseConfig = DatabaseConfig()

    def stream_options(self) -> StreamOptions:
        """Build the orchestrator options these settings describe."""
        s = self.streaming
        return StreamOptions(
            max_retries=s.max_retries,
            retry_delay=s.retry_delay,
            timeout=s.timeout,
            fallback_tier=s.fallback_tier,
            enable_caching=s.enable_caching,
            buffer_size=s.buffer_size,
            replay_delay=s.replay_delay,
            model_tier=s.model_tier,
            min_quality_score=self.quality.min_score,
        )


_SECTIONS = {
    "streaming": {
        "max_retries", "retry_delay", "timeout", "fallback_tier",
        "enable_caching", "buffer_size", "replay_delay", "model_tier",
    },
    "quality": {"min_score"},
    "cache": {"ttl_seconds"},
    "rate_limit": {"window_seconds", "max_requests"},
    "quotas": None,
    "database": {"path"},
}
_QUOTA_KEYS = {"daily_tokens", "monthly_tokens", "daily_cost", "monthly_cost"}


def load_settings(path: str) -> Settings:
    """Load and validate settings from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated Settings object (defaults for an empty file)

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        return Settings()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    streaming = _section(raw_config, "streaming")
    quality = _section(raw_config, "quality")
    cache = _section(raw_config, "cache")
    rate_limit = _section(raw_config, "rate_limit")
    database = _section(raw_config, "database")

    return Settings(
        streaming=StreamingConfig(
            max_retries=_integer(streaming, "max_retries", 3, "streaming"),
            retry_delay=_number(streaming, "retry_delay", 1.0, "streaming"),
            timeout=_number(streaming, "timeout", 30.0, "streaming"),
            fallback_tier=_tier(streaming.get("fallback_tier"), "streaming.fallback_tier"),
            enable_caching=_boolean(streaming, "enable_caching", True, "streaming"),
            buffer_size=_integer(streaming, "buffer_size", 10, "streaming"),
            replay_delay=_number(streaming, "replay_delay", 0.05, "streaming"),
            model_tier=_tier(streaming.get("model_tier", "standard"), "streaming.model_tier"),
        ),
        quality=QualityConfig(min_score=_number(quality, "min_score", 0.7, "quality")),
        cache=CacheConfig(ttl_seconds=_number(cache, "ttl_seconds", DEFAULT_TTL_SECONDS, "cache")),
        rate_limit=RateLimitConfig(
            window_seconds=_number(rate_limit, "window_seconds", DEFAULT_WINDOW_SECONDS, "rate_limit"),
            max_requests=_integer(rate_limit, "max_requests", DEFAULT_MAX_REQUESTS, "rate_limit"),
        ),
        quotas=_parse_quotas(raw_config.get("quotas") or {}),
        database=DatabaseConfig(path=str(database.get("path", DEFAULT_DB_PATH))),
    )


def _section(raw_config: Dict, name: str) -> Dict[str, Any]:
    """Return a validated section mapping (empty when absent)."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _SECTIONS[name]
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _number(data: Dict, key: str, default: float, path: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _integer(data: Dict, key: str, default: int, path: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _boolean(data: Dict, key: str, default: bool, path: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be true or false")
    return value


def _tier(value: Any, path: str) -> Optional[ModelTier]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    try:
        return ModelTier(value.lower())
    except ValueError:
        valid_tiers = [tier.value for tier in ModelTier]
        raise ValueError(f"'{path}' must be one of: {valid_tiers}")


def _parse_quotas(data: Any) -> Dict[QuotaTier, QuotaLimits]:
    """Apply per-tier partial overrides on top of the default quotas.

    Raises:
        ValueError: If a tier or limit name is unknown or a value is not a number
    """
    if not isinstance(data, dict):
        raise ValueError("'quotas' must be a dictionary")

    quotas = dict(DEFAULT_QUOTAS)
    for tier_name, overrides in data.items():
        try:
            tier = QuotaTier(str(tier_name).lower())
        except ValueError:
            valid_tiers = [tier.value for tier in QuotaTier]
            raise ValueError(f"Unknown quota tier '{tier_name}'; must be one of: {valid_tiers}")

        if not isinstance(overrides, dict):
            raise ValueError(f"Quota tier '{tier_name}' must be a dictionary")
        unknown_keys = set(overrides.keys()) - _QUOTA_KEYS
        if unknown_keys:
            raise ValueError(f"Unknown keys in quotas.{tier_name}: {unknown_keys}")

        values = {}
        for key, value in overrides.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'{key}' in quotas.{tier_name} must be a number")
            values[key] = int(value) if key.endswith("_tokens") else float(value)
        quotas[tier] = quotas[tier].with_overrides(values)
    return quotas
