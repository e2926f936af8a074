"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for settings files.
"""

import os
import tempfile

import pytest
import yaml

from draftstream.config.loader import (
    CacheConfig,
    QualityConfig,
    RateLimitConfig,
    Settings,
    StreamingConfig,
    load_settings,
)
from draftstream.core.quotas import DEFAULT_QUOTAS
from draftstream.sdk.provider import ModelTier
from draftstream.storage.models import QuotaTier


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a full configuration loads correctly."""
        config_data = {
            "streaming": {
                "max_retries": 5,
                "retry_delay": 0.5,
                "timeout": 10,
                "fallback_tier": "fast",
                "enable_caching": False,
                "buffer_size": 4,
                "replay_delay": 0,
                "model_tier": "advanced",
            },
            "quality": {"min_score": 0.6},
            "cache": {"ttl_seconds": 120},
            "rate_limit": {"window_seconds": 30, "max_requests": 5},
            "database": {"path": "custom.db"},
        }

        settings = load_settings(self._write_config(config_data))

        assert settings.streaming.max_retries == 5
        assert settings.streaming.retry_delay == 0.5
        assert settings.streaming.timeout == 10.0
        assert settings.streaming.fallback_tier == ModelTier.FAST
        assert settings.streaming.enable_caching is False
        assert settings.streaming.buffer_size == 4
        assert settings.streaming.replay_delay == 0.0
        assert settings.streaming.model_tier == ModelTier.ADVANCED
        assert settings.quality.min_score == 0.6
        assert settings.cache.ttl_seconds == 120.0
        assert settings.rate_limit.window_seconds == 30.0
        assert settings.rate_limit.max_requests == 5
        assert settings.database.path == "custom.db"

    def test_missing_sections_use_defaults(self):
        """Test that absent sections fall back to the defaults."""
        settings = load_settings(self._write_config({"quality": {"min_score": 0.5}}))

        assert settings.streaming == StreamingConfig()
        assert settings.cache == CacheConfig()
        assert settings.rate_limit == RateLimitConfig()
        assert settings.quotas == DEFAULT_QUOTAS

    def test_empty_file_returns_defaults(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")

        assert load_settings(config_path) == Settings()

    def test_missing_file_raises_error(self):
        """Test that missing config file raises FileNotFoundError."""
        missing = os.path.join(self.temp_dir, "nonexistent.yaml")

        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_settings(missing)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("streaming: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_settings(config_path)

    def test_non_mapping_raises_error(self):
        with pytest.raises(ValueError, match="Configuration must be a mapping"):
            load_settings(self._write_config(["a", "b"]))

    def test_unknown_top_level_key_raises_error(self):
        """Test that unknown top-level keys raise ValueError."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_settings(self._write_config({"budget": {"daily": 10}}))

    def test_unknown_section_key_raises_error(self):
        with pytest.raises(ValueError, match="Unknown streaming keys"):
            load_settings(self._write_config({"streaming": {"retries": 3}}))

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="'cache' must be a dictionary"):
            load_settings(self._write_config({"cache": 300}))

    def test_invalid_tier_raises_error(self):
        with pytest.raises(ValueError, match="must be one of"):
            load_settings(self._write_config({"streaming": {"model_tier": "turbo"}}))

    def test_tier_is_case_insensitive(self):
        settings = load_settings(self._write_config({"streaming": {"model_tier": "CREATIVE"}}))

        assert settings.streaming.model_tier == ModelTier.CREATIVE

    def test_non_numeric_value_raises_error(self):
        with pytest.raises(ValueError, match="'timeout' in streaming must be a number"):
            load_settings(self._write_config({"streaming": {"timeout": "fast"}}))

    def test_boolean_is_not_a_number(self):
        with pytest.raises(ValueError, match="must be a number"):
            load_settings(self._write_config({"cache": {"ttl_seconds": True}}))

    def test_float_is_not_an_integer(self):
        with pytest.raises(ValueError, match="'max_retries' in streaming must be an integer"):
            load_settings(self._write_config({"streaming": {"max_retries": 2.5}}))

    def test_non_boolean_flag_raises_error(self):
        with pytest.raises(ValueError, match="must be true or false"):
            load_settings(self._write_config({"streaming": {"enable_caching": "yes please"}}))

    def test_out_of_range_values_raise_error(self):
        """Test value range validation."""
        with pytest.raises(ValueError, match="max_retries must be >= 1"):
            load_settings(self._write_config({"streaming": {"max_retries": 0}}))
        with pytest.raises(ValueError, match="min_score must be between 0 and 1"):
            load_settings(self._write_config({"quality": {"min_score": 1.5}}))
        with pytest.raises(ValueError, match="max_requests must be >= 1"):
            load_settings(self._write_config({"rate_limit": {"max_requests": 0}}))


class TestQuotaOverrides:
    """Test per-tier quota overrides."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _load(self, quotas):
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({"quotas": quotas}, f)
        return load_settings(config_path)

    def test_partial_override(self):
        """Test that only the named limits change."""
        settings = self._load({"free": {"daily_tokens": 20000, "daily_cost": 1}})

        free = settings.quotas[QuotaTier.FREE]
        assert free.daily_tokens == 20000
        assert isinstance(free.daily_tokens, int)
        assert free.daily_cost == 1.0
        assert free.monthly_tokens == DEFAULT_QUOTAS[QuotaTier.FREE].monthly_tokens
        assert settings.quotas[QuotaTier.PRO] == DEFAULT_QUOTAS[QuotaTier.PRO]

    def test_unknown_tier(self):
        with pytest.raises(ValueError, match="Unknown quota tier 'gold'"):
            self._load({"gold": {"daily_tokens": 1}})

    def test_unknown_limit(self):
        with pytest.raises(ValueError, match="Unknown keys in quotas.free"):
            self._load({"free": {"hourly_tokens": 1}})

    def test_non_numeric_limit(self):
        with pytest.raises(ValueError, match="'daily_cost' in quotas.pro must be a number"):
            self._load({"pro": {"daily_cost": "lots"}})

    def test_defaults_are_not_mutated(self):
        self._load({"starter": {"monthly_cost": 1}})

        assert DEFAULT_QUOTAS[QuotaTier.STARTER].monthly_cost == 25.0


class TestSettings:
    """Test Settings helpers."""

    def test_stream_options(self):
        settings = Settings(
            streaming=StreamingConfig(max_retries=2, timeout=5, fallback_tier=ModelTier.FAST),
            quality=QualityConfig(min_score=0.4),
        )

        options = settings.stream_options()

        assert options.max_retries == 2
        assert options.timeout == 5
        assert options.fallback_tier == ModelTier.FAST
        assert options.min_quality_score == 0.4
        assert options.estimated_tokens is None

    def test_invalid_dataclass_values(self):
        with pytest.raises(ValueError, match="ttl_seconds must be > 0"):
            CacheConfig(ttl_seconds=0)
        with pytest.raises(ValueError, match="buffer_size must be >= 1"):
            StreamingConfig(buffer_size=0)
