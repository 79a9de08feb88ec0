"""
Configuration loader for the provider chain.

This module loads the provider chain, retry budget and health monitoring
parameters from a YAML file, applies per-environment overrides and resolves
credentials from the environment variables the file names.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from blueprintforge.llm.circuit_breaker import CircuitBreakerConfig
from blueprintforge.llm.config import (
    DEFAULT_PROVIDERS,
    SLOT_ORDER,
    GenerationConfig,
    ProviderConfig,
    ProviderKind,
    RetryConfig,
)
from blueprintforge.llm.health_monitor import HealthConfig
from blueprintforge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChainConfig:
    """Complete configuration for the generation pipeline."""

    generation: GenerationConfig
    health: HealthConfig = field(default_factory=HealthConfig)


class ChainConfigLoader:
    """Loader for provider chain configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration loader.

        Args:
            config_path: Path to the configuration file. If None, uses default path.
        """
        if config_path is None:
            config_path = Path(__file__).parent / "provider_chain.yaml"

        self.config_path = Path(config_path)
        self._config_cache: Optional[ChainConfig] = None

    def load_config(self, environment: Optional[str] = None) -> ChainConfig:
        """
        Load configuration from YAML file.

        Args:
            environment: Environment name for environment-specific overrides

        Returns:
            ChainConfig: Loaded configuration
        """
        if not self.config_path.exists():
            logger.warning(f"Config file not found: {self.config_path}, using environment")
            return self._get_default_config()

        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration from {self.config_path}: {e}")
            logger.info("Using environment configuration")
            return self._get_default_config()

        if environment and "environments" in config_data:
            env_overrides = config_data["environments"].get(environment, {})
            config_data = self._merge_config(config_data, env_overrides)

        config = self._parse_config(config_data)
        self._config_cache = config

        logger.info(f"Loaded provider chain configuration from {self.config_path}")
        if environment:
            logger.info(f"Applied environment overrides for: {environment}")

        return config

    def get_cached_config(self) -> Optional[ChainConfig]:
        """Get cached configuration if available."""
        return self._config_cache

    def reload_config(self, environment: Optional[str] = None) -> ChainConfig:
        """Reload configuration from file."""
        self._config_cache = None
        return self.load_config(environment)

    def _parse_provider(self, slot, data: Dict[str, Any], retry: RetryConfig) -> ProviderConfig:
        defaults = DEFAULT_PROVIDERS[slot]
        kind = ProviderKind(data.get("kind", defaults["kind"].value))

        api_key = None
        api_key_env = data.get("api_key_env")
        if api_key_env:
            api_key = os.getenv(api_key_env) or None

        return ProviderConfig(
            slot=slot,
            kind=kind,
            enabled=data.get("enabled", defaults.get("enabled", True)),
            api_key=api_key,
            base_url=data.get("base_url"),
            model=data.get("model", defaults["model"]),
            max_tokens=int(data.get("max_tokens", defaults["max_tokens"])),
            temperature=float(data.get("temperature", defaults["temperature"])),
            timeout=float(data.get("timeout", defaults["timeout"])),
            max_retries=int(data.get("max_retries", retry.max_retries)),
        )

    def _parse_config(self, config_data: Dict[str, Any]) -> ChainConfig:
        """Parse configuration data into dataclasses."""
        retry_data = config_data.get("retry", {})
        retry = RetryConfig(
            max_retries=retry_data.get("max_retries", 2),
            base_delay=retry_data.get("base_delay", 1.0),
            max_delay=retry_data.get("max_delay", 30.0),
            max_escalation_attempts=retry_data.get("max_escalation_attempts", 3),
            escalation_factor=retry_data.get("escalation_factor", 1.5),
            max_output_tokens_cap=retry_data.get("max_output_tokens_cap", 20000),
        )

        providers_data = config_data.get("providers", {})
        providers = {
            slot: self._parse_provider(slot, providers_data.get(slot.value, {}), retry)
            for slot in SLOT_ORDER
        }

        health_data = config_data.get("health_monitoring", {})
        breaker_data = health_data.get("circuit_breaker", {})
        health = HealthConfig(
            max_records=health_data.get("max_records", 1000),
            recent_window=health_data.get("recent_window", 300.0),
            degraded_threshold=health_data.get("degraded_threshold", 0.8),
            unhealthy_threshold=health_data.get("unhealthy_threshold", 0.5),
            latency_threshold_multiplier=health_data.get(
                "latency_threshold_multiplier", 1.5
            ),
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=breaker_data.get("failure_threshold", 5),
                success_threshold=breaker_data.get("success_threshold", 2),
                reset_timeout=breaker_data.get("reset_timeout", 300.0),
                monitoring_window=breaker_data.get("monitoring_window", 60.0),
            ),
        )

        return ChainConfig(
            generation=GenerationConfig(providers=providers, retry=retry),
            health=health,
        )

    def _merge_config(
        self, base_config: Dict[str, Any], overrides: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge environment-specific overrides into base configuration."""

        def merge_dict(
            base: Dict[str, Any], override: Dict[str, Any]
        ) -> Dict[str, Any]:
            result = base.copy()
            for key, value in override.items():
                if (
                    key in result
                    and isinstance(result[key], dict)
                    and isinstance(value, dict)
                ):
                    result[key] = merge_dict(result[key], value)
                else:
                    result[key] = value
            return result

        return merge_dict(base_config, overrides)

    def _get_default_config(self) -> ChainConfig:
        """Configuration read from environment variables alone."""
        return ChainConfig(generation=GenerationConfig.from_environment())


# Global configuration loader instance
_config_loader = ChainConfigLoader()


def get_chain_config(environment: Optional[str] = None) -> ChainConfig:
    """
    Get the provider chain configuration.

    Args:
        environment: Environment name for environment-specific overrides

    Returns:
        ChainConfig: The configuration
    """
    if environment is None:
        environment = os.getenv("BLUEPRINTFORGE_ENV", os.getenv("ENV"))

    cached_config = _config_loader.get_cached_config()
    if cached_config is not None:
        return cached_config

    return _config_loader.load_config(environment)


def reload_chain_config(environment: Optional[str] = None) -> ChainConfig:
    """Reload the provider chain configuration from file."""
    if environment is None:
        environment = os.getenv("BLUEPRINTFORGE_ENV", os.getenv("ENV"))

    return _config_loader.reload_config(environment)
