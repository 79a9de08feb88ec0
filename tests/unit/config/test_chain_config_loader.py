"""
Unit tests for the provider chain configuration loader.

Covers YAML parsing, environment overrides, credential resolution and the
environment-only fallback when the file is missing or malformed.
"""

import os
from unittest.mock import patch

import pytest

from blueprintforge.config import chain_config_loader
from blueprintforge.config.chain_config_loader import ChainConfigLoader
from blueprintforge.llm.config import ProviderKind, ProviderSlot
from blueprintforge.llm.health_monitor import get_health_monitor, reset_health_monitor
from blueprintforge.llm.orchestrator import GenerationOrchestrator

CHAIN_YAML = """
providers:
  primary:
    kind: anthropic
    model: claude-test
    api_key_env: TEST_PRIMARY_KEY
    max_tokens: 10000
    timeout: 45
  secondary:
    kind: openai
    model: gpt-test
    api_key_env: TEST_SECONDARY_KEY
    base_url: https://api.example.com/v1
  emergency:
    kind: ollama
    enabled: false

retry:
  max_retries: 1
  base_delay: 2.0
  max_escalation_attempts: 4

health_monitoring:
  max_records: 50
  recent_window: 120
  circuit_breaker:
    failure_threshold: 3
    reset_timeout: 30

environments:
  development:
    providers:
      emergency:
        enabled: true
    retry:
      base_delay: 0.1
"""


@pytest.fixture
def chain_file(tmp_path):
    path = tmp_path / "provider_chain.yaml"
    path.write_text(CHAIN_YAML)
    return path


class TestChainConfigLoader:
    """Test YAML loading."""

    @patch.dict(
        os.environ,
        {"TEST_PRIMARY_KEY": "primary-key", "TEST_SECONDARY_KEY": "secondary-key"},
        clear=True,
    )
    def test_load_config(self, chain_file):
        config = ChainConfigLoader(str(chain_file)).load_config()

        generation = config.generation
        primary = generation.get_provider_config(ProviderSlot.PRIMARY)
        secondary = generation.get_provider_config(ProviderSlot.SECONDARY)
        emergency = generation.get_provider_config(ProviderSlot.EMERGENCY)

        assert primary.api_key == "primary-key"
        assert primary.model == "claude-test"
        assert primary.max_tokens == 10000
        assert primary.timeout == 45.0
        assert primary.max_retries == 1
        assert secondary.kind == ProviderKind.OPENAI
        assert secondary.base_url == "https://api.example.com/v1"
        assert emergency.kind == ProviderKind.OLLAMA
        assert emergency.enabled is False
        assert generation.retry.base_delay == 2.0
        assert generation.retry.max_escalation_attempts == 4
        assert config.health.max_records == 50
        assert config.health.recent_window == 120
        assert config.health.circuit_breaker.failure_threshold == 3
        assert config.health.circuit_breaker.reset_timeout == 30

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_credentials_leave_slot_unusable(self, chain_file):
        config = ChainConfigLoader(str(chain_file)).load_config()

        assert config.generation.get_provider_order() == []

    @patch.dict(os.environ, {}, clear=True)
    def test_environment_overrides(self, chain_file):
        config = ChainConfigLoader(str(chain_file)).load_config("development")

        emergency = config.generation.get_provider_config(ProviderSlot.EMERGENCY)
        assert emergency.enabled is True
        assert emergency.is_usable is True
        assert config.generation.retry.base_delay == 0.1
        # Untouched keys survive the merge
        assert config.generation.retry.max_escalation_attempts == 4

    @patch.dict(os.environ, {}, clear=True)
    def test_unknown_environment_uses_base(self, chain_file):
        config = ChainConfigLoader(str(chain_file)).load_config("staging")

        assert config.generation.retry.base_delay == 2.0

    @patch.dict(os.environ, {"PRIMARY_API_KEY": "env-key"}, clear=True)
    def test_missing_file_uses_environment(self, tmp_path):
        config = ChainConfigLoader(str(tmp_path / "absent.yaml")).load_config()

        primary = config.generation.get_provider_config(ProviderSlot.PRIMARY)
        assert primary.api_key == "env-key"
        assert config.health.max_records == 1000

    @patch.dict(os.environ, {}, clear=True)
    def test_malformed_yaml_uses_environment(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("providers: [unclosed")

        config = ChainConfigLoader(str(path)).load_config()

        assert config.generation.get_provider_config(ProviderSlot.PRIMARY).max_tokens == 12000

    @patch.dict(os.environ, {}, clear=True)
    def test_cache_and_reload(self, chain_file):
        loader = ChainConfigLoader(str(chain_file))
        assert loader.get_cached_config() is None

        first = loader.load_config()
        assert loader.get_cached_config() is first

        chain_file.write_text(CHAIN_YAML.replace("base_delay: 2.0", "base_delay: 3.0"))
        reloaded = loader.reload_config()

        assert reloaded is not first
        assert reloaded.generation.retry.base_delay == 3.0

    @patch.dict(os.environ, {}, clear=True)
    def test_bundled_file_parses(self):
        config = ChainConfigLoader().load_config("production")

        assert config.generation.retry.max_retries == 3
        assert config.generation.retry.max_output_tokens_cap == 20000
        assert config.health.circuit_breaker.failure_threshold == 5


class TestGlobalLoader:
    """Test module-level accessors."""

    @patch.dict(os.environ, {"BLUEPRINTFORGE_ENV": "development"}, clear=True)
    def test_environment_variable_selects_overrides(self, chain_file):
        with patch.object(
            chain_config_loader, "_config_loader", ChainConfigLoader(str(chain_file))
        ):
            config = chain_config_loader.reload_chain_config()
            assert chain_config_loader.get_chain_config() is config

        assert config.generation.retry.base_delay == 0.1

    @patch.dict(os.environ, {"TEST_PRIMARY_KEY": "primary-key"}, clear=True)
    def test_orchestrator_from_chain_config(self, chain_file):
        config = ChainConfigLoader(str(chain_file)).load_config()

        orchestrator = GenerationOrchestrator.from_chain_config(config)

        assert orchestrator.config is config.generation
        assert orchestrator.health_monitor is get_health_monitor()
        assert [p.slot for p in orchestrator.config.get_provider_order()] == [
            ProviderSlot.PRIMARY
        ]
        reset_health_monitor()
