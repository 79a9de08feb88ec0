"""
Configuration management for the provider chain.

This module holds the per-slot provider settings (credential, base URL,
model, ceiling, temperature, timeout, retries) and the retry/escalation
budget, loaded from environment variables.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

# Load environment variables
load_dotenv()


class ProviderSlot(Enum):
    """Position of a provider in the fallback chain."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    EMERGENCY = "emergency"


SLOT_ORDER = (ProviderSlot.PRIMARY, ProviderSlot.SECONDARY, ProviderSlot.EMERGENCY)


class ProviderKind(Enum):
    """Wire protocol spoken by a provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"


# Kinds that can be called without a credential
CREDENTIAL_FREE_KINDS = frozenset({ProviderKind.OLLAMA})


@dataclass
class ProviderConfig:
    """Configuration for a single provider slot."""

    slot: ProviderSlot
    kind: ProviderKind = ProviderKind.ANTHROPIC
    enabled: bool = True
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 12000
    temperature: float = 0.2
    timeout: float = 60.0
    max_retries: int = 2

    @property
    def name(self) -> str:
        return self.slot.value

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key) or self.kind in CREDENTIAL_FREE_KINDS

    @property
    def is_usable(self) -> bool:
        return self.enabled and self.has_credential


@dataclass
class RetryConfig:
    """Transport retry and output-ceiling escalation budget."""

    max_retries: int = 2  # Default for each slot's ProviderConfig.max_retries
    base_delay: float = 1.0  # Base delay between retries (exponential backoff)
    max_delay: float = 30.0
    max_escalation_attempts: int = 3  # Ceiling rounds per generate(), not calls
    escalation_factor: float = 1.5
    max_output_tokens_cap: int = 20000

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based): base * 2^attempt."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


DEFAULT_PROVIDERS = {
    ProviderSlot.PRIMARY: dict(
        kind=ProviderKind.ANTHROPIC,
        model="claude-sonnet-4-20250514",
        max_tokens=12000,
        temperature=0.2,
        timeout=60.0,
    ),
    ProviderSlot.SECONDARY: dict(
        kind=ProviderKind.ANTHROPIC,
        model="claude-opus-4-20250514",
        max_tokens=16000,
        temperature=0.2,
        timeout=90.0,
    ),
    ProviderSlot.EMERGENCY: dict(
        kind=ProviderKind.OLLAMA,
        model="qwen2.5:14b",
        max_tokens=8000,
        temperature=0.2,
        timeout=120.0,
        enabled=False,
    ),
}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class GenerationConfig:
    """Complete provider chain configuration."""

    providers: Dict[ProviderSlot, ProviderConfig] = field(default_factory=dict)
    retry: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_environment(cls) -> "GenerationConfig":
        """
        Create configuration from environment variables.

        Each slot reads `<SLOT>_KIND`, `<SLOT>_API_KEY`, `<SLOT>_BASE_URL`,
        `<SLOT>_MODEL`, `<SLOT>_MAX_TOKENS`, `<SLOT>_TEMPERATURE`,
        `<SLOT>_TIMEOUT`, `<SLOT>_MAX_RETRIES` and `<SLOT>_ENABLED`.
        """
        config = cls()

        config.retry = RetryConfig(
            max_retries=int(os.getenv("LLM_MAX_RETRIES", "2")),
            base_delay=float(os.getenv("LLM_RETRY_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("LLM_RETRY_MAX_DELAY", "30.0")),
            max_escalation_attempts=int(os.getenv("LLM_MAX_ESCALATION_ATTEMPTS", "3")),
            max_output_tokens_cap=int(os.getenv("LLM_MAX_OUTPUT_TOKENS_CAP", "20000")),
        )

        for slot in SLOT_ORDER:
            defaults = DEFAULT_PROVIDERS[slot]
            prefix = slot.value.upper()
            kind = ProviderKind(os.getenv(f"{prefix}_KIND", defaults["kind"].value))
            api_key = os.getenv(f"{prefix}_API_KEY")
            if not api_key and kind == ProviderKind.ANTHROPIC:
                api_key = os.getenv("ANTHROPIC_API_KEY")

            config.providers[slot] = ProviderConfig(
                slot=slot,
                kind=kind,
                enabled=_env_bool(f"{prefix}_ENABLED", defaults.get("enabled", True)),
                api_key=api_key or None,
                base_url=os.getenv(f"{prefix}_BASE_URL") or None,
                model=os.getenv(f"{prefix}_MODEL", defaults["model"]),
                max_tokens=int(os.getenv(f"{prefix}_MAX_TOKENS", str(defaults["max_tokens"]))),
                temperature=float(
                    os.getenv(f"{prefix}_TEMPERATURE", str(defaults["temperature"]))
                ),
                timeout=float(os.getenv(f"{prefix}_TIMEOUT", str(defaults["timeout"]))),
                max_retries=int(
                    os.getenv(f"{prefix}_MAX_RETRIES", str(config.retry.max_retries))
                ),
            )

        return config

    def get_provider_config(self, slot: ProviderSlot) -> Optional[ProviderConfig]:
        return self.providers.get(slot)

    def get_provider_order(self) -> List[ProviderConfig]:
        """Usable providers in chain order."""
        return [
            self.providers[slot]
            for slot in SLOT_ORDER
            if slot in self.providers and self.providers[slot].is_usable
        ]

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List of validation error messages
        """
        issues = []

        if not self.get_provider_order():
            issues.append("No usable providers configured (all credentials missing)")

        for provider in self.providers.values():
            if provider.max_tokens <= 0:
                issues.append(f"{provider.name}: max_tokens must be positive")
            if provider.max_tokens > self.retry.max_output_tokens_cap:
                issues.append(
                    f"{provider.name}: max_tokens {provider.max_tokens} exceeds cap "
                    f"{self.retry.max_output_tokens_cap}"
                )
            if not 0 <= provider.temperature <= 2:
                issues.append(f"{provider.name}: temperature must be between 0 and 2")
            if provider.timeout <= 0:
                issues.append(f"{provider.name}: timeout must be positive")
            if provider.max_retries < 0:
                issues.append(f"{provider.name}: max_retries cannot be negative")

        if self.retry.max_escalation_attempts < 1:
            issues.append("max_escalation_attempts must be at least 1")
        if self.retry.escalation_factor <= 1:
            issues.append("escalation_factor must be greater than 1")

        return issues

    def require_usable_provider(self) -> List[ProviderConfig]:
        """Return the usable chain or raise when nothing can be called."""
        order = self.get_provider_order()
        if not order:
            raise ConfigurationError(
                "No provider has a usable credential; set PRIMARY_API_KEY, "
                "SECONDARY_API_KEY or enable the emergency provider"
            )
        return order
