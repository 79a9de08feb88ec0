"""
Resilient generation pipeline.

This package provides the provider client with retry and escalation, the
fallback decision engine, JSON truncation repair and validation, provider
health monitoring and the orchestrator tying them together.
"""

from .client import ProviderClient
from .config import GenerationConfig, ProviderConfig, ProviderKind, ProviderSlot, RetryConfig
from .exceptions import (
    ConfigurationError,
    ErrorKind,
    GenerationError,
    LLMAuthenticationError,
    LLMClientError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMServerError,
    LLMTimeoutError,
    MaxTokensExceededError,
    NoProviderAvailableError,
    ParseError,
    ValidationError,
)
from .fallback import FallbackDecision, FallbackTrigger, decide, should_escalate_to_emergency
from .health_monitor import HealthMonitor, HealthStatus, get_health_monitor, reset_health_monitor
from .orchestrator import (
    GenerationOrchestrator,
    PromptPair,
    Provenance,
    ValidatedDocument,
    managed_orchestrator,
)
from .repair import RepairedDocument, repair_json
from .validation import (
    BLUEPRINT_SPEC,
    DYNAMIC_QUESTIONS_SPEC,
    ValidationSpec,
    validate_document,
)

__all__ = [
    "ProviderClient",
    "GenerationConfig",
    "ProviderConfig",
    "ProviderKind",
    "ProviderSlot",
    "RetryConfig",
    "ConfigurationError",
    "ErrorKind",
    "GenerationError",
    "LLMAuthenticationError",
    "LLMClientError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMServerError",
    "LLMTimeoutError",
    "MaxTokensExceededError",
    "NoProviderAvailableError",
    "ParseError",
    "ValidationError",
    "FallbackDecision",
    "FallbackTrigger",
    "decide",
    "should_escalate_to_emergency",
    "HealthMonitor",
    "HealthStatus",
    "get_health_monitor",
    "reset_health_monitor",
    "GenerationOrchestrator",
    "PromptPair",
    "Provenance",
    "ValidatedDocument",
    "managed_orchestrator",
    "RepairedDocument",
    "repair_json",
    "BLUEPRINT_SPEC",
    "DYNAMIC_QUESTIONS_SPEC",
    "ValidationSpec",
    "validate_document",
]
