"""
Generation orchestrator.

Sequences the primary, secondary and emergency providers for one logical
request, records every call into the health monitor, repairs and validates
the first successful answer and returns it with provenance.

State machine:

    PENDING_PRIMARY -> SUCCESS | PENDING_SECONDARY
    PENDING_SECONDARY -> SUCCESS | PENDING_EMERGENCY
    PENDING_EMERGENCY -> SUCCESS | FAILED
    SUCCESS -> FAILED (validation failure, never back to a pending state)
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from blueprintforge.utils.logging import LogContext, get_logger, new_correlation_id

from .anthropic_provider import AnthropicProvider
from .client import AttemptOutcome, ProviderClient
from .config import GenerationConfig, ProviderConfig, ProviderKind, ProviderSlot, SLOT_ORDER
from .exceptions import (
    GenerationError,
    LLMConnectionError,
    NoProviderAvailableError,
    ParseError,
    ValidationError,
)
from .fallback import decide, log_fallback_decision, should_escalate_to_emergency
from .health_monitor import HealthMonitor, get_health_monitor
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAICompatibleProvider
from .provider import GenerationRequest, LLMProvider, TokenUsage
from .repair import repair_json
from .validation import ValidationSpec, validate_document

logger = get_logger(__name__)


class GenerationStage(Enum):
    """States of one logical generation request."""

    PENDING_PRIMARY = "pending_primary"
    PENDING_SECONDARY = "pending_secondary"
    PENDING_EMERGENCY = "pending_emergency"
    SUCCESS = "success"
    FAILED = "failed"


STAGE_FOR_SLOT = {
    ProviderSlot.PRIMARY: GenerationStage.PENDING_PRIMARY,
    ProviderSlot.SECONDARY: GenerationStage.PENDING_SECONDARY,
    ProviderSlot.EMERGENCY: GenerationStage.PENDING_EMERGENCY,
}

PROVIDER_CLASSES = {
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.OPENAI: OpenAICompatibleProvider,
    ProviderKind.OLLAMA: OllamaProvider,
}


@dataclass(frozen=True)
class PromptPair:
    """Opaque system and user prompt text."""

    system: str
    user: str


@dataclass
class Provenance:
    """Who answered and what it took."""

    provider: str
    model: str
    attempts: Dict[str, int]
    total_attempts: int
    duration: float
    fallback_used: bool
    correlation_id: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    stages: List[str] = field(default_factory=list)


@dataclass
class ValidatedDocument:
    """Validated, normalized document plus how it was obtained."""

    document: Dict[str, Any]
    provenance: Provenance
    repaired: bool = False
    repair_strategy: str = "direct"
    units_preserved: int = 0
    units_dropped: int = 0
    section_count: int = 0
    dropped_sections: List[Dict[str, Any]] = field(default_factory=list)


def create_provider(
    provider_config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None
) -> LLMProvider:
    """Build the provider implementation for a configured slot."""
    provider_class = PROVIDER_CLASSES[provider_config.kind]
    kwargs = {"http_client": http_client}
    if provider_config.base_url:
        kwargs["base_url"] = provider_config.base_url
    return provider_class(provider_config.name, provider_config.api_key, **kwargs)


class GenerationOrchestrator:
    """
    Resilient structured generation across the provider chain.

    Retries and fallback are strictly sequential within one request;
    independent requests may share one orchestrator concurrently.
    """

    def __init__(
        self,
        config: Optional[GenerationConfig] = None,
        providers: Optional[Dict[ProviderSlot, LLMProvider]] = None,
        health_monitor: Optional[HealthMonitor] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Provider chain configuration. If None, loads from environment.
            providers: Prebuilt providers by slot; missing slots are built from config
            health_monitor: Monitor to record into (defaults to the process-wide one)
            sleep: Awaitable used for retry backoff
        """
        self.config = config or GenerationConfig.from_environment()
        self.health_monitor = health_monitor or get_health_monitor()
        self._providers: Dict[ProviderSlot, LLMProvider] = dict(providers or {})
        self._owned: List[LLMProvider] = []
        self._sleep = sleep

        issues = self.config.validate()
        if issues:
            logger.warning(f"Generation configuration issues: {', '.join(issues)}")

    @classmethod
    def from_chain_config(cls, chain_config, **kwargs) -> "GenerationOrchestrator":
        """Build an orchestrator from a loaded ChainConfig."""
        kwargs.setdefault("health_monitor", get_health_monitor(chain_config.health))
        return cls(chain_config.generation, **kwargs)

    def _get_provider(self, provider_config: ProviderConfig) -> LLMProvider:
        provider = self._providers.get(provider_config.slot)
        if provider is None:
            provider = create_provider(provider_config)
            self._providers[provider_config.slot] = provider
            self._owned.append(provider)
        return provider

    def _record_attempt(self, outcome: AttemptOutcome) -> None:
        self.health_monitor.record_request(
            outcome.provider,
            success=outcome.success,
            latency=outcome.latency,
            error=str(outcome.error) if outcome.error is not None else None,
        )

    async def generate(self, prompt: PromptPair, spec: ValidationSpec) -> ValidatedDocument:
        """
        Generate a validated document, falling back across providers.

        Args:
            prompt: System and user text
            spec: Shape the document must satisfy

        Returns:
            ValidatedDocument with provenance

        Raises:
            ConfigurationError: If no provider has a usable credential
            ValidationError: If the answering provider's document has the wrong shape
            NoProviderAvailableError: If every provider failed
            GenerationError: If a failure is classified as not worth falling back
        """
        chain = self.config.require_usable_provider()
        correlation_id = new_correlation_id()
        start_time = time.monotonic()

        with LogContext(logger, correlation_id=correlation_id, spec=spec.name):
            for provider_config in self.config.providers.values():
                if not provider_config.is_usable:
                    logger.info(
                        f"Skipping {provider_config.name}: "
                        f"{'disabled' if not provider_config.enabled else 'no credential'}",
                        extra={"event": "provider.skipped", "provider": provider_config.name},
                    )
            return await self._run_chain(chain, prompt, spec, correlation_id, start_time)

    async def _run_chain(
        self,
        chain: List[ProviderConfig],
        prompt: PromptPair,
        spec: ValidationSpec,
        correlation_id: str,
        start_time: float,
    ) -> ValidatedDocument:
        attempts = {slot.value: 0 for slot in SLOT_ORDER}
        errors: Dict[str, BaseException] = {}
        stages: List[str] = []

        for index, provider_config in enumerate(chain):
            name = provider_config.name
            stage = STAGE_FOR_SLOT[provider_config.slot]
            stages.append(stage.value)
            logger.info(
                f"Entering {stage.value}",
                extra={"event": "orchestrator.transition", "stage": stage.value},
            )

            if not self.health_monitor.is_available(name):
                failure: GenerationError = LLMConnectionError(
                    "Circuit open; provider skipped", name
                )
                logger.warning(
                    f"Skipping {name}: circuit open",
                    extra={"event": "provider.skipped", "provider": name, "reason": "circuit_open"},
                )
            else:
                client = ProviderClient(
                    self._get_provider(provider_config),
                    provider_config,
                    self.config.retry,
                    sleep=self._sleep,
                )
                request = GenerationRequest.from_prompt(
                    system=prompt.system,
                    user=prompt.user,
                    provider=name,
                    max_tokens=provider_config.max_tokens,
                    temperature=provider_config.temperature,
                    model=provider_config.model,
                )

                try:
                    response = await client.generate(request, on_attempt=self._record_attempt)
                except GenerationError as e:
                    attempts[name] += e.metadata.get("attempts", 1)
                    failure = e
                else:
                    attempts[name] += response.attempts
                    try:
                        repaired = repair_json(
                            client.extract_text(response),
                            record_collections=spec.record_collections,
                            provider=name,
                        )
                    except ParseError as e:
                        failure = e
                    else:
                        logger.info(
                            f"{name} answered after {response.attempts} calls",
                            extra={
                                "event": "provider.success",
                                "provider": name,
                                "model": response.model,
                                "attempts": response.attempts,
                                "input_tokens": response.usage.input_tokens,
                                "output_tokens": response.usage.output_tokens,
                            },
                        )
                        stages.append(GenerationStage.SUCCESS.value)
                        provenance = Provenance(
                            provider=name,
                            model=response.model,
                            attempts=attempts,
                            total_attempts=sum(attempts.values()),
                            duration=time.monotonic() - start_time,
                            fallback_used=provider_config.slot != ProviderSlot.PRIMARY,
                            correlation_id=correlation_id,
                            usage=response.usage,
                            stages=stages,
                        )
                        return self._validate(repaired, spec, provenance)

            errors[name] = failure
            logger.error(
                f"{name} failed: {failure}",
                extra={
                    "event": "provider.failure",
                    "provider": name,
                    "error_kind": failure.kind.value,
                    "attempts": attempts[name],
                },
            )

            if index + 1 >= len(chain):
                break

            next_slot = chain[index + 1].slot
            if provider_config.slot == ProviderSlot.SECONDARY and next_slot == ProviderSlot.EMERGENCY:
                should_continue = should_escalate_to_emergency(
                    errors.get(ProviderSlot.PRIMARY.value), failure
                )
                logger.warning(
                    "Primary and secondary exhausted, escalating to emergency provider",
                    extra={"event": "fallback.triggered", "trigger": "emergency"},
                )
            else:
                decision = decide(failure)
                log_fallback_decision(decision, provider=name, next_provider=next_slot.value)
                should_continue = decision.should_fallback

            if not should_continue:
                stages.append(GenerationStage.FAILED.value)
                failure.metadata["attempts"] = dict(attempts)
                failure.metadata["correlation_id"] = correlation_id
                raise failure

        stages.append(GenerationStage.FAILED.value)
        logger.error(
            f"No provider produced a document after {sum(attempts.values())} calls",
            extra={"event": "orchestrator.failed", "attempts": attempts},
        )
        error = NoProviderAvailableError(errors)
        error.metadata.update(
            {"attempts": attempts, "correlation_id": correlation_id, "stages": stages}
        )
        raise error

    def _validate(
        self, repaired, spec: ValidationSpec, provenance: Provenance
    ) -> ValidatedDocument:
        try:
            result = validate_document(repaired.value, spec, provider=provenance.provider)
        except ValidationError as e:
            provenance.stages.append(GenerationStage.FAILED.value)
            e.metadata.update(
                {
                    "provenance": provenance,
                    "repaired": repaired.repaired,
                    "repair_strategy": repaired.strategy,
                }
            )
            raise

        logger.info(
            f"Generated {spec.name} via {provenance.provider} in {provenance.duration:.2f}s",
            extra={
                "event": "orchestrator.success",
                "provider": provenance.provider,
                "total_attempts": provenance.total_attempts,
                "fallback_used": provenance.fallback_used,
                "repaired": repaired.repaired,
            },
        )
        return ValidatedDocument(
            document=result.document,
            provenance=provenance,
            repaired=repaired.repaired,
            repair_strategy=repaired.strategy,
            units_preserved=repaired.units_preserved,
            units_dropped=repaired.units_dropped,
            section_count=result.section_count,
            dropped_sections=result.dropped_sections,
        )

    async def check_health(self) -> Dict[str, Any]:
        """Probe every usable provider and include the recorded metrics."""
        results = {}
        for provider_config in self.config.get_provider_order():
            provider = self._get_provider(provider_config)
            probe = await provider.check_health()
            results[provider_config.name] = {
                "reachable": probe.is_healthy,
                "error": probe.error_message,
                "metrics": self.health_monitor.get_metrics(provider_config.name).to_dict(),
            }
        return results

    async def close(self):
        for provider in self._owned:
            await provider.close()
        self._owned.clear()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


@asynccontextmanager
async def managed_orchestrator(config: Optional[GenerationConfig] = None, **kwargs):
    """Context manager that closes provider connections on exit."""
    orchestrator = GenerationOrchestrator(config, **kwargs)
    try:
        yield orchestrator
    finally:
        await orchestrator.close()
