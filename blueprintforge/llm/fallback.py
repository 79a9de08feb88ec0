"""
Fallback decision engine.

Pure functions deciding whether a failure from one provider should move the
request on to the next provider in the chain.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from blueprintforge.utils.logging import get_logger

from .exceptions import ErrorKind, GenerationError, ValidationError, classify_error

logger = get_logger(__name__)


class FallbackTrigger(Enum):
    """Failure categories that move a request to the next provider."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    MAX_TOKENS_EXCEEDED = "max_tokens_exceeded"
    PARSE_ERROR = "parse_error"


@dataclass(frozen=True)
class FallbackDecision:
    """Outcome of `decide`; trigger and reason are None when not falling back."""

    should_fallback: bool
    trigger: Optional[FallbackTrigger] = None
    reason: Optional[str] = None
    original_error: Optional[BaseException] = None


# Evaluated top to bottom; the first matching kind wins.
_RULES = (
    (ErrorKind.TIMEOUT, FallbackTrigger.TIMEOUT, "Request timed out"),
    (ErrorKind.RATE_LIMIT, FallbackTrigger.RATE_LIMIT, "Rate limited by provider"),
    (ErrorKind.AUTH, FallbackTrigger.AUTH, "Provider rejected credentials"),
    (ErrorKind.CLIENT_ERROR, FallbackTrigger.CLIENT_ERROR, "Provider rejected the request"),
    (ErrorKind.SERVER_ERROR, FallbackTrigger.SERVER_ERROR, "Provider server error"),
    (ErrorKind.NETWORK, FallbackTrigger.NETWORK, "Network failure reaching provider"),
    (
        ErrorKind.MAX_TOKENS_EXCEEDED,
        FallbackTrigger.MAX_TOKENS_EXCEEDED,
        "Response truncated at the maximum output ceiling",
    ),
    (ErrorKind.PARSE_ERROR, FallbackTrigger.PARSE_ERROR, "Provider returned unparseable JSON"),
)


def decide(error: BaseException) -> FallbackDecision:
    """
    Decide whether a failure should fall back to the next provider.

    Validation failures never fall back: another provider cannot fix a
    well-formed answer of the wrong shape. Unrecognized failures do not
    fall back either.

    Args:
        error: The caught exception

    Returns:
        FallbackDecision
    """
    if isinstance(error, ValidationError):
        if error.code == "INVALID_JSON":
            return FallbackDecision(
                should_fallback=True,
                trigger=FallbackTrigger.PARSE_ERROR,
                reason="Provider returned unparseable JSON",
                original_error=error,
            )
        return FallbackDecision(
            should_fallback=False,
            reason=f"Validation failed ({error.code}); fallback cannot fix document shape",
            original_error=error,
        )

    classified = error if isinstance(error, GenerationError) else classify_error(error)

    for kind, trigger, reason in _RULES:
        if classified.kind == kind:
            return FallbackDecision(
                should_fallback=True,
                trigger=trigger,
                reason=f"{reason}: {classified.message}",
                original_error=error,
            )

    return FallbackDecision(should_fallback=False, original_error=error)


def should_escalate_to_emergency(
    primary_error: Optional[BaseException], secondary_error: Optional[BaseException]
) -> bool:
    """Once primary and secondary have both failed, always try the emergency provider."""
    return True


def log_fallback_decision(decision: FallbackDecision, **context: Any) -> None:
    """Emit `fallback.triggered` or `fallback.not_triggered` for a decision."""
    error = decision.original_error
    fields = {
        "trigger": decision.trigger.value if decision.trigger else None,
        "reason": decision.reason,
        "error": str(error) if error is not None else None,
        "error_kind": error.kind.value if isinstance(error, GenerationError) else None,
    }
    fields.update(context)

    if decision.should_fallback:
        logger.warning(
            f"Falling back to next provider: {decision.reason}",
            extra={"event": "fallback.triggered", **fields},
        )
    else:
        logger.error(
            "Not falling back; surfacing error",
            extra={"event": "fallback.not_triggered", **fields},
        )
