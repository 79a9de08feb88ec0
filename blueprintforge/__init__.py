"""
blueprintforge: resilient structured generation from text-generation providers.

This package calls external generation providers with timeout, retry and
output-ceiling escalation, falls back across a primary, secondary and
emergency provider, repairs truncated JSON and validates the resulting
document against a per-flow shape contract.
"""

__version__ = "0.1.0"

from . import llm, utils

__all__ = [
    "llm",
    "utils",
    "__version__",
]
