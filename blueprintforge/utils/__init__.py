"""
Utilities package for blueprintforge.
"""

from . import logging

__all__ = [
    "logging",
]
