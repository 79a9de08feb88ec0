"""
Configuration package for blueprintforge.
"""

from .chain_config_loader import (
    ChainConfig,
    ChainConfigLoader,
    get_chain_config,
    reload_chain_config,
)

__all__ = [
    "ChainConfig",
    "ChainConfigLoader",
    "get_chain_config",
    "reload_chain_config",
]
