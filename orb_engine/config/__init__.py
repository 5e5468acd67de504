"""Configuration management for the ORB engine.

Handles loading, validation, merging, and hashing of engine parameters.
"""

from .schema import (
    EngineConfig,
    SessionConfig,
    VolumeConfig,
    ConfirmationConfig,
    MarketConditionConfig,
    RiskConfig,
    SizingConfig,
    PriceTier,
    EquityTier,
    RetestConfig,
    RetryConfig,
    ExecutionConfig,
)
from .loader import (
    DEFAULTS_PATH,
    load_config,
    merge_layers,
    parse_overrides,
    read_layer,
    resolved_config_hash,
)

__all__ = [
    # Main config
    "EngineConfig",
    # Component configs
    "SessionConfig",
    "VolumeConfig",
    "ConfirmationConfig",
    "MarketConditionConfig",
    "RiskConfig",
    "SizingConfig",
    "PriceTier",
    "EquityTier",
    "RetestConfig",
    "RetryConfig",
    "ExecutionConfig",
    # Loaders
    "DEFAULTS_PATH",
    "load_config",
    "merge_layers",
    "parse_overrides",
    "read_layer",
    "resolved_config_hash",
]
