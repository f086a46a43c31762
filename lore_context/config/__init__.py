"""Configuration for lore-context."""

from .settings import (
    ActivationConfig,
    BudgetConfig,
    BuildConfig,
    EngineConfig,
    TokenizerConfig,
    get_default_config,
)

__all__ = [
    "ActivationConfig",
    "BudgetConfig",
    "BuildConfig",
    "EngineConfig",
    "TokenizerConfig",
    "get_default_config",
]
