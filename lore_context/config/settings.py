"""Configuration settings for prompt assembly."""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..core.models import ActivationOptions, ContextBuildOptions


@dataclass
class ActivationConfig:
    """Knowledge entry activation limits."""
    enable_recursive: bool = True
    enable_vector: bool = False
    max_recursion_depth: int = 3
    vector_threshold: float = 0.7
    max_activated_entries: int = 15
    max_total_tokens: int = 20000


@dataclass
class BudgetConfig:
    """Fractions of the available tokens given to each prompt section.

    The ``*_empty`` variants apply when no knowledge entry was activated, so
    the unused world-info share moves to history.
    """
    character: float = 0.15
    world_info: float = 0.25
    world_info_empty: float = 0.05
    history: float = 0.50
    history_empty: float = 0.70
    system: float = 0.10

    def total(self, has_world_info: bool) -> float:
        if has_world_info:
            return self.character + self.world_info + self.history + self.system
        return self.character + self.world_info_empty + self.history_empty + self.system


@dataclass
class BuildConfig:
    """Defaults for a context build."""
    max_context_tokens: int = 8192
    reserve_tokens: int = 1024
    model: str = "gpt-3.5-turbo"
    template_name: str = "default"
    enable_summary: bool = False
    summary_timeout: Optional[float] = 10.0


@dataclass
class TokenizerConfig:
    """Token estimator backend and count cache."""
    backend: str = "heuristic"
    cache_enabled: bool = False
    cache_ttl: int = 300
    cache_max_entries: int = 10000


def _section(cls, data: Optional[Mapping[str, Any]]):
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**data)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EngineConfig:
    """Main configuration for activation and context building."""
    activation: ActivationConfig = field(default_factory=ActivationConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    tokenizer: TokenizerConfig = field(default_factory=TokenizerConfig)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'EngineConfig':
        """Create configuration from dictionary."""
        config_dict = config_dict or {}
        return cls(
            activation=_section(ActivationConfig, config_dict.get('activation')),
            budget=_section(BudgetConfig, config_dict.get('budget')),
            build=_section(BuildConfig, config_dict.get('build')),
            tokenizer=_section(TokenizerConfig, config_dict.get('tokenizer')),
        )

    @classmethod
    def from_yaml(cls, file_path: str) -> 'EngineConfig':
        """Load configuration from YAML file."""
        with open(file_path, 'r', encoding='utf-8') as f:
            config_dict = yaml.safe_load(f)
        return cls.from_dict(config_dict)

    @classmethod
    def from_json(cls, file_path: str) -> 'EngineConfig':
        """Load configuration from JSON file."""
        with open(file_path, 'r', encoding='utf-8') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> 'EngineConfig':
        """
        Override limits from ``WORLDINFO_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            self, for chaining
        """
        environ = os.environ if environ is None else environ
        if environ.get('WORLDINFO_MAX_ACTIVATED_ENTRIES'):
            self.activation.max_activated_entries = int(environ['WORLDINFO_MAX_ACTIVATED_ENTRIES'])
        if environ.get('WORLDINFO_MAX_TOTAL_TOKENS'):
            self.activation.max_total_tokens = int(environ['WORLDINFO_MAX_TOTAL_TOKENS'])
        if environ.get('WORLDINFO_CACHE_ENABLED'):
            self.tokenizer.cache_enabled = _env_bool(environ['WORLDINFO_CACHE_ENABLED'])
        if environ.get('WORLDINFO_CACHE_TTL'):
            self.tokenizer.cache_ttl = int(environ['WORLDINFO_CACHE_TTL'])
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'activation': asdict(self.activation),
            'budget': asdict(self.budget),
            'build': asdict(self.build),
            'tokenizer': asdict(self.tokenizer),
        }

    def save_yaml(self, file_path: str):
        """Save configuration to YAML file."""
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)

    def save_json(self, file_path: str):
        """Save configuration to JSON file."""
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    def activation_options(self, model: Optional[str] = None) -> ActivationOptions:
        return ActivationOptions(
            enable_recursive=self.activation.enable_recursive,
            enable_vector=self.activation.enable_vector,
            max_recursion_depth=self.activation.max_recursion_depth,
            vector_threshold=self.activation.vector_threshold,
            max_activated_entries=self.activation.max_activated_entries,
            max_total_tokens=self.activation.max_total_tokens,
            model=model or self.build.model,
        )

    def build_options(self) -> ContextBuildOptions:
        return ContextBuildOptions(
            max_context_tokens=self.build.max_context_tokens,
            reserve_tokens=self.build.reserve_tokens,
            model=self.build.model,
            template_name=self.build.template_name,
            enable_summary=self.build.enable_summary,
            summary_timeout=self.build.summary_timeout,
        )

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List of validation issues (empty if valid)
        """
        issues = []

        if self.build.max_context_tokens <= 0:
            issues.append("max_context_tokens must be positive")
        if self.build.reserve_tokens < 0:
            issues.append("reserve_tokens must be non-negative")
        if self.build.reserve_tokens >= self.build.max_context_tokens:
            issues.append("reserve_tokens exceeds max_context_tokens")

        for name, value in asdict(self.budget).items():
            if not 0 <= value <= 1:
                issues.append(f"Budget fraction '{name}' must be between 0 and 1")
        for has_world_info in (True, False):
            total = self.budget.total(has_world_info)
            if total > 1.0 + 1e-9:
                label = "with" if has_world_info else "without"
                issues.append(f"Budget fractions {label} world info sum to {total:.2f} (> 1.0)")

        if self.activation.max_activated_entries < 0:
            issues.append("max_activated_entries must be non-negative")
        if self.activation.max_total_tokens < 0:
            issues.append("max_total_tokens must be non-negative")
        if self.activation.max_recursion_depth < 0:
            issues.append("max_recursion_depth must be non-negative")
        if not 0 <= self.activation.vector_threshold <= 1:
            issues.append("vector_threshold must be between 0 and 1")

        if self.tokenizer.backend not in ('heuristic', 'simple', 'tiktoken'):
            issues.append(f"Unknown tokenizer backend '{self.tokenizer.backend}'")
        if self.tokenizer.cache_ttl <= 0:
            issues.append("cache_ttl must be positive")
        if self.tokenizer.cache_max_entries <= 0:
            issues.append("cache_max_entries must be positive")

        return issues


def get_default_config() -> EngineConfig:
    """Get the default configuration."""
    return EngineConfig()
