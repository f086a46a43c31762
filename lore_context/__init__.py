"""
lore-context: prompt assembly for character-roleplay chat.

This package decides which lorebook / world-info entries apply to the current
turn and fits them, together with the character card, chat history and example
dialogue, into a bounded token budget rendered through a prompt template.
"""

__version__ = "0.1.0"
__author__ = "lore-context Team"

from .config.settings import EngineConfig
from .core.activation_engine import ActivationEngine
from .core.budget_manager import BudgetManager
from .core.context_builder import BuiltContext, ContextBuilder
from .core.models import (
    ActivatedBy,
    ActivatedEntry,
    ActivationOptions,
    ActivationRecord,
    ActivationType,
    Character,
    ChatMessage,
    ContextBuildOptions,
    ContextComponents,
    KnowledgeEntry,
    SelectiveLogic,
)
from .core.tokenizer_service import TokenizerService
from .exceptions import BuildCancelled, ConfigError, LoreContextError, StorageError
from .services.pipeline import PromptPipeline
from .utils.templates import TemplateRenderer

__all__ = [
    "ActivatedBy",
    "ActivatedEntry",
    "ActivationEngine",
    "ActivationOptions",
    "ActivationRecord",
    "ActivationType",
    "BudgetManager",
    "BuildCancelled",
    "BuiltContext",
    "Character",
    "ChatMessage",
    "ConfigError",
    "ContextBuildOptions",
    "ContextBuilder",
    "ContextComponents",
    "EngineConfig",
    "KnowledgeEntry",
    "LoreContextError",
    "PromptPipeline",
    "SelectiveLogic",
    "StorageError",
    "TemplateRenderer",
    "TokenizerService",
]
