"""End-to-end prompt generation for one chat turn."""

import logging
import threading
import weakref
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from ..config.settings import EngineConfig, TokenizerConfig, get_default_config
from ..core.activation_engine import ActivationEngine
from ..core.budget_manager import BudgetManager
from ..core.context_builder import BuiltContext, ContextBuilder
from ..core.models import ActivationOptions, Character, ChatMessage, ContextBuildOptions, KnowledgeEntry
from ..core.tokenizer_service import TokenizerService
from ..exceptions import BuildCancelled, ConfigError, StorageError
from ..utils.templates import TemplateRenderer
from ..utils.token_cache import TTLCache
from .similarity import SimilarityProvider
from .stores import HistoryStore, KnowledgeStore
from .summarizer import Summarizer

logger = logging.getLogger(__name__)


def tokenizer_from_config(config: TokenizerConfig) -> TokenizerService:
    cache = None
    if config.cache_enabled:
        cache = TTLCache(config.cache_ttl, max_entries=config.cache_max_entries)
    return TokenizerService(config.backend, cache=cache)


class ChatLockRegistry:
    """One lock per chat so activation state is read, decided and written by a single writer.

    Locks are held weakly: a chat's lock lives while some caller holds or waits
    on it, then drops out of the registry.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def lock_for(self, chat_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(chat_id)
            if lock is None:
                lock = self._locks[chat_id] = threading.Lock()
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class PromptPipeline:
    """Fetches inputs, activates knowledge entries and builds the prompt."""

    def __init__(self,
                 knowledge_store: KnowledgeStore,
                 history_store: HistoryStore,
                 config: Optional[EngineConfig] = None,
                 tokenizer_service: Optional[TokenizerService] = None,
                 summarizer: Optional[Summarizer] = None,
                 similarity_provider: Optional[SimilarityProvider] = None,
                 template_renderer: Optional[TemplateRenderer] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the pipeline.

        Raises:
            ConfigError: if the configuration does not validate
        """
        self.config = config or get_default_config()
        issues = self.config.validate()
        if issues:
            raise ConfigError("; ".join(issues))

        self.knowledge_store = knowledge_store
        self.history_store = history_store
        self.tokenizer = tokenizer_service or tokenizer_from_config(self.config.tokenizer)
        self.engine = ActivationEngine(knowledge_store, self.tokenizer, similarity_provider, clock)
        self.builder = ContextBuilder(self.tokenizer, template_renderer,
                                      BudgetManager(self.config.budget), summarizer)
        self.locks = ChatLockRegistry()

    def generate(self,
                 chat_id: str,
                 character_id: str,
                 character: Character,
                 user_message: str,
                 options: Optional[ContextBuildOptions] = None,
                 activation_options: Optional[ActivationOptions] = None,
                 entries: Optional[Sequence[KnowledgeEntry]] = None,
                 cancel_event: Optional[threading.Event] = None) -> BuiltContext:
        """
        Build the prompt for one turn of ``chat_id``.

        Args:
            chat_id: Chat being answered
            character_id: Character whose entries are fetched when ``entries`` is None
            character: Character card
            user_message: The current user message
            options: Build options (defaults from config)
            activation_options: Activation options (defaults from config)
            entries: Entries the caller already loaded
            cancel_event: Aborts the build when set

        Returns:
            BuiltContext ready to dispatch

        Raises:
            StorageError: if a store fails
            BuildCancelled: if ``cancel_event`` is set
        """
        options = options or self.config.build_options()
        activation_options = activation_options or self.config.activation_options(options.model)

        history = self._fetch_history(chat_id)
        if entries is None and activation_options.preloaded_entries is None:
            entries = self._fetch_entries(character_id)

        lock = self.locks.lock_for(chat_id)
        with lock:
            activated = self.engine.activate(chat_id, entries, user_message, history,
                                             activation_options, character_id=character_id,
                                             cancel_event=cancel_event)

        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelled("build cancelled after activation")

        built = self.builder.build_context(character, history, activated, user_message, options)
        logger.info("Built context for chat %s: %d/%d tokens, %d entries",
                    chat_id, built.stats.get("prompt_tokens", 0),
                    options.available_tokens, len(activated))
        return built

    def _fetch_history(self, chat_id: str) -> List[ChatMessage]:
        try:
            return list(self.history_store.get_history(chat_id))
        except Exception as e:
            raise StorageError("get_history", e) from e

    def _fetch_entries(self, character_id: str) -> List[KnowledgeEntry]:
        try:
            return list(self.knowledge_store.list_entries(character_id))
        except Exception as e:
            raise StorageError("list_entries", e) from e
