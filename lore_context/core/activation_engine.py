"""Activation engine deciding which knowledge entries apply to the current turn."""

import logging
import re
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set

from ..exceptions import BuildCancelled, StorageError
from .entry_state import EntryState, new_record, resolve_state
from .models import (
    ActivatedBy,
    ActivatedEntry,
    ActivationOptions,
    ActivationRecord,
    ActivationType,
    ChatMessage,
    KnowledgeEntry,
    SelectiveLogic,
)
from .tokenizer_service import TokenizerService

logger = logging.getLogger(__name__)

# A keyword entry listing this keyword is active on every turn.
ALWAYS_KEYWORD = "always"

_REGEX_LITERAL = re.compile(r'^/(.+)/([gimsuy]*)$', re.DOTALL)
_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}


def compile_pattern(pattern: str) -> "re.Pattern":
    """
    Compile a ``/pattern/flags`` literal or a bare pattern.

    A pattern is a literal only when everything after the last slash is a
    run of ``gimsuy`` flags; anything else (``/dragon/slayer``) is a bare
    pattern. Bare patterns are case-insensitive. Of the literal flags only
    ``i``, ``m`` and ``s`` change matching.

    Raises:
        re.error: if the pattern is invalid
    """
    literal = _REGEX_LITERAL.match(pattern)
    if not literal:
        return re.compile(pattern, re.IGNORECASE)
    body, flag_chars = literal.groups()
    flags = 0
    for char in flag_chars:
        flags |= _REGEX_FLAGS.get(char, 0)
    return re.compile(body, flags)


def match_regex(pattern: str, text: str) -> bool:
    """Test ``pattern`` against ``text``; invalid patterns never match."""
    try:
        return compile_pattern(pattern).search(text) is not None
    except re.error as e:
        logger.warning("Invalid regex pattern %r: %s", pattern, e)
        return False


def match_keywords(entry: KnowledgeEntry, current_message: str, history: Sequence[ChatMessage]) -> bool:
    """
    Case-insensitive keyword match combined by the entry's selective logic.

    Raises:
        ValueError: if the keyword fields are malformed
    """
    primary = [k for k in entry.primary_keywords() if k]
    if not primary:
        return False
    secondary = [k for k in entry.secondary_keyword_list() if k]

    text = current_message.lower()
    if entry.min_activations > 0 and history:
        recent = history[-entry.min_activations:]
        text = text + " " + " ".join(m.content for m in recent).lower()

    primary_hits = sum(1 for k in primary if k.lower() in text)
    secondary_hits = sum(1 for k in secondary if k.lower() in text)

    logic = entry.selective_logic
    if logic is SelectiveLogic.AND_ALL:
        return primary_hits == len(primary)
    elif logic is SelectiveLogic.NOT_ALL:
        return primary_hits > 0 and secondary_hits == 0
    elif logic is SelectiveLogic.AND_ANY:
        return primary_hits > 0
    raise ValueError(f"Unhandled selective logic: {logic}")


class _Turn:
    """Mutable bookkeeping of one activate() call."""

    def __init__(self, chat_id: str, now: datetime, entries: Sequence[KnowledgeEntry]):
        self.chat_id = chat_id
        self.now = now
        self.index: Dict[str, KnowledgeEntry] = {}
        for entry in entries:
            self.index.setdefault(entry.id, entry)
        self.visited: Set[str] = set()
        self.activated: List[ActivatedEntry] = []
        self.staged: Dict[str, ActivationRecord] = {}
        self.message_count: Optional[int] = None
        self.query_embedding = None

    def add(self, entry: KnowledgeEntry, activated_by: ActivatedBy, cascade_level: int = 0):
        self.activated.append(ActivatedEntry(
            entry=entry,
            position=entry.resolved_position,
            order=entry.resolved_order,
            activated_by=activated_by,
            cascade_level=cascade_level,
        ))
        self.visited.add(entry.id)


class ActivationEngine:
    """Selects, orders and rate-limits knowledge entries for a chat turn."""

    def __init__(self,
                 knowledge_store,
                 tokenizer_service: Optional[TokenizerService] = None,
                 similarity_provider=None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize activation engine.

        Args:
            knowledge_store: KnowledgeStore holding entries and activation records
            tokenizer_service: Token estimator used by the rate limiter
            similarity_provider: Optional SimilarityProvider for vector-type entries
            clock: Returns the current time (defaults to UTC now)
        """
        self.store = knowledge_store
        self.tokenizer = tokenizer_service or TokenizerService()
        self.similarity = similarity_provider
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def activate(self,
                 chat_id: str,
                 entries: Optional[Sequence[KnowledgeEntry]],
                 current_message: str,
                 history: Sequence[ChatMessage],
                 options: Optional[ActivationOptions] = None,
                 character_id: Optional[str] = None,
                 cancel_event: Optional[threading.Event] = None) -> List[ActivatedEntry]:
        """
        Activate the entries relevant to ``current_message``.

        Args:
            chat_id: Chat whose activation records gate sticky/cooldown/delay
            entries: Candidate entries; None falls back to ``options.preloaded_entries``
                and then to the store's entries for ``character_id``
            current_message: The user's message for this turn
            history: Prior chat messages, oldest first
            options: Recursion, vector and rate-limit settings
            character_id: Used only when entries must be fetched from the store
            cancel_event: When set, the call stops and nothing is persisted

        Returns:
            Activated entries sorted by insertion order, without duplicates and
            within ``max_activated_entries`` / ``max_total_tokens``

        Raises:
            StorageError: if the knowledge store fails
            BuildCancelled: if ``cancel_event`` is set before records are committed
        """
        options = options or ActivationOptions()
        entries = self._resolve_entries(entries, options, character_id)
        turn = _Turn(chat_id, self.clock(), entries)

        for entry in entries:
            self._check_cancelled(cancel_event)
            if not entry.enabled or entry.id in turn.visited:
                continue

            record = self._latest_record(entry, chat_id)
            count = self._message_count(turn) if record is None and entry.delay > 0 else None
            state = resolve_state(entry, record, turn.now, count)

            if state is EntryState.STICKY:
                turn.add(entry, ActivatedBy.ALWAYS)
                continue
            if state is not EntryState.IDLE:
                logger.debug("Entry %s skipped (%s)", entry.id, state.value)
                continue

            activated_by = self._evaluate_triggers(entry, current_message, history, options, turn)
            if activated_by is None:
                continue

            turn.add(entry, activated_by)
            turn.staged[entry.id] = new_record(entry, chat_id, turn.now, self._message_count(turn))

            if options.enable_recursive and entry.recursive:
                self._cascade(entry, turn, options.max_recursion_depth)

        turn.activated.sort(key=lambda a: a.order)
        limited = self.apply_rate_limits(turn.activated,
                                         options.max_activated_entries,
                                         options.max_total_tokens,
                                         options.model)

        logger.info("Activated %d entries for chat %s, after limits: %d",
                    len(turn.activated), chat_id, len(limited))
        if len(limited) < len(turn.activated):
            logger.info("Truncated %d entries due to limits", len(turn.activated) - len(limited))

        self._check_cancelled(cancel_event)
        self._commit(turn, limited)
        return limited

    def apply_rate_limits(self,
                          activated: List[ActivatedEntry],
                          max_entries: int,
                          max_tokens: int,
                          model: Optional[str] = None) -> List[ActivatedEntry]:
        """
        Keep the longest prefix of ``activated`` that fits both limits.

        Each entry's ``estimated_tokens`` is filled in as it is visited. The walk
        stops at the first entry that does not fit; later, smaller entries are
        not considered.
        """
        result: List[ActivatedEntry] = []
        total = 0

        for item in activated:
            if len(result) >= max_entries:
                logger.debug("Reached max entries (%d), skipping: %s", max_entries, item.entry.name)
                break

            text = item.entry.render()
            tokens = self.tokenizer.estimate_tokens(text, model)
            budget = item.entry.token_budget
            if budget and tokens > budget:
                text = self.tokenizer.truncate_to_limit(text, budget, model)
                tokens = self.tokenizer.estimate_tokens(text, model)
            item.estimated_tokens = tokens

            if total + tokens > max_tokens:
                logger.debug("Reached max tokens (%d/%d), skipping: %s",
                             max_tokens, total + tokens, item.entry.name)
                break

            result.append(item)
            total += tokens

        logger.debug("World info total: %d entries, %d tokens", len(result), total)
        return result

    def _resolve_entries(self, entries, options: ActivationOptions, character_id) -> List[KnowledgeEntry]:
        if entries is not None:
            return list(entries)
        if options.preloaded_entries is not None:
            logger.debug("Using %d preloaded entries", len(options.preloaded_entries))
            return list(options.preloaded_entries)
        if character_id is None:
            raise ValueError("character_id is required when no entries are supplied")
        try:
            return list(self.store.list_entries(character_id))
        except Exception as e:
            raise StorageError("list_entries", e) from e

    def _latest_record(self, entry: KnowledgeEntry, chat_id: str) -> Optional[ActivationRecord]:
        try:
            return self.store.get_latest_activation_record(entry.id, chat_id)
        except Exception as e:
            raise StorageError("get_latest_activation_record", e) from e

    def _message_count(self, turn: _Turn) -> int:
        if turn.message_count is None:
            try:
                turn.message_count = self.store.count_messages(turn.chat_id)
            except Exception as e:
                raise StorageError("count_messages", e) from e
        return turn.message_count

    def _evaluate_triggers(self, entry: KnowledgeEntry, current_message: str,
                           history: Sequence[ChatMessage], options: ActivationOptions,
                           turn: _Turn) -> Optional[ActivatedBy]:
        kind = entry.activation_type
        if kind is ActivationType.ALWAYS:
            return ActivatedBy.ALWAYS

        if kind is ActivationType.KEYWORD:
            try:
                if any(k.strip().lower() == ALWAYS_KEYWORD for k in entry.primary_keywords()):
                    return ActivatedBy.ALWAYS
                if match_keywords(entry, current_message, history):
                    return ActivatedBy.KEYWORD
            except ValueError as e:
                logger.warning("Failed to parse keywords for entry %s: %s", entry.id, e)
                return None

        if kind in (ActivationType.KEYWORD, ActivationType.REGEX):
            if entry.use_regex and entry.regex_pattern and match_regex(entry.regex_pattern, current_message):
                return ActivatedBy.REGEX

        if kind is ActivationType.VECTOR and self._match_vector(entry, current_message, options, turn):
            return ActivatedBy.VECTOR

        return None

    def _match_vector(self, entry: KnowledgeEntry, current_message: str,
                      options: ActivationOptions, turn: _Turn) -> bool:
        if not options.enable_vector or self.similarity is None or not entry.embedding:
            return False
        if turn.query_embedding is None:
            turn.query_embedding = self.similarity.embed(current_message)
        threshold = entry.vector_threshold
        if threshold is None:
            threshold = options.vector_threshold
        score = self.similarity.cosine_similarity(turn.query_embedding, entry.embedding)
        return score >= threshold

    def _cascade(self, root: KnowledgeEntry, turn: _Turn, max_depth: int):
        """Walk cascade links depth-first from ``root`` with an explicit stack."""
        stack = [(target, 1) for target in reversed(self._cascade_targets(root))]
        while stack:
            target_id, depth = stack.pop()
            if depth > max_depth or target_id in turn.visited:
                continue
            target = turn.index.get(target_id)
            if target is None or not target.enabled:
                logger.debug("Cascade target %s unknown or disabled, skipping", target_id)
                continue
            if target.recursive_level not in (0, depth):
                continue

            turn.add(target, ActivatedBy.RECURSIVE, cascade_level=depth)
            if target.recursive:
                stack.extend((child, depth + 1) for child in reversed(self._cascade_targets(target)))

    @staticmethod
    def _cascade_targets(entry: KnowledgeEntry) -> List[str]:
        try:
            return entry.cascade_targets()
        except ValueError as e:
            logger.warning("Failed to parse cascade targets for entry %s: %s", entry.id, e)
            return []

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelled("activation cancelled")

    def _commit(self, turn: _Turn, included: List[ActivatedEntry]):
        for item in included:
            record = turn.staged.get(item.id)
            if record is None:
                continue
            try:
                self.store.put_activation_record(record)
            except Exception as e:
                raise StorageError("put_activation_record", e) from e
