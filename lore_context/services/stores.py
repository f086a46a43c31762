"""Store contracts for knowledge entries, activation records and chat history."""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.models import ActivationRecord, ChatMessage, KnowledgeEntry


class KnowledgeStore(ABC):
    """Source of knowledge entries and owner of activation records."""

    @abstractmethod
    def list_entries(self, character_id: str) -> List[KnowledgeEntry]:
        """Return every entry linked to the character."""
        pass

    @abstractmethod
    def get_latest_activation_record(self, entry_id: str, chat_id: str) -> Optional[ActivationRecord]:
        """Return the most recent activation record for (entry, chat), if any."""
        pass

    @abstractmethod
    def put_activation_record(self, record: ActivationRecord):
        """Append an activation record."""
        pass

    @abstractmethod
    def count_messages(self, chat_id: str) -> int:
        """Return how many messages the chat already holds."""
        pass


class HistoryStore(ABC):
    """Source of ordered chat history."""

    @abstractmethod
    def get_history(self, chat_id: str) -> List[ChatMessage]:
        """Return the chat's messages, oldest first."""
        pass


class InMemoryHistoryStore(HistoryStore):
    """History store backed by a dict of lists."""

    def __init__(self):
        self._messages: Dict[str, List[ChatMessage]] = defaultdict(list)
        self._lock = threading.Lock()

    def add_message(self, chat_id: str, message: ChatMessage):
        with self._lock:
            self._messages[chat_id].append(message)

    def extend(self, chat_id: str, messages: Iterable[ChatMessage]):
        with self._lock:
            self._messages[chat_id].extend(messages)

    def get_history(self, chat_id: str) -> List[ChatMessage]:
        with self._lock:
            return list(self._messages.get(chat_id, []))


class InMemoryKnowledgeStore(KnowledgeStore):
    """Knowledge store keeping activation rows keyed by (entry_id, chat_id, activated_at).

    Message counts come from ``history_store`` when one is attached.
    """

    def __init__(self, history_store: Optional[HistoryStore] = None):
        self.history_store = history_store
        self._entries: Dict[str, KnowledgeEntry] = {}
        self._links: Dict[str, List[str]] = defaultdict(list)
        self._records: Dict[Tuple[str, str], List[ActivationRecord]] = defaultdict(list)
        self._lock = threading.Lock()

    def add_entry(self, entry: KnowledgeEntry, character_ids: Iterable[str] = ()):
        """Store an entry and link it to the given characters."""
        with self._lock:
            self._entries[entry.id] = entry
            for character_id in character_ids:
                if entry.id not in self._links[character_id]:
                    self._links[character_id].append(entry.id)

    def list_entries(self, character_id: str) -> List[KnowledgeEntry]:
        with self._lock:
            return [self._entries[i] for i in self._links.get(character_id, []) if i in self._entries]

    def get_latest_activation_record(self, entry_id: str, chat_id: str) -> Optional[ActivationRecord]:
        with self._lock:
            rows = self._records.get((entry_id, chat_id))
            if not rows:
                return None
            return max(rows, key=lambda r: r.activated_at)

    def put_activation_record(self, record: ActivationRecord):
        with self._lock:
            self._records[(record.entry_id, record.chat_id)].append(record)

    def list_activation_records(self, chat_id: str) -> List[ActivationRecord]:
        with self._lock:
            rows = [r for (_, c), rs in self._records.items() if c == chat_id for r in rs]
        return sorted(rows, key=lambda r: r.activated_at)

    def count_messages(self, chat_id: str) -> int:
        if self.history_store is None:
            return 0
        return len(self.history_store.get_history(chat_id))
