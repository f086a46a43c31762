"""Shared pytest fixtures for lore-context tests."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from lore_context.core.activation_engine import ActivationEngine
from lore_context.core.context_builder import ContextBuilder
from lore_context.core.models import ActivatedBy, ActivatedEntry, KnowledgeEntry
from lore_context.core.tokenizer_service import BaseTokenizer, TokenizerService
from lore_context.services.stores import InMemoryHistoryStore, InMemoryKnowledgeStore

logging.getLogger("lore_context").setLevel(logging.DEBUG)


class CharTokenizer(BaseTokenizer):
    """One token per character, for exact budget arithmetic."""

    def count_tokens(self, text: str) -> int:
        return len(text)


class FakeClock:
    """Controllable clock returning timezone-aware datetimes."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_entry(entry_id: str, **kwargs) -> KnowledgeEntry:
    kwargs.setdefault("name", entry_id.upper())
    kwargs.setdefault("content", f"Content of {entry_id}")
    return KnowledgeEntry(id=entry_id, **kwargs)


def make_activated(entry: KnowledgeEntry, activated_by: ActivatedBy = ActivatedBy.KEYWORD) -> ActivatedEntry:
    return ActivatedEntry(entry=entry, position=entry.resolved_position,
                          order=entry.resolved_order, activated_by=activated_by)


@pytest.fixture
def char_tokenizer():
    return TokenizerService(CharTokenizer())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def history_store():
    return InMemoryHistoryStore()


@pytest.fixture
def knowledge_store(history_store):
    return InMemoryKnowledgeStore(history_store)


@pytest.fixture
def engine(knowledge_store, char_tokenizer, clock):
    return ActivationEngine(knowledge_store, char_tokenizer, clock=clock)


@pytest.fixture
def builder(char_tokenizer):
    return ContextBuilder(char_tokenizer)
