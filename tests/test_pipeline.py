"""Tests for PromptPipeline."""

import gc
import threading

import pytest

from conftest import make_entry
from lore_context.config.settings import BudgetConfig, EngineConfig
from lore_context.core.models import Character, ChatMessage
from lore_context.exceptions import BuildCancelled, ConfigError, StorageError
from lore_context.services.pipeline import ChatLockRegistry, PromptPipeline
from lore_context.services.stores import InMemoryHistoryStore, InMemoryKnowledgeStore


class BrokenHistoryStore(InMemoryHistoryStore):
    def get_history(self, chat_id):
        raise ConnectionError("database is down")


class BrokenEntryStore(InMemoryKnowledgeStore):
    def list_entries(self, character_id):
        raise ConnectionError("database is down")


class ReadOnlyStore(InMemoryKnowledgeStore):
    def put_activation_record(self, record):
        raise PermissionError("read-only replica")


MIRA = Character(name="Mira", description="A cheerful innkeeper.")


@pytest.fixture
def pipeline(knowledge_store, history_store, char_tokenizer, clock):
    knowledge_store.add_entry(make_entry("dragon", keywords=["dragon"], cooldown=5), ["mira"])
    knowledge_store.add_entry(make_entry("inn", activation_type="always", content="The Gilded Goose"),
                              ["mira"])
    history_store.extend("chat-1", [
        ChatMessage("user", "Evening!"),
        ChatMessage("assistant", "Welcome to the Goose."),
    ])
    return PromptPipeline(knowledge_store, history_store, tokenizer_service=char_tokenizer, clock=clock)


class TestPromptPipeline:
    """Test cases for PromptPipeline."""

    def test_generate_end_to_end(self, pipeline, knowledge_store):
        built = pipeline.generate("chat-1", "mira", MIRA, "Any news about the dragon?")

        assert built.messages[1] == {"role": "user", "content": "Any news about the dragon?"}
        assert "[DRAGON]\nContent of dragon" in built.prompt
        assert "The Gilded Goose" in built.prompt
        assert "Assistant: Welcome to the Goose." in built.prompt
        assert built.stats["world_info_entries"] == 2
        records = knowledge_store.list_activation_records("chat-1")
        assert {r.entry_id for r in records} == {"dragon", "inn"}
        assert all(r.message_count == 2 for r in records)

    def test_cooldown_spans_turns(self, pipeline, clock):
        pipeline.generate("chat-1", "mira", MIRA, "the dragon!")
        second = pipeline.generate("chat-1", "mira", MIRA, "the dragon again!")
        assert "Content of dragon" not in second.prompt

        clock.advance(minutes=5)
        third = pipeline.generate("chat-1", "mira", MIRA, "the dragon returns")
        assert "Content of dragon" in third.prompt

    def test_supplied_entries_skip_store_lookup(self, history_store, char_tokenizer):
        pipeline = PromptPipeline(BrokenEntryStore(history_store), history_store,
                                  tokenizer_service=char_tokenizer)
        built = pipeline.generate("chat-1", "mira", MIRA, "hello",
                                  entries=[make_entry("hello", keywords=["hello"])])
        assert "Content of hello" in built.prompt

    def test_concurrent_turns_of_one_chat_are_serialized(self, pipeline, knowledge_store):
        """Test that only one of two simultaneous turns passes the cooldown check."""
        results = []
        barrier = threading.Barrier(2)

        def turn():
            barrier.wait()
            results.append(pipeline.generate("chat-1", "mira", MIRA, "dragon!"))

        threads = [threading.Thread(target=turn) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        hits = sum("Content of dragon" in built.prompt for built in results)
        assert hits == 1
        dragon_records = [r for r in knowledge_store.list_activation_records("chat-1")
                          if r.entry_id == "dragon"]
        assert len(dragon_records) == 1

    def test_cancelled_build_writes_nothing(self, pipeline, knowledge_store):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(BuildCancelled):
            pipeline.generate("chat-1", "mira", MIRA, "dragon", cancel_event=cancel)

        assert knowledge_store.list_activation_records("chat-1") == []

    def test_history_failure(self, knowledge_store, char_tokenizer):
        pipeline = PromptPipeline(knowledge_store, BrokenHistoryStore(), tokenizer_service=char_tokenizer)

        with pytest.raises(StorageError) as exc_info:
            pipeline.generate("chat-1", "mira", MIRA, "hi")

        assert exc_info.value.operation == "get_history"
        assert isinstance(exc_info.value.cause, ConnectionError)

    def test_entry_store_failure(self, history_store, char_tokenizer):
        pipeline = PromptPipeline(BrokenEntryStore(history_store), history_store,
                                  tokenizer_service=char_tokenizer)

        with pytest.raises(StorageError) as exc_info:
            pipeline.generate("chat-1", "mira", MIRA, "hi")

        assert exc_info.value.operation == "list_entries"

    def test_record_write_failure(self, history_store, char_tokenizer):
        store = ReadOnlyStore(history_store)
        store.add_entry(make_entry("inn", activation_type="always"), ["mira"])
        pipeline = PromptPipeline(store, history_store, tokenizer_service=char_tokenizer)

        with pytest.raises(StorageError) as exc_info:
            pipeline.generate("chat-1", "mira", MIRA, "hi")

        assert exc_info.value.operation == "put_activation_record"

    def test_invalid_config_rejected(self, knowledge_store, history_store):
        config = EngineConfig(budget=BudgetConfig(history=0.9))
        with pytest.raises(ConfigError):
            PromptPipeline(knowledge_store, history_store, config)

    def test_default_tokenizer_from_config(self, knowledge_store, history_store):
        config = EngineConfig()
        config.tokenizer.backend = "simple"
        config.tokenizer.cache_enabled = True
        pipeline = PromptPipeline(knowledge_store, history_store, config)

        assert pipeline.tokenizer.get_tokenizer_info()["backend"] == "SimpleTokenizer"
        assert pipeline.tokenizer.cache is not None
        assert pipeline.tokenizer.cache.max_entries == 10000


class TestChatLockRegistry:
    """Test cases for ChatLockRegistry."""

    def test_one_lock_per_chat(self):
        registry = ChatLockRegistry()
        a = registry.lock_for("a")
        b = registry.lock_for("b")
        assert a is registry.lock_for("a")
        assert a is not b
        assert len(registry) == 2

    def test_released_locks_are_dropped(self):
        """Test that locks for chats no longer in use do not accumulate."""
        registry = ChatLockRegistry()
        held = registry.lock_for("kept")
        for i in range(1000):
            with registry.lock_for(f"chat-{i}"):
                pass
        gc.collect()

        assert len(registry) == 1
        assert registry.lock_for("kept") is held
