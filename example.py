#!/usr/bin/env python3
"""
Example usage of the lore-context package.
"""

from datetime import datetime, timedelta, timezone

from lore_context import (
    ActivationEngine,
    ActivationOptions,
    Character,
    ChatMessage,
    ContextBuildOptions,
    KnowledgeEntry,
    PromptPipeline,
    TokenizerService,
)
from lore_context.config.settings import get_default_config
from lore_context.services.stores import InMemoryHistoryStore, InMemoryKnowledgeStore
from lore_context.utils.message_formatter import MessageFormatter


class DemoClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def main():
    """Demonstrate lore-context functionality."""

    print("=== lore-context Example ===\n")

    tokenizer = TokenizerService(backend="heuristic")

    print("1. Tokenizer Service Demo")
    print("-" * 30)

    for sample in ("The quick brown fox jumps over the lazy dog.", "你好，世界", "def f(x): return [x]"):
        print(f"{sample!r}: {tokenizer.estimate_tokens(sample)} tokens")
    print(f"Tokenizer info: {tokenizer.get_tokenizer_info()}")
    print()

    print("2. Knowledge Entries")
    print("-" * 30)

    entries = [
        KnowledgeEntry(id="inn", name="The Gilded Goose", activation_type="always",
                       content="A timber inn at the crossroads, run by Mira.", insertion_order=10),
        KnowledgeEntry(id="ruins", name="Old Ruins", keywords=["ruins", "temple"],
                       content="A collapsed temple east of town.", recursive=True,
                       cascade_trigger=["cult"], cooldown=5),
        KnowledgeEntry(id="cult", name="Ashen Cult", keywords=["cult"],
                       content="Robed figures seen near the ruins at night."),
        KnowledgeEntry(id="well", name="Town Well", keywords=["well"],
                       content="Said to be cursed.", position="after_history"),
        KnowledgeEntry(id="ring", name="Signet Ring", use_regex=True,
                       regex_pattern=r"/\bring(s)?\b/i", content="Mira's lost family ring."),
    ]
    for entry in entries:
        print(f"  {entry.id:<6} {entry.activation_type.value:<8} -> {entry.resolved_position}")
    print()

    history_store = InMemoryHistoryStore()
    knowledge_store = InMemoryKnowledgeStore(history_store)
    for entry in entries:
        knowledge_store.add_entry(entry, ["mira"])
    history_store.extend("tavern", [
        ChatMessage("user", "Evening! A room for the night, please."),
        ChatMessage("assistant", "Two silver and it's yours, traveller."),
    ])

    print("3. Activation Demo")
    print("-" * 30)

    clock = DemoClock()
    engine = ActivationEngine(knowledge_store, tokenizer, clock=clock)
    message = "I heard strange things about the ruins. Did you lose a ring?"
    activated = engine.activate("tavern", None, message, history_store.get_history("tavern"),
                                ActivationOptions(), character_id="mira")

    print(f"Message: {message}")
    for item in activated:
        print(f"  {item.entry.name:<18} by {item.activated_by.value:<9} "
              f"level={item.cascade_level} tokens={item.estimated_tokens}")

    clock.now += timedelta(minutes=1)
    again = engine.activate("tavern", None, message, [], ActivationOptions(), character_id="mira")
    print(f"One minute later (ruins on cooldown): {[a.id for a in again]}")
    print()

    print("4. Prompt Assembly Demo")
    print("-" * 30)

    config = get_default_config()
    pipeline = PromptPipeline(knowledge_store, history_store, config,
                              tokenizer_service=tokenizer, clock=clock)
    character = Character(
        name="Mira",
        description="Mira is the cheerful innkeeper of the Gilded Goose.",
        personality="Warm, nosy, fond of rumours",
        scenario="A rainy evening in the common room.",
        mes_example="<START>\n{{user}}: Any news?\n{{char}}: Only that the well is cursed, dear.",
        author_note="Keep replies short.",
    )
    clock.now += timedelta(minutes=10)
    built = pipeline.generate("tavern", "mira", character, "Tell me about the well.",
                              ContextBuildOptions(max_context_tokens=1024, reserve_tokens=256))

    print(built.prompt)
    print()
    print("Usage:")
    for key in ("character_tokens", "world_info_tokens", "history_tokens", "examples_tokens",
                "total_tokens", "available_tokens", "utilization_rate"):
        print(f"  {key}: {built.stats[key]}")
    print()

    print("5. Provider Formats")
    print("-" * 30)

    formatter = MessageFormatter()
    anthropic = formatter.to_anthropic_messages(built.messages)
    print(f"OpenAI messages: {len(formatter.to_openai_messages(built.messages))}")
    print(f"Anthropic system chars: {len(anthropic['system'])}, turns: {len(anthropic['messages'])}")

    print("\n=== Example Complete ===")


if __name__ == "__main__":
    main()
