"""Context builder turning character, knowledge and history into a bounded prompt."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..services.summarizer import Summarizer, summarize_with_fallback
from ..utils.templates import DEFAULT_TEMPLATE, INSERTION_POSITIONS, TemplateRenderer
from .budget_manager import BudgetAllocation, BudgetManager
from .models import ActivatedEntry, Character, ChatMessage, ContextBuildOptions, ContextComponents
from .tokenizer_service import TokenizerService

logger = logging.getLogger(__name__)

_USER_PREFIX = re.compile(r'^(<USER>|\{\{user\}\}):?\s*', re.IGNORECASE)
_BOT_PREFIX = re.compile(r'^(<BOT>|\{\{char\}\}):?\s*', re.IGNORECASE)
_ROLE_NAMES = {"user": "User", "assistant": "Assistant", "system": "System"}

# Slots concatenated, in this order, into the pre-character world info block.
_BEFORE_SLOTS = ("before_char", "after_char", "after_example")


@dataclass
class BuiltContext:
    """Result of one build: the messages to send plus the sections behind them."""
    messages: List[Dict[str, str]]
    components: ContextComponents
    prompt: str

    @property
    def stats(self) -> Dict[str, Any]:
        return self.components.stats


def parse_examples(character: Character) -> List[Tuple[str, str]]:
    """
    Read example dialogue pairs from a character card.

    The legacy ``mes_example`` block holds alternating user/bot lines; the
    structured ``example_messages`` field is a list (or JSON string) of
    ``{"user": ..., "assistant": ...}`` objects.

    Raises:
        ValueError: if ``example_messages`` is malformed
    """
    examples: List[Tuple[str, str]] = []

    if character.mes_example:
        lines = [line.strip() for line in character.mes_example.split('\n')]
        lines = [line for line in lines if line and line.upper() != '<START>']
        for i in range(0, len(lines) - 1, 2):
            user = _USER_PREFIX.sub('', lines[i]).strip()
            bot = _BOT_PREFIX.sub('', lines[i + 1]).strip()
            examples.append((user, bot))

    if not examples and character.example_messages:
        parsed = character.example_messages
        if isinstance(parsed, str):
            parsed = json.loads(parsed)
        if not isinstance(parsed, list):
            raise ValueError("example_messages must be a list of user/assistant pairs")
        for item in parsed:
            if not isinstance(item, dict):
                raise ValueError(f"example pair must be an object, got {item!r}")
            examples.append((str(item.get("user", "")), str(item.get("assistant", ""))))

    return examples


class ContextBuilder:
    """Allocates the token budget across prompt sections and renders the prompt."""

    def __init__(self,
                 tokenizer_service: Optional[TokenizerService] = None,
                 template_renderer: Optional[TemplateRenderer] = None,
                 budget_manager: Optional[BudgetManager] = None,
                 summarizer: Optional[Summarizer] = None):
        """
        Initialize context builder.

        Args:
            tokenizer_service: Token estimator
            template_renderer: Renderer holding the named templates
            budget_manager: Section budget allocator
            summarizer: Optional capability summarizing dropped history
        """
        self.tokenizer = tokenizer_service or TokenizerService()
        self.renderer = template_renderer or TemplateRenderer()
        self.budget_manager = budget_manager or BudgetManager()
        self.summarizer = summarizer

    def build(self,
              character: Character,
              history: Sequence[ChatMessage],
              activated_entries: Sequence[ActivatedEntry],
              user_message: str,
              options: ContextBuildOptions) -> List[Dict[str, str]]:
        """Build ``[system, user]`` messages for one turn."""
        return self.build_context(character, history, activated_entries, user_message, options).messages

    def build_context(self,
                      character: Character,
                      history: Sequence[ChatMessage],
                      activated_entries: Sequence[ActivatedEntry],
                      user_message: str,
                      options: ContextBuildOptions) -> BuiltContext:
        """
        Build the prompt and keep the intermediate sections.

        Args:
            character: Character card
            history: Prior chat messages, oldest first
            activated_entries: Output of the activation engine
            user_message: The current user message
            options: Budget, model and template settings

        Returns:
            BuiltContext with messages, components and usage statistics
        """
        available = options.available_tokens
        allocation = self.budget_manager.allocate(available, bool(activated_entries))
        summaries: Dict[int, str] = {}

        components = self.prepare_components(character, history, activated_entries,
                                             options, allocation, summaries)
        prompt = self._render(components, character, options)
        prompt_tokens = self.tokenizer.estimate_tokens(prompt, options.model)

        if prompt_tokens > available:
            prompt, prompt_tokens = self._fit(prompt_tokens, components, character, history,
                                              allocation, options, summaries)

        components.stats["prompt_tokens"] = prompt_tokens
        components.stats["overflow_tokens"] = max(0, prompt_tokens - available)
        if prompt_tokens > available:
            logger.warning("Prompt still exceeds budget by %d tokens (character core is never cut)",
                           prompt_tokens - available)

        messages = [
            {"role": "system", "content": prompt},
            {"role": "user", "content": user_message},
        ]
        return BuiltContext(messages=messages, components=components, prompt=prompt)

    def prepare_components(self,
                           character: Character,
                           history: Sequence[ChatMessage],
                           activated_entries: Sequence[ActivatedEntry],
                           options: ContextBuildOptions,
                           allocation: Optional[BudgetAllocation] = None,
                           summaries: Optional[Dict[int, str]] = None) -> ContextComponents:
        """Trim every section to its share of the budget."""
        model = options.model
        if allocation is None:
            allocation = self.budget_manager.allocate(options.available_tokens, bool(activated_entries))

        character_core = self.build_character_core(character)
        world_info = self.inject_world_info(activated_entries, allocation.world_info, model)
        history_text, included = self.trim_history(history, allocation.history, model,
                                                   options.enable_summary, options.summary_timeout,
                                                   summaries)
        examples = self.build_examples(character, allocation.system, model)

        components = ContextComponents(
            character_core=character_core,
            world_info=world_info,
            history=history_text,
            examples=examples,
        )
        components.stats = {
            "budgets": allocation.as_dict(),
            "history_included": included,
            "history_dropped": len(history) - included,
            "world_info_entries": len(activated_entries),
        }
        self._update_usage(components, allocation.available_tokens, model)
        return components

    def build_character_core(self, character: Character) -> str:
        parts = []
        if character.description:
            parts.append(character.description)
        if character.personality:
            parts.append(f"Personality: {character.personality}")
        if character.scenario:
            parts.append(f"Scenario: {character.scenario}")
        return "\n\n".join(parts)

    def inject_world_info(self,
                          entries: Sequence[ActivatedEntry],
                          max_tokens: int,
                          model: Optional[str] = None) -> Dict[str, str]:
        """
        Render activated entries grouped by position slot.

        The budget is split evenly across the slots present. Within a slot,
        entries are appended in order until the share is used up; the first
        entry of a slot is always kept.

        Returns:
            Mapping of slot name to rendered text
        """
        grouped: Dict[str, List[ActivatedEntry]] = {}
        for item in entries:
            grouped.setdefault(item.position, []).append(item)
        if not grouped:
            return {}

        slot_budget = max_tokens // len(grouped)
        result: Dict[str, str] = {}

        for position, items in grouped.items():
            texts: List[str] = []
            used = 0
            for item in items:
                formatted = item.entry.render()
                tokens = self.tokenizer.estimate_tokens(formatted, model)
                budget = item.entry.token_budget
                if budget and tokens > budget:
                    formatted = self.tokenizer.truncate_to_limit(formatted, budget, model)
                    tokens = self.tokenizer.estimate_tokens(formatted, model)

                if texts and used + tokens > slot_budget:
                    break
                texts.append(formatted)
                used += tokens
            result[position] = "\n\n".join(texts)

        return result

    def trim_history(self,
                     messages: Sequence[ChatMessage],
                     max_tokens: int,
                     model: Optional[str] = None,
                     enable_summary: bool = False,
                     summary_timeout: Optional[float] = None,
                     summaries: Optional[Dict[int, str]] = None) -> Tuple[str, int]:
        """
        Keep the most recent messages that fit ``max_tokens``.

        Dropped messages are replaced by a single summary or placeholder line.

        Returns:
            Tuple of (history text, number of messages included)
        """
        if not messages:
            return "", 0

        lines: List[str] = []
        used = 0
        dropped = 0

        for i in range(len(messages) - 1, -1, -1):
            msg = messages[i]
            line = f"{_ROLE_NAMES.get(msg.role, msg.role.capitalize())}: {msg.content}"
            tokens = self.tokenizer.estimate_tokens(line, model)
            if used + tokens > max_tokens:
                dropped = i + 1
                break
            lines.append(line)
            used += tokens

        lines.reverse()
        if dropped:
            if enable_summary:
                if summaries is not None and dropped in summaries:
                    summary = summaries[dropped]
                else:
                    summary = summarize_with_fallback(self.summarizer, list(messages[:dropped]),
                                                      summary_timeout)
                    if summaries is not None:
                        summaries[dropped] = summary
                lines.insert(0, f"[Earlier conversation ({dropped} messages): {summary}]")
            else:
                lines.insert(0, f"[Earlier conversation: {dropped} messages not shown]")

        included = len(messages) - dropped
        logger.debug("History: included %d/%d messages, %d tokens", included, len(messages), used)
        return "\n".join(lines), included

    def build_examples(self, character: Character, max_tokens: int, model: Optional[str] = None) -> str:
        """Format example pairs that fit ``max_tokens``; never cuts a pair in half."""
        try:
            examples = parse_examples(character)
        except (ValueError, TypeError) as e:
            logger.warning("Failed to parse example messages for %s: %s", character.name, e)
            return ""

        formatted: List[str] = []
        used = 0
        for user, assistant in examples:
            block = f"User: {user}\nAssistant: {assistant}"
            tokens = self.tokenizer.estimate_tokens(block, model)
            if used + tokens > max_tokens:
                break
            formatted.append(block)
            used += tokens
        return "\n\n".join(formatted)

    def build_context_data(self, components: ContextComponents, character: Character) -> Dict[str, Any]:
        """Assemble the variables handed to the prompt template."""
        wi = components.world_info
        before = [wi[slot] for slot in _BEFORE_SLOTS if wi.get(slot)]
        before.extend(text for slot, text in wi.items()
                      if slot not in INSERTION_POSITIONS and text)

        chat_history = components.history
        if wi.get("in_chat"):
            chat_history = "\n".join(p for p in (chat_history, wi["in_chat"]) if p)

        data = {
            "char": character.name or "Character",
            "user": "User",
            "description": character.description,
            "personality": character.personality,
            "scenario": character.scenario,
            "character_core": components.character_core,
            "chat_history": chat_history,
            "mes_examples": components.examples,
            "wi_before": "\n\n".join(before),
            "wi_after": wi.get("after_history", ""),
            "author_note": character.author_note or wi.get("author_note_top", ""),
            "post_history_instructions": (character.post_history_instructions
                                          or wi.get("author_note_bottom", "")),
            "system_prompt": character.system_prompt,
            "jailbreak": character.jailbreak_prompt,
            "world_info": bool(wi),
            "example_separator": character.example_separator or "###",
            "chat_start": character.chat_start or "<START>",
        }
        for slot, text in wi.items():
            data["wi_" + re.sub(r'\W', '_', slot)] = text
        return data

    def _render(self, components: ContextComponents, character: Character,
                options: ContextBuildOptions) -> str:
        data = self.build_context_data(components, character)
        return self.renderer.render(options.template_name or DEFAULT_TEMPLATE, data)

    def _fit(self, prompt_tokens: int, components: ContextComponents, character: Character,
             history: Sequence[ChatMessage], allocation: BudgetAllocation,
             options: ContextBuildOptions, summaries: Dict[int, str]) -> Tuple[str, int]:
        """Shrink history, then examples, then world info until the prompt fits."""
        available = allocation.available_tokens
        model = options.model
        history_budget = allocation.history
        prompt = ""

        while True:
            history_budget = max(0, history_budget - (prompt_tokens - available))
            components.history, included = self.trim_history(
                history, history_budget, model, options.enable_summary,
                options.summary_timeout, summaries)
            components.stats["history_included"] = included
            components.stats["history_dropped"] = len(history) - included
            prompt = self._render(components, character, options)
            prompt_tokens = self.tokenizer.estimate_tokens(prompt, model)
            if prompt_tokens <= available or history_budget == 0:
                break

        if prompt_tokens > available and components.examples:
            components.examples = ""
            prompt = self._render(components, character, options)
            prompt_tokens = self.tokenizer.estimate_tokens(prompt, model)

        if prompt_tokens > available and components.world_info:
            components.world_info = {}
            prompt = self._render(components, character, options)
            prompt_tokens = self.tokenizer.estimate_tokens(prompt, model)

        components.stats["fitted"] = True
        self._update_usage(components, available, model)
        return prompt, prompt_tokens

    def _update_usage(self, components: ContextComponents, available: int, model: Optional[str]):
        character_tokens = self.tokenizer.estimate_tokens(components.character_core, model)
        world_info_tokens = sum(self.tokenizer.estimate_tokens(t, model)
                                for t in components.world_info.values())
        history_tokens = self.tokenizer.estimate_tokens(components.history, model)
        examples_tokens = self.tokenizer.estimate_tokens(components.examples, model)
        total = character_tokens + world_info_tokens + history_tokens + examples_tokens

        components.stats.update({
            "character_tokens": character_tokens,
            "world_info_tokens": world_info_tokens,
            "history_tokens": history_tokens,
            "examples_tokens": examples_tokens,
            "total_tokens": total,
            "available_tokens": available,
            "utilization_rate": round(total / available * 100, 2) if available > 0 else 0.0,
        })
        logger.debug("Actual usage: char=%d, WI=%d, history=%d, examples=%d, total=%d/%d",
                     character_tokens, world_info_tokens, history_tokens, examples_tokens,
                     total, available)
