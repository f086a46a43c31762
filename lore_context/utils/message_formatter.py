"""
Message formatter for converting built context into provider message formats.
"""

from typing import Any, Dict, List, Sequence


class MessageFormatter:
    """Converts ``[system, user]`` messages to different LLM message formats."""

    def to_openai_messages(self, messages: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
        """
        OpenAI chat format: system and user messages as-is, empty ones dropped.

        Args:
            messages: Messages produced by the context builder

        Returns:
            OpenAI format message list
        """
        return [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m.get("content", "").strip()
        ]

    def to_anthropic_messages(self, messages: Sequence[Dict[str, str]]) -> Dict[str, Any]:
        """
        Anthropic format: system text moves to a separate field.

        Consecutive non-system messages with the same role are merged, since the
        API expects alternating turns.

        Returns:
            ``{"system": str, "messages": [...]}``
        """
        system_parts = []
        turns: List[Dict[str, str]] = []

        for m in messages:
            content = m.get("content", "").strip()
            if not content:
                continue
            if m["role"] == "system":
                system_parts.append(content)
            elif turns and turns[-1]["role"] == m["role"]:
                turns[-1]["content"] += "\n\n" + content
            else:
                turns.append({"role": m["role"], "content": content})

        return {"system": "\n\n".join(system_parts), "messages": turns}

    def get_role_summary(self, messages: Sequence[Dict[str, str]]) -> Dict[str, int]:
        """Count messages per role."""
        counts: Dict[str, int] = {}
        for m in messages:
            counts[m["role"]] = counts.get(m["role"], 0) + 1
        return counts
