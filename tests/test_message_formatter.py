"""Tests for MessageFormatter."""

from lore_context.utils.message_formatter import MessageFormatter


class TestMessageFormatter:
    """Test cases for MessageFormatter."""

    def setup_method(self):
        self.formatter = MessageFormatter()
        self.messages = [
            {"role": "system", "content": "You are Mira."},
            {"role": "user", "content": "Hello"},
        ]

    def test_openai_passthrough(self):
        assert self.formatter.to_openai_messages(self.messages) == self.messages

    def test_openai_drops_empty(self):
        messages = [{"role": "system", "content": "  "}, {"role": "user", "content": "Hi"}]
        assert self.formatter.to_openai_messages(messages) == [{"role": "user", "content": "Hi"}]

    def test_anthropic_moves_system(self):
        result = self.formatter.to_anthropic_messages(self.messages)
        assert result == {
            "system": "You are Mira.",
            "messages": [{"role": "user", "content": "Hello"}],
        }

    def test_anthropic_merges_consecutive_roles(self):
        messages = [
            {"role": "user", "content": "one"},
            {"role": "user", "content": "two"},
            {"role": "assistant", "content": "three"},
        ]
        result = self.formatter.to_anthropic_messages(messages)
        assert result["system"] == ""
        assert result["messages"] == [
            {"role": "user", "content": "one\n\ntwo"},
            {"role": "assistant", "content": "three"},
        ]

    def test_role_summary(self):
        assert self.formatter.get_role_summary(self.messages) == {"system": 1, "user": 1}
