"""Tests for TokenizerService."""

import pytest

from lore_context.core.tokenizer_service import (
    BaseTokenizer,
    HeuristicTokenizer,
    SimpleTokenizer,
    TokenizerService,
    fallback_estimate,
)
from lore_context.utils.token_cache import TTLCache


class ExplodingTokenizer(BaseTokenizer):
    def count_tokens(self, text: str) -> int:
        raise RuntimeError("tokenizer crashed")


class CountingTokenizer(BaseTokenizer):
    def __init__(self):
        self.calls = 0

    def count_tokens(self, text: str) -> int:
        self.calls += 1
        return len(text)


class TestTokenizers:
    """Test cases for the built-in tokenizers."""

    def test_heuristic_english(self):
        assert HeuristicTokenizer().count_tokens("hello world!") == 3

    def test_heuristic_cjk(self):
        assert HeuristicTokenizer().count_tokens("你好世") == 2

    def test_heuristic_code_chars(self):
        assert HeuristicTokenizer().count_tokens("{}();") == 2

    def test_empty_text(self):
        assert HeuristicTokenizer().count_tokens("") == 0
        assert SimpleTokenizer().count_tokens("") == 0

    def test_simple_rounds_up(self):
        assert SimpleTokenizer().count_tokens("abcde") == 2

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            TokenizerService("nope")


class TestTokenizerService:
    """Test cases for TokenizerService."""

    def test_default_backend(self):
        service = TokenizerService()
        assert service.get_tokenizer_info()["backend"] == "HeuristicTokenizer"
        assert service.estimate_tokens("abcd") == 1

    def test_per_model_tokenizer(self):
        service = TokenizerService("simple")
        service.register_model("char-model", CountingTokenizer())
        assert service.estimate_tokens("abcdefgh", "char-model") == 8
        assert service.estimate_tokens("abcdefgh", "other") == 2
        assert service.get_tokenizer_info()["models"] == ["char-model"]

    def test_failure_falls_back_to_length_over_four(self):
        """Test that estimation never raises."""
        service = TokenizerService(ExplodingTokenizer())
        assert service.estimate_tokens("abcdefghi") == 3
        assert fallback_estimate("abcdefghi") == 3

    def test_count_messages_adds_overhead(self):
        service = TokenizerService(CountingTokenizer())
        messages = [{"role": "user", "content": "abc"}, {"role": "assistant", "content": "de"}]
        assert service.count_messages(messages) == 5 + 2 * 4

    def test_count_batch_and_limits(self):
        service = TokenizerService(CountingTokenizer())
        assert service.count_batch(["ab", "cde"]) == 5
        assert service.exceeds_limit("abcdef", 5)
        assert not service.exceeds_limit("abcde", 5)

    def test_truncate_to_limit(self):
        service = TokenizerService(CountingTokenizer())
        assert service.truncate_to_limit("abcdefghij", 4) == "abcd"
        assert service.truncate_to_limit("abc", 4) == "abc"
        assert service.truncate_to_limit("abc", 0) == ""

    def test_truncate_with_heuristic(self):
        service = TokenizerService()
        text = "word " * 40
        truncated = service.truncate_to_limit(text, 10)
        assert service.estimate_tokens(truncated) <= 10
        assert text.startswith(truncated)

    def test_cache_avoids_recount(self):
        tokenizer = CountingTokenizer()
        service = TokenizerService(tokenizer, cache=TTLCache(60))
        assert service.estimate_tokens("hello", "m") == 5
        assert service.estimate_tokens("hello", "m") == 5
        assert tokenizer.calls == 1

    def test_cache_keys_on_full_text(self):
        """Test texts sharing a prefix and length get their own counts."""
        cached = TokenizerService("heuristic", cache=TTLCache(60))
        plain = TokenizerService("heuristic")
        latin = "x" * 100 + "a" * 60
        cjk = "x" * 100 + "龙" * 60

        assert cached.estimate_tokens(latin) == 40
        assert cached.estimate_tokens(cjk) == 65
        assert cached.estimate_tokens(cjk) == plain.estimate_tokens(cjk)
