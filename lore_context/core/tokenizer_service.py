"""Tokenizer service for pluggable, per-model token estimation."""

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional, Union

from ..utils.token_cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-3.5-turbo"
MESSAGE_OVERHEAD_TOKENS = 4


def fallback_estimate(text: str) -> int:
    """Length/4 approximation used whenever a tokenizer fails."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


class BaseTokenizer(ABC):
    """Abstract base class for tokenizers."""

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        """Count tokens in the given text."""
        pass


class SimpleTokenizer(BaseTokenizer):
    """Character-length tokenizer: one token per ``avg_chars_per_token`` chars."""

    def __init__(self, avg_chars_per_token: float = 4.0):
        self.avg_chars_per_token = avg_chars_per_token

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.avg_chars_per_token)


class HeuristicTokenizer(BaseTokenizer):
    """Rule-based estimate that weighs CJK and code characters differently.

    English averages four characters per token, CJK ideographs about 1.5 and
    bracket/punctuation heavy code about three.
    """

    cjk_pattern = re.compile(r"[\u4e00-\u9fa5]")
    code_pattern = re.compile(r'[{}()\[\]<>;:]')

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        cjk = len(self.cjk_pattern.findall(text))
        code = len(self.code_pattern.findall(text))
        other = len(text) - cjk - code
        return math.ceil(cjk / 1.5 + code / 3 + other / 4)


class TiktokenTokenizer(BaseTokenizer):
    """Tokenizer using tiktoken (install the ``tiktoken`` extra)."""

    def __init__(self, encoding_name: str = "cl100k_base"):
        import tiktoken
        self.encoding = tiktoken.get_encoding(encoding_name)

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encoding.encode(text))


def create_tokenizer(backend: str, **kwargs) -> BaseTokenizer:
    if backend == "heuristic":
        return HeuristicTokenizer()
    elif backend == "simple":
        return SimpleTokenizer(**kwargs)
    elif backend == "tiktoken":
        return TiktokenTokenizer(**kwargs)
    raise ValueError(f"Unknown tokenizer backend: {backend}")


class TokenizerService:
    """Unified token estimator with per-model tokenizers.

    Estimation never raises: a failing tokenizer falls back to a length/4
    approximation for that chunk.
    """

    def __init__(self,
                 backend: Union[str, BaseTokenizer] = "heuristic",
                 cache: Optional[TTLCache] = None,
                 **kwargs):
        """
        Initialize tokenizer service.

        Args:
            backend: Backend name ('heuristic', 'simple', 'tiktoken') or a tokenizer instance
            cache: Optional TTL cache for memoising counts
            **kwargs: Additional arguments for the named backend
        """
        if isinstance(backend, BaseTokenizer):
            self.tokenizer = backend
        else:
            self.tokenizer = create_tokenizer(backend, **kwargs)
        self.model_tokenizers: Dict[str, BaseTokenizer] = {}
        self.cache = cache

    def register_model(self, model: str, tokenizer: BaseTokenizer):
        """Use ``tokenizer`` for every estimate requested for ``model``."""
        self.model_tokenizers[model] = tokenizer

    def tokenizer_for(self, model: Optional[str] = None) -> BaseTokenizer:
        if model and model in self.model_tokenizers:
            return self.model_tokenizers[model]
        return self.tokenizer

    def estimate_tokens(self, text: str, model: Optional[str] = None) -> int:
        """
        Estimate the token count of ``text`` for ``model``.

        Args:
            text: Text to measure
            model: Model identifier selecting a registered tokenizer

        Returns:
            Estimated token count
        """
        if not text:
            return 0

        cache_key = None
        if self.cache is not None:
            digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
            cache_key = f"tokens:{model or DEFAULT_MODEL}:{digest}"
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        try:
            count = self.tokenizer_for(model).count_tokens(text)
        except Exception as e:
            logger.warning("Token estimation failed for model %s, using length/4: %s", model, e)
            count = fallback_estimate(text)

        if cache_key is not None:
            self.cache.set(cache_key, count)
        return count

    def count_batch(self, texts: Iterable[str], model: Optional[str] = None) -> int:
        return sum(self.estimate_tokens(text, model) for text in texts)

    def count_messages(self, messages: List[Mapping[str, str]], model: Optional[str] = None) -> int:
        """Count chat messages including a fixed per-message role overhead."""
        content = sum(self.estimate_tokens(m.get("content", ""), model) for m in messages)
        return content + len(messages) * MESSAGE_OVERHEAD_TOKENS

    def exceeds_limit(self, text: str, limit: int, model: Optional[str] = None) -> bool:
        return self.estimate_tokens(text, model) > limit

    def truncate_to_limit(self, text: str, limit: int, model: Optional[str] = None) -> str:
        """
        Cut ``text`` to the longest prefix estimated at no more than ``limit`` tokens.

        Args:
            text: Text to truncate
            limit: Maximum token count
            model: Model identifier

        Returns:
            The original text if it fits, otherwise the longest fitting prefix
        """
        if self.estimate_tokens(text, model) <= limit:
            return text

        left, right = 0, len(text)
        result = ""
        while left < right:
            mid = (left + right + 1) // 2
            chunk = text[:mid]
            if self.estimate_tokens(chunk, model) <= limit:
                result = chunk
                left = mid
            else:
                right = mid - 1
        return result

    def get_tokenizer_info(self) -> Dict[str, Union[str, List[str]]]:
        """Get information about the configured tokenizers."""
        info = {
            "backend": type(self.tokenizer).__name__,
            "models": sorted(self.model_tokenizers),
        }
        encoding = getattr(self.tokenizer, "encoding", None)
        if encoding is not None:
            info["encoding_name"] = encoding.name
        return info
