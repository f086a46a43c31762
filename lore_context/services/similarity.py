"""Interface for embedding-based (vector) entry activation."""

import math
from abc import ABC, abstractmethod
from typing import List, Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped to [0, 1]; mismatched or zero vectors give 0."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(0.0, min(1.0, dot / (norm_a * norm_b)))


class SimilarityProvider(ABC):
    """Embeds text so vector-type entries can be compared with the current message."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Return the embedding of ``text``."""
        pass

    def cosine_similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)
