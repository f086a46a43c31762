"""External capabilities consumed by the activation engine and context builder."""

from .similarity import SimilarityProvider, cosine_similarity
from .stores import HistoryStore, InMemoryHistoryStore, InMemoryKnowledgeStore, KnowledgeStore
from .summarizer import Summarizer, statistic_summary, summarize_with_fallback

__all__ = [
    "HistoryStore",
    "InMemoryHistoryStore",
    "InMemoryKnowledgeStore",
    "KnowledgeStore",
    "SimilarityProvider",
    "Summarizer",
    "cosine_similarity",
    "statistic_summary",
    "summarize_with_fallback",
]
