"""Summaries for history that no longer fits the budget."""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import List, Optional, Sequence

from ..core.models import ChatMessage

logger = logging.getLogger(__name__)


class Summarizer(ABC):
    """External capability that condenses old chat messages."""

    @abstractmethod
    def summarize(self, messages: List[ChatMessage]) -> str:
        """Return a short summary of ``messages``."""
        pass


def statistic_summary(messages: Sequence[ChatMessage]) -> str:
    """Local fallback: message counts per role."""
    user = sum(1 for m in messages if m.role == "user")
    assistant = sum(1 for m in messages if m.role == "assistant")
    return f"{len(messages)} messages exchanged ({user} user, {assistant} assistant)"


def summarize_with_fallback(summarizer: Optional[Summarizer],
                            messages: List[ChatMessage],
                            timeout: Optional[float] = None) -> str:
    """
    Summarize ``messages``, falling back to the count statistic.

    Args:
        summarizer: Summary capability, or None
        messages: Messages to condense
        timeout: Seconds to wait for the summarizer; None waits indefinitely

    Returns:
        The summary, or the statistic when the summarizer is absent, fails,
        times out, or returns nothing
    """
    if summarizer is None:
        return statistic_summary(messages)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="summarizer")
    try:
        future = executor.submit(summarizer.summarize, list(messages))
        summary = future.result(timeout=timeout)
    except FutureTimeout:
        logger.warning("Summary timed out after %ss, using message statistics", timeout)
        return statistic_summary(messages)
    except Exception as e:
        logger.warning("Summary failed, using message statistics: %s", e)
        return statistic_summary(messages)
    finally:
        executor.shutdown(wait=False)

    summary = (summary or "").strip()
    return summary or statistic_summary(messages)
