"""Budget manager for splitting the prompt token budget across sections."""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

from ..config.settings import BudgetConfig

logger = logging.getLogger(__name__)


@dataclass
class BudgetAllocation:
    """Token budget of each prompt section for one build."""
    available_tokens: int
    character: int
    world_info: int
    history: int
    system: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "character": self.character,
            "world_info": self.world_info,
            "history": self.history,
            "system": self.system,
            "total": self.available_tokens,
        }


class BudgetManager:
    """Allocates the available tokens across character, world info, history and examples."""

    def __init__(self, budget_config: Optional[BudgetConfig] = None):
        """
        Initialize budget manager.

        Args:
            budget_config: Section fractions (defaults to 15/25/50/10)
        """
        self.config = budget_config or BudgetConfig()

    @staticmethod
    def calculate_budget(max_context_tokens: int, reserve_tokens: int) -> int:
        """
        Calculate available input budget.

        Args:
            max_context_tokens: Model's context window limit
            reserve_tokens: Tokens reserved for the reply

        Returns:
            Available input budget (never negative)
        """
        return max(0, max_context_tokens - reserve_tokens)

    def allocate(self, available_tokens: int, has_world_info: bool) -> BudgetAllocation:
        """
        Allocate ``available_tokens`` across sections.

        When no knowledge entry is active the world-info share shrinks and the
        difference goes to history.

        Args:
            available_tokens: Tokens left after the reply reserve
            has_world_info: Whether any entry was activated

        Returns:
            Per-section allocation, each share rounded down
        """
        cfg = self.config
        world_info = cfg.world_info if has_world_info else cfg.world_info_empty
        history = cfg.history if has_world_info else cfg.history_empty

        allocation = BudgetAllocation(
            available_tokens=available_tokens,
            character=math.floor(available_tokens * cfg.character),
            world_info=math.floor(available_tokens * world_info),
            history=math.floor(available_tokens * history),
            system=math.floor(available_tokens * cfg.system),
        )
        logger.debug("Token budgets: char=%d, WI=%d, history=%d, system=%d, total=%d",
                     allocation.character, allocation.world_info, allocation.history,
                     allocation.system, available_tokens)
        return allocation

    def validate_configuration(self) -> bool:
        """Check that every fraction is in [0, 1] and both splits sum to at most 1."""
        values = (self.config.character, self.config.world_info, self.config.world_info_empty,
                  self.config.history, self.config.history_empty, self.config.system)
        if any(v < 0 or v > 1 for v in values):
            return False
        return self.config.total(True) <= 1.0 + 1e-9 and self.config.total(False) <= 1.0 + 1e-9
