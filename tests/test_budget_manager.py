"""Tests for BudgetManager."""

from lore_context.config.settings import BudgetConfig
from lore_context.core.budget_manager import BudgetAllocation, BudgetManager


class TestBudgetManager:
    """Test cases for BudgetManager."""

    def test_calculate_budget(self):
        """Test available budget after the reply reserve."""
        assert BudgetManager.calculate_budget(1000, 200) == 800
        assert BudgetManager.calculate_budget(100, 200) == 0

    def test_allocate_with_world_info(self):
        """Test the split used when entries were activated."""
        allocation = BudgetManager().allocate(800, has_world_info=True)

        assert allocation == BudgetAllocation(
            available_tokens=800,
            character=120,
            world_info=200,
            history=400,
            system=80,
        )

    def test_allocate_without_world_info(self):
        """Test that the unused world-info share moves to history."""
        allocation = BudgetManager().allocate(800, has_world_info=False)

        assert allocation.world_info == 40
        assert allocation.history == 560
        assert allocation.character == 120
        assert allocation.system == 80

    def test_shares_are_floored(self):
        allocation = BudgetManager().allocate(7, has_world_info=True)
        assert allocation.history == 3
        assert allocation.character == 1
        assert allocation.system == 0

    def test_allocation_never_exceeds_available(self):
        manager = BudgetManager()
        for available in (0, 1, 99, 1234, 8192):
            for has_world_info in (True, False):
                allocation = manager.allocate(available, has_world_info)
                used = (allocation.character + allocation.world_info
                        + allocation.history + allocation.system)
                assert used <= available

    def test_as_dict(self):
        allocation = BudgetManager().allocate(1000, has_world_info=True)
        assert allocation.as_dict() == {
            "character": 150,
            "world_info": 250,
            "history": 500,
            "system": 100,
            "total": 1000,
        }

    def test_custom_fractions(self):
        manager = BudgetManager(BudgetConfig(history=0.6, world_info=0.15))
        assert manager.allocate(1000, has_world_info=True).history == 600

    def test_validate_configuration(self):
        """Test fraction validation."""
        assert BudgetManager().validate_configuration() is True
        assert BudgetManager(BudgetConfig(history=0.9)).validate_configuration() is False
        assert BudgetManager(BudgetConfig(system=-0.1)).validate_configuration() is False
