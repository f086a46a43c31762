"""Tests for the sticky / cooldown / delay state machine."""

from datetime import datetime, timedelta, timezone

from conftest import make_entry
from lore_context.core.entry_state import EntryState, new_record, resolve_state

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestResolveState:
    """One test per transition of resolve_state."""

    def test_no_record_is_idle(self):
        assert resolve_state(make_entry("e"), None, NOW) is EntryState.IDLE

    def test_no_record_with_unmet_delay(self):
        entry = make_entry("e", delay=3)
        assert resolve_state(entry, None, NOW, message_count=2) is EntryState.DELAYED

    def test_no_record_with_met_delay(self):
        entry = make_entry("e", delay=3)
        assert resolve_state(entry, None, NOW, message_count=3) is EntryState.IDLE

    def test_delay_ignored_once_a_record_exists(self):
        entry = make_entry("e", delay=3)
        record = new_record(entry, "chat", NOW - timedelta(minutes=10), message_count=5)
        assert resolve_state(entry, record, NOW, message_count=0) is EntryState.IDLE

    def test_open_sticky_window(self):
        entry = make_entry("e", sticky=2, cooldown=5)
        record = new_record(entry, "chat", NOW, 0)
        assert resolve_state(entry, record, NOW + timedelta(minutes=1)) is EntryState.STICKY

    def test_sticky_expired_moves_to_cooldown(self):
        entry = make_entry("e", sticky=2, cooldown=5)
        record = new_record(entry, "chat", NOW, 0)
        assert resolve_state(entry, record, NOW + timedelta(minutes=2)) is EntryState.COOLDOWN

    def test_cooldown_expired_is_idle(self):
        entry = make_entry("e", sticky=2, cooldown=5)
        record = new_record(entry, "chat", NOW, 0)
        assert resolve_state(entry, record, NOW + timedelta(minutes=5)) is EntryState.IDLE

    def test_sticky_disabled_on_entry_ignores_record_window(self):
        """Test that clearing sticky on the entry stops forced activation."""
        record = new_record(make_entry("e", sticky=2), "chat", NOW, 0)
        assert resolve_state(make_entry("e"), record, NOW) is EntryState.IDLE


class TestNewRecord:
    """Tests for activation record creation."""

    def test_windows_are_minutes(self):
        record = new_record(make_entry("e", sticky=3, cooldown=4), "chat", NOW, 7)
        assert record.expires_at == NOW + timedelta(minutes=3)
        assert record.cooldown_until == NOW + timedelta(minutes=4)
        assert record.message_count == 7

    def test_no_windows(self):
        record = new_record(make_entry("e"), "chat", NOW, 0)
        assert record.expires_at is None
        assert record.cooldown_until is None
