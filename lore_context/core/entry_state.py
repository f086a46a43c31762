"""Sticky / cooldown / delay state of a knowledge entry within one chat."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .models import ActivationRecord, KnowledgeEntry

# Sticky and cooldown are stored as counts but applied as wall-clock minutes.
WINDOW_UNIT = timedelta(minutes=1)


class EntryState(Enum):
    """Where an entry stands before trigger evaluation."""
    IDLE = "idle"
    DELAYED = "delayed"
    STICKY = "sticky"
    COOLDOWN = "cooldown"


def resolve_state(entry: KnowledgeEntry,
                  record: Optional[ActivationRecord],
                  now: datetime,
                  message_count: Optional[int] = None) -> EntryState:
    """
    Decide the entry's state from its latest activation record.

    Args:
        entry: Entry being evaluated
        record: Most recent activation record for (entry, chat), if any
        now: Current time
        message_count: Messages already in the chat; only consulted for delay

    Returns:
        STICKY to force activation, DELAYED or COOLDOWN to skip, IDLE to evaluate triggers
    """
    if record is None:
        if entry.delay > 0 and (message_count or 0) < entry.delay:
            return EntryState.DELAYED
        return EntryState.IDLE

    if entry.sticky > 0 and record.expires_at is not None and now < record.expires_at:
        return EntryState.STICKY

    if entry.cooldown > 0 and record.cooldown_until is not None and now < record.cooldown_until:
        return EntryState.COOLDOWN

    return EntryState.IDLE


def new_record(entry: KnowledgeEntry, chat_id: str, now: datetime, message_count: int) -> ActivationRecord:
    """Build the record written when ``entry`` fires at ``now``."""
    return ActivationRecord(
        entry_id=entry.id,
        chat_id=chat_id,
        activated_at=now,
        expires_at=now + entry.sticky * WINDOW_UNIT if entry.sticky > 0 else None,
        cooldown_until=now + entry.cooldown * WINDOW_UNIT if entry.cooldown > 0 else None,
        message_count=message_count,
    )
