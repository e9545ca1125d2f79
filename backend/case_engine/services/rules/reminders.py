"""Reminder schedule for a single deadline."""
from datetime import datetime, timedelta
from typing import List, Optional

from ...timeutils import ensure_utc, utc_now

REMINDER_OFFSETS_DAYS = (7, 3, 1)


def calculate_reminder_dates(due_at: datetime, now: Optional[datetime] = None) -> List[datetime]:
    """
    Send times at 7, 3 and 1 days before due_at, in that order.

    Only send times strictly after `now` are returned. Past offsets are
    dropped, never backfilled.
    """
    due_at = ensure_utc(due_at)
    now = ensure_utc(now) if now is not None else utc_now()

    send_times = [due_at - timedelta(days=days) for days in REMINDER_OFFSETS_DAYS]
    return [send_at for send_at in send_times if send_at > now]
