"""Trading-session classification from New-York wall-clock time.

Bands (minutes since NY midnight):
  [240, 570)  → pre      04:00–09:30 ET
  [570, 960)  → regular  09:30–16:00 ET
  otherwise   → post

Weekends and exchange holidays are not considered.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from market_movers.models.datatypes import Session

NEW_YORK = ZoneInfo("America/New_York")

PRE_OPEN_MINUTE = 240
REGULAR_OPEN_MINUTE = 570
REGULAR_CLOSE_MINUTE = 960

SESSION_HOURS = {
    Session.PRE: "4:00–9:30 AM ET",
    Session.REGULAR: "9:30 AM–4:00 PM ET",
    Session.POST: "4:00 PM–4:00 AM ET",
}


def session_for_minute(minute_of_day: int) -> Session:
    """Map a New-York minute of day (0–1439) onto its session band."""
    if PRE_OPEN_MINUTE <= minute_of_day < REGULAR_OPEN_MINUTE:
        return Session.PRE
    if REGULAR_OPEN_MINUTE <= minute_of_day < REGULAR_CLOSE_MINUTE:
        return Session.REGULAR
    return Session.POST


def classify_session(now: Optional[datetime] = None) -> Session:
    """Return the session for ``now`` (defaults to the current instant).

    Naive datetimes are interpreted as UTC.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    ny = now.astimezone(NEW_YORK)
    return session_for_minute(ny.hour * 60 + ny.minute)
