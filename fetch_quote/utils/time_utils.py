from __future__ import annotations

from datetime import datetime, time

import pytz

MARKET_TIMEZONE = "America/New_York"
SESSION_OPEN = time(9, 30)
SESSION_CLOSE = time(16, 0)


def _in_tz(tz_name: str, now: datetime | None) -> datetime:
    tz = pytz.timezone(tz_name)
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return tz.localize(now)
    return now.astimezone(tz)


def is_weekend(tz_name: str = MARKET_TIMEZONE, now: datetime | None = None) -> bool:
    return _in_tz(tz_name, now).weekday() >= 5


def is_market_open(tz_name: str = MARKET_TIMEZONE, now: datetime | None = None) -> bool:
    """
    Rough US regular-session check (9:30-16:00 Eastern, weekdays, no holiday calendar).
    ``tz_name`` only controls how a naive ``now`` is interpreted.
    """
    local = _in_tz(tz_name, now)
    eastern = local.astimezone(pytz.timezone(MARKET_TIMEZONE))
    if eastern.weekday() >= 5:
        return False
    return SESSION_OPEN <= eastern.time() <= SESSION_CLOSE


def market_status(tz_name: str = MARKET_TIMEZONE, now: datetime | None = None) -> str:
    if is_market_open(tz_name, now):
        return "open"
    if is_weekend(MARKET_TIMEZONE, _in_tz(tz_name, now)):
        return "weekend"
    return "closed"
