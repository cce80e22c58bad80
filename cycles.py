"""
cycles.py
Billing-cycle boundaries. A cycle is one calendar month on the UTC clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from schemas import Account

_ONE_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already; aware ones are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def month_start(year: int, month: int) -> datetime:
    # Normalise month overflow/underflow (e.g. month 13 -> January next year)
    y = year + (month - 1) // 12
    m = (month - 1) % 12 + 1
    return datetime(y, m, 1, tzinfo=timezone.utc)


def _cycle_at(now: datetime, offset: int) -> tuple[datetime, datetime]:
    now = as_utc(now)
    start = month_start(now.year, now.month + offset)
    end = month_start(now.year, now.month + offset + 1) - _ONE_TICK
    return start, end


def current_cycle(now: datetime) -> tuple[datetime, datetime]:
    """First and last instant (inclusive) of the month containing `now`."""
    return _cycle_at(now, 0)


def previous_cycle(now: datetime) -> tuple[datetime, datetime]:
    return _cycle_at(now, -1)


def next_cycle(now: datetime) -> tuple[datetime, datetime]:
    return _cycle_at(now, 1)


def cycle_key(moment: datetime) -> str:
    moment = as_utc(moment)
    return f"{moment.year:04d}-{moment.month:02d}"


def had_prior_cycle(account: Account, now: datetime) -> bool:
    """
    True iff the account existed before the previous cycle started, i.e. it
    lived through one full month before the current one and may roll over.
    """
    start, _ = previous_cycle(now)
    return as_utc(account.created_at) < start


def in_cycle(moment: datetime, cycle: tuple[datetime, datetime]) -> bool:
    start, end = cycle
    return start <= as_utc(moment) <= end
