# cloudguard/scheduling/occurrence.py
"""
Occurrence calculator
─────────────────────
Pure functions that turn a recurrence rule (frequency + hour + optional
weekday / day-of-month) and "now" into the next absolute run time.

All arithmetic is done in UTC. Naive datetimes are treated as UTC, which
is how every timestamp column in cloudguard.models is stored.

Monthly rules whose day does not exist in the target month are clamped to
that month's last day (31 -> Feb 28/29 -> Mar 31).
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class Frequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value) -> "Frequency":
        """Unknown or missing frequencies fall back to daily."""
        if isinstance(value, Frequency):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.DAILY


@dataclass(frozen=True)
class ScheduleSpec:
    frequency: Frequency
    hour_utc: int
    day_of_week: Optional[int] = None   # 0 = Sunday
    day_of_month: Optional[int] = None  # 1..31
    enabled: bool = True
    next_run_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account) -> Optional["ScheduleSpec"]:
        """Build a spec from an account row, or None if it has no usable rule."""
        if not account.schedule_frequency or account.schedule_hour is None:
            return None
        return cls(
            frequency=Frequency.parse(account.schedule_frequency),
            hour_utc=int(account.schedule_hour),
            day_of_week=account.schedule_day_of_week,
            day_of_month=account.schedule_day_of_month,
            enabled=bool(account.schedule_enabled),
            next_run_at=account.next_scheduled_scan,
        )


def _sunday_based_weekday(dt: datetime) -> int:
    # datetime.weekday(): Monday = 0; schedules use Sunday = 0
    return (dt.weekday() + 1) % 7


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _at_day(dt: datetime, year: int, month: int, day: int) -> datetime:
    return dt.replace(year=year, month=month, day=min(day, _days_in_month(year, month)))


def _next_daily(candidate: datetime, now: datetime) -> datetime:
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def _next_weekly(candidate: datetime, now: datetime, day_of_week: Optional[int]) -> datetime:
    target = (day_of_week if day_of_week is not None else 0) % 7
    days_ahead = (target - _sunday_based_weekday(now)) % 7
    if days_ahead == 0 and candidate <= now:
        days_ahead = 7
    return candidate + timedelta(days=days_ahead)


def _next_monthly(candidate: datetime, now: datetime, day_of_month: Optional[int]) -> datetime:
    day = min(max(day_of_month or 1, 1), 31)
    candidate = _at_day(candidate, now.year, now.month, day)
    if candidate <= now:
        if now.month == 12:
            candidate = _at_day(candidate, now.year + 1, 1, day)
        else:
            candidate = _at_day(candidate, now.year, now.month + 1, day)
    return candidate


def next_occurrence(spec: ScheduleSpec, now: datetime) -> datetime:
    """
    Return the first time strictly after ``now`` that matches ``spec``.

    The result keeps the tz-awareness of ``now``: aware inputs are
    converted to UTC, naive inputs are assumed to already be UTC.
    """
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)

    hour = min(max(int(spec.hour_utc), 0), 23)
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)

    frequency = Frequency.parse(spec.frequency)
    if frequency is Frequency.WEEKLY:
        return _next_weekly(candidate, now, spec.day_of_week)
    if frequency is Frequency.MONTHLY:
        return _next_monthly(candidate, now, spec.day_of_month)
    return _next_daily(candidate, now)


def compute_next_run(frequency, hour, day_of_week=None, day_of_month=None, now=None) -> datetime:
    """Convenience wrapper used by the HTTP layer; ``now`` defaults to naive UTC."""
    from cloudguard.models import now_utc

    spec = ScheduleSpec(
        frequency=Frequency.parse(frequency),
        hour_utc=int(hour),
        day_of_week=day_of_week,
        day_of_month=day_of_month,
    )
    return next_occurrence(spec, now or now_utc())
