"""Cron and interval helpers: validation, display, and next-fire computation."""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

from apscheduler.triggers.cron import CronTrigger

_INTERVAL_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_INTERVAL_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}

# POSIX cron numbers Sunday as 0 (or 7); APScheduler numbers Monday as 0
_POSIX_DOW = {"0": "sun", "1": "mon", "2": "tue", "3": "wed", "4": "thu", "5": "fri", "6": "sat", "7": "sun"}
_FULL_WEEK = {"0-6", "0-7", "1-7"}


def _posix_day_of_week(field: str) -> str:
    """Translate a POSIX day-of-week field into APScheduler's name-based syntax."""
    if field in _FULL_WEEK:
        return "*"
    return re.sub(r"\b[0-7]\b", lambda m: _POSIX_DOW[m.group(0)], field.lower())


def _trigger(expression: str) -> CronTrigger:
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(f"Invalid cron expression: {expression!r}")
    minute, hour, day, month, day_of_week = parts
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_posix_day_of_week(day_of_week),
        timezone="UTC",
    )


def validate_cron_expression(expression: str) -> tuple[bool, str]:
    """Validate a 5-part cron expression. Returns (is_valid, error_message)."""
    parts = expression.strip().split()
    if len(parts) != 5:
        return False, f"Expected 5 fields (minute hour day month weekday), got {len(parts)}"
    try:
        _trigger(expression)
    except (ValueError, KeyError) as exc:
        return False, f"Invalid cron expression: {exc}"
    return True, ""


def parse_interval(text: str) -> timedelta:
    """Parse an interval string such as ``30s``, ``15m``, ``2h`` or ``1d``."""
    match = _INTERVAL_RE.match(text)
    if not match:
        raise ValueError(f"Invalid interval: {text!r} (expected e.g. '15m', '2h', '1d')")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError(f"Interval must be positive: {text!r}")
    return timedelta(**{_INTERVAL_UNITS[match.group(2)]: amount})


def is_interval(text: str) -> bool:
    return _INTERVAL_RE.match(text) is not None


def next_cron_fire(expression: str, after: datetime) -> datetime:
    """Return the first fire time of ``expression`` strictly after ``after``."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=UTC)
    trigger = _trigger(expression)
    fire = trigger.get_next_fire_time(None, after + timedelta(microseconds=1))
    if fire is None:
        raise ValueError(f"Cron expression never fires: {expression!r}")
    return fire.astimezone(UTC)


def cron_to_human(expression: str) -> str:
    """Describe the cadences the job table uses; anything else is returned as is."""
    parts = expression.strip().split()
    if len(parts) != 5 or parts[2:] != ["*", "*", "*"]:
        return expression
    minute, hour = parts[:2]

    if hour == "*" and minute.startswith("*/"):
        return f"Every {minute[2:]} minutes"
    if minute == "0" and hour.startswith("*/"):
        return f"Every {hour[2:]} hours"
    if minute.isdigit() and hour.isdigit():
        return f"Every day at {int(hour)}:{int(minute):02d} UTC"
    return expression


def interval_to_human(text: str) -> str:
    match = _INTERVAL_RE.match(text)
    if not match:
        return text
    amount, unit = int(match.group(1)), _INTERVAL_UNITS[match.group(2)]
    if amount == 1:
        unit = unit[:-1]
    return f"Every {amount} {unit}"
