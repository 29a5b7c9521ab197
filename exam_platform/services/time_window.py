"""Authoritative attempt deadline.

Every caller that needs to know whether an attempt is still open goes through
``hard_end_time``; duration arithmetic is not repeated anywhere else.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Optional


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hard_end_time(exam, attempt) -> datetime:
    """min(exam.end_time, attempt.started_at + exam.duration_minutes)."""
    duration_end = as_utc(attempt.started_at) + timedelta(minutes=exam.duration_minutes)
    return min(as_utc(exam.end_time), duration_end)


def is_expired(exam, attempt, now: Optional[datetime] = None) -> bool:
    now = as_utc(now) if now else utcnow()
    return now > hard_end_time(exam, attempt)


def remaining_seconds(exam, attempt, now: Optional[datetime] = None) -> int:
    now = as_utc(now) if now else utcnow()
    remaining = (hard_end_time(exam, attempt) - now).total_seconds()
    return max(0, math.floor(remaining))
