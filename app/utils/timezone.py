from datetime import datetime, timedelta
from typing import Tuple
import pytz

from app.config import settings

BUSINESS_TZ = pytz.timezone(settings.BUSINESS_TIMEZONE)


class Clock:
    """Source of the current instant. Always returns an aware UTC datetime."""

    def now(self) -> datetime:
        return datetime.now(pytz.utc)


class FixedClock(Clock):
    """Clock pinned to one instant; advance it explicitly."""

    def __init__(self, at: datetime):
        self._at = to_utc(at)

    def now(self) -> datetime:
        return self._at

    def advance(self, **kwargs) -> None:
        self._at = self._at + timedelta(**kwargs)


def to_utc(dt):
    """Normalize to aware UTC; naive values are assumed to be UTC already"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)


def to_business_tz(dt):
    """Convert datetime to the business timezone"""
    return to_utc(dt).astimezone(BUSINESS_TZ)


def business_date_key(dt) -> str:
    """Business calendar date as YYYY-MM-DD"""
    return to_business_tz(dt).strftime("%Y-%m-%d")


def business_day_utc_range(date_key: str) -> Tuple[datetime, datetime]:
    """UTC [start, end) covering one business calendar day"""
    day = datetime.strptime(date_key, "%Y-%m-%d")
    start = BUSINESS_TZ.localize(day)
    end = BUSINESS_TZ.localize(day + timedelta(days=1))
    return start.astimezone(pytz.utc), end.astimezone(pytz.utc)


def compact_date(date_key: str) -> str:
    """YYYY-MM-DD -> YYYYMMDD"""
    return date_key.replace("-", "")
