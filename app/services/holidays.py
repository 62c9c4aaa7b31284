from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Optional

import holidays

from app.core.config import settings


class HolidayService:
    """Public holidays for one country, used to thin out recurring availability.

    Uses the `holidays` library. With no country configured every lookup
    reports no holidays.
    """

    def __init__(self, country: Optional[str] = None):
        self.country = country if country is not None else settings.HOLIDAY_COUNTRY

    @staticmethod
    @lru_cache(maxsize=32)
    def _calendar(country: str, year: int) -> holidays.HolidayBase:
        return holidays.country_holidays(country, years=year)

    def _day(self, value) -> date:
        return value.date() if isinstance(value, datetime) else value

    def is_holiday(self, value) -> bool:
        if not self.country:
            return False
        d = self._day(value)
        return d in self._calendar(self.country, d.year)

    def get_holiday_name(self, value) -> Optional[str]:
        if not self.country:
            return None
        d = self._day(value)
        return self._calendar(self.country, d.year).get(d)

    def holidays_between(self, start: date, end: date) -> dict[date, str]:
        """Holidays in the inclusive range ``[start, end]``."""
        if not self.country or end < start:
            return {}
        found: dict[date, str] = {}
        current = start
        while current <= end:
            name = self.get_holiday_name(current)
            if name:
                found[current] = name
            current += timedelta(days=1)
        return found
