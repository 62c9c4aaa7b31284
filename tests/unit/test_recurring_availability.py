"""Weekly template expansion and holiday skipping."""

from datetime import date

import pytest

from app.core.exceptions import ValidationError
from app.services.availability import AvailabilityService, expand_recurring_availability
from app.services.holidays import HolidayService
from tests.fixtures.scheduling_fixtures import standard_day

MONDAY = date(2025, 3, 10)
SUNDAY = date(2025, 3, 23)


class TestExpandRecurringAvailability:
    """Test the pure expansion of a weekly template."""

    def test_weekday_filter(self):
        template = standard_day()
        result = expand_recurring_availability(template, MONDAY, SUNDAY, [0, 2])

        assert [d for d, _ in result] == [
            date(2025, 3, 10),
            date(2025, 3, 12),
            date(2025, 3, 17),
            date(2025, 3, 19),
        ]
        assert all(spec is template for _, spec in result)

    def test_exclusions(self):
        result = expand_recurring_availability(
            standard_day(), MONDAY, SUNDAY, range(5), exclude_dates=[date(2025, 3, 11)]
        )
        dates = [d for d, _ in result]
        assert len(dates) == 9
        assert date(2025, 3, 11) not in dates

    def test_no_matching_weekday(self):
        assert expand_recurring_availability(standard_day(), MONDAY, MONDAY, [6]) == []

    def test_invalid_weekday(self):
        with pytest.raises(ValidationError):
            expand_recurring_availability(standard_day(), MONDAY, SUNDAY, [7])

    def test_reversed_range(self):
        with pytest.raises(ValidationError):
            expand_recurring_availability(standard_day(), SUNDAY, MONDAY, [0])


class TestCreateRecurring:
    """Test materializing a template into stored windows."""

    async def test_existing_dates_are_kept(
        self, availability_service, availability_store, resource_id
    ):
        existing = availability_store.put(
            resource_id, date(2025, 3, 12), standard_day(break_time=None)
        )

        result = await availability_service.create_recurring(
            resource_id, standard_day(), MONDAY, date(2025, 3, 16), [0, 1, 2, 3, 4]
        )

        assert result.created_dates == [
            date(2025, 3, 10),
            date(2025, 3, 11),
            date(2025, 3, 13),
            date(2025, 3, 14),
        ]
        assert result.skipped_existing_dates == [date(2025, 3, 12)]
        assert availability_store.windows[(resource_id, date(2025, 3, 12))] is existing
        created = availability_store.windows[(resource_id, MONDAY)]
        assert created.is_recurring
        assert created.break_interval is not None

    async def test_excluded_dates_are_reported(self, availability_service, resource_id):
        result = await availability_service.create_recurring(
            resource_id,
            standard_day(),
            MONDAY,
            SUNDAY,
            [0],
            exclude_dates=[date(2025, 3, 17), date(2025, 3, 18)],
        )
        assert result.created_dates == [MONDAY]
        # Tuesday is not a template weekday, so only Monday counts as excluded
        assert result.excluded_dates == [date(2025, 3, 17)]

    async def test_public_holidays_are_skipped(
        self, availability_store, booking_store, resource_id, test_settings
    ):
        service = AvailabilityService(
            availability_store,
            booking_store,
            holiday_service=HolidayService(country="US"),
            config=test_settings,
        )

        result = await service.create_recurring(
            resource_id, standard_day(), date(2025, 6, 30), date(2025, 7, 6), range(5)
        )

        assert date(2025, 7, 4) not in result.created_dates
        assert result.excluded_dates == [date(2025, 7, 4)]
        assert len(result.created_dates) == 4

    async def test_holidays_kept_when_requested(
        self, availability_store, booking_store, resource_id, test_settings
    ):
        service = AvailabilityService(
            availability_store,
            booking_store,
            holiday_service=HolidayService(country="US"),
            config=test_settings,
        )

        result = await service.create_recurring(
            resource_id,
            standard_day(),
            date(2025, 7, 4),
            date(2025, 7, 4),
            [4],
            skip_holidays=False,
        )
        assert result.created_dates == [date(2025, 7, 4)]


class TestHolidayService:
    def test_lookup(self):
        service = HolidayService(country="US")
        assert service.is_holiday(date(2025, 12, 25))
        assert not service.is_holiday(date(2025, 12, 23))
        assert service.get_holiday_name(date(2025, 7, 4)) is not None

    def test_no_country(self):
        service = HolidayService(country="")
        assert not service.is_holiday(date(2025, 12, 25))
        assert service.holidays_between(date(2025, 1, 1), date(2025, 12, 31)) == {}
