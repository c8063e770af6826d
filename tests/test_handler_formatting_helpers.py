from __future__ import annotations

from datetime import date

from approval_center.handlers.common import (
    business_days_with_half_days,
    format_date_range,
    format_day_count,
    format_duration,
)


def test_business_days_skip_weekends_and_holidays() -> None:
    friday, monday = date(2026, 3, 13), date(2026, 3, 16)

    assert business_days_with_half_days(friday, "full_day", monday, "full_day") == 2
    assert business_days_with_half_days(friday, "pm", monday, "am") == 1
    assert business_days_with_half_days(friday, "full_day", monday, "full_day", holidays={monday}) == 1
    assert business_days_with_half_days(monday, "am", monday, "am") == 0.5


def test_day_count_labels() -> None:
    assert format_day_count(1) == "1 day"
    assert format_day_count(3) == "3 days"
    assert format_day_count(2.5) == "2.5 days"
    assert format_day_count(0.5) == "0.5 days"


def test_date_range_labels() -> None:
    assert format_date_range(date(2026, 3, 16), date(2026, 3, 16)) == "Mar 16, 2026"
    assert format_date_range(date(2026, 1, 5), date(2026, 1, 9)) == "Jan 05 - Jan 09, 2026"
    assert format_date_range(date(2025, 12, 29), date(2026, 1, 2)) == "Dec 29, 2025 - Jan 02, 2026"


def test_duration_labels() -> None:
    assert format_duration(None) == "In progress"
    assert format_duration(45) == "45m"
    assert format_duration(120) == "2h"
    assert format_duration(150) == "2h 30m"
