"""Tests for cron expression parsing."""

from datetime import datetime

import pytest
from zoneinfo import ZoneInfo

from backend.services.scheduling.cron import build_cron_trigger, translate_day_of_week, validate_cron_expression

UTC = ZoneInfo("UTC")


def _next_fire(expression: str, after: datetime) -> datetime:
    trigger = build_cron_trigger(expression, timezone="UTC")
    return trigger.get_next_fire_time(None, after)


def test_six_field_expression_has_leading_seconds():
    fire = _next_fire("30 0 2 * * *", datetime(2024, 1, 1, 0, 0, tzinfo=UTC))

    assert fire == datetime(2024, 1, 1, 2, 0, 30, tzinfo=UTC)


def test_five_field_expression_fires_on_the_minute():
    fire = _next_fire("15 3 * * *", datetime(2024, 1, 1, 0, 0, tzinfo=UTC))

    assert fire == datetime(2024, 1, 1, 3, 15, 0, tzinfo=UTC)


def test_weekday_zero_is_sunday():
    # 2024-01-01 is a Monday.
    fire = _next_fire("0 2 2 * * 0", datetime(2024, 1, 1, 0, 0, tzinfo=UTC))

    assert fire == datetime(2024, 1, 7, 2, 2, 0, tzinfo=UTC)
    assert fire.weekday() == 6


def test_weekday_seven_is_sunday():
    fire = _next_fire("0 0 * * 7", datetime(2024, 1, 1, 0, 0, tzinfo=UTC))

    assert fire.weekday() == 6


@pytest.mark.parametrize(
    "field,expected",
    [
        ("*", "*"),
        ("1-5", "mon,tue,wed,thu,fri"),
        ("0,6", "sun,sat"),
        ("*/2", "sun,tue,thu,sat"),
        ("mon-fri", "mon-fri"),
    ],
)
def test_translate_day_of_week(field, expected):
    assert translate_day_of_week(field) == expected


@pytest.mark.parametrize("expression", ["", "* * * *", "0 0 0 0 * * *", "61 * * * *", "0 0 * * 8"])
def test_invalid_expressions_are_rejected(expression):
    with pytest.raises(ValueError):
        validate_cron_expression(expression)


def test_validate_returns_stripped_expression():
    assert validate_cron_expression("  0 0 0 * * *  ") == "0 0 0 * * *"
