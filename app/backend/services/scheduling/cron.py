"""Cron expression helpers for job scheduling.

Two expression shapes are accepted:

- 5 fields: `minute hour day month day_of_week` (classic crontab)
- 6 fields: `second minute hour day month day_of_week`

Numeric day-of-week values follow crontab semantics (0 and 7 are Sunday). The
APScheduler 3.x `CronTrigger` counts weekdays from Monday, so numeric values
are translated to weekday names before the trigger is built.
"""

from __future__ import annotations

import re
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger


_WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]
_NUMERIC_DAY = re.compile(r"^\d+$")


def _translate_weekday(value: str) -> str:
    """Translate a single crontab weekday token (number or name).

    Args:
        value: Token such as "0", "7" or "mon".

    Returns:
        str: APScheduler weekday token.

    Raises:
        ValueError: If a numeric weekday is out of range.
    """

    if not _NUMERIC_DAY.match(value):
        return value

    number = int(value)
    if number < 0 or number > 7:
        raise ValueError(f"Invalid day of week (expected 0-7): {value!r}")
    return _WEEKDAY_NAMES[number]


def translate_day_of_week(field: str) -> str:
    """Translate a crontab day-of-week field to APScheduler syntax.

    Args:
        field: Field such as "0", "1-5", "*/2" or "mon,wed".

    Returns:
        str: Equivalent APScheduler field.

    Raises:
        ValueError: If the field contains invalid weekday numbers.
    """

    if field == "*":
        return field

    # Numeric ranges and steps are expanded to explicit names because crontab
    # counts from Sunday; "*/2" and "0-6" would otherwise select other days.
    names: List[str] = []
    for part in field.split(","):
        step = 1
        if "/" in part:
            part, step_value = part.split("/", 1)
            if not _NUMERIC_DAY.match(step_value) or int(step_value) < 1:
                raise ValueError(f"Invalid day of week step: {step_value!r}")
            step = int(step_value)

        if part == "*":
            start, end = "0", "6"
        elif "-" in part:
            start, end = part.split("-", 1)
        else:
            start, end = part, (part if step == 1 else "6")

        if not (_NUMERIC_DAY.match(start) and _NUMERIC_DAY.match(end)):
            token = f"{_translate_weekday(start)}-{_translate_weekday(end)}" if start != end else _translate_weekday(start)
            names.append(token if step == 1 else f"{token}/{step}")
            continue

        first, last = int(start), int(end)
        if first > last:
            raise ValueError(f"Invalid day of week range: {part!r}")
        for number in range(first, last + 1, step):
            name = _translate_weekday(str(number))
            if name not in names:
                names.append(name)

    return ",".join(names)


def build_cron_trigger(expression: str, *, timezone: Optional[str] = None) -> CronTrigger:
    """Build an APScheduler cron trigger from a 5- or 6-field expression.

    Args:
        expression: Cron expression.
        timezone: Optional timezone name; the scheduler's local zone when omitted.

    Returns:
        CronTrigger: Trigger instance.

    Raises:
        ValueError: If the expression cannot be parsed.
    """

    fields = str(expression or "").split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise ValueError(f"Invalid cron expression (expected 5 or 6 fields): {expression!r}")

    kwargs = {
        "second": second,
        "minute": minute,
        "hour": hour,
        "day": day,
        "month": month,
        "day_of_week": translate_day_of_week(day_of_week),
    }
    if timezone:
        kwargs["timezone"] = timezone

    try:
        return CronTrigger(**kwargs)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid cron expression {expression!r}: {exc}") from exc


def validate_cron_expression(expression: str) -> str:
    """Validate a cron expression and return it unchanged.

    Args:
        expression: Cron expression.

    Returns:
        str: The expression, stripped.

    Raises:
        ValueError: If the expression is invalid.
    """

    build_cron_trigger(expression)
    return str(expression).strip()
