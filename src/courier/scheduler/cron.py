"""
Cron recurrence rules, evaluated in UTC by APScheduler's CronTrigger.

Format: standard 5-field crontab, ``minute hour day month day_of_week``
(e.g. ``"*/15 * * * *"``, ``"0 3 * * mon-fri"``, ``"0 3 * * 1-5"``).

Day-of-week numbers follow crontab: 0 and 7 are Sunday, 1 is Monday.
APScheduler counts 0 as Monday, so numbers are rewritten as day names
before the trigger is built.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger

from ..errors import InvalidCronExpressionError

_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _weekday_names(part: str) -> List[str]:
    """Expand one comma-separated day-of-week term to day names."""
    if part == "*" or any(c.isalpha() for c in part):
        return [part]

    span, has_step, step_text = part.partition("/")
    step = int(step_text) if has_step else 1
    if span == "*":
        first, last = 0, 6
    elif "-" in span:
        first_text, _, last_text = span.partition("-")
        first, last = int(first_text), int(last_text)
    else:
        first = int(span)
        last = 6 if has_step else first

    if step < 1 or not 0 <= first <= last <= 7:
        raise ValueError(f"invalid day of week '{part}'")
    return [_WEEKDAYS[day % 7] for day in range(first, last + 1, step)]


def crontab_day_of_week(field: str) -> str:
    """Rewrite a crontab day-of-week field using day names."""
    names: List[str] = []
    for part in field.split(","):
        names.extend(_weekday_names(part))
    return ",".join(dict.fromkeys(names))


class CronSchedule:
    def __init__(self, expression: str):
        if not (expression or "").strip():
            raise InvalidCronExpressionError(expression or "", "expression is empty")
        self.expression = expression.strip()
        try:
            fields = self.expression.split()
            if len(fields) == 5:
                fields[4] = crontab_day_of_week(fields[4])
            self._trigger = CronTrigger.from_crontab(" ".join(fields), timezone="UTC")
        except ValueError as e:
            raise InvalidCronExpressionError(self.expression, str(e)) from e

    def next_after(self, moment: datetime) -> Optional[datetime]:
        """First occurrence strictly after ``moment``, or None if there is none."""
        # CronTrigger returns fire times >= now; nudge past ``moment`` itself
        fire_time = self._trigger.get_next_fire_time(None, moment + timedelta(microseconds=1))
        if fire_time is None:
            return None
        fire_time = fire_time.astimezone(timezone.utc)
        return fire_time if fire_time > moment else None

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"
