"""Cron cadence expressions (seconds, minutes, hours, day-of-month, month, day-of-week, [year]).

Supported syntax per field: ``*``, single values, lists (``1,3,5``), ranges
(``MON-FRI``), increments (``0/15``, ``*/5``, ``10-40/10``) and month/day names.
``?`` ("no specific value") is accepted in day-of-month or day-of-week, never
both. Day-of-week runs 1-7 with 1 = Sunday.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from journal_digest.exceptions import CronExpressionError

logger = logging.getLogger(__name__)

MAX_YEAR = 2099

MONTH_NAMES: dict[str, int] = {
    name: i + 1
    for i, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]
    )
}
DAY_NAMES: dict[str, int] = {
    name: i + 1 for i, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"])
}


@dataclass(frozen=True)
class _FieldSpec:
    name: str
    low: int
    high: int
    names: dict[str, int] | None = None
    allows_unspecified: bool = False


_FIELDS: list[_FieldSpec] = [
    _FieldSpec("second", 0, 59),
    _FieldSpec("minute", 0, 59),
    _FieldSpec("hour", 0, 23),
    _FieldSpec("day-of-month", 1, 31, allows_unspecified=True),
    _FieldSpec("month", 1, 12, MONTH_NAMES),
    _FieldSpec("day-of-week", 1, 7, DAY_NAMES, allows_unspecified=True),
    _FieldSpec("year", 1970, MAX_YEAR),
]


def _parse_value(token: str, spec: _FieldSpec) -> int:
    upper = token.upper()
    if spec.names and upper in spec.names:
        return spec.names[upper]
    if not token.isdigit():
        raise CronExpressionError(f"Invalid {spec.name} value: {token!r}")
    value = int(token)
    if not spec.low <= value <= spec.high:
        raise CronExpressionError(
            f"{spec.name} value {value} out of range {spec.low}-{spec.high}"
        )
    return value


def _parse_field(text: str, spec: _FieldSpec) -> frozenset[int] | None:
    """Parse one field into its set of allowed values (None means ``?``)."""
    if text == "?":
        if not spec.allows_unspecified:
            raise CronExpressionError(f"'?' is not allowed in the {spec.name} field")
        return None

    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise CronExpressionError(f"Empty list item in {spec.name} field: {text!r}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise CronExpressionError(f"Invalid {spec.name} increment: {step_text!r}")
            step = int(step_text)

        if part == "*":
            start, end = spec.low, spec.high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            start = _parse_value(start_text, spec)
            end = _parse_value(end_text, spec)
            if start > end:
                raise CronExpressionError(f"Inverted {spec.name} range: {part!r}")
        else:
            start = _parse_value(part, spec)
            # "5/15" means from 5 to the end of the range every 15
            end = spec.high if step > 1 else start

        values.update(range(start, end + 1, step))

    return frozenset(values)


def _cron_weekday(day: date) -> int:
    """Day-of-week in cron numbering (1 = Sunday .. 7 = Saturday)."""
    return (day.weekday() + 1) % 7 + 1


class CronExpression:
    """A parsed cadence expression able to compute its next fire time."""

    def __init__(self, expression: str):
        self.expression = expression.strip()
        parts = self.expression.split()
        if len(parts) not in (6, 7):
            raise CronExpressionError(
                f"Expected 6 or 7 fields, got {len(parts)}: {expression!r}"
            )
        if len(parts) == 6:
            parts.append("*")

        parsed = [_parse_field(text, spec) for text, spec in zip(parts, _FIELDS)]
        (self.seconds, self.minutes, self.hours, self.days_of_month,
         self.months, self.days_of_week, self.years) = parsed

        dom_text, dow_text = parts[3], parts[5]
        if self.days_of_month is None and self.days_of_week is None:
            raise CronExpressionError("'?' cannot be used in both day-of-month and day-of-week")
        if self.days_of_month is not None and self.days_of_week is not None:
            # Only one day field may be constrained; the other must be '?' or '*'
            if dom_text == "*":
                self.days_of_month = None
            elif dow_text == "*":
                self.days_of_week = None
            else:
                raise CronExpressionError(
                    "Specifying both day-of-month and day-of-week is not supported; "
                    "use '?' in one of them"
                )

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"

    def _day_matches(self, day: date) -> bool:
        if self.days_of_month is not None:
            return day.day in self.days_of_month
        return _cron_weekday(day) in self.days_of_week

    def matches(self, moment: datetime) -> bool:
        """Return True if the expression fires at this exact second (wall-clock)."""
        return (
            moment.year in self.years
            and moment.month in self.months
            and self._day_matches(moment.date())
            and moment.hour in self.hours
            and moment.minute in self.minutes
            and moment.second in self.seconds
        )

    def next_fire_time(self, after: datetime, tz: tzinfo | None = None) -> datetime | None:
        """Return the first fire time strictly after ``after``, or None if there is none.

        Args:
            after: Reference instant. Aware datetimes are converted to ``tz``.
            tz: Zone the expression is evaluated in. Defaults to ``after``'s zone.

        Returns:
            An aware datetime in ``tz`` (naive if both are naive).
        """
        zone = tz or after.tzinfo
        if after.tzinfo is not None and zone is not None:
            after = after.astimezone(zone)

        t = after.replace(tzinfo=None, microsecond=0) + timedelta(seconds=1)

        while t.year <= MAX_YEAR:
            if t.year not in self.years:
                t = datetime(t.year + 1, 1, 1)
                continue
            if t.month not in self.months:
                t = datetime(t.year + 1, 1, 1) if t.month == 12 else datetime(t.year, t.month + 1, 1)
                continue
            if not self._day_matches(t.date()):
                t = datetime(t.year, t.month, t.day) + timedelta(days=1)
                continue
            if t.hour not in self.hours:
                t = t.replace(minute=0, second=0) + timedelta(hours=1)
                continue
            if t.minute not in self.minutes:
                t = t.replace(second=0) + timedelta(minutes=1)
                continue
            if t.second not in self.seconds:
                t += timedelta(seconds=1)
                continue
            return t.replace(tzinfo=zone) if zone is not None else t

        logger.warning("Cron expression %r has no fire time after %s", self.expression, after)
        return None
