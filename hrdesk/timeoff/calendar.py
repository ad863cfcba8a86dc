"""Business-day arithmetic for time-off requests.

Pure functions only — no I/O, no clock. The service layer loads the
company's weekend definition and holidays and passes them in.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Mapping, Union

from hrdesk.common.constants import WEEKDAY_KEYS

WeekendDefinition = Mapping[str, bool]


def weekend_days(weekends: Union[WeekendDefinition, Iterable[int]]) -> set[int]:
    """Normalise a weekend definition to ``date.weekday()`` numbers.

    Accepts the stored mapping form (``{"sat": True, "sun": True}``; full
    day names such as ``"saturday"`` are accepted too) or an iterable of
    weekday ints (0=Mon … 6=Sun).
    """
    if isinstance(weekends, Mapping):
        days: set[int] = set()
        for key, is_off in weekends.items():
            weekday = WEEKDAY_KEYS.get(str(key).lower()[:3])
            if is_off and weekday is not None:
                days.add(weekday)
        return days
    return {int(d) for d in weekends}


def iter_dates(start_date: date, end_date: date) -> Iterable[date]:
    """Yield every calendar day in ``[start_date, end_date]``."""
    if end_date < start_date:
        return
    current = start_date
    while True:
        yield current
        if current == end_date:
            return
        current += timedelta(days=1)


def is_business_day(day: date, weekly_offs: set[int], holidays: set[date]) -> bool:
    return day.weekday() not in weekly_offs and day not in holidays


def count_chargeable_days(
    start_date: date,
    end_date: date,
    weekends: Union[WeekendDefinition, Iterable[int]],
    holidays: Iterable[date] = (),
) -> int:
    """Count business days in ``[start_date, end_date]``, both inclusive.

    A day is skipped when its weekday is marked non-working in *weekends*
    or its date is in *holidays*. An inverted range yields 0.
    """
    if end_date < start_date:
        return 0

    weekly_offs = weekend_days(weekends)
    holiday_set = set(holidays)
    return sum(
        1 for day in iter_dates(start_date, end_date)
        if is_business_day(day, weekly_offs, holiday_set)
    )
