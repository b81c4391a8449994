"""
Inclusive date ranges and the ranges shown by each calendar view.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List

from .exceptions import ValidationError
from .time_model import WallClockDate, date_span, format_date, parse_local_date


class CalendarView(str, Enum):
    MONTH = "month"
    WEEK = "week"
    DAY = "day"
    LIST = "list"


# The list view shows this many months starting at the anchor date.
LIST_VIEW_MONTHS = 3

# The day view prefetches this many days on either side.
DAY_VIEW_PREFETCH_DAYS = 3


@dataclass(frozen=True, order=True)
class DateRange:
    """
    An inclusive range of calendar dates.

    Invariant: start_date <= end_date.
    """
    start_date: WallClockDate
    end_date: WallClockDate

    def __post_init__(self):
        if self.start_date > self.end_date:
            raise ValidationError(
                f"Range start {self.start_date} must not be after end {self.end_date}"
            )

    @classmethod
    def single(cls, date: WallClockDate) -> "DateRange":
        return cls(start_date=date, end_date=date)

    @classmethod
    def parse(cls, start: str, end: str) -> "DateRange":
        return cls(start_date=parse_local_date(start), end_date=parse_local_date(end))

    @classmethod
    def for_view(cls, anchor: WallClockDate, view: CalendarView) -> "DateRange":
        """
        Range displayed by ``view`` around ``anchor``.

        Weeks start on Sunday.
        """
        view = CalendarView(view)

        if view is CalendarView.MONTH:
            day = anchor.to_date()
            return cls(
                start_date=WallClockDate.from_date(day.start_of("month")),
                end_date=WallClockDate.from_date(day.end_of("month")),
            )

        if view is CalendarView.WEEK:
            sunday = anchor.add_days(-anchor.weekday_index)
            return cls(start_date=sunday, end_date=sunday.add_days(6))

        if view is CalendarView.DAY:
            return cls.single(anchor)

        return cls(start_date=anchor, end_date=anchor.add_months(LIST_VIEW_MONTHS))

    @property
    def days(self) -> int:
        """Number of dates in the range."""
        return self.end_date.to_date().toordinal() - self.start_date.to_date().toordinal() + 1

    def contains(self, date: WallClockDate) -> bool:
        return self.start_date <= date <= self.end_date

    def covers(self, other: "DateRange") -> bool:
        return self.start_date <= other.start_date and other.end_date <= self.end_date

    def overlaps(self, other: "DateRange") -> bool:
        return self.start_date <= other.end_date and other.start_date <= self.end_date

    def dates(self) -> Iterator[WallClockDate]:
        return date_span(self.start_date, self.end_date)

    def __str__(self) -> str:
        return f"{format_date(self.start_date)}..{format_date(self.end_date)}"


def adjacent_ranges(anchor: WallClockDate, view: CalendarView) -> List[DateRange]:
    """
    Neighbouring ranges worth prefetching for a view.

    Month and week views yield the previous and next period; the day view
    yields the three days on either side. The list view has no neighbours.
    """
    view = CalendarView(view)

    if view is CalendarView.MONTH:
        return [
            DateRange.for_view(anchor.add_months(-1), view),
            DateRange.for_view(anchor.add_months(1), view),
        ]

    if view is CalendarView.WEEK:
        return [
            DateRange.for_view(anchor.add_days(-7), view),
            DateRange.for_view(anchor.add_days(7), view),
        ]

    if view is CalendarView.DAY:
        ranges: List[DateRange] = []
        for offset in range(1, DAY_VIEW_PREFETCH_DAYS + 1):
            ranges.append(DateRange.single(anchor.add_days(-offset)))
            ranges.append(DateRange.single(anchor.add_days(offset)))
        return ranges

    return []
