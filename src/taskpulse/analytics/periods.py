from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskpulse.models import _naive_utc, utc_now

Moment = Union[datetime, date]


def as_datetime(moment: Moment) -> datetime:
    """Dates count as the very end of that day. Aware values become naive UTC."""
    if isinstance(moment, datetime):
        return _naive_utc(moment)
    return datetime.combine(moment, time.max)

def as_date(moment: Moment) -> date:
    if isinstance(moment, datetime):
        return _naive_utc(moment).date()
    return moment


class DateRange(BaseModel):
    """Closed interval [start, end]."""

    model_config = ConfigDict(frozen=True)

    start: datetime = Field(description="First instant in the range")
    end: datetime = Field(description="Last instant in the range")

    @field_validator('start', 'end', mode='after')
    @classmethod
    def validate_naive_utc(cls, v):
        return _naive_utc(v)

    @model_validator(mode='after')
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def contains(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.start <= _naive_utc(moment) <= self.end

    def preceding(self) -> 'DateRange':
        """The half-open period of equal length that ends where this one starts."""
        return DateRange(start=self.start - self.length, end=self.start)

    @classmethod
    def trailing(cls, now: Optional[Moment] = None, days: int = 30) -> 'DateRange':
        end = as_datetime(now) if now is not None else utc_now()
        return cls(start=end - timedelta(days=days), end=end)


def comparison_periods(now: Optional[Moment] = None, days: int = 30) -> Tuple[DateRange, DateRange]:
    """(current, previous) windows of ``days`` each, the current one ending at ``now``."""
    current = DateRange.trailing(now, days)
    return current, current.preceding()

def in_preceding(period: DateRange, moment: Optional[datetime]) -> bool:
    """Membership in the period before ``period``; its end is exclusive."""
    previous = period.preceding()
    return moment is not None and previous.start <= _naive_utc(moment) < previous.end

def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1

def month_start(year: int, month: int) -> date:
    return date(year, month, 1)
