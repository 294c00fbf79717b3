"""
Helpers for YYYY-MM payroll periods.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date

from exceptions import ValidationError

PERIOD_PATTERN = r"^\d{4}-\d{2}$"


@dataclass(frozen=True)
class Period:
    """A calendar month, e.g. Period(2024, 3) for "2024-03"."""
    year: int
    month: int

    @classmethod
    def parse(cls, value: str) -> "Period":
        if not value or not re.match(PERIOD_PATTERN, value):
            raise ValidationError(f"Invalid period '{value}', expected YYYY-MM")
        year, month = int(value[:4]), int(value[5:7])
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid month in period '{value}'")
        return cls(year, month)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def label(self) -> str:
        return self.first_day.strftime("%B %Y")

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

