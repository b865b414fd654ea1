"""
Payroll months.

A payroll month is addressed as ``YYYY-MM`` and covers the calendar month
inclusive of both ends.
"""

import re
from calendar import monthrange
from dataclasses import dataclass
from datetime import date

from app.utils.error_handling import InvalidMonthException


_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class PayrollMonth:
    year: int
    month: int

    @classmethod
    def parse(cls, value: str) -> "PayrollMonth":
        match = _MONTH_PATTERN.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise InvalidMonthException(str(value))
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            raise InvalidMonthException(value)
        return cls(year, month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.days_in_month)

    @property
    def days_in_month(self) -> int:
        return monthrange(self.year, self.month)[1]

    @property
    def working_days(self) -> int:
        """Six-day work week approximation: floor(days * 6 / 7)."""
        return self.days_in_month * 6 // 7

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
