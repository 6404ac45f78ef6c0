import calendar
import re
from dataclasses import dataclass
from typing import Optional

from models import PeriodKind

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


class PeriodSelectionError(ValueError):
    pass


@dataclass(frozen=True)
class MonthKey:
    year: int
    month: int  # 0-indexed

    def __post_init__(self) -> None:
        if not 0 <= self.month <= 11:
            raise ValueError(f"Month must be between 0 and 11, got {self.month}")

    @property
    def storage_key(self) -> str:
        return f"{self.year:04d}-{self.month + 1:02d}"

    def previous(self) -> "MonthKey":
        if self.month == 0:
            return MonthKey(self.year - 1, 11)
        return MonthKey(self.year, self.month - 1)


def parse_month_key(value: str) -> MonthKey:
    """Decode a ``YYYY-MM`` storage key (1-indexed month) into a 0-indexed MonthKey."""
    match = _MONTH_KEY_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid month key: {value!r} (expected YYYY-MM)")
    year = int(match.group(1))
    month = int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in key: {value!r}")
    return MonthKey(year, month - 1)


def month_label(year: int, month: int) -> str:
    return f"{calendar.month_name[month + 1]} {year:04d}"


def year_label(year: int) -> str:
    return f"Year {year:04d}"


def period_label(kind: PeriodKind, year: int, month: Optional[int] = None) -> str:
    if kind == PeriodKind.yearly:
        return year_label(year)
    if month is None:
        raise PeriodSelectionError("Monthly period requires a month")
    if not 0 <= month <= 11:
        raise PeriodSelectionError(f"Month must be between 0 and 11, got {month}")
    return month_label(year, month)
