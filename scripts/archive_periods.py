#!/usr/bin/env python3
"""Monthly archive periods: enumeration and classification relative to today."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Iterator, Optional, Union

# Pipermail always names archives in English, independent of the server locale.
MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
PAYLOAD_SUFFIX = ".txt.gz"

UNIT_FUTURE = "future"
UNIT_CURRENT = "current"
UNIT_PAST = "past"


@dataclass(frozen=True, order=True)
class PeriodUnit:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be in 1..12, got {self.month}.")

    @property
    def month_name(self) -> str:
        return MONTH_NAMES[self.month - 1]

    @property
    def filename(self) -> str:
        return f"{self.year}-{self.month_name}{PAYLOAD_SUFFIX}"

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def unit_from_filename(name: str) -> Optional[PeriodUnit]:
    if not name.endswith(PAYLOAD_SUFFIX):
        return None
    stem = name[: -len(PAYLOAD_SUFFIX)]
    year_text, sep, month_text = stem.partition("-")
    if not sep or not year_text.isdigit() or month_text not in MONTH_NAMES:
        return None
    return PeriodUnit(int(year_text), MONTH_NAMES.index(month_text) + 1)


def parse_year(value: Union[int, str]) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid year {value!r}.")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"Invalid year {value!r}.")
    return int(text)


def iter_period_units(years: Iterable[Union[int, str]]) -> Iterator[PeriodUnit]:
    """Yield January..December for each year, keeping the caller's year order."""
    for raw_year in years:
        year = parse_year(raw_year)
        for month in range(1, 13):
            yield PeriodUnit(year, month)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def is_future(unit: PeriodUnit, today: date) -> bool:
    return (unit.year, unit.month) > (today.year, today.month)


def is_past(unit: PeriodUnit, today: date) -> bool:
    return (unit.year, unit.month) < (today.year, today.month)


def classify_unit(unit: PeriodUnit, today: date) -> str:
    if is_future(unit, today):
        return UNIT_FUTURE
    if is_past(unit, today):
        return UNIT_PAST
    return UNIT_CURRENT
