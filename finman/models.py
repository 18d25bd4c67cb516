from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import NewType, Optional, Mapping


CategoryKey = NewType("CategoryKey", str)

FALLBACK_KEY = CategoryKey("other")


class ScheduleKind(str, Enum):
    EVERY_INTERVAL = "E"
    MONTHLY_ON_DAY = "M"


class Periodicity(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


@dataclass(frozen=True)
class Transaction:
    t_date: date
    amount: float  # positive = income, negative = expense
    category: str  # display name
    note: str = ""


@dataclass
class Schedule:
    kind: ScheduleKind
    param: int  # interval in days, or day of month
    amount: float
    next_occurrence: date
    note: str = ""
    auto_allocate: bool = False
    category: Optional[str] = None

    def is_valid(self) -> bool:
        if self.kind is ScheduleKind.EVERY_INTERVAL:
            return self.param > 0
        return 1 <= self.param <= 31

    def describe(self) -> str:
        if self.kind is ScheduleKind.EVERY_INTERVAL:
            return f"every {self.param} days"
        return f"monthly on day {self.param}"


@dataclass
class InterestRule:
    category_key: CategoryKey
    rate_percent: float
    periodicity: Periodicity
    start_date: date
    last_applied_through: date

    @property
    def monthly_rate(self) -> float:
        if self.periodicity is Periodicity.MONTHLY:
            return self.rate_percent / 100.0
        return (self.rate_percent / 100.0) / 12.0


@dataclass(frozen=True)
class Settings:
    auto_save: bool = False
    auto_process_on_startup: bool = False
    language: str = "EN"


@dataclass(frozen=True)
class Snapshot:
    log_length: int
    total_balance: float
    balances: Mapping[CategoryKey, float]
    display_names: Mapping[CategoryKey, str]
    allocations: Mapping[CategoryKey, float]
    schedules: tuple[Schedule, ...] = field(default_factory=tuple)
    interest_rules: Mapping[CategoryKey, InterestRule] = field(default_factory=dict)


def sanitize_display_name(raw: str) -> str:
    """Keep letters, digits and single spaces; trim the edges."""
    kept = "".join(ch for ch in raw if ch.isalnum() or ch.isspace())
    cleaned = " ".join(kept.split())
    return cleaned or "Category"


def resolve_display_name(raw: Optional[str]) -> str:
    if raw is None or not raw.strip():
        return "Other"
    return sanitize_display_name(raw)


def normalize_key(display: str) -> CategoryKey:
    key = display.strip().casefold()
    return CategoryKey(key or FALLBACK_KEY)


def category_key(raw: Optional[str]) -> CategoryKey:
    return normalize_key(resolve_display_name(raw))
