from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class TransactionDirection(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class OverrideAction(str, Enum):
    skip = "skip"
    modify = "modify"


@dataclass(frozen=True)
class RecurrenceTemplate:
    """Schedule plus the payload stamped onto every occurrence.

    ``by_weekday`` uses 0 for Sunday through 6 for Saturday. ``timezone`` is
    carried as a label only; all arithmetic works on calendar dates.
    """

    household_id: int
    name: str
    direction: TransactionDirection
    amount_cents: int
    frequency: Frequency
    start_date: date
    interval: int = 1
    id: Optional[int] = None
    by_month_day: Optional[int] = None
    by_weekday: tuple[int, ...] = ()
    end_date: Optional[date] = None
    timezone: str = "UTC"
    default_category_id: Optional[int] = None
    description: Optional[str] = None
    merchant: Optional[str] = None
    account_id: Optional[int] = None
    is_active: bool = True
    next_run_at: Optional[date] = None
    last_run_at: Optional[date] = None


@dataclass(frozen=True)
class OccurrenceOverride:
    template_id: Optional[int]
    instance_key: str
    action: OverrideAction
    amount_cents: Optional[int] = None
    category_id: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Occurrence:
    template_id: Optional[int]
    date: date
    instance_key: str
    amount_cents: int
    category_id: Optional[int]
    description: str
    merchant: Optional[str]
    direction: TransactionDirection
    account_id: Optional[int] = None
    is_overridden: bool = False
    is_skipped: bool = False


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    date: date
    description: str
    amount_cents: int
    direction: TransactionDirection
    merchant: Optional[str] = None


@dataclass(frozen=True)
class TransactionPattern:
    merchant: str
    normalized_merchant: str
    average_amount_cents: int
    amount_std_dev: float
    occurrences: int
    estimated_frequency: Frequency
    estimated_interval: int
    confidence: float
    reason: str
    transactions: tuple[TransactionRecord, ...] = field(default_factory=tuple)
    estimated_day_of_month: Optional[int] = None

    @property
    def last_date(self) -> date:
        return self.transactions[-1].date
