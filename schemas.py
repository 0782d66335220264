from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from domain import Frequency, OverrideAction, TransactionDirection


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    direction: TransactionDirection = TransactionDirection.expense


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    is_active: bool = True


class TransactionIn(BaseModel):
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=120)
    amount_cents: int = Field(..., ge=0)
    direction: TransactionDirection = TransactionDirection.expense
    category_id: Optional[int] = None
    account_id: Optional[int] = None


class RecurringTemplateIn(BaseModel):
    """Schedule fields are checked by ``recurrence.validate`` so every
    problem is reported together rather than by the first failing field."""

    name: str = Field(..., min_length=1, max_length=120)
    direction: TransactionDirection
    amount_cents: int = Field(..., ge=0)
    frequency: Optional[Frequency] = None
    interval: int = 1
    by_month_day: Optional[int] = None
    by_weekday: list[int] = Field(default_factory=list)
    start_date: date
    end_date: Optional[date] = None
    timezone: Optional[str] = Field(default=None, max_length=64)
    default_category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=200)
    merchant: Optional[str] = Field(default=None, max_length=120)
    account_id: Optional[int] = None
    is_active: bool = True


class RecurringOverrideIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_id: int
    instance_key: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    action: OverrideAction
    amount_cents: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=200)


class PatternDetectionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    lookback_months: int = Field(default=6, ge=1, le=24)
    min_occurrences: int = Field(default=2, ge=2, le=10)
    amount_consistency_threshold: float = Field(default=0.85, ge=0, le=1)
    date_variance_days_tolerance: float = Field(default=3, ge=0)


class PatternTemplateIn(BaseModel):
    merchant: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    frequency: Frequency
    interval: int = Field(default=1, gt=0)
    by_month_day: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: date
    category_id: Optional[int] = None
    account_id: Optional[int] = None
