from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from domain import Frequency, OverrideAction, TransactionDirection


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    direction: Mapped[TransactionDirection] = mapped_column(
        SAEnum(TransactionDirection), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "household_id", "direction", "name", name="uq_category_household_name"
        ),
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[Optional[str]] = mapped_column(String(120))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    direction: Mapped[TransactionDirection] = mapped_column(
        SAEnum(TransactionDirection), nullable=False
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    is_recurring_instance: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    recurring_template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_templates.id", ondelete="SET NULL")
    )
    recurring_instance_key: Mapped[Optional[str]] = mapped_column(String(10))

    category: Mapped[Optional["Category"]] = relationship("Category")
    recurring_template: Mapped[Optional["RecurringTemplate"]] = relationship(
        "RecurringTemplate", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_template_id",
            "recurring_instance_key",
            name="uq_txn_template_instance",
        ),
        Index("ix_transactions_household_date", "household_id", "date"),
        Index(
            "ix_transactions_household_direction_date",
            "household_id",
            "direction",
            "date",
        ),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class RecurringTemplate(Base, TimestampMixin):
    __tablename__ = "recurring_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    household_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    direction: Mapped[TransactionDirection] = mapped_column(
        SAEnum(TransactionDirection), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    default_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id")
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    merchant: Mapped[Optional[str]] = mapped_column(String(120))
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    by_weekday: Mapped[Optional[str]] = mapped_column(String(20))
    by_month_day: Mapped[Optional[int]] = mapped_column(Integer)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_run_at: Mapped[Optional[date]] = mapped_column(Date)
    last_run_at: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped[Optional["Category"]] = relationship("Category")
    overrides: Mapped[list["RecurringOverride"]] = relationship(
        "RecurringOverride",
        back_populates="template",
        cascade="all, delete-orphan",
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_template"
    )

    __table_args__ = (
        CheckConstraint("interval_count > 0", name="ck_template_interval_positive"),
        CheckConstraint("amount_cents >= 0", name="ck_template_amount_positive"),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_template_end_after_start",
        ),
        Index("ix_recurring_templates_household_active", "household_id", "is_active"),
    )


class RecurringOverride(Base, TimestampMixin):
    __tablename__ = "recurring_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_templates.id", ondelete="CASCADE"), nullable=False
    )
    instance_key: Mapped[str] = mapped_column(String(10), nullable=False)
    action: Mapped[OverrideAction] = mapped_column(
        SAEnum(OverrideAction), nullable=False
    )
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    description: Mapped[Optional[str]] = mapped_column(Text)

    template: Mapped["RecurringTemplate"] = relationship(
        "RecurringTemplate", back_populates="overrides"
    )

    __table_args__ = (
        UniqueConstraint(
            "template_id", "instance_key", name="uq_override_template_instance"
        ),
    )
