"""initial recurring schema

Revision ID: 202601150900
Revises:
Create Date: 2026-01-15 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202601150900"
down_revision = None
branch_labels = None
depends_on = None


DIRECTION_ENUM = sa.Enum(
    "income", "expense", "transfer", name="transactiondirection"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("direction", DIRECTION_ENUM, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "household_id", "direction", "name", name="uq_category_household_name"
        ),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "recurring_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("direction", DIRECTION_ENUM, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "default_category_id", sa.Integer(), sa.ForeignKey("categories.id")
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("merchant", sa.String(length=120), nullable=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column(
            "frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="frequency"),
            nullable=False,
        ),
        sa.Column("interval_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("by_weekday", sa.String(length=20), nullable=True),
        sa.Column("by_month_day", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_run_at", sa.Date(), nullable=True),
        sa.Column("last_run_at", sa.Date(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("interval_count > 0", name="ck_template_interval_positive"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_template_amount_positive"),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_template_end_after_start",
        ),
    )
    op.create_index(
        "ix_recurring_templates_household_active",
        "recurring_templates",
        ["household_id", "is_active"],
    )

    op.create_table(
        "recurring_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("recurring_templates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("instance_key", sa.String(length=10), nullable=False),
        sa.Column(
            "action", sa.Enum("skip", "modify", name="overrideaction"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "template_id", "instance_key", name="uq_override_template_instance"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("household_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("merchant", sa.String(length=120), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("direction", DIRECTION_ENUM, nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "is_recurring_instance",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "recurring_template_id",
            sa.Integer(),
            sa.ForeignKey("recurring_templates.id", ondelete="SET NULL"),
        ),
        sa.Column("recurring_instance_key", sa.String(length=10), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurring_template_id",
            "recurring_instance_key",
            name="uq_txn_template_instance",
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_household_date", "transactions", ["household_id", "date"]
    )
    op.create_index(
        "ix_transactions_household_direction_date",
        "transactions",
        ["household_id", "direction", "date"],
    )


def downgrade() -> None:
    op.drop_index("ix_transactions_household_direction_date", table_name="transactions")
    op.drop_index("ix_transactions_household_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("recurring_overrides")
    op.drop_index(
        "ix_recurring_templates_household_active", table_name="recurring_templates"
    )
    op.drop_table("recurring_templates")
    op.drop_table("accounts")
    op.drop_table("categories")
