from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from config import get_settings
from domain import (
    Frequency,
    OccurrenceOverride,
    OverrideAction,
    RecurrenceTemplate,
    TransactionDirection,
    TransactionPattern,
    TransactionRecord,
)
from models import Account, Category, RecurringOverride, RecurringTemplate, Transaction
from patterns import detect, normalize_merchant, template_from_pattern
from periods import month_period
from recurrence import (
    describe,
    expand_month,
    generate_missing,
    next_run,
    parse_weekdays,
    validate,
)
from schemas import (
    AccountIn,
    CategoryIn,
    PatternDetectionConfig,
    PatternTemplateIn,
    RecurringOverrideIn,
    RecurringTemplateIn,
    TransactionIn,
)


logger = logging.getLogger(__name__)


def get_current_household_id() -> int:
    return 1


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def template_to_domain(row: RecurringTemplate) -> RecurrenceTemplate:
    return RecurrenceTemplate(
        id=row.id,
        household_id=row.household_id,
        name=row.name,
        direction=row.direction,
        amount_cents=row.amount_cents,
        frequency=row.frequency,
        interval=row.interval_count,
        by_month_day=row.by_month_day,
        by_weekday=parse_weekdays(row.by_weekday),
        start_date=row.start_date,
        end_date=row.end_date,
        timezone=row.timezone,
        default_category_id=row.default_category_id,
        description=row.description,
        merchant=row.merchant,
        account_id=row.account_id,
        is_active=row.is_active,
        next_run_at=row.next_run_at,
        last_run_at=row.last_run_at,
    )


def override_to_domain(row: RecurringOverride) -> OccurrenceOverride:
    return OccurrenceOverride(
        template_id=row.template_id,
        instance_key=row.instance_key,
        action=row.action,
        amount_cents=row.amount_cents,
        category_id=row.category_id,
        description=row.description,
    )


def transaction_to_domain(row: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        date=row.date,
        description=row.description,
        merchant=row.merchant,
        amount_cents=row.amount_cents,
        direction=row.direction,
    )


def _format_weekdays(days: list[int]) -> Optional[str]:
    if not days:
        return None
    return ",".join(str(d) for d in sorted(set(days)))


class CategoryService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = (
            household_id if household_id is not None else get_current_household_id()
        )

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.household_id != self.household_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.household_id == self.household_id,
                Category.direction == data.direction,
                Category.name == data.name,
            )
        )
        if existing:
            raise ValueError("Category already exists")
        category = Category(
            household_id=self.household_id,
            name=data.name,
            direction=data.direction,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class AccountService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = (
            household_id if household_id is not None else get_current_household_id()
        )

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.household_id != self.household_id:
            raise ValueError("Account not found")
        return account

    def list_active(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(
                Account.household_id == self.household_id,
                Account.is_active.is_(True),
            )
            .order_by(Account.created_at, Account.id)
        )
        return self.session.scalars(stmt).all()

    def default(self) -> Optional[Account]:
        accounts = self.list_active()
        return accounts[0] if accounts else None

    def create(self, data: AccountIn) -> Account:
        account = Account(
            household_id=self.household_id,
            name=data.name,
            is_active=data.is_active,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account


class TransactionService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = (
            household_id if household_id is not None else get_current_household_id()
        )

    def create(self, data: TransactionIn) -> Transaction:
        if data.category_id is not None:
            CategoryService(self.session, self.household_id).get(data.category_id)
        if data.account_id is not None:
            AccountService(self.session, self.household_id).get(data.account_id)
        txn = Transaction(
            household_id=self.household_id,
            account_id=data.account_id,
            date=data.date,
            description=data.description,
            merchant=data.merchant,
            amount_cents=data.amount_cents,
            direction=data.direction,
            category_id=data.category_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn


class RecurringTemplateService:
    def __init__(self, session: Session, household_id: Optional[int] = None) -> None:
        self.session = session
        self.household_id = (
            household_id if household_id is not None else get_current_household_id()
        )

    def get(self, template_id: int) -> RecurringTemplate:
        tmpl = self.session.get(RecurringTemplate, template_id)
        if not tmpl or tmpl.household_id != self.household_id:
            raise ValueError("Template not found")
        return tmpl

    def list(self, active_only: bool = False) -> list[RecurringTemplate]:
        stmt = (
            select(RecurringTemplate)
            .options(selectinload(RecurringTemplate.overrides))
            .where(RecurringTemplate.household_id == self.household_id)
            .order_by(RecurringTemplate.next_run_at, RecurringTemplate.id)
        )
        if active_only:
            stmt = stmt.where(RecurringTemplate.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def describe(self, template_id: int) -> str:
        return describe(template_to_domain(self.get(template_id)))

    def _check_references(
        self, category_id: Optional[int], account_id: Optional[int]
    ) -> None:
        if category_id is not None:
            CategoryService(self.session, self.household_id).get(category_id)
        if account_id is not None:
            AccountService(self.session, self.household_id).get(account_id)

    def _validate(self, data: RecurringTemplateIn) -> None:
        errors = validate(data.model_dump())
        if errors:
            raise ValueError("; ".join(errors))
        self._check_references(data.default_category_id, data.account_id)

    def _refresh_next_run(
        self, tmpl: RecurringTemplate, today: Optional[date] = None
    ) -> None:
        tmpl.next_run_at = next_run(template_to_domain(tmpl), today or local_today())

    def _rewind(self, tmpl: RecurringTemplate, from_date: date) -> None:
        """Move the generation watermark back so ``from_date`` is revisited."""
        if tmpl.last_run_at is None or tmpl.last_run_at < from_date:
            return
        if from_date <= tmpl.start_date:
            tmpl.last_run_at = None
        else:
            tmpl.last_run_at = from_date - timedelta(days=1)
        logger.info(
            f"recurring_rewind: template={tmpl.id} from={from_date.isoformat()}"
        )

    def _apply(self, tmpl: RecurringTemplate, data: RecurringTemplateIn) -> None:
        tmpl.name = data.name
        tmpl.direction = data.direction
        tmpl.amount_cents = data.amount_cents
        tmpl.frequency = data.frequency
        tmpl.interval_count = data.interval
        tmpl.by_month_day = data.by_month_day
        tmpl.by_weekday = _format_weekdays(data.by_weekday)
        tmpl.start_date = data.start_date
        tmpl.end_date = data.end_date
        tmpl.timezone = data.timezone or tmpl.timezone or get_settings().timezone
        tmpl.default_category_id = data.default_category_id
        tmpl.description = data.description
        tmpl.merchant = data.merchant
        tmpl.account_id = data.account_id
        tmpl.is_active = data.is_active

    def create(
        self, data: RecurringTemplateIn, today: Optional[date] = None
    ) -> RecurringTemplate:
        self._validate(data)
        tmpl = RecurringTemplate(household_id=self.household_id)
        self._apply(tmpl, data)
        self._refresh_next_run(tmpl, today)
        self.session.add(tmpl)
        self.session.commit()
        self.session.refresh(tmpl)
        return tmpl

    def update(
        self,
        template_id: int,
        data: RecurringTemplateIn,
        today: Optional[date] = None,
    ) -> RecurringTemplate:
        tmpl = self.get(template_id)
        self._validate(data)
        previous_start = tmpl.start_date
        self._apply(tmpl, data)
        if tmpl.start_date < previous_start:
            self._rewind(tmpl, tmpl.start_date)
        self._refresh_next_run(tmpl, today)
        self.session.commit()
        self.session.refresh(tmpl)
        return tmpl

    def set_active(
        self, template_id: int, is_active: bool, today: Optional[date] = None
    ) -> RecurringTemplate:
        tmpl = self.get(template_id)
        tmpl.is_active = is_active
        self._refresh_next_run(tmpl, today)
        self.session.commit()
        return tmpl

    def delete(self, template_id: int) -> None:
        tmpl = self.get(template_id)
        self.session.delete(tmpl)
        self.session.commit()

    def upsert_override(self, data: RecurringOverrideIn) -> RecurringOverride:
        tmpl = self.get(data.template_id)
        try:
            date.fromisoformat(data.instance_key)
        except ValueError as exc:
            raise ValueError("Invalid instance key") from exc
        if data.category_id is not None:
            CategoryService(self.session, self.household_id).get(data.category_id)

        stmt = select(RecurringOverride).where(
            RecurringOverride.template_id == tmpl.id,
            RecurringOverride.instance_key == data.instance_key,
        )
        override = self.session.scalar(stmt)
        if override is None:
            override = RecurringOverride(
                template_id=tmpl.id, instance_key=data.instance_key
            )
            self.session.add(override)
        override.action = data.action
        override.amount_cents = data.amount_cents
        override.category_id = data.category_id
        override.description = data.description
        self.session.commit()
        self.session.refresh(override)
        return override

    def delete_override(self, override_id: int) -> None:
        override = self.session.get(RecurringOverride, override_id)
        if not override or override.template.household_id != self.household_id:
            raise ValueError("Override not found")
        if override.action == OverrideAction.skip:
            self._rewind(override.template, date.fromisoformat(override.instance_key))
        self.session.delete(override)
        self.session.commit()

    def _templates_for_run(
        self, template_id: Optional[int]
    ) -> list[RecurringTemplate]:
        if template_id is not None:
            tmpl = self.get(template_id)
            return [tmpl] if tmpl.is_active else []
        return self.list(active_only=True)

    def occurrences_for_month(
        self, year: int, month: int, template_id: Optional[int] = None
    ) -> list[dict[str, object]]:
        period = month_period(year, month)
        templates = self._templates_for_run(template_id)
        generated = {
            tuple(row)
            for row in self.session.execute(
                select(
                    Transaction.recurring_template_id,
                    Transaction.recurring_instance_key,
                ).where(
                    Transaction.household_id == self.household_id,
                    Transaction.is_recurring_instance.is_(True),
                    Transaction.recurring_instance_key >= period.start.isoformat(),
                    Transaction.recurring_instance_key <= period.end.isoformat(),
                )
            ).all()
        }

        results: list[dict[str, object]] = []
        for tmpl in templates:
            schedule = template_to_domain(tmpl)
            overrides = [override_to_domain(o) for o in tmpl.overrides]
            for occ in expand_month(schedule, year, month, overrides):
                results.append(
                    {
                        "occurrence": occ,
                        "template_name": tmpl.name,
                        "schedule": describe(schedule),
                        "is_generated": (tmpl.id, occ.instance_key) in generated,
                    }
                )
        results.sort(key=lambda item: (item["occurrence"].date, item["template_name"]))
        return results

    def generate_occurrences(
        self, up_to: date, template_id: Optional[int] = None
    ) -> int:
        """Materialize every missing occurrence up to ``up_to`` as a transaction.

        Existing rows are matched by ``(template_id, instance_key)`` so repeated
        runs only ever insert what is still missing.
        """
        templates = self._templates_for_run(template_id)
        default_account: Optional[Account] = None
        created = 0

        for tmpl in templates:
            schedule = template_to_domain(tmpl)
            existing_keys = set(
                self.session.scalars(
                    select(Transaction.recurring_instance_key).where(
                        Transaction.recurring_template_id == tmpl.id
                    )
                ).all()
            )
            since = tmpl.last_run_at + timedelta(days=1) if tmpl.last_run_at else None
            missing = generate_missing(
                schedule,
                existing_keys,
                up_to,
                [override_to_domain(o) for o in tmpl.overrides],
                since=since,
            )
            if not missing:
                continue

            account_id = tmpl.account_id
            if account_id is None:
                if default_account is None:
                    default_account = AccountService(
                        self.session, self.household_id
                    ).default()
                if default_account is None:
                    raise ValueError("No active account found")
                account_id = default_account.id

            for occ in missing:
                self.session.add(
                    Transaction(
                        household_id=self.household_id,
                        account_id=account_id,
                        date=occ.date,
                        description=occ.description,
                        merchant=occ.merchant,
                        amount_cents=occ.amount_cents,
                        direction=occ.direction,
                        category_id=occ.category_id,
                        is_recurring_instance=True,
                        recurring_template_id=tmpl.id,
                        recurring_instance_key=occ.instance_key,
                    )
                )
            created += len(missing)
            # A backfill must not pull the watermark behind rows already posted.
            last_key = max(
                {key for key in existing_keys if key}
                | {occ.instance_key for occ in missing}
            )
            last_date = date.fromisoformat(last_key)
            tmpl.last_run_at = last_date
            tmpl.next_run_at = next_run(schedule, last_date)
            self.session.flush()

        self.session.commit()
        logger.info(
            f"generate_occurrences: household={self.household_id} "
            f"up_to={up_to.isoformat()} created={created}"
        )
        return created

    def detect_patterns(
        self,
        config: Optional[PatternDetectionConfig] = None,
        today: Optional[date] = None,
    ) -> list[TransactionPattern]:
        if config is None:
            settings = get_settings()
            config = PatternDetectionConfig(
                lookback_months=settings.pattern_lookback_months,
                min_occurrences=settings.pattern_min_occurrences,
            )
        rows = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.household_id == self.household_id,
                Transaction.direction == TransactionDirection.expense,
                Transaction.is_recurring_instance.is_(False),
            )
            .order_by(Transaction.date.desc())
        ).all()
        templated = {
            normalize_merchant(t.merchant)
            for t in self.list(active_only=True)
            if t.merchant
        }

        candidates = detect([transaction_to_domain(r) for r in rows], config, today)
        patterns = [p for p in candidates if p.normalized_merchant not in templated]
        logger.info(
            f"detect_patterns: household={self.household_id} "
            f"transactions={len(rows)} candidates={len(candidates)} "
            f"new={len(patterns)}"
        )
        return patterns

    def create_from_pattern(self, data: PatternTemplateIn) -> RecurringTemplate:
        self._check_references(data.category_id, data.account_id)
        tmpl = RecurringTemplate(
            household_id=self.household_id,
            name=f"{data.merchant} (recurring)",
            merchant=data.merchant,
            direction=TransactionDirection.expense,
            amount_cents=data.amount_cents,
            default_category_id=data.category_id,
            account_id=data.account_id,
            frequency=data.frequency,
            interval_count=data.interval,
            by_month_day=(
                data.by_month_day if data.frequency == Frequency.monthly else None
            ),
            start_date=data.start_date,
            timezone=get_settings().timezone,
            is_active=True,
            # The start date is the latest real charge, which already exists.
            last_run_at=data.start_date,
        )
        tmpl.next_run_at = next_run(template_to_domain(tmpl), data.start_date)
        self.session.add(tmpl)
        self.session.commit()
        self.session.refresh(tmpl)
        return tmpl

    def accept_pattern(
        self,
        pattern: TransactionPattern,
        category_id: Optional[int] = None,
        account_id: Optional[int] = None,
    ) -> RecurringTemplate:
        draft = template_from_pattern(
            pattern,
            household_id=self.household_id,
            default_category_id=category_id,
            account_id=account_id,
        )
        return self.create_from_pattern(
            PatternTemplateIn(
                merchant=pattern.merchant,
                amount_cents=draft.amount_cents,
                frequency=draft.frequency,
                interval=draft.interval,
                by_month_day=draft.by_month_day,
                start_date=draft.start_date,
                category_id=draft.default_category_id,
                account_id=draft.account_id,
            )
        )


def run_generation(session: Session, today: Optional[date] = None) -> int:
    today = today or local_today()
    household_ids = session.scalars(
        select(RecurringTemplate.household_id)
        .where(RecurringTemplate.is_active.is_(True))
        .distinct()
        .order_by(RecurringTemplate.household_id)
    ).all()
    total = 0
    for household_id in household_ids:
        service = RecurringTemplateService(session, household_id)
        try:
            total += service.generate_occurrences(today)
        except ValueError as exc:
            session.rollback()
            logger.warning(
                f"generation_skipped: household={household_id} "
                f"up_to={today.isoformat()} error={exc}"
            )
    return total
