import logging
from datetime import date, timedelta
from typing import Any, Iterable, Iterator, Mapping, Optional

from domain import (
    Frequency,
    Occurrence,
    OccurrenceOverride,
    OverrideAction,
    RecurrenceTemplate,
)
from periods import add_months, month_period, months_between


logger = logging.getLogger(__name__)

MAX_OCCURRENCES = 1000
WEEKDAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

_CADENCE_LABELS = {
    Frequency.daily: ("Daily", "days"),
    Frequency.weekly: ("Weekly", "weeks"),
    Frequency.monthly: ("Monthly", "months"),
    Frequency.yearly: ("Yearly", "years"),
}


def instance_key(occurrence_date: date) -> str:
    return occurrence_date.isoformat()


def parse_weekdays(value: Any) -> tuple[int, ...]:
    """Accept ``"1,3"`` or an iterable of ints; raise ValueError on bad entries."""
    if value is None or value == "":
        return ()
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",") if part.strip()]
    else:
        try:
            parts = list(value)
        except TypeError as exc:
            raise ValueError(f"Invalid weekday: {value!r}") from exc
    days: set[int] = set()
    for part in parts:
        try:
            day = int(part)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid weekday: {part!r}") from exc
        if day < 0 or day > 6:
            raise ValueError(f"Invalid weekday: {part!r}")
        days.add(day)
    return tuple(sorted(days))


def _weekday(target: date) -> int:
    # Sunday = 0
    return target.isoweekday() % 7


def _week_start(target: date) -> date:
    return target - timedelta(days=_weekday(target))


def _weekday_set(template: RecurrenceTemplate) -> tuple[int, ...]:
    if template.frequency != Frequency.weekly:
        return ()
    return tuple(sorted({d for d in template.by_weekday if 0 <= d <= 6}))


def _nth_date(template: RecurrenceTemplate, n: int) -> date:
    start = template.start_date
    units = n * template.interval
    if template.frequency == Frequency.daily:
        return start + timedelta(days=units)
    if template.frequency == Frequency.weekly:
        return start + timedelta(weeks=units)
    if template.frequency == Frequency.monthly:
        if n == 0:
            return start
        return add_months(
            start, units, desired_day=template.by_month_day or start.day
        )
    return add_months(start, 12 * units, desired_day=start.day)


def _first_index(template: RecurrenceTemplate, target: date) -> int:
    start = template.start_date
    if target <= start:
        return 0
    if template.frequency == Frequency.daily:
        return -(-(target - start).days // template.interval)
    if template.frequency == Frequency.weekly:
        return -(-(target - start).days // (7 * template.interval))
    if template.frequency == Frequency.monthly:
        return max(0, months_between(start, target) // template.interval - 1)
    return max(0, (target.year - start.year) // template.interval - 1)


def _schedule(template: RecurrenceTemplate, from_date: date) -> Iterator[date]:
    """Yield scheduled dates on or after ``from_date`` in ascending order."""
    begin = max(from_date, template.start_date)
    weekdays = _weekday_set(template)
    try:
        if weekdays:
            anchor = _week_start(template.start_date)
            span = 7 * template.interval
            window = anchor + timedelta(days=(begin - anchor).days // span * span)
            while True:
                for offset in weekdays:
                    candidate = window + timedelta(days=offset)
                    if candidate >= begin:
                        yield candidate
                window += timedelta(days=span)
        else:
            n = _first_index(template, begin)
            while True:
                candidate = _nth_date(template, n)
                if candidate >= begin:
                    yield candidate
                n += 1
    except (OverflowError, ValueError):
        # Ran off the end of the calendar.
        return


def _index_overrides(
    template: RecurrenceTemplate, overrides: Iterable[OccurrenceOverride]
) -> dict[str, OccurrenceOverride]:
    by_key: dict[str, OccurrenceOverride] = {}
    for override in overrides:
        if (
            template.id is not None
            and override.template_id is not None
            and override.template_id != template.id
        ):
            continue
        by_key[override.instance_key] = override
    return by_key


def _build_occurrence(
    template: RecurrenceTemplate,
    occurrence_date: date,
    key: str,
    override: Optional[OccurrenceOverride],
) -> Occurrence:
    amount_cents = template.amount_cents
    category_id = template.default_category_id
    description = template.description or template.name
    if override is not None:
        if override.amount_cents is not None:
            amount_cents = override.amount_cents
        if override.category_id is not None:
            category_id = override.category_id
        if override.description is not None:
            description = override.description
    return Occurrence(
        template_id=template.id,
        date=occurrence_date,
        instance_key=key,
        amount_cents=amount_cents,
        category_id=category_id,
        description=description,
        merchant=template.merchant,
        direction=template.direction,
        account_id=template.account_id,
        is_overridden=override is not None,
        is_skipped=False,
    )


def expand(
    template: RecurrenceTemplate,
    range_start: date,
    range_end: date,
    overrides: Iterable[OccurrenceOverride] = (),
) -> list[Occurrence]:
    """Materialize the template's occurrences inside ``[range_start, range_end]``.

    Occurrences carrying a ``skip`` override are omitted, ``modify`` overrides
    replace whichever fields they set. Output is ordered by date and capped at
    ``MAX_OCCURRENCES``.
    """
    if not template.is_active:
        return []
    if range_end < template.start_date:
        return []
    if template.end_date and range_start > template.end_date:
        return []

    effective_start = max(range_start, template.start_date)
    effective_end = (
        min(range_end, template.end_date) if template.end_date else range_end
    )
    by_key = _index_overrides(template, overrides)

    occurrences: list[Occurrence] = []
    for occurrence_date in _schedule(template, effective_start):
        if occurrence_date > effective_end:
            break
        key = instance_key(occurrence_date)
        override = by_key.get(key)
        if override is not None and override.action == OverrideAction.skip:
            continue
        if len(occurrences) >= MAX_OCCURRENCES:
            logger.warning(
                f"expand_truncated: template={template.id} "
                f"limit={MAX_OCCURRENCES} at={key}"
            )
            break
        occurrences.append(_build_occurrence(template, occurrence_date, key, override))
    return occurrences


def expand_month(
    template: RecurrenceTemplate,
    year: int,
    month: int,
    overrides: Iterable[OccurrenceOverride] = (),
) -> list[Occurrence]:
    period = month_period(year, month)
    return expand(template, period.start, period.end, overrides)


def generate_missing(
    template: RecurrenceTemplate,
    existing_keys: set[str],
    up_to: date,
    overrides: Iterable[OccurrenceOverride] = (),
    since: Optional[date] = None,
) -> list[Occurrence]:
    occurrences = expand(template, since or template.start_date, up_to, overrides)
    return [occ for occ in occurrences if occ.instance_key not in existing_keys]


def step(template: RecurrenceTemplate, from_date: date) -> date:
    if _weekday_set(template):
        for candidate in _schedule(template, from_date + timedelta(days=1)):
            return candidate
    if template.frequency == Frequency.daily:
        return from_date + timedelta(days=template.interval)
    if template.frequency == Frequency.weekly:
        return from_date + timedelta(weeks=template.interval)
    if template.frequency == Frequency.monthly:
        return add_months(
            from_date,
            template.interval,
            desired_day=template.by_month_day or template.start_date.day,
        )
    anchor_day = (
        template.start_date.day
        if from_date.month == template.start_date.month
        else from_date.day
    )
    return add_months(from_date, 12 * template.interval, desired_day=anchor_day)


def next_run(
    template: RecurrenceTemplate, from_date: Optional[date] = None
) -> Optional[date]:
    from_date = from_date or date.today()
    if not template.is_active:
        return None
    if template.end_date and from_date > template.end_date:
        return None
    if template.start_date > from_date:
        return template.start_date
    return step(template, max(from_date, template.start_date))


def ordinal(n: int) -> str:
    if 11 <= n % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _cadence(template: RecurrenceTemplate) -> str:
    single, plural = _CADENCE_LABELS[template.frequency]
    if template.interval == 1:
        return single
    if template.frequency == Frequency.weekly and template.interval == 2:
        return "Bi-weekly"
    return f"Every {template.interval} {plural}"


def describe(template: RecurrenceTemplate) -> str:
    cadence = _cadence(template)
    weekdays = _weekday_set(template)
    if weekdays:
        return f"{cadence} on {', '.join(WEEKDAY_NAMES[d] for d in weekdays)}"
    if template.frequency == Frequency.monthly and template.by_month_day:
        return f"{cadence} on the {ordinal(template.by_month_day)}"
    return cadence


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate(draft: Mapping[str, Any]) -> list[str]:
    """Collect every schedule problem in ``draft`` instead of stopping at the first."""
    errors: list[str] = []

    frequency = draft.get("frequency")
    if not frequency:
        errors.append("Frequency is required")
    else:
        try:
            Frequency(frequency)
        except (TypeError, ValueError):
            errors.append("Frequency must be one of daily, weekly, monthly, yearly")

    interval = draft.get("interval")
    if interval is not None and (not _is_int(interval) or interval < 1):
        errors.append("Interval must be at least 1")

    by_month_day = draft.get("by_month_day")
    if by_month_day is not None and (
        not _is_int(by_month_day) or not 1 <= by_month_day <= 31
    ):
        errors.append("Day of month must be between 1 and 31")

    try:
        parse_weekdays(draft.get("by_weekday"))
    except ValueError:
        errors.append("Weekday must be between 0 (Sunday) and 6 (Saturday)")

    start_date = draft.get("start_date")
    end_date = draft.get("end_date")
    if end_date is not None:
        if not isinstance(end_date, date):
            errors.append("End date must be after start date")
        elif isinstance(start_date, date):
            try:
                if end_date < start_date:
                    errors.append("End date must be after start date")
            except TypeError:
                # datetime against date
                errors.append("End date must be after start date")

    return errors
