"""Discover recurring obligations hiding in raw transaction history.

Transactions are grouped by a normalized counterparty name. Each group then
has to pass a series of hard filters (sample size, distinct months, amount
stability, interval regularity) before its average gap is classified into a
schedule the recurrence engine understands.
"""

import logging
import re
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from statistics import fmean, pstdev
from typing import Iterable, Optional, Sequence

from domain import (
    Frequency,
    RecurrenceTemplate,
    TransactionDirection,
    TransactionPattern,
    TransactionRecord,
)
from periods import months_before
from schemas import PatternDetectionConfig


logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 0.95

_CORPORATE_SUFFIX_RE = re.compile(
    r"\b(ltd|inc|llc|corp|limited|co|company)\b\.?", re.IGNORECASE
)
_WHITESPACE_RE = re.compile(r"\s+")

# (min_days, max_days, frequency, interval)
_FREQUENCY_BUCKETS = (
    (6, 8, Frequency.weekly, 1),
    (12, 16, Frequency.weekly, 2),
    (25, 35, Frequency.monthly, 1),
    (55, 70, Frequency.monthly, 2),
    (85, 95, Frequency.monthly, 3),
    (345, 380, Frequency.yearly, 1),
)


def normalize_merchant(name: Optional[str]) -> str:
    """Lowercase, drop corporate suffixes and collapse whitespace."""
    if not name:
        return ""
    cleaned = _CORPORATE_SUFFIX_RE.sub("", name.lower().strip())
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def consistency(values: Sequence[float]) -> float:
    """``1 - coefficient of variation``, clamped to ``[0, 1]``."""
    if not values:
        return 0.0
    if len(values) == 1:
        return 1.0
    mean = fmean(values)
    if mean == 0:
        return 0.0
    return max(0.0, 1 - pstdev(values) / abs(mean))


def classify_frequency(avg_days: float) -> tuple[Frequency, int]:
    for low, high, frequency, interval in _FREQUENCY_BUCKETS:
        if low <= avg_days <= high:
            return frequency, interval
    return Frequency.monthly, max(1, round_half_up(avg_days / 30))


def frequency_label(frequency: Frequency, interval: int) -> str:
    if interval == 1:
        return frequency.value
    if frequency == Frequency.weekly:
        return "bi-weekly" if interval == 2 else f"every {interval} weeks"
    if frequency == Frequency.monthly:
        return "bi-monthly" if interval == 2 else f"every {interval} months"
    if frequency == Frequency.yearly:
        return f"every {interval} years"
    return frequency.value


def pattern_confidence(
    occurrences: int, amount_consistency: float, interval_consistency: float
) -> float:
    occurrence_score = min(0.9, 0.3 + occurrences * 0.15)
    score = (
        occurrence_score * 0.3
        + amount_consistency * 0.4
        + interval_consistency * 0.3
    )
    return min(MAX_CONFIDENCE, score)


def _reason(
    occurrences: int,
    amount_consistency: float,
    frequency: Frequency,
    interval: int,
    day_of_month: Optional[int],
) -> str:
    reason = (
        f"Found {occurrences} {frequency_label(frequency, interval)} transactions "
        f"with {round_half_up(amount_consistency * 100)}% amount consistency"
    )
    if day_of_month:
        reason += f" on day {day_of_month} of month"
    return reason


def _group_by_merchant(
    transactions: Iterable[TransactionRecord],
) -> dict[str, list[TransactionRecord]]:
    groups: dict[str, list[TransactionRecord]] = defaultdict(list)
    for txn in transactions:
        key = normalize_merchant(txn.merchant or txn.description)
        if key:
            groups[key].append(txn)
    return groups


def _analyze_group(
    normalized: str,
    txns: list[TransactionRecord],
    config: PatternDetectionConfig,
) -> Optional[TransactionPattern]:
    if len(txns) < config.min_occurrences:
        return None

    ordered = sorted(txns, key=lambda t: (t.date, t.id))
    months = {(t.date.year, t.date.month) for t in ordered}
    if len(months) < config.min_occurrences:
        return None

    amounts = [t.amount_cents for t in ordered]
    amount_consistency = consistency(amounts)
    if amount_consistency < config.amount_consistency_threshold:
        return None

    gaps = [
        (later.date - earlier.date).days for earlier, later in zip(ordered, ordered[1:])
    ]
    if pstdev(gaps) > config.date_variance_days_tolerance * 2:
        return None

    frequency, interval = classify_frequency(fmean(gaps))
    day_of_month = None
    if frequency == Frequency.monthly:
        day_of_month = round_half_up(fmean(t.date.day for t in ordered))

    latest = ordered[-1]
    return TransactionPattern(
        merchant=latest.merchant or latest.description or normalized,
        normalized_merchant=normalized,
        average_amount_cents=round_half_up(fmean(amounts)),
        amount_std_dev=pstdev(amounts),
        occurrences=len(ordered),
        transactions=tuple(ordered),
        estimated_frequency=frequency,
        estimated_interval=interval,
        estimated_day_of_month=day_of_month,
        confidence=pattern_confidence(
            len(ordered), amount_consistency, consistency(gaps)
        ),
        reason=_reason(len(ordered), amount_consistency, frequency, interval, day_of_month),
    )


def detect(
    transactions: Iterable[TransactionRecord],
    config: Optional[PatternDetectionConfig] = None,
    today: Optional[date] = None,
) -> list[TransactionPattern]:
    config = config or PatternDetectionConfig()
    today = today or date.today()
    cutoff = months_before(today, config.lookback_months)

    recent = [
        txn
        for txn in transactions
        if txn.direction == TransactionDirection.expense and txn.date >= cutoff
    ]
    groups = _group_by_merchant(recent)

    patterns = []
    for normalized, txns in groups.items():
        pattern = _analyze_group(normalized, txns, config)
        if pattern is not None:
            patterns.append(pattern)

    patterns.sort(key=lambda p: (-p.confidence, p.normalized_merchant))
    logger.debug(
        f"detect_patterns: scanned={len(recent)} groups={len(groups)} "
        f"patterns={len(patterns)}"
    )
    return patterns


def template_from_pattern(
    pattern: TransactionPattern,
    *,
    household_id: int,
    template_id: Optional[int] = None,
    timezone: str = "UTC",
    default_category_id: Optional[int] = None,
    account_id: Optional[int] = None,
) -> RecurrenceTemplate:
    by_month_day = (
        pattern.estimated_day_of_month
        if pattern.estimated_frequency == Frequency.monthly
        else None
    )
    return RecurrenceTemplate(
        id=template_id,
        household_id=household_id,
        name=f"{pattern.merchant} (recurring)",
        direction=TransactionDirection.expense,
        amount_cents=pattern.average_amount_cents,
        frequency=pattern.estimated_frequency,
        interval=pattern.estimated_interval,
        by_month_day=by_month_day,
        start_date=pattern.last_date,
        timezone=timezone,
        default_category_id=default_category_id,
        merchant=pattern.merchant,
        account_id=account_id,
    )
