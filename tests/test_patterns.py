from datetime import date, timedelta

import pytest

from domain import Frequency, TransactionDirection, TransactionRecord
from patterns import (
    MAX_CONFIDENCE,
    classify_frequency,
    consistency,
    detect,
    normalize_merchant,
    pattern_confidence,
    template_from_pattern,
)
from recurrence import expand_month
from schemas import PatternDetectionConfig


TODAY = date(2024, 6, 15)


def _txn(
    txn_id: int,
    on: date,
    merchant,
    amount_cents: int,
    direction: TransactionDirection = TransactionDirection.expense,
    description: str = "Card payment",
) -> TransactionRecord:
    return TransactionRecord(
        id=txn_id,
        date=on,
        description=description,
        merchant=merchant,
        amount_cents=amount_cents,
        direction=direction,
    )


def _netflix() -> list[TransactionRecord]:
    # Gaps of 30, 32 and 28 days.
    return [
        _txn(1, date(2024, 1, 15), "Netflix", 3900),
        _txn(2, date(2024, 2, 14), "Netflix", 3900),
        _txn(3, date(2024, 3, 17), "Netflix", 3900),
        _txn(4, date(2024, 4, 14), "Netflix", 4000),
    ]


def test_detects_monthly_subscription():
    patterns = detect(_netflix(), today=TODAY)

    assert len(patterns) == 1
    pattern = patterns[0]
    assert pattern.merchant == "Netflix"
    assert pattern.normalized_merchant == "netflix"
    assert pattern.estimated_frequency == Frequency.monthly
    assert pattern.estimated_interval == 1
    assert pattern.estimated_day_of_month == 15
    assert pattern.occurrences == 4
    assert pattern.average_amount_cents == 3925
    assert pattern.amount_std_dev == pytest.approx(43.30, abs=0.01)
    assert 0.8 <= pattern.confidence <= MAX_CONFIDENCE
    assert pattern.last_date == date(2024, 4, 14)
    assert [t.id for t in pattern.transactions] == [1, 2, 3, 4]
    assert pattern.reason == (
        "Found 4 monthly transactions with 99% amount consistency on day 15 of month"
    )


def test_input_order_does_not_matter():
    shuffled = list(reversed(_netflix()))
    assert detect(shuffled, today=TODAY) == detect(_netflix(), today=TODAY)


def test_same_month_duplicates_never_form_a_pattern():
    txns = [
        _txn(1, date(2024, 3, 1), "Coffee Corner", 1500),
        _txn(2, date(2024, 3, 8), "Coffee Corner", 1500),
        _txn(3, date(2024, 3, 15), "Coffee Corner", 1500),
        _txn(4, date(2024, 3, 22), "Coffee Corner", 1500),
    ]
    assert detect(txns, today=TODAY) == []


def test_rejects_inconsistent_amounts():
    txns = [
        _txn(1, date(2024, 3, 1), "Supermarket", 1000),
        _txn(2, date(2024, 4, 1), "Supermarket", 3000),
    ]
    assert detect(txns, today=TODAY) == []


def test_rejects_irregular_intervals():
    txns = [
        _txn(1, date(2024, 1, 1), "Hardware Store", 2000),
        _txn(2, date(2024, 1, 20), "Hardware Store", 2000),
        _txn(3, date(2024, 3, 24), "Hardware Store", 2000),
        _txn(4, date(2024, 3, 31), "Hardware Store", 2000),
    ]
    assert detect(txns, today=TODAY) == []


def test_ignores_income_and_transfers():
    txns = [
        _txn(i, date(2024, m, 1), "Employer", 900000, TransactionDirection.income)
        for i, m in enumerate(range(1, 6), start=1)
    ] + [
        _txn(i, date(2024, m, 2), "Savings", 50000, TransactionDirection.transfer)
        for i, m in enumerate(range(1, 6), start=10)
    ]
    assert detect(txns, today=TODAY) == []


def test_lookback_window_excludes_old_history():
    txns = [
        _txn(1, date(2023, 3, 1), "Old Gym", 5000),
        _txn(2, date(2023, 4, 1), "Old Gym", 5000),
    ]
    assert detect(txns, today=TODAY) == []
    wide = PatternDetectionConfig(lookback_months=24)
    assert len(detect(txns, wide, today=TODAY)) == 1


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  Spotify   AB  Ltd. ", "spotify ab"),
        ("ACME Co", "acme"),
        ("Acme Company Inc.", "acme"),
        ("Costco", "costco"),
        ("Big Corp LLC", "big"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_merchant(raw, expected):
    assert normalize_merchant(raw) == expected


def test_groups_merchant_name_variants_together():
    txns = [
        _txn(1, date(2024, 3, 5), "Gym Ltd", 8000),
        _txn(2, date(2024, 4, 5), "GYM", 8000),
        _txn(3, date(2024, 5, 5), "gym inc", 8000),
    ]
    patterns = detect(txns, today=TODAY)
    assert len(patterns) == 1
    assert patterns[0].normalized_merchant == "gym"
    assert patterns[0].merchant == "gym inc"
    assert patterns[0].occurrences == 3


def test_falls_back_to_description_when_merchant_missing():
    txns = [
        _txn(1, date(2024, 3, 10), None, 2500, description="City Water"),
        _txn(2, date(2024, 4, 10), None, 2500, description="CITY WATER"),
    ]
    patterns = detect(txns, today=TODAY)
    assert [p.normalized_merchant for p in patterns] == ["city water"]


def test_weekly_pattern_has_no_day_of_month():
    start = date(2024, 5, 20)
    txns = [
        _txn(i, start + timedelta(weeks=i), "Farmers Market", 3000) for i in range(4)
    ]
    pattern = detect(txns, today=TODAY)[0]
    assert pattern.estimated_frequency == Frequency.weekly
    assert pattern.estimated_interval == 1
    assert pattern.estimated_day_of_month is None
    assert pattern.reason == (
        "Found 4 weekly transactions with 100% amount consistency"
    )


def test_biweekly_pattern():
    start = date(2024, 4, 1)
    txns = [
        _txn(i, start + timedelta(days=14 * i), "Cleaner", 12000) for i in range(4)
    ]
    pattern = detect(txns, today=TODAY)[0]
    assert (pattern.estimated_frequency, pattern.estimated_interval) == (
        Frequency.weekly,
        2,
    )
    assert "bi-weekly" in pattern.reason


def test_quarterly_pattern():
    txns = [
        _txn(1, date(2023, 9, 1), "Water Utility", 18000),
        _txn(2, date(2023, 12, 1), "Water Utility", 18000),
        _txn(3, date(2024, 3, 1), "Water Utility", 18000),
    ]
    config = PatternDetectionConfig(lookback_months=12)
    pattern = detect(txns, config, today=TODAY)[0]
    assert pattern.estimated_frequency == Frequency.monthly
    assert pattern.estimated_interval == 3
    assert pattern.estimated_day_of_month == 1
    assert "every 3 months" in pattern.reason


def test_yearly_pattern():
    txns = [
        _txn(1, date(2023, 3, 10), "Car Insurance", 240000),
        _txn(2, date(2024, 3, 9), "Car Insurance", 240000),
    ]
    config = PatternDetectionConfig(lookback_months=24)
    pattern = detect(txns, config, today=TODAY)[0]
    assert pattern.estimated_frequency == Frequency.yearly
    assert pattern.estimated_interval == 1
    assert pattern.estimated_day_of_month is None


@pytest.mark.parametrize(
    "avg_days, expected",
    [
        (7, (Frequency.weekly, 1)),
        (14, (Frequency.weekly, 2)),
        (30, (Frequency.monthly, 1)),
        (61, (Frequency.monthly, 2)),
        (90, (Frequency.monthly, 3)),
        (365, (Frequency.yearly, 1)),
        (45, (Frequency.monthly, 2)),
        (10, (Frequency.monthly, 1)),
        (200, (Frequency.monthly, 7)),
    ],
)
def test_classify_frequency(avg_days, expected):
    assert classify_frequency(avg_days) == expected


def test_consistency_edge_cases():
    assert consistency([]) == 0.0
    assert consistency([500]) == 1.0
    assert consistency([0, 0]) == 0.0
    assert consistency([100, 100, 100]) == 1.0


def test_confidence_is_capped():
    assert pattern_confidence(10, 1.0, 1.0) == MAX_CONFIDENCE
    assert pattern_confidence(2, 1.0, 1.0) == pytest.approx(0.88)

    start = date(2024, 4, 1)
    txns = [_txn(i, start + timedelta(weeks=i), "Paper", 700) for i in range(10)]
    assert detect(txns, today=TODAY)[0].confidence == MAX_CONFIDENCE


def test_patterns_sorted_by_confidence():
    txns = _netflix() + [
        _txn(10, date(2024, 4, 5), "Yoga Studio", 5000),
        _txn(11, date(2024, 5, 5), "Yoga Studio", 5000),
    ]
    patterns = detect(txns, today=TODAY)
    assert [p.normalized_merchant for p in patterns] == ["netflix", "yoga studio"]
    assert patterns[0].confidence > patterns[1].confidence


def test_min_occurrences_config():
    txns = [
        _txn(10, date(2024, 4, 5), "Yoga Studio", 5000),
        _txn(11, date(2024, 5, 5), "Yoga Studio", 5000),
    ]
    strict = PatternDetectionConfig(min_occurrences=3)
    assert detect(txns, strict, today=TODAY) == []


def test_empty_input_yields_no_patterns():
    assert detect([], today=TODAY) == []


def test_pattern_feeds_the_expander():
    pattern = detect(_netflix(), today=TODAY)[0]
    template = template_from_pattern(pattern, household_id=1, template_id=42)

    assert template.name == "Netflix (recurring)"
    assert template.start_date == date(2024, 4, 14)
    assert template.by_month_day == 15
    assert template.direction == TransactionDirection.expense

    occurrences = expand_month(template, 2024, 5)
    assert [(o.date, o.amount_cents) for o in occurrences] == [(date(2024, 5, 15), 3925)]
