"""Unit tests for credit-card invoice cycle arithmetic"""

import pytest
from datetime import date, timedelta
from openfinance_gateway.domain.models import ProviderBill
from openfinance_gateway.domain.invoice_cycle import (
    add_months,
    add_months_to_key,
    bill_totals_by_month_key,
    build_due_date,
    compute_invoice_month_key,
    infer_latest_bill_month_key,
    pick_current_bill,
)


def test_purchase_before_closing_day_stays_in_month():
    """Test purchase on or before the closing day, due day after closing"""
    assert compute_invoice_month_key("2024-03-10", closing_day=10, due_day=20) == "2024-03"


def test_purchase_after_closing_day_rolls_to_next_month():
    """Test rule 1 alone: closing day passed, due day later in the month"""
    assert compute_invoice_month_key("2024-03-28", closing_day=10, due_day=20) == "2024-04"


def test_due_day_before_closing_day_rolls_forward():
    """Test rule 2 alone: invoice closes on the 25th and is due on the 5th of the next month"""
    assert compute_invoice_month_key("2024-03-10", closing_day=25, due_day=5) == "2024-04"


def test_both_rules_roll_forward_twice():
    """Regression: late purchase on a card closing on 25 and due on 5 moves two months"""
    assert compute_invoice_month_key("2024-03-28", closing_day=25, due_day=5) == "2024-05"


def test_double_rollover_crosses_year_boundary():
    assert compute_invoice_month_key("2024-12-28", closing_day=25, due_day=5) == "2025-02"
    assert compute_invoice_month_key("2024-12-28", closing_day=25) == "2025-01"


def test_no_cycle_days_uses_transaction_month():
    assert compute_invoice_month_key("2024-03-31") == "2024-03"
    assert compute_invoice_month_key(date(2024, 3, 31), due_day=5) == "2024-03"


def test_timestamp_input_uses_date_part():
    assert compute_invoice_month_key("2024-03-28T03:00:00.000Z", closing_day=25) == "2024-04"


@pytest.mark.parametrize("value", [None, "", "not-a-date", "2024-13-45"])
def test_missing_or_invalid_date_returns_none(value):
    assert compute_invoice_month_key(value, closing_day=25, due_day=5) is None


def test_add_months_clamps_to_month_end():
    """Test that Jan 31 + 1 month lands on the last day of February"""
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
    assert add_months(date(2024, 3, 15), -3) == date(2023, 12, 15)


def test_add_months_to_key():
    assert add_months_to_key("2024-12", 1) == "2025-01"
    assert add_months_to_key("2024-01", -1) == "2023-12"

    with pytest.raises(ValueError):
        add_months_to_key("garbage", 1)


def test_build_due_date():
    assert build_due_date("2024-06", 5) == date(2024, 6, 5)
    # Due day past the month's end
    assert build_due_date("2024-02", 31) == date(2024, 2, 29)
    assert build_due_date("2023-04", 31) == date(2023, 4, 30)
    assert build_due_date(None, 5) is None
    assert build_due_date("2024-06", None) is None


def test_bill_totals_prefer_closing_date_and_largest_total():
    bills = [
        ProviderBill(id="a", due_date=date(2024, 5, 5), total_amount=100.0),
        ProviderBill(id="b", due_date=date(2024, 5, 20), total_amount=150.0),
        ProviderBill(
            id="c",
            due_date=date(2024, 5, 5),
            total_amount=80.0,
            balance_close_date=date(2024, 4, 25),
        ),
        ProviderBill(id="d", due_date=date(2024, 6, 5), total_amount=None),
    ]

    totals = bill_totals_by_month_key(bills)

    assert totals == {"2024-05": 150.0, "2024-04": 80.0}


def test_infer_latest_bill_month_key():
    bills = [
        ProviderBill(id="a", due_date=date(2024, 6, 5)),
        ProviderBill(id="b", due_date=date(2024, 4, 5)),
    ]
    assert infer_latest_bill_month_key(bills) == "2024-06"
    assert infer_latest_bill_month_key([]) is None


def test_pick_current_bill():
    """Test first bill not yet due wins; otherwise the most recent one"""
    may = ProviderBill(id="may", due_date=date(2024, 5, 5))
    june = ProviderBill(id="june", due_date=date(2024, 6, 5))

    assert pick_current_bill([june, may], date(2024, 5, 1)) is may
    assert pick_current_bill([june, may], date(2024, 5, 20)) is june
    assert pick_current_bill([june, may], date(2024, 7, 1)) is june
    assert pick_current_bill([], date(2024, 7, 1)) is None


def test_month_key_always_valid_for_a_full_year():
    """Test month keys stay within 01..12 for every day and cycle-day combination"""
    cycle_days = [None, 1, 5, 15, 25, 28, 31]
    day = date(2024, 1, 1)
    while day.year == 2024:
        for closing_day in cycle_days:
            for due_day in cycle_days:
                key = compute_invoice_month_key(day, closing_day, due_day)
                year, month = int(key[:4]), int(key[5:7])
                assert len(key) == 7 and key[4] == "-"
                assert 1 <= month <= 12
                assert year in (2024, 2025)
        day += timedelta(days=1)
