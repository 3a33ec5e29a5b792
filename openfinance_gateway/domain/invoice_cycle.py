"""Credit-card invoice cycle arithmetic"""

import calendar
from datetime import date
from typing import Dict, Iterable, List, Optional, Union

from openfinance_gateway.domain.models import ProviderBill
from openfinance_gateway.utils.date_utils import month_key, parse_iso_date


def add_months(day: date, months: int) -> date:
    """
    Calendar-month addition on plain dates.

    The day of month is clamped to the target month's length, so
    2024-01-31 + 1 month is 2024-02-29 rather than spilling into March.
    """
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def compute_invoice_month_key(
    txn_date: Union[date, str, None],
    closing_day: Optional[int] = None,
    due_day: Optional[int] = None,
) -> Optional[str]:
    """
    Assign a card transaction to its invoice month (YYYY-MM).

    Rules, applied in sequence:
    1. Purchases after the closing day belong to the next month's invoice.
    2. When the due day is earlier in the month than the closing day, the
       invoice is due in the month after the one selected so far.

    Both rules can fire for the same purchase (late-month purchase on a card
    that closes on the 25th and is due on the 5th rolls forward twice).

    Returns:
        "YYYY-MM", or None when the transaction date is missing/unparseable
    """
    day = parse_iso_date(txn_date)
    if day is None:
        return None

    cycle = date(day.year, day.month, 1)

    if closing_day and day.day > closing_day:
        cycle = add_months(cycle, 1)

    if closing_day and due_day and due_day < closing_day:
        cycle = add_months(cycle, 1)

    return month_key(cycle)


def parse_month_key(key: Optional[str]) -> Optional[date]:
    """First day of the month named by a YYYY-MM key"""
    if not key or len(key) < 7:
        return None
    try:
        year, month = int(key[:4]), int(key[5:7])
        return date(year, month, 1)
    except ValueError:
        return None


def add_months_to_key(key: str, months: int) -> str:
    """Shift a YYYY-MM key by whole months"""
    first = parse_month_key(key)
    if first is None:
        raise ValueError(f"Invalid month key: {key!r}")
    return month_key(add_months(first, months))


def build_due_date(key: Optional[str], due_day: Optional[int]) -> Optional[date]:
    """Due date of an invoice month; due days past the month's end land on its last day"""
    first = parse_month_key(key)
    if first is None or not due_day:
        return None
    last_day = calendar.monthrange(first.year, first.month)[1]
    return first.replace(day=min(due_day, last_day))


def month_key_from_bill(bill: ProviderBill) -> Optional[str]:
    """Invoice month of a bill: closing date when known, otherwise due date"""
    anchor = bill.balance_close_date or bill.due_date
    return month_key(anchor) if anchor else None


def bill_totals_by_month_key(bills: Iterable[ProviderBill]) -> Dict[str, float]:
    """Statement total per invoice month; if a month has several bills the largest total wins"""
    totals: Dict[str, float] = {}
    for bill in bills:
        key = month_key_from_bill(bill)
        if key is None or bill.total_amount is None:
            continue
        totals[key] = max(totals.get(key, bill.total_amount), bill.total_amount)
    return totals


def infer_latest_bill_month_key(bills: Iterable[ProviderBill]) -> Optional[str]:
    keys = sorted(k for k in (month_key_from_bill(b) for b in bills) if k)
    return keys[-1] if keys else None


def pick_current_bill(bills: Iterable[ProviderBill], today: date) -> Optional[ProviderBill]:
    """First bill not yet due; when every bill is past due, the most recent one"""
    ordered: List[ProviderBill] = sorted(bills, key=lambda b: b.due_date)
    for bill in ordered:
        if bill.due_date >= today:
            return bill
    return ordered[-1] if ordered else None
