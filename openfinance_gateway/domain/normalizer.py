"""
Provider account normalization.

Aggregator payloads differ per institution: the same concept can live in
several fields, and display fields sometimes carry raw account numbers. Each
canonical field is resolved by an ordered list of small resolver functions;
the first one that produces a value wins.
"""

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from openfinance_gateway.domain.invoice_cycle import build_due_date, compute_invoice_month_key
from openfinance_gateway.domain.models import ConnectedAccount, FinanceCharges, ProviderBill
from openfinance_gateway.utils.date_utils import parse_iso_date

T = TypeVar("T")
Raw = Mapping[str, Any]
Resolver = Callable[[Raw], Optional[str]]

CREDIT_CARD_FALLBACK_NAME = "Cartão de Crédito"
BANK_ACCOUNT_FALLBACK_NAME = "Conta"
INSTITUTION_FALLBACK_NAME = "Banco"
SAVINGS_LABEL = "Poupança"
CHECKING_LABEL = "Conta Corrente"
PAYMENT_ACCOUNT_LABEL = "Conta de Pagamento"

GENERIC_ACCOUNT_TYPE_NAMES = {
    "",
    "conta",
    "account",
    "bank",
    "banco",
    "bank account",
    "conta bancaria",
    "conta bancária",
    "other",
    "outros",
}

# 123/4567/8, 0001-123456, 12345678
ACCOUNT_NUMBER_PATTERNS = (
    re.compile(r"^\d+/\d+/"),
    re.compile(r"^\d+\s*[-/]"),
    re.compile(r"\d{6,}"),
)


def first_non_null(resolvers: Sequence[Callable[[Raw], Optional[T]]], raw: Raw) -> Optional[T]:
    """Run resolvers in order and return the first non-empty result"""
    for resolver in resolvers:
        value = resolver(raw)
        if value is not None and value != "":
            return value
    return None


# ---------------------------------------------------------------------------
# Field access helpers
# ---------------------------------------------------------------------------


def _section(raw: Raw, key: str) -> Raw:
    value = raw.get(key)
    return value if isinstance(value, Mapping) else {}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _number(value: Any) -> Optional[float]:
    """Coerce to float; missing or non-numeric input becomes None (NaN passes through)"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _finite(value: Any) -> Optional[float]:
    number = _number(value)
    return number if number is not None and math.isfinite(number) else None


def _upper(raw: Raw, key: str) -> str:
    return (_text(raw.get(key)) or "").upper()


def _starts_with_digit(text: str) -> bool:
    return bool(text) and text[0].isdigit()


def looks_like_account_number(text: Optional[str]) -> bool:
    if not text:
        return False
    return any(pattern.search(text.strip()) for pattern in ACCOUNT_NUMBER_PATTERNS)


def has_finite_balance(account: ConnectedAccount) -> bool:
    """Admission rule applied by callers before an account is shown or stored"""
    return isinstance(account.balance, (int, float)) and math.isfinite(account.balance)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def is_credit_account(raw: Raw) -> bool:
    return "CREDIT" in _upper(raw, "type") or "CREDIT" in _upper(raw, "subtype")


def is_savings_account(raw: Raw) -> bool:
    if is_credit_account(raw):
        return False
    if raw.get("isSavings") is True:
        return True
    return "SAVINGS" in _upper(raw, "subtype") or "SAVINGS" in _upper(raw, "type")


def is_checking_account(raw: Raw) -> bool:
    if is_credit_account(raw) or is_savings_account(raw):
        return False
    if raw.get("isChecking") is True:
        return True
    return "CHECKING" in _upper(raw, "subtype") or _upper(raw, "type") == "BANK"


def resolve_account_type_name(raw: Raw) -> Optional[str]:
    if is_credit_account(raw):
        return CREDIT_CARD_FALLBACK_NAME
    if is_savings_account(raw):
        return SAVINGS_LABEL
    if is_checking_account(raw):
        return CHECKING_LABEL
    return _explicit_account_type_name(raw)


# ---------------------------------------------------------------------------
# Display name: credit cards
# ---------------------------------------------------------------------------


def _brand(raw: Raw) -> Optional[str]:
    return _text(_section(raw, "creditData").get("brand")) or _text(raw.get("brand"))


def _card_name(raw: Raw) -> Optional[str]:
    credit = _section(raw, "creditData")
    return (
        _text(credit.get("cardName"))
        or _text(raw.get("cardName"))
        or _text(raw.get("marketingName"))
        or _text(raw.get("name"))
    )


def _brand_with_card_name(raw: Raw) -> Optional[str]:
    brand, card = _brand(raw), _card_name(raw)
    if not brand or not card or _starts_with_digit(card):
        return None
    if brand.lower() in card.lower():
        return None
    return f"{brand} {card}"


def _card_name_containing_brand(raw: Raw) -> Optional[str]:
    # "Nubank Platinum" already says "Nubank"; keep it as is
    brand, card = _brand(raw), _card_name(raw)
    if brand and card and not _starts_with_digit(card) and brand.lower() in card.lower():
        return card
    return None


def _brand_alone(raw: Raw) -> Optional[str]:
    return _brand(raw)


def _non_numeric_card_name(raw: Raw) -> Optional[str]:
    card = _card_name(raw)
    if card and not _starts_with_digit(card):
        return card
    return None


CREDIT_NAME_RESOLVERS: List[Resolver] = [
    _brand_with_card_name,
    _card_name_containing_brand,
    _brand_alone,
    _non_numeric_card_name,
]


# ---------------------------------------------------------------------------
# Display name: bank accounts
# ---------------------------------------------------------------------------


def _explicit_account_type_name(raw: Raw) -> Optional[str]:
    name = _text(raw.get("accountTypeName"))
    if name and name.lower() not in GENERIC_ACCOUNT_TYPE_NAMES:
        return name
    return None


def _marketing_name(raw: Raw) -> Optional[str]:
    return _text(raw.get("marketingName"))


def _readable_raw_name(raw: Raw) -> Optional[str]:
    name = _text(raw.get("name"))
    if name and not looks_like_account_number(name):
        return name
    return None


def _name_from_flags(raw: Raw) -> Optional[str]:
    if raw.get("isSavings") is True:
        return SAVINGS_LABEL
    if raw.get("isChecking") is True:
        return CHECKING_LABEL
    return None


def _name_from_type(raw: Raw) -> Optional[str]:
    kind = f"{_upper(raw, 'type')} {_upper(raw, 'subtype')}"
    if "SAVINGS" in kind:
        return SAVINGS_LABEL
    if "CHECKING" in kind:
        return CHECKING_LABEL
    if "PAYMENT" in kind:
        return PAYMENT_ACCOUNT_LABEL
    return None


BANK_NAME_RESOLVERS: List[Resolver] = [
    _explicit_account_type_name,
    _marketing_name,
    _readable_raw_name,
    _name_from_flags,
    _name_from_type,
]


def resolve_display_name(raw: Raw) -> str:
    if is_credit_account(raw):
        return first_non_null(CREDIT_NAME_RESOLVERS, raw) or CREDIT_CARD_FALLBACK_NAME
    return first_non_null(BANK_NAME_RESOLVERS, raw) or BANK_ACCOUNT_FALLBACK_NAME


# ---------------------------------------------------------------------------
# Institution
# ---------------------------------------------------------------------------


def _connector_name(raw: Raw) -> Optional[str]:
    return _text(raw.get("connectorName")) or _text(_section(raw, "connector").get("name"))


def _item_connector_name(raw: Raw) -> Optional[str]:
    item = _section(raw, "item")
    return _text(item.get("connectorName")) or _text(_section(item, "connector").get("name"))


def _organization_name(raw: Raw) -> Optional[str]:
    return _text(_section(raw, "bankData").get("organizationName"))


def _marketing_name_as_institution(raw: Raw) -> Optional[str]:
    name = _marketing_name(raw)
    if name and not _starts_with_digit(name):
        return name
    return None


INSTITUTION_RESOLVERS: List[Resolver] = [
    _connector_name,
    _item_connector_name,
    _organization_name,
    _marketing_name_as_institution,
]


def resolve_institution(raw: Raw) -> str:
    return first_non_null(INSTITUTION_RESOLVERS, raw) or INSTITUTION_FALLBACK_NAME


# ---------------------------------------------------------------------------
# Account number
# ---------------------------------------------------------------------------


def _bank_data_field(*keys: str) -> Resolver:
    def resolver(raw: Raw) -> Optional[str]:
        bank = _section(raw, "bankData")
        for key in keys:
            value = _text(bank.get(key))
            if value:
                return value
        return None

    return resolver


def _top_level_field(*keys: str) -> Resolver:
    def resolver(raw: Raw) -> Optional[str]:
        for key in keys:
            value = _text(raw.get(key))
            if value:
                return value
        return None

    return resolver


def _number_like_name(raw: Raw) -> Optional[str]:
    name = _text(raw.get("name"))
    return name if looks_like_account_number(name) else None


ACCOUNT_NUMBER_RESOLVERS: List[Resolver] = [
    _bank_data_field("accountNumber", "number"),
    _top_level_field("accountNumber", "number"),
    _number_like_name,
]


def resolve_account_number(raw: Raw) -> Optional[str]:
    return first_non_null(ACCOUNT_NUMBER_RESOLVERS, raw)


# ---------------------------------------------------------------------------
# Bills
# ---------------------------------------------------------------------------

_CHARGE_TYPES = {
    "IOF": "iof",
    "LATE_PAYMENT_INTEREST": "interest",
    "INTEREST": "interest",
    "LATE_PAYMENT_FEE": "late_fee",
    "LATE_FEE": "late_fee",
}


def normalize_finance_charges(raw: Any) -> Optional[FinanceCharges]:
    """Accept either {iof, interest, lateFee, ...} or a list of {type, amount} entries"""
    if isinstance(raw, Mapping):
        charges = FinanceCharges(
            iof=_finite(raw.get("iof")) or 0.0,
            interest=_finite(raw.get("interest")) or 0.0,
            late_fee=_finite(raw.get("lateFee")) or 0.0,
            other_charges=_finite(raw.get("otherCharges")) or 0.0,
            details=list(raw.get("details") or []),
        )
        total = _finite(raw.get("total"))
        charges.total = total if total is not None else (
            charges.iof + charges.interest + charges.late_fee + charges.other_charges
        )
        return charges

    if isinstance(raw, list):
        charges = FinanceCharges()
        for entry in raw:
            if not isinstance(entry, Mapping):
                continue
            amount = _finite(entry.get("amount")) or 0.0
            slot = _CHARGE_TYPES.get(_upper(entry, "type"), "other_charges")
            setattr(charges, slot, getattr(charges, slot) + amount)
            charges.details.append(
                {"type": entry.get("type"), "amount": amount, "date": entry.get("date")}
            )
        charges.total = charges.iof + charges.interest + charges.late_fee + charges.other_charges
        return charges

    return None


def _first_present(raw: Raw, *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def normalize_bill(raw: Any) -> Optional[ProviderBill]:
    """Map a raw bill; bills without a usable due date are dropped (None)"""
    if not isinstance(raw, Mapping):
        return None

    due_date = parse_iso_date(_first_present(raw, "dueDate", "invoiceDueDate", "nextDueDate"))
    if due_date is None:
        return None

    allows_installments = raw.get("allowsInstallments")
    return ProviderBill(
        id=_text(raw.get("id")),
        due_date=due_date,
        total_amount=_finite(_first_present(raw, "totalAmount", "amount", "total", "totalValue")),
        total_amount_currency_code=_text(raw.get("totalAmountCurrencyCode")),
        minimum_payment_amount=_finite(
            _first_present(raw, "minimumPaymentAmount", "minimumPayment", "minimumAmount")
        ),
        allows_installments=allows_installments if isinstance(allows_installments, bool) else None,
        finance_charges=normalize_finance_charges(raw.get("financeCharges")),
        balance_close_date=parse_iso_date(
            _first_present(raw, "balanceCloseDate", "closeDate", "closingDate", "statementDate")
        ),
        state=_text(raw.get("state")),
        paid_amount=_finite(raw.get("paidAmount")),
    )


def normalize_bills(raw_bills: Optional[Iterable[Any]]) -> List[ProviderBill]:
    bills = [bill for bill in (normalize_bill(raw) for raw in raw_bills or []) if bill is not None]
    bills.sort(key=lambda b: b.due_date)
    return bills


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


def _day_of(value: Optional[date]) -> Optional[int]:
    return value.day if value else None


def normalize_account(
    raw: Raw,
    raw_bills: Optional[Iterable[Any]] = None,
    now: Optional[datetime] = None,
) -> ConnectedAccount:
    """
    Convert one raw provider account (plus its raw bills) into a ConnectedAccount.

    Never raises on a missing or invalid balance: the value is copied as-is
    (None when absent or non-numeric) and admission is left to the caller via
    has_finite_balance().
    """
    now = now or datetime.now(timezone.utc)
    credit_account = is_credit_account(raw)
    bank = _section(raw, "bankData")

    account = ConnectedAccount(
        id=_text(raw.get("id")),
        item_id=_text(raw.get("itemId")) or _text(_section(raw, "item").get("id")),
        name=resolve_display_name(raw),
        institution=resolve_institution(raw),
        balance=_number(raw.get("balance")),
        currency=_text(raw.get("currencyCode")) or _text(raw.get("currency")),
        type=_text(raw.get("type")),
        subtype=_text(raw.get("subtype")),
        account_type_name=resolve_account_type_name(raw),
        is_credit=credit_account,
        is_savings=is_savings_account(raw),
        is_checking=is_checking_account(raw),
        bank_number=_text(bank.get("bankNumber")) or _text(bank.get("compeCode")),
        branch_number=_text(bank.get("branchNumber")) or _text(bank.get("agency")),
        transfer_number=_text(bank.get("transferNumber")),
        account_number=resolve_account_number(raw),
        last_updated=now,
    )

    if credit_account:
        credit = _section(raw, "creditData")
        account.credit_limit = _finite(credit.get("creditLimit"))
        account.available_credit_limit = _finite(credit.get("availableCreditLimit"))
        account.brand = _brand(raw)
        account.balance_close_date = parse_iso_date(credit.get("balanceCloseDate"))
        account.balance_due_date = parse_iso_date(credit.get("balanceDueDate"))
        account.minimum_payment = _finite(credit.get("minimumPayment"))
        account.closing_day = _day_of(account.balance_close_date)
        account.due_day = _day_of(account.balance_due_date)
        account.current_invoice_month_key = compute_invoice_month_key(
            now.date(), account.closing_day, account.due_day
        )
        account.current_invoice_due_date = build_due_date(
            account.current_invoice_month_key, account.due_day
        )
        account.bills = normalize_bills(raw_bills)

    return account
