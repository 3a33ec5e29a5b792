"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class FinanceCharges:
    """Interest and fees charged on a credit-card statement"""

    iof: float = 0.0
    interest: float = 0.0
    late_fee: float = 0.0
    other_charges: float = 0.0
    total: float = 0.0
    details: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ProviderBill:
    """One credit-card statement as reported by the aggregator"""

    id: Optional[str]
    due_date: date
    total_amount: Optional[float] = None
    total_amount_currency_code: Optional[str] = None
    minimum_payment_amount: Optional[float] = None
    allows_installments: Optional[bool] = None
    finance_charges: Optional[FinanceCharges] = None
    balance_close_date: Optional[date] = None
    state: Optional[str] = None  # OPEN | CLOSED | FUTURE
    paid_amount: Optional[float] = None


@dataclass
class ConnectedAccount:
    """Canonical bank or credit-card account sourced from the aggregator"""

    id: Optional[str]  # None only for malformed input, which callers drop
    item_id: Optional[str]
    name: str
    institution: str
    balance: Optional[float]
    currency: Optional[str]

    type: Optional[str] = None
    subtype: Optional[str] = None
    account_type_name: Optional[str] = None
    is_credit: bool = False
    is_savings: bool = False
    is_checking: bool = False

    # Credit card only; None means "unknown", never zero
    credit_limit: Optional[float] = None
    available_credit_limit: Optional[float] = None
    brand: Optional[str] = None
    balance_close_date: Optional[date] = None
    balance_due_date: Optional[date] = None
    minimum_payment: Optional[float] = None
    closing_day: Optional[int] = None
    due_day: Optional[int] = None
    current_invoice_month_key: Optional[str] = None
    current_invoice_due_date: Optional[date] = None
    bills: Optional[List[ProviderBill]] = None

    # Bank account only
    bank_number: Optional[str] = None
    branch_number: Optional[str] = None
    transfer_number: Optional[str] = None
    account_number: Optional[str] = None

    last_updated: Optional[datetime] = None
    connection_mode: str = "AUTO"


@dataclass
class DailyCreditRecord:
    """Per-user quota counter; count only applies while date is the user's local today"""

    date: str  # YYYY-MM-DD
    count: int


@dataclass
class LinkedItem:
    """Existing aggregator connection shown in the manage-connections list"""

    id: str
    connector_name: Optional[str] = None
    connector_image_url: Optional[str] = None
    status: Optional[str] = None
    orphan: bool = False  # Known only from an error payload, not yet confirmed by a list fetch


@dataclass
class LinkedItemsResult:
    """Linked items plus whether they came from the aggregator itself"""

    items: List[LinkedItem]
    authoritative: bool


@dataclass
class SyncSummary:
    """Account counts per kind for one synced item"""

    checking: int = 0
    savings: int = 0
    credit: int = 0


class ErrorCategory(str, Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ClassifiedError:
    """Provider/transport failure mapped to a category and a user-facing message"""

    category: ErrorCategory
    message: str
    code: Optional[str] = None
    can_retry: bool = True
    item_id: Optional[str] = None


class QuotaState(str, Enum):
    LOADING = "loading"
    EXHAUSTED = "exhausted"
    AVAILABLE = "available"


class SessionPhase(str, Enum):
    IDLE = "idle"
    REQUESTING_TOKEN = "requesting-token"
    READY = "ready"
    WIDGET_OPEN = "widget-open"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"
    MANAGE = "manage"


@dataclass(frozen=True)
class ConnectionSession:
    """Working state of one connect/sync attempt; lives only while the connection UI is open"""

    user_id: str
    phase: SessionPhase = SessionPhase.IDLE
    connect_token: Optional[str] = None
    item_id: Optional[str] = None
    error: Optional[ClassifiedError] = None
    linked_items: Tuple[LinkedItem, ...] = ()
    accounts: Tuple[ConnectedAccount, ...] = ()
    summary: Optional[SyncSummary] = None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None
