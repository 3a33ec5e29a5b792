"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from openfinance_gateway.domain.models import ErrorCategory


class StartSessionRequest(BaseModel):
    """Request body for POST /v1/connections/sessions"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    plan: Optional[str] = Field(None, description="Subscription plan (starter | pro | family)")


class WidgetItem(BaseModel):
    id: str


class WidgetSuccessRequest(BaseModel):
    """Widget onSuccess payload, forwarded verbatim"""

    item: Optional[WidgetItem] = None
    itemId: Optional[str] = None


class WidgetErrorRequest(BaseModel):
    """Widget onError payload, forwarded verbatim"""

    message: Optional[str] = None
    code: Optional[str] = None
    data: Optional[Any] = None


class RefreshRequest(BaseModel):
    """Request body for POST /v1/connections/items/{item_id}/refresh"""

    user_id: str = Field(..., min_length=1)
    plan: Optional[str] = None


class ErrorSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category: ErrorCategory
    message: str
    code: Optional[str] = None
    can_retry: bool = True
    item_id: Optional[str] = None


class LinkedItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    connector_name: Optional[str] = None
    connector_image_url: Optional[str] = None
    status: Optional[str] = None
    orphan: bool = False


class FinanceChargesSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    iof: float
    interest: float
    late_fee: float
    other_charges: float
    total: float
    details: List[Dict[str, Any]] = []


class ProviderBillSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    due_date: date
    total_amount: Optional[float] = None
    total_amount_currency_code: Optional[str] = None
    minimum_payment_amount: Optional[float] = None
    allows_installments: Optional[bool] = None
    finance_charges: Optional[FinanceChargesSchema] = None
    balance_close_date: Optional[date] = None
    state: Optional[str] = None
    paid_amount: Optional[float] = None


class ConnectedAccountSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    item_id: Optional[str] = None
    name: str
    institution: str
    balance: float
    currency: Optional[str] = None
    type: Optional[str] = None
    subtype: Optional[str] = None
    account_type_name: Optional[str] = None
    is_credit: bool
    is_savings: bool
    is_checking: bool
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
    bills: Optional[List[ProviderBillSchema]] = None
    bank_number: Optional[str] = None
    branch_number: Optional[str] = None
    transfer_number: Optional[str] = None
    account_number: Optional[str] = None
    last_updated: Optional[datetime] = None
    connection_mode: str


class SyncSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    checking: int
    savings: int
    credit: int


class SessionResponse(BaseModel):
    """Current state of a connection session"""

    session_id: str
    phase: str
    connect_token: Optional[str] = None
    item_id: Optional[str] = None
    error: Optional[ErrorSchema] = None
    linked_items: List[LinkedItemSchema]
    accounts: List[ConnectedAccountSchema]
    summary: Optional[SyncSummarySchema] = None


class LinkedItemsResponse(BaseModel):
    """Response for GET /v1/connections/items"""

    user_id: str
    authoritative: bool
    items: List[LinkedItemSchema]


class DeleteItemResponse(BaseModel):
    """Response for DELETE /v1/connections/items/{item_id}"""

    item_id: str
    deleted: bool
    remaining: Optional[int]  # None when the list could not be loaded
    connect_new: bool  # True when nothing is left to manage


class QuotaResponse(BaseModel):
    """Response for GET /v1/quota"""

    user_id: Optional[str] = None
    state: str
    used_today: int
    remaining: int
    max_per_day: int
    resets_at: datetime
