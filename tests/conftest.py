"""Pytest fixtures for testing"""

import pytest
from datetime import datetime, timezone
from typing import Any, Dict
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from openfinance_gateway.api.dependencies import SessionRegistry, get_backend_client, get_session_registry
from openfinance_gateway.api.main import create_app
from openfinance_gateway.infrastructure.clients.backend import BackendClient, ConnectTokenResponse
from openfinance_gateway.infrastructure.database.models import Base
from openfinance_gateway.infrastructure.database.session import get_session_factory
from openfinance_gateway.services.quota_manager import QuotaManager

# Noon in São Paulo on 2024-05-20
FIXED_NOW = datetime(2024, 5, 20, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker:
    """File-backed SQLite database so several connections (threads) can share it"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def quota_manager(session_factory: sessionmaker) -> QuotaManager:
    return QuotaManager(
        session_factory,
        max_per_day=3,
        timezone="America/Sao_Paulo",
        paid_plans=["pro", "family"],
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def backend() -> AsyncMock:
    """Backend client double; every call succeeds with empty data unless a test says otherwise"""
    mock = AsyncMock(spec=BackendClient)
    mock.create_token.return_value = ConnectTokenResponse(access_token="connect-token-123")
    mock.list_items.return_value = []
    mock.list_db_items.return_value = []
    mock.trigger_sync.return_value = None
    mock.delete_item.return_value = None
    return mock


@pytest.fixture
def client(session_factory: sessionmaker, backend: AsyncMock) -> TestClient:
    """Create FastAPI test client with test database and backend double"""
    app = create_app()
    registry = SessionRegistry()

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_backend_client] = lambda: backend
    app.dependency_overrides[get_session_registry] = lambda: registry
    return TestClient(app)


def raw_checking_account(**overrides: Any) -> Dict[str, Any]:
    account = {
        "id": "acc-checking",
        "itemId": "item-1",
        "type": "BANK",
        "subtype": "CHECKING_ACCOUNT",
        "name": "Conta Corrente",
        "balance": 1500.25,
        "currencyCode": "BRL",
        "bankData": {"transferNumber": "0001/12345-6"},
    }
    account.update(overrides)
    return account


def raw_credit_account(**overrides: Any) -> Dict[str, Any]:
    account = {
        "id": "acc-credit",
        "itemId": "item-1",
        "type": "CREDIT",
        "subtype": "CREDIT_CARD",
        "name": "Ultravioleta",
        "balance": 820.0,
        "currencyCode": "BRL",
        "creditData": {
            "brand": "Mastercard",
            "creditLimit": 5000,
            "availableCreditLimit": 4180,
            "balanceCloseDate": "2024-05-25",
            "balanceDueDate": "2024-06-05",
            "minimumPayment": 123.0,
        },
    }
    account.update(overrides)
    return account


@pytest.fixture
def sync_entries() -> list:
    """Raw sync payload: one checking, one card with bills, one account without a balance"""
    return [
        {"account": raw_checking_account(), "bills": []},
        {
            "account": raw_credit_account(),
            "bills": [
                {"id": "b1", "dueDate": "2024-05-05", "totalAmount": 700.5},
                {"id": "b2", "dueDate": "2024-06-05", "totalAmount": 820.0},
                {"id": "no-due-date", "totalAmount": 1.0},
            ],
        },
        {"account": raw_checking_account(id="acc-nan", balance=float("nan")), "bills": []},
    ]
