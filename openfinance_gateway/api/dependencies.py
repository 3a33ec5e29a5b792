"""Dependency injection for FastAPI endpoints"""

import secrets
from typing import Dict

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import sessionmaker

from openfinance_gateway.infrastructure.clients.backend import BackendClient
from openfinance_gateway.infrastructure.database.session import get_session_factory
from openfinance_gateway.services.connections import ConnectionsRepository
from openfinance_gateway.services.orchestrator import ConnectionOrchestrator
from openfinance_gateway.services.quota_manager import QuotaManager


class SessionRegistry:
    """In-process orchestrators, one per open connection UI; never persisted"""

    def __init__(self):
        self._sessions: Dict[str, ConnectionOrchestrator] = {}

    def add(self, orchestrator: ConnectionOrchestrator) -> str:
        session_id = secrets.token_urlsafe(16)
        self._sessions[session_id] = orchestrator
        return session_id

    def get(self, session_id: str) -> ConnectionOrchestrator:
        orchestrator = self._sessions.get(session_id)
        if orchestrator is None:
            raise HTTPException(status_code=404, detail="Connection session not found")
        return orchestrator

    def discard(self, session_id: str) -> None:
        orchestrator = self._sessions.pop(session_id, None)
        if orchestrator is not None:
            orchestrator.close()


session_registry = SessionRegistry()


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_session_registry() -> SessionRegistry:
    return session_registry


def get_backend_client() -> BackendClient:
    """Provide application backend client instance"""
    return BackendClient()


def get_quota_manager(factory: sessionmaker = Depends(get_session_factory)) -> QuotaManager:
    return QuotaManager(factory)


def get_connections(backend: BackendClient = Depends(get_backend_client)) -> ConnectionsRepository:
    return ConnectionsRepository(backend)
