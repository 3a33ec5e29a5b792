"""/v1/connections - bank connection sessions and linked-item management"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from openfinance_gateway.api.dependencies import (
    SessionRegistry,
    get_backend_client,
    get_connections,
    get_quota_manager,
    get_request_id,
    get_session_registry,
)
from openfinance_gateway.api.v1.schemas import (
    ConnectedAccountSchema,
    DeleteItemResponse,
    ErrorSchema,
    LinkedItemSchema,
    LinkedItemsResponse,
    RefreshRequest,
    SessionResponse,
    StartSessionRequest,
    SyncSummarySchema,
    WidgetErrorRequest,
    WidgetSuccessRequest,
)
from openfinance_gateway.domain.exceptions import (
    BackendAPIError,
    InvalidSessionTransition,
    QuotaExhaustedError,
    SessionClosedError,
)
from openfinance_gateway.domain.models import ConnectionSession
from openfinance_gateway.infrastructure.clients.backend import BackendClient
from openfinance_gateway.services.connections import ConnectionsRepository
from openfinance_gateway.services.orchestrator import ConnectionOrchestrator
from openfinance_gateway.services.quota_manager import QuotaManager

router = APIRouter()


def to_response(session_id: str, session: ConnectionSession) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        phase=session.phase.value,
        connect_token=session.connect_token,
        item_id=session.item_id,
        error=ErrorSchema.model_validate(session.error) if session.error else None,
        linked_items=[LinkedItemSchema.model_validate(item) for item in session.linked_items],
        accounts=[ConnectedAccountSchema.model_validate(account) for account in session.accounts],
        summary=SyncSummarySchema.model_validate(session.summary) if session.summary else None,
    )


def backend_http_error(e: BackendAPIError, request_id: str) -> HTTPException:
    logging.error(f"Backend API error: {e}", extra={"request_id": request_id})
    if e.is_transport_failure:
        return HTTPException(status_code=503, detail="Backend service unavailable")
    return HTTPException(status_code=502, detail="Backend service error")


@router.post("/connections/sessions", response_model=SessionResponse, status_code=201)
async def start_session(
    request_body: StartSessionRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    backend: BackendClient = Depends(get_backend_client),
    quota: QuotaManager = Depends(get_quota_manager),
):
    """
    Open a connection session and request a connect token.

    Lands in "ready", in "manage" when the user already has linked items,
    or in "error" when the token could not be minted.
    """
    orchestrator = ConnectionOrchestrator(request_body.user_id, request_body.plan, backend, quota)
    session_id = registry.add(orchestrator)
    session = await orchestrator.request_token()
    return to_response(session_id, session)


@router.get("/connections/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    return to_response(session_id, registry.get(session_id).session)


@router.post("/connections/sessions/{session_id}/open", response_model=SessionResponse)
def open_widget(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    """Re-check quota and open the widget; the connect token is in the response"""
    orchestrator = registry.get(session_id)
    try:
        session = orchestrator.open_widget()
    except (InvalidSessionTransition, SessionClosedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return to_response(session_id, session)


@router.post("/connections/sessions/{session_id}/success", response_model=SessionResponse)
async def widget_success(
    session_id: str,
    request_body: WidgetSuccessRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Forwarded widget onSuccess; consumes a credit and runs the full sync"""
    orchestrator = registry.get(session_id)
    try:
        await orchestrator.on_widget_success(request_body.model_dump(exclude_none=True))
    except (InvalidSessionTransition, SessionClosedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return to_response(session_id, orchestrator.session)


@router.post("/connections/sessions/{session_id}/error", response_model=SessionResponse)
async def widget_error(
    session_id: str,
    request_body: WidgetErrorRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Forwarded widget onError; duplicates land in the manage view"""
    orchestrator = registry.get(session_id)
    try:
        session = await orchestrator.on_widget_error(request_body.model_dump())
    except (InvalidSessionTransition, SessionClosedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return to_response(session_id, session)


@router.post("/connections/sessions/{session_id}/retry", response_model=SessionResponse)
async def retry_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    orchestrator = registry.get(session_id)
    try:
        session = await orchestrator.request_token()
    except (InvalidSessionTransition, SessionClosedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return to_response(session_id, session)


@router.delete("/connections/sessions/{session_id}/items/{item_id}", response_model=SessionResponse)
async def delete_session_item(
    session_id: str,
    item_id: str,
    request: Request,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Delete a link from the session's manage view (orphans included).
    Deleting the last one restarts the flow with a fresh connect token.
    """
    orchestrator = registry.get(session_id)
    try:
        session = await orchestrator.delete_linked_item(item_id)
    except (InvalidSessionTransition, SessionClosedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except BackendAPIError as e:
        raise backend_http_error(e, get_request_id(request))
    return to_response(session_id, session)


@router.delete("/connections/sessions/{session_id}", status_code=204)
def close_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    """Connection UI closed; in-flight work for this session is ignored from now on"""
    registry.discard(session_id)


@router.get("/connections/items", response_model=LinkedItemsResponse)
async def list_items(
    request: Request,
    user_id: str = Query(..., min_length=1, description="User identifier"),
    connections: ConnectionsRepository = Depends(get_connections),
):
    """Linked items from the aggregator, or the local mirror when it refuses access"""
    try:
        result = await connections.list_linked_items(user_id)
    except BackendAPIError as e:
        raise backend_http_error(e, get_request_id(request))
    return LinkedItemsResponse(
        user_id=user_id,
        authoritative=result.authoritative,
        items=[LinkedItemSchema.model_validate(item) for item in result.items],
    )


@router.delete("/connections/items/{item_id}", response_model=DeleteItemResponse)
async def delete_item(
    item_id: str,
    request: Request,
    user_id: str = Query(..., min_length=1),
    connections: ConnectionsRepository = Depends(get_connections),
):
    """
    Delete a linked item; connect_new tells the UI to go back to the connect flow.
    When the list could not be loaded first, remaining is unknown and connect_new stays False.
    """
    listed = True
    try:
        await connections.list_linked_items(user_id)
    except BackendAPIError as e:
        listed = False
        logging.warning(f"Listing before delete failed: {e}", extra={"request_id": get_request_id(request)})

    try:
        now_empty = await connections.delete_item(item_id, user_id)
    except BackendAPIError as e:
        raise backend_http_error(e, get_request_id(request))
    return DeleteItemResponse(
        item_id=item_id,
        deleted=True,
        remaining=len(connections.items) if listed else None,
        connect_new=listed and now_empty,
    )


@router.post("/connections/items/{item_id}/refresh", status_code=202)
async def refresh_item(
    item_id: str,
    request_body: RefreshRequest,
    request: Request,
    backend: BackendClient = Depends(get_backend_client),
    quota: QuotaManager = Depends(get_quota_manager),
):
    """Queue a background re-sync of an existing item (one credit)"""
    orchestrator = ConnectionOrchestrator(request_body.user_id, request_body.plan, backend, quota)
    try:
        await orchestrator.trigger_background_sync(item_id)
    except QuotaExhaustedError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except BackendAPIError as e:
        raise backend_http_error(e, get_request_id(request))
    return {"item_id": item_id, "status": "queued"}
