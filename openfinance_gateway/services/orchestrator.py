"""End-to-end bank connection flow: token, widget, quota credit, sync, link reconciliation"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from openfinance_gateway.domain import session as fsm
from openfinance_gateway.domain.error_classifier import (
    MISSING_ITEM_MESSAGE,
    SYNC_FAILED_MESSAGE,
    TOKEN_FAILED_MESSAGE,
    classify_widget_error,
    plan_not_eligible,
    quota_exhausted,
    transport_error,
)
from openfinance_gateway.domain.exceptions import (
    BackendAPIError,
    InvalidSessionTransition,
    QuotaExhaustedError,
    SessionClosedError,
)
from openfinance_gateway.domain.models import (
    ClassifiedError,
    ConnectedAccount,
    ConnectionSession,
    ErrorCategory,
    LinkedItem,
    SessionPhase,
    SyncSummary,
)
from openfinance_gateway.domain.normalizer import has_finite_balance, normalize_account
from openfinance_gateway.infrastructure.clients.backend import BackendClient
from openfinance_gateway.infrastructure.observability.logging import log_provider_error, log_sync
from openfinance_gateway.infrastructure.observability.metrics import (
    accounts_dropped_counter,
    connection_outcome_counter,
    provider_error_counter,
    quota_rejection_counter,
    sync_latency_histogram,
)
from openfinance_gateway.services.connections import ConnectionsRepository
from openfinance_gateway.services.quota_manager import QuotaManager

logger = logging.getLogger(__name__)

Listener = Callable[[ConnectionSession], None]


@dataclass
class SyncResult:
    item_id: str
    accounts: List[ConnectedAccount]
    summary: SyncSummary
    dropped: int


def success_item_id(payload: Mapping[str, Any]) -> Optional[str]:
    """Item id from the widget's onSuccess({item: {id}}) payload (legacy {itemId} accepted)"""
    item = payload.get("item")
    if isinstance(item, Mapping) and item.get("id"):
        return str(item["id"])
    if payload.get("itemId"):
        return str(payload["itemId"])
    return None


def summarize(accounts: List[ConnectedAccount]) -> SyncSummary:
    return SyncSummary(
        checking=sum(1 for a in accounts if a.is_checking),
        savings=sum(1 for a in accounts if a.is_savings),
        credit=sum(1 for a in accounts if a.is_credit),
    )


class ConnectionOrchestrator:
    """
    Single-flight driver for one open connection UI.

    Owns the ConnectionSession; the UI only subscribes to state changes. Once
    close() is called, completions of requests still in flight are ignored.
    """

    def __init__(
        self,
        user_id: str,
        plan: Optional[str],
        backend: BackendClient,
        quota: QuotaManager,
        connections: Optional[ConnectionsRepository] = None,
    ):
        self.user_id = user_id
        self.plan = plan
        self.backend = backend
        self.quota = quota
        self.connections = connections or ConnectionsRepository(backend)
        self._session = fsm.new_session(user_id)
        self._listeners: List[Listener] = []
        self._closed = False
        self._success_handled = False

    @property
    def session(self) -> ConnectionSession:
        return self._session

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register for session updates; returns the unsubscribe function"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Connection UI closed: drop listeners and ignore late completions"""
        self._closed = True
        self._listeners.clear()

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Connection session was closed")

    def _set(self, new_session: ConnectionSession) -> None:
        self._session = new_session
        for listener in list(self._listeners):
            listener(new_session)

    def _fail(self, error: ClassifiedError) -> ConnectionSession:
        self._set(fsm.failed(self._session, error))
        connection_outcome_counter.labels(outcome="error").inc()
        return self._session

    async def _refresh_items(self) -> List[LinkedItem]:
        """Refresh the linked list; a failure keeps whatever is already known"""
        try:
            result = await self.connections.list_linked_items(self.user_id)
            return result.items
        except BackendAPIError as e:
            logger.warning("Linked items refresh failed: %s", e, extra={"user_id": self.user_id})
            return self.connections.items

    # ------------------------------------------------------------------
    # Token + widget
    # ------------------------------------------------------------------

    async def request_token(self) -> ConnectionSession:
        """
        Mint a connect token. When the backend already knows linked items for
        the user, go to the manage view instead of offering a new connection.
        """
        self._ensure_open()
        self._set(fsm.request_token(self._session))
        self._success_handled = False

        try:
            response = await self.backend.create_token(self.user_id)
        except BackendAPIError as e:
            if self._closed:
                return self._session
            logging.error(f"Connect token request failed: {e}", extra={"user_id": self.user_id})
            return self._fail(transport_error(TOKEN_FAILED_MESSAGE))

        if self._closed:
            return self._session

        if response.existing_items:
            items = self.connections.replace_items(response.existing_items)
            self._set(fsm.token_received(self._session, response.access_token, items))
            connection_outcome_counter.labels(outcome="manage").inc()
        else:
            self._set(fsm.token_received(self._session, response.access_token))
        return self._session

    def open_widget(self) -> ConnectionSession:
        """
        Open the aggregator widget. Quota is re-checked at click time; with no
        credit left the session moves to a non-retryable error instead.
        """
        self._ensure_open()
        if not fsm.can_transition(self._session.phase, SessionPhase.WIDGET_OPEN):
            raise InvalidSessionTransition(f"Widget cannot open from {self._session.phase.value}")

        if not self.quota.is_eligible(self.plan):
            return self._fail(plan_not_eligible())

        if not self.quota.has_credit(self.user_id, self.plan):
            quota_rejection_counter.inc()
            return self._fail(quota_exhausted(self.quota.max_per_day))

        self._set(fsm.widget_opened(self._session))
        return self._session

    # ------------------------------------------------------------------
    # Widget callbacks
    # ------------------------------------------------------------------

    async def on_widget_success(self, payload: Mapping[str, Any]) -> Optional[SyncResult]:
        """
        Handle onSuccess({item: {id}}): consume one credit, sync the item,
        normalize its accounts, refresh linked items, finish in success.

        Repeated callbacks for the same attempt are ignored (None). A failed
        sync keeps the consumed credit: the aggregator call was already billed.
        """
        self._ensure_open()
        if self._success_handled:
            logger.info("Duplicate widget success ignored", extra={"user_id": self.user_id})
            return None

        item_id = success_item_id(payload)
        if item_id is None:
            self._fail(ClassifiedError(category=ErrorCategory.FATAL, message=MISSING_ITEM_MESSAGE))
            return None

        if not fsm.can_transition(self._session.phase, SessionPhase.SYNCING):
            raise InvalidSessionTransition(f"Widget success not expected in {self._session.phase.value}")

        self._success_handled = True
        self.quota.consume_credit(self.user_id, operation="connect")
        self._set(fsm.sync_started(self._session, item_id))

        start_time = time.time()
        try:
            response = await self.backend.sync_item(item_id, self.user_id)
        except BackendAPIError as e:
            if self._closed:
                return None
            logging.error(f"Sync failed: {e}", extra={"user_id": self.user_id, "item_id": item_id})
            self._fail(transport_error(SYNC_FAILED_MESSAGE))
            return None

        if self._closed:
            return None

        accounts, dropped = self._normalize(item_id, response.accounts)
        summary = response.summary or summarize(accounts)

        items = await self._refresh_items()
        if self._closed:
            return None

        duration = time.time() - start_time
        sync_latency_histogram.observe(duration)
        log_sync(self.user_id, item_id, len(accounts), dropped, duration * 1000)

        self._set(fsm.sync_succeeded(self._session, accounts, summary, items))
        connection_outcome_counter.labels(outcome="success").inc()
        return SyncResult(item_id=item_id, accounts=accounts, summary=summary, dropped=dropped)

    async def on_widget_error(self, payload: Mapping[str, Any]) -> ConnectionSession:
        """
        Handle onError({message?, code?, data?}). Duplicate connections open the
        manage view (with the reported item injected as an orphan) instead of
        failing; everything else ends in error with the classified message.
        """
        self._ensure_open()
        classified = classify_widget_error(payload)
        provider_error_counter.labels(category=classified.category.value).inc()
        log_provider_error(self.user_id, classified.code, classified.category.value, classified.item_id)

        if classified.category is not ErrorCategory.DUPLICATE:
            return self._fail(classified)

        if classified.item_id:
            self.connections.add_orphan(classified.item_id)
        self._set(fsm.manage(self._session, self.connections.items))
        connection_outcome_counter.labels(outcome="manage").inc()

        items = await self._refresh_items()
        if not self._closed:
            self._set(fsm.with_linked_items(self._session, items))
        return self._session

    # ------------------------------------------------------------------
    # Existing connections
    # ------------------------------------------------------------------

    async def delete_linked_item(self, item_id: str) -> ConnectionSession:
        """Delete a link; with nothing left, restart the connect-new-bank flow"""
        self._ensure_open()
        now_empty = await self.connections.delete_item(item_id, self.user_id)
        if self._closed:
            return self._session
        self._set(fsm.with_linked_items(self._session, self.connections.items))
        if now_empty and self._session.phase is SessionPhase.MANAGE:
            return await self.request_token()
        return self._session

    async def trigger_background_sync(self, item_id: str) -> None:
        """
        Queue an out-of-band refresh of an existing item without the widget.
        The credit is reserved atomically before the backend is called. An
        HTTP refusal gives it back; a transport failure keeps it, since the
        request may have reached the aggregator.

        Raises:
            QuotaExhaustedError: no credit left today (the backend is not called)
            BackendAPIError: the backend refused or could not be reached
        """
        try:
            self.quota.reserve_credit(self.user_id, self.plan, operation="refresh")
        except QuotaExhaustedError:
            quota_rejection_counter.inc()
            raise

        try:
            await self.backend.trigger_sync(item_id, self.user_id)
        except BackendAPIError as e:
            if not e.is_transport_failure:
                self.quota.release_credit(self.user_id, operation="refresh")
            raise

    # ------------------------------------------------------------------

    def _normalize(self, item_id: str, entries: List[Dict[str, Any]]) -> Tuple[List[ConnectedAccount], int]:
        """Normalize synced entries; malformed entries and non-finite balances are dropped"""
        now = datetime.now(timezone.utc)
        item = self._known_item(item_id)
        accounts: List[ConnectedAccount] = []
        dropped = 0

        for entry in entries:
            raw = entry.get("account") if isinstance(entry, Mapping) else None
            if not isinstance(raw, Mapping) or raw.get("id") is None:
                dropped += 1
                continue
            if item is not None and "item" not in raw:
                raw = {**raw, "item": item}

            account = normalize_account(raw, entry.get("bills"), now=now)
            if not has_finite_balance(account):
                dropped += 1
                continue
            if account.item_id is None:
                account.item_id = item_id
            accounts.append(account)

        if dropped:
            accounts_dropped_counter.inc(dropped)
        return accounts, dropped

    def _known_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        for linked in self.connections.items:
            if linked.id == item_id and linked.connector_name:
                return {"id": linked.id, "connectorName": linked.connector_name}
        return None
