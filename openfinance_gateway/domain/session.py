"""
Connection session state machine.

Transitions are pure: each takes the current ConnectionSession and returns a
new one, raising InvalidSessionTransition when the move is not allowed.

    idle -> requesting-token -> ready -> widget-open -> syncing -> success
                             \-> manage        \-> manage (duplicate)
    any non-terminal phase -> error;  error | manage -> requesting-token (retry)
"""

from dataclasses import replace
from typing import Dict, FrozenSet, Iterable, Optional

from openfinance_gateway.domain.exceptions import InvalidSessionTransition
from openfinance_gateway.domain.models import (
    ClassifiedError,
    ConnectedAccount,
    ConnectionSession,
    LinkedItem,
    SessionPhase,
    SyncSummary,
)

P = SessionPhase

ALLOWED_TRANSITIONS: Dict[SessionPhase, FrozenSet[SessionPhase]] = {
    P.IDLE: frozenset({P.REQUESTING_TOKEN}),
    P.REQUESTING_TOKEN: frozenset({P.READY, P.MANAGE, P.ERROR}),
    P.READY: frozenset({P.WIDGET_OPEN, P.ERROR}),
    P.WIDGET_OPEN: frozenset({P.SYNCING, P.MANAGE, P.ERROR}),
    P.SYNCING: frozenset({P.SUCCESS, P.ERROR}),
    P.SUCCESS: frozenset(),
    P.ERROR: frozenset({P.REQUESTING_TOKEN}),
    P.MANAGE: frozenset({P.REQUESTING_TOKEN}),
}


def can_transition(current: SessionPhase, target: SessionPhase) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def _move(session: ConnectionSession, target: SessionPhase, **changes) -> ConnectionSession:
    if not can_transition(session.phase, target):
        raise InvalidSessionTransition(
            f"Cannot move connection session from {session.phase.value} to {target.value}"
        )
    return replace(session, phase=target, **changes)


def new_session(user_id: str) -> ConnectionSession:
    return ConnectionSession(user_id=user_id)


def request_token(session: ConnectionSession) -> ConnectionSession:
    """Enter (or re-enter, on retry) the token request; clears the previous attempt"""
    return _move(session, P.REQUESTING_TOKEN, connect_token=None, item_id=None, error=None)


def token_received(
    session: ConnectionSession,
    connect_token: str,
    existing_items: Iterable[LinkedItem] = (),
) -> ConnectionSession:
    """Ready to open the widget, or straight to manage when the user already has links"""
    items = tuple(existing_items)
    if items:
        return _move(session, P.MANAGE, connect_token=connect_token, linked_items=items)
    return _move(session, P.READY, connect_token=connect_token)


def widget_opened(session: ConnectionSession) -> ConnectionSession:
    return _move(session, P.WIDGET_OPEN)


def sync_started(session: ConnectionSession, item_id: str) -> ConnectionSession:
    return _move(session, P.SYNCING, item_id=item_id)


def sync_succeeded(
    session: ConnectionSession,
    accounts: Iterable[ConnectedAccount],
    summary: Optional[SyncSummary] = None,
    linked_items: Optional[Iterable[LinkedItem]] = None,
) -> ConnectionSession:
    changes = {"accounts": tuple(accounts), "summary": summary}
    if linked_items is not None:
        changes["linked_items"] = tuple(linked_items)
    return _move(session, P.SUCCESS, **changes)


def failed(session: ConnectionSession, error: ClassifiedError) -> ConnectionSession:
    return _move(session, P.ERROR, error=error)


def manage(session: ConnectionSession, linked_items: Iterable[LinkedItem]) -> ConnectionSession:
    return _move(session, P.MANAGE, linked_items=tuple(linked_items))


def with_linked_items(session: ConnectionSession, linked_items: Iterable[LinkedItem]) -> ConnectionSession:
    """Replace the visible item list without changing phase"""
    return replace(session, linked_items=tuple(linked_items))
