"""Linked-institution list backing duplicate detection and the manage-connections view"""

import logging
from typing import Dict, List

from openfinance_gateway.domain.exceptions import BackendAPIError
from openfinance_gateway.domain.models import LinkedItem, LinkedItemsResult
from openfinance_gateway.infrastructure.clients.backend import BackendClient
from openfinance_gateway.infrastructure.observability.metrics import items_fallback_counter

logger = logging.getLogger(__name__)


class ConnectionsRepository:
    """
    Remote-first list of a user's aggregator items.

    Items reported only by an error payload ("orphans") are kept alongside the
    fetched list until a successful fetch returns them or they are deleted, so
    the user can always manage a connection the aggregator says exists.
    """

    def __init__(self, backend: BackendClient):
        self.backend = backend
        self.items: List[LinkedItem] = []
        self.authoritative = False
        self._orphans: Dict[str, LinkedItem] = {}

    def _merged(self, fetched: List[LinkedItem]) -> List[LinkedItem]:
        known = {item.id for item in fetched}
        return list(fetched) + [orphan for item_id, orphan in self._orphans.items() if item_id not in known]

    def replace_items(self, items: List[LinkedItem]) -> List[LinkedItem]:
        self.items = self._merged(items)
        return self.items

    def add_orphan(self, item_id: str) -> List[LinkedItem]:
        """Make an item known from an error payload visible immediately"""
        if item_id not in self._orphans and all(item.id != item_id for item in self.items):
            self._orphans[item_id] = LinkedItem(id=item_id, orphan=True)
            self.items = self.items + [self._orphans[item_id]]
        return self.items

    async def list_linked_items(self, user_id: str) -> LinkedItemsResult:
        """
        Aggregator list first; on 401/403 or a network failure, the backend's
        local mirror (non-authoritative, but still valid for deletion).

        Raises:
            BackendAPIError: remote failed for another reason, or both sources failed
        """
        try:
            fetched = await self.backend.list_items(user_id)
            self.authoritative = True
            for item in fetched:
                self._orphans.pop(item.id, None)
        except BackendAPIError as e:
            if not (e.is_unauthorized or e.is_transport_failure):
                raise
            logger.warning(
                "Remote items unavailable, using local mirror",
                extra={"user_id": user_id, "status_code": e.status_code},
            )
            items_fallback_counter.inc()
            fetched = await self.backend.list_db_items(user_id)
            self.authoritative = False

        return LinkedItemsResult(items=self.replace_items(fetched), authoritative=self.authoritative)

    async def delete_item(self, item_id: str, user_id: str) -> bool:
        """
        Delete an item through the backend and drop it from the view.

        Returns:
            True when no items remain (the caller should go back to the
            connect-new-bank flow)
        """
        await self.backend.delete_item(item_id, user_id)
        self._orphans.pop(item_id, None)
        self.items = [item for item in self.items if item.id != item_id]
        return not self.items
