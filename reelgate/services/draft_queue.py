"""
Draft queue - per-profile backlog of assets awaiting a publish cycle.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from reelgate.lib.clock import utc_now
from reelgate.lib.store import KeyValueStore, keys, get_json, update_json
from reelgate.models.enums import DraftStatus
from reelgate.models.media import Asset
from reelgate.models.schedule import DraftItem

logger = logging.getLogger(__name__)


class DraftSource(Protocol):
    """Where the orchestrator pulls assets from and reports back to."""

    def next_asset(self, profile: str) -> Optional[Asset]:
        ...

    def mark(self, profile: str, asset_id: str, status: DraftStatus, note: Optional[str] = None) -> bool:
        ...

    def retry(self, profile: str, asset_id: str, note: str, max_attempts: int) -> Optional[DraftStatus]:
        ...


class DraftQueue:
    """
    KV-backed draft queue.
    Pending items are served by priority (highest first), then age (oldest first).
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def items(self, profile: str, status: Optional[DraftStatus] = None) -> List[DraftItem]:
        items = [DraftItem.model_validate(raw) for raw in get_json(self.store, keys.drafts(profile), [])]
        if status is not None:
            items = [i for i in items if i.status == status]
        return items

    def enqueue(self, profile: str, asset: Asset, priority: int = 0) -> bool:
        """Queue an asset. Re-queuing a known asset id is a no-op; returns False."""
        now = self.clock()

        def _add(current: list):
            if any(raw["asset"]["id"] == asset.id for raw in current):
                return None, False
            item = DraftItem(asset=asset, priority=priority, created_at=now, updated_at=now)
            return current + [item.model_dump(mode="json")], True

        added = update_json(self.store, keys.drafts(profile), [], _add)
        if added:
            logger.info(f"Queued {asset.id} for {profile} (priority {priority})")
        return added

    def next_asset(self, profile: str) -> Optional[Asset]:
        pending = self.items(profile, DraftStatus.PENDING)
        if not pending:
            return None
        pending.sort(key=lambda i: (-i.priority, i.created_at))
        return pending[0].asset

    def mark(self, profile: str, asset_id: str, status: DraftStatus, note: Optional[str] = None) -> bool:
        now = self.clock()

        def _mark(current: list):
            for raw in current:
                if raw["asset"]["id"] == asset_id:
                    item = DraftItem.model_validate(raw).model_copy(
                        update={"status": DraftStatus(status), "note": note, "updated_at": now}
                    )
                    raw.clear()
                    raw.update(item.model_dump(mode="json"))
                    return current, True
            return None, False

        found = update_json(self.store, keys.drafts(profile), [], _mark)
        if not found:
            logger.warning(f"Cannot mark unknown draft {asset_id} for {profile}")
        return found

    def retry(self, profile: str, asset_id: str, note: str, max_attempts: int) -> Optional[DraftStatus]:
        """
        Count one failed attempt. The draft stays pending until it has failed
        max_attempts times, then it is marked failed. Returns the new status,
        or None for an unknown draft.
        """
        now = self.clock()

        def _retry(current: list):
            for raw in current:
                if raw["asset"]["id"] == asset_id:
                    item = DraftItem.model_validate(raw)
                    attempts = item.attempts + 1
                    status = DraftStatus.FAILED if attempts >= max_attempts else DraftStatus.PENDING
                    item = item.model_copy(
                        update={"status": status, "note": note, "attempts": attempts, "updated_at": now}
                    )
                    raw.clear()
                    raw.update(item.model_dump(mode="json"))
                    return current, status
            return None, None

        status = update_json(self.store, keys.drafts(profile), [], _retry)
        if status is None:
            logger.warning(f"Cannot retry unknown draft {asset_id} for {profile}")
        elif status == DraftStatus.FAILED:
            logger.warning(f"Draft {asset_id} for {profile} failed after {max_attempts} attempts: {note}")
        return status
