"""
Report Cache & Lock - per-asset mutual exclusion and report memoization.

Within one process, concurrent callers for the same asset share a single
in-flight evaluation. Across processes, a TTL lock in the KV store marks the
asset as being scanned. A caller that finds the lock held and no report
stored gets LockHeld and tries again on a later tick; TTL expiry is the only
recovery from a crashed holder.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

from pydantic import ValidationError

from reelgate.lib.metrics import metrics
from reelgate.lib.store import KeyValueStore, keys, encode_json, get_json, set_json
from reelgate.models.enums import SafetyStatus
from reelgate.models.media import Asset, SafetyReport
from reelgate.services.safety_service import SafetyService

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 15 * 60


class LockHeld(RuntimeError):
    """Another worker is scanning the asset and has not stored a report yet."""


class ReportCache:
    """Memoizes SafetyReports by asset id behind a per-asset lock."""

    def __init__(
        self,
        store: KeyValueStore,
        safety: SafetyService,
        lock_ttl: float = LOCK_TTL_SECONDS,
    ):
        self.store = store
        self.safety = safety
        self.lock_ttl = lock_ttl
        self._inflight: Dict[str, asyncio.Future] = {}

    def cached_report(self, asset_id: str) -> Optional[SafetyReport]:
        raw = get_json(self.store, keys.report(asset_id))
        if raw is None:
            return None
        try:
            return SafetyReport.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable report for {asset_id}: {e}")
            return None

    async def ensure_safe(self, asset: Asset, refresh: bool = False) -> SafetyReport:
        """
        Return the SafetyReport for an asset, scanning at most once.

        A concurrent request for an asset already being scanned is a
        duplicate, not an error: it receives the same report. refresh=True
        ignores a memoized report and scans again, unless another worker
        holds the lock. Raises LockHeld when another worker holds the lock
        and no report is stored. Incomplete reports are returned but not
        memoized, so the next call scans again.
        """
        pending = self._inflight.get(asset.id)
        if pending is not None:
            metrics.record_duplicate("inflight")
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._resolve(asset, refresh))
        self._inflight[asset.id] = task
        task.add_done_callback(lambda _: self._inflight.pop(asset.id, None))
        return await asyncio.shield(task)

    async def _resolve(self, asset: Asset, refresh: bool) -> SafetyReport:
        if not refresh:
            cached = self.cached_report(asset.id)
            if cached is not None:
                return cached

        lock_key = keys.lock(asset.id)
        if not self.store.put_if_absent(lock_key, encode_json({"at": time.time()}), ttl=self.lock_ttl):
            cached = self.cached_report(asset.id)
            if cached is not None:
                metrics.record_duplicate("locked")
                logger.info(f"Asset {asset.id} locked elsewhere, using cached report")
                return cached
            metrics.record_duplicate("lock-held")
            raise LockHeld(f"Asset {asset.id} is being scanned elsewhere")

        try:
            report = await self.safety.evaluate(asset)
            if report.status == SafetyStatus.INCOMPLETE:
                return report
            set_json(self.store, keys.report(asset.id), report.model_dump(mode="json"))
            return report
        finally:
            self.store.delete(lock_key)
