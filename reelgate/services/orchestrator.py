"""
Publish Orchestrator.
Runs one cycle per profile: pull a draft, pass it through the safety gate,
pick an admissible slot and trend, and hand a request to the publisher.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence

from reelgate.lib.clock import utc_now, as_utc
from reelgate.lib.metrics import metrics
from reelgate.lib.publisher import Publisher, PublishError
from reelgate.lib.store import keys, get_json
from reelgate.lib.trend_feed import fetch_trends
from reelgate.lib.transcoder import TranscodeError
from reelgate.models.enums import CycleOutcome, DraftStatus, SafetyStatus
from reelgate.models.media import Asset, SafetyReport
from reelgate.models.schedule import PublishRequest, RawTrend
from reelgate.services.ab_service import ABService
from reelgate.services.autofix_service import AutoFixError
from reelgate.services.draft_queue import DraftSource
from reelgate.services.report_cache import LockHeld, ReportCache
from reelgate.services.rhythm_service import RhythmService
from reelgate.services.trend_service import TrendService

logger = logging.getLogger(__name__)

# Failed safety-gate attempts before a draft is retired
MAX_ATTEMPTS = 3


@dataclass
class CycleResult:
    """Outcome of one orchestrator cycle."""
    profile: str
    outcome: CycleOutcome
    asset_id: Optional[str] = None
    report: Optional[SafetyReport] = None
    when: Optional[datetime] = None
    request: Optional[PublishRequest] = None
    reasons: List[str] = field(default_factory=list)
    path: List[str] = field(default_factory=list)


class Orchestrator:
    """Composes the safety gate, rhythm controller, trends and A/B picker."""

    def __init__(
        self,
        drafts: DraftSource,
        cache: ReportCache,
        rhythm: RhythmService,
        trends: TrendService,
        ab: ABService,
        publisher: Publisher,
        ab_test_id: Optional[str] = None,
        slot_horizon_minutes: int = 180,
        trend_feed_url: Optional[str] = None,
        trend_refresh_minutes: float = 30.0,
        trend_fetcher: Callable[[str], Awaitable[List[RawTrend]]] = fetch_trends,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.drafts = drafts
        self.cache = cache
        self.rhythm = rhythm
        self.trends = trends
        self.ab = ab
        self.publisher = publisher
        self.ab_test_id = ab_test_id
        self.slot_horizon_minutes = slot_horizon_minutes
        self.trend_feed_url = trend_feed_url
        self.trend_refresh_minutes = trend_refresh_minutes
        self.trend_fetcher = trend_fetcher
        self.max_attempts = max_attempts

    @metrics.track_stage("cycle")
    async def run_cycle(self, profile: str, now: Optional[datetime] = None) -> CycleResult:
        now = as_utc(now or utc_now())

        # Step 1: Next queued asset
        asset = self.drafts.next_asset(profile)
        if asset is None:
            return self._finish(CycleResult(profile=profile, outcome=CycleOutcome.EMPTY))

        result = CycleResult(profile=profile, outcome=CycleOutcome.ERROR, asset_id=asset.id)

        # Step 2: Safety gate
        result.path.append("safety")
        try:
            report = await self.cache.ensure_safe(asset)
        except LockHeld as e:
            logger.info(f"{e}, retrying next tick")
            result.outcome = CycleOutcome.DEFERRED
            result.reasons = ["lock-held"]
            return self._finish(result)
        except (AutoFixError, TranscodeError) as e:
            logger.error(f"Safety gate failed for {asset.id} ({profile}): {e}")
            await self._retry_later(profile, asset, str(e))
            result.reasons.append(str(e))
            return self._finish(result)

        result.report = report
        if report.status == SafetyStatus.INCOMPLETE:
            result.outcome = CycleOutcome.DEFERRED
            result.reasons = list(report.reasons)
            await self._retry_later(profile, asset, ", ".join(report.reasons))
            return self._finish(result)

        if not report.status.publishable:
            result.outcome = CycleOutcome.REJECTED
            result.reasons = list(report.reasons)
            self.drafts.mark(profile, asset.id, DraftStatus.REJECTED, ", ".join(report.reasons))
            return self._finish(result)

        # Step 3: Admission right now
        result.path.append("admission")
        decision = self.rhythm.check_admission(now, profile)
        if not decision.allowed:
            result.outcome = CycleOutcome.DEFERRED
            result.reasons = [v.value for v in decision.violations]
            return self._finish(result)

        # Step 4: Best slot, then reserve it atomically
        slot = self.rhythm.next_admissible_slot(profile, now, horizon_min=self.slot_horizon_minutes)
        if slot is None:
            result.outcome = CycleOutcome.DEFERRED
            result.reasons = ["no-slot"]
            return self._finish(result)

        opportunities = self.trends.next_opportunities(profile, slot, limit=1)
        trend = opportunities[0].trend if opportunities else None

        decision, entry = self.rhythm.try_admit(
            profile, slot, asset_id=asset.id, trend_id=trend.id if trend else None
        )
        if entry is None:
            result.outcome = CycleOutcome.DEFERRED
            result.reasons = [v.value for v in decision.violations]
            return self._finish(result)
        result.when = slot

        # Step 5: Optional A/B caption variant
        caption = report.caption_out
        variant = self.ab.pick_variant(self.ab_test_id) if self.ab_test_id else None
        if variant is not None:
            caption = f"{variant.value} {caption}".strip()
            result.path.append(f"ab:{variant.variant.value}")

        # Step 6: Hand off
        request = PublishRequest(
            file_url=report.publish_path(asset),
            caption=caption,
            when_iso=slot.isoformat(),
            profile=profile,
            asset_id=asset.id,
            trend_id=trend.id if trend else None,
            hashtag=trend.hashtag if trend else None,
            sound_id=trend.sound_id if trend else None,
            variant=variant,
        )
        result.path.append("publish")
        try:
            await self.publisher.schedule(request)
        except PublishError as e:
            logger.error(f"Publisher refused {asset.id} for {profile}: {e}")
            self.rhythm.release(profile, entry.id)
            self.drafts.mark(profile, asset.id, DraftStatus.PENDING, f"publish failed: {e}")
            result.reasons.append(str(e))
            return self._finish(result)

        if trend is not None:
            self.trends.mark_used(profile, trend.id)
        self.drafts.mark(profile, asset.id, DraftStatus.SCHEDULED, slot.isoformat())

        result.outcome = CycleOutcome.SCHEDULED
        result.request = request
        return self._finish(result)

    async def refresh_trends(self, now: Optional[datetime] = None) -> bool:
        """Pull the trend feed when the stored set is older than the refresh interval."""
        if not self.trend_feed_url:
            return False
        now = as_utc(now or utc_now())

        last = get_json(self.trends.store, keys.trends_refreshed)
        if last:
            refreshed_at = as_utc(datetime.fromisoformat(last))
            if now - refreshed_at < timedelta(minutes=self.trend_refresh_minutes):
                return False

        raw = await self.trend_fetcher(self.trend_feed_url)
        if not raw:
            return False
        self.trends.refresh(raw, now)
        return True

    async def run_tick(self, profiles: Sequence[str], now: Optional[datetime] = None) -> List[CycleResult]:
        """One scheduler tick: refresh trends, then one cycle per profile."""
        now = as_utc(now or utc_now())
        await self.refresh_trends(now)

        results = []
        for profile in profiles:
            try:
                results.append(await self.run_cycle(profile, now))
            except Exception as e:
                logger.exception(f"Cycle for {profile} failed: {e}")
                results.append(self._finish(CycleResult(
                    profile=profile, outcome=CycleOutcome.ERROR, reasons=[str(e)],
                )))
        return results

    async def _retry_later(self, profile: str, asset: Asset, note: str) -> None:
        """Keep the draft pending for another tick; dead-letter it once it runs out of attempts."""
        status = self.drafts.retry(profile, asset.id, note, self.max_attempts)
        if status == DraftStatus.FAILED:
            await self._dead_letter(profile, asset, note)

    async def _dead_letter(self, profile: str, asset: Asset, error: str) -> None:
        dead_letter = getattr(self.publisher, "dead_letter", None)
        if dead_letter is not None:
            await dead_letter({"profile": profile, "asset": asset.model_dump(mode="json")}, error)

    def _finish(self, result: CycleResult) -> CycleResult:
        metrics.record_cycle(result.profile, result.outcome.value)
        logger.info(
            f"Cycle {result.profile}: {result.outcome.value}"
            + (f" asset={result.asset_id}" if result.asset_id else "")
            + (f" at {result.when.isoformat()}" if result.when and result.outcome == CycleOutcome.SCHEDULED else "")
            + (f" ({', '.join(result.reasons)})" if result.reasons else "")
        )
        return result
