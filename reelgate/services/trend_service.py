"""
Trend Scorer - time-decayed ranking of trend opportunities per profile.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from pydantic import ValidationError

from reelgate.lib.clock import utc_now, as_utc
from reelgate.lib.store import KeyValueStore, keys, get_json, set_json, update_json
from reelgate.models.schedule import RawTrend, Trend, Opportunity
from reelgate.services.rhythm_service import RhythmService

logger = logging.getLogger(__name__)

RECENCY_SCALE = timedelta(hours=1)
TREND_LIFETIME = timedelta(hours=6)
TOP_OPPORTUNITIES = 3


def score_trend(raw: RawTrend, now: datetime) -> float:
    """recency x volume x niche_fit x safe x seasonal, recency = exp(-age / 1h)."""
    age = max(0.0, (as_utc(now) - raw.updated_at).total_seconds())
    recency = math.exp(-age / RECENCY_SCALE.total_seconds())
    safe = 1.0 if raw.safe else 0.0
    return recency * raw.volume * raw.niche_fit * safe * raw.seasonal


class TrendService:
    """Scores trend feeds and hands out the best unused trends per profile."""

    def __init__(self, store: KeyValueStore, rhythm: RhythmService):
        self.store = store
        self.rhythm = rhythm

    def refresh(self, raw_trends: Sequence[RawTrend], now: Optional[datetime] = None) -> List[Trend]:
        """Score a raw trend batch and replace the stored trend set."""
        now = as_utc(now or utc_now())
        trends = [
            Trend(
                **raw.model_dump(),
                score=score_trend(raw, now),
                decay_at=now + TREND_LIFETIME,
            )
            for raw in raw_trends
        ]
        trends.sort(key=lambda t: t.score, reverse=True)

        set_json(self.store, keys.trend_scores, [t.model_dump(mode="json") for t in trends])
        set_json(self.store, keys.trends_refreshed, now.isoformat())
        logger.info(f"Refreshed {len(trends)} trends ({sum(1 for t in trends if t.score > 0)} selectable)")
        return trends

    def trends(self) -> List[Trend]:
        trends = []
        for raw in get_json(self.store, keys.trend_scores, []):
            try:
                trends.append(Trend.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed stored trend: {e}")
        return trends

    def used(self, profile: str) -> List[str]:
        return get_json(self.store, keys.trends_used(profile), [])

    def next_opportunities(
        self, profile: str, now: Optional[datetime] = None, limit: int = TOP_OPPORTUNITIES
    ) -> List[Opportunity]:
        """
        Non-expired, unused, positively scored trends for a profile, weighted
        by the current time slot and sorted best first.
        """
        now = as_utc(now or utc_now())
        used = set(self.used(profile))
        slot_weight = self.rhythm.score_time_slot(now, profile)

        opportunities = [
            Opportunity(trend=t, slot_weight=slot_weight, adjusted_score=t.score * slot_weight)
            for t in self.trends()
            if not t.expired(now) and t.id not in used and t.score > 0
        ]
        opportunities.sort(key=lambda o: o.adjusted_score, reverse=True)
        return opportunities[:limit]

    def mark_used(self, profile: str, trend_id: str) -> None:
        def _append(used: list):
            if trend_id in used:
                return None, None
            return used + [trend_id], None

        update_json(self.store, keys.trends_used(profile), [], _append)
