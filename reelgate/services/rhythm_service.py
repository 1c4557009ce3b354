"""
Admission / Rhythm Controller.
Quota checks against the per-profile post ledger, plus time-of-day scoring
from audience windows and quiet hours.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from reelgate.lib.clock import utc_now, as_utc
from reelgate.lib.metrics import metrics
from reelgate.lib.store import KeyValueStore, keys, encode_json, get_json, update_json
from reelgate.models.defaults import DEFAULT_QUOTAS, DEFAULT_AUDIENCE_WINDOWS, DEFAULT_QUIET_HOURS
from reelgate.models.enums import AdmissionRule
from reelgate.models.schedule import (
    Quota, AudienceWindow, QuietHours, PostLedgerEntry, AdmissionDecision,
)

logger = logging.getLogger(__name__)

DAY = timedelta(hours=24)
HOUR = timedelta(hours=1)


def evaluate_quota(when: datetime, quota: Optional[Quota], ledger: List[PostLedgerEntry]) -> AdmissionDecision:
    """
    Check one candidate time against a ledger.

    Entries count towards a window when when - ts < window (entries already
    scheduled after `when` count too). The gap rule holds against the
    nearest entry on either side. A missing quota, or a zero/None cap,
    disables the corresponding rule.
    """
    when = as_utc(when)
    posts_last_day = sum(1 for e in ledger if when - e.ts < DAY)
    posts_last_hour = sum(1 for e in ledger if when - e.ts < HOUR)

    minutes_since_last = None
    if ledger:
        latest = max(e.ts for e in ledger)
        minutes_since_last = (when - latest).total_seconds() / 60

    violations: List[AdmissionRule] = []
    if quota is not None:
        if quota.day_cap and posts_last_day >= quota.day_cap:
            violations.append(AdmissionRule.DAY_CAP)
        if quota.hour_cap and posts_last_hour >= quota.hour_cap:
            violations.append(AdmissionRule.HOUR_CAP)
        if quota.gap_min and ledger:
            nearest = min(abs((when - e.ts).total_seconds()) for e in ledger) / 60
            if nearest < quota.gap_min:
                violations.append(AdmissionRule.MIN_GAP)

    return AdmissionDecision(
        allowed=not violations,
        violations=violations,
        posts_last_day=posts_last_day,
        posts_last_hour=posts_last_hour,
        minutes_since_last=minutes_since_last,
    )


class RhythmService:
    """Per-profile publishing rhythm backed by the KV store."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def ensure_defaults(self) -> None:
        """Seed quotas, audience windows and quiet hours unless already configured."""
        seeded = []
        if self.store.put_if_absent(
            keys.quotas, encode_json({p: q.model_dump() for p, q in DEFAULT_QUOTAS.items()})
        ):
            seeded.append("quotas")
        if self.store.put_if_absent(
            keys.audience_windows,
            encode_json({p: [w.model_dump() for w in ws] for p, ws in DEFAULT_AUDIENCE_WINDOWS.items()}),
        ):
            seeded.append("audience windows")
        if self.store.put_if_absent(keys.quiet_hours, encode_json(DEFAULT_QUIET_HOURS.model_dump())):
            seeded.append("quiet hours")
        if seeded:
            logger.info(f"Seeded default rhythm config: {', '.join(seeded)}")

    # Configuration

    def quotas(self) -> Dict[str, Quota]:
        raw = get_json(self.store, keys.quotas, {})
        return {profile: Quota.model_validate(q) for profile, q in raw.items()}

    def quota_for(self, profile: str) -> Optional[Quota]:
        return self.quotas().get(profile)

    def set_quota(self, profile: str, quota: Quota) -> None:
        def _set(current):
            current[profile] = quota.model_dump()
            return current, None
        update_json(self.store, keys.quotas, {}, _set)

    def audience_windows(self, profile: str) -> List[AudienceWindow]:
        raw = get_json(self.store, keys.audience_windows, {})
        return [AudienceWindow.model_validate(w) for w in raw.get(profile, [])]

    def quiet_hours(self) -> QuietHours:
        raw = get_json(self.store, keys.quiet_hours, None)
        if raw is None:
            return QuietHours()
        return QuietHours.model_validate(raw)

    def ledger(self, profile: str) -> List[PostLedgerEntry]:
        raw = get_json(self.store, keys.ledger(profile), [])
        return [PostLedgerEntry.model_validate(e) for e in raw]

    # Time-of-day scoring

    @staticmethod
    def minute_of_day(when: datetime, time_zone: str) -> int:
        try:
            tz = ZoneInfo(time_zone) if time_zone else None
        except ZoneInfoNotFoundError:
            logger.warning(f"Unknown time zone {time_zone!r}, using UTC")
            tz = None
        local = as_utc(when).astimezone(tz) if tz else as_utc(when)
        return local.hour * 60 + local.minute

    def score_time_slot(self, when: datetime, profile: str) -> float:
        """
        Audience weight of a time slot (max over matching windows, 1.0 if
        none), then suppressed by quiet hours: zero when hard, halved when soft.
        """
        return self._slot_score(when, self.audience_windows(profile), self.quiet_hours())

    def _slot_score(self, when: datetime, windows: List[AudienceWindow], quiet: QuietHours) -> float:
        minute = self.minute_of_day(when, quiet.time_zone)

        weight = 1.0
        for window in windows:
            if window.contains(minute):
                weight = max(weight, window.weight)

        if any(w.contains(minute) for w in quiet.windows):
            return weight * 0.5 if quiet.soft else 0.0
        return weight

    # Admission

    def check_admission(
        self, when: datetime, profile: str, quotas: Optional[Dict[str, Quota]] = None
    ) -> AdmissionDecision:
        quota = (quotas if quotas is not None else self.quotas()).get(profile)
        decision = evaluate_quota(when, quota, self.ledger(profile))
        metrics.record_admission(decision.allowed)
        return decision

    def can_post_now(self, when: datetime, profile: str, quotas: Optional[Dict[str, Quota]] = None) -> bool:
        return self.check_admission(when, profile, quotas).allowed

    def try_admit(
        self,
        profile: str,
        when: datetime,
        asset_id: Optional[str] = None,
        trend_id: Optional[str] = None,
    ) -> Tuple[AdmissionDecision, Optional[PostLedgerEntry]]:
        """
        Check quotas and append a ledger entry in one atomic update.
        Returns the decision and the new entry (None when denied).
        """
        when = as_utc(when)
        quota = self.quota_for(profile)
        cutoff = min(when, as_utc(self.clock())) - DAY

        def _admit(raw: list):
            ledger = [PostLedgerEntry.model_validate(e) for e in raw]
            ledger = [e for e in ledger if e.ts > cutoff]
            decision = evaluate_quota(when, quota, ledger)
            if not decision.allowed:
                return None, (decision, None)
            entry = PostLedgerEntry(ts=when, asset_id=asset_id, trend_id=trend_id)
            ledger.append(entry)
            ledger.sort(key=lambda e: e.ts)
            return [e.model_dump(mode="json") for e in ledger], (decision, entry)

        decision, entry = update_json(self.store, keys.ledger(profile), [], _admit)
        metrics.record_admission(decision.allowed)
        if entry is None:
            logger.info(
                f"Admission denied for {profile} at {when.isoformat()}: "
                f"{', '.join(v.value for v in decision.violations)}"
            )
        return decision, entry

    def release(self, profile: str, entry_id: str) -> bool:
        """Remove a ledger entry whose publish did not happen."""
        def _remove(raw: list):
            kept = [e for e in raw if e.get("id") != entry_id]
            if len(kept) == len(raw):
                return None, False
            return kept, True

        removed = update_json(self.store, keys.ledger(profile), [], _remove)
        if removed:
            logger.info(f"Released ledger entry {entry_id} for {profile}")
        return removed

    def next_admissible_slot(
        self,
        profile: str,
        now: Optional[datetime] = None,
        horizon_min: int = 180,
        step_min: int = 5,
    ) -> Optional[datetime]:
        """
        Best admissible time within the horizon: highest slot score, earliest
        on ties. Slots with a zero score (hard quiet hours) are never chosen.
        """
        now = as_utc(now or self.clock())
        start = now.replace(second=0, microsecond=0)
        if start < now:
            start += timedelta(minutes=1)
        quota = self.quota_for(profile)
        ledger = self.ledger(profile)
        windows = self.audience_windows(profile)
        quiet = self.quiet_hours()

        best: Optional[Tuple[float, datetime]] = None
        for step in range(0, horizon_min // step_min + 1):
            candidate = start + timedelta(minutes=step * step_min)
            if not evaluate_quota(candidate, quota, ledger).allowed:
                continue
            score = self._slot_score(candidate, windows, quiet)
            if score <= 0:
                continue
            if best is None or score > best[0]:
                best = (score, candidate)

        return best[1] if best else None
