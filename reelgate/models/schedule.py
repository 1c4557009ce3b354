"""
Scheduling data models: quotas, audience windows, quiet hours, post ledger,
trends, A/B tests and publish requests.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from reelgate.lib.clock import utc_now, as_utc
from reelgate.models.enums import AdmissionRule, DraftStatus, Variant
from reelgate.models.media import Asset

MINUTES_PER_DAY = 24 * 60


class Quota(BaseModel):
    """Publish rate limits for one profile. None disables a rule."""
    day_cap: Optional[int] = Field(ge=0, default=None)
    hour_cap: Optional[int] = Field(ge=0, default=None)
    gap_min: float = Field(ge=0, default=0)


class MinuteWindow(BaseModel):
    """Inclusive minutes-of-day range. start > end wraps past midnight."""
    start_min: int = Field(ge=0, lt=MINUTES_PER_DAY)
    end_min: int = Field(ge=0, lt=MINUTES_PER_DAY)

    def contains(self, minute: int) -> bool:
        if self.start_min <= self.end_min:
            return self.start_min <= minute <= self.end_min
        return minute >= self.start_min or minute <= self.end_min


class AudienceWindow(MinuteWindow):
    """Time of day when a profile's audience is most active."""
    weight: float = Field(ge=1.0, default=1.0)


class QuietHours(BaseModel):
    """Windows during which publishing weight is suppressed."""
    time_zone: str = "UTC"
    windows: List[MinuteWindow] = Field(default_factory=list)
    soft: bool = True


class PostLedgerEntry(BaseModel):
    """One admitted publish for a profile."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    ts: datetime
    asset_id: Optional[str] = None
    trend_id: Optional[str] = None

    @field_validator("ts")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class AdmissionDecision(BaseModel):
    """Result of a quota check; violations lists the rules that blocked it."""
    allowed: bool
    violations: List[AdmissionRule] = Field(default_factory=list)
    posts_last_day: int = 0
    posts_last_hour: int = 0
    minutes_since_last: Optional[float] = None


class RawTrend(BaseModel):
    """Trend record as supplied by the trend feed."""
    id: str
    hashtag: Optional[str] = None
    sound_id: Optional[str] = None
    volume: float = Field(ge=0.0, default=1.0)
    niche_fit: float = Field(ge=0.0, default=1.0)
    safe: bool = True
    seasonal: float = Field(ge=0.0, default=1.0)
    updated_at: datetime

    @field_validator("updated_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Trend(RawTrend):
    """Scored trend, selectable until decay_at."""
    score: float = 0.0
    decay_at: datetime

    @field_validator("decay_at")
    @classmethod
    def _utc_decay(cls, value: datetime) -> datetime:
        return as_utc(value)

    def expired(self, now: datetime) -> bool:
        return as_utc(now) >= self.decay_at


class Opportunity(BaseModel):
    """A trend ranked for a profile at a point in time."""
    trend: Trend
    slot_weight: float
    adjusted_score: float


class ABTest(BaseModel):
    """Two-arm caption/overlay experiment. Results are append-only."""
    id: str
    variant_a: str
    variant_b: str
    results: Dict[Variant, List[Dict[str, Any]]] = Field(default_factory=dict)

    def value_for(self, variant: Variant) -> str:
        return self.variant_a if variant == Variant.A else self.variant_b


class VariantPick(BaseModel):
    """Arm chosen for one publish."""
    test_id: str
    variant: Variant
    value: str


class PublishRequest(BaseModel):
    """Scheduling request handed to the external publisher."""
    file_url: str
    caption: str
    when_iso: str
    profile: str
    asset_id: str
    trend_id: Optional[str] = None
    hashtag: Optional[str] = None
    sound_id: Optional[str] = None
    variant: Optional[VariantPick] = None


class DraftItem(BaseModel):
    """Queued asset awaiting a cycle."""
    asset: Asset
    priority: int = 0
    status: DraftStatus = DraftStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    note: Optional[str] = None
    attempts: int = Field(default=0, ge=0)
