"""
Asset, scan and safety report data models.
Pydantic models for type safety and validation.
"""

from datetime import datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, ConfigDict, Field

from reelgate.lib.clock import utc_now
from reelgate.models.enums import AssetSource, SafetyStatus


# Classifier classes that count towards nsfw_max
UNSAFE_CLASSES = ("porn", "hentai", "sexy")


class Asset(BaseModel):
    """
    One candidate video + caption awaiting safety review.
    Identity is a stable content id (file hash or upstream asset id).
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    source_path: str
    caption: str = ""
    source: AssetSource = AssetSource.LOCAL


class MediaInfo(BaseModel):
    """Probe result for a media file."""
    model_config = ConfigDict(frozen=True)

    duration: float = 0.0
    width: int = 0
    height: int = 0
    has_audio: bool = False


class Prediction(BaseModel):
    """One class probability returned by the image classifier."""
    model_config = ConfigDict(frozen=True)

    class_name: str
    probability: float = Field(ge=0.0, le=1.0)


class ScanResult(BaseModel):
    """
    Signals gathered by one scan pass over an asset.
    There may be two passes per asset: pre-fix and post-fix.
    """
    model_config = ConfigDict(frozen=True)

    nsfw_max: float = Field(ge=0.0, le=1.0, default=0.0)
    nsfw_classes: Dict[str, float] = Field(default_factory=dict)
    skin_ratio_max: float = Field(ge=0.0, le=1.0, default=0.0)
    profanity_hits: List[str] = Field(default_factory=list)
    has_audio: bool = False
    frames_checked: int = 0

    # Infrastructure health of the pass
    frames_failed: int = 0
    complete: bool = True

    def class_score(self, name: str) -> float:
        return self.nsfw_classes.get(name, 0.0)

    def metrics(self) -> "ScanMetrics":
        return ScanMetrics(
            nsfw_max=self.nsfw_max,
            skin_ratio_max=self.skin_ratio_max,
            frames_checked=self.frames_checked,
            has_audio=self.has_audio,
        )


class ScanMetrics(BaseModel):
    """Subset of a ScanResult kept on the report."""
    model_config = ConfigDict(frozen=True)

    nsfw_max: float = 0.0
    skin_ratio_max: float = 0.0
    frames_checked: int = 0
    has_audio: bool = False


class SafetyReport(BaseModel):
    """
    Verdict of the safety gate for one asset.
    Cached by asset id; a new scan produces a new report.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    source: AssetSource = AssetSource.LOCAL
    status: SafetyStatus
    reasons: List[str] = Field(default_factory=list)
    caption_out: str = ""
    artifact_path: Optional[str] = None
    metrics: ScanMetrics = Field(default_factory=ScanMetrics)
    metrics_after_fix: Optional[ScanMetrics] = None
    fix_stages: List[str] = Field(default_factory=list)
    at: datetime = Field(default_factory=utc_now)

    def publish_path(self, asset: Asset) -> Optional[str]:
        """File to hand to a publisher, or None when the asset must not publish."""
        if not self.status.publishable:
            return None
        return self.artifact_path or asset.source_path
