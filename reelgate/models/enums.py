"""
Enumeration definitions for the publish gate.
Safety verdicts, fix stages, admission rules and queue states.
"""

from enum import Enum


class AssetSource(str, Enum):
    """Where a queued asset was pulled from."""
    LOCAL = "local"
    DRIVE = "drive"
    URL = "url"


class SafetyStatus(str, Enum):
    """Verdict of the safety gate for one asset."""
    APPROVED = "approved"         # Published as-is
    FIXED = "fixed"               # Published from the auto-fixed artifact
    REJECTED = "rejected"         # Never handed to a publisher
    INCOMPLETE = "incomplete"     # Scan could not run, held back (fail-closed mode)

    @property
    def publishable(self) -> bool:
        return self in (SafetyStatus.APPROVED, SafetyStatus.FIXED)


class SafetyReason(str, Enum):
    """Reason codes recorded on a SafetyReport."""
    NSFW_HARD = "nsfw-hard"
    NSFW_AFTER_FIX = "nsfw-after-fix"
    CAPTION_CLEANED = "caption-cleaned"
    SCAN_INCOMPLETE = "scan-incomplete"


class FixStage(str, Enum):
    """Auto-fix stages, in the order they are applied."""
    TRIM = "trimmed"
    CROP = "crop"
    BLUR = "blur"
    AUDIO = "audio-normalized"
    CAPTION = "caption-cleaned"


class AdmissionRule(str, Enum):
    """Quota rules that can block a publish slot."""
    DAY_CAP = "day-cap"
    HOUR_CAP = "hour-cap"
    MIN_GAP = "min-gap"


class DraftStatus(str, Enum):
    """Status of an item in the draft queue."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    REJECTED = "rejected"
    FAILED = "failed"


class CycleOutcome(str, Enum):
    """Outcome of one orchestrator cycle for a profile."""
    EMPTY = "empty"           # Nothing queued
    REJECTED = "rejected"     # Safety gate refused the asset
    ERROR = "error"           # Infrastructure failure, asset not admitted
    DEFERRED = "deferred"     # Quota or quiet hours, try again next tick
    SCHEDULED = "scheduled"   # Publish request emitted


class Variant(str, Enum):
    """A/B test arms."""
    A = "A"
    B = "B"
