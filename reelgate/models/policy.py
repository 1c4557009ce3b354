"""
Safety policy - static thresholds for the decision engine and auto-fix pipeline.
Loaded once at startup and read-only afterwards.
"""

import os

from pydantic import BaseModel, ConfigDict, Field


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class NsfwThresholds(BaseModel):
    """Per-class classifier thresholds."""
    model_config = ConfigDict(frozen=True)

    porn: float = Field(ge=0.0, le=1.0, default=0.85)
    hentai: float = Field(ge=0.0, le=1.0, default=0.85)
    sexy: float = Field(ge=0.0, le=1.0, default=0.6)
    neutral_floor: float = Field(ge=0.0, le=1.0, default=0.6)


class Policy(BaseModel):
    """
    Safety policy for the publish gate.

    nsfw.porn / nsfw.hentai are hard-reject thresholds, nsfw.sexy and
    skin_ratio_auto_fix trigger the auto-fix path. neutral_floor is the
    classifier "neutral" probability above which a frame's skin ratio is
    ignored (faces and close-ups trip the pixel heuristic).
    """
    model_config = ConfigDict(frozen=True)

    nsfw: NsfwThresholds = Field(default_factory=NsfwThresholds)
    skin_ratio_auto_fix: float = Field(ge=0.0, le=1.0, default=0.35)

    # Auto-fix targets
    max_seconds: float = Field(gt=0, default=60.0)
    target_fps: int = Field(gt=0, default=30)
    normalize_lufs: float = -14.0
    blur_radius: int = Field(ge=1, default=10)
    aspect_tolerance: float = Field(ge=0.0, default=0.01)
    profanity_block: bool = True

    # Frame sampling
    max_frames: int = Field(gt=0, default=60)
    sample_fps: float = Field(gt=0, default=1.0)

    # Infra failures score zero and pass (True) or hold the asset back (False)
    fail_open_on_scan_errors: bool = True

    @classmethod
    def from_env(cls) -> "Policy":
        """Build the policy from REELGATE_* environment variables."""
        defaults = cls()
        return cls(
            nsfw=NsfwThresholds(
                porn=_env_float("REELGATE_NSFW_PORN", defaults.nsfw.porn),
                hentai=_env_float("REELGATE_NSFW_HENTAI", defaults.nsfw.hentai),
                sexy=_env_float("REELGATE_NSFW_SEXY", defaults.nsfw.sexy),
                neutral_floor=_env_float("REELGATE_NSFW_NEUTRAL_FLOOR", defaults.nsfw.neutral_floor),
            ),
            skin_ratio_auto_fix=_env_float("REELGATE_SKIN_RATIO_AUTO_FIX", defaults.skin_ratio_auto_fix),
            max_seconds=_env_float("REELGATE_MAX_SECONDS", defaults.max_seconds),
            target_fps=_env_int("REELGATE_TARGET_FPS", defaults.target_fps),
            normalize_lufs=_env_float("REELGATE_NORMALIZE_LUFS", defaults.normalize_lufs),
            blur_radius=_env_int("REELGATE_BLUR_RADIUS", defaults.blur_radius),
            aspect_tolerance=_env_float("REELGATE_ASPECT_TOLERANCE", defaults.aspect_tolerance),
            profanity_block=_env_bool("REELGATE_PROFANITY_BLOCK", defaults.profanity_block),
            max_frames=_env_int("REELGATE_MAX_FRAMES", defaults.max_frames),
            sample_fps=_env_float("REELGATE_SAMPLE_FPS", defaults.sample_fps),
            fail_open_on_scan_errors=_env_bool("REELGATE_FAIL_OPEN", defaults.fail_open_on_scan_errors),
        )
