"""
Auto-Fix Pipeline - ordered corrective transforms.

Stages run in a fixed order and each writes a new artifact, so a failing
later stage never corrupts an earlier result. An intermediate is discarded as
soon as the next stage succeeds. Any failure discards the partial artifact and
aborts the whole fix attempt with AutoFixError.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from reelgate.lib.metrics import metrics
from reelgate.lib.transcoder import Transcoder, TranscodeError, Trim, ScaleCrop, Blur, Loudnorm
from reelgate.models.enums import FixStage
from reelgate.models.media import MediaInfo
from reelgate.models.policy import Policy
from reelgate.services.caption_scanner import CaptionScanner

logger = logging.getLogger(__name__)

# Target frame for aspect correction (9:16 portrait)
TARGET_WIDTH = 1080
TARGET_HEIGHT = 1920


class AutoFixError(RuntimeError):
    """A fix stage failed; the asset must not be admitted this cycle."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"auto-fix stage '{stage}' failed: {message}")
        self.stage = stage


@dataclass
class FixResult:
    """Output of one auto-fix run."""
    path_out: str
    caption_out: str
    changed: bool = False
    stages: List[str] = field(default_factory=list)


def centered_trim(duration: float, max_seconds: float) -> Optional[Trim]:
    """Centered window of exactly max_seconds, or None when no trim is needed."""
    if duration <= max_seconds:
        return None
    start = max(0.0, (duration - max_seconds) / 2)
    return Trim(start=start, duration=max_seconds)


def needs_aspect_fix(width: int, height: int, tolerance: float) -> bool:
    if not width or not height:
        return False
    return abs(width / height - TARGET_WIDTH / TARGET_HEIGHT) > tolerance


class AutoFixService:
    """Applies trim, crop, blur, loudness and caption fixes."""

    def __init__(
        self,
        transcoder: Transcoder,
        policy: Optional[Policy] = None,
        caption_scanner: Optional[CaptionScanner] = None,
    ):
        self.transcoder = transcoder
        self.policy = policy or Policy()
        self.caption_scanner = caption_scanner or CaptionScanner()

    async def apply(self, path: str, caption: str, profanity_hits: Sequence[str] = ()) -> FixResult:
        result = FixResult(path_out=path, caption_out=caption)

        try:
            info: MediaInfo = await self.transcoder.probe(path)
        except TranscodeError as e:
            raise AutoFixError("probe", str(e)) from e

        # 1. Trim to a centered window
        trim = centered_trim(info.duration, self.policy.max_seconds)
        if trim is not None:
            await self._run_stage(result, path, FixStage.TRIM, trim)

        # 2. Aspect correction to 9:16
        if needs_aspect_fix(info.width, info.height, self.policy.aspect_tolerance):
            await self._run_stage(
                result, path, FixStage.CROP,
                ScaleCrop(width=TARGET_WIDTH, height=TARGET_HEIGHT, fps=self.policy.target_fps),
            )

        # 3. Blur is always applied when fixing
        await self._run_stage(result, path, FixStage.BLUR, Blur(radius=self.policy.blur_radius))

        # 4. Loudness normalization
        if info.has_audio:
            await self._run_stage(result, path, FixStage.AUDIO, Loudnorm(target_lufs=self.policy.normalize_lufs))

        # 5. Caption cleanup
        if profanity_hits and self.policy.profanity_block:
            result.caption_out = self.caption_scanner.mask(caption)
            self._mark(result, FixStage.CAPTION)

        logger.info(f"Auto-fixed {path} -> {result.path_out}: {', '.join(result.stages)}")
        return result

    async def _run_stage(self, result: FixResult, source: str, stage: FixStage, op) -> None:
        previous = result.path_out
        try:
            result.path_out = await self.transcoder.transform(previous, [op])
        except TranscodeError as e:
            logger.error(f"Auto-fix stage {stage.value} failed on {previous}: {e}")
            if previous != source:
                self.transcoder.discard(previous)
            raise AutoFixError(stage.value, str(e)) from e
        if previous != source:
            self.transcoder.discard(previous)
        self._mark(result, stage)

    def discard(self, artifact: str) -> None:
        """Drop a fix artifact that will not be published."""
        self.transcoder.discard(artifact)

    def _mark(self, result: FixResult, stage: FixStage) -> None:
        result.changed = True
        result.stages.append(stage.value)
        metrics.record_fix_stage(stage.value)
