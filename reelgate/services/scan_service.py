"""
Scan Aggregator - combines probe, classifier, skin heuristic and caption scan
into one ScanResult.

Infrastructure failures are fail-open: a failed probe means no audio, a failed
extraction means zero scores. Both are logged and mark the pass incomplete so
the decision engine can apply its fail-open/fail-closed setting.
"""

import logging
import time
from typing import Dict, List, Optional

from reelgate.lib.classifier import ImageClassifier, ClassifierError, aggregate_predictions
from reelgate.lib.metrics import metrics
from reelgate.lib.transcoder import Transcoder, TranscodeError, Frame
from reelgate.models.media import ScanResult
from reelgate.models.policy import Policy
from reelgate.services.caption_scanner import CaptionScanner
from reelgate.services.skin_heuristic import skin_ratio

logger = logging.getLogger(__name__)


class ScanService:
    """
    Runs one scan pass over a video file and its caption.
    Frames are classified sequentially; each classifier call is awaited.
    """

    def __init__(
        self,
        transcoder: Transcoder,
        classifier: ImageClassifier,
        policy: Optional[Policy] = None,
        caption_scanner: Optional[CaptionScanner] = None,
    ):
        self.transcoder = transcoder
        self.classifier = classifier
        self.policy = policy or Policy()
        self.caption_scanner = caption_scanner or CaptionScanner()

    async def scan(self, path: str, caption: str) -> ScanResult:
        """Scan a video file and caption."""
        start_time = time.time()

        # Step 1: Probe metadata (a probe failure is not a safety failure)
        has_audio = False
        try:
            info = await self.transcoder.probe(path)
            has_audio = info.has_audio
        except TranscodeError as e:
            logger.warning(f"Probe failed for {path}, assuming no audio: {e}")

        # Step 2: Sample frames
        extraction_ok = True
        frames: List[Frame] = []
        try:
            frames = await self.transcoder.sample_frames(
                path, fps=self.policy.sample_fps, max_frames=self.policy.max_frames
            )
        except TranscodeError as e:
            extraction_ok = False
            logger.warning(f"Frame extraction failed for {path}, scoring as zero signal: {e}")

        # Step 3: Classify frames and run the pixel heuristic
        nsfw_classes: Dict[str, float] = {}
        nsfw_max = 0.0
        skin_ratio_max = 0.0
        frames_checked = 0
        frames_failed = 0

        for frame in frames[: self.policy.max_frames]:
            call_start = time.time()
            try:
                predictions = await self.classifier.classify(frame)
            except ClassifierError as e:
                frames_failed += 1
                logger.warning(f"Skipping frame {frame.index} of {path}: {e}")
                continue
            finally:
                metrics.record_classifier_call(time.time() - call_start)

            frames_checked += 1
            nsfw_max = max(nsfw_max, aggregate_predictions(nsfw_classes, predictions))

            neutral = max((p.probability for p in predictions if p.class_name == "neutral"), default=0.0)
            if neutral >= self.policy.nsfw.neutral_floor:
                continue
            try:
                skin_ratio_max = max(skin_ratio_max, skin_ratio(frame.pixels))
            except ValueError as e:
                logger.warning(f"Skin heuristic skipped frame {frame.index} of {path}: {e}")

        # Step 4: Caption scan
        caption_scan = self.caption_scanner.scan(caption)

        complete = extraction_ok and frames_checked > 0
        if not complete:
            logger.warning(
                f"Incomplete scan for {path}: extraction_ok={extraction_ok}, "
                f"frames={len(frames)}, failed={frames_failed}"
            )

        metrics.record_scan(complete, time.time() - start_time, frames_failed)

        return ScanResult(
            nsfw_max=nsfw_max,
            nsfw_classes=nsfw_classes,
            skin_ratio_max=skin_ratio_max,
            profanity_hits=caption_scan.profanity_hits,
            has_audio=has_audio,
            frames_checked=frames_checked,
            frames_failed=frames_failed,
            complete=complete,
        )
