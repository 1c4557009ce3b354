"""
Safety Decision Engine.
Applies policy thresholds to scan results and drives the auto-fix path.

Two-level decision: a pre-fix pass and at most one post-fix pass. There is
no retry loop, so evaluation always terminates.
"""

import logging
from typing import List, Optional

from reelgate.lib.metrics import metrics
from reelgate.models.enums import SafetyStatus, SafetyReason
from reelgate.models.media import Asset, ScanResult, SafetyReport
from reelgate.models.policy import Policy
from reelgate.services.autofix_service import AutoFixService
from reelgate.services.caption_scanner import CaptionScanner
from reelgate.services.scan_service import ScanService

logger = logging.getLogger(__name__)


class SafetyService:
    """
    Produces a SafetyReport for an asset.

    Routing:
    - hard reject: porn / hentai over threshold, no fix attempted
    - conditional fix: sexy class or skin ratio over threshold, auto-fix + one re-scan
    - approve: nothing fired
    Caption profanity is cleaned independently of the video verdict.
    """

    def __init__(
        self,
        scanner: ScanService,
        autofix: AutoFixService,
        policy: Optional[Policy] = None,
        caption_scanner: Optional[CaptionScanner] = None,
    ):
        self.scanner = scanner
        self.autofix = autofix
        self.policy = policy or Policy()
        self.caption_scanner = caption_scanner or CaptionScanner()

    def is_hard_reject(self, scan: ScanResult) -> bool:
        return (
            scan.nsfw_max >= self.policy.nsfw.porn
            or scan.class_score("hentai") >= self.policy.nsfw.hentai
        )

    def needs_fix(self, scan: ScanResult) -> bool:
        return (
            scan.class_score("sexy") >= self.policy.nsfw.sexy
            or scan.skin_ratio_max >= self.policy.skin_ratio_auto_fix
        )

    def _held_back(self, scan: ScanResult, reasons: List[str]) -> bool:
        """Record an incomplete pass; True when policy says hold the asset."""
        if scan.complete:
            return False
        if SafetyReason.SCAN_INCOMPLETE.value not in reasons:
            reasons.append(SafetyReason.SCAN_INCOMPLETE.value)
        return not self.policy.fail_open_on_scan_errors

    async def evaluate(self, asset: Asset) -> SafetyReport:
        """
        Run the decision tree for one asset.
        AutoFixError propagates; the caller must not admit the asset.
        """
        reasons: List[str] = []
        caption_out = asset.caption
        artifact_path: Optional[str] = None
        fix_stages: List[str] = []
        metrics_after_fix = None

        # Step 1: First pass
        scan0 = await self.scanner.scan(asset.source_path, asset.caption)

        if self._held_back(scan0, reasons):
            status = SafetyStatus.INCOMPLETE

        # Step 2: Hard reject
        elif self.is_hard_reject(scan0):
            status = SafetyStatus.REJECTED
            reasons.append(SafetyReason.NSFW_HARD.value)

        # Step 3: Conditional fix with exactly one re-scan
        elif self.needs_fix(scan0):
            fix = await self.autofix.apply(asset.source_path, asset.caption, scan0.profanity_hits)
            caption_out = fix.caption_out
            fix_stages = list(fix.stages)

            scan1 = await self.scanner.scan(fix.path_out, fix.caption_out)
            metrics_after_fix = scan1.metrics()

            if self._held_back(scan1, reasons):
                status = SafetyStatus.INCOMPLETE
            elif self.is_hard_reject(scan1) or self.needs_fix(scan1):
                status = SafetyStatus.REJECTED
                reasons.append(SafetyReason.NSFW_AFTER_FIX.value)
            else:
                status = SafetyStatus.FIXED if fix.changed else SafetyStatus.APPROVED
                if fix.path_out != asset.source_path:
                    artifact_path = fix.path_out

            if artifact_path is None and fix.path_out != asset.source_path:
                self.autofix.discard(fix.path_out)

        # Step 4: Nothing fired
        else:
            status = SafetyStatus.APPROVED

        # Step 5: Caption cleanup, independent of the video verdict
        if scan0.profanity_hits and self.policy.profanity_block:
            if caption_out == asset.caption:
                caption_out = self.caption_scanner.mask(asset.caption)
            reasons.append(SafetyReason.CAPTION_CLEANED.value)

        report = SafetyReport(
            id=asset.id,
            source=asset.source,
            status=status,
            reasons=reasons,
            caption_out=caption_out,
            artifact_path=artifact_path if status.publishable else None,
            metrics=scan0.metrics(),
            metrics_after_fix=metrics_after_fix,
            fix_stages=fix_stages,
        )

        metrics.record_report(status.value)
        logger.info(f"Asset {asset.id}: {status.value} ({', '.join(reasons) or 'clean'})")
        return report
