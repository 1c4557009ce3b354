"""
Safety decision engine tests: hard reject, conditional fix, fail-open handling
and caption cleanup.
"""

import asyncio

import pytest

from reelgate.models.enums import AssetSource, SafetyStatus, SafetyReason
from reelgate.models.media import Asset, MediaInfo
from reelgate.models.policy import Policy
from reelgate.services.autofix_service import AutoFixService, AutoFixError
from reelgate.services.safety_service import SafetyService
from reelgate.services.scan_service import ScanService

from conftest import FakeClassifier, FakeTranscoder, make_frame

FIXED_PATH = "in.mp4|blur|loudnorm"


def build_service(transcoder, classifier, policy=None):
    policy = policy or Policy()
    return SafetyService(
        ScanService(transcoder, classifier, policy),
        AutoFixService(transcoder, policy),
        policy,
    )


def evaluate(service, caption="", source=AssetSource.LOCAL):
    asset = Asset(id="asset-1", source_path="in.mp4", caption=caption, source=source)
    return asyncio.run(service.evaluate(asset))


def transcoder_with(first, fixed=None, **kwargs):
    frames = {"in.mp4": [make_frame(first)]}
    if fixed is not None:
        frames[FIXED_PATH] = [make_frame(fixed)]
    return FakeTranscoder(frames=frames, **kwargs)


class TestHardReject:

    @pytest.mark.parametrize("scores", [
        {"porn": 0.9},
        {"porn": 0.85},
        {"hentai": 0.86, "porn": 0.1},
        {"porn": 0.95, "sexy": 0.7},
    ])
    def test_hard_reject_without_fix(self, scores):
        transcoder = transcoder_with("x")
        service = build_service(transcoder, FakeClassifier({"x": scores}))

        report = evaluate(service)

        assert report.status == SafetyStatus.REJECTED
        assert SafetyReason.NSFW_HARD.value in report.reasons
        assert report.artifact_path is None
        assert transcoder.transforms == []


class TestConditionalFix:

    def test_fixed_when_second_pass_is_clean(self):
        transcoder = transcoder_with("racy", fixed="tame")
        classifier = FakeClassifier({
            "racy": {"sexy": 0.7, "porn": 0.2, "neutral": 0.1},
            "tame": {"sexy": 0.3, "neutral": 0.6},
        })

        report = evaluate(build_service(transcoder, classifier))

        assert report.status == SafetyStatus.FIXED
        assert report.artifact_path == FIXED_PATH
        assert transcoder.discarded == ["in.mp4|blur"]
        assert report.fix_stages == ["blur", "audio-normalized"]
        assert report.metrics.nsfw_max == pytest.approx(0.7)
        assert report.metrics_after_fix.nsfw_max == pytest.approx(0.3)
        assert transcoder.sample_calls == ["in.mp4", FIXED_PATH]

    def test_skin_ratio_triggers_fix(self):
        transcoder = FakeTranscoder(frames={
            "in.mp4": [make_frame("skin", skin=0.5)],
            FIXED_PATH: [make_frame("clean", skin=0.1)],
        })

        report = evaluate(build_service(transcoder, FakeClassifier()))

        assert report.status == SafetyStatus.FIXED
        assert report.metrics.skin_ratio_max == pytest.approx(0.5)

    def test_rejected_after_fix_has_no_artifact(self):
        transcoder = transcoder_with("racy", fixed="still-racy")
        classifier = FakeClassifier({
            "racy": {"sexy": 0.7},
            "still-racy": {"sexy": 0.65},
        })

        report = evaluate(build_service(transcoder, classifier))

        assert report.status == SafetyStatus.REJECTED
        assert report.reasons == [SafetyReason.NSFW_AFTER_FIX.value]
        assert report.artifact_path is None
        assert report.publish_path(Asset(id="asset-1", source_path="in.mp4")) is None
        assert transcoder.discarded == ["in.mp4|blur", FIXED_PATH]

    def test_exactly_one_rescan(self):
        transcoder = transcoder_with("racy", fixed="still-racy")
        classifier = FakeClassifier({"racy": {"sexy": 0.7}, "still-racy": {"sexy": 0.9}})

        evaluate(build_service(transcoder, classifier))

        assert len(transcoder.sample_calls) == 2

    def test_fix_stage_failure_propagates(self):
        transcoder = transcoder_with("racy", fail_ops={"blur"})
        classifier = FakeClassifier({"racy": {"sexy": 0.7}})

        with pytest.raises(AutoFixError) as exc_info:
            evaluate(build_service(transcoder, classifier))

        assert exc_info.value.stage == "blur"


class TestApprove:

    def test_clean_asset_is_approved_as_is(self, transcoder, classifier):
        report = evaluate(build_service(transcoder, classifier), source=AssetSource.DRIVE)

        assert report.status == SafetyStatus.APPROVED
        assert report.reasons == []
        assert report.artifact_path is None
        assert report.source == AssetSource.DRIVE
        assert report.publish_path(Asset(id="asset-1", source_path="in.mp4")) == "in.mp4"

    def test_caption_cleaned_without_video_fix(self, transcoder, classifier):
        report = evaluate(build_service(transcoder, classifier), caption="this is bullshit!")

        assert report.status == SafetyStatus.APPROVED
        assert report.caption_out == "this is ********!"
        assert report.reasons == [SafetyReason.CAPTION_CLEANED.value]

    def test_caption_kept_when_profanity_block_is_off(self, transcoder, classifier):
        policy = Policy(profanity_block=False)
        report = evaluate(build_service(transcoder, classifier, policy), caption="oh shit")

        assert report.caption_out == "oh shit"
        assert report.reasons == []

    def test_caption_cleaned_on_fix_path(self):
        transcoder = transcoder_with("racy", fixed="tame")
        classifier = FakeClassifier({"racy": {"sexy": 0.7}, "tame": {"sexy": 0.1}})

        report = evaluate(build_service(transcoder, classifier), caption="damn fine")

        assert report.status == SafetyStatus.FIXED
        assert report.caption_out == "**** fine"
        assert "caption-cleaned" in report.fix_stages
        assert report.reasons == [SafetyReason.CAPTION_CLEANED.value]


class TestIncompleteScans:

    def test_fail_open_approves_and_records_reason(self):
        transcoder = FakeTranscoder(fail_sample=True, info=MediaInfo())

        report = evaluate(build_service(transcoder, FakeClassifier()))

        assert report.status == SafetyStatus.APPROVED
        assert report.reasons == [SafetyReason.SCAN_INCOMPLETE.value]

    def test_fail_closed_holds_asset(self):
        transcoder = FakeTranscoder(fail_sample=True, info=MediaInfo())
        policy = Policy(fail_open_on_scan_errors=False)

        report = evaluate(build_service(transcoder, FakeClassifier(), policy))

        assert report.status == SafetyStatus.INCOMPLETE
        assert not report.status.publishable
        assert report.artifact_path is None
