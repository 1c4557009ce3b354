"""
Classifier and transcoder adapter tests (no network, no ffmpeg).
"""

import asyncio
import os

import httpx
import numpy as np
import pytest

from reelgate.lib.classifier import (
    ClassifierError, HttpImageClassifier, aggregate_predictions, parse_predictions,
)
from reelgate.lib.transcoder import Blur, FFmpegTranscoder, Frame, TranscodeError, parse_probe
from reelgate.models.media import Prediction

FRAME = Frame(index=3, jpeg=b"\xff\xd8jpeg", pixels=np.zeros((2, 2, 3), dtype=np.uint8))


class TestParsePredictions:

    def test_nsfwjs_style_list(self):
        predictions = parse_predictions([
            {"className": "Porn", "probability": 0.1},
            {"className": "Neutral", "probability": 0.85},
        ])
        assert predictions == [
            Prediction(class_name="porn", probability=0.1),
            Prediction(class_name="neutral", probability=0.85),
        ]

    def test_wrapped_body(self):
        predictions = parse_predictions({"predictions": [{"class_name": "sexy", "probability": 0.4}]})
        assert predictions[0].class_name == "sexy"

    @pytest.mark.parametrize("body", [
        "nope",
        [{"className": "porn"}],
        [{"className": "porn", "probability": "high"}],
        [{"className": "porn", "probability": 1.5}],
    ])
    def test_malformed_bodies(self, body):
        with pytest.raises((ClassifierError, ValueError)):
            parse_predictions(body)


def test_aggregate_tracks_per_class_maxima():
    classes = {"sexy": 0.5}

    frame_max = aggregate_predictions(classes, [
        Prediction(class_name="sexy", probability=0.3),
        Prediction(class_name="hentai", probability=0.2),
        Prediction(class_name="neutral", probability=0.9),
    ])

    assert frame_max == pytest.approx(0.3)
    assert classes == {"sexy": 0.5, "hentai": 0.2, "neutral": 0.9}


class TestHttpImageClassifier:

    def make(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpImageClassifier("http://classifier.local/classify", client=client)

    def test_posts_jpeg_and_parses_response(self):
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json=[{"className": "Drawing", "probability": 0.7}])

        predictions = asyncio.run(self.make(handler).classify(FRAME))

        assert seen == {"content_type": "image/jpeg", "body": b"\xff\xd8jpeg"}
        assert predictions == [Prediction(class_name="drawing", probability=0.7)]

    def test_http_error_raises_classifier_error(self):
        classifier = self.make(lambda request: httpx.Response(500))

        with pytest.raises(ClassifierError):
            asyncio.run(classifier.classify(FRAME))

    def test_invalid_json_raises_classifier_error(self):
        classifier = self.make(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(ClassifierError):
            asyncio.run(classifier.classify(FRAME))

    def test_one_client_is_reused_until_closed(self, monkeypatch):
        real_client = httpx.AsyncClient
        opened = []

        def client_factory(**kwargs):
            transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[]))
            client = real_client(transport=transport, **kwargs)
            opened.append(client)
            return client

        monkeypatch.setattr("reelgate.lib.classifier.httpx.AsyncClient", client_factory)
        classifier = HttpImageClassifier("http://classifier.local/classify")

        async def scan_then_close():
            for _ in range(5):
                await classifier.classify(FRAME)
            await classifier.aclose()

        asyncio.run(scan_then_close())
        asyncio.run(scan_then_close())

        assert len(opened) == 2
        assert all(client.is_closed for client in opened)

    def test_injected_client_is_left_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))
        classifier = HttpImageClassifier("http://classifier.local/classify", client=client)

        asyncio.run(classifier.aclose())

        assert client.is_closed is False


class TestParseProbe:

    def test_video_with_audio(self):
        info = parse_probe({
            "streams": [
                {"codec_type": "video", "width": 1920, "height": 1080, "duration": "75.5"},
                {"codec_type": "audio"},
            ],
            "format": {"duration": "76.0"},
        })
        assert (info.duration, info.width, info.height, info.has_audio) == (75.5, 1920, 1080, True)

    def test_falls_back_to_container_duration(self):
        info = parse_probe({
            "streams": [{"codec_type": "video", "width": 1080, "height": 1920}],
            "format": {"duration": "12.0"},
        })
        assert info.duration == 12.0
        assert info.has_audio is False


class TestTransformOutputs:

    def make(self, tmp_path, fail=False):
        transcoder = FFmpegTranscoder(work_dir=str(tmp_path))

        async def run(cmd):
            if fail:
                raise TranscodeError("ffmpeg exited with 1")
            with open(cmd[-1], "wb") as fh:
                fh.write(b"mp4")
            return b""

        transcoder._run = run
        return transcoder

    def test_discard_removes_only_transform_outputs(self, tmp_path):
        source = tmp_path / "in.mp4"
        source.write_bytes(b"src")
        transcoder = self.make(tmp_path)

        out = asyncio.run(transcoder.transform(str(source), [Blur(radius=4)]))
        assert os.path.exists(out)

        transcoder.discard(str(source))
        transcoder.discard(out)

        assert source.exists()
        assert not os.path.exists(os.path.dirname(out))

    def test_failed_transform_leaves_no_temp_dir(self, tmp_path):
        source = tmp_path / "in.mp4"
        source.write_bytes(b"src")
        transcoder = self.make(tmp_path, fail=True)

        with pytest.raises(TranscodeError):
            asyncio.run(transcoder.transform(str(source), [Blur(radius=4)]))

        assert list(tmp_path.iterdir()) == [source]
