"""
Shared fakes and fixtures.
The fakes stand in for ffmpeg, the classifier service and the publisher so the
pipeline can be exercised without external processes.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import numpy as np
import pytest

from reelgate.lib.classifier import ClassifierError
from reelgate.lib.publisher import PublishError
from reelgate.lib.store import InMemoryStore, keys, set_json
from reelgate.lib.transcoder import Frame, TranscodeError
from reelgate.models.media import MediaInfo, Prediction
from reelgate.models.policy import Policy
from reelgate.models.schedule import PublishRequest, QuietHours

SKIN_RGB = (200, 120, 90)


def make_frame(tag: str, index: int = 0, skin: float = 0.0, size: int = 10) -> Frame:
    """Frame whose JPEG payload is its tag and whose pixels are `skin` skin-toned."""
    pixels = np.zeros((size, size, 3), dtype=np.uint8)
    skin_pixels = int(round(skin * size * size))
    flat = pixels.reshape(-1, 3)
    flat[:skin_pixels] = SKIN_RGB
    return Frame(index=index, jpeg=tag.encode("utf-8"), pixels=pixels)


class FakeTranscoder:
    """In-memory transcoder. transform() appends the op name to the path."""

    def __init__(
        self,
        info: Optional[MediaInfo] = None,
        frames: Optional[Dict[str, List[Frame]]] = None,
        default_frames: Optional[List[Frame]] = None,
        fail_probe: bool = False,
        fail_sample: bool = False,
        fail_ops: Iterable[str] = (),
    ):
        self.info = info or MediaInfo(duration=30.0, width=1080, height=1920, has_audio=True)
        self.frames = frames or {}
        self.default_frames = default_frames if default_frames is not None else [make_frame("clean")]
        self.fail_probe = fail_probe
        self.fail_sample = fail_sample
        self.fail_ops = set(fail_ops)
        self.sample_calls: List[str] = []
        self.transforms: List[tuple] = []
        self.discarded: List[str] = []

    async def probe(self, path: str) -> MediaInfo:
        if self.fail_probe:
            raise TranscodeError(f"cannot probe {path}")
        return self.info

    async def sample_frames(self, path: str, fps: float, max_frames: int) -> List[Frame]:
        self.sample_calls.append(path)
        if self.fail_sample:
            raise TranscodeError(f"cannot decode {path}")
        return list(self.frames.get(path, self.default_frames))[:max_frames]

    async def transform(self, path: str, ops) -> str:
        names = [type(op).__name__.lower() for op in ops]
        for name in names:
            if name in self.fail_ops:
                raise TranscodeError(f"{name} failed on {path}")
        self.transforms.append((path, list(ops)))
        return "|".join([path] + names)

    def discard(self, path: str) -> None:
        self.discarded.append(path)


class FakeClassifier:
    """Returns fixed class scores keyed by the frame's JPEG payload."""

    def __init__(self, scores: Optional[Dict[str, Dict[str, float]]] = None, fail_tags: Iterable[str] = ()):
        self.scores = scores or {}
        self.fail_tags = set(fail_tags)
        self.calls = 0

    async def classify(self, frame: Frame) -> List[Prediction]:
        self.calls += 1
        tag = frame.jpeg.decode("utf-8")
        if tag in self.fail_tags:
            raise ClassifierError(f"classifier unavailable for {tag}")
        classes = self.scores.get(tag, {"neutral": 0.2, "drawing": 0.1})
        return [Prediction(class_name=name, probability=p) for name, p in classes.items()]


class RecordingPublisher:
    """Publisher that remembers requests and can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests: List[PublishRequest] = []
        self.dead_letters: List[tuple] = []

    async def schedule(self, request: PublishRequest) -> None:
        if self.fail:
            raise PublishError("scheduler offline")
        self.requests.append(request)

    async def dead_letter(self, message, error: str) -> None:
        self.dead_letters.append((message, error))


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def use_utc_quiet_hours(store, quiet: Optional[QuietHours] = None) -> None:
    """Pin quiet hours to UTC so wall-clock tests do not depend on DST."""
    set_json(store, keys.quiet_hours, (quiet or QuietHours(time_zone="UTC")).model_dump())


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def policy():
    return Policy()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def publisher():
    return RecordingPublisher()
