"""
Transcoder adapter - media probing, frame sampling and corrective transforms.
Drives the ffprobe / ffmpeg binaries; every call carries its own timeout and
every transform writes a new temporary file.
"""

import asyncio
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Set, Union

import numpy as np

from reelgate.models.media import MediaInfo

logger = logging.getLogger(__name__)

# Side of the square RGB thumbnail used for pixel heuristics
HEURISTIC_SIZE = 320


class TranscodeError(RuntimeError):
    """Probe, extraction or transform failure (including timeouts)."""


@dataclass
class Frame:
    """One sampled frame: encoded JPEG for the classifier, RGB pixels for heuristics."""
    index: int
    jpeg: bytes
    pixels: np.ndarray  # (HEURISTIC_SIZE, HEURISTIC_SIZE, 3) uint8


@dataclass(frozen=True)
class Trim:
    start: float
    duration: float


@dataclass(frozen=True)
class ScaleCrop:
    """Scale to cover width x height, then center-crop."""
    width: int
    height: int
    fps: Optional[int] = None


@dataclass(frozen=True)
class Blur:
    radius: int


@dataclass(frozen=True)
class Loudnorm:
    target_lufs: float


TransformOp = Union[Trim, ScaleCrop, Blur, Loudnorm]


class Transcoder(Protocol):
    """Transcoding tool interface."""

    async def probe(self, path: str) -> MediaInfo:
        ...

    async def sample_frames(self, path: str, fps: float, max_frames: int) -> List[Frame]:
        ...

    async def transform(self, path: str, ops: Sequence[TransformOp]) -> str:
        ...

    def discard(self, path: str) -> None:
        ...


def build_filters(ops: Sequence[TransformOp]) -> tuple:
    """Translate ops into (input args, video filters, audio filters)."""
    input_args: List[str] = []
    video_filters: List[str] = []
    audio_filters: List[str] = []

    for op in ops:
        if isinstance(op, Trim):
            input_args.extend(["-ss", f"{op.start:.3f}", "-t", f"{op.duration:.3f}"])
        elif isinstance(op, ScaleCrop):
            video_filters.append(
                f"scale={op.width}:{op.height}:force_original_aspect_ratio=increase"
            )
            video_filters.append(f"crop={op.width}:{op.height}")
            if op.fps:
                video_filters.append(f"fps={op.fps}")
        elif isinstance(op, Blur):
            video_filters.append(f"boxblur={op.radius}:1")
        elif isinstance(op, Loudnorm):
            audio_filters.append(f"loudnorm=I={op.target_lufs}:LRA=11:TP=-1.5")
        else:
            raise ValueError(f"Unsupported transform op: {op!r}")

    return input_args, video_filters, audio_filters


def parse_probe(probe_data: dict) -> MediaInfo:
    """Extract duration, dimensions and audio presence from ffprobe JSON."""
    video_stream = None
    audio_tracks = 0

    for stream in probe_data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio":
            audio_tracks += 1

    duration = float((video_stream or {}).get("duration") or 0)
    if duration == 0:
        duration = float(probe_data.get("format", {}).get("duration") or 0)

    return MediaInfo(
        duration=duration,
        width=int((video_stream or {}).get("width") or 0),
        height=int((video_stream or {}).get("height") or 0),
        has_audio=audio_tracks > 0,
    )


class FFmpegTranscoder:
    """Transcoder backed by the ffmpeg / ffprobe command line tools."""

    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        timeout_seconds: float = 120.0,
        work_dir: Optional[str] = None,
    ):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.timeout_seconds = timeout_seconds
        self.work_dir = work_dir
        self._outputs: Set[str] = set()

    async def _run(self, cmd: List[str]) -> bytes:
        """Run a command, returning stdout. Raises TranscodeError on failure."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"{cmd[0]} could not be started: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TranscodeError(f"{cmd[0]} timed out after {self.timeout_seconds}s")

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-500:]
            raise TranscodeError(f"{cmd[0]} exited with {proc.returncode}: {tail}")
        return stdout

    def _tmp_dir(self, prefix: str) -> str:
        return tempfile.mkdtemp(prefix=prefix, dir=self.work_dir)

    async def probe(self, path: str) -> MediaInfo:
        if not os.path.exists(path):
            raise TranscodeError(f"Video not found: {path}")

        cmd = [
            self.ffprobe_bin,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            path,
        ]
        stdout = await self._run(cmd)
        try:
            return parse_probe(json.loads(stdout))
        except (json.JSONDecodeError, ValueError) as e:
            raise TranscodeError(f"Failed to parse ffprobe output: {e}") from e

    async def sample_frames(self, path: str, fps: float, max_frames: int) -> List[Frame]:
        """
        Sample up to max_frames frames at fps.
        Two passes: JPEG files for the classifier and a raw RGB stream for heuristics.
        """
        tmp_dir = self._tmp_dir("frames-")
        try:
            await self._run([
                self.ffmpeg_bin, "-v", "error", "-i", path,
                "-vf", f"fps={fps}",
                "-frames:v", str(max_frames),
                os.path.join(tmp_dir, "frame-%03d.jpg"),
            ])
            jpeg_files = sorted(f for f in os.listdir(tmp_dir) if f.endswith(".jpg"))[:max_frames]
            jpegs = []
            for name in jpeg_files:
                with open(os.path.join(tmp_dir, name), "rb") as fh:
                    jpegs.append(fh.read())
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

        raw = await self._run([
            self.ffmpeg_bin, "-v", "error", "-i", path,
            "-vf", f"fps={fps},scale={HEURISTIC_SIZE}:{HEURISTIC_SIZE}",
            "-frames:v", str(max_frames),
            "-f", "rawvideo", "-pix_fmt", "rgb24", "pipe:1",
        ])
        frame_bytes = HEURISTIC_SIZE * HEURISTIC_SIZE * 3
        count = min(len(jpegs), len(raw) // frame_bytes)
        pixels = np.frombuffer(raw[: count * frame_bytes], dtype=np.uint8)
        pixels = pixels.reshape(count, HEURISTIC_SIZE, HEURISTIC_SIZE, 3)

        logger.debug(f"Sampled {count} frames from {path}")
        return [Frame(index=i, jpeg=jpegs[i], pixels=pixels[i]) for i in range(count)]

    async def transform(self, path: str, ops: Sequence[TransformOp]) -> str:
        """Apply ops in one ffmpeg invocation, writing a new file. Returns its path."""
        input_args, video_filters, audio_filters = build_filters(ops)
        out = os.path.join(self._tmp_dir("fix-"), "out.mp4")

        cmd = [self.ffmpeg_bin, "-v", "error", "-y", *input_args, "-i", path]
        if video_filters:
            cmd.extend(["-vf", ",".join(video_filters)])
        if audio_filters:
            cmd.extend(["-af", ",".join(audio_filters)])
        if not audio_filters:
            cmd.extend(["-c:a", "copy"])
        cmd.append(out)

        try:
            await self._run(cmd)
        except TranscodeError:
            shutil.rmtree(os.path.dirname(out), ignore_errors=True)
            raise
        self._outputs.add(out)
        logger.debug(f"Transformed {path} -> {out} ({ops})")
        return out

    def discard(self, path: str) -> None:
        """Remove a file produced by transform(). Paths it did not create are left alone."""
        if path not in self._outputs:
            return
        self._outputs.discard(path)
        shutil.rmtree(os.path.dirname(path), ignore_errors=True)
        logger.debug(f"Discarded {path}")
