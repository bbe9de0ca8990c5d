"""
ffmpeg-backed frame extraction.

The hashing core only relies on the decoder contract: ``decode(path)``
returns a FrameSequence covering the first SAMPLE_SPAN seconds of the video
and raises ExtractionError when the file cannot be read. FfmpegDecoder is
the implementation used by the command line tool.
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional

import numpy as np

from ..common.errors import ExtractionError
from .hashing import FRAME_SIZE, NUM_FRAMES, SAMPLE_INTERVAL
from .models import FrameSequence

logger = logging.getLogger(__name__)

# ffmpeg can be very chatty on failure
MAX_ERROR_LENGTH = 500


class FfmpegDecoder:
    """Samples grayscale frames at a fixed cadence using ffmpeg/ffprobe."""

    def __init__(self,
                 frame_size: int = FRAME_SIZE,
                 num_frames: int = NUM_FRAMES,
                 interval: float = SAMPLE_INTERVAL,
                 cropdetect: bool = True,
                 timeout: Optional[float] = 120.0):
        self.frame_size = frame_size
        self.num_frames = num_frames
        self.interval = interval
        self.cropdetect = cropdetect
        self.timeout = timeout

    def decode(self, path: Path) -> FrameSequence:
        path = Path(path)
        duration = self.probe_duration(path)

        crop = self.detect_crop(path) if self.cropdetect else None
        try:
            frames = self.read_frames(path, crop)
        except ExtractionError as e:
            if crop is None:
                raise
            # cropdetect sometimes produces nonsensical crops, retry without
            logger.debug(f"Cropped decode failed for {path} ({e}), retrying without crop")
            frames = self.read_frames(path, None)

        timestamps = [i * self.interval for i in range(len(frames))]
        return FrameSequence(frames=tuple(frames), duration=duration,
                             timestamps=tuple(timestamps), source=path)

    def probe_duration(self, path: Path) -> float:
        """Total duration in seconds, from ffprobe's format or video stream."""
        cmd = [
            "ffprobe",
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path)
        ]
        result = self._run(cmd, path)

        try:
            probe_data = json.loads(result.stdout.decode('utf-8', errors='replace'))
        except ValueError as e:
            raise ExtractionError(f"unreadable ffprobe output: {e}", path)

        video_stream = next(
            (stream for stream in probe_data.get('streams', [])
             if stream.get('codec_type') == 'video'),
            None
        )
        if not video_stream:
            raise ExtractionError("no video stream found", path)

        raw = probe_data.get('format', {}).get('duration') or video_stream.get('duration')
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise ExtractionError(f"could not determine duration (got {raw!r})", path)

    def detect_crop(self, path: Path) -> Optional[str]:
        """Letterbox crop as an ffmpeg ``W:H:X:Y`` string, or None."""
        cmd = [
            "ffmpeg",
            "-hide_banner",
            "-i", str(path),
            "-vf", f"cropdetect=24:2:0,fps=1/{self.interval:g}",
            "-f", "null",
            "-t", "1",
            "-"
        ]
        try:
            result = self._run(cmd, path)
        except ExtractionError as e:
            logger.debug(f"cropdetect failed for {path}: {e}")
            return None

        crops = []
        for line in result.stderr.decode('utf-8', errors='replace').splitlines():
            if "crop=" not in line:
                continue
            value = line.split("crop=")[1].strip()
            fields = value.split(':')
            try:
                width, height = int(fields[0]), int(fields[1])
            except (IndexError, ValueError):
                continue
            if width > 0 and height > 0:
                crops.append((width * height, value))

        if not crops:
            return None
        # The largest detected area is the most pessimistic crop
        return max(crops)[1]

    def read_frames(self, path: Path, crop: Optional[str]) -> List[np.ndarray]:
        crop_filter = f",crop={crop}" if crop else ""
        span = self.num_frames * self.interval
        cmd = [
            "ffmpeg",
            "-hide_banner",
            "-loglevel", "warning",
            "-nostats",
            "-t", f"{span:g}",
            "-i", str(path),
            "-vf", f"fps=1/{self.interval:g}{crop_filter},scale={self.frame_size}:{self.frame_size}",
            "-frames:v", str(self.num_frames),
            "-pix_fmt", "gray",
            "-f", "rawvideo",
            "-"
        ]
        result = self._run(cmd, path)

        frame_bytes = self.frame_size * self.frame_size
        count = len(result.stdout) // frame_bytes
        if count == 0:
            raise ExtractionError("ffmpeg decoded no frames", path)

        data = np.frombuffer(result.stdout[:count * frame_bytes], dtype=np.uint8)
        return list(data.reshape(count, self.frame_size, self.frame_size))

    def _run(self, cmd: List[str], path: Path) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
        except FileNotFoundError:
            raise ExtractionError(f"{cmd[0]} not found in PATH", path)
        except subprocess.TimeoutExpired:
            raise ExtractionError(f"{cmd[0]} timed out after {self.timeout}s", path)

        if result.returncode != 0:
            message = result.stderr.decode('utf-8', errors='replace').strip()
            raise ExtractionError(
                message[:MAX_ERROR_LENGTH] or f"{cmd[0]} exited with status {result.returncode}",
                path,
            )
        return result
