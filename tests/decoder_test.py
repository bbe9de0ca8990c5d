#!/usr/bin/env python3
"""
Tests for the ffmpeg decoder.

subprocess.run is replaced by canned CompletedProcess results, so neither
ffmpeg nor ffprobe needs to be installed.
"""

import json
import subprocess
from pathlib import Path

import numpy as np
import pytest

from videodupfinder.common.errors import ExtractionError
from videodupfinder.video import decoder as decoder_module
from videodupfinder.video.decoder import MAX_ERROR_LENGTH, FfmpegDecoder

VIDEO = Path("/videos/movie.mp4")

PROBE_OK = {
    'streams': [{'codec_type': 'audio'}, {'codec_type': 'video', 'duration': '58.0'}],
    'format': {'duration': '60.5'},
}


def completed(cmd, stdout=b"", stderr=b"", returncode=0):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


def raw_frames(count, size=4, extra=0):
    data = np.arange(count * size * size, dtype=np.uint8).tobytes()
    return data + b"\x07" * extra


def command_kind(cmd):
    if cmd[0] == "ffprobe":
        return 'probe'
    if any("cropdetect" in arg for arg in cmd):
        return 'crop'
    return 'frames'


class FakeRun:
    """Stands in for subprocess.run; answers by kind of command."""

    def __init__(self, **responses):
        self.responses = responses
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        response = self.responses[command_kind(cmd)]
        if callable(response):
            response = response(cmd)
        if isinstance(response, BaseException):
            raise response
        return response

    def commands_of(self, kind):
        return [cmd for cmd in self.commands if command_kind(cmd) == kind]


@pytest.fixture
def fake_run(monkeypatch):
    def _install(**responses):
        runner = FakeRun(**responses)
        monkeypatch.setattr(decoder_module.subprocess, "run", runner)
        return runner
    return _install


@pytest.fixture
def decoder():
    return FfmpegDecoder(frame_size=4, num_frames=10, interval=3.0, timeout=5.0)


def probe_output(data):
    return lambda cmd: completed(cmd, stdout=json.dumps(data).encode())


class TestProbeDuration:

    def test_format_duration_is_preferred(self, fake_run, decoder):
        fake_run(probe=probe_output(PROBE_OK))
        assert decoder.probe_duration(VIDEO) == 60.5

    def test_falls_back_to_stream_duration(self, fake_run, decoder):
        fake_run(probe=probe_output({'streams': PROBE_OK['streams'], 'format': {}}))
        assert decoder.probe_duration(VIDEO) == 58.0

    def test_no_video_stream(self, fake_run, decoder):
        fake_run(probe=probe_output({'streams': [{'codec_type': 'audio'}], 'format': {'duration': '3'}}))
        with pytest.raises(ExtractionError, match="no video stream found"):
            decoder.probe_duration(VIDEO)

    def test_missing_duration(self, fake_run, decoder):
        fake_run(probe=probe_output({'streams': [{'codec_type': 'video'}], 'format': {}}))
        with pytest.raises(ExtractionError, match="could not determine duration"):
            decoder.probe_duration(VIDEO)

    def test_unreadable_output(self, fake_run, decoder):
        fake_run(probe=lambda cmd: completed(cmd, stdout=b"{not json"))
        with pytest.raises(ExtractionError, match="unreadable ffprobe output") as info:
            decoder.probe_duration(VIDEO)
        assert info.value.path == VIDEO


def cropdetect_log(*crops):
    lines = ["Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'movie.mp4':"]
    for crop in crops:
        lines.append(f"[Parsed_cropdetect_0 @ 0x55d0] x1:0 x2:1919 y1:140 y2:939 "
                     f"w:1920 h:800 x:0 y:140 pts:1 t:0.04 crop={crop}")
    return "\n".join(lines).encode()


class TestDetectCrop:

    def test_largest_area_wins(self, fake_run, decoder):
        # 1000x100 has the larger perimeter, 400x400 the larger area
        fake_run(crop=lambda cmd: completed(cmd, stderr=cropdetect_log(
            "300:200:0:0", "1000:100:0:0", "400:400:10:10")))
        assert decoder.detect_crop(VIDEO) == "400:400:10:10"

    def test_malformed_lines_are_ignored(self, fake_run, decoder):
        fake_run(crop=lambda cmd: completed(cmd, stderr=cropdetect_log(
            "garbage", "-16:-16:0:0", "640:360:0:60")))
        assert decoder.detect_crop(VIDEO) == "640:360:0:60"

    def test_no_crop_lines(self, fake_run, decoder):
        fake_run(crop=lambda cmd: completed(cmd, stderr=b"frame=   10 fps=0.0"))
        assert decoder.detect_crop(VIDEO) is None

    def test_failure_means_no_crop(self, fake_run, decoder):
        fake_run(crop=lambda cmd: completed(cmd, stderr=b"Invalid data", returncode=1))
        assert decoder.detect_crop(VIDEO) is None


class TestReadFrames:

    def test_frames_are_reshaped(self, fake_run, decoder):
        fake_run(frames=lambda cmd: completed(cmd, stdout=raw_frames(3)))
        frames = decoder.read_frames(VIDEO, None)

        assert len(frames) == 3
        assert all(f.shape == (4, 4) and f.dtype == np.uint8 for f in frames)
        assert frames[1][0, 0] == 16

    def test_partial_trailing_frame_is_dropped(self, fake_run, decoder):
        fake_run(frames=lambda cmd: completed(cmd, stdout=raw_frames(2, extra=5)))
        assert len(decoder.read_frames(VIDEO, None)) == 2

    def test_no_frames(self, fake_run, decoder):
        fake_run(frames=lambda cmd: completed(cmd, stdout=b"\x00" * 10))
        with pytest.raises(ExtractionError, match="ffmpeg decoded no frames"):
            decoder.read_frames(VIDEO, None)

    def test_crop_is_part_of_the_filter(self, fake_run, decoder):
        runner = fake_run(frames=lambda cmd: completed(cmd, stdout=raw_frames(1)))
        decoder.read_frames(VIDEO, "640:360:0:60")

        vf = runner.commands[0][runner.commands[0].index("-vf") + 1]
        assert vf == "fps=1/3,crop=640:360:0:60,scale=4:4"


class TestDecode:

    def test_sequence(self, fake_run, decoder):
        fake_run(probe=probe_output(PROBE_OK),
                 crop=lambda cmd: completed(cmd, stderr=cropdetect_log("640:360:0:60")),
                 frames=lambda cmd: completed(cmd, stdout=raw_frames(4)))
        sequence = decoder.decode(VIDEO)

        assert len(sequence) == 4
        assert sequence.duration == 60.5
        assert sequence.timestamps == (0.0, 3.0, 6.0, 9.0)
        assert sequence.source == VIDEO

    def test_retries_without_crop(self, fake_run, decoder):
        def frames(cmd):
            if any("crop=" in arg for arg in cmd):
                return completed(cmd, stderr=b"Invalid too big or non positive size", returncode=1)
            return completed(cmd, stdout=raw_frames(5))

        runner = fake_run(probe=probe_output(PROBE_OK),
                          crop=lambda cmd: completed(cmd, stderr=cropdetect_log("640:360:0:60")),
                          frames=frames)

        assert len(decoder.decode(VIDEO)) == 5
        assert len(runner.commands_of('frames')) == 2

    def test_uncropped_failure_is_not_retried(self, fake_run):
        runner = fake_run(probe=probe_output(PROBE_OK),
                          frames=lambda cmd: completed(cmd, stderr=b"moov atom not found", returncode=1))
        decoder = FfmpegDecoder(frame_size=4, cropdetect=False)

        with pytest.raises(ExtractionError, match="moov atom not found"):
            decoder.decode(VIDEO)
        assert len(runner.commands_of('frames')) == 1
        assert runner.commands_of('crop') == []


class TestRun:

    def test_timeout(self, fake_run, decoder):
        fake_run(probe=subprocess.TimeoutExpired("ffprobe", 5.0))
        with pytest.raises(ExtractionError, match="ffprobe timed out after 5.0s"):
            decoder.probe_duration(VIDEO)

    def test_missing_binary(self, fake_run, decoder):
        fake_run(frames=FileNotFoundError("ffmpeg"))
        with pytest.raises(ExtractionError, match="ffmpeg not found in PATH"):
            decoder.read_frames(VIDEO, None)

    def test_error_output_is_truncated(self, fake_run, decoder):
        fake_run(frames=lambda cmd: completed(cmd, stderr=b"x" * 2000, returncode=1))
        with pytest.raises(ExtractionError) as info:
            decoder.read_frames(VIDEO, None)
        assert info.value.reason == "x" * MAX_ERROR_LENGTH

    def test_silent_failure_reports_status(self, fake_run, decoder):
        fake_run(frames=lambda cmd: completed(cmd, returncode=69))
        with pytest.raises(ExtractionError) as info:
            decoder.read_frames(VIDEO, None)
        assert info.value.reason == "ffmpeg exited with status 69"
