"""Shared test fixtures for clipcompile tests."""

import subprocess

import pytest
import imageio_ffmpeg
from PIL import Image

from clipcompile.graph import InputList, PadNamer
from clipcompile.layers import CompileContext
from clipcompile.model import Canvas

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


@pytest.fixture
def source_video(tmp_path):
    """Create a 5-second test video (320x240, 10fps) with audio using ffmpeg."""
    out = tmp_path / "source.mp4"
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", "color=c=blue:s=320x240:d=5:r=10",
            "-f", "lavfi", "-i", "anullsrc=r=44100:cl=mono",
            "-shortest",
            "-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "32k",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out


@pytest.fixture
def overlay_video(tmp_path):
    """Create a 6-second silent test video (160x120, 10fps), green."""
    out = tmp_path / "overlay.mp4"
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", "color=c=green:s=160x120:d=6:r=10",
            "-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out


@pytest.fixture
def tone_audio(tmp_path):
    """Create a 3-second 440 Hz sine wave as WAV."""
    out = tmp_path / "tone.wav"
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", "sine=frequency=440:duration=3",
            "-c:a", "pcm_s16le",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out


@pytest.fixture
def still_image(tmp_path):
    """Create a 64x48 solid orange PNG."""
    out = tmp_path / "still.png"
    Image.new("RGB", (64, 48), (255, 128, 0)).save(out)
    return out


@pytest.fixture
def ctx():
    """Compile context for a 640x480 @ 30fps canvas, no default font."""
    return CompileContext(
        canvas=Canvas(width=640, height=480, fps=30),
        namer=PadNamer(),
        inputs=InputList(),
    )


@pytest.fixture(scope="session")
def ffmpeg_filters():
    """Names of the filters compiled into the bundled ffmpeg binary."""
    result = subprocess.run(
        [_FFMPEG, "-hide_banner", "-filters"],
        capture_output=True, text=True, check=True,
    )
    names = set()
    for line in result.stdout.splitlines():
        parts = line.split()
        # Filter rows read " TSC name  V->V  description"; the legend rows have no arrow.
        if len(parts) >= 3 and "->" in parts[2]:
            names.add(parts[1])
    return names
