"""Media metadata via ffprobe.

imageio-ffmpeg bundles ffmpeg but not ffprobe, so ffprobe is looked up on
PATH unless the caller passes an explicit binary.
"""

import json
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

from .common import is_remote

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 30


class ProbeError(RuntimeError):
    """ffprobe is missing, failed, or returned no usable duration."""


@dataclass
class MediaInfo:
    duration: float
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    has_audio: bool = False


def parse_frame_rate(value: str | None) -> float | None:
    """Parse an ffprobe rate such as '30000/1001' or '25'.

    Returns None for missing, malformed or zero-denominator rates.
    """
    if not value:
        return None
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            if float(den) == 0:
                return None
            rate = float(num) / float(den)
        else:
            rate = float(value)
    except ValueError:
        return None
    return rate if rate > 0 else None


def parse_probe_output(data: dict, path: str = "") -> MediaInfo:
    """Build MediaInfo from ffprobe's JSON output.

    Width, height and fps come from the first video stream; duration from
    the container, falling back to the first stream that reports one.

    Raises:
        ProbeError: No duration anywhere in the output.
    """
    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    has_audio = any(s.get("codec_type") == "audio" for s in streams)

    duration = None
    for source in [data.get("format", {}), *streams]:
        raw = source.get("duration")
        if raw in (None, "N/A"):
            continue
        try:
            duration = float(raw)
        except (TypeError, ValueError):
            continue
        if duration > 0:
            break
    if duration is None or duration <= 0:
        raise ProbeError(f"No duration in ffprobe output for {path}")

    info = MediaInfo(duration=duration, has_audio=has_audio)
    if video is not None:
        if video.get("width") and video.get("height"):
            info.width = int(video["width"])
            info.height = int(video["height"])
        info.fps = parse_frame_rate(video.get("r_frame_rate"))
    return info


def probe(path: str, ffprobe: str = "ffprobe", timeout: float = PROBE_TIMEOUT) -> MediaInfo:
    """Query duration, resolution, frame rate and audio presence of a file.

    Raises:
        FileNotFoundError: Local path does not exist.
        ProbeError: ffprobe missing, failed, or returned unusable output.
    """
    if not is_remote(path) and not Path(path).exists():
        raise FileNotFoundError(f"Media file not found: {path}")

    cmd = [
        ffprobe, "-v", "error",
        "-show_entries", "stream=width,height,r_frame_rate,codec_type",
        "-show_entries", "format=duration",
        "-of", "json",
        str(path),
    ]
    logger.debug("Probing %s", path)
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        raise ProbeError(f"ffprobe not found: '{ffprobe}'")
    except subprocess.TimeoutExpired:
        raise ProbeError(f"ffprobe timed out after {timeout}s on {path}")

    if result.returncode != 0:
        raise ProbeError(f"ffprobe failed on {path}: {result.stderr.strip()}")

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe returned invalid JSON for {path}: {e}")

    info = parse_probe_output(data, path)
    logger.debug(
        "Probed %s: %.3fs %sx%s @ %s fps", path, info.duration,
        info.width, info.height, info.fps,
    )
    return info


def probe_many(
    paths, ffprobe: str = "ffprobe", max_workers: int = 4,
) -> dict[str, MediaInfo]:
    """Probe distinct paths concurrently.

    Returns a dict keyed by path. The first failure propagates.
    """
    unique = list(dict.fromkeys(paths))
    if not unique:
        return {}

    results = {}
    with ThreadPoolExecutor(max_workers=min(max_workers, len(unique))) as pool:
        futures = {pool.submit(probe, p, ffprobe): p for p in unique}
        for future in as_completed(futures):
            results[futures[future]] = future.result()  # propagate exceptions
    return results
