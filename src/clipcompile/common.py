"""clipcompile.common -- shared utilities for graph compilation.

Contains: color conversion, path variable resolution, font lookup,
size parsing, and number formatting for filter arguments.
"""

import math
import re
from pathlib import Path

from PIL import ImageColor


# ── Font paths ─────────────────────────────────────────────────────
# Used as drawtext fontfile when a text layer names no font_path.

FONT_PATHS = [
    Path.home() / ".local/share/fonts/Inter.ttc",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
    Path("/usr/share/fonts/dejavu/DejaVuSans.ttf"),
    Path("/Library/Fonts/Arial.ttf"),
    Path("/System/Library/Fonts/Helvetica.ttc"),
]


# ── Color utilities ────────────────────────────────────────────────

def to_ffmpeg_color(value: str) -> str:
    """Convert a CSS-style color to an ffmpeg color literal.

    '#ff0000', 'ff0000', 'red' and '#f00' all become '0xff0000'. An alpha
    component ('#ff000080') is kept as '0xff000080'. Values already in
    ffmpeg syntax ('0x...', 'black@0.5') are returned unchanged.

    Raises:
        ValueError: If the color cannot be parsed.
    """
    value = value.strip()
    if value.lower().startswith("0x") or "@" in value:
        return value
    if len(value) == 6 and all(c in "0123456789abcdefABCDEF" for c in value):
        value = "#" + value
    try:
        rgb = ImageColor.getrgb(value)
    except ValueError:
        raise ValueError(f"Unknown color: '{value}'")
    return "0x" + "".join(f"{c:02x}" for c in rgb)


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return str(paths[key])
    return re.sub(r"\$\{(\w+)\}", _replace, text)


def is_remote(path: str) -> bool:
    """True for URLs (http://, https://, s3://, ...) rather than local files."""
    return re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", path) is not None


# ── Font lookup ────────────────────────────────────────────────────

def find_font_file() -> str | None:
    """Return the first existing font in FONT_PATHS, or None.

    drawtext falls back to fontconfig when no fontfile is given, which is
    not available in every ffmpeg build.
    """
    for font_path in FONT_PATHS:
        if font_path.exists():
            return str(font_path)
    return None


# ── Geometry ───────────────────────────────────────────────────────

def multiple_of_2(value: float) -> int:
    """Round to the nearest even integer (halves round up), minimum 2.

    H.264 and most other codecs reject odd frame dimensions.
    """
    return max(2, int(math.floor(value / 2 + 0.5)) * 2)


def parse_size(value, total: int) -> int:
    """Resolve a size value against a canvas dimension, in pixels.

    Accepted forms:
      - number: fraction of the canvas dimension (0.3 -> 30%).
      - "30%": percentage of the canvas dimension.
      - "120px": absolute pixels.

    Raises:
        ValueError: Unparsable or non-positive value.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size value: {value!r}")
    if isinstance(value, (int, float)):
        pixels = value * total
    elif isinstance(value, str) and value.endswith("%"):
        pixels = float(value[:-1]) / 100 * total
    elif isinstance(value, str) and value.endswith("px"):
        pixels = float(value[:-2])
    else:
        raise ValueError(f"Invalid size value: {value!r}")
    if pixels < 0:
        raise ValueError(f"Size must be >= 0, got {value!r}")
    return int(round(pixels))


# ── Number formatting ──────────────────────────────────────────────

def fmt(value: float) -> str:
    """Format a number for filter arguments: 2.0 -> '2', 0.25 -> '0.25'.

    Six decimal places at most, trailing zeros dropped, so the same
    inputs always produce the same graph text.
    """
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text
