"""Overlay placement and continuous overlays.

Overlays are layers with a size or position. Their geometry is expressed
with overlay-filter variables (overlay_w, overlay_h) so the rendered size
of the overlay, not its requested box, decides the final offset.

Two placement systems:
  - position keyword: a 3x3 grid (top-left through bottom-right) with a
    margin of OVERLAY_MARGIN_FRAC of the canvas from each edge.
  - left/top: fractional or pixel anchor, with origin_x / origin_y
    naming which point of the overlay sits on the anchor.

Video overlays are continuous: every clip that shows the same source is
merged into windows on the assembled timeline and composited once per
window, after transitions have been applied.
"""

from dataclasses import dataclass, field

from .common import fmt, parse_size
from .graph import FilterNode, Fragment, InputFile, PadNamer, filter_call
from .model import Canvas, Placement, ResolvedClip, VideoLayer


# ── Constants ────────────────────────────────────────────────────

OVERLAY_MARGIN_FRAC = 0.03       # margin from edges as fraction of canvas dimension

# position keyword -> (vertical, horizontal)
GRID_POSITIONS = {
    "top-left": ("top", "left"),
    "top": ("top", "center"),
    "top-right": ("top", "right"),
    "center-left": ("center", "left"),
    "center": ("center", "center"),
    "center-right": ("center", "right"),
    "bottom-left": ("bottom", "left"),
    "bottom": ("bottom", "center"),
    "bottom-right": ("bottom", "right"),
}


# ── Position computation ─────────────────────────────────────────


def grid_position(position: str, canvas: Canvas) -> tuple[str, str]:
    """Overlay x/y expressions for a 3x3 grid keyword.

    Args:
        position: One of GRID_POSITIONS.
        canvas: Output canvas.

    Returns:
        (x, y) expressions for the overlay filter.
    """
    vert, horiz = GRID_POSITIONS[position]
    margin_x = int(canvas.width * OVERLAY_MARGIN_FRAC)
    margin_y = int(canvas.height * OVERLAY_MARGIN_FRAC)

    # Horizontal position.
    if horiz == "left":
        x = str(margin_x)
    elif horiz == "right":
        x = f"main_w-overlay_w-{margin_x}"
    else:  # center
        x = "trunc((main_w-overlay_w)/2)"

    # Vertical position.
    if vert == "top":
        y = str(margin_y)
    elif vert == "bottom":
        y = f"main_h-overlay_h-{margin_y}"
    else:  # center
        y = "trunc((main_h-overlay_h)/2)"

    return x, y


def _anchored(anchor: int, origin: str, size_var: str) -> str:
    if origin == "center":
        return f"trunc({anchor}-{size_var}/2)"
    if origin in ("right", "bottom"):
        return f"{anchor}-{size_var}"
    return str(anchor)


def overlay_position(placement: Placement, canvas: Canvas) -> tuple[str, str]:
    """Overlay x/y expressions for a layer's placement.

    A position keyword wins over left/top. Missing left/top default to 0.
    """
    if placement.position is not None:
        return grid_position(placement.position, canvas)

    left = parse_size(placement.left, canvas.width) if placement.left is not None else 0
    top = parse_size(placement.top, canvas.height) if placement.top is not None else 0
    return (
        _anchored(left, placement.origin_x, "overlay_w"),
        _anchored(top, placement.origin_y, "overlay_h"),
    )


def overlay_scale(placement: Placement, canvas: Canvas) -> str | None:
    """Scale filter for an overlay, or None to keep the source size.

    Both dimensions fit the source inside the box without padding; a
    single dimension scales the other one proportionally.
    """
    w = parse_size(placement.width, canvas.width) if placement.width is not None else None
    h = parse_size(placement.height, canvas.height) if placement.height is not None else None
    if w and h:
        return filter_call("scale", w, h, force_original_aspect_ratio="decrease")
    if w:
        return filter_call("scale", w, -2)
    if h:
        return filter_call("scale", -2, h)
    return None


def enable_window(start: float, end: float) -> str:
    return f"'between(t,{fmt(start)},{fmt(end)})'"


def overlay_node(
    base: str,
    overlay: str,
    placement: Placement,
    canvas: Canvas,
    output: str,
    window: tuple[float, float] | None = None,
) -> FilterNode:
    """Composite *overlay* onto *base* at the layer's placement."""
    x, y = overlay_position(placement, canvas)
    enable = enable_window(*window) if window is not None else None
    return FilterNode(
        [base, overlay],
        [filter_call("overlay", x=x, y=y, eof_action="pass", enable=enable)],
        [output],
    )


# ── Continuous overlays ──────────────────────────────────────────


@dataclass
class ContinuousOverlay:
    """One overlay source and the clip runs it appears in.

    runs holds (first_clip, last_clip) index pairs of consecutive clips.
    """

    layer: VideoLayer
    runs: list[tuple[int, int]] = field(default_factory=list)
    input: InputFile | None = None


def collect_continuous_overlays(clips: list[ResolvedClip]) -> list[ContinuousOverlay]:
    """Group video overlay layers by source path, in order of first use.

    The first layer seen for a path decides geometry for every run.
    """
    by_path: dict[str, ContinuousOverlay] = {}
    for clip in clips:
        seen_here = set()
        for layer in clip.layers:
            if not isinstance(layer, VideoLayer) or not layer.is_overlay:
                continue
            if layer.path in seen_here:
                continue
            seen_here.add(layer.path)
            overlay = by_path.setdefault(layer.path, ContinuousOverlay(layer=layer))
            if overlay.runs and overlay.runs[-1][1] == clip.index - 1:
                overlay.runs[-1] = (overlay.runs[-1][0], clip.index)
            else:
                overlay.runs.append((clip.index, clip.index))
    return list(by_path.values())


def overlay_windows(
    overlay: ContinuousOverlay,
    clips: list[ResolvedClip],
    clip_starts: list[float],
) -> list[tuple[float, float]]:
    """(start, end) of each run on the merged timeline.

    A run starts where its first clip starts after transitions and ends
    where its last clip ends, so a 2s and a 3s clip joined by a 0.5s
    cross-fade give one window of 4.5s. Windows never overlap: when fades
    around a short gap clip pull the next run in before the previous one
    ends, the next window starts where the previous one stopped.
    """
    windows = []
    for first, last in overlay.runs:
        start = clip_starts[first]
        if windows:
            start = max(start, windows[-1][1])
        end = clip_starts[last] + clips[last].duration
        windows.append((start, end))
    return windows


def compile_continuous_overlay(
    overlay: ContinuousOverlay,
    windows: list[tuple[float, float]],
    base: str,
    canvas: Canvas,
    namer: PadNamer,
) -> Fragment:
    """Trim, scale and composite one overlay source onto the merged base.

    The source plays on across windows: the second window picks up where
    the first one stopped. Sources shorter than a window freeze on their
    last frame. Returns a fragment whose output is the new base pad.
    """
    layer = overlay.layer
    rate = canvas.fps
    nodes = []

    source_pads = [overlay.input.video]
    if len(windows) > 1:
        source_pads = [namer.next("ovsrc") for _ in windows]
        nodes.append(FilterNode(
            [overlay.input.video], [filter_call("split", len(windows))], source_pads,
        ))

    scale = overlay_scale(layer, canvas)
    source_offset = layer.cut_from or 0
    current = base
    for source_pad, (start, end) in zip(source_pads, windows):
        length = end - start
        trimmed = namer.next("ovfinal")
        chain = [
            filter_call("trim", start=source_offset, duration=length),
            "setpts=PTS-STARTPTS",
        ]
        if scale:
            chain.append(scale)
        chain += [
            "setsar=1",
            filter_call("fps", rate),
            "tpad=stop_mode=clone:stop=-1",
            filter_call("trim", duration=length),
            f"settb=1/{fmt(rate)}",
        ]
        if start > 0:
            chain.append(f"setpts=PTS+{fmt(start)}/TB")
        nodes.append(FilterNode([source_pad], chain, [trimmed]))

        composited = namer.next("vwithov")
        nodes.append(overlay_node(current, trimmed, layer, canvas, composited, (start, end)))
        current = composited
        source_offset += length

    return Fragment(nodes=nodes, output=current, inputs=[overlay.input])
