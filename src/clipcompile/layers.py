"""Per-layer filter compilation.

Each base layer becomes a Fragment whose output pad carries exactly
`duration` seconds of canvas-sized frames at the canvas rate, timebase
1/fps and yuv420p. xfade and concat refuse inputs that differ in any of
these, so every base chain ends with the same normalisation tail.

Text layers do not get their own pad: drawtext is chained onto whatever
base the clip has built so far.

Pad names:
  vout{n}     video base layer
  imgout{n}   image base layer
  color{n}    fill-color generator
  grad{n}     gradient generator
  stack{n}    base layer stacked over an earlier one
  imgov{n}    per-clip image overlay source, composited into ovout{n}
  title{c}_{i}, sub{c}_{i}   text layer i of clip c
"""

import logging
import math
from dataclasses import dataclass, field

from .common import fmt, to_ffmpeg_color
from .graph import FilterNode, Fragment, InputFile, InputList, PadNamer, escape_drawtext, escape_value, filter_call
from .model import (
    AUDIO_LAYERS,
    Canvas,
    FillColorLayer,
    GradientLayer,
    ImageLayer,
    ResolvedClip,
    SubtitleLayer,
    TitleLayer,
    UnknownLayer,
    VideoLayer,
)
from .overlays import enable_window, overlay_node, overlay_scale

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────

# Ken Burns sources are upscaled into this square before zoompan so the
# per-frame integer crop offsets are far below one output pixel.
KEN_BURNS_UPSCALE = 8000

TITLE_FONT_FRAC = 0.08           # of min(canvas w, h)
SUBTITLE_FONT_FRAC = 0.05
SUBTITLE_BOX_FRAC = 0.4          # box border, fraction of font size
BLUR_SIGMA = 20

RETIME_TOLERANCE = 1e-3          # seconds


@dataclass
class CompileContext:
    """State shared by every layer compiler within one compilation."""

    canvas: Canvas
    namer: PadNamer
    inputs: InputList
    font_path: str | None = None

    @property
    def size(self) -> str:
        return f"{self.canvas.width}x{self.canvas.height}"

    @property
    def timebase(self) -> str:
        return f"settb=1/{fmt(self.canvas.fps)}"


@dataclass
class SourceAudio:
    """Audio stream of a base video layer, usable by the mixer."""

    input: InputFile
    layer: VideoLayer
    clip_index: int
    tempo: float = 1.0


@dataclass
class ClipOutput:
    fragment: Fragment
    source_audio: list[SourceAudio] = field(default_factory=list)


# ── Scaling ──────────────────────────────────────────────────────


def _crop_offsets(crop_position: str) -> tuple[str, str]:
    parts = crop_position.split("-")
    x = "0" if "left" in parts else "iw-ow" if "right" in parts else "(iw-ow)/2"
    y = "0" if "top" in parts else "ih-oh" if "bottom" in parts else "(ih-oh)/2"
    return x, y


def fit_filters(resize_mode: str, canvas: Canvas, crop_position: str = "center") -> list[str]:
    """Filters that make a source fill the canvas.

    contain: fit inside, pad with black. cover: fill, crop the excess at
    crop_position. stretch: exact size, aspect ignored. contain-blur needs
    several nodes and is handled by fit_nodes().
    """
    w, h = canvas.width, canvas.height
    if resize_mode == "cover":
        x, y = _crop_offsets(crop_position)
        return [
            filter_call("scale", w, h, force_original_aspect_ratio="increase"),
            filter_call("crop", w, h, x, y),
        ]
    if resize_mode == "stretch":
        return [filter_call("scale", w, h)]
    return [
        filter_call("scale", w, h, force_original_aspect_ratio="decrease"),
        filter_call("pad", w, h, "(ow-iw)/2", "(oh-ih)/2"),
    ]


def fit_nodes(
    source: str,
    pre: list[str],
    layer: VideoLayer | ImageLayer,
    post: list[str],
    output: str,
    ctx: CompileContext,
) -> list[FilterNode]:
    """Chain pre + fit + post from *source* to *output*."""
    if layer.resize_mode != "contain-blur":
        fit = fit_filters(layer.resize_mode, ctx.canvas, layer.crop_position)
        return [FilterNode([source], pre + fit + post, [output])]

    # Blurred cover-scaled copy behind a contain-scaled foreground.
    w, h = ctx.canvas.width, ctx.canvas.height
    bg, fg = ctx.namer.next("blurbg"), ctx.namer.next("blurfg")
    blurred, fitted = ctx.namer.next("blurred"), ctx.namer.next("fitted")
    return [
        FilterNode([source], pre + [filter_call("split", 2)], [bg, fg]),
        FilterNode([bg], [
            filter_call("scale", w, h, force_original_aspect_ratio="increase"),
            filter_call("crop", w, h),
            filter_call("gblur", sigma=BLUR_SIGMA),
        ], [blurred]),
        FilterNode([fg], [
            filter_call("scale", w, h, force_original_aspect_ratio="decrease"),
        ], [fitted]),
        FilterNode([blurred, fitted], ["overlay=(W-w)/2:(H-h)/2"] + post, [output]),
    ]


def _normalise_tail(ctx: CompileContext, duration: float) -> list[str]:
    return [
        filter_call("trim", duration=duration),
        ctx.timebase,
        "format=yuv420p",
    ]


# ── Video ────────────────────────────────────────────────────────


def retime_factor(layer: VideoLayer, duration: float) -> float:
    """PTS multiplier that stretches the cut segment to *duration*.

    Only an explicit cut_to bounds the segment; without it the source
    plays at normal speed and is trimmed or frozen instead.

    Raises:
        ValueError: cut_to is not after cut_from.
    """
    if layer.cut_to is None:
        return 1.0
    segment = layer.cut_to - (layer.cut_from or 0)
    if segment <= 0:
        raise ValueError(
            f"cut_to ({layer.cut_to}) must be greater than cut_from ({layer.cut_from or 0}) "
            f"for {layer.path}"
        )
    if abs(segment - duration) < RETIME_TOLERANCE:
        return 1.0
    return duration / segment


def compile_video(layer: VideoLayer, ctx: CompileContext, duration: float) -> Fragment:
    source = ctx.inputs.add(layer.path)
    output = ctx.namer.next("vout")

    pre = []
    if layer.cut_from or layer.cut_to is not None:
        pre.append(filter_call("trim", start=layer.cut_from or None, end=layer.cut_to))
    factor = retime_factor(layer, duration)
    if factor == 1.0:
        pre.append("setpts=PTS-STARTPTS")
    else:
        pre.append(f"setpts={fmt(factor)}*(PTS-STARTPTS)")

    post = [
        "setsar=1",
        filter_call("fps", ctx.canvas.fps),
        # Short sources hold their last frame until the clip ends.
        "tpad=stop_mode=clone:stop=-1",
    ] + _normalise_tail(ctx, duration)

    nodes = fit_nodes(source.video, pre, layer, post, output, ctx)
    return Fragment(nodes=nodes, output=output, inputs=[source])


# ── Image ────────────────────────────────────────────────────────


def ken_burns_filters(layer: ImageLayer, ctx: CompileContext, duration: float) -> list[str]:
    """Upscale + zoompan for an image already fitted to the canvas."""
    frames = math.ceil(round(duration * ctx.canvas.fps, 9))
    amount = fmt(layer.zoom_amount)
    full = fmt(1 + layer.zoom_amount)
    center_x = "'trunc((iw-iw/zoom)/2)'"
    center_y = "'trunc((ih-ih/zoom)/2)'"

    direction = layer.zoom_direction
    if direction == "in":
        zoom, x = f"'1+{amount}*on/{frames}'", center_x
    elif direction == "out":
        zoom, x = f"'{full}-{amount}*on/{frames}'", center_x
    elif direction == "left":
        zoom, x = f"'{full}'", f"'trunc((iw-iw/zoom)*(1-on/{frames}))'"
    else:  # right
        zoom, x = f"'{full}'", f"'trunc((iw-iw/zoom)*on/{frames})'"

    return [
        filter_call(
            "scale", KEN_BURNS_UPSCALE, KEN_BURNS_UPSCALE,
            force_original_aspect_ratio="decrease",
        ),
        filter_call(
            "zoompan", z=zoom, x=x, y=center_y, d=frames, s=ctx.size, fps=ctx.canvas.fps,
        ),
    ]


def compile_image(layer: ImageLayer, ctx: CompileContext, duration: float) -> Fragment:
    source = ctx.inputs.add(layer.path)
    output = ctx.namer.next("imgout")

    if layer.zoom_direction:
        post = ["setsar=1", *ken_burns_filters(layer, ctx, duration), "setsar=1"]
    else:
        post = [
            "setsar=1",
            "loop=loop=-1:size=1:start=0",
            filter_call("fps", ctx.canvas.fps),
        ]
    post += _normalise_tail(ctx, duration)

    nodes = fit_nodes(source.video, [], layer, post, output, ctx)
    return Fragment(nodes=nodes, output=output, inputs=[source])


# ── Generators ───────────────────────────────────────────────────


def compile_fill_color(layer: FillColorLayer, ctx: CompileContext, duration: float) -> Fragment:
    output = ctx.namer.next("color")
    color = to_ffmpeg_color(layer.color)
    node = FilterNode([], [
        filter_call("color", c=color, s=ctx.size, d=duration, r=ctx.canvas.fps),
        "setsar=1",
        ctx.timebase,
        "format=yuv420p",
    ], [output])
    return Fragment(nodes=[node], output=output)


def compile_gradient(layer: GradientLayer, ctx: CompileContext, duration: float) -> Fragment:
    output = ctx.namer.next("grad")
    c0, c1 = (to_ffmpeg_color(c) for c in layer.colors)
    node = FilterNode([], [
        filter_call(
            "gradients", s=ctx.size, c0=c0, c1=c1,
            type="radial" if layer.mode == "radial" else None,
            d=duration, r=ctx.canvas.fps,
        ),
        "setsar=1",
        ctx.timebase,
        "format=yuv420p",
    ], [output])
    return Fragment(nodes=[node], output=output)


BASE_LAYER_COMPILERS = {
    VideoLayer: compile_video,
    ImageLayer: compile_image,
    FillColorLayer: compile_fill_color,
    GradientLayer: compile_gradient,
}


# ── Text ─────────────────────────────────────────────────────────


def title_position(position: str) -> tuple[str, str]:
    """drawtext x/y for a position keyword, relative to the text box."""
    x, y = "(w-text_w)/2", "(h-text_h)/2"
    if "left" in position:
        x = "w*0.1"
    if "right" in position:
        x = "w*0.9-text_w"
    if "top" in position:
        y = "h*0.1"
    if "bottom" in position:
        y = "h*0.9-text_h"
    return x, y


def drawtext_filter(
    layer: TitleLayer | SubtitleLayer,
    ctx: CompileContext,
    duration: float,
) -> str:
    short_side = min(ctx.canvas.width, ctx.canvas.height)
    font_path = layer.font_path or ctx.font_path
    options = {
        "text": escape_drawtext(layer.text),
        "fontfile": escape_value(font_path) if font_path else None,
    }

    if isinstance(layer, SubtitleLayer):
        font_size = layer.font_size or round(short_side * SUBTITLE_FONT_FRAC)
        options.update(
            fontsize=font_size,
            fontcolor=to_ffmpeg_color(layer.text_color),
            x="(w-text_w)/2",
            y="h*0.9-text_h",
            box=1,
            boxcolor=to_ffmpeg_color(layer.background_color),
            boxborderw=max(1, round(font_size * SUBTITLE_BOX_FRAC)),
        )
    else:
        x, y = title_position(layer.position)
        options.update(
            fontsize=layer.font_size or round(short_side * TITLE_FONT_FRAC),
            fontcolor=to_ffmpeg_color(layer.text_color),
            x=x,
            y=y,
        )

    if layer.start is not None or layer.stop is not None:
        options["enable"] = enable_window(layer.start or 0, layer.stop if layer.stop is not None else duration)
    return filter_call("drawtext", **options)


# ── Per-clip overlays ────────────────────────────────────────────


def compile_image_overlay(
    layer: ImageLayer,
    base: str,
    ctx: CompileContext,
    duration: float,
) -> Fragment:
    """Composite a still image at the layer's placement for its window."""
    source = ctx.inputs.add(layer.path)
    start = layer.start or 0
    stop = layer.stop if layer.stop is not None else duration
    length = max(stop - start, 0)

    chain = []
    scale = overlay_scale(layer, ctx.canvas)
    if scale:
        chain.append(scale)
    chain += [
        "setsar=1",
        "loop=loop=-1:size=1:start=0",
        filter_call("fps", ctx.canvas.fps),
        filter_call("trim", duration=length),
        ctx.timebase,
    ]
    if start > 0:
        chain.append(f"setpts=PTS+{fmt(start)}/TB")

    prepared = ctx.namer.next("imgov")
    output = ctx.namer.next("ovout")
    nodes = [
        FilterNode([source.video], chain, [prepared]),
        overlay_node(base, prepared, layer, ctx.canvas, output, (start, stop)),
    ]
    return Fragment(nodes=nodes, output=output, inputs=[source])


# ── Clip ─────────────────────────────────────────────────────────


def compile_clip(clip: ResolvedClip, ctx: CompileContext) -> ClipOutput:
    """Stack a clip's layers into one pad of exactly clip.duration seconds.

    Base layers stack in order, later over earlier. Video overlays are
    left to the continuous overlay pass and audio layers to the mixer.
    Text or an image overlay before any base layer, or a clip with no
    visual layer at all, gets a black canvas underneath.
    """
    duration = clip.duration
    nodes: list[FilterNode] = []
    inputs: list[InputFile] = []
    source_audio: list[SourceAudio] = []
    current: str | None = None

    def _black() -> str:
        fragment = compile_fill_color(FillColorLayer(color="#000000"), ctx, duration)
        nodes.extend(fragment.nodes)
        return fragment.output

    for i, layer in enumerate(clip.layers):
        if isinstance(layer, UnknownLayer):
            logger.debug("Clip %d: skipping unknown layer type '%s'", clip.index, layer.type)
            continue
        if isinstance(layer, AUDIO_LAYERS):
            continue
        if isinstance(layer, VideoLayer) and layer.is_overlay:
            continue

        if isinstance(layer, (TitleLayer, SubtitleLayer)):
            if current is None:
                current = _black()
            prefix = "sub" if isinstance(layer, SubtitleLayer) else "title"
            output = ctx.namer.fixed(f"{prefix}{clip.index}_{i}")
            nodes.append(FilterNode([current], [drawtext_filter(layer, ctx, duration)], [output]))
            current = output
            continue

        if isinstance(layer, ImageLayer) and layer.is_overlay:
            if current is None:
                current = _black()
            fragment = compile_image_overlay(layer, current, ctx, duration)
            nodes.extend(fragment.nodes)
            inputs.extend(fragment.inputs)
            current = fragment.output
            continue

        compiler = BASE_LAYER_COMPILERS.get(type(layer))
        if compiler is None:
            logger.debug("Clip %d: skipping unknown layer type '%s'", clip.index, type(layer).__name__)
            continue
        fragment = compiler(layer, ctx, duration)
        nodes.extend(fragment.nodes)
        inputs.extend(fragment.inputs)
        if isinstance(layer, VideoLayer):
            source_audio.append(SourceAudio(
                input=fragment.inputs[0],
                layer=layer,
                clip_index=clip.index,
                tempo=1 / retime_factor(layer, duration),
            ))

        if current is None:
            current = fragment.output
        else:
            stacked = ctx.namer.next("stack")
            nodes.append(FilterNode([current, fragment.output], ["overlay=0:0"], [stacked]))
            current = stacked

    if current is None:
        current = _black()

    return ClipOutput(
        fragment=Fragment(nodes=nodes, output=current, inputs=inputs),
        source_audio=source_audio,
    )