"""Composition pipeline -- from a CompositionConfig to a rendered file.

  probe media -> resolve canvas and clips -> compile layers per clip
  -> assemble timeline -> continuous overlays -> audio mix -> ffmpeg

compile_composition() is pure: given probe results it only builds the
CompiledInvocation, so it doubles as a dry run. compose() adds path
validation, probing and the ffmpeg run.
"""

import logging
import math
from dataclasses import replace
from pathlib import Path

from .assembly import assemble_timeline
from .audio import build_audio_mix
from .common import find_font_file, multiple_of_2
from .graph import FilterGraph, InputList, PadNamer
from .layers import CompileContext, compile_clip
from .manifest import load_manifest, validate_media_paths
from .model import Canvas, Clip, CompositionConfig, Defaults, ResolvedClip, Transition, VideoLayer
from .overlays import collect_continuous_overlays, compile_continuous_overlay, overlay_windows
from .probe import MediaInfo, probe_many
from .render import CompiledInvocation, default_output_args, run_invocation

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
DEFAULT_FPS = 30
FAST_MODE_BASE = 320             # proxy size: 320 * sqrt(aspect ratio)


# ── Canvas ───────────────────────────────────────────────────────


def _first_video_layer(clips: list[Clip]) -> VideoLayer | None:
    for clip in clips:
        for layer in clip.layers:
            if isinstance(layer, VideoLayer):
                return layer
    return None


def resolve_canvas(config: CompositionConfig, media_info: dict[str, MediaInfo]) -> Canvas:
    """Output size and rate.

    Explicit config > first video layer's probed stream > defaults. Both
    dimensions are rounded to even numbers; fast mode shrinks the canvas
    to a small proxy with the same aspect ratio.
    """
    first = _first_video_layer(config.clips)
    info = media_info.get(first.path) if first is not None else None

    width = config.width or (info.width if info else None) or DEFAULT_WIDTH
    height = config.height or (info.height if info else None) or DEFAULT_HEIGHT
    fps = config.fps or (info.fps if info else None) or DEFAULT_FPS

    width = multiple_of_2(width)
    height = multiple_of_2(height)

    if config.fast:
        aspect = width / height
        width = multiple_of_2(round(FAST_MODE_BASE * math.sqrt(aspect)))
        height = multiple_of_2(round(FAST_MODE_BASE * math.sqrt(1 / aspect)))

    logger.info("Output: %dx%d @ %sfps", width, height, fps)
    return Canvas(width=width, height=height, fps=fps)


# ── Clips ────────────────────────────────────────────────────────


def _base_video_layer(clip: Clip) -> VideoLayer | None:
    for layer in clip.layers:
        if isinstance(layer, VideoLayer) and not layer.is_overlay:
            return layer
    return None


def paths_to_probe(config: CompositionConfig) -> list[str]:
    """Media whose metadata compilation needs.

    The first video layer when the canvas is not fully explicit, the base
    video of every clip without an explicit duration, and every base video
    when source audio is kept.
    """
    paths = []
    if not (config.width and config.height and config.fps):
        first = _first_video_layer(config.clips)
        if first is not None:
            paths.append(first.path)
    for clip in config.clips:
        base = _base_video_layer(clip)
        if base is not None and clip.duration is None and base.cut_to is None:
            paths.append(base.path)
        if config.keep_source_audio:
            paths.extend(
                layer.path for layer in clip.layers
                if isinstance(layer, VideoLayer) and not layer.is_overlay
            )
    return list(dict.fromkeys(paths))


def _clip_duration(clip: Clip, defaults: Defaults, media_info: dict[str, MediaInfo]) -> float:
    if clip.duration is not None:
        return clip.duration
    base = _base_video_layer(clip)
    if base is not None:
        if base.cut_to is not None:
            end = base.cut_to
        elif base.path in media_info:
            end = media_info[base.path].duration
        else:
            raise ValueError(f"No duration known for {base.path}; probe it or set the clip duration")
        return end - (base.cut_from or 0)
    return defaults.duration


def resolve_clips(
    clips: list[Clip],
    defaults: Defaults,
    media_info: dict[str, MediaInfo],
) -> list[ResolvedClip]:
    """Fix every clip's duration and outgoing transition.

    A transition longer than either neighbouring clip is clamped to the
    shorter one. The last clip always ends in a cut.

    Raises:
        ValueError: A clip resolves to a non-positive duration.
    """
    resolved = []
    for i, clip in enumerate(clips):
        duration = _clip_duration(clip, defaults, media_info)
        if duration <= 0:
            raise ValueError(f"Clip {i}: duration must be positive, got {duration}")

        if clip.transition is not None:
            transition = replace(clip.transition)
        elif defaults.transition is not None:
            transition = replace(defaults.transition)
        else:
            transition = Transition.cut()
        resolved.append(ResolvedClip(index=i, layers=clip.layers, duration=duration, transition=transition))

    resolved[-1].transition = Transition.cut()
    for clip, next_clip in zip(resolved, resolved[1:]):
        transition = clip.transition
        if transition.is_cut:
            continue
        limit = min(clip.duration, next_clip.duration)
        if transition.duration > limit:
            logger.warning(
                "Clip %d: transition '%s' of %.3fs clamped to %.3fs",
                clip.index, transition.name, transition.duration, limit,
            )
            transition.duration = limit
    return resolved


# ── Compilation ──────────────────────────────────────────────────


def compile_composition(
    config: CompositionConfig,
    media_info: dict[str, MediaInfo] | None = None,
    font_path: str | None = None,
) -> CompiledInvocation:
    """Build the complete ffmpeg invocation for a composition.

    Args:
        config: Composition to compile.
        media_info: Probe results by path. Needed for clips whose duration
            comes from their video, for canvas inference and for keeping
            source audio; may be empty when everything is explicit.
        font_path: drawtext font for text layers without a font_path.
            Defaults to the first font found in common system locations.

    Raises:
        ValueError: No clips, empty output path, or invalid clip timing.
    """
    if not config.clips:
        raise ValueError("At least one clip is required")
    if not config.out_path:
        raise ValueError("Output path is required")
    media_info = media_info or {}

    canvas = resolve_canvas(config, media_info)
    clips = resolve_clips(config.clips, config.defaults, media_info)

    ctx = CompileContext(
        canvas=canvas,
        namer=PadNamer(),
        inputs=InputList(),
        font_path=font_path or find_font_file(),
    )
    graph = FilterGraph()

    # Continuous overlay sources take the lowest input slots.
    overlays = collect_continuous_overlays(clips)
    for overlay in overlays:
        overlay.input = ctx.inputs.add(overlay.layer.path)

    clip_pads = []
    source_audio = []
    for clip in clips:
        output = compile_clip(clip, ctx)
        clip_pads.append(graph.extend(output.fragment))
        source_audio.extend(output.source_audio)

    timeline = assemble_timeline(clip_pads, clips, ctx.namer, canvas.fps)
    graph.add(*timeline.nodes)

    video_pad = timeline.output
    for overlay in overlays:
        windows = overlay_windows(overlay, clips, timeline.clip_starts)
        fragment = compile_continuous_overlay(overlay, windows, video_pad, canvas, ctx.namer)
        video_pad = graph.extend(fragment)

    has_audio = {path: info.has_audio for path, info in media_info.items()}
    mix = build_audio_mix(
        config, clips, timeline.clip_starts, timeline.duration,
        source_audio, has_audio, ctx.inputs, ctx.namer,
    )
    if mix is not None:
        graph.add(*mix.nodes)

    logger.info(
        "Compiled %d clip(s), %d input(s), %.3fs", len(clips), len(ctx.inputs), timeline.duration,
    )
    return CompiledInvocation(
        inputs=list(ctx.inputs),
        filter_complex=graph.serialize(),
        video_pad=video_pad,
        audio_pad=mix.output if mix is not None else None,
        out_path=str(config.out_path),
        fps=canvas.fps,
        output_args=config.custom_output_args or default_output_args(config.fast),
        verbose=config.verbose,
        shortest=config.shortest,
    )


def compose(
    config: CompositionConfig,
    ffmpeg_exe: str | None = None,
    ffprobe: str = "ffprobe",
    max_workers: int = 4,
) -> str:
    """Validate, probe, compile and render a composition.

    Returns:
        The output path.

    Raises:
        ValueError: Invalid configuration.
        FileNotFoundError: Missing local media.
        ProbeError: ffprobe could not read a source.
        RenderError: ffmpeg failed.
    """
    if not config.clips:
        raise ValueError("At least one clip is required")
    if not config.out_path:
        raise ValueError("Output path is required")
    validate_media_paths(config)

    paths = paths_to_probe(config)
    if paths:
        logger.info("Probing %d file(s)...", len(paths))
    media_info = probe_many(paths, ffprobe=ffprobe, max_workers=max_workers)

    invocation = compile_composition(config, media_info)
    run_invocation(invocation, ffmpeg_exe=ffmpeg_exe)
    return invocation.out_path


def compose_manifest(manifest_path: str | Path, **kwargs) -> str:
    """Load a YAML manifest and render it. See compose() for kwargs."""
    config = load_manifest(manifest_path)
    return compose(config, **kwargs)
