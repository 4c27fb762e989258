"""Manifest loader for compositions.

Parses YAML manifests, resolves ${path} variables, applies layer defaults,
validates layer types, required fields and enum values, and builds a
CompositionConfig.

Layer types:
  video, image, image-overlay, fill-color (alias: pause),
  linear-gradient, radial-gradient, title, subtitle, audio, detached-audio.

Any other layer type loads as an UnknownLayer and is skipped at compile
time, so manifests written for newer versions still render.
"""

from dataclasses import fields, replace
from pathlib import Path

import yaml

from .common import is_remote, parse_size, resolve_path_vars, to_ffmpeg_color
from .model import (
    VALID_CROP_POSITIONS,
    VALID_CURVES,
    VALID_ORIGINS_X,
    VALID_ORIGINS_Y,
    VALID_POSITIONS,
    VALID_RESIZE_MODES,
    VALID_ZOOM_DIRECTIONS,
    AudioLayer,
    AudioNorm,
    AudioTrack,
    Clip,
    CompositionConfig,
    Defaults,
    DetachedAudioLayer,
    FillColorLayer,
    GradientLayer,
    ImageLayer,
    SubtitleLayer,
    TitleLayer,
    Transition,
    UnknownLayer,
    VideoLayer,
)


# ── Layer types and their required fields ─────────────────────────

LAYER_TYPES = {
    "video": VideoLayer,
    "image": ImageLayer,
    "image-overlay": ImageLayer,
    "fill-color": FillColorLayer,
    "pause": FillColorLayer,
    "linear-gradient": GradientLayer,
    "radial-gradient": GradientLayer,
    "title": TitleLayer,
    "subtitle": SubtitleLayer,
    "audio": AudioLayer,
    "detached-audio": DetachedAudioLayer,
}

REQUIRED_FIELDS = {
    VideoLayer: ("path",),
    ImageLayer: ("path",),
    AudioLayer: ("path",),
    DetachedAudioLayer: ("path",),
    TitleLayer: ("text",),
    SubtitleLayer: ("text",),
}

ENUM_FIELDS = {
    "resize_mode": VALID_RESIZE_MODES,
    "crop_position": VALID_CROP_POSITIONS,
    "origin_x": VALID_ORIGINS_X,
    "origin_y": VALID_ORIGINS_Y,
    "position": VALID_POSITIONS,
}

SIZE_FIELDS = {"width", "height", "left", "top"}

TRANSITION_ALIASES = {"crossfade": "fade", "fade_to_black": "fadeblack"}


# ── Manifest loading ──────────────────────────────────────────────


def load_manifest(manifest_path: str | Path) -> CompositionConfig:
    """Load and validate a composition manifest.

    Processing pipeline:
      1. Parse YAML.
      2. Resolve ${path} variables in every string value.
      3. Read video, output, defaults and audio blocks.
      4. Build each clip's layers, merging defaults.layer and
         defaults.layer_type under the layer's own fields.

    Args:
        manifest_path: Path to the YAML manifest file.

    Returns:
        CompositionConfig ready for compilation.

    Raises:
        ValueError: Missing field, bad enum value, unknown path variable.
        FileNotFoundError: Missing manifest file.
    """
    with open(manifest_path) as f:
        raw = yaml.safe_load(f) or {}

    paths = raw.pop("paths", {}) or {}
    raw = _resolve_paths(raw, paths)

    video = raw.get("video") or {}
    output = raw.get("output") or {}
    if not output.get("path"):
        raise ValueError("output: missing required field 'path'")

    defaults = _parse_defaults(raw.get("defaults") or {})

    clips = []
    for i, clip in enumerate(raw.get("clips") or []):
        clips.append(_parse_clip(clip, i, defaults))
    if not clips:
        raise ValueError("Manifest has no clips")

    config = CompositionConfig(
        out_path=str(output["path"]),
        clips=clips,
        width=video.get("width"),
        height=video.get("height"),
        fps=video.get("fps"),
        fast=bool(video.get("fast", False)),
        defaults=defaults,
        custom_output_args=[str(a) for a in output["args"]] if output.get("args") else None,
        shortest=bool(output.get("shortest", False)),
        verbose=bool(output.get("verbose", False)),
    )
    _parse_audio(raw.get("audio") or {}, config)
    return config


def _resolve_paths(obj, paths: dict):
    """Recursively resolve ${var} in all string values."""
    if isinstance(obj, str):
        return resolve_path_vars(obj, paths)
    elif isinstance(obj, dict):
        return {k: _resolve_paths(v, paths) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_paths(item, paths) for item in obj]
    return obj


def _positive(value, prefix: str, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{prefix}: {name} must be a positive number, got {value!r}")
    return value


# ── Defaults and transitions ──────────────────────────────────────


def _parse_transition(raw, prefix: str, base: Transition | None = None) -> Transition:
    """Build a Transition; None (YAML null) is a hard cut.

    Fields missing from *raw* are taken from *base* (the default
    transition) when given.
    """
    if raw is None:
        return Transition.cut()
    if not isinstance(raw, dict):
        raise ValueError(f"{prefix}: 'transition' must be a mapping or null")

    transition = replace(base) if base is not None else Transition()
    name = raw.get("name", transition.name)
    transition.name = TRANSITION_ALIASES.get(name, name)
    duration = raw.get("duration", transition.duration)
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
        raise ValueError(f"{prefix}: transition duration must be >= 0, got {duration!r}")
    transition.duration = duration

    for key in ("audio_in_curve", "audio_out_curve"):
        curve = raw.get(key)
        if curve is None:
            continue
        if curve not in VALID_CURVES:
            raise ValueError(
                f"{prefix}: invalid {key} '{curve}'. Valid: {sorted(VALID_CURVES)}"
            )
        setattr(transition, key, curve)
    return transition


def _parse_defaults(raw: dict) -> Defaults:
    defaults = Defaults()
    if "duration" in raw:
        defaults.duration = _positive(raw["duration"], "defaults", "duration")
    if "transition" in raw:
        if raw["transition"] is None:
            defaults.transition = None
        else:
            defaults.transition = _parse_transition(raw["transition"], "defaults")
    defaults.layer = raw.get("layer") or {}
    layer_type = raw.get("layer_type") or {}
    for type_name in layer_type:
        if type_name not in LAYER_TYPES:
            raise ValueError(
                f"defaults: unknown layer_type '{type_name}'. Valid: {sorted(LAYER_TYPES)}"
            )
    defaults.layer_type = layer_type
    return defaults


# ── Clips and layers ──────────────────────────────────────────────


def _parse_clip(raw: dict, index: int, defaults: Defaults) -> Clip:
    prefix = f"Clip {index}"
    if not isinstance(raw, dict):
        raise ValueError(f"{prefix}: must be a mapping")

    layers_raw = raw.get("layers")
    if not isinstance(layers_raw, list):
        raise ValueError(f"{prefix}: missing required field 'layers'")

    duration = raw.get("duration")
    if duration is not None:
        duration = _positive(duration, prefix, "duration")

    # Absent key inherits the default; explicit null is a hard cut.
    transition = None
    if "transition" in raw:
        transition = _parse_transition(raw["transition"], prefix, defaults.transition)

    layers = [
        _parse_layer(layer, f"{prefix}, layer {j}", defaults)
        for j, layer in enumerate(layers_raw)
    ]
    return Clip(layers=layers, duration=duration, transition=transition)


def _parse_layer(raw: dict, prefix: str, defaults: Defaults):
    """Build a layer dataclass from its manifest dict.

    Precedence, lowest first: dataclass defaults, defaults.layer (only
    fields this layer type has), defaults.layer_type[type], the layer.
    """
    if not isinstance(raw, dict) or "type" not in raw:
        raise ValueError(f"{prefix}: missing required field 'type'")

    layer_type = raw["type"]
    cls = LAYER_TYPES.get(layer_type)
    if cls is None:
        params = {k: v for k, v in raw.items() if k != "type"}
        return UnknownLayer(type=str(layer_type), params=params)

    prefix = f"{prefix} ({layer_type})"
    names = {f.name for f in fields(cls)}

    params = {k: v for k, v in defaults.layer.items() if k in names}
    params.update(defaults.layer_type.get(layer_type) or {})
    params.update({k: v for k, v in raw.items() if k != "type"})

    unknown = sorted(set(params) - names)
    if unknown:
        raise ValueError(f"{prefix}: unknown field(s) {unknown}")

    for name in REQUIRED_FIELDS.get(cls, ()):
        if params.get(name) in (None, ""):
            raise ValueError(f"{prefix}: missing required field '{name}'")
    if "text" in params:
        params["text"] = str(params["text"])

    if cls is GradientLayer:
        params["mode"] = "radial" if layer_type == "radial-gradient" else "linear"
        if "colors" in params:
            colors = params["colors"]
            if not isinstance(colors, list) or len(colors) != 2:
                raise ValueError(f"{prefix}: 'colors' must be a list of 2 colors")
            params["colors"] = tuple(str(c) for c in colors)

    if layer_type == "image-overlay":
        params.setdefault("zoom_direction", None)
        if not any(params.get(k) is not None for k in ("width", "height", "left", "top", "position")):
            params["position"] = "center"

    _validate_layer_params(params, prefix)
    return cls(**params)


def _validate_layer_params(params: dict, prefix: str) -> None:
    """Validate enum, size, color and timing values of a layer."""
    for name, valid in ENUM_FIELDS.items():
        value = params.get(name)
        if value is not None and value not in valid:
            raise ValueError(
                f"{prefix}: invalid {name} '{value}'. Valid: {sorted(valid)}"
            )

    zoom = params.get("zoom_direction")
    if zoom is not None and zoom not in VALID_ZOOM_DIRECTIONS:
        raise ValueError(
            f"{prefix}: invalid zoom_direction '{zoom}'. "
            f"Valid: {sorted(VALID_ZOOM_DIRECTIONS)} or null"
        )

    for name in SIZE_FIELDS:
        value = params.get(name)
        if value is None:
            continue
        try:
            parse_size(value, 1000)
        except ValueError:
            raise ValueError(
                f"{prefix}: invalid {name} {value!r}; use a fraction, 'N%' or 'Npx'"
            )

    for name in ("color", "text_color", "background_color"):
        if params.get(name) is not None:
            to_ffmpeg_color(str(params[name]))
    for color in params.get("colors", ()):
        to_ffmpeg_color(color)

    cut_from, cut_to = params.get("cut_from"), params.get("cut_to")
    if cut_from is not None and cut_from < 0:
        raise ValueError(f"{prefix}: cut_from must be >= 0, got {cut_from!r}")
    if cut_to is not None and cut_to <= (cut_from or 0):
        raise ValueError(f"{prefix}: cut_to must be greater than cut_from")

    start, stop = params.get("start"), params.get("stop")
    if start is not None and stop is not None and stop <= start:
        raise ValueError(f"{prefix}: stop must be greater than start")


# ── Audio ─────────────────────────────────────────────────────────


def _parse_audio(raw: dict, config: CompositionConfig) -> None:
    config.audio_file_path = raw.get("file")
    config.background_audio_volume = raw.get("volume")
    config.loop_audio = bool(raw.get("loop", False))
    config.keep_source_audio = bool(raw.get("keep_source", False))
    config.clips_audio_volume = raw.get("clips_volume")
    config.output_volume = raw.get("output_volume")

    norm = raw.get("norm") or {}
    config.audio_norm = AudioNorm(
        enable=bool(norm.get("enable", False)),
        gauss_size=norm.get("gauss_size", AudioNorm.gauss_size),
        max_gain=norm.get("max_gain", AudioNorm.max_gain),
    )

    tracks = raw.get("tracks") or []
    if not isinstance(tracks, list):
        raise ValueError("audio: 'tracks' must be a list")
    for j, track in enumerate(tracks):
        if not isinstance(track, dict) or not track.get("path"):
            raise ValueError(f"audio, track {j}: missing required field 'path'")
        config.audio_tracks.append(AudioTrack(
            path=track["path"],
            mix_volume=track.get("mix_volume", 1),
            cut_from=track.get("cut_from"),
            cut_to=track.get("cut_to"),
            start=track.get("start", 0),
        ))


# ── Path validation ───────────────────────────────────────────────


def media_paths(config: CompositionConfig) -> list[str]:
    """Every media path the composition reads, in first-use order."""
    found = []
    for clip in config.clips:
        for layer in clip.layers:
            path = getattr(layer, "path", None)
            if path:
                found.append(path)
    if config.audio_file_path:
        found.append(config.audio_file_path)
    found.extend(track.path for track in config.audio_tracks)
    return list(dict.fromkeys(found))


def validate_media_paths(config: CompositionConfig) -> None:
    """Check that all local media files exist. Reports all missing paths at once.

    Remote URLs are left to ffmpeg.

    Raises:
        FileNotFoundError: Lists all missing files.
    """
    missing = [
        p for p in media_paths(config)
        if not is_remote(p) and not Path(p).exists()
    ]
    if missing:
        msg = f"Missing {len(missing)} file(s):\n"
        for p in missing:
            msg += f"  - {p}\n"
        raise FileNotFoundError(msg)
