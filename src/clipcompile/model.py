"""Composition data model.

A composition is an ordered list of clips. Each clip stacks layers (first
layer at the bottom) and names its outgoing transition into the next clip.
Global audio tracks are mixed over the whole programme.

Layers are a closed set of dataclasses, one per layer kind. The compiler
dispatches on the class, so adding a kind means adding a dataclass and a
compiler entry. UnknownLayer carries layer types this version does not
understand; the compiler skips it.
"""

from dataclasses import dataclass, field


VALID_RESIZE_MODES = {"contain", "contain-blur", "cover", "stretch"}

VALID_CROP_POSITIONS = {
    "center", "top", "bottom", "left", "right",
    "top-left", "top-right", "bottom-left", "bottom-right",
}

VALID_ZOOM_DIRECTIONS = {"in", "out", "left", "right"}

VALID_ORIGINS_X = {"left", "center", "right"}
VALID_ORIGINS_Y = {"top", "center", "bottom"}

VALID_POSITIONS = {
    "top", "top-left", "top-right",
    "center", "center-left", "center-right",
    "bottom", "bottom-left", "bottom-right",
}

# Audio fade curves accepted by ffmpeg's afade/acrossfade.
VALID_CURVES = {
    "tri", "qsin", "hsin", "esin", "log", "ipar", "qua", "cub", "squ",
    "cbr", "par", "exp", "iqsin", "ihsin", "dese", "desi", "losi", "nofade",
}

GRADIENT_MODES = {"linear", "radial"}


# ── Layers ────────────────────────────────────────────────────────


@dataclass(kw_only=True)
class Layer:
    """Fields shared by every layer kind.

    start/stop limit visibility inside the clip, in seconds from the clip
    start. Only text layers and per-clip overlays honour them.
    """

    start: float | None = None
    stop: float | None = None


@dataclass(kw_only=True)
class Placement:
    """Overlay geometry. Any field set turns a layer into an overlay."""

    width: float | str | None = None
    height: float | str | None = None
    left: float | str | None = None
    top: float | str | None = None
    origin_x: str = "left"
    origin_y: str = "top"
    position: str | None = None

    @property
    def is_overlay(self) -> bool:
        return any(
            v is not None
            for v in (self.width, self.height, self.left, self.top, self.position)
        )


@dataclass(kw_only=True)
class VideoLayer(Placement, Layer):
    path: str
    resize_mode: str = "contain"
    crop_position: str = "center"
    cut_from: float | None = None
    cut_to: float | None = None
    mix_volume: float | str = 1


@dataclass(kw_only=True)
class ImageLayer(Placement, Layer):
    path: str
    resize_mode: str = "contain"
    crop_position: str = "center"
    zoom_direction: str | None = "in"
    zoom_amount: float = 0.1


@dataclass(kw_only=True)
class FillColorLayer(Layer):
    color: str = "#000000"


@dataclass(kw_only=True)
class GradientLayer(Layer):
    colors: tuple[str, str] = ("#ff6b6b", "#4ecdc4")
    mode: str = "linear"


@dataclass(kw_only=True)
class TitleLayer(Layer):
    text: str
    text_color: str = "white"
    font_path: str | None = None
    font_size: int | None = None
    position: str = "center"


@dataclass(kw_only=True)
class SubtitleLayer(Layer):
    text: str
    text_color: str = "white"
    background_color: str = "black@0.5"
    font_path: str | None = None
    font_size: int | None = None


@dataclass(kw_only=True)
class AudioLayer(Layer):
    path: str
    cut_from: float | None = None
    cut_to: float | None = None
    mix_volume: float | str = 1


@dataclass(kw_only=True)
class DetachedAudioLayer(Layer):
    """Audio placed at clip start + start, free to run past the clip."""

    path: str
    cut_from: float | None = None
    cut_to: float | None = None
    mix_volume: float | str = 1


@dataclass(kw_only=True)
class UnknownLayer(Layer):
    type: str
    params: dict = field(default_factory=dict)


VISUAL_BASE_LAYERS = (VideoLayer, ImageLayer, FillColorLayer, GradientLayer)
TEXT_LAYERS = (TitleLayer, SubtitleLayer)
AUDIO_LAYERS = (AudioLayer, DetachedAudioLayer)


# ── Timeline ──────────────────────────────────────────────────────


@dataclass
class Transition:
    """Outgoing transition of a clip.

    name "none" or a duration <= 0 is a hard cut (concatenation). Any other
    name is passed to ffmpeg's xfade as the transition effect.
    """

    name: str = "fade"
    duration: float = 0.5
    audio_out_curve: str = "tri"
    audio_in_curve: str = "tri"

    @classmethod
    def cut(cls) -> "Transition":
        return cls(name="none", duration=0)

    @property
    def is_cut(self) -> bool:
        return self.name == "none" or self.duration <= 0


@dataclass
class Clip:
    """One timeline unit.

    duration None means infer it (first base video layer, then defaults).
    transition None means use the composition default; use
    Transition.cut() for an explicit hard cut.
    """

    layers: list[Layer]
    duration: float | None = None
    transition: Transition | None = None


@dataclass
class ResolvedClip:
    """A clip after duration inference and transition defaulting."""

    index: int
    layers: list[Layer]
    duration: float
    transition: Transition


@dataclass
class AudioTrack:
    path: str
    mix_volume: float | str = 1
    cut_from: float | None = None
    cut_to: float | None = None
    start: float = 0


@dataclass
class AudioNorm:
    enable: bool = False
    gauss_size: int = 5
    max_gain: float = 30


@dataclass
class Defaults:
    duration: float = 4
    transition: Transition | None = field(default_factory=Transition)
    layer: dict = field(default_factory=dict)
    layer_type: dict = field(default_factory=dict)


@dataclass
class Canvas:
    width: int
    height: int
    fps: float


@dataclass
class CompositionConfig:
    """Everything needed to compile one output video."""

    out_path: str
    clips: list[Clip]
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    fast: bool = False
    defaults: Defaults = field(default_factory=Defaults)
    audio_tracks: list[AudioTrack] = field(default_factory=list)
    audio_file_path: str | None = None
    background_audio_volume: float | str | None = None
    loop_audio: bool = False
    keep_source_audio: bool = False
    clips_audio_volume: float | str | None = None
    output_volume: float | str | None = None
    audio_norm: AudioNorm = field(default_factory=AudioNorm)
    custom_output_args: list[str] | None = None
    shortest: bool = False
    verbose: bool = False
