"""clipcompile -- declarative video composition compiled to ffmpeg.

Clips of stacked layers, joined by transitions and mixed with audio
tracks, are compiled into a single ffmpeg filter graph and rendered in
one ffmpeg run. Compositions are built in Python or declared in YAML
manifests.
"""

from .compose import compile_composition, compose, compose_manifest
from .manifest import load_manifest, validate_media_paths
from .model import (
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
from .probe import MediaInfo, ProbeError, probe
from .render import CompiledInvocation, RenderError, run_invocation
