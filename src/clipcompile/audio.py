"""Audio mixing.

Every audio source is prepared into its own pad, placed on the programme
timeline with adelay, then all pads are mixed into [aout]:

  0 sources   no audio filter, video-only output
  1 source    anull
  2+ sources  amix=inputs=N

followed by optional dynaudnorm and the global output volume.

Audio-only files take the next free input slots after the video inputs,
in this order: soundtrack, global tracks, clip audio layers. Kept source
audio reads the audio stream of the video input it belongs to.
"""

import logging
from dataclasses import dataclass

from .graph import FilterNode, InputList, PadNamer, filter_call
from .layers import SourceAudio
from .model import AudioLayer, AudioNorm, AudioTrack, CompositionConfig, DetachedAudioLayer, ResolvedClip

logger = logging.getLogger(__name__)

# atempo accepts 0.5..100 per instance.
ATEMPO_MIN = 0.5
ATEMPO_MAX = 100.0


@dataclass
class AudioMix:
    output: str
    nodes: list[FilterNode]
    stream_count: int


def atempo_chain(tempo: float) -> list[str]:
    """atempo filters whose product is *tempo*."""
    filters = []
    while tempo < ATEMPO_MIN:
        filters.append(filter_call("atempo", ATEMPO_MIN))
        tempo /= ATEMPO_MIN
    while tempo > ATEMPO_MAX:
        filters.append(filter_call("atempo", ATEMPO_MAX))
        tempo /= ATEMPO_MAX
    if abs(tempo - 1.0) > 1e-9:
        filters.append(filter_call("atempo", tempo))
    return filters


def _cut(cut_from: float | None, cut_to: float | None) -> list[str]:
    filters = []
    if cut_from or cut_to is not None:
        filters.append(filter_call("atrim", start=cut_from or None, end=cut_to))
    filters.append("asetpts=PTS-STARTPTS")
    return filters


def _volume(value) -> list[str]:
    if value is None or value == 1:
        return []
    return [filter_call("volume", value)]


def _delay(seconds: float) -> list[str]:
    if seconds <= 0:
        return []
    return [filter_call("adelay", delays=round(seconds * 1000), all=1)]


def _clip_fades(clips: list[ResolvedClip], index: int) -> list[str]:
    """Fade in over the incoming and out over the outgoing transition."""
    clip = clips[index]
    filters = []
    if index > 0 and not clips[index - 1].transition.is_cut:
        incoming = clips[index - 1].transition
        filters.append(filter_call(
            "afade", t="in", st=0, d=incoming.duration, curve=incoming.audio_in_curve,
        ))
    if index < len(clips) - 1 and not clip.transition.is_cut:
        outgoing = clip.transition
        filters.append(filter_call(
            "afade", t="out", st=clip.duration - outgoing.duration,
            d=outgoing.duration, curve=outgoing.audio_out_curve,
        ))
    return filters


def _fit_to_clip(duration: float) -> list[str]:
    return [filter_call("apad", whole_dur=duration), filter_call("atrim", duration=duration)]


def build_audio_mix(
    config: CompositionConfig,
    clips: list[ResolvedClip],
    clip_starts: list[float],
    total_duration: float,
    source_audio: list[SourceAudio],
    has_audio: dict[str, bool],
    inputs: InputList,
    namer: PadNamer,
) -> AudioMix | None:
    """Prepare every audio source and mix them into one pad.

    Args:
        config: Composition settings (soundtrack, tracks, volumes, norm).
        clips: Resolved clips, for audio layers and transition fades.
        clip_starts: Start of each clip on the merged timeline.
        total_duration: Programme length; the mix is trimmed to it.
        source_audio: Base video layers whose audio may be kept.
        has_audio: Probe results by path; kept source audio is only read
            from files known to carry an audio stream.
        inputs: Input list; audio-only files are appended to it.
        namer: Pad namer of this compilation.

    Returns:
        AudioMix, or None when there is no audio source at all.
    """
    nodes: list[FilterNode] = []
    streams: list[str] = []

    def _add(source: str, chain: list[str]) -> None:
        output = namer.next("asrc")
        nodes.append(FilterNode([source], chain or ["anull"], [output]))
        streams.append(output)

    # Soundtrack.
    if config.audio_file_path:
        options = ["-stream_loop", "-1"] if config.loop_audio else []
        entry = inputs.add(config.audio_file_path, options)
        chain = ["asetpts=PTS-STARTPTS", *_volume(config.background_audio_volume)]
        if config.loop_audio:
            chain.append(filter_call("atrim", duration=total_duration))
        _add(entry.audio, chain)

    # Global tracks.
    for track in config.audio_tracks:
        entry = inputs.add(track.path)
        _add(entry.audio, _track_chain(track))

    # Clip audio layers.
    for clip in clips:
        start = clip_starts[clip.index]
        for layer in clip.layers:
            if isinstance(layer, AudioLayer):
                entry = inputs.add(layer.path)
                chain = [
                    *_cut(layer.cut_from, layer.cut_to),
                    *_fit_to_clip(clip.duration),
                    *_clip_fades(clips, clip.index),
                    *_volume(layer.mix_volume),
                    *_delay(start),
                ]
                _add(entry.audio, chain)
            elif isinstance(layer, DetachedAudioLayer):
                entry = inputs.add(layer.path)
                chain = [
                    *_cut(layer.cut_from, layer.cut_to),
                    *_volume(layer.mix_volume),
                    *_delay(start + (layer.start or 0)),
                ]
                _add(entry.audio, chain)

    # Audio of base video layers.
    if config.keep_source_audio:
        for source in source_audio:
            if not has_audio.get(source.layer.path, False):
                logger.debug("No audio stream in %s, not kept", source.layer.path)
                continue
            clip = clips[source.clip_index]
            chain = [
                *_cut(source.layer.cut_from, source.layer.cut_to),
                *atempo_chain(source.tempo),
                *_fit_to_clip(clip.duration),
                *_clip_fades(clips, clip.index),
                *_volume(source.layer.mix_volume),
                *_volume(config.clips_audio_volume),
                *_delay(clip_starts[clip.index]),
            ]
            _add(source.input.audio, chain)

    if not streams:
        return None

    if len(streams) == 1:
        mix = ["anull"]
    else:
        mix = [filter_call("amix", inputs=len(streams))]
    if config.audio_norm.enable:
        mix.append(_norm_filter(config.audio_norm))
    mix += _volume(config.output_volume)
    mix.append(filter_call("atrim", duration=total_duration))

    output = namer.fixed("aout")
    nodes.append(FilterNode(streams, mix, [output]))
    logger.debug("Mixing %d audio stream(s)", len(streams))
    return AudioMix(output=output, nodes=nodes, stream_count=len(streams))


def _track_chain(track: AudioTrack) -> list[str]:
    return [
        *_cut(track.cut_from, track.cut_to),
        *_volume(track.mix_volume),
        *_delay(track.start),
    ]


def _norm_filter(norm: AudioNorm) -> str:
    return filter_call("dynaudnorm", g=norm.gauss_size, m=norm.max_gain)
