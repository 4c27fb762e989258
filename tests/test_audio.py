"""Tests for audio source preparation and mixing."""

import logging

import pytest

from clipcompile.audio import atempo_chain, build_audio_mix
from clipcompile.graph import InputList, PadNamer
from clipcompile.layers import SourceAudio
from clipcompile.model import (
    AudioLayer,
    AudioNorm,
    AudioTrack,
    CompositionConfig,
    DetachedAudioLayer,
    ResolvedClip,
    Transition,
    VideoLayer,
)


def _config(**kwargs):
    return CompositionConfig(out_path="/out.mp4", clips=[], **kwargs)


def _clip(index, duration, layers=(), transition=None):
    return ResolvedClip(
        index=index, layers=list(layers), duration=duration,
        transition=transition or Transition.cut(),
    )


def _mix(config, clips, starts, total, source_audio=(), has_audio=None, inputs=None):
    inputs = inputs if inputs is not None else InputList()
    mix = build_audio_mix(
        config, clips, starts, total, list(source_audio), has_audio or {},
        inputs, PadNamer(),
    )
    return mix, inputs


def _serialized(mix):
    return [n.serialize() for n in mix.nodes]


class TestAtempoChain:
    def test_unity_is_empty(self):
        assert atempo_chain(1.0) == []

    def test_in_range(self):
        assert atempo_chain(2) == ["atempo=2"]
        assert atempo_chain(0.8) == ["atempo=0.8"]

    def test_slow_chains_halves(self):
        assert atempo_chain(0.25) == ["atempo=0.5", "atempo=0.5"]

    def test_fast_chains_maximum(self):
        assert atempo_chain(250) == ["atempo=100", "atempo=2.5"]


class TestNoAudio:
    def test_returns_none(self):
        mix, inputs = _mix(_config(), [_clip(0, 2)], [0.0], 2)
        assert mix is None
        assert len(inputs) == 0

    def test_kept_audio_needs_stream(self):
        """Source audio is only read from files known to have audio."""
        inputs = InputList()
        entry = inputs.add("/silent.mp4")
        source = SourceAudio(input=entry, layer=VideoLayer(path="/silent.mp4"), clip_index=0)
        mix, _ = _mix(
            _config(keep_source_audio=True), [_clip(0, 2)], [0.0], 2,
            source_audio=[source], has_audio={"/silent.mp4": False}, inputs=inputs,
        )
        assert mix is None


class TestSoundtrack:
    def test_single_source_uses_anull(self):
        mix, inputs = _mix(_config(audio_file_path="/music.mp3"), [_clip(0, 6)], [0.0], 6)
        assert _serialized(mix) == [
            "[0:a]asetpts=PTS-STARTPTS[asrc0]",
            "[asrc0]anull,atrim=duration=6[aout]",
        ]
        assert mix.output == "aout"
        assert mix.stream_count == 1
        assert inputs.args() == ["-i", "/music.mp3"]

    def test_loop_adds_stream_loop_and_trim(self):
        config = _config(audio_file_path="/music.mp3", loop_audio=True, background_audio_volume=0.5)
        mix, inputs = _mix(config, [_clip(0, 6)], [0.0], 6)
        assert inputs.args() == ["-stream_loop", "-1", "-i", "/music.mp3"]
        assert _serialized(mix)[0] == (
            "[0:a]asetpts=PTS-STARTPTS,volume=0.5,atrim=duration=6[asrc0]"
        )

    def test_takes_slot_after_video_inputs(self):
        inputs = InputList()
        inputs.add("/a.mp4")
        inputs.add("/b.mp4")
        mix, _ = _mix(_config(audio_file_path="/music.mp3"), [_clip(0, 2)], [0.0], 2, inputs=inputs)
        assert _serialized(mix)[0].startswith("[2:a]")


class TestTracks:
    def test_track_chain(self):
        track = AudioTrack(path="/voice.wav", mix_volume=0.8, cut_from=1, start=1.5)
        mix, _ = _mix(_config(audio_tracks=[track]), [_clip(0, 5)], [0.0], 5)
        assert _serialized(mix)[0] == (
            "[0:a]atrim=start=1,asetpts=PTS-STARTPTS,volume=0.8,"
            "adelay=delays=1500:all=1[asrc0]"
        )

    def test_soundtrack_before_tracks(self):
        config = _config(
            audio_file_path="/music.mp3",
            audio_tracks=[AudioTrack(path="/a.wav"), AudioTrack(path="/b.wav")],
        )
        mix, inputs = _mix(config, [_clip(0, 5)], [0.0], 5)
        assert [f.path for f in inputs] == ["/music.mp3", "/a.wav", "/b.wav"]
        assert mix.stream_count == 3
        assert _serialized(mix)[-1] == "[asrc0][asrc1][asrc2]amix=inputs=3,atrim=duration=5[aout]"


class TestClipAudio:
    def test_audio_layer_fits_clip_and_fades_in(self):
        clips = [
            _clip(0, 2, transition=Transition(name="fade", duration=0.5)),
            _clip(1, 3, [AudioLayer(path="/a.wav")]),
        ]
        mix, _ = _mix(_config(), clips, [0.0, 1.5], 4.5)
        assert _serialized(mix)[0] == (
            "[0:a]asetpts=PTS-STARTPTS,apad=whole_dur=3,atrim=duration=3,"
            "afade=t=in:st=0:d=0.5:curve=tri,adelay=delays=1500:all=1[asrc0]"
        )

    def test_middle_clip_fades_both_ways(self):
        clips = [
            _clip(0, 2, transition=Transition(name="fade", duration=0.5, audio_in_curve="esin")),
            _clip(1, 2, [AudioLayer(path="/a.wav", cut_to=4)],
                  transition=Transition(name="fade", duration=0.5, audio_out_curve="qsin")),
            _clip(2, 2),
        ]
        mix, _ = _mix(_config(), clips, [0.0, 1.5, 3.0], 5)
        chain = _serialized(mix)[0]
        assert chain.startswith("[0:a]atrim=end=4,asetpts=PTS-STARTPTS,")
        assert "afade=t=in:st=0:d=0.5:curve=esin,afade=t=out:st=1.5:d=0.5:curve=qsin" in chain

    def test_cut_does_not_fade(self):
        clips = [_clip(0, 2), _clip(1, 2, [AudioLayer(path="/a.wav")])]
        mix, _ = _mix(_config(), clips, [0.0, 2.0], 4)
        assert "afade" not in _serialized(mix)[0]

    def test_detached_audio_runs_free(self):
        clips = [
            _clip(0, 2, transition=Transition(name="fade", duration=0.5)),
            _clip(1, 3, [DetachedAudioLayer(path="/sfx.wav", start=0.5, mix_volume=2)]),
        ]
        mix, _ = _mix(_config(), clips, [0.0, 1.5], 4.5)
        assert _serialized(mix)[0] == (
            "[0:a]asetpts=PTS-STARTPTS,volume=2,adelay=delays=2000:all=1[asrc0]"
        )


class TestSourceAudio:
    def _source(self, inputs, tempo=1.0, **layer_kwargs):
        entry = inputs.add("/v.mp4")
        return SourceAudio(
            input=entry, layer=VideoLayer(path="/v.mp4", **layer_kwargs),
            clip_index=0, tempo=tempo,
        )

    def test_reads_video_input_audio(self):
        inputs = InputList()
        source = self._source(inputs)
        mix, _ = _mix(
            _config(keep_source_audio=True), [_clip(0, 2)], [0.0], 2,
            source_audio=[source], has_audio={"/v.mp4": True}, inputs=inputs,
        )
        assert _serialized(mix)[0] == (
            "[0:a]asetpts=PTS-STARTPTS,apad=whole_dur=2,atrim=duration=2[asrc0]"
        )
        assert len(inputs) == 1

    def test_retimed_source_gets_atempo(self):
        inputs = InputList()
        source = self._source(inputs, tempo=0.5, cut_to=1)
        mix, _ = _mix(
            _config(keep_source_audio=True, clips_audio_volume=0.3), [_clip(0, 2)], [0.0], 2,
            source_audio=[source], has_audio={"/v.mp4": True}, inputs=inputs,
        )
        assert _serialized(mix)[0] == (
            "[0:a]atrim=end=1,asetpts=PTS-STARTPTS,atempo=0.5,"
            "apad=whole_dur=2,atrim=duration=2,volume=0.3[asrc0]"
        )

    def test_not_kept_by_default(self):
        inputs = InputList()
        source = self._source(inputs)
        mix, _ = _mix(
            _config(), [_clip(0, 2)], [0.0], 2,
            source_audio=[source], has_audio={"/v.mp4": True}, inputs=inputs,
        )
        assert mix is None

    def test_missing_stream_logged(self, caplog):
        inputs = InputList()
        source = self._source(inputs)
        with caplog.at_level(logging.DEBUG, logger="clipcompile.audio"):
            _mix(
                _config(keep_source_audio=True), [_clip(0, 2)], [0.0], 2,
                source_audio=[source], inputs=inputs,
            )
        assert "No audio stream in /v.mp4" in caplog.text


class TestFinalMix:
    def test_norm_and_output_volume(self):
        config = _config(
            audio_tracks=[AudioTrack(path="/a.wav"), AudioTrack(path="/b.wav")],
            audio_norm=AudioNorm(enable=True),
            output_volume=2,
        )
        mix, _ = _mix(config, [_clip(0, 3)], [0.0], 3)
        assert _serialized(mix)[-1] == (
            "[asrc0][asrc1]amix=inputs=2,dynaudnorm=g=5:m=30,volume=2,atrim=duration=3[aout]"
        )

    @pytest.mark.parametrize("total", [2, 4.5, 10.25])
    def test_trimmed_to_programme(self, total):
        mix, _ = _mix(_config(audio_file_path="/m.mp3"), [_clip(0, total)], [0.0], total)
        assert _serialized(mix)[-1].endswith(f"atrim=duration={total}[aout]")
