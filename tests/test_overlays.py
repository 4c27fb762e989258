"""Tests for overlay placement and continuous overlays."""

from clipcompile.graph import InputList, PadNamer
from clipcompile.model import Canvas, FillColorLayer, ResolvedClip, Transition, VideoLayer
from clipcompile.overlays import (
    OVERLAY_MARGIN_FRAC,
    collect_continuous_overlays,
    compile_continuous_overlay,
    grid_position,
    overlay_position,
    overlay_scale,
    overlay_windows,
)

CANVAS = Canvas(width=640, height=480, fps=30)
MARGIN_X = int(640 * OVERLAY_MARGIN_FRAC)
MARGIN_Y = int(480 * OVERLAY_MARGIN_FRAC)


def _pip(path="/pip.mp4", **kwargs):
    kwargs.setdefault("width", 0.3)
    kwargs.setdefault("height", 0.3)
    return VideoLayer(path=path, **kwargs)


def _clip(index, layers, duration, transition=None):
    return ResolvedClip(
        index=index, layers=layers, duration=duration,
        transition=transition or Transition.cut(),
    )


class TestGridPosition:
    """3x3 grid positions with an edge margin."""

    def test_top_left(self):
        assert grid_position("top-left", CANVAS) == (str(MARGIN_X), str(MARGIN_Y))

    def test_top_right(self):
        assert grid_position("top-right", CANVAS) == (
            f"main_w-overlay_w-{MARGIN_X}", str(MARGIN_Y),
        )

    def test_center(self):
        assert grid_position("center", CANVAS) == (
            "trunc((main_w-overlay_w)/2)", "trunc((main_h-overlay_h)/2)",
        )

    def test_bottom(self):
        assert grid_position("bottom", CANVAS) == (
            "trunc((main_w-overlay_w)/2)", f"main_h-overlay_h-{MARGIN_Y}",
        )


class TestOverlayPosition:
    def test_defaults_to_top_left_corner(self):
        assert overlay_position(_pip(), CANVAS) == ("0", "0")

    def test_fractional_anchor(self):
        assert overlay_position(_pip(left=0.5, top=0.25), CANVAS) == ("320", "120")

    def test_center_origin_subtracts_half(self):
        layer = _pip(left=0.5, top=0.5, origin_x="center", origin_y="center")
        assert overlay_position(layer, CANVAS) == (
            "trunc(320-overlay_w/2)", "trunc(240-overlay_h/2)",
        )

    def test_right_bottom_origin_subtracts_full(self):
        layer = _pip(left=1.0, top="100px", origin_x="right", origin_y="bottom")
        assert overlay_position(layer, CANVAS) == ("640-overlay_w", "100-overlay_h")

    def test_position_keyword_wins(self):
        layer = _pip(left=0.5, position="top-left")
        assert overlay_position(layer, CANVAS) == (str(MARGIN_X), str(MARGIN_Y))


class TestOverlayScale:
    def test_both_dimensions_fit_inside(self):
        assert overlay_scale(_pip(), CANVAS) == "scale=192:144:force_original_aspect_ratio=decrease"

    def test_percent_and_pixels(self):
        assert overlay_scale(_pip(width="50%", height="100px"), CANVAS) == (
            "scale=320:100:force_original_aspect_ratio=decrease"
        )

    def test_single_dimension_keeps_aspect(self):
        assert overlay_scale(_pip(height=None), CANVAS) == "scale=192:-2"
        assert overlay_scale(_pip(width=None, height=0.5), CANVAS) == "scale=-2:240"

    def test_position_only_keeps_size(self):
        assert overlay_scale(VideoLayer(path="/a.mp4", position="center"), CANVAS) is None


class TestCollectContinuousOverlays:
    def test_same_source_in_consecutive_clips_is_one_run(self):
        clips = [
            _clip(0, [VideoLayer(path="/a.mp4"), _pip()], 2),
            _clip(1, [VideoLayer(path="/b.mp4"), _pip()], 3),
        ]
        (overlay,) = collect_continuous_overlays(clips)
        assert overlay.layer.path == "/pip.mp4"
        assert overlay.runs == [(0, 1)]

    def test_gap_splits_runs(self):
        clips = [
            _clip(0, [_pip()], 2),
            _clip(1, [FillColorLayer()], 2),
            _clip(2, [_pip()], 2),
        ]
        (overlay,) = collect_continuous_overlays(clips)
        assert overlay.runs == [(0, 0), (2, 2)]

    def test_distinct_sources_in_first_use_order(self):
        clips = [
            _clip(0, [_pip("/x.mp4")], 2),
            _clip(1, [_pip("/y.mp4"), _pip("/x.mp4")], 2),
        ]
        overlays = collect_continuous_overlays(clips)
        assert [o.layer.path for o in overlays] == ["/x.mp4", "/y.mp4"]
        assert overlays[0].runs == [(0, 1)]
        assert overlays[1].runs == [(1, 1)]

    def test_base_layers_ignored(self):
        clips = [_clip(0, [VideoLayer(path="/a.mp4")], 2)]
        assert collect_continuous_overlays(clips) == []


class TestOverlayWindows:
    def test_window_spans_crossfade(self):
        """2s + 3s with a 0.5s cross-fade -> one 4.5s window."""
        clips = [
            _clip(0, [_pip()], 2, Transition(name="fade", duration=0.5)),
            _clip(1, [_pip()], 3),
        ]
        (overlay,) = collect_continuous_overlays(clips)
        windows = overlay_windows(overlay, clips, [0.0, 1.5])
        assert windows == [(0.0, 4.5)]

    def test_separate_runs(self):
        clips = [_clip(0, [_pip()], 2), _clip(1, [], 2), _clip(2, [_pip()], 2)]
        (overlay,) = collect_continuous_overlays(clips)
        assert overlay_windows(overlay, clips, [0.0, 2.0, 4.0]) == [(0.0, 2.0), (4.0, 6.0)]

    def test_runs_around_short_clip_do_not_overlap(self):
        """Fades of 0.6s around a 1s gap clip start the next run at 1.8s, before 2s."""
        clips = [
            _clip(0, [_pip()], 2, Transition(name="fade", duration=0.6)),
            _clip(1, [], 1, Transition(name="fade", duration=0.6)),
            _clip(2, [_pip()], 2),
        ]
        (overlay,) = collect_continuous_overlays(clips)
        assert overlay_windows(overlay, clips, [0.0, 1.4, 1.8]) == [(0.0, 2.0), (2.0, 3.8)]


class TestCompileContinuousOverlay:
    def _overlay(self, clips):
        (overlay,) = collect_continuous_overlays(clips)
        overlay.input = InputList().add(overlay.layer.path)
        return overlay

    def test_single_window(self):
        clips = [
            _clip(0, [_pip(position="top-right")], 2, Transition(name="fade", duration=0.5)),
            _clip(1, [_pip(position="top-right")], 3),
        ]
        overlay = self._overlay(clips)
        fragment = compile_continuous_overlay(overlay, [(0.0, 4.5)], "vfinal", CANVAS, PadNamer())
        nodes = [n.serialize() for n in fragment.nodes]
        assert nodes == [
            "[0:v]trim=start=0:duration=4.5,setpts=PTS-STARTPTS,"
            "scale=192:144:force_original_aspect_ratio=decrease,setsar=1,fps=30,"
            "tpad=stop_mode=clone:stop=-1,trim=duration=4.5,settb=1/30[ovfinal0]",
            f"[vfinal][ovfinal0]overlay=x=main_w-overlay_w-{MARGIN_X}:y={MARGIN_Y}"
            ":eof_action=pass:enable='between(t,0,4.5)'[vwithov0]",
        ]
        assert fragment.output == "vwithov0"

    def test_cut_from_offsets_source(self):
        clips = [_clip(0, [_pip(cut_from=1.5)], 2)]
        overlay = self._overlay(clips)
        fragment = compile_continuous_overlay(overlay, [(0.0, 2.0)], "base", CANVAS, PadNamer())
        assert fragment.nodes[0].serialize().startswith("[0:v]trim=start=1.5:duration=2,")

    def test_two_windows_split_one_input(self):
        clips = [_clip(0, [_pip()], 2), _clip(1, [], 2), _clip(2, [_pip()], 2)]
        overlay = self._overlay(clips)
        fragment = compile_continuous_overlay(
            overlay, [(0.0, 2.0), (4.0, 6.0)], "vfinal", CANVAS, PadNamer(),
        )
        nodes = [n.serialize() for n in fragment.nodes]
        assert nodes[0] == "[0:v]split=2[ovsrc0][ovsrc1]"
        assert nodes[1].startswith("[ovsrc0]trim=start=0:duration=2,")
        # The second window continues the source where the first stopped.
        assert nodes[3].startswith("[ovsrc1]trim=start=2:duration=2,")
        assert nodes[3].endswith("settb=1/30,setpts=PTS+4/TB[ovfinal1]")
        assert nodes[4].startswith("[vwithov0][ovfinal1]overlay=")
        assert fragment.output == "vwithov1"
