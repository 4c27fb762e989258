"""Timeline assembly -- temporal composition of compiled clips.

Takes the output pad of every compiled clip and merges them left to right
into one video pad.

Transition kinds:
  - cross-fade: the next clip starts `transition.duration` seconds before
    the merged timeline ends (xfade filter, any xfade effect name).
  - hard cut: name "none" or duration <= 0. Plain concatenation, no
    overlap, whatever the effect name says.

The transition on each clip is its *outgoing* transition (how this clip
hands over to the next one). The last clip's transition is ignored.

Offset law: with a running merged duration `cum`, a cross-fade of length
d starts at offset = max(0, cum - d) and leaves cum = offset + next
duration. By induction the programme lasts sum(durations) - sum(d).
"""

from dataclasses import dataclass

from .common import fmt
from .graph import FilterNode, PadNamer, filter_call
from .model import ResolvedClip


@dataclass
class Timeline:
    """Merged video pad, its duration and where each clip starts on it."""

    output: str
    duration: float
    clip_starts: list[float]
    nodes: list[FilterNode]


def clip_start_times(clips: list[ResolvedClip]) -> tuple[list[float], float]:
    """Start of each clip on the merged timeline, plus the total duration."""
    if not clips:
        raise ValueError("No clips to assemble")

    starts = [0.0]
    cumulative = clips[0].duration
    for clip, next_clip in zip(clips, clips[1:]):
        transition = clip.transition
        if transition.is_cut:
            start = cumulative
        else:
            start = max(0.0, cumulative - transition.duration)
        starts.append(start)
        cumulative = start + next_clip.duration
    return starts, cumulative


def assemble_timeline(
    clip_pads: list[str],
    clips: list[ResolvedClip],
    namer: PadNamer,
    fps: float,
) -> Timeline:
    """Merge per-clip pads into one timeline pad.

    Intermediate merges are named vmix{i}, the last one vfinal. A single
    clip is returned as-is: its own pad is the whole timeline.

    concat outputs a microsecond timebase, so every cut is followed by
    settb=1/fps to keep the next xfade inputs matched.

    Raises:
        ValueError: If clips is empty or pads and clips differ in length.
    """
    if len(clip_pads) != len(clips):
        raise ValueError(f"Got {len(clip_pads)} clip pads for {len(clips)} clips")
    starts, total = clip_start_times(clips)

    if len(clips) == 1:
        return Timeline(output=clip_pads[0], duration=total, clip_starts=starts, nodes=[])

    nodes = []
    current = clip_pads[0]
    last = len(clips) - 2
    for i, clip in enumerate(clips[:-1]):
        output = namer.fixed("vfinal") if i == last else namer.fixed(f"vmix{i}")
        transition = clip.transition
        if transition.is_cut:
            merge = [filter_call("concat", n=2, v=1, a=0), f"settb=1/{fmt(fps)}"]
        else:
            merge = [filter_call(
                "xfade",
                transition=transition.name,
                duration=transition.duration,
                offset=starts[i + 1],
            )]
        nodes.append(FilterNode([current, clip_pads[i + 1]], merge, [output]))
        current = output

    return Timeline(output=current, duration=total, clip_starts=starts, nodes=nodes)
