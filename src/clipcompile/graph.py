"""Filter-graph intermediate representation.

The compiler never concatenates filter strings directly. It builds
FilterNode records (input pads, filter chain, output pads) and flattens
them into ffmpeg's -filter_complex syntax in one final pass:

    [0:v]scale=640:480,setsar=1[vout0];[vout0][1:v]overlay=0:0[base1]

Pad names come from a PadNamer owned by one compilation; input slots come
from an InputList owned by the same compilation.
"""

from collections import defaultdict
from dataclasses import dataclass, field

from .common import fmt


# ── Escaping ──────────────────────────────────────────────────────
# ffmpeg parses a filter graph in two passes: the graph parser splits on
# [ ] , ; and the filter parser then splits options on ':'. Both honour
# backslash escapes and single quotes, so a literal value is escaped for
# the option level first and for the graph level second.

_OPTION_SPECIAL = "\\':"
_GRAPH_SPECIAL = "\\'[],;"


def _backslash(text: str, special: str) -> str:
    return "".join("\\" + c if c in special else c for c in text)


def escape_value(text: str) -> str:
    """Escape a literal for use as a filter option value."""
    return _backslash(_backslash(text, _OPTION_SPECIAL), _GRAPH_SPECIAL)


def escape_drawtext(text: str) -> str:
    r"""Escape text for drawtext's text= option.

    drawtext expands %{...} sequences before drawing, so '%' and '\' are
    escaped once more ahead of the two graph levels. "It's 3:00" becomes
    It\\\'s 3\\:00.
    """
    return escape_value(_backslash(text, "\\%"))


# ── Nodes ─────────────────────────────────────────────────────────


def pad(name: str) -> str:
    return f"[{name}]"


@dataclass
class FilterNode:
    """One filter chain: [in1][in2]f1,f2[out1][out2].

    Source filters (color, gradients) have no inputs.
    """

    inputs: list[str]
    filters: list[str]
    outputs: list[str]

    def serialize(self) -> str:
        return (
            "".join(pad(p) for p in self.inputs)
            + ",".join(self.filters)
            + "".join(pad(p) for p in self.outputs)
        )


def filter_call(name: str, *args, **options) -> str:
    """Render a filter invocation with positional then named options.

    Numbers are formatted with fmt(); strings are inserted verbatim, so
    callers escape literals with escape_value() or escape_drawtext().

        >>> filter_call("trim", duration=2.5)
        'trim=duration=2.5'
        >>> filter_call("overlay", 0, 0)
        'overlay=0:0'
    """
    parts = [_option(a) for a in args]
    parts += [f"{k}={_option(v)}" for k, v in options.items() if v is not None]
    if not parts:
        return name
    return f"{name}={':'.join(parts)}"


def _option(value) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return fmt(value)
    return str(value)


class PadNamer:
    """Hands out unique pad names for one compilation.

    next("vout") returns vout0, vout1, ... Each prefix counts on its own.
    fixed() returns a literal name and fails on reuse, for well-known pads
    such as vfinal and aout.
    """

    def __init__(self):
        self._counters = defaultdict(int)
        self._used = set()

    def next(self, prefix: str) -> str:
        while True:
            name = f"{prefix}{self._counters[prefix]}"
            self._counters[prefix] += 1
            if name not in self._used:
                self._used.add(name)
                return name

    def fixed(self, name: str) -> str:
        if name in self._used:
            raise ValueError(f"Pad name already in use: '{name}'")
        self._used.add(name)
        return name


# ── Inputs ────────────────────────────────────────────────────────


@dataclass
class InputFile:
    """One -i argument and the options that precede it."""

    path: str
    index: int
    options: list[str] = field(default_factory=list)

    @property
    def video(self) -> str:
        return f"{self.index}:v"

    @property
    def audio(self) -> str:
        return f"{self.index}:a"

    def args(self) -> list[str]:
        return [*self.options, "-i", self.path]


class InputList:
    """Ordered input files; the position of a file is its input slot."""

    def __init__(self):
        self.files: list[InputFile] = []

    def add(self, path: str, options: list[str] | None = None) -> InputFile:
        entry = InputFile(path=path, index=len(self.files), options=list(options or []))
        self.files.append(entry)
        return entry

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self):
        return iter(self.files)

    def args(self) -> list[str]:
        out = []
        for entry in self.files:
            out.extend(entry.args())
        return out


# ── Fragments ─────────────────────────────────────────────────────


@dataclass
class Fragment:
    """Filter nodes produced for one layer or stage, plus its output pad."""

    nodes: list[FilterNode]
    output: str
    inputs: list[InputFile] = field(default_factory=list)


class FilterGraph:
    """Accumulates nodes in emission order and serializes them."""

    def __init__(self):
        self.nodes: list[FilterNode] = []

    def add(self, *nodes: FilterNode) -> None:
        self.nodes.extend(nodes)

    def extend(self, fragment: Fragment) -> str:
        self.nodes.extend(fragment.nodes)
        return fragment.output

    def serialize(self) -> str:
        return ";".join(node.serialize() for node in self.nodes)
