"""ffmpeg invocation -- argv assembly and execution."""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

import imageio_ffmpeg

from .common import fmt
from .graph import InputFile

logger = logging.getLogger(__name__)


class RenderError(RuntimeError):
    """ffmpeg exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str, argv: list[str]):
        self.returncode = returncode
        self.stderr = stderr
        self.argv = argv
        detail = stderr.strip() or "(no diagnostic output)"
        super().__init__(f"ffmpeg failed with exit code {returncode}:\n{detail}")


def default_output_args(fast: bool = False) -> list[str]:
    """H.264 in yuv420p with faststart; ultrafast preset in fast mode."""
    return [
        "-c:v", "libx264",
        "-preset", "ultrafast" if fast else "medium",
        "-crf", "18",
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
    ]


@dataclass
class CompiledInvocation:
    """Everything ffmpeg needs for one composition.

    args() returns the argv without the executable, so the same
    invocation can be run against any ffmpeg binary.
    """

    inputs: list[InputFile]
    filter_complex: str
    video_pad: str
    out_path: str
    fps: float
    audio_pad: str | None = None
    output_args: list[str] = field(default_factory=default_output_args)
    verbose: bool = False
    shortest: bool = False

    def args(self) -> list[str]:
        argv = ["-hide_banner", "-loglevel", "info" if self.verbose else "error"]
        for entry in self.inputs:
            argv.extend(entry.args())
        argv += ["-filter_complex", self.filter_complex]
        argv += ["-map", f"[{self.video_pad}]"]
        if self.audio_pad:
            argv += ["-map", f"[{self.audio_pad}]"]
        argv += ["-r", fmt(self.fps)]
        argv += self.output_args
        if self.shortest:
            argv.append("-shortest")
        argv += ["-y", self.out_path]
        return argv


def run_invocation(
    invocation: CompiledInvocation,
    ffmpeg_exe: str | None = None,
    capture_stdout: bool = False,
) -> str | None:
    """Run ffmpeg for a compiled invocation.

    stderr is always captured for diagnostics; stdout only on request.

    Args:
        invocation: Compiled composition.
        ffmpeg_exe: ffmpeg binary. Defaults to the imageio-ffmpeg one.
        capture_stdout: Return ffmpeg's stdout instead of discarding it.

    Returns:
        Captured stdout, or None.

    Raises:
        RenderError: ffmpeg exited non-zero.
    """
    exe = ffmpeg_exe or imageio_ffmpeg.get_ffmpeg_exe()
    Path(invocation.out_path).parent.mkdir(parents=True, exist_ok=True)

    argv = [exe, *invocation.args()]
    logger.info("Rendering %s", invocation.out_path)
    logger.debug("ffmpeg argv: %s", argv)
    logger.debug("Filter graph:\n%s", invocation.filter_complex.replace(";", ";\n"))

    result = subprocess.run(
        argv,
        stdout=subprocess.PIPE if capture_stdout else subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )
    if result.returncode != 0:
        raise RenderError(result.returncode, result.stderr or "", argv)

    logger.info("Done: %s", invocation.out_path)
    return result.stdout if capture_stdout else None
