"""External process execution.

The engine talks to ffmpeg/ffprobe only through ``ProcessRunner`` so tests
can substitute a scripted fake. The real runner drains stderr while the
process runs, keeping a bounded tail for post-mortem diagnostics.
"""

import asyncio
import codecs
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence

from vod_pipeline.modules.transcoding.exceptions import TranscoderUnavailable

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]

# ffmpeg rewrites its progress line with carriage returns
_LINE_SPLIT = re.compile(r"[\r\n]+")

DEFAULT_TAIL_LINES = 200
TERMINATE_GRACE_SECONDS = 5.0


@dataclass
class ProcessResult:
    """Outcome of one external process run."""
    returncode: int
    stdout: str = ""
    diagnostics: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class ProcessRunner(Protocol):
    """Narrow interface to an external process."""

    async def run(
        self,
        args: Sequence[str],
        *,
        on_stderr_line: Optional[LineCallback] = None,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        ...


class AsyncProcessRunner:
    """Runs processes with asyncio, streaming stderr line by line."""

    def __init__(self, tail_lines: int = DEFAULT_TAIL_LINES, chunk_size: int = 4096):
        self.tail_lines = tail_lines
        self.chunk_size = chunk_size

    async def run(
        self,
        args: Sequence[str],
        *,
        on_stderr_line: Optional[LineCallback] = None,
        timeout: Optional[float] = None,
    ) -> ProcessResult:
        """Run a process to completion.

        Args:
            args: Executable followed by its arguments
            on_stderr_line: Called with every diagnostic line as it arrives
            timeout: Seconds before the process is stopped (None for no limit)

        Returns:
            ProcessResult with exit code, stdout and the diagnostic tail

        Raises:
            TranscoderUnavailable: If the executable could not be started
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscoderUnavailable(
                f"Could not start '{args[0]}': {e}. Set FFMPEG_PATH or FFMPEG_BINARY, "
                "or put ffmpeg on PATH.",
                diagnostics=[str(e)],
            ) from e

        tail: deque[str] = deque(maxlen=self.tail_lines)
        stdout_task = asyncio.create_task(process.stdout.read())
        stderr_task = asyncio.create_task(
            self._drain_lines(process.stderr, tail, on_stderr_line)
        )

        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(f"Process {args[0]} exceeded {timeout}s, stopping it")
            await self._stop(process)
        except asyncio.CancelledError:
            await self._stop(process)
            stdout_task.cancel()
            stderr_task.cancel()
            raise

        stdout = await stdout_task
        await stderr_task

        return ProcessResult(
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            diagnostics=list(tail),
            timed_out=timed_out,
        )

    async def _drain_lines(
        self,
        stream: asyncio.StreamReader,
        tail: deque,
        on_line: Optional[LineCallback],
    ) -> None:
        # A multibyte character may straddle two reads
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(self.chunk_size)
            if not chunk:
                break
            pending += decoder.decode(chunk)
            *lines, pending = _LINE_SPLIT.split(pending)
            for line in lines:
                self._emit(line, tail, on_line)
        pending += decoder.decode(b"", final=True)
        self._emit(pending, tail, on_line)

    @staticmethod
    def _emit(line: str, tail: deque, on_line: Optional[LineCallback]) -> None:
        line = line.strip()
        if not line:
            return
        tail.append(line)
        if on_line is not None:
            on_line(line)

    @staticmethod
    async def _stop(process: asyncio.subprocess.Process) -> None:
        """Terminate, then kill if the process ignores it."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE_SECONDS)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        except ProcessLookupError:
            pass
