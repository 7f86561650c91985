"""
ClipCraft — Render Engine Boundary
The external engine is a black box: it accepts named file writes, an ordered
argument-list command, and named file reads.

FFmpegEngine is the concrete engine: a local ffmpeg binary working inside a
private temp directory.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from core.errors import EngineExecutionFailedError, InitializationFailedError, InvalidInputError

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 500
PROBE_TIMEOUT_SEC = 30


@runtime_checkable
class RenderEngine(Protocol):
    """What the orchestrator needs from a render engine."""

    async def load(self) -> None:
        """Start (or restart) the engine. Raise InitializationFailedError on failure."""

    async def write_file(self, name: str, data: bytes) -> None:
        ...

    async def exec(self, args: Sequence[str]) -> None:
        """Run one command. Raise EngineExecutionFailedError on failure."""

    async def read_file(self, name: str) -> bytes:
        ...

    async def delete_file(self, name: str) -> None:
        ...


def get_ffmpeg(path: str | None = None) -> str:
    """Find the FFmpeg binary."""
    found = shutil.which(path or "ffmpeg")
    if not found:
        raise InitializationFailedError("FFmpeg not found. Install with: brew install ffmpeg")
    return found


def _stderr_tail(stderr: bytes) -> str:
    text = (stderr or b"").decode("utf-8", errors="replace").strip()
    # The last few hundred chars usually hold the actual error
    return text[-STDERR_TAIL_CHARS:] if len(text) > STDERR_TAIL_CHARS else text


class FFmpegEngine:
    """Local ffmpeg subprocess engine with a private working directory.

    File names are flat: anything with a path separator or a leading dot
    is rejected so staged names can't escape the working directory.
    """

    def __init__(self, ffmpeg_path: str | None = None, workdir: str | None = None):
        self._ffmpeg_hint = ffmpeg_path
        self._ffmpeg: str | None = None
        self._workdir_arg = workdir
        self._workdir: Path | None = None
        self._owns_workdir = workdir is None

    @property
    def loaded(self) -> bool:
        return self._ffmpeg is not None and self._workdir is not None

    @property
    def workdir(self) -> Path | None:
        return self._workdir

    async def load(self) -> None:
        try:
            ffmpeg = get_ffmpeg(self._ffmpeg_hint)
        except InitializationFailedError:
            self._ffmpeg = None
            raise
        try:
            proc = await asyncio.create_subprocess_exec(
                ffmpeg, "-hide_banner", "-version",
                stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=PROBE_TIMEOUT_SEC)
        except (OSError, asyncio.TimeoutError) as e:
            self._ffmpeg = None
            raise InitializationFailedError(f"FFmpeg failed to start: {e}") from e
        if proc.returncode != 0:
            self._ffmpeg = None
            raise InitializationFailedError(f"FFmpeg -version exited {proc.returncode}: {_stderr_tail(stderr)}")

        if self._workdir is None or not self._workdir.exists():
            if self._workdir_arg:
                self._workdir = Path(self._workdir_arg)
                self._workdir.mkdir(parents=True, exist_ok=True)
            else:
                self._workdir = Path(tempfile.mkdtemp(prefix="clipcraft_"))
        self._ffmpeg = ffmpeg
        logger.info("FFmpeg engine ready (%s, workdir %s)", ffmpeg, self._workdir)

    def _path(self, name: str) -> Path:
        if not self.loaded:
            raise InitializationFailedError("Engine not loaded")
        if not name or name != os.path.basename(name) or name.startswith("."):
            raise InvalidInputError(f"Invalid engine file name: {name!r}")
        return self._workdir / name

    async def write_file(self, name: str, data: bytes) -> None:
        path = self._path(name)
        await asyncio.to_thread(path.write_bytes, data)

    async def read_file(self, name: str) -> bytes:
        path = self._path(name)
        if not path.exists():
            raise EngineExecutionFailedError(f"Engine produced no file named '{name}'")
        return await asyncio.to_thread(path.read_bytes)

    async def delete_file(self, name: str) -> None:
        path = self._path(name)
        await asyncio.to_thread(path.unlink, True)

    async def exec(self, args: Sequence[str]) -> None:
        """Run `ffmpeg <args>` in the working directory.

        Cancelling the awaiting task kills the process.
        """
        if not self.loaded:
            raise InitializationFailedError("Engine not loaded")
        cmd = [self._ffmpeg, "-hide_banner", "-nostdin", *args]
        logger.debug("ffmpeg %s", " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, cwd=str(self._workdir),
                stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._ffmpeg = None
            raise InitializationFailedError(f"FFmpeg could not be launched: {e}") from e
        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise
        if proc.returncode != 0:
            tail = _stderr_tail(stderr)
            raise EngineExecutionFailedError(
                f"FFmpeg encoding failed (exit code {proc.returncode}): {tail}",
                stderr=tail, returncode=proc.returncode,
            )

    def close(self) -> None:
        """Remove the private working directory (if this engine created it)."""
        if self._workdir is not None and self._owns_workdir:
            shutil.rmtree(self._workdir, ignore_errors=True)
        self._workdir = None
        self._ffmpeg = None
