"""
ClipCraft — Render Orchestrator
Drives one shared render engine through a job:

    Uninitialized -> Initializing -> Ready -> Submitting -> Running
        -> Succeeded | Failed | TimedOut | Cancelled

The engine is injected through an EngineHandle (one per process, reused
across jobs) and only one job holds it at a time. Every attempt stages its
files under fresh names and removes them again whatever the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from core.compiler import (
    MP3_BITRATE,
    InstructionList,
    compile_concat,
    compile_extract_audio,
    compile_job,
    compile_segments,
    concat_list,
)
from core.errors import (
    ClipCraftError,
    EmptyOutputError,
    EngineBusyError,
    EngineExecutionFailedError,
    InitializationFailedError,
    InvalidInputError,
    RenderCancelledError,
    RenderFailedError,
    RenderTimeoutError,
    ResourceCleanupWarning,
)
from core.settings import RenderSettings, get_settings

logger = logging.getLogger(__name__)

# Progress landmarks (percent)
PROGRESS_PREPARING = 5
PROGRESS_STAGED = 15
PROGRESS_COMPILED = 25
PROGRESS_RUNNING = 35
PROGRESS_RUNNING_CAP = 75
PROGRESS_READING = 80
PROGRESS_CLEANUP = 90
PROGRESS_DONE = 100

MIN_EXPECTED_RUN_SEC = 10.0


class RenderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SUBMITTING = "submitting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({
    RenderState.SUCCEEDED, RenderState.FAILED, RenderState.TIMED_OUT, RenderState.CANCELLED,
})


@dataclass
class ProcessingProgress:
    percentage: float
    stage: str
    current_time: Optional[float] = None
    total_time: Optional[float] = None


@dataclass
class RenderResult:
    data: bytes = field(repr=False)
    mime_type: str
    filename: str
    attempts: int = 1
    elapsed: float = 0.0
    warnings: list = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.data)


ProgressCallback = Callable[[ProcessingProgress], None]


def estimate_progress(elapsed: float, expected: float,
                      start: float = PROGRESS_RUNNING, cap: float = PROGRESS_RUNNING_CAP) -> float:
    """Heuristic progress while the engine runs (it reports none).

    Exponential approach from `start` toward `cap`: strictly increasing in
    `elapsed` and never reaching `cap`. Not a measurement.
    """
    if elapsed <= 0:
        return float(start)
    return start + (cap - start) * (1.0 - math.exp(-elapsed / max(expected, 1e-3)))


def compute_timeout(steps: int, media_duration: float, settings: RenderSettings) -> float:
    """Deadline for one attempt: base + per-step + per-media-second, capped.

    `steps` is the instruction count for an export, the clip count for a merge.
    """
    budget = (settings.timeout_base_sec
              + settings.timeout_per_instruction * steps
              + settings.timeout_per_media_sec * max(0.0, media_duration))
    return min(settings.timeout_max_sec, budget)


class _ProgressTracker:
    """Forwards progress to a callback, never letting the percentage go down."""

    def __init__(self, callback: ProgressCallback | None, total_time: float | None = None):
        self._callback = callback
        self._total = total_time
        self.percentage = 0.0
        self.stage = ""

    def emit(self, percentage: float, stage: str, current_time: float | None = None) -> None:
        self.percentage = max(self.percentage, min(100.0, float(percentage)))
        self.stage = stage
        if self._callback is None:
            return
        try:
            self._callback(ProcessingProgress(self.percentage, stage, current_time, self._total))
        except Exception:
            logger.exception("Progress callback raised; ignoring")


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


# (input names, output name, token) -> (extra files to stage, engine args)
CommandBuilder = Callable[[list, str, str], "tuple[list[tuple[str, bytes]], list[str]]"]


@dataclass
class EngineJob:
    """One engine run: files to stage, how to build the command, what comes out."""
    inputs: list  # (name prefix, extension, payload)
    output_extension: str
    command: CommandBuilder
    mime_type: str
    filename: str
    output_duration: float
    timeout: float


@dataclass(frozen=True)
class _Deadline:
    at: float
    timeout: float


class EngineHandle:
    """Owns the single shared engine instance and its lifecycle."""

    def __init__(self, engine):
        self.engine = engine
        self.state = RenderState.UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self.state == RenderState.READY

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def initialize(self, timeout: float) -> None:
        """Load the engine. Raises InitializationFailedError."""
        self.state = RenderState.INITIALIZING
        try:
            await asyncio.wait_for(self.engine.load(), timeout=timeout)
        except InitializationFailedError:
            self.state = RenderState.UNINITIALIZED
            raise
        except asyncio.TimeoutError as e:
            self.state = RenderState.UNINITIALIZED
            raise InitializationFailedError(f"Engine did not start within {timeout:.0f}s") from e
        except Exception as e:
            self.state = RenderState.UNINITIALIZED
            raise InitializationFailedError(f"Engine failed to start: {e}") from e
        self.state = RenderState.READY

    def mark_unhealthy(self) -> None:
        self.state = RenderState.UNINITIALIZED


class RenderOrchestrator:
    """Runs ExportJobs against a shared engine with retries and cleanup.

    Example:
        orchestrator = RenderOrchestrator(EngineHandle(FFmpegEngine()))
        result = await orchestrator.render(job, on_progress=print)
    """

    def __init__(self, handle: EngineHandle, settings: RenderSettings | None = None):
        self.handle = handle
        self.settings = settings or get_settings()
        self.state = handle.state
        self.state_history: list[RenderState] = []

    @property
    def engine(self):
        return self.handle.engine

    def _set_state(self, state: RenderState) -> None:
        self.state = state
        self.state_history.append(state)
        logger.debug("Render state -> %s", state.value)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def render(self, job, on_progress: ProgressCallback | None = None,
                     cancel: asyncio.Event | None = None) -> RenderResult:
        """Compile and render one ExportJob.

        Raises:
            InvalidInputError: Bad job; raised before the engine is touched.
            EmptyOutputError: Engine finished but wrote nothing (not retried).
            RenderCancelledError: `cancel` was set while the job ran.
            EngineBusyError: Another job holds the engine and busy_policy is 'reject'.
            RenderFailedError: Retries exhausted; `.cause` is the last error.
        """
        _validate_job(job)
        instructions = compile_job(job, lut_dir=self.settings.lut_dir)
        engine_job = self._export_job(job, instructions, f"output.{job.encode.extension}")
        async with self._acquire():
            return await self._run(engine_job, on_progress, cancel)

    async def render_segments(self, job, points=None, on_progress: ProgressCallback | None = None,
                              cancel: asyncio.Event | None = None) -> list[RenderResult]:
        """Render one file per split segment (segment_0.mp4, segment_1.mp4, ...).

        `points` defaults to the job state's split points. The engine is
        held for the whole batch.
        """
        _validate_job(job)
        info = job.media.info
        lists = compile_segments(job.state, job.resolution, job.aspect, info,
                                 points=points, lut_dir=self.settings.lut_dir)
        engine_jobs = [
            self._export_job(job, instructions, f"segment_{i}.{job.encode.extension}")
            for i, instructions in enumerate(lists)
        ]
        results = []
        async with self._acquire():
            for i, engine_job in enumerate(engine_jobs):
                logger.info("Rendering segment %d/%d", i + 1, len(engine_jobs))
                results.append(await self._run(engine_job, on_progress, cancel))
        return results

    async def render_merge(self, sources, on_progress: ProgressCallback | None = None,
                           cancel: asyncio.Event | None = None) -> RenderResult:
        """Join several clips end to end into merged.mp4 (stream copy).

        Args:
            sources: MediaSources in play order.
        """
        sources = list(sources)
        if not sources:
            raise InvalidInputError("Nothing to merge")
        for i, source in enumerate(sources):
            if not source.data:
                raise InvalidInputError(f"Clip {i} ({source.filename}) is empty")
        total = sum(source.info.duration for source in sources)

        def command(input_names, output_name, token):
            list_name = f"concat_{token}.txt"
            return [(list_name, concat_list(input_names))], compile_concat(list_name, output_name)

        engine_job = EngineJob(
            inputs=[(f"input{i}", s.extension, s.data) for i, s in enumerate(sources)],
            output_extension="mp4",
            command=command,
            mime_type="video/mp4",
            filename="merged.mp4",
            output_duration=total,
            timeout=compute_timeout(len(sources), total, self.settings),
        )
        async with self._acquire():
            return await self._run(engine_job, on_progress, cancel)

    async def render_audio(self, media, bitrate: str = MP3_BITRATE,
                           on_progress: ProgressCallback | None = None,
                           cancel: asyncio.Event | None = None) -> RenderResult:
        """Extract the soundtrack of one clip as audio.mp3."""
        if not media.data:
            raise InvalidInputError("Input media is empty")
        if not media.info.has_audio:
            raise InvalidInputError(f"{media.filename} has no audio stream")
        compile_extract_audio("input", "audio.mp3", bitrate)  # rejects a bad bitrate up front

        def command(input_names, output_name, token):
            return [], compile_extract_audio(input_names[0], output_name, bitrate)

        engine_job = EngineJob(
            inputs=[("input", media.extension, media.data)],
            output_extension="mp3",
            command=command,
            mime_type="audio/mpeg",
            filename="audio.mp3",
            output_duration=media.info.duration,
            timeout=compute_timeout(1, media.info.duration, self.settings),
        )
        async with self._acquire():
            return await self._run(engine_job, on_progress, cancel)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _acquire(self) -> asyncio.Lock:
        if self.settings.busy_policy == "reject" and self.handle.busy:
            raise EngineBusyError("Another export is already running")
        return self.handle.lock

    def _export_job(self, job, instructions: InstructionList, filename: str) -> EngineJob:
        inputs = [("input", job.media.extension, job.media.data)]
        inputs += [(f"audio{i}", t.extension, t.data) for i, t in enumerate(job.audio_tracks)]

        def command(input_names, output_name, token):
            return [], instructions.to_ffmpeg_args(input_names[0], output_name, input_names[1:], job.encode)

        return EngineJob(
            inputs=inputs,
            output_extension=job.encode.extension,
            command=command,
            mime_type=job.encode.mime_type,
            filename=filename,
            output_duration=instructions.output_duration,
            timeout=compute_timeout(len(instructions), job.media.info.duration, self.settings),
        )

    async def _run(self, job: EngineJob, on_progress: ProgressCallback | None,
                   cancel: asyncio.Event | None) -> RenderResult:
        self.state_history = []
        self._set_state(self.handle.state)
        tracker = _ProgressTracker(on_progress, total_time=job.output_duration)
        attempts_allowed = self.settings.max_retries + 1
        started = time.monotonic()
        last_error: ClipCraftError | None = None

        for attempt in range(1, attempts_allowed + 1):
            if attempt > 1:
                delay = self.settings.retry_backoff_sec * 2 ** (attempt - 2)
                logger.info("Retrying render (attempt %d/%d) in %.1fs", attempt, attempts_allowed, delay)
                if delay > 0:
                    await asyncio.sleep(delay)
            try:
                data, warnings = await self._attempt(job, tracker, cancel)
            except (InvalidInputError, EmptyOutputError, RenderCancelledError):
                raise
            except ClipCraftError as e:
                if not e.retryable:
                    raise
                last_error = e
                logger.warning("Render attempt %d/%d failed [%s]: %s", attempt, attempts_allowed, e.kind, e)
                if isinstance(e, (InitializationFailedError, RenderTimeoutError)):
                    self.handle.mark_unhealthy()
                continue

            elapsed = time.monotonic() - started
            tracker.emit(PROGRESS_DONE, "Processing complete", job.output_duration)
            logger.info("Render succeeded: %s, %d bytes in %.1fs (attempt %d)",
                        job.filename, len(data), elapsed, attempt)
            return RenderResult(
                data=data,
                mime_type=job.mime_type,
                filename=job.filename,
                attempts=attempt,
                elapsed=elapsed,
                warnings=warnings,
            )

        raise RenderFailedError(
            f"Render failed after {attempts_allowed} attempt(s): {last_error}",
            cause=last_error, attempts=attempts_allowed,
        ) from last_error

    async def _attempt(self, job: EngineJob, tracker: _ProgressTracker, cancel: asyncio.Event | None):
        """One pass through Initializing/Ready -> Submitting -> Running -> terminal.

        Staging, the engine run and the output read share one deadline.
        """
        if cancel is not None and cancel.is_set():
            self._set_state(RenderState.CANCELLED)
            raise RenderCancelledError("Export cancelled before start")

        if not self.handle.ready:
            self._set_state(RenderState.INITIALIZING)
            await self._guard(self.handle.initialize(self.settings.timeout_base_sec))
            self._set_state(RenderState.READY)

        loop = asyncio.get_running_loop()
        deadline = _Deadline(loop.time() + job.timeout, job.timeout)
        token = uuid.uuid4().hex[:12]
        input_names = [f"{prefix}_{token}.{ext}" for prefix, ext, _ in job.inputs]
        output_name = f"output_{token}.{job.output_extension}"
        staged: list[str] = []
        warnings: list[ResourceCleanupWarning] = []

        try:
            self._set_state(RenderState.SUBMITTING)
            tracker.emit(PROGRESS_PREPARING, "Preparing input file...")
            for name, (_, _, payload) in zip(input_names, job.inputs):
                staged.append(name)
                await self._bounded(self.engine.write_file(name, payload), deadline, cancel)
            tracker.emit(PROGRESS_STAGED, "Input file loaded")

            extra_files, args = job.command(input_names, output_name, token)
            for name, payload in extra_files:
                staged.append(name)
                await self._bounded(self.engine.write_file(name, payload), deadline, cancel)
            tracker.emit(PROGRESS_COMPILED, "Filters applied")

            self._set_state(RenderState.RUNNING)
            staged.append(output_name)
            tracker.emit(PROGRESS_RUNNING, "Executing FFmpeg command")
            ticker = asyncio.ensure_future(self._tick(tracker, loop.time(), job.output_duration))
            try:
                await self._bounded(self.engine.exec(args), deadline, cancel)
            finally:
                ticker.cancel()

            tracker.emit(PROGRESS_READING, "Reading output file")
            data = await self._bounded(self.engine.read_file(output_name), deadline, cancel)
            if not data:
                raise EmptyOutputError("Export produced an empty file (0 bytes)")
            self._set_state(RenderState.SUCCEEDED)
        except RenderTimeoutError:
            self._set_state(RenderState.TIMED_OUT)
            raise
        except (RenderCancelledError, asyncio.CancelledError):
            self._set_state(RenderState.CANCELLED)
            raise
        except BaseException:
            self._set_state(RenderState.FAILED)
            raise
        finally:
            if self.state == RenderState.SUCCEEDED:
                tracker.emit(PROGRESS_CLEANUP, "Cleaning up")
            warnings = await self._cleanup(staged)

        return data, warnings

    async def _guard(self, coro):
        """Await an engine lifecycle call, classifying unknown errors."""
        try:
            return await coro
        except ClipCraftError:
            raise
        except Exception as e:
            raise InitializationFailedError(f"Engine failed to start: {e}") from e

    async def _engine_call(self, coro):
        """Await an engine file/exec call, classifying unknown errors."""
        try:
            return await coro
        except ClipCraftError:
            raise
        except Exception as e:
            raise EngineExecutionFailedError(f"Engine error: {e}") from e

    async def _bounded(self, coro, deadline: "_Deadline", cancel: asyncio.Event | None):
        """Race one engine call against the attempt deadline and the cancel signal.

        On timeout or cancel the engine call is abandoned, not awaited.
        """
        loop = asyncio.get_running_loop()
        call = asyncio.ensure_future(self._engine_call(coro))
        cancel_task = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        waiters = {call} if cancel_task is None else {call, cancel_task}

        try:
            done, _ = await asyncio.wait(waiters, timeout=max(0.0, deadline.at - loop.time()),
                                         return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._abandon(call)
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if call in done:
            return call.result()

        self._abandon(call)
        if cancel_task is not None and cancel_task in done:
            logger.info("Export cancelled; abandoning engine call")
            raise RenderCancelledError("Export cancelled")
        logger.warning("Render timed out after %.1fs", deadline.timeout)
        raise RenderTimeoutError(f"Render timed out after {deadline.timeout:.0f}s", timeout=deadline.timeout)

    @staticmethod
    def _abandon(task: asyncio.Future) -> None:
        task.cancel()
        task.add_done_callback(_consume_result)

    async def _tick(self, tracker: _ProgressTracker, started: float, total_time: float) -> None:
        expected = max(MIN_EXPECTED_RUN_SEC, total_time)
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.settings.progress_interval_sec)
            elapsed = loop.time() - started
            pct = estimate_progress(elapsed, expected)
            span = PROGRESS_RUNNING_CAP - PROGRESS_RUNNING
            position = total_time * (pct - PROGRESS_RUNNING) / span
            tracker.emit(pct, "Processing video...", position)

    async def _cleanup(self, names: list[str]) -> list[ResourceCleanupWarning]:
        """Best-effort delete of staged files. Failures are logged, never raised."""
        warnings = []
        for name in names:
            try:
                await asyncio.wait_for(self.engine.delete_file(name),
                                       timeout=self.settings.cleanup_timeout_sec)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                warning = ResourceCleanupWarning(name, str(e) or type(e).__name__)
                logger.warning("Cleanup warning (non-critical): %s", warning)
                warnings.append(warning)
        return warnings


def _validate_job(job) -> None:
    if not job.media.data:
        raise InvalidInputError("Input media is empty")
    for track in job.audio_tracks:
        if not track.data:
            raise InvalidInputError(f"Audio track '{track.name}' has no data")
