"""
ClipCraft — Render Orchestrator Tests
State machine, progress, timeouts, retries, cleanup and busy policy,
all against the in-memory FakeEngine from conftest.

Run with: pytest tests/test_orchestrator.py -v
"""

import asyncio
import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import HANG
from core.compiler import compile_job
from core.edits import AudioTrack, Split, Trim
from core.errors import (
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
from core.export_models import ExportJob, MediaInfo, MediaSource
from core.ledger import EditLedger, MaterializedState
from core.orchestrator import (
    PROGRESS_RUNNING,
    PROGRESS_RUNNING_CAP,
    EngineHandle,
    RenderOrchestrator,
    RenderState,
    compute_timeout,
    estimate_progress,
)
from core.settings import RenderSettings


def _orchestrator(engine, settings):
    return RenderOrchestrator(EngineHandle(engine), settings)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestEstimator:

    def test_monotonic_and_bounded(self):
        values = [estimate_progress(t / 10.0, expected=5.0) for t in range(0, 600)]
        assert values[0] == PROGRESS_RUNNING
        assert all(b >= a for a, b in zip(values, values[1:]))
        assert all(v < PROGRESS_RUNNING_CAP for v in values)

    def test_compute_timeout(self, job):
        settings = RenderSettings(timeout_base_sec=120, timeout_per_instruction=10,
                                  timeout_per_media_sec=2, timeout_max_sec=300)
        instructions = compile_job(job)
        expected = 120 + 10 * len(instructions) + 2 * 30
        assert compute_timeout(len(instructions), 30, settings) == expected
        assert compute_timeout(len(instructions), 3600, settings) == 300


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestSuccess:

    def test_render_succeeds(self, job, engine_factory, fast_settings):
        engine = engine_factory()
        orch = _orchestrator(engine, fast_settings)
        result = asyncio.run(orch.render(job))
        assert result.data == engine.output
        assert result.mime_type == "video/mp4"
        assert result.filename == "output.mp4"
        assert result.attempts == 1
        assert result.warnings == []
        assert orch.state == RenderState.SUCCEEDED
        assert orch.state_history[-4:] == [
            RenderState.READY, RenderState.SUBMITTING, RenderState.RUNNING, RenderState.SUCCEEDED,
        ]

    def test_progress_monotonic_ending_at_100(self, job, engine_factory, fast_settings):
        engine = engine_factory(exec_delay=0.05)
        seen = []
        asyncio.run(_orchestrator(engine, fast_settings).render(job, on_progress=seen.append))
        pcts = [p.percentage for p in seen]
        assert pcts == sorted(pcts)
        assert pcts[-1] == 100
        assert all(p < 100 for p in pcts[:-1])
        assert seen[0].stage == "Preparing input file..."
        assert seen[-1].stage == "Processing complete"
        assert any(p.stage == "Processing video..." for p in seen)

    def test_progress_callback_errors_ignored(self, job, engine_factory, fast_settings):
        callback = MagicMock(side_effect=RuntimeError("ui gone"))
        result = asyncio.run(_orchestrator(engine_factory(), fast_settings).render(job, on_progress=callback))
        assert result.attempts == 1
        assert callback.called

    def test_staged_names_are_unique_and_cleaned(self, job, engine_factory, fast_settings):
        engine = engine_factory()
        orch = _orchestrator(engine, fast_settings)
        asyncio.run(orch.render(job))
        asyncio.run(orch.render(job))
        inputs = [n for n in engine.deleted if n.startswith("input_")]
        assert len(inputs) == len(set(inputs)) == 2
        assert engine.files == {}

    def test_engine_loaded_once_and_reused(self, job, engine_factory, fast_settings):
        engine = engine_factory()
        orch = _orchestrator(engine, fast_settings)
        asyncio.run(orch.render(job))
        asyncio.run(orch.render(job))
        assert engine.load_count == 1

    def test_audio_tracks_staged(self, media, engine_factory, fast_settings):
        job = ExportJob.from_state(MaterializedState(), media, audio_tracks=[AudioTrack(name="bgm", data=b"id3")])
        engine = engine_factory()
        asyncio.run(_orchestrator(engine, fast_settings).render(job))
        args = engine.exec_args[0]
        staged = [a for a in args if a.startswith("audio0_")]
        assert len(staged) == 1 and staged[0].endswith(".mp3")
        assert "-filter_complex" in args


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidation:

    def test_invalid_trim_never_touches_engine(self, media, engine_factory, fast_settings):
        engine = engine_factory()
        state = EditLedger([Trim(start=45, end=50)]).materialize()
        job = ExportJob.from_state(state, media)
        with pytest.raises(InvalidInputError):
            asyncio.run(_orchestrator(engine, fast_settings).render(job))
        assert engine.calls == []

    def test_empty_media_rejected(self, source_info, engine_factory, fast_settings):
        engine = engine_factory()
        job = ExportJob.from_state(MaterializedState(), MediaSource(data=b"", info=source_info))
        with pytest.raises(InvalidInputError):
            asyncio.run(_orchestrator(engine, fast_settings).render(job))
        assert engine.calls == []


# ---------------------------------------------------------------------------
# Failures, retries, timeouts
# ---------------------------------------------------------------------------

class TestFailures:

    def test_timeout_cleans_up_once(self, job, engine_factory):
        settings = RenderSettings(timeout_base_sec=0.05, timeout_max_sec=0.05, timeout_per_instruction=0,
                                  timeout_per_media_sec=0, max_retries=0, progress_interval_sec=0.01,
                                  retry_backoff_sec=0)
        engine = engine_factory(exec_effects=[HANG])
        orch = _orchestrator(engine, settings)
        with pytest.raises(RenderFailedError) as exc_info:
            asyncio.run(orch.render(job))
        assert isinstance(exc_info.value.cause, RenderTimeoutError)
        assert exc_info.value.cause_kind == "timed_out"
        assert exc_info.value.attempts == 1
        assert RenderState.TIMED_OUT in orch.state_history
        assert len(engine.deleted) == len(set(engine.deleted)) == 2
        assert orch.handle.state == RenderState.UNINITIALIZED

    @pytest.mark.parametrize("call,deleted", [("write_file", 1), ("read_file", 2)])
    def test_hanging_file_call_times_out(self, job, engine_factory, call, deleted):
        settings = RenderSettings(timeout_base_sec=0.05, timeout_max_sec=0.05, timeout_per_instruction=0,
                                  timeout_per_media_sec=0, max_retries=0, progress_interval_sec=0.01,
                                  retry_backoff_sec=0, cleanup_timeout_sec=0.5)
        engine = engine_factory(hang_on=[call])
        orch = _orchestrator(engine, settings)
        with pytest.raises(RenderFailedError) as exc_info:
            asyncio.run(asyncio.wait_for(orch.render(job), timeout=5))
        assert isinstance(exc_info.value.cause, RenderTimeoutError)
        assert RenderState.TIMED_OUT in orch.state_history
        assert len(engine.deleted) == deleted
        assert engine.deleted[0].startswith("input_")
        assert orch.handle.state == RenderState.UNINITIALIZED

    def test_staging_and_run_share_one_deadline(self, job, engine_factory):
        settings = RenderSettings(timeout_base_sec=0.15, timeout_max_sec=0.15, timeout_per_instruction=0,
                                  timeout_per_media_sec=0, max_retries=0, progress_interval_sec=0.01,
                                  retry_backoff_sec=0)

        class SlowWriteEngine(engine_factory):
            async def write_file(self, name, data):
                await asyncio.sleep(0.1)
                await super().write_file(name, data)

        engine = SlowWriteEngine(exec_delay=0.1)
        with pytest.raises(RenderFailedError) as exc_info:
            asyncio.run(_orchestrator(engine, settings).render(job))
        assert isinstance(exc_info.value.cause, RenderTimeoutError)
        assert engine.exec_count == 1

    def test_retry_then_success(self, job, engine_factory, fast_settings):
        engine = engine_factory(exec_effects=[EngineExecutionFailedError("boom"), None])
        result = asyncio.run(_orchestrator(engine, fast_settings).render(job))
        assert result.attempts == 2
        assert engine.exec_count == 2
        assert engine.load_count == 1

    def test_timeout_reinitializes_engine(self, job, engine_factory):
        settings = RenderSettings(timeout_base_sec=0.1, timeout_max_sec=0.1, timeout_per_instruction=0,
                                  timeout_per_media_sec=0, max_retries=1, progress_interval_sec=0.01,
                                  retry_backoff_sec=0)
        engine = engine_factory(exec_effects=[HANG, None])
        result = asyncio.run(_orchestrator(engine, settings).render(job))
        assert result.attempts == 2
        assert engine.load_count == 2

    def test_retries_exhausted(self, job, engine_factory, fast_settings):
        errors = [EngineExecutionFailedError("boom", stderr="bad filter")] * 3
        engine = engine_factory(exec_effects=errors)
        with pytest.raises(RenderFailedError) as exc_info:
            asyncio.run(_orchestrator(engine, fast_settings).render(job))
        assert exc_info.value.attempts == 3
        assert exc_info.value.cause.stderr == "bad filter"
        assert engine.exec_count == 3

    def test_init_failure_retried(self, job, engine_factory, fast_settings):
        engine = engine_factory(load_errors=[InitializationFailedError("no wasm"), None])
        result = asyncio.run(_orchestrator(engine, fast_settings).render(job))
        assert result.attempts == 2
        assert engine.load_count == 2

    def test_unknown_load_error_classified(self, job, engine_factory, fast_settings):
        settings = fast_settings.model_copy(update={"max_retries": 0})
        engine = engine_factory(load_errors=[OSError("disk")])
        with pytest.raises(RenderFailedError) as exc_info:
            asyncio.run(_orchestrator(engine, settings).render(job))
        assert isinstance(exc_info.value.cause, InitializationFailedError)

    def test_empty_output_not_retried(self, job, engine_factory, fast_settings):
        engine = engine_factory(output=b"")
        orch = _orchestrator(engine, fast_settings)
        with pytest.raises(EmptyOutputError):
            asyncio.run(orch.render(job))
        assert engine.exec_count == 1
        assert orch.state == RenderState.FAILED
        assert len(engine.deleted) == 2

    def test_cleanup_failure_is_only_a_warning(self, job, engine_factory, fast_settings):
        engine = engine_factory(delete_error=OSError("locked"))
        result = asyncio.run(_orchestrator(engine, fast_settings).render(job))
        assert result.data == engine.output
        assert len(result.warnings) == 2
        assert all(isinstance(w, ResourceCleanupWarning) for w in result.warnings)
        assert "locked" in str(result.warnings[0])


# ---------------------------------------------------------------------------
# Cancel & busy policy
# ---------------------------------------------------------------------------

class TestConcurrency:

    def test_cancel_abandons_engine(self, job, engine_factory, fast_settings):
        engine = engine_factory(exec_effects=[HANG])
        orch = _orchestrator(engine, fast_settings)

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, cancel.set)
            await orch.render(job, cancel=cancel)

        with pytest.raises(RenderCancelledError):
            asyncio.run(scenario())
        assert orch.state == RenderState.CANCELLED
        assert engine.exec_count == 1
        assert len(engine.deleted) == 2

    def test_cancel_while_staging(self, job, engine_factory, fast_settings):
        engine = engine_factory(hang_on=["write_file"])
        orch = _orchestrator(engine, fast_settings)

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, cancel.set)
            await orch.render(job, cancel=cancel)

        with pytest.raises(RenderCancelledError):
            asyncio.run(scenario())
        assert orch.state == RenderState.CANCELLED
        assert engine.exec_count == 0
        assert engine.deleted == engine.written

    def test_reject_policy(self, job, engine_factory, fast_settings):
        settings = fast_settings.model_copy(update={"busy_policy": "reject"})
        engine = engine_factory()
        orch = _orchestrator(engine, settings)

        async def scenario():
            async with orch.handle.lock:
                with pytest.raises(EngineBusyError):
                    await orch.render(job)

        asyncio.run(scenario())
        assert engine.calls == []

    def test_queue_policy_serializes(self, job, engine_factory, fast_settings):
        engine = engine_factory(exec_delay=0.03)
        handle = EngineHandle(engine)
        first = RenderOrchestrator(handle, fast_settings)
        second = RenderOrchestrator(handle, fast_settings)

        async def scenario():
            return await asyncio.gather(first.render(job), second.render(job))

        results = asyncio.run(scenario())
        assert [r.attempts for r in results] == [1, 1]
        assert engine.max_active == 1
        assert engine.load_count == 1


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------

class TestSegments:

    def test_render_segments(self, media, engine_factory, fast_settings):
        state = EditLedger([Split(points=[10, 25])]).materialize()
        job = ExportJob.from_state(state, media, resolution="720p")
        engine = engine_factory()
        results = asyncio.run(_orchestrator(engine, fast_settings).render_segments(job))
        assert [r.filename for r in results] == ["segment_0.mp4", "segment_1.mp4", "segment_2.mp4"]
        assert engine.exec_count == 3
        durations = [args[args.index("-t") + 1] for args in engine.exec_args]
        assert durations == ["10", "15", "5"]


# ---------------------------------------------------------------------------
# Merge & audio extraction
# ---------------------------------------------------------------------------

class TestMergeAndAudio:

    def test_render_merge(self, media, source_info, engine_factory, fast_settings):
        second = MediaSource(data=b"second-clip", filename="b.mov", info=source_info)

        class RecordingEngine(engine_factory):
            async def exec(self, args):
                self.concat_text = self.files[args[args.index("-i") + 1]].decode()
                await super().exec(args)

        engine = RecordingEngine()
        result = asyncio.run(_orchestrator(engine, fast_settings).render_merge([media, second]))
        args = engine.exec_args[0]
        assert args[:4] == ["-f", "concat", "-safe", "0"]
        assert args[args.index("-c") + 1] == "copy"
        inputs = [n for n in engine.written if n.startswith("input")]
        assert inputs[0].startswith("input0_") and inputs[0].endswith(".mp4")
        assert inputs[1].startswith("input1_") and inputs[1].endswith(".mov")
        assert engine.concat_text.splitlines() == [f"file '{n}'" for n in inputs]
        assert any(n.startswith("concat_") for n in engine.deleted)
        assert result.filename == "merged.mp4"
        assert result.mime_type == "video/mp4"
        assert engine.files == {}

    def test_merge_rejects_empty_input(self, source_info, engine_factory, fast_settings):
        engine = engine_factory()
        orch = _orchestrator(engine, fast_settings)
        with pytest.raises(InvalidInputError):
            asyncio.run(orch.render_merge([]))
        with pytest.raises(InvalidInputError):
            asyncio.run(orch.render_merge([MediaSource(data=b"", info=source_info)]))
        assert engine.calls == []

    def test_render_audio(self, media, engine_factory, fast_settings):
        engine = engine_factory(output=b"ID3fake")
        result = asyncio.run(_orchestrator(engine, fast_settings).render_audio(media))
        args = engine.exec_args[0]
        assert "-vn" in args
        assert args[args.index("-acodec") + 1] == "libmp3lame"
        assert args[args.index("-ab") + 1] == "192k"
        assert args[-1].endswith(".mp3")
        assert (result.filename, result.mime_type, result.data) == ("audio.mp3", "audio/mpeg", b"ID3fake")

    def test_audio_needs_a_soundtrack(self, engine_factory, fast_settings):
        silent = MediaSource(data=b"x", filename="silent.mp4",
                             info=MediaInfo(width=640, height=360, duration=5, has_audio=False))
        engine = engine_factory()
        orch = _orchestrator(engine, fast_settings)
        with pytest.raises(InvalidInputError, match="no audio"):
            asyncio.run(orch.render_audio(silent))
        with pytest.raises(InvalidInputError):
            asyncio.run(orch.render_audio(MediaSource(data=b"x", info=MediaInfo(width=640, height=360,
                                                                                duration=5, has_audio=True)),
                                          bitrate="1k"))
        assert engine.calls == []
