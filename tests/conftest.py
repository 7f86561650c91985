"""
Conftest: shared fixtures for all ClipCraft test modules.

1. Synthetic frames (gradient, not blank) for kernel tests
2. FakeEngine: scriptable in-memory render engine (no ffmpeg needed)
3. Fast RenderSettings so timeout/retry tests finish in milliseconds
"""

import asyncio
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import EngineExecutionFailedError
from core.export_models import ExportJob, MediaInfo, MediaSource
from core.ledger import MaterializedState
from core.settings import RenderSettings

HANG = "hang"


def _make_test_frame(width=64, height=48):
    """Generate a synthetic RGB test frame (gradient, not blank)."""
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:, :, 0] = np.linspace(0, 255, width, dtype=np.uint8)[None, :]  # R gradient
    frame[:, :, 1] = np.linspace(0, 255, height, dtype=np.uint8)[:, None]  # G gradient
    frame[:, :, 2] = np.linspace(255, 0, width, dtype=np.uint8)[None, :]  # B inverse
    return frame


class FakeEngine:
    """In-memory RenderEngine.

    exec_effects is consumed one entry per exec() call:
        None       -> success, writes `output` to the last arg (the output name)
        HANG       -> never resolves (until cancelled)
        Exception  -> raised
    load_errors is consumed one entry per load() call the same way.
    hang_on names file calls ("write_file", "read_file") that never resolve.
    """

    def __init__(self, output=b"\x00\x00\x00\x18ftypmp42fake", exec_effects=None,
                 load_errors=None, delete_error=None, exec_delay=0.0, hang_on=()):
        self.output = output
        self.exec_effects = list(exec_effects or [])
        self.load_errors = list(load_errors or [])
        self.delete_error = delete_error
        self.exec_delay = exec_delay
        self.hang_on = set(hang_on)
        self.written = []
        self.files = {}
        self.calls = []
        self.exec_args = []
        self.deleted = []
        self.load_count = 0
        self.exec_count = 0
        self.active = 0
        self.max_active = 0

    async def load(self):
        self.calls.append("load")
        self.load_count += 1
        if self.load_errors:
            error = self.load_errors.pop(0)
            if error is not None:
                raise error

    async def write_file(self, name, data):
        self.calls.append("write")
        self.written.append(name)
        if "write_file" in self.hang_on:
            await asyncio.Event().wait()
        self.files[name] = bytes(data)

    async def exec(self, args):
        self.calls.append("exec")
        self.exec_count += 1
        self.exec_args.append(list(args))
        effect = self.exec_effects.pop(0) if self.exec_effects else None
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if effect == HANG:
                await asyncio.Event().wait()
            if self.exec_delay:
                await asyncio.sleep(self.exec_delay)
            if isinstance(effect, BaseException):
                raise effect
            self.files[args[-1]] = self.output
        finally:
            self.active -= 1

    async def read_file(self, name):
        self.calls.append("read")
        if "read_file" in self.hang_on:
            await asyncio.Event().wait()
        if name not in self.files:
            raise EngineExecutionFailedError(f"no such file {name}")
        return self.files[name]

    async def delete_file(self, name):
        self.calls.append("delete")
        self.deleted.append(name)
        if self.delete_error is not None:
            raise self.delete_error
        self.files.pop(name, None)


@pytest.fixture
def frame():
    """A 64x48 gradient RGB frame."""
    return _make_test_frame()


@pytest.fixture
def rgba_frame():
    """The gradient frame plus a non-trivial alpha ramp."""
    rgb = _make_test_frame()
    alpha = np.linspace(10, 250, rgb.shape[1], dtype=np.uint8)[None, :].repeat(rgb.shape[0], axis=0)
    return np.concatenate([rgb, alpha[:, :, None]], axis=2)


@pytest.fixture
def source_info():
    return MediaInfo(width=1920, height=1080, duration=30.0, fps=30.0, has_audio=True)


@pytest.fixture
def media(source_info):
    return MediaSource(data=b"fake-input-bytes", filename="clip.mp4", info=source_info)


@pytest.fixture
def job(media):
    return ExportJob.from_state(MaterializedState(), media, resolution="720p", aspect="16:9")


@pytest.fixture
def fast_settings():
    """Settings with tiny timeouts and no backoff."""
    return RenderSettings(
        timeout_base_sec=1.0,
        timeout_max_sec=2.0,
        timeout_per_instruction=0.0,
        timeout_per_media_sec=0.0,
        max_retries=2,
        retry_backoff_sec=0.0,
        progress_interval_sec=0.01,
        cleanup_timeout_sec=0.5,
        busy_policy="queue",
    )


@pytest.fixture
def engine_factory():
    return FakeEngine
