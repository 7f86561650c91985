"""
ClipCraft — Media I/O
Probing source clips, grabbing still frames for preview, and image load/save.
Uses FFmpeg/FFprobe subprocesses for codec work and Pillow for stills.
"""

import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path

import numpy as np
from PIL import Image

from core.engine import get_ffmpeg
from core.errors import InitializationFailedError, InvalidInputError

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SEC = 30


def get_ffprobe() -> str:
    """Find FFprobe binary."""
    path = shutil.which("ffprobe")
    if not path:
        raise InitializationFailedError("FFprobe not found. Install with: brew install ffmpeg")
    return path


def parse_probe(data: dict, source: str = "<media>") -> dict:
    """Reduce ffprobe JSON to {width, height, fps, duration, has_audio, codec}."""
    video_stream = None
    has_audio = False
    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        if stream.get("codec_type") == "audio":
            has_audio = True

    if not video_stream:
        raise InvalidInputError(f"No video stream found in {source}")

    fps_parts = video_stream.get("r_frame_rate", "30/1").split("/")
    try:
        fps = float(fps_parts[0]) / float(fps_parts[1]) if len(fps_parts) == 2 else 30.0
    except (ValueError, ZeroDivisionError):
        fps = 30.0

    duration = float(data.get("format", {}).get("duration") or video_stream.get("duration") or 0)
    return {
        "width": int(video_stream["width"]),
        "height": int(video_stream["height"]),
        "fps": fps or 30.0,
        "duration": duration,
        "has_audio": has_audio,
        "codec": video_stream.get("codec_name", "unknown"),
    }


def probe_video(video_path: str) -> dict:
    """Get video metadata: resolution, fps, duration, has_audio."""
    video_path = str(video_path)
    if not Path(video_path).exists():
        raise InvalidInputError(f"File not found: {video_path}")
    cmd = [
        get_ffprobe(),
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        video_path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=PROBE_TIMEOUT_SEC)
    except subprocess.CalledProcessError as e:
        raise InvalidInputError(f"Could not read media file {video_path}") from e
    return parse_probe(json.loads(result.stdout or "{}"), video_path)


def load_frame(frame_path: str) -> np.ndarray:
    """Load an image as a numpy array (H, W, 4) uint8 RGBA."""
    img = Image.open(str(frame_path)).convert("RGBA")
    return np.array(img)


def save_frame(array: np.ndarray, output_path: str):
    """Save an (H, W, 3) RGB or (H, W, 4) RGBA array. JPEG output drops alpha."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.fromarray(np.clip(array, 0, 255).astype(np.uint8))
    if output_path.suffix.lower() in (".jpg", ".jpeg") and img.mode == "RGBA":
        img = img.convert("RGB")
    img.save(str(output_path))


def extract_single_frame(video_path: str, timestamp: float = 0.0, ffmpeg_path: str | None = None) -> np.ndarray:
    """Extract a single frame (RGBA) at `timestamp` seconds. Doesn't decode the whole video."""
    video_path = str(video_path)
    info = probe_video(video_path)
    timestamp = max(0.0, min(float(timestamp), max(0.0, info["duration"] - 1.0 / info["fps"])))

    with tempfile.NamedTemporaryFile(suffix=".png", delete=False) as tmp:
        tmp_path = tmp.name

    try:
        cmd = [
            get_ffmpeg(ffmpeg_path),
            "-ss", f"{timestamp:.3f}",
            "-i", video_path,
            "-frames:v", "1",
            "-y",
            tmp_path,
        ]
        logger.debug("Extracting frame at %.3fs from %s", timestamp, video_path)
        subprocess.run(cmd, capture_output=True, check=True, timeout=PROBE_TIMEOUT_SEC)
        return load_frame(tmp_path)
    finally:
        Path(tmp_path).unlink(missing_ok=True)
