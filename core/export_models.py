"""
ClipCraft -- Export Models

Pydantic models describing one export request: source media, target
resolution/aspect, encoder flags and the materialized edit state.
Every encoder option maps 1:1 to an FFmpeg flag.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Optional

from pydantic import ConfigDict, Field, field_validator

from core.bundle import FilterBundle
from core.edits import AudioTrack, CheckedModel, TextOverlay, Transition
from core.errors import InvalidInputError
from core.ledger import MaterializedState


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ExportFormat(str, Enum):
    """Output container / format."""
    MP4 = "mp4"    # H.264 + AAC -- web/social (default)
    MOV = "mov"    # H.264 + AAC in QuickTime -- editing handoff
    WEBM = "webm"  # VP9 + Opus -- web embedding


class H264Preset(str, Enum):
    """Encoding speed vs. compression efficiency tradeoff.

    Does NOT affect visual quality -- only file size and encode time.
    """
    ULTRAFAST = "ultrafast"  # ~10x speed, ~150% file size
    SUPERFAST = "superfast"
    VERYFAST = "veryfast"
    FASTER = "faster"
    FAST = "fast"
    MEDIUM = "medium"        # 1x baseline
    SLOW = "slow"


MIME_TYPES = {
    ExportFormat.MP4: "video/mp4",
    ExportFormat.MOV: "video/quicktime",
    ExportFormat.WEBM: "video/webm",
}

# Symbolic resolution -> landscape (width, height)
RESOLUTION_DIMENSIONS: dict[str, tuple[int, int]] = {
    "480p": (854, 480),
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "2K": (2560, 1440),
    "4K": (3840, 2160),
}

RESOLUTION_ALIASES = {
    "1440p": "2K",
    "2160p": "4K",
    "2k": "2K",
    "4k": "4K",
    "uhd": "4K",
}

ASPECT_RATIOS = ("source", "16:9", "9:16", "1:1")


def normalize_resolution(name: str) -> str:
    """'1440p' -> '2K', '4k' -> '4K'. Raises InvalidInputError if unknown."""
    if name == "source" or name in RESOLUTION_DIMENSIONS:
        return name
    alias = RESOLUTION_ALIASES.get(name) or RESOLUTION_ALIASES.get(name.lower())
    if alias:
        return alias
    available = ", ".join(["source", *RESOLUTION_DIMENSIONS])
    raise InvalidInputError(f"Unknown resolution '{name}'. Available: {available}")


def resolve_dimensions(
    resolution: str, aspect: str, source_width: int, source_height: int
) -> Optional[tuple[int, int]]:
    """Target (width, height) for a resolution/aspect pair.

    Returns None when both are 'source' (no scaling needed). Portrait
    aspect swaps the preset dimensions; square uses the short side.
    Dimensions are rounded up to even numbers for H.264.
    """
    resolution = normalize_resolution(resolution)
    if aspect not in ASPECT_RATIOS:
        raise InvalidInputError(f"Unknown aspect ratio '{aspect}'. Available: {', '.join(ASPECT_RATIOS)}")
    if resolution == "source" and aspect == "source":
        return None

    if resolution == "source":
        long_side = max(source_width, source_height)
        short_side = min(source_width, source_height)
    else:
        long_side, short_side = RESOLUTION_DIMENSIONS[resolution]

    if aspect == "16:9":
        w, h = long_side, short_side
    elif aspect == "9:16":
        w, h = short_side, long_side
    elif aspect == "1:1":
        w, h = short_side, short_side
    else:
        # Keep the source shape, sized by the preset's short side
        if source_width >= source_height:
            h = short_side
            w = round(short_side * source_width / source_height)
        else:
            w = short_side
            h = round(short_side * source_height / source_width)

    w += w % 2
    h += h % 2
    return max(16, w), max(16, h)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------

class EncodeSettings(CheckedModel):
    """Encoder configuration.

    FFmpeg flags (mp4/mov):
        -c:v libx264 -preset {preset} -crf {crf} -pix_fmt yuv420p
        -movflags +faststart -c:a aac -b:a {audio_bitrate}
    FFmpeg flags (webm):
        -c:v libvpx-vp9 -crf {crf} -b:v 0 -c:a libopus -b:a {audio_bitrate}
    """
    format: ExportFormat = Field(default=ExportFormat.MP4, description="Output container.")
    preset: H264Preset = Field(
        default=H264Preset.ULTRAFAST,
        description="libx264 speed preset. In-app exports favor speed.",
    )
    crf: int = Field(
        default=30,
        ge=0,
        le=51,
        description="Constant Rate Factor. 18=visually transparent, 23=default, 30=fast draft.",
    )
    audio_bitrate: str = Field(default="192k", description="Audio bitrate when re-encoding.")
    faststart: bool = Field(default=True, description="Move the moov atom up front for streaming.")

    VALID_BITRATES: ClassVar[tuple[str, ...]] = ("64k", "96k", "128k", "160k", "192k", "256k", "320k")

    @field_validator("audio_bitrate")
    @classmethod
    def _check_bitrate(cls, value: str) -> str:
        if value not in cls.VALID_BITRATES:
            raise InvalidInputError(
                f"Audio bitrate '{value}' not valid. Choose from: {', '.join(cls.VALID_BITRATES)}"
            )
        return value

    @property
    def extension(self) -> str:
        return self.format.value

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self.format]

    def video_args(self) -> list[str]:
        if self.format == ExportFormat.WEBM:
            return ["-c:v", "libvpx-vp9", "-crf", str(self.crf), "-b:v", "0"]
        args = ["-c:v", "libx264", "-preset", self.preset.value, "-crf", str(self.crf),
                "-pix_fmt", "yuv420p"]
        if self.faststart:
            args += ["-movflags", "+faststart"]
        return args

    def audio_args(self) -> list[str]:
        codec = "libopus" if self.format == ExportFormat.WEBM else "aac"
        return ["-c:a", codec, "-b:a", self.audio_bitrate]


class MediaInfo(CheckedModel):
    """What the compiler needs to know about the source clip."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    duration: float = Field(gt=0.0)
    fps: float = Field(default=30.0, gt=0.0)
    has_audio: bool = True

    @classmethod
    def from_probe(cls, info: dict) -> "MediaInfo":
        """Build from core.video_io.probe_video() output."""
        return cls(
            width=info["width"],
            height=info["height"],
            duration=info["duration"],
            fps=info.get("fps") or 30.0,
            has_audio=bool(info.get("has_audio", False)),
        )


class MediaSource(CheckedModel):
    """Input bytes plus their metadata."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    filename: str = "input.mp4"
    info: MediaInfo

    @property
    def extension(self) -> str:
        ext = self.filename.rsplit(".", 1)[-1].lower() if "." in self.filename else "mp4"
        return ext if ext.isalnum() else "mp4"


# ---------------------------------------------------------------------------
# Export job
# ---------------------------------------------------------------------------

class ExportJob(CheckedModel):
    """One export request. Built fresh from the ledger for every export.

    Quick start:
        job = ExportJob.from_state(ledger.materialize(), media,
                                   resolution="1080p", aspect="16:9")
    """

    model_config = ConfigDict(frozen=True)

    media: MediaSource
    resolution: str = "1080p"
    aspect: str = "16:9"
    state: MaterializedState = Field(default_factory=MaterializedState)
    audio_tracks: tuple[AudioTrack, ...] = ()
    encode: EncodeSettings = Field(default_factory=EncodeSettings)

    @field_validator("resolution")
    @classmethod
    def _check_resolution(cls, value: str) -> str:
        return normalize_resolution(value)

    @field_validator("aspect")
    @classmethod
    def _check_aspect(cls, value: str) -> str:
        if value not in ASPECT_RATIOS:
            raise InvalidInputError(f"Unknown aspect ratio '{value}'")
        return value

    @classmethod
    def from_state(
        cls,
        state: MaterializedState,
        media: MediaSource,
        resolution: str = "1080p",
        aspect: str = "16:9",
        audio_tracks=(),
        encode: EncodeSettings | None = None,
    ) -> "ExportJob":
        return cls(
            media=media,
            resolution=resolution,
            aspect=aspect,
            state=state,
            audio_tracks=tuple(audio_tracks),
            encode=encode or EncodeSettings(),
        )

    @property
    def filters(self) -> FilterBundle:
        return self.state.filters

    @property
    def overlays(self) -> tuple[TextOverlay, ...]:
        return self.state.overlays

    @property
    def transitions(self) -> tuple[Transition, ...]:
        return self.state.transitions

    @property
    def speed(self) -> float:
        return self.state.speed

    @property
    def output_duration(self) -> float:
        """Approximate rendered duration in seconds (trim and speed applied)."""
        if self.state.trim is not None:
            span = min(self.state.trim.end, self.media.info.duration) - self.state.trim.start
        else:
            span = self.media.info.duration
        return max(0.0, span) / self.state.speed


# ---------------------------------------------------------------------------
# Built-in Encode Presets
# ---------------------------------------------------------------------------

EXPORT_PRESETS: dict[str, dict] = {
    "quick_preview": {"format": "mp4", "preset": "ultrafast", "crf": 32, "audio_bitrate": "128k"},
    "social_media": {"format": "mp4", "preset": "veryfast", "crf": 23, "audio_bitrate": "192k"},
    "high_quality": {"format": "mp4", "preset": "slow", "crf": 18, "audio_bitrate": "256k"},
    "editing": {"format": "mov", "preset": "fast", "crf": 16, "audio_bitrate": "320k"},
    "web": {"format": "webm", "crf": 32, "audio_bitrate": "128k"},
}


def encode_preset(name: str) -> EncodeSettings:
    """EncodeSettings for a named preset.

    Raises:
        KeyError: If the preset name is not found.
    """
    if name not in EXPORT_PRESETS:
        available = ", ".join(sorted(EXPORT_PRESETS.keys()))
        raise KeyError(f"Unknown preset '{name}'. Available: {available}")
    return EncodeSettings(**EXPORT_PRESETS[name])


def list_encode_presets() -> list[dict]:
    """Return [{name, format, crf, audio_bitrate}] for every built-in encode preset."""
    return [
        {"name": name, "format": cfg["format"], "crf": cfg["crf"], "audio_bitrate": cfg["audio_bitrate"]}
        for name, cfg in EXPORT_PRESETS.items()
    ]
