"""
ClipCraft — Edit Records
Text overlays, transitions, audio tracks and the EditAction variants the
ledger stores. Every record is immutable; "editing" one means building a
replacement with the same id.
"""

from __future__ import annotations

import math
import time
import uuid
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from core.bundle import FilterBundle, parse_color
from core.errors import InvalidInputError

OverlayAnimation = Literal["none", "fade", "slide", "bounce", "typewriter"]
TransitionKind = Literal["fade", "slide", "zoom", "dissolve", "wipe", "push", "crossfade"]
Direction = Literal["left", "right", "up", "down"]
Easing = Literal["linear", "ease-in", "ease-out", "ease-in-out"]

# Which optional Transition fields each kind honors
DIRECTIONAL_KINDS = frozenset({"slide", "wipe", "push"})
INTENSITY_KINDS = frozenset({"fade", "zoom", "dissolve", "crossfade"})

DEFAULT_EASING = "ease-in-out"
DEFAULT_DIRECTION = "left"
DEFAULT_INTENSITY = 0.5

MIN_SPEED, MAX_SPEED = 0.25, 4.0
MAX_VOLUME = 2.0


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _clamp(value: Any, lo: float, hi: float, default: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(v):
        return default
    return max(lo, min(hi, v))


def _hex(value: Any, default: str) -> str:
    rgb = parse_color(value)
    if rgb is None:
        return default
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def invalid_input(error: ValidationError, what: str) -> InvalidInputError:
    """Flatten a pydantic ValidationError into one InvalidInputError."""
    errors = error.errors(include_url=False)
    if len(errors) == 1:
        cause = (errors[0].get("ctx") or {}).get("error")
        if isinstance(cause, InvalidInputError):
            return InvalidInputError(str(cause))
    details = []
    for err in errors:
        msg = err.get("msg", "")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        details.append(f"{loc}: {msg}" if loc else msg)
    return InvalidInputError(f"Invalid {what}: " + "; ".join(details or [str(error)]))


class CheckedModel(BaseModel):
    """BaseModel whose validation failures raise InvalidInputError.

    Covers both construction (`Trim(start=5, end=2)`) and `model_validate`.
    """

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise invalid_input(e, type(self).__name__) from e

    @classmethod
    def model_validate(cls, obj: Any, *args: Any, **kwargs: Any):
        try:
            return super().model_validate(obj, *args, **kwargs)
        except ValidationError as e:
            raise invalid_input(e, cls.__name__) from e


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class TextOverlay(CheckedModel):
    """Timed text drawn over the clip.

    Position is normalized: x and y are 0-100 percent of the frame, anchoring
    the text's center.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    text: str
    start: float = Field(default=0.0, ge=0.0)
    end: float = Field(default=5.0, ge=0.0)
    x: float = 50.0
    y: float = 50.0
    font_size: int = Field(default=24, ge=6, le=400)
    color: str = "#ffffff"
    font_family: str = "Arial"
    background_color: str = "#000000"
    background_opacity: float = 0.5
    animation: OverlayAnimation = "none"

    @field_validator("x", "y", mode="before")
    @classmethod
    def _clamp_position(cls, value: Any) -> float:
        return _clamp(value, 0.0, 100.0, 50.0)

    @field_validator("background_opacity", mode="before")
    @classmethod
    def _clamp_opacity(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0, 0.5)

    @field_validator("color", mode="before")
    @classmethod
    def _text_color(cls, value: Any) -> str:
        return _hex(value, "#ffffff")

    @field_validator("background_color", mode="before")
    @classmethod
    def _bg_color(cls, value: Any) -> str:
        return _hex(value, "#000000")

    @model_validator(mode="after")
    def _check_window(self) -> "TextOverlay":
        if self.end < self.start:
            raise InvalidInputError(
                f"Overlay end ({self.end}) must not be before start ({self.start})"
            )
        return self

    def replace(self, **changes: Any) -> "TextOverlay":
        """New record with the same id and `changes` applied (re-validated)."""
        return TextOverlay.model_validate({**self.model_dump(), **changes, "id": self.id})


class Transition(CheckedModel):
    """A time-windowed transition effect applied to the clip."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    kind: TransitionKind = "fade"
    duration: float = Field(default=1.0, gt=0.0)
    start: float = Field(default=0.0, ge=0.0)
    direction: Optional[Direction] = None
    easing: Optional[Easing] = None
    intensity: Optional[float] = None

    @field_validator("intensity", mode="before")
    @classmethod
    def _clamp_intensity(cls, value: Any) -> Optional[float]:
        if value is None:
            return None
        return _clamp(value, 0.0, 1.0, DEFAULT_INTENSITY)

    @property
    def end(self) -> float:
        return self.start + self.duration

    @property
    def effective_direction(self) -> Optional[str]:
        """Direction if this kind honors one, else None."""
        if self.kind not in DIRECTIONAL_KINDS:
            return None
        return self.direction or DEFAULT_DIRECTION

    @property
    def effective_intensity(self) -> Optional[float]:
        """Intensity if this kind honors one, else None."""
        if self.kind not in INTENSITY_KINDS:
            return None
        return DEFAULT_INTENSITY if self.intensity is None else self.intensity

    @property
    def effective_easing(self) -> str:
        return self.easing or DEFAULT_EASING

    def replace(self, **changes: Any) -> "Transition":
        return Transition.model_validate({**self.model_dump(), **changes, "id": self.id})


class AudioTrack(CheckedModel):
    """An extra audio source mixed under the clip."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    name: str = "audio"
    extension: str = "mp3"
    data: bytes = Field(default=b"", repr=False)
    start: float = Field(default=0.0, ge=0.0)
    duration: Optional[float] = Field(default=None, gt=0.0)
    volume: float = 1.0
    fade_in: float = Field(default=0.0, ge=0.0)
    fade_out: float = Field(default=0.0, ge=0.0)

    @field_validator("volume", mode="before")
    @classmethod
    def _clamp_volume(cls, value: Any) -> float:
        return _clamp(value, 0.0, MAX_VOLUME, 1.0)

    @field_validator("extension", mode="before")
    @classmethod
    def _clean_extension(cls, value: Any) -> str:
        ext = str(value or "mp3").lstrip(".").lower()
        if not ext.isalnum():
            raise InvalidInputError(f"Invalid audio extension: {value!r}")
        return ext


# ---------------------------------------------------------------------------
# Edit actions
# ---------------------------------------------------------------------------

class _Action(CheckedModel):
    """Fields shared by every edit action."""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(default_factory=time.time)
    description: str = ""

    @model_validator(mode="after")
    def _fill_description(self):
        if not self.description:
            # Frozen model: write straight into the instance dict
            object.__setattr__(self, "description", self.describe())
        return self

    def describe(self) -> str:
        return self.kind.replace("_", " ").capitalize()


class Trim(_Action):
    kind: Literal["trim"] = "trim"
    start: float = Field(ge=0.0)
    end: float

    @model_validator(mode="after")
    def _check_range(self) -> "Trim":
        if self.end <= self.start:
            raise InvalidInputError(f"Trim end ({self.end}) must be after start ({self.start})")
        return self

    def describe(self) -> str:
        return f"Trim {self.start:.2f}s - {self.end:.2f}s"


class Crop(_Action):
    """Crop rectangle in percent of the source frame."""

    kind: Literal["crop"] = "crop"
    x: float = Field(default=0.0, ge=0.0, le=100.0)
    y: float = Field(default=0.0, ge=0.0, le=100.0)
    width: float = Field(le=100.0)
    height: float = Field(le=100.0)

    @model_validator(mode="after")
    def _check_rect(self) -> "Crop":
        if self.width <= 0 or self.height <= 0:
            raise InvalidInputError(f"Crop size must be positive, got {self.width}x{self.height}%")
        if self.x + self.width > 100.0 + 1e-6 or self.y + self.height > 100.0 + 1e-6:
            raise InvalidInputError("Crop rectangle extends past the frame")
        return self

    def describe(self) -> str:
        return f"Crop {self.width:g}% x {self.height:g}% at ({self.x:g}%, {self.y:g}%)"


class Split(_Action):
    kind: Literal["split"] = "split"
    points: tuple[float, ...]

    @field_validator("points", mode="after")
    @classmethod
    def _check_points(cls, points: tuple[float, ...]) -> tuple[float, ...]:
        if not points:
            raise InvalidInputError("Split needs at least one point")
        if any(p < 0 or not math.isfinite(p) for p in points):
            raise InvalidInputError(f"Split points must be non-negative: {points}")
        return tuple(sorted(set(points)))

    def describe(self) -> str:
        return "Split at " + ", ".join(f"{p:g}s" for p in self.points)


class SetFilters(_Action):
    kind: Literal["set_filters"] = "set_filters"
    filters: FilterBundle = Field(default_factory=FilterBundle)
    preset: Optional[str] = None

    def describe(self) -> str:
        if self.preset:
            return f"Apply {self.preset} filter"
        return "Adjust filters"


class AddOverlay(_Action):
    kind: Literal["add_overlay"] = "add_overlay"
    overlay: TextOverlay

    def describe(self) -> str:
        return f"Add text '{self.overlay.text[:24]}'"


class RemoveOverlay(_Action):
    kind: Literal["remove_overlay"] = "remove_overlay"
    overlay_id: str

    def describe(self) -> str:
        return f"Remove text {self.overlay_id}"


class AddTransition(_Action):
    kind: Literal["add_transition"] = "add_transition"
    transition: Transition

    def describe(self) -> str:
        return f"Add {self.transition.kind} transition"


class RemoveTransition(_Action):
    kind: Literal["remove_transition"] = "remove_transition"
    transition_id: str

    def describe(self) -> str:
        return f"Remove transition {self.transition_id}"


class SetSpeed(_Action):
    kind: Literal["set_speed"] = "set_speed"
    factor: float
    previous: Optional[float] = None

    @field_validator("factor", mode="after")
    @classmethod
    def _check_factor(cls, factor: float) -> float:
        if not math.isfinite(factor) or factor <= 0:
            raise InvalidInputError(f"Speed must be positive, got {factor}")
        return max(MIN_SPEED, min(MAX_SPEED, factor))

    def describe(self) -> str:
        return f"Change speed to {self.factor:g}x"


class SetVolume(_Action):
    kind: Literal["set_volume"] = "set_volume"
    factor: float

    @field_validator("factor", mode="after")
    @classmethod
    def _check_factor(cls, factor: float) -> float:
        if not math.isfinite(factor) or factor < 0:
            raise InvalidInputError(f"Volume must be non-negative, got {factor}")
        return min(MAX_VOLUME, factor)

    def describe(self) -> str:
        return f"Set volume to {round(self.factor * 100)}%"


EditAction = Annotated[
    Union[
        Trim, Crop, Split, SetFilters, AddOverlay, RemoveOverlay,
        AddTransition, RemoveTransition, SetSpeed, SetVolume,
    ],
    Field(discriminator="kind"),
]

_ACTION_ADAPTER = TypeAdapter(EditAction)
_ACTION_LIST_ADAPTER = TypeAdapter(list[EditAction])


def parse_action(data: dict) -> EditAction:
    """Build an EditAction from a plain dict keyed by `kind`.

    Raises:
        InvalidInputError: Unknown kind or invalid fields.
    """
    try:
        return _ACTION_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise invalid_input(e, "edit action") from e


def parse_actions(data: list[dict]) -> list:
    """Build a list of EditActions (e.g. from an edit script JSON file)."""
    try:
        return _ACTION_LIST_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise invalid_input(e, "edit script") from e
