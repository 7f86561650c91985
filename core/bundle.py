"""
ClipCraft — Filter Bundles
A closed, typed set of color-grading parameters. Unset fields mean
identity. Out-of-range or malformed values are clamped (or dropped),
never rejected, so a weird slider value can't break a preview.
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

# name -> (min, max, identity)
NUMERIC_RANGES: dict[str, tuple[float, float, float]] = {
    "brightness": (0.0, 200.0, 100.0),     # percent
    "contrast": (0.0, 200.0, 100.0),       # percent
    "saturation": (0.0, 200.0, 100.0),     # percent
    "hue": (-360.0, 360.0, 0.0),           # degrees
    "blur": (0.0, 10.0, 0.0),              # px (gaussian sigma)
    "sepia": (0.0, 100.0, 0.0),            # percent
    "gamma": (0.1, 3.0, 1.0),
    "exposure": (-3.0, 3.0, 0.0),          # stops
    "shadows": (-100.0, 100.0, 0.0),
    "highlights": (-100.0, 100.0, 0.0),
    "temperature": (-100.0, 100.0, 0.0),
    "tint": (-100.0, 100.0, 0.0),
    "vibrance": (-100.0, 100.0, 0.0),
    "clarity": (-100.0, 100.0, 0.0),
    "grain": (0.0, 100.0, 0.0),
    "vignette": (0.0, 100.0, 0.0),
    "lut_intensity": (0.0, 100.0, 100.0),
}

# Composite fields, in CSS filter order
COMPOSITE_FIELDS = ("brightness", "contrast", "saturation", "hue", "blur", "sepia")

COLOR_FIELDS = ("shadow_tint", "midtone_tint", "highlight_tint")

FLAG_FIELDS = ("vintage", "black_and_white")

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_TRUTHY = {"1", "true", "yes", "on"}


def clamp_value(name: str, value: Any) -> Optional[float]:
    """Clamp a raw parameter into its documented range.

    Returns None (identity) for None, NaN/inf and anything non-numeric.
    """
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v):
        return None
    lo, hi, _ = NUMERIC_RANGES[name]
    return max(lo, min(hi, v))


def parse_color(value: Any) -> Optional[tuple[int, int, int]]:
    """Accept '#rrggbb', '#rgb' or an [r, g, b] sequence. Anything else is None."""
    if value is None:
        return None
    if isinstance(value, str):
        match = _HEX_COLOR.match(value.strip())
        if not match:
            return None
        digits = match.group(1)
        if len(digits) == 3:
            digits = "".join(c * 2 for c in digits)
        return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))
    if isinstance(value, (list, tuple)) and len(value) == 3:
        channels = []
        for c in value:
            try:
                f = float(c)
            except (TypeError, ValueError):
                return None
            if not math.isfinite(f):
                return None
            channels.append(int(round(max(0.0, min(255.0, f)))))
        return (channels[0], channels[1], channels[2])
    return None


class FilterBundle(BaseModel):
    """Color-grading parameters for one clip.

    Accepts both snake_case and the UI's camelCase keys
    (``blackAndWhite``, ``lutIntensity``, ``shadowTint``).

    Example:
        FilterBundle(contrast=120, blackAndWhite=True)
        FilterBundle(brightness=900).brightness  # -> 200.0
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # -- Compositing (CSS filter equivalents) --
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    saturation: Optional[float] = None
    hue: Optional[float] = None
    blur: Optional[float] = None
    sepia: Optional[float] = None

    # -- Per-pixel passes --
    vintage: bool = False
    black_and_white: bool = False
    gamma: Optional[float] = None
    exposure: Optional[float] = None
    shadows: Optional[float] = None
    highlights: Optional[float] = None
    temperature: Optional[float] = None
    tint: Optional[float] = None
    vibrance: Optional[float] = None
    clarity: Optional[float] = None
    grain: Optional[float] = None
    vignette: Optional[float] = None

    # -- Zone grading --
    shadow_tint: Optional[tuple[int, int, int]] = None
    midtone_tint: Optional[tuple[int, int, int]] = None
    highlight_tint: Optional[tuple[int, int, int]] = None

    # -- LUT (export only) --
    lut: Optional[str] = None
    lut_intensity: Optional[float] = None

    @field_validator(*NUMERIC_RANGES, mode="before")
    @classmethod
    def _clamp_numeric(cls, value: Any, info: ValidationInfo) -> Optional[float]:
        return clamp_value(info.field_name, value)

    @field_validator(*COLOR_FIELDS, mode="before")
    @classmethod
    def _parse_color(cls, value: Any) -> Optional[tuple[int, int, int]]:
        return parse_color(value)

    @field_validator(*FLAG_FIELDS, mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in _TRUTHY
        return bool(value)

    @field_validator("lut", mode="before")
    @classmethod
    def _clean_lut(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        name = str(value).strip()
        return name or None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> float:
        """Effective numeric value, falling back to the identity value."""
        value = getattr(self, name)
        if value is None:
            return NUMERIC_RANGES[name][2]
        return value

    def is_active(self, name: str) -> bool:
        """True when `name` would change pixels."""
        value = getattr(self, name)
        if name in NUMERIC_RANGES:
            return value is not None and value != NUMERIC_RANGES[name][2]
        if name in FLAG_FIELDS:
            return bool(value)
        return value is not None

    def active_fields(self) -> dict[str, Any]:
        """Fields that differ from identity, in declaration order."""
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if name != "lut_intensity" and self.is_active(name)
        }

    def is_identity(self) -> bool:
        return not self.active_fields()

    def has_composite(self) -> bool:
        return any(self.is_active(name) for name in COMPOSITE_FIELDS)

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def to_dict(self, by_alias: bool = False) -> dict[str, Any]:
        """Only the fields that were set away from their defaults."""
        return self.model_dump(exclude_defaults=True, by_alias=by_alias)

    def merge(self, overrides: "dict[str, Any] | FilterBundle") -> "FilterBundle":
        """Return a new bundle with `overrides` applied on top of this one.

        Explicit None in `overrides` clears a field.
        """
        if isinstance(overrides, FilterBundle):
            patch = overrides.model_dump(exclude_defaults=True)
        else:
            patch = FilterBundle.model_validate(overrides).model_dump(exclude_unset=True)
        return FilterBundle.model_validate({**self.model_dump(exclude_defaults=True), **patch})

    def composite_only(self) -> "FilterBundle":
        """Copy restricted to the compositing fields."""
        return FilterBundle(**{name: getattr(self, name) for name in COMPOSITE_FIELDS})


IDENTITY = FilterBundle()
