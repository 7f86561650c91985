"""
ClipCraft -- Built-in Filter Presets & LUTs
Named color grades that replace the active FilterBundle wholesale.

Each preset is a dict: name, description, category, filters (FilterBundle
fields, camelCase or snake_case), tags.

Categories:
    Basic       -- The one-click looks (vintage, black & white, vibrant, cool, warm, dramatic)
    Cinematic   -- Film-grade moods (cinematic, teal & orange, noir, bleach bypass)
    Film        -- Emulated stocks and faded prints
    Mood        -- Time-of-day and atmosphere grades
"""

from __future__ import annotations

import re
from typing import Any

from core.bundle import FilterBundle

CUSTOM = "custom"

BUILT_IN_PRESETS = [
    # =========================================================================
    # BASIC
    # =========================================================================
    {
        "name": "none",
        "description": "No grade. The clip as shot.",
        "category": "Basic",
        "filters": {},
        "tags": ["original", "reset"],
    },
    {
        "name": "vintage",
        "description": "Warm, lifted film print with a touch of sepia.",
        "category": "Basic",
        "filters": {"vintage": True, "sepia": 20, "contrast": 110, "brightness": 105},
        "tags": ["retro", "warm", "film"],
    },
    {
        "name": "blackAndWhite",
        "description": "Luminance-only monochrome with a contrast bump.",
        "category": "Basic",
        "filters": {"blackAndWhite": True, "contrast": 120},
        "tags": ["monochrome", "classic"],
    },
    {
        "name": "vibrant",
        "description": "Punchy color for social clips.",
        "category": "Basic",
        "filters": {"saturation": 150, "contrast": 115, "brightness": 105},
        "tags": ["bright", "colorful", "social"],
    },
    {
        "name": "cool",
        "description": "Blue-shifted, slightly dim.",
        "category": "Basic",
        "filters": {"hue": 180, "saturation": 120, "brightness": 95},
        "tags": ["blue", "cold"],
    },
    {
        "name": "warm",
        "description": "Amber-shifted and bright.",
        "category": "Basic",
        "filters": {"hue": -30, "saturation": 110, "brightness": 110},
        "tags": ["orange", "sunny"],
    },
    {
        "name": "dramatic",
        "description": "Dark, contrasty and saturated.",
        "category": "Basic",
        "filters": {"contrast": 140, "brightness": 80, "saturation": 130},
        "tags": ["moody", "contrast"],
    },

    # =========================================================================
    # CINEMATIC
    # =========================================================================
    {
        "name": "cinematic",
        "description": "Soft contrast, crushed shadows, teal shadows and warm highlights.",
        "category": "Cinematic",
        "filters": {
            "contrast": 115, "saturation": 90, "shadows": -15, "highlights": 5,
            "shadowTint": "#1e4a5a", "highlightTint": "#f0b070", "vignette": 20,
        },
        "tags": ["film", "moody", "teal", "orange"],
    },
    {
        "name": "tealAndOrange",
        "description": "Blockbuster complementary grade.",
        "category": "Cinematic",
        "filters": {
            "saturation": 120, "temperature": 25, "shadowTint": "#00808c",
            "highlightTint": "#ff8c32", "contrast": 110,
        },
        "tags": ["blockbuster", "teal", "orange"],
    },
    {
        "name": "noir",
        "description": "Hard monochrome with a heavy vignette.",
        "category": "Cinematic",
        "filters": {"blackAndWhite": True, "contrast": 150, "brightness": 90, "vignette": 45, "grain": 15},
        "tags": ["monochrome", "detective", "dark"],
    },
    {
        "name": "bleachBypass",
        "description": "Desaturated, high-contrast silver-retention look.",
        "category": "Cinematic",
        "filters": {"saturation": 55, "contrast": 135, "clarity": 25, "highlights": 10},
        "tags": ["gritty", "war", "desaturated"],
    },

    # =========================================================================
    # FILM
    # =========================================================================
    {
        "name": "fadedFilm",
        "description": "Lifted blacks, muted color and fine grain.",
        "category": "Film",
        "filters": {"contrast": 85, "saturation": 80, "gamma": 1.15, "grain": 20, "sepia": 10},
        "tags": ["film", "matte", "lo-fi"],
    },
    {
        "name": "kodachrome",
        "description": "Rich reds and deep blues of slide film.",
        "category": "Film",
        "filters": {"saturation": 135, "contrast": 112, "temperature": 15, "vibrance": 20},
        "tags": ["film", "slide", "saturated"],
    },
    {
        "name": "polaroid",
        "description": "Instant print: warm cast, soft highlights, corner falloff.",
        "category": "Film",
        "filters": {
            "brightness": 108, "contrast": 90, "temperature": 30, "tint": 10,
            "highlights": -10, "vignette": 25, "midtoneTint": "#ffe6c8",
        },
        "tags": ["instant", "warm", "retro"],
    },

    # =========================================================================
    # MOOD
    # =========================================================================
    {
        "name": "goldenHour",
        "description": "Late-afternoon sun: warm, glowing, gently lifted.",
        "category": "Mood",
        "filters": {"temperature": 45, "exposure": 0.3, "highlightTint": "#ffc878", "saturation": 110},
        "tags": ["warm", "sunset", "glow"],
    },
    {
        "name": "moonlight",
        "description": "Night-for-day blue grade.",
        "category": "Mood",
        "filters": {"temperature": -60, "exposure": -0.7, "saturation": 70, "shadowTint": "#142850"},
        "tags": ["night", "blue", "cold"],
    },
    {
        "name": "dreamy",
        "description": "Soft focus with bright, pastel color.",
        "category": "Mood",
        "filters": {"blur": 1.5, "brightness": 112, "contrast": 88, "saturation": 90, "clarity": -30},
        "tags": ["soft", "pastel", "wedding"],
    },
]

BUILT_IN_LUTS = [
    {"name": "Rec709 Film", "category": "Film", "intensity": 100},
    {"name": "Kodak 2383", "category": "Film", "intensity": 80},
    {"name": "Fuji Eterna", "category": "Film", "intensity": 75},
    {"name": "Teal Orange", "category": "Cinematic", "intensity": 70},
    {"name": "Bleach Bypass", "category": "Cinematic", "intensity": 60},
    {"name": "Day For Night", "category": "Creative", "intensity": 90},
    {"name": "Cross Process", "category": "Creative", "intensity": 65},
    {"name": "Monochrome Silver", "category": "Black & White", "intensity": 100},
]


def _normalize(name: str) -> str:
    """'blackAndWhite', 'black_and_white', 'Black & White' -> 'blackandwhite'."""
    return re.sub(r"[^a-z0-9]", "", name.lower().replace("&", "and"))


def get_preset(name: str) -> dict | None:
    """Look up a preset by name (case- and separator-insensitive)."""
    key = _normalize(name)
    for preset in BUILT_IN_PRESETS:
        if _normalize(preset["name"]) == key:
            return preset
    return None


def resolve_preset(name: str) -> FilterBundle:
    """FilterBundle for a named preset. Unknown names give the identity bundle."""
    preset = get_preset(name) if name else None
    if preset is None:
        return FilterBundle()
    return FilterBundle.model_validate(preset["filters"])


def get_presets_by_category(category: str) -> list[dict]:
    """Get all presets in a category."""
    return [p for p in BUILT_IN_PRESETS if p["category"].lower() == category.lower()]


def get_presets_by_tag(tag: str) -> list[dict]:
    """Get all presets that have a given tag."""
    tag_lower = tag.lower()
    return [p for p in BUILT_IN_PRESETS if tag_lower in [t.lower() for t in p["tags"]]]


def list_preset_names() -> list[str]:
    """Return all preset names."""
    return [p["name"] for p in BUILT_IN_PRESETS]


def list_categories() -> list[str]:
    """Return unique categories."""
    return sorted(set(p["category"] for p in BUILT_IN_PRESETS))


def get_lut(name: str) -> dict | None:
    key = _normalize(name)
    for lut in BUILT_IN_LUTS:
        if _normalize(lut["name"]) == key:
            return lut
    return None


def list_luts(category: str | None = None) -> list[dict]:
    if category is None:
        return list(BUILT_IN_LUTS)
    return [lut for lut in BUILT_IN_LUTS if lut["category"].lower() == category.lower()]


def apply_lut(bundle: FilterBundle, name: str, intensity: float | None = None) -> FilterBundle:
    """Set `lut` + `lut_intensity` on a copy of `bundle`.

    The LUT is sampled by the export stage only; previews ignore it.
    An unknown LUT name returns `bundle` unchanged.
    """
    lut = get_lut(name)
    if lut is None:
        return bundle
    level = lut["intensity"] if intensity is None else intensity
    return bundle.merge({"lut": lut["name"], "lut_intensity": level})


def clear_lut(bundle: FilterBundle) -> FilterBundle:
    return bundle.merge({"lut": None, "lut_intensity": None})


class FilterSelection:
    """UI bookkeeping for which preset is active.

    Selecting a preset replaces the bundle wholesale. Any later manual
    adjustment flips `active` to "custom"; the bundle itself is what the
    kernel sees either way.
    """

    def __init__(self, bundle: FilterBundle | None = None):
        self.bundle = bundle or FilterBundle()
        self.active = "none" if bundle is None else CUSTOM

    @property
    def is_custom(self) -> bool:
        return self.active == CUSTOM

    def select_preset(self, name: str) -> FilterBundle:
        preset = get_preset(name)
        self.bundle = resolve_preset(name)
        self.active = preset["name"] if preset else "none"
        return self.bundle

    def adjust(self, **overrides: Any) -> FilterBundle:
        self.bundle = self.bundle.merge(overrides)
        self.active = CUSTOM
        return self.bundle

    def apply_lut(self, name: str, intensity: float | None = None) -> FilterBundle:
        self.bundle = apply_lut(self.bundle, name, intensity)
        return self.bundle

    def reset(self) -> FilterBundle:
        self.bundle = FilterBundle()
        self.active = "none"
        return self.bundle
