"""
ClipCraft — Color Grading Kernel
Pure per-pixel math that turns a FilterBundle into pixels.

apply_filters() runs one compositing pass (CSS filter order) followed by the
custom passes in PASSES order. Every pass clamps to [0, 255]; alpha is never
touched.
"""

import numpy as np

from core.bundle import FilterBundle
from core.frame import RasterFrame
from effects.color import composite, composite_steps
from effects.grading import (
    vintage,
    black_and_white,
    gamma,
    exposure,
    shadows,
    highlights,
    temperature,
    tint,
    vibrance,
    zone_grade,
)
from effects.texture import clarity, grain, vignette

# Custom passes, run after compositing in this exact order.
# "fields" are the FilterBundle attributes passed positionally to "fn".
PASSES = [
    {
        "name": "vintage",
        "fn": vintage,
        "fields": (),
        "flag": "vintage",
        "description": "Warm faded film: R*1.2+20, G*1.1+10, B*0.8",
    },
    {
        "name": "black_and_white",
        "fn": black_and_white,
        "fields": (),
        "flag": "black_and_white",
        "description": "Replace every channel with luminance",
    },
    {
        "name": "gamma",
        "fn": gamma,
        "fields": ("gamma",),
        "description": "Power curve 255*(in/255)^(1/gamma)",
    },
    {
        "name": "exposure",
        "fn": exposure,
        "fields": ("exposure",),
        "description": "Multiply by 2^stops",
    },
    {
        "name": "shadows",
        "fn": shadows,
        "fields": ("shadows",),
        "description": "Lift or crush pixels darker than mid-grey",
    },
    {
        "name": "highlights",
        "fn": highlights,
        "fields": ("highlights",),
        "description": "Boost or pull pixels brighter than mid-grey",
    },
    {
        "name": "temperature",
        "fn": temperature,
        "fields": ("temperature",),
        "description": "Shift red against blue",
    },
    {
        "name": "tint",
        "fn": tint,
        "fields": ("tint",),
        "description": "Shift green",
    },
    {
        "name": "vibrance",
        "fn": vibrance,
        "fields": ("vibrance",),
        "description": "Saturation weighted toward already-colorful pixels",
    },
    {
        "name": "clarity",
        "fn": clarity,
        "fields": ("clarity",),
        "description": "Local contrast (4-neighbor unsharp mask)",
    },
    {
        "name": "grain",
        "fn": grain,
        "fields": ("grain",),
        "seeded": True,
        "description": "Uniform film grain",
    },
    {
        "name": "vignette",
        "fn": vignette,
        "fields": ("vignette",),
        "description": "Radial darkening toward the corners",
    },
    {
        "name": "zone_grade",
        "fn": zone_grade,
        "fields": ("shadow_tint", "midtone_tint", "highlight_tint"),
        "description": "Add a color to shadows, midtones and highlights",
    },
]


def _pass_is_active(entry: dict, bundle: FilterBundle) -> bool:
    if "flag" in entry:
        return bool(getattr(bundle, entry["flag"]))
    return any(bundle.is_active(f) for f in entry["fields"])


def active_passes(bundle: FilterBundle) -> list[str]:
    """Names of the custom passes this bundle will run, in order."""
    return [entry["name"] for entry in PASSES if _pass_is_active(entry, bundle)]


def list_passes() -> list[dict]:
    """Describe the custom passes for UIs and the CLI."""
    return [
        {"name": e["name"], "fields": list(e["fields"]) or [e.get("flag")], "description": e["description"]}
        for e in PASSES
    ]


def grade_rgb(rgb: np.ndarray, bundle: FilterBundle, seed: int | None = None) -> np.ndarray:
    """Grade an (H, W, 3) uint8 RGB array. Returns a new uint8 array.

    The identity bundle returns an unmodified copy.
    """
    if bundle.is_identity():
        return rgb.copy()

    f = rgb.astype(np.float32)
    if bundle.has_composite():
        f = composite(f, bundle)

    for entry in PASSES:
        if not _pass_is_active(entry, bundle):
            continue
        args = [getattr(bundle, name) for name in entry["fields"]]
        if entry.get("seeded"):
            f = entry["fn"](f, *args, seed=seed)
        else:
            f = entry["fn"](f, *args)

    return np.clip(np.rint(f), 0, 255).astype(np.uint8)


def apply_filters(frame, bundle, seed: int | None = None):
    """Apply a FilterBundle to a frame.

    Args:
        frame: RasterFrame, or an (H, W, 3) RGB / (H, W, 4) RGBA uint8 array.
        bundle: FilterBundle, or a dict of filter parameters.
        seed: Grain seed. None gives fresh noise on every call.

    Returns:
        A new frame of the same type as `frame`. The input is never mutated.
    """
    if not isinstance(bundle, FilterBundle):
        bundle = FilterBundle.model_validate(bundle or {})

    if isinstance(frame, RasterFrame):
        out = frame.copy()
        out.data[:, :, :3] = grade_rgb(frame.rgb, bundle, seed=seed)
        return out

    if frame.ndim == 3 and frame.shape[2] == 4:
        out = frame.copy()
        out[:, :, :3] = grade_rgb(np.ascontiguousarray(frame[:, :, :3]), bundle, seed=seed)
        return out
    return grade_rgb(frame, bundle, seed=seed)


__all__ = [
    "PASSES",
    "active_passes",
    "apply_filters",
    "composite_steps",
    "grade_rgb",
    "list_passes",
]
