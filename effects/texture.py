"""
ClipCraft — Texture Passes
Clarity (local contrast), film grain and vignette.
"""

import math

import numpy as np

GRAIN_RANGE = 25.0


def clarity(rgb: np.ndarray, amount: float = 0.0) -> np.ndarray:
    """3x3 unsharp mask over the 4-neighborhood.

    out = center + (center - neighbor_avg) * amount/100, per channel.
    Border pixels are left untouched.

    Args:
        rgb: (H, W, 3) float32 RGB in [0, 255].
        amount: -100 (soften) to 100 (crisp).

    Returns:
        Float32 RGB.
    """
    h, w = rgb.shape[:2]
    if h < 3 or w < 3:
        return rgb
    k = np.float32(float(amount) / 100.0)
    center = rgb[1:-1, 1:-1]
    neighbors = (rgb[:-2, 1:-1] + rgb[2:, 1:-1] + rgb[1:-1, :-2] + rgb[1:-1, 2:]) / 4.0
    out = rgb.copy()
    out[1:-1, 1:-1] = center + (center - neighbors) * k
    return np.clip(out, 0, 255)


def grain(rgb: np.ndarray, amount: float = 0.0, seed: int | None = None) -> np.ndarray:
    """Additive uniform noise in [-25, 25] * amount/100 per pixel per channel.

    Args:
        rgb: (H, W, 3) float32 RGB in [0, 255].
        amount: 0-100.
        seed: Fixed seed for repeatable grain (None = fresh noise).

    Returns:
        Float32 RGB.
    """
    spread = GRAIN_RANGE * max(0.0, min(100.0, float(amount))) / 100.0
    rng = np.random.RandomState(seed)
    noise = rng.uniform(-spread, spread, rgb.shape).astype(np.float32)
    return np.clip(rgb + noise, 0, 255)


def vignette_factor(width: int, height: int, amount: float) -> np.ndarray:
    """Per-pixel multiplier 1 - (dist / max_dist) * amount/100, shape (H, W).

    Distances are measured from pixel (width // 2, height // 2), whose
    factor is exactly 1 on frames of any size.
    """
    cx, cy = float(width // 2), float(height // 2)
    max_dist = math.hypot(cx, cy)
    if max_dist == 0:
        return np.ones((height, width), dtype=np.float32)
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    dist = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2)
    return (1.0 - (dist / max_dist) * (float(amount) / 100.0)).astype(np.float32)


def vignette(rgb: np.ndarray, amount: float = 0.0) -> np.ndarray:
    """Radial darkening toward the corners."""
    h, w = rgb.shape[:2]
    factor = vignette_factor(w, h, amount)
    return np.clip(rgb * factor[:, :, None], 0, 255)
