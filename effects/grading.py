"""
ClipCraft — Per-Pixel Grading Passes
Vintage, black-and-white, gamma, exposure, shadows/highlights, temperature,
tint, vibrance and zone color grading.

All functions take and return (H, W, 3) float32 RGB in [0, 255] and clamp
their output.
"""

import numpy as np

# Rec.601 luminance weights
LUM_R, LUM_G, LUM_B = 0.299, 0.587, 0.114

SHADOW_ZONE_MAX = 85
HIGHLIGHT_ZONE_MIN = 170
ZONE_WEIGHTS = (0.3, 0.2, 0.1)  # shadows, midtones, highlights


def luminance(rgb: np.ndarray) -> np.ndarray:
    """L = 0.299R + 0.587G + 0.114B, shape (H, W)."""
    return rgb[:, :, 0] * LUM_R + rgb[:, :, 1] * LUM_G + rgb[:, :, 2] * LUM_B


def vintage(rgb: np.ndarray) -> np.ndarray:
    """Warm faded film: R*1.2+20, G*1.1+10, B*0.8."""
    out = np.empty_like(rgb)
    out[:, :, 0] = rgb[:, :, 0] * 1.2 + 20
    out[:, :, 1] = rgb[:, :, 1] * 1.1 + 10
    out[:, :, 2] = rgb[:, :, 2] * 0.8
    return np.clip(out, 0, 255)


def black_and_white(rgb: np.ndarray) -> np.ndarray:
    """Replace every channel with luminance."""
    lum = luminance(rgb)
    return np.clip(np.repeat(lum[:, :, None], 3, axis=2), 0, 255)


def gamma(rgb: np.ndarray, value: float = 1.0) -> np.ndarray:
    """out = 255 * (in / 255) ^ (1 / gamma)."""
    value = max(0.1, min(3.0, float(value)))
    out = 255.0 * np.power(rgb / 255.0, 1.0 / value)
    return np.clip(out, 0, 255).astype(np.float32)


def exposure(rgb: np.ndarray, stops: float = 0.0) -> np.ndarray:
    """Multiply by 2^stops."""
    stops = max(-3.0, min(3.0, float(stops)))
    return np.clip(rgb * np.float32(2.0 ** stops), 0, 255)


def shadows(rgb: np.ndarray, amount: float = 0.0) -> np.ndarray:
    """Scale pixels with L < 128 by (1 + amount/100)."""
    scale = np.float32(1.0 + float(amount) / 100.0)
    mask = luminance(rgb) < 128
    out = rgb.copy()
    out[mask] = out[mask] * scale
    return np.clip(out, 0, 255)


def highlights(rgb: np.ndarray, amount: float = 0.0) -> np.ndarray:
    """Scale pixels with L > 128 by (1 + amount/100)."""
    scale = np.float32(1.0 + float(amount) / 100.0)
    mask = luminance(rgb) > 128
    out = rgb.copy()
    out[mask] = out[mask] * scale
    return np.clip(out, 0, 255)


def temperature(rgb: np.ndarray, amount: float = 0.0) -> np.ndarray:
    """Warm (+) or cool (-): R += amount/10, B -= amount/10."""
    shift = np.float32(float(amount) / 10.0)
    out = rgb.copy()
    out[:, :, 0] += shift
    out[:, :, 2] -= shift
    return np.clip(out, 0, 255)


def tint(rgb: np.ndarray, amount: float = 0.0) -> np.ndarray:
    """G += amount/10."""
    out = rgb.copy()
    out[:, :, 1] += np.float32(float(amount) / 10.0)
    return np.clip(out, 0, 255)


def vibrance(rgb: np.ndarray, amount: float = 0.0) -> np.ndarray:
    """Pull the non-max channels toward the max channel.

    The pull is proportional to (max - avg) / 255 * amount / 100, so
    already-saturated pixels move most and greys don't move at all.
    """
    mx = rgb.max(axis=2, keepdims=True)
    avg = rgb.mean(axis=2, keepdims=True)
    amt = (mx - avg) / 255.0 * (float(amount) / 100.0)
    lower = rgb < mx
    out = np.where(lower, rgb + (mx - rgb) * amt, rgb)
    return np.clip(out, 0, 255).astype(np.float32)


def zone_grade(rgb: np.ndarray, shadow_tint=None, midtone_tint=None,
               highlight_tint=None) -> np.ndarray:
    """Additively blend a color into shadows, midtones and highlights.

    Zones by luminance: shadows L < 85, midtones 85 <= L <= 170,
    highlights L > 170. Colors are added at 0.3 / 0.2 / 0.1.
    """
    lum = luminance(rgb)
    zones = (
        (lum < SHADOW_ZONE_MAX, shadow_tint, ZONE_WEIGHTS[0]),
        ((lum >= SHADOW_ZONE_MAX) & (lum <= HIGHLIGHT_ZONE_MIN), midtone_tint, ZONE_WEIGHTS[1]),
        (lum > HIGHLIGHT_ZONE_MIN, highlight_tint, ZONE_WEIGHTS[2]),
    )
    out = rgb.copy()
    for mask, color, weight in zones:
        if color is None:
            continue
        out[mask] += np.asarray(color, dtype=np.float32) * np.float32(weight)
    return np.clip(out, 0, 255)
