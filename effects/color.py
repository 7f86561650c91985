"""
ClipCraft — Compositing Pass
Brightness, contrast, saturate, hue-rotate, blur, sepia with CSS filter math.
Each step is a 3x4 affine color matrix (or a blur sigma) so the export
compiler can render the exact same numbers as FFmpeg filters.
"""

import math
from typing import NamedTuple, Optional

import cv2
import numpy as np

# Rec.709 luma weights used by the CSS saturate/hue-rotate matrices
LUMA_R, LUMA_G, LUMA_B = 0.213, 0.715, 0.072


class CompositeStep(NamedTuple):
    """One compositing operation.

    `matrix` is a (3, 4) float64 array: rows are output R, G, B; the first
    three columns multiply input R, G, B and the last column is an offset in
    0-255 units. Blur steps carry `sigma` instead.
    """

    name: str
    matrix: Optional[np.ndarray] = None
    sigma: Optional[float] = None


def _affine(m3: np.ndarray, offset: float = 0.0) -> np.ndarray:
    out = np.zeros((3, 4), dtype=np.float64)
    out[:, :3] = m3
    out[:, 3] = offset
    return out


def brightness_matrix(percent: float) -> np.ndarray:
    """brightness(N%): linear scale of every channel."""
    b = max(0.0, float(percent)) / 100.0
    return _affine(np.eye(3) * b)


def contrast_matrix(percent: float) -> np.ndarray:
    """contrast(N%): slope c, intercept 0.5 - 0.5c (in 0-1 space)."""
    c = max(0.0, float(percent)) / 100.0
    return _affine(np.eye(3) * c, 255.0 * (0.5 - 0.5 * c))


def saturate_matrix(percent: float) -> np.ndarray:
    """saturate(N%)."""
    s = max(0.0, float(percent)) / 100.0
    m = np.array([
        [LUMA_R + (1 - LUMA_R) * s, LUMA_G - LUMA_G * s, LUMA_B - LUMA_B * s],
        [LUMA_R - LUMA_R * s, LUMA_G + (1 - LUMA_G) * s, LUMA_B - LUMA_B * s],
        [LUMA_R - LUMA_R * s, LUMA_G - LUMA_G * s, LUMA_B + (1 - LUMA_B) * s],
    ])
    return _affine(m)


def hue_rotate_matrix(degrees: float) -> np.ndarray:
    """hue-rotate(Ndeg)."""
    rad = math.radians(float(degrees))
    c, s = math.cos(rad), math.sin(rad)
    m = np.array([
        [0.213 + c * 0.787 - s * 0.213, 0.715 - c * 0.715 - s * 0.715, 0.072 - c * 0.072 + s * 0.928],
        [0.213 - c * 0.213 + s * 0.143, 0.715 + c * 0.285 + s * 0.140, 0.072 - c * 0.072 - s * 0.283],
        [0.213 - c * 0.213 - s * 0.787, 0.715 - c * 0.715 + s * 0.715, 0.072 + c * 0.928 + s * 0.072],
    ])
    return _affine(m)


def sepia_matrix(percent: float) -> np.ndarray:
    """sepia(N%), amount capped at 100%."""
    a = 1.0 - min(1.0, max(0.0, float(percent)) / 100.0)
    m = np.array([
        [0.393 + 0.607 * a, 0.769 - 0.769 * a, 0.189 - 0.189 * a],
        [0.349 - 0.349 * a, 0.686 + 0.314 * a, 0.168 - 0.168 * a],
        [0.272 - 0.272 * a, 0.534 - 0.534 * a, 0.131 + 0.869 * a],
    ])
    return _affine(m)


_MATRIX_BUILDERS = {
    "brightness": brightness_matrix,
    "contrast": contrast_matrix,
    "saturation": saturate_matrix,
    "hue": hue_rotate_matrix,
    "sepia": sepia_matrix,
}


def composite_steps(bundle) -> list[CompositeStep]:
    """Active compositing steps for a FilterBundle, in CSS filter order.

    Order: brightness, contrast, saturate, hue-rotate, blur, sepia.
    Steps at identity are omitted.
    """
    steps = []
    for name in ("brightness", "contrast", "saturation", "hue"):
        if bundle.is_active(name):
            steps.append(CompositeStep(name, matrix=_MATRIX_BUILDERS[name](getattr(bundle, name))))
    if bundle.is_active("blur"):
        steps.append(CompositeStep("blur", sigma=float(bundle.blur)))
    if bundle.is_active("sepia"):
        steps.append(CompositeStep("sepia", matrix=sepia_matrix(bundle.sepia)))
    return steps


def apply_matrix(rgb: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Apply a (3, 4) affine color matrix to float32 RGB, clamped to [0, 255]."""
    m = matrix.astype(np.float32)
    out = rgb @ m[:, :3].T + m[:, 3]
    return np.clip(out, 0, 255)


def gaussian_blur(rgb: np.ndarray, sigma: float) -> np.ndarray:
    """Gaussian blur with standard deviation `sigma` px, edges replicated."""
    if sigma <= 0:
        return rgb
    out = cv2.GaussianBlur(rgb, (0, 0), sigmaX=float(sigma), sigmaY=float(sigma),
                           borderType=cv2.BORDER_REPLICATE)
    return np.clip(out, 0, 255)


def apply_steps(rgb: np.ndarray, steps: list[CompositeStep]) -> np.ndarray:
    """Run compositing steps over float32 RGB. Clamps after every step."""
    for step in steps:
        if step.matrix is not None:
            rgb = apply_matrix(rgb, step.matrix)
        elif step.sigma is not None:
            rgb = gaussian_blur(rgb, step.sigma)
    return rgb


def composite(rgb: np.ndarray, bundle) -> np.ndarray:
    """Single compositing pass equivalent to the CSS `filter` property.

    Args:
        rgb: (H, W, 3) float32 RGB in [0, 255].
        bundle: FilterBundle.

    Returns:
        Composited float32 RGB.
    """
    return apply_steps(rgb, composite_steps(bundle))
