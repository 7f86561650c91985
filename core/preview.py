"""
ClipCraft — Preview
Instant still-frame previews. Frames are downscaled to the preview pixel cap
and graded with the same kernel the export compiler mirrors, so the preview
matches the export. The render engine is never involved.
"""

import logging
import math

import cv2
import numpy as np

from core.bundle import FilterBundle
from core.frame import RasterFrame
from core.settings import get_settings
from effects import apply_filters

logger = logging.getLogger(__name__)


def preview_size(width: int, height: int, max_pixels: int) -> tuple[int, int]:
    """Largest (w, h) with the source aspect and at most `max_pixels` pixels."""
    if width * height <= max_pixels:
        return width, height
    scale = math.sqrt(max_pixels / float(width * height))
    return max(1, int(width * scale)), max(1, int(height * scale))


def downscale(frame, max_pixels: int):
    """Shrink a RasterFrame or (H, W, C) array to the pixel cap (never upscales)."""
    array = frame.data if isinstance(frame, RasterFrame) else frame
    h, w = array.shape[:2]
    new_w, new_h = preview_size(w, h, max_pixels)
    if (new_w, new_h) == (w, h):
        return frame
    resized = cv2.resize(array, (new_w, new_h), interpolation=cv2.INTER_AREA)
    if isinstance(frame, RasterFrame):
        return RasterFrame(width=new_w, height=new_h, data=np.ascontiguousarray(resized))
    return resized


def preview_frame(frame, bundle, max_pixels: int | None = None, seed: int | None = 0):
    """Downscale `frame` and grade it with `bundle`.

    Args:
        frame: RasterFrame or RGB/RGBA uint8 array.
        bundle: FilterBundle or dict of filter parameters.
        max_pixels: Pixel cap, defaults to the preview_max_pixels setting.
            Pass 0 to keep the full resolution.
        seed: Grain seed; fixed by default so repeated previews don't flicker.

    Returns:
        A new graded frame of the same type as `frame`.
    """
    if not isinstance(bundle, FilterBundle):
        bundle = FilterBundle.model_validate(bundle or {})
    if max_pixels is None:
        max_pixels = get_settings().preview_max_pixels
    small = downscale(frame, max_pixels) if max_pixels else frame
    logger.debug("Preview with %d active filter(s)", len(bundle.active_fields()))
    return apply_filters(small, bundle, seed=seed)
