"""
ClipCraft — Raster Frames
Width, height and an interleaved RGBA uint8 buffer.
"""

from dataclasses import dataclass

import numpy as np


@dataclass
class RasterFrame:
    """A single RGBA image owned by whichever stage is transforming it.

    `data` is an (H, W, 4) uint8 array. Never share one instance between
    concurrent transforms; call `copy()` first.
    """

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self):
        if self.data.dtype != np.uint8:
            raise ValueError(f"RasterFrame expects uint8 data, got {self.data.dtype}")
        if self.data.shape != (self.height, self.width, 4):
            raise ValueError(
                f"RasterFrame data shape {self.data.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )

    @classmethod
    def from_array(cls, array: np.ndarray) -> "RasterFrame":
        """Wrap an (H, W, 3) RGB or (H, W, 4) RGBA array. RGB gets opaque alpha."""
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise ValueError(f"Expected (H, W, 3|4) array, got shape {array.shape}")
        h, w = array.shape[:2]
        if array.shape[2] == 3:
            alpha = np.full((h, w, 1), 255, dtype=np.uint8)
            rgba = np.concatenate([array.astype(np.uint8), alpha], axis=2)
        else:
            rgba = array.astype(np.uint8, copy=True)
        return cls(width=w, height=h, data=rgba)

    @classmethod
    def from_bytes(cls, width: int, height: int, buffer: bytes) -> "RasterFrame":
        """Build a frame from a flat interleaved RGBA byte buffer."""
        expected = width * height * 4
        if len(buffer) != expected:
            raise ValueError(f"RGBA buffer for {width}x{height} needs {expected} bytes, got {len(buffer)}")
        data = np.frombuffer(buffer, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(width=width, height=height, data=data)

    def to_bytes(self) -> bytes:
        return self.data.tobytes()

    @property
    def rgb(self) -> np.ndarray:
        """View of the color channels (no copy)."""
        return self.data[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.data[:, :, 3]

    def copy(self) -> "RasterFrame":
        return RasterFrame(width=self.width, height=self.height, data=self.data.copy())
