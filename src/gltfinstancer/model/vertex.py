"""Packed vertex layout shared with the render pipeline."""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

# Field order and widths are fixed; the pipeline reads this layout verbatim.
VERTEX_DTYPE = np.dtype([
    ("position", "<f4", (3,)),
    ("normal", "<f4", (3,)),
    ("texcoord", "<f4", (2,)),
    ("joints", "u1", (4,)),
    ("weights", "u1", (4,)),   # unorm8
    ("material", "<u4"),
    ("padding", "u1", (4,)),  # keeps the stride at 48 bytes
])

INDEX_DTYPE = np.dtype("<u2")


def empty_vertices(count: int = 0) -> npt.NDArray[np.void]:
    return np.zeros(count, dtype=VERTEX_DTYPE)


def normalize_to_unorm8(values: npt.NDArray[np.floating]) -> npt.NDArray[np.uint8]:
    """Map [0, 1] floats to unorm8, rounding and clamping like the GPU does."""
    scaled = np.round(np.asarray(values, dtype=np.float64) * 255.0)
    return np.clip(scaled, 0.0, 255.0).astype(np.uint8)
