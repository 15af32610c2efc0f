"""Plane resampling to the working size."""

import numpy as np
from PIL import Image


def resample_plane(plane: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resize a plane to ``width x height`` with bicubic interpolation.

    Resampling runs in Pillow's 32-bit float mode; the result is returned as
    a new float64 array. A plane that already has the target size is copied.

    Args:
        plane: 2D array (Y, X)
        width: Target width
        height: Target height

    Returns:
        ``(height, width)`` float64 array
    """
    if plane.ndim != 2:
        raise ValueError(f"Expected 2D plane, got {plane.ndim}D")
    if plane.shape == (height, width):
        return np.array(plane, dtype=np.float64, copy=True)

    pil_image = Image.fromarray(np.ascontiguousarray(plane, dtype=np.float32))
    resized = pil_image.resize((width, height), Image.Resampling.BICUBIC)
    return np.asarray(resized, dtype=np.float64).copy()
