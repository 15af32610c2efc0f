"""Working-size planning for the model fit."""

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingSize:
    """Resolution planes are resampled to before fitting."""

    width: int
    height: int

    @property
    def num_pixels(self) -> int:
        return self.width * self.height


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def plan_working_size(width: int, height: int, target_num_pixels: int) -> WorkingSize:
    """Scale ``width x height`` down to roughly ``target_num_pixels`` pixels.

    The aspect ratio is preserved and images already within the budget keep
    their size. Each side is at least one pixel.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {width}x{height}")
    if target_num_pixels <= 0:
        raise ValueError(f"Invalid target pixel count: {target_num_pixels}")

    scale = min(1.0, math.sqrt(target_num_pixels / float(width * height)))
    working = WorkingSize(
        width=max(1, _round_half_up(width * scale)),
        height=max(1, _round_half_up(height * scale)),
    )
    logger.debug(f"Working size {working.width}x{working.height} (scale={scale:.4f})")
    return working
