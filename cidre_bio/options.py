"""Run configuration."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from cidre_bio.model import CorrectionMode


@dataclass
class CidreOptions:
    """Options for building and applying illumination models.

    The ``lambda_*``, ``max_lbfgs_iterations``, ``q_percent``, ``z_limits``
    and ``number_of_quantiles`` fields are not used here; they are passed
    through to the model fitter.
    """

    target_num_pixels: int = 9400
    skip_preprocessing: bool = False
    bit_depth: Optional[int] = None
    correction_mode: CorrectionMode = CorrectionMode.ZERO_LIGHT_PRESERVED
    use_min_image: bool = False
    channels: List[int] = field(default_factory=list)
    workers: int = 1

    # model fitter
    lambda_vreg: float = 6.0
    lambda_zero: float = 0.5
    max_lbfgs_iterations: int = 500
    q_percent: float = 0.25
    z_limits: Optional[Tuple[float, float]] = None
    number_of_quantiles: int = 200

    def __post_init__(self):
        self.correction_mode = CorrectionMode.from_name(self.correction_mode)
        if self.target_num_pixels <= 0:
            raise ValueError(f"target_num_pixels must be > 0, got {self.target_num_pixels}")
        if self.bit_depth is not None and self.bit_depth not in (8, 12, 16):
            raise ValueError(f"bit_depth must be 8, 12 or 16, got {self.bit_depth}")

    def describe(self) -> str:
        """Multi-line summary used in run logs."""
        z_limits = self.z_limits if self.z_limits is not None else ("auto", "auto")
        return (
            "CidreOptions:"
            f"\n\tlambdaVreg: {self.lambda_vreg}"
            f"\n\tlambdaZero: {self.lambda_zero}"
            f"\n\tmaxLbgfsIterations: {self.max_lbfgs_iterations}"
            f"\n\tqPercent: {self.q_percent}"
            f"\n\tzLimits: {z_limits[0]}, {z_limits[1]}"
            f"\n\tbitDepth: {self.bit_depth or 'estimated'}"
            f"\n\tcorrectionMode: {self.correction_mode.name}"
            f"\n\ttargetNumPixels: {self.target_num_pixels}"
            f"\n\tskipPreprocessing: {self.skip_preprocessing}"
            f"\n\tnumberOfQuantiles: {self.number_of_quantiles}"
        )
