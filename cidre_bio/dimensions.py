"""Stack dimension resolution and validation across plane sources."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from cidre_bio.errors import ValidationError
from cidre_bio.formats import StackShape

logger = logging.getLogger(__name__)

# Fields that must agree across every source of one stack
SHAPE_FIELDS = (
    ("series_count", "Series count"),
    ("channel_count", "Channel count"),
    ("time_count", "Timepoints count"),
    ("z_count", "Z section count"),
    ("width", "Width"),
    ("height", "Height"),
    ("pixel_format", "Pixel type"),
)


@dataclass
class Selections:
    """Requested series, timepoint and z-section indices (empty means all)."""

    series: List[int] = field(default_factory=list)
    timepoints: List[int] = field(default_factory=list)
    z_sections: List[int] = field(default_factory=list)

    def __post_init__(self):
        for name in ("series", "timepoints", "z_sections"):
            values = list(getattr(self, name) or [])
            if any(v < 0 for v in values):
                raise ValueError(f"Negative index in {name}: {values}")
            setattr(self, name, values)

    @property
    def max_series(self) -> int:
        return max(self.series) if self.series else -1

    @property
    def max_timepoint(self) -> int:
        return max(self.timepoints) if self.timepoints else -1

    @property
    def max_z(self) -> int:
        return max(self.z_sections) if self.z_sections else -1


@dataclass(frozen=True)
class ResolvedStack:
    """Shape shared by all sources plus the resolved index lists.

    Attributes:
        shape: Shape shared by every source
        series: Series indices to load
        timepoints: Timepoint indices to load
        z_sections: Z-section indices to load
        source_count: Number of sources in the stack
    """

    shape: StackShape
    series: List[int]
    timepoints: List[int]
    z_sections: List[int]
    source_count: int = 1

    @property
    def planes_per_source(self) -> int:
        return len(self.series) * len(self.timepoints) * len(self.z_sections)

    @property
    def plane_count(self) -> int:
        """Planes loaded per channel over all sources."""
        return self.planes_per_source * self.source_count


def _check_axis_lengths(name, shape, selections):
    # type: (str, StackShape, Selections) -> List[ValidationError]
    errors = []
    if selections.max_series >= shape.series_count:
        errors.append(ValidationError(f"Not enough series in {name}", name, "series"))
    if selections.max_timepoint >= shape.time_count:
        errors.append(ValidationError(f"Not enough timepoints in {name}", name, "timepoints"))
    if selections.max_z >= shape.z_count:
        errors.append(ValidationError(f"Not enough z sections in {name}", name, "z_sections"))
    return errors


def _check_matching_shape(name, reference, shape):
    # type: (str, StackShape, StackShape) -> List[ValidationError]
    errors = []
    for attr, label in SHAPE_FIELDS:
        expected = getattr(reference, attr)
        actual = getattr(shape, attr)
        if expected != actual:
            if attr == "pixel_format":
                expected, actual = expected.describe(), actual.describe()
            errors.append(
                ValidationError(
                    f"{label} differs for {name}: expected {expected}, got {actual}",
                    name,
                    attr,
                )
            )
    return errors


def resolve_dimensions(sources, selections=None):
    # type: (Sequence, Optional[Selections]) -> ResolvedStack
    """Determine the shape shared by all plane sources and validate it.

    The first source defines the reference shape; every other source must
    match it on every field. Each source must also be long enough on every
    axis the selections constrain. Empty selections expand to all indices.

    Args:
        sources: Plane sources contributing to one stack
        selections: Requested series/timepoint/z indices (default: all)

    Returns:
        ResolvedStack with the shared shape and the index lists to load

    Raises:
        ValidationError: On shape mismatch, short axes or nothing to read
    """
    selections = selections or Selections()
    sources = list(sources)
    if not sources:
        raise ValidationError("No plane sources given. Nothing to read.")

    reference = sources[0].shape
    logger.debug(f"Reference shape from {sources[0].name}: {reference.as_dict()}")

    for index, source in enumerate(sources):
        shape = source.shape
        errors = _check_axis_lengths(source.name, shape, selections)
        if index > 0:
            errors.extend(_check_matching_shape(source.name, reference, shape))
        for error in errors:
            logger.error(str(error))
        if errors:
            raise errors[0]

    series = selections.series or list(range(reference.series_count))
    timepoints = selections.timepoints or list(range(reference.time_count))
    z_sections = selections.z_sections or list(range(reference.z_count))

    resolved = ResolvedStack(
        shape=reference,
        series=series,
        timepoints=timepoints,
        z_sections=z_sections,
        source_count=len(sources),
    )
    logger.info(
        f"Image dimensions. S: {len(series)}, T: {len(timepoints)}, Z: {len(z_sections)}"
    )
    if resolved.planes_per_source <= 0:
        logger.error("Empty dimension found. Nothing to read.")
        raise ValidationError("Empty dimension found. Nothing to read.", field="planes")
    logger.info(f"Using {resolved.plane_count} images to build the model")
    return resolved
