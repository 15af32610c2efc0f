"""Per-channel stack loading.

Loads every selected plane of one channel from a set of plane sources,
resamples each plane to the working size for the model fit, and folds the
original-resolution planes into a per-pixel minimum image and a global
maximum. Planes are enumerated source by source, then series (outer), z,
and time (inner).
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from cidre_bio.decode import decode_plane
from cidre_bio.dimensions import ResolvedStack, Selections, resolve_dimensions
from cidre_bio.errors import ValidationError
from cidre_bio.planner import WorkingSize, plan_working_size
from cidre_bio.resample import resample_plane

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaneKey:
    """Position of one plane in a multi-source stack."""

    source: int
    series: int
    z: int
    channel: int
    time: int


@dataclass(frozen=True)
class StackAccumulator:
    """Running per-pixel minimum and global maximum over loaded planes.

    Attributes:
        min_image: Elementwise minimum of all planes seen (None before the first)
        max_sample: Largest sample seen
        count: Number of planes folded in
    """

    min_image: Optional[np.ndarray] = None
    max_sample: float = float("-inf")
    count: int = 0


def accumulate(acc: StackAccumulator, plane: np.ndarray) -> StackAccumulator:
    """Fold one original-resolution plane into the accumulator."""
    if acc.min_image is None:
        min_image = np.array(plane, dtype=np.float64, copy=True)
    else:
        if acc.min_image.shape != plane.shape:
            raise ValueError(
                f"Plane shape {plane.shape} != min image shape {acc.min_image.shape}"
            )
        min_image = np.minimum(acc.min_image, plane)
    return StackAccumulator(
        min_image=min_image,
        max_sample=max(acc.max_sample, float(np.max(plane))),
        count=acc.count + 1,
    )


def combine(a: StackAccumulator, b: StackAccumulator) -> StackAccumulator:
    """Merge two accumulators; associative and commutative."""
    if a.min_image is None:
        return b
    if b.min_image is None:
        return a
    return StackAccumulator(
        min_image=np.minimum(a.min_image, b.min_image),
        max_sample=max(a.max_sample, b.max_sample),
        count=a.count + b.count,
    )


@dataclass
class LoadedChannel:
    """Result of loading one channel.

    Attributes:
        channel: Channel index
        planes: Working-size planes in enumeration order
        min_image: Elementwise minimum at original resolution
        max_sample: Largest sample observed at original resolution
        keys: Position of each plane in ``planes``
    """

    channel: int
    planes: List[np.ndarray]
    min_image: np.ndarray
    max_sample: float
    keys: List[PlaneKey] = field(default_factory=list)

    @property
    def stack(self) -> np.ndarray:
        """Working-size planes as one ``(N, height, width)`` array."""
        return np.stack(self.planes)


class StackLoader:
    """Loads channels of a validated multi-source stack.

    :param sources: Plane sources, already validated by :func:`resolve_dimensions`
    :param resolved: Resolved stack description
    :param working_size: Target size for the fit (default: original size)
    :param resample: Resampling primitive ``(plane, width, height) -> plane``
    :param workers: Number of threads used to decode and resample planes
    """

    def __init__(
        self,
        sources: Sequence,
        resolved: ResolvedStack,
        working_size: Optional[WorkingSize] = None,
        resample: Callable[[np.ndarray, int, int], np.ndarray] = resample_plane,
        workers: int = 1,
    ):
        self.sources = list(sources)
        self.resolved = resolved
        shape = resolved.shape
        self.working_size = working_size or WorkingSize(shape.width, shape.height)
        self.resample = resample
        self.workers = max(1, int(workers))

    def iter_plane_keys(self, channel: int) -> Iterator[PlaneKey]:
        """Yield plane positions in load order: source, series, z, time."""
        for source_idx in range(len(self.sources)):
            for s in self.resolved.series:
                for z in self.resolved.z_sections:
                    for t in self.resolved.timepoints:
                        yield PlaneKey(source_idx, s, z, channel, t)

    def read_plane(self, key: PlaneKey) -> np.ndarray:
        """Decode one plane at original resolution."""
        shape = self.resolved.shape
        source = self.sources[key.source]
        raw = source.read_raw_plane(key.series, key.z, key.channel, key.time)
        return decode_plane(raw, shape.pixel_format, shape.width, shape.height)

    def _load_one(self, key):
        # type: (PlaneKey) -> Tuple[np.ndarray, StackAccumulator]
        plane = self.read_plane(key)
        logger.debug(
            f"Series {key.series}, Min/Max: [{np.min(plane)}, {np.max(plane)}]"
        )
        rescaled = self.resample(plane, self.working_size.width, self.working_size.height)
        return rescaled, accumulate(StackAccumulator(), plane)

    def load_channel(self, channel: int) -> LoadedChannel:
        """Load all selected planes of ``channel``.

        Raises:
            ValidationError: If the channel index is out of range
            DecodeError: If any plane fails to decode; nothing is returned
        """
        channel_count = self.resolved.shape.channel_count
        if channel < 0 or channel >= channel_count:
            logger.error(f"Requested channel index {channel} >= sizeC ({channel_count})")
            raise ValidationError(
                f"Requested channel index {channel} out of range (sizeC={channel_count})",
                field="channel",
            )

        logger.info(f"Loading planes from channel {channel}")
        logger.info(f"Loading {self.resolved.plane_count} planes")
        keys = list(self.iter_plane_keys(channel))

        if self.workers > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                results = list(executor.map(self._load_one, keys))
        else:
            results = map(self._load_one, keys)

        planes = []
        acc = StackAccumulator()
        for rescaled, partial in results:
            planes.append(rescaled)
            acc = combine(acc, partial)

        logger.debug(
            f"Min Image stats: mean: {np.mean(acc.min_image)}, "
            f"max: {np.max(acc.min_image)}, min: {np.min(acc.min_image)}"
        )
        return LoadedChannel(
            channel=channel,
            planes=planes,
            min_image=acc.min_image,
            max_sample=acc.max_sample,
            keys=keys,
        )


def create_loader(
    sources: Sequence,
    selections: Optional[Selections] = None,
    target_num_pixels: int = 9400,
    skip_preprocessing: bool = False,
    workers: int = 1,
) -> StackLoader:
    """Resolve dimensions, plan the working size and build a loader."""
    resolved = resolve_dimensions(sources, selections)
    shape = resolved.shape
    if skip_preprocessing:
        working_size = WorkingSize(shape.width, shape.height)
    else:
        working_size = plan_working_size(shape.width, shape.height, target_num_pixels)
    return StackLoader(sources, resolved, working_size, workers=workers)


def load_channel(sources: Sequence, channel: int, **kwargs) -> LoadedChannel:
    """Convenience wrapper: :func:`create_loader` then ``load_channel``."""
    return create_loader(sources, **kwargs).load_channel(channel)
