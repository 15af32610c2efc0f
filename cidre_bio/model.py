"""Illumination model descriptors, correction modes and model files."""

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)


class CorrectionMode(enum.Enum):
    """How a fitted model is applied to a plane.

    - ZERO_LIGHT_PRESERVED: keeps the intensity range and zero-light level
    - DYNAMIC_RANGE_CORRECTED: keeps the intensity range, removes zero-light
    - DIRECT: subtracts the zero-light term and divides by the gain
    """

    ZERO_LIGHT_PRESERVED = "ZERO_LIGHT_PRESERVED"
    DYNAMIC_RANGE_CORRECTED = "DYNAMIC_RANGE_CORRECTED"
    DIRECT = "DIRECT"

    @classmethod
    def from_name(cls, name: Union[str, "CorrectionMode"]) -> "CorrectionMode":
        """Parse ``zero-light-preserved``, ``DIRECT`` etc."""
        if isinstance(name, cls):
            return name
        key = str(name).strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls[key]
        except KeyError:
            raise ValueError(
                f"Unknown correction mode {name!r}; expected one of "
                f"{', '.join(m.name for m in cls)}"
            ) from None


def _as_field(name, values, width, height):
    # type: (str, np.ndarray, int, int) -> np.ndarray
    """Return a read-only ``(height, width)`` float64 copy of a model field."""
    arr = np.array(values, dtype=np.float64, copy=True)
    if arr.ndim == 1:
        if arr.size != width * height:
            raise ValueError(
                f"Model field {name!r} has {arr.size} values, expected {width * height}"
            )
        arr = arr.reshape(height, width)
    elif arr.shape != (height, width):
        raise ValueError(
            f"Model field {name!r} has shape {arr.shape}, expected {(height, width)}"
        )
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class ModelDescriptor:
    """A fitted illumination model at original image resolution.

    Fields may be given flattened (row-major, ``y * width + x``) or as
    ``(height, width)`` arrays; they are stored as read-only 2D arrays.

    Attributes:
        image_size: Original plane size as ``(width, height)``
        v: Gain field
        z: Zero-light field
        min_image: Per-pixel minimum of the stack the model was built from
        working_size: Size the model was fitted at, ``(width, height)``
    """

    image_size: Tuple[int, int]
    v: np.ndarray
    z: np.ndarray
    min_image: np.ndarray
    working_size: Optional[Tuple[int, int]] = None

    def __post_init__(self):
        width, height = (int(d) for d in self.image_size)
        object.__setattr__(self, "image_size", (width, height))
        for name in ("v", "z", "min_image"):
            object.__setattr__(self, name, _as_field(name, getattr(self, name), width, height))
        if self.working_size is not None:
            object.__setattr__(
                self, "working_size", tuple(int(d) for d in self.working_size)
            )

    @property
    def width(self) -> int:
        return self.image_size[0]

    @property
    def height(self) -> int:
        return self.image_size[1]


class ModelFitter(Protocol):
    """Fits an illumination model to a working-size stack.

    ``planes`` is the ``(N, height, width)`` working-size stack in load
    order; ``options`` is a :class:`cidre_bio.options.CidreOptions`. The
    returned descriptor's ``v`` and ``z`` may be at working size or original
    size; its ``min_image`` is replaced by the loader's.
    """

    def fit(self, planes: np.ndarray, options) -> ModelDescriptor: ...


def save_models(path, models):
    # type: (Union[str, Path], Dict[int, ModelDescriptor]) -> Path
    """Write per-channel models to a single ``.npz`` file.

    Args:
        path: Output file path (``.npz`` is appended by NumPy if missing)
        models: Mapping of channel index to model

    Returns:
        Path of the written file
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_name(path.name + ".npz")
    arrays = {"channels": np.array(sorted(models), dtype=np.int64)}
    for channel, model in models.items():
        prefix = f"c{channel}_"
        arrays[prefix + "image_size"] = np.array(model.image_size, dtype=np.int64)
        arrays[prefix + "v"] = model.v
        arrays[prefix + "z"] = model.z
        arrays[prefix + "min_image"] = model.min_image
        if model.working_size is not None:
            arrays[prefix + "working_size"] = np.array(model.working_size, dtype=np.int64)
    np.savez(path, **arrays)
    logger.info(f"Saved {len(models)} channel model(s) to {path}")
    return path


def load_models(path, channels=None):
    # type: (Union[str, Path], Optional[Sequence[int]]) -> Dict[int, ModelDescriptor]
    """Read per-channel models written by :func:`save_models`.

    Raises:
        FileNotFoundError: If the file does not exist
        KeyError: If a requested channel is not in the file
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")

    models = {}
    with np.load(path) as data:
        available = [int(c) for c in data["channels"]]
        wanted = available if channels is None else list(channels)
        for channel in wanted:
            if channel not in available:
                raise KeyError(f"No model for channel {channel} in {path.name}")
            prefix = f"c{channel}_"
            working_key = prefix + "working_size"
            models[channel] = ModelDescriptor(
                image_size=tuple(data[prefix + "image_size"]),
                v=data[prefix + "v"],
                z=data[prefix + "z"],
                min_image=data[prefix + "min_image"],
                working_size=tuple(data[working_key]) if working_key in data.files else None,
            )
    logger.info(f"Loaded model(s) for channel(s) {sorted(models)} from {path.name}")
    return models
