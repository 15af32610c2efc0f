"""Pixel format and stack shape descriptors shared by sources and decoders."""

import sys
from dataclasses import dataclass
import numpy as np


@dataclass(frozen=True)
class PixelFormat:
    """Numeric encoding of the samples in a raw plane buffer.

    Attributes:
        bytes_per_sample: Width of one sample in bytes (1, 2, 4 or 8)
        is_floating_point: Samples are IEEE-754 floats
        is_little_endian: Byte order of multi-byte samples
        is_unsigned: Integer samples are unsigned
    """

    bytes_per_sample: int
    is_floating_point: bool = False
    is_little_endian: bool = True
    is_unsigned: bool = True

    @property
    def bits_per_sample(self) -> int:
        return self.bytes_per_sample * 8

    @classmethod
    def from_dtype(cls, dtype) -> "PixelFormat":
        """Derive a pixel format from a NumPy dtype.

        Args:
            dtype: NumPy data type (or anything ``np.dtype`` accepts)

        Returns:
            PixelFormat describing how the dtype is laid out in memory
        """
        dtype = np.dtype(dtype)
        if dtype.kind not in "uif":
            raise ValueError(f"Unsupported dtype: {dtype}")
        if dtype.byteorder == "=":
            little = sys.byteorder == "little"
        else:
            # "|" (single byte) has no order; report little endian
            little = dtype.byteorder != ">"
        return cls(
            bytes_per_sample=dtype.itemsize,
            is_floating_point=dtype.kind == "f",
            is_little_endian=little,
            is_unsigned=dtype.kind == "u",
        )

    def to_dtype(self) -> np.dtype:
        """Return the NumPy dtype with the same storage layout."""
        if self.is_floating_point:
            kind = "f"
        elif self.is_unsigned:
            kind = "u"
        else:
            kind = "i"
        order = "<" if self.is_little_endian else ">"
        return np.dtype(f"{order}{kind}{self.bytes_per_sample}")

    def describe(self) -> str:
        """Short human readable name, e.g. ``uint16 (little endian)``."""
        if self.is_floating_point:
            name = {4: "float", 8: "double"}.get(
                self.bytes_per_sample, f"float{self.bits_per_sample}"
            )
        else:
            prefix = "uint" if self.is_unsigned else "int"
            name = f"{prefix}{self.bits_per_sample}"
        order = "little" if self.is_little_endian else "big"
        return f"{name} ({order} endian)"


@dataclass(frozen=True)
class StackShape:
    """Dimensions and encoding of a multi-dimensional image stack.

    Attributes:
        width: Plane width (X) in pixels
        height: Plane height (Y) in pixels
        series_count: Number of series/scenes
        channel_count: Number of channels
        time_count: Number of timepoints
        z_count: Number of z-sections
        pixel_format: Encoding of the raw plane bytes
        bits_per_sample: Significant bits per sample reported by the source
    """

    width: int
    height: int
    series_count: int
    channel_count: int
    time_count: int
    z_count: int
    pixel_format: PixelFormat
    bits_per_sample: int = 0

    def __post_init__(self):
        if not self.bits_per_sample:
            object.__setattr__(
                self, "bits_per_sample", self.pixel_format.bits_per_sample
            )

    @property
    def plane_bytes(self) -> int:
        """Size of one raw plane buffer in bytes."""
        return self.width * self.height * self.pixel_format.bytes_per_sample

    def as_dict(self) -> dict:
        return {
            "S": self.series_count,
            "T": self.time_count,
            "C": self.channel_count,
            "Z": self.z_count,
            "Y": self.height,
            "X": self.width,
        }
