"""Raw plane buffer decoding.

Converts the bytes of a single plane into a ``(height, width)`` float64 array.
Byte ``x * bpp + y * bpp * width`` holds the sample at column ``x`` of row
``y``, so the decoded array is row-major and its flat index is ``y * width + x``.

Integer samples are shifted by the signed minimum of their width depending on
the signedness of the source:

- 1 byte: read signed, shifted by +128 when the source is *unsigned*
- 2 bytes: read unsigned, shifted by +32768 when the source is *signed*
- 4 and 8 bytes: read signed, shifted by +2**31 / +2**63 when *unsigned*

Floating point samples are returned unchanged.
"""

import logging
from typing import Optional, Tuple
import numpy as np

from cidre_bio.errors import DecodeError
from cidre_bio.formats import PixelFormat

logger = logging.getLogger(__name__)

INT8_MIN = -(2**7)
INT16_MIN = -(2**15)
INT32_MIN = -(2**31)
INT64_MIN = -(2**63)
SIGN_BIT_64 = np.uint64(2**63)


def _raw_dtype(bytes_per_sample, is_floating_point, is_little_endian):
    # type: (int, bool, bool) -> Optional[np.dtype]
    """Storage dtype used to read the buffer, or None if unsupported."""
    order = "<" if is_little_endian else ">"
    if is_floating_point:
        if bytes_per_sample in (4, 8):
            return np.dtype(f"{order}f{bytes_per_sample}")
        return None
    if bytes_per_sample == 1:
        return np.dtype("i1")
    if bytes_per_sample == 2:
        return np.dtype(f"{order}u2")
    if bytes_per_sample in (4, 8):
        return np.dtype(f"{order}i{bytes_per_sample}")
    return None


def _sign_shift(bytes_per_sample, is_unsigned):
    # type: (int, bool) -> int
    """Value subtracted from a stored integer to get the sample value."""
    if bytes_per_sample == 1:
        return INT8_MIN if is_unsigned else 0
    if bytes_per_sample == 2:
        return 0 if is_unsigned else INT16_MIN
    if bytes_per_sample == 4:
        return INT32_MIN if is_unsigned else 0
    return INT64_MIN if is_unsigned else 0


def sample_range(pixel_format: PixelFormat) -> Optional[Tuple[int, int]]:
    """Smallest and largest sample value an integer format decodes to.

    Returns None for floating point formats.
    """
    raw_dtype = _raw_dtype(
        pixel_format.bytes_per_sample,
        pixel_format.is_floating_point,
        pixel_format.is_little_endian,
    )
    if raw_dtype is None:
        raise DecodeError(f"Unsupported sample format: {pixel_format.describe()}")
    if pixel_format.is_floating_point:
        return None
    info = np.iinfo(raw_dtype)
    shift = _sign_shift(pixel_format.bytes_per_sample, pixel_format.is_unsigned)
    return int(info.min) - shift, int(info.max) - shift


def check_sample_range(samples, pixel_format: PixelFormat) -> None:
    """Raise ValueError if ``samples`` cannot be stored in ``pixel_format``."""
    bounds = sample_range(pixel_format)
    samples = np.asarray(samples)
    if bounds is None or samples.size == 0:
        return
    low, high = bounds
    if samples.dtype.kind not in "ui":
        samples = np.rint(samples)
    actual_low = samples.min().item()
    actual_high = samples.max().item()
    if actual_low < low or actual_high > high:
        raise ValueError(
            f"Sample values [{actual_low}, {actual_high}] do not fit "
            f"{pixel_format.describe()} samples, which decode to [{low}, {high}]"
        )


def decode_samples(
    buffer,
    bytes_per_sample: int,
    is_floating_point: bool,
    is_little_endian: bool,
    is_unsigned: bool,
    width: int,
    height: int,
) -> Optional[np.ndarray]:
    """Decode a raw plane buffer into real-valued samples.

    Args:
        buffer: Raw plane bytes (bytes, bytearray, memoryview or uint8 array)
        bytes_per_sample: Sample width in bytes
        is_floating_point: Samples are IEEE-754 floats
        is_little_endian: Byte order of multi-byte samples
        is_unsigned: Integer samples are unsigned
        width: Plane width in pixels
        height: Plane height in pixels

    Returns:
        ``(height, width)`` float64 array, or None if the sample format is
        not supported

    Raises:
        DecodeError: If the buffer holds fewer than ``width * height`` samples
    """
    logger.debug(f"Converting to double array with bpp={bytes_per_sample}")
    raw_dtype = _raw_dtype(bytes_per_sample, is_floating_point, is_little_endian)
    if raw_dtype is None:
        return None

    count = width * height
    needed = count * bytes_per_sample
    data = memoryview(buffer).cast("B")
    if data.nbytes < needed:
        raise DecodeError(
            f"Plane buffer holds {data.nbytes} bytes, expected {needed} "
            f"for {width}x{height} samples of {bytes_per_sample} byte(s)"
        )

    raw = np.frombuffer(data, dtype=raw_dtype, count=count).reshape(height, width)

    if is_floating_point:
        return raw.astype(np.float64)

    if bytes_per_sample == 8:
        if is_unsigned:
            # x - INT64_MIN is exactly the uint64 with the sign bit flipped
            flipped = raw.astype(np.int64).view(np.uint64) ^ SIGN_BIT_64
            return flipped.astype(np.float64)
        return raw.astype(np.float64)

    min_value = _sign_shift(bytes_per_sample, is_unsigned)
    logger.debug(f"Converting to double array with min={min_value}")
    return raw.astype(np.float64) - min_value


def decode_plane(buffer, pixel_format: PixelFormat, width: int, height: int) -> np.ndarray:
    """Decode a raw plane buffer, failing loudly on unsupported formats.

    Args:
        buffer: Raw plane bytes
        pixel_format: Encoding of the buffer
        width: Plane width in pixels
        height: Plane height in pixels

    Returns:
        ``(height, width)`` float64 array

    Raises:
        DecodeError: If the format is unsupported or the buffer is too short
    """
    samples = decode_samples(
        buffer,
        pixel_format.bytes_per_sample,
        pixel_format.is_floating_point,
        pixel_format.is_little_endian,
        pixel_format.is_unsigned,
        width,
        height,
    )
    if samples is None:
        logger.error(f"Unsupported sample format: {pixel_format.describe()}")
        raise DecodeError(f"Unsupported sample format: {pixel_format.describe()}")
    return samples


def encode_samples(samples, pixel_format: PixelFormat) -> bytes:
    """Encode real-valued samples into a raw plane buffer.

    Exact inverse of :func:`decode_plane` for values the format can
    represent (see :func:`sample_range`): applies the inverse of the sign
    shift, then packs the samples row-major in the format's byte order.

    Args:
        samples: 2D array-like of sample values
        pixel_format: Target encoding

    Returns:
        Raw plane bytes

    Raises:
        ValueError: If a sample lies outside the range the format decodes to
    """
    plane = np.asarray(samples)
    if plane.ndim != 2:
        raise ValueError(f"Expected 2D plane, got {plane.ndim}D")

    bpp = pixel_format.bytes_per_sample
    raw_dtype = _raw_dtype(bpp, pixel_format.is_floating_point, pixel_format.is_little_endian)
    if raw_dtype is None:
        raise DecodeError(f"Unsupported sample format: {pixel_format.describe()}")

    if pixel_format.is_floating_point:
        return np.ascontiguousarray(plane, dtype=raw_dtype).tobytes()
    check_sample_range(plane, pixel_format)

    if bpp == 8:
        values = np.rint(plane)
        if pixel_format.is_unsigned:
            stored = (values.astype(np.uint64) ^ SIGN_BIT_64).view(np.int64)
        else:
            stored = values.astype(np.int64)
        return np.ascontiguousarray(stored, dtype=raw_dtype).tobytes()

    min_value = _sign_shift(bpp, pixel_format.is_unsigned)
    stored = np.rint(plane.astype(np.float64) + min_value).astype(np.int64)
    return np.ascontiguousarray(stored.astype(raw_dtype)).tobytes()
