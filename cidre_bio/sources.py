# -*- coding: utf-8 -*-
"""Plane sources: where raw plane bytes come from.

A plane source is anything with a ``shape`` (:class:`StackShape`), a
``read_raw_plane(series, z, channel, time)`` returning the raw bytes of one
plane, and a ``close()``. Two variants ship:

- :class:`BioioPlaneSource` reads microscopy files through BioIO
- :class:`ArrayPlaneSource` serves planes from an in-memory NumPy array
"""

import fnmatch
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Protocol, Sequence, Union, runtime_checkable

import numpy as np
from loguru import logger

from cidre_bio.decode import check_sample_range, encode_samples
from cidre_bio.formats import PixelFormat, StackShape


@runtime_checkable
class PlaneSource(Protocol):
    """Capability shared by every plane source."""

    name: str

    @property
    def shape(self) -> StackShape: ...

    def read_raw_plane(self, series: int, z: int, channel: int, time: int) -> bytes: ...

    def close(self) -> None: ...


class ArrayPlaneSource:
    """Plane source backed by an in-memory array of sample values.

    The array holds the values the decoder should reproduce; raw planes are
    produced with :func:`cidre_bio.decode.encode_samples` in ``pixel_format``.

    :param data: Array with the dimensions named in ``dim_order``
    :param dim_order: Dimension names, a subset of ``STCZYX`` ending in ``YX``
    :param pixel_format: Raw encoding (default: derived from ``data.dtype``)
    :param name: Name used in logs and validation errors
    :raises ValueError: If a value cannot be stored in ``pixel_format``
    """

    AXES = "STCZYX"

    def __init__(self, data, dim_order="YX", pixel_format=None, name="array", bits_per_sample=0):
        data = np.asarray(data)
        dim_order = dim_order.upper()
        if data.ndim != len(dim_order):
            raise ValueError(
                f"Array has {data.ndim} dimensions but dim_order is {dim_order!r}"
            )
        if not dim_order.endswith("YX") or any(d not in self.AXES for d in dim_order):
            raise ValueError(f"Unsupported dim_order: {dim_order!r}")

        # Expand missing axes to length 1 and reorder to STCZYX
        for axis in self.AXES:
            if axis not in dim_order:
                data = data[np.newaxis, ...]
                dim_order = axis + dim_order
        self._data = np.transpose(data, [dim_order.index(a) for a in self.AXES])

        if pixel_format is None:
            pixel_format = PixelFormat.from_dtype(self._data.dtype)
        check_sample_range(self._data, pixel_format)
        self.name = name
        self.pixel_format = pixel_format
        s, t, c, z, y, x = self._data.shape
        self._shape = StackShape(
            width=x,
            height=y,
            series_count=s,
            channel_count=c,
            time_count=t,
            z_count=z,
            pixel_format=pixel_format,
            bits_per_sample=bits_per_sample,
        )
        self.closed = False

    @property
    def shape(self) -> StackShape:
        return self._shape

    def read_raw_plane(self, series: int, z: int, channel: int, time: int) -> bytes:
        if self.closed:
            raise ValueError(f"{self.name} is closed")
        plane = self._data[series, time, channel, z]
        logger.debug(f"{self.name} - reading plane s={series}, z={z}, c={channel}, t={time}")
        return encode_samples(plane, self.pixel_format)

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return f"ArrayPlaneSource(name={self.name!r}, shape={self._shape.as_dict()})"


class BioioPlaneSource:
    """Plane source reading a microscopy file through BioIO.

    Scenes map to series. The raw bytes of a plane are the pixel data exactly
    as stored by the reader, in the dtype and byte order it reports.
    Reads are serialised, so one source can be shared by loader threads.

    :param image: Path to the bioimage file or a ``bioio.BioImage`` instance
    """

    def __init__(self, image):
        from bioio import BioImage

        if isinstance(image, BioImage):
            self._img = image
            self.name = "bioimage"
        else:
            self._img = BioImage(image)
            self.name = Path(image).name

        logger.debug(f"{self.name} - using bioio implementation")
        try:
            logger.debug(f"{self.name} - using {self._img._plugin.entrypoint.name} reader")
        except AttributeError:
            pass

        self._lock = threading.Lock()
        self._scene = 0
        num_scenes = len(self._img.scenes)
        if num_scenes > 1:
            self._img.set_scene(0)
        self._shape = self._read_shape(num_scenes)
        logger.debug(f"{self.name} - {self._shape.as_dict()}, {self._shape.pixel_format.describe()}")
        self.closed = False

    def _read_shape(self, num_scenes):
        # type: (int) -> StackShape
        dims = self._img.dims
        dim_sizes = dict(zip(dims.order, dims.shape))
        dtype = np.dtype(self._img.dtype)
        return StackShape(
            width=dim_sizes["X"],
            height=dim_sizes["Y"],
            series_count=num_scenes,
            channel_count=dim_sizes.get("C", 1),
            time_count=dim_sizes.get("T", 1),
            z_count=dim_sizes.get("Z", 1),
            pixel_format=PixelFormat.from_dtype(dtype),
            bits_per_sample=self._significant_bits(),
        )

    def _significant_bits(self):
        # type: () -> int
        """Significant bits from the OME metadata, 0 if not available."""
        try:
            pixels = self._img.ome_metadata.images[self._scene].pixels
            return int(pixels.significant_bits or 0)
        except Exception as e:
            logger.debug(f"{self.name} - no significant bits in metadata ({e})")
            return 0

    @property
    def shape(self) -> StackShape:
        return self._shape

    def read_raw_plane(self, series: int, z: int, channel: int, time: int) -> bytes:
        if self.closed:
            raise ValueError(f"{self.name} is closed")
        # The current scene is shared state of the BioImage
        with self._lock:
            if series != self._scene:
                self._img.set_scene(series)
                self._scene = series
                logger.debug(f"{self.name} - processing scene {series}: {self._img.scenes[series]}")

            dims = self._img.dims.order
            kwargs = {}
            if "Z" in dims:
                kwargs["Z"] = z
            if "C" in dims:
                kwargs["C"] = channel
            if "T" in dims:
                kwargs["T"] = time

            # Compute only this specific plane
            plane = self._img.get_image_dask_data("YX", **kwargs).compute()
        return np.ascontiguousarray(plane).tobytes()

    def close(self) -> None:
        if not self.closed:
            close = getattr(self._img, "close", None)
            if callable(close):
                close()
            self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return f"BioioPlaneSource(name={self.name!r})"


def open_plane_source(path):
    # type: (Union[str, Path]) -> PlaneSource
    """Open a plane source for a file path."""
    return BioioPlaneSource(path)


@contextmanager
def open_sources(paths, opener=open_plane_source):
    # type: (Sequence[Union[str, Path]], object) -> Iterator[List[PlaneSource]]
    """Open one plane source per path and close all of them on exit.

    Sources opened before a failing one are closed before the error propagates.
    """
    sources = []
    try:
        for path in paths:
            sources.append(opener(path))
        yield sources
    finally:
        for source in sources:
            try:
                source.close()
            except Exception as e:
                logger.warning(f"Failed to close {source.name}: {e}")


def expand_inputs(inputs):
    # type: (Sequence[Union[str, Path]]) -> List[Path]
    """Expand directories and ``*`` file masks into a sorted list of files.

    A directory contributes every file in it (non-recursive); a mask such as
    ``data/*.tif`` is matched case-insensitively on the file name.
    """
    files = []
    for item in inputs:
        item = str(item)
        if os.path.isdir(item):
            files.extend(sorted(f for f in Path(item).iterdir() if f.is_file()))
        elif "*" in item:
            directory, pattern = os.path.split(item)
            directory = directory or "."
            matches = [
                Path(directory) / name
                for name in os.listdir(directory)
                if fnmatch.fnmatch(name.lower(), pattern.lower())
            ]
            files.extend(sorted(f for f in matches if f.is_file()))
        else:
            files.append(Path(item))
    logger.debug(f"Expanded {len(inputs)} input(s) to {len(files)} file(s)")
    return files
