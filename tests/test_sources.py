"""Tests for plane sources and input expansion."""

import time
from types import SimpleNamespace

import numpy as np
import pytest
from bioio import BioImage

from cidre_bio.decode import decode_plane
from cidre_bio.formats import PixelFormat
from cidre_bio.loader import create_loader
from cidre_bio.sources import (
    ArrayPlaneSource,
    BioioPlaneSource,
    PlaneSource,
    expand_inputs,
    open_sources,
)


def test_array_source_shape_and_planes():
    data = np.arange(2 * 3 * 4 * 5, dtype=np.uint16).reshape(2, 3, 4, 5)
    source = ArrayPlaneSource(data, dim_order="ZCYX", name="zc")
    assert isinstance(source, PlaneSource)

    shape = source.shape
    assert (shape.series_count, shape.time_count, shape.channel_count, shape.z_count) == (1, 1, 3, 2)
    assert (shape.height, shape.width) == (4, 5)
    assert shape.pixel_format == PixelFormat(2, is_unsigned=True)

    raw = source.read_raw_plane(series=0, z=1, channel=2, time=0)
    np.testing.assert_array_equal(decode_plane(raw, shape.pixel_format, 5, 4), data[1, 2])


def test_array_source_signed_format():
    data = np.array([[-3, 0], [7, -128]], dtype=np.int8)
    source = ArrayPlaneSource(data)
    raw = source.read_raw_plane(0, 0, 0, 0)
    plane = decode_plane(raw, source.shape.pixel_format, 2, 2)
    np.testing.assert_array_equal(plane, data)


def test_array_source_rejects_bad_dim_order():
    with pytest.raises(ValueError):
        ArrayPlaneSource(np.zeros((2, 2, 2)), dim_order="YX")
    with pytest.raises(ValueError):
        ArrayPlaneSource(np.zeros((2, 2, 2)), dim_order="YXC")


def test_closed_source_refuses_reads(two_plane_source):
    with two_plane_source as source:
        source.read_raw_plane(0, 0, 0, 1)
    with pytest.raises(ValueError):
        two_plane_source.read_raw_plane(0, 0, 0, 1)


def test_open_sources_closes_on_error():
    opened = []

    def opener(path):
        if path == "bad":
            raise OSError("cannot open")
        opened.append(ArrayPlaneSource(np.zeros((2, 2), dtype=np.uint8), name=path))
        return opened[-1]

    with pytest.raises(OSError):
        with open_sources(["a", "b", "bad"], opener=opener):
            pass
    assert [s.closed for s in opened] == [True, True]

    with open_sources(["c"], opener=opener) as sources:
        assert sources[0].name == "c"
        assert not sources[0].closed
    assert sources[0].closed


def test_expand_inputs(tmp_path):
    for name in ("b.TIF", "a.tif", "notes.txt"):
        (tmp_path / name).write_bytes(b"")
    (tmp_path / "sub").mkdir()

    assert [p.name for p in expand_inputs([tmp_path])] == ["a.tif", "b.TIF", "notes.txt"]
    assert [p.name for p in expand_inputs([str(tmp_path / "*.tif")])] == ["a.tif", "b.TIF"]
    assert expand_inputs(["missing.tif"])[0].name == "missing.tif"


def test_array_source_rejects_values_the_format_cannot_hold():
    with pytest.raises(ValueError, match="int16"):
        ArrayPlaneSource(np.array([[-5, 0], [100, 7]], dtype=np.int16))


def test_array_source_with_explicit_signed_format():
    data = np.array([[32768, 40000], [65535, 98303]], dtype=np.int32)
    source = ArrayPlaneSource(data, pixel_format=PixelFormat(2, is_unsigned=False))
    raw = source.read_raw_plane(0, 0, 0, 0)
    np.testing.assert_array_equal(decode_plane(raw, source.shape.pixel_format, 2, 2), data)


def _scenes():
    """Two ZYX scenes whose planes are all distinct."""
    first = np.arange(3 * 2 * 4, dtype=np.uint16).reshape(3, 2, 4)
    return [first, first + 1000]


def test_bioio_source_shape_from_scenes():
    source = BioioPlaneSource(BioImage(_scenes()))
    shape = source.shape
    assert isinstance(source, PlaneSource)
    assert (shape.series_count, shape.time_count, shape.channel_count, shape.z_count) == (2, 1, 1, 3)
    assert (shape.height, shape.width) == (2, 4)
    assert shape.pixel_format == PixelFormat.from_dtype(np.uint16)


def test_bioio_source_reads_planes_across_scenes():
    scenes = _scenes()
    source = BioioPlaneSource(BioImage(scenes))
    fmt = source.shape.pixel_format
    for series, z in [(1, 2), (0, 0), (1, 0), (0, 2)]:
        raw = source.read_raw_plane(series=series, z=z, channel=0, time=0)
        assert len(raw) == source.shape.plane_bytes
        np.testing.assert_array_equal(decode_plane(raw, fmt, 4, 2), scenes[series][z])


def test_bioio_source_yx_only_image():
    data = np.arange(12, dtype=np.uint16).reshape(3, 4)
    with BioioPlaneSource(BioImage(data)) as source:
        shape = source.shape
        assert (shape.series_count, shape.time_count, shape.channel_count, shape.z_count) == (1, 1, 1, 1)
        assert shape.bits_per_sample == 16
        raw = source.read_raw_plane(0, 0, 0, 0)
        np.testing.assert_array_equal(decode_plane(raw, shape.pixel_format, 4, 3), data)
    with pytest.raises(ValueError):
        source.read_raw_plane(0, 0, 0, 0)


def _raise_not_implemented(self):
    raise NotImplementedError("no OME metadata")


def test_bioio_source_significant_bits(monkeypatch):
    data = np.zeros((2, 2), dtype=np.uint16)

    monkeypatch.setattr(BioImage, "ome_metadata", property(_raise_not_implemented))
    assert BioioPlaneSource(BioImage(data)).shape.bits_per_sample == 16

    pixels = SimpleNamespace(significant_bits=None)
    ome = SimpleNamespace(images=[SimpleNamespace(pixels=pixels)])
    monkeypatch.setattr(BioImage, "ome_metadata", property(lambda self: ome))
    assert BioioPlaneSource(BioImage(data)).shape.bits_per_sample == 16

    pixels.significant_bits = 12
    assert BioioPlaneSource(BioImage(data)).shape.bits_per_sample == 12


def test_parallel_load_reads_each_series(monkeypatch):
    original = BioImage.get_image_dask_data

    def slow_get_image_dask_data(self, *args, **kwargs):
        # Leave time for another thread to switch scenes
        time.sleep(0.02)
        return original(self, *args, **kwargs)

    monkeypatch.setattr(BioImage, "get_image_dask_data", slow_get_image_dask_data)
    scenes = _scenes()

    source = BioioPlaneSource(BioImage(scenes))
    sequential = create_loader([source], skip_preprocessing=True).load_channel(0)
    source = BioioPlaneSource(BioImage(scenes))
    parallel = create_loader([source], skip_preprocessing=True, workers=4).load_channel(0)

    expected = [scenes[s][z] for s in range(2) for z in range(3)]
    for planes in (sequential.planes, parallel.planes):
        assert len(planes) == len(expected)
        for plane, want in zip(planes, expected):
            np.testing.assert_array_equal(plane, want)
