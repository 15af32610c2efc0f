import sys

import numpy as np
import pytest
from loguru import logger

from cidre_bio.model import ModelDescriptor
from cidre_bio.sources import ArrayPlaneSource


@pytest.fixture(autouse=True)
def reset_loguru():
    """The CLI reconfigures loguru sinks; restore the default one afterwards."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")


@pytest.fixture
def two_plane_source():
    """A 2x2 uint16 stack with two timepoints."""
    data = np.array(
        [
            [[10, 20], [30, 40]],
            [[5, 25], [35, 15]],
        ],
        dtype=np.uint16,
    )
    return ArrayPlaneSource(data, dim_order="TYX", name="two_planes.tif")


@pytest.fixture
def make_source():
    """Factory for in-memory sources with a given STCZYX shape."""

    def _make(s=1, t=1, c=1, z=1, y=4, x=6, dtype=np.uint16, name="stack.tif", seed=0):
        rng = np.random.default_rng(seed)
        data = rng.integers(0, 1000, size=(s, t, c, z, y, x)).astype(dtype)
        return ArrayPlaneSource(data, dim_order="STCZYX", name=name)

    return _make


@pytest.fixture
def flat_model():
    """A 3x2 model with unit gain and zero offset."""
    return ModelDescriptor(
        image_size=(3, 2),
        v=np.ones(6),
        z=np.zeros(6),
        min_image=np.zeros(6),
    )
