"""Model building and correction over whole stacks.

``build_models`` loads each requested channel at working size, hands the
stack to a model fitter and returns one model per channel at original
resolution. ``correct_sources`` applies per-channel models to every
selected plane of every source and streams the result into plane sinks.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, Dict, Optional, Sequence

import numpy as np

from cidre_bio.bitdepth import estimate_bit_depth
from cidre_bio.correction import correct_plane
from cidre_bio.decode import decode_plane
from cidre_bio.dimensions import Selections, resolve_dimensions
from cidre_bio.errors import ValidationError
from cidre_bio.loader import LoadedChannel, create_loader
from cidre_bio.model import ModelDescriptor, ModelFitter
from cidre_bio.options import CidreOptions
from cidre_bio.planner import WorkingSize
from cidre_bio.resample import resample_plane

logger = logging.getLogger(__name__)


def _select_channels(options, channel_count):
    # type: (CidreOptions, int) -> list
    channels = list(options.channels) or list(range(channel_count))
    for channel in channels:
        if channel < 0 or channel >= channel_count:
            raise ValidationError(
                f"Requested channel index {channel} out of range (sizeC={channel_count})",
                field="channel",
            )
    return channels


def finalize_model(fitted, loaded, width, height, working_size):
    # type: (ModelDescriptor, LoadedChannel, int, int, WorkingSize) -> ModelDescriptor
    """Bring a fitted model to original resolution and attach the min image."""
    v, z = fitted.v, fitted.z
    if fitted.image_size != (width, height):
        logger.debug(
            f"Resizing model from {fitted.width}x{fitted.height} to {width}x{height}"
        )
        v = resample_plane(v, width, height)
        z = resample_plane(z, width, height)
    return ModelDescriptor(
        image_size=(width, height),
        v=v,
        z=z,
        min_image=loaded.min_image,
        working_size=(working_size.width, working_size.height),
    )


def build_models(sources, fitter, options=None, selections=None):
    # type: (Sequence, ModelFitter, Optional[CidreOptions], Optional[Selections]) -> Dict[int, ModelDescriptor]
    """Fit one illumination model per channel.

    Args:
        sources: Plane sources forming one stack
        fitter: Model fitter
        options: Run options (default options if None)
        selections: Series/timepoint/z selections (default: all)

    Returns:
        Mapping of channel index to model at original resolution
    """
    options = options or CidreOptions()
    logger.info(options.describe())
    loader = create_loader(
        sources,
        selections,
        target_num_pixels=options.target_num_pixels,
        skip_preprocessing=options.skip_preprocessing,
        workers=options.workers,
    )
    shape = loader.resolved.shape
    logger.info(
        f"Image size {shape.width}x{shape.height}, working size "
        f"{loader.working_size.width}x{loader.working_size.height}"
    )

    models = {}
    for channel in _select_channels(options, shape.channel_count):
        start_time = time.time()
        loaded = loader.load_channel(channel)
        bit_depth = estimate_bit_depth(loaded.max_sample, shape.bits_per_sample, options.bit_depth)
        fitted = fitter.fit(loaded.stack, replace(options, bit_depth=bit_depth))
        models[channel] = finalize_model(
            fitted, loaded, shape.width, shape.height, loader.working_size
        )
        elapsed = time.time() - start_time
        logger.info(f"Channel {channel} model built in {elapsed:.2f} seconds")
    return models


def correct_sources(sources, models, sink_factory, options=None, selections=None):
    # type: (Sequence, Dict[int, ModelDescriptor], Callable, Optional[CidreOptions], Optional[Selections]) -> int
    """Correct every selected plane of every source.

    Planes are visited per source in series, z, channel, time order.

    Args:
        sources: Plane sources (validated to share one shape)
        models: Mapping of channel index to model
        sink_factory: Called with each source; returns a context-managed
            sink with ``write(plane, series, z, channel, time)``
        options: Run options; ``channels`` limits the corrected channels
        selections: Series/timepoint/z selections (default: all)

    Returns:
        Number of planes corrected

    Raises:
        ValidationError: If a model is missing or does not fit the planes
    """
    options = options or CidreOptions()
    resolved = resolve_dimensions(sources, selections)
    shape = resolved.shape
    channels = _select_channels(options, shape.channel_count)

    for channel in channels:
        if channel not in models:
            raise ValidationError(f"No model for channel {channel}", field="channel")
        model = models[channel]
        if model.image_size != (shape.width, shape.height):
            raise ValidationError(
                f"Model for channel {channel} is {model.width}x{model.height}, "
                f"planes are {shape.width}x{shape.height}",
                field="image_size",
            )

    count = 0
    for source in sources:
        logger.info(f"Correcting planes from {source.name}")
        with sink_factory(source) as sink:
            for s in resolved.series:
                for z in resolved.z_sections:
                    for channel in channels:
                        for t in resolved.timepoints:
                            raw = source.read_raw_plane(s, z, channel, t)
                            plane = decode_plane(raw, shape.pixel_format, shape.width, shape.height)
                            corrected = correct_plane(
                                plane,
                                models[channel],
                                options.correction_mode,
                                options.use_min_image,
                            )
                            if not np.all(np.isfinite(corrected)):
                                logger.warning(
                                    f"Non-finite values in corrected plane "
                                    f"s={s}, z={z}, c={channel}, t={t}"
                                )
                            sink.write(corrected, s, z, channel, t)
                            count += 1
    logger.info(f"Corrected {count} planes")
    return count
