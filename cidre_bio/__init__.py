"""cidre-bio - illumination correction for multi-dimensional microscopy stacks."""

from cidre_bio.bitdepth import estimate_bit_depth
from cidre_bio.correction import correct_plane
from cidre_bio.decode import decode_plane, decode_samples, encode_samples
from cidre_bio.dimensions import ResolvedStack, Selections, resolve_dimensions
from cidre_bio.errors import CidreError, DecodeError, ValidationError
from cidre_bio.formats import PixelFormat, StackShape
from cidre_bio.loader import LoadedChannel, StackLoader, create_loader, load_channel
from cidre_bio.model import CorrectionMode, ModelDescriptor, load_models, save_models
from cidre_bio.options import CidreOptions
from cidre_bio.pipeline import build_models, correct_sources
from cidre_bio.planner import WorkingSize, plan_working_size
from cidre_bio.sinks import TiffPlaneSink
from cidre_bio.sources import ArrayPlaneSource, BioioPlaneSource, PlaneSource, open_sources

__all__ = [
    "ArrayPlaneSource",
    "BioioPlaneSource",
    "CidreError",
    "CidreOptions",
    "CorrectionMode",
    "DecodeError",
    "LoadedChannel",
    "ModelDescriptor",
    "PlaneSource",
    "PixelFormat",
    "ResolvedStack",
    "Selections",
    "StackLoader",
    "StackShape",
    "TiffPlaneSink",
    "ValidationError",
    "WorkingSize",
    "build_models",
    "correct_plane",
    "correct_sources",
    "create_loader",
    "decode_plane",
    "decode_samples",
    "encode_samples",
    "estimate_bit_depth",
    "load_channel",
    "load_models",
    "open_sources",
    "plan_working_size",
    "resolve_dimensions",
    "save_models",
]

__version__ = "0.1.0"
