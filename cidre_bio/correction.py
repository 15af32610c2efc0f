"""Apply a fitted illumination model to a full-resolution plane."""

import logging

import numpy as np

from cidre_bio.model import CorrectionMode, ModelDescriptor

logger = logging.getLogger(__name__)


def correct_plane(
    plane: np.ndarray,
    model: ModelDescriptor,
    mode: CorrectionMode = CorrectionMode.ZERO_LIGHT_PRESERVED,
    use_min_image: bool = False,
) -> np.ndarray:
    """Remove the illumination bias described by ``model`` from ``plane``.

    With ``use_min_image`` the zero-light term is the stack's minimum image
    shifted to the mean of the zero-light field instead of the field itself.
    Gain values are not guarded: zero gain yields inf/NaN pixels.

    Args:
        plane: ``(height, width)`` plane at the model's image size
        model: Fitted model
        mode: Correction formula
        use_min_image: Use the min image as the zero-light estimate

    Returns:
        New ``(height, width)`` float64 array
    """
    mode = CorrectionMode.from_name(mode)
    plane = np.asarray(plane, dtype=np.float64)
    if plane.shape != (model.height, model.width):
        raise ValueError(
            f"Plane shape {plane.shape} does not match model image size "
            f"{model.width}x{model.height}"
        )

    mean_v = float(np.mean(model.v))
    mean_z = float(np.mean(model.z))
    mean_min_image = float(np.mean(model.min_image))
    logger.debug(f"{model.width}, {model.height}")
    logger.debug(f"{mean_v}, {mean_z}, {mean_min_image}")

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        if use_min_image:
            numerator = plane - (model.min_image - mean_min_image + mean_z)
        else:
            numerator = plane - model.z
        ratio = numerator / model.v

        if mode is CorrectionMode.ZERO_LIGHT_PRESERVED:
            corrected = ratio * mean_v + mean_z
        elif mode is CorrectionMode.DYNAMIC_RANGE_CORRECTED:
            corrected = ratio * mean_v
        else:
            corrected = ratio

        logger.debug(
            f"Image size [{corrected.shape[1]}, {corrected.shape[0]}], mean: {np.mean(corrected)}"
        )
    return corrected
