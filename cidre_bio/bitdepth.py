"""Effective bit depth estimation from the observed intensity range."""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

MAX_8_BIT = 2**8 - 1
MAX_12_BIT = 2**12 - 1


def estimate_bit_depth(max_sample, source_bits, override=None):
    # type: (float, int, Optional[int]) -> int
    """Classify images as 8, 12 or 16 bit.

    The estimate follows the largest observed sample rather than the bit
    depth the source declares, so 16-bit containers holding 12-bit camera
    data are reported as 12 bit. An explicit ``override`` is returned as is.

    :param max_sample: Largest sample value observed in the stack
    :param source_bits: Bits per sample reported by the source
    :param override: Bit depth supplied by the user, if any
    :return: 8, 12 or 16 (or ``override``)
    """
    if override is not None:
        logger.info(f"{override}-bit depth images (user supplied)")
        return int(override)

    if source_bits > 8 and max_sample > MAX_12_BIT:
        bit_depth = 16
    elif source_bits > 8 and max_sample > MAX_8_BIT:
        bit_depth = 12
    else:
        bit_depth = 8
    logger.info(f"{bit_depth}-bit depth images (estimated from max intensity={max_sample})")
    return bit_depth
