"""Plane sinks: where corrected planes go."""

import logging
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


class TiffPlaneSink:
    """Collects corrected planes and writes float32 multi-page TIFF files.

    One file is written per (series, channel) as
    ``<stem>.s<series>_c<channel>.tif``; its pages are the planes in the
    order they were written. Samples are narrowed to float32 here.

    :param output_dir: Directory for the output files (created if missing)
    :param stem: File name stem, usually the input file's stem
    :param overwrite: Replace existing files instead of failing
    """

    def __init__(self, output_dir, stem, overwrite=False):
        self.output_dir = Path(output_dir)
        self.stem = stem
        self.overwrite = overwrite
        self._pages = {}  # type: Dict[Tuple[int, int], List[np.ndarray]]
        self.written = []  # type: List[Path]

    def path_for(self, series: int, channel: int) -> Path:
        return self.output_dir / f"{self.stem}.s{series:03d}_c{channel:02d}.tif"

    def write(self, plane: np.ndarray, series: int, z: int, channel: int, time: int) -> None:
        if plane.ndim != 2:
            raise ValueError(f"Expected 2D plane, got {plane.ndim}D")
        self._pages.setdefault((series, channel), []).append(
            np.ascontiguousarray(plane, dtype=np.float32)
        )
        logger.debug(f"Queued plane s={series}, z={z}, c={channel}, t={time}")

    def close(self) -> List[Path]:
        """Write all queued planes; returns the written paths."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        for (series, channel), pages in sorted(self._pages.items()):
            output_path = self.path_for(series, channel)
            if output_path.exists() and not self.overwrite:
                raise FileExistsError(f"Output file exists: {output_path}")
            images = [Image.fromarray(page) for page in pages]
            images[0].save(
                output_path, format="TIFF", save_all=True, append_images=images[1:]
            )
            logger.info(f"Wrote {len(images)} plane(s) to {output_path}")
            self.written.append(output_path)
        self._pages.clear()
        return self.written

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        # Nothing is written when the correction failed
        if exc_type is None:
            self.close()
        else:
            self._pages.clear()
