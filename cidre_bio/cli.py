"""CLI interface for cidre-bio."""

import logging
import os
import sys
import tempfile
from pathlib import Path

import click
import numpy as np
from loguru import logger as loguru_logger

from cidre_bio.bitdepth import estimate_bit_depth
from cidre_bio.dimensions import Selections, resolve_dimensions
from cidre_bio.loader import create_loader
from cidre_bio.model import CorrectionMode, load_models
from cidre_bio.options import CidreOptions
from cidre_bio.pipeline import correct_sources
from cidre_bio.planner import plan_working_size
from cidre_bio.sinks import TiffPlaneSink
from cidre_bio.sources import expand_inputs, open_plane_source, open_sources


# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _stacks(inputs, plane_per_file):
    """Group input files into stacks: all files together or one per file."""
    files = expand_inputs(inputs)
    if not files:
        raise click.UsageError("No input files found")
    if plane_per_file:
        return [files]
    return [[f] for f in files]


def _selections(series, timepoints, z_sections):
    return Selections(
        series=list(series), timepoints=list(timepoints), z_sections=list(z_sections)
    )


selection_options = [
    click.option("--series", "-s", multiple=True, type=int, help="Series index to use (repeatable, default: all)"),
    click.option("--timepoints", "-t", multiple=True, type=int, help="Timepoint index to use (repeatable, default: all)"),
    click.option("--z-sections", "-z", multiple=True, type=int, help="Z-section index to use (repeatable, default: all)"),
    click.option(
        "--plane-per-file",
        is_flag=True,
        help="Treat all inputs as one stack stored across files rather than one stack per file.",
    ),
]


def with_selection_options(func):
    for option in reversed(selection_options):
        func = option(func)
    return func


@click.group()
@click.option("--debug", is_flag=True, help="Set logging level to DEBUG")
def cli(debug):
    """cidre-bio - Illumination correction tools for microscopy stacks."""
    level = logging.DEBUG if debug else logging.INFO
    logging.getLogger().setLevel(level)
    loguru_logger.remove()
    loguru_logger.add(sys.stderr, level="DEBUG" if debug else "INFO")


@cli.command()
@click.argument("inputs", nargs=-1, required=True)
@with_selection_options
@click.option(
    "--target-pixels",
    default=9400,
    type=int,
    help="Pixel budget of the working size (default: 9400)",
)
def info(inputs, series, timepoints, z_sections, plane_per_file, target_pixels):
    """
    Show stack dimensions and the working size used for model fitting.

    INPUTS may be files, directories or file masks such as 'data/*.tif'.
    """
    selections = _selections(series, timepoints, z_sections)
    for paths in _stacks(inputs, plane_per_file):
        label = ", ".join(Path(p).name for p in paths)
        try:
            with open_sources(paths, opener=open_plane_source) as sources:
                resolved = resolve_dimensions(sources, selections)
                shape = resolved.shape
                working = plan_working_size(shape.width, shape.height, target_pixels)
                click.echo(f"✓ {label}")
                click.echo(
                    f"  S={shape.series_count}, T={shape.time_count}, C={shape.channel_count}, "
                    f"Z={shape.z_count}, Y={shape.height}, X={shape.width}"
                )
                click.echo(f"  Pixel type: {shape.pixel_format.describe()}")
                click.echo(f"  Planes per channel: {resolved.plane_count}")
                click.echo(f"  Working size: {working.width}x{working.height}")
        except Exception as e:
            click.echo(f"✗ Error processing {label}: {e}", err=True)
            sys.exit(1)


@cli.command()
@click.argument("inputs", nargs=-1, required=True)
@with_selection_options
@click.option("--channel", "-c", default=0, type=int, help="Channel index (default: 0)")
@click.option(
    "--output",
    "-o",
    required=True,
    type=click.Path(path_type=Path),
    help="Output .npz file with the working stack and min image",
)
@click.option("--target-pixels", default=9400, type=int, help="Pixel budget of the working size (default: 9400)")
@click.option("--skip-preprocessing", is_flag=True, help="Keep planes at original size")
@click.option("--bit-depth", type=click.Choice(["8", "12", "16"]), help="Bit depth of the images (default: estimated)")
@click.option("--workers", default=1, type=int, help="Threads used to decode planes (default: 1)")
@click.option("--overwrite", is_flag=True, help="Overwrite output file if it exists")
def prepare(
    inputs,
    series,
    timepoints,
    z_sections,
    plane_per_file,
    channel,
    output,
    target_pixels,
    skip_preprocessing,
    bit_depth,
    workers,
    overwrite,
):
    """
    Load one channel at working size for model fitting.

    Writes the working-size stack, the full-resolution min image, the
    maximum observed intensity and the estimated bit depth to OUTPUT.
    """
    if not plane_per_file and len(expand_inputs(inputs)) > 1:
        click.echo("Error: several inputs need --plane-per-file", err=True)
        sys.exit(1)
    if output.exists() and not overwrite:
        click.echo(f"Error: {output} exists (use --overwrite)", err=True)
        sys.exit(1)

    paths = _stacks(inputs, True)[0]
    selections = _selections(series, timepoints, z_sections)
    try:
        with open_sources(paths, opener=open_plane_source) as sources:
            loader = create_loader(
                sources,
                selections,
                target_num_pixels=target_pixels,
                skip_preprocessing=skip_preprocessing,
                workers=workers,
            )
            loaded = loader.load_channel(channel)
            shape = loader.resolved.shape
            depth = estimate_bit_depth(
                loaded.max_sample,
                shape.bits_per_sample,
                int(bit_depth) if bit_depth else None,
            )
            output.parent.mkdir(parents=True, exist_ok=True)
            # Complete files only: write to a temporary file, then rename into place
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{output.name}.", suffix=".tmp", dir=output.parent
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    np.savez(
                        f,
                        stack=loaded.stack,
                        min_image=loaded.min_image,
                        max_sample=np.float64(loaded.max_sample),
                        bit_depth=np.int64(depth),
                        image_size=np.array([shape.width, shape.height]),
                        working_size=np.array([loader.working_size.width, loader.working_size.height]),
                    )
                os.replace(tmp_name, output)
            except Exception:
                os.unlink(tmp_name)
                raise
        click.echo(f"✓ Loaded {len(loaded.planes)} planes from channel {channel}")
        click.echo(f"  Max intensity: {loaded.max_sample} ({depth}-bit)")
        click.echo(f"✓ Saved: {output}")
    except Exception as e:
        click.echo(f"✗ Error loading channel {channel}: {e}", err=True)
        logger.exception("Loading failed")
        sys.exit(1)


@cli.command()
@click.argument("inputs", nargs=-1, required=True)
@with_selection_options
@click.option(
    "--model",
    "-m",
    "model_file",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Model file (.npz) with one model per channel",
)
@click.option(
    "--output",
    "-o",
    required=True,
    type=click.Path(path_type=Path),
    help="Output directory for corrected images",
)
@click.option(
    "--channels",
    "-c",
    multiple=True,
    type=int,
    help="Channel index to correct (repeatable, default: all)",
)
@click.option(
    "--mode",
    type=click.Choice([m.name for m in CorrectionMode], case_sensitive=False),
    default=CorrectionMode.ZERO_LIGHT_PRESERVED.name,
    help="Correction mode. 'ZERO_LIGHT_PRESERVED' retains the intensity range and "
    "zero-light level of the original images, 'DYNAMIC_RANGE_CORRECTED' retains the "
    "intensity range, 'DIRECT' subtracts the zero-light term and divides by the gain.",
)
@click.option("--use-min-image", is_flag=True, help="Use min(stack) image as the zero-light estimate")
@click.option("--overwrite", is_flag=True, help="Overwrite output file(s) if they exist")
def correct(
    inputs,
    series,
    timepoints,
    z_sections,
    plane_per_file,
    model_file,
    output,
    channels,
    mode,
    use_min_image,
    overwrite,
):
    """
    Apply illumination models to every plane of the input images.

    Writes one float32 TIFF per input file, series and channel to OUTPUT.
    """
    options = CidreOptions(
        correction_mode=mode,
        use_min_image=use_min_image,
        channels=list(channels),
    )
    selections = _selections(series, timepoints, z_sections)

    try:
        models = load_models(model_file, channels=list(channels) or None)
    except Exception as e:
        click.echo(f"✗ Error reading model {model_file}: {e}", err=True)
        sys.exit(1)
    if not options.channels:
        options.channels = sorted(models)

    error_count = 0
    for paths in _stacks(inputs, plane_per_file):
        label = ", ".join(Path(p).name for p in paths)
        try:
            logger.info(f"Processing: {label}")
            with open_sources(paths, opener=open_plane_source) as sources:

                def sink_factory(source):
                    return TiffPlaneSink(output, Path(source.name).stem, overwrite=overwrite)

                count = correct_sources(sources, models, sink_factory, options, selections)
            click.echo(f"✓ {label} -> {count} corrected planes")
        except Exception as e:
            logger.error(f"Failed to process {label}: {e}")
            click.echo(f"✗ {label}: {e}", err=True)
            error_count += 1

    if error_count > 0:
        sys.exit(1)


if __name__ == "__main__":
    cli()
