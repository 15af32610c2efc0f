"""Tests for the command line interface."""

from pathlib import Path

import numpy as np
import pytest
from click.testing import CliRunner
from PIL import Image

from cidre_bio import cli as cli_module
from cidre_bio.cli import cli
from cidre_bio.model import ModelDescriptor, save_models
from cidre_bio.sources import ArrayPlaneSource


@pytest.fixture
def stacks(monkeypatch):
    """Serve in-memory stacks in place of files, keyed by file name."""
    arrays = {}

    def opener(path):
        data = arrays[Path(path).name]
        return ArrayPlaneSource(data, dim_order="STCZYX", name=Path(path).name)

    monkeypatch.setattr(cli_module, "open_plane_source", opener)
    return arrays


def _random_stack(shape, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 1000, size=shape).astype(np.uint16)


def test_info(stacks):
    stacks["stack.tif"] = _random_stack((1, 2, 1, 3, 4, 6))
    runner = CliRunner()
    result = runner.invoke(cli, ["info", "stack.tif"])
    assert result.exit_code == 0, result.output
    assert "✓ stack.tif" in result.output
    assert "S=1, T=2, C=1, Z=3, Y=4, X=6" in result.output
    assert "Planes per channel: 6" in result.output
    assert "Working size: 6x4" in result.output

    result = runner.invoke(cli, ["info", "stack.tif", "--target-pixels", "6", "-t", "1"])
    assert result.exit_code == 0, result.output
    assert "Planes per channel: 3" in result.output
    assert "Working size: 3x2" in result.output


def test_info_reports_bad_selection(stacks):
    stacks["stack.tif"] = _random_stack((1, 1, 1, 1, 4, 6))
    result = CliRunner().invoke(cli, ["info", "stack.tif", "-z", "2"])
    assert result.exit_code == 1
    assert "✗ Error processing stack.tif" in result.output


def test_prepare(stacks, tmp_path):
    stacks["a.tif"] = _random_stack((1, 3, 2, 1, 20, 40), seed=1)
    stacks["b.tif"] = _random_stack((1, 3, 2, 1, 20, 40), seed=2)
    output = tmp_path / "prepared.npz"

    runner = CliRunner()
    args = ["prepare", "a.tif", "b.tif", "-c", "1", "-o", str(output), "--target-pixels", "200"]
    result = runner.invoke(cli, args)
    assert result.exit_code == 1
    assert "--plane-per-file" in result.output

    result = runner.invoke(cli, args + ["--plane-per-file"])
    assert result.exit_code == 0, result.output
    assert "✓ Loaded 6 planes from channel 1" in result.output

    with np.load(output) as data:
        assert data["stack"].shape == (6, 10, 20)
        expected_min = np.minimum(
            stacks["a.tif"][0, :, 1, 0].min(axis=0), stacks["b.tif"][0, :, 1, 0].min(axis=0)
        )
        np.testing.assert_array_equal(data["min_image"], expected_min)
        assert int(data["bit_depth"]) == 12
        assert list(data["image_size"]) == [40, 20]
        assert list(data["working_size"]) == [20, 10]

    result = runner.invoke(cli, args + ["--plane-per-file"])
    assert result.exit_code == 1
    assert "--overwrite" in result.output


def test_correct(stacks, tmp_path):
    data = _random_stack((1, 2, 1, 1, 4, 6))
    stacks["stack.tif"] = data
    model = ModelDescriptor((6, 4), np.full(24, 2.0), np.full(24, 1.0), np.zeros(24))
    model_file = save_models(tmp_path / "model.npz", {0: model})
    output = tmp_path / "out"

    runner = CliRunner()
    result = runner.invoke(
        cli, ["correct", "stack.tif", "-m", str(model_file), "-o", str(output), "--mode", "direct"]
    )
    assert result.exit_code == 0, result.output
    assert "✓ stack.tif -> 2 corrected planes" in result.output

    with Image.open(output / "stack.s000_c00.tif") as img:
        assert img.n_frames == 2
        for t in range(2):
            img.seek(t)
            expected = ((data[0, t, 0, 0] - 1.0) / 2.0).astype(np.float32)
            np.testing.assert_allclose(np.asarray(img), expected)


def test_correct_rejects_mismatched_model(stacks, tmp_path):
    stacks["stack.tif"] = _random_stack((1, 1, 1, 1, 4, 6))
    model = ModelDescriptor((3, 2), np.ones(6), np.zeros(6), np.zeros(6))
    model_file = save_models(tmp_path / "model.npz", {0: model})

    result = CliRunner().invoke(
        cli, ["correct", "stack.tif", "-m", str(model_file), "-o", str(tmp_path / "out")]
    )
    assert result.exit_code == 1
    assert "✗ stack.tif" in result.output
    assert not (tmp_path / "out").exists()


def test_prepare_failed_write_leaves_no_file(stacks, tmp_path, monkeypatch):
    stacks["stack.tif"] = _random_stack((1, 2, 1, 1, 4, 6))
    output_dir = tmp_path / "prepared"
    output = output_dir / "stack.npz"

    def failing_savez(f, **arrays):
        f.write(b"PK\x03\x04 partial")
        raise OSError("disk full")

    real_savez = np.savez
    monkeypatch.setattr(cli_module.np, "savez", failing_savez)
    runner = CliRunner()
    result = runner.invoke(cli, ["prepare", "stack.tif", "-o", str(output)])
    assert result.exit_code == 1
    assert "disk full" in result.output
    assert list(output_dir.iterdir()) == []

    monkeypatch.setattr(cli_module.np, "savez", real_savez)
    result = runner.invoke(cli, ["prepare", "stack.tif", "-o", str(output)])
    assert result.exit_code == 0, result.output
    assert list(output_dir.iterdir()) == [output]
