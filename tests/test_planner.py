"""Tests for working-size planning."""

import pytest

from cidre_bio.planner import WorkingSize, plan_working_size


@pytest.mark.parametrize("width,height,budget", [(10, 10, 100), (64, 32, 9400), (1, 1, 1), (50, 20, 10**6)])
def test_images_within_budget_keep_their_size(width, height, budget):
    assert plan_working_size(width, height, budget) == WorkingSize(width, height)


def test_large_image_is_scaled_to_budget():
    working = plan_working_size(1000, 500, 9400)
    assert working == WorkingSize(137, 69)
    assert working.num_pixels == pytest.approx(9400, rel=0.02)


def test_aspect_ratio_is_preserved():
    working = plan_working_size(2048, 1024, 9400)
    assert working.width / working.height == pytest.approx(2.0, rel=0.02)


def test_rounds_half_up():
    # scale is exactly 0.5 -> 2.5 rounds to 3
    assert plan_working_size(5, 1, 1.25).width == 3


def test_sides_are_at_least_one_pixel():
    working = plan_working_size(10000, 1, 4)
    assert working == WorkingSize(200, 1)


@pytest.mark.parametrize("width,height,budget", [(0, 10, 100), (10, -1, 100), (10, 10, 0)])
def test_invalid_arguments(width, height, budget):
    with pytest.raises(ValueError):
        plan_working_size(width, height, budget)
