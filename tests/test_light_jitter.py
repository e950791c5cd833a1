"""Tests for the deterministic light-direction jitter.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import numpy as np
import pytest

from lightmap_core.light_jitter import (
    angular_deviation,
    jitter_light_direction,
    jitter_schedule,
    validate_jitter_schedule,
)

# |offset| = r exactly, so the worst-case angle is arcsin(r), a hair above r
_ANGLE_TOL = 1e-5


class TestJitterLightDirection:
    """Single-pass jitter."""

    def test_first_iteration_offset(self, base_direction: np.ndarray) -> None:
        """Iteration 0: both angles are zero, so the offset is (0, r, 0)."""
        r = 0.025
        expected = base_direction + np.array([0.0, r, 0.0])
        expected /= np.linalg.norm(expected)
        result = jitter_light_direction(0, 64, base_direction, r)
        np.testing.assert_allclose(result, expected, atol=1e-15)

    def test_offset_added_to_raw_base(self) -> None:
        """The base is used as given: a longer base gets a smaller relative tilt."""
        r = 0.1
        base = np.array([0.0, 0.0, -2.0])
        result = jitter_light_direction(0, 8, base, r)
        expected = np.array([0.0, r, -2.0]) / np.linalg.norm([0.0, r, -2.0])
        np.testing.assert_allclose(result, expected, atol=1e-15)
        assert angular_deviation(result, base) == pytest.approx(np.arctan2(r, 2.0))

    def test_non_unit_base_bound(self) -> None:
        report = validate_jitter_schedule(64, np.array([0.0, -4.0, 0.0]), 0.1)
        assert report["passed"]
        assert report["bound_rad"] == pytest.approx(np.arcsin(0.1 / 4.0))

    def test_zero_radius_returns_base(self, base_direction: np.ndarray) -> None:
        unit = base_direction / np.linalg.norm(base_direction)
        for i in range(5):
            np.testing.assert_allclose(
                jitter_light_direction(i, 5, base_direction, 0.0), unit, atol=1e-15
            )

    def test_deterministic(self, base_direction: np.ndarray) -> None:
        a = jitter_light_direction(17, 64, base_direction)
        b = jitter_light_direction(17, 64, base_direction.copy())
        assert np.array_equal(a, b)

    def test_base_not_mutated(self, base_direction: np.ndarray) -> None:
        before = base_direction.copy()
        jitter_light_direction(3, 8, base_direction)
        assert np.array_equal(base_direction, before)

    @pytest.mark.parametrize(
        "iteration, total, radius",
        [(-1, 8, 0.025), (0, 0, 0.025), (0, 8, -0.1)],
        ids=["negative-iteration", "zero-budget", "negative-radius"],
    )
    def test_invalid_arguments(
        self, base_direction: np.ndarray, iteration: int, total: int, radius: float
    ) -> None:
        with pytest.raises(ValueError):
            jitter_light_direction(iteration, total, base_direction, radius)

    def test_zero_base_rejected(self) -> None:
        with pytest.raises(ValueError):
            jitter_light_direction(0, 8, np.zeros(3))


class TestJitterSchedule:
    """Whole-bake schedules."""

    @pytest.mark.parametrize("radius", [0.0, 0.01, 0.025, 0.1])
    def test_bounded_and_unit(self, base_direction: np.ndarray, radius: float) -> None:
        """Every direction is unit length and at most arcsin(r) from the base."""
        schedule = jitter_schedule(256, base_direction, radius)
        assert schedule.shape == (256, 3)
        np.testing.assert_allclose(np.linalg.norm(schedule, axis=1), 1.0, atol=1e-12)
        bound = np.arcsin(radius) + 1e-10
        for d in schedule:
            assert angular_deviation(d, base_direction) <= bound

    def test_default_radius_bound(self, base_direction: np.ndarray) -> None:
        """With r = 0.025 the deviation stays within r up to float tolerance."""
        schedule = jitter_schedule(64, base_direction, 0.025)
        worst = max(angular_deviation(d, base_direction) for d in schedule)
        assert worst <= 0.025 + _ANGLE_TOL

    def test_directions_distinct(self, base_direction: np.ndarray) -> None:
        """No perturbation is revisited within a bake."""
        schedule = jitter_schedule(64, base_direction, 0.025)
        assert np.unique(np.round(schedule, 12), axis=0).shape[0] == 64

    def test_spread_around_base(self, base_direction: np.ndarray) -> None:
        """The mean direction stays close to the base (no one-sided bias)."""
        schedule = jitter_schedule(64, base_direction, 0.025)
        mean = schedule.mean(axis=0)
        assert angular_deviation(mean, base_direction) < 0.025

    def test_validation_report(self, base_direction: np.ndarray) -> None:
        report = validate_jitter_schedule(64, base_direction, 0.025)
        assert report["passed"]
        assert report["num_iterations"] == 64
        assert report["num_distinct"] == 64
        assert report["max_deviation_rad"] <= report["bound_rad"] + 1e-9
        assert report["bound_rad"] == pytest.approx(np.arcsin(0.025))
