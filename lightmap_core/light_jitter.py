"""Deterministic light-direction jitter for progressive shadow baking.

Each accumulation pass renders the scene with the light direction
perturbed by a small offset. Averaged over many passes, the hard shadow
of a point light softens into a penumbra, approximating an area light
without an area-light solver.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Algorithm
---------
Golden-ratio sequence on a sphere of radius r around the tip of the base
direction d (used as given, not normalized first):

    α₁ = 2π · i/N + i · 0.618034        (golden-ratio conjugate)
    α₂ = π · sin(i · 2.39996)            (golden angle, rad)

    o = r · (sin α₁ cos α₂,  cos α₁,  sin α₁ sin α₂)      |o| = r

    d_i = (d + o) / |d + o|

Successive indices spread around d with low discrepancy. Because |o| = r,
the angle between d_i and d never exceeds arcsin(r / |d|), which is
arcsin(r) ≈ r for a unit light direction.

The two constants are truncated literals rather than exact values
(1/φ and π(3 − √5)); they are kept as-is so schedules stay reproducible
across implementations.
"""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GOLDEN_RATIO_CONJUGATE: float = 0.618034
_GOLDEN_ANGLE_RAD: float = 2.39996

DEFAULT_JITTER_RADIUS: float = 0.025


# ---------------------------------------------------------------------------
# Core: Jittered Direction
# ---------------------------------------------------------------------------


def jitter_light_direction(
    iteration: int,
    total_iterations: int,
    base_direction: np.ndarray,
    jitter_radius: float = DEFAULT_JITTER_RADIUS,
) -> np.ndarray:
    """Compute the perturbed light direction for one accumulation pass.

    Parameters
    ----------
    iteration : int
        Zero-based pass index.
    total_iterations : int
        Iteration budget of the bake. Must be ≥ 1.
    base_direction : np.ndarray
        Un-jittered light direction. Shape: (3,). The offset is added to
        it as given, so its length scales the relative perturbation.
    jitter_radius : float
        Offset length added to the base direction. Must be ≥ 0.

    Returns
    -------
    np.ndarray
        Unit direction vector. Shape: (3,), dtype: float64.

    Raises
    ------
    ValueError
        On a negative iteration or radius, a budget < 1, or a zero-length
        base direction.
    """
    if total_iterations < 1:
        raise ValueError(f"total_iterations must be ≥ 1, got {total_iterations}")
    if iteration < 0:
        raise ValueError(f"iteration must be ≥ 0, got {iteration}")
    if jitter_radius < 0.0:
        raise ValueError(f"jitter_radius must be ≥ 0, got {jitter_radius}")

    base = np.asarray(base_direction, dtype=np.float64)
    if np.linalg.norm(base) < 1e-12:
        raise ValueError("base_direction must be non-zero")

    angle1 = (iteration / total_iterations) * np.pi * 2.0 + iteration * _GOLDEN_RATIO_CONJUGATE
    angle2 = np.sin(iteration * _GOLDEN_ANGLE_RAD) * np.pi

    offset = np.array(
        [
            np.sin(angle1) * np.cos(angle2),
            np.cos(angle1),
            np.sin(angle1) * np.sin(angle2),
        ],
        dtype=np.float64,
    ) * jitter_radius

    direction = base + offset
    return direction / np.linalg.norm(direction)


def jitter_schedule(
    total_iterations: int,
    base_direction: np.ndarray,
    jitter_radius: float = DEFAULT_JITTER_RADIUS,
) -> np.ndarray:
    """All jittered directions of a bake, one row per iteration.

    Returns
    -------
    np.ndarray
        Shape: (total_iterations, 3).
    """
    return np.stack(
        [
            jitter_light_direction(i, total_iterations, base_direction, jitter_radius)
            for i in range(total_iterations)
        ]
    )


def angular_deviation(a: np.ndarray, b: np.ndarray) -> float:
    """Angle between two direction vectors [rad]."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    return float(np.arctan2(np.linalg.norm(np.cross(a, b)), np.dot(a, b)))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_jitter_schedule(
    total_iterations: int,
    base_direction: np.ndarray,
    jitter_radius: float = DEFAULT_JITTER_RADIUS,
    tolerance: float = 1e-9,
) -> dict[str, float | int | bool]:
    """Check boundedness and spread of a jitter schedule.

    The schedule passes when every direction is unit-length, no
    direction deviates from the base by more than ``arcsin(radius / |base|)``,
    and (for a positive radius) no two passes share a direction.

    Parameters
    ----------
    total_iterations : int
        Iteration budget.
    base_direction : np.ndarray
        Un-jittered light direction. Shape: (3,).
    jitter_radius : float
        Offset length.
    tolerance : float
        Absolute tolerance on norms and angles.

    Returns
    -------
    dict
        Keys: 'num_iterations', 'max_deviation_rad', 'bound_rad',
        'max_norm_error', 'num_distinct', 'passed'.
    """
    schedule = jitter_schedule(total_iterations, base_direction, jitter_radius)
    base = np.asarray(base_direction, dtype=np.float64)

    deviations = np.array([angular_deviation(d, base) for d in schedule])
    norm_error = float(np.max(np.abs(np.linalg.norm(schedule, axis=1) - 1.0)))
    bound = float(np.arcsin(min(jitter_radius / np.linalg.norm(base), 1.0)))
    num_distinct = int(np.unique(np.round(schedule, 12), axis=0).shape[0])

    passed = (
        norm_error <= tolerance
        and float(deviations.max()) <= bound + tolerance
        and (jitter_radius == 0.0 or num_distinct == total_iterations)
    )

    result = {
        "num_iterations": total_iterations,
        "max_deviation_rad": float(deviations.max()),
        "bound_rad": bound,
        "max_norm_error": norm_error,
        "num_distinct": num_distinct,
        "passed": passed,
    }

    logger.info(
        "Jitter schedule validation: N=%d, max_dev=%.5f rad (bound=%.5f), "
        "distinct=%d, %s",
        total_iterations,
        result["max_deviation_rad"],
        bound,
        num_distinct,
        "PASSED" if passed else "FAILED",
    )

    return result
