"""Bake parameters and configuration loader.

All tunable values (atlas resolution, iteration budget, jitter radius,
blend weight, light direction, raytracer settings, demo scene layout) are
loaded from YAML configuration files. This module provides a typed,
validated interface to that configuration.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LightmapConfig:
    """Progressive lightmap accumulation settings.

    Attributes
    ----------
    resolution_px : int
        Width and height of the square atlas [px].
    iterations : int
        Number of jittered render passes (iteration budget).
    jitter_radius : float
        Length of the offset added to the unit light direction each pass.
    blend_weight : float
        Share of a new pass in the running average, in [0, 1].
    min_wait_s : float
        Minimum time between two renders [s]. Steps arriving earlier are
        deferred to a later tick.
    """

    resolution_px: int = 1024
    iterations: int = 64
    jitter_radius: float = 0.025
    blend_weight: float = 0.1
    min_wait_s: float = 0.0


@dataclass(frozen=True)
class LightConfig:
    """Directional light settings.

    Attributes
    ----------
    direction : tuple[float, float, float]
        Direction the light travels (from the light toward the scene).
    """

    direction: tuple[float, float, float]

    @property
    def unit_direction(self) -> np.ndarray:
        d = np.asarray(self.direction, dtype=np.float64)
        return d / np.linalg.norm(d)


@dataclass(frozen=True)
class RaytracerConfig:
    """Shadow-ray settings for the reference host.

    Attributes
    ----------
    epsilon : float
        Zero-test epsilon for Möller-Trumbore.
    max_leaf_triangles : int
        Maximum triangles per BVH leaf node.
    """

    epsilon: float = 1e-9
    max_leaf_triangles: int = 4


@dataclass(frozen=True)
class DemoSceneConfig:
    """Layout of the built-in demo scene (ground plane + three spheres).

    Attributes
    ----------
    ground_size : float
        Edge length of the square ground plane.
    ground_offset : float
        Height of the ground plane.
    sphere_radius : float
        Radius of each sphere.
    sphere_spacing : float
        Distance between neighbouring sphere centres along x.
    sphere_segments : int
        Longitudinal subdivisions per sphere.
    sphere_rings : int
        Latitudinal subdivisions per sphere.
    """

    ground_size: float = 30.0
    ground_offset: float = -3.0
    sphere_radius: float = 3.0
    sphere_spacing: float = 7.0
    sphere_segments: int = 32
    sphere_rings: int = 16


@dataclass
class BakeConfig:
    """Top-level bake configuration loaded from YAML.

    Attributes
    ----------
    lightmap : LightmapConfig
        Accumulation settings.
    light : LightConfig
        Directional light.
    raytracer : RaytracerConfig
        Reference host raytracer settings.
    scene : DemoSceneConfig
        Demo scene layout.
    """

    lightmap: LightmapConfig
    light: LightConfig
    raytracer: RaytracerConfig
    scene: DemoSceneConfig


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path) -> BakeConfig:
    """Load and validate a bake configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    BakeConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If required keys are missing or values are out of range.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    logger.info("Loading configuration from: %s", config_path)

    config = config_from_dict(raw)
    logger.info(
        "Configuration loaded: %d px atlas, %d iterations, jitter=%.4f, blend=%.3f",
        config.lightmap.resolution_px,
        config.lightmap.iterations,
        config.lightmap.jitter_radius,
        config.lightmap.blend_weight,
    )
    return config


def config_from_dict(raw: dict[str, Any]) -> BakeConfig:
    """Build a validated :class:`BakeConfig` from a parsed YAML mapping.

    The ``light`` section is required; every other section falls back to
    dataclass defaults for missing keys.
    """
    try:
        light_raw = raw["light"]
        direction = tuple(float(c) for c in light_raw["direction"])
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Missing or malformed 'light.direction': {exc}") from exc
    if len(direction) != 3:
        raise ValueError(f"light.direction must have 3 components, got {len(direction)}")

    # --- Parse lightmap settings ---
    lm = raw.get("lightmap", {})
    defaults = LightmapConfig()
    lightmap = LightmapConfig(
        resolution_px=int(lm.get("resolution_px", defaults.resolution_px)),
        iterations=int(lm.get("iterations", defaults.iterations)),
        jitter_radius=float(lm.get("jitter_radius", defaults.jitter_radius)),
        blend_weight=float(lm.get("blend_weight", defaults.blend_weight)),
        min_wait_s=float(lm.get("min_wait_s", defaults.min_wait_s)),
    )

    # --- Parse raytracer settings ---
    rt = raw.get("raytracer", {})
    rt_defaults = RaytracerConfig()
    raytracer = RaytracerConfig(
        epsilon=float(rt.get("epsilon", rt_defaults.epsilon)),
        max_leaf_triangles=int(rt.get("max_leaf_triangles", rt_defaults.max_leaf_triangles)),
    )

    # --- Parse demo scene ---
    sc = raw.get("scene", {})
    sc_defaults = DemoSceneConfig()
    scene = DemoSceneConfig(
        ground_size=float(sc.get("ground_size", sc_defaults.ground_size)),
        ground_offset=float(sc.get("ground_offset", sc_defaults.ground_offset)),
        sphere_radius=float(sc.get("sphere_radius", sc_defaults.sphere_radius)),
        sphere_spacing=float(sc.get("sphere_spacing", sc_defaults.sphere_spacing)),
        sphere_segments=int(sc.get("sphere_segments", sc_defaults.sphere_segments)),
        sphere_rings=int(sc.get("sphere_rings", sc_defaults.sphere_rings)),
    )

    config = BakeConfig(
        lightmap=lightmap,
        light=LightConfig(direction=direction),  # type: ignore[arg-type]
        raytracer=raytracer,
        scene=scene,
    )

    validate_config(config)
    return config


def validate_config(config: BakeConfig) -> None:
    """Validate value ranges.

    Parameters
    ----------
    config : BakeConfig
        Configuration to validate.

    Raises
    ------
    ValueError
        If any value is out of range.
    """
    lm = config.lightmap
    if lm.resolution_px <= 0:
        raise ValueError(f"Atlas resolution must be positive, got {lm.resolution_px}")
    if lm.iterations < 1:
        raise ValueError(f"Iteration budget must be ≥ 1, got {lm.iterations}")
    if lm.jitter_radius < 0.0:
        raise ValueError(f"Jitter radius must be ≥ 0, got {lm.jitter_radius}")
    if not (0.0 <= lm.blend_weight <= 1.0):
        raise ValueError(f"Blend weight must be in [0, 1], got {lm.blend_weight}")
    if lm.min_wait_s < 0.0:
        raise ValueError(f"Minimum wait must be ≥ 0, got {lm.min_wait_s}")
    if not np.all(np.isfinite(config.light.direction)):
        raise ValueError("Light direction must be finite.")
    if np.linalg.norm(config.light.direction) < 1e-12:
        raise ValueError("Light direction must be non-zero.")
    if config.raytracer.epsilon <= 0:
        raise ValueError("Raytracer epsilon must be positive.")
    if config.raytracer.max_leaf_triangles < 1:
        raise ValueError("BVH leaf capacity must be ≥ 1.")
    if config.scene.sphere_radius <= 0 or config.scene.ground_size <= 0:
        raise ValueError("Demo scene sizes must be positive.")
    if config.scene.sphere_segments < 3 or config.scene.sphere_rings < 2:
        raise ValueError("Spheres need at least 3 segments and 2 rings.")

    logger.debug("Configuration validation passed.")


# ---------------------------------------------------------------------------
# Reproducibility Helpers
# ---------------------------------------------------------------------------


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """SHA-256 hex digest of an array's raw bytes."""
    return hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
