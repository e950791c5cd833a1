"""Pytest configuration and shared fixtures for the lightmap baker tests.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lightmap_core.constants import (  # noqa: E402
    BakeConfig,
    DemoSceneConfig,
    LightConfig,
    LightmapConfig,
    RaytracerConfig,
)

# Light direction of the bundled demo configuration
DEMO_LIGHT_DIRECTION = (0.3204164226684694, -0.897774797464629, -0.3022147069910482)


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


@pytest.fixture
def default_config_path() -> Path:
    """Path to the bundled default configuration."""
    return PROJECT_ROOT / "config" / "default_config.yaml"


@pytest.fixture
def base_direction() -> np.ndarray:
    """Un-jittered demo light direction (not normalized)."""
    return np.array(DEMO_LIGHT_DIRECTION, dtype=np.float64)


@pytest.fixture
def small_bake_config() -> BakeConfig:
    """A fast bake: 64 px atlas, 8 passes, coarse spheres."""
    return BakeConfig(
        lightmap=LightmapConfig(resolution_px=64, iterations=8),
        light=LightConfig(direction=DEMO_LIGHT_DIRECTION),
        raytracer=RaytracerConfig(),
        scene=DemoSceneConfig(sphere_segments=12, sphere_rings=6),
    )
