"""Shader plugin that turns a host material into a lightmap accumulator.

A rendering host composes its shaders from pluggable pieces. This plugin
exposes the four hook points the baker needs, independent of how a
particular backend assembles its pipeline:

1. ``get_attributes``  — request the lightmap UV channel (``uv2``), so
   vertices are drawn at their atlas position instead of screen space.
2. ``get_samplers``    — request the ``previousShadowMap`` sampler.
3. ``prepare_defines`` — per-draw ``FIRST_ITERATION`` toggle.
4. ``bind_for_draw``   — per-draw uniform bind of the previous buffer.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Blending
--------
On every pass except the first the fragment output is mixed with the
history sampled from the other ping-pong buffer:

    out = mix(previous, current, w) = previous · (1 − w) + current · w

With w ≈ 0.1 this is an exponential moving average over the jittered
passes; the history weight of pass k after n passes is w(1 − w)^(n−k).
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

UV2_ATTRIBUTE: str = "uv2"
PREVIOUS_SHADOW_MAP_SAMPLER: str = "previousShadowMap"
FIRST_ITERATION_DEFINE: str = "FIRST_ITERATION"

DEFAULT_BLEND_WEIGHT: float = 0.1


def blend_history(
    previous: np.ndarray,
    current: np.ndarray,
    weight: float = DEFAULT_BLEND_WEIGHT,
) -> np.ndarray:
    """Mix a new pass into the accumulated history.

    Parameters
    ----------
    previous : np.ndarray
        Accumulated values sampled from the previous buffer.
    current : np.ndarray
        Values produced by the current pass (same shape).
    weight : float
        Share of the current pass, in [0, 1].

    Returns
    -------
    np.ndarray
        ``previous * (1 - weight) + current * weight``.
    """
    return previous + (current - previous) * weight


class ProgressiveShadowPlugin:
    """Per-material accumulation state and shader hooks.

    Parameters
    ----------
    material : Any
        The (cloned) host material this plugin is attached to.
    blend_weight : float
        Share of each new pass in the running average.
    name : str
        Plugin name reported to the host.
    """

    def __init__(
        self,
        material: Any,
        blend_weight: float = DEFAULT_BLEND_WEIGHT,
        name: str = "progressive-shadow-map-plugin",
    ) -> None:
        if not (0.0 <= blend_weight <= 1.0):
            raise ValueError(f"blend_weight must be in [0, 1], got {blend_weight}")
        self.name = name
        self.material = material
        self.blend_weight = blend_weight
        self._enabled = True
        self._is_first_iteration = True
        self._previous_shadow_map: Any = None
        self._defines_dirty = True

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        if self._enabled != value:
            self._enabled = value
            self._defines_dirty = True

    @property
    def is_first_iteration(self) -> bool:
        return self._is_first_iteration

    @is_first_iteration.setter
    def is_first_iteration(self, value: bool) -> None:
        self._is_first_iteration = bool(value)
        # Defines are re-evaluated on the next draw even if unchanged
        self._defines_dirty = True

    @property
    def defines_dirty(self) -> bool:
        return self._defines_dirty

    @property
    def previous_shadow_map(self) -> Any:
        return self._previous_shadow_map

    def set_previous_shadow_map(self, texture: Any) -> None:
        self._previous_shadow_map = texture

    # ------------------------------------------------------------------
    # Shader hooks
    # ------------------------------------------------------------------

    def get_attributes(self, attributes: list[str]) -> None:
        attributes.append(UV2_ATTRIBUTE)

    def get_samplers(self, samplers: list[str]) -> None:
        samplers.append(PREVIOUS_SHADOW_MAP_SAMPLER)

    def prepare_defines(self, defines: dict[str, Any]) -> None:
        defines[FIRST_ITERATION_DEFINE] = self._is_first_iteration
        self._defines_dirty = False

    def bind_for_draw(self, uniforms: dict[str, Any]) -> None:
        if self._previous_shadow_map is not None:
            uniforms[PREVIOUS_SHADOW_MAP_SAMPLER] = self._previous_shadow_map

    def __repr__(self) -> str:
        return (
            f"ProgressiveShadowPlugin(material={getattr(self.material, 'name', None)!r}, "
            f"first_iteration={self._is_first_iteration}, blend_weight={self.blend_weight})"
        )
