"""CPU render targets for the reference host.

A :class:`RasterRenderTarget` owns one square float texture and a render
list. ``render()`` draws every listed surface with its override material
at the surface's lightmap UVs: each covered texel is shaded with the
binary light visibility traced from its world position, and the material's
shader plugin decides whether that value is written as is or blended
with the history sampled from another texture.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from lightmap_core.interfaces import UV_CHANNEL_LIGHTMAP
from lightmap_core.shadow_plugin import (
    FIRST_ITERATION_DEFINE,
    PREVIOUS_SHADOW_MAP_SAMPLER,
    UV2_ATTRIBUTE,
    blend_history,
)
from reference_host.rasterizer import TexelSamples, rasterize_uv_space

logger = logging.getLogger(__name__)


class TextureBuffer:
    """Square single-channel float texture.

    Parameters
    ----------
    name : str
        Texture label.
    size : int
        Edge length in texels.
    """

    def __init__(self, name: str, size: int) -> None:
        if size < 1:
            raise ValueError(f"Texture size must be ≥ 1, got {size}")
        self.name = name
        self.size = size
        self.data = np.zeros((size, size), dtype=np.float32)
        self.disposed = False

    def sample(self, texel_indices: np.ndarray) -> np.ndarray:
        """Values at flat texel indices (row * size + col)."""
        return self.data.ravel()[texel_indices].astype(np.float64)

    def read_pixels(self) -> np.ndarray:
        """Copy of the texture contents. Shape: (size, size)."""
        return self.data.copy()

    def dispose(self) -> None:
        self.data = np.zeros((0, 0), dtype=np.float32)
        self.disposed = True

    def __repr__(self) -> str:
        return f"TextureBuffer({self.name!r}, size={self.size}, disposed={self.disposed})"


class RasterRenderTarget:
    """Off-screen target that rasterizes its render list in UV space.

    Parameters
    ----------
    name : str
        Target label.
    size : int
        Texture edge length in texels.
    scene : Scene
        Supplies the light, the readiness state and the visibility query.
    """

    def __init__(self, name: str, size: int, scene: Any) -> None:
        self.name = name
        self.render_list: list[Any] = []
        self.render_count = 0
        self._texture = TextureBuffer(name, size)
        self._scene = scene
        self._material_overrides: dict[int, Any] = {}
        # Keyed by surface id; stores the uv2 array the samples came from
        self._sample_cache: dict[int, tuple[np.ndarray, TexelSamples]] = {}
        self._disposed = False

    @property
    def texture(self) -> TextureBuffer:
        return self._texture

    @property
    def size(self) -> int:
        return self._texture.size

    def set_material_for_rendering(self, surface: Any, material: Any) -> None:
        self._material_overrides[surface.unique_id] = material

    def material_for(self, surface: Any) -> Any:
        return self._material_overrides.get(surface.unique_id, surface.material)

    def is_ready_for_rendering(self) -> bool:
        """Ready once the scene's acceleration structure is current."""
        return not self._disposed and self._scene.is_ready()

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def render(self) -> None:
        """Draw the render list into a fresh image, then swap it in."""
        if self._disposed:
            raise RuntimeError(f"Render target {self.name!r} has been disposed.")

        to_light = -np.asarray(self._scene.light.direction, dtype=np.float64)
        to_light /= np.linalg.norm(to_light)

        image = np.zeros(self.size * self.size, dtype=np.float32)
        drawn = 0
        for surface in self.render_list:
            if not surface.visible:
                continue
            material = self.material_for(surface)
            if material is None:
                continue
            for plugin in getattr(material, "plugins", ()):
                if self._draw(surface, plugin, to_light, image):
                    drawn += 1
                    break

        self._texture.data = image.reshape(self.size, self.size)
        self.render_count += 1
        logger.debug("%s: drew %d surfaces (render #%d)", self.name, drawn, self.render_count)

    def _draw(
        self,
        surface: Any,
        plugin: Any,
        to_light: np.ndarray,
        image: np.ndarray,
    ) -> bool:
        """Run one surface through a plugin's hooks. False if not drawable."""
        if not getattr(plugin, "enabled", True):
            return False

        attributes: list[str] = []
        plugin.get_attributes(attributes)
        if UV2_ATTRIBUTE not in attributes:
            return False

        samples = self._texel_samples(surface)
        if samples.count == 0:
            return True

        defines: dict[str, Any] = {}
        plugin.prepare_defines(defines)
        uniforms: dict[str, Any] = {}
        plugin.bind_for_draw(uniforms)

        current = self._scene.trace_visibility(samples.positions, samples.normals, to_light)

        previous_map = uniforms.get(PREVIOUS_SHADOW_MAP_SAMPLER)
        if defines.get(FIRST_ITERATION_DEFINE, False) or previous_map is None:
            value = current
        else:
            previous = previous_map.sample(samples.texel_indices)
            value = blend_history(previous, current, plugin.blend_weight)

        image[samples.texel_indices] = value
        return True

    def _texel_samples(self, surface: Any) -> TexelSamples:
        uv2 = surface.get_uvs(UV_CHANNEL_LIGHTMAP)
        cached = self._sample_cache.get(surface.unique_id)
        if cached is not None and cached[0] is uv2:
            return cached[1]
        samples = rasterize_uv_space(surface, self.size)
        self._sample_cache[surface.unique_id] = (uv2, samples)
        return samples

    def covered_texels(self) -> list[np.ndarray]:
        """Flat texel indices drawn so far, one array per surface."""
        return [samples.texel_indices for _, samples in self._sample_cache.values()]

    def dispose(self) -> None:
        if self._disposed:
            return
        self._texture.dispose()
        self.render_list.clear()
        self._material_overrides.clear()
        self._sample_cache.clear()
        self._disposed = True
        logger.debug("Render target %r disposed.", self.name)

    def __repr__(self) -> str:
        return (
            f"RasterRenderTarget({self.name!r}, size={self.size}, "
            f"surfaces={len(self.render_list)}, renders={self.render_count})"
        )
