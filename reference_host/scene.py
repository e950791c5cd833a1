"""Scene graph of the CPU reference host.

Holds the surfaces, the directional light and the shadow-ray acceleration
structure, and hands out render targets. Together with
:mod:`reference_host.render_target` it satisfies every collaborator
contract :class:`lightmap_core.accumulation.ProgressiveLightmap` needs.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Frame Loop
----------
The host advances in ticks. :meth:`Scene.update` runs at the start of a
tick and rebuilds the BVH when the surface set has changed; until then
:meth:`Scene.is_ready` is False and render targets report themselves as
not ready, so a bake step issued in that tick is deferred.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from lightmap_core.constants import BakeConfig, RaytracerConfig
from reference_host.mesh import SurfaceMesh, create_ground, create_uv_sphere
from reference_host.raytracer import build_bvh, compute_texel_visibility
from reference_host.render_target import RasterRenderTarget

logger = logging.getLogger(__name__)

# Shadow-ray origin offset relative to the scene's bounding diagonal
_RELATIVE_NORMAL_BIAS: float = 1e-5


@dataclass
class DirectionalLight:
    """Light at infinity; ``direction`` is the way its rays travel."""

    name: str
    direction: np.ndarray

    def __post_init__(self) -> None:
        d = np.asarray(self.direction, dtype=np.float64)
        norm = np.linalg.norm(d)
        if norm < 1e-12:
            raise ValueError(f"Light {self.name!r} needs a non-zero direction.")
        self.direction = d / norm


@dataclass(eq=False)
class StandardMaterial:
    """Minimal material: a colour, a culling flag and shader plugins.

    ``clone`` returns None once the material has been disposed, which is
    how this host reports a failed clone.
    """

    name: str
    color: tuple[float, float, float] = (1.0, 1.0, 1.0)
    back_face_culling: bool = True
    plugins: list[Any] = field(default_factory=list)
    disposed: bool = False

    def clone(self, name: str) -> StandardMaterial | None:
        if self.disposed:
            return None
        return StandardMaterial(
            name=name, color=self.color, back_face_culling=self.back_face_culling
        )

    def attach_plugin(self, plugin: Any) -> None:
        self.plugins.append(plugin)

    def dispose(self) -> None:
        self.plugins.clear()
        self.disposed = True


class Scene:
    """Surfaces, light and shadow-ray queries.

    Parameters
    ----------
    light : DirectionalLight
        The single light baked into the lightmap.
    raytracer_config : RaytracerConfig, optional
        Intersection epsilon and BVH leaf size.
    """

    def __init__(
        self,
        light: DirectionalLight,
        raytracer_config: RaytracerConfig | None = None,
    ) -> None:
        self.light = light
        self.surfaces: list[SurfaceMesh] = []
        self.render_targets: list[RasterRenderTarget] = []
        self._rt_config = raytracer_config if raytracer_config is not None else RaytracerConfig()
        self._bvh: tuple[np.ndarray, np.ndarray, np.ndarray] | None = None
        self._bias = 0.0
        self._dirty = True

    def add_surface(self, surface: SurfaceMesh) -> SurfaceMesh:
        self.surfaces.append(surface)
        self._dirty = True
        return surface

    def get_surface(self, name: str) -> SurfaceMesh:
        for surface in self.surfaces:
            if surface.name == name:
                return surface
        raise KeyError(f"No surface named {name!r}")

    def invalidate(self) -> None:
        """Force a BVH rebuild on the next :meth:`update` (e.g. after moving geometry)."""
        self._dirty = True

    # ------------------------------------------------------------------
    # Frame loop
    # ------------------------------------------------------------------

    def update(self) -> None:
        """Start-of-tick housekeeping: rebuild the BVH if stale."""
        if self._dirty:
            self.build_acceleration()

    def is_ready(self) -> bool:
        return not self._dirty

    def build_acceleration(self) -> None:
        """Merge all visible surfaces and build the shadow-ray BVH."""
        vertex_blocks: list[np.ndarray] = []
        triangle_blocks: list[np.ndarray] = []
        offset = 0
        for surface in self.surfaces:
            if not surface.visible or surface.num_triangles == 0:
                continue
            vertex_blocks.append(surface.vertices)
            triangle_blocks.append(surface.triangles + offset)
            offset += surface.vertices.shape[0]

        if triangle_blocks:
            vertices = np.concatenate(vertex_blocks)
            triangles = np.concatenate(triangle_blocks)
            self._bvh = build_bvh(vertices, triangles, self._rt_config.max_leaf_triangles)
            diagonal = float(np.linalg.norm(vertices.max(axis=0) - vertices.min(axis=0)))
            self._bias = max(diagonal * _RELATIVE_NORMAL_BIAS, self._rt_config.epsilon * 10.0)
        else:
            self._bvh = None
            self._bias = 0.0
            logger.warning("Scene has no visible triangles; every texel will be lit.")

        self._dirty = False

    def trace_visibility(
        self,
        positions: np.ndarray,
        normals: np.ndarray,
        to_light: np.ndarray,
    ) -> np.ndarray:
        """Binary visibility (1 lit, 0 shadowed) of each sample toward the light.

        Raises
        ------
        RuntimeError
            If called before the acceleration structure is built.
        """
        if self._dirty:
            raise RuntimeError("Scene acceleration structure is stale; call update() first.")

        if self._bvh is None:
            facing = np.einsum("ij,j->i", normals, to_light) > 0.0
            return facing.astype(np.float64)

        bvh_nodes, tri_verts, ordered = self._bvh
        return compute_texel_visibility(
            np.ascontiguousarray(positions, dtype=np.float64),
            np.ascontiguousarray(normals, dtype=np.float64),
            np.ascontiguousarray(to_light, dtype=np.float64),
            bvh_nodes,
            tri_verts,
            ordered,
            self._rt_config.epsilon,
            self._bias,
        )

    # ------------------------------------------------------------------
    # RenderHost
    # ------------------------------------------------------------------

    def create_render_target(self, name: str, size: int) -> RasterRenderTarget:
        target = RasterRenderTarget(name, size, self)
        self.render_targets.append(target)
        logger.debug("Created render target %r (%d px).", name, size)
        return target


# ---------------------------------------------------------------------------
# Demo Scene
# ---------------------------------------------------------------------------


def build_demo_scene(config: BakeConfig) -> Scene:
    """Ground plane with three spheres in a row above it.

    Parameters
    ----------
    config : BakeConfig
        Uses ``config.light``, ``config.raytracer`` and ``config.scene``.

    Returns
    -------
    Scene
        Four surfaces: ``ground`` and ``sphere0`` … ``sphere2``, each with
        its own :class:`StandardMaterial`.
    """
    sc = config.scene
    light = DirectionalLight("sun", np.asarray(config.light.direction, dtype=np.float64))
    scene = Scene(light, config.raytracer)

    scene.add_surface(
        create_ground(
            "ground",
            size=sc.ground_size,
            height=sc.ground_offset,
            material=StandardMaterial("groundMat"),
        )
    )
    for k, x in enumerate((-sc.sphere_spacing, 0.0, sc.sphere_spacing)):
        scene.add_surface(
            create_uv_sphere(
                f"sphere{k}",
                radius=sc.sphere_radius,
                center=(x, 0.0, 0.0),
                segments=sc.sphere_segments,
                rings=sc.sphere_rings,
                material=StandardMaterial(f"sphereMat{k}"),
            )
        )

    logger.info(
        "Demo scene: ground %.1f at y=%.1f, 3 spheres (r=%.1f, spacing %.1f)",
        sc.ground_size,
        sc.ground_offset,
        sc.sphere_radius,
        sc.sphere_spacing,
    )
    return scene
