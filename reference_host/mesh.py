"""Triangle surfaces for the reference host.

A :class:`SurfaceMesh` holds world-space vertex positions, triangle
indices, per-vertex UV channels and an assigned material. It implements
the baker's surface accessor contract and feeds the raytracer
(occlusion) and the UV-space rasterizer (texel positions and normals).

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Builders produce meshes in a y-up frame:

- ``create_ground``: a square in the XZ plane with UVs spanning [0, 1]².
- ``create_uv_sphere``: latitude/longitude sphere; u follows longitude,
  v follows latitude, both spanning [0, 1]. The seam column is
  duplicated so u reaches 1.0 without wrapping.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

_ID_COUNTER = itertools.count(1)


@dataclass(eq=False)
class SurfaceMesh:
    """Triangle mesh with UV channels and a material.

    Attributes
    ----------
    name : str
        Mesh name.
    vertices : np.ndarray
        World-space vertex positions. Shape: (num_vertices, 3), float64.
    triangles : np.ndarray
        Vertex indices per triangle. Shape: (num_triangles, 3), int64.
    uv_channels : dict[int, np.ndarray]
        Per-vertex UVs by channel. Each: (num_vertices, 2), float64.
    material : Any
        Assigned material, or None.
    visible : bool
        Invisible meshes neither cast shadows nor render.
    """

    name: str
    vertices: np.ndarray
    triangles: np.ndarray
    uv_channels: dict[int, np.ndarray] = field(default_factory=dict)
    material: Any = None
    visible: bool = True
    _unique_id: int = field(default_factory=lambda: next(_ID_COUNTER), init=False, repr=False)

    @property
    def unique_id(self) -> int:
        return self._unique_id

    @property
    def num_triangles(self) -> int:
        return int(self.triangles.shape[0])

    def get_uvs(self, channel: int) -> np.ndarray | None:
        return self.uv_channels.get(channel)

    def set_uvs(self, channel: int, uvs: np.ndarray) -> None:
        """Install UVs on a channel.

        Raises
        ------
        ValueError
            If the number of UV pairs differs from the vertex count.
        """
        arr = np.asarray(uvs, dtype=np.float64).reshape(-1, 2)
        if arr.shape[0] != self.vertices.shape[0]:
            raise ValueError(
                f"Mesh {self.name!r}: {arr.shape[0]} UVs for "
                f"{self.vertices.shape[0]} vertices"
            )
        self.uv_channels[channel] = arr

    def face_normals(self) -> np.ndarray:
        """Unit normals per triangle (right-hand winding). Shape: (M, 3)."""
        normals, _ = compute_face_properties(self.vertices, self.triangles)
        return normals


def compute_face_properties(
    vertices: np.ndarray,
    triangles: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute face normals and areas for all triangles.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions, shape (num_vertices, 3).
    triangles : np.ndarray
        Triangle vertex indices, shape (num_triangles, 3).

    Returns
    -------
    normals : np.ndarray
        Unit normals, shape (num_triangles, 3). Degenerate triangles get
        (0, 1, 0).
    areas : np.ndarray
        Triangle areas, shape (num_triangles,).
    """
    v0 = vertices[triangles[:, 0]]
    v1 = vertices[triangles[:, 1]]
    v2 = vertices[triangles[:, 2]]

    # Cross product magnitude = 2 * area
    cross = np.cross(v1 - v0, v2 - v0)
    norms = np.linalg.norm(cross, axis=1, keepdims=True)

    safe_norms = np.where(norms > 1e-30, norms, 1.0)
    normals = cross / safe_norms
    normals[norms.ravel() <= 1e-30] = np.array([0.0, 1.0, 0.0])

    return normals, 0.5 * norms.ravel()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def create_ground(
    name: str = "ground",
    size: float = 30.0,
    height: float = 0.0,
    material: Any = None,
) -> SurfaceMesh:
    """Square ground plane in the XZ plane at ``y = height``, facing +y."""
    half = size / 2.0
    vertices = np.array(
        [
            [-half, height, -half],
            [half, height, -half],
            [half, height, half],
            [-half, height, half],
        ],
        dtype=np.float64,
    )
    # Wound so the cross product points +y
    triangles = np.array([[0, 2, 1], [0, 3, 2]], dtype=np.int64)
    uvs = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]], dtype=np.float64)

    return SurfaceMesh(
        name=name,
        vertices=vertices,
        triangles=triangles,
        uv_channels={0: uvs},
        material=material,
    )


def create_uv_sphere(
    name: str = "sphere",
    radius: float = 1.0,
    center: tuple[float, float, float] = (0.0, 0.0, 0.0),
    segments: int = 32,
    rings: int = 16,
    material: Any = None,
) -> SurfaceMesh:
    """Latitude/longitude sphere with outward-facing triangles.

    Parameters
    ----------
    name : str
        Mesh name.
    radius : float
        Sphere radius.
    center : tuple of float
        World-space centre.
    segments : int
        Longitudinal subdivisions (≥ 3).
    rings : int
        Latitudinal subdivisions (≥ 2).
    material : Any
        Assigned material.

    Returns
    -------
    SurfaceMesh
        (segments + 1) × (rings + 1) vertices, 2 · segments · (rings − 1)
        triangles (pole caps use one triangle per segment).
    """
    if segments < 3 or rings < 2:
        raise ValueError(f"Sphere needs ≥ 3 segments and ≥ 2 rings, got {segments}, {rings}")

    u = np.linspace(0.0, 1.0, segments + 1)
    v = np.linspace(0.0, 1.0, rings + 1)
    uu, vv = np.meshgrid(u, v, indexing="xy")  # (rings+1, segments+1)

    phi = uu * 2.0 * np.pi          # longitude
    theta = vv * np.pi              # polar angle from +y (v=0 at the top pole)

    x = radius * np.sin(theta) * np.cos(phi)
    y = radius * np.cos(theta)
    z = radius * np.sin(theta) * np.sin(phi)
    vertices = np.column_stack([x.ravel(), y.ravel(), z.ravel()]) + np.asarray(center)

    cols = segments + 1
    faces: list[tuple[int, int, int]] = []
    for r in range(rings):
        for s in range(segments):
            a = r * cols + s
            b = a + 1
            c = a + cols
            d = c + 1
            # Skip the zero-area half of each pole quad
            if r != 0:
                faces.append((a, b, c))
            if r != rings - 1:
                faces.append((b, d, c))
    triangles = np.asarray(faces, dtype=np.int64)

    # Orient every face outward
    normals, _ = compute_face_properties(vertices, triangles)
    centroids = vertices[triangles].mean(axis=1)
    inward = np.einsum("ij,ij->i", normals, centroids - np.asarray(center)) < 0.0
    triangles[inward] = triangles[inward][:, [0, 2, 1]]

    uvs = np.column_stack([uu.ravel(), 1.0 - vv.ravel()])

    logger.debug(
        "Created sphere %r: %d vertices, %d triangles", name, vertices.shape[0], triangles.shape[0]
    )

    return SurfaceMesh(
        name=name,
        vertices=vertices.astype(np.float64),
        triangles=triangles,
        uv_channels={0: uvs},
        material=material,
    )
