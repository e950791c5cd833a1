"""UV-space rasterization: which texels does a surface cover?

The reference host draws surfaces at their lightmap (channel 1) UVs
rather than at projected screen positions. Each covered texel centre is
mapped back to the world position and normal of the triangle it falls in,
which is what the shadow raytracer needs.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Conventions
-----------
Texel (row, col) of an R × R atlas has its centre at
``u = (col + 0.5) / R``, ``v = (row + 0.5) / R`` and flat index
``row * R + col``. Coverage uses the texel centre; a texel shared by two
triangles of the same surface is kept once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from lightmap_core.interfaces import UV_CHANNEL_LIGHTMAP
from reference_host.mesh import compute_face_properties

logger = logging.getLogger(__name__)

# Barycentric slack so texel centres on shared edges are not lost
_EDGE_TOLERANCE: float = 1e-9


@dataclass(frozen=True)
class TexelSamples:
    """World-space samples of the texels covered by one surface.

    Attributes
    ----------
    texel_indices : np.ndarray
        Flat atlas indices. Shape: (K,), int64, unique.
    positions : np.ndarray
        World positions. Shape: (K, 3).
    normals : np.ndarray
        Unit face normals. Shape: (K, 3).
    """

    texel_indices: np.ndarray
    positions: np.ndarray
    normals: np.ndarray

    @property
    def count(self) -> int:
        return int(self.texel_indices.shape[0])

    @classmethod
    def empty(cls) -> TexelSamples:
        return cls(
            texel_indices=np.empty(0, dtype=np.int64),
            positions=np.empty((0, 3), dtype=np.float64),
            normals=np.empty((0, 3), dtype=np.float64),
        )


def rasterize_uv_space(
    mesh: Any,
    resolution: int,
    channel: int = UV_CHANNEL_LIGHTMAP,
) -> TexelSamples:
    """Rasterize a mesh's triangles at their UV positions.

    Parameters
    ----------
    mesh : SurfaceMesh
        Surface with vertices, triangles and UVs on ``channel``.
    resolution : int
        Atlas size R in texels (R × R).
    channel : int
        UV channel to rasterize with.

    Returns
    -------
    TexelSamples
        One sample per covered texel. Empty if the channel is missing.
    """
    uvs = mesh.get_uvs(channel)
    if uvs is None or len(uvs) == 0 or mesh.num_triangles == 0:
        return TexelSamples.empty()

    pixel = np.asarray(uvs, dtype=np.float64) * resolution
    tri_px = pixel[mesh.triangles]                  # (M, 3, 2)
    tri_pos = mesh.vertices[mesh.triangles]         # (M, 3, 3)
    face_normals, _ = compute_face_properties(mesh.vertices, mesh.triangles)

    index_chunks: list[np.ndarray] = []
    position_chunks: list[np.ndarray] = []
    normal_chunks: list[np.ndarray] = []

    for t in range(tri_px.shape[0]):
        (x0, y0), (x1, y1), (x2, y2) = tri_px[t]
        denom = (y1 - y2) * (x0 - x2) + (x2 - x1) * (y0 - y2)
        if abs(denom) < 1e-12:
            continue

        col_lo = max(int(np.floor(min(x0, x1, x2) - 0.5)), 0)
        col_hi = min(int(np.ceil(max(x0, x1, x2) - 0.5)), resolution - 1)
        row_lo = max(int(np.floor(min(y0, y1, y2) - 0.5)), 0)
        row_hi = min(int(np.ceil(max(y0, y1, y2) - 0.5)), resolution - 1)
        if col_lo > col_hi or row_lo > row_hi:
            continue

        cols, rows = np.meshgrid(
            np.arange(col_lo, col_hi + 1), np.arange(row_lo, row_hi + 1), indexing="xy"
        )
        cx = cols.ravel() + 0.5
        cy = rows.ravel() + 0.5

        w0 = ((y1 - y2) * (cx - x2) + (x2 - x1) * (cy - y2)) / denom
        w1 = ((y2 - y0) * (cx - x2) + (x0 - x2) * (cy - y2)) / denom
        w2 = 1.0 - w0 - w1
        inside = (w0 >= -_EDGE_TOLERANCE) & (w1 >= -_EDGE_TOLERANCE) & (w2 >= -_EDGE_TOLERANCE)
        if not inside.any():
            continue

        weights = np.column_stack([w0[inside], w1[inside], w2[inside]])
        index_chunks.append(rows.ravel()[inside] * resolution + cols.ravel()[inside])
        position_chunks.append(weights @ tri_pos[t])
        normal_chunks.append(np.repeat(face_normals[t][None, :], weights.shape[0], axis=0))

    if not index_chunks:
        return TexelSamples.empty()

    indices = np.concatenate(index_chunks).astype(np.int64)
    unique, first = np.unique(indices, return_index=True)

    samples = TexelSamples(
        texel_indices=unique,
        positions=np.concatenate(position_chunks)[first],
        normals=np.concatenate(normal_chunks)[first],
    )
    logger.debug(
        "Rasterized %r at %d px: %d texels", getattr(mesh, "name", "?"), resolution, samples.count
    )
    return samples
