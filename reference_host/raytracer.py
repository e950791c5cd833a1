"""BVH-accelerated shadow rays for the reference host.

Answers one question per atlas texel: is the straight line from the
texel's world position toward the light blocked by any scene triangle?
Inner loops are compiled with Numba ``@njit(cache=True)``.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Design Notes
------------
- **Flattened BVH**: nodes live in one contiguous float64 array, 8 values
  per node, so traversal needs no Python objects and no recursion:
  ``[min_x, min_y, min_z, max_x, max_y, max_z, child_or_start, count_or_right]``
  - ``count_or_right < 0``: leaf; ``child_or_start`` is the first slot in
    the ordered triangle list and ``-count_or_right`` the triangle count.
  - ``count_or_right ≥ 0``: internal; children at ``child_or_start`` and
    ``count_or_right``.
- **Construction**: median split on the axis of largest centroid extent.
  Scenes baked here are small (a few thousand triangles); build cost is
  negligible next to per-pass tracing.
- **Occlusion only**: traversal stops at the first hit.

References
----------
- Möller, T. & Trumbore, B. (1997). "Fast, Minimum Storage Ray-Triangle
  Intersection." J. Graphics Tools, 2(1), 21-28.
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit, prange

logger = logging.getLogger(__name__)

_INF: float = 1e30
_STACK_DEPTH: int = 64

# Node layout
_MIN_X = 0
_MAX_X = 3
_CHILD_OR_START = 6
_COUNT_OR_RIGHT = 7
_NODE_SIZE = 8


# ===================================================================
# RAY-TRIANGLE / RAY-BOX TESTS — Numba JIT
# ===================================================================


@njit(cache=True, fastmath=False)
def moller_trumbore(
    origin: np.ndarray,
    direction: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    epsilon: float,
) -> float:
    """Ray-triangle intersection distance, or -1.0 on a miss.

    Parameters
    ----------
    origin, direction : np.ndarray
        Ray R(t) = origin + t · direction. Shape: (3,) each.
    v0, v1, v2 : np.ndarray
        Triangle corners. Shape: (3,) each.
    epsilon : float
        Tolerance for the parallel test, the barycentric bounds and the
        minimum hit distance.

    Returns
    -------
    float
        Parametric distance t > epsilon of the hit, else -1.0.
    """
    e1x = v1[0] - v0[0]
    e1y = v1[1] - v0[1]
    e1z = v1[2] - v0[2]
    e2x = v2[0] - v0[0]
    e2y = v2[1] - v0[1]
    e2z = v2[2] - v0[2]

    # p = direction × e2
    px = direction[1] * e2z - direction[2] * e2y
    py = direction[2] * e2x - direction[0] * e2z
    pz = direction[0] * e2y - direction[1] * e2x

    det = e1x * px + e1y * py + e1z * pz
    if -epsilon < det < epsilon:
        return -1.0
    inv_det = 1.0 / det

    sx = origin[0] - v0[0]
    sy = origin[1] - v0[1]
    sz = origin[2] - v0[2]

    u = (sx * px + sy * py + sz * pz) * inv_det
    if u < -epsilon or u > 1.0 + epsilon:
        return -1.0

    # q = s × e1
    qx = sy * e1z - sz * e1y
    qy = sz * e1x - sx * e1z
    qz = sx * e1y - sy * e1x

    v = (direction[0] * qx + direction[1] * qy + direction[2] * qz) * inv_det
    if v < -epsilon or u + v > 1.0 + epsilon:
        return -1.0

    t = (e2x * qx + e2y * qy + e2z * qz) * inv_det
    if t > epsilon:
        return t
    return -1.0


@njit(cache=True, fastmath=False)
def ray_hits_node(
    origin: np.ndarray,
    inv_dir: np.ndarray,
    bvh_nodes: np.ndarray,
    node_idx: int,
) -> bool:
    """Slab test of a ray (t ≥ 0) against one node's bounding box."""
    base = node_idx * _NODE_SIZE
    t_near = 0.0
    t_far = _INF
    for axis in range(3):
        t1 = (bvh_nodes[base + _MIN_X + axis] - origin[axis]) * inv_dir[axis]
        t2 = (bvh_nodes[base + _MAX_X + axis] - origin[axis]) * inv_dir[axis]
        if t1 > t2:
            t1, t2 = t2, t1
        if t1 > t_near:
            t_near = t1
        if t2 < t_far:
            t_far = t2
        if t_near > t_far:
            return False
    return True


@njit(cache=True, fastmath=False)
def is_occluded(
    origin: np.ndarray,
    direction: np.ndarray,
    bvh_nodes: np.ndarray,
    tri_verts: np.ndarray,
    ordered_tri_indices: np.ndarray,
    epsilon: float,
) -> bool:
    """True if the ray hits any triangle (first-hit early exit)."""
    inv_dir = np.empty(3, dtype=np.float64)
    for axis in range(3):
        if direction[axis] == 0.0:
            inv_dir[axis] = _INF
        else:
            inv_dir[axis] = 1.0 / direction[axis]

    stack = np.empty(_STACK_DEPTH, dtype=np.int64)
    stack[0] = 0
    top = 1

    while top > 0:
        top -= 1
        node_idx = stack[top]
        if not ray_hits_node(origin, inv_dir, bvh_nodes, node_idx):
            continue

        base = node_idx * _NODE_SIZE
        count_or_right = bvh_nodes[base + _COUNT_OR_RIGHT]
        if count_or_right < 0:
            start = int(bvh_nodes[base + _CHILD_OR_START])
            for slot in range(start, start + int(-count_or_right)):
                tri = ordered_tri_indices[slot]
                t_hit = moller_trumbore(
                    origin, direction, tri_verts[tri, 0], tri_verts[tri, 1], tri_verts[tri, 2], epsilon
                )
                if t_hit > epsilon:
                    return True
        else:
            stack[top] = int(bvh_nodes[base + _CHILD_OR_START])
            top += 1
            stack[top] = int(count_or_right)
            top += 1

    return False


@njit(cache=True, parallel=True, fastmath=False)
def compute_texel_visibility(
    positions: np.ndarray,
    normals: np.ndarray,
    to_light: np.ndarray,
    bvh_nodes: np.ndarray,
    tri_verts: np.ndarray,
    ordered_tri_indices: np.ndarray,
    epsilon: float,
    bias: float,
) -> np.ndarray:
    """Binary light visibility of every texel sample.

    Parameters
    ----------
    positions : np.ndarray
        World positions of the texel samples. Shape: (num_texels, 3).
    normals : np.ndarray
        Unit surface normals at the samples. Shape: (num_texels, 3).
    to_light : np.ndarray
        Unit vector pointing toward the light. Shape: (3,).
    bvh_nodes, tri_verts, ordered_tri_indices : np.ndarray
        Output of :func:`build_bvh`.
    epsilon : float
        Intersection epsilon.
    bias : float
        Distance the ray origin is pushed along the normal to avoid
        hitting the sample's own triangle.

    Returns
    -------
    np.ndarray
        1.0 where the light is visible, 0.0 where it is blocked or the
        surface faces away. Shape: (num_texels,).
    """
    num_texels = positions.shape[0]
    visibility = np.zeros(num_texels, dtype=np.float64)

    for i in prange(num_texels):
        cos_theta = (
            normals[i, 0] * to_light[0]
            + normals[i, 1] * to_light[1]
            + normals[i, 2] * to_light[2]
        )
        if cos_theta <= 0.0:
            continue

        origin = np.empty(3, dtype=np.float64)
        for k in range(3):
            origin[k] = positions[i, k] + normals[i, k] * bias

        if not is_occluded(origin, to_light, bvh_nodes, tri_verts, ordered_tri_indices, epsilon):
            visibility[i] = 1.0

    return visibility


# ===================================================================
# BVH CONSTRUCTION — Python (one-time cost)
# ===================================================================


def build_bvh(
    vertices: np.ndarray,
    triangles: np.ndarray,
    max_leaf_triangles: int = 4,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Build a flattened median-split BVH over a triangle soup.

    Parameters
    ----------
    vertices : np.ndarray
        Vertex positions. Shape: (num_vertices, 3).
    triangles : np.ndarray
        Vertex indices per triangle. Shape: (num_triangles, 3).
        Must contain at least one triangle.
    max_leaf_triangles : int
        Maximum number of triangles per leaf.

    Returns
    -------
    bvh_nodes : np.ndarray
        Flattened nodes. Shape: (num_nodes * 8,), float64.
    tri_verts : np.ndarray
        Corner positions per triangle. Shape: (num_triangles, 3, 3).
    ordered_indices : np.ndarray
        Triangle indices in leaf order. Shape: (num_triangles,), int64.
    """
    num_triangles = int(triangles.shape[0])
    if num_triangles == 0:
        raise ValueError("Cannot build a BVH without triangles.")
    if max_leaf_triangles < 1:
        raise ValueError(f"max_leaf_triangles must be ≥ 1, got {max_leaf_triangles}")

    tri_verts = np.ascontiguousarray(vertices[triangles], dtype=np.float64)
    box_min = tri_verts.min(axis=1)
    box_max = tri_verts.max(axis=1)
    centroids = tri_verts.mean(axis=1)

    indices = np.arange(num_triangles, dtype=np.int64)
    nodes = np.zeros(2 * num_triangles * _NODE_SIZE, dtype=np.float64)
    node_count = 0

    def _build(start: int, end: int) -> int:
        nonlocal node_count
        node_idx = node_count
        node_count += 1
        base = node_idx * _NODE_SIZE

        subset = indices[start:end]
        nodes[base:base + 3] = box_min[subset].min(axis=0)
        nodes[base + 3:base + 6] = box_max[subset].max(axis=0)

        count = end - start
        if count <= max_leaf_triangles:
            nodes[base + _CHILD_OR_START] = float(start)
            nodes[base + _COUNT_OR_RIGHT] = float(-count)
            return node_idx

        extent = np.ptp(centroids[subset], axis=0)
        axis = int(np.argmax(extent))
        mid = count // 2
        order = np.argpartition(centroids[subset, axis], mid)
        indices[start:end] = subset[order]

        left = _build(start, start + mid)
        right = _build(start + mid, end)
        nodes[base + _CHILD_OR_START] = float(left)
        nodes[base + _COUNT_OR_RIGHT] = float(right)
        return node_idx

    _build(0, num_triangles)
    bvh_nodes = nodes[: node_count * _NODE_SIZE].copy()

    logger.info(
        "BVH built: %d triangles, %d nodes (max_leaf=%d)",
        num_triangles,
        node_count,
        max_leaf_triangles,
    )

    return bvh_nodes, tri_verts, indices
