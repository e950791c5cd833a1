"""UV islands and their remapping into the shared lightmap atlas.

Each surface contributes one island: the bounding box of its authored
(channel 0) UVs. Islands are packed as rectangles by
:func:`atlas_layout.rect_packer.pack_rectangles`, and every vertex is
then mapped into its island's atlas cell to form the lightmap (channel 1)
UVs.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Remap
-----
For an island with bounds [u₀, u₁] × [v₀, v₁] packed at (x, y) with size
(w, h) in a container of size (W, H):

    u' = (x + (u − u₀)/(u₁ − u₀) · w) / W
    v' = (y + (v − v₀)/(v₁ − v₀) · h) / H

The result lies in [0, 1]² and islands never overlap because packed
rectangles never overlap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Hashable, Sequence

import numpy as np

from atlas_layout.rect_packer import (
    PackedRectangle,
    PackingResult,
    Rectangle,
    pack_rectangles,
)
from lightmap_core.errors import InvalidGeometryError
from lightmap_core.interfaces import UV_CHANNEL_PRIMARY

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class UVIsland:
    """UV coordinates of one surface and their bounding rectangle.

    Attributes
    ----------
    key : Hashable
        Surface identifier.
    uvs : np.ndarray
        Per-vertex UVs. Shape: (N, 2), dtype: float64.
    min_u, max_u, min_v, max_v : float
        Bounding rectangle of ``uvs``.
    """

    key: Hashable
    uvs: np.ndarray
    min_u: float
    max_u: float
    min_v: float
    max_v: float

    @property
    def width(self) -> float:
        return self.max_u - self.min_u

    @property
    def height(self) -> float:
        return self.max_v - self.min_v

    @property
    def is_degenerate(self) -> bool:
        """True for an island that cannot be remapped (no extent)."""
        return (
            self.uvs.shape[0] == 0
            or not np.isfinite([self.min_u, self.max_u, self.min_v, self.max_v]).all()
            or self.width <= 0.0
            or self.height <= 0.0
        )

    def to_rectangle(self) -> Rectangle:
        """Packing input for this island; zero-size when degenerate."""
        if self.is_degenerate:
            return Rectangle(0.0, 0.0, self.key)
        return Rectangle(self.width, self.height, self.key)


@dataclass
class AtlasLayout:
    """Packed atlas and the lightmap UVs derived from it.

    Attributes
    ----------
    packing : PackingResult
        Container size, utilization and per-island placements.
    uv2 : dict[Hashable, np.ndarray]
        Lightmap UVs per island key (valid islands only). Each: (N, 2).
    skipped : list[Hashable]
        Keys of islands that received no lightmap UVs.
    """

    packing: PackingResult
    uv2: dict[Hashable, np.ndarray] = field(default_factory=dict)
    skipped: list[Hashable] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Island Construction
# ---------------------------------------------------------------------------


def build_island(key: Hashable, uvs: np.ndarray | None) -> UVIsland:
    """Build a UV island from a flat ``(2N,)`` or ``(N, 2)`` UV array.

    Raises
    ------
    InvalidGeometryError
        If ``uvs`` is None, empty, has an odd number of components, or
        contains non-finite values.
    """
    if uvs is None:
        raise InvalidGeometryError(f"Surface {key!r} has no UV attribute")

    arr = np.asarray(uvs, dtype=np.float64)
    if arr.size == 0:
        raise InvalidGeometryError(f"Surface {key!r} has an empty UV attribute")
    if arr.size % 2 != 0:
        raise InvalidGeometryError(
            f"Surface {key!r} UV attribute has an odd number of components ({arr.size})"
        )
    arr = arr.reshape(-1, 2)
    if not np.isfinite(arr).all():
        raise InvalidGeometryError(f"Surface {key!r} UV attribute contains non-finite values")

    min_u, min_v = arr.min(axis=0)
    max_u, max_v = arr.max(axis=0)

    return UVIsland(
        key=key,
        uvs=arr,
        min_u=float(min_u),
        max_u=float(max_u),
        min_v=float(min_v),
        max_v=float(max_v),
    )


def island_from_surface(surface: Any) -> UVIsland:
    """Build the island of a surface's authored UV channel."""
    return build_island(surface.unique_id, surface.get_uvs(UV_CHANNEL_PRIMARY))


# ---------------------------------------------------------------------------
# Remap
# ---------------------------------------------------------------------------


def remap_island(
    island: UVIsland,
    packed: PackedRectangle,
    container_width: float,
    container_height: float,
) -> np.ndarray:
    """Map an island's UVs into its packed cell of the atlas.

    Parameters
    ----------
    island : UVIsland
        Source coordinates and bounds.
    packed : PackedRectangle
        The island's placement in the container.
    container_width, container_height : float
        Size of the packing container.

    Returns
    -------
    np.ndarray
        Atlas UVs normalized to the container. Shape: (N, 2). An empty
        (0, 2) array for a degenerate island or container.
    """
    if island.is_degenerate or container_width <= 0.0 or container_height <= 0.0:
        return np.empty((0, 2), dtype=np.float64)

    normalized = (island.uvs - [island.min_u, island.min_v]) / [island.width, island.height]

    uv2 = np.empty_like(normalized)
    uv2[:, 0] = (packed.x + normalized[:, 0] * packed.width) / container_width
    uv2[:, 1] = (packed.y + normalized[:, 1] * packed.height) / container_height
    return uv2


def layout_islands(islands: Sequence[UVIsland]) -> AtlasLayout:
    """Pack a set of islands and remap each valid one into the atlas.

    Degenerate islands are still passed to the packer (as zero-size
    rectangles) but are listed in ``skipped`` and receive no UVs.
    """
    packing = pack_rectangles([island.to_rectangle() for island in islands])
    layout = AtlasLayout(packing=packing)

    for island, packed in zip(islands, packing.rectangles):
        if island.is_degenerate:
            logger.warning(
                "Surface %r has a degenerate UV extent (%.4g × %.4g); skipping.",
                island.key,
                island.width,
                island.height,
            )
            layout.skipped.append(island.key)
            continue
        layout.uv2[island.key] = remap_island(island, packed, packing.width, packing.height)

    logger.info(
        "Atlas layout: %d islands (%d skipped), container %.4g × %.4g, fill=%.1f%%",
        len(islands),
        len(layout.skipped),
        packing.width,
        packing.height,
        packing.utilization * 100.0,
    )

    return layout
