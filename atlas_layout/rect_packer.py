"""Static rectangle packer for lightmap atlases.

Lays out N axis-aligned rectangles (one per UV island) in a single
near-square container with as little wasted area as possible. The
layout is one-shot: rectangles cannot be added once a result exists.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

References
----------
- Agafonkin, V. (2022). "potpack: a tiny rectangle packing library."
  Mapbox, ISC License.
- Scott, J. "Packing Lightmaps." blackpawn.com/texts/lightmaps.

Algorithm
---------
Shelf / guillotine packing into one container of fixed width and
unbounded height:

    width₀ = max(⌈√(A / 0.95)⌉, w_max)

    1. Sort rectangles by height, descending (stable).
    2. Keep an unordered list of free spaces, initially
       {(0, 0, width₀, ∞)}.
    3. For each rectangle scan the free spaces from the END backward
       and take the first space it fits in, placing the rectangle at the
       space's top-left corner:

         |-------|-----------|
         |  box  | new space |
         |_______|___________|
         | updated space     |
         |___________________|

       exact fit → remove the space (swap with last)
       same height → space shrinks to the right
       same width → space shrinks downward
       otherwise → split into right-hand and lower spaces

The 0.95 factor targets a slightly sub-100 % fill; the ``w_max`` floor
guarantees the widest rectangle always fits the first space.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Hashable, Sequence

from lightmap_core.errors import PackingInvariantError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TARGET_FILL: float = 0.95


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rectangle:
    """One packing input.

    Attributes
    ----------
    width : float
        Rectangle width (≥ 0), typically a UV island's U extent.
    height : float
        Rectangle height (≥ 0), typically a UV island's V extent.
    key : Hashable
        Opaque identifier linking the rectangle back to its surface.
    """

    width: float
    height: float
    key: Hashable = None

    def __post_init__(self) -> None:
        if not (math.isfinite(self.width) and math.isfinite(self.height)):
            raise ValueError(
                f"Rectangle dimensions must be finite, got "
                f"{self.width} × {self.height} (key={self.key!r})"
            )
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Rectangle dimensions must be ≥ 0, got "
                f"{self.width} × {self.height} (key={self.key!r})"
            )

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_degenerate(self) -> bool:
        """True when the rectangle has zero width or zero height."""
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True)
class PackedRectangle:
    """A rectangle with its assigned origin in container space.

    Attributes
    ----------
    width, height : float
        Size copied from the input rectangle.
    key : Hashable
        Identifier copied from the input rectangle.
    x, y : float
        Top-left corner of the rectangle inside the container.
    """

    width: float
    height: float
    key: Hashable
    x: float
    y: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def overlaps(self, other: PackedRectangle) -> bool:
        """Interior overlap test; touching edges do not count."""
        if self.is_degenerate or other.is_degenerate:
            return False
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )


@dataclass(frozen=True)
class PackingResult:
    """Output of :func:`pack_rectangles`.

    Attributes
    ----------
    width : float
        Container width (max right edge of any placed rectangle).
    height : float
        Container height (max bottom edge of any placed rectangle).
    utilization : float
        Total rectangle area / container area, 0.0 for an empty container.
    rectangles : tuple[PackedRectangle, ...]
        Packed rectangles in the same order as the input sequence.
    """

    width: float
    height: float
    utilization: float
    rectangles: tuple[PackedRectangle, ...]

    def by_key(self) -> dict[Hashable, PackedRectangle]:
        """Map each rectangle key to its packed placement."""
        return {r.key: r for r in self.rectangles}

    def summary(self) -> dict[str, float | int]:
        """Compact statistics for logging and persisted layouts."""
        return {
            "num_rectangles": len(self.rectangles),
            "num_degenerate": sum(1 for r in self.rectangles if r.is_degenerate),
            "container_width": self.width,
            "container_height": self.height,
            "utilization": self.utilization,
        }


@dataclass
class _FreeSpace:
    x: float
    y: float
    width: float
    height: float


# ---------------------------------------------------------------------------
# Core: Pack Rectangles
# ---------------------------------------------------------------------------


def pack_rectangles(rectangles: Sequence[Rectangle]) -> PackingResult:
    """Pack rectangles into a single near-square container.

    Parameters
    ----------
    rectangles : sequence of Rectangle
        Packing inputs. Zero-area rectangles are accepted: they are placed
        at (0, 0) and never consume container space.

    Returns
    -------
    PackingResult
        Container size, utilization and placements (input order).

    Raises
    ------
    PackingInvariantError
        If a rectangle fits no free space. The width floor makes this
        unreachable for valid inputs.
    """
    total_area = 0.0
    max_width = 0.0
    packable: list[int] = []

    for i, rect in enumerate(rectangles):
        if rect.is_degenerate:
            continue
        total_area += rect.area
        max_width = max(max_width, rect.width)
        packable.append(i)

    # Python's sort is stable, so equal heights keep input order
    packable.sort(key=lambda i: -rectangles[i].height)

    start_width = max(math.ceil(math.sqrt(total_area / _TARGET_FILL)), max_width)
    spaces = [_FreeSpace(0.0, 0.0, start_width, math.inf)]

    positions: dict[int, tuple[float, float]] = {}
    width = 0.0
    height = 0.0

    for i in packable:
        rect = rectangles[i]
        placed = False

        # Newest (smallest) spaces first
        for s in range(len(spaces) - 1, -1, -1):
            space = spaces[s]
            if rect.width > space.width or rect.height > space.height:
                continue

            positions[i] = (space.x, space.y)
            width = max(width, space.x + rect.width)
            height = max(height, space.y + rect.height)

            if rect.width == space.width and rect.height == space.height:
                last = spaces.pop()
                if s < len(spaces):
                    spaces[s] = last
            elif rect.height == space.height:
                space.x += rect.width
                space.width -= rect.width
            elif rect.width == space.width:
                space.y += rect.height
                space.height -= rect.height
            else:
                spaces.append(
                    _FreeSpace(
                        x=space.x + rect.width,
                        y=space.y,
                        width=space.width - rect.width,
                        height=rect.height,
                    )
                )
                space.y += rect.height
                space.height -= rect.height

            placed = True
            break

        if not placed:
            raise PackingInvariantError(
                f"Rectangle {rect.key!r} ({rect.width} × {rect.height}) found "
                f"no free space (start width {start_width}, "
                f"{len(spaces)} spaces)"
            )

    container_area = width * height
    utilization = total_area / container_area if container_area > 0 else 0.0

    packed = tuple(
        PackedRectangle(
            width=rect.width,
            height=rect.height,
            key=rect.key,
            x=positions.get(i, (0.0, 0.0))[0],
            y=positions.get(i, (0.0, 0.0))[1],
        )
        for i, rect in enumerate(rectangles)
    )

    logger.debug(
        "Packed %d rectangles (%d degenerate) into %.4g × %.4g, fill=%.3f, "
        "%d free spaces left",
        len(rectangles),
        len(rectangles) - len(packable),
        width,
        height,
        utilization,
        len(spaces),
    )

    return PackingResult(
        width=width,
        height=height,
        utilization=utilization,
        rectangles=packed,
    )
