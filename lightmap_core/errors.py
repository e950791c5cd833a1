"""Error kinds raised by the lightmap baker.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Only :class:`InvalidGeometryError` is recovered locally (the surface is
skipped with a warning). The other kinds signal a broken contract with
the rendering host or an internal invariant and propagate to the caller.
"""

from __future__ import annotations


class LightmapError(Exception):
    """Base class for all lightmap baking errors."""


class InvalidGeometryError(LightmapError, ValueError):
    """A surface lacks a usable UV attribute or has degenerate UV bounds."""


class MaterialCloneError(LightmapError):
    """The host material returned nothing from ``clone()``."""


class PackingInvariantError(LightmapError, RuntimeError):
    """A rectangle found no free space during packing."""


class ResourceUnavailableError(LightmapError, RuntimeError):
    """A render target was missing when the bake needed it."""
