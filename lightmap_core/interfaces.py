"""Collaborator contracts supplied by the rendering host.

The baker never constructs scenes, meshes, materials or GPU textures. It
talks to them through the structural interfaces below; any backend whose
objects provide these attributes and methods can be driven by
:class:`lightmap_core.accumulation.ProgressiveLightmap`. The CPU
implementation in :mod:`reference_host` is one such backend.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

from typing import Any, Protocol

import numpy as np

# UV channel indices: 0 = authored UVs, 1 = lightmap atlas UVs
UV_CHANNEL_PRIMARY: int = 0
UV_CHANNEL_LIGHTMAP: int = 1


class Material(Protocol):
    """Host material that can be cloned and extended with a shader plugin."""

    name: str
    back_face_culling: bool

    def clone(self, name: str) -> Material | None:
        """Return an independent copy, or None if the host cannot clone."""

    def attach_plugin(self, plugin: Any) -> None:
        """Install a shader plugin exposing the four injection hooks."""

    def dispose(self) -> None:
        """Release host resources held by the material."""


class Surface(Protocol):
    """Mesh accessor: per-vertex UV channels, identity and visibility."""

    name: str
    material: Material | None
    visible: bool

    @property
    def unique_id(self) -> int:
        """Stable identifier, unique among live surfaces."""

    def get_uvs(self, channel: int) -> np.ndarray | None:
        """Per-vertex UVs of a channel, shape (N, 2), or None if absent."""

    def set_uvs(self, channel: int, uvs: np.ndarray) -> None:
        """Install per-vertex UVs on a channel."""


class RenderTarget(Protocol):
    """Off-screen buffer that draws its surface list into itself."""

    name: str
    render_list: list[Any]

    @property
    def texture(self) -> Any:
        """Resource handle that materials can sample from."""

    def set_material_for_rendering(self, surface: Any, material: Any) -> None:
        """Override the material used for ``surface`` in this target only."""

    def is_ready_for_rendering(self) -> bool:
        """True once every resource needed by :meth:`render` is available."""

    def render(self) -> None:
        """Synchronously draw the render list."""

    def dispose(self) -> None:
        """Release the target and its texture."""


class RenderHost(Protocol):
    """Factory for render targets."""

    def create_render_target(self, name: str, size: int) -> RenderTarget:
        """Allocate a square render target of ``size`` × ``size`` texels."""


class Light(Protocol):
    """Directional light with a mutable direction vector."""

    direction: np.ndarray
