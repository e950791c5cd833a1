"""Progressive lightmap — ping-pong temporal accumulation.

Drives repeated light-jittered render passes into two off-screen buffers
that swap roles every pass, so each pass can blend its output against the
history accumulated by the previous one.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

State Machine
-------------
    IDLE ──start()──▶ RUNNING ──(iteration == budget)──▶ DONE

Each non-deferred ``step()`` while RUNNING performs one pass:

    JITTER  light.direction ← jitter(i, N, base)
    RENDER  write buffer draws its surfaces (blending with the read buffer)
    SWAP    write ↔ read
    i ← i + 1
    SIGNAL  after_blend_iteration.notify()

When ``i`` reaches the budget the original light direction is restored
and ``after_bake`` fires once.

Notes
-----
The baker holds no timers. The host calls :meth:`ProgressiveLightmap.step`
once per render-loop tick. A tick is *deferred* (nothing changes, the
same pass is retried on a later tick) when it arrives sooner than
``min_wait_s`` after the previous render, or when the write buffer
reports that it is not ready to render. Ticks never block.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import numpy as np

from atlas_layout.uv_islands import AtlasLayout, UVIsland, island_from_surface, layout_islands
from lightmap_core.constants import LightmapConfig
from lightmap_core.errors import (
    InvalidGeometryError,
    MaterialCloneError,
    ResourceUnavailableError,
)
from lightmap_core.events import Observable
from lightmap_core.interfaces import UV_CHANNEL_LIGHTMAP, Light, RenderHost, RenderTarget
from lightmap_core.light_jitter import jitter_light_direction
from lightmap_core.shadow_plugin import ProgressiveShadowPlugin

logger = logging.getLogger(__name__)

# Passes 0-2 set first-iteration flags; from then on every flag stays False
_FLAG_REFRESH_ITERATIONS: int = 3


# ---------------------------------------------------------------------------
# State Containers
# ---------------------------------------------------------------------------


class BakeState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"


class BufferRole(enum.Enum):
    WRITE = "write"
    READ = "read"


@dataclass
class AccumulationBuffer:
    """One of the two ping-pong buffers.

    Attributes
    ----------
    name : str
        Buffer label ("A" or "B").
    target : RenderTarget or None
        Host render target. None once disposed.
    surface_ids : list[int]
        Participating surfaces, in registration order.
    materials : dict[int, Any]
        Cloned material per surface id, used only when rendering this buffer.
    plugins : dict[int, ProgressiveShadowPlugin]
        Shader plugin attached to each cloned material.
    """

    name: str
    target: RenderTarget | None
    surface_ids: list[int] = field(default_factory=list)
    materials: dict[int, Any] = field(default_factory=dict)
    plugins: dict[int, ProgressiveShadowPlugin] = field(default_factory=dict)


@dataclass
class AccumulationSession:
    """Mutable state of one bake.

    Attributes
    ----------
    budget : int
        Number of passes to render.
    base_direction : np.ndarray
        Light direction captured at start; restored on completion.
    iteration : int
        Index of the next pass (0-based).
    state : BakeState
        Current lifecycle state.
    """

    budget: int
    base_direction: np.ndarray
    iteration: int = 0
    state: BakeState = BakeState.RUNNING


# ---------------------------------------------------------------------------
# Progressive Lightmap
# ---------------------------------------------------------------------------


class ProgressiveLightmap:
    """Shared shadow lightmap accumulated over jittered render passes.

    Parameters
    ----------
    host : RenderHost
        Factory for the two ping-pong render targets.
    light : Light
        Directional light whose direction is jittered while baking.
    config : LightmapConfig, optional
        Atlas resolution, iteration budget, jitter radius, blend weight
        and minimum wait between renders.
    clock : Callable[[], float]
        Monotonic time source [s], used only for the minimum-wait check.
    """

    def __init__(
        self,
        host: RenderHost,
        light: Light,
        config: LightmapConfig | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._config = config if config is not None else LightmapConfig()
        self._light = light
        self._clock = clock

        size = self._config.resolution_px
        self._buffers = (
            AccumulationBuffer("A", host.create_render_target("pingPongA", size)),
            AccumulationBuffer("B", host.create_render_target("pingPongB", size)),
        )
        self._write_index = 0

        self._layout: AtlasLayout | None = None
        self._session: AccumulationSession | None = None
        self._last_render_time = 0.0
        self._disposed = False

        self.after_blend_iteration = Observable("after_blend_iteration")
        self.after_bake = Observable("after_bake")

        logger.info(
            "ProgressiveLightmap initialized: %d px, budget=%d, jitter=%.4f, "
            "blend=%.3f, min_wait=%.3fs",
            size,
            self._config.iterations,
            self._config.jitter_radius,
            self._config.blend_weight,
            self._config.min_wait_s,
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> BakeState:
        return self._session.state if self._session is not None else BakeState.IDLE

    @property
    def iteration(self) -> int:
        return self._session.iteration if self._session is not None else 0

    @property
    def budget(self) -> int:
        return self._session.budget if self._session is not None else self._config.iterations

    @property
    def surface_ids(self) -> list[int]:
        return list(self._buffers[0].surface_ids)

    @property
    def layout(self) -> AtlasLayout | None:
        return self._layout

    def buffer(self, role: BufferRole) -> AccumulationBuffer:
        """The buffer currently playing ``role``."""
        if role is BufferRole.WRITE:
            return self._buffers[self._write_index]
        return self._buffers[1 - self._write_index]

    # ------------------------------------------------------------------
    # Surface registration
    # ------------------------------------------------------------------

    def add_surfaces(self, surfaces: Sequence[Any]) -> AtlasLayout:
        """Lay out the surfaces' UVs in the atlas and register them for baking.

        Every surface with usable UVs receives lightmap UVs (channel 1).
        Surfaces that also have a material join both buffers' render
        lists with one cloned, plugin-extended material per buffer;
        surfaces without a material are left out of rendering.

        Parameters
        ----------
        surfaces : sequence of Surface
            Surfaces sharing the lightmap. The layout is static: this
            can be called once, before :meth:`start`.

        Returns
        -------
        AtlasLayout
            Packing result, installed UVs, and skipped surface ids.

        Raises
        ------
        RuntimeError
            If surfaces were already added, the bake has started, or the
            lightmap was disposed.
        ValueError
            If the same surface appears twice in ``surfaces``.
        MaterialCloneError
            If the host fails to clone a surface's material.
        """
        if self._session is not None or self._disposed:
            raise RuntimeError("Surfaces must be added before the bake starts.")
        if self._layout is not None:
            raise RuntimeError("The atlas is already laid out; add all surfaces in one call.")

        seen: set[int] = set()
        for surface in surfaces:
            if surface.unique_id in seen:
                raise ValueError(f"Surface {surface.name!r} is listed more than once.")
            seen.add(surface.unique_id)

        islands: list[UVIsland] = []
        valid: list[Any] = []
        invalid_ids: list[int] = []
        for surface in surfaces:
            try:
                island = island_from_surface(surface)
            except InvalidGeometryError as exc:
                logger.warning("%s; skipping surface %r.", exc, surface.name)
                invalid_ids.append(surface.unique_id)
                continue
            islands.append(island)
            valid.append(surface)

        layout = layout_islands(islands)
        layout.skipped[:0] = invalid_ids

        for surface in valid:
            uv2 = layout.uv2.get(surface.unique_id)
            if uv2 is None:
                continue
            surface.set_uvs(UV_CHANNEL_LIGHTMAP, uv2)

            if surface.material is None:
                logger.debug("Surface %r has no material; not rendered.", surface.name)
                continue
            self._register(surface)

        self._layout = layout
        logger.info(
            "Registered %d of %d surfaces for baking (%d skipped).",
            len(self._buffers[0].surface_ids),
            len(surfaces),
            len(layout.skipped),
        )
        return layout

    def _register(self, surface: Any) -> None:
        """Clone the surface's material once per buffer and cross-link them."""
        surface_id = surface.unique_id
        plugins = []
        for buf in self._buffers:
            material, plugin = self._create_accumulation_material(surface.material)
            buf.target.render_list.append(surface)
            buf.target.set_material_for_rendering(surface, material)
            buf.surface_ids.append(surface_id)
            buf.materials[surface_id] = material
            buf.plugins[surface_id] = plugin
            plugins.append(plugin)

        # Each buffer blends against the other's texture
        plugins[0].set_previous_shadow_map(self._buffers[1].target.texture)
        plugins[1].set_previous_shadow_map(self._buffers[0].target.texture)
        plugins[0].is_first_iteration = True
        plugins[1].is_first_iteration = False

    def _create_accumulation_material(
        self, original: Any
    ) -> tuple[Any, ProgressiveShadowPlugin]:
        material = original.clone("uv_" + original.name)
        if material is None:
            raise MaterialCloneError(
                f"Failed to clone material {original.name!r} for lightmap baking."
            )
        # UV-space triangles may face either way
        material.back_face_culling = False
        plugin = ProgressiveShadowPlugin(material, blend_weight=self._config.blend_weight)
        material.attach_plugin(plugin)
        return material, plugin

    # ------------------------------------------------------------------
    # Bake loop
    # ------------------------------------------------------------------

    def start(self, iterations: int | None = None) -> BakeState:
        """Begin a bake of ``iterations`` passes (default: config budget).

        A zero budget or an empty surface list completes immediately.

        Raises
        ------
        RuntimeError
            If a bake was already started or the lightmap was disposed.
        ValueError
            If ``iterations`` is negative.
        """
        if self._disposed:
            raise RuntimeError("Cannot start a disposed lightmap.")
        if self._session is not None:
            raise RuntimeError(f"Bake already started (state={self.state.value}).")

        budget = self._config.iterations if iterations is None else int(iterations)
        if budget < 0:
            raise ValueError(f"Iteration budget must be ≥ 0, got {budget}")

        self._session = AccumulationSession(
            budget=budget,
            base_direction=np.array(self._light.direction, dtype=np.float64, copy=True),
        )
        self._last_render_time = self._clock()

        logger.info(
            "Bake started: %d passes over %d surfaces.",
            budget,
            len(self._buffers[0].surface_ids),
        )

        if budget == 0 or not self._buffers[0].surface_ids:
            self._finish()
        return self.state

    def step(self) -> BakeState:
        """Advance the bake by at most one pass.

        Returns
        -------
        BakeState
            State after the call. ``RUNNING`` is also returned for a
            deferred tick, in which case :attr:`iteration` is unchanged.

        Raises
        ------
        ResourceUnavailableError
            After :meth:`dispose`.
        """
        if self._disposed:
            raise ResourceUnavailableError("Lightmap has been disposed.")

        session = self._session
        if session is None or session.state is not BakeState.RUNNING:
            return self.state

        if session.iteration >= session.budget:
            self._finish()
            return self.state

        write = self.buffer(BufferRole.WRITE)
        if write.target is None:
            raise ResourceUnavailableError(
                f"Render target of buffer {write.name} is not available."
            )

        if write.surface_ids:
            now = self._clock()
            if now - self._last_render_time < self._config.min_wait_s:
                return self.state
            if not write.target.is_ready_for_rendering():
                logger.debug("Buffer %s not ready; deferring pass %d.", write.name, session.iteration)
                return self.state

        i = session.iteration
        self._light.direction = jitter_light_direction(
            i, session.budget, session.base_direction, self._config.jitter_radius
        )

        if write.surface_ids:
            if i < _FLAG_REFRESH_ITERATIONS:
                for plugin in write.plugins.values():
                    plugin.is_first_iteration = i == 0

            write.target.render()
            self._last_render_time = self._clock()
            self._swap()

        logger.debug("Pass %d/%d rendered into buffer %s.", i + 1, session.budget, write.name)

        # Counter moves with the swap, before any observer can raise
        session.iteration += 1
        if write.surface_ids:
            self.after_blend_iteration.notify()
        if session.iteration >= session.budget:
            self._finish()
        return self.state

    def _swap(self) -> None:
        self._write_index = 1 - self._write_index

    def _finish(self) -> None:
        session = self._session
        self._restore_light()
        session.state = BakeState.DONE
        logger.info("Bake complete after %d passes.", session.iteration)
        self.after_bake.notify()

    def _restore_light(self) -> None:
        self._light.direction = self._session.base_direction.copy()

    # ------------------------------------------------------------------
    # Output & teardown
    # ------------------------------------------------------------------

    def get_shadow_map(self) -> Any:
        """Texture of the most recently completed pass (the read buffer).

        Raises
        ------
        ResourceUnavailableError
            After :meth:`dispose`.
        """
        read = self.buffer(BufferRole.READ)
        if read.target is None:
            raise ResourceUnavailableError("Lightmap has been disposed.")
        return read.target.texture

    def dispose(self) -> None:
        """Release both render targets and every cloned material.

        A bake still running is abandoned: the light direction is
        restored and the state becomes DONE without notifying
        ``after_bake``. Calling this more than once is harmless.
        """
        if self._disposed:
            return

        if self._session is not None and self._session.state is BakeState.RUNNING:
            logger.info("Disposing a running bake at pass %d.", self._session.iteration)
            self._restore_light()
            self._session.state = BakeState.DONE

        for buf in self._buffers:
            for material in buf.materials.values():
                material.dispose()
            buf.materials.clear()
            buf.plugins.clear()
            if buf.target is not None:
                buf.target.dispose()
                buf.target = None

        self.after_blend_iteration.clear()
        self.after_bake.clear()
        self._disposed = True
        logger.debug("ProgressiveLightmap disposed.")
