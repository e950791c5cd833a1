"""Bake Runner — end-to-end progressive lightmap bake.

Orchestrates the full pipeline:
1. Build (or accept) a scene → surfaces, light, BVH
2. Create the progressive lightmap and lay out the atlas
3. Frame loop: scene.update() → lightmap.step() until the bake is done
4. Collect the atlas, convergence history and metadata

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Convergence is tracked after every blended pass as the mean absolute
change of the atlas over the texels covered by at least one surface:

    Δₙ = mean |Lₙ − Lₙ₋₁|

With blend weight w the history contributes (1 − w) of each update, so
Δₙ shrinks as the jittered passes agree and stays non-zero only at the
penumbra texels whose visibility flips between light directions.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import numpy as np

from atlas_layout.uv_islands import AtlasLayout
from lightmap_core.accumulation import BakeState, BufferRole, ProgressiveLightmap
from lightmap_core.constants import BakeConfig, hash_array
from lightmap_core.interfaces import UV_CHANNEL_LIGHTMAP
from reference_host.scene import Scene, build_demo_scene

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class BakeResults:
    """Container for bake output data.

    Attributes
    ----------
    lightmap : np.ndarray
        Final accumulated shadow atlas, values in [0, 1].
        Shape: (resolution, resolution), float32.
    layout : AtlasLayout
        Packing result and installed lightmap UVs.
    uv2 : dict[str, np.ndarray]
        Lightmap UVs per surface name. Each: (num_vertices, 2).
    convergence : list[float]
        Mean absolute atlas change after each rendered pass.
    light_directions : list[np.ndarray]
        Jittered light direction used by each rendered pass.
    base_direction : np.ndarray
        Light direction before and after the bake. Shape: (3,).
    metadata : dict
        Bake metadata (config, timing, hashes).
    """

    lightmap: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.float32))
    layout: AtlasLayout | None = None
    uv2: dict[str, np.ndarray] = field(default_factory=dict)
    convergence: list[float] = field(default_factory=list)
    light_directions: list[np.ndarray] = field(default_factory=list)
    base_direction: np.ndarray = field(default_factory=lambda: np.zeros(3))
    metadata: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Bake Runner
# ---------------------------------------------------------------------------


class BakeRunner:
    """Drives a :class:`ProgressiveLightmap` over a reference-host scene.

    Parameters
    ----------
    config : BakeConfig
        Full bake configuration loaded from YAML.
    iterations : int, optional
        Override the iteration budget. If None, uses config value.
    """

    def __init__(self, config: BakeConfig, iterations: int | None = None) -> None:
        if iterations is not None:
            config = replace(config, lightmap=replace(config.lightmap, iterations=iterations))
        self._config = config

        logger.info(
            "BakeRunner initialized: %d px, %d passes, jitter=%.4f, blend=%.3f",
            config.lightmap.resolution_px,
            config.lightmap.iterations,
            config.lightmap.jitter_radius,
            config.lightmap.blend_weight,
        )

    @property
    def config(self) -> BakeConfig:
        return self._config

    def run(
        self,
        scene: Scene | None = None,
        save_data: bool = True,
        output_dir: Path | str = "output",
        max_ticks: int | None = None,
    ) -> BakeResults:
        """Execute the bake.

        Parameters
        ----------
        scene : Scene, optional
            Scene to bake. Default: the demo scene built from the config.
        save_data : bool
            Persist results under ``output_dir``.
        output_dir : Path or str
            Output directory for saved data.
        max_ticks : int, optional
            Upper bound on frame-loop ticks. Default: unbounded.

        Returns
        -------
        BakeResults
            All output data.

        Raises
        ------
        RuntimeError
            If ``max_ticks`` ticks pass without the bake completing.
        """
        lm_config = self._config.lightmap
        wall_start = time.perf_counter()

        # Step 1: Scene
        if scene is None:
            logger.info("Step 1/4: Building demo scene...")
            scene = build_demo_scene(self._config)
        else:
            logger.info("Step 1/4: Using provided scene (%d surfaces)...", len(scene.surfaces))

        # Step 2: Lightmap + atlas layout
        logger.info("Step 2/4: Laying out atlas...")
        lightmap = ProgressiveLightmap(scene, scene.light, lm_config)
        layout = lightmap.add_surfaces(scene.surfaces)

        results = BakeResults(
            layout=layout,
            base_direction=np.array(scene.light.direction, dtype=np.float64, copy=True),
            metadata={
                "resolution_px": lm_config.resolution_px,
                "iterations": lm_config.iterations,
                "jitter_radius": lm_config.jitter_radius,
                "blend_weight": lm_config.blend_weight,
                "min_wait_s": lm_config.min_wait_s,
                "light_direction": scene.light.direction,
                "num_surfaces": len(scene.surfaces),
                "num_baked_surfaces": len(lightmap.surface_ids),
                "skipped_surfaces": [_surface_name(scene, sid) for sid in layout.skipped],
                "atlas": layout.packing.summary(),
            },
        )

        # Step 3: Frame loop
        logger.info("Step 3/4: Accumulating %d passes...", lm_config.iterations)
        tracker = _ConvergenceTracker(lightmap, scene, results)
        lightmap.after_blend_iteration.add(tracker.on_pass)
        lightmap.after_bake.add_once(
            lambda: logger.info("Bake finished: %d passes rendered.", len(results.convergence))
        )

        try:
            state = lightmap.start()
            ticks = 0
            while state is not BakeState.DONE:
                if max_ticks is not None and ticks >= max_ticks:
                    raise RuntimeError(
                        f"Bake did not finish within {max_ticks} ticks "
                        f"(pass {lightmap.iteration}/{lightmap.budget})."
                    )
                scene.update()
                state = lightmap.step()
                ticks += 1

            # Step 4: Collect
            logger.info("Step 4/4: Collecting results...")
            results.lightmap = lightmap.get_shadow_map().read_pixels()
        finally:
            lightmap.dispose()

        results.uv2 = {
            surface.name: surface.get_uvs(UV_CHANNEL_LIGHTMAP).copy()
            for surface in scene.surfaces
            if surface.get_uvs(UV_CHANNEL_LIGHTMAP) is not None
        }

        wall_elapsed = time.perf_counter() - wall_start
        results.metadata["ticks"] = ticks
        results.metadata["wall_time_s"] = wall_elapsed
        results.metadata["passes_per_second"] = (
            len(results.convergence) / wall_elapsed if wall_elapsed > 0 else 0.0
        )
        results.metadata["lightmap_sha256"] = hash_array(results.lightmap)
        results.metadata["final_change"] = results.convergence[-1] if results.convergence else 0.0

        logger.info(
            "Bake complete: %.1f seconds wall time (%d ticks, lit fraction %.3f)",
            wall_elapsed,
            ticks,
            float(results.lightmap[tracker.coverage].mean()) if tracker.coverage.any() else 0.0,
        )

        if save_data:
            from bake.io_manager import save_results

            save_results(
                output_dir=output_dir,
                lightmap=results.lightmap,
                uv2_channels=results.uv2,
                convergence=results.convergence,
                light_directions=results.light_directions,
                layout=layout,
                metadata=results.metadata,
            )

        return results


# ---------------------------------------------------------------------------
# Convergence Tracking
# ---------------------------------------------------------------------------


class _ConvergenceTracker:
    """after_blend_iteration observer recording per-pass atlas change."""

    def __init__(self, lightmap: ProgressiveLightmap, scene: Scene, results: BakeResults) -> None:
        self._lightmap = lightmap
        self._scene = scene
        self._results = results
        self._previous: np.ndarray | None = None
        self.coverage = np.zeros((0, 0), dtype=bool)

    def on_pass(self) -> None:
        current = self._lightmap.get_shadow_map().data
        if self.coverage.shape != current.shape:
            self.coverage = self._covered_texels(current.shape[0])

        if self._previous is None:
            change = float(np.abs(current[self.coverage]).mean()) if self.coverage.any() else 0.0
        else:
            diff = np.abs(current - self._previous)
            change = float(diff[self.coverage].mean()) if self.coverage.any() else 0.0

        self._previous = current.copy()
        self._results.convergence.append(change)
        self._results.light_directions.append(
            np.array(self._scene.light.direction, dtype=np.float64, copy=True)
        )

        n = len(self._results.convergence)
        budget = self._lightmap.budget
        if n == 1 or n == budget or n % max(1, budget // 10) == 0:
            logger.info(
                "  Pass %d/%d: mean |Δ|=%.5f, lit=%.3f",
                n,
                budget,
                change,
                float(current[self.coverage].mean()) if self.coverage.any() else 0.0,
            )

    def _covered_texels(self, size: int) -> np.ndarray:
        mask = np.zeros(size * size, dtype=bool)
        target = self._lightmap.buffer(BufferRole.READ).target
        for texels in target.covered_texels():
            mask[texels] = True
        return mask.reshape(size, size)


def _surface_name(scene: Scene, surface_id: Any) -> str:
    for surface in scene.surfaces:
        if surface.unique_id == surface_id:
            return surface.name
    return str(surface_id)
