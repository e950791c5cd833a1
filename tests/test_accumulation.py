"""Tests for the progressive lightmap state machine.

Uses lightweight fakes for every host collaborator, so these tests
exercise only the ping-pong bookkeeping: registration, flag refresh,
swap order, notifications, deferral and teardown.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import pytest

from lightmap_core.accumulation import BakeState, BufferRole, ProgressiveLightmap
from lightmap_core.constants import LightmapConfig
from lightmap_core.errors import MaterialCloneError, ResourceUnavailableError
from lightmap_core.events import Observable
from lightmap_core.interfaces import UV_CHANNEL_LIGHTMAP, UV_CHANNEL_PRIMARY
from lightmap_core.light_jitter import jitter_light_direction
from lightmap_core.shadow_plugin import (
    FIRST_ITERATION_DEFINE,
    PREVIOUS_SHADOW_MAP_SAMPLER,
    UV2_ATTRIBUTE,
    ProgressiveShadowPlugin,
    blend_history,
)


# ===================================================================
# FAKE COLLABORATORS
# ===================================================================


class FakeTexture:
    def __init__(self, name: str) -> None:
        self.name = name


class FakeTarget:
    """Records every render as (target name, FIRST_ITERATION per surface)."""

    def __init__(self, name: str, size: int, log: list[tuple[str, list[bool]]]) -> None:
        self.name = name
        self.size = size
        self.render_list: list[Any] = []
        self.overrides: dict[int, Any] = {}
        self.texture = FakeTexture(name)
        self.ready = True
        self.disposed = False
        self._log = log

    def set_material_for_rendering(self, surface: Any, material: Any) -> None:
        self.overrides[surface.unique_id] = material

    def is_ready_for_rendering(self) -> bool:
        return self.ready

    def render(self) -> None:
        flags = []
        for surface in self.render_list:
            defines: dict[str, Any] = {}
            self.overrides[surface.unique_id].plugins[0].prepare_defines(defines)
            flags.append(defines[FIRST_ITERATION_DEFINE])
        self._log.append((self.name, flags))

    def dispose(self) -> None:
        self.disposed = True


class FakeHost:
    def __init__(self) -> None:
        self.renders: list[tuple[str, list[bool]]] = []
        self.targets: dict[str, FakeTarget] = {}

    def create_render_target(self, name: str, size: int) -> FakeTarget:
        target = FakeTarget(name, size, self.renders)
        self.targets[name] = target
        return target


class FakeMaterial:
    def __init__(self, name: str, clone_fails: bool = False) -> None:
        self.name = name
        self.back_face_culling = True
        self.plugins: list[Any] = []
        self.clone_fails = clone_fails
        self.disposed = False

    def clone(self, name: str) -> FakeMaterial | None:
        if self.clone_fails:
            return None
        return FakeMaterial(name)

    def attach_plugin(self, plugin: Any) -> None:
        self.plugins.append(plugin)

    def dispose(self) -> None:
        self.disposed = True


class FakeSurface:
    _next_id = 100

    def __init__(self, name: str, uvs: np.ndarray | None, material: FakeMaterial | None) -> None:
        FakeSurface._next_id += 1
        self._id = FakeSurface._next_id
        self.name = name
        self.material = material
        self.visible = True
        self.uvs: dict[int, np.ndarray] = {}
        if uvs is not None:
            self.uvs[UV_CHANNEL_PRIMARY] = uvs

    @property
    def unique_id(self) -> int:
        return self._id

    def get_uvs(self, channel: int) -> np.ndarray | None:
        return self.uvs.get(channel)

    def set_uvs(self, channel: int, uvs: np.ndarray) -> None:
        self.uvs[channel] = uvs


class FakeLight:
    def __init__(self, direction: np.ndarray) -> None:
        self.direction = np.array(direction, dtype=np.float64)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


_SQUARE = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def light(base_direction: np.ndarray) -> FakeLight:
    return FakeLight(base_direction)


@pytest.fixture
def surfaces() -> list[FakeSurface]:
    return [
        FakeSurface("ground", _SQUARE * 30.0, FakeMaterial("groundMat")),
        FakeSurface("box", _SQUARE * [2.0, 1.0], FakeMaterial("boxMat")),
    ]


def _make_lightmap(
    host: FakeHost,
    light: FakeLight,
    surfaces: list[FakeSurface],
    iterations: int = 8,
    **kwargs: Any,
) -> tuple[ProgressiveLightmap, list[str]]:
    """Lightmap with surfaces added and an event log attached."""
    config = LightmapConfig(resolution_px=16, iterations=iterations, **kwargs)
    lightmap = ProgressiveLightmap(host, light, config, clock=FakeClock())
    lightmap.add_surfaces(surfaces)
    events: list[str] = []
    lightmap.after_blend_iteration.add(lambda: events.append("blend"))
    lightmap.after_bake.add(lambda: events.append("bake"))
    return lightmap, events


# ===================================================================
# REGISTRATION
# ===================================================================


class TestAddSurfaces:
    """Atlas layout and per-buffer material setup."""

    def test_uv2_installed(self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]) -> None:
        """Every valid surface gets channel-1 UVs inside [0, 1]²."""
        lightmap, _ = _make_lightmap(host, light, surfaces)
        for s in surfaces:
            uv2 = s.get_uvs(UV_CHANNEL_LIGHTMAP)
            assert uv2 is not None and uv2.shape == (4, 2)
            assert uv2.min() >= 0.0 and uv2.max() <= 1.0
        assert lightmap.layout is not None
        assert lightmap.surface_ids == [s.unique_id for s in surfaces]

    def test_materials_cloned_per_buffer(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        """Each buffer gets its own 'uv_' clone with culling off and one plugin."""
        lightmap, _ = _make_lightmap(host, light, surfaces)
        a = lightmap.buffer(BufferRole.WRITE)
        b = lightmap.buffer(BufferRole.READ)
        for s in surfaces:
            mat_a = a.materials[s.unique_id]
            mat_b = b.materials[s.unique_id]
            assert mat_a is not mat_b
            assert mat_a.name == "uv_" + s.material.name
            assert mat_a.back_face_culling is False
            assert len(mat_a.plugins) == 1
            assert s.material.plugins == []
            assert host.targets["pingPongA"].overrides[s.unique_id] is mat_a

    def test_previous_maps_cross_linked(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        """Buffer A blends against B's texture and vice versa."""
        lightmap, _ = _make_lightmap(host, light, surfaces)
        a = lightmap.buffer(BufferRole.WRITE)
        b = lightmap.buffer(BufferRole.READ)
        sid = surfaces[0].unique_id
        assert a.plugins[sid].previous_shadow_map is host.targets["pingPongB"].texture
        assert b.plugins[sid].previous_shadow_map is host.targets["pingPongA"].texture
        assert a.plugins[sid].is_first_iteration is True
        assert b.plugins[sid].is_first_iteration is False

    def test_surface_without_material_not_rendered(self, host: FakeHost, light: FakeLight) -> None:
        """A surface with no material still gets UV2 but never joins a render list."""
        bare = FakeSurface("bare", _SQUARE, None)
        lit = FakeSurface("lit", _SQUARE, FakeMaterial("m"))
        lightmap, _ = _make_lightmap(host, light, [bare, lit])
        assert bare.get_uvs(UV_CHANNEL_LIGHTMAP) is not None
        assert lightmap.surface_ids == [lit.unique_id]
        assert host.targets["pingPongA"].render_list == [lit]

    def test_invalid_surface_skipped(
        self, host: FakeHost, light: FakeLight, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Missing or flat UVs: skipped with a warning, no UV2, bake continues."""
        missing = FakeSurface("missing", None, FakeMaterial("m1"))
        flat = FakeSurface("flat", np.array([[0.0, 0.5], [1.0, 0.5]]), FakeMaterial("m2"))
        good = FakeSurface("good", _SQUARE, FakeMaterial("m3"))

        with caplog.at_level(logging.WARNING):
            lightmap, _ = _make_lightmap(host, light, [missing, flat, good])

        assert lightmap.layout.skipped == [missing.unique_id, flat.unique_id]
        assert missing.get_uvs(UV_CHANNEL_LIGHTMAP) is None
        assert flat.get_uvs(UV_CHANNEL_LIGHTMAP) is None
        assert lightmap.surface_ids == [good.unique_id]
        assert len([r for r in caplog.records if r.levelno == logging.WARNING]) >= 2

    def test_clone_failure_raises(self, host: FakeHost, light: FakeLight) -> None:
        broken = FakeSurface("broken", _SQUARE, FakeMaterial("m", clone_fails=True))
        lightmap = ProgressiveLightmap(host, light, LightmapConfig(resolution_px=16))
        with pytest.raises(MaterialCloneError):
            lightmap.add_surfaces([broken])

    def test_add_after_start_rejected(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        lightmap, _ = _make_lightmap(host, light, surfaces)
        lightmap.start()
        with pytest.raises(RuntimeError):
            lightmap.add_surfaces([FakeSurface("late", _SQUARE, FakeMaterial("m"))])

    def test_second_batch_rejected(self, host: FakeHost, light: FakeLight) -> None:
        """The atlas is laid out once; a later batch would reuse the same cells."""
        first = FakeSurface("first", _SQUARE, FakeMaterial("a"))
        second = FakeSurface("second", _SQUARE, FakeMaterial("b"))
        lightmap = ProgressiveLightmap(host, light, LightmapConfig(resolution_px=16), clock=FakeClock())
        layout = lightmap.add_surfaces([first])

        with pytest.raises(RuntimeError):
            lightmap.add_surfaces([second])

        assert second.get_uvs(UV_CHANNEL_LIGHTMAP) is None
        assert lightmap.layout is layout
        assert lightmap.surface_ids == [first.unique_id]
        assert host.targets["pingPongA"].render_list == [first]

    def test_duplicate_surface_rejected(self, host: FakeHost, light: FakeLight) -> None:
        """Listing a surface twice registers nothing and clones nothing."""
        material = FakeMaterial("m")
        surface = FakeSurface("twice", _SQUARE, material)
        lightmap = ProgressiveLightmap(host, light, LightmapConfig(resolution_px=16), clock=FakeClock())

        with pytest.raises(ValueError):
            lightmap.add_surfaces([surface, surface])

        assert lightmap.surface_ids == []
        assert lightmap.layout is None
        assert surface.get_uvs(UV_CHANNEL_LIGHTMAP) is None


# ===================================================================
# BAKE LOOP
# ===================================================================


class TestBakeLoop:
    """start() / step() semantics."""

    def test_initial_state(self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]) -> None:
        lightmap, _ = _make_lightmap(host, light, surfaces)
        assert lightmap.state is BakeState.IDLE
        assert lightmap.iteration == 0
        # Readable before the bake starts
        assert lightmap.get_shadow_map() is host.targets["pingPongB"].texture

    def test_budget_of_one(self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]) -> None:
        """One render with FIRST_ITERATION set, one swap, then DONE."""
        base = light.direction.copy()
        lightmap, events = _make_lightmap(host, light, surfaces, iterations=1)

        assert lightmap.start() is BakeState.RUNNING
        assert lightmap.step() is BakeState.DONE

        assert host.renders == [("pingPongA", [True, True])]
        assert lightmap.buffer(BufferRole.WRITE).name == "B"
        assert lightmap.get_shadow_map() is host.targets["pingPongA"].texture
        assert events == ["blend", "bake"]
        assert np.array_equal(light.direction, base)

    def test_full_bake_convergence(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        """budget steps: budget blend notifications, then exactly one bake notification."""
        base = light.direction.copy()
        budget = 8
        lightmap, events = _make_lightmap(host, light, surfaces, iterations=budget)

        states = [lightmap.state, lightmap.start()]
        for _ in range(budget):
            states.append(lightmap.step())

        assert states[0] is BakeState.IDLE
        assert states[1:-1] == [BakeState.RUNNING] * budget
        assert states[-1] is BakeState.DONE
        assert events == ["blend"] * budget + ["bake"]
        assert lightmap.iteration == budget
        assert np.array_equal(light.direction, base)

        # Further ticks are no-ops
        assert lightmap.step() is BakeState.DONE
        assert events == ["blend"] * budget + ["bake"]
        assert len(host.renders) == budget

    def test_ping_pong_order_and_flags(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        """Buffers alternate A, B, A, …; only the very first pass writes raw output."""
        lightmap, _ = _make_lightmap(host, light, surfaces, iterations=5)
        lightmap.start()
        for _ in range(5):
            lightmap.step()

        assert [name for name, _ in host.renders] == [
            "pingPongA", "pingPongB", "pingPongA", "pingPongB", "pingPongA",
        ]
        assert [flags for _, flags in host.renders] == [[True, True]] + [[False, False]] * 4

    def test_light_jittered_during_bake(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        base = light.direction.copy()
        lightmap, _ = _make_lightmap(host, light, surfaces, iterations=4, jitter_radius=0.05)
        lightmap.start()
        lightmap.step()
        np.testing.assert_allclose(light.direction, jitter_light_direction(0, 4, base, 0.05))
        lightmap.step()
        np.testing.assert_allclose(light.direction, jitter_light_direction(1, 4, base, 0.05))

    def test_empty_surface_list_done_immediately(self, host: FakeHost, light: FakeLight) -> None:
        lightmap, events = _make_lightmap(host, light, [])
        assert lightmap.start() is BakeState.DONE
        assert events == ["bake"]
        assert host.renders == []

    def test_zero_budget_done_immediately(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        lightmap, events = _make_lightmap(host, light, surfaces)
        assert lightmap.start(iterations=0) is BakeState.DONE
        assert events == ["bake"]

    def test_invalid_start(self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]) -> None:
        lightmap, _ = _make_lightmap(host, light, surfaces)
        with pytest.raises(ValueError):
            lightmap.start(iterations=-1)
        lightmap.start()
        with pytest.raises(RuntimeError):
            lightmap.start()

    def test_step_before_start_is_noop(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        lightmap, events = _make_lightmap(host, light, surfaces)
        assert lightmap.step() is BakeState.IDLE
        assert host.renders == [] and events == []

    def test_failing_observer_does_not_repeat_pass(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        """An observer error escapes step() but the pass still counts."""
        lightmap, _ = _make_lightmap(host, light, surfaces, iterations=3)

        def fail() -> None:
            raise RuntimeError("observer failed")

        lightmap.after_blend_iteration.add_once(fail)
        lightmap.start()

        with pytest.raises(RuntimeError, match="observer failed"):
            lightmap.step()
        assert lightmap.iteration == 1

        lightmap.step()
        lightmap.step()

        assert lightmap.state is BakeState.DONE
        assert host.renders == [
            ("pingPongA", [True, True]),
            ("pingPongB", [False, False]),
            ("pingPongA", [False, False]),
        ]

    def test_failing_observer_on_last_pass(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        """The next tick completes the bake without rendering again."""
        base = light.direction.copy()
        lightmap, events = _make_lightmap(host, light, surfaces, iterations=1)

        def fail() -> None:
            raise RuntimeError("observer failed")

        lightmap.after_blend_iteration.add_once(fail)
        lightmap.start()
        with pytest.raises(RuntimeError):
            lightmap.step()

        assert lightmap.step() is BakeState.DONE
        assert len(host.renders) == 1
        assert events.count("bake") == 1
        assert np.array_equal(light.direction, base)


# ===================================================================
# DEFERRAL
# ===================================================================


class TestDeferral:
    """Non-blocking waits on readiness and minimum render spacing."""

    def test_not_ready_defers(self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]) -> None:
        """A tick while the write target is not ready changes nothing."""
        base = light.direction.copy()
        lightmap, events = _make_lightmap(host, light, surfaces, iterations=2)
        lightmap.start()
        host.targets["pingPongA"].ready = False

        assert lightmap.step() is BakeState.RUNNING
        assert lightmap.iteration == 0
        assert host.renders == [] and events == []
        assert np.array_equal(light.direction, base)

        host.targets["pingPongA"].ready = True
        lightmap.step()
        assert lightmap.iteration == 1
        assert len(host.renders) == 1

    def test_min_wait_defers(self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]) -> None:
        clock = FakeClock()
        config = LightmapConfig(resolution_px=16, iterations=3, min_wait_s=0.5)
        lightmap = ProgressiveLightmap(host, light, config, clock=clock)
        lightmap.add_surfaces(surfaces)
        lightmap.start()

        clock.now = 0.2
        lightmap.step()
        assert lightmap.iteration == 0

        clock.now = 0.6
        lightmap.step()
        assert lightmap.iteration == 1

        clock.now = 0.9
        lightmap.step()
        assert lightmap.iteration == 1

        clock.now = 1.2
        lightmap.step()
        assert lightmap.iteration == 2


# ===================================================================
# TEARDOWN
# ===================================================================


class TestDispose:
    """Resource release and post-dispose behaviour."""

    def test_dispose_running_bake(
        self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]
    ) -> None:
        """Disposing mid-bake restores the light and releases everything."""
        base = light.direction.copy()
        lightmap, events = _make_lightmap(host, light, surfaces, iterations=8)
        lightmap.start()
        lightmap.step()
        lightmap.step()
        clones = list(lightmap.buffer(BufferRole.WRITE).materials.values())

        lightmap.dispose()

        assert np.array_equal(light.direction, base)
        assert all(t.disposed for t in host.targets.values())
        assert all(m.disposed for m in clones)
        assert not any(s.material.disposed for s in surfaces)
        # Abandoned, not completed: terminal state without a completion signal
        assert lightmap.state is BakeState.DONE
        assert "bake" not in events
        with pytest.raises(ResourceUnavailableError):
            lightmap.step()
        with pytest.raises(ResourceUnavailableError):
            lightmap.get_shadow_map()

    def test_dispose_idempotent(self, host: FakeHost, light: FakeLight, surfaces: list[FakeSurface]) -> None:
        lightmap, _ = _make_lightmap(host, light, surfaces)
        lightmap.dispose()
        lightmap.dispose()
        with pytest.raises(RuntimeError):
            lightmap.start()


# ===================================================================
# SHADER PLUGIN & OBSERVABLE
# ===================================================================


class TestShadowPlugin:
    """Hook outputs and the blend rule."""

    def test_hooks(self) -> None:
        plugin = ProgressiveShadowPlugin(FakeMaterial("m"))
        attributes: list[str] = []
        samplers: list[str] = []
        plugin.get_attributes(attributes)
        plugin.get_samplers(samplers)
        assert attributes == [UV2_ATTRIBUTE]
        assert samplers == [PREVIOUS_SHADOW_MAP_SAMPLER]

        uniforms: dict[str, Any] = {}
        plugin.bind_for_draw(uniforms)
        assert uniforms == {}
        texture = FakeTexture("prev")
        plugin.set_previous_shadow_map(texture)
        plugin.bind_for_draw(uniforms)
        assert uniforms[PREVIOUS_SHADOW_MAP_SAMPLER] is texture

    def test_defines_dirty_tracking(self) -> None:
        plugin = ProgressiveShadowPlugin(FakeMaterial("m"))
        defines: dict[str, Any] = {}
        plugin.prepare_defines(defines)
        assert defines[FIRST_ITERATION_DEFINE] is True
        assert not plugin.defines_dirty
        plugin.is_first_iteration = False
        assert plugin.defines_dirty
        plugin.prepare_defines(defines)
        assert defines[FIRST_ITERATION_DEFINE] is False

    def test_blend_is_moving_average(self) -> None:
        """Repeated blending of a constant converges geometrically."""
        value = np.zeros(3)
        target = np.ones(3)
        for _ in range(50):
            value = blend_history(value, target, 0.1)
        np.testing.assert_allclose(value, 1.0 - 0.9**50)

    def test_blend_weight_validated(self) -> None:
        with pytest.raises(ValueError):
            ProgressiveShadowPlugin(FakeMaterial("m"), blend_weight=1.5)


class TestObservable:
    def test_once_and_remove(self) -> None:
        calls: list[str] = []
        obs = Observable("test")
        keep = obs.add(lambda: calls.append("keep"))
        obs.add_once(lambda: calls.append("once"))
        obs.notify()
        obs.notify()
        assert calls == ["keep", "once", "keep"]
        assert obs.remove(keep)
        assert not obs.remove(keep)
        assert len(obs) == 0
