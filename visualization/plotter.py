"""Visualization module for baked lightmaps.

Generates figures using matplotlib:
- The accumulated shadow atlas (grayscale)
- The packed atlas layout with every island's lightmap UV triangles
- Per-pass convergence of the running average
- The jittered light directions of a bake, relative to the base direction

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for headless rendering

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.patches import Rectangle as RectPatch

if TYPE_CHECKING:
    from atlas_layout.uv_islands import AtlasLayout
    from bake.runner import BakeResults

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Color Configuration
# ---------------------------------------------------------------------------

_LIGHTMAP_CMAP = "gray"
_BACKGROUND = "#1a1a2e"
_ISLAND_COLORS = ["#ff6b6b", "#51cf66", "#748ffc", "#ffd43b", "#e599f7", "#69db7c"]
_DPI = 150


def _style_axes(ax: plt.Axes, title: str) -> None:
    ax.set_facecolor(_BACKGROUND)
    ax.set_title(title, fontsize=14, fontweight="bold", color="white")
    ax.tick_params(colors="white")
    ax.xaxis.label.set_color("white")
    ax.yaxis.label.set_color("white")
    for spine in ax.spines.values():
        spine.set_edgecolor("#444")


def _finish(fig: plt.Figure, output_path: Path | str | None, dpi: int, label: str) -> None:
    fig.tight_layout()
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, facecolor=fig.get_facecolor())
        logger.info("%s saved: %s", label, output_path)
    plt.close(fig)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def plot_lightmap(
    lightmap: np.ndarray,
    title: str = "Baked Shadow Lightmap",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot the atlas as an image with v pointing up.

    Parameters
    ----------
    lightmap : np.ndarray
        Accumulated shadow term in [0, 1]. Shape: (R, R), row = v.
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    fig, ax = plt.subplots(1, 1, figsize=(9, 8), facecolor=_BACKGROUND)

    image = ax.imshow(
        lightmap,
        cmap=_LIGHTMAP_CMAP,
        vmin=0.0,
        vmax=1.0,
        origin="lower",
        extent=(0.0, 1.0, 0.0, 1.0),
        interpolation="nearest",
    )
    cbar = fig.colorbar(image, ax=ax, label="Light Visibility", shrink=0.8)
    cbar.ax.yaxis.label.set_color("white")
    cbar.ax.tick_params(colors="white")

    ax.set_xlabel("u")
    ax.set_ylabel("v")
    _style_axes(ax, title)
    _finish(fig, output_path, dpi, "Lightmap")
    return fig


def plot_atlas_layout(
    layout: AtlasLayout,
    uv2: dict[str, np.ndarray] | None = None,
    triangles: dict[str, np.ndarray] | None = None,
    title: str = "Atlas Layout",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot packed island cells, optionally with their UV2 wireframes.

    Parameters
    ----------
    layout : AtlasLayout
        Packing result. Cells are drawn normalized to the container.
    uv2 : dict[str, np.ndarray], optional
        Lightmap UVs per surface name, drawn as points (or as a wireframe
        when ``triangles`` has an entry of the same name).
    triangles : dict[str, np.ndarray], optional
        Triangle indices per surface name.
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    fig, ax = plt.subplots(1, 1, figsize=(8, 8), facecolor=_BACKGROUND)
    packing = layout.packing

    if packing.width > 0 and packing.height > 0:
        for i, rect in enumerate(packing.rectangles):
            if rect.is_degenerate:
                continue
            color = _ISLAND_COLORS[i % len(_ISLAND_COLORS)]
            ax.add_patch(
                RectPatch(
                    (rect.x / packing.width, rect.y / packing.height),
                    rect.width / packing.width,
                    rect.height / packing.height,
                    facecolor=color,
                    edgecolor="white",
                    alpha=0.25,
                    linewidth=1.0,
                )
            )

    for i, (name, uvs) in enumerate((uv2 or {}).items()):
        color = _ISLAND_COLORS[i % len(_ISLAND_COLORS)]
        tris = (triangles or {}).get(name)
        if tris is not None and len(tris) > 0:
            ax.triplot(uvs[:, 0], uvs[:, 1], tris, color=color, linewidth=0.3, alpha=0.8)
        else:
            ax.scatter(uvs[:, 0], uvs[:, 1], s=1.0, color=color, edgecolors="none")
        if len(uvs):
            cu, cv = uvs.mean(axis=0)
            ax.text(cu, cv, name, color="white", fontsize=9, ha="center", va="center")

    ax.set_xlim(0.0, 1.0)
    ax.set_ylim(0.0, 1.0)
    ax.set_aspect("equal")
    ax.set_xlabel("u₂")
    ax.set_ylabel("v₂")
    _style_axes(
        ax,
        f"{title} ({packing.width:.3g} × {packing.height:.3g}, "
        f"fill {packing.utilization * 100.0:.1f}%)",
    )
    _finish(fig, output_path, dpi, "Atlas layout")
    return fig


def plot_convergence(
    convergence: list[float] | np.ndarray,
    blend_weight: float | None = None,
    title: str = "Accumulation Convergence",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot mean absolute atlas change per pass (log scale).

    Parameters
    ----------
    convergence : array-like
        Mean |Δ| after each pass.
    blend_weight : float, optional
        If given, overlays the history decay envelope (1 − w)^n scaled to
        the first pass.
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    fig, ax = plt.subplots(1, 1, figsize=(12, 5), facecolor=_BACKGROUND)
    values = np.asarray(convergence, dtype=np.float64)
    passes = np.arange(1, values.size + 1)

    # Log axis cannot show exact zeros
    ax.semilogy(passes, np.maximum(values, 1e-12), color="#ffd43b", linewidth=2.0, label="mean |Δ|")

    if blend_weight is not None and values.size > 0 and values[0] > 0:
        envelope = values[0] * (1.0 - blend_weight) ** (passes - 1)
        ax.semilogy(
            passes, np.maximum(envelope, 1e-12),
            color="#748ffc", linestyle="--", linewidth=1.0, label=f"(1 − {blend_weight:g})ⁿ",
        )

    ax.set_xlabel("Pass", fontsize=12)
    ax.set_ylabel("Mean absolute change", fontsize=12)
    ax.grid(True, alpha=0.2, color="white")
    legend = ax.legend(facecolor=_BACKGROUND, edgecolor="#444")
    for text in legend.get_texts():
        text.set_color("white")

    _style_axes(ax, title)
    _finish(fig, output_path, dpi, "Convergence plot")
    return fig


def plot_jitter_schedule(
    directions: np.ndarray | list[np.ndarray],
    base_direction: np.ndarray,
    jitter_radius: float | None = None,
    title: str = "Light Jitter Schedule",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Plot jittered directions projected onto the plane normal to the base.

    Parameters
    ----------
    directions : array-like
        Unit light directions, one per pass. Shape: (N, 3).
    base_direction : np.ndarray
        Un-jittered direction. Shape: (3,).
    jitter_radius : float, optional
        If given, draws the ``arcsin(radius / |base|)`` deviation bound as a circle.
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    fig, ax = plt.subplots(1, 1, figsize=(7, 7), facecolor=_BACKGROUND)

    base = np.asarray(base_direction, dtype=np.float64)
    base_length = float(np.linalg.norm(base))
    base = base / base_length
    dirs = np.asarray(directions, dtype=np.float64).reshape(-1, 3)

    # Orthonormal frame (e1, e2) perpendicular to the base direction
    helper = np.array([0.0, 1.0, 0.0]) if abs(base[1]) < 0.9 else np.array([1.0, 0.0, 0.0])
    e1 = np.cross(base, helper)
    e1 /= np.linalg.norm(e1)
    e2 = np.cross(base, e1)

    if dirs.size:
        px = dirs @ e1
        py = dirs @ e2
        order = np.arange(dirs.shape[0])
        points = ax.scatter(px, py, c=order, cmap="viridis", s=18, edgecolors="none")
        ax.plot(px, py, color="#555", linewidth=0.5, alpha=0.6)
        cbar = fig.colorbar(points, ax=ax, label="Pass", shrink=0.8)
        cbar.ax.yaxis.label.set_color("white")
        cbar.ax.tick_params(colors="white")

    ax.scatter([0.0], [0.0], marker="+", color="white", s=80)
    if jitter_radius is not None and jitter_radius > 0:
        # A direction arcsin(r / |d|) away from the base projects to length r / |d|
        bound = min(jitter_radius / base_length, 1.0)
        t = np.linspace(0.0, 2.0 * np.pi, 256)
        ax.plot(bound * np.cos(t), bound * np.sin(t), color="#ff6b6b", linestyle="--", linewidth=1.0)

    ax.set_aspect("equal")
    ax.set_xlabel("Offset ⟂ 1")
    ax.set_ylabel("Offset ⟂ 2")
    _style_axes(ax, title)
    _finish(fig, output_path, dpi, "Jitter schedule")
    return fig


def generate_all_plots(
    results: BakeResults,
    output_dir: Path | str = "output",
    triangles: dict[str, np.ndarray] | None = None,
    dpi: int = _DPI,
) -> list[Path]:
    """Generate all standard plots from bake results.

    Parameters
    ----------
    results : BakeResults
        Full bake results.
    output_dir : Path or str
        Directory for output plots.
    triangles : dict[str, np.ndarray], optional
        Triangle indices per surface name, for UV wireframes.
    dpi : int
        Figure resolution.

    Returns
    -------
    list[Path]
        Paths to all generated plot files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    saved: list[Path] = []

    if results.lightmap.size:
        p = output_dir / "lightmap.png"
        plot_lightmap(results.lightmap, output_path=p, dpi=dpi)
        saved.append(p)

    if results.layout is not None:
        p = output_dir / "atlas_layout.png"
        plot_atlas_layout(results.layout, results.uv2, triangles, output_path=p, dpi=dpi)
        saved.append(p)

    if results.convergence:
        p = output_dir / "convergence.png"
        plot_convergence(
            results.convergence,
            blend_weight=results.metadata.get("blend_weight"),
            output_path=p,
            dpi=dpi,
        )
        saved.append(p)

    if results.light_directions:
        p = output_dir / "jitter_schedule.png"
        plot_jitter_schedule(
            results.light_directions,
            results.base_direction,
            jitter_radius=results.metadata.get("jitter_radius"),
            output_path=p,
            dpi=dpi,
        )
        saved.append(p)

    logger.info("Generated %d plots in %s", len(saved), output_dir)
    return saved
