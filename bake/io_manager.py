"""Data I/O manager — persist bake results as NumPy arrays.

Saves and loads the baked atlas, the lightmap UV channels and the
convergence history so figures can be re-rendered (and the atlas reused
by a renderer) without re-running the bake.

File layout under output_dir/:
    lightmap.npy          — Accumulated shadow atlas, shape (R, R)
    uv2_channels.npz      — Lightmap UVs (one key per surface name)
    convergence.npy       — Mean |Δ| per rendered pass, shape (passes,)
    light_directions.npy  — Jittered light direction per pass, shape (passes, 3)
    layout.json           — Container size, utilization and placements
    metadata.json         — Bake metadata (JSON)

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from atlas_layout.uv_islands import AtlasLayout

logger = logging.getLogger(__name__)


def save_results(
    output_dir: Path | str,
    lightmap: np.ndarray,
    uv2_channels: dict[str, np.ndarray],
    convergence: list[float],
    light_directions: list[np.ndarray],
    layout: AtlasLayout | None,
    metadata: dict,
) -> list[Path]:
    """Save bake results to disk as NumPy arrays + JSON.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    lightmap : np.ndarray
        Final atlas. Shape: (R, R).
    uv2_channels : dict[str, np.ndarray]
        Lightmap UVs per surface name.
    convergence : list[float]
        Mean absolute change per pass.
    light_directions : list[np.ndarray]
        Light direction per pass.
    layout : AtlasLayout or None
        Packing result to describe in ``layout.json``.
    metadata : dict
        Bake metadata.

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []

    directions = (
        np.stack(light_directions) if light_directions else np.empty((0, 3), dtype=np.float64)
    )
    for name, arr in [
        ("lightmap.npy", np.asarray(lightmap)),
        ("convergence.npy", np.array(convergence, dtype=np.float64)),
        ("light_directions.npy", directions),
    ]:
        path = output_dir / name
        np.save(path, arr)
        saved.append(path)
        logger.debug("Saved %s: shape=%s, dtype=%s", name, arr.shape, arr.dtype)

    if uv2_channels:
        uv_path = output_dir / "uv2_channels.npz"
        np.savez_compressed(uv_path, **uv2_channels)
        saved.append(uv_path)
        logger.debug("Saved uv2_channels.npz: %d surfaces", len(uv2_channels))

    if layout is not None:
        layout_path = output_dir / "layout.json"
        with open(layout_path, "w", encoding="utf-8") as f:
            json.dump(_sanitize_for_json(layout_to_dict(layout)), f, indent=2)
        saved.append(layout_path)

    meta_path = output_dir / "metadata.json"
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(_sanitize_for_json(metadata), f, indent=2, ensure_ascii=False)
    saved.append(meta_path)

    logger.info(
        "Saved %d files to %s (atlas: %s, %d passes)",
        len(saved),
        output_dir,
        np.asarray(lightmap).shape,
        len(convergence),
    )

    return saved


def load_results(output_dir: Path | str) -> dict[str, Any]:
    """Load previously saved bake results.

    Parameters
    ----------
    output_dir : Path or str
        Directory containing saved results.

    Returns
    -------
    dict
        Keys: 'lightmap', 'convergence', 'light_directions',
        'uv2_channels', 'layout', 'metadata'. Missing array files map
        to None, missing JSON files to an empty dict.

    Raises
    ------
    FileNotFoundError
        If ``output_dir`` does not exist.
    """
    output_dir = Path(output_dir)

    if not output_dir.exists():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")

    data: dict[str, Any] = {}

    for key, filename in [
        ("lightmap", "lightmap.npy"),
        ("convergence", "convergence.npy"),
        ("light_directions", "light_directions.npy"),
    ]:
        path = output_dir / filename
        if path.exists():
            data[key] = np.load(path)
            logger.debug("Loaded %s: shape=%s", key, data[key].shape)
        else:
            logger.warning("Missing file: %s", path)
            data[key] = None

    uv_path = output_dir / "uv2_channels.npz"
    if uv_path.exists():
        with np.load(uv_path) as npz:
            data["uv2_channels"] = {k: npz[k] for k in npz.files}
    else:
        data["uv2_channels"] = {}

    for key, filename in [("layout", "layout.json"), ("metadata", "metadata.json")]:
        path = output_dir / filename
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                data[key] = json.load(f)
        else:
            data[key] = {}

    logger.info("Loaded results from %s (%d keys)", output_dir, len(data))

    return data


def layout_to_dict(layout: AtlasLayout) -> dict[str, Any]:
    """JSON-ready description of a packed atlas."""
    packing = layout.packing
    return {
        **packing.summary(),
        "placements": [
            {
                "key": str(r.key),
                "x": r.x,
                "y": r.y,
                "width": r.width,
                "height": r.height,
            }
            for r in packing.rectangles
        ],
        "skipped": [str(k) for k in layout.skipped],
    }


def _sanitize_for_json(obj: object) -> object:
    """Recursively convert NumPy types and other non-JSON types to Python natives."""
    if isinstance(obj, dict):
        return {str(k): _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    return obj
