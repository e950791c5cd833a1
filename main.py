"""Lightmap Baker — CLI entry point.

Bakes a progressive shadow lightmap for the demo scene (a ground plane
with three spheres) using the CPU reference host.

Usage
-----
    python main.py
    python main.py --iterations 128 --resolution 512
    python main.py --jitter-radius 0.05 --blend-weight 0.05 --output out/

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="lightmap-bake",
        description="Progressive shadow lightmap baker (CPU reference host)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py\n"
            "  python main.py --iterations 128 --resolution 512\n"
            "  python main.py --jitter-radius 0.05 --output out/\n"
            "  python main.py --no-plots --log-level DEBUG\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/default_config.yaml",
        help="Path to bake config YAML (default: config/default_config.yaml)",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        default=None,
        help="Override the number of jittered passes (default: from config)",
    )
    parser.add_argument(
        "--resolution",
        type=int,
        default=None,
        help="Override the atlas edge length in pixels (default: from config)",
    )
    parser.add_argument(
        "--jitter-radius",
        type=float,
        default=None,
        help="Override the light jitter radius (default: from config)",
    )
    parser.add_argument(
        "--blend-weight",
        type=float,
        default=None,
        help="Override the share of each pass in the running average (default: from config)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="output",
        help="Output directory for plots and data (default: output/)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--no-plots",
        action="store_true",
        default=False,
        help="Skip figure generation",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main bake entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("lightmap")
    logger.info("=" * 60)
    logger.info("  Progressive Lightmap Baker")
    logger.info("=" * 60)

    from bake.runner import BakeRunner
    from lightmap_core.constants import load_config, log_platform_info, validate_config

    log_platform_info()

    config = load_config(Path(args.config))

    overrides = {
        "iterations": args.iterations,
        "resolution_px": args.resolution,
        "jitter_radius": args.jitter_radius,
        "blend_weight": args.blend_weight,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        config = replace(config, lightmap=replace(config.lightmap, **overrides))
        validate_config(config)
        logger.info("CLI overrides: %s", overrides)

    output_dir = Path(args.output)
    runner = BakeRunner(config)
    results = runner.run(save_data=True, output_dir=output_dir)

    saved: list[Path] = []
    if not args.no_plots:
        from visualization.plotter import generate_all_plots

        logger.info("Generating plots → %s/", output_dir)
        saved = generate_all_plots(results, output_dir=output_dir)

    # Summary
    logger.info("=" * 60)
    logger.info("  BAKE COMPLETE")
    logger.info("=" * 60)
    logger.info("  Passes: %d", len(results.convergence))
    logger.info("  Wall time: %.1f s", results.metadata.get("wall_time_s", 0.0))
    logger.info("  Atlas fill: %.1f%%", results.layout.packing.utilization * 100.0)
    logger.info("  Final mean |Δ|: %.2e", results.metadata.get("final_change", 0.0))
    logger.info("  Lightmap SHA-256: %s", results.metadata.get("lightmap_sha256"))
    if saved:
        logger.info("  Plots (%d):", len(saved))
        for p in saved:
            logger.info("    → %s", p)
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
