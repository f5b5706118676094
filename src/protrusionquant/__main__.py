# src/protrusionquant/__main__.py
from __future__ import annotations

# General imports (stdlib)
import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

# Local imports
from .config import PRUNE_MODES, THRESHOLD_UNITS, Config, make_config
from .core import ProtrusionPipeline
from .exceptions import ProtrusionQuantError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="protrusionquant",
        description="Batch quantification of cellular protrusion length in 2D fluorescence images.",
    )
    parser.add_argument("input_dir", type=Path, help="Root folder walked recursively for images.")
    parser.add_argument("output_dir", type=Path, nargs="?", default=None, help="Output root (default: <input_dir>/Processed).")
    parser.add_argument("--suffix", default=".nd2", help="Only files ending with this suffix are processed.")
    parser.add_argument("--channel", type=int, default=1, help="1-based analysis channel.")
    parser.add_argument("--length-threshold", type=float, default=0.0, help="Minimum skeleton component length (0 disables).")
    parser.add_argument("--threshold-unit", choices=THRESHOLD_UNITS, default="physical", help="Unit of --length-threshold.")
    parser.add_argument("--prune", choices=PRUNE_MODES, default="size", help="Skeleton pruning mode.")
    parser.add_argument("--cell-masking", action="store_true", help="Exclude cell bodies from the protrusion mask.")
    parser.add_argument("--cell-rois", metavar="SUFFIX", default=None, help="Use operator-drawn ImageJ ROIs with this file suffix for cell masking.")
    parser.add_argument("--top-hat", action="store_true", help="Apply a white top-hat before tube enhancement.")
    parser.add_argument("--top-hat-radius", type=int, default=10, help="Top-hat disk radius (pixels).")
    parser.add_argument("--blur-sigma", type=float, default=0.0, help="Gaussian sigma for the working copy (pixels).")
    parser.add_argument("--no-median", action="store_true", help="Skip the median branch length.")
    parser.add_argument("--no-figures", action="store_true", help="Do not write QC figures.")
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    cfg = Config()
    cfg = replace(
        cfg,
        pathing=replace(
            cfg.pathing,
            input_dir=args.input_dir,
            output_dir=args.output_dir,
            file_suffix=args.suffix,
            channel=args.channel,
            cell_roi_suffix=args.cell_rois or "",
        ),
        processing=replace(
            cfg.processing,
            use_cell_masking=args.cell_masking or args.cell_rois is not None,
            cell_region_source="rois" if args.cell_rois else "auto",
            compute_median=not args.no_median,
            visualize=not args.no_figures,
        ),
        preprocessing=replace(
            cfg.preprocessing,
            use_top_hat=args.top_hat,
            top_hat_radius=args.top_hat_radius,
            blur_sigma=args.blur_sigma,
        ),
        skeletons=replace(
            cfg.skeletons,
            prune_mode=args.prune,
            length_threshold=args.length_threshold,
            threshold_unit=args.threshold_unit,
        ),
    )
    return make_config(cfg)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = config_from_args(args)
        ProtrusionPipeline(cfg).run()
    except ProtrusionQuantError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
