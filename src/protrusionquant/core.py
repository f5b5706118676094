# src/protrusionquant/core.py
from __future__ import annotations

# General imports (stdlib)
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

# Third-party imports
import numpy as np
from tqdm import tqdm

# Local imports
from .aggregate import BatchSummary, BatchSummaryRow
from .cells import load_cell_regions, segment_cell_bodies
from .config import Config
from .exceptions import ConfigError, ImageIOError, SegmentationError
from .io import SourceImage, discover_images, open_image, write_csv, write_tiff
from .particles import RegionSet
from .preprocess import AnalysisChannel, prepare_channels
from .protrusion import ProtrusionSegmentation, segment_protrusions
from .quantify import SkeletonQuantification, normalize_length, quantify_skeleton
from .skeleton import SkeletonResult, extract_skeleton
from .units import effective_pixel_size
from .visualization import compose_overlay, composite_luts, render_rgb, save_qc_figure


@dataclass(frozen=True)
class ImageResult:
    """
    Everything computed for one image.

    Owned by a single iteration of the batch loop and dropped before the
    next image is processed.
    """
    index: int
    image: str
    cohort: str
    source_path: Path
    original: AnalysisChannel
    cells: RegionSet
    protrusions: ProtrusionSegmentation
    skeleton: SkeletonResult
    quantification: SkeletonQuantification
    pixel_size: float
    unit: str
    calibrated: bool

    @property
    def cell_count(self) -> int:
        return self.cells.count

    @property
    def total_length(self) -> float:
        return self.quantification.total_length

    @property
    def normalized_length(self) -> float:
        return normalize_length(self.total_length, self.cell_count)

    def summary_row(self) -> BatchSummaryRow:
        return BatchSummaryRow(
            index=self.index,
            image=self.image,
            cohort=self.cohort,
            total_length=self.total_length,
            cell_count=self.cell_count,
            normalized_length=self.normalized_length,
            median_branch_length=self.quantification.median_branch_length,
            n_skeletons=self.quantification.n_skeletons,
            n_branches=self.quantification.n_branches,
            removed_components=self.skeleton.removed_components,
            pixel_size=self.pixel_size,
            length_unit=self.unit,
            calibrated=self.calibrated,
        )


def process_image(
    source: SourceImage,
    cfg: Config,
    *,
    index: int = 0,
    cohort: str = ".",
    mask_regions: Optional[RegionSet] = None,
) -> ImageResult:
    """
    Run the full per-image pipeline on an already decoded image.

    Use:
        Preprocess the analysis channel, segment cell bodies on the original
        copy, segment protrusions on the working copy (optionally excluding
        cell regions), skeletonize and prune, then measure the skeleton. No
        file is written here.

    Args:
        source (SourceImage): Decoded image.
        cfg (Config): Validated configuration.
        index (int): Zero-based file index in the batch.
        cohort (str): Relative folder of the image.
        mask_regions (Optional[RegionSet]): Regions to exclude when cell
            masking is enabled; defaults to the segmented cell bodies.

    Returns:
        ImageResult: All intermediate and final results for the image.

    Raises:
        SegmentationError: If cell masking is enabled with automatic regions
            and no cell body was detected in this image.
        MissingRegionsError: If cell masking is enabled and the supplied
            regions are empty.
    """
    original, working = prepare_channels(source, cfg.pathing.channel, cfg.preprocessing)

    # Cell bodies come from the unconditioned copy
    cells = segment_cell_bodies(original.pixels, cfg.cell_bodies)

    # Nothing to exclude: this image fails, the batch goes on
    if cfg.processing.use_cell_masking and mask_regions is None and cells.count == 0:
        raise SegmentationError(
            f"no cell bodies detected in '{source.path.name}'; cell regions cannot be excluded"
        )

    protrusions = segment_protrusions(
        working.pixels,
        cfg.protrusions,
        regions=mask_regions if mask_regions is not None else cells,
        use_cell_masking=cfg.processing.use_cell_masking,
    )

    skeleton = extract_skeleton(protrusions.mask, cfg.skeletons, source.pixel_size)

    pixel_size = effective_pixel_size(source.pixel_size)
    quantification = quantify_skeleton(skeleton.mask, pixel_size, cfg.processing.compute_median)

    return ImageResult(
        index=index,
        image=source.path.name,
        cohort=cohort,
        source_path=source.path,
        original=original,
        cells=cells,
        protrusions=protrusions,
        skeleton=skeleton,
        quantification=quantification,
        pixel_size=pixel_size,
        unit=source.unit if source.calibrated else "pixel",
        calibrated=source.calibrated,
    )


class ImageDiscovery:
    """Data access for input images."""

    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg

    def discover(self) -> List[Path]:
        """
        Matching images under the input directory, in processing order.

        The output directory is skipped when it is nested in the input tree.

        Raises:
            DataNotFound: If no file matches the configured suffix.
        """
        return discover_images(
            self.cfg.pathing.input_dir,
            self.cfg.pathing.file_suffix,
            exclude=self.cfg.output_dir,
        )

    def cohort_of(self, path: Path) -> str:
        return Path(path).parent.relative_to(self.cfg.pathing.input_dir).as_posix()


class Exporter:
    """Writes the per-image artifacts."""

    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg

    def export(self, result: ImageResult, out_dir: Path, basename: str) -> None:
        """
        Write overlay, skeleton, measurement tables and (optionally) the QC figure.

        Files:
            {basename}_overlay.tif, {basename}_skeleton.tif,
            {basename}_skel_info.csv, {basename}_branch_info.csv,
            {basename}_qc.<format> when visualization is enabled.
        """
        out_dir.mkdir(parents=True, exist_ok=True)

        # Uncalibrated images are written without a physical scale
        pixel_size = result.pixel_size if result.calibrated else None
        original = result.original.pixels

        write_tiff(
            out_dir / f"{basename}_overlay.tif",
            compose_overlay(original, result.skeleton.mask),
            pixel_size,
            result.unit,
            axes="CYX",
            luts=composite_luts(),
        )
        write_tiff(
            out_dir / f"{basename}_skeleton.tif",
            result.skeleton.mask.astype(np.uint8) * 255,
            pixel_size,
            result.unit,
        )
        # Measurement tables for this image
        write_csv(result.quantification.skeletons, out_dir / f"{basename}_skel_info.csv")
        write_csv(result.quantification.branches, out_dir / f"{basename}_branch_info.csv")

        # Optional QC figure: original, cell outlines and skeleton
        if self.cfg.processing.visualize:
            rgb = render_rgb(
                original,
                result.skeleton.mask,
                outlines=result.cells.boundaries(),
                skeleton_color=self.cfg.display.skeleton_color,
                outline_color=self.cfg.display.outline_color,
            )
            title = (
                f"{result.image} | cells: {result.cell_count} | "
                f"total length: {result.total_length:.1f} {result.unit}"
            )
            save_qc_figure(
                out_dir / f"{basename}_qc",
                rgb,
                title,
                self.cfg.display,
                pixel_size=result.pixel_size,
                unit=result.unit,
            )


class Processor:
    """Encapsulates the per-image processing loop."""

    def __init__(self, cfg: Config, discovery: ImageDiscovery, exporter: Exporter | None = None) -> None:
        self.cfg = cfg
        self.discovery = discovery
        self.exporter = exporter or Exporter(cfg)

    def process_file(self, index: int, path: Path) -> ImageResult:
        """
        Open, analyse and export one image.

        Raises:
            ImageIOError: If the image cannot be decoded.
            MissingRegionsError: If cell masking needs regions that are missing.
        """
        # Decode; calibration gaps are reported, not fatal
        source = open_image(path)
        if not source.calibrated:
            tqdm.write(f"[warn] {path.name}: no spatial calibration; lengths reported in pixels")

        # Operator-drawn regions replace the segmented bodies for masking only
        mask_regions = None
        if self.cfg.processing.use_cell_masking and self.cfg.processing.cell_region_source == "rois":
            mask_regions = load_cell_regions(path, self.cfg.pathing.cell_roi_suffix, (source.height, source.width))

        # Run the analysis on in-memory values only
        cohort = self.discovery.cohort_of(path)
        result = process_image(source, self.cfg, index=index, cohort=cohort, mask_regions=mask_regions)
        if result.cell_count == 0:
            tqdm.write(f"[warn] {path.name}: no cell bodies detected; normalized length is NaN")

        # Mirror the input folder structure under the output root
        out_dir = self.cfg.output_dir / cohort
        self.exporter.export(result, out_dir, path.stem)
        return result

    def run(
        self,
        files: List[Path],
        summary: BatchSummary,
        progress_cb: Optional[Callable[[int, int, float], None]] = None,
    ) -> int:
        """
        Process every file in order, recording results in `summary`.

        Use:
            A failure on one image is logged and recorded in the failure log,
            and the loop moves on. Configuration errors (including missing
            cell regions for masking) abort the batch.

        Args:
            files (List[Path]): Images in processing order; the position is the file index.
            summary (BatchSummary): Batch accumulator, rewritten after each image.
            progress_cb (Optional[Callable[[int, int, float], None]]): Optional callback
                receiving (processed, total, sec_per_image).

        Returns:
            int: Number of successfully processed images.
        """
        # Timing and progress bookkeeping
        start_time = time.time()
        processed = 0
        succeeded = 0
        n_files = len(files)

        with tqdm(total=n_files, desc="Processing Images", unit="image", smoothing=0) as pbar:
            for index, path in enumerate(files):
                # Relative folder doubles as the cohort label and the output subfolder
                cohort = self.discovery.cohort_of(path)
                try:
                    result = self.process_file(index, path)
                except ConfigError:
                    # Operator must fix the setup; stop the batch
                    raise
                except ImageIOError as e:
                    # Unreadable file: log, record and move on
                    tqdm.write(f"[skip] {path}: {e}")
                    summary.add_failure(index, path.name, cohort, e)
                except Exception as e:
                    # Any other per-image failure stays local to this image
                    tqdm.write(f"[fail] {path}: {type(e).__name__}: {e}")
                    summary.add_failure(index, path.name, cohort, e)
                else:
                    # Append the row; the summary table is rewritten on disk right away
                    summary.add(result.summary_row())
                    succeeded += 1
                    tqdm.write(
                        f"[ok] {path.name}: total length {result.total_length:.2f} {result.unit}, "
                        f"cells {result.cell_count}"
                    )

                    # Release this image's arrays before the next one is opened
                    del result

                # Advance progress and optionally notify the caller with throughput
                processed += 1
                pbar.update(1)
                if progress_cb is not None:
                    elapsed = time.time() - start_time
                    progress_cb(processed, n_files, elapsed / processed)

        return succeeded


class ProtrusionPipeline:
    """High-level orchestrator. Minimal logic here; compose replaceable parts."""

    def __init__(
        self,
        cfg: Config,
        discovery: ImageDiscovery | None = None,
        processor: Processor | None = None,
        summary: BatchSummary | None = None,
    ):
        self.cfg = cfg
        self.discovery = discovery or ImageDiscovery(cfg)
        self.processor = processor or Processor(cfg, self.discovery)
        self.summary = summary or BatchSummary(cfg.output_dir)

    def run(self, progress_cb: Optional[Callable[[int, int, float], None]] = None) -> BatchSummary:
        """
        Execute the batch: discover images, process them in order, write cohort statistics.

        Returns:
            BatchSummary: The accumulated batch table.

        Raises:
            DataNotFound: If no input image matches the configured suffix.
            ConfigError: On batch-fatal configuration problems.
        """
        # Discover inputs and prepare the output root
        files = self.summary.step("discover images", self.discovery.discover)
        self.cfg.output_dir.mkdir(parents=True, exist_ok=True)

        # Per-image loop; the summary is persisted after each image
        with self.summary.timed(f"process {len(files)} images"):
            succeeded = self.processor.run(files, self.summary, progress_cb=progress_cb)

        # Keep an empty but valid table when every image failed
        if succeeded == 0:
            self.summary.save()
        self.summary.step("cohort statistics", self.summary.finalize)

        # Final completion marker
        print(
            f"[done] {succeeded}/{len(files)} images processed "
            f"({len(files) - succeeded} failed); summary: {self.summary.summary_path}"
        )
        return self.summary
