"""
Batch-level bookkeeping.

Use:
    Accumulate one summary row per successfully processed image, rewrite the
    batch summary CSV after every image, log per-image failures, and derive
    per-cohort statistics once the batch is done.
"""


# src/protrusionquant/aggregate.py
from __future__ import annotations

# General imports (stdlib)
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, List

# Third-party imports
import pandas as pd

# Local imports
from .io import write_csv


SUMMARY_COLUMNS = [
    "index",
    "image",
    "cohort",
    "total_length",
    "cell_count",
    "normalized_length",
    "median_branch_length",
    "n_skeletons",
    "n_branches",
    "removed_components",
    "pixel_size",
    "length_unit",
    "calibrated",
]

FAILURE_COLUMNS = ["index", "image", "cohort", "error", "message"]

COHORT_DEPENDENTS = [
    "total_length",
    "cell_count",
    "normalized_length",
    "median_branch_length",
]


@dataclass(frozen=True)
class BatchSummaryRow:
    """One processed image in the batch summary table."""
    index: int
    image: str
    cohort: str
    total_length: float
    cell_count: int
    normalized_length: float
    median_branch_length: float = float("nan")
    n_skeletons: int = 0
    n_branches: int = 0
    removed_components: int = 0
    pixel_size: float = 1.0
    length_unit: str = "pixel"
    calibrated: bool = False


def cohort_statistics(df: pd.DataFrame, group_cols: list[str], dependents: list[str]) -> pd.DataFrame:
    """
    Group-level mean/SEM/count/min/max/median/q1/q3 per dependent.

    NaN values (e.g. normalized length of an image without cells) are
    excluded from every statistic, including the count.
    """
    def q1(x: pd.Series) -> float:
        return float(x.quantile(0.25))

    def q3(x: pd.Series) -> float:
        return float(x.quantile(0.75))

    q1.__name__ = "q1"
    q3.__name__ = "q3"

    values = df[group_cols + dependents].copy()
    values[dependents] = values[dependents].astype(float)

    stats = (
        values.groupby(group_cols, observed=False, sort=True)[dependents]
              .agg(["mean", "sem", "count", "min", "max", "median", q1, q3])
              .reset_index()
    )

    # Flatten multi-level column index produced by aggregation
    stats.columns = ["_".join(filter(None, col)).strip() for col in stats.columns.ravel()]
    return stats


class BatchSummary:
    """
    Process-lifetime accumulator for batch results.

    Owned by the pipeline driver and handed to the per-image loop. Every
    `add()` rewrites the full summary CSV, so an interrupted batch leaves a
    valid table for the images completed so far.
    """

    def __init__(
        self,
        output_dir: Path,
        *,
        summary_name: str = "batch_summary.csv",
        failures_name: str = "batch_failures.csv",
        cohort_name: str = "cohort_summary.csv",
    ) -> None:
        self.output_dir = Path(output_dir)
        self.summary_path = self.output_dir / summary_name
        self.failures_path = self.output_dir / failures_name
        self.cohort_path = self.output_dir / cohort_name
        self.rows: List[BatchSummaryRow] = []
        self.failures: List[dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self.rows)

    def add(self, row: BatchSummaryRow) -> None:
        """Append a row and persist the whole table."""
        # Rewrite in full so a crash after image k leaves rows 1..k on disk
        self.rows.append(row)
        self.save()

    def add_failure(self, index: int, image: str, cohort: str, error: BaseException) -> None:
        """Record a failed image and persist the failure log."""
        # Keep the error type separate from its message for filtering
        self.failures.append({
            "index": index,
            "image": image,
            "cohort": cohort,
            "error": type(error).__name__,
            "message": str(error),
        })
        write_csv(pd.DataFrame(self.failures, columns=FAILURE_COLUMNS), self.failures_path)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(r) for r in self.rows], columns=SUMMARY_COLUMNS)

    def save(self) -> None:
        write_csv(self.to_frame(), self.summary_path)

    def cohort_frame(self) -> pd.DataFrame:
        df = self.to_frame()

        # No successful image: header-only table
        if df.empty:
            return pd.DataFrame(columns=["cohort"])
        return cohort_statistics(df, ["cohort"], COHORT_DEPENDENTS)

    def finalize(self) -> pd.DataFrame:
        """Write the cohort statistics table and return it."""
        stats = self.cohort_frame()
        write_csv(stats, self.cohort_path)
        return stats

    @staticmethod
    def step(label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a function and print a timing log.

        Args:
            label (str): Label printed in the log line.
            fn (Callable): Function to run.
            *args: Positional args forwarded to `fn`.
            **kwargs: Keyword args forwarded to `fn`.

        Returns:
            Any: The return value of `fn(*args, **kwargs)`.
        """
        # Start wall-clock timer for this step
        t0 = time.time()

        # Execute the callable and capture its return value
        out = fn(*args, **kwargs)

        # Emit a compact timing log line
        dt_ms = (time.time() - t0) * 1000.0
        print(f"[ok] {label} ({dt_ms:,.0f} ms)")

        # Return the wrapped function result unchanged
        return out

    @staticmethod
    @contextmanager
    def timed(label: str):
        """
        Context manager that prints a timing log when the block exits.

        Args:
            label (str): Label printed in the log line.

        Yields:
            None
        """
        # Start wall-clock timer for this timed block
        t0 = time.time()
        try:
            # Run the caller's code inside the context
            yield
        finally:
            # Always report, even if the block raised
            dt_ms = (time.time() - t0) * 1000.0
            print(f"[ok] {label} ({dt_ms:,.0f} ms)")
