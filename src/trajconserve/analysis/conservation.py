"""
Score how consistently genes behave across batches.

For each gene the metric is summarized over batches by its mean and
coefficient of variation. Genes with a high mean and a low coefficient of
variation are scored as conserved.
"""

from dataclasses import dataclass
from os import PathLike

import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import List, Union

from trajconserve.analysis.extract import extract_h5_metric
from trajconserve.logging import configure_logging

__all__ = [
    "ConservationRecord",
    "calculate_conservation",
    "conservation_records",
    "scale01",
]

logger = configure_logging(__name__)

NEAR_ZERO_MEAN = 1e-12
CONSERVATION_COLUMNS = [
    "gene",
    "mean_estimate",
    "sd_estimate",
    "cv",
    "range_estimate",
    "mean_norm",
    "cv_norm",
    "conservation_score",
    "is_conserved",
]


@dataclass(frozen=True)
class ConservationRecord:
    gene: str
    mean_estimate: float
    sd_estimate: float
    cv: float
    range_estimate: float
    mean_norm: float
    cv_norm: float
    conservation_score: float
    is_conserved: bool


@beartype
def scale01(values: Union[np.ndarray, pd.Series, List[float]]) -> np.ndarray:
    """
    Min-max scale to [0, 1], ignoring NaN.

    A constant input maps to 0.5 everywhere it is finite. NaN entries stay
    NaN.

    Examples:
        >>> scale01([1.0, 2.0, 3.0]).tolist()
        [0.0, 0.5, 1.0]
        >>> scale01([4.0, 4.0, np.nan]).tolist()
        [0.5, 0.5, nan]
    """
    values = np.asarray(values, dtype=float)
    finite = np.isfinite(values)
    if not finite.any():
        return np.full(values.shape, np.nan)
    low, high = values[finite].min(), values[finite].max()
    if low == high:
        return np.where(np.isnan(values), np.nan, 0.5)
    return (values - low) / (high - low)


@beartype
def calculate_conservation(
    source: Union[pd.DataFrame, str, PathLike],
    metric: str = "Estimate",
    mean_weight: float = 0.5,
    variability_weight: float = 0.5,
    conservation_threshold: float = 0.6,
    normalize_scores: bool = True,
) -> pd.DataFrame:
    """
    Rank genes by conservation of `metric` across batches.

    Args:
        source (pd.DataFrame | str | PathLike): A batch × gene metric matrix
            or the path of a metric store to extract it from.
        metric (str, optional): Metric extracted from a store. Default is
            "Estimate".
        mean_weight (float, optional): Weight of the mean term. Default 0.5.
        variability_weight (float, optional): Weight of the variability
            term. Default 0.5.
        conservation_threshold (float, optional): Minimum score of a
            conserved gene. Default 0.6.
        normalize_scores (bool, optional): Min-max scale the mean, the
            coefficient of variation and the combined score. Default True.

    Returns:
        pd.DataFrame: One row per gene with `gene`, `mean_estimate`,
        `sd_estimate`, `cv`, `range_estimate`, `mean_norm`, `cv_norm`,
        `conservation_score` and `is_conserved`, sorted by score descending
        with NaN scores last.

    Examples:
        >>> matrix = pd.DataFrame(
        ...     {"stable": [1.0, 1.1, 0.9], "noisy": [0.2, 1.5, 0.1]},
        ...     index=["b1", "b2", "b3"],
        ... )
        >>> results = calculate_conservation(matrix)
        >>> results["gene"].tolist()
        ['stable', 'noisy']
        >>> results["is_conserved"].tolist()
        [True, False]
    """
    if isinstance(source, pd.DataFrame):
        matrix = source
    else:
        matrix = extract_h5_metric(source, metric)
    values = matrix.to_numpy(dtype=float)

    with np.errstate(invalid="ignore", divide="ignore"):
        with_values = np.isfinite(values).any(axis=0)
        mean = np.full(values.shape[1], np.nan)
        sd = np.full(values.shape[1], np.nan)
        value_range = np.full(values.shape[1], np.nan)
        if with_values.any():
            observed = values[:, with_values]
            mean[with_values] = np.nanmean(observed, axis=0)
            if observed.shape[0] > 1:
                sd[with_values] = np.nanstd(observed, axis=0, ddof=1)
            value_range[with_values] = np.nanmax(observed, axis=0) - np.nanmin(
                observed, axis=0
            )

        near_zero = np.abs(mean) < NEAR_ZERO_MEAN
        cv = np.where(near_zero, np.nan, sd / mean)
    if near_zero.any():
        genes = matrix.columns[near_zero].tolist()
        logger.warning(
            f"Coefficient of variation is undefined for genes with a mean "
            f"near zero, their scores are NaN: {genes}"
        )

    if normalize_scores:
        mean_norm = scale01(mean)
        cv_norm = 1.0 - scale01(cv)
    else:
        mean_norm = mean
        with np.errstate(divide="ignore"):
            cv_norm = 1.0 / cv
        if np.isinf(cv_norm).any():
            logger.warning(
                "Genes without variation across batches have an infinite "
                "inverse coefficient of variation"
            )

    score = mean_weight * mean_norm + variability_weight * cv_norm
    if normalize_scores:
        score = scale01(score)

    results = pd.DataFrame(
        {
            "gene": [str(gene) for gene in matrix.columns],
            "mean_estimate": mean,
            "sd_estimate": sd,
            "cv": cv,
            "range_estimate": value_range,
            "mean_norm": mean_norm,
            "cv_norm": cv_norm,
            "conservation_score": score,
            "is_conserved": score >= conservation_threshold,
        }
    )
    results = results.sort_values(
        "conservation_score",
        ascending=False,
        kind="mergesort",
        na_position="last",
    ).reset_index(drop=True)

    logger.info(
        f"{int(results['is_conserved'].sum())} of {len(results)} genes are "
        f"conserved at threshold {conservation_threshold}"
    )
    return results


@beartype
def conservation_records(frame: pd.DataFrame) -> List[ConservationRecord]:
    """Convert a `calculate_conservation` table into records."""
    return [
        ConservationRecord(
            gene=str(row.gene),
            mean_estimate=float(row.mean_estimate),
            sd_estimate=float(row.sd_estimate),
            cv=float(row.cv),
            range_estimate=float(row.range_estimate),
            mean_norm=float(row.mean_norm),
            cv_norm=float(row.cv_norm),
            conservation_score=float(row.conservation_score),
            is_conserved=bool(row.is_conserved),
        )
        for row in frame[CONSERVATION_COLUMNS].itertuples(index=False)
    ]
