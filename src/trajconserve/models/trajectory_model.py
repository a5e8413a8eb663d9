"""
Per-gene Bayesian negative binomial GAM along pseudotime.

For one gene the `[batch, bin]` slice of an `ExpressionTensor` is flattened
into a regression dataset, the GAM is fit by an inference engine and the
posterior of each batch's log-shape is turned into a dispersion-based batch
weight.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import Any, Optional, Sequence, Union

from trajconserve.analysis.trajectory_transform import ExpressionTensor
from trajconserve.constants import TRAJCONSERVE_HOST_DEVICE_COUNT
from trajconserve.errors import ModelFitError, require_module
from trajconserve.logging import configure_logging
from trajconserve.models.specification import (
    GAMSpecification,
    PriorSpecification,
    SamplingConfig,
)

__all__ = [
    "GeneModelResult",
    "bayesian_gam_regression_nb_shape",
    "default_engine",
    "prepare_data_for_gam",
    "run_trajectory_model",
]

logger = configure_logging(__name__)

SHAPE_PREFIX = "b_shape_array"
SUMMARY_COLUMNS = ["Estimate", "Est.Error", "Q2.5", "Q97.5"]


@dataclass(frozen=True)
class GeneModelResult:
    """
    Fitted model of one gene.

    Attributes:
        gene: Gene name, or None when fit outside of a tensor.
        fit: Posterior accessor returned by the inference engine.
        array_weights: One row per batch with the log-shape summary
            (`Estimate`, `Est.Error`, `Q2.5`, `Q97.5`), the batch label
            `array`, `shape`, `weight` and `weight_norm`.
        diagnostics: Observed `mean`, `variance`, `overdispersion` and
            `n_obs` per batch.
        data: The regression dataset with columns `x`, `y` and `array`.
    """

    gene: Optional[str]
    fit: Any
    array_weights: pd.DataFrame
    diagnostics: pd.DataFrame
    data: pd.DataFrame


def default_engine():
    """
    Return the NumPyro engine, raising `ConfigurationError` when jax or
    numpyro cannot be imported.
    """
    require_module("jax", "pip install jax")
    numpyro = require_module("numpyro", "pip install numpyro")
    if TRAJCONSERVE_HOST_DEVICE_COUNT > 1:
        numpyro.set_host_device_count(TRAJCONSERVE_HOST_DEVICE_COUNT)
    from trajconserve.models._gam_engine import NumPyroGAMEngine

    return NumPyroGAMEngine()


@beartype
def prepare_data_for_gam(
    gene_data: np.ndarray,
    batches: Sequence[str],
) -> pd.DataFrame:
    """
    Flatten a `[batch, bin]` matrix into a regression dataset.

    Args:
        gene_data (np.ndarray): Expression of one gene, `[batch, bin]`.
        batches (Sequence[str]): Batch labels along the first axis.

    Returns:
        pd.DataFrame: Columns `x` (1-based bin), `y` (rounded expression)
        and `array` (categorical batch label in tensor order). Missing
        entries are dropped.

    Examples:
        >>> gene_data = np.array([[1.2, np.nan, 3.0], [np.nan, np.nan, np.nan]])
        >>> data = prepare_data_for_gam(gene_data, ["b1", "b2"])
        >>> data[["x", "y"]].to_numpy().tolist()
        [[1, 1], [3, 3]]
        >>> list(data["array"].cat.categories)
        ['b1']
    """
    gene_data = np.asarray(gene_data, dtype=float)
    batches = [str(b) for b in batches]
    if gene_data.ndim != 2 or gene_data.shape[0] != len(batches):
        raise ValueError(
            f"Expected a [batch, bin] matrix with {len(batches)} rows, "
            f"got shape {gene_data.shape}"
        )

    n_batches, n_bins = gene_data.shape
    data = pd.DataFrame(
        {
            "x": np.tile(np.arange(1, n_bins + 1), n_batches),
            "y": gene_data.reshape(-1),
            "array": np.repeat(batches, n_bins),
        }
    )
    data = data.loc[data["y"].notna()].reset_index(drop=True)
    data["y"] = np.rint(data["y"]).astype(int)
    data["array"] = pd.Categorical(
        data["array"], categories=batches, ordered=True
    ).remove_unused_categories()
    return data


def _array_weights(posterior: Any) -> pd.DataFrame:
    summary = posterior.summary(SHAPE_PREFIX)
    weights = summary[SUMMARY_COLUMNS].reset_index(drop=True)
    labels = [
        str(name)[len(SHAPE_PREFIX) + 1 : -1] for name in summary.index
    ]
    weights["array"] = pd.Series(labels, dtype=object)
    weights["shape"] = np.exp(weights["Estimate"])
    weights["weight"] = weights["shape"]
    weights["weight_norm"] = weights["weight"] / weights["weight"].max()
    return weights


def _diagnostics(data: pd.DataFrame) -> pd.DataFrame:
    grouped = data.groupby("array", observed=True)["y"]
    diagnostics = pd.DataFrame(
        {
            "mean": grouped.mean(),
            "variance": grouped.var(ddof=1),
            "n_obs": grouped.size(),
        }
    )
    diagnostics["overdispersion"] = diagnostics["variance"] / diagnostics["mean"]
    diagnostics = diagnostics.reset_index()
    diagnostics["array"] = diagnostics["array"].astype(str)
    return diagnostics[["array", "mean", "variance", "overdispersion", "n_obs"]]


@beartype
def bayesian_gam_regression_nb_shape(
    data: pd.DataFrame,
    n_knots: int = 5,
    n_samples: int = 2000,
    engine: Optional[Any] = None,
    priors: Optional[PriorSpecification] = None,
    sampling: Optional[SamplingConfig] = None,
    gene: Optional[str] = None,
) -> GeneModelResult:
    """
    Fit `y ~ s(x) + array` with a negative binomial likelihood whose shape
    varies by `array`, and derive batch weights from the shape posterior.

    Args:
        data (pd.DataFrame): Output of `prepare_data_for_gam`.
        n_knots (int, optional): Spline basis dimension. Default is 5.
        n_samples (int, optional): Iterations per chain, half of which are
            warmup. Ignored when `sampling` is given. Default is 2000.
        engine (optional): Inference engine with a `fit` method. Defaults
            to the NumPyro engine.
        priors (PriorSpecification, optional): Prior scales.
        sampling (SamplingConfig, optional): Sampler settings.
        gene (str, optional): Gene name used in messages.

    Returns:
        GeneModelResult: Posterior, batch weights and diagnostics.

    Raises:
        ModelFitError: If the engine fails, returns non-finite summaries or
            exceeds the split R-hat limit.

    Examples:
        >>> from trajconserve.tests.utils.engines import DeterministicEngine
        >>> data = getfixture("gam_data")
        >>> result = bayesian_gam_regression_nb_shape(
        ...     data, engine=DeterministicEngine(), gene="g1"
        ... )
        >>> float(result.array_weights["weight_norm"].max())
        1.0
    """
    engine = engine if engine is not None else default_engine()
    priors = priors or PriorSpecification()
    sampling = sampling or SamplingConfig.from_iterations(n_samples)
    specification = GAMSpecification(n_knots=n_knots)

    logger.debug(f"Fitting {specification.formula} for gene {gene}")
    try:
        posterior = engine.fit(specification, data, priors, sampling)
    except Exception as e:
        raise ModelFitError(gene, f"{type(e).__name__}: {e}") from e

    if hasattr(posterior, "all_finite") and not posterior.all_finite():
        raise ModelFitError(gene, "posterior draws contain non-finite values")
    max_r_hat = getattr(posterior, "max_r_hat", float("nan"))
    if sampling.max_r_hat is not None and max_r_hat > sampling.max_r_hat:
        raise ModelFitError(
            gene,
            f"split R-hat {max_r_hat:.3f} exceeds {sampling.max_r_hat}",
        )

    array_weights = _array_weights(posterior)
    if not np.isfinite(array_weights[SUMMARY_COLUMNS].to_numpy()).all():
        raise ModelFitError(gene, "non-finite shape posterior summary")

    return GeneModelResult(
        gene=gene,
        fit=posterior,
        array_weights=array_weights,
        diagnostics=_diagnostics(data),
        data=data,
    )


@beartype
def run_trajectory_model(
    tensor: ExpressionTensor,
    gene_index: Union[int, str],
    n_knots: int = 5,
    n_samples: int = 2000,
    engine: Optional[Any] = None,
    priors: Optional[PriorSpecification] = None,
    sampling: Optional[SamplingConfig] = None,
) -> GeneModelResult:
    """
    Fit the trajectory model of one gene of `tensor`.

    Args:
        tensor (ExpressionTensor): Binned expression.
        gene_index (int | str): 0-based gene position or gene name.
        n_knots (int, optional): Spline basis dimension. Default is 5.
        n_samples (int, optional): Iterations per chain. Default is 2000.
        engine (optional): Inference engine.
        priors (PriorSpecification, optional): Prior scales.
        sampling (SamplingConfig, optional): Sampler settings.

    Returns:
        GeneModelResult: The fitted model of the gene.
    """
    if isinstance(gene_index, str):
        gene_index = tensor.gene_index(gene_index)
    if not 0 <= gene_index < len(tensor.genes):
        raise IndexError(
            f"Gene index {gene_index} is out of range for "
            f"{len(tensor.genes)} genes"
        )
    gene = tensor.genes[gene_index]
    data = prepare_data_for_gam(tensor.gene_slice(gene_index), tensor.batches)
    return bayesian_gam_regression_nb_shape(
        data,
        n_knots=n_knots,
        n_samples=n_samples,
        engine=engine,
        priors=priors,
        sampling=sampling,
        gene=gene,
    )
