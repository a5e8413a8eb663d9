"""
Fit trajectory models over many genes and persist their outputs.

Plot and model files are written by whichever process fit the gene. Metric
store writes are always made by the calling process: right after each fit
when running sequentially, and once the worker pool has finished otherwise.
A gene whose fit, output files or store write fail maps to None.
"""

import multiprocessing
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

import numpy as np
from beartype import beartype
from beartype.typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from trajconserve.analysis.trajectory_transform import (
    ExpressionTensor,
    TrajectoryTensorResult,
)
from trajconserve.constants import METRIC_NAMES, TRAJCONSERVE_TESTING_FLAG
from trajconserve.errors import ModelFitError
from trajconserve.io.compressedpickle import CompressedPickle
from trajconserve.io.h5store import (
    H5Store,
    initialize_metric_store,
    save_weights_to_h5,
)
from trajconserve.logging import configure_logging
from trajconserve.models.specification import SamplingConfig
from trajconserve.models.trajectory_model import (
    GeneModelResult,
    bayesian_gam_regression_nb_shape,
    default_engine,
    prepare_data_for_gam,
)

__all__ = [
    "fit_dataset",
    "fit_gene",
    "run_multiple_models",
    "save_gene_model",
    "save_gene_plot",
]

logger = configure_logging(__name__)


@dataclass(frozen=True)
class _GeneTask:
    n_knots: int
    n_samples: int
    engine: Any
    sampling: Optional[SamplingConfig]
    plots_dir: Optional[Path]
    models_dir: Optional[Path]


@beartype
def fit_gene(
    gene: str,
    gene_data: np.ndarray,
    batches: Sequence[str],
    n_knots: int = 5,
    n_samples: int = 2000,
    engine: Optional[Any] = None,
    sampling: Optional[SamplingConfig] = None,
) -> GeneModelResult:
    """
    Fit the trajectory model of one gene from its `[batch, bin]` slice.

    Raises:
        ModelFitError: If the model cannot be fit.
    """
    data = prepare_data_for_gam(gene_data, batches)
    return bayesian_gam_regression_nb_shape(
        data,
        n_knots=n_knots,
        n_samples=n_samples,
        engine=engine,
        sampling=sampling,
        gene=gene,
    )


@beartype
def save_gene_plot(
    result: GeneModelResult,
    plots_dir: Union[str, PathLike],
) -> Path:
    """Render the model plot of a gene to `<plots_dir>/<gene>_plot.pdf`."""
    from trajconserve.plots import plot_gene_model

    file_path = Path(plots_dir) / f"{result.gene}_plot.pdf"
    plot_gene_model(result, file_path=file_path)
    return file_path


@beartype
def save_gene_model(
    result: GeneModelResult,
    models_dir: Union[str, PathLike],
) -> Path:
    """Serialize a fitted gene model to `<models_dir>/<gene>_model.pkl.zst`."""
    return CompressedPickle.save(
        Path(models_dir) / f"{result.gene}_model.pkl.zst", result
    )


def _process_gene(
    gene: str,
    gene_data: np.ndarray,
    batches: Tuple[str, ...],
    task: _GeneTask,
) -> Tuple[Optional[GeneModelResult], Optional[str]]:
    try:
        result = fit_gene(
            gene,
            gene_data,
            batches,
            n_knots=task.n_knots,
            n_samples=task.n_samples,
            engine=task.engine,
            sampling=task.sampling,
        )
    except ModelFitError as e:
        return None, e.reason

    try:
        if task.plots_dir is not None:
            save_gene_plot(result, task.plots_dir)
        if task.models_dir is not None:
            save_gene_model(result, task.models_dir)
    except Exception as e:
        return None, f"saving outputs failed with {type(e).__name__}: {e}"
    return result, None


def _store_outcome(
    store: Optional[H5Store],
    gene: str,
    result: Optional[GeneModelResult],
    reason: Optional[str],
) -> Tuple[Optional[GeneModelResult], Optional[str]]:
    if store is None or result is None:
        return result, reason
    try:
        save_weights_to_h5(store, gene, result.array_weights)
    except Exception as e:
        return None, f"storing weights failed with {type(e).__name__}: {e}"
    return result, None


@beartype
def run_multiple_models(
    tensor: ExpressionTensor,
    gene_indices: Optional[Sequence[Union[int, np.integer]]] = None,
    n_knots: int = 5,
    n_samples: int = 2000,
    parallel: bool = False,
    n_workers: int = 1,
    save_metrics: bool = False,
    save_metrics_file: Union[str, PathLike] = "model_metrics.h5",
    save_plots: bool = False,
    save_plots_dir: Union[str, PathLike] = "model_plots",
    save_models: bool = False,
    save_models_dir: Union[str, PathLike] = "model_files",
    engine: Optional[Any] = None,
    sampling: Optional[SamplingConfig] = None,
) -> Dict[str, Optional[GeneModelResult]]:
    """
    Fit the trajectory model of each selected gene.

    A gene whose model cannot be fit, or whose plot, model file or store
    entry cannot be written, is logged and maps to None; it never aborts
    the batch. Sequential runs append each gene to the metric store as soon
    as it is fit.

    Args:
        tensor (ExpressionTensor): Binned expression.
        gene_indices (Sequence[int], optional): 0-based gene positions.
            Defaults to every gene.
        n_knots (int, optional): Spline basis dimension. Default is 5.
        n_samples (int, optional): Iterations per chain. Default is 2000.
        parallel (bool, optional): Fit genes in a pool of spawned worker
            processes. Default is False.
        n_workers (int, optional): Number of worker processes. Default is 1.
        save_metrics (bool, optional): Append batch weights to the metric
            store. Default is False.
        save_metrics_file (str | PathLike, optional): Metric store path.
        save_plots (bool, optional): Write a PDF plot per gene.
        save_plots_dir (str | PathLike, optional): Plot directory.
        save_models (bool, optional): Serialize each fitted model.
        save_models_dir (str | PathLike, optional): Model directory.
        engine (optional): Inference engine. Defaults to the NumPyro engine.
        sampling (SamplingConfig, optional): Sampler settings.

    Returns:
        Dict[str, Optional[GeneModelResult]]: Results keyed by gene name in
        the order of `gene_indices`.

    Examples:
        >>> from trajconserve.tests.utils.engines import DeterministicEngine
        >>> tensor = getfixture("expression_tensor")
        >>> results = run_multiple_models(
        ...     tensor, gene_indices=[0, 1], engine=DeterministicEngine()
        ... )
        >>> list(results) == list(tensor.genes[:2])
        True
    """
    if gene_indices is None:
        gene_indices = list(range(len(tensor.genes)))
    gene_indices = [int(i) for i in gene_indices]
    out_of_range = [i for i in gene_indices if not 0 <= i < len(tensor.genes)]
    if out_of_range:
        raise IndexError(
            f"Gene indices {out_of_range} are out of range for "
            f"{len(tensor.genes)} genes"
        )

    engine = engine if engine is not None else default_engine()
    store = (
        initialize_metric_store(save_metrics_file, METRIC_NAMES)
        if save_metrics
        else None
    )
    plots_dir = Path(save_plots_dir) if save_plots else None
    models_dir = Path(save_models_dir) if save_models else None
    for directory in (plots_dir, models_dir):
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)

    task = _GeneTask(
        n_knots=n_knots,
        n_samples=n_samples,
        engine=engine,
        sampling=sampling,
        plots_dir=plots_dir,
        models_dir=models_dir,
    )
    genes = [tensor.genes[i] for i in gene_indices]
    arguments = [
        (gene, np.array(tensor.gene_slice(i)), tensor.batches, task)
        for gene, i in zip(genes, gene_indices)
    ]

    outcomes: List[Tuple[Optional[GeneModelResult], Optional[str]]] = []
    if parallel:
        n_workers = max(1, min(n_workers, len(arguments)))
        logger.info(f"Fitting {len(arguments)} genes with {n_workers} workers")
        context = multiprocessing.get_context("spawn")
        with context.Pool(n_workers) as pool:
            fitted = pool.starmap(_process_gene, arguments)
        for gene, (result, reason) in zip(genes, fitted):
            result, reason = _store_outcome(store, gene, result, reason)
            _log_outcome(gene, result, reason)
            outcomes.append((result, reason))
    else:
        for position, args in enumerate(arguments, start=1):
            gene = args[0]
            logger.info(f"Processing gene {gene} ({position}/{len(arguments)})")
            result, reason = _process_gene(*args)
            result, reason = _store_outcome(store, gene, result, reason)
            _log_outcome(gene, result, reason)
            outcomes.append((result, reason))

    results = {gene: result for gene, (result, _) in zip(genes, outcomes)}

    n_success = sum(result is not None for result in results.values())
    logger.info(
        f"Fit {n_success} of {len(results)} genes successfully, "
        f"{len(results) - n_success} failed"
    )
    return results


def _log_outcome(
    gene: str,
    result: Optional[GeneModelResult],
    reason: Optional[str],
) -> None:
    if result is None:
        logger.error(f"Gene {gene} failed: {reason}")
    else:
        logger.debug(f"Model fit succeeded for gene {gene}")


@beartype
def fit_dataset(
    tensor_path: Union[str, PathLike],
    output_dir: Union[str, PathLike] = "models",
    gene_indices: Optional[List[int]] = None,
    n_knots: int = 5,
    n_samples: int = 2000,
    num_chains: int = 4,
    seed: int = 0,
    max_r_hat: Optional[float] = 1.1,
    parallel: bool = False,
    n_workers: int = 1,
    save_plots: bool = False,
    save_models: bool = False,
    engine: Optional[Any] = None,
) -> Path:
    """
    Load a tensor bundle written by `preprocess_dataset`, fit every
    selected gene and record batch weights.

    Outputs:
        {output_dir}/
        ├── model_metrics.h5
        ├── model_plots/<gene>_plot.pdf
        └── model_files/<gene>_model.pkl.zst

    Args:
        tensor_path (str | PathLike): Path of a `.pkl.zst` bundle holding a
            `TrajectoryTensorResult` or an `ExpressionTensor`.
        output_dir (str | PathLike, optional): Output directory.
        gene_indices (List[int], optional): 0-based gene positions.
        n_knots (int, optional): Spline basis dimension. Default is 5.
        n_samples (int, optional): Iterations per chain. Default is 2000.
        num_chains (int, optional): MCMC chains. Default is 4.
        seed (int, optional): Sampler seed. Default is 0.
        max_r_hat (float, optional): Convergence limit, None disables.
        parallel (bool, optional): Fit genes in worker processes.
        n_workers (int, optional): Number of worker processes.
        save_plots (bool, optional): Write per-gene plots.
        save_models (bool, optional): Serialize per-gene models.
        engine (optional): Inference engine.

    Returns:
        Path: The metric store path.

    Examples:
        >>> fit_dataset("data/processed/simulated_tensor.pkl.zst") # xdoctest: +SKIP
    """
    bundle = CompressedPickle.load(tensor_path)
    tensor = bundle.tensor if isinstance(bundle, TrajectoryTensorResult) else bundle
    if not isinstance(tensor, ExpressionTensor):
        raise TypeError(
            f"{tensor_path} does not contain an ExpressionTensor "
            f"(found {type(bundle).__name__})"
        )

    if TRAJCONSERVE_TESTING_FLAG:
        n_samples = min(n_samples, 200)
        num_chains = min(num_chains, 2)
        logger.info(
            f"Testing mode: {n_samples} iterations on {num_chains} chains"
        )
    sampling = SamplingConfig.from_iterations(
        n_samples, num_chains=num_chains, seed=seed, max_r_hat=max_r_hat
    )

    output_dir = Path(output_dir)
    metrics_path = output_dir / "model_metrics.h5"
    logger.info(
        f"Fitting {len(gene_indices) if gene_indices else len(tensor.genes)} "
        f"genes of a {tensor.shape} tensor into {output_dir}"
    )
    run_multiple_models(
        tensor,
        gene_indices=gene_indices,
        n_knots=n_knots,
        n_samples=n_samples,
        parallel=parallel,
        n_workers=n_workers,
        save_metrics=True,
        save_metrics_file=metrics_path,
        save_plots=save_plots,
        save_plots_dir=output_dir / "model_plots",
        save_models=save_models,
        save_models_dir=output_dir / "model_files",
        engine=engine,
        sampling=sampling,
    )
    return metrics_path
