from os import PathLike
from pathlib import Path

from beartype import beartype
from beartype.typing import List, Optional, Union

from trajconserve.analysis.conservation import calculate_conservation
from trajconserve.analysis.extract import extract_h5_metric
from trajconserve.logging import configure_logging
from trajconserve.plots import plot_conservation, plot_h5_heatmap

__all__ = ["conservation_dataset", "extract_dataset"]

logger = configure_logging(__name__)


@beartype
def extract_dataset(
    h5_file: Union[str, PathLike],
    metric: str = "Estimate",
    output_dir: Union[str, PathLike] = "reports",
    plot_heatmap: bool = False,
) -> Path:
    """
    Write one metric of the metric store as a batch × gene CSV table.

    Outputs:
        {output_dir}/{metric}_matrix.csv
        {output_dir}/{metric}_heatmap.pdf
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    matrix = extract_h5_metric(h5_file, metric)
    matrix_path = output_dir / f"{metric}_matrix.csv"
    matrix.to_csv(matrix_path)
    logger.info(f"Saved {metric} matrix to {matrix_path}")

    if plot_heatmap:
        plot_h5_heatmap(
            h5_file, metric, file_path=output_dir / f"{metric}_heatmap.pdf"
        )
    return matrix_path


@beartype
def conservation_dataset(
    h5_file: Union[str, PathLike],
    metric: str = "Estimate",
    mean_weight: float = 0.5,
    variability_weight: float = 0.5,
    conservation_threshold: float = 0.6,
    normalize_scores: bool = True,
    output_dir: Union[str, PathLike] = "reports",
    plot_types: Optional[List[str]] = None,
    highlight_n: int = 5,
) -> Path:
    """
    Score gene conservation from the metric store and save the ranking.

    Outputs:
        {output_dir}/
        ├── conservation_{metric}.csv
        └── conservation_{metric}_{plot_type}.pdf

    Args:
        h5_file (str | PathLike): Metric store path.
        metric (str, optional): Metric to score. Default is "Estimate".
        mean_weight (float, optional): Weight of the mean term.
        variability_weight (float, optional): Weight of the variability
            term.
        conservation_threshold (float, optional): Minimum conserved score.
        normalize_scores (bool, optional): Min-max scale scores.
        output_dir (str | PathLike, optional): Output directory.
        plot_types (List[str], optional): Any of "scatter", "histogram" and
            "heatmap". Defaults to no plots.
        highlight_n (int, optional): Genes highlighted at each end.

    Returns:
        Path: The CSV table path.

    Examples:
        >>> tmp = getfixture("tmp_path")
        >>> path = conservation_dataset(getfixture("metric_store"), output_dir=tmp)
        >>> path.name
        'conservation_Estimate.csv'
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    matrix = extract_h5_metric(h5_file, metric)
    results = calculate_conservation(
        matrix,
        mean_weight=mean_weight,
        variability_weight=variability_weight,
        conservation_threshold=conservation_threshold,
        normalize_scores=normalize_scores,
    )
    table_path = output_dir / f"conservation_{metric}.csv"
    results.to_csv(table_path, index=False)
    logger.info(
        f"Saved conservation ranking of {len(results)} genes to {table_path}"
    )

    for plot_type in plot_types or []:
        plot_conservation(
            results,
            plot_type=plot_type,
            highlight_n=highlight_n,
            original_data=matrix,
            file_path=output_dir / f"conservation_{metric}_{plot_type}.pdf",
        )
    return table_path
