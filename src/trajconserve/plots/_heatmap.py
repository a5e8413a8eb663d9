from os import PathLike
from pathlib import Path

import pandas as pd
import seaborn as sns
from beartype import beartype
from beartype.typing import Optional, Union
from matplotlib.figure import Figure

from trajconserve.analysis.extract import extract_h5_metric
from trajconserve.logging import configure_logging
from trajconserve.plots._common import save_figure

__all__ = ["clustered_heatmap", "plot_h5_heatmap"]

logger = configure_logging(__name__)

_Z_SCORE_AXIS = {None: None, "none": None, "row": 0, "column": 1}


@beartype
def clustered_heatmap(
    matrix: pd.DataFrame,
    title: str,
    cluster_rows: bool = True,
    cluster_cols: bool = True,
    scale: Optional[str] = None,
    row_colors: Optional[pd.Series] = None,
) -> Figure:
    """
    Draw a clustered heatmap of `matrix`.

    Clustering is turned off when the matrix holds missing values and on any
    axis with fewer than two entries.

    Args:
        matrix (pd.DataFrame): Values to draw.
        title (str): Figure title.
        cluster_rows (bool, optional): Cluster rows. Default is True.
        cluster_cols (bool, optional): Cluster columns. Default is True.
        scale (str, optional): "row" or "column" to z-score along that axis.
        row_colors (pd.Series, optional): Row annotation colors.

    Returns:
        Figure: The figure of the cluster grid.
    """
    if scale not in _Z_SCORE_AXIS:
        raise ValueError(
            f"Invalid scale {scale!r}. Choose from 'none', 'row' or 'column'."
        )
    if matrix.isna().to_numpy().any() and (cluster_rows or cluster_cols):
        logger.warning(
            "Matrix contains missing values, clustering is disabled"
        )
        cluster_rows = cluster_cols = False
    cluster_rows = cluster_rows and matrix.shape[0] > 1
    cluster_cols = cluster_cols and matrix.shape[1] > 1

    grid = sns.clustermap(
        matrix,
        row_cluster=cluster_rows,
        col_cluster=cluster_cols,
        z_score=_Z_SCORE_AXIS[scale],
        row_colors=row_colors,
        cmap="viridis",
        figsize=(
            max(4.0, 0.4 * matrix.shape[1] + 3.0),
            max(4.0, 0.3 * matrix.shape[0] + 3.0),
        ),
    )
    grid.figure.suptitle(title, y=1.02)
    return grid.figure


@beartype
def plot_h5_heatmap(
    h5_file: Union[str, PathLike],
    metric: str = "Estimate",
    cluster_rows: bool = True,
    cluster_cols: bool = True,
    scale: Optional[str] = None,
    file_path: Optional[Union[str, PathLike]] = None,
) -> Figure:
    """
    Plot a heatmap of one metric of the metric store, batches by genes.

    Examples:
        >>> store = getfixture("metric_store")
        >>> fig = plot_h5_heatmap(store, "Estimate")
        >>> fig.get_suptitle()
        'Heatmap of Estimate from metrics.h5'
    """
    matrix = extract_h5_metric(h5_file, metric)
    fig = clustered_heatmap(
        matrix,
        title=f"Heatmap of {metric} from {Path(h5_file).name}",
        cluster_rows=cluster_rows,
        cluster_cols=cluster_cols,
        scale=scale,
    )
    if file_path is not None:
        save_figure(fig, file_path)
    return fig
