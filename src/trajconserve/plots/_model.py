from os import PathLike

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from beartype import beartype
from beartype.typing import Optional, Union
from matplotlib.figure import Figure

from trajconserve.logging import configure_logging
from trajconserve.models.trajectory_model import GeneModelResult
from trajconserve.plots._common import save_figure

__all__ = ["plot_gene_model"]

logger = configure_logging(__name__)


@beartype
def plot_gene_model(
    result: GeneModelResult,
    file_path: Optional[Union[str, PathLike]] = None,
    n_grid: int = 100,
) -> Figure:
    """
    Plot the batch log-shape estimates of a gene next to its data and the
    posterior predictive curve of the reference batch.

    Args:
        result (GeneModelResult): A fitted gene model.
        file_path (str | PathLike, optional): Where to save the figure.
        n_grid (int, optional): Number of covariate values for the curve.

    Returns:
        Figure: The figure.

    Examples:
        >>> result = getfixture("gene_model_result")
        >>> fig = plot_gene_model(result)
        >>> len(fig.axes)
        2
    """
    weights = result.array_weights
    data = result.data
    fig, (ax_weights, ax_fit) = plt.subplots(1, 2, figsize=(10, 4))

    ax_weights.errorbar(
        weights["array"],
        weights["Estimate"],
        yerr=[
            weights["Estimate"] - weights["Q2.5"],
            weights["Q97.5"] - weights["Estimate"],
        ],
        fmt="o-",
        color="black",
        capsize=3,
    )
    ax_weights.axhline(0.0, linestyle="--", color="red", linewidth=1)
    ax_weights.set_title("Array weights")
    ax_weights.set_xlabel("Array")
    ax_weights.set_ylabel("log shape")
    ax_weights.tick_params(axis="x", rotation=45)

    alpha = dict(zip(weights["array"], weights["weight_norm"].clip(0.1, 1.0)))
    palette = dict(
        zip(
            data["array"].cat.categories,
            sns.color_palette("tab10", len(data["array"].cat.categories)),
        )
    )
    for label, group in data.groupby("array", observed=True):
        ax_fit.scatter(
            group["x"],
            group["y"],
            s=8,
            color=palette[label],
            alpha=float(alpha.get(str(label), 1.0)),
            label=str(label),
        )

    reference = str(data["array"].cat.categories[0])
    x_grid = np.linspace(data["x"].min(), data["x"].max(), n_grid)
    prediction = result.fit.predict(x_grid, reference)
    ax_fit.plot(x_grid, prediction["Estimate"], color="red", linewidth=1.5)
    ax_fit.fill_between(
        x_grid,
        prediction["Q2.5"],
        prediction["Q97.5"],
        color="red",
        alpha=0.2,
        linewidth=0,
    )
    ax_fit.set_title(f"{result.gene}: data and fitted GAM")
    ax_fit.set_xlabel("Pseudotime bin")
    ax_fit.set_ylabel("Expression")
    ax_fit.legend(fontsize=6, frameon=False, markerscale=1.5)

    fig.tight_layout()
    if file_path is not None:
        save_figure(fig, file_path)
    return fig

