from os import PathLike

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from adjustText import adjust_text
from beartype import beartype
from beartype.typing import List, Optional, Sequence, Union
from matplotlib.figure import Figure

from trajconserve.logging import configure_logging
from trajconserve.plots._common import save_figure
from trajconserve.plots._heatmap import clustered_heatmap

__all__ = ["plot_conservation"]

logger = configure_logging(__name__)

PLOT_TYPES = ("scatter", "histogram", "heatmap")
HIGHLIGHT_COLORS = {"top": "tab:blue", "bottom": "tab:red", "regular": "0.7"}
CONSERVATION_COLORS = {"Conserved": "tab:blue", "Non-conserved": "tab:red"}


def _highlight(results: pd.DataFrame, highlight_n: int) -> pd.Series:
    n = min(highlight_n, len(results))
    highlight = pd.Series("regular", index=results.index)
    if n > 0:
        highlight.iloc[len(results) - n :] = "bottom"
        highlight.iloc[:n] = "top"
    return highlight


def _extreme_genes(results: pd.DataFrame, highlight_n: int) -> List[str]:
    n = min(highlight_n, len(results))
    genes = list(results["gene"].iloc[:n]) + list(
        results["gene"].iloc[len(results) - n :]
    )
    return list(dict.fromkeys(genes))


def _scatter(results: pd.DataFrame, highlight_n: int) -> Figure:
    highlight = _highlight(results, highlight_n)
    sizes = 20 + 80 * results["conservation_score"].fillna(0.0).clip(lower=0.0)

    fig, ax = plt.subplots(figsize=(6, 5))
    for kind, color in HIGHLIGHT_COLORS.items():
        mask = (highlight == kind).to_numpy()
        if mask.any():
            ax.scatter(
                results["mean_norm"][mask],
                results["cv_norm"][mask],
                s=sizes[mask],
                color=color,
                label=kind,
                edgecolor="none",
            )

    labeled = results[(highlight != "regular").to_numpy()]
    texts = [
        ax.text(row.mean_norm, row.cv_norm, row.gene, fontsize=7)
        for row in labeled.itertuples()
        if np.isfinite(row.mean_norm) and np.isfinite(row.cv_norm)
    ]
    if texts:
        adjust_text(
            texts,
            ax=ax,
            arrowprops=dict(arrowstyle="-", color="0.4", lw=0.5),
        )

    ax.set_title("Gene conservation analysis")
    ax.set_xlabel("Normalized mean estimate")
    ax.set_ylabel("Normalized inverse variability")
    ax.legend(title="Gene type", frameon=False)
    return fig


def _histogram(results: pd.DataFrame) -> Figure:
    scores = results["conservation_score"].to_numpy(dtype=float)
    scores = scores[np.isfinite(scores)]
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.hist(scores, bins=30, color="steelblue", edgecolor="black")
    if len(scores):
        ax.axvline(scores.mean(), linestyle="--", color="red")
    ax.set_title("Distribution of conservation scores")
    ax.set_xlabel("Conservation score")
    ax.set_ylabel("Count")
    return fig


def _heatmap(
    results: pd.DataFrame,
    original_data: Optional[pd.DataFrame],
    highlight_n: int,
    gene_subset: Optional[Sequence[str]],
) -> Figure:
    if original_data is None:
        raise ValueError("original_data is required for heatmap plots")

    genes = (
        list(gene_subset)
        if gene_subset is not None
        else _extreme_genes(results, highlight_n)
    )
    missing = [gene for gene in genes if gene not in original_data.columns]
    if missing:
        logger.warning(f"Genes not found in the metric matrix: {missing}")
        genes = [gene for gene in genes if gene in original_data.columns]
    if not genes:
        raise ValueError("No valid genes found for heatmap")

    conserved = set(results.loc[results["is_conserved"], "gene"])
    row_colors = pd.Series(
        [
            CONSERVATION_COLORS[
                "Conserved" if gene in conserved else "Non-conserved"
            ]
            for gene in genes
        ],
        index=genes,
        name="Conservation",
    )
    return clustered_heatmap(
        original_data[genes].T,
        title="Conserved vs non-conserved genes",
        row_colors=row_colors,
    )


@beartype
def plot_conservation(
    results: pd.DataFrame,
    plot_type: str = "scatter",
    highlight_n: int = 5,
    original_data: Optional[pd.DataFrame] = None,
    gene_subset: Optional[Sequence[str]] = None,
    file_path: Optional[Union[str, PathLike]] = None,
) -> Figure:
    """
    Visualize conservation scores.

    Args:
        results (pd.DataFrame): Output of `calculate_conservation`.
        plot_type (str, optional): "scatter" of normalized mean against
            normalized inverse variability with the `highlight_n` top and
            bottom genes labeled, "histogram" of scores, or "heatmap" of
            the metric for selected genes. Default is "scatter".
        highlight_n (int, optional): Number of top and bottom genes to
            highlight. Default is 5.
        original_data (pd.DataFrame, optional): Batch × gene metric matrix,
            required for heatmaps.
        gene_subset (Sequence[str], optional): Genes for the heatmap instead
            of the top and bottom genes.
        file_path (str | PathLike, optional): Where to save the figure.

    Returns:
        Figure: The figure.

    Examples:
        >>> results = getfixture("conservation_results")
        >>> fig = plot_conservation(results, plot_type="histogram")
        >>> fig.axes[0].get_xlabel()
        'Conservation score'
    """
    if plot_type not in PLOT_TYPES:
        raise ValueError(
            f"Invalid plot_type {plot_type!r}. Choose from 'scatter', "
            "'histogram', or 'heatmap'."
        )
    if plot_type == "scatter":
        fig = _scatter(results, highlight_n)
    elif plot_type == "histogram":
        fig = _histogram(results)
    else:
        fig = _heatmap(results, original_data, highlight_n, gene_subset)

    if file_path is not None:
        save_figure(fig, file_path)
    return fig
