from trajconserve.plots._common import save_figure
from trajconserve.plots._conservation import plot_conservation
from trajconserve.plots._heatmap import clustered_heatmap, plot_h5_heatmap
from trajconserve.plots._model import plot_gene_model

__all__ = [
    "clustered_heatmap",
    "plot_conservation",
    "plot_gene_model",
    "plot_h5_heatmap",
    "save_figure",
]
