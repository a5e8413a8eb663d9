from pprint import pformat

import numpy as np
import pandas as pd
from anndata import AnnData
from beartype import beartype
from beartype.typing import Dict, List, Optional, Sequence

from trajconserve.logging import configure_logging

__all__ = [
    "ensure_numpy_array",
    "generate_trajectory_data",
    "pretty_log_dict",
    "print_anndata",
    "str_to_bool",
]

logger = configure_logging(__name__)


def ensure_numpy_array(obj):
    return obj.toarray() if hasattr(obj, "toarray") else np.asarray(obj)


@beartype
def pretty_log_dict(d: dict) -> str:
    dict_as_string = "\n"
    for key, value in d.items():
        value_lines = pformat(value).split("\n")
        dict_as_string += f"{key}:\n" + "\n".join(value_lines) + "\n"
    return dict_as_string


@beartype
def str_to_bool(value: str | bool, default: bool = False) -> bool:
    """
    Convert strings that could be interpreted as booleans to a boolean value,
    with a default fallback.

    Args:
        value (str | bool): input string or boolean value.
        default (bool, optional): Defaults to False.

    Returns:
        bool: boolean interpretation of the input string

    Examples:
        >>> str_to_bool("yes"), str_to_bool("F"), str_to_bool("maybe", True)
        (True, False, True)
    """
    if isinstance(value, bool):
        return value
    if value.lower() in ("true", "t", "1", "yes", "y"):
        return True
    elif value.lower() in ("false", "f", "0", "no", "n"):
        return False
    else:
        return default


def print_anndata(anndata_obj):
    """
    Log a formatted representation of an AnnData object with each element of
    obs, var, uns, obsm and layers on its own line.

    Args:
        anndata_obj (AnnData): The AnnData object to be printed.

    Examples:
        >>> adata = generate_trajectory_data(n_cells=20, n_genes=3, random_seed=1)
        >>> print_anndata(adata)
    """
    assert isinstance(
        anndata_obj, AnnData
    ), "Input object must be of type AnnData."

    def format_elements(elements):
        return "\n".join([f"        {elem}," for elem in elements])

    anndata_string = [
        f"\nAnnData object with n_obs × n_vars = "
        f"{anndata_obj.n_obs} × {anndata_obj.n_vars}"
    ]

    properties = {
        "obs": anndata_obj.obs.columns,
        "var": anndata_obj.var.columns,
        "uns": anndata_obj.uns.keys(),
        "obsm": anndata_obj.obsm.keys(),
        "layers": anndata_obj.layers.keys(),
    }

    for prop_name, elements in properties.items():
        if len(elements) > 0:
            anndata_string.append(
                f"    {prop_name}:\n{format_elements(elements)}"
            )

    logger.info("\n".join(anndata_string))


@beartype
def generate_trajectory_data(
    n_cells: int = 2000,
    n_genes: int = 20,
    n_batches: int = 3,
    mean_scale: float = 20.0,
    batch_shapes: Optional[Sequence[float]] = None,
    batch_span: float = 1.0,
    random_seed: int = 0,
) -> AnnData:
    """
    Generate a synthetic trajectory data set.

    Each gene follows a smooth bell-shaped mean expression curve along a
    uniform pseudotime axis. Counts are drawn from a negative binomial whose
    shape (inverse overdispersion) is set per batch, so genes in batches with
    a larger shape are less overdispersed.

    Args:
        n_cells (int, optional): Number of cells. Default is 2000.
        n_genes (int, optional): Number of genes. Default is 20.
        n_batches (int, optional): Number of batches. Default is 3.
        mean_scale (float, optional): Peak mean expression. Default is 20.
        batch_shapes (Sequence[float], optional): Negative binomial shape per
            batch. Defaults to a geometric sequence from 1 to 20.
        batch_span (float, optional): Fraction of the pseudotime axis covered
            by all but the first batch. Values below 1 truncate the tails of
            the later batches. Default is 1.
        random_seed (int, optional): Random seed. Default is 0.

    Returns:
        AnnData: cells × genes counts with `pseudotime` and `batch` obs
        columns and the generating shapes in `uns["batch_shapes"]`.

    Examples:
        >>> adata = generate_trajectory_data(n_cells=50, n_genes=4, random_seed=3)
        >>> adata.shape
        (50, 4)
        >>> sorted(adata.obs["batch"].unique())
        ['batch1', 'batch2', 'batch3']
    """
    if n_batches < 1:
        raise ValueError("n_batches must be at least 1")
    rng = np.random.default_rng(random_seed)

    if batch_shapes is None:
        batch_shapes = np.geomspace(1.0, 20.0, n_batches)
    batch_shapes = np.asarray(batch_shapes, dtype=float)
    if batch_shapes.shape != (n_batches,):
        raise ValueError("batch_shapes must have one entry per batch")

    batch_names = [f"batch{i + 1}" for i in range(n_batches)]
    batch_index = rng.integers(0, n_batches, size=n_cells)
    pseudotime = rng.uniform(0.0, 1.0, size=n_cells)
    truncated = batch_index > 0
    pseudotime[truncated] = pseudotime[truncated] * batch_span

    peaks = rng.uniform(0.1, 0.9, size=n_genes)
    widths = rng.uniform(0.1, 0.4, size=n_genes)
    mu = mean_scale * np.exp(
        -0.5 * ((pseudotime[:, None] - peaks[None, :]) / widths[None, :]) ** 2
    )
    mu = mu + 0.5

    shape = batch_shapes[batch_index][:, None]
    probability = shape / (shape + mu)
    counts = rng.negative_binomial(shape, probability)

    obs = pd.DataFrame(
        {
            "pseudotime": pseudotime,
            "batch": pd.Categorical(
                np.asarray(batch_names)[batch_index],
                categories=batch_names,
            ),
        },
        index=[f"cell{i + 1}" for i in range(n_cells)],
    )
    var = pd.DataFrame(index=[f"gene{j + 1}" for j in range(n_genes)])
    uns: Dict[str, List[float]] = {
        "batch_shapes": batch_shapes.tolist(),
    }
    return AnnData(
        X=counts.astype(np.float32),
        obs=obs,
        var=var,
        uns=uns,
    )
