import os
from os import PathLike
from pathlib import Path

import anndata
from anndata import AnnData
from beartype import beartype
from beartype.typing import Optional, Union

from trajconserve.analysis.trajectory_transform import anndata_to_trajectory_tensor
from trajconserve.io.compressedpickle import CompressedPickle
from trajconserve.logging import configure_logging
from trajconserve.utils import generate_trajectory_data, print_anndata

__all__ = ["load_anndata_from_path", "preprocess_dataset"]

logger = configure_logging(__name__)


@beartype
def load_anndata_from_path(adata: Union[str, PathLike, AnnData]) -> AnnData:
    """
    Return `adata` unchanged or read it from an `.h5ad` file. The name
    "simulated" generates a synthetic data set instead.
    """
    if isinstance(adata, AnnData):
        return adata
    if str(adata) == "simulated":
        logger.info("Generating a synthetic trajectory data set")
        return generate_trajectory_data()

    path = Path(adata)
    if not path.exists():
        raise FileNotFoundError(f"AnnData file not found: {path}")
    logger.info(f"Reading AnnData from {path}")
    return anndata.read_h5ad(path)


@beartype
def preprocess_dataset(
    adata: Union[str, PathLike, AnnData],
    data_set_name: str = "simulated",
    pseudotime_key: str = "pseudotime",
    batch_key: str = "batch",
    layer: Optional[str] = None,
    n_bins: int = 100,
    gene_threshold: float = 0.1,
    batch_threshold: float = 0.3,
    ensure_tail: bool = True,
    tail_width: float = 0.3,
    tail_num: float = 0.02,
    processed_path: Union[str, PathLike] = "data/processed",
    overwrite: bool = False,
) -> Path:
    """
    Bin an AnnData data set along pseudotime and save the resulting tensor
    bundle.

    Outputs:
        {processed_path}/{data_set_name}_tensor.pkl.zst

    Args:
        adata (str | PathLike | AnnData): AnnData, `.h5ad` path, or
            "simulated".
        data_set_name (str, optional): Name used for the output file.
        pseudotime_key (str, optional): Pseudotime column of `obs`.
        batch_key (str, optional): Batch column of `obs`.
        layer (str, optional): Expression layer instead of `X`.
        n_bins (int, optional): Number of pseudotime bins. Default is 100.
        gene_threshold (float, optional): Gene presence fraction.
        batch_threshold (float, optional): Batch coverage fraction.
        ensure_tail (bool, optional): Require coverage of the trajectory
            tail.
        tail_width (float, optional): Width of the tail.
        tail_num (float, optional): Minimum tail coverage fraction.
        processed_path (str | PathLike, optional): Output directory.
        overwrite (bool, optional): Rebuild an existing bundle.

    Returns:
        Path: The bundle path.

    Examples:
        >>> tmp = getfixture("tmp_path")
        >>> path = preprocess_dataset(
        ...     getfixture("trajectory_adata"),
        ...     data_set_name="toy",
        ...     n_bins=10,
        ...     processed_path=tmp,
        ... )
        >>> path.name
        'toy_tensor.pkl.zst'
    """
    output_path = Path(processed_path) / f"{data_set_name}_tensor.pkl.zst"
    if output_path.exists() and not overwrite:
        logger.info(f"{output_path} exists, set overwrite=True to rebuild it")
        return output_path

    adata = load_anndata_from_path(adata)
    print_anndata(adata)

    result = anndata_to_trajectory_tensor(
        adata,
        pseudotime_key=pseudotime_key,
        batch_key=batch_key,
        layer=layer,
        n_bins=n_bins,
        gene_threshold=gene_threshold,
        batch_threshold=batch_threshold,
        ensure_tail=ensure_tail,
        tail_width=tail_width,
        tail_num=tail_num,
    )
    os.makedirs(processed_path, exist_ok=True)
    CompressedPickle.save(output_path, result)
    logger.info(
        f"Saved a {result.tensor.shape} batch × bin × gene tensor to "
        f"{output_path}"
    )
    return output_path
