"""
Pseudotime binning and reshaping of single-cell expression into a
`[batch, pseudotime bin, gene]` tensor.

The transformation follows four steps:

1. cells are assigned to equal-width pseudotime bins,
2. expression is averaged within each observed (batch, bin) group,
3. genes with too few expressed groups and batches covering too little of
   the trajectory are removed,
4. the surviving (batch, bin) columns are placed in a dense tensor in which
   unobserved combinations are NaN.
"""

from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from anndata import AnnData
from beartype import beartype
from beartype.typing import List, Optional, Sequence, Tuple, Union
from scipy import sparse

from trajconserve.errors import DataShapeError
from trajconserve.logging import configure_logging
from trajconserve.utils import ensure_numpy_array

__all__ = [
    "ExpressionTensor",
    "TrajectoryTensorResult",
    "anndata_to_trajectory_tensor",
    "bin_pseudotime",
    "build_trajectory_tensor",
    "calculate_bin_means",
    "examine_trajectory_tail",
    "filter_batches",
    "filter_genes",
    "reshape_to_3d",
]

logger = configure_logging(__name__)

BATCH_LEVEL = "batch"
BIN_LEVEL = "bin"


@dataclass(frozen=True)
class ExpressionTensor:
    """
    Binned expression indexed by batch, pseudotime bin and gene.

    Attributes:
        values: Read-only float array of shape `[batch, bin, gene]`. Entries
            without any cell in the corresponding (batch, bin) are NaN.
        batches: Batch labels along the first axis.
        bins: Bin labels `1..n_bins` along the second axis.
        genes: Gene names along the third axis.

    Examples:
        >>> tensor = ExpressionTensor(
        ...     values=np.zeros((2, 3, 1)),
        ...     batches=("a", "b"),
        ...     bins=np.arange(1, 4),
        ...     genes=("g1",),
        ... )
        >>> tensor.shape
        (2, 3, 1)
        >>> tensor.gene_slice("g1").shape
        (2, 3)
    """

    values: np.ndarray
    batches: Tuple[str, ...]
    bins: np.ndarray
    genes: Tuple[str, ...]

    def __post_init__(self):
        values = np.array(self.values, dtype=float)
        batches = tuple(str(b) for b in self.batches)
        genes = tuple(str(g) for g in self.genes)
        bins = np.asarray(self.bins, dtype=int)

        if values.ndim != 3:
            raise DataShapeError(
                f"Expected a 3D array, got {values.ndim} dimensions", "values"
            )
        expected = (len(batches), len(bins), len(genes))
        if values.shape != expected:
            raise DataShapeError(
                f"Array shape {values.shape} does not match labels {expected}",
                "values",
            )
        if not np.array_equal(bins, np.arange(1, len(bins) + 1)):
            raise DataShapeError("Bins must be labeled 1..n_bins", "bins")

        values.setflags(write=False)
        bins.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "batches", batches)
        object.__setattr__(self, "bins", bins)
        object.__setattr__(self, "genes", genes)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.values.shape

    @property
    def n_bins(self) -> int:
        return len(self.bins)

    def gene_index(self, gene: str) -> int:
        try:
            return self.genes.index(gene)
        except ValueError:
            raise KeyError(f"Gene {gene} is not in the tensor") from None

    def gene_slice(self, gene: Union[int, str]) -> np.ndarray:
        """Return the `[batch, bin]` matrix of a gene given its index or name."""
        index = self.gene_index(gene) if isinstance(gene, str) else gene
        return self.values[:, :, index]


@dataclass(frozen=True)
class TrajectoryTensorResult:
    """
    Output of `build_trajectory_tensor` together with its intermediates.

    Attributes:
        tensor: The filtered `[batch, bin, gene]` tensor.
        binned_means: Genes × (batch, bin) means before filtering.
        binned_means_filtered: Genes × (batch, bin) means after filtering.
        filtered_genes: Genes passing the presence filter.
        batch_names: Batches passing the coverage and tail filters.
        metadata: Per-cell batch label and pseudotime bin.
    """

    tensor: ExpressionTensor
    binned_means: pd.DataFrame
    binned_means_filtered: pd.DataFrame
    filtered_genes: List[str]
    batch_names: List[str]
    metadata: pd.DataFrame = field(repr=False)


@beartype
def bin_pseudotime(
    x: Union[Sequence[float], np.ndarray, pd.Series],
    n_bins: int = 100,
) -> np.ndarray:
    """
    Assign pseudotime values to equal-width bins.

    The range `[min(x), max(x)]` is split into `n_bins` intervals that are
    closed on the right, with the first interval also closed on the left, so
    the minimum falls in bin 1 and the maximum in bin `n_bins`.

    Args:
        x: Pseudotime values.
        n_bins (int, optional): Number of bins. Default is 100.

    Returns:
        np.ndarray: 1-based integer bin label per value.

    Raises:
        DataShapeError: If `x` is empty, contains non-finite values, or all
            values are identical.

    Examples:
        >>> bin_pseudotime(np.arange(1, 11), n_bins=5).tolist()
        [1, 1, 2, 2, 3, 3, 4, 4, 5, 5]
    """
    if n_bins < 1:
        raise ValueError("n_bins must be at least 1")
    values = np.asarray(x, dtype=float)
    if values.size == 0:
        raise DataShapeError("Cannot bin an empty pseudotime vector", "pseudotime")
    if not np.all(np.isfinite(values)):
        raise DataShapeError(
            "Pseudotime contains missing or infinite values", "pseudotime"
        )

    lower, upper = values.min(), values.max()
    if lower == upper:
        raise DataShapeError(
            f"All pseudotime values equal {lower}; bins would be degenerate",
            "pseudotime",
        )

    breaks = np.linspace(lower, upper, n_bins + 1)
    bins = np.searchsorted(breaks, values, side="left")
    return np.clip(bins, 1, n_bins).astype(int)


@beartype
def calculate_bin_means(
    expression_matrix: Union[np.ndarray, sparse.spmatrix, sparse.sparray],
    batch_labels: Union[Sequence, np.ndarray, pd.Series],
    bin_labels: Union[Sequence[int], np.ndarray, pd.Series],
    gene_names: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Average expression of each gene within each observed (batch, bin) group.

    Args:
        expression_matrix: Genes × cells expression, dense or sparse.
        batch_labels: Batch label per cell.
        bin_labels: Pseudotime bin per cell.
        gene_names (Sequence[str], optional): Row labels. Defaults to
            `gene1..geneN`.

    Returns:
        pd.DataFrame: Genes × groups means with a `(batch, bin)` column
        MultiIndex. Batches are ordered by first appearance and bins
        ascending within a batch. Groups without cells have no column.

    Examples:
        >>> means = calculate_bin_means(
        ...     np.array([[1.0, 3.0, 5.0]]),
        ...     ["a", "a", "b"],
        ...     [1, 1, 2],
        ...     gene_names=["g1"],
        ... )
        >>> means.columns.tolist()
        [('a', 1), ('b', 2)]
        >>> means.loc["g1"].tolist()
        [2.0, 5.0]
    """
    n_genes, n_cells = expression_matrix.shape
    batch_labels = np.asarray(batch_labels).astype(str)
    bin_labels = np.asarray(bin_labels, dtype=int)
    if len(batch_labels) != n_cells or len(bin_labels) != n_cells:
        raise DataShapeError(
            f"Expected {n_cells} batch and bin labels to match the cells of "
            f"the expression matrix",
            "expression_matrix",
        )
    if gene_names is None:
        gene_names = [f"gene{i + 1}" for i in range(n_genes)]

    batch_order = pd.unique(batch_labels)
    keys = pd.DataFrame(
        {
            BATCH_LEVEL: pd.Categorical(batch_labels, categories=batch_order),
            BIN_LEVEL: bin_labels,
        }
    )
    grouped = keys.groupby([BATCH_LEVEL, BIN_LEVEL], observed=True, sort=True)
    group_ids = grouped.ngroup().to_numpy()
    group_keys = list(grouped.size().index)
    n_groups = len(group_keys)

    indicator = sparse.csr_matrix(
        (np.ones(n_cells), (np.arange(n_cells), group_ids)),
        shape=(n_cells, n_groups),
    )
    counts = np.asarray(indicator.sum(axis=0)).ravel()
    sums = ensure_numpy_array(expression_matrix @ indicator)
    means = np.asarray(sums, dtype=float) / counts[None, :]

    columns = pd.MultiIndex.from_tuples(
        [(str(batch), int(bin_)) for batch, bin_ in group_keys],
        names=[BATCH_LEVEL, BIN_LEVEL],
    )
    return pd.DataFrame(
        means, index=pd.Index(gene_names, name="gene"), columns=columns
    )


@beartype
def filter_genes(
    binned_means: pd.DataFrame,
    threshold: float = 0.1,
) -> List[str]:
    """
    Keep genes with positive mean expression in more than
    `round(threshold * n_groups)` (batch, bin) groups.
    """
    minimum = int(np.round(threshold * binned_means.shape[1]))
    positive = (binned_means.to_numpy() > 0).sum(axis=1)
    return [str(g) for g in binned_means.index[positive > minimum]]


@beartype
def filter_batches(
    binned_means: pd.DataFrame,
    n_bins: int = 100,
    threshold: float = 0.3,
) -> List[str]:
    """
    Keep batches observed in more than `threshold * n_bins` pseudotime bins.

    Examples:
        >>> columns = pd.MultiIndex.from_tuples(
        ...     [("a", 1), ("a", 2), ("a", 3), ("b", 1)], names=["batch", "bin"]
        ... )
        >>> means = pd.DataFrame(np.ones((1, 4)), columns=columns)
        >>> filter_batches(means, n_bins=4, threshold=0.5)
        ['a']
    """
    batches = pd.Series(binned_means.columns.get_level_values(BATCH_LEVEL))
    present = batches.groupby(batches, sort=False).size()
    return [str(b) for b, count in present.items() if count > threshold * n_bins]


@beartype
def examine_trajectory_tail(
    metadata: pd.DataFrame,
    n_bins: int = 100,
    tail_width: float = 0.3,
    tail_num: float = 0.02,
) -> List[str]:
    """
    Select batches with enough coverage at the end of the trajectory.

    A batch passes when the number of distinct bins it occupies beyond
    `(1 - tail_width) * n_bins` is greater than `tail_num * n_bins`.

    Args:
        metadata (pd.DataFrame): Per-cell `batch` and `pseudotime_binned`
            columns.
        n_bins (int, optional): Number of pseudotime bins. Default is 100.
        tail_width (float, optional): Fraction of the trajectory treated as
            its tail. Default is 0.3.
        tail_num (float, optional): Minimum tail coverage as a fraction of
            `n_bins`. Default is 0.02.

    Returns:
        List[str]: Batches passing the tail check.

    Examples:
        >>> metadata = pd.DataFrame({
        ...     "batch": ["a"] * 4 + ["b"] * 2,
        ...     "pseudotime_binned": [1, 8, 9, 10, 1, 2],
        ... })
        >>> examine_trajectory_tail(
        ...     metadata, n_bins=10, tail_width=0.3, tail_num=0.2
        ... )
        ['a']
    """
    tail_start = (1 - tail_width) * n_bins
    occupied = metadata[[BATCH_LEVEL, "pseudotime_binned"]].drop_duplicates()
    in_tail = occupied[occupied["pseudotime_binned"] > tail_start]
    tail_counts = in_tail.groupby(BATCH_LEVEL, sort=False, observed=True).size()
    return [str(b) for b, count in tail_counts.items() if count > tail_num * n_bins]


@beartype
def reshape_to_3d(
    matrix_data: Union[np.ndarray, pd.DataFrame],
    batches: Sequence[str],
    bins: Sequence[int],
    n_bins: int = 100,
    genes: Optional[Sequence[str]] = None,
) -> ExpressionTensor:
    """
    Place each (batch, bin) column of a genes × groups matrix into a
    `[batch, bin, gene]` tensor.

    Columns whose bin exceeds `n_bins` are ignored. Positions without a
    column remain NaN.

    Args:
        matrix_data: Genes × groups matrix.
        batches: Batch label of each column.
        bins: Bin label of each column.
        n_bins (int, optional): Length of the bin axis. Default is 100.
        genes (Sequence[str], optional): Gene names. Defaults to the frame
            index, or `gene1..geneN` for arrays.

    Returns:
        ExpressionTensor: The reshaped tensor.

    Examples:
        >>> tensor = reshape_to_3d(
        ...     np.array([[1.0, 2.0], [3.0, 4.0]]), ["a", "b"], [2, 1], n_bins=2
        ... )
        >>> tensor.values[0, :, 0].tolist()
        [nan, 1.0]
        >>> tensor.values[1, :, 1].tolist()
        [4.0, nan]
    """
    if genes is None:
        if isinstance(matrix_data, pd.DataFrame):
            genes = [str(g) for g in matrix_data.index]
        else:
            genes = [f"gene{i + 1}" for i in range(matrix_data.shape[0])]
    values = np.asarray(matrix_data, dtype=float)
    if values.shape[1] != len(batches) or len(batches) != len(bins):
        raise DataShapeError(
            "Each column requires exactly one batch and one bin label",
            "matrix_data",
        )

    batch_axis = [str(b) for b in pd.unique(np.asarray(batches).astype(str))]
    batch_position = {batch: i for i, batch in enumerate(batch_axis)}
    result = np.full((len(batch_axis), n_bins, len(genes)), np.nan)

    for column, (batch, bin_) in enumerate(zip(batches, bins)):
        if 1 <= bin_ <= n_bins:
            result[batch_position[str(batch)], bin_ - 1, :] = values[:, column]

    return ExpressionTensor(
        values=result,
        batches=tuple(batch_axis),
        bins=np.arange(1, n_bins + 1),
        genes=tuple(genes),
    )


@beartype
def build_trajectory_tensor(
    expression_matrix: Union[np.ndarray, sparse.spmatrix, sparse.sparray],
    pseudotime: Union[Sequence[float], np.ndarray, pd.Series],
    batch: Union[Sequence, np.ndarray, pd.Series],
    gene_names: Optional[Sequence[str]] = None,
    n_bins: int = 100,
    gene_threshold: float = 0.1,
    batch_threshold: float = 0.3,
    ensure_tail: bool = True,
    tail_width: float = 0.3,
    tail_num: float = 0.02,
) -> TrajectoryTensorResult:
    """
    Bin, aggregate, filter and reshape expression into an `ExpressionTensor`.

    Args:
        expression_matrix: Genes × cells expression, dense or sparse.
        pseudotime: Pseudotime per cell.
        batch: Batch label per cell.
        gene_names (Sequence[str], optional): Gene names.
        n_bins (int, optional): Number of pseudotime bins. Default is 100.
        gene_threshold (float, optional): Fraction of (batch, bin) groups in
            which a gene must have positive mean expression. Default is 0.1.
        batch_threshold (float, optional): Fraction of bins a batch must
            cover. Default is 0.3.
        ensure_tail (bool, optional): Whether to require coverage of the
            trajectory tail. Default is True.
        tail_width (float, optional): Tail width as a fraction of the
            trajectory. Default is 0.3.
        tail_num (float, optional): Minimum tail coverage as a fraction of
            `n_bins`. Default is 0.02.

    Returns:
        TrajectoryTensorResult: The tensor and intermediate tables.

    Raises:
        DataShapeError: If no gene or no batch survives filtering, or the
            pseudotime range is degenerate.
    """
    pseudotime = np.asarray(pseudotime, dtype=float)
    batch = np.asarray(batch).astype(str)
    n_cells = expression_matrix.shape[1]
    if len(pseudotime) != n_cells or len(batch) != n_cells:
        raise DataShapeError(
            f"Pseudotime and batch must have one entry per cell ({n_cells})",
            "pseudotime",
        )
    if gene_names is None:
        gene_names = [f"gene{i + 1}" for i in range(expression_matrix.shape[0])]

    finite = np.isfinite(pseudotime)
    if not finite.all():
        logger.warning(
            f"Dropping {int((~finite).sum())} cells without a finite pseudotime"
        )
        expression_matrix = expression_matrix[:, np.flatnonzero(finite)]
        pseudotime = pseudotime[finite]
        batch = batch[finite]

    pseudotime_binned = bin_pseudotime(pseudotime, n_bins=n_bins)
    metadata = pd.DataFrame(
        {
            BATCH_LEVEL: batch,
            "pseudotime_binned": pseudotime_binned,
        }
    )

    binned_means = calculate_bin_means(
        expression_matrix,
        batch_labels=batch,
        bin_labels=pseudotime_binned,
        gene_names=gene_names,
    )

    filtered_genes = filter_genes(binned_means, threshold=gene_threshold)
    if not filtered_genes:
        raise DataShapeError(
            "No genes passed the expression presence filter", "gene_threshold"
        )

    batch_names = filter_batches(
        binned_means, n_bins=n_bins, threshold=batch_threshold
    )
    if ensure_tail:
        tail_batches = set(
            examine_trajectory_tail(
                metadata,
                n_bins=n_bins,
                tail_width=tail_width,
                tail_num=tail_num,
            )
        )
        batch_names = [b for b in batch_names if b in tail_batches]
    if not batch_names:
        raise DataShapeError(
            "No batches passed the pseudotime coverage filters", "batch_threshold"
        )

    column_batches = binned_means.columns.get_level_values(BATCH_LEVEL)
    binned_means_filtered = binned_means.loc[
        filtered_genes, column_batches.isin(batch_names)
    ]
    logger.info(
        f"Retained {len(filtered_genes)} of {binned_means.shape[0]} genes and "
        f"{len(batch_names)} of {len(pd.unique(column_batches))} batches"
    )

    tensor = reshape_to_3d(
        binned_means_filtered,
        batches=list(
            binned_means_filtered.columns.get_level_values(BATCH_LEVEL)
        ),
        bins=[
            int(b)
            for b in binned_means_filtered.columns.get_level_values(BIN_LEVEL)
        ],
        n_bins=n_bins,
    )

    return TrajectoryTensorResult(
        tensor=tensor,
        binned_means=binned_means,
        binned_means_filtered=binned_means_filtered,
        filtered_genes=filtered_genes,
        batch_names=list(tensor.batches),
        metadata=metadata,
    )


@beartype
def anndata_to_trajectory_tensor(
    adata: AnnData,
    pseudotime_key: str,
    batch_key: str,
    layer: Optional[str] = None,
    n_bins: int = 100,
    gene_threshold: float = 0.1,
    batch_threshold: float = 0.3,
    ensure_tail: bool = True,
    tail_width: float = 0.3,
    tail_num: float = 0.02,
) -> TrajectoryTensorResult:
    """
    Build the trajectory tensor from an AnnData object.

    Args:
        adata (AnnData): Cells × genes data.
        pseudotime_key (str): Column of `adata.obs` with pseudotime.
        batch_key (str): Column of `adata.obs` with batch labels.
        layer (str, optional): Layer to read expression from instead of `X`.

    Other arguments are passed to `build_trajectory_tensor`.

    Returns:
        TrajectoryTensorResult: The tensor and intermediate tables.

    Examples:
        >>> from trajconserve.utils import generate_trajectory_data
        >>> adata = generate_trajectory_data(n_cells=600, n_genes=5, random_seed=0)
        >>> result = anndata_to_trajectory_tensor(
        ...     adata, "pseudotime", "batch", n_bins=10
        ... )
        >>> result.tensor.shape
        (3, 10, 5)
    """
    for key in (pseudotime_key, batch_key):
        if key not in adata.obs.columns:
            raise DataShapeError("Column missing from adata.obs", key)

    matrix = adata.X if layer is None else adata.layers[layer]
    if sparse.issparse(matrix):
        expression = sparse.csr_matrix(matrix.T)
    else:
        expression = np.asarray(matrix).T

    return build_trajectory_tensor(
        expression,
        pseudotime=adata.obs[pseudotime_key].to_numpy(dtype=float),
        batch=adata.obs[batch_key].astype(str).to_numpy(),
        gene_names=[str(g) for g in adata.var_names],
        n_bins=n_bins,
        gene_threshold=gene_threshold,
        batch_threshold=batch_threshold,
        ensure_tail=ensure_tail,
        tail_width=tail_width,
        tail_num=tail_num,
    )
