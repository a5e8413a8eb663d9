"""
Read one metric of every gene in the metric store into a batch × gene
matrix.
"""

import warnings
from os import PathLike
from pathlib import Path

import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import Dict, List, Union

from trajconserve.errors import DataShapeError, StoreConsistencyWarning
from trajconserve.io.h5store import ARRAY_WEIGHTS_GROUP, LABEL_DATASET, H5Store
from trajconserve.logging import configure_logging

__all__ = ["extract_h5_metric"]

logger = configure_logging(__name__)


def _warn(message: str) -> None:
    logger.warning(message)
    warnings.warn(message, StoreConsistencyWarning, stacklevel=3)


@beartype
def extract_h5_metric(
    h5_file: Union[str, PathLike],
    metric: str = "Estimate",
) -> pd.DataFrame:
    """
    Assemble `metric` for every gene of the store into a matrix whose rows
    are the union of batch labels (first-seen order) and columns are genes.

    Genes lacking the metric or the label array are skipped with a
    `StoreConsistencyWarning`. Label sets that differ between genes are
    reported once and the matrix is NaN where a gene has no value for a
    batch.

    Args:
        h5_file (str | PathLike): Metric store path.
        metric (str, optional): Metric name. Default is "Estimate".

    Returns:
        pd.DataFrame: Batch × gene matrix.

    Raises:
        FileNotFoundError: If `h5_file` does not exist.
        DataShapeError: If the store has no `array_weights` group or no gene
            holds the metric.

    Examples:
        >>> store = getfixture("metric_store")
        >>> matrix = extract_h5_metric(store, "weight_norm")
        >>> matrix.shape
        (3, 2)
    """
    h5_file = Path(h5_file)
    if not h5_file.exists():
        raise FileNotFoundError(f"Metric store not found: {h5_file}")
    store = H5Store(h5_file)
    if not store.path_exists(ARRAY_WEIGHTS_GROUP):
        raise DataShapeError(
            f"Store has no '{ARRAY_WEIGHTS_GROUP}' group", str(h5_file)
        )

    columns: Dict[str, pd.Series] = {}
    labels: List[str] = []
    label_sets = set()
    for gene in store.list_groups(ARRAY_WEIGHTS_GROUP):
        group = f"{ARRAY_WEIGHTS_GROUP}/{gene}"
        datasets = store.list_datasets(group)
        if LABEL_DATASET not in datasets or metric not in datasets:
            missing = LABEL_DATASET if LABEL_DATASET not in datasets else metric
            _warn(f"Gene {gene} has no '{missing}' dataset and is skipped")
            continue

        gene_labels = [
            str(v) for v in store.read_array(f"{group}/{LABEL_DATASET}")
        ]
        values = np.asarray(store.read_array(f"{group}/{metric}"), dtype=float)
        if len(gene_labels) != len(values):
            _warn(
                f"Gene {gene} has {len(values)} '{metric}' values for "
                f"{len(gene_labels)} batch labels and is skipped"
            )
            continue

        columns[gene] = pd.Series(values, index=gene_labels)
        label_sets.add(frozenset(gene_labels))
        for label in gene_labels:
            if label not in labels:
                labels.append(label)

    if not columns:
        raise DataShapeError(
            f"No gene in the store holds metric '{metric}'", metric
        )
    if len(label_sets) > 1:
        _warn(
            f"Batch labels differ across {len(columns)} genes; "
            f"using the union of {len(labels)} labels"
        )

    matrix = pd.DataFrame(columns).reindex(labels)
    matrix.index.name = "array"
    logger.info(
        f"Extracted '{metric}' for {matrix.shape[1]} genes and "
        f"{matrix.shape[0]} batches from {h5_file}"
    )
    return matrix
