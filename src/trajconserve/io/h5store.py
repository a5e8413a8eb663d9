"""
Append-only HDF5 store of per-gene batch weight metrics.

Layout::

    /array_weights/<gene>/<metric>    float64, one value per batch
    /array_weights/<gene>/array       UTF-8 batch labels
    /metadata/metric_names            UTF-8 metric names

Each gene keeps its own label array, so genes fit on different batch sets
can share a store.
"""

from os import PathLike
from pathlib import Path

import numpy as np
import pandas as pd
from beartype import beartype
from beartype.typing import List, Sequence, Union

from trajconserve.constants import METRIC_NAMES
from trajconserve.errors import DataShapeError, require_module
from trajconserve.logging import configure_logging

__all__ = [
    "ARRAY_WEIGHTS_GROUP",
    "H5Store",
    "METADATA_GROUP",
    "initialize_metric_store",
    "save_weights_to_h5",
]

logger = configure_logging(__name__)

ARRAY_WEIGHTS_GROUP = "array_weights"
METADATA_GROUP = "metadata"
LABEL_DATASET = "array"


class H5Store:
    """
    Minimal key-path access to an HDF5 file.

    Every operation opens and closes the file so that a store object holds
    no handle between calls and can be shared with worker processes.

    Examples:
        >>> tmp = getfixture("tmp_path")
        >>> store = H5Store(tmp / "store.h5")
        >>> store.create_file()
        >>> store.create_group("array_weights/g1")
        >>> store.write_array("array_weights/g1/array", ["b1", "b2"])
        >>> store.read_array("array_weights/g1/array").tolist()
        ['b1', 'b2']
        >>> store.list_groups("array_weights")
        ['g1']
    """

    def __init__(self, path: Union[str, PathLike]):
        self.path = Path(path)
        self._h5py = require_module("h5py")

    def __repr__(self) -> str:
        return f"H5Store({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.exists()

    def create_file(self) -> None:
        """Create an empty file, truncating any existing one."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._h5py.File(self.path, "w"):
            pass

    def create_group(self, group: str) -> None:
        with self._h5py.File(self.path, "a") as f:
            f.require_group(group)

    def path_exists(self, path: str) -> bool:
        if not self.exists():
            return False
        with self._h5py.File(self.path, "r") as f:
            return path in f

    def write_array(self, path: str, array: Union[np.ndarray, Sequence]) -> None:
        """Write `array` at `path`, replacing an existing dataset."""
        values = np.asarray(array)
        if values.dtype.kind in ("U", "S", "O"):
            values = np.asarray([str(v) for v in values.reshape(-1)], dtype=object)
            dtype = self._h5py.string_dtype(encoding="utf-8")
        else:
            values = values.astype(float)
            dtype = values.dtype

        with self._h5py.File(self.path, "a") as f:
            if path in f:
                del f[path]
            f.create_dataset(path, data=values, dtype=dtype)

    def read_array(self, path: str) -> np.ndarray:
        """Read the dataset at `path`; string datasets decode to `str`."""
        with self._h5py.File(self.path, "r") as f:
            dataset = f[path]
            if self._h5py.check_string_dtype(dataset.dtype) is not None:
                return np.asarray(dataset.asstr()[()], dtype=object)
            return np.asarray(dataset[()])

    def list_groups(self, path: str = "/") -> List[str]:
        with self._h5py.File(self.path, "r") as f:
            return [
                name
                for name, item in f[path].items()
                if isinstance(item, self._h5py.Group)
            ]

    def list_datasets(self, path: str) -> List[str]:
        with self._h5py.File(self.path, "r") as f:
            return [
                name
                for name, item in f[path].items()
                if isinstance(item, self._h5py.Dataset)
            ]


@beartype
def initialize_metric_store(
    h5_file: Union[str, PathLike],
    metric_names: Sequence[str] = METRIC_NAMES,
) -> H5Store:
    """
    Open the metric store at `h5_file`, creating its groups and metric name
    list if the file does not exist yet.

    Args:
        h5_file (str | PathLike): Store path.
        metric_names (Sequence[str], optional): Metric names recorded once at
            creation.

    Returns:
        H5Store: The store.
    """
    store = H5Store(h5_file)
    if not store.exists():
        logger.info(f"Creating metric store {store.path}")
        store.create_file()
    if not store.path_exists(ARRAY_WEIGHTS_GROUP):
        store.create_group(ARRAY_WEIGHTS_GROUP)
    if not store.path_exists(METADATA_GROUP):
        store.create_group(METADATA_GROUP)
    if not store.path_exists(f"{METADATA_GROUP}/metric_names"):
        store.write_array(f"{METADATA_GROUP}/metric_names", list(metric_names))
    return store


@beartype
def save_weights_to_h5(
    store: H5Store,
    gene: str,
    array_weights: pd.DataFrame,
    metric_names: Sequence[str] = METRIC_NAMES,
) -> None:
    """
    Append the batch weights of one gene to the store.

    Metrics listed in `metric_names` but absent from `array_weights` are
    skipped. The batch label column `array` is written as strings.

    The gene name becomes a single group under `array_weights`. It must be
    non-empty, must not contain `/` and cannot be `.` or `..`.

    Raises:
        DataShapeError: If the gene name cannot be used as a group name.

    Examples:
        >>> tmp = getfixture("tmp_path")
        >>> store = initialize_metric_store(tmp / "metrics.h5")
        >>> weights = pd.DataFrame({"Estimate": [0.1, 0.2], "array": ["b1", "b2"]})
        >>> save_weights_to_h5(store, "g1", weights)
        >>> sorted(store.list_datasets("array_weights/g1"))
        ['Estimate', 'array']
    """
    if not gene or "/" in gene or gene in (".", ".."):
        raise DataShapeError(
            "Gene names stored as HDF5 groups must be non-empty and "
            "must not contain '/'",
            gene,
        )
    group = f"{ARRAY_WEIGHTS_GROUP}/{gene}"
    store.create_group(group)
    for metric in metric_names:
        if metric in array_weights.columns:
            store.write_array(
                f"{group}/{metric}", array_weights[metric].to_numpy(dtype=float)
            )
    if LABEL_DATASET in array_weights.columns:
        store.write_array(
            f"{group}/{LABEL_DATASET}",
            array_weights[LABEL_DATASET].astype(str).tolist(),
        )
    logger.debug(f"Saved batch weights of {gene} to {store.path}")
