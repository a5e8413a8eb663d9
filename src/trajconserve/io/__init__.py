from trajconserve.io.compressedpickle import CompressedPickle
from trajconserve.io.h5store import (
    H5Store,
    initialize_metric_store,
    save_weights_to_h5,
)

__all__ = [
    "CompressedPickle",
    "H5Store",
    "initialize_metric_store",
    "save_weights_to_h5",
]
