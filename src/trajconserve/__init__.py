"""
trajconserve

Bayesian scoring of how consistently genes follow their expression
trajectory across batches.

Expression is binned along pseudotime into a batch × bin × gene tensor, a
negative binomial GAM with a per-batch shape is fit to every gene, and the
posterior shape estimates stored in an HDF5 metric store are summarized into
a conservation score per gene.
"""

from importlib import metadata

import trajconserve.analysis
import trajconserve.io
import trajconserve.logging
import trajconserve.models
import trajconserve.plots
import trajconserve.tasks
import trajconserve.utils

try:
    __version__ = metadata.version(__package__)
except metadata.PackageNotFoundError:
    __version__ = "unknown"

del metadata

__all__ = [
    "analysis",
    "io",
    "logging",
    "models",
    "plots",
    "tasks",
    "utils",
]
