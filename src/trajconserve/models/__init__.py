"""
Per-gene trajectory models.

The NumPyro engine in `trajconserve.models._gam_engine` is imported on first
use by `default_engine` so that the rest of the package works without jax.
"""

from trajconserve.models.specification import (
    GAMSpecification,
    PriorSpecification,
    SamplingConfig,
)
from trajconserve.models.spline import (
    CubicRegressionSpline,
    cubic_regression_spline,
)
from trajconserve.models.trajectory_model import (
    GeneModelResult,
    bayesian_gam_regression_nb_shape,
    default_engine,
    prepare_data_for_gam,
    run_trajectory_model,
)

__all__ = [
    "CubicRegressionSpline",
    "GAMSpecification",
    "GeneModelResult",
    "PriorSpecification",
    "SamplingConfig",
    "bayesian_gam_regression_nb_shape",
    "cubic_regression_spline",
    "default_engine",
    "prepare_data_for_gam",
    "run_trajectory_model",
]
