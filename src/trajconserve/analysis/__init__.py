import trajconserve.analysis.conservation
import trajconserve.analysis.extract
import trajconserve.analysis.trajectory_transform
from trajconserve.analysis.conservation import (
    calculate_conservation,
    conservation_records,
    scale01,
)
from trajconserve.analysis.extract import extract_h5_metric
from trajconserve.analysis.trajectory_transform import (
    ExpressionTensor,
    TrajectoryTensorResult,
    anndata_to_trajectory_tensor,
    build_trajectory_tensor,
)

__all__ = [
    "ExpressionTensor",
    "TrajectoryTensorResult",
    "anndata_to_trajectory_tensor",
    "build_trajectory_tensor",
    "calculate_conservation",
    "conservation",
    "conservation_records",
    "extract",
    "extract_h5_metric",
    "scale01",
    "trajectory_transform",
]
