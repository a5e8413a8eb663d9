"""
Shared pytest fixtures, registered as a plugin by the repository conftest so
that both tests and doctests can request them.
"""

import numpy as np
import pandas as pd
import pytest

from trajconserve.analysis.conservation import calculate_conservation
from trajconserve.analysis.trajectory_transform import ExpressionTensor
from trajconserve.io.h5store import initialize_metric_store, save_weights_to_h5
from trajconserve.models.trajectory_model import (
    bayesian_gam_regression_nb_shape,
    prepare_data_for_gam,
)
from trajconserve.tests.utils.engines import FAIL_SENTINEL, DeterministicEngine
from trajconserve.utils import generate_trajectory_data


def _weights(estimates, labels):
    estimates = np.asarray(estimates, dtype=float)
    shape = np.exp(estimates)
    return pd.DataFrame(
        {
            "Estimate": estimates,
            "Est.Error": np.full(len(estimates), 0.1),
            "Q2.5": estimates - 0.2,
            "Q97.5": estimates + 0.2,
            "array": labels,
            "shape": shape,
            "weight": shape,
            "weight_norm": shape / shape.max(),
        }
    )


@pytest.fixture
def deterministic_engine():
    return DeterministicEngine()


@pytest.fixture
def gam_data():
    rng = np.random.default_rng(1)
    gene_data = rng.negative_binomial(4, 0.2, size=(2, 12)).astype(float)
    gene_data[1, :3] = np.nan
    return prepare_data_for_gam(gene_data, ["batch1", "batch2"])


@pytest.fixture
def expression_tensor():
    rng = np.random.default_rng(0)
    values = rng.negative_binomial(5, 0.25, size=(3, 10, 4)).astype(float)
    values[1, :2, :] = np.nan
    return ExpressionTensor(
        values=values,
        batches=("batch1", "batch2", "batch3"),
        bins=np.arange(1, 11),
        genes=("g1", "g2", "g3", "g4"),
    )


@pytest.fixture
def failing_tensor(expression_tensor):
    values = np.array(expression_tensor.values)
    values[0, 4, 2] = FAIL_SENTINEL
    return ExpressionTensor(
        values=values,
        batches=expression_tensor.batches,
        bins=expression_tensor.bins,
        genes=expression_tensor.genes,
    )


@pytest.fixture
def gene_model_result(gam_data, deterministic_engine):
    return bayesian_gam_regression_nb_shape(
        gam_data, engine=deterministic_engine, gene="g1"
    )


@pytest.fixture
def metric_store(tmp_path):
    """
    A store whose genes disagree on batch labels: g1 has b1, b2, b3 and g2
    has b2, b3.
    """
    path = tmp_path / "metrics.h5"
    store = initialize_metric_store(path)
    save_weights_to_h5(store, "g1", _weights([0.5, 1.0, 1.5], ["b1", "b2", "b3"]))
    save_weights_to_h5(store, "g2", _weights([2.0, 0.1], ["b2", "b3"]))
    return path


@pytest.fixture
def metric_matrix():
    return pd.DataFrame(
        {
            "stable": [2.0, 2.1, 1.9],
            "noisy": [0.5, 3.0, 0.2],
            "low": [0.3, 0.35, 0.25],
            "flat": [1.0, 1.0, 1.0],
        },
        index=["b1", "b2", "b3"],
    )


@pytest.fixture
def conservation_results(metric_matrix):
    return calculate_conservation(metric_matrix)


@pytest.fixture
def trajectory_adata():
    return generate_trajectory_data(n_cells=600, n_genes=5, random_seed=0)
