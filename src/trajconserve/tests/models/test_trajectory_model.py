import numpy as np
import pandas as pd
import pytest

from trajconserve.errors import ConfigurationError, ModelFitError
from trajconserve.models import trajectory_model
from trajconserve.models.specification import SamplingConfig
from trajconserve.models.trajectory_model import (
    bayesian_gam_regression_nb_shape,
    default_engine,
    prepare_data_for_gam,
    run_trajectory_model,
)
from trajconserve.tests.utils.engines import (
    DeterministicEngine,
    FailingEngine,
    MomentPosterior,
    NonFiniteEngine,
)


class _StaticPosterior(MomentPosterior):
    def __init__(self, data, levels, max_r_hat):
        super().__init__(data, levels)
        self.max_r_hat = max_r_hat


class _ConvergenceEngine:
    def __init__(self, max_r_hat):
        self.max_r_hat = max_r_hat

    def fit(self, specification, data, priors, sampling):
        return _StaticPosterior(
            data, data["array"].cat.categories, self.max_r_hat
        )


class _RecordingEngine(DeterministicEngine):
    def __init__(self):
        self.calls = []

    def fit(self, specification, data, priors, sampling):
        self.calls.append((specification, priors, sampling))
        return super().fit(specification, data, priors, sampling)


def test_prepare_data_for_gam_flattens_and_drops_missing():
    gene_data = np.array(
        [
            [0.4, 1.6, np.nan],
            [np.nan, 2.5, 3.5],
        ]
    )
    data = prepare_data_for_gam(gene_data, ["b1", "b2"])

    assert data["x"].tolist() == [1, 2, 2, 3]
    assert data["y"].tolist() == [0, 2, 2, 4]
    assert data["array"].astype(str).tolist() == ["b1", "b1", "b2", "b2"]
    assert list(data["array"].cat.categories) == ["b1", "b2"]
    assert data["y"].dtype.kind == "i"


def test_prepare_data_for_gam_removes_unused_levels():
    gene_data = np.array([[np.nan, np.nan], [1.0, 2.0]])
    data = prepare_data_for_gam(gene_data, ["empty", "b2"])
    assert list(data["array"].cat.categories) == ["b2"]


def test_prepare_data_for_gam_checks_batch_count():
    with pytest.raises(ValueError):
        prepare_data_for_gam(np.ones((2, 3)), ["only"])


def test_array_weights_columns_and_normalization(gam_data):
    result = bayesian_gam_regression_nb_shape(
        gam_data, engine=DeterministicEngine(), gene="g1"
    )
    weights = result.array_weights

    assert list(weights.columns) == [
        "Estimate",
        "Est.Error",
        "Q2.5",
        "Q97.5",
        "array",
        "shape",
        "weight",
        "weight_norm",
    ]
    assert weights["array"].tolist() == ["batch1", "batch2"]
    assert all(isinstance(label, str) for label in weights["array"])
    np.testing.assert_allclose(weights["shape"], np.exp(weights["Estimate"]))
    np.testing.assert_allclose(weights["weight"], weights["shape"])
    assert weights["weight_norm"].max() == pytest.approx(1.0)
    assert (weights["weight_norm"] > 0).all()
    assert (weights["weight_norm"] <= 1).all()


def test_diagnostics_per_batch(gam_data):
    result = bayesian_gam_regression_nb_shape(
        gam_data, engine=DeterministicEngine()
    )
    diagnostics = result.diagnostics.set_index("array")
    batch1 = gam_data.loc[gam_data["array"] == "batch1", "y"]

    assert list(result.diagnostics.columns) == [
        "array",
        "mean",
        "variance",
        "overdispersion",
        "n_obs",
    ]
    assert diagnostics.loc["batch1", "n_obs"] == 12
    assert diagnostics.loc["batch2", "n_obs"] == 9
    assert diagnostics.loc["batch1", "mean"] == pytest.approx(batch1.mean())
    assert diagnostics.loc["batch1", "variance"] == pytest.approx(
        batch1.var(ddof=1)
    )
    assert diagnostics.loc["batch1", "overdispersion"] == pytest.approx(
        batch1.var(ddof=1) / batch1.mean()
    )


def test_engine_failure_becomes_model_fit_error(gam_data):
    with pytest.raises(ModelFitError) as excinfo:
        bayesian_gam_regression_nb_shape(
            gam_data, engine=FailingEngine(), gene="Sox2"
        )
    assert excinfo.value.gene == "Sox2"
    assert "RuntimeError" in excinfo.value.reason


def test_non_finite_summary_is_model_fit_error(gam_data):
    with pytest.raises(ModelFitError, match="non-finite"):
        bayesian_gam_regression_nb_shape(
            gam_data, engine=NonFiniteEngine(), gene="g1"
        )


def test_r_hat_limit(gam_data):
    with pytest.raises(ModelFitError, match="R-hat"):
        bayesian_gam_regression_nb_shape(
            gam_data, engine=_ConvergenceEngine(1.5), gene="g1"
        )

    relaxed = SamplingConfig.from_iterations(100, max_r_hat=None)
    result = bayesian_gam_regression_nb_shape(
        gam_data, engine=_ConvergenceEngine(1.5), sampling=relaxed
    )
    assert len(result.array_weights) == 2


def test_sampling_defaults_follow_n_samples(gam_data):
    engine = _RecordingEngine()
    bayesian_gam_regression_nb_shape(
        gam_data, n_knots=4, n_samples=300, engine=engine
    )
    specification, priors, sampling = engine.calls[0]

    assert specification.n_knots == 4
    assert sampling.num_chains == 4
    assert (sampling.num_warmup, sampling.num_samples) == (150, 150)
    assert sampling.target_accept_prob == 0.95
    assert sampling.max_tree_depth == 12
    assert priors.b_scale == 5.0
    assert priors.shape_scale == 2.0


def test_run_trajectory_model_by_index_and_name(expression_tensor):
    by_index = run_trajectory_model(
        expression_tensor, 1, engine=DeterministicEngine()
    )
    by_name = run_trajectory_model(
        expression_tensor, "g2", engine=DeterministicEngine()
    )

    assert by_index.gene == by_name.gene == "g2"
    pd.testing.assert_frame_equal(by_index.array_weights, by_name.array_weights)
    assert by_index.array_weights["array"].tolist() == list(
        expression_tensor.batches
    )


def test_run_trajectory_model_rejects_bad_index(expression_tensor):
    with pytest.raises(IndexError):
        run_trajectory_model(
            expression_tensor, 10, engine=DeterministicEngine()
        )


def test_default_engine_reports_missing_dependency(monkeypatch):
    def missing(name, install_hint=None):
        raise ConfigurationError(f"The '{name}' package is required")

    monkeypatch.setattr(trajectory_model, "require_module", missing)
    with pytest.raises(ConfigurationError, match="jax"):
        default_engine()
