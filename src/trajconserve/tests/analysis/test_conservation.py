import numpy as np
import pandas as pd
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays

from trajconserve.analysis.conservation import (
    CONSERVATION_COLUMNS,
    ConservationRecord,
    calculate_conservation,
    conservation_records,
    scale01,
)


@given(
    arrays(
        dtype=np.float64,
        shape=st.integers(min_value=1, max_value=50),
        elements=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False),
    )
)
@settings(max_examples=75, deadline=None)
def test_scale01_bounds(values):
    scaled = scale01(values)
    assert scaled.shape == values.shape
    assert np.all((scaled >= 0) & (scaled <= 1))
    if values.min() < values.max():
        assert scaled[np.argmin(values)] == 0.0
        assert scaled[np.argmax(values)] == 1.0


def test_scale01_degenerate_inputs():
    assert scale01([2.0]).tolist() == [0.5]
    assert np.isnan(scale01([np.nan, np.nan])).all()
    scaled = scale01([np.nan, 1.0, 3.0])
    assert np.isnan(scaled[0])
    assert scaled[1:].tolist() == [0.0, 1.0]


def test_calculate_conservation_columns_and_order(conservation_results):
    assert list(conservation_results.columns) == CONSERVATION_COLUMNS
    assert conservation_results["gene"].tolist() == [
        "stable",
        "flat",
        "low",
        "noisy",
    ]
    scores = conservation_results["conservation_score"].to_numpy()
    assert scores[0] == pytest.approx(1.0)
    assert scores[-1] == pytest.approx(0.0)
    assert np.all(np.diff(scores) <= 0)


def test_calculate_conservation_summary_statistics(conservation_results):
    stable = conservation_results.set_index("gene").loc["stable"]
    assert stable["mean_estimate"] == pytest.approx(2.0)
    assert stable["sd_estimate"] == pytest.approx(0.1)
    assert stable["cv"] == pytest.approx(0.05)
    assert stable["range_estimate"] == pytest.approx(0.2)
    assert stable["mean_norm"] == pytest.approx(1.0)
    assert bool(stable["is_conserved"])

    noisy = conservation_results.set_index("gene").loc["noisy"]
    assert noisy["cv_norm"] == pytest.approx(0.0)
    assert not bool(noisy["is_conserved"])


def test_threshold_controls_conserved_flag(metric_matrix):
    strict = calculate_conservation(metric_matrix, conservation_threshold=0.99)
    lenient = calculate_conservation(metric_matrix, conservation_threshold=0.0)
    assert strict["is_conserved"].sum() == 1
    assert lenient["is_conserved"].all()


def test_mean_weight_only_ranks_by_mean(metric_matrix):
    results = calculate_conservation(
        metric_matrix, mean_weight=1.0, variability_weight=0.0
    )
    assert results["gene"].tolist() == ["stable", "noisy", "flat", "low"]


def test_higher_mean_never_lowers_score(metric_matrix):
    shifted = metric_matrix.copy()
    shifted["low"] = shifted["low"] * 2
    before = calculate_conservation(
        metric_matrix, normalize_scores=False
    ).set_index("gene")
    after = calculate_conservation(shifted, normalize_scores=False).set_index(
        "gene"
    )
    assert after.loc["low", "conservation_score"] > before.loc[
        "low", "conservation_score"
    ]


def test_unnormalized_scores(metric_matrix):
    results = calculate_conservation(metric_matrix, normalize_scores=False)
    by_gene = results.set_index("gene")

    assert by_gene.loc["stable", "mean_norm"] == pytest.approx(2.0)
    assert by_gene.loc["stable", "cv_norm"] == pytest.approx(20.0)
    assert by_gene.loc["stable", "conservation_score"] == pytest.approx(11.0)
    assert np.isinf(by_gene.loc["flat", "cv_norm"])
    assert results["gene"].iloc[0] == "flat"


def test_near_zero_mean_scores_nan_and_sorts_last():
    matrix = pd.DataFrame(
        {"centered": [1.0, -1.0, 0.0], "a": [1.0, 1.2, 0.8], "b": [3.0, 3.0, 2.5]},
        index=["b1", "b2", "b3"],
    )
    results = calculate_conservation(matrix)
    assert results["gene"].iloc[-1] == "centered"
    last = results.iloc[-1]
    assert np.isnan(last["cv"])
    assert np.isnan(last["conservation_score"])
    assert not bool(last["is_conserved"])


def test_genes_with_missing_batches(metric_store):
    with pytest.warns(UserWarning):
        results = calculate_conservation(metric_store, metric="Estimate")
    g2 = results.set_index("gene").loc["g2"]
    assert g2["mean_estimate"] == pytest.approx(1.05)
    assert g2["range_estimate"] == pytest.approx(1.9)


def test_ties_keep_input_order():
    matrix = pd.DataFrame(
        {"first": [1.0, 2.0], "second": [1.0, 2.0], "top": [5.0, 5.1]},
        index=["b1", "b2"],
    )
    results = calculate_conservation(matrix)
    assert results["gene"].tolist() == ["top", "first", "second"]


def test_conservation_records(conservation_results):
    records = conservation_records(conservation_results)
    assert len(records) == 4
    assert isinstance(records[0], ConservationRecord)
    assert records[0].gene == "stable"
    assert records[0].is_conserved is True
    assert isinstance(records[0].conservation_score, float)
