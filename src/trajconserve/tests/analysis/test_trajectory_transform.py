import numpy as np
import pandas as pd
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays
from scipy import sparse

from trajconserve.analysis.trajectory_transform import (
    ExpressionTensor,
    anndata_to_trajectory_tensor,
    bin_pseudotime,
    build_trajectory_tensor,
    calculate_bin_means,
    examine_trajectory_tail,
    filter_batches,
    filter_genes,
    reshape_to_3d,
)
from trajconserve.errors import DataShapeError


finite_pseudotime = arrays(
    dtype=np.float64,
    shape=st.integers(min_value=2, max_value=200),
    elements=st.floats(
        min_value=-1e3, max_value=1e3, allow_nan=False, allow_infinity=False
    ),
).filter(lambda x: x.max() - x.min() > 1e-6)


@given(x=finite_pseudotime, n_bins=st.integers(min_value=1, max_value=150))
@settings(max_examples=75, deadline=None)
def test_bin_pseudotime_labels_within_range(x, n_bins):
    bins = bin_pseudotime(x, n_bins=n_bins)
    assert bins.shape == x.shape
    assert bins.min() >= 1
    assert bins.max() <= n_bins
    assert bins[np.argmin(x)] == 1
    assert bins[np.argmax(x)] == n_bins


@given(x=finite_pseudotime, n_bins=st.integers(min_value=1, max_value=50))
@settings(max_examples=50, deadline=None)
def test_bin_pseudotime_is_monotone(x, n_bins):
    order = np.argsort(x, kind="stable")
    assert np.all(np.diff(bin_pseudotime(x, n_bins=n_bins)[order]) >= 0)


def test_bin_pseudotime_interior_break_goes_to_lower_bin():
    bins = bin_pseudotime([0.0, 0.5, 1.0], n_bins=2)
    assert bins.tolist() == [1, 1, 2]


def test_bin_pseudotime_rejects_constant_input():
    with pytest.raises(DataShapeError, match="degenerate"):
        bin_pseudotime(np.full(10, 0.3), n_bins=5)


def test_bin_pseudotime_rejects_non_finite_input():
    with pytest.raises(DataShapeError):
        bin_pseudotime([0.0, np.nan, 1.0], n_bins=2)


def test_bin_pseudotime_rejects_empty_input():
    with pytest.raises(DataShapeError):
        bin_pseudotime(np.array([]), n_bins=2)


def test_calculate_bin_means_dense_and_sparse_agree():
    expression = np.array(
        [
            [1.0, 3.0, 0.0, 4.0, 2.0],
            [0.0, 0.0, 5.0, 1.0, 1.0],
        ]
    )
    batches = ["b2", "b2", "b1", "b1", "b2"]
    bins = [1, 1, 2, 2, 3]

    dense = calculate_bin_means(expression, batches, bins, gene_names=["x", "y"])
    sparse_means = calculate_bin_means(
        sparse.csr_matrix(expression), batches, bins, gene_names=["x", "y"]
    )

    assert dense.columns.tolist() == [("b2", 1), ("b2", 3), ("b1", 2)]
    assert dense.columns.names == ["batch", "bin"]
    np.testing.assert_allclose(dense.loc["x"].to_numpy(), [2.0, 2.0, 2.0])
    np.testing.assert_allclose(dense.loc["y"].to_numpy(), [0.0, 1.0, 3.0])
    pd.testing.assert_frame_equal(dense, sparse_means)


def test_calculate_bin_means_keeps_labels_with_separators():
    means = calculate_bin_means(
        np.array([[1.0, 2.0]]), ["batch_a_1", "batch_a_1"], [7, 7]
    )
    assert means.columns.tolist() == [("batch_a_1", 7)]


def test_filter_genes_uses_strict_rounded_threshold():
    columns = pd.MultiIndex.from_tuples(
        [("a", i) for i in range(1, 11)], names=["batch", "bin"]
    )
    means = pd.DataFrame(
        [
            [1.0] * 2 + [0.0] * 8,
            [1.0] * 1 + [0.0] * 9,
            [0.0] * 10,
        ],
        index=["two", "one", "none"],
        columns=columns,
    )
    assert filter_genes(means, threshold=0.1) == ["two"]


def test_filter_batches_requires_more_than_threshold_bins():
    columns = pd.MultiIndex.from_tuples(
        [("a", 1), ("a", 2), ("a", 3), ("b", 1), ("b", 2)],
        names=["batch", "bin"],
    )
    means = pd.DataFrame(np.ones((1, 5)), columns=columns)
    assert filter_batches(means, n_bins=10, threshold=0.2) == ["a"]
    assert filter_batches(means, n_bins=10, threshold=0.1) == ["a", "b"]


def test_examine_trajectory_tail_counts_distinct_bins():
    metadata = pd.DataFrame(
        {
            "batch": ["a"] * 6 + ["b"] * 3,
            "pseudotime_binned": [9, 9, 9, 9, 10, 1, 8, 9, 10],
        }
    )
    assert examine_trajectory_tail(
        metadata, n_bins=10, tail_width=0.3, tail_num=0.2
    ) == ["b"]


def test_reshape_to_3d_ignores_out_of_range_bins():
    tensor = reshape_to_3d(
        np.array([[1.0, 2.0, 3.0]]),
        batches=["a", "a", "b"],
        bins=[1, 5, 2],
        n_bins=3,
        genes=["g"],
    )
    assert tensor.shape == (2, 3, 1)
    assert tensor.values[0, 0, 0] == 1.0
    assert np.isnan(tensor.values[0, 1:, 0]).all()
    assert tensor.values[1, 1, 0] == 3.0


def test_expression_tensor_is_read_only(expression_tensor):
    with pytest.raises(ValueError):
        expression_tensor.values[0, 0, 0] = 1.0


def test_expression_tensor_validates_bins():
    with pytest.raises(DataShapeError):
        ExpressionTensor(
            values=np.zeros((1, 2, 1)),
            batches=("a",),
            bins=np.array([0, 1]),
            genes=("g",),
        )


def test_expression_tensor_gene_access(expression_tensor):
    assert expression_tensor.gene_index("g3") == 2
    np.testing.assert_array_equal(
        expression_tensor.gene_slice("g3"), expression_tensor.gene_slice(2)
    )
    with pytest.raises(KeyError):
        expression_tensor.gene_index("missing")


def test_build_trajectory_tensor_shapes_and_missing_entries():
    rng = np.random.default_rng(0)
    n_cells = 400
    pseudotime = rng.uniform(0, 1, n_cells)
    batch = np.where(np.arange(n_cells) % 2 == 0, "b1", "b2")
    expression = rng.poisson(3.0, size=(3, n_cells)).astype(float)

    # b2 never reaches the late trajectory
    keep = ~((batch == "b2") & (pseudotime > 0.4))
    expression = expression[:, keep]
    pseudotime, batch = pseudotime[keep], batch[keep]

    result = build_trajectory_tensor(
        expression,
        pseudotime,
        batch,
        gene_names=["g1", "g2", "g3"],
        n_bins=10,
        ensure_tail=False,
    )
    tensor = result.tensor
    assert tensor.shape == (2, 10, 3)
    assert tensor.batches == ("b1", "b2")
    assert np.isnan(tensor.values[1, 5:, :]).all()
    assert not np.isnan(tensor.values[0]).any()

    with_tail = build_trajectory_tensor(
        expression,
        pseudotime,
        batch,
        gene_names=["g1", "g2", "g3"],
        n_bins=10,
        ensure_tail=True,
    )
    assert with_tail.tensor.batches == ("b1",)


def test_build_trajectory_tensor_drops_non_finite_pseudotime():
    expression = np.ones((1, 6))
    pseudotime = np.array([0.0, 0.2, np.nan, 0.6, 0.8, 1.0])
    result = build_trajectory_tensor(
        expression,
        pseudotime,
        ["a"] * 6,
        n_bins=5,
        gene_threshold=0.0,
        batch_threshold=0.0,
        ensure_tail=False,
    )
    assert len(result.metadata) == 5


def test_build_trajectory_tensor_reports_empty_gene_set():
    with pytest.raises(DataShapeError, match="gene_threshold"):
        build_trajectory_tensor(
            np.zeros((2, 20)),
            np.linspace(0, 1, 20),
            ["a"] * 20,
            n_bins=5,
        )


def test_build_trajectory_tensor_reports_empty_batch_set():
    with pytest.raises(DataShapeError, match="batch_threshold"):
        build_trajectory_tensor(
            np.ones((2, 20)),
            np.linspace(0, 1, 20),
            ["a"] * 20,
            n_bins=5,
            batch_threshold=1.0,
        )


def test_anndata_to_trajectory_tensor(trajectory_adata):
    result = anndata_to_trajectory_tensor(
        trajectory_adata, "pseudotime", "batch", n_bins=10
    )
    assert result.tensor.shape == (3, 10, 5)
    assert result.tensor.genes == tuple(trajectory_adata.var_names)
    assert set(result.batch_names) == {"batch1", "batch2", "batch3"}


def test_anndata_to_trajectory_tensor_missing_column(trajectory_adata):
    with pytest.raises(DataShapeError, match="stage"):
        anndata_to_trajectory_tensor(trajectory_adata, "stage", "batch")
