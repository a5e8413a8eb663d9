import numpy as np
import pandas as pd
import pytest

from trajconserve.analysis.extract import extract_h5_metric
from trajconserve.errors import DataShapeError, StoreConsistencyWarning
from trajconserve.io.h5store import H5Store, initialize_metric_store


def test_extract_union_of_labels(metric_store):
    with pytest.warns(StoreConsistencyWarning, match="differ"):
        matrix = extract_h5_metric(metric_store, "Estimate")

    assert matrix.index.tolist() == ["b1", "b2", "b3"]
    assert matrix.index.name == "array"
    assert matrix.columns.tolist() == ["g1", "g2"]
    np.testing.assert_allclose(matrix["g1"], [0.5, 1.0, 1.5])
    assert np.isnan(matrix.loc["b1", "g2"])
    np.testing.assert_allclose(matrix.loc[["b2", "b3"], "g2"], [2.0, 0.1])


def test_extract_other_metric(metric_store):
    with pytest.warns(StoreConsistencyWarning):
        matrix = extract_h5_metric(metric_store, "weight_norm")
    assert matrix["g1"].max() == pytest.approx(1.0)
    assert matrix["g2"].max() == pytest.approx(1.0)


def test_extract_consistent_store_does_not_warn(tmp_path, recwarn):
    store = initialize_metric_store(tmp_path / "metrics.h5")
    for gene, values in [("a", [1.0, 2.0]), ("b", [3.0, 4.0])]:
        store.create_group(f"array_weights/{gene}")
        store.write_array(f"array_weights/{gene}/Estimate", values)
        store.write_array(f"array_weights/{gene}/array", ["x", "y"])

    matrix = extract_h5_metric(tmp_path / "metrics.h5")
    expected = pd.DataFrame(
        {"a": [1.0, 2.0], "b": [3.0, 4.0]},
        index=pd.Index(["x", "y"], name="array"),
    )
    pd.testing.assert_frame_equal(matrix, expected)
    assert not [w for w in recwarn if w.category is StoreConsistencyWarning]


def test_extract_skips_incomplete_genes(tmp_path):
    store = initialize_metric_store(tmp_path / "metrics.h5")
    store.create_group("array_weights/good")
    store.write_array("array_weights/good/Estimate", [1.0, 2.0])
    store.write_array("array_weights/good/array", ["x", "y"])
    store.create_group("array_weights/unlabeled")
    store.write_array("array_weights/unlabeled/Estimate", [1.0, 2.0])
    store.create_group("array_weights/mismatched")
    store.write_array("array_weights/mismatched/Estimate", [1.0])
    store.write_array("array_weights/mismatched/array", ["x", "y"])

    with pytest.warns(StoreConsistencyWarning) as record:
        matrix = extract_h5_metric(tmp_path / "metrics.h5")

    assert matrix.columns.tolist() == ["good"]
    messages = " ".join(str(w.message) for w in record)
    assert "unlabeled" in messages
    assert "mismatched" in messages


def test_extract_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        extract_h5_metric(tmp_path / "absent.h5")


def test_extract_without_array_weights_group(tmp_path):
    store = H5Store(tmp_path / "empty.h5")
    store.create_file()
    with pytest.raises(DataShapeError, match="array_weights"):
        extract_h5_metric(store.path)


def test_extract_unknown_metric(metric_store):
    with pytest.warns(StoreConsistencyWarning):
        with pytest.raises(DataShapeError, match="Q50"):
            extract_h5_metric(metric_store, "Q50")
