import json
from pathlib import Path

import pandas as pd
import pytest
from click.testing import CliRunner

from trajconserve import __version__
from trajconserve.cli import main
from trajconserve.tests.utils.engines import DeterministicEngine


def _invoke(args, **kwargs):
    runner = CliRunner()
    result = runner.invoke(
        main, args, obj={"engine": DeterministicEngine()}, **kwargs
    )
    assert result.exit_code == 0, result.output
    return Path(result.stdout.strip().splitlines()[-1])


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_pipeline_end_to_end(tmp_path, trajectory_adata):
    adata_path = tmp_path / "toy.h5ad"
    trajectory_adata.write_h5ad(adata_path)

    tensor_path = _invoke(
        [
            "preprocess",
            "--set",
            f"adata={adata_path}",
            "--set",
            "data_set_name=toy",
            "--set",
            "n_bins=10",
            "--set",
            f"processed_path={tmp_path / 'processed'}",
        ]
    )
    assert tensor_path == tmp_path / "processed" / "toy_tensor.pkl.zst"

    metrics_path = _invoke(
        [
            "fit",
            "--set",
            f"tensor_path={tensor_path}",
            "--set",
            f"output_dir={tmp_path / 'models'}",
            "--set",
            "gene_indices=[0, 1, 2]",
        ]
    )
    assert metrics_path == tmp_path / "models" / "model_metrics.h5"

    config = tmp_path / "conserve.json"
    config.write_text(
        json.dumps(
            {
                "h5_file": str(metrics_path),
                "output_dir": str(tmp_path / "reports"),
                "plot_types": ["histogram"],
            }
        )
    )
    table_path = _invoke(["conserve", "--config", str(config)])
    table = pd.read_csv(table_path)
    assert len(table) == 3
    assert (tmp_path / "reports" / "conservation_Estimate_histogram.pdf").exists()

    matrix_path = _invoke(
        [
            "extract",
            "--set",
            f"h5_file={metrics_path}",
            "--set",
            "metric=weight_norm",
            "--set",
            f"output_dir={tmp_path / 'reports'}",
        ]
    )
    matrix = pd.read_csv(matrix_path, index_col="array")
    assert matrix.shape == (3, 3)
    assert matrix.max().max() == pytest.approx(1.0)


def test_unknown_field_is_rejected():
    result = CliRunner().invoke(main, ["extract", "--set", "colour=red"])
    assert result.exit_code != 0
    assert "colour" in result.output


def test_malformed_setting_is_rejected():
    result = CliRunner().invoke(main, ["extract", "--set", "metric"])
    assert result.exit_code != 0
    assert "KEY=VALUE" in result.output
