import dataclasses
from typing import Any, List, Optional

from mashumaro.mixins.json import DataClassJSONMixin

from trajconserve.configuration import (
    create_dataclass_from_callable,
    infer_type_from_default,
)
from trajconserve.interfaces import (
    ConservationInterface,
    ExtractMetricInterface,
    FitModelsInterface,
    PreprocessDataInterface,
)


def test_infer_type_from_default():
    assert infer_type_from_default(0.5) is float
    assert infer_type_from_default("x") is str
    assert infer_type_from_default(None) == Optional[Any]


def test_create_dataclass_from_callable_overrides_and_excludes():
    def task(data, n: int = 3, names: Optional[List[str]] = None, engine=None):
        pass

    fields = create_dataclass_from_callable(
        task, {"data": (str, "data.h5")}, exclude=("engine",)
    )
    assert [name for name, _, _ in fields] == ["data", "n", "names"]

    Interface = dataclasses.make_dataclass(
        "Interface", fields, bases=(DataClassJSONMixin,)
    )
    instance = Interface.from_dict({"names": ["a", "b"]})
    assert instance.data == "data.h5"
    assert instance.n == 3
    assert instance.names == ["a", "b"]


def test_create_dataclass_from_class():
    class Task:
        def __init__(self, seed: int = 1):
            self.seed = seed

    assert create_dataclass_from_callable(Task) == [("seed", int, 1)]


def test_preprocess_interface_defaults():
    interface = PreprocessDataInterface()
    assert interface.adata == "simulated"
    assert interface.processed_path == "data/processed"
    assert interface.n_bins == 100
    assert interface.ensure_tail is True


def test_fit_models_interface_round_trip():
    interface = FitModelsInterface.from_dict(
        {"gene_indices": [0, 3], "num_chains": 2, "max_r_hat": None}
    )
    assert "engine" not in interface.to_dict()
    restored = FitModelsInterface.from_json(interface.to_json())
    assert restored == interface
    assert restored.gene_indices == [0, 3]
    assert restored.output_dir == "models"


def test_conservation_interfaces_defaults():
    assert ConservationInterface().h5_file == "models/model_metrics.h5"
    assert ConservationInterface().plot_types is None
    assert ExtractMetricInterface().metric == "Estimate"
    assert ExtractMetricInterface().output_dir == "reports"
