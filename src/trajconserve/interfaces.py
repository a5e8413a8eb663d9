from dataclasses import make_dataclass
from typing import TYPE_CHECKING, Any, Dict, Tuple, Type

from mashumaro.mixins.json import DataClassJSONMixin

from trajconserve.configuration import create_dataclass_from_callable
from trajconserve.tasks.conservation import conservation_dataset, extract_dataset
from trajconserve.tasks.preprocess import preprocess_dataset
from trajconserve.tasks.run_models import fit_dataset

__all__ = [
    "ConservationInterface",
    "ExtractMetricInterface",
    "FitModelsInterface",
    "PreprocessDataInterface",
]

if TYPE_CHECKING:

    class PreprocessDataInterface(DataClassJSONMixin):
        pass

    class FitModelsInterface(DataClassJSONMixin):
        pass

    class ConservationInterface(DataClassJSONMixin):
        pass

    class ExtractMetricInterface(DataClassJSONMixin):
        pass


# Path-like and in-memory parameters of the tasks are exposed as strings.
preprocess_data_types_defaults: Dict[str, Tuple[Type, Any]] = {
    "adata": (str, "simulated"),
    "processed_path": (str, "data/processed"),
}

PreprocessDataInterface = make_dataclass(
    "PreprocessDataInterface",
    create_dataclass_from_callable(
        preprocess_dataset, preprocess_data_types_defaults
    ),
    bases=(DataClassJSONMixin,),
)
PreprocessDataInterface.__module__ = __name__

fit_models_types_defaults: Dict[str, Tuple[Type, Any]] = {
    "tensor_path": (str, "data/processed/simulated_tensor.pkl.zst"),
    "output_dir": (str, "models"),
}

FitModelsInterface = make_dataclass(
    "FitModelsInterface",
    create_dataclass_from_callable(
        fit_dataset, fit_models_types_defaults, exclude=("engine",)
    ),
    bases=(DataClassJSONMixin,),
)
FitModelsInterface.__module__ = __name__

conservation_types_defaults: Dict[str, Tuple[Type, Any]] = {
    "h5_file": (str, "models/model_metrics.h5"),
    "output_dir": (str, "reports"),
}

ConservationInterface = make_dataclass(
    "ConservationInterface",
    create_dataclass_from_callable(
        conservation_dataset, conservation_types_defaults
    ),
    bases=(DataClassJSONMixin,),
)
ConservationInterface.__module__ = __name__

ExtractMetricInterface = make_dataclass(
    "ExtractMetricInterface",
    create_dataclass_from_callable(
        extract_dataset, conservation_types_defaults
    ),
    bases=(DataClassJSONMixin,),
)
ExtractMetricInterface.__module__ = __name__
