"""
Exception and warning types raised across trajconserve.

Per-gene model failures (`ModelFitError`) are recoverable and are absorbed by
`trajconserve.tasks.run_models.run_multiple_models`; configuration and data
shape errors abort the enclosing call.
"""

import importlib
from types import ModuleType
from typing import Optional

from beartype import beartype

__all__ = [
    "ConfigurationError",
    "DataShapeError",
    "ModelFitError",
    "StoreConsistencyWarning",
    "TrajConserveError",
    "require_module",
]


class TrajConserveError(Exception):
    """Base class for trajconserve errors."""


class ConfigurationError(TrajConserveError):
    """A required external library is not available."""


class DataShapeError(TrajConserveError, ValueError):
    """
    Input data cannot be turned into the requested structure.

    Args:
        message (str): Description of the problem.
        identifier (str, optional): The offending gene, metric, file or
            parameter name.
    """

    def __init__(self, message: str, identifier: Optional[str] = None):
        self.identifier = identifier
        if identifier is not None:
            message = f"{message} [{identifier}]"
        super().__init__(message)


class ModelFitError(TrajConserveError):
    """
    The Bayesian model for a single gene could not be fit.

    Examples:
        >>> error = ModelFitError("Sox2", "split R-hat 1.42 exceeds 1.1")
        >>> error.gene
        'Sox2'
        >>> str(error)
        'Model fit failed for gene Sox2: split R-hat 1.42 exceeds 1.1'
    """

    def __init__(self, gene: Optional[str], reason: str):
        self.gene = gene
        self.reason = reason
        super().__init__(f"Model fit failed for gene {gene}: {reason}")


class StoreConsistencyWarning(UserWarning):
    """A gene in the metric store is incomplete or disagrees with others."""


@beartype
def require_module(name: str, install_hint: Optional[str] = None) -> ModuleType:
    """
    Import a required collaborator library or raise `ConfigurationError`.

    Args:
        name (str): Importable module name.
        install_hint (str, optional): How to install the library.

    Returns:
        ModuleType: The imported module.

    Examples:
        >>> require_module("json").__name__
        'json'
    """
    try:
        return importlib.import_module(name)
    except ImportError as e:
        hint = install_hint or f"pip install {name}"
        raise ConfigurationError(
            f"The '{name}' package is required but could not be imported. "
            f"Install it with: {hint}"
        ) from e
