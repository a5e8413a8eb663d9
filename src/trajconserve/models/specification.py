"""
Model, prior and sampling specifications handed to the inference engine.

These containers carry no dependency on the inference library so that they
can be constructed, serialized and validated without it.
"""

from dataclasses import dataclass, replace

from beartype import beartype
from beartype.typing import Optional
from mashumaro.mixins.json import DataClassJSONMixin

__all__ = [
    "GAMSpecification",
    "PriorSpecification",
    "SamplingConfig",
]


@dataclass(frozen=True)
class GAMSpecification(DataClassJSONMixin):
    """
    Negative binomial GAM with a smooth of `covariate`, an additive offset
    per level of `group`, and an independent shape parameter per level of
    `group`.

    Examples:
        >>> GAMSpecification(n_knots=5).formula
        'y ~ s(x, bs = "cr", k = 5) + array; shape ~ 0 + array'
    """

    response: str = "y"
    covariate: str = "x"
    group: str = "array"
    n_knots: int = 5
    family: str = "negbinomial"

    @property
    def formula(self) -> str:
        return (
            f'{self.response} ~ s({self.covariate}, bs = "cr", '
            f"k = {self.n_knots}) + {self.group}; "
            f"shape ~ 0 + {self.group}"
        )


@dataclass(frozen=True)
class PriorSpecification(DataClassJSONMixin):
    """
    Weakly informative priors.

    Attributes:
        b_scale: Scale of the zero-mean normal prior on fixed effects.
        shape_scale: Scale of the zero-mean normal prior on the log-shape
            coefficients.
        sds_scale: Scale of the half-normal prior on the smooth's standard
            deviation.
        intercept_df: Degrees of freedom of the Student-t intercept prior.
        intercept_scale: Scale of the Student-t intercept prior.
    """

    b_scale: float = 5.0
    shape_scale: float = 2.0
    sds_scale: float = 2.0
    intercept_df: float = 3.0
    intercept_scale: float = 2.5


@dataclass(frozen=True)
class SamplingConfig(DataClassJSONMixin):
    """
    NUTS sampling configuration.

    Attributes:
        num_chains: Number of MCMC chains.
        num_warmup: Warmup iterations per chain.
        num_samples: Retained iterations per chain.
        target_accept_prob: Target acceptance probability of step size
            adaptation.
        max_tree_depth: Maximum NUTS tree depth.
        chain_method: "parallel", "sequential" or "vectorized".
        seed: Random seed.
        progress_bar: Whether to display the sampler progress bar.
        max_r_hat: Largest split R-hat accepted as converged, or None to
            skip the check.
    """

    num_chains: int = 4
    num_warmup: int = 1000
    num_samples: int = 1000
    target_accept_prob: float = 0.95
    max_tree_depth: int = 12
    chain_method: str = "parallel"
    seed: int = 0
    progress_bar: bool = False
    max_r_hat: Optional[float] = 1.1

    @classmethod
    @beartype
    def from_iterations(cls, n_samples: int = 2000, **kwargs) -> "SamplingConfig":
        """
        Split `n_samples` iterations per chain evenly into warmup and
        retained draws.

        Examples:
            >>> config = SamplingConfig.from_iterations(2000)
            >>> config.num_warmup, config.num_samples
            (1000, 1000)
        """
        if n_samples < 2:
            raise ValueError("n_samples must be at least 2")
        num_warmup = n_samples // 2
        return cls(
            num_warmup=num_warmup,
            num_samples=n_samples - num_warmup,
            **kwargs,
        )

    def replace(self, **kwargs) -> "SamplingConfig":
        return replace(self, **kwargs)
