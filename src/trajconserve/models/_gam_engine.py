"""
NumPyro implementation of the negative binomial trajectory GAM.

The model is

    y ~ NegativeBinomial2(mu, shape)
    log(mu) = Intercept + s(x) + array
    log(shape) = 0 + array

with a cubic regression spline `s(x)` split into an unpenalized part with
normal priors and a penalized part whose coefficients are standard normal
deviates scaled by `sds`. Batch offsets use treatment coding against the
first level while the log-shape has one free coefficient per level.

This module imports jax and numpyro at import time and is loaded lazily by
`trajconserve.models.trajectory_model.default_engine`.
"""

from dataclasses import dataclass, field

import jax
import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist
import pandas as pd
from beartype import beartype
from beartype.typing import Dict, List, Optional, Sequence, Union
from jaxtyping import Array, Float, Int
from numpyro.diagnostics import split_gelman_rubin
from numpyro.infer import MCMC, NUTS

from trajconserve.errors import DataShapeError
from trajconserve.logging import configure_logging
from trajconserve.models.specification import (
    GAMSpecification,
    PriorSpecification,
    SamplingConfig,
)
from trajconserve.models.spline import (
    CubicRegressionSpline,
    cubic_regression_spline,
)

__all__ = [
    "GAMPosterior",
    "NumPyroGAMEngine",
    "negative_binomial_gam",
    "summarize_draws",
]

logger = configure_logging(__name__)

SUMMARY_COLUMNS = ["Estimate", "Est.Error", "Q2.5", "Q97.5"]


def negative_binomial_gam(
    X_fixed: Float[Array, "n fixed"],
    X_random: Float[Array, "n random"],
    X_array: Float[Array, "n offsets"],
    shape_index: Int[Array, "n"],
    n_levels: int,
    intercept_loc: float,
    priors: PriorSpecification,
    y: Optional[Int[Array, "n"]] = None,
):
    intercept = numpyro.sample(
        "Intercept",
        dist.StudentT(
            priors.intercept_df, intercept_loc, priors.intercept_scale
        ),
    )
    b_sx = numpyro.sample(
        "bs_sx",
        dist.Normal(0.0, priors.b_scale).expand([X_fixed.shape[1]]).to_event(1),
    )
    sds = numpyro.sample("sds_sx", dist.HalfNormal(priors.sds_scale))
    zs = numpyro.sample(
        "zs_sx",
        dist.Normal(0.0, 1.0).expand([X_random.shape[1]]).to_event(1),
    )
    b_shape = numpyro.sample(
        "b_shape_array",
        dist.Normal(0.0, priors.shape_scale).expand([n_levels]).to_event(1),
    )

    eta = intercept + X_fixed @ b_sx + X_random @ (sds * zs)
    if X_array.shape[1] > 0:
        b_array = numpyro.sample(
            "b_array",
            dist.Normal(0.0, priors.b_scale)
            .expand([X_array.shape[1]])
            .to_event(1),
        )
        eta = eta + X_array @ b_array

    shape = jnp.exp(b_shape[shape_index])
    with numpyro.plate("obs", X_fixed.shape[0]):
        numpyro.sample(
            "y",
            dist.NegativeBinomial2(mean=jnp.exp(eta), concentration=shape),
            obs=y,
        )


@beartype
def summarize_draws(
    draws: np.ndarray,
    index: Sequence[str],
) -> pd.DataFrame:
    """
    Summarize posterior draws by mean, standard deviation and the central
    95% interval.

    Args:
        draws (np.ndarray): Draws of shape `[n_draws, n_parameters]`.
        index (Sequence[str]): Parameter names.

    Returns:
        pd.DataFrame: Columns `Estimate`, `Est.Error`, `Q2.5`, `Q97.5`.

    Examples:
        >>> draws = np.column_stack([np.linspace(-1, 1, 401), np.ones(401)])
        >>> summary = summarize_draws(draws, ["a", "b"])
        >>> bool(abs(summary.loc["a", "Estimate"]) < 1e-9)
        True
        >>> float(summary.loc["b", "Est.Error"])
        0.0
    """
    draws = np.asarray(draws, dtype=float).reshape(draws.shape[0], -1)
    q_low, q_high = np.quantile(draws, [0.025, 0.975], axis=0)
    return pd.DataFrame(
        {
            "Estimate": draws.mean(axis=0),
            "Est.Error": draws.std(axis=0, ddof=1),
            "Q2.5": q_low,
            "Q97.5": q_high,
        },
        index=pd.Index(list(index), name="parameter"),
    )


@dataclass
class GAMPosterior:
    """
    Posterior draws of a fitted trajectory GAM.

    Holds plain numpy arrays so that the object can be pickled and reloaded
    without the sampler.

    Attributes:
        specification: The fitted model specification.
        smooth: The spline basis evaluated at the training covariate.
        levels: Batch labels, first level is the reference.
        samples: Draws flattened over chains, keyed by site name.
        r_hat: Largest split R-hat of each site.
        n_divergent: Number of divergent transitions after warmup.
        seed: Seed used for posterior predictive draws.
    """

    specification: GAMSpecification
    smooth: CubicRegressionSpline
    levels: List[str]
    samples: Dict[str, np.ndarray]
    r_hat: Dict[str, float] = field(default_factory=dict)
    n_divergent: int = 0
    seed: int = 0

    @property
    def n_draws(self) -> int:
        return len(self.samples["Intercept"])

    @property
    def max_r_hat(self) -> float:
        finite = [v for v in self.r_hat.values() if np.isfinite(v)]
        return max(finite) if finite else float("nan")

    def all_finite(self) -> bool:
        return all(np.isfinite(v).all() for v in self.samples.values())

    def parameter_names(self) -> Dict[str, List[str]]:
        names = {
            "Intercept": ["b_Intercept"],
            "bs_sx": [
                f"bs_sx_{i + 1}" for i in range(self.smooth.n_fixed)
            ],
            "sds_sx": ["sds_sx_1"],
            "zs_sx": [f"zs_sx_{i + 1}" for i in range(self.smooth.n_random)],
            "b_shape_array": [f"b_shape_array[{lvl}]" for lvl in self.levels],
        }
        if "b_array" in self.samples:
            names["b_array"] = [f"b_array[{lvl}]" for lvl in self.levels[1:]]
        return names

    def summary(self, prefix: str = "") -> pd.DataFrame:
        """
        Summarize every parameter whose name starts with `prefix`.

        Parameter names follow `b_Intercept`, `bs_sx_<i>`, `sds_sx_1`,
        `zs_sx_<i>`, `b_array[<label>]` and `b_shape_array[<label>]`.
        """
        frames = []
        for site, names in self.parameter_names().items():
            keep = [i for i, name in enumerate(names) if name.startswith(prefix)]
            if not keep:
                continue
            draws = self.samples[site].reshape(self.n_draws, -1)[:, keep]
            frames.append(summarize_draws(draws, [names[i] for i in keep]))
        if not frames:
            return pd.DataFrame(
                columns=SUMMARY_COLUMNS, index=pd.Index([], name="parameter")
            )
        return pd.concat(frames)

    def linear_predictor(
        self, x: np.ndarray, array: Union[str, Sequence[str]]
    ) -> np.ndarray:
        """Return draws of `log(mu)` with shape `[n_draws, len(x)]`."""
        x = np.atleast_1d(np.asarray(x, dtype=float))
        codes = self._codes(array, len(x))
        X_fixed, X_random = self.smooth.design(x)

        eta = (
            self.samples["Intercept"][:, None]
            + self.samples["bs_sx"] @ X_fixed.T
            + (self.samples["sds_sx"][:, None] * self.samples["zs_sx"])
            @ X_random.T
        )
        if "b_array" in self.samples:
            offsets = np.hstack(
                [np.zeros((self.n_draws, 1)), self.samples["b_array"]]
            )
            eta = eta + offsets[:, codes]
        return eta

    def predict(
        self,
        x: np.ndarray,
        array: Union[str, Sequence[str]],
    ) -> pd.DataFrame:
        """
        Summarize posterior predictive draws of `y` at covariate values `x`
        for batch `array`.
        """
        x = np.atleast_1d(np.asarray(x, dtype=float))
        codes = self._codes(array, len(x))
        mu = np.exp(self.linear_predictor(x, array))
        shape = np.exp(self.samples["b_shape_array"][:, codes])

        rng = np.random.default_rng(self.seed)
        draws = rng.negative_binomial(shape, shape / (shape + mu))
        summary = summarize_draws(draws, [str(i) for i in range(len(x))])
        summary.insert(0, "x", x)
        return summary.reset_index(drop=True)

    def _codes(self, array, n: int) -> np.ndarray:
        labels = [array] * n if isinstance(array, str) else list(array)
        if len(labels) != n:
            raise DataShapeError(
                f"Got {len(labels)} batch labels for {n} covariate values",
                "array",
            )
        unknown = sorted(set(labels) - set(self.levels))
        if unknown:
            raise DataShapeError(f"Unknown batch labels {unknown}", "array")
        lookup = {label: i for i, label in enumerate(self.levels)}
        return np.array([lookup[label] for label in labels], dtype=int)


def _treatment_contrasts(codes: np.ndarray, n_levels: int) -> np.ndarray:
    return (codes[:, None] == np.arange(1, n_levels)[None, :]).astype(float)


class NumPyroGAMEngine:
    """
    Fit the trajectory GAM by NUTS.

    Examples:
        >>> engine = NumPyroGAMEngine()
        >>> engine.name
        'numpyro'
    """

    name = "numpyro"

    def fit(
        self,
        specification: GAMSpecification,
        data: pd.DataFrame,
        priors: PriorSpecification,
        sampling: SamplingConfig,
    ) -> GAMPosterior:
        x = data[specification.covariate].to_numpy(dtype=float)
        y = data[specification.response].to_numpy(dtype=int)
        groups = data[specification.group]
        levels = [str(level) for level in groups.cat.categories]
        codes = groups.cat.codes.to_numpy()

        smooth = cubic_regression_spline(x, n_knots=specification.n_knots)
        X_fixed, X_random = smooth.design(x)
        X_array = _treatment_contrasts(codes, len(levels))
        median = float(np.median(y))
        intercept_loc = float(np.log(median)) if median > 0 else 0.0

        kernel = NUTS(
            negative_binomial_gam,
            target_accept_prob=sampling.target_accept_prob,
            max_tree_depth=sampling.max_tree_depth,
        )
        mcmc = MCMC(
            kernel,
            num_warmup=sampling.num_warmup,
            num_samples=sampling.num_samples,
            num_chains=sampling.num_chains,
            chain_method=sampling.chain_method,
            progress_bar=sampling.progress_bar,
        )
        mcmc.run(
            jax.random.PRNGKey(sampling.seed),
            X_fixed=jnp.asarray(X_fixed),
            X_random=jnp.asarray(X_random),
            X_array=jnp.asarray(X_array),
            shape_index=jnp.asarray(codes),
            n_levels=len(levels),
            intercept_loc=intercept_loc,
            priors=priors,
            y=jnp.asarray(y),
            extra_fields=("diverging",),
        )

        grouped = mcmc.get_samples(group_by_chain=True)
        r_hat = {
            site: float(np.nanmax(np.asarray(split_gelman_rubin(draws))))
            for site, draws in grouped.items()
        }
        n_divergent = int(np.asarray(mcmc.get_extra_fields()["diverging"]).sum())
        if n_divergent:
            logger.warning(
                f"{n_divergent} divergent transitions after warmup; "
                "consider raising target_accept_prob"
            )

        samples = {
            site: np.asarray(draws, dtype=float)
            for site, draws in mcmc.get_samples().items()
        }
        return GAMPosterior(
            specification=specification,
            smooth=smooth,
            levels=levels,
            samples=samples,
            r_hat=r_hat,
            n_divergent=n_divergent,
            seed=sampling.seed,
        )
