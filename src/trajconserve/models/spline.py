"""
Cubic regression spline smooths for the trajectory GAM.

The basis is parameterized by the function values at `k` knots placed evenly
through the sorted unique covariate values, with natural end conditions. A
sum-to-zero constraint over the design points removes the smooth's level so
it is identifiable next to a model intercept. The wiggliness penalty is then
diagonalized so that the smooth splits into unpenalized columns, estimated
as ordinary fixed effects, and penalized columns whose coefficients are
standard normal deviates scaled by a single standard deviation `sds`.
"""

from dataclasses import dataclass

import numpy as np
from beartype import beartype
from beartype.typing import Tuple, Union
from jaxtyping import Float

from trajconserve.errors import DataShapeError

__all__ = [
    "CubicRegressionSpline",
    "cubic_regression_spline",
    "place_knots",
]

_NULL_SPACE_TOLERANCE = 1e-8


@beartype
def place_knots(x: np.ndarray, n_knots: int) -> np.ndarray:
    """
    Place knots evenly through the sorted unique values of `x`.

    Examples:
        >>> place_knots(np.arange(1, 11, dtype=float), 4).tolist()
        [1.0, 4.0, 7.0, 10.0]
    """
    if n_knots < 3:
        raise ValueError("A cubic regression spline requires at least 3 knots")
    unique = np.unique(np.asarray(x, dtype=float))
    if len(unique) < n_knots:
        raise DataShapeError(
            f"{len(unique)} unique covariate values cannot support "
            f"{n_knots} knots",
            "n_knots",
        )
    return np.quantile(unique, np.linspace(0.0, 1.0, n_knots))


def _penalty_matrices(knots: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return the map from knot values to second derivatives and the penalty."""
    k = len(knots)
    h = np.diff(knots)

    D = np.zeros((k - 2, k))
    B = np.zeros((k - 2, k - 2))
    for i in range(k - 2):
        D[i, i] = 1.0 / h[i]
        D[i, i + 1] = -1.0 / h[i] - 1.0 / h[i + 1]
        D[i, i + 2] = 1.0 / h[i + 1]
        B[i, i] = (h[i] + h[i + 1]) / 3.0
        if i < k - 3:
            B[i, i + 1] = h[i + 1] / 6.0
            B[i + 1, i] = h[i + 1] / 6.0

    second_derivatives = np.linalg.solve(B, D)
    F = np.vstack([np.zeros(k), second_derivatives, np.zeros(k)])
    S = D.T @ second_derivatives
    return F, (S + S.T) / 2.0


def _unconstrained_basis(
    x: np.ndarray, knots: np.ndarray, F: np.ndarray
) -> np.ndarray:
    x = np.clip(np.asarray(x, dtype=float), knots[0], knots[-1])
    k = len(knots)
    j = np.clip(np.searchsorted(knots, x, side="right") - 1, 0, k - 2)

    lower, upper = knots[j], knots[j + 1]
    h = upper - lower
    a_minus = (upper - x) / h
    a_plus = (x - lower) / h
    c_minus = ((upper - x) ** 3 / h - h * (upper - x)) / 6.0
    c_plus = ((x - lower) ** 3 / h - h * (x - lower)) / 6.0

    X = c_minus[:, None] * F[j] + c_plus[:, None] * F[j + 1]
    rows = np.arange(len(x))
    X[rows, j] += a_minus
    X[rows, j + 1] += a_plus
    return X


@dataclass(frozen=True)
class CubicRegressionSpline:
    """
    A centered, penalty-reparameterized cubic regression spline.

    Attributes:
        knots: Knot locations.
        F: Map from knot values to second derivatives at the knots.
        constraint: Null space basis of the sum-to-zero constraint.
        fixed_transform: Columns spanning the unpenalized subspace.
        random_transform: Columns spanning the penalized subspace, scaled by
            the inverse square root of their penalty eigenvalues.
    """

    knots: np.ndarray
    F: np.ndarray
    constraint: np.ndarray
    fixed_transform: np.ndarray
    random_transform: np.ndarray

    @property
    def n_fixed(self) -> int:
        return self.fixed_transform.shape[1]

    @property
    def n_random(self) -> int:
        return self.random_transform.shape[1]

    def design(
        self, x: Union[np.ndarray, list]
    ) -> Tuple[Float[np.ndarray, "n fixed"], Float[np.ndarray, "n random"]]:
        """
        Evaluate the unpenalized and penalized design columns at `x`.

        Values outside the knot range are clamped to the boundary knots.
        """
        basis = _unconstrained_basis(np.asarray(x), self.knots, self.F)
        centered = basis @ self.constraint
        return centered @ self.fixed_transform, centered @ self.random_transform


@beartype
def cubic_regression_spline(
    x: np.ndarray,
    n_knots: int = 5,
) -> CubicRegressionSpline:
    """
    Construct a cubic regression spline smooth of `x` with `n_knots` basis
    functions.

    Args:
        x (np.ndarray): Covariate values at the design points.
        n_knots (int, optional): Number of knots. Default is 5.

    Returns:
        CubicRegressionSpline: The smooth, ready to evaluate design matrices.

    Examples:
        >>> x = np.repeat(np.arange(1, 21, dtype=float), 2)
        >>> smooth = cubic_regression_spline(x, n_knots=5)
        >>> smooth.n_fixed, smooth.n_random
        (1, 3)
        >>> fixed, random = smooth.design(x)
        >>> bool(np.allclose(np.hstack([fixed, random]).sum(axis=0), 0.0))
        True
    """
    x = np.asarray(x, dtype=float)
    knots = place_knots(x, n_knots)
    F, S = _penalty_matrices(knots)

    basis = _unconstrained_basis(x, knots, F)
    column_sums = basis.sum(axis=0).reshape(-1, 1)
    q, _ = np.linalg.qr(column_sums, mode="complete")
    constraint = q[:, 1:]

    S_constrained = constraint.T @ S @ constraint
    eigenvalues, eigenvectors = np.linalg.eigh(S_constrained)
    penalized = eigenvalues > _NULL_SPACE_TOLERANCE * eigenvalues.max()

    fixed_transform = eigenvectors[:, ~penalized]
    random_transform = eigenvectors[:, penalized] / np.sqrt(
        eigenvalues[penalized]
    )

    return CubicRegressionSpline(
        knots=knots,
        F=F,
        constraint=constraint,
        fixed_transform=fixed_transform,
        random_transform=random_transform,
    )
