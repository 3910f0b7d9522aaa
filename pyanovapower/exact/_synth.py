"""Exact-moment data synthesis.

Draws a random n x k matrix, removes its column means, rotates it onto an
orthonormal basis and scales that basis by the symmetric square root of
the target covariance. The result has sample mean ``mu`` and sample
covariance ``sigma`` exactly, whatever the base draw.

Validates against: R MASS::mvrnorm(empirical = TRUE)
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray

from pyanovapower.design import DesignSpec
from pyanovapower.exceptions import InvalidDesignError, NotPositiveSemidefiniteError

_EIG_TOL = 1e-10


def _psd_decomposition(sigma: NDArray) -> tuple[NDArray, NDArray]:
    """Eigen-decompose *sigma*, descending, with negative round-off clipped."""
    if not np.allclose(sigma, sigma.T, rtol=1e-10, atol=1e-12):
        raise InvalidDesignError("Covariance matrix must be symmetric")

    evals, evecs = np.linalg.eigh(sigma)
    order = np.argsort(evals)[::-1]
    evals = evals[order]
    evecs = evecs[:, order]

    scale = max(float(np.abs(evals).max()), 1.0)
    if evals[-1] < -_EIG_TOL * scale:
        raise NotPositiveSemidefiniteError(
            f"Covariance matrix is not positive semi-definite "
            f"(smallest eigenvalue {evals[-1]:.6g})",
            min_eigenvalue=float(evals[-1]),
        )
    return np.clip(evals, 0.0, None), evecs


def exact_sample(
    n: int,
    mu: ArrayLike,
    sigma: ArrayLike,
    seed: int | np.random.Generator | None = None,
) -> NDArray[np.floating]:
    """Draw an n x k sample with exactly the given mean and covariance.

    Parameters
    ----------
    n : int
        Number of rows.
    mu : array-like, shape (k,)
        Target column means.
    sigma : array-like, shape (k, k)
        Target covariance (``ddof=1``), symmetric positive semi-definite.
    seed : int, Generator or None
        Base draw. Changes the individual values, never the moments.

    Returns
    -------
    array, shape (n, k)

    Raises
    ------
    NotPositiveSemidefiniteError
        If *sigma* has a negative eigenvalue.
    InvalidDesignError
        If the rank of *sigma* exceeds ``n - 1``, the most a sample of n
        rows can carry.
    """
    mu = np.asarray(mu, dtype=float).ravel()
    sigma = np.asarray(sigma, dtype=float)
    k = mu.size
    if sigma.shape != (k, k):
        raise InvalidDesignError(f"sigma must be {k}x{k}, got {sigma.shape}")

    evals, evecs = _psd_decomposition(sigma)
    rank = int(np.sum(evals > _EIG_TOL * max(float(evals[0]), 1.0)))
    if rank > n - 1:
        raise InvalidDesignError(
            f"n = {n} rows can carry a covariance of rank at most {n - 1}; "
            f"sigma has rank {rank}"
        )

    rng = np.random.default_rng(seed)
    z = rng.standard_normal((n, k))
    z -= z.mean(axis=0)

    # Orthonormal columns orthogonal to the constant vector
    u, _, _ = np.linalg.svd(z, full_matrices=False)
    basis = u[:, :rank] * np.sqrt(n - 1.0)

    root = evecs[:, :rank] * np.sqrt(evals[:rank])
    return mu + basis @ root.T


def synthesize_dataset(
    design: DesignSpec,
    seed: int | np.random.Generator | None = None,
) -> pd.DataFrame:
    """Exact dataset for *design* in long format.

    The design's skeleton gets a ``y`` column. Each between-subject group
    is an independent set of subjects, so its within cells are drawn on
    their own with :func:`exact_sample`: row i of every cell in a group
    belongs to the same subject, and the covariance a group has to carry
    is only its block of ``sigma_matrix``.

    Raises
    ------
    InvalidDesignError
        If ``design.n`` is below the number of design cells, or a group's
        covariance block has rank above ``n - 1`` (only possible when the
        group spans all cells, i.e. a fully within-subject design).
    NotPositiveSemidefiniteError
        If a group's covariance block has a negative eigenvalue.
    """
    if design.n < design.n_cells:
        raise InvalidDesignError(
            f"Exact power needs n >= the number of design cells "
            f"({design.n_cells}), got n = {design.n}"
        )

    groups: dict[tuple[str, ...], list[int]] = {}
    for cell in design.cells:
        groups.setdefault(design.group_of(cell), []).append(cell.index)

    rng = np.random.default_rng(seed)
    wide = np.empty((design.n, design.n_cells))
    for idx in groups.values():
        block = design.sigma_matrix[np.ix_(idx, idx)]
        wide[:, idx] = exact_sample(design.n, design.mu[idx], block, seed=rng)

    data = design.long_skeleton.copy()
    # Cell-major skeleton: column j fills rows j*n .. (j+1)*n - 1
    data["y"] = wide.T.reshape(-1)
    return data
