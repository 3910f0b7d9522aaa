"""Power of all cell-vs-cell comparisons of an exact dataset.

Every unordered pair of cells is compared with a t test: paired when the
two cells are correlated (same subjects), independent otherwise. Each
comparison stands alone; no multiplicity correction is applied.
"""

from __future__ import annotations

import itertools

import numpy as np
import pandas as pd

from pyanovapower.design import CellId, DesignSpec
from pyanovapower.exact._common import PairwiseResult
from pyanovapower.power import power_d_exact, power_dz_exact


def _cell_values(data: pd.DataFrame, cell: CellId) -> np.ndarray:
    """Responses of *cell* ordered by subject."""
    rows = data.loc[data["cond"] == cell.label, ["subject", "y"]]
    return rows.sort_values("subject")["y"].to_numpy(dtype=float)


def pairwise_power(
    data: pd.DataFrame,
    design: DesignSpec,
    alpha: float = 0.05,
) -> tuple[PairwiseResult, ...]:
    """Exact power and effect size for each pair of design cells.

    Parameters
    ----------
    data : DataFrame
        Exact long data (``subject``, ``cond``, ``y``).
    design : DesignSpec
        Supplies the cell order and the covariance matrix. A zero
        covariance between two cells means independent samples.
    alpha : float
        Significance level.

    Returns
    -------
    tuple of PairwiseResult
        ``C(k, 2)`` rows in ``itertools.combinations`` order over the
        design cells; labels are ``"<cell_a>_<cell_b>"``.
    """
    values = {cell: _cell_values(data, cell) for cell in design.cells}

    results = []
    for a, b in itertools.combinations(design.cells, 2):
        paired = design.sigma_matrix[b.index, a.index] != 0.0
        if paired:
            res = power_dz_exact(values[a], values[b], alpha=alpha)
        else:
            res = power_d_exact(values[a], values[b], alpha=alpha)

        results.append(PairwiseResult(
            comparison=f"{a.label}_{b.label}",
            cell_a=a,
            cell_b=b,
            paired=bool(paired),
            statistic=res.statistic,
            df=res.df[0],
            effect_size=res.effect_size,
            power=res.power,
        ))
    return tuple(results)
