"""Factorial ANOVA and repeated-measures MANOVA on an exact dataset.

The long dataset is reshaped to one wide matrix per between-subject group
(subjects x within cells) and fitted as a multivariate linear model on the
cell means. Every effect is a between term T crossed with a within term W:

    H_T  = n * M' C_T M          hypothesis SSP of T (balanced groups)
    E    = sum_g R_g' R_g        residual SSP, df_E = N - g
    P_W  = orthonormal contrasts spanning W in the within cells

    univariate:   SS = tr(P' H_T P),  SSE = tr(P' E P),
                  df = (df_T * d_W, df_E * d_W)
    multivariate: eigenvalues of (P' E P)^-1 (P' H_T P) -> Pillai's trace

Greenhouse-Geisser and Huynh-Feldt epsilons come from ``P' E P`` of the
within term and scale both degrees of freedom of the corrected rows.

Validates against: R afex::aov_car(), car::Anova() for "mlm" fits.
"""

from __future__ import annotations

import functools
import itertools
import math
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.stats import f as f_dist

from pyanovapower.design import CellId, DesignSpec, Factor
from pyanovapower.exceptions import InvalidDesignError, InvalidParameterError

VALID_CORRECTIONS = ("none", "GG", "HF")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UnivariateTest:
    """One row of the univariate ANOVA table.

    ``num_df`` and ``den_df`` are already multiplied by ``epsilon`` when a
    sphericity correction was applied (``epsilon`` is 1 otherwise).
    """

    effect: str
    num_df: float
    den_df: float
    mse: float
    f: float
    pes: float
    p_value: float
    epsilon: float = 1.0


@dataclass(frozen=True)
class MultivariateTest:
    """One row of the repeated-measures MANOVA table (Pillai's trace)."""

    effect: str
    df: float
    test_stat: float
    approx_f: float
    num_df: float
    den_df: float
    p_value: float
    s: int = 1  # min(number of within contrasts, between df)


@dataclass(frozen=True)
class LinearModel:
    """Fitted multivariate linear model of an exact dataset.

    Attributes
    ----------
    design : DesignSpec
    groups : tuple of tuple of str
        Between-subject level combinations, in design order.
    within_cells : tuple of tuple of str
        Within-subject level combinations, in design order.
    n_per_group : int
    means : array, shape (g, w)
        Cell means, one row per group.
    sspe : array, shape (w, w)
        Residual sums of squares and products.
    df_error : int
        ``N - g``.
    """

    design: DesignSpec
    groups: tuple[tuple[str, ...], ...]
    within_cells: tuple[tuple[str, ...], ...]
    n_per_group: int
    means: NDArray[np.floating]
    sspe: NDArray[np.floating]
    df_error: int

    @property
    def residual_covariance(self) -> NDArray[np.floating]:
        """Pooled within-group covariance of the within cells."""
        return self.sspe / self.df_error

    def position(self, cell: CellId) -> tuple[int, int]:
        """(group row, within column) of *cell* in ``means``."""
        between = [lev for f, lev in zip(self.design.factors, cell.levels) if not f.within]
        within = [lev for f, lev in zip(self.design.factors, cell.levels) if f.within]
        return self.groups.index(tuple(between)), self.within_cells.index(tuple(within))

    def cell_means(self) -> NDArray[np.floating]:
        """Cell means as a vector in design cell order."""
        out = np.empty(self.design.n_cells)
        for cell in self.design.cells:
            g, w = self.position(cell)
            out[cell.index] = self.means[g, w]
        return out

    def within_basis(self, term: tuple[str, ...]) -> NDArray[np.floating]:
        """Orthonormal contrasts for within term *term* (``()`` = average)."""
        return _kron_all(
            _contrast_basis(f.n_levels) if f.name in term else _average_basis(f.n_levels)
            for f in self.design.within_factors
        )

    def within_terms(self) -> list[tuple[str, ...]]:
        return _terms([f.name for f in self.design.within_factors])


@dataclass(frozen=True)
class AnovaFit:
    """Univariate and multivariate tables of one fitted exact dataset."""

    univariate: tuple[UnivariateTest, ...]
    multivariate: tuple[MultivariateTest, ...]
    model: LinearModel
    correction: str
    backend_name: str

    def anova_table(self) -> pd.DataFrame:
        """Univariate table as a DataFrame indexed by effect."""
        return pd.DataFrame(
            {
                "num_Df": [r.num_df for r in self.univariate],
                "den_Df": [r.den_df for r in self.univariate],
                "MSE": [r.mse for r in self.univariate],
                "F": [r.f for r in self.univariate],
                "pes": [r.pes for r in self.univariate],
                "p": [r.p_value for r in self.univariate],
            },
            index=pd.Index([r.effect for r in self.univariate], name="effect"),
        )


@runtime_checkable
class AnovaBackend(Protocol):
    """Fits the factorial model of an exact dataset.

    Backends are stateless; everything they need arrives in ``fit``.
    """

    @property
    def name(self) -> str:
        ...

    def fit(self, data: pd.DataFrame, design: DesignSpec, correction: str) -> AnovaFit:
        ...


# ---------------------------------------------------------------------------
# Linear algebra helpers
# ---------------------------------------------------------------------------

def _terms(names: list[str]) -> list[tuple[str, ...]]:
    """``()`` then all non-empty subsets, by order then position (a, b, a:b)."""
    out: list[tuple[str, ...]] = [()]
    for order in range(1, len(names) + 1):
        out.extend(itertools.combinations(names, order))
    return out


def _kron_all(mats) -> NDArray:
    return functools.reduce(np.kron, mats, np.ones((1, 1)))


@functools.lru_cache(maxsize=None)
def _contrast_basis(levels: int) -> NDArray:
    """Orthonormal L x (L-1) basis orthogonal to the constant vector."""
    centered = np.eye(levels) - 1.0 / levels
    q, _ = np.linalg.qr(centered[:, : levels - 1])
    return q


def _average_basis(levels: int) -> NDArray:
    return np.full((levels, 1), 1.0 / math.sqrt(levels))


def _between_projector(factors: tuple[Factor, ...], term: tuple[str, ...]) -> NDArray:
    """Projector onto the cell-mean space of between term *term*."""
    mats = []
    for f in factors:
        avg = np.full((f.n_levels, f.n_levels), 1.0 / f.n_levels)
        mats.append(np.eye(f.n_levels) - avg if f.name in term else avg)
    return _kron_all(mats)


def _term_df(design: DesignSpec, term: tuple[str, ...]) -> int:
    return math.prod(design.factor(name).n_levels - 1 for name in term)


def _effect_name(design: DesignSpec, names: set[str]) -> str:
    if not names:
        return "(Intercept)"
    return ":".join(f.name for f in design.factors if f.name in names)


def _sphericity(e_w: NDArray, df_error: int) -> tuple[float, float]:
    """Greenhouse-Geisser and Huynh-Feldt epsilon for one within term."""
    d = e_w.shape[0]
    tr = float(np.trace(e_w))
    tr_sq = float(np.trace(e_w @ e_w))
    if tr_sq == 0.0:
        return 1.0, 1.0
    gg = tr ** 2 / (d * tr_sq)
    denom = d * (df_error - d * gg)
    hf = ((df_error + 1) * d * gg - 2.0) / denom if denom != 0.0 else math.inf
    return gg, min(1.0, hf)


def _pillai(h: NDArray, e: NDArray, q: int, df_res: int) -> tuple[float, float, float, float, int]:
    """Pillai's trace and its F approximation: (V, F, df1, df2, s)."""
    try:
        eig = np.clip(np.linalg.eigvals(np.linalg.solve(e, h)).real, 0.0, None)
    except np.linalg.LinAlgError as exc:
        raise InvalidDesignError(
            "Residual covariance of the within cells is singular; "
            "multivariate tests are undefined (is a correlation equal to 1?)"
        ) from exc

    test = float(np.sum(eig / (1.0 + eig)))
    p = eig.size
    s = min(p, q)
    n_ = 0.5 * (df_res - p - 1)
    m = 0.5 * (abs(p - q) - 1)
    tmp1 = 2 * m + s + 1
    tmp2 = 2 * n_ + s + 1
    if s - test <= 0.0:
        approx_f = math.inf
    else:
        approx_f = (tmp2 / tmp1 * test) / (s - test)
    return test, approx_f, s * tmp1, s * tmp2, s


def _ratio(num: float, den: float) -> float:
    if den > 0.0:
        return num / den
    return math.inf if num > 0.0 else 0.0


# ---------------------------------------------------------------------------
# Reshaping
# ---------------------------------------------------------------------------

def _wide_blocks(
    data: pd.DataFrame,
    design: DesignSpec,
) -> tuple[list[tuple[str, ...]], list[tuple[str, ...]], list[NDArray]]:
    """Split long data into one subjects x within-cells matrix per group."""
    missing = {"subject", "cond", "y"} - set(data.columns)
    if missing:
        raise InvalidDesignError(f"Data is missing columns: {sorted(missing)}")

    wide = data.pivot(index="subject", columns="cond", values="y")
    wide.columns = [str(c) for c in wide.columns]

    groups: list[tuple[str, ...]] = []
    cells_by_group: dict[tuple[str, ...], list[CellId]] = {}
    for cell in design.cells:
        g = design.group_of(cell)
        if g not in cells_by_group:
            groups.append(g)
            cells_by_group[g] = []
        cells_by_group[g].append(cell)

    within_cells = [
        tuple(lev for f, lev in zip(design.factors, cell.levels) if f.within)
        for cell in cells_by_group[groups[0]]
    ]

    blocks = []
    for g in groups:
        labels = [cell.label for cell in cells_by_group[g]]
        block = wide.loc[:, labels].dropna(how="any").to_numpy(dtype=float)
        blocks.append(block)

    sizes = {b.shape[0] for b in blocks}
    if len(sizes) != 1:
        raise InvalidDesignError(
            f"Exact ANOVA needs the same number of subjects per group, got {sorted(sizes)}"
        )
    return groups, within_cells, blocks


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class MultivariateLinearModelBackend:
    """Closed-form balanced-design fit on CPU (numpy)."""

    @property
    def name(self) -> str:
        return "cpu_mlm"

    def fit(self, data: pd.DataFrame, design: DesignSpec, correction: str = "none") -> AnovaFit:
        if correction not in VALID_CORRECTIONS:
            raise InvalidParameterError(
                f"Correction for sphericity can only be one of {VALID_CORRECTIONS}, "
                f"got {correction!r}"
            )

        groups, within_cells, blocks = _wide_blocks(data, design)
        n = blocks[0].shape[0]
        means = np.vstack([b.mean(axis=0) for b in blocks])
        resid = [b - b.mean(axis=0) for b in blocks]
        sspe = sum(r.T @ r for r in resid)
        df_error = n * len(blocks) - len(blocks)
        if df_error < 1:
            raise InvalidDesignError(f"No residual degrees of freedom (n = {n})")

        model = LinearModel(
            design=design,
            groups=tuple(groups),
            within_cells=tuple(within_cells),
            n_per_group=n,
            means=means,
            sspe=sspe,
            df_error=df_error,
        )

        between_terms = _terms([f.name for f in design.between_factors])
        hyp = {
            t: n * means.T @ _between_projector(design.between_factors, t) @ means
            for t in between_terms
        }

        univariate: list[UnivariateTest] = []
        multivariate: list[MultivariateTest] = []

        for w_term in model.within_terms():
            p_mat = model.within_basis(w_term)
            d = p_mat.shape[1]
            e_w = p_mat.T @ sspe @ p_mat
            sse = float(np.trace(e_w))

            eps = 1.0
            if d > 1 and correction != "none":
                gg, hf = _sphericity(e_w, df_error)
                eps = gg if correction == "GG" else hf

            for b_term in between_terms:
                h_w = p_mat.T @ hyp[b_term] @ p_mat
                df_t = _term_df(design, b_term)
                effect = _effect_name(design, set(b_term) | set(w_term))

                if b_term or w_term:
                    ss = max(float(np.trace(h_w)), 0.0)
                    df1 = df_t * d
                    df2 = df_error * d
                    mse = sse / df2
                    f_value = _ratio(ss / df1, mse)
                    pes = ss / (ss + sse) if ss + sse > 0.0 else 0.0
                    num_df, den_df = df1 * eps, df2 * eps
                    univariate.append(UnivariateTest(
                        effect=effect,
                        num_df=num_df,
                        den_df=den_df,
                        mse=mse,
                        f=f_value,
                        pes=pes,
                        p_value=float(f_dist.sf(f_value, num_df, den_df)),
                        epsilon=eps,
                    ))

                if design.has_within_factor:
                    v, approx_f, df1_m, df2_m, s = _pillai(h_w, e_w, df_t, df_error)
                    multivariate.append(MultivariateTest(
                        effect=effect,
                        df=float(df_t),
                        test_stat=v,
                        approx_f=approx_f,
                        num_df=df1_m,
                        den_df=df2_m,
                        p_value=float(f_dist.sf(approx_f, df1_m, df2_m)),
                        s=s,
                    ))

        return AnovaFit(
            univariate=tuple(univariate),
            multivariate=tuple(multivariate),
            model=model,
            correction=correction,
            backend_name=self.name,
        )


def fit_anova(
    data: pd.DataFrame,
    design: DesignSpec,
    correction: str = "none",
    backend: AnovaBackend | None = None,
) -> AnovaFit:
    """Fit the full factorial model of *design* to *data*.

    Parameters
    ----------
    data : DataFrame
        Long data with ``subject``, ``cond`` and ``y`` columns, as made by
        :func:`synthesize_dataset`.
    design : DesignSpec
    correction : str
        ``'none'``, ``'GG'`` (Greenhouse-Geisser) or ``'HF'`` (Huynh-Feldt).
    backend : AnovaBackend, optional
        Defaults to :class:`MultivariateLinearModelBackend`.

    Returns
    -------
    AnovaFit
        ``2**factors - 1`` univariate rows; multivariate rows (intercept
        included) only for designs with a within-subject factor.
    """
    be = backend if backend is not None else MultivariateLinearModelBackend()
    return be.fit(data, design, correction)
