"""Estimated marginal means contrasts and their exact power.

Marginal means are equal-weight averages of cell means (the design is
balanced). A contrast ``c`` over the marginal means maps to a linear
combination of cell means whose variance comes from the fitted model:

- ``multivariate``: unstructured pooled covariance of the within cells,
  ``df = df_E``.
- ``univariate``: sphericity-structured covariance, one error variance per
  within stratum, Satterthwaite df across the strata the contrast touches.

Each contrast's t ratio then goes through the noncentral F transform with
``F = t**2`` and ``df1 = 1``. No multiplicity adjustment is applied.

Validates against: R emmeans::emmeans(adjust = "none") on afex fits.
"""

from __future__ import annotations

import itertools
import math
import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from pyanovapower.design import DesignSpec
from pyanovapower.exact._common import MarginalMeansResult
from pyanovapower.exact._fit import LinearModel
from pyanovapower.exceptions import InvalidParameterError, UnsupportedContrastError
from pyanovapower.power import power_from_t

_POLY_NAMES = ("linear", "quadratic", "cubic", "quartic")


@dataclass(frozen=True)
class ComparisonSpec:
    """Parsed comparison grouping: contrasts among ``factors`` within each
    level combination of ``by``."""

    factors: tuple[str, ...]
    by: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContrastEstimate:
    """One contrast as reported by a marginal-means engine."""

    label: str
    by: str
    estimate: float
    se: float
    df: float
    t_ratio: float


@runtime_checkable
class MarginalMeansEngine(Protocol):
    """Computes contrasts of estimated marginal means from a fitted model."""

    def contrasts(
        self,
        model: LinearModel,
        spec: ComparisonSpec,
        contrast_type: str,
        emm_model: str,
    ) -> tuple[ContrastEstimate, ...]:
        ...


# ---------------------------------------------------------------------------
# Comparison grouping
# ---------------------------------------------------------------------------

def default_emm_comp(design: DesignSpec) -> str:
    """Right-hand side of the design's grouping formula, e.g. ``"a+b"``."""
    return design.grouping_formula.split("~", 1)[1].strip()


def parse_emm_comp(emm_comp: str, design: DesignSpec) -> ComparisonSpec:
    """Parse ``"a"``, ``"a+b"``, ``"a*b"`` or ``"a|b"`` against *design*.

    Raises
    ------
    InvalidParameterError
        On malformed input or factor names not in the design.
    """
    text = emm_comp.replace(" ", "")
    parts = text.split("|")
    if len(parts) > 2:
        raise InvalidParameterError(f"emm_comp may contain at most one '|', got {emm_comp!r}")

    def _names(chunk: str) -> tuple[str, ...]:
        names = tuple(x for x in re.split(r"[+*:]", chunk) if x)
        if not names:
            raise InvalidParameterError(f"emm_comp names no factors: {emm_comp!r}")
        for name in names:
            if name not in design.factor_names:
                raise InvalidParameterError(
                    f"emm_comp refers to unknown factor {name!r}; "
                    f"design factors are {design.factor_names}"
                )
        if len(set(names)) != len(names):
            raise InvalidParameterError(f"emm_comp repeats a factor: {emm_comp!r}")
        return names

    factors = _names(parts[0])
    by = _names(parts[1]) if len(parts) == 2 else ()
    overlap = set(factors) & set(by)
    if overlap:
        raise InvalidParameterError(
            f"Factors {sorted(overlap)} appear on both sides of '|' in {emm_comp!r}"
        )
    return ComparisonSpec(factors=factors, by=by)


# ---------------------------------------------------------------------------
# Contrast families
# ---------------------------------------------------------------------------

def _poly_contrasts(m: int) -> NDArray:
    """Orthogonal polynomial contrasts, m x (m-1), increasing in the last level.

    Each column is scaled so its smallest nonzero coefficient is +-1, which
    gives the integer coefficients of emmeans' ``poly.emmc`` (e.g. -1, 0, 1
    and 1, -2, 1 for three levels).
    """
    x = np.arange(m, dtype=float)
    q, _ = np.linalg.qr(np.vander(x, m, increasing=True))
    q = q[:, 1:]
    q = q * np.sign(q[-1, :])
    for j in range(q.shape[1]):
        col = np.abs(q[:, j])
        q[:, j] /= col[col > 1e-10 * col.max()].min()
    return q


def contrast_coefficients(
    contrast_type: str,
    labels: list[str],
) -> list[tuple[str, NDArray]]:
    """Named coefficient vectors over the marginal means *labels*."""
    m = len(labels)
    eye = np.eye(m)

    if contrast_type == "pairwise":
        return [
            (f"{labels[i]} - {labels[j]}", eye[i] - eye[j])
            for i, j in itertools.combinations(range(m), 2)
        ]
    if contrast_type == "revpairwise":
        return [
            (f"{labels[j]} - {labels[i]}", eye[j] - eye[i])
            for j in range(1, m) for i in range(j)
        ]
    if contrast_type == "eff":
        return [(f"{labels[i]} effect", eye[i] - 1.0 / m) for i in range(m)]
    if contrast_type == "del.eff":
        return [
            (f"{labels[i]} effect", (eye[i] - 1.0 / m) * m / (m - 1.0))
            for i in range(m)
        ]
    if contrast_type == "consec":
        return [
            (f"{labels[i + 1]} - {labels[i]}", eye[i + 1] - eye[i])
            for i in range(m - 1)
        ]
    if contrast_type == "poly":
        coefs = _poly_contrasts(m)
        names = [
            _POLY_NAMES[d] if d < len(_POLY_NAMES) else f"degree {d + 1}"
            for d in range(m - 1)
        ]
        return list(zip(names, coefs.T))
    if contrast_type in ("trt.vs.ctrl", "trt.vs.ctrl1"):
        return [(f"{labels[i]} - {labels[0]}", eye[i] - eye[0]) for i in range(1, m)]
    if contrast_type == "trt.vs.ctrlk":
        return [(f"{labels[i]} - {labels[-1]}", eye[i] - eye[-1]) for i in range(m - 1)]
    if contrast_type == "mean_chg":
        out = []
        for t in range(1, m):
            after = np.r_[np.zeros(t), np.full(m - t, 1.0 / (m - t))]
            before = np.r_[np.full(t, 1.0 / t), np.zeros(m - t)]
            out.append((f"{labels[t]}|{labels[t - 1]}", after - before))
        return out

    raise UnsupportedContrastError(f"Unsupported contrast_type {contrast_type!r}")


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _marginal_weights(
    design: DesignSpec,
    fixed: dict[str, str],
) -> NDArray:
    """Equal weights over the cells matching the *fixed* factor levels."""
    pos = {name: i for i, name in enumerate(design.factor_names)}
    mask = np.array([
        all(cell.levels[pos[name]] == lev for name, lev in fixed.items())
        for cell in design.cells
    ])
    return mask / mask.sum()


class LinearModelMarginalMeans:
    """Marginal-means contrasts computed from a :class:`LinearModel`."""

    def _as_matrix(self, model: LinearModel, c: NDArray) -> NDArray:
        """Cell-vector *c* as a groups x within-cells matrix."""
        out = np.zeros_like(model.means)
        for cell in model.design.cells:
            g, w = model.position(cell)
            out[g, w] = c[cell.index]
        return out

    def _variance(self, model: LinearModel, c: NDArray, emm_model: str) -> tuple[float, float]:
        """Variance of ``c @ cell_means`` and its degrees of freedom."""
        cm = self._as_matrix(model, c)
        n = model.n_per_group

        if emm_model == "multivariate":
            s = model.residual_covariance
            return float(np.trace(cm @ s @ cm.T)) / n, float(model.df_error)

        components = []
        for w_term in model.within_terms():
            p_mat = model.within_basis(w_term)
            d = p_mat.shape[1]
            df_stratum = model.df_error * d
            sigma2 = float(np.trace(p_mat.T @ model.sspe @ p_mat)) / df_stratum
            weight = float(np.sum((cm @ p_mat) ** 2)) / n
            if weight > 0.0:
                components.append((sigma2 * weight, df_stratum))

        var = sum(v for v, _ in components)
        denom = sum(v ** 2 / df for v, df in components)
        df = var ** 2 / denom if denom > 0.0 else float(model.df_error)
        return var, df

    def contrasts(
        self,
        model: LinearModel,
        spec: ComparisonSpec,
        contrast_type: str,
        emm_model: str,
    ) -> tuple[ContrastEstimate, ...]:
        design = model.design
        cell_means = model.cell_means()

        by_levels = [design.factor(name).levels for name in spec.by]
        primary_levels = [design.factor(name).levels for name in spec.factors]
        primary_combos = list(itertools.product(*primary_levels))
        labels = [" ".join(combo) for combo in primary_combos]
        coefs = contrast_coefficients(contrast_type, labels)

        out = []
        for by_combo in itertools.product(*by_levels):
            by_fixed = dict(zip(spec.by, by_combo))
            by_label = ", ".join(f"{k} = {v}" for k, v in by_fixed.items())

            # Rows: marginal means; columns: cells
            weights = np.vstack([
                _marginal_weights(design, {**by_fixed, **dict(zip(spec.factors, combo))})
                for combo in primary_combos
            ])

            for label, k in coefs:
                c = k @ weights
                estimate = float(c @ cell_means)
                var, df = self._variance(model, c, emm_model)
                se = math.sqrt(max(var, 0.0))
                if se > 0.0:
                    t_ratio = estimate / se
                else:
                    t_ratio = 0.0 if estimate == 0.0 else math.copysign(math.inf, estimate)
                out.append(ContrastEstimate(
                    label=label,
                    by=by_label,
                    estimate=estimate,
                    se=se,
                    df=df,
                    t_ratio=t_ratio,
                ))
        return tuple(out)


# ---------------------------------------------------------------------------
# Power
# ---------------------------------------------------------------------------

def emm_power(
    model: LinearModel,
    spec: ComparisonSpec,
    contrast_type: str = "pairwise",
    emm_model: str = "multivariate",
    alpha: float = 0.05,
    engine: MarginalMeansEngine | None = None,
) -> tuple[MarginalMeansResult, ...]:
    """Exact power of every marginal-means contrast.

    Parameters
    ----------
    model : LinearModel
        Fitted model of the exact dataset.
    spec : ComparisonSpec
        From :func:`parse_emm_comp`.
    contrast_type : str
        Contrast family.
    emm_model : str
        ``'multivariate'`` or ``'univariate'``.
    alpha : float
        Significance level.
    engine : MarginalMeansEngine, optional
        Defaults to :class:`LinearModelMarginalMeans`.

    Returns
    -------
    tuple of MarginalMeansResult
    """
    eng = engine if engine is not None else LinearModelMarginalMeans()
    estimates = eng.contrasts(model, spec, contrast_type, emm_model)

    results = []
    for est in estimates:
        pw = power_from_t(est.t_ratio, est.df, alpha=alpha)
        pes = est.t_ratio ** 2 / (est.t_ratio ** 2 + est.df) if math.isfinite(est.t_ratio) else 1.0
        results.append(MarginalMeansResult(
            contrast=est.label,
            by=est.by,
            estimate=est.estimate,
            se=est.se,
            df=est.df,
            t_ratio=est.t_ratio,
            partial_eta_squared=pes,
            cohen_f=pw.effect_size,
            noncentrality=pw.noncentrality,
            power=pw.power,
        ))
    return tuple(results)
