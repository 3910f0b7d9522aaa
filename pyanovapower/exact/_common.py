"""Options, result rows and the result bundle of exact power analysis."""

from __future__ import annotations

import numbers
from dataclasses import asdict, dataclass, field
from typing import Any

import pandas as pd

from pyanovapower.design import CellId
from pyanovapower.exact._fit import VALID_CORRECTIONS, AnovaFit
from pyanovapower.exceptions import InvalidParameterError, UnsupportedContrastError
from pyanovapower.power._common import _check_alpha

VALID_EMM_MODELS = ("univariate", "multivariate")
VALID_CONTRASTS = (
    "pairwise",
    "revpairwise",
    "eff",
    "consec",
    "poly",
    "del.eff",
    "trt.vs.ctrl",
    "trt.vs.ctrl1",
    "trt.vs.ctrlk",
    "mean_chg",
)
# Families whose p-values are multiplicity-adjusted; no exact power exists.
_ADJUSTED_CONTRASTS = ("tukey", "dunnett")

_ROUND_DIG = 4


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExactOptions:
    """Settings of one exact power analysis.

    Attributes
    ----------
    alpha_level : float
        Significance level, in (0, 1).
    correction : str
        Sphericity correction: ``'none'``, ``'GG'`` or ``'HF'``.
    emm : bool
        Also compute power for estimated marginal means contrasts.
    emm_model : str
        ``'multivariate'`` (unstructured covariance) or ``'univariate'``
        (sphericity-structured, pooled error strata).
    contrast_type : str
        Contrast family, one of ``VALID_CONTRASTS``.
    emm_comp : str or None
        Comparison grouping, e.g. ``"a"``, ``"a+b"`` or ``"a|b"``.
        Defaults to all factors of the design.
    seed : int or None
        Seed of the synthesizer's base draw. Results do not depend on it.
    plot : bool
        Build the descriptive figure.

    Raises
    ------
    InvalidParameterError, UnsupportedContrastError
        On construction, if any setting is invalid.
    """

    alpha_level: float = 0.05
    correction: str = "none"
    emm: bool = False
    emm_model: str = "multivariate"
    contrast_type: str = "pairwise"
    emm_comp: str | None = None
    seed: int | None = None
    plot: bool = True

    def __post_init__(self) -> None:
        _check_exact_args(self)


def _check_exact_args(options: ExactOptions) -> None:
    """Validate exact-analysis options.

    Rules
    -----
    - *alpha_level* must be in (0, 1).
    - *correction* must be ``'none'``, ``'GG'`` or ``'HF'``.
    - *emm_model* must be ``'univariate'`` or ``'multivariate'``.
    - *contrast_type* must be in ``VALID_CONTRASTS``; tukey and dunnett
      are rejected explicitly.
    - *emm_comp*, if given, must be a non-empty string.
    """
    _check_alpha(options.alpha_level, "alpha_level")

    if options.correction not in VALID_CORRECTIONS:
        raise InvalidParameterError(
            f"Correction for sphericity can only be one of {VALID_CORRECTIONS}, "
            f"got {options.correction!r}"
        )

    if options.emm_model not in VALID_EMM_MODELS:
        raise InvalidParameterError(
            f"emm_model must be one of {VALID_EMM_MODELS}, got {options.emm_model!r}"
        )

    if options.contrast_type in _ADJUSTED_CONTRASTS:
        raise UnsupportedContrastError(
            f"contrast_type {options.contrast_type!r} is multiplicity-adjusted and "
            f"has no exact power; use one of {VALID_CONTRASTS}"
        )
    if options.contrast_type not in VALID_CONTRASTS:
        raise UnsupportedContrastError(
            f"contrast_type must be one of {VALID_CONTRASTS}, got {options.contrast_type!r}"
        )

    if options.emm_comp is not None:
        if not isinstance(options.emm_comp, str) or not options.emm_comp.strip():
            raise InvalidParameterError(
                f"emm_comp must be a non-empty string, got {options.emm_comp!r}"
            )

    if options.seed is not None and (
        isinstance(options.seed, bool) or not isinstance(options.seed, numbers.Integral)
    ):
        raise InvalidParameterError(f"seed must be an int or None, got {options.seed!r}")


# ---------------------------------------------------------------------------
# Result rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EffectResult:
    """Power of one ANOVA effect (main effect or interaction)."""

    effect: str
    num_df: float
    den_df: float
    mse: float
    f: float
    partial_eta_squared: float
    p_value: float
    cohen_f: float
    noncentrality: float
    critical_f: float
    power: float  # percent


@dataclass(frozen=True)
class MultivariateEffectResult:
    """Power of one repeated-measures MANOVA effect (Pillai's trace)."""

    effect: str
    df: float
    pillai_trace: float
    approx_f: float
    num_df: float
    den_df: float
    p_value: float
    cohen_f: float
    noncentrality: float
    critical_f: float
    power: float  # percent


@dataclass(frozen=True)
class PairwiseResult:
    """Power of one cell-vs-cell comparison.

    ``effect_size`` is Cohen's d for independent cells and d_z for paired
    cells. No multiplicity correction is applied.
    """

    comparison: str
    cell_a: CellId
    cell_b: CellId
    paired: bool
    statistic: float
    df: float
    effect_size: float
    power: float  # percent


@dataclass(frozen=True)
class MarginalMeansResult:
    """Power of one estimated-marginal-means contrast (unadjusted)."""

    contrast: str
    by: str
    estimate: float
    se: float
    df: float
    t_ratio: float
    partial_eta_squared: float
    cohen_f: float
    noncentrality: float
    power: float  # percent


def _rows_to_frame(rows, index: str, drop: tuple[str, ...] = ()) -> pd.DataFrame:
    records = [{k: v for k, v in asdict(r).items() if k not in drop} for r in rows]
    frame = pd.DataFrame.from_records(records)
    if frame.empty:
        return frame
    return frame.set_index(index)


# ---------------------------------------------------------------------------
# Result bundle
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExactResult:
    """Result of :func:`anova_exact`.

    Attributes
    ----------
    dataset : DataFrame
        The exact long-format dataset (skeleton plus ``y``).
    main_results : tuple of EffectResult
        One row per ANOVA effect, ``2**factors - 1`` rows.
    manova_results : tuple of MultivariateEffectResult
        Empty unless the design has a within-subject factor.
    pc_results : tuple of PairwiseResult
        One row per unordered pair of cells, in design order.
    emm_results : tuple of MarginalMeansResult
        Empty unless ``options.emm``.
    alpha_level : float
    options : ExactOptions
    fit : AnovaFit
        The fitted model behind ``main_results`` and ``manova_results``.
    plot : matplotlib Figure or None
    """

    dataset: pd.DataFrame
    main_results: tuple[EffectResult, ...]
    manova_results: tuple[MultivariateEffectResult, ...]
    pc_results: tuple[PairwiseResult, ...]
    emm_results: tuple[MarginalMeansResult, ...]
    alpha_level: float
    options: ExactOptions
    fit: AnovaFit
    plot: Any = field(default=None, repr=False)

    @property
    def has_manova(self) -> bool:
        return len(self.manova_results) > 0

    @property
    def has_emm(self) -> bool:
        return len(self.emm_results) > 0

    def main_frame(self) -> pd.DataFrame:
        """ANOVA effects: power, partial eta-squared, Cohen's f, noncentrality."""
        return _rows_to_frame(self.main_results, "effect")

    def manova_frame(self) -> pd.DataFrame:
        return _rows_to_frame(self.manova_results, "effect")

    def pairwise_frame(self) -> pd.DataFrame:
        return _rows_to_frame(self.pc_results, "comparison", drop=("cell_a", "cell_b"))

    def emm_frame(self) -> pd.DataFrame:
        return _rows_to_frame(self.emm_results, "contrast")

    def summary(self) -> str:
        """Human-readable summary, similar to Superpower's printed output."""
        lines = ["Power and Effect sizes for ANOVA tests", "=" * 40]
        lines.append(
            f"{'effect':<20}{'power':>10}{'pes':>12}{'cohen_f':>12}{'ncp':>12}"
        )
        for r in self.main_results:
            lines.append(
                f"{r.effect:<20}{r.power:>10.2f}"
                f"{r.partial_eta_squared:>12.{_ROUND_DIG}f}"
                f"{r.cohen_f:>12.{_ROUND_DIG}f}{r.noncentrality:>12.{_ROUND_DIG}f}"
            )

        if self.has_manova:
            lines += ["", "Power and Effect sizes for MANOVA tests", "=" * 40]
            lines.append(
                f"{'effect':<20}{'power':>10}{'pillai':>12}{'cohen_f':>12}{'ncp':>12}"
            )
            for r in self.manova_results:
                lines.append(
                    f"{r.effect:<20}{r.power:>10.2f}"
                    f"{r.pillai_trace:>12.{_ROUND_DIG}f}"
                    f"{r.cohen_f:>12.{_ROUND_DIG}f}{r.noncentrality:>12.{_ROUND_DIG}f}"
                )

        lines += ["", "Power and Effect sizes for pairwise comparisons (t-tests)", "=" * 40]
        lines.append(f"{'comparison':<32}{'power':>10}{'effect_size':>14}")
        for r in self.pc_results:
            lines.append(f"{r.comparison:<32}{r.power:>10.2f}{r.effect_size:>14.2f}")

        if self.has_emm:
            lines += ["", "Power and Effect sizes for estimated marginal means", "=" * 40]
            for r in self.emm_results:
                label = f"{r.contrast} ({r.by})" if r.by else r.contrast
                lines.append(
                    f"{label:<32}{r.power:>10.2f}"
                    f"{r.partial_eta_squared:>12.{_ROUND_DIG}f}{r.cohen_f:>12.{_ROUND_DIG}f}"
                )

        lines += ["", f"alpha = {self.alpha_level}"]
        return "\n".join(lines)
