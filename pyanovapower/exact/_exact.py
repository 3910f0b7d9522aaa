"""Exact power analysis of a factorial design.

Pipeline: validate -> synthesize an exact dataset -> fit the factorial
model -> power for ANOVA effects, MANOVA effects (within designs),
cell-vs-cell comparisons and, optionally, marginal-means contrasts.

Validates against: R Superpower::ANOVA_exact()
"""

from __future__ import annotations

import logging

from pyanovapower.design import DesignSpec, n_cells_required
from pyanovapower.exact._common import (
    EffectResult,
    ExactOptions,
    ExactResult,
    MultivariateEffectResult,
)
from pyanovapower.exact._emmeans import (
    MarginalMeansEngine,
    default_emm_comp,
    emm_power,
    parse_emm_comp,
)
from pyanovapower.exact._fit import AnovaBackend, AnovaFit, fit_anova
from pyanovapower.exact._pairwise import pairwise_power
from pyanovapower.exact._plot import plot_exact_data
from pyanovapower.exact._synth import synthesize_dataset
from pyanovapower.exceptions import InvalidDesignError
from pyanovapower.power import power_from_pes

logger = logging.getLogger(__name__)


def _main_results(fit: AnovaFit, alpha: float) -> tuple[EffectResult, ...]:
    rows = []
    for row in fit.univariate:
        pw = power_from_pes(row.pes, row.num_df, row.den_df, alpha=alpha, statistic=row.f)
        rows.append(EffectResult(
            effect=row.effect,
            num_df=row.num_df,
            den_df=row.den_df,
            mse=row.mse,
            f=row.f,
            partial_eta_squared=row.pes,
            p_value=row.p_value,
            cohen_f=pw.effect_size,
            noncentrality=pw.noncentrality,
            critical_f=pw.critical_value,
            power=pw.power,
        ))
    return tuple(rows)


def _manova_results(fit: AnovaFit, alpha: float) -> tuple[MultivariateEffectResult, ...]:
    rows = []
    for row in fit.multivariate:
        # Pillai's trace stands in for pes; V >= 1 means infinite noncentrality
        pw = power_from_pes(
            min(row.test_stat, 1.0), row.num_df, row.den_df,
            alpha=alpha, statistic=row.approx_f,
        )
        rows.append(MultivariateEffectResult(
            effect=row.effect,
            df=row.df,
            pillai_trace=row.test_stat,
            approx_f=row.approx_f,
            num_df=row.num_df,
            den_df=row.den_df,
            p_value=row.p_value,
            cohen_f=pw.effect_size,
            noncentrality=pw.noncentrality,
            critical_f=pw.critical_value,
            power=pw.power,
        ))
    return tuple(rows)


def anova_exact(
    design: DesignSpec,
    options: ExactOptions | None = None,
    *,
    backend: AnovaBackend | None = None,
    emm_engine: MarginalMeansEngine | None = None,
) -> ExactResult:
    """Exact power for every effect and comparison of a factorial design.

    Synthesizes a dataset whose cell means and covariance equal the
    design's population values, fits the factorial model to it, and turns
    the resulting effect sizes into power via the noncentral F and t
    distributions. No simulation is involved.

    Parameters
    ----------
    design : DesignSpec
        From :func:`pyanovapower.design.anova_design`.
    options : ExactOptions, optional
        Analysis settings; defaults to ``ExactOptions()``.
    backend : AnovaBackend, optional
        Model-fitting backend (default: closed-form multivariate linear
        model on CPU).
    emm_engine : MarginalMeansEngine, optional
        Marginal-means contrast engine (default: computed from the fit).

    Returns
    -------
    ExactResult

    Raises
    ------
    InvalidDesignError
        If ``design.n`` is below the product of the factor levels.
    InvalidParameterError
        If ``options.emm_comp`` names factors not in the design.

    Examples
    --------
    >>> from pyanovapower.design import anova_design
    >>> d = anova_design("2w*2w", n=40, mu=[1, 0, 1, 0], sd=2, r=0.8)
    >>> res = anova_exact(d, ExactOptions(alpha_level=0.05, plot=False))
    >>> [r.effect for r in res.main_results]
    ['a', 'b', 'a:b']
    >>> len(res.pc_results)
    6
    """
    opts = options if options is not None else ExactOptions()

    # --- Validate (nothing is computed before this passes) ---
    required = n_cells_required(design)
    if design.n < required:
        raise InvalidDesignError(
            f"Exact power cannot handle n < the product of the factor levels "
            f"(n = {design.n}, need >= {required}); use a simulation-based "
            f"power analysis for this design"
        )

    emm_spec = None
    if opts.emm:
        emm_comp = opts.emm_comp if opts.emm_comp is not None else default_emm_comp(design)
        emm_spec = parse_emm_comp(emm_comp, design)

    logger.debug(
        "Exact power for design %s: n=%d, %d cells, alpha=%s, correction=%s",
        design.design_code, design.n, design.n_cells, opts.alpha_level, opts.correction,
    )

    # --- Synthesize and fit ---
    data = synthesize_dataset(design, seed=opts.seed)
    fit = fit_anova(data, design, correction=opts.correction, backend=backend)
    logger.debug(
        "Fitted %d univariate and %d multivariate effects with backend %s",
        len(fit.univariate), len(fit.multivariate), fit.backend_name,
    )

    # --- Power ---
    main_results = _main_results(fit, opts.alpha_level)
    manova_results = _manova_results(fit, opts.alpha_level) if design.has_within_factor else ()
    pc_results = pairwise_power(data, design, alpha=opts.alpha_level)
    logger.debug("Computed %d pairwise comparisons", len(pc_results))

    emm_results = ()
    if emm_spec is not None:
        emm_results = emm_power(
            fit.model,
            emm_spec,
            contrast_type=opts.contrast_type,
            emm_model=opts.emm_model,
            alpha=opts.alpha_level,
            engine=emm_engine,
        )
        logger.debug(
            "Computed %d %s contrasts (%s model)",
            len(emm_results), opts.contrast_type, opts.emm_model,
        )

    figure = plot_exact_data(data, design) if opts.plot else None

    return ExactResult(
        dataset=data,
        main_results=main_results,
        manova_results=manova_results,
        pc_results=pc_results,
        emm_results=emm_results,
        alpha_level=opts.alpha_level,
        options=opts,
        fit=fit,
        plot=figure,
    )
