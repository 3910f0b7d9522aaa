"""Power of F tests from partial eta-squared.

An exact dataset reproduces the population moments, so the partial
eta-squared it yields is the population value. From it:

    f2     = pes / (1 - pes)              (Cohen's f squared)
    lambda = f2 * df2                     (noncentrality)
    F_crit = qf(1 - alpha, df1, df2)
    power  = 1 - pf(F_crit, df1, df2, lambda)

The same transform serves ANOVA effects, multivariate tests (Pillai's
trace in place of pes) and single-df marginal-means contrasts.

Validates against: R Superpower::ANOVA_exact()
"""

from __future__ import annotations

import math

from scipy.stats import f as f_dist
from scipy.stats import ncf

from pyanovapower.exceptions import InvalidParameterError
from pyanovapower.power._common import (
    PowerResult,
    _check_alpha,
    _check_df,
    _finalize_power,
)


# ---------------------------------------------------------------------------
# Internal power computation
# ---------------------------------------------------------------------------

def _ncf_power(
    df1: float,
    df2: float,
    ncp: float,
    alpha: float,
) -> tuple[float, float]:
    """Return ``(F_crit, power)`` for a noncentral F test, power in [0, 1]."""
    f_crit = float(f_dist.ppf(1.0 - alpha, df1, df2))

    if math.isinf(ncp):
        return f_crit, 1.0
    if ncp == 0.0:
        # Central F: exactly the nominal Type I error rate
        return f_crit, float(f_dist.sf(f_crit, df1, df2))

    pwr = float(ncf.sf(f_crit, df1, df2, ncp))
    return f_crit, _finalize_power(pwr, ncp)


def cohen_f2(pes: float) -> float:
    """Cohen's f squared from partial eta-squared; ``+inf`` at pes = 1."""
    if math.isnan(pes):
        return math.nan
    if not (0.0 <= pes <= 1.0):
        raise InvalidParameterError(
            f"partial eta-squared must be in [0, 1], got {pes}"
        )
    if pes >= 1.0:
        return math.inf
    return pes / (1.0 - pes)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def power_from_pes(
    pes: float,
    df1: float,
    df2: float,
    alpha: float = 0.05,
    statistic: float = math.nan,
    method: str = "Exact F test power calculation",
) -> PowerResult:
    """Exact power of an F test with the given partial eta-squared.

    Parameters
    ----------
    pes : float
        Partial eta-squared in [0, 1] (or a multivariate test statistic
        such as Pillai's trace used in its place).
    df1, df2 : float
        Numerator and denominator degrees of freedom (possibly
        sphericity-corrected, so non-integer values are allowed).
    alpha : float
        Significance level.
    statistic : float
        Observed F, carried through to the result for reference.

    Returns
    -------
    PowerResult
        ``effect_size`` is Cohen's f, ``power`` is a percentage.

    Examples
    --------
    >>> r = power_from_pes(0.0, 1, 38, alpha=0.05)
    >>> round(r.power, 6)
    5.0
    """
    _check_alpha(alpha)
    _check_df(df1, "df1")
    _check_df(df2, "df2")

    f2 = cohen_f2(pes)
    if math.isnan(f2):
        return PowerResult(
            statistic=statistic,
            df=(df1, df2),
            effect_size=math.nan,
            noncentrality=math.nan,
            critical_value=float(f_dist.ppf(1.0 - alpha, df1, df2)),
            power=math.nan,
            alpha=alpha,
            method=method,
        )

    ncp = f2 * df2
    f_crit, pwr = _ncf_power(df1, df2, ncp, alpha)

    return PowerResult(
        statistic=statistic,
        df=(df1, df2),
        effect_size=math.sqrt(f2),
        noncentrality=ncp,
        critical_value=f_crit,
        power=100.0 * pwr,
        alpha=alpha,
        method=method,
    )


def power_from_t(
    t_ratio: float,
    df: float,
    alpha: float = 0.05,
    method: str = "Exact single-df contrast power calculation",
) -> PowerResult:
    """Exact power of a single-df contrast from its t ratio.

    ``F = t**2`` and ``pes = F / (F + df)``, then :func:`power_from_pes`
    with ``df1 = 1``. Two-sided by construction.
    """
    f_value = t_ratio ** 2
    if math.isinf(f_value):
        pes = 1.0
    else:
        pes = f_value / (f_value + df)
    return power_from_pes(pes, 1.0, df, alpha=alpha, statistic=f_value, method=method)
