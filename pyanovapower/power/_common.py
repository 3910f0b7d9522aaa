"""Shared result types and helpers for noncentrality-based power."""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass

from pyanovapower.exceptions import InvalidParameterError


@dataclass(frozen=True)
class PowerResult:
    """Exact power of one test.

    ``power`` is a percentage in [0, 100]. ``effect_size`` is Cohen's f
    for F tests and Cohen's d (or d_z) for t tests.
    """

    statistic: float
    df: tuple[float, ...]
    effect_size: float
    noncentrality: float
    critical_value: float
    power: float
    alpha: float
    method: str

    def summary(self) -> str:
        """Human-readable summary, similar to R's print.power.htest."""
        df_str = ", ".join(f"{d:.4g}" for d in self.df)
        lines = [
            self.method,
            "",
            f"      statistic = {self.statistic:.6f}",
            f"             df = {df_str}",
            f"    effect size = {self.effect_size:.6f}",
            f"  noncentrality = {self.noncentrality:.6f}",
            f" critical value = {self.critical_value:.6f}",
            f"          alpha = {self.alpha}",
            f"          power = {self.power:.4f} %",
        ]
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Shared validation
# ---------------------------------------------------------------------------

def _check_alpha(alpha: float, name: str = "alpha_level") -> None:
    """Raise InvalidParameterError unless 0 < alpha < 1."""
    if not isinstance(alpha, numbers.Real) or isinstance(alpha, bool):
        raise InvalidParameterError(f"{name} must be a number, got {alpha!r}")
    if not (0.0 < alpha < 1.0):
        raise InvalidParameterError(
            f"{name} must be greater than 0 and less than 1, got {alpha}"
        )


def _check_df(df: float, name: str) -> None:
    if not (df > 0.0) or math.isinf(df):
        raise InvalidParameterError(f"{name} must be finite and > 0, got {df}")


# ---------------------------------------------------------------------------
# Numeric guards
# ---------------------------------------------------------------------------

def _finalize_power(pwr: float, ncp: float) -> float:
    """Clamp a [0, 1] power to [0, 1] and map NaN from extreme ncp.

    scipy's noncentral distributions can return NaN for very large
    noncentrality; by then the power is 1 to machine precision.
    """
    if math.isnan(pwr):
        if math.isnan(ncp):
            return math.nan
        return 1.0 if abs(ncp) > 50.0 else 0.0
    return min(max(pwr, 0.0), 1.0)
