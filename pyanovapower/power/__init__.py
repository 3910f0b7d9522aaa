"""
Noncentrality-based power for F and t tests.

Converts an effect observed in an exact dataset (partial eta-squared,
a t ratio, or a pair of exact samples) into Cohen's effect size, the
noncentrality parameter, the critical value at alpha, and power.

Validates against: R Superpower::ANOVA_exact(), stats::power.t.test().
"""

from pyanovapower.power._common import PowerResult
from pyanovapower.power._anova import cohen_f2, power_from_pes, power_from_t
from pyanovapower.power._means import power_d_exact, power_dz_exact

__all__ = [
    "PowerResult",
    "cohen_f2",
    "power_from_pes",
    "power_from_t",
    "power_d_exact",
    "power_dz_exact",
]
