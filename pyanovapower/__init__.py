"""
PyAnovaPower: exact power analysis for factorial ANOVA designs.

Computes power for between-subjects, within-subjects and mixed designs
analytically, from a single dataset whose sample moments equal the
population moments, rather than by Monte Carlo simulation.

Usage:
    from pyanovapower import design, exact, power
"""

__version__ = "0.1.0"

from pyanovapower import design
from pyanovapower import power
from pyanovapower import exact
from pyanovapower import exceptions
from pyanovapower.design import anova_design
from pyanovapower.exact import ExactOptions, anova_exact

__all__ = [
    "__version__",
    "design",
    "power",
    "exact",
    "exceptions",
    "anova_design",
    "anova_exact",
    "ExactOptions",
]
