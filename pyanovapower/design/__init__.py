"""
Factorial design descriptors for exact power analysis.

A design fixes the factor structure (between or within subjects), the
population means and covariance over cells, and the long-format layout
that the exact dataset is written into.
"""

from pyanovapower.design._design import (
    CellId,
    DesignSpec,
    Factor,
    anova_design,
    n_cells_required,
)

__all__ = [
    "CellId",
    "DesignSpec",
    "Factor",
    "anova_design",
    "n_cells_required",
]
