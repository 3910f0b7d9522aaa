"""
Exact power analysis for factorial ANOVA designs.

Instead of simulating many datasets, one dataset is synthesized whose
cell means and covariance equal the population values exactly. Fitting
the factorial model to it yields the population effect sizes, which the
noncentral F and t distributions turn into power for every main effect,
interaction, MANOVA effect, cell-vs-cell comparison and marginal-means
contrast.

Validates against: R packages Superpower, afex, car, emmeans.
"""

from pyanovapower.exact._common import (
    VALID_CONTRASTS,
    VALID_EMM_MODELS,
    EffectResult,
    ExactOptions,
    ExactResult,
    MarginalMeansResult,
    MultivariateEffectResult,
    PairwiseResult,
)
from pyanovapower.exact._synth import exact_sample, synthesize_dataset
from pyanovapower.exact._fit import (
    VALID_CORRECTIONS,
    AnovaBackend,
    AnovaFit,
    LinearModel,
    MultivariateLinearModelBackend,
    MultivariateTest,
    UnivariateTest,
    fit_anova,
)
from pyanovapower.exact._pairwise import pairwise_power
from pyanovapower.exact._emmeans import (
    ComparisonSpec,
    ContrastEstimate,
    LinearModelMarginalMeans,
    MarginalMeansEngine,
    contrast_coefficients,
    emm_power,
    parse_emm_comp,
)
from pyanovapower.exact._plot import plot_exact_data
from pyanovapower.exact._exact import anova_exact

__all__ = [
    "VALID_CONTRASTS",
    "VALID_CORRECTIONS",
    "VALID_EMM_MODELS",
    "AnovaBackend",
    "AnovaFit",
    "ComparisonSpec",
    "ContrastEstimate",
    "EffectResult",
    "ExactOptions",
    "ExactResult",
    "LinearModel",
    "LinearModelMarginalMeans",
    "MarginalMeansEngine",
    "MarginalMeansResult",
    "MultivariateEffectResult",
    "MultivariateLinearModelBackend",
    "MultivariateTest",
    "PairwiseResult",
    "UnivariateTest",
    "anova_exact",
    "contrast_coefficients",
    "emm_power",
    "exact_sample",
    "fit_anova",
    "pairwise_power",
    "parse_emm_comp",
    "plot_exact_data",
    "synthesize_dataset",
]
