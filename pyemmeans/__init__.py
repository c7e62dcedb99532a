"""
pyemmeans: mixed-model fitting, estimated marginal means and pairwise
contrasts for treatment comparisons.

Submodules:
    mixed: Generalized linear mixed models (beta, negative binomial,
        gaussian, gamma) fitted by the Laplace approximation
    emmeans: Estimated marginal means and adjusted pairwise contrasts
    families: Error families and link functions
    pipeline: Fit → marginal means → contrasts as one analysis
"""

__version__ = "0.1.0"

from pyemmeans import mixed
from pyemmeans import emmeans
from pyemmeans.families import FamilySpec
from pyemmeans.mixed import ModelSpec, RandomTerm, CovariateSpec, FitControl, fit
from pyemmeans.emmeans import pairwise, p_adjust
from pyemmeans.pipeline import (
    AnalysisConfig, AnalysisReport, BatchReport, run_analysis, run_batch,
)

__all__ = [
    "__version__",
    "mixed",
    "emmeans",
    "FamilySpec",
    "ModelSpec",
    "RandomTerm",
    "CovariateSpec",
    "FitControl",
    "fit",
    "pairwise",
    "p_adjust",
    "AnalysisConfig",
    "AnalysisReport",
    "BatchReport",
    "run_analysis",
    "run_batch",
]
