"""
Mixed models: generalized linear mixed models fitted by the Laplace
approximation, for the beta, negative binomial, gaussian and gamma
families.

Public API:
    fit()           — fit a model described by a ModelSpec
    ModelSpec       — immutable model description
    RandomTerm      — one random-intercept (or slope) grouping term
    CovariateSpec   — encoding of a non-treatment predictor
    FitControl      — optimizer settings
    GLMMSolution    — result wrapper
"""

from pyemmeans.mixed.model import ModelSpec, RandomTerm, CovariateSpec, FitControl
from pyemmeans.mixed.solvers import fit
from pyemmeans.mixed.solution import GLMMSolution
from pyemmeans.mixed._common import GLMMParams, VarCompSummary

__all__ = [
    "fit",
    "ModelSpec",
    "RandomTerm",
    "CovariateSpec",
    "FitControl",
    "GLMMSolution",
    "GLMMParams",
    "VarCompSummary",
]
