"""
Estimated marginal means and pairwise contrasts of fitted mixed models.

Public API:
    emmeans()         — marginal means over a reference grid
    pairwise()        — pairwise contrasts with multiplicity adjustment
    p_adjust()        — R-compatible p-value adjustment
    EMMSolution       — result wrapper for marginal means
    ContrastSolution  — result wrapper for contrasts
"""

from pyemmeans.emmeans.solvers import emmeans, pairwise
from pyemmeans.emmeans.solution import EMMSolution, ContrastSolution
from pyemmeans.emmeans._common import MarginalEstimate, Contrast
from pyemmeans.emmeans._p_adjust import p_adjust

__all__ = [
    "emmeans",
    "pairwise",
    "p_adjust",
    "EMMSolution",
    "ContrastSolution",
    "MarginalEstimate",
    "Contrast",
]
