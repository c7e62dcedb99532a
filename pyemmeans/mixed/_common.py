"""
Common data types for mixed models.

Contains the frozen parameter payload that goes inside the Result[P]
envelope of a fit. The payload is a pure data container: no methods, no
computation.

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), 1-48.
"""

from dataclasses import dataclass

from numpy.typing import NDArray

from pyemmeans.mixed.model import ModelSpec
from pyemmeans.mixed._terms import TermEncoder


@dataclass(frozen=True)
class VarCompSummary:
    """Variance component summary for one random effect term.

    Attributes:
        group: Grouping factor name (e.g. 'subject').
        name: Term name within the group (e.g. '(Intercept)', 'time').
        variance: Estimated variance σ²_b for this component (link scale).
        std_dev: Standard deviation (sqrt of variance).
        corr: Correlation with the first term in the same group,
              or None if this is the first (or only) term.
    """
    group: str
    name: str
    variance: float
    std_dev: float
    corr: float | None = None


@dataclass(frozen=True)
class GLMMParams:
    """
    Parameter payload for a fitted generalized linear mixed model.

    Contains all estimates needed to reconstruct the model summary,
    perform Wald inference, and build reference-grid predictions.
    """
    # Fixed effects
    coefficients: NDArray              # β̂ (p,)
    coefficient_names: tuple[str, ...]
    se: NDArray                        # standard errors of β̂ (p,)
    vcov: NDArray                      # Var(β̂) (p, p)
    z_values: NDArray                  # β̂ / se (Wald z)
    p_values: NDArray                  # two-sided, standard normal

    # Random effects
    var_components: tuple[VarCompSummary, ...]
    n_groups: dict[str, int]           # grouping factor → number of levels
    random_effects: dict[str, NDArray]  # group → (n_groups_j, n_terms_j)
    theta: NDArray                     # converged θ parameters

    # Family
    family_name: str
    link_name: str
    dispersion: float                  # σ² / φ / θ depending on family
    dispersion_name: str
    sigma: float                       # family-specific scale for effect sizes
    latent_variance: float             # residual variance on the link scale

    # Model fit
    log_likelihood: float
    deviance: float
    aic: float
    bic: float
    n_obs: int
    n_params: int

    # Convergence
    converged: bool
    n_iter: int
    pirls_iter: int

    # Predictions
    fitted_values: NDArray             # μ̂ = g⁻¹(Xβ̂ + Zb̂) (n,)
    linear_predictor: NDArray          # η̂ = Xβ̂ + Zb̂ (n,)
    residuals: NDArray                 # y - μ̂ (n,)

    # Model description (for reference grids and reports)
    spec: ModelSpec
    encoder: TermEncoder
