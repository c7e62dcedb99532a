"""
Error family and link function specifications.

Each Family defines:
- The log-likelihood of one observation given its mean μ and a dispersion
  parameter (fixed during one PIRLS pass, optimized in the outer loop)
- The score dℓ/dμ and expected information E[-d²ℓ/dμ²] used for Fisher
  scoring in PIRLS. For exponential families these reduce to the usual
  (y - μ) / (φV(μ)) and 1 / (φV(μ)); the beta family needs the general form.
- The valid outcome domain, checked before fitting
- A default link and the set of links it accepts
- ``sigma``: the family-specific scale used to standardize effect sizes

Each Link defines:
- g(μ) → η  (link)
- g⁻¹(η) → μ  (inverse link)
- dμ/dη  (derivative of inverse link, for PIRLS weights and the delta method)

The family menu is closed: beta, negative_binomial, gaussian, gamma.
``FamilySpec`` is the immutable (name, link) value stored in a model
specification; ``resolve_family`` turns it into a Family instance.

References:
    McCullagh, P., & Nelder, J. A. (1989). Generalized Linear Models (2nd ed.)
    Ferrari, S., & Cribari-Neto, F. (2004). Beta regression for modelling
    rates and proportions. Journal of Applied Statistics, 31(7), 799-815.
    Brooks, M. E. et al. (2017). glmmTMB balances speed and flexibility among
    packages for zero-inflated generalized linear mixed modeling.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import special

from pyemmeans.core.exceptions import DomainViolation, ValidationError


_EPS = 1e-10


# =====================================================================
# Link functions
# =====================================================================

class Link(ABC):
    """Abstract link function g(μ) mapping mean to linear predictor."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def link(self, mu: NDArray) -> NDArray:
        """g(μ) → η."""
        ...

    @abstractmethod
    def linkinv(self, eta: NDArray) -> NDArray:
        """g⁻¹(η) → μ."""
        ...

    @abstractmethod
    def mu_eta(self, eta: NDArray) -> NDArray:
        """dμ/dη = (g⁻¹)'(η)."""
        ...

    def in_range(self, eta: NDArray) -> NDArray:
        """True where η lies in the domain of g⁻¹."""
        return np.isfinite(np.asarray(eta, dtype=np.float64))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class IdentityLink(Link):
    """Identity link: g(μ) = μ. Default for Gaussian family."""

    @property
    def name(self) -> str:
        return 'identity'

    def link(self, mu: NDArray) -> NDArray:
        return np.array(mu, dtype=np.float64, copy=True)

    def linkinv(self, eta: NDArray) -> NDArray:
        return np.array(eta, dtype=np.float64, copy=True)

    def mu_eta(self, eta: NDArray) -> NDArray:
        return np.ones_like(np.asarray(eta, dtype=np.float64))


class LogitLink(Link):
    """Logit link: g(μ) = log(μ/(1-μ)). Default for Beta family."""

    @property
    def name(self) -> str:
        return 'logit'

    def link(self, mu: NDArray) -> NDArray:
        return special.logit(np.asarray(mu, dtype=np.float64))

    def linkinv(self, eta: NDArray) -> NDArray:
        return special.expit(np.asarray(eta, dtype=np.float64))

    def mu_eta(self, eta: NDArray) -> NDArray:
        p = special.expit(np.asarray(eta, dtype=np.float64))
        return np.maximum(p * (1.0 - p), _EPS)


class ProbitLink(Link):
    """Probit link: g(μ) = Φ⁻¹(μ). Alternative for Beta family."""

    @property
    def name(self) -> str:
        return 'probit'

    def link(self, mu: NDArray) -> NDArray:
        return special.ndtri(np.asarray(mu, dtype=np.float64))

    def linkinv(self, eta: NDArray) -> NDArray:
        return special.ndtr(np.asarray(eta, dtype=np.float64))

    def mu_eta(self, eta: NDArray) -> NDArray:
        eta = np.asarray(eta, dtype=np.float64)
        return np.maximum(np.exp(-0.5 * eta ** 2) / np.sqrt(2.0 * np.pi), _EPS)


class LogLink(Link):
    """Log link: g(μ) = log(μ). Default for negative binomial family."""

    @property
    def name(self) -> str:
        return 'log'

    def link(self, mu: NDArray) -> NDArray:
        return np.log(np.asarray(mu, dtype=np.float64))

    def linkinv(self, eta: NDArray) -> NDArray:
        # Clip to prevent overflow
        eta = np.clip(np.asarray(eta, dtype=np.float64), -700, 700)
        return np.exp(eta)

    def mu_eta(self, eta: NDArray) -> NDArray:
        eta = np.clip(np.asarray(eta, dtype=np.float64), -700, 700)
        return np.maximum(np.exp(eta), _EPS)


class InverseLink(Link):
    """Inverse link: g(μ) = 1/μ. Default for Gamma family."""

    @property
    def name(self) -> str:
        return 'inverse'

    def link(self, mu: NDArray) -> NDArray:
        return 1.0 / np.asarray(mu, dtype=np.float64)

    def linkinv(self, eta: NDArray) -> NDArray:
        # η <= 0 is truncated to a large positive mean; callers reporting
        # on the response scale check in_range first
        return 1.0 / np.maximum(np.asarray(eta, dtype=np.float64), _EPS)

    def mu_eta(self, eta: NDArray) -> NDArray:
        eta = np.asarray(eta, dtype=np.float64)
        return -1.0 / np.maximum(eta ** 2, 1e-20)

    def in_range(self, eta: NDArray) -> NDArray:
        eta = np.asarray(eta, dtype=np.float64)
        return np.isfinite(eta) & (eta > 0)


_LINK_CLASSES: dict[str, type[Link]] = {
    'identity': IdentityLink,
    'logit': LogitLink,
    'probit': ProbitLink,
    'log': LogLink,
    'inverse': InverseLink,
}


def resolve_link(link: str | Link) -> Link:
    """Resolve a link name to a Link instance."""
    if isinstance(link, Link):
        return link
    if isinstance(link, str):
        cls = _LINK_CLASSES.get(link.lower())
        if cls is None:
            valid = ', '.join(sorted(_LINK_CLASSES.keys()))
            raise ValidationError(f"Unknown link: {link!r}. Valid links: {valid}")
        return cls()
    raise TypeError(f"link must be str or Link, got {type(link).__name__}")


# =====================================================================
# Family base class
# =====================================================================

class Family(ABC):
    """
    Error family specification.

    Subclasses declare their name, default and allowed links, and the
    per-observation likelihood pieces PIRLS needs. The dispersion parameter
    is always passed in explicitly; it is never stored on the family.
    """

    allowed_links: tuple[str, ...] = ()
    dispersion_name: str = 'dispersion'

    def __init__(self, link: str | Link | None = None):
        link_obj = resolve_link(link if link is not None else self.default_link)
        if link_obj.name not in self.allowed_links:
            raise ValidationError(
                f"Link {link_obj.name!r} is not available for the {self.name} "
                f"family. Allowed: {list(self.allowed_links)}"
            )
        self._link = link_obj

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def default_link(self) -> str:
        ...

    @property
    def link(self) -> Link:
        return self._link

    # --- domain and starting values ---

    @abstractmethod
    def check_domain(self, y: NDArray) -> None:
        """Raise DomainViolation if any outcome lies outside the family's support."""
        ...

    @abstractmethod
    def initialize(self, y: NDArray) -> NDArray:
        """Starting μ for PIRLS, inside the support of the link."""
        ...

    @abstractmethod
    def dispersion_start(self, y: NDArray) -> float:
        """Moment-based starting value for the dispersion parameter."""
        ...

    # --- likelihood pieces ---

    @abstractmethod
    def variance(self, mu: NDArray, dispersion: float) -> NDArray:
        """Var(y | μ)."""
        ...

    @abstractmethod
    def log_likelihood_obs(
        self, y: NDArray, mu: NDArray, dispersion: float
    ) -> NDArray:
        """Per-observation log-density log f(y_i | μ_i, dispersion)."""
        ...

    @abstractmethod
    def score(self, y: NDArray, mu: NDArray, dispersion: float) -> NDArray:
        """dℓ/dμ for each observation."""
        ...

    @abstractmethod
    def information(self, mu: NDArray, dispersion: float) -> NDArray:
        """Expected information E[-d²ℓ/dμ²] for each observation."""
        ...

    @abstractmethod
    def sigma(self, dispersion: float) -> float:
        """Scale used to standardize link-scale differences into effect sizes."""
        ...

    def clip_mu(self, mu: NDArray) -> NDArray:
        """Keep μ strictly inside the support (overridden where needed)."""
        return mu

    def log_likelihood(
        self, y: NDArray, mu: NDArray, wt: NDArray, dispersion: float
    ) -> float:
        """Weighted total log-likelihood."""
        mu = self.clip_mu(mu)
        return float(np.sum(wt * self.log_likelihood_obs(y, mu, dispersion)))

    def deviance(
        self, y: NDArray, mu: NDArray, wt: NDArray, dispersion: float
    ) -> float:
        """Deviance: 2 Σ wt_i [ℓ(y_i | y_i) - ℓ(y_i | μ_i)] at fixed dispersion."""
        sat = self.log_likelihood_obs(y, self.clip_mu(np.asarray(y, dtype=np.float64)), dispersion)
        fit = self.log_likelihood_obs(y, self.clip_mu(mu), dispersion)
        return 2.0 * float(np.sum(wt * (sat - fit)))

    def latent_variance(self, mu: NDArray, dispersion: float) -> float:
        """Distribution-specific residual variance on the link scale.

        First-order (delta method) approximation Var(y|μ) / (dμ/dη)²,
        averaged over the supplied means. Used for the latent-scale ICC.
        """
        mu = self.clip_mu(np.asarray(mu, dtype=np.float64))
        eta = self.link.link(mu)
        d = self.link.mu_eta(eta)
        return float(np.mean(self.variance(mu, dispersion) / d ** 2))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(link={self._link.name!r})"


# =====================================================================
# Concrete families
# =====================================================================

class Gaussian(Family):
    """Gaussian family, dispersion σ². Default link: identity.

    ℓ = -½[(y-μ)²/σ² + log(2πσ²)]
    """

    allowed_links = ('identity', 'log', 'inverse')
    dispersion_name = 'sigma^2'

    @property
    def name(self) -> str:
        return 'gaussian'

    @property
    def default_link(self) -> str:
        return 'identity'

    def check_domain(self, y: NDArray) -> None:
        bad = ~np.isfinite(y)
        if np.any(bad):
            raise DomainViolation(
                f"gaussian family requires finite outcomes; "
                f"{int(np.sum(bad))} non-finite value(s)",
                family=self.name, n_invalid=int(np.sum(bad)),
                expected='finite real numbers',
            )

    def initialize(self, y: NDArray) -> NDArray:
        if self.link.name == 'identity':
            return y.copy()
        return np.maximum(y, 0.1 * np.mean(np.abs(y)) + _EPS)

    def dispersion_start(self, y: NDArray) -> float:
        return max(float(np.var(y)), 1e-8)

    def variance(self, mu: NDArray, dispersion: float) -> NDArray:
        return np.full_like(np.asarray(mu, dtype=np.float64), dispersion)

    def log_likelihood_obs(self, y, mu, dispersion):
        return -0.5 * ((y - mu) ** 2 / dispersion + np.log(2.0 * np.pi * dispersion))

    def score(self, y, mu, dispersion):
        return (y - mu) / dispersion

    def information(self, mu, dispersion):
        return np.full_like(np.asarray(mu, dtype=np.float64), 1.0 / dispersion)

    def sigma(self, dispersion: float) -> float:
        return float(np.sqrt(dispersion))


class Gamma(Family):
    """Gamma family with shape 1/φ, dispersion φ. Default link: inverse.

    ℓ = k log(k y / μ) - k y / μ - log y - log Γ(k),   k = 1/φ
    """

    allowed_links = ('inverse', 'log', 'identity')
    dispersion_name = 'phi'

    @property
    def name(self) -> str:
        return 'gamma'

    @property
    def default_link(self) -> str:
        return 'inverse'

    def check_domain(self, y: NDArray) -> None:
        bad = ~(np.isfinite(y) & (y > 0))
        if np.any(bad):
            raise DomainViolation(
                f"gamma family requires strictly positive outcomes; "
                f"{int(np.sum(bad))} value(s) <= 0 or non-finite",
                family=self.name, n_invalid=int(np.sum(bad)),
                expected='y > 0',
            )

    def initialize(self, y: NDArray) -> NDArray:
        return y.copy()

    def dispersion_start(self, y: NDArray) -> float:
        m = float(np.mean(y))
        return max(float(np.var(y)) / m ** 2, 1e-6)

    def clip_mu(self, mu):
        return np.maximum(mu, _EPS)

    def variance(self, mu, dispersion):
        return dispersion * np.asarray(mu, dtype=np.float64) ** 2

    def log_likelihood_obs(self, y, mu, dispersion):
        k = 1.0 / dispersion
        return k * np.log(k * y / mu) - k * y / mu - np.log(y) - special.gammaln(k)

    def score(self, y, mu, dispersion):
        return (y - mu) / (dispersion * mu ** 2)

    def information(self, mu, dispersion):
        return 1.0 / (dispersion * mu ** 2)

    def sigma(self, dispersion: float) -> float:
        return float(np.sqrt(dispersion))


class Beta(Family):
    """Beta family in the mean/precision parameterization. Default link: logit.

    y ~ Beta(μφ, (1-μ)φ),  E[y] = μ,  Var(y) = μ(1-μ)/(1+φ)
    """

    allowed_links = ('logit', 'probit')
    dispersion_name = 'phi'

    @property
    def name(self) -> str:
        return 'beta'

    @property
    def default_link(self) -> str:
        return 'logit'

    def check_domain(self, y: NDArray) -> None:
        bad = ~(np.isfinite(y) & (y > 0) & (y < 1))
        if np.any(bad):
            raise DomainViolation(
                f"beta family requires outcomes strictly inside (0, 1); "
                f"{int(np.sum(bad))} value(s) outside",
                family=self.name, n_invalid=int(np.sum(bad)),
                expected='0 < y < 1',
            )

    def initialize(self, y: NDArray) -> NDArray:
        return np.clip((y + np.mean(y)) / 2.0, 1e-6, 1.0 - 1e-6)

    def dispersion_start(self, y: NDArray) -> float:
        m = float(np.mean(y))
        v = float(np.var(y))
        if v <= 0:
            return 100.0
        return max(m * (1.0 - m) / v - 1.0, 1.0)

    def clip_mu(self, mu):
        return np.clip(mu, _EPS, 1.0 - _EPS)

    def variance(self, mu, dispersion):
        mu = self.clip_mu(np.asarray(mu, dtype=np.float64))
        return mu * (1.0 - mu) / (1.0 + dispersion)

    def log_likelihood_obs(self, y, mu, dispersion):
        a = mu * dispersion
        b = (1.0 - mu) * dispersion
        return (special.gammaln(dispersion) - special.gammaln(a) - special.gammaln(b)
                + (a - 1.0) * np.log(y) + (b - 1.0) * np.log1p(-y))

    def score(self, y, mu, dispersion):
        mu = self.clip_mu(mu)
        y_star = np.log(y) - np.log1p(-y)
        mu_star = special.digamma(mu * dispersion) - special.digamma((1.0 - mu) * dispersion)
        return dispersion * (y_star - mu_star)

    def information(self, mu, dispersion):
        mu = self.clip_mu(mu)
        return dispersion ** 2 * (
            special.polygamma(1, mu * dispersion)
            + special.polygamma(1, (1.0 - mu) * dispersion)
        )

    def deviance(self, y, mu, wt, dispersion):
        # The beta density at μ = y is not the saturated maximum, so the
        # deviance is reported on the -2 log-likelihood scale instead.
        return -2.0 * self.log_likelihood(y, mu, wt, dispersion)

    def sigma(self, dispersion: float) -> float:
        return float(dispersion)


class NegativeBinomial(Family):
    """Negative binomial (NB2) family with size θ. Default link: log.

    Var(y) = μ + μ²/θ
    ℓ = log Γ(y+θ) - log Γ(θ) - log y! + θ log(θ/(θ+μ)) + y log(μ/(θ+μ))
    """

    allowed_links = ('log', 'identity')
    dispersion_name = 'theta'

    @property
    def name(self) -> str:
        return 'negative_binomial'

    @property
    def default_link(self) -> str:
        return 'log'

    def check_domain(self, y: NDArray) -> None:
        bad = ~(np.isfinite(y) & (y >= 0) & (y == np.round(y)))
        if np.any(bad):
            raise DomainViolation(
                f"negative_binomial family requires non-negative integer "
                f"outcomes; {int(np.sum(bad))} invalid value(s)",
                family=self.name, n_invalid=int(np.sum(bad)),
                expected='y in {0, 1, 2, ...}',
            )

    def initialize(self, y: NDArray) -> NDArray:
        return np.maximum(y, 0.1)

    def dispersion_start(self, y: NDArray) -> float:
        m = float(np.mean(y))
        v = float(np.var(y))
        if v <= m:
            return 100.0
        return float(np.clip(m ** 2 / (v - m), 1e-2, 1e6))

    def clip_mu(self, mu):
        return np.maximum(mu, _EPS)

    def variance(self, mu, dispersion):
        mu = self.clip_mu(np.asarray(mu, dtype=np.float64))
        return mu + mu ** 2 / dispersion

    def log_likelihood_obs(self, y, mu, dispersion):
        theta = dispersion
        return (special.gammaln(y + theta) - special.gammaln(theta)
                - special.gammaln(y + 1.0)
                + theta * np.log(theta / (theta + mu))
                + special.xlogy(y, mu / (theta + mu)))

    def score(self, y, mu, dispersion):
        return (y - mu) / self.variance(mu, dispersion)

    def information(self, mu, dispersion):
        return 1.0 / self.variance(mu, dispersion)

    def sigma(self, dispersion: float) -> float:
        return float(dispersion)


# =====================================================================
# Family name → class mapping + resolver
# =====================================================================

_FAMILY_CLASSES: dict[str, type[Family]] = {
    'beta': Beta,
    'negative_binomial': NegativeBinomial,
    'gaussian': Gaussian,
    'gamma': Gamma,
}

_FAMILY_ALIASES: dict[str, str] = {
    'nbinom2': 'negative_binomial',
    'negbin': 'negative_binomial',
    'normal': 'gaussian',
}


def _canonical_family_name(name: str) -> str:
    key = name.lower()
    key = _FAMILY_ALIASES.get(key, key)
    if key not in _FAMILY_CLASSES:
        valid = ', '.join(sorted(_FAMILY_CLASSES.keys()))
        raise ValidationError(f"Unknown family: {name!r}. Valid families: {valid}")
    return key


@dataclass(frozen=True)
class FamilySpec:
    """Immutable (family, link) choice stored in a model specification.

    Args:
        name: One of 'beta', 'negative_binomial', 'gaussian', 'gamma'
            (aliases 'nbinom2', 'negbin', 'normal' accepted).
        link: Link name, or None for the family's default link.

    Raises:
        ValidationError: Unknown family, or a link the family does not allow.
    """
    name: str
    link: str | None = None

    def __post_init__(self):
        canonical = _canonical_family_name(self.name)
        object.__setattr__(self, 'name', canonical)
        family = _FAMILY_CLASSES[canonical](self.link)
        object.__setattr__(self, 'link', family.link.name)

    def build(self) -> Family:
        """Instantiate the Family this spec describes."""
        return _FAMILY_CLASSES[self.name](self.link)

    def __str__(self) -> str:
        return f"{self.name}({self.link})"


def resolve_family(family: str | FamilySpec | Family) -> Family:
    """Resolve a family argument to a Family instance.

    Args:
        family: A family name, a FamilySpec, or a Family instance (passed through).

    Returns:
        Family instance.

    Raises:
        ValidationError: If the name is not recognized.
        TypeError: If argument is none of the accepted types.
    """
    if isinstance(family, Family):
        return family
    if isinstance(family, FamilySpec):
        return family.build()
    if isinstance(family, str):
        return FamilySpec(family).build()
    raise TypeError(
        f"family must be str, FamilySpec or Family, got {type(family).__name__}"
    )
