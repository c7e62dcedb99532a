"""
Common data types for estimated marginal means and contrasts.

Contains the frozen per-row records (MarginalEstimate, Contrast) and the
parameter payloads that go inside Result[P] envelopes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from numpy.typing import NDArray


Cell = tuple[tuple[str, Any], ...]


def format_level(level: Any) -> str:
    """Display form of a cell level (tuples for multi-factor specs)."""
    if isinstance(level, tuple):
        return ' '.join(str(v) for v in level)
    return str(level)


def format_cell(cell: Cell) -> str:
    """``treatment = Control, distance = 10``"""
    return ', '.join(f"{name} = {value}" for name, value in cell)


@dataclass(frozen=True)
class MarginalEstimate:
    """Estimated marginal mean for one reference-grid cell.

    Attributes:
        cell: Ordered (name, value) pairs identifying the cell: the
            ``specs`` factors first, then the ``by`` variables.
        emmean: Estimate on the link scale (L·β).
        se: Standard error on the link scale.
        lower, upper: Wald confidence bounds on the link scale.
        response: Back-transformed estimate g⁻¹(emmean).
        response_se: Delta-method standard error |dμ/dη|·se.
        response_lower, response_upper: Back-transformed link-scale bounds.
    """
    cell: Cell
    emmean: float
    se: float
    lower: float
    upper: float
    response: float
    response_se: float
    response_lower: float
    response_upper: float


@dataclass(frozen=True)
class Contrast:
    """Pairwise difference of two marginal means on the link scale.

    ``estimate = emmean(level2) - emmean(level1)``; the order of the pair is
    part of its identity (label ``"level2 - level1"``).

    Attributes:
        level1, level2: Levels of the ``specs`` factor(s) being compared.
        stratum: ``by`` cell the comparison belongs to, or None.
        estimate: Link-scale difference.
        se: Standard error from the full coefficient covariance.
        z: Wald statistic estimate / se.
        p_value: Multiplicity-adjusted two-sided p-value.
        p_unadjusted: Raw two-sided p-value.
        lower, upper: Confidence bounds (adjusted the same way as p_value
            for Tukey and Bonferroni).
        effect_size: estimate / sigma.
        effect_lower, effect_upper: Confidence bounds divided by sigma.
    """
    level1: Any
    level2: Any
    stratum: Cell | None
    estimate: float
    se: float
    z: float
    p_value: float
    p_unadjusted: float
    lower: float
    upper: float
    effect_size: float
    effect_lower: float
    effect_upper: float

    @property
    def label(self) -> str:
        return f"{format_level(self.level2)} - {format_level(self.level1)}"

    def reversed(self) -> 'Contrast':
        """The mirrored comparison ``level1 - level2``.

        Estimates, statistics and bounds are negated; p-values unchanged.
        """
        return replace(
            self,
            level1=self.level2,
            level2=self.level1,
            estimate=-self.estimate,
            z=-self.z,
            lower=-self.upper,
            upper=-self.lower,
            effect_size=-self.effect_size,
            effect_lower=-self.effect_upper,
            effect_upper=-self.effect_lower,
        )


@dataclass(frozen=True)
class EMMParams:
    """
    Parameter payload for a set of estimated marginal means.

    Keeps the linear functions and the coefficient covariance so that
    contrasts can be derived without the fitted model.
    """
    estimates: tuple[MarginalEstimate, ...]
    specs: tuple[str, ...]
    by: tuple[str, ...]
    levels: tuple[Any, ...]            # specs level of each cell
    strata: tuple[Cell | None, ...]    # by cell of each cell
    linfct: NDArray                    # L, (n_cells, p)
    coefficients: NDArray              # β̂ (p,)
    vcov: NDArray                      # Var(β̂) (p, p)
    sigma: float                       # family scale for effect sizes
    family_name: str
    link_name: str
    conf_level: float
    weights: str
    outcome: str
    model_name: str


@dataclass(frozen=True)
class ContrastParams:
    """Parameter payload for a set of pairwise contrasts."""
    contrasts: tuple[Contrast, ...]
    method: str                        # adjustment actually applied
    conf_level: float
    n_tests: int                       # comparisons in the adjustment family
    sigma: float
    specs: tuple[str, ...]
    by: tuple[str, ...]
    outcome: str
    model_name: str
