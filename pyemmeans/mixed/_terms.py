"""
Fixed-effect term encoding and model matrix construction.

Handles the translation from a ModelSpec's fixed terms to a numeric design
matrix, and keeps everything needed to encode *new* rows later (factor
levels, covariate means, spline knots). The marginal-estimation stage uses
the same encoder to build reference-grid rows, so a grid row and a data row
with the same predictor values always get the same columns.

Key concepts:
    - Treatment coding: k-1 indicator columns (baseline = first level)
    - Linear covariate: one numeric column
    - Spline covariate: B-spline basis without the first function
      (like R's splines::bs), interior knots at quantiles of the
      observed distinct values
    - Interaction: element-wise products of all column pairs
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy.interpolate import BSpline

from pyemmeans.core.exceptions import ValidationError
from pyemmeans.core.validation import check_array, check_finite
from pyemmeans.mixed.model import ModelSpec


@dataclass(frozen=True)
class TermInfo:
    """Encoding metadata for one fixed term (main effect).

    Attributes:
        name: Column name in the data.
        kind: 'categorical', 'linear' or 'spline'.
        levels: Observed (or declared) levels, reference first. For linear
            and spline terms: sorted distinct observed values.
        center: Observed mean (linear terms).
        knots: Full B-spline knot vector (spline terms).
        degree: Spline degree.
        column_labels: Labels of the columns this term contributes.
    """
    name: str
    kind: str
    levels: tuple[Any, ...]
    center: float = 0.0
    knots: tuple[float, ...] = ()
    degree: int = 3
    column_labels: tuple[str, ...] = ()

    @property
    def n_columns(self) -> int:
        return len(self.column_labels)

    def encode(self, values: NDArray) -> NDArray:
        """Encode raw values into this term's columns, shape (n, n_columns)."""
        if self.kind == 'categorical':
            return encode_treatment(values, self.levels, name=self.name)
        x = check_array(values, self.name).ravel()
        check_finite(x, self.name)
        if self.kind == 'linear':
            return x.reshape(-1, 1)
        return spline_basis(x, np.asarray(self.knots), self.degree, name=self.name)


@dataclass(frozen=True)
class TermEncoder:
    """Reusable encoder from predictor columns to the fixed-effect matrix.

    Attributes:
        terms: Main-effect encoders, in ModelSpec.fixed order.
        interactions: Pairs of term names.
        column_names: Labels of every column in the encoded matrix,
            starting with '(Intercept)'.
    """
    terms: tuple[TermInfo, ...]
    interactions: tuple[tuple[str, str], ...]
    column_names: tuple[str, ...]

    @property
    def p(self) -> int:
        return len(self.column_names)

    def term(self, name: str) -> TermInfo:
        for info in self.terms:
            if info.name == name:
                return info
        raise KeyError(
            f"No fixed term {name!r}. Available: {[t.name for t in self.terms]}"
        )

    def encode(self, columns: dict[str, NDArray]) -> NDArray:
        """Build the design matrix for the given predictor columns.

        Args:
            columns: term name -> 1-D array of raw values (all the same length).

        Returns:
            (n, p) float64 design matrix.
        """
        n = len(next(iter(columns.values()))) if columns else 0
        blocks = [np.ones((n, 1), dtype=np.float64)]
        main: dict[str, NDArray] = {}
        for info in self.terms:
            if info.name not in columns:
                raise ValidationError(
                    f"Missing predictor column {info.name!r} for encoding"
                )
            main[info.name] = info.encode(np.asarray(columns[info.name]))
            blocks.append(main[info.name])
        for a, b in self.interactions:
            blocks.append(interaction_columns(main[a], main[b]))
        return np.hstack(blocks)


def _sorted_levels(values: NDArray) -> tuple[Any, ...]:
    return tuple(np.unique(values).tolist())


def _format_level(level: Any) -> str:
    if isinstance(level, float) and level.is_integer():
        return str(int(level))
    return str(level)


def encode_treatment(
    factor: NDArray,
    levels: tuple[Any, ...],
    *,
    name: str = 'factor',
) -> NDArray:
    """
    Treatment (dummy) coding for a single factor.

    Drops the first level (baseline) and creates k-1 indicator columns.

    Args:
        factor: 1D array of group labels
        levels: All levels, baseline first
        name: Factor name for error messages

    Returns:
        (n, k-1) float64 indicator matrix

    Raises:
        ValidationError: If factor contains a value not in levels
    """
    factor = np.asarray(factor)
    known = np.zeros(len(factor), dtype=bool)
    X = np.zeros((len(factor), len(levels) - 1), dtype=np.float64)

    for j, level in enumerate(levels):
        mask = factor == level
        known |= mask
        if j > 0:
            X[:, j - 1] = mask.astype(np.float64)

    if not np.all(known):
        unknown = sorted({str(v) for v in factor[~known]})
        raise ValidationError(
            f"{name}: values {unknown} are not among the levels "
            f"{[str(v) for v in levels]}"
        )
    return X


def spline_knots(x: NDArray, df: int, degree: int) -> NDArray:
    """Knot vector for a B-spline basis with ``df`` columns (first dropped).

    Interior knots sit at quantiles of the distinct observed values, and
    the boundary knots are repeated ``degree + 1`` times.
    """
    unique = np.unique(x)
    n_interior = df - degree
    if len(unique) < n_interior + 2:
        raise ValidationError(
            f"spline with df={df} needs at least {n_interior + 2} distinct "
            f"values, got {len(unique)}"
        )
    lo, hi = float(unique[0]), float(unique[-1])
    if n_interior > 0:
        probs = np.linspace(0.0, 1.0, n_interior + 2)[1:-1]
        interior = np.quantile(unique, probs)
    else:
        interior = np.array([], dtype=np.float64)
    return np.concatenate([
        np.full(degree + 1, lo), interior, np.full(degree + 1, hi)
    ])


def spline_basis(
    x: NDArray,
    knots: NDArray,
    degree: int,
    *,
    name: str = 'x',
) -> NDArray:
    """Evaluate the B-spline basis (minus its first function) at x.

    Raises:
        ValidationError: If any x lies outside the boundary knots.
    """
    lo, hi = knots[0], knots[-1]
    if np.any(x < lo) or np.any(x > hi):
        raise ValidationError(
            f"{name}: values outside the spline range [{lo}, {hi}]"
        )
    n_basis = len(knots) - degree - 1
    basis = BSpline(knots, np.eye(n_basis), degree, extrapolate=True)(x)
    return np.asarray(basis, dtype=np.float64)[:, 1:]


def interaction_columns(
    X_a: NDArray, X_b: NDArray,
) -> NDArray:
    """
    Compute interaction columns as the element-wise product of all
    column pairs from X_a and X_b.

    Args:
        X_a: (n, p_a) columns for term A
        X_b: (n, p_b) columns for term B

    Returns:
        (n, p_a * p_b) interaction columns, A-major order
    """
    n = X_a.shape[0]
    return (X_a[:, :, np.newaxis] * X_b[:, np.newaxis, :]).reshape(n, -1)


def build_encoder(spec: ModelSpec, columns: dict[str, NDArray]) -> TermEncoder:
    """Learn levels, centers and knots from the data and build an encoder.

    Args:
        spec: The model specification.
        columns: term name -> 1-D array of observed values.

    Returns:
        TermEncoder ready to encode the training data or grid rows.
    """
    infos: list[TermInfo] = []
    for term in spec.fixed:
        cov = spec.covariate(term)
        values = np.asarray(columns[term])

        if cov.kind == 'categorical':
            observed = _sorted_levels(values)
            if cov.levels is not None:
                missing = [v for v in observed if v not in cov.levels]
                if missing:
                    raise ValidationError(
                        f"{term}: observed values {missing} are not in the "
                        f"declared levels {list(cov.levels)}"
                    )
                levels = cov.levels
            else:
                levels = observed
            if len(levels) < 2:
                raise ValidationError(
                    f"{term}: need at least 2 levels, got {len(levels)}"
                )
            labels = tuple(f"{term}{_format_level(lev)}" for lev in levels[1:])
            infos.append(TermInfo(term, 'categorical', tuple(levels),
                                  column_labels=labels))

        elif cov.kind == 'linear':
            x = check_array(values, term).ravel()
            check_finite(x, term)
            infos.append(TermInfo(
                term, 'linear', _sorted_levels(x),
                center=float(np.mean(x)), column_labels=(term,),
            ))

        else:
            x = check_array(values, term).ravel()
            check_finite(x, term)
            knots = spline_knots(x, cov.df, cov.degree)
            labels = tuple(f"bs({term}){k}" for k in range(1, cov.df + 1))
            infos.append(TermInfo(
                term, 'spline', _sorted_levels(x),
                center=float(np.mean(x)), knots=tuple(knots.tolist()),
                degree=cov.degree, column_labels=labels,
            ))

    by_name = {info.name: info for info in infos}
    names = ['(Intercept)']
    for info in infos:
        names.extend(info.column_labels)
    for a, b in spec.interactions:
        labels = [f"{la}:{lb}" for la in by_name[a].column_labels
                  for lb in by_name[b].column_labels]
        names.extend(labels)

    return TermEncoder(
        terms=tuple(infos),
        interactions=tuple(spec.interactions),
        column_names=tuple(names),
    )
