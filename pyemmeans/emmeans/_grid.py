"""
Reference grid construction.

A reference grid is the set of predictor combinations at which marginal
means are evaluated. Each requested cell fixes the focal variables
(``specs`` and ``by``); every other fixed term is either averaged over its
levels or held at a single value. The resulting rows of the fixed-effect
design, averaged, give the linear function L with emmean = L·β.

Rules for non-focal terms:
    - factor: averaged with equal weights over its levels
      (``weights='equal'``) or held at its reference level
      (``weights='reference'``); ``at`` restricts the levels averaged
    - linear covariate: held at its observed mean (or the ``at`` values,
      averaged)
    - spline covariate: never averaged; it must be focal or pinned by a
      single ``at`` value

Every value given in ``at`` must have been observed for that term; a
value between observed ones is rejected rather than interpolated.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from typing import Any, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from pyemmeans.core.exceptions import UnsupportedCell, ValidationError
from pyemmeans.emmeans._common import Cell
from pyemmeans.mixed._terms import TermEncoder, TermInfo


WEIGHTING_SCHEMES = ('equal', 'reference')


@dataclass(frozen=True)
class GridCell:
    """One reference-grid cell and its linear function."""
    cell: Cell
    level: Any
    stratum: Cell | None
    L: NDArray


def as_name_tuple(names: str | Sequence[str] | None) -> tuple[str, ...]:
    if names is None:
        return ()
    if isinstance(names, str):
        return (names,)
    return tuple(names)


def _check_values(info: TermInfo, values: Sequence[Any]) -> tuple[Any, ...]:
    """Validate requested values of one term against what was observed."""
    values = tuple(values)
    if not values:
        raise ValidationError(f"at[{info.name!r}]: no values given")

    for v in values:
        if v not in info.levels:
            raise UnsupportedCell(
                f"{info.name} = {v!r} was never observed. "
                f"Observed: {list(info.levels)}",
                cell=((info.name, v),), available=info.levels,
            )
    return values


def _focal_values(
    info: TermInfo, at: Mapping[str, Sequence[Any]]
) -> tuple[Any, ...]:
    if info.name in at:
        return _check_values(info, at[info.name])
    if info.kind == 'linear':
        return (info.center,)
    return info.levels


def _background_values(
    info: TermInfo, at: Mapping[str, Sequence[Any]], weights: str
) -> tuple[Any, ...]:
    if info.name in at:
        values = _check_values(info, at[info.name])
        if info.kind == 'spline' and len(values) > 1:
            raise UnsupportedCell(
                f"{info.name} enters the model through a spline basis and "
                f"cannot be averaged over {len(values)} values; put it in "
                f"'by' or give a single 'at' value",
                cell=tuple((info.name, v) for v in values),
            )
        return values
    if info.kind == 'spline':
        raise UnsupportedCell(
            f"{info.name} enters the model through a spline basis and "
            f"cannot be averaged over; put it in 'by' or give an 'at' value",
            available=info.levels,
        )
    if info.kind == 'linear':
        return (info.center,)
    if weights == 'reference':
        return (info.levels[0],)
    return info.levels


def _encode_average(
    encoder: TermEncoder, fixed: dict[str, Any], background: dict[str, tuple]
) -> NDArray:
    """Average the encoded rows over every combination of background values."""
    names = list(background)
    combos = list(product(*(background[n] for n in names))) or [()]
    columns: dict[str, NDArray] = {}
    for info in encoder.terms:
        if info.name in fixed:
            columns[info.name] = np.asarray([fixed[info.name]] * len(combos))
        else:
            k = names.index(info.name)
            columns[info.name] = np.asarray([combo[k] for combo in combos])
    return encoder.encode(columns).mean(axis=0)


def reference_grid(
    encoder: TermEncoder,
    specs: str | Sequence[str],
    *,
    by: str | Sequence[str] | None = None,
    at: Mapping[str, Sequence[Any]] | None = None,
    weights: str = 'equal',
) -> list[GridCell]:
    """Build the reference grid for ``specs`` (optionally stratified ``by``).

    Cells are ordered stratum by stratum, with the ``specs`` levels varying
    within each stratum.

    Args:
        encoder: Term encoder of the fitted model.
        specs: Factor name(s) whose levels are compared.
        by: Variable(s) to stratify by.
        at: name → values restricting the grid (focal variables) or the
            values averaged over (non-focal variables).
        weights: 'equal' or 'reference' treatment of non-focal factors.

    Returns:
        List of GridCell.

    Raises:
        ValidationError: Malformed request (unknown variable, overlap
            between specs and by, unknown weighting scheme).
        UnsupportedCell: A requested level or value was never observed, or
            a spline covariate would have to be averaged over.
    """
    specs_t = as_name_tuple(specs)
    by_t = as_name_tuple(by)
    at = dict(at or {})

    if not specs_t:
        raise ValidationError("specs: at least one factor is required")
    if weights not in WEIGHTING_SCHEMES:
        raise ValidationError(
            f"weights must be one of {WEIGHTING_SCHEMES}, got {weights!r}"
        )
    overlap = set(specs_t) & set(by_t)
    if overlap:
        raise ValidationError(f"{sorted(overlap)} appear in both specs and by")

    known = {info.name for info in encoder.terms}
    for name in (*specs_t, *by_t, *at):
        if name not in known:
            raise ValidationError(
                f"{name!r} is not a fixed term of the model. "
                f"Fixed terms: {sorted(known)}"
            )

    focal = {name: _focal_values(encoder.term(name), at)
             for name in (*specs_t, *by_t)}
    background = {info.name: _background_values(info, at, weights)
                  for info in encoder.terms if info.name not in focal}

    cells = []
    for by_values in product(*(focal[n] for n in by_t)):
        stratum = tuple(zip(by_t, by_values)) if by_t else None
        for spec_values in product(*(focal[n] for n in specs_t)):
            fixed = dict(zip(specs_t, spec_values))
            fixed.update(zip(by_t, by_values))
            L = _encode_average(encoder, fixed, background)
            level = spec_values[0] if len(specs_t) == 1 else tuple(spec_values)
            cells.append(GridCell(
                cell=tuple(zip(specs_t, spec_values)) + (stratum or ()),
                level=level,
                stratum=stratum,
                L=L,
            ))
    return cells
