"""
Random effects specification, Z matrix construction, and Λ_θ parameterization.

This module handles:
1. Expanding RandomTerm objects (crossed and nested intercepts, slopes) into
   one RandomEffectSpec per grouping factor
2. Building the random effects design matrix Z
3. Constructing the relative covariance factor Λ_θ from the θ parameter vector
4. Computing θ bounds and starting values for the optimizer

The θ parameterization follows Bates et al. (2015): θ contains the elements
of the lower-triangular Cholesky factor of the *relative* covariance matrix.
For the GLMM families used here the scale is absorbed into the family's
information weights, so Λ_θ Λ_θ' is the random-effect covariance itself.

A model without random terms has an empty spec list; Z then has zero
columns and every routine below degrades to the fixed-effects-only case.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray

from pyemmeans.core.exceptions import ValidationError
from pyemmeans.core.validation import check_array, check_finite, check_min_levels
from pyemmeans.mixed.model import RandomTerm


@dataclass(frozen=True)
class RandomEffectSpec:
    """Specification for one grouping factor's random effects.

    Attributes:
        group_name: Name of the grouping factor (e.g. 'subject' or
            'animal:cell' for a nested term).
        group_ids: Integer group labels for each observation, shape (n,).
            Values are 0-indexed consecutive integers.
        levels: Original labels, indexed by group id.
        terms: Names of the random effect terms (e.g. ('1',) or ('1', 'time')).
        Z_block: Design matrix block for this grouping factor, shape (n, J*q)
            where J = n_groups and q = n_terms.
        n_groups: Number of unique groups (J).
        n_terms: Number of random effect terms per group (q).
        theta_size: Number of θ parameters for this block = q*(q+1)/2.
    """
    group_name: str
    group_ids: NDArray
    levels: tuple
    terms: tuple[str, ...]
    Z_block: NDArray
    n_groups: int
    n_terms: int
    theta_size: int


def expand_random_terms(
    random: tuple[RandomTerm, ...],
    columns: dict[str, NDArray],
) -> list[tuple[str, NDArray, tuple[str, ...]]]:
    """Turn RandomTerm objects into (group name, labels, terms) triples.

    Nested terms ``(1 | a/b)`` become ``(1 | a)`` and ``(1 | a:b)``; the
    ``a`` intercept is added only once even if several terms nest in it.
    """
    expanded: list[tuple[str, NDArray, tuple[str, ...]]] = []
    seen: set[str] = set()

    def add(name: str, labels: NDArray, terms: tuple[str, ...]) -> None:
        if name in seen:
            return
        seen.add(name)
        expanded.append((name, labels, terms))

    for term in random:
        slope_terms = ('1',) + term.slopes
        if term.nested_in is None:
            add(term.group, np.asarray(columns[term.group]), slope_terms)
        else:
            outer = np.asarray(columns[term.nested_in])
            inner = np.asarray(columns[term.group])
            add(term.nested_in, outer, ('1',))
            combined = np.array(
                [f"{o}:{i}" for o, i in zip(outer, inner)], dtype=object
            ).astype(str)
            add(f"{term.nested_in}:{term.group}", combined, slope_terms)
    return expanded


def parse_random_effects(
    random: tuple[RandomTerm, ...],
    columns: dict[str, NDArray],
    n: int,
) -> list[RandomEffectSpec]:
    """Parse random terms into structured RandomEffectSpec objects.

    Args:
        random: Random terms from the ModelSpec (possibly empty).
        columns: Data columns referenced by the terms.
        n: Number of observations.

    Returns:
        List of RandomEffectSpec, one per (expanded) grouping factor.

    Raises:
        ValidationError: If a grouping factor has fewer than 2 levels or a
            slope column is not numeric.
    """
    specs = []
    for group_name, labels, terms in expand_random_terms(random, columns):
        if labels.shape[0] != n:
            raise ValidationError(
                f"Group '{group_name}' has {labels.shape[0]} elements, "
                f"expected {n}"
            )
        check_min_levels(labels, 2, f"group '{group_name}'")

        # Map to consecutive 0-indexed integers
        unique_levels, group_ids = np.unique(labels, return_inverse=True)
        n_groups = len(unique_levels)

        slope_data = {}
        for term in terms:
            if term != '1':
                x = check_array(columns[term], term).ravel()
                check_finite(x, term)
                slope_data[term] = x

        Z_block = _build_z_block(group_ids, n_groups, terms, slope_data, n)
        n_terms = len(terms)

        specs.append(RandomEffectSpec(
            group_name=group_name,
            group_ids=group_ids,
            levels=tuple(unique_levels.tolist()),
            terms=terms,
            Z_block=Z_block,
            n_groups=n_groups,
            n_terms=n_terms,
            theta_size=n_terms * (n_terms + 1) // 2,
        ))

    return specs


def _build_z_block(
    group_ids: NDArray,
    n_groups: int,
    terms: tuple[str, ...],
    slope_data: dict[str, NDArray],
    n: int,
) -> NDArray:
    """Build the Z matrix block for one grouping factor.

    Layout: columns are ordered as [term0_group0, term0_group1, ...,
    term1_group0, term1_group1, ...] — i.e., term-major ordering.

    For intercept ('1'): Z[i, j] = 1 if observation i belongs to group j.
    For slope (e.g. 'time'): Z[i, j] = time[i] if observation i belongs to group j.
    """
    q = len(terms)
    Z = np.zeros((n, n_groups * q), dtype=np.float64)
    rows = np.arange(n)

    for t_idx, term in enumerate(terms):
        cols = t_idx * n_groups + group_ids
        Z[rows, cols] = 1.0 if term == '1' else slope_data[term]

    return Z


def build_z_matrix(specs: list[RandomEffectSpec], n: int) -> NDArray:
    """Concatenate Z blocks from all grouping factors.

    Z = [Z_1 | Z_2 | ...], shape (n, total_q); (n, 0) without random terms.
    """
    if not specs:
        return np.zeros((n, 0), dtype=np.float64)
    return np.hstack([spec.Z_block for spec in specs])


def _lower_triangle(theta_k: NDArray, q: int) -> NDArray:
    """Unpack q*(q+1)/2 row-major elements into a lower-triangular matrix."""
    T = np.zeros((q, q), dtype=np.float64)
    T[np.tril_indices(q)] = theta_k
    return T


def build_lambda(theta: NDArray, specs: list[RandomEffectSpec]) -> NDArray:
    """Build block-diagonal Λ_θ from the theta parameter vector.

    For grouping factor k with q_k terms and J_k groups the block is
    T_k ⊗ I_J_k, matching the term-major column order of Z.
    """
    total_q = sum(s.n_groups * s.n_terms for s in specs)
    Lambda = np.zeros((total_q, total_q), dtype=np.float64)

    theta_offset = 0
    col_offset = 0

    for spec in specs:
        q = spec.n_terms
        J = spec.n_groups
        T = _lower_triangle(theta[theta_offset:theta_offset + spec.theta_size], q)
        theta_offset += spec.theta_size

        Lambda[col_offset:col_offset + J * q, col_offset:col_offset + J * q] = (
            np.kron(T, np.eye(J))
        )
        col_offset += J * q

    return Lambda


def covariance_blocks(
    theta: NDArray, specs: list[RandomEffectSpec]
) -> list[NDArray]:
    """Per-factor random-effect covariance matrices T_k T_k'."""
    blocks = []
    offset = 0
    for spec in specs:
        T = _lower_triangle(theta[offset:offset + spec.theta_size], spec.n_terms)
        offset += spec.theta_size
        blocks.append(T @ T.T)
    return blocks


def theta_lower_bounds(specs: list[RandomEffectSpec]) -> NDArray:
    """Lower bounds for θ: 0 on the Cholesky diagonal, -inf elsewhere."""
    bounds = []
    for spec in specs:
        q = spec.n_terms
        for row in range(q):
            for col in range(row + 1):
                bounds.append(0.0 if row == col else -np.inf)
    return np.array(bounds, dtype=np.float64)


def theta_start(specs: list[RandomEffectSpec]) -> NDArray:
    """Starting θ: 1 on the diagonal, 0 off the diagonal."""
    theta0 = []
    for spec in specs:
        q = spec.n_terms
        for row in range(q):
            for col in range(row + 1):
                theta0.append(1.0 if row == col else 0.0)
    return np.array(theta0, dtype=np.float64)


def diagonal_theta_indices(specs: list[RandomEffectSpec]) -> list[tuple[str, str, int]]:
    """(group, term, index into θ) for every diagonal θ element."""
    out = []
    offset = 0
    for spec in specs:
        idx = 0
        for row in range(spec.n_terms):
            for col in range(row + 1):
                if row == col:
                    out.append((spec.group_name, spec.terms[row], offset + idx))
                idx += 1
        offset += spec.theta_size
    return out
