"""
Design validation for mixed models.

MixedDesign validates and organizes the inputs of a fit: it pulls the
columns a ModelSpec references out of the data, checks the outcome
against the family's domain, encodes the fixed effects, checks their rank,
and builds the random-effect structure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pyemmeans.core.exceptions import ValidationError
from pyemmeans.core.validation import (
    as_columns,
    check_array,
    check_column_rank,
    check_min_samples,
)
from pyemmeans.families import Family
from pyemmeans.mixed.model import ModelSpec
from pyemmeans.mixed._terms import TermEncoder, build_encoder
from pyemmeans.mixed._random_effects import (
    RandomEffectSpec, parse_random_effects, build_z_matrix,
)


@dataclass(frozen=True)
class MixedDesign:
    """Validated design for a mixed model.

    Attributes:
        y: Response vector (n,).
        X: Fixed effects design matrix (n, p).
        Z: Random effects design matrix (n, q); q may be 0.
        specs: One RandomEffectSpec per (expanded) grouping factor.
        encoder: Encoder that produced X, reused for reference grids.
        family: The resolved error family.
        n: Number of observations.
        p: Number of fixed effect columns.
    """
    y: NDArray
    X: NDArray
    Z: NDArray
    specs: list[RandomEffectSpec]
    encoder: TermEncoder
    family: Family
    n: int
    p: int

    @staticmethod
    def from_data(data: Any, spec: ModelSpec) -> 'MixedDesign':
        """Validate inputs and create a MixedDesign.

        Args:
            data: DataFrame or mapping of column name → 1-D array.
            spec: The model specification.

        Returns:
            Validated MixedDesign.

        Raises:
            ValidationError: Missing columns, too few observations, a
                grouping factor with fewer than 2 levels.
            DomainViolation: Outcome outside the family's support.
            RankDeficiency: Fixed-effect design not of full column rank.
        """
        names = [spec.response, *spec.fixed]
        names += [c for c in spec.grouping_columns if c not in names]
        columns = as_columns(data, names)

        y = check_array(columns[spec.response], spec.response).ravel()
        n = len(y)
        check_min_samples(y, 3, spec.response)

        family = spec.family.build()
        family.check_domain(y)

        encoder = build_encoder(spec, columns)
        X = encoder.encode({term: columns[term] for term in spec.fixed})
        if X.shape[0] != n:
            raise ValidationError(
                f"design has {X.shape[0]} rows, expected {n} (matching y)"
            )
        check_column_rank(X, 'X', column_names=encoder.column_names)

        specs = parse_random_effects(spec.random, columns, n)
        Z = build_z_matrix(specs, n)

        return MixedDesign(
            y=y.astype(np.float64),
            X=X,
            Z=Z,
            specs=specs,
            encoder=encoder,
            family=family,
            n=n,
            p=X.shape[1],
        )
