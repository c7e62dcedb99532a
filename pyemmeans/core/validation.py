"""
Input validation utilities for pyemmeans.

These validators follow the "fail fast, fail loud" principle. They raise
immediately with clear error messages rather than silently correcting
or making assumptions about user intent.

Design principles:
    - No silent type coercion (except np.asarray on array-likes)
    - No default handling of edge cases
    - Clear, actionable error messages with actual values
    - Each function validates ONE thing
    - Parameter names included in all error messages
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pyemmeans.core.exceptions import (
    ValidationError,
    DimensionError,
    RankDeficiency,
)


def check_array(
    array: ArrayLike,
    name: str,
) -> NDArray[np.floating[Any]]:
    """
    Validate and convert input to a float64 numpy array.

    Rejects inputs that result in object dtype (indicating mixed types or
    non-numeric data) and non-numeric dtypes.

    Args:
        array: Input to validate
        name: Parameter name for error messages

    Returns:
        numpy.ndarray with floating dtype

    Raises:
        ValidationError: If input cannot be converted to numeric array
    """
    try:
        result = np.asarray(array)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{name}: cannot convert to array: {e}") from e

    if result.dtype == object:
        raise ValidationError(
            f"{name}: converted to object dtype, indicating mixed types or non-numeric data"
        )

    if result.dtype == np.bool_:
        result = result.astype(np.float64)

    if not np.issubdtype(result.dtype, np.number):
        raise ValidationError(
            f"{name}: non-numeric dtype {result.dtype}, expected numeric data"
        )

    if not np.issubdtype(result.dtype, np.floating):
        result = result.astype(np.float64)

    return result


def check_finite(array: NDArray[np.floating[Any]], name: str) -> None:
    """
    Verify array contains no NaN or Inf values.

    Raises:
        ValidationError: If array contains non-finite values
    """
    if not np.all(np.isfinite(array)):
        n_nan = int(np.sum(np.isnan(array)))
        n_inf = int(np.sum(np.isinf(array)))
        raise ValidationError(
            f"{name}: contains non-finite values ({n_nan} NaN, {n_inf} Inf)"
        )


def check_ndim(array: NDArray, ndim: int, name: str) -> None:
    """
    Verify array has exactly the specified number of dimensions.

    Raises:
        DimensionError: If array has wrong number of dimensions
    """
    if array.ndim != ndim:
        raise DimensionError(
            f"{name}: expected {ndim}D array, got {array.ndim}D with shape {array.shape}"
        )


def check_1d(array: NDArray, name: str) -> None:
    """Verify array is 1-dimensional."""
    check_ndim(array, 1, name)


def check_consistent_length(
    *arrays: NDArray,
    names: tuple[str, ...]
) -> None:
    """
    Verify all arrays have the same length (first dimension).

    Raises:
        ValueError: If number of names doesn't match number of arrays
        DimensionError: If arrays have inconsistent lengths
    """
    if len(arrays) != len(names):
        raise ValueError(
            f"Number of arrays ({len(arrays)}) must match number of names ({len(names)})"
        )

    if len(arrays) < 2:
        return

    lengths = [arr.shape[0] for arr in arrays]
    if len(set(lengths)) > 1:
        details = ", ".join(f"{name}={length}" for name, length in zip(names, lengths))
        raise DimensionError(f"Inconsistent lengths: {details}")


def check_min_samples(array: NDArray, min_samples: int, name: str) -> None:
    """
    Verify array has at least the minimum number of samples.

    Raises:
        ValidationError: If array has fewer than min_samples
    """
    n = array.shape[0]
    if n < min_samples:
        raise ValidationError(
            f"{name}: requires at least {min_samples} samples, got {n}"
        )


def check_min_levels(labels: NDArray, min_levels: int, name: str) -> None:
    """
    Verify a grouping vector has at least ``min_levels`` distinct values.

    Raises:
        ValidationError: If there are fewer distinct values
    """
    n_levels = len(np.unique(labels))
    if n_levels < min_levels:
        raise ValidationError(
            f"{name}: need at least {min_levels} distinct levels, got {n_levels}"
        )


def check_column_rank(
    X: NDArray[np.floating[Any]],
    name: str,
    column_names: Iterable[str] | None = None,
    tol: float = 1e-7,
) -> None:
    """
    Verify matrix has full column rank.

    Columns are screened in order; a column that does not increase the
    rank of the columns before it is reported as aliased, the way R's
    ``lm`` reports aliased coefficients.

    Args:
        X: 2D array to check
        name: Parameter name for error messages
        column_names: Labels for the columns of X, used in the message
        tol: Relative tolerance on singular values

    Raises:
        RankDeficiency: If matrix is rank-deficient
    """
    n, p = X.shape
    labels = list(column_names) if column_names is not None else [
        f"X{j}" for j in range(p)
    ]

    aliased: list[str] = []
    kept: list[int] = []
    for j in range(p):
        candidate = X[:, kept + [j]]
        s = np.linalg.svd(candidate, compute_uv=False)
        if s.size == 0 or s[-1] <= tol * max(s[0], 1.0):
            aliased.append(labels[j])
        else:
            kept.append(j)

    if aliased:
        raise RankDeficiency(
            f"{name}: rank-deficient (rank={len(kept)}, expected={p}); "
            f"aliased columns: {aliased}. A factor level or level "
            f"combination probably has no observations.",
            matrix_name=name,
            rank=len(kept),
            expected_rank=p,
            aliased=tuple(aliased),
        )


def as_columns(data: Any, names: Iterable[str]) -> dict[str, NDArray]:
    """
    Extract named 1-D columns from a DataFrame or mapping of arrays.

    Args:
        data: ``pandas.DataFrame`` or any mapping of column name -> array-like
        names: Columns to extract

    Returns:
        Dict of column name -> 1-D numpy array (dtype preserved)

    Raises:
        ValidationError: If data is not tabular or a column is missing
        DimensionError: If columns are not 1-D or have different lengths
    """
    if not (isinstance(data, Mapping) or hasattr(data, 'columns')):
        raise ValidationError(
            f"data: expected a DataFrame or mapping of columns, "
            f"got {type(data).__name__}"
        )

    available = list(data.columns) if hasattr(data, 'columns') else list(data.keys())
    columns: dict[str, NDArray] = {}
    for name in names:
        if name not in available:
            raise ValidationError(
                f"data: column {name!r} not found. Available: {available}"
            )
        col = np.asarray(data[name])
        check_1d(col, name)
        columns[name] = col

    if columns:
        check_consistent_length(*columns.values(), names=tuple(columns.keys()))
    return columns
