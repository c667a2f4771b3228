"""Quantile transform of signatures into the two scales used by aREA.

Each sample column is ranked (mid-ranks for ties) and the ranks are mapped to
quantiles ``rank / (n + 1)``. Two matrices are derived from those quantiles:

  two_tail — Φ⁻¹(quantile). Keeps direction: genes at the top of the
             signature are large positive, genes at the bottom large negative.
  one_tail — Φ⁻¹ of the folded quantile ``|q − 0.5| × 2``, shifted by
             ``(1 − max) / 2`` so that the most extreme gene stays strictly
             inside (0, 1). Encodes magnitude only.

Both are z-like values, not probabilities.
"""

from typing import NamedTuple

import numpy as np
import pandas as pd
from scipy.stats import norm, rankdata

from .errors import DegenerateDistributionError


class TransformedSignature(NamedTuple):
    two_tail: pd.DataFrame
    one_tail: pd.DataFrame


# ── Rank transform ────────────────────────────────────────────────────────────

def rank_transform_array(values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Rank-transform a genes × samples array column by column.

    Args:
        values: 2-D array of shape (n_genes × n_samples).

    Returns:
        Tuple (two_tail, one_tail) of arrays with the same shape.

    Raises:
        DegenerateDistributionError: If a column contains non-finite values or
            has no spread, which leaves the rank position undefined.
    """
    values = np.asarray(values, dtype=float)
    if values.ndim == 1:
        values = values[:, None]
    if not np.all(np.isfinite(values)):
        raise DegenerateDistributionError("Signature contains non-finite values.")
    constant = np.ptp(values, axis=0) == 0
    if values.shape[0] < 2 or constant.any():
        bad = np.flatnonzero(constant).tolist() if values.shape[0] >= 2 else "all"
        raise DegenerateDistributionError(
            f"Cannot rank-transform constant column(s): {bad}"
        )

    n = values.shape[0]
    quantiles = rankdata(values, method="average", axis=0) / (n + 1)
    folded = np.abs(quantiles - 0.5) * 2
    folded = folded + (1 - folded.max(axis=0)) / 2
    return norm.ppf(quantiles), norm.ppf(folded)


def rank_transform(eset: pd.DataFrame) -> TransformedSignature:
    """Rank-transform a signature matrix into two-tail and one-tail scores.

    Args:
        eset: Signature DataFrame of shape (n_genes × n_samples).

    Returns:
        TransformedSignature with two_tail and one_tail DataFrames sharing the
        index and columns of eset.
    """
    two_tail, one_tail = rank_transform_array(eset.to_numpy(dtype=float))
    return TransformedSignature(
        two_tail=pd.DataFrame(two_tail, index=eset.index, columns=eset.columns),
        one_tail=pd.DataFrame(one_tail, index=eset.index, columns=eset.columns),
    )


# ── Row selection ─────────────────────────────────────────────────────────────

def filter_row_matrix(matrix: np.ndarray, positions) -> np.ndarray:
    """Select matrix rows by position, keeping a 2-D shape.

    Positions may repeat and appear in any order.
    """
    matrix = np.asarray(matrix)
    if matrix.ndim == 1:
        matrix = matrix[:, None]
    return matrix[np.asarray(positions, dtype=int), :]
