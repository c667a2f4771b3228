"""analytic Rank-based Enrichment Analysis (aREA).

For every regulator r and sample s, aREA tests whether the targets of r are
coherently shifted in the rank-transformed signature of s:

  sum1 = Σ mode · w · two_tail          directional evidence
  sum2 = Σ (1 − |mode|) · w · one_tail  undirected evidence
  es   = (|sum1| + max(sum2, 0)) · sign(sum1),   sign(0) := +1

with w the likelihood scaled to sum to one, so es is a weighted mean of
z-like scores. The normalized score is nes = es · sqrt(Σ w²) where w is here
the likelihood scaled by its maximum.

Two strategies compute the same quantity:

  matrix — one dense (targets × regulators) weight matrix and a single
           product against all samples. Used when the target union is small.
  loop   — one regulator at a time, parallelized over regulators. Required
           when a per-gene, per-sample weight matrix is supplied.
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional

import numpy as np
import pandas as pd

from .rank_transform import filter_row_matrix, rank_transform_array
from .regulon import Regulator, Regulon
from .signature import as_signature_frame
from .errors import InputShapeError
from .utils.parallel import parallel_map

log = logging.getLogger(__name__)

# Above this many distinct targets the dense matrix strategy is abandoned.
MAX_MATRIX_TARGETS = 1000


# ── Result containers ─────────────────────────────────────────────────────────

@dataclass
class AreaResult:
    """Enrichment scores, regulators (rows) × samples (columns)."""

    es: pd.DataFrame
    nes: pd.DataFrame


def empty_result(columns) -> AreaResult:
    """Zero-row result, returned when no regulator survives filtering."""
    frame = pd.DataFrame(index=pd.Index([], dtype=object), columns=columns, dtype=float)
    return AreaResult(es=frame, nes=frame.copy())


def combine_tails(sum1: np.ndarray, sum2: np.ndarray) -> np.ndarray:
    """Merge directional and undirected evidence into a signed score.

    The undirected term only adds weight toward the direction already set by
    sum1. A zero directional sum counts as positive.
    """
    sign = np.where(sum1 < 0, -1.0, 1.0)
    return (np.abs(sum1) + np.where(sum2 > 0, sum2, 0.0)) * sign


def score_matrix(
    two_tail: np.ndarray,
    one_tail: np.ndarray,
    mor: np.ndarray,
    wts: np.ndarray,
) -> np.ndarray:
    """Raw enrichment scores from target-row transformed matrices.

    Args:
        two_tail: (n_targets × n_samples) two-tail scores of the target rows.
        one_tail: (n_targets × n_samples) one-tail scores of the target rows.
        mor: (n_targets × n_regulators) mode of regulation, zero off-target.
        wts: (n_targets × n_regulators) weights, each column summing to one.

    Returns:
        (n_regulators × n_samples) array of es.
    """
    sum1 = (mor * wts).T @ two_tail
    sum2 = ((1 - np.abs(mor)) * wts).T @ one_tail
    return combine_tails(sum1, sum2)


def normalized_weights(regulon: Regulon, targets: list) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Dense mode matrix, sum-normalized weights and the nes scale factors.

    Returns:
        Tuple (mor, wts, scale): mor and wts are (n_targets × n_regulators),
        scale is sqrt(Σ w²) per regulator with w scaled by its maximum.
    """
    mor, wts = regulon.mode_weight_matrices(targets)
    mor = mor.to_numpy(dtype=float)
    wts = wts.to_numpy(dtype=float)
    scale = np.sqrt((wts ** 2).sum(axis=0))
    wts = wts / wts.sum(axis=0)
    return mor, wts, scale


# ── Weight validation ─────────────────────────────────────────────────────────

def _check_weights(weights, eset: pd.DataFrame) -> Optional[np.ndarray]:
    if weights is None:
        return None
    if isinstance(weights, pd.DataFrame):
        if not (weights.index.equals(eset.index) and weights.columns.equals(eset.columns)):
            try:
                weights = weights.loc[eset.index, eset.columns]
            except KeyError as err:
                raise InputShapeError(
                    "Weight matrix does not cover every gene and sample of the signature."
                ) from err
        weights = weights.to_numpy(dtype=float)
    weights = np.asarray(weights, dtype=float)
    if weights.ndim == 1:
        weights = weights[:, None]
    if weights.shape != eset.shape:
        raise InputShapeError(
            f"Weight matrix shape {weights.shape} does not match signature {eset.shape}."
        )
    if not np.all(np.isfinite(weights)) or (weights < 0).any():
        raise ValueError("Weights must be finite and non-negative.")
    return weights


# ── Matrix strategy ───────────────────────────────────────────────────────────

def _area_matrix(eset: pd.DataFrame, regulon: Regulon) -> AreaResult:
    targets = regulon.targets()
    mor, wts, scale = normalized_weights(regulon, targets)
    two_tail, one_tail = rank_transform_array(eset.to_numpy(dtype=float))
    pos = eset.index.get_indexer(targets)
    es = score_matrix(
        filter_row_matrix(two_tail, pos), filter_row_matrix(one_tail, pos), mor, wts
    )
    es = pd.DataFrame(es, index=list(regulon), columns=eset.columns)
    return AreaResult(es=es, nes=es.mul(scale, axis=0))


# ── Loop strategy ─────────────────────────────────────────────────────────────

def _score_regulator(
    reg: Regulator,
    two_tail: np.ndarray,
    one_tail: np.ndarray,
    weights: np.ndarray,
    genes: pd.Index,
) -> tuple[np.ndarray, np.ndarray]:
    """es and per-sample nes scale for one regulator."""
    pos = genes.get_indexer(reg.targets)
    mode = reg.mode.to_numpy()
    lik = reg.likelihood.to_numpy()

    sum1 = (mode * lik) @ filter_row_matrix(two_tail, pos)
    sum2 = ((1 - np.abs(mode)) * lik) @ filter_row_matrix(one_tail, pos)
    ws = filter_row_matrix(weights, pos)
    denom = lik @ ws
    if (denom <= 0).any():
        raise ValueError(f"Weights vanish over every target of regulator '{reg.name}'.")
    es = combine_tails(sum1, sum2) / denom

    lw = lik[:, None] * ws
    scale = np.sqrt(((lw / lw.max(axis=0)) ** 2).sum(axis=0))
    return es, scale


def _area_loop(
    eset: pd.DataFrame,
    regulon: Regulon,
    weights: Optional[np.ndarray],
    n_workers: int,
) -> AreaResult:
    two_tail, one_tail = rank_transform_array(eset.to_numpy(dtype=float))
    if weights is None:
        weights = np.ones(eset.shape)
    score = partial(
        _score_regulator,
        two_tail=two_tail,
        one_tail=one_tail,
        weights=weights,
        genes=eset.index,
    )
    results = parallel_map(score, regulon.values(), n_workers=n_workers)
    es = np.vstack([r[0] for r in results])
    scale = np.vstack([r[1] for r in results])
    es = pd.DataFrame(es, index=list(regulon), columns=eset.columns)
    return AreaResult(es=es, nes=es * scale)


# ── aREA entry point ──────────────────────────────────────────────────────────

def area(
    eset,
    regulon: Regulon,
    method: str = "auto",
    minsize: int = 20,
    weights=None,
    n_workers: int = 1,
) -> AreaResult:
    """Score every regulator in every sample with aREA.

    Args:
        eset: Signature DataFrame (genes × samples) or Series (one sample).
        regulon: Regulon to score. Targets absent from eset are dropped.
        method: 'auto', 'matrix' or 'loop'. 'auto' uses the matrix strategy
            unless the target union exceeds 1000 genes or weights are given.
        minsize: Regulators with fewer surviving targets are skipped. Use 0 when
            the regulon was already filtered by the caller.
        weights: Optional (genes × samples) matrix of non-negative weights. It
            enters the per-sample normalization only.
        n_workers: Worker count for the loop strategy.

    Returns:
        AreaResult with es and nes DataFrames (regulators × samples), in
        regulon order. Zero rows if no regulator survives.

    Raises:
        ValueError: For an unknown method, or the matrix method with weights.
        InputShapeError: If eset or weights are malformed.
    """
    if method not in ("auto", "matrix", "loop"):
        raise ValueError(f"Unknown method '{method}'. Choose: auto, matrix, loop.")
    eset = as_signature_frame(eset)
    regulon = regulon.filter(eset.index, minsize=minsize)
    if not len(regulon):
        log.warning("No regulator with at least %s targets; returning empty result.", minsize)
        return empty_result(eset.columns)

    weights = _check_weights(weights, eset)
    if method == "auto":
        method = "matrix"
        if len(regulon.targets()) > MAX_MATRIX_TARGETS or weights is not None:
            method = "loop"
    if method == "matrix" and weights is not None:
        raise ValueError("The matrix method cannot use a weight matrix; use method='loop'.")

    log.debug(
        "aREA (%s): %d regulators × %d samples", method, len(regulon), eset.shape[1]
    )
    if method == "matrix":
        return _area_matrix(eset, regulon)
    return _area_loop(eset, regulon, weights, n_workers)
