"""Gene expression signatures and sample-permutation null models.

Single-sample signatures (``compute_signature``) compare each sample with the
rest of the dataset, gene by gene:

  scale — z-score of each gene across samples
  rank  — rank of each sample within each gene
  mad   — robust z-score, (x − median) / MAD
  ttest — one-sample t statistic of (sample − every other sample)
  none  — the matrix is already a signature

Reference-group signatures (``viper_signature``) compare test samples with a
set of reference samples and, when enough samples are available, build a null
model by repeatedly splitting the reference group in two. The null model is a
genes × permutations matrix consumed by the NES calibration step.

Usage:
    ss = viper_signature(tumour_df, normal_df, method="ttest", per=1000, seed=1)
    nes = viper(ss, regulon)
"""

import logging
import warnings
from functools import partial
from itertools import combinations, islice
from math import comb
from typing import NamedTuple, Optional

import numpy as np
import pandas as pd
from scipy.stats import median_abs_deviation, norm, rankdata, ttest_1samp

from .errors import InputShapeError, NullModelInsufficiencyWarning
from .utils.parallel import parallel_map

log = logging.getLogger(__name__)

SIGNATURE_METHODS = ("scale", "rank", "mad", "ttest", "none")
REFERENCE_METHODS = ("ttest", "zscore", "mean")

# Sample-permutation nulls need at least this many samples.
MIN_NULL_SAMPLES = 12
# Redraws attempted for a t-test permutation that yields undefined statistics.
MAX_REDRAWS = 100


class ViperSignature(NamedTuple):
    signature: pd.DataFrame
    nullmodel: Optional[pd.DataFrame]


# ── Input normalization ───────────────────────────────────────────────────────

def as_signature_frame(eset) -> pd.DataFrame:
    """Normalize a signature input to a float genes × samples DataFrame.

    Args:
        eset: DataFrame (genes × samples) or Series (one sample) indexed by
            gene identifiers.

    Returns:
        Float DataFrame.

    Raises:
        InputShapeError: If gene identifiers are missing or duplicated, or
            there is no gene or no sample.
    """
    if isinstance(eset, pd.Series):
        eset = eset.to_frame(name=eset.name if eset.name is not None else 0)
    if not isinstance(eset, pd.DataFrame):
        raise InputShapeError(
            "Signatures must be a pandas DataFrame or Series indexed by gene."
        )
    if eset.shape[1] < 1:
        raise InputShapeError("Signature has no samples.")
    if eset.shape[0] < 1:
        raise InputShapeError("Signature has no genes.")
    if not eset.index.is_unique:
        dups = eset.index[eset.index.duplicated()].unique().tolist()[:5]
        raise InputShapeError(f"Gene identifiers are not unique, e.g. {dups}")
    return eset.astype(float)


def _require_samples(eset: pd.DataFrame, n: int, method: str) -> None:
    if eset.shape[1] < n:
        raise InputShapeError(
            f"Signature method '{method}' needs at least {n} samples, got {eset.shape[1]}."
        )


# ── Single-sample signatures ──────────────────────────────────────────────────

def compute_signature(eset, method: str = "scale") -> pd.DataFrame:
    """Turn an expression matrix into single-sample signatures.

    Genes with no spread across samples get a signature of zero.

    Args:
        eset: Expression DataFrame (genes × samples).
        method: One of 'scale', 'rank', 'mad', 'ttest', 'none'.

    Returns:
        Signature DataFrame with the same index and columns.

    Raises:
        ValueError: For an unknown method.
        InputShapeError: If the method needs more samples than available.
    """
    if method not in SIGNATURE_METHODS:
        raise ValueError(
            f"Unknown method '{method}'. Choose: {', '.join(SIGNATURE_METHODS)}."
        )
    eset = as_signature_frame(eset)
    if method == "none":
        return eset.copy()

    values = eset.to_numpy()
    with np.errstate(divide="ignore", invalid="ignore"):
        if method == "scale":
            _require_samples(eset, 2, method)
            centred = values - values.mean(axis=1, keepdims=True)
            sig = centred / values.std(axis=1, ddof=1, keepdims=True)
        elif method == "rank":
            _require_samples(eset, 2, method)
            sig = rankdata(values, method="average", axis=1)
        elif method == "mad":
            _require_samples(eset, 2, method)
            spread = median_abs_deviation(values, axis=1, scale="normal")[:, None]
            sig = (values - np.median(values, axis=1, keepdims=True)) / spread
        else:
            _require_samples(eset, 3, method)
            sig = np.column_stack([
                ttest_1samp(values[:, [i]] - np.delete(values, i, axis=1), 0.0, axis=1).statistic
                for i in range(values.shape[1])
            ])

    sig = np.where(np.isfinite(sig), sig, 0.0)
    return pd.DataFrame(sig, index=eset.index, columns=eset.columns)


# ── Reference signature and null model ────────────────────────────────────────

def _ttest_z(diffs: np.ndarray) -> np.ndarray:
    """Signed two-sided z-score of a one-sample t-test per row."""
    with np.errstate(divide="ignore", invalid="ignore"):
        res = ttest_1samp(diffs, 0.0, axis=1)
    return norm.isf(res.pvalue / 2) * np.sign(res.statistic)


def _split_statistic(pos, ref: np.ndarray, method: str) -> np.ndarray:
    """Null statistic for one split of the reference group."""
    inside = np.zeros(ref.shape[1], dtype=bool)
    inside[list(pos)] = True
    a, b = ref[:, inside], ref[:, ~inside]
    diff = a.mean(axis=1) - b.mean(axis=1)
    if method == "mean":
        return diff
    with np.errstate(divide="ignore", invalid="ignore"):
        return diff / (a.std(axis=1, ddof=1) + b.std(axis=1, ddof=1))


def _draw_ttest_statistic(pos, dset: np.ndarray) -> np.ndarray:
    """Null t-test signature: one drawn column against the remaining draws."""
    return _ttest_z(dset[:, [pos[0]]] - dset[:, list(pos[1:])])


def _reference_splits(n_ref: int, per: int, rng: np.random.Generator) -> list:
    half = round(n_ref / 2)
    n_combinations = comb(n_ref, half)
    n_perm = min(per, n_combinations)
    if n_combinations < 50 * per:
        order = rng.permutation(n_ref)
        return [tuple(c) for c in islice(combinations(order, half), n_perm)]
    return [tuple(rng.choice(n_ref, half, replace=False)) for _ in range(n_perm)]


def viper_signature(
    eset: pd.DataFrame,
    ref: pd.DataFrame,
    method: str = "ttest",
    per: int = 1000,
    seed=1,
    n_workers: int = 1,
) -> ViperSignature:
    """Build test-vs-reference signatures and a sample-permutation null model.

    If fewer than 12 samples exist in total, no null model is built and
    downstream NES falls back to the analytic (gene-permutation equivalent)
    normalization. If the reference group alone has fewer than 12 samples, the
    test samples are added to it for null-model construction.

    Args:
        eset: Test samples (genes × samples).
        ref: Reference samples (genes × samples), same genes as eset.
        method: 'ttest', 'zscore' or 'mean'.
        per: Maximum number of permutations.
        seed: Seed or numpy Generator for the permutations.
        n_workers: Worker count for computing permutation statistics.

    Returns:
        ViperSignature(signature, nullmodel); nullmodel is None when too few
        samples are available.

    Raises:
        ValueError: For an unknown method.
        InputShapeError: If ref does not cover the genes of eset.
    """
    if method not in REFERENCE_METHODS:
        raise ValueError(
            f"Unknown method '{method}'. Choose: {', '.join(REFERENCE_METHODS)}."
        )
    eset = as_signature_frame(eset)
    ref = as_signature_frame(ref)
    missing = eset.index.difference(ref.index)
    if len(missing):
        raise InputShapeError(f"Reference lacks {len(missing)} genes of the test set.")
    ref = ref.loc[eset.index]
    rng = np.random.default_rng(seed)

    x, r = eset.to_numpy(), ref.to_numpy()
    with np.errstate(divide="ignore", invalid="ignore"):
        if method == "ttest":
            sig = np.column_stack([_ttest_z(x[:, [i]] - r) for i in range(x.shape[1])])
        elif method == "zscore":
            sig = (x - r.mean(axis=1, keepdims=True)) / r.std(axis=1, ddof=1, keepdims=True)
        else:
            sig = x - r.mean(axis=1, keepdims=True)
    signature = pd.DataFrame(
        np.where(np.isfinite(sig), sig, 0.0), index=eset.index, columns=eset.columns
    )

    if x.shape[1] + r.shape[1] < MIN_NULL_SAMPLES:
        msg = (
            "Not enough samples to compute null model by sample permutation, "
            "gene permutation will be used instead"
        )
        warnings.warn(msg, NullModelInsufficiencyWarning, stacklevel=2)
        log.warning(msg)
        return ViperSignature(signature=signature, nullmodel=None)
    if r.shape[1] < MIN_NULL_SAMPLES:
        msg = "Not enough reference samples to compute null model, all samples will be used"
        warnings.warn(msg, NullModelInsufficiencyWarning, stacklevel=2)
        log.warning(msg)
        r = np.hstack([r, x])

    splits = _reference_splits(r.shape[1], per, rng)
    log.info("Computing %s null model with %d permutations", method, len(splits))
    if method == "ttest":
        dset = np.hstack([x, r])
        size = r.shape[1] + 1
        draws = [rng.choice(dset.shape[1], size, replace=False) for _ in splits]
        null = parallel_map(partial(_draw_ttest_statistic, dset=dset), draws, n_workers)
        for i, col in enumerate(null):
            attempts = 0
            while not np.all(np.isfinite(col)) and attempts < MAX_REDRAWS:
                col = _draw_ttest_statistic(rng.choice(dset.shape[1], size, replace=False), dset)
                attempts += 1
            null[i] = col
    else:
        null = parallel_map(partial(_split_statistic, ref=r, method=method), splits, n_workers)

    null = np.column_stack(null)
    undefined = ~np.isfinite(null)
    if undefined.any():
        log.warning("Setting %d undefined null statistics to zero", int(undefined.sum()))
        null[undefined] = 0.0
    nullmodel = pd.DataFrame(
        null,
        index=eset.index,
        columns=[f"perm_{i + 1}" for i in range(null.shape[1])],
    )
    return ViperSignature(signature=signature, nullmodel=nullmodel)
