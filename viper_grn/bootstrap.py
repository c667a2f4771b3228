"""Bootstrap estimate of regulator activity and its uncertainty.

Used when no independent null model exists. The expression matrix is first
restricted to the target union; its sample dimension is then resampled with
replacement B times; each resample gives a per-gene mean and standard
deviation. Every real sample is then standardized against each of the B
(mean, sd) pairs, producing B pseudo-signatures that are rank-transformed and
scored with aREA. The mean over iterations is the activity estimate and the
standard deviation over iterations its uncertainty; by default both are scaled
by the same sqrt(Σ w²) factor as the size-based NES.
"""

import logging
from dataclasses import dataclass
from functools import partial

import numpy as np
import pandas as pd

from .area import empty_result, normalized_weights, score_matrix
from .errors import InputShapeError
from .rank_transform import rank_transform_array
from .regulon import Regulon
from .signature import as_signature_frame
from .utils.parallel import parallel_map

log = logging.getLogger(__name__)


@dataclass
class BootstrapResult:
    """Bootstrap activity (nes) and its standard deviation, regulators × samples."""

    nes: pd.DataFrame
    sd: pd.DataFrame


# ── Bootstrap resampling ──────────────────────────────────────────────────────

def draw_resamples(n_samples: int, bootstraps: int, rng: np.random.Generator) -> list[np.ndarray]:
    """Column indices of each bootstrap resample.

    A resample made of a single repeated column has no spread and is redrawn.
    """
    draws = []
    while len(draws) < bootstraps:
        idx = rng.integers(0, n_samples, size=n_samples)
        if np.unique(idx).size > 1:
            draws.append(idx)
    return draws


def resample_moments(values: np.ndarray, draws: list[np.ndarray]) -> tuple[np.ndarray, np.ndarray]:
    """Per-gene mean and sd (ddof=1) of every resample, each genes × B."""
    means = np.column_stack([values[:, idx].mean(axis=1) for idx in draws])
    sds = np.column_stack([values[:, idx].std(axis=1, ddof=1) for idx in draws])
    return means, sds


# ── Per-sample scoring ────────────────────────────────────────────────────────

def _bootstrap_sample(
    x: np.ndarray,
    btmean: np.ndarray,
    btsd: np.ndarray,
    mor: np.ndarray,
    wts: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Mean and sd over iterations of the es of one sample."""
    pseudo = np.divide(
        x[:, None] - btmean, btsd, out=np.zeros_like(btmean), where=btsd > 0
    )
    two_tail, one_tail = rank_transform_array(pseudo)
    es = score_matrix(two_tail, one_tail, mor, wts)
    return es.mean(axis=1), es.std(axis=1, ddof=1)


def bootstrap_viper(
    eset,
    regulon: Regulon,
    bootstraps: int = 10,
    nes: bool = True,
    n_workers: int = 1,
    seed=None,
) -> BootstrapResult:
    """Estimate regulator activity and its sd by bootstrapping samples.

    Args:
        eset: Expression DataFrame (genes × samples), at least two samples.
        regulon: Regulon already filtered to the genes of eset.
        bootstraps: Number of bootstrap iterations (at least 2).
        nes: Scale mean and sd by sqrt(Σ w²) like the size-based NES. With
            False the raw es mean and sd are returned unscaled; VIPER's own
            bootstrap always applies the scale regardless of this flag.
        n_workers: Worker count; samples are processed in parallel.
        seed: Seed or numpy Generator for the resampling.

    Returns:
        BootstrapResult with nes and sd DataFrames (regulators × samples).

    Raises:
        ValueError: If bootstraps < 2.
        InputShapeError: If eset has a single sample or misses regulon targets.
    """
    if bootstraps < 2:
        raise ValueError("Bootstrap needs at least 2 iterations to estimate an sd.")
    eset = as_signature_frame(eset)
    if eset.shape[1] < 2:
        raise InputShapeError("Bootstrap resampling needs at least 2 samples.")
    if not len(regulon):
        empty = empty_result(eset.columns)
        return BootstrapResult(nes=empty.nes, sd=empty.es)

    targets = regulon.targets()
    pos = eset.index.get_indexer(targets)
    if (pos < 0).any():
        raise InputShapeError("Regulon targets are missing from the expression matrix.")
    mor, wts, scale = normalized_weights(regulon, targets)
    if not nes:
        scale = np.ones_like(scale)
    values = eset.to_numpy(dtype=float)[pos, :]

    rng = np.random.default_rng(seed)
    draws = draw_resamples(values.shape[1], bootstraps, rng)
    btmean, btsd = resample_moments(values, draws)

    log.info("Computing the parameters for %d bootstraps", bootstraps)
    results = parallel_map(
        partial(_bootstrap_sample, btmean=btmean, btsd=btsd, mor=mor, wts=wts),
        [values[:, i] for i in range(values.shape[1])],
        n_workers=n_workers,
    )
    mean = np.column_stack([r[0] for r in results]) * scale[:, None]
    sd = np.column_stack([r[1] for r in results]) * scale[:, None]
    index = list(regulon)
    return BootstrapResult(
        nes=pd.DataFrame(mean, index=index, columns=eset.columns),
        sd=pd.DataFrame(sd, index=index, columns=eset.columns),
    )
