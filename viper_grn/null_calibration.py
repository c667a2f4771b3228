"""Empirical null-model calibration of enrichment scores.

When a null model (genes × permutations) is available, the raw enrichment
score of each regulator is compared with the scores the same regulator obtains
on the null signatures. The comparison uses a symmetric empirical CDF: null
scores are folded around their median, so the tail probability depends only on
the distance from the centre. Distances beyond the largest null value are
extrapolated with the tail of a normal of the same spread, so no query ever
gets a probability of exactly 0. The two-sided tail probability is converted
back to a signed z-score, which replaces the size-based NES.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.stats import norm

from .area import area
from .errors import DegenerateDistributionError, InputShapeError
from .regulon import Regulon
from .signature import as_signature_frame

log = logging.getLogger(__name__)


# ── Symmetric empirical CDF ───────────────────────────────────────────────────

@dataclass
class SymmetricECDF:
    """Folded empirical distribution of null enrichment scores.

    Attributes:
        center: Median of the null scores.
        distances: Increasing grid of distances from the centre, starting at 0.
        survival: Two-sided tail probability at each grid distance.
        tail_scale: Root mean square distance from the centre; the sd of the
            normal whose tail is used beyond the last grid point.
    """

    center: float
    distances: np.ndarray
    survival: np.ndarray
    tail_scale: float

    @classmethod
    def fit(cls, values) -> "SymmetricECDF":
        """Fit the folded ECDF to a sample of null scores.

        Raises:
            DegenerateDistributionError: If fewer than two finite values are
                given or all values are equal.
        """
        values = np.asarray(values, dtype=float)
        values = values[np.isfinite(values)]
        if values.size < 2 or np.ptp(values) == 0:
            raise DegenerateDistributionError(
                "Null distribution needs at least two distinct finite values."
            )
        center = float(np.median(values))
        dist = np.sort(np.abs(values - center))
        n = dist.size

        grid = np.unique(dist[dist > 0])
        # plotting positions i/(n+1) keep the survival strictly positive
        survival = 1 - np.searchsorted(dist, grid, side="right") / (n + 1)

        return cls(
            center=center,
            distances=np.concatenate([[0.0], grid]),
            survival=np.concatenate([[1.0], survival]),
            tail_scale=float(np.sqrt(np.mean(dist ** 2))),
        )

    def tail_probability(self, x) -> np.ndarray:
        """Two-sided probability of a null score at least as far from the centre.

        Beyond the largest null distance the probability is the two-sided
        normal tail at the fitted scale, capped by the last empirical value.
        """
        d = np.abs(np.asarray(x, dtype=float) - self.center)
        p = np.interp(d, self.distances, self.survival)
        beyond = d > self.distances[-1]
        tail = np.minimum(self.survival[-1], 2 * norm.sf(d / self.tail_scale))
        p = np.where(beyond, tail, p)
        return np.clip(p, np.finfo(float).tiny, 1.0)

    def nes(self, x) -> np.ndarray:
        """Signed z-score of x; the sign is the sign of x, with 0 counted positive."""
        x = np.asarray(x, dtype=float)
        sign = np.where(x < 0, -1.0, 1.0)
        return norm.isf(self.tail_probability(x) / 2) * sign


# ── Null-model calibration ────────────────────────────────────────────────────

def calibrate_null(es_observed: pd.DataFrame, es_null: pd.DataFrame) -> pd.DataFrame:
    """Convert raw enrichment scores to NES against per-regulator null scores.

    Args:
        es_observed: Observed es (regulators × samples).
        es_null: Null es (regulators × permutations).

    Returns:
        NES DataFrame shaped like es_observed.

    Raises:
        InputShapeError: If a regulator of es_observed has no null scores.
        DegenerateDistributionError: If a regulator's null scores are constant.
    """
    missing = es_observed.index.difference(es_null.index)
    if len(missing):
        raise InputShapeError(
            f"No null scores for {len(missing)} regulators, e.g. {missing[:5].tolist()}"
        )
    nes = pd.DataFrame(index=es_observed.index, columns=es_observed.columns, dtype=float)
    for reg in es_observed.index:
        ecdf = SymmetricECDF.fit(es_null.loc[reg].to_numpy())
        nes.loc[reg] = ecdf.nes(es_observed.loc[reg].to_numpy())
    return nes


def null_model_nes(
    es: pd.DataFrame,
    dnull,
    regulon: Regulon,
    n_workers: int = 1,
) -> pd.DataFrame:
    """Score the null model with aREA and calibrate the observed es with it.

    Args:
        es: Observed es (regulators × samples).
        dnull: Null signatures (genes × permutations).
        regulon: The regulon that produced es (already filtered).
        n_workers: Worker count for aREA.

    Returns:
        Calibrated NES DataFrame shaped like es.
    """
    dnull = as_signature_frame(dnull)
    log.info("Estimating NES with a null model of %d permutations", dnull.shape[1])
    es_null = area(dnull, regulon.subset(es.index), minsize=0, n_workers=n_workers).es
    return calibrate_null(es, es_null)
