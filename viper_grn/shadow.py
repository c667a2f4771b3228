"""Pleiotropy correction with shadow regulons.

Two active regulators that share many targets both pick up the signal carried
by those shared targets. For every sample this module:

  1. selects the significantly active ("master") regulators,
  2. tests each pair of masters for a target overlap larger than chance
     (one-sided Fisher's exact test against the signature gene universe),
  3. penalizes the weaker regulator of each significant pair by dividing the
     likelihood of the shared targets,
  4. rescores the penalized ("shadow") regulons with aREA and splices the new
     scores into the sample's NES vector.

Regulators without a significant partner keep their score. A corrected score
keeps the sign of the uncorrected one: the penalty only discounts evidence.
"""

import logging
from dataclasses import dataclass
from functools import partial
from itertools import combinations
from typing import Optional

import numpy as np
import pandas as pd
from scipy.stats import fisher_exact, norm

from .area import area
from .errors import InputShapeError
from .null_calibration import calibrate_null
from .regulon import Regulon
from .utils.parallel import parallel_map

log = logging.getLogger(__name__)

PENALTY_METHODS = ("absolute", "adaptive")


@dataclass
class PleiotropyArgs:
    """Parameters of the pleiotropy correction.

    Attributes:
        regulators: p-value threshold selecting master regulators; a value of
            1 or more selects that many top regulators instead.
        shadow: p-value threshold for a significant target overlap.
        targets: Minimum number of shared targets for a pair to be tested.
        penalty: Divisor (≥ 1) applied to the likelihood of shared targets.
        method: 'absolute' applies the full penalty; 'adaptive' scales it by
            the fraction of the weaker regulator's targets that are shared.
    """

    regulators: float = 0.05
    shadow: float = 0.05
    targets: int = 10
    penalty: float = 20.0
    method: str = "adaptive"

    def __post_init__(self):
        if self.method not in PENALTY_METHODS:
            raise ValueError(
                f"Unknown pleiotropy method '{self.method}'. Choose: absolute, adaptive."
            )
        if self.penalty < 1:
            raise ValueError("Pleiotropy penalty must be at least 1.")


# ── Master regulators ─────────────────────────────────────────────────────────

def master_regulators(nes: pd.Series, regulon: Regulon, regulators: float) -> list:
    """Regulators considered active in one sample, in regulon order.

    Args:
        nes: NES of one sample, indexed by regulator.
        regulon: Regulon the NES was computed from.
        regulators: Two-sided p-value threshold, or a count when ≥ 1.

    Returns:
        List of regulator names.
    """
    pval = pd.Series(2 * norm.sf(np.abs(nes.to_numpy(dtype=float))), index=nes.index)
    pval = pval[pval.index.isin(list(regulon))]
    if regulators < 1:
        selected = set(pval.index[pval < regulators])
    else:
        selected = set(pval.sort_values(kind="stable").index[: int(round(regulators))])
    return [name for name in regulon if name in selected]


def overlap_pvalue(n_shared: int, n_a: int, n_b: int, universe: int) -> float:
    """One-sided Fisher's exact p-value for an overlap of two target sets.

                   in B            not in B
      in A        n_shared        n_a − n_shared
      not in A    n_b − n_shared  universe − n_a − n_b + n_shared

    Raises:
        InputShapeError: If the counts do not fit in the universe, e.g. target
            sets not restricted to it.
    """
    table = np.array([
        [n_shared, n_a - n_shared],
        [n_b - n_shared, universe - n_a - n_b + n_shared],
    ])
    if (table < 0).any():
        raise InputShapeError(
            f"Overlap counts ({n_shared} shared of {n_a} and {n_b}) do not fit a "
            f"universe of {universe} genes."
        )
    _, p_value = fisher_exact(table, alternative="greater")
    return float(p_value)


# ── Shadow regulon ────────────────────────────────────────────────────────────

def shadow_regulon(
    ss: pd.Series,
    nes: pd.Series,
    regulon: Regulon,
    args: Optional[PleiotropyArgs] = None,
) -> Optional[Regulon]:
    """Build penalized copies of regulators dominated by an overlapping partner.

    Args:
        ss: Signature of one sample, indexed by gene. Its index is the gene
            universe of the overlap test.
        nes: NES of the same sample, indexed by regulator.
        regulon: Regulon; targets outside ss are dropped first.
        args: Correction parameters (defaults if None).

    Returns:
        Regulon holding only the penalized regulators, or None when fewer than
        two masters exist or no pair overlaps significantly.
    """
    args = args or PleiotropyArgs()
    # overlap counts must live in the same gene universe as the test
    regulon = regulon.filter(ss.index)
    masters = master_regulators(nes, regulon, args.regulators)
    if len(masters) < 2:
        return None

    universe = len(ss)
    divisors: dict[str, pd.Series] = {}
    for name_a, name_b in combinations(masters, 2):
        reg_a, reg_b = regulon[name_a], regulon[name_b]
        shared = reg_a.mode.index.intersection(reg_b.mode.index)
        if len(shared) < args.targets:
            continue
        p_value = overlap_pvalue(len(shared), reg_a.size, reg_b.size, universe)
        if p_value >= args.shadow:
            continue

        weaker = reg_b if abs(nes[name_b]) <= abs(nes[name_a]) else reg_a
        factor = args.penalty
        if args.method == "adaptive":
            factor = 1 + (args.penalty - 1) * len(shared) / weaker.size
        div = divisors.setdefault(weaker.name, pd.Series(1.0, index=weaker.mode.index))
        div.loc[shared] *= factor
        log.debug(
            "Shadow pair %s/%s: %d shared targets (p=%.3g), penalizing %s by %.3g",
            name_a, name_b, len(shared), p_value, weaker.name, factor,
        )

    if not divisors:
        return None
    return Regulon(
        regulon[name].with_likelihood(regulon[name].likelihood / divisors[name])
        for name in regulon
        if name in divisors
    )


# ── Per-sample correction ─────────────────────────────────────────────────────

def apply_shadow_correction(
    nes: pd.Series,
    ss: pd.Series,
    regulon: Regulon,
    args: Optional[PleiotropyArgs] = None,
    dnull: Optional[pd.DataFrame] = None,
) -> pd.Series:
    """Pleiotropy-correct the NES vector of one sample.

    Args:
        nes: NES of one sample, indexed by regulator.
        ss: Signature of the same sample, indexed by gene.
        regulon: Filtered regulon that produced nes.
        args: Correction parameters.
        dnull: Optional null model; when given, penalized regulators are
            rescored against it instead of with the size-based NES.

    Returns:
        Copy of nes with penalized regulators rescored.
    """
    sreg = shadow_regulon(ss, nes, regulon, args)
    corrected = nes.copy()
    if sreg is None:
        return corrected

    res = area(ss, sreg, minsize=0)
    if dnull is None:
        new = res.nes.iloc[:, 0]
    else:
        new = calibrate_null(res.es, area(dnull, sreg, minsize=0).es).iloc[:, 0]
    old = nes[new.index].to_numpy(dtype=float)
    corrected[new.index] = np.where(old < 0, -1.0, 1.0) * np.abs(new.to_numpy(dtype=float))
    return corrected


def _correct_column(
    pair: tuple[pd.Series, pd.Series],
    regulon: Regulon,
    args: PleiotropyArgs,
    dnull: Optional[pd.DataFrame],
) -> pd.Series:
    nes, ss = pair
    return apply_shadow_correction(nes, ss, regulon, args, dnull)


def pleiotropy_correction(
    nes: pd.DataFrame,
    signature: pd.DataFrame,
    regulon: Regulon,
    args: Optional[PleiotropyArgs] = None,
    dnull: Optional[pd.DataFrame] = None,
    n_workers: int = 1,
) -> pd.DataFrame:
    """Apply the shadow correction to every sample independently.

    Args:
        nes: NES matrix (regulators × samples).
        signature: Signature matrix (genes × samples) used to compute nes.
        regulon: Filtered regulon.
        args: Correction parameters.
        dnull: Optional null model.
        n_workers: Worker count; samples are processed in parallel.

    Returns:
        Corrected NES matrix with the same index and columns as nes.
    """
    args = args or PleiotropyArgs()
    log.info("Computing pleiotropy for %d samples", nes.shape[1])
    pairs = [(nes.iloc[:, i], signature.iloc[:, i]) for i in range(nes.shape[1])]
    columns = parallel_map(
        partial(_correct_column, regulon=regulon, args=args, dnull=dnull),
        pairs,
        n_workers=n_workers,
    )
    corrected = pd.concat(columns, axis=1)
    corrected.columns = nes.columns
    return corrected
