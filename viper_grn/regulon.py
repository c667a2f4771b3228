"""Regulator records and the ordered regulon container.

A regulon maps each regulator (e.g. a transcription factor) to its target
genes. Every target carries two numbers:

  mode       — signed mode of regulation in [-1, 1]. The sign separates
               activation from repression; the magnitude is the confidence in
               that direction.
  likelihood — non-negative interaction confidence, independent of sign.
               aREA divides it by the per-regulator maximum to obtain weights
               in [0, 1].

The insertion order of regulators in a ``Regulon`` is the canonical row order
of every activity matrix computed from it. Filtering always returns a new
``Regulon``; the input is never modified.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .errors import RegulonSizeError

log = logging.getLogger(__name__)


# ── Regulator record ──────────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class Regulator:
    """One regulator and its weighted targets.

    Attributes:
        name: Regulator identifier.
        mode: Series indexed by target gene with the signed mode of regulation.
        likelihood: Series indexed by the same targets with the interaction
            confidence. Passing None gives every target a likelihood of 1.
    """

    name: str
    mode: pd.Series
    likelihood: Optional[pd.Series] = None

    def __post_init__(self):
        mode = pd.Series(self.mode, dtype=float)
        if self.likelihood is None:
            likelihood = pd.Series(1.0, index=mode.index)
        else:
            likelihood = pd.Series(self.likelihood, dtype=float)

        if not mode.index.is_unique:
            raise ValueError(f"Regulator '{self.name}' has duplicated targets.")
        if set(mode.index) != set(likelihood.index) or len(mode) != len(likelihood):
            raise ValueError(
                f"Regulator '{self.name}': mode and likelihood are keyed by "
                "different target sets."
            )
        likelihood = likelihood.reindex(mode.index)
        if not (np.all(np.isfinite(mode.values)) and np.all(np.isfinite(likelihood.values))):
            raise ValueError(f"Regulator '{self.name}' has non-finite mode or likelihood.")
        if (mode.abs() > 1).any():
            raise ValueError(f"Regulator '{self.name}' has |mode| > 1.")
        if (likelihood < 0).any():
            raise ValueError(f"Regulator '{self.name}' has negative likelihood.")

        object.__setattr__(self, "mode", mode)
        object.__setattr__(self, "likelihood", likelihood)

    @property
    def targets(self) -> list:
        return self.mode.index.tolist()

    @property
    def size(self) -> int:
        return len(self.mode)

    @property
    def weights(self) -> pd.Series:
        """Likelihood scaled to [0, 1] by its maximum (zeros if all zero)."""
        top = self.likelihood.max() if self.size else 0.0
        if not top > 0:
            return self.likelihood * 0.0
        return self.likelihood / top

    @property
    def adaptive_size(self) -> float:
        """Effective size: sum of the max-normalized likelihoods."""
        return float(self.weights.sum())

    def restrict(self, genes: Iterable) -> "Regulator":
        """Return a copy keeping only targets present in genes."""
        keep = self.mode.index.isin(list(genes))
        return Regulator(self.name, self.mode[keep], self.likelihood[keep])

    def with_likelihood(self, likelihood: pd.Series) -> "Regulator":
        """Return a copy with the likelihood replaced (same targets)."""
        return Regulator(self.name, self.mode, likelihood)


# ── Regulon container ─────────────────────────────────────────────────────────

class Regulon(Mapping):
    """Ordered, read-only mapping from regulator name to ``Regulator``."""

    def __init__(self, regulators: Iterable[Regulator] = ()):
        self._regulators: dict[str, Regulator] = {}
        for reg in regulators:
            if reg.name in self._regulators:
                raise ValueError(f"Duplicated regulator '{reg.name}'.")
            self._regulators[reg.name] = reg

    def __getitem__(self, name: str) -> Regulator:
        return self._regulators[name]

    def __iter__(self):
        return iter(self._regulators)

    def __len__(self) -> int:
        return len(self._regulators)

    def __repr__(self) -> str:
        return f"Regulon({len(self)} regulators, {len(self.targets())} targets)"

    def targets(self) -> list:
        """Union of all target genes, in first-seen order."""
        seen = {}
        for reg in self._regulators.values():
            for gene in reg.targets:
                seen.setdefault(gene, None)
        return list(seen)

    def genes(self) -> set:
        """Regulator names plus all targets (the interactome gene set)."""
        return set(self._regulators) | set(self.targets())

    def subset(self, names: Iterable[str]) -> "Regulon":
        """Return the regulators in names, kept in this regulon's order."""
        names = set(names)
        return Regulon(r for n, r in self._regulators.items() if n in names)

    def replace(self, regulators: Iterable[Regulator]) -> "Regulon":
        """Return a copy where the given regulators replace same-named entries."""
        updates = {r.name: r for r in regulators}
        return Regulon(updates.get(n, r) for n, r in self._regulators.items())

    def filter(
        self,
        genes: Iterable,
        minsize: float = 0,
        adaptive_size: bool = False,
        allow_empty: bool = True,
    ) -> "Regulon":
        """Restrict targets to a gene universe and drop undersized regulators.

        Regulators with no surviving target, or whose surviving likelihood is
        zero everywhere, are always dropped: their weights cannot be normalized.

        Args:
            genes: Gene universe (typically the signature row index).
            minsize: Minimum number of targets per regulator after restriction.
            adaptive_size: Measure size as the sum of max-normalized
                likelihoods instead of the raw target count.
            allow_empty: If False, raise when no regulator survives.

        Returns:
            Filtered Regulon.

        Raises:
            RegulonSizeError: If allow_empty is False and nothing survives.
        """
        genes = set(genes)
        kept = []
        for reg in self._regulators.values():
            reg = reg.restrict(genes)
            if reg.size == 0 or not reg.likelihood.max() > 0:
                continue
            size = reg.adaptive_size if adaptive_size else reg.size
            if size >= minsize:
                kept.append(reg)

        log.debug("Regulon filter kept %d of %d regulators", len(kept), len(self))
        if not kept and not allow_empty:
            raise RegulonSizeError(
                f"No regulator has at least {minsize} targets in the signature."
            )
        return Regulon(kept)

    # ── Dense matrices ────────────────────────────────────────────────────────

    def mode_weight_matrices(
        self, targets: Optional[list] = None
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Dense (targets × regulators) mode and max-normalized weight matrices.

        Entries for genes that are not targets of a regulator are zero.

        Args:
            targets: Row order. Defaults to ``self.targets()``.

        Returns:
            Tuple (mor, wts) of DataFrames.
        """
        targets = self.targets() if targets is None else list(targets)
        mor = pd.DataFrame(
            {name: reg.mode.reindex(targets) for name, reg in self.items()},
            index=targets,
            columns=list(self),
        ).fillna(0.0)
        wts = pd.DataFrame(
            {name: reg.weights.reindex(targets) for name, reg in self.items()},
            index=targets,
            columns=list(self),
        ).fillna(0.0)
        return mor, wts

    # ── Adjacency conversion ──────────────────────────────────────────────────

    @classmethod
    def from_adjacency(
        cls,
        df: pd.DataFrame,
        tf_col: str = "TF",
        target_col: str = "target",
        mode_col: str = "mode",
        likelihood_col: str = "likelihood",
    ) -> "Regulon":
        """Build a regulon from a long adjacency table.

        One row per regulator–target interaction. A missing mode column means
        every interaction activates (mode 1); a missing likelihood column means
        uniform confidence. Rows with a missing likelihood value are dropped.

        Args:
            df: Adjacency DataFrame.
            tf_col: Column with regulator names.
            target_col: Column with target gene names.
            mode_col: Column with the signed mode of regulation.
            likelihood_col: Column with interaction confidence.

        Returns:
            Regulon in first-appearance order of regulators.
        """
        df = df.copy()
        if mode_col not in df.columns:
            df[mode_col] = 1.0
        if likelihood_col not in df.columns:
            df[likelihood_col] = 1.0

        missing = df[likelihood_col].isna()
        if missing.any():
            log.warning(
                "Dropping %d interactions with missing likelihood", int(missing.sum())
            )
            df = df[~missing]

        regulators = []
        for tf, sub in df.groupby(tf_col, sort=False):
            sub = sub.drop_duplicates(subset=target_col, keep="first")
            regulators.append(Regulator(
                name=tf,
                mode=pd.Series(sub[mode_col].values, index=sub[target_col].values),
                likelihood=pd.Series(sub[likelihood_col].values, index=sub[target_col].values),
            ))
        return cls(regulators)

    def to_adjacency(self) -> pd.DataFrame:
        """Flatten to a DataFrame with columns ['TF', 'target', 'mode', 'likelihood']."""
        frames = [
            pd.DataFrame({
                "TF": name,
                "target": reg.targets,
                "mode": reg.mode.values,
                "likelihood": reg.likelihood.values,
            })
            for name, reg in self.items()
        ]
        if not frames:
            return pd.DataFrame(columns=["TF", "target", "mode", "likelihood"])
        return pd.concat(frames, ignore_index=True)
