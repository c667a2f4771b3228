"""Shared synthetic signatures and regulons."""

import numpy as np
import pandas as pd
import pytest

from viper_grn.regulon import Regulator, Regulon

N_GENES = 1000


def gene_names(n=N_GENES):
    return [f"G{i}" for i in range(n)]


def make_regulator(name, targets, mode=1.0, likelihood=None):
    mode = pd.Series(mode, index=list(targets), dtype=float)
    if likelihood is not None:
        likelihood = pd.Series(likelihood, index=list(targets), dtype=float)
    return Regulator(name, mode, likelihood)


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def expression(rng):
    """1000 genes × 6 samples of standard normal noise."""
    return pd.DataFrame(
        rng.normal(size=(N_GENES, 6)),
        index=gene_names(),
        columns=[f"S{i}" for i in range(6)],
    )


@pytest.fixture
def coherent_signature():
    """One sample whose top 30 genes are G0..G29, in decreasing order."""
    values = np.linspace(3.0, -3.0, N_GENES)
    return pd.Series(values, index=gene_names(), name="S0")


@pytest.fixture
def regulon():
    """Three regulators: activator, repressor and mixed-mode."""
    genes = gene_names()
    return Regulon([
        make_regulator("TF_up", genes[0:30], mode=1.0),
        make_regulator("TF_down", genes[100:140], mode=-1.0),
        make_regulator(
            "TF_mixed",
            genes[500:540],
            mode=np.tile([1.0, -1.0, 0.5, 0.0], 10),
            likelihood=np.linspace(0.2, 1.0, 40),
        ),
    ])
