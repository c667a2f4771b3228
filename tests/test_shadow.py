"""Tests for the shadow-regulon pleiotropy correction."""

import numpy as np
import pandas as pd
import pytest

from viper_grn.area import area
from viper_grn.errors import InputShapeError
from viper_grn.regulon import Regulon
from viper_grn.shadow import (
    PleiotropyArgs,
    apply_shadow_correction,
    master_regulators,
    overlap_pvalue,
    pleiotropy_correction,
    shadow_regulon,
)

from conftest import gene_names, make_regulator


@pytest.fixture
def overlapping():
    """A and B share 40 top targets; C is disjoint from both."""
    genes = gene_names()
    return Regulon([
        make_regulator("A", genes[0:60]),
        make_regulator("B", genes[20:80]),
        make_regulator("C", genes[500:530]),
    ])


@pytest.fixture
def shared_signal(rng):
    genes = gene_names()
    values = rng.normal(scale=0.5, size=len(genes))
    values[20:60] = 10 + np.linspace(1, 0, 40)
    values[0:20] = 6 + np.linspace(1, 0, 20)
    values[60:80] = 5 + np.linspace(1, 0, 20)
    return pd.Series(values, index=genes, name="s1")


@pytest.fixture
def shared_nes(shared_signal, overlapping):
    return area(shared_signal, overlapping, minsize=0).nes.iloc[:, 0]


class TestPleiotropyArgs:

    def test_defaults(self):
        args = PleiotropyArgs()
        assert args.penalty == 20.0
        assert args.method == "adaptive"

    def test_unknown_method_raises(self):
        with pytest.raises(ValueError):
            PleiotropyArgs(method="relative")

    def test_penalty_below_one_raises(self):
        with pytest.raises(ValueError):
            PleiotropyArgs(penalty=0.5)


class TestMasterRegulators:

    def test_threshold(self, overlapping):
        nes = pd.Series({"A": 5.0, "B": -4.0, "C": 0.5})
        assert master_regulators(nes, overlapping, 0.05) == ["A", "B"]

    def test_top_count(self, overlapping):
        nes = pd.Series({"A": 1.0, "B": -4.0, "C": 3.0})
        assert master_regulators(nes, overlapping, 2) == ["B", "C"]


class TestOverlapPvalue:

    def test_large_overlap_is_significant(self):
        assert overlap_pvalue(40, 60, 60, 1000) < 1e-10

    def test_no_overlap_is_not_significant(self):
        assert overlap_pvalue(0, 60, 60, 1000) == pytest.approx(1.0)

    def test_counts_outside_universe_raise(self):
        with pytest.raises(InputShapeError):
            overlap_pvalue(40, 220, 220, 200)


class TestShadowRegulon:

    def test_weaker_regulator_penalized(self, shared_signal, shared_nes, overlapping):
        assert abs(shared_nes["A"]) > abs(shared_nes["B"])
        sreg = shadow_regulon(shared_signal, shared_nes, overlapping)
        assert list(sreg) == ["B"]
        factor = 1 + 19 * 40 / 60
        lik = sreg["B"].likelihood
        assert lik[gene_names()[30]] == pytest.approx(1 / factor)
        assert lik[gene_names()[70]] == pytest.approx(1.0)

    def test_absolute_penalty(self, shared_signal, shared_nes, overlapping):
        args = PleiotropyArgs(method="absolute")
        sreg = shadow_regulon(shared_signal, shared_nes, overlapping, args)
        assert sreg["B"].likelihood[gene_names()[30]] == pytest.approx(1 / 20)

    def test_single_master_returns_none(self, shared_signal, overlapping):
        nes = pd.Series({"A": 8.0, "B": 0.1, "C": 0.1})
        assert shadow_regulon(shared_signal, nes, overlapping) is None

    def test_too_few_shared_targets_returns_none(self, shared_signal, shared_nes, overlapping):
        args = PleiotropyArgs(targets=41)
        assert shadow_regulon(shared_signal, shared_nes, overlapping, args) is None

    def test_targets_outside_signature_are_ignored(self, shared_signal):
        genes = gene_names()
        ss = shared_signal.iloc[:200]
        reg = Regulon([
            make_regulator("A", genes[0:60] + genes[300:460]),
            make_regulator("B", genes[20:80] + genes[500:660]),
            make_regulator("C", genes[100:130]),
        ])
        nes = area(ss, reg, minsize=0).nes.iloc[:, 0]
        sreg = shadow_regulon(ss, nes, reg)
        assert list(sreg) == ["B"]
        assert sreg["B"].size == 60
        corrected = apply_shadow_correction(nes, ss, reg)
        assert corrected["A"] == nes["A"]
        assert abs(corrected["B"]) < abs(nes["B"])
        assert np.sign(corrected["B"]) == np.sign(nes["B"])


class TestApplyShadowCorrection:

    def test_only_weaker_regulator_changes(self, shared_signal, shared_nes, overlapping):
        corrected = apply_shadow_correction(shared_nes, shared_signal, overlapping)
        assert corrected["A"] == shared_nes["A"]
        assert corrected["C"] == shared_nes["C"]
        assert abs(corrected["B"]) < abs(shared_nes["B"])
        assert np.sign(corrected["B"]) == np.sign(shared_nes["B"])

    def test_no_partner_leaves_scores_unchanged(self, shared_signal, overlapping):
        nes = pd.Series({"A": 8.0, "B": 0.1, "C": -0.2})
        corrected = apply_shadow_correction(nes, shared_signal, overlapping)
        pd.testing.assert_series_equal(corrected, nes)

    def test_with_null_model(self, shared_signal, shared_nes, overlapping, rng):
        dnull = pd.DataFrame(
            rng.normal(size=(len(shared_signal), 100)), index=shared_signal.index
        )
        corrected = apply_shadow_correction(
            shared_nes, shared_signal, overlapping, dnull=dnull
        )
        assert corrected["A"] == shared_nes["A"]
        assert corrected["B"] > 0


class TestPleiotropyCorrection:

    def test_corrects_every_sample_and_keeps_sign(self, shared_signal, overlapping):
        signature = pd.concat([shared_signal, -shared_signal.rename("s2")], axis=1)
        nes = area(signature, overlapping, minsize=0).nes
        corrected = pleiotropy_correction(nes, signature, overlapping)
        assert corrected.index.equals(nes.index)
        assert corrected.columns.equals(nes.columns)
        assert corrected.loc["B", "s1"] > 0
        assert corrected.loc["B", "s2"] < 0
        assert abs(corrected.loc["B", "s2"]) < abs(nes.loc["B", "s2"])

    def test_worker_count_does_not_change_result(self, shared_signal, overlapping):
        signature = pd.concat([shared_signal, -shared_signal.rename("s2")], axis=1)
        nes = area(signature, overlapping, minsize=0).nes
        pd.testing.assert_frame_equal(
            pleiotropy_correction(nes, signature, overlapping, n_workers=1),
            pleiotropy_correction(nes, signature, overlapping, n_workers=2),
        )
