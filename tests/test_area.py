"""Tests for aREA enrichment scoring."""

import numpy as np
import pandas as pd
import pytest

from viper_grn.area import (
    AreaResult,
    area,
    combine_tails,
    empty_result,
    normalized_weights,
)
from viper_grn.errors import InputShapeError
from viper_grn.rank_transform import rank_transform_array
from viper_grn.regulon import Regulon

from conftest import gene_names, make_regulator


class TestCombineTails:

    def test_zero_directional_sum_is_positive(self):
        out = combine_tails(np.array([0.0]), np.array([0.4]))
        assert out[0] == pytest.approx(0.4)

    def test_negative_undirected_sum_ignored(self):
        out = combine_tails(np.array([-1.0]), np.array([-0.5]))
        assert out[0] == pytest.approx(-1.0)

    def test_undirected_sum_follows_direction(self):
        out = combine_tails(np.array([-1.0, 1.0]), np.array([0.5, 0.5]))
        np.testing.assert_allclose(out, [-1.5, 1.5])


class TestCoherentEnrichment:

    def test_top_targets_give_strong_positive_score(self, coherent_signature):
        reg = Regulon([make_regulator("TF", gene_names()[:30])])
        res = area(coherent_signature, reg, minsize=0)
        assert isinstance(res, AreaResult)
        es = res.es.loc["TF", "S0"]
        assert es > 2.0
        assert res.nes.loc["TF", "S0"] == pytest.approx(es * np.sqrt(30))
        assert res.nes.loc["TF", "S0"] > 3.0

    def test_reversing_mode_negates_score(self, expression, regulon):
        flipped = Regulon(
            make_regulator(r.name, r.targets, mode=-r.mode.to_numpy(), likelihood=r.likelihood.to_numpy())
            for r in regulon.values()
        )
        res = area(expression, regulon, minsize=0)
        res_flip = area(expression, flipped, minsize=0)
        assert res_flip.es.index.tolist() == ["TF_up", "TF_down", "TF_mixed"]
        pd.testing.assert_frame_equal(res_flip.es, -res.es)
        pd.testing.assert_frame_equal(res_flip.nes.abs(), res.nes.abs())

    def test_undirected_targets_never_negative(self, coherent_signature):
        genes = gene_names()
        reg = Regulon([make_regulator("TF", genes[:10] + genes[-10:], mode=0.0)])
        es = area(coherent_signature, reg, minsize=0).es.loc["TF", "S0"]
        assert es > 0


class TestAreaStrategies:

    def test_matrix_and_loop_agree(self, expression, regulon):
        res_m = area(expression, regulon, method="matrix", minsize=0)
        res_l = area(expression, regulon, method="loop", minsize=0)
        np.testing.assert_allclose(res_m.es.to_numpy(), res_l.es.to_numpy())
        np.testing.assert_allclose(res_m.nes.to_numpy(), res_l.nes.to_numpy())

    def test_worker_count_does_not_change_result(self, expression, regulon):
        res_1 = area(expression, regulon, method="loop", minsize=0, n_workers=1)
        res_2 = area(expression, regulon, method="loop", minsize=0, n_workers=2)
        pd.testing.assert_frame_equal(res_1.es, res_2.es)
        pd.testing.assert_frame_equal(res_1.nes, res_2.nes)

    def test_unit_weights_match_unweighted(self, expression, regulon):
        weights = pd.DataFrame(1.0, index=expression.index, columns=expression.columns)
        res_w = area(expression, regulon, minsize=0, weights=weights)
        res = area(expression, regulon, minsize=0)
        np.testing.assert_allclose(res_w.es.to_numpy(), res.es.to_numpy())

    def test_matrix_with_weights_raises(self, expression, regulon):
        weights = np.ones(expression.shape)
        with pytest.raises(ValueError, match="loop"):
            area(expression, regulon, method="matrix", minsize=0, weights=weights)

    def test_weight_shape_mismatch_raises(self, expression, regulon):
        with pytest.raises(InputShapeError):
            area(expression, regulon, minsize=0, weights=np.ones((10, 2)))

    def test_unknown_method_raises(self, expression, regulon):
        with pytest.raises(ValueError):
            area(expression, regulon, method="fast")


class TestWeightedLoop:

    @staticmethod
    def _direct_scores(expression, regulon, weights):
        two_tail, one_tail = rank_transform_array(expression.to_numpy())
        es_rows, nes_rows = [], []
        for reg in regulon.values():
            pos = expression.index.get_indexer(reg.targets)
            mode = reg.mode.to_numpy()
            lik = reg.likelihood.to_numpy()
            w = weights[pos]
            sum1 = (mode * lik) @ two_tail[pos]
            sum2 = ((1 - np.abs(mode)) * lik) @ one_tail[pos]
            es = combine_tails(sum1, sum2) / (lik @ w)
            lw = lik[:, None] * w
            k = np.sqrt(((lw / lw.max(axis=0)) ** 2).sum(axis=0))
            es_rows.append(es)
            nes_rows.append(es * k)
        return np.vstack(es_rows), np.vstack(nes_rows)

    def test_random_weights_match_direct_computation(self, expression, regulon, rng):
        weights = rng.uniform(0.1, 1.0, size=expression.shape)
        frame = pd.DataFrame(weights, index=expression.index, columns=expression.columns)
        res = area(expression, regulon, minsize=0, weights=frame)
        es, nes = self._direct_scores(expression, regulon, weights)
        np.testing.assert_allclose(res.es.to_numpy(), es)
        np.testing.assert_allclose(res.nes.to_numpy(), nes)

    def test_random_weights_change_the_score(self, expression, regulon, rng):
        weights = rng.uniform(0.1, 1.0, size=expression.shape)
        res_w = area(expression, regulon, minsize=0, weights=weights)
        res = area(expression, regulon, minsize=0)
        assert not np.allclose(res_w.es.to_numpy(), res.es.to_numpy())

    def test_zero_weight_on_every_target_raises(self, expression, regulon):
        weights = pd.DataFrame(1.0, index=expression.index, columns=expression.columns)
        weights.loc[regulon["TF_up"].targets, "S2"] = 0.0
        with pytest.raises(ValueError, match="Weights vanish"):
            area(expression, regulon, minsize=0, weights=weights)


class TestAreaShapes:

    def test_output_order_and_labels(self, expression, regulon):
        res = area(expression, regulon, minsize=0)
        assert res.es.index.tolist() == list(regulon)
        assert res.nes.columns.equals(expression.columns)
        assert np.all(np.isfinite(res.nes.to_numpy()))

    def test_minsize_skips_small_regulators(self, expression, regulon):
        res = area(expression, regulon, minsize=35)
        assert res.es.index.tolist() == ["TF_down", "TF_mixed"]

    def test_nothing_survives_returns_empty(self, expression, regulon):
        res = area(expression, regulon, minsize=500)
        assert res.es.shape == (0, expression.shape[1])
        assert res.nes.columns.equals(expression.columns)

    def test_empty_result_helper(self):
        res = empty_result(["a", "b"])
        assert res.es.shape == (0, 2)


def test_normalized_weights_sum_to_one(regulon):
    mor, wts, scale = normalized_weights(regulon, regulon.targets())
    np.testing.assert_allclose(wts.sum(axis=0), 1.0)
    assert scale[0] == pytest.approx(np.sqrt(30))
    assert mor.shape == wts.shape == (len(regulon.targets()), len(regulon))
