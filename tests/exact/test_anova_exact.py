"""End-to-end tests for anova_exact."""

import logging
import math

import numpy as np
import pandas as pd
import pytest
from scipy.stats import f as f_dist
from scipy.stats import ncf

import pyanovapower
from pyanovapower.design import anova_design
from pyanovapower.exact import (
    ExactOptions,
    ExactResult,
    MultivariateLinearModelBackend,
    anova_exact,
)
from pyanovapower.exceptions import InvalidDesignError, InvalidParameterError

_TOL = 1e-6


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def within_design():
    return anova_design("2w*2w", n=40, mu=[1, 0, 1, 0], sd=2, r=0.8)


@pytest.fixture
def within_result(within_design):
    return anova_exact(within_design, ExactOptions(alpha_level=0.05, plot=False))


def _all_powers(res):
    rows = res.main_results + res.manova_results + res.pc_results + res.emm_results
    return [r.power for r in rows]


# ---------------------------------------------------------------------------
# Documented 2x2 within example
# ---------------------------------------------------------------------------

class TestWithinScenario:
    """2w*2w, n = 40, mu = [1, 0, 1, 0], sd = 2, r = 0.8."""

    def test_returns_bundle(self, within_result):
        assert isinstance(within_result, ExactResult)
        assert within_result.alpha_level == 0.05
        assert within_result.plot is None

    def test_three_effects(self, within_result):
        assert [r.effect for r in within_result.main_results] == ["a", "b", "a:b"]

    def test_six_pairs(self, within_result):
        assert len(within_result.pc_results) == 6

    def test_manova_present(self, within_result):
        assert within_result.has_manova
        assert len(within_result.manova_results) == 4

    def test_powers_in_range(self, within_result):
        for p in _all_powers(within_result):
            assert 5.0 - _TOL <= p <= 100.0 + _TOL

    def test_effect_b(self, within_result):
        b = within_result.main_results[1]
        assert b.partial_eta_squared == pytest.approx(40.0 / 71.2, rel=1e-8)
        assert b.cohen_f == pytest.approx(math.sqrt(40.0 / 31.2), rel=1e-8)
        assert b.noncentrality == pytest.approx(39 * 40.0 / 31.2, rel=1e-8)
        assert b.power > 99.9

    def test_null_effects_at_alpha(self, within_result):
        for r in (within_result.main_results[0], within_result.main_results[2]):
            assert r.power == pytest.approx(5.0, abs=_TOL)

    def test_manova_b_matches_anova(self, within_result):
        (b,) = [r for r in within_result.manova_results if r.effect == "b"]
        assert b.power == pytest.approx(within_result.main_results[1].power, rel=1e-8)

    def test_no_emm_by_default(self, within_result):
        assert within_result.emm_results == ()
        assert not within_result.has_emm

    def test_dataset_moments(self, within_result, within_design):
        means = within_result.dataset.groupby("cond", observed=True)["y"].mean()
        np.testing.assert_allclose(means.to_numpy(), within_design.mu, atol=1e-10)

    def test_seed_does_not_change_power(self, within_design):
        r1 = anova_exact(within_design, ExactOptions(seed=1, plot=False))
        r2 = anova_exact(within_design, ExactOptions(seed=2, plot=False))
        for a, b in zip(_all_powers(r1), _all_powers(r2)):
            assert a == pytest.approx(b, rel=1e-8, abs=1e-8)

    def test_default_options(self, within_design):
        res = anova_exact(within_design)
        assert res.options == ExactOptions()
        assert res.plot is not None


# ---------------------------------------------------------------------------
# Design families
# ---------------------------------------------------------------------------

class TestDesigns:
    """Between, within and mixed designs."""

    def test_between_has_no_manova(self):
        d = anova_design("2b*2b", n=10, mu=[0, 1, 2, 3], sd=1)
        res = anova_exact(d, ExactOptions(plot=False))
        assert res.manova_results == ()
        assert not res.has_manova
        assert res.manova_frame().empty

    def test_two_group_anova_matches_t_test(self):
        d = anova_design("2b", n=20, mu=[0.0, 0.5], sd=1)
        res = anova_exact(d, ExactOptions(plot=False))
        (effect,) = res.main_results
        (pair,) = res.pc_results
        assert effect.f == pytest.approx(2.5, rel=1e-8)
        assert pair.statistic ** 2 == pytest.approx(effect.f, rel=1e-8)
        assert pair.power == pytest.approx(effect.power, abs=1e-4)

    def test_mixed(self):
        d = anova_design("2b*3w", n=15, mu=[0, 0.2, 0.4, 0, 0, 0], sd=1, r=0.5)
        res = anova_exact(d, ExactOptions(plot=False))
        assert [r.effect for r in res.main_results] == ["a", "b", "a:b"]
        assert len(res.pc_results) == 15
        assert res.has_manova
        for p in _all_powers(res):
            assert 5.0 - _TOL <= p <= 100.0 + _TOL

    @pytest.mark.parametrize("code, r", [("2b*2b", 0.0), ("2b*2w", 0.5)])
    def test_n_equal_to_cells(self, code, r):
        """n = product of levels is the smallest accepted sample size."""
        d = anova_design(code, n=4, mu=[0, 1, 2, 3], sd=1, r=r)
        res = anova_exact(d, ExactOptions(plot=False))
        assert len(res.main_results) == 3
        assert len(res.pc_results) == 6
        for p in _all_powers(res):
            assert 5.0 - _TOL <= p <= 100.0 + _TOL

    def test_manova_power_uses_pillai_trace(self):
        """Pillai's trace replaces pes in the noncentral F transform."""
        d = anova_design(
            "3b*3w", n=20, mu=[0, 0.5, 1, 0, 0, 0, 1, 0.5, 0], sd=1, r=0.5,
        )
        res = anova_exact(d, ExactOptions(plot=False))
        (ab,) = [r for r in res.manova_results if r.effect == "a:b"]
        (fit_row,) = [r for r in res.fit.multivariate if r.effect == "a:b"]
        assert fit_row.s == 2

        v = ab.pillai_trace
        f2 = v / (1.0 - v)
        ncp = f2 * ab.den_df
        f_crit = f_dist.ppf(0.95, ab.num_df, ab.den_df)
        assert ab.cohen_f == pytest.approx(math.sqrt(f2), rel=1e-10)
        assert ab.noncentrality == pytest.approx(ncp, rel=1e-10)
        assert ab.power == pytest.approx(
            100.0 * ncf.sf(f_crit, ab.num_df, ab.den_df, ncp), rel=1e-9,
        )

    def test_larger_n_more_power(self):
        powers = []
        for n in (10, 20, 40):
            d = anova_design("2b", n=n, mu=[0.0, 0.5], sd=1)
            powers.append(anova_exact(d, ExactOptions(plot=False)).main_results[0].power)
        assert powers == sorted(powers)


# ---------------------------------------------------------------------------
# Sphericity correction
# ---------------------------------------------------------------------------

class TestCorrection:

    @pytest.fixture
    def design(self):
        r = np.array([[1.0, 0.3, 0.1], [0.3, 1.0, 0.6], [0.1, 0.6, 1.0]])
        return anova_design("3w", n=30, mu=[0.0, 0.3, 0.6], sd=1, r=r)

    def test_gg_lowers_power(self, design):
        none = anova_exact(design, ExactOptions(correction="none", plot=False))
        gg = anova_exact(design, ExactOptions(correction="GG", plot=False))
        assert gg.main_results[0].num_df < none.main_results[0].num_df
        assert gg.main_results[0].power < none.main_results[0].power

    def test_hf_between_gg_and_none(self, design):
        powers = {
            c: anova_exact(design, ExactOptions(correction=c, plot=False)).main_results[0].power
            for c in ("none", "GG", "HF")
        }
        assert powers["GG"] <= powers["HF"] <= powers["none"]

    def test_manova_unaffected(self, design):
        none = anova_exact(design, ExactOptions(correction="none", plot=False))
        gg = anova_exact(design, ExactOptions(correction="GG", plot=False))
        assert gg.manova_results[1].power == pytest.approx(none.manova_results[1].power)


# ---------------------------------------------------------------------------
# Marginal means
# ---------------------------------------------------------------------------

class TestEmm:

    def test_default_comparison(self, within_design):
        res = anova_exact(within_design, ExactOptions(emm=True, plot=False))
        assert len(res.emm_results) == 6
        assert res.has_emm
        for e, p in zip(res.emm_results, res.pc_results):
            assert e.power == pytest.approx(p.power, abs=1e-4)

    def test_univariate_df(self, within_design):
        res = anova_exact(
            within_design, ExactOptions(emm=True, emm_model="univariate", plot=False),
        )
        assert res.emm_results[0].contrast == "a1 b1 - a1 b2"
        assert res.emm_results[0].df == pytest.approx(78.0)

    def test_by_comparison(self, within_design):
        res = anova_exact(
            within_design, ExactOptions(emm=True, emm_comp="b|a", plot=False),
        )
        assert [r.by for r in res.emm_results] == ["a = a1", "a = a2"]

    @pytest.mark.parametrize("kind", ["consec", "poly", "eff", "trt.vs.ctrlk", "mean_chg"])
    def test_families_run(self, kind):
        d = anova_design("3w", n=20, mu=[0, 0.3, 0.6], sd=1, r=0.5)
        res = anova_exact(d, ExactOptions(emm=True, contrast_type=kind, plot=False))
        assert res.has_emm
        for p in _all_powers(res):
            assert 5.0 - _TOL <= p <= 100.0 + _TOL

    def test_emm_frame(self, within_design):
        res = anova_exact(within_design, ExactOptions(emm=True, plot=False))
        frame = res.emm_frame()
        assert frame.index.name == "contrast"
        assert "power" in frame.columns


# ---------------------------------------------------------------------------
# Validation happens before any computation
# ---------------------------------------------------------------------------

class TestRejections:

    def test_n_below_cells(self, monkeypatch):
        d = anova_design("2w*2w", n=3, mu=[1, 0, 1, 0], sd=1, r=0.5)
        calls = []
        monkeypatch.setattr(
            "pyanovapower.exact._exact.synthesize_dataset",
            lambda *a, **k: calls.append(1),
        )
        with pytest.raises(InvalidDesignError, match="product of the factor levels"):
            anova_exact(d, ExactOptions(plot=False))
        assert calls == []

    def test_bad_emm_comp_before_synthesis(self, within_design, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "pyanovapower.exact._exact.synthesize_dataset",
            lambda *a, **k: calls.append(1),
        )
        with pytest.raises(InvalidParameterError, match="unknown factor"):
            anova_exact(within_design, ExactOptions(emm=True, emm_comp="z", plot=False))
        assert calls == []

    def test_emm_comp_ignored_without_emm(self, within_design):
        res = anova_exact(within_design, ExactOptions(emm_comp="z", plot=False))
        assert res.emm_results == ()

    def test_rank_too_high(self):
        """n = k cells with a full-rank covariance cannot be realised."""
        d = anova_design("2w", n=2, mu=[0.0, 1.0], sd=1, r=0.5)
        with pytest.raises(InvalidDesignError, match="rank"):
            anova_exact(d, ExactOptions(plot=False))


# ---------------------------------------------------------------------------
# Backends, frames and logging
# ---------------------------------------------------------------------------

class TestResultBundle:

    def test_custom_backend(self, within_design):
        class Named(MultivariateLinearModelBackend):
            @property
            def name(self):
                return "named"

        res = anova_exact(within_design, ExactOptions(plot=False), backend=Named())
        assert res.fit.backend_name == "named"

    def test_main_frame(self, within_result):
        frame = within_result.main_frame()
        assert isinstance(frame, pd.DataFrame)
        assert list(frame.index) == ["a", "b", "a:b"]
        assert {"power", "partial_eta_squared", "cohen_f", "noncentrality"} <= set(frame.columns)

    def test_pairwise_frame(self, within_result):
        frame = within_result.pairwise_frame()
        assert frame.index[0] == "a1_b1_a1_b2"
        assert "cell_a" not in frame.columns
        assert {"power", "effect_size", "paired"} <= set(frame.columns)

    def test_summary(self, within_result):
        s = within_result.summary()
        assert "Power and Effect sizes for ANOVA tests" in s
        assert "MANOVA" in s
        assert "a1_b1_a1_b2" in s

    def test_logs_at_debug(self, within_design, caplog):
        with caplog.at_level(logging.DEBUG, logger="pyanovapower.exact._exact"):
            anova_exact(within_design, ExactOptions(plot=False))
        assert any("2w*2w" in rec.getMessage() for rec in caplog.records)

    def test_top_level_exports(self, within_design):
        res = pyanovapower.anova_exact(within_design, pyanovapower.ExactOptions(plot=False))
        assert len(res.main_results) == 3
