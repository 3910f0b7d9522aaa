"""Tests for exact_sample and synthesize_dataset."""

import numpy as np
import pytest

from pyanovapower.design import anova_design
from pyanovapower.exact import exact_sample, synthesize_dataset
from pyanovapower.exceptions import InvalidDesignError, NotPositiveSemidefiniteError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sigma3():
    """Non-compound-symmetric 3x3 covariance."""
    sd = np.array([1.0, 2.0, 1.5])
    r = np.array([[1.0, 0.3, 0.1], [0.3, 1.0, 0.6], [0.1, 0.6, 1.0]])
    return r * np.outer(sd, sd)


# ---------------------------------------------------------------------------
# exact_sample
# ---------------------------------------------------------------------------

class TestExactSample:
    """Sample moments equal the targets."""

    def test_mean(self, sigma3):
        mu = np.array([1.0, -2.0, 0.5])
        x = exact_sample(25, mu, sigma3, seed=1)
        assert x.shape == (25, 3)
        np.testing.assert_allclose(x.mean(axis=0), mu, atol=1e-10)

    def test_covariance(self, sigma3):
        x = exact_sample(25, np.zeros(3), sigma3, seed=1)
        np.testing.assert_allclose(np.cov(x, rowvar=False), sigma3, atol=1e-8)

    @pytest.mark.parametrize("seed", [0, 7, 12345])
    def test_moments_do_not_depend_on_seed(self, sigma3, seed):
        x = exact_sample(10, np.zeros(3), sigma3, seed=seed)
        np.testing.assert_allclose(np.cov(x, rowvar=False), sigma3, atol=1e-8)

    def test_values_depend_on_seed(self, sigma3):
        a = exact_sample(10, np.zeros(3), sigma3, seed=1)
        b = exact_sample(10, np.zeros(3), sigma3, seed=2)
        assert not np.allclose(a, b)

    def test_same_seed_reproducible(self, sigma3):
        a = exact_sample(10, np.zeros(3), sigma3, seed=3)
        b = exact_sample(10, np.zeros(3), sigma3, seed=3)
        np.testing.assert_array_equal(a, b)

    def test_singular_sigma(self):
        """Perfect correlation: rank 1, so n = 2 is enough."""
        sigma = np.ones((2, 2))
        x = exact_sample(2, [0.0, 1.0], sigma, seed=0)
        np.testing.assert_allclose(np.cov(x, rowvar=False), sigma, atol=1e-10)
        np.testing.assert_allclose(x[:, 1] - x[:, 0], 1.0, atol=1e-10)

    def test_rank_exceeds_n(self, sigma3):
        with pytest.raises(InvalidDesignError, match="rank"):
            exact_sample(3, np.zeros(3), sigma3)

    def test_not_psd(self):
        sigma = np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])
        with pytest.raises(NotPositiveSemidefiniteError) as info:
            exact_sample(20, np.zeros(3), sigma)
        assert info.value.min_eigenvalue < 0.0

    def test_not_psd_is_design_error(self):
        sigma = np.array([[1.0, 2.0], [2.0, 1.0]])
        with pytest.raises(InvalidDesignError):
            exact_sample(20, np.zeros(2), sigma)

    def test_asymmetric(self):
        with pytest.raises(InvalidDesignError, match="symmetric"):
            exact_sample(20, np.zeros(2), np.array([[1.0, 0.5], [0.2, 1.0]]))

    def test_shape_mismatch(self):
        with pytest.raises(InvalidDesignError, match="2x2"):
            exact_sample(20, np.zeros(2), np.eye(3))


# ---------------------------------------------------------------------------
# synthesize_dataset
# ---------------------------------------------------------------------------

class TestSynthesizeDataset:
    """Long exact dataset built on the design skeleton."""

    def test_cell_means(self):
        d = anova_design("2w*2w", n=40, mu=[1, 0, 1, 0], sd=2, r=0.8)
        data = synthesize_dataset(d, seed=1)
        means = data.groupby("cond", observed=True)["y"].mean()
        np.testing.assert_allclose(means.to_numpy(), d.mu, atol=1e-10)

    def test_covariance_over_subjects(self):
        d = anova_design("2w*2w", n=40, mu=[1, 0, 1, 0], sd=2, r=0.8)
        data = synthesize_dataset(d, seed=1)
        wide = data.pivot(index="subject", columns="cond", values="y")
        wide = wide[[c.label for c in d.cells]]
        np.testing.assert_allclose(
            np.cov(wide.to_numpy(), rowvar=False), d.sigma_matrix, atol=1e-8,
        )

    def test_group_blocks_exact(self):
        d = anova_design("2b*2w", n=12, mu=[0, 1, 2, 3], sd=1, r=0.5)
        data = synthesize_dataset(d, seed=4)
        wide = data.pivot(index="subject", columns="cond", values="y")
        for labels, idx in ((["a1_b1", "a1_b2"], [0, 1]), (["a2_b1", "a2_b2"], [2, 3])):
            block = wide[labels].dropna().to_numpy()
            assert block.shape == (12, 2)
            np.testing.assert_allclose(block.mean(axis=0), d.mu[idx], atol=1e-10)
            np.testing.assert_allclose(
                np.cov(block, rowvar=False), d.sigma_matrix[np.ix_(idx, idx)], atol=1e-8,
            )

    @pytest.mark.parametrize("code, r", [("2b*2b", 0.0), ("2b*2w", 0.5)])
    def test_n_equal_to_cells(self, code, r):
        """Groups are drawn separately, so only each group's rank is bounded by n - 1."""
        d = anova_design(code, n=4, mu=[0, 1, 2, 3], sd=1, r=r)
        data = synthesize_dataset(d, seed=0)
        for cell in d.cells:
            y = data.loc[data["cond"] == cell.label, "y"].to_numpy()
            assert y.mean() == pytest.approx(d.mu[cell.index], abs=1e-10)
            assert y.var(ddof=1) == pytest.approx(1.0, rel=1e-8)

    def test_within_rank_limit(self):
        d = anova_design("2w*2w", n=4, mu=[0, 1, 2, 3], sd=1, r=0.5)
        with pytest.raises(InvalidDesignError, match="rank"):
            synthesize_dataset(d)

    def test_keeps_skeleton_columns(self):
        d = anova_design("2b*3w", n=8, mu=np.arange(6), sd=1, r=0.4)
        data = synthesize_dataset(d)
        assert list(data.columns) == ["subject", "a", "b", "cond", "y"]
        assert len(data) == 8 * 6

    def test_n_below_cells(self):
        d = anova_design("2w*2w", n=3, mu=[1, 0, 1, 0], sd=1, r=0.5)
        with pytest.raises(InvalidDesignError, match="n >= "):
            synthesize_dataset(d)

    def test_skeleton_untouched(self):
        d = anova_design("2b", n=5, mu=[0, 1], sd=1)
        synthesize_dataset(d)
        assert "y" not in d.long_skeleton.columns
