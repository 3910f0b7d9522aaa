"""Tests for plot_exact_data."""

import numpy as np
from matplotlib.collections import PathCollection
from matplotlib.figure import Figure

from pyanovapower.design import anova_design
from pyanovapower.exact import ExactOptions, anova_exact, plot_exact_data, synthesize_dataset


def _figure(code, n, k, r=0.5):
    d = anova_design(code, n=n, mu=np.linspace(0, 1, k), sd=1, r=r)
    return plot_exact_data(synthesize_dataset(d), d)


class TestLayout:
    """Panel layout follows the number of factors."""

    def test_one_factor(self):
        fig = _figure("3b", 5, 3)
        assert isinstance(fig, Figure)
        assert len(fig.axes) == 1
        assert fig.axes[0].get_xlabel() == "a"

    def test_two_factors(self):
        fig = _figure("2w*3w", 10, 6)
        assert len(fig.axes) == 3
        assert fig.axes[0].get_title() == "b = b1"

    def test_three_factors(self):
        fig = _figure("2b*2w*3w", 15, 12)
        assert len(fig.axes) == 2 * 3
        assert fig.axes[0].get_title() == "b = b1, c = c1"

    def test_four_factors(self):
        fig = _figure("2b*2b*2b*2b", 16, 16)
        assert len(fig.axes) == 1
        labels = [t.get_text() for t in fig.axes[0].get_xticklabels()]
        assert labels[0] == "a1_b1_c1_d1"

    def test_one_point_per_observation(self):
        fig = _figure("2b", 7, 2)
        offsets = [
            c.get_offsets() for c in fig.axes[0].collections
            if isinstance(c, PathCollection)
        ]
        assert sum(len(o) for o in offsets) == 14


class TestFromAnovaExact:

    def test_plot_flag(self):
        d = anova_design("2b", n=5, mu=[0, 1], sd=1)
        assert isinstance(anova_exact(d, ExactOptions(plot=True)).plot, Figure)
        assert anova_exact(d, ExactOptions(plot=False)).plot is None
