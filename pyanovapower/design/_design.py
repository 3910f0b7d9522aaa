"""Factorial design descriptors.

A ``DesignSpec`` is the fully-built description of a factorial design that
the exact power pipeline consumes: factor structure, one ``CellId`` per
design cell, population means, the covariance matrix over cells, and a
long-format data skeleton with one row per subject x cell.

``anova_design`` builds one from a compact design code such as ``"2w*3b"``.
"""

from __future__ import annotations

import itertools
import math
import re
import string
import warnings
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike, NDArray

from pyanovapower.exceptions import InvalidDesignError, UnequalSampleSizeWarning

_TERM_RE = re.compile(r"^(\d+)([bw])$")


@dataclass(frozen=True)
class Factor:
    """One factor of the design."""

    name: str
    levels: tuple[str, ...]
    within: bool

    @property
    def n_levels(self) -> int:
        return len(self.levels)


@dataclass(frozen=True, order=True)
class CellId:
    """One cell of the design.

    ``index`` is the cell's column in ``mu`` and ``sigma_matrix``; cells
    compare and sort by it, so tables keyed by cells keep design order.
    """

    index: int
    levels: tuple[str, ...]

    @property
    def label(self) -> str:
        """Condition label, the level names joined with ``_``."""
        return "_".join(self.levels)


@dataclass(frozen=True)
class DesignSpec:
    """A factorial design ready for exact power analysis.

    Attributes
    ----------
    design_code : str
        Compact design string, e.g. ``"2w*2w"``.
    factors : tuple of Factor
        Factors in design-code order.
    n : int
        Sample size per cell.
    mu : array, shape (k,)
        Population mean of each cell.
    sd : array, shape (k,)
        Population standard deviation of each cell.
    sigma_matrix : array, shape (k, k)
        Covariance matrix over cells.
    cells : tuple of CellId
        Cells in column order; the first factor varies slowest.
    long_skeleton : DataFrame
        One row per subject x cell: ``subject``, one column per factor,
        and ``cond``. Cell-major row order.
    full_formula, grouping_formula : str
        Model formula and the default marginal-means grouping.
    has_within_factor : bool
        Whether any factor is measured within subjects.
    """

    design_code: str
    factors: tuple[Factor, ...]
    n: int
    mu: NDArray[np.floating]
    sd: NDArray[np.floating]
    sigma_matrix: NDArray[np.floating]
    cells: tuple[CellId, ...]
    long_skeleton: pd.DataFrame
    full_formula: str
    grouping_formula: str
    has_within_factor: bool

    @property
    def factor_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.factors)

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    @property
    def between_factors(self) -> tuple[Factor, ...]:
        return tuple(f for f in self.factors if not f.within)

    @property
    def within_factors(self) -> tuple[Factor, ...]:
        return tuple(f for f in self.factors if f.within)

    def factor(self, name: str) -> Factor:
        """Look up a factor by name."""
        for f in self.factors:
            if f.name == name:
                return f
        raise KeyError(name)

    def group_of(self, cell: CellId) -> tuple[str, ...]:
        """Between-subject levels of *cell* (empty for fully-within designs)."""
        return tuple(
            lev for f, lev in zip(self.factors, cell.levels) if not f.within
        )

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Design {self.design_code}  (n = {self.n} per cell)",
            "=" * 40,
        ]
        for f in self.factors:
            kind = "within" if f.within else "between"
            lines.append(f"{f.name:<12}: {kind}, levels {', '.join(f.levels)}")
        lines.append("")
        for cell in self.cells:
            lines.append(
                f"{cell.label:<24} mu = {self.mu[cell.index]:.4f}  "
                f"sd = {self.sd[cell.index]:.4f}"
            )
        lines.append("")
        lines.append(f"Model: {self.full_formula}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _parse_design_code(design: str) -> list[tuple[int, bool]]:
    """Split ``"2w*3b"`` into ``[(2, True), (3, False)]``."""
    if not isinstance(design, str) or not design.strip():
        raise InvalidDesignError(f"design must be a non-empty string, got {design!r}")

    terms = []
    for part in design.replace(" ", "").split("*"):
        match = _TERM_RE.match(part)
        if match is None:
            raise InvalidDesignError(
                f"Cannot parse design term {part!r} in {design!r}; "
                f"expected e.g. '2b' or '3w' joined by '*'"
            )
        levels = int(match.group(1))
        if levels < 2:
            raise InvalidDesignError(
                f"Each factor needs >= 2 levels, got {levels} in {design!r}"
            )
        terms.append((levels, match.group(2) == "w"))
    return terms


def _factor_labels(
    terms: list[tuple[int, bool]],
    labelnames: Sequence[str] | None,
) -> list[tuple[str, tuple[str, ...]]]:
    """Factor names and level names, from *labelnames* or defaults a/a1..."""
    if labelnames is None:
        out = []
        for i, (levels, _) in enumerate(terms):
            name = string.ascii_lowercase[i]
            out.append((name, tuple(f"{name}{j + 1}" for j in range(levels))))
        return out

    expected = sum(levels + 1 for levels, _ in terms)
    labelnames = [str(x) for x in labelnames]
    if len(labelnames) != expected:
        raise InvalidDesignError(
            f"labelnames must have {expected} entries (one name per factor "
            f"followed by its levels), got {len(labelnames)}"
        )

    out = []
    pos = 0
    for levels, _ in terms:
        name = labelnames[pos]
        lev = tuple(labelnames[pos + 1 : pos + 1 + levels])
        pos += levels + 1
        if len(set(lev)) != len(lev):
            raise InvalidDesignError(f"Duplicate level names for factor {name!r}: {lev}")
        out.append((name, lev))
    names = [name for name, _ in out]
    if len(set(names)) != len(names):
        raise InvalidDesignError(f"Duplicate factor names: {names}")
    return out


def _resolve_n(n: int | Sequence[int]) -> int:
    """Collapse *n* to one per-cell sample size."""
    if np.ndim(n) == 0:
        n_scalar = n
    else:
        values = sorted({int(x) for x in n})
        if len(values) != 1:
            warnings.warn(
                "Unequal n designs can only be analysed by simulation; "
                f"got cell sizes {values}",
                UnequalSampleSizeWarning,
                stacklevel=3,
            )
            raise InvalidDesignError(
                f"The exact path requires one sample size for every cell, got {values}"
            )
        n_scalar = values[0]

    if int(n_scalar) != n_scalar or n_scalar < 2:
        raise InvalidDesignError(f"n must be an integer >= 2, got {n_scalar}")
    return int(n_scalar)


def _correlation_matrix(
    r: float | ArrayLike,
    cells: list[CellId],
    factors: list[Factor],
) -> NDArray:
    """Correlation over cells: *r* between cells of the same subject, else 0."""
    k = len(cells)
    r_arr = np.asarray(r, dtype=float)

    if r_arr.ndim == 2:
        if r_arr.shape != (k, k):
            raise InvalidDesignError(
                f"Correlation matrix must be {k}x{k}, got {r_arr.shape}"
            )
        if not np.allclose(r_arr, r_arr.T):
            raise InvalidDesignError("Correlation matrix must be symmetric")
        if not np.allclose(np.diag(r_arr), 1.0):
            raise InvalidDesignError("Correlation matrix must have a unit diagonal")
        between = [i for i, f in enumerate(factors) if not f.within]
        for a, b in itertools.combinations(cells, 2):
            other_subjects = any(a.levels[i] != b.levels[i] for i in between)
            if other_subjects and r_arr[a.index, b.index] != 0.0:
                raise InvalidDesignError(
                    f"Cells {a.label} and {b.label} belong to different "
                    f"between-subject groups and cannot be correlated"
                )
        return r_arr.copy()

    if r_arr.ndim != 0:
        raise InvalidDesignError(
            f"r must be a scalar or a {k}x{k} matrix, got shape {r_arr.shape}"
        )
    r_val = float(r_arr)
    if not (-1.0 < r_val <= 1.0):
        raise InvalidDesignError(f"r must be in (-1, 1], got {r_val}")

    between = [i for i, f in enumerate(factors) if not f.within]
    corr = np.eye(k)
    for a, b in itertools.combinations(cells, 2):
        same_subject = all(a.levels[i] == b.levels[i] for i in between)
        if same_subject:
            corr[a.index, b.index] = corr[b.index, a.index] = r_val
    return corr


def _long_skeleton(
    cells: list[CellId],
    factors: list[Factor],
    n: int,
) -> pd.DataFrame:
    """One row per subject x cell, cell-major."""
    between = [i for i, f in enumerate(factors) if not f.within]
    group_ids: dict[tuple[str, ...], int] = {}

    subject = []
    for cell in cells:
        group = tuple(cell.levels[i] for i in between)
        g = group_ids.setdefault(group, len(group_ids))
        subject.extend(g * n + i + 1 for i in range(n))

    data = {"subject": np.asarray(subject, dtype=int)}
    for i, f in enumerate(factors):
        data[f.name] = pd.Categorical(
            np.repeat([cell.levels[i] for cell in cells], n),
            categories=list(f.levels),
        )
    data["cond"] = pd.Categorical(
        np.repeat([cell.label for cell in cells], n),
        categories=[cell.label for cell in cells],
    )
    return pd.DataFrame(data)


def _formulas(factors: list[Factor]) -> tuple[str, str]:
    names = [f.name for f in factors]
    within = [f.name for f in factors if f.within]
    rhs = "*".join(names)
    if within:
        error = f"Error(subject/({'*'.join(within)}))"
    else:
        error = "Error(subject)"
    return f"y ~ {rhs} + {error}", f"~ {'+'.join(names)}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def anova_design(
    design: str,
    n: int | Sequence[int],
    mu: ArrayLike,
    sd: float | ArrayLike,
    r: float | ArrayLike = 0.0,
    labelnames: Sequence[str] | None = None,
) -> DesignSpec:
    """Build a factorial design for exact power analysis.

    Parameters
    ----------
    design : str
        Factors joined by ``*``; each is a level count followed by ``b``
        (between subjects) or ``w`` (within subjects), e.g. ``"2b*3w"``.
    n : int
        Sample size per cell. A sequence is accepted only if all values
        are equal.
    mu : array-like
        Population mean per cell, first factor varying slowest.
    sd : float or array-like
        Population standard deviation, common or per cell.
    r : float or array-like
        Correlation between repeated measures of the same subject, or a
        full correlation matrix over cells.
    labelnames : sequence of str, optional
        ``[factor1, level1, level2, ..., factor2, ...]``.

    Returns
    -------
    DesignSpec

    Examples
    --------
    >>> d = anova_design("2w*2w", n=40, mu=[1, 0, 1, 0], sd=2, r=0.8)
    >>> [c.label for c in d.cells]
    ['a1_b1', 'a1_b2', 'a2_b1', 'a2_b2']
    """
    terms = _parse_design_code(design)
    named = _factor_labels(terms, labelnames)
    factors = [
        Factor(name=name, levels=levels, within=within)
        for (name, levels), (_, within) in zip(named, terms)
    ]
    n_int = _resolve_n(n)

    cells = [
        CellId(index=i, levels=combo)
        for i, combo in enumerate(itertools.product(*(f.levels for f in factors)))
    ]
    k = len(cells)

    mu_arr = np.asarray(mu, dtype=float).ravel()
    if mu_arr.shape != (k,):
        raise InvalidDesignError(
            f"mu must have one value per cell ({k} for {design!r}), got {mu_arr.size}"
        )
    if not np.all(np.isfinite(mu_arr)):
        raise InvalidDesignError("mu must be finite")

    sd_arr = np.asarray(sd, dtype=float).ravel()
    if sd_arr.size == 1:
        sd_arr = np.full(k, float(sd_arr[0]))
    if sd_arr.shape != (k,):
        raise InvalidDesignError(
            f"sd must be a scalar or have {k} values, got {sd_arr.size}"
        )
    if np.any(~np.isfinite(sd_arr)) or np.any(sd_arr <= 0.0):
        raise InvalidDesignError(f"sd must be finite and > 0, got {sd_arr.tolist()}")

    corr = _correlation_matrix(r, cells, factors)
    sigma = corr * np.outer(sd_arr, sd_arr)

    full_formula, grouping_formula = _formulas(factors)

    return DesignSpec(
        design_code=design.replace(" ", ""),
        factors=tuple(factors),
        n=n_int,
        mu=mu_arr,
        sd=sd_arr,
        sigma_matrix=sigma,
        cells=tuple(cells),
        long_skeleton=_long_skeleton(cells, factors, n_int),
        full_formula=full_formula,
        grouping_formula=grouping_formula,
        has_within_factor=any(f.within for f in factors),
    )


def n_cells_required(design: DesignSpec) -> int:
    """Smallest per-cell n the exact path accepts: the product of all levels."""
    return math.prod(f.n_levels for f in design.factors)
