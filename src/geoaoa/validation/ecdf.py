from __future__ import annotations

"""
Incrementally maintained two-sample Kolmogorov-Smirnov statistic.

The held-out sample H (fixed size n) changes one value at a time while the
reference sample G stays fixed. Both ECDFs are step functions that only jump on
a known, finite set of values, so the difference D = F_H - F_G is stored on
that merged grid in a segment tree supporting range add and range min/max:

- replacing a value a -> b shifts D by -1/n on [a, b) (or +1/n on [b, a));
- KS = max |D| is read from the root;
- "KS if a were replaced by b" is answered in O(log N) without mutating.
"""

from typing import Any

import numpy as np


class _RangeAddMinMax:
    def __init__(self, values: Any) -> None:
        values = np.asarray(values, dtype=float)
        self.size = int(values.shape[0])
        self._max = [0.0] * (4 * max(self.size, 1))
        self._min = [0.0] * (4 * max(self.size, 1))
        self._lazy = [0.0] * (4 * max(self.size, 1))
        if self.size:
            self._build(1, 0, self.size - 1, values)

    def _build(self, node: int, lo: int, hi: int, values: Any) -> None:
        if lo == hi:
            self._max[node] = self._min[node] = float(values[lo])
            return
        mid = (lo + hi) // 2
        self._build(2 * node, lo, mid, values)
        self._build(2 * node + 1, mid + 1, hi, values)
        self._max[node] = max(self._max[2 * node], self._max[2 * node + 1])
        self._min[node] = min(self._min[2 * node], self._min[2 * node + 1])

    def _push(self, node: int) -> None:
        add = self._lazy[node]
        if add:
            for child in (2 * node, 2 * node + 1):
                self._max[child] += add
                self._min[child] += add
                self._lazy[child] += add
            self._lazy[node] = 0.0

    def add(self, left: int, right: int, value: float) -> None:
        """Add `value` on the half-open index range [left, right)."""
        if left < right and self.size:
            self._add(1, 0, self.size - 1, left, right - 1, float(value))

    def _add(self, node: int, lo: int, hi: int, left: int, right: int, value: float) -> None:
        if right < lo or hi < left:
            return
        if left <= lo and hi <= right:
            self._max[node] += value
            self._min[node] += value
            self._lazy[node] += value
            return
        self._push(node)
        mid = (lo + hi) // 2
        self._add(2 * node, lo, mid, left, right, value)
        self._add(2 * node + 1, mid + 1, hi, left, right, value)
        self._max[node] = max(self._max[2 * node], self._max[2 * node + 1])
        self._min[node] = min(self._min[2 * node], self._min[2 * node + 1])

    def min_max(self, left: int, right: int) -> tuple[float, float] | None:
        """(min, max) over [left, right), or None for an empty range."""
        if left >= right or not self.size:
            return None
        return self._query(1, 0, self.size - 1, left, right - 1)

    def _query(self, node: int, lo: int, hi: int, left: int, right: int) -> tuple[float, float] | None:
        if right < lo or hi < left:
            return None
        if left <= lo and hi <= right:
            return self._min[node], self._max[node]
        self._push(node)
        mid = (lo + hi) // 2
        a = self._query(2 * node, lo, mid, left, right)
        b = self._query(2 * node + 1, mid + 1, hi, left, right)
        if a is None:
            return b
        if b is None:
            return a
        return min(a[0], b[0]), max(a[1], b[1])


def ecdf(sample: Any, at: Any) -> Any:
    """Right-continuous empirical CDF of `sample` evaluated at `at`."""
    s = np.sort(np.asarray(sample, dtype=float).reshape(-1))
    return np.searchsorted(s, np.asarray(at, dtype=float), side="right") / float(max(s.shape[0], 1))


def ks_statistic(a: Any, b: Any) -> float:
    """sup_x |F_a(x) - F_b(x)| (identical to scipy.stats.ks_2samp's statistic)."""
    grid = np.unique(np.concatenate([np.asarray(a, dtype=float).reshape(-1), np.asarray(b, dtype=float).reshape(-1)]))
    if grid.size == 0:
        return 0.0
    return float(np.max(np.abs(ecdf(a, grid) - ecdf(b, grid))))


class KSTracker:
    """
    KS distance between a mutable sample and a fixed reference.

    `support` must contain every value the mutable sample may ever take
    (the initial values are added automatically).
    """

    def __init__(self, values: Any, reference: Any, *, support: Any = None) -> None:
        values = np.asarray(values, dtype=float).reshape(-1)
        reference = np.asarray(reference, dtype=float).reshape(-1)
        if values.size == 0 or reference.size == 0:
            raise ValueError("KSTracker needs non-empty sample and reference")
        parts = [values, reference]
        if support is not None:
            sup = np.asarray(support, dtype=float).reshape(-1)
            parts.append(sup[np.isfinite(sup)])
        self.grid = np.unique(np.concatenate(parts))
        self.n = int(values.size)
        self._step = 1.0 / float(self.n)
        self._tree = _RangeAddMinMax(ecdf(values, self.grid) - ecdf(reference, self.grid))

    def _pos(self, value: float) -> int:
        i = int(np.searchsorted(self.grid, float(value), side="left"))
        if i >= self.grid.size or self.grid[i] != float(value):
            raise ValueError(f"value {value!r} is not on the tracked support")
        return i

    def statistic(self) -> float:
        mm = self._tree.min_max(0, self._tree.size)
        lo, hi = mm if mm is not None else (0.0, 0.0)
        return float(max(hi, -lo, 0.0))

    def _shift(self, old: float, new: float) -> tuple[int, int, float]:
        ia = self._pos(old)
        ib = self._pos(new)
        if ib >= ia:
            return ia, ib, -self._step
        return ib, ia, self._step

    def statistic_if_replaced(self, old: float, new: float) -> float:
        left, right, delta = self._shift(old, new)
        best = 0.0
        for lr in ((0, left), (right, self._tree.size)):
            mm = self._tree.min_max(*lr)
            if mm is not None:
                best = max(best, mm[1], -mm[0])
        mm = self._tree.min_max(left, right)
        if mm is not None:
            best = max(best, mm[1] + delta, -(mm[0] + delta))
        return float(best)

    def replace(self, old: float, new: float) -> float:
        left, right, delta = self._shift(old, new)
        self._tree.add(left, right, delta)
        return self.statistic()
