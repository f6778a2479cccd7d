from __future__ import annotations

"""
Nearest-neighbour distance engine.

One primitive (a k-d tree over a fixed reference set) used two ways:
- within-set: distance of every point to its nearest *other* point of the same set;
- cross-set: distance of every query point to its nearest reference point.

Works the same on geographic coordinates (NNDM) and on normalized, weight-scaled
feature vectors (DI), where plain Euclidean distance is the weighted distance.
Large query sets are processed in bounded chunks; `workers` is passed to the tree
query so each chunk is answered in parallel against the shared read-only index.
"""

from typing import Any

import numpy as np

from ..errors import ConfigError, DataError, InsufficientDataError


def _require_kdtree() -> Any:
    try:
        from scipy.spatial import cKDTree  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("The distance engine requires scipy (pip install scipy).") from e
    return cKDTree


def _as_points(x: Any, *, what: str) -> Any:
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    if x.ndim != 2:
        raise ConfigError(f"{what} must be 2-D (n, d), got shape {x.shape}")
    return x


class NearestNeighborIndex:
    """Immutable spatial index over a reference point set."""

    def __init__(self, points: Any) -> None:
        pts = _as_points(points, what="reference points").copy()
        if pts.shape[0] == 0:
            raise InsufficientDataError("cannot build a nearest-neighbour index over an empty point set")
        if not np.isfinite(pts).all():
            raise DataError("reference points contain missing/non-finite coordinates")
        cKDTree = _require_kdtree()
        self.points = pts
        self.points.setflags(write=False)
        self._tree = cKDTree(pts)

    @property
    def n(self) -> int:
        return int(self.points.shape[0])

    @property
    def dim(self) -> int:
        return int(self.points.shape[1])

    def query(
        self,
        x: Any,
        *,
        chunk_size: int = 100_000,
        workers: int = 1,
        return_index: bool = False,
    ) -> Any:
        """
        Distance from each row of `x` to its nearest reference point.
        Rows with missing values get NaN (and index -1).
        """
        q = _as_points(x, what="query points")
        if q.shape[1] != self.dim:
            raise ConfigError(f"query points have dimension {q.shape[1]}, index has dimension {self.dim}")
        chunk_size = int(chunk_size)
        if chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive, got: {chunk_size}")

        n = int(q.shape[0])
        dist = np.full((n,), np.nan, dtype=float)
        idx = np.full((n,), -1, dtype=int)
        for start in range(0, n, chunk_size):
            block = q[start : start + chunk_size]
            valid = np.isfinite(block).all(axis=1)
            if not valid.any():
                continue
            d, i = self._tree.query(block[valid], k=1, workers=int(workers))
            pos = np.arange(start, start + block.shape[0])[valid]
            dist[pos] = d
            idx[pos] = i

        if return_index:
            return dist, idx
        return dist

    def neighbor_distances(self, *, k: int = 1) -> tuple[Any, Any]:
        """
        Sorted distances/indices of the k nearest *other* reference points, per reference point.
        Self is removed by index, so duplicated locations correctly report distance 0.
        """
        n = self.n
        if n < 2:
            raise InsufficientDataError(f"need at least 2 points for within-set neighbours, got {n}")
        k = int(min(max(int(k), 1), n - 1))
        d, i = self._tree.query(self.points, k=k + 1)
        d = np.asarray(d, dtype=float).reshape(n, k + 1)
        i = np.asarray(i, dtype=int).reshape(n, k + 1)

        self_mask = i == np.arange(n)[:, None]
        # Heavy duplication can push self out of the k+1 results.
        no_self = ~self_mask.any(axis=1)
        self_mask[no_self, -1] = True
        # A row can only report itself once; keep the first match.
        first = np.argmax(self_mask, axis=1)
        drop = np.zeros_like(self_mask)
        drop[np.arange(n), first] = True
        keep = ~drop
        return d[keep].reshape(n, k), i[keep].reshape(n, k)


def within_nn_distance(points: Any) -> Any:
    """Per point, distance to the nearest other point of the same set."""
    d, _ = NearestNeighborIndex(points).neighbor_distances(k=1)
    return d[:, 0]


def cross_nn_distance(
    a: Any,
    b: Any,
    *,
    chunk_size: int = 100_000,
    workers: int = 1,
    return_index: bool = False,
) -> Any:
    """Per row of `a`, distance to the nearest row of `b`."""
    return NearestNeighborIndex(b).query(a, chunk_size=chunk_size, workers=workers, return_index=return_index)
