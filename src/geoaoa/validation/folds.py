from __future__ import annotations

"""
Cross-validation fold structures.

A FoldSet is an immutable tuple of (train, test) index arrays over n training
points plus a meta dict (scheme, sizes, scheme-specific statistics). Any scheme
(random k-fold, leave-cluster-out, NNDM, user labels) ends up as a FoldSet, which
is what the AOA estimator and the calibrator consume.
"""

import json
import pathlib
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

import numpy as np

from ..config import make_rng
from ..errors import ConfigError, DataError, InsufficientDataError


def _frozen_index(x: Any) -> Any:
    arr = np.unique(np.asarray(x, dtype=int).reshape(-1))
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class Fold:
    train: Any
    test: Any

    def __post_init__(self) -> None:
        object.__setattr__(self, "train", _frozen_index(self.train))
        object.__setattr__(self, "test", _frozen_index(self.test))


@dataclass(frozen=True)
class FoldSet:
    folds: tuple[Fold, ...]
    n_points: int
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "folds", tuple(self.folds))
        object.__setattr__(self, "n_points", int(self.n_points))
        object.__setattr__(self, "meta", dict(self.meta))
        self.validate()

    def __iter__(self) -> Iterator[Fold]:
        return iter(self.folds)

    def __len__(self) -> int:
        return len(self.folds)

    def validate(self) -> None:
        """Every fold is disjoint, in range, and the test sets partition 0..n-1."""
        n = self.n_points
        if not self.folds:
            raise InsufficientDataError("a fold structure needs at least one fold")
        seen = np.zeros((n,), dtype=int)
        for i, f in enumerate(self.folds):
            for name, idx in (("train", f.train), ("test", f.test)):
                if idx.size and (idx.min() < 0 or idx.max() >= n):
                    raise DataError(f"fold {i}: {name} index out of range for {n} training point(s)")
            if f.test.size == 0:
                raise DataError(f"fold {i}: empty test set")
            if np.intersect1d(f.train, f.test).size:
                raise DataError(f"fold {i}: train and test sets overlap")
            seen[f.test] += 1
        missing = np.nonzero(seen == 0)[0]
        repeated = np.nonzero(seen > 1)[0]
        if missing.size or repeated.size:
            raise DataError(
                "fold test sets must cover every training point exactly once "
                f"(never held out: {missing[:10].tolist()}, held out repeatedly: {repeated[:10].tolist()})"
            )

    def test_labels(self) -> Any:
        labels = np.full((self.n_points,), -1, dtype=int)
        for i, f in enumerate(self.folds):
            labels[f.test] = i
        return labels

    def summary(self) -> dict[str, Any]:
        train_sizes = [int(f.train.size) for f in self.folds]
        test_sizes = [int(f.test.size) for f in self.folds]
        return {
            "n_points": self.n_points,
            "n_folds": len(self.folds),
            "train_size": {"min": min(train_sizes), "max": max(train_sizes)},
            "test_size": {"min": min(test_sizes), "max": max(test_sizes)},
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "n_points": self.n_points,
            "folds": [{"train": f.train.tolist(), "test": f.test.tolist()} for f in self.folds],
            "summary": self.summary(),
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FoldSet":
        try:
            folds = tuple(Fold(train=f["train"], test=f["test"]) for f in data["folds"])
            n_points = int(data["n_points"])
        except (KeyError, TypeError) as e:
            raise ConfigError(f"malformed fold structure: {e}") from e
        return cls(folds=folds, n_points=n_points, meta=dict(data.get("meta") or {}))

    def save(self, path: pathlib.Path) -> None:
        p = pathlib.Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: pathlib.Path) -> "FoldSet":
        return cls.from_dict(json.loads(pathlib.Path(path).read_text(encoding="utf-8")))


def folds_from_labels(labels: Sequence[Any], *, scheme: str = "labels", meta: dict[str, Any] | None = None) -> FoldSet:
    """One fold per distinct label: hold the label out, train on everything else."""
    labels = np.asarray(labels)
    if labels.ndim != 1:
        raise ConfigError(f"fold labels must be 1-D, got shape {labels.shape}")
    n = int(labels.shape[0])
    uniq = [u for u in np.unique(labels)]
    if len(uniq) < 2:
        raise InsufficientDataError(f"need at least 2 distinct fold labels, got {len(uniq)}")
    all_idx = np.arange(n)
    folds = []
    for u in uniq:
        test = all_idx[labels == u]
        folds.append(Fold(train=all_idx[labels != u], test=test))
    return FoldSet(folds=tuple(folds), n_points=n, meta={"scheme": scheme, "n_groups": len(uniq), **(meta or {})})


def leave_one_out(n: int) -> FoldSet:
    n = int(n)
    if n < 2:
        raise InsufficientDataError(f"leave-one-out needs at least 2 points, got {n}")
    return folds_from_labels(np.arange(n), scheme="leave_one_out")


def random_kfold(n: int, *, k: int, rng: Any = None) -> FoldSet:
    n, k = int(n), int(k)
    if k < 2:
        raise ConfigError(f"k must be >= 2, got: {k}")
    if k > n:
        raise InsufficientDataError(f"random {k}-fold CV needs at least {k} points, got {n}")
    gen = make_rng(rng)
    labels = np.empty((n,), dtype=int)
    labels[gen.permutation(n)] = np.arange(n) % k
    return folds_from_labels(labels, scheme="random_kfold", meta={"k": k})


def leave_cluster_out(coords: Any, *, k: int, rng: Any = None) -> FoldSet:
    """Spatial blocking: KMeans on coordinates, one fold per cluster."""
    try:
        from sklearn.cluster import KMeans  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("leave_cluster_out requires scikit-learn.") from e

    pts = np.asarray(coords, dtype=float)
    if pts.ndim != 2:
        raise ConfigError(f"coordinates must be 2-D (n, d), got shape {pts.shape}")
    n, k = int(pts.shape[0]), int(k)
    if k < 2:
        raise ConfigError(f"k must be >= 2, got: {k}")
    if k > n:
        raise InsufficientDataError(f"leave-cluster-out with {k} clusters needs at least {k} points, got {n}")
    gen = make_rng(rng)
    seed = int(gen.integers(0, 2**31 - 1))
    labels = KMeans(n_clusters=k, random_state=seed, n_init=10).fit_predict(pts)
    return folds_from_labels(labels, scheme="leave_cluster_out", meta={"k": k, "kmeans_seed": seed})


def make_folds(
    scheme: str,
    *,
    n: int | None = None,
    coords: Any = None,
    k: int = 5,
    labels: Sequence[Any] | None = None,
    rng: Any = None,
) -> FoldSet:
    """
    Dispatch a CV configuration by scheme name:
    random / random_kfold, cluster / leave_cluster_out, loo / leave_one_out, labels.
    NNDM has its own builder (validation.nndm.nndm_folds) because it needs a prediction domain.
    """
    scheme = str(scheme)
    if scheme in {"random", "random_kfold"}:
        if n is None:
            n = int(np.asarray(coords).shape[0])
        return random_kfold(n, k=k, rng=rng)
    if scheme in {"cluster", "leave_cluster_out"}:
        if coords is None:
            raise ConfigError("leave-cluster-out CV requires coordinates")
        return leave_cluster_out(coords, k=k, rng=rng)
    if scheme in {"loo", "leave_one_out"}:
        if n is None:
            n = int(np.asarray(coords).shape[0])
        return leave_one_out(n)
    if scheme == "labels":
        if labels is None:
            raise ConfigError("scheme 'labels' requires fold labels")
        return folds_from_labels(labels)
    raise ConfigError(f"unknown CV scheme: {scheme} (use random/cluster/loo/labels, or nndm_folds)")
