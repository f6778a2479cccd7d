from __future__ import annotations

"""
Dissimilarity index (DI) and area of applicability (AOA).

    DI(x) = d_nn(x, training set) / mean LOO nearest-neighbour distance of the training set

with all distances taken in the standardized, importance-weighted feature space.
The threshold comes only from the CV structure: every training point's DI is
measured against the training part of the fold that holds it out, and the
threshold is the upper boxplot fence (Q3 + 1.5 IQR) of those values. A scheme that
holds points out further from their training data therefore yields a larger,
more permissive threshold.

    AOA(x) = 1 if DI(x) <= threshold else 0
"""

import json
import pathlib
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np

from ..config import AOAConfig
from ..errors import ConfigError, DataError, InsufficientDataError
from ..features.normalize import FeatureNormalizer, PredictorSpace
from ..model.base import resolve_weights
from ..spatial.distance import NearestNeighborIndex
from ..validation.folds import FoldSet, leave_one_out


def boxplot_threshold(values: Any, *, rule: str = "fence") -> float:
    """
    Upper outlier fence Q3 + 1.5 * IQR (linear quantiles).
    rule="max_within" returns the largest value not above the fence instead.
    """
    v = np.asarray(values, dtype=float).reshape(-1)
    v = v[np.isfinite(v)]
    if v.size == 0:
        raise InsufficientDataError("no finite held-out DI values to derive a threshold from")
    q1, q3 = np.quantile(v, [0.25, 0.75])
    fence = float(q3 + 1.5 * (q3 - q1))
    if rule == "fence":
        return fence
    if rule == "max_within":
        return float(v[v <= fence].max())
    raise ConfigError(f"unknown threshold rule: {rule} (use fence/max_within)")


@dataclass
class AOAResult:
    di: Any
    aoa: Any
    threshold: float
    mean_loo_distance: float
    train_di: Any
    normalizer: dict[str, Any]
    meta: dict[str, Any] = field(default_factory=dict)

    def aoa_at(self, threshold: float) -> Any:
        """AOA mask for another threshold (same DI)."""
        di = np.asarray(self.di, dtype=float)
        return (np.isfinite(di) & (di <= float(threshold))).astype(np.int8)

    def summary(self) -> dict[str, Any]:
        return {
            "threshold": float(self.threshold),
            "mean_loo_distance": float(self.mean_loo_distance),
            **{k: v for k, v in self.meta.items() if not isinstance(v, (list, dict))},
        }

    def save(self, path: pathlib.Path) -> pathlib.Path:
        """Arrays + scalar parameters in one .npz (meta as embedded JSON)."""
        p = pathlib.Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        header = {
            "threshold": float(self.threshold),
            "mean_loo_distance": float(self.mean_loo_distance),
            "normalizer": self.normalizer,
            "meta": self.meta,
        }
        with p.open("wb") as fh:
            np.savez_compressed(
                fh,
                di=np.asarray(self.di, dtype=float),
                aoa=np.asarray(self.aoa, dtype=np.int8),
                train_di=np.asarray(self.train_di, dtype=float),
                header=np.asarray(json.dumps(header, ensure_ascii=False)),
            )
        return p

    @classmethod
    def load(cls, path: pathlib.Path) -> "AOAResult":
        with np.load(pathlib.Path(path), allow_pickle=False) as z:
            header = json.loads(str(z["header"]))
            return cls(
                di=z["di"],
                aoa=z["aoa"],
                threshold=float(header["threshold"]),
                mean_loo_distance=float(header["mean_loo_distance"]),
                train_di=z["train_di"],
                normalizer=dict(header["normalizer"]),
                meta=dict(header.get("meta") or {}),
            )


class AOAEstimator:
    def __init__(self, *, config: AOAConfig | None = None) -> None:
        self.config = config or AOAConfig()
        self.normalizer: FeatureNormalizer | None = None
        self.folds: FoldSet | None = None
        self.mean_loo_distance: float | None = None
        self.train_di: Any = None
        self.threshold: float | None = None
        self._z_train: Any = None
        self._index: NearestNeighborIndex | None = None

    @property
    def variables(self) -> tuple[str, ...]:
        self._require_fitted()
        return tuple(self.normalizer.variables or ())  # type: ignore[union-attr]

    def _require_fitted(self) -> None:
        if self.normalizer is None:
            raise RuntimeError("AOAEstimator is not fitted. Call fit() first.")

    def fit(
        self,
        train: Any,
        *,
        folds: FoldSet | None = None,
        variables: Sequence[str] | None = None,
        weights: Any = None,
        model: Any = None,
    ) -> "AOAEstimator":
        """
        Args:
            train: PredictorSpace, DataFrame, or (n, p) array of training features.
            folds: any CV fold structure over the training rows (default: leave-one-out).
            variables: predictor subset/order (default: all variables of `train`).
            weights: per-variable importance; falls back to model.importance() if available.
            model: optional model exposing importance().
        """
        if not isinstance(train, PredictorSpace):
            import pandas as pd

            if isinstance(train, pd.DataFrame):
                train = PredictorSpace.from_frame(train, variables=variables)
            else:
                arr = np.asarray(train, dtype=float)
                if arr.ndim != 2:
                    raise ConfigError(f"training features must be 2-D (n, p), got shape {arr.shape}")
                names = list(variables) if variables is not None else [f"x{i}" for i in range(arr.shape[1])]
                train = PredictorSpace(variables=tuple(names), values=arr)
        if variables is not None:
            train = train.select(variables)

        w = resolve_weights(model=model, weights=weights, variables=train.variables)
        normalizer = FeatureNormalizer()
        z = normalizer.fit_transform(train, weights=w)
        n = int(z.shape[0])

        index = NearestNeighborIndex(z)
        loo, _ = index.neighbor_distances(k=1)
        mean_loo = float(loo[:, 0].mean())
        if not mean_loo > 0:
            raise DataError("training points all coincide in the weighted feature space (mean LOO distance is 0)")

        if folds is None:
            folds = leave_one_out(n)
        if folds.n_points != n:
            raise DataError(f"fold structure covers {folds.n_points} point(s) but there are {n} training point(s)")

        train_di = np.full((n,), np.nan, dtype=float)
        for i, fold in enumerate(folds):
            if fold.train.size == 0:
                raise InsufficientDataError(f"fold {i} has an empty training set; cannot measure held-out DI")
            d = NearestNeighborIndex(z[fold.train]).query(z[fold.test])
            train_di[fold.test] = d / mean_loo

        self.normalizer = normalizer
        self.folds = folds
        self.mean_loo_distance = mean_loo
        self.train_di = train_di
        self.threshold = boxplot_threshold(train_di, rule=self.config.threshold_rule)
        self._z_train = z
        self._index = index
        return self

    def _raw_rows(self, x: Any) -> tuple[Any, PredictorSpace | None]:
        if isinstance(x, PredictorSpace):
            space = x.select(self.variables)
            return space.values, space
        import pandas as pd

        if isinstance(x, pd.DataFrame):
            space = PredictorSpace.from_frame(x, variables=self.variables)
            return space.values, space
        arr = np.asarray(x, dtype=float)
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        return arr, None

    def raw_features(self, x: Any) -> Any:
        """Unnormalized (N, p) feature rows of `x`, columns in the fitted variable order."""
        self._require_fitted()
        return self._raw_rows(x)[0]

    def dissimilarity(self, x: Any, *, subset: Any = None) -> Any:
        """
        DI of every row of `x`. With `subset` (training row indices) the nearest
        neighbour is searched among those rows only, still normalized by the
        full-training mean LOO distance (used for held-out points in calibration).
        """
        self._require_fitted()
        raw, _ = self._raw_rows(x)
        if subset is None:
            index = self._index
        else:
            subset = np.asarray(subset, dtype=int)
            if subset.size == 0:
                raise InsufficientDataError("cannot measure DI against an empty training subset")
            index = NearestNeighborIndex(self._z_train[subset])
        return self._chunked_di(raw, index)

    def _chunked_di(self, raw: Any, index: Any) -> Any:
        chunk = int(self.config.chunk_size)
        n = int(raw.shape[0])
        di = np.full((n,), np.nan, dtype=float)
        for start in range(0, n, chunk):
            z = self.normalizer.transform(raw[start : start + chunk])  # type: ignore[union-attr]
            di[start : start + chunk] = index.query(z, chunk_size=chunk, workers=int(self.config.workers))
        return di / float(self.mean_loo_distance)  # type: ignore[arg-type]

    def predict(self, x: Any) -> AOAResult:
        self._require_fitted()
        raw, space = self._raw_rows(x)
        di = self._chunked_di(raw, self._index)
        valid = np.isfinite(di)
        aoa = (valid & (di <= float(self.threshold))).astype(np.int8)  # type: ignore[arg-type]

        n_valid = int(valid.sum())
        n_inside = int(aoa.sum())
        meta = {
            "n_locations": int(di.shape[0]),
            "n_missing": int(di.shape[0] - n_valid),
            "n_inside": n_inside,
            "fraction_inside": (float(n_inside / n_valid) if n_valid else None),
            "threshold_rule": self.config.threshold_rule,
            "n_folds": len(self.folds),  # type: ignore[arg-type]
            "fold_scheme": (self.folds.meta.get("scheme") if self.folds is not None else None),
            "variables": list(self.variables),
        }
        if space is not None:
            di = space.fold_back(di)
            aoa = space.fold_back(aoa)
        return AOAResult(
            di=di,
            aoa=aoa,
            threshold=float(self.threshold),  # type: ignore[arg-type]
            mean_loo_distance=float(self.mean_loo_distance),  # type: ignore[arg-type]
            train_di=self.train_di.copy(),
            normalizer=self.normalizer.to_dict(),  # type: ignore[union-attr]
            meta=meta,
        )


def estimate_aoa(
    train: Any,
    predict: Any,
    *,
    folds: FoldSet | None = None,
    variables: Sequence[str] | None = None,
    weights: Any = None,
    model: Any = None,
    config: AOAConfig | None = None,
) -> AOAResult:
    """One-shot fit + predict."""
    est = AOAEstimator(config=config).fit(train, folds=folds, variables=variables, weights=weights, model=model)
    return est.predict(predict)
