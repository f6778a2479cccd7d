from __future__ import annotations

"""
AOA calibration: relate the dissimilarity index to the error one should expect.

A single CV scheme only exercises a narrow DI range (random CV: mostly small DI;
cluster CV: larger). Calibration repeats CV with several schemes and fold counts,
records (DI, error) for every held-out point, and fits a monotone non-decreasing
DI -> error curve. The curve is applied to a DI raster; DI above the calibrated
range is flagged and left as NaN rather than extrapolated.
"""

import json
import pathlib
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import numpy as np
from joblib import Parallel, delayed

from ..config import AOAConfig, CalibrationConfig, make_rng
from ..errors import ConfigError, DataError, InsufficientDataError
from ..validation.folds import FoldSet, leave_cluster_out, random_kfold
from .estimator import AOAEstimator

IN_RANGE = 0
ABOVE_RANGE = 1
BELOW_RANGE = -1
MISSING_DI = 2


@dataclass
class CalibrationModel:
    di: Any
    error: Any
    di_min: float
    di_max: float
    method: str
    metric: str
    meta: dict[str, Any] = field(default_factory=dict)

    def expected_error(self, di: Any) -> Any:
        """
        Monotone interpolation of the fitted curve. DI above the calibrated range -> NaN;
        DI below it -> the lowest calibrated error.
        """
        x = np.asarray(di, dtype=float)
        out = np.interp(x, np.asarray(self.di, dtype=float), np.asarray(self.error, dtype=float))
        out = np.where(np.isfinite(x), out, np.nan)
        out = np.where(x > float(self.di_max), np.nan, out)
        return out

    def range_flags(self, di: Any) -> Any:
        x = np.asarray(di, dtype=float)
        flags = np.full(x.shape, IN_RANGE, dtype=np.int8)
        flags[x > float(self.di_max)] = ABOVE_RANGE
        flags[x < float(self.di_min)] = BELOW_RANGE
        flags[~np.isfinite(x)] = MISSING_DI
        return flags

    def apply(self, di_raster: Any) -> tuple[Any, Any]:
        """(expected-error raster, range flags: 0 in range, 1 above, -1 below, 2 missing DI)."""
        return self.expected_error(di_raster), self.range_flags(di_raster)

    def to_dict(self) -> dict[str, Any]:
        return {
            "di": [float(v) for v in np.asarray(self.di, dtype=float)],
            "error": [float(v) for v in np.asarray(self.error, dtype=float)],
            "di_min": float(self.di_min),
            "di_max": float(self.di_max),
            "method": self.method,
            "metric": self.metric,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CalibrationModel":
        di = np.asarray(data["di"], dtype=float)
        error = np.asarray(data["error"], dtype=float)
        if di.shape != error.shape or di.size == 0:
            raise ConfigError("calibration curve needs matching, non-empty di/error arrays")
        if np.any(np.diff(di) < 0) or np.any(np.diff(error) < 0):
            raise DataError("calibration curve must be non-decreasing in both di and error")
        return cls(
            di=di,
            error=error,
            di_min=float(data["di_min"]),
            di_max=float(data["di_max"]),
            method=str(data["method"]),
            metric=str(data["metric"]),
            meta=dict(data.get("meta") or {}),
        )

    def save(self, path: pathlib.Path) -> pathlib.Path:
        p = pathlib.Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
        return p

    @classmethod
    def load(cls, path: pathlib.Path) -> "CalibrationModel":
        return cls.from_dict(json.loads(pathlib.Path(path).read_text(encoding="utf-8")))


def multi_cv_folds(coords: Any, *, config: CalibrationConfig | None = None, rng: Any = None) -> list[FoldSet]:
    """
    Fold structures spanning a wide DI range: random k-fold and leave-cluster-out
    for every k and repetition. Schemes whose k exceeds the point count are skipped.
    """
    cfg = config or CalibrationConfig()
    gen = make_rng(cfg.seed if rng is None else rng)
    pts = np.asarray(coords, dtype=float)
    n = int(pts.shape[0])

    out: list[FoldSet] = []
    for _ in range(int(cfg.repetitions)):
        for scheme in cfg.schemes:
            for k in cfg.ks:
                if int(k) > n:
                    continue
                if scheme == "random":
                    out.append(random_kfold(n, k=int(k), rng=gen))
                else:
                    out.append(leave_cluster_out(pts, k=int(k), rng=gen))
    if not out:
        raise InsufficientDataError(f"no CV fold structure fits {n} training point(s) with k in {list(cfg.ks)}")
    return out


def _fold_set_errors(
    *,
    set_id: int,
    folds: FoldSet,
    estimator: AOAEstimator,
    raw: Any,
    response: Any,
    model_factory: Callable[[], Any],
    metric: str,
) -> dict[str, Any]:
    di_parts, err_parts, pt_parts, fold_parts = [], [], [], []
    for i, fold in enumerate(folds):
        model = model_factory()
        model.fit(raw[fold.train], response[fold.train])
        pred = np.asarray(model.predict(raw[fold.test]), dtype=float).reshape(-1)
        resid = pred - response[fold.test]
        err = np.abs(resid) if metric == "abs" else resid**2
        di_parts.append(estimator.dissimilarity(raw[fold.test], subset=fold.train))
        err_parts.append(err)
        pt_parts.append(fold.test)
        fold_parts.append(np.full(fold.test.shape, i, dtype=int))
    return {
        "set_id": set_id,
        "scheme": folds.meta.get("scheme"),
        "k": folds.meta.get("k"),
        "di": np.concatenate(di_parts),
        "error": np.concatenate(err_parts),
        "point": np.concatenate(pt_parts),
        "fold": np.concatenate(fold_parts),
    }


def fit_calibration(
    di: Any,
    error: Any,
    *,
    method: str = "isotonic",
    metric: str = "abs",
    n_bins: int = 10,
    window_size: int = 5,
    min_observations: int = 10,
) -> CalibrationModel:
    """
    Monotone non-decreasing fit of error on DI.

    isotonic: isotonic regression on the raw pairs.
    binned: DI quantile bins, mean error per bin, cumulative maximum.
    window: RMSE over a moving window of DI-sorted pairs, then isotonic. `error`
        holds absolute residuals for metric="abs" and squared residuals for "squared".
    """
    x = np.asarray(di, dtype=float).reshape(-1)
    y = np.asarray(error, dtype=float).reshape(-1)
    if x.shape != y.shape:
        raise ConfigError(f"di and error must have the same length, got {x.shape[0]} and {y.shape[0]}")
    ok = np.isfinite(x) & np.isfinite(y)
    x, y = x[ok], y[ok]
    n_distinct = int(np.unique(x).size)
    if n_distinct < int(min_observations):
        raise InsufficientDataError(
            f"calibration needs at least {int(min_observations)} distinct DI observations, got {n_distinct}"
        )

    order = np.argsort(x, kind="mergesort")
    x, y = x[order], y[order]

    if method == "isotonic":
        cx, cy = x, y
    elif method == "binned":
        edges = np.unique(np.quantile(x, np.linspace(0.0, 1.0, int(n_bins) + 1)))
        bins = np.clip(np.searchsorted(edges, x, side="right") - 1, 0, max(edges.size - 2, 0))
        cx = np.array([x[bins == b].mean() for b in np.unique(bins)])
        cy = np.maximum.accumulate(np.array([y[bins == b].mean() for b in np.unique(bins)]))
    elif method == "window":
        w = int(min(int(window_size), x.size))
        kernel = np.ones(w) / float(w)
        cx = np.convolve(x, kernel, mode="valid")
        sq = y**2 if metric == "abs" else y
        cy = np.sqrt(np.convolve(sq, kernel, mode="valid"))
    else:
        raise ConfigError(f"unknown calibration method: {method} (use isotonic/binned/window)")

    if method in {"isotonic", "window"}:
        try:
            from sklearn.isotonic import IsotonicRegression  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError("isotonic calibration requires scikit-learn.") from e
        iso = IsotonicRegression(increasing=True, out_of_bounds="clip").fit(cx, cy)
        cx = np.asarray(iso.X_thresholds_, dtype=float)
        cy = np.asarray(iso.y_thresholds_, dtype=float)

    return CalibrationModel(
        di=cx,
        error=np.maximum.accumulate(cy),
        di_min=float(x.min()),
        di_max=float(x.max()),
        method=method,
        metric=metric,
        meta={"n_observations": int(x.size), "n_distinct_di": n_distinct},
    )


def calibrate_aoa(
    train: Any,
    response: Any,
    coords: Any,
    *,
    model_factory: Callable[[], Any],
    variables: Sequence[str] | None = None,
    weights: Any = None,
    model: Any = None,
    fold_sets: Sequence[FoldSet] | None = None,
    config: CalibrationConfig | None = None,
    aoa_config: AOAConfig | None = None,
    rng: Any = None,
) -> tuple[CalibrationModel, Any]:
    """
    Repeated-CV calibration of DI against prediction error.

    Args:
        train: training features (PredictorSpace / DataFrame / array).
        response: observed response per training point.
        coords: training coordinates (used for leave-cluster-out folds).
        model_factory: returns a fresh model with fit(features, response) and predict(features).
        variables, weights, model: define the DI feature space, as for AOAEstimator.fit.
            Without weights or model, a model is fitted on all training data and its
            importance (if any) is used.
        fold_sets: explicit fold structures; default multi_cv_folds(coords).

    Returns:
        (CalibrationModel, pandas DataFrame of the (di, error) observations).
    """
    import pandas as pd

    cfg = config or CalibrationConfig()
    gen = make_rng(cfg.seed if rng is None else rng)

    estimator = AOAEstimator(config=aoa_config).fit(train, variables=variables, weights=weights, model=model)
    raw = estimator.raw_features(train)
    n = int(raw.shape[0])
    y = np.asarray(response, dtype=float).reshape(-1)
    if y.shape[0] != n:
        raise DataError(f"response has {y.shape[0]} value(s) but there are {n} training point(s)")
    if not np.isfinite(y).all():
        raise DataError("response contains missing/non-finite values")
    if weights is None and model is None:
        # Importance from a model fitted on all training data, as the final model would be.
        full = model_factory()
        full.fit(raw, y)
        estimator.fit(train, variables=estimator.variables, model=full)

    if fold_sets is None:
        fold_sets = multi_cv_folds(coords, config=cfg, rng=gen)
    for fs in fold_sets:
        if fs.n_points != n:
            raise DataError(f"fold structure covers {fs.n_points} point(s) but there are {n} training point(s)")

    def _task(item: tuple[int, FoldSet]) -> dict[str, Any]:
        set_id, fs = item
        return _fold_set_errors(
            set_id=set_id,
            folds=fs,
            estimator=estimator,
            raw=raw,
            response=y,
            model_factory=model_factory,
            metric=cfg.metric,
        )

    items = list(enumerate(fold_sets))
    results = Parallel(n_jobs=int(cfg.n_jobs), prefer="threads")(delayed(_task)(it) for it in items)

    frames = [
        pd.DataFrame(
            {
                "set_id": r["set_id"],
                "scheme": r["scheme"],
                "k": r["k"],
                "fold": r["fold"],
                "point": r["point"],
                "di": r["di"],
                "error": r["error"],
            }
        )
        for r in results
    ]
    pairs = pd.concat(frames, ignore_index=True)

    calib = fit_calibration(
        pairs["di"].to_numpy(dtype=float),
        pairs["error"].to_numpy(dtype=float),
        method=cfg.method,
        metric=cfg.metric,
        n_bins=cfg.n_bins,
        window_size=cfg.window_size,
        min_observations=cfg.min_observations,
    )
    per_set = []
    for r in results:
        per_set.append(
            {
                "set_id": int(r["set_id"]),
                "scheme": r["scheme"],
                "k": r["k"],
                "mean_di": float(np.mean(r["di"])),
                "mean_error": float(np.mean(r["error"])),
            }
        )
    calib.meta.update(
        {
            "n_fold_sets": len(results),
            "threshold": float(estimator.threshold),  # type: ignore[arg-type]
            "mean_loo_distance": float(estimator.mean_loo_distance),  # type: ignore[arg-type]
            "variables": list(estimator.variables),
            "fold_sets": per_set,
        }
    )
    return calib, pairs
