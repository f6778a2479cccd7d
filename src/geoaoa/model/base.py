from __future__ import annotations

"""
Model capability consumed by the AOA estimator and the calibrator.

Any backend works as long as it exposes `predict(features) -> values`; if it also
exposes `importance() -> per-variable weights`, those weights scale the feature
space used for the dissimilarity index. Fitting stays outside this package except
for the thin scikit-learn adapter, which calibration needs to refit per fold.
"""

from typing import Any, Callable, Protocol, Sequence, runtime_checkable

import numpy as np

from ..errors import ConfigError


@runtime_checkable
class Model(Protocol):
    def predict(self, features: Any) -> Any: ...


class SklearnModel:
    """Adapter around an (unfitted or fitted) scikit-learn regressor."""

    def __init__(self, estimator: Any, *, variables: Sequence[str] | None = None) -> None:
        self.estimator = estimator
        self.variables = tuple(str(v) for v in variables) if variables is not None else None

    def fit(self, features: Any, response: Any) -> "SklearnModel":
        self.estimator.fit(np.asarray(features, dtype=float), np.asarray(response, dtype=float).reshape(-1))
        return self

    def predict(self, features: Any) -> Any:
        return np.asarray(self.estimator.predict(np.asarray(features, dtype=float)), dtype=float).reshape(-1)

    def importance(self) -> Any:
        if hasattr(self.estimator, "feature_importances_"):
            return np.asarray(self.estimator.feature_importances_, dtype=float)
        if hasattr(self.estimator, "coef_"):
            return np.abs(np.asarray(self.estimator.coef_, dtype=float).reshape(-1))
        raise AttributeError(f"{type(self.estimator).__name__} exposes no variable importance")


def random_forest_factory(*, n_estimators: int = 200, seed: int = 0, n_jobs: int = 1) -> Callable[[], SklearnModel]:
    """Factory of fresh random-forest adapters (one per calibration fold)."""
    try:
        from sklearn.ensemble import RandomForestRegressor  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("random_forest_factory requires scikit-learn.") from e

    def _make() -> SklearnModel:
        return SklearnModel(RandomForestRegressor(n_estimators=int(n_estimators), random_state=int(seed), n_jobs=int(n_jobs)))

    return _make


def resolve_weights(*, model: Any | None, weights: Any | None, variables: Sequence[str]) -> Any | None:
    """
    Explicit weights win; otherwise ask the model for importance if it offers it.
    Returns None when neither is available (unweighted feature space).
    """
    if weights is None and model is not None and callable(getattr(model, "importance", None)):
        try:
            weights = model.importance()
        except AttributeError:
            weights = None
    if weights is None:
        return None
    if isinstance(weights, dict):
        missing = [v for v in variables if v not in weights]
        if missing:
            raise ConfigError(f"importance weights missing variable(s): {missing}")
        return np.asarray([float(weights[v]) for v in variables], dtype=float)
    w = np.asarray(weights, dtype=float).reshape(-1)
    if w.shape[0] != len(variables):
        raise ConfigError(f"model importance has length {w.shape[0]} but there are {len(variables)} variable(s)")
    return w
