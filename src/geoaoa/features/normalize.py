from __future__ import annotations

"""
Feature space used by every distance computation on predictors.

- PredictorSpace: ordered variable names + a (N, p) matrix, optionally remembering
  the raster shape the rows came from so results can be folded back.
- FeatureNormalizer: standardizes from training statistics only, then scales each
  standardized variable by its (non-negative) importance weight.
"""

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from ..errors import ConfigError, DataError, DomainMismatchError


def check_feature_sets(*, required: Sequence[str], available: Sequence[str], what: str = "prediction domain") -> None:
    missing = [v for v in required if v not in set(available)]
    if missing:
        raise DomainMismatchError(f"{what} missing variable(s) required by the training set: {missing}")


@dataclass(frozen=True)
class PredictorSpace:
    variables: tuple[str, ...]
    values: Any
    shape: tuple[int, ...] | None = None

    def __post_init__(self) -> None:
        values = np.asarray(self.values, dtype=float)
        if values.ndim != 2:
            raise ConfigError(f"PredictorSpace values must be 2-D (N, p), got shape {values.shape}")
        if values.shape[1] != len(self.variables):
            raise ConfigError(
                f"PredictorSpace has {len(self.variables)} variable name(s) but feature vectors of length {values.shape[1]}"
            )
        if len(set(self.variables)) != len(self.variables):
            raise ConfigError(f"PredictorSpace variable names must be unique, got: {list(self.variables)}")
        if self.shape is not None and int(np.prod(self.shape)) != values.shape[0]:
            raise ConfigError(f"raster shape {self.shape} does not match {values.shape[0]} feature rows")
        object.__setattr__(self, "variables", tuple(str(v) for v in self.variables))
        object.__setattr__(self, "values", values)

    @property
    def n(self) -> int:
        return int(self.values.shape[0])

    @classmethod
    def from_frame(cls, frame: Any, *, variables: Sequence[str] | None = None) -> "PredictorSpace":
        import pandas as pd

        if not isinstance(frame, pd.DataFrame):
            raise TypeError("frame must be a pandas DataFrame")
        if variables is None:
            variables = [c for c in frame.columns if pd.api.types.is_numeric_dtype(frame[c])]
        variables = [str(v) for v in variables]
        check_feature_sets(required=variables, available=[str(c) for c in frame.columns], what="frame")
        values = frame[variables].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)
        return cls(variables=tuple(variables), values=values)

    @classmethod
    def from_raster(cls, stack: Any, *, variables: Sequence[str]) -> "PredictorSpace":
        """Build from a (rows, cols, p) band stack; nodata should already be NaN."""
        stack = np.asarray(stack, dtype=float)
        if stack.ndim != 3:
            raise ConfigError(f"raster stack must be (rows, cols, p), got shape {stack.shape}")
        rows, cols, p = stack.shape
        return cls(variables=tuple(variables), values=stack.reshape(rows * cols, p), shape=(rows, cols))

    def select(self, variables: Sequence[str]) -> "PredictorSpace":
        """Reorder/subset columns to `variables`; never coerces a missing variable."""
        check_feature_sets(required=variables, available=self.variables)
        pos = [self.variables.index(str(v)) for v in variables]
        return PredictorSpace(variables=tuple(str(v) for v in variables), values=self.values[:, pos], shape=self.shape)

    def fold_back(self, per_row: Any) -> Any:
        per_row = np.asarray(per_row)
        if self.shape is None:
            return per_row
        return per_row.reshape(self.shape)


class FeatureNormalizer:
    def __init__(self) -> None:
        self.variables: tuple[str, ...] | None = None
        self.mean_: Any = None
        self.scale_: Any = None
        self.weights_: Any = None

    def fit(self, train: Any, *, variables: Sequence[str] | None = None, weights: Any = None) -> "FeatureNormalizer":
        if isinstance(train, PredictorSpace):
            if variables is not None:
                train = train.select(variables)
            variables = train.variables
            x = train.values
        else:
            x = np.asarray(train, dtype=float)
            if x.ndim != 2:
                raise ConfigError(f"training features must be 2-D (n, p), got shape {x.shape}")
            if variables is None:
                variables = [f"x{i}" for i in range(x.shape[1])]
            if len(variables) != x.shape[1]:
                raise ConfigError(f"{len(variables)} variable name(s) for {x.shape[1]} training column(s)")

        variables = tuple(str(v) for v in variables)
        if x.shape[0] < 2:
            raise DataError(f"need at least 2 training points to estimate variable scales, got {x.shape[0]}")
        bad_rows = ~np.isfinite(x).all(axis=1)
        if bad_rows.any():
            raise DataError(f"training features contain {int(bad_rows.sum())} row(s) with missing/non-finite values")

        mean = x.mean(axis=0)
        scale = x.std(axis=0, ddof=1)
        flat = [v for v, s in zip(variables, scale.tolist()) if not (np.isfinite(s) and s > 0)]
        if flat:
            raise DataError(f"zero-variance training variable(s): {flat}")

        if weights is None:
            w = np.ones(len(variables), dtype=float)
        else:
            w = self._check_weights(weights, variables)

        self.variables = variables
        self.mean_ = mean
        self.scale_ = scale
        self.weights_ = w
        return self

    @staticmethod
    def _check_weights(weights: Any, variables: Sequence[str]) -> Any:
        if isinstance(weights, dict):
            missing = [v for v in variables if v not in weights]
            if missing:
                raise ConfigError(f"importance weights missing variable(s): {missing}")
            weights = [weights[v] for v in variables]
        w = np.asarray(weights, dtype=float).reshape(-1)
        if w.shape[0] != len(variables):
            raise ConfigError(f"weight vector has length {w.shape[0]} but there are {len(variables)} variable(s)")
        if not np.isfinite(w).all():
            raise ConfigError("importance weights must be finite")
        w = np.clip(w, 0.0, None)
        if not (w > 0).any():
            raise ConfigError("importance weights are all zero (after clipping negatives)")
        return w

    def _require_fitted(self) -> None:
        if self.mean_ is None:
            raise RuntimeError("FeatureNormalizer is not fitted. Call fit() first.")

    def transform(self, x: Any) -> Any:
        self._require_fitted()
        if isinstance(x, PredictorSpace):
            x = x.select(self.variables).values
        else:
            import pandas as pd

            if isinstance(x, pd.DataFrame):
                x = PredictorSpace.from_frame(x, variables=self.variables).values
            x = np.asarray(x, dtype=float)
            if x.ndim == 1:
                x = x.reshape(1, -1)
            if x.ndim != 2 or x.shape[1] != len(self.variables):
                raise ConfigError(
                    f"feature vectors must have length {len(self.variables)} ({list(self.variables)}), got shape {x.shape}"
                )
        return (x - self.mean_) / self.scale_ * self.weights_

    def fit_transform(self, train: Any, *, variables: Sequence[str] | None = None, weights: Any = None) -> Any:
        return self.fit(train, variables=variables, weights=weights).transform(train)

    def to_dict(self) -> dict[str, Any]:
        self._require_fitted()
        return {
            "variables": list(self.variables or ()),
            "mean": [float(v) for v in self.mean_],
            "scale": [float(v) for v in self.scale_],
            "weights": [float(v) for v in self.weights_],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeatureNormalizer":
        out = cls()
        out.variables = tuple(str(v) for v in data["variables"])
        out.mean_ = np.asarray(data["mean"], dtype=float)
        out.scale_ = np.asarray(data["scale"], dtype=float)
        out.weights_ = np.asarray(data["weights"], dtype=float)
        n = len(out.variables)
        if not (out.mean_.shape[0] == out.scale_.shape[0] == out.weights_.shape[0] == n):
            raise ConfigError("normalizer parameters do not match the variable count")
        return out
