from __future__ import annotations

import dataclasses
import json
import pathlib
from dataclasses import dataclass
from typing import Any

from .errors import ConfigError


def load_config(path: str | pathlib.Path) -> dict[str, Any]:
    """
    Load a small run config.

    KISS policy:
    - JSON is always supported.
    - YAML is optional (only if PyYAML is installed).
    """
    p = pathlib.Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(p)

    if p.suffix.lower() == ".json":
        return json.loads(p.read_text(encoding="utf-8"))

    if p.suffix.lower() in {".yml", ".yaml"}:
        try:
            import yaml  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError("YAML config requires PyYAML (pip install pyyaml).") from e
        return yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    raise ConfigError(f"Unsupported config extension: {p.suffix} (use .json/.yaml)")


def make_rng(seed: Any = None) -> Any:
    """
    Return a numpy Generator. Accepts None, an int seed, or an existing Generator
    (returned unchanged so callers can thread one source through several steps).
    """
    import numpy as np

    if isinstance(seed, np.random.Generator):
        return seed
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng(int(seed))


def _from_dict(cls: type, data: dict[str, Any] | None, *, section: str) -> Any:
    data = dict(data or {})
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"[{section}] unknown key(s): {unknown} (known: {sorted(known)})")
    for key, value in list(data.items()):
        if isinstance(value, list):
            data[key] = tuple(value)
    return cls(**data)


@dataclass(frozen=True)
class NNDMConfig:
    phi: float | None = None
    min_train: float = 0.5
    max_exclusions: int = 1
    n_domain_samples: int | None = 1000
    domain_resolution: int = 100
    seed: int | None = 0

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.min_train) < 1.0:
            raise ConfigError(f"[nndm] min_train must be in [0, 1), got: {self.min_train}")
        if int(self.max_exclusions) < 0:
            raise ConfigError(f"[nndm] max_exclusions must be >= 0, got: {self.max_exclusions}")
        if self.phi is not None and not float(self.phi) > 0:
            raise ConfigError(f"[nndm] phi must be positive, got: {self.phi}")
        if int(self.domain_resolution) < 2:
            raise ConfigError(f"[nndm] domain_resolution must be >= 2, got: {self.domain_resolution}")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "NNDMConfig":
        return _from_dict(cls, data, section="nndm")


@dataclass(frozen=True)
class AOAConfig:
    threshold_rule: str = "fence"
    chunk_size: int = 100_000
    workers: int = 1

    def __post_init__(self) -> None:
        if self.threshold_rule not in {"fence", "max_within"}:
            raise ConfigError(f"[aoa] unknown threshold_rule: {self.threshold_rule} (use fence/max_within)")
        if int(self.chunk_size) <= 0:
            raise ConfigError(f"[aoa] chunk_size must be positive, got: {self.chunk_size}")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AOAConfig":
        return _from_dict(cls, data, section="aoa")


@dataclass(frozen=True)
class CalibrationConfig:
    ks: tuple[int, ...] = (2, 3, 5, 10)
    repetitions: int = 1
    schemes: tuple[str, ...] = ("random", "cluster")
    method: str = "isotonic"
    metric: str = "abs"
    n_bins: int = 10
    window_size: int = 5
    min_observations: int = 10
    n_jobs: int = 1
    seed: int | None = 0

    def __post_init__(self) -> None:
        if self.method not in {"isotonic", "binned", "window"}:
            raise ConfigError(f"[calibration] unknown method: {self.method} (use isotonic/binned/window)")
        if self.metric not in {"abs", "squared"}:
            raise ConfigError(f"[calibration] unknown metric: {self.metric} (use abs/squared)")
        bad = sorted(set(self.schemes) - {"random", "cluster"})
        if bad or not self.schemes:
            raise ConfigError(f"[calibration] schemes must be a non-empty subset of random/cluster, got: {self.schemes}")
        if not self.ks or min(int(k) for k in self.ks) < 2:
            raise ConfigError(f"[calibration] every k must be >= 2, got: {self.ks}")
        if int(self.repetitions) < 1:
            raise ConfigError(f"[calibration] repetitions must be >= 1, got: {self.repetitions}")
        if int(self.window_size) < 1 or int(self.n_bins) < 1:
            raise ConfigError("[calibration] window_size and n_bins must be >= 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalibrationConfig":
        return _from_dict(cls, data, section="calibration")
