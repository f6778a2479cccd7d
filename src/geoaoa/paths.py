from __future__ import annotations

import os
import pathlib

from .errors import ConfigError

# File written by each CLI command when --out is not given.
ARTIFACTS = {
    "nndm": "nndm_folds.json",
    "aoa": "aoa.npz",
    "calibrate": "calibration.json",
}


def project_root() -> pathlib.Path:
    # src/geoaoa/paths.py -> repo root is 2 parents up.
    return pathlib.Path(__file__).resolve().parents[2]


def data_root() -> pathlib.Path:
    """GEOAOA_DATA_ROOT if set, else <repo>/data."""
    explicit = os.environ.get("GEOAOA_DATA_ROOT")
    if explicit:
        return pathlib.Path(explicit).expanduser().resolve()
    return project_root() / "data"


def outputs_root() -> pathlib.Path:
    """GEOAOA_OUTPUT_ROOT if set, else <data_root>/outputs."""
    explicit = os.environ.get("GEOAOA_OUTPUT_ROOT")
    if explicit:
        return pathlib.Path(explicit).expanduser().resolve()
    return data_root() / "outputs"


def artifact_path(command: str, *, run: str | None = None) -> pathlib.Path:
    """
    Default artifact location of a CLI command. A run name groups the folds, AOA
    result and calibration of one study under outputs_root()/<run>/.
    """
    if command not in ARTIFACTS:
        raise ConfigError(f"no default artifact for command: {command} (known: {sorted(ARTIFACTS)})")
    base = outputs_root()
    if run:
        name = str(run)
        if pathlib.Path(name).name != name or name in {".", ".."}:
            raise ConfigError(f"run name must be a single path component, got: {run}")
        base = base / name
    return base / ARTIFACTS[command]


def ensure_dir(path: pathlib.Path) -> pathlib.Path:
    path.mkdir(parents=True, exist_ok=True)
    return path
