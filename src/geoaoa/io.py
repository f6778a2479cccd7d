from __future__ import annotations

"""
Tabular I/O for the CLI: point tables in, result tables/JSON out.
Raster I/O stays with the hosting environment; rasters enter as band stacks.
"""

import json
import pathlib
from typing import Any, Sequence

from .errors import ConfigError, DomainMismatchError
from .features.normalize import PredictorSpace
from .paths import ensure_dir


def read_table(path: str | pathlib.Path) -> Any:
    import pandas as pd

    p = pathlib.Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(p)
    suffix = p.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(p)
    raise ConfigError(f"Unsupported table extension: {p.suffix} (use .csv)")


def split_points(
    frame: Any,
    *,
    coord_cols: Sequence[str] = ("x", "y"),
    variables: Sequence[str] | None = None,
    response: str | None = None,
    what: str = "table",
) -> dict[str, Any]:
    """
    Split a point table into coordinates, a PredictorSpace and (optionally) the response.
    Default variables: every numeric column that is not a coordinate or the response.
    """
    import pandas as pd

    if not isinstance(frame, pd.DataFrame):
        raise TypeError("frame must be a pandas DataFrame")
    cols = [str(c) for c in frame.columns]
    missing = [c for c in coord_cols if c not in cols]
    if missing:
        raise DomainMismatchError(f"{what} missing coordinate column(s): {missing}")
    if response is not None and response not in cols:
        raise DomainMismatchError(f"{what} missing response column: {response}")

    if variables is None:
        skip = set(coord_cols) | ({response} if response else set())
        variables = [c for c in cols if c not in skip and pd.api.types.is_numeric_dtype(frame[c])]
    out: dict[str, Any] = {
        "coords": frame[list(coord_cols)].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float),
        "space": PredictorSpace.from_frame(frame, variables=variables),
    }
    if response is not None:
        out["response"] = pd.to_numeric(frame[response], errors="coerce").to_numpy(dtype=float)
    return out


def write_json(path: str | pathlib.Path, obj: Any) -> pathlib.Path:
    p = pathlib.Path(path).expanduser()
    ensure_dir(p.parent)
    p.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
    return p


def write_table(path: str | pathlib.Path, frame: Any) -> pathlib.Path:
    p = pathlib.Path(path).expanduser()
    ensure_dir(p.parent)
    frame.to_csv(p, index=False)
    return p
