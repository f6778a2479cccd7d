from __future__ import annotations

"""
Prediction-domain samples for NNDM.

The target distance distribution is measured from a dense sample of the area the
model will predict into. Sources, in order of preference:
- explicit prediction locations (e.g. raster cell centres);
- a boolean study-area mask on a regular grid;
- the bounding box of the training points at a fixed resolution (last resort,
  recorded as a diagnostic).
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from ..config import make_rng
from ..errors import ConfigError, InsufficientDataError


@dataclass(frozen=True)
class DomainMask:
    """
    North-up grid: row 0 is the top edge at `origin_y`, column 0 the left edge at `origin_x`.
    `cells` is True inside the study area.
    """

    cells: Any
    origin_x: float
    origin_y: float
    resolution: float

    def __post_init__(self) -> None:
        cells = np.asarray(self.cells, dtype=bool)
        if cells.ndim != 2:
            raise ConfigError(f"mask cells must be 2-D (rows, cols), got shape {cells.shape}")
        if not float(self.resolution) > 0:
            raise ConfigError(f"mask resolution must be positive, got: {self.resolution}")
        object.__setattr__(self, "cells", cells)

    def cell_centers(self) -> Any:
        rows, cols = np.nonzero(self.cells)
        res = float(self.resolution)
        x = float(self.origin_x) + (cols + 0.5) * res
        y = float(self.origin_y) - (rows + 0.5) * res
        return np.column_stack([x, y]).astype(float)


def extent_grid(coords: Any, *, resolution: int = 100) -> Any:
    """Cell centres of a resolution x resolution grid over the bounding box of `coords`."""
    pts = np.asarray(coords, dtype=float)
    lo = pts.min(axis=0)
    hi = pts.max(axis=0)
    axes = []
    for d in range(pts.shape[1]):
        step = (hi[d] - lo[d]) / float(resolution)
        axes.append(lo[d] + (np.arange(int(resolution)) + 0.5) * step)
    mesh = np.meshgrid(*axes, indexing="xy")
    return np.column_stack([m.reshape(-1) for m in mesh])


def sample_domain(
    *,
    train_coords: Any,
    domain_coords: Any | None = None,
    mask: DomainMask | None = None,
    n_samples: int | None = None,
    resolution: int = 100,
    rng: Any = None,
) -> tuple[Any, dict[str, Any]]:
    """
    Return (domain sample coordinates, meta). meta["diagnostics"] lists every
    approximation made along the way.
    """
    diagnostics: list[str] = []
    train = np.asarray(train_coords, dtype=float)

    if domain_coords is not None:
        pts = np.asarray(domain_coords, dtype=float)
        if pts.ndim != 2 or pts.shape[1] != train.shape[1]:
            raise ConfigError(
                f"domain coordinates must be (m, {train.shape[1]}) like the training coordinates, got {pts.shape}"
            )
        finite = np.isfinite(pts).all(axis=1)
        if not finite.all():
            diagnostics.append(f"dropped {int((~finite).sum())} domain location(s) with missing coordinates")
        pts = pts[finite]
        source = "points"
    else:
        pts = np.empty((0, train.shape[1]), dtype=float)
        source = "none"

    if pts.shape[0] == 0 and mask is not None:
        if train.shape[1] != 2:
            raise ConfigError("a DomainMask only describes 2-D coordinates")
        pts = mask.cell_centers()
        source = "mask"
        diagnostics.append(
            f"no prediction locations supplied; domain approximated from the study-area mask "
            f"({pts.shape[0]} cell(s) at resolution {float(mask.resolution)})"
        )

    if pts.shape[0] == 0:
        finite_train = train[np.isfinite(train).all(axis=1)] if train.size else train
        span = (finite_train.max(axis=0) - finite_train.min(axis=0)) if finite_train.shape[0] else None
        if span is None or not (span > 0).all():
            raise InsufficientDataError(
                "no prediction-domain sample obtainable: no locations, empty mask, and a degenerate training extent"
            )
        pts = extent_grid(finite_train, resolution=int(resolution))
        source = "training_extent"
        diagnostics.append(
            f"no prediction locations or mask supplied; domain approximated from the training-point extent "
            f"on a {int(resolution)}x{int(resolution)} grid"
        )

    n_available = int(pts.shape[0])
    if n_samples is not None and n_available > int(n_samples):
        gen = make_rng(rng)
        pick = np.sort(gen.choice(n_available, size=int(n_samples), replace=False))
        pts = pts[pick]

    meta = {
        "domain_source": source,
        "n_domain_available": n_available,
        "n_domain_sampled": int(pts.shape[0]),
        "diagnostics": diagnostics,
    }
    return pts, meta
