from __future__ import annotations

"""
Nearest-Neighbour Distance Matching (NNDM) leave-one-out folds.

Goal: the distances from each held-out point to its training fold should be
distributed like the distances from the prediction domain to the training set.
Plain LOO holds out points that still sit right next to their training data; NNDM
removes a point's nearest training neighbour(s) from its training fold whenever
that brings the two distance distributions closer (two-sample KS statistic).

Procedure:
1. G    = nearest-neighbour distance, prediction-domain sample -> training set.
2. G*_j = nearest-neighbour distance of training point j to the other training points.
3. Sweep points by increasing G*_j (ties: lower index first). For point j, excluding
   its current nearest neighbour turns G*_j into the distance to its next neighbour.
   Accept only if the KS statistic strictly decreases, the new distance is <= phi,
   and the fold keeps at least `min_train` of the other points. An accepted point
   goes back into the sweep with its new distance while it has exclusions left.
4. Fold j: test = {j}, train = everything except j and its excluded neighbours.

The KS statistic is therefore non-increasing over the run (recorded in
meta["ks_trace"]).
"""

import heapq
from typing import Any

import numpy as np

from ..config import NNDMConfig, make_rng
from ..errors import ConfigError, DataError, InsufficientDataError
from ..spatial.distance import NearestNeighborIndex
from ..spatial.domain import DomainMask, sample_domain
from .ecdf import KSTracker
from .folds import Fold, FoldSet

_EPS = 1e-12


def _quantiles(x: Any) -> dict[str, float]:
    x = np.asarray(x, dtype=float)
    return {
        "min": float(x.min()),
        "p25": float(np.quantile(x, 0.25)),
        "p50": float(np.quantile(x, 0.50)),
        "p75": float(np.quantile(x, 0.75)),
        "max": float(x.max()),
    }


def nndm_folds(
    train_coords: Any,
    *,
    domain_coords: Any | None = None,
    mask: DomainMask | None = None,
    config: NNDMConfig | None = None,
    rng: Any = None,
) -> FoldSet:
    """
    Build NNDM LOO folds for `train_coords` (n, 2) against a prediction domain.

    Args:
        train_coords: training point coordinates (projected; Euclidean distance).
        domain_coords: dense sample of prediction locations (e.g. raster cell centres).
        mask: study-area mask used when no prediction locations are given.
        config: NNDMConfig (phi, min_train, max_exclusions, domain sampling).
        rng: numpy Generator or seed for domain subsampling (defaults to config.seed).

    Returns:
        FoldSet with meta: ks_initial/ks_final/ks_trace, n_exclusions, phi,
        domain_source, diagnostics, and the G / G* distance samples.
    """
    cfg = config or NNDMConfig()
    gen = make_rng(cfg.seed if rng is None else rng)

    coords = np.asarray(train_coords, dtype=float)
    if coords.ndim != 2:
        raise ConfigError(f"training coordinates must be 2-D (n, d), got shape {coords.shape}")
    n = int(coords.shape[0])
    if n < 3:
        raise InsufficientDataError(f"NNDM needs at least 3 training points, got {n}")
    if not np.isfinite(coords).all():
        raise DataError("training coordinates contain missing/non-finite values")

    domain, domain_meta = sample_domain(
        train_coords=coords,
        domain_coords=domain_coords,
        mask=mask,
        n_samples=cfg.n_domain_samples,
        resolution=cfg.domain_resolution,
        rng=gen,
    )
    index = NearestNeighborIndex(coords)
    g = index.query(domain)

    phi = float(cfg.phi) if cfg.phi is not None else float(g.max())
    max_excl = int(cfg.max_exclusions)
    k_cols = int(min(max_excl + 1, n - 1))
    nd, ni = index.neighbor_distances(k=k_cols)

    held = nd[:, 0].copy()
    held_initial = held.copy()
    n_excluded = np.zeros((n,), dtype=int)
    excluded: list[list[int]] = [[] for _ in range(n)]
    min_keep = float(cfg.min_train) * float(n - 1)

    tracker = KSTracker(held, g, support=nd)
    current = tracker.statistic()
    trace = [current]

    heap = [(float(held[j]), j) for j in range(n)]
    heapq.heapify(heap)
    while heap:
        _, j = heapq.heappop(heap)
        e = int(n_excluded[j])
        if e >= max_excl or e + 1 >= k_cols:
            continue
        new = float(nd[j, e + 1])
        if new > phi:
            continue
        if (n - 1) - (e + 1) < min_keep:
            continue
        cand = tracker.statistic_if_replaced(held[j], new)
        if cand < current - _EPS:
            current = tracker.replace(held[j], new)
            trace.append(current)
            excluded[j].append(int(ni[j, e]))
            held[j] = new
            n_excluded[j] = e + 1
            heapq.heappush(heap, (new, j))

    all_idx = np.arange(n)
    folds = []
    for j in range(n):
        drop = np.asarray([j] + excluded[j], dtype=int)
        folds.append(Fold(train=np.setdiff1d(all_idx, drop), test=[j]))

    meta: dict[str, Any] = {
        "scheme": "nndm",
        "n_folds": n,
        "n_exclusions": int(n_excluded.sum()),
        "n_points_with_exclusions": int((n_excluded > 0).sum()),
        "ks_initial": float(trace[0]),
        "ks_final": float(trace[-1]),
        "ks_trace": [float(v) for v in trace],
        "phi": phi,
        "min_train": float(cfg.min_train),
        "max_exclusions": max_excl,
        "domain_source": domain_meta["domain_source"],
        "n_domain_available": domain_meta["n_domain_available"],
        "n_domain_sampled": domain_meta["n_domain_sampled"],
        "diagnostics": list(domain_meta["diagnostics"]),
        "distance_summary": {
            "G": _quantiles(g),
            "Gstar_initial": _quantiles(held_initial),
            "Gstar_final": _quantiles(held),
        },
        "G": [float(v) for v in g],
        "Gstar_initial": [float(v) for v in held_initial],
        "Gstar_final": [float(v) for v in held],
    }
    return FoldSet(folds=tuple(folds), n_points=n, meta=meta)
