from __future__ import annotations

import argparse
import json
import os
import pathlib
import sys
from typing import Any

from .config import AOAConfig, CalibrationConfig, NNDMConfig, load_config
from .errors import GeoAOAError
from .paths import ARTIFACTS, artifact_path, data_root, outputs_root, project_root


def _csv_list(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [v.strip() for v in str(value).split(",") if v.strip()]


def _section(args: argparse.Namespace, name: str) -> dict[str, Any]:
    if not getattr(args, "config", None):
        return {}
    cfg = load_config(args.config)
    return dict(cfg.get(name) or {})


def _override(base: dict[str, Any], **flags: Any) -> dict[str, Any]:
    out = dict(base)
    out.update({k: v for k, v in flags.items() if v is not None})
    return out


def _warn_diagnostics(meta: dict[str, Any]) -> None:
    for msg in meta.get("diagnostics") or []:
        print(f"[warn] {msg}", file=sys.stderr)


def _out_path(args: argparse.Namespace, command: str) -> pathlib.Path:
    if args.out:
        return pathlib.Path(args.out)
    return artifact_path(command, run=args.run)


def _cmd_paths(args: argparse.Namespace) -> None:
    info = {
        "project_root": str(project_root()),
        "data_root": str(data_root()),
        "outputs_root": str(outputs_root()),
        "artifacts": {cmd: str(artifact_path(cmd, run=args.run)) for cmd in ARTIFACTS},
        "env": {
            "GEOAOA_DATA_ROOT": os.environ.get("GEOAOA_DATA_ROOT"),
            "GEOAOA_OUTPUT_ROOT": os.environ.get("GEOAOA_OUTPUT_ROOT"),
        },
    }
    print(json.dumps(info, ensure_ascii=False, indent=2))


def _cmd_nndm(args: argparse.Namespace) -> None:
    from .io import read_table, write_json
    from .validation.nndm import nndm_folds

    coord_cols = (args.x, args.y)
    train = read_table(args.train)
    coords = train[list(coord_cols)].to_numpy(dtype=float)
    domain = None
    if args.predict:
        domain = read_table(args.predict)[list(coord_cols)].to_numpy(dtype=float)

    cfg = NNDMConfig.from_dict(
        _override(
            _section(args, "nndm"),
            phi=args.phi,
            min_train=args.min_train,
            max_exclusions=args.max_exclusions,
            n_domain_samples=args.n_domain_samples,
            seed=args.seed,
        )
    )
    folds = nndm_folds(coords, domain_coords=domain, config=cfg)
    _warn_diagnostics(folds.meta)

    out = _out_path(args, "nndm")
    folds.save(out)
    summary = {k: v for k, v in folds.meta.items() if k not in {"G", "Gstar_initial", "Gstar_final", "ks_trace"}}
    print(json.dumps({"out": str(out), **folds.summary(), **summary}, ensure_ascii=False, indent=2))
    print(f"[ok] wrote {len(folds)} NNDM fold(s) to: {out}", file=sys.stderr)
    write_json(out.with_suffix(".distances.json"), {k: folds.meta[k] for k in ("G", "Gstar_initial", "Gstar_final")})


def _load_folds(args: argparse.Namespace, *, coords: Any, n: int) -> Any:
    from .validation.folds import FoldSet, make_folds

    if args.folds:
        return FoldSet.load(pathlib.Path(args.folds))
    if args.cv:
        return make_folds(args.cv, n=n, coords=coords, k=int(args.k), rng=args.seed)
    if args.run:
        saved = artifact_path("nndm", run=args.run)
        if saved.exists():
            print(f"[ok] using NNDM folds of run {args.run}: {saved}", file=sys.stderr)
            return FoldSet.load(saved)
    return None


def _cmd_aoa(args: argparse.Namespace) -> None:
    import pandas as pd

    from .aoa.estimator import AOAEstimator
    from .io import read_table, split_points, write_table

    coord_cols = (args.x, args.y)
    variables = _csv_list(args.variables)
    train = split_points(read_table(args.train), coord_cols=coord_cols, variables=variables, response=args.response, what="training table")
    pred_frame = read_table(args.predict)
    pred = split_points(pred_frame, coord_cols=coord_cols, variables=train["space"].variables, what="prediction table")

    weights = None
    if args.weights:
        weights = [float(w) for w in _csv_list(args.weights) or []]

    cfg = AOAConfig.from_dict(
        _override(_section(args, "aoa"), threshold_rule=args.threshold_rule, chunk_size=args.chunk_size, workers=args.workers)
    )
    folds = _load_folds(args, coords=train["coords"], n=train["space"].n)
    est = AOAEstimator(config=cfg).fit(train["space"], folds=folds, weights=weights)
    result = est.predict(pred["space"])

    out = result.save(_out_path(args, "aoa"))
    if args.out_table:
        table = pd.DataFrame(pred["coords"], columns=list(coord_cols))
        table["DI"] = result.di
        table["AOA"] = result.aoa
        write_table(args.out_table, table)
    print(json.dumps({"out": str(out), **result.summary()}, ensure_ascii=False, indent=2))
    print(f"[ok] DI/AOA for {result.meta['n_locations']} location(s) written to: {out}", file=sys.stderr)


def _cmd_calibrate(args: argparse.Namespace) -> None:
    import pandas as pd

    from .aoa.calibration import ABOVE_RANGE, MISSING_DI, calibrate_aoa
    from .io import read_table, split_points, write_table
    from .model.base import random_forest_factory

    coord_cols = (args.x, args.y)
    variables = _csv_list(args.variables)
    train = split_points(read_table(args.train), coord_cols=coord_cols, variables=variables, response=args.response, what="training table")

    ks = [int(k) for k in _csv_list(args.ks)] if args.ks else None
    schemes = _csv_list(args.schemes)
    cfg = CalibrationConfig.from_dict(
        _override(
            _section(args, "calibration"),
            ks=(tuple(ks) if ks else None),
            schemes=(tuple(schemes) if schemes else None),
            method=args.method,
            metric=args.metric,
            n_jobs=args.n_jobs,
            seed=args.seed,
        )
    )
    factory = random_forest_factory(n_estimators=int(args.n_estimators), seed=int(args.seed or 0))
    calib, pairs = calibrate_aoa(
        train["space"],
        train["response"],
        train["coords"],
        model_factory=factory,
        config=cfg,
        aoa_config=AOAConfig.from_dict(_section(args, "aoa")),
    )

    out = calib.save(_out_path(args, "calibrate"))
    if args.pairs_out:
        write_table(args.pairs_out, pairs)
    if args.predict:
        from .aoa.estimator import AOAEstimator

        pred = split_points(read_table(args.predict), coord_cols=coord_cols, variables=train["space"].variables, what="prediction table")
        est = AOAEstimator(config=AOAConfig.from_dict(_section(args, "aoa")))
        est.fit(train["space"], model=factory().fit(train["space"].values, train["response"]))
        result = est.predict(pred["space"])
        expected, flags = calib.apply(result.di)
        table = pd.DataFrame(pred["coords"], columns=list(coord_cols))
        table["DI"] = result.di
        table["AOA"] = result.aoa
        table["expected_error"] = expected
        table["calibration_range"] = flags
        if args.out_table:
            write_table(args.out_table, table)
        n_above = int((flags == ABOVE_RANGE).sum())
        if n_above:
            print(f"[warn] {n_above} location(s) have DI above the calibrated range (expected_error left empty)", file=sys.stderr)
        n_missing = int((flags == MISSING_DI).sum())
        if n_missing:
            print(f"[warn] {n_missing} location(s) have missing predictors (DI and expected_error left empty)", file=sys.stderr)

    info = {"out": str(out), "method": calib.method, "metric": calib.metric, "di_range": [calib.di_min, calib.di_max]}
    info.update({k: v for k, v in calib.meta.items() if k != "fold_sets"})
    print(json.dumps(info, ensure_ascii=False, indent=2))
    print(f"[ok] calibration from {len(pairs)} (DI, error) pair(s) written to: {out}", file=sys.stderr)


def _add_point_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--train", required=True, help="Training points table (.csv) with coordinates + predictors.")
    p.add_argument("--x", default="x", help="Coordinate column (easting).")
    p.add_argument("--y", default="y", help="Coordinate column (northing).")
    p.add_argument("--config", default=None, help="Optional .json/.yaml with nndm/aoa/calibration sections.")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--run", default=None, help="Run name: default artifacts go to <outputs_root>/<run>/.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="geoaoa")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_paths = sub.add_parser("paths", help="Print resolved project/data/artifact paths (JSON).")
    p_paths.add_argument("--run", default=None)
    p_paths.set_defaults(func=_cmd_paths)

    p_nndm = sub.add_parser("nndm", help="Build NNDM leave-one-out folds matched to the prediction domain.")
    _add_point_args(p_nndm)
    p_nndm.add_argument("--predict", default=None, help="Prediction locations table; omitted -> training extent (diagnostic).")
    p_nndm.add_argument("--phi", type=float, default=None, help="Max held-out distance an exclusion may create.")
    p_nndm.add_argument("--min_train", type=float, default=None, help="Min fraction of other points kept per fold.")
    p_nndm.add_argument("--max_exclusions", type=int, default=None, help="Neighbours a point may exclude (default 1).")
    p_nndm.add_argument("--n_domain_samples", type=int, default=None)
    p_nndm.add_argument("--out", default=None, help="Folds JSON (default: artifact path of the run).")
    p_nndm.set_defaults(func=_cmd_nndm)

    p_aoa = sub.add_parser("aoa", help="Dissimilarity index + area of applicability for prediction locations.")
    _add_point_args(p_aoa)
    p_aoa.add_argument("--predict", required=True, help="Prediction locations table with the same predictors.")
    p_aoa.add_argument("--variables", default=None, help="Comma-separated predictors (default: all numeric).")
    p_aoa.add_argument("--response", default=None, help="Response column to exclude from predictors.")
    p_aoa.add_argument("--weights", default=None, help="Comma-separated importance weights (same order).")
    p_aoa.add_argument("--folds", default=None, help="Fold structure JSON (e.g. from `geoaoa nndm`).")
    p_aoa.add_argument("--cv", choices=["random", "cluster", "loo"], default=None, help="Build folds instead of --folds (default: the run's NNDM folds, else leave-one-out).")
    p_aoa.add_argument("--k", default="5")
    p_aoa.add_argument("--threshold_rule", choices=["fence", "max_within"], default=None)
    p_aoa.add_argument("--chunk_size", type=int, default=None)
    p_aoa.add_argument("--workers", type=int, default=None, help="Threads per nearest-neighbour query (-1: all cores).")
    p_aoa.add_argument("--out", default=None, help="Result .npz (default: artifact path of the run).")
    p_aoa.add_argument("--out_table", default=None, help="Optional .csv with x, y, DI, AOA.")
    p_aoa.set_defaults(func=_cmd_aoa)

    p_cal = sub.add_parser("calibrate", help="Calibrate DI against CV error (random-forest backend).")
    _add_point_args(p_cal)
    p_cal.add_argument("--response", required=True)
    p_cal.add_argument("--variables", default=None)
    p_cal.add_argument("--predict", default=None, help="Optional prediction table -> expected-error table.")
    p_cal.add_argument("--ks", default=None, help="Comma-separated fold counts (default 2,3,5,10).")
    p_cal.add_argument("--schemes", default=None, help="Comma-separated: random,cluster.")
    p_cal.add_argument("--method", choices=["isotonic", "binned", "window"], default=None)
    p_cal.add_argument("--metric", choices=["abs", "squared"], default=None)
    p_cal.add_argument("--n_jobs", type=int, default=None)
    p_cal.add_argument("--n_estimators", default="200")
    p_cal.add_argument("--out", default=None, help="Calibration JSON (default: artifact path of the run).")
    p_cal.add_argument("--pairs_out", default=None, help="Optional .csv of the (DI, error) observations.")
    p_cal.add_argument("--out_table", default=None, help="Optional .csv with DI, AOA, expected_error.")
    p_cal.set_defaults(func=_cmd_calibrate)

    return p


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except GeoAOAError as e:
        raise SystemExit(f"[error] {type(e).__name__}: {e}") from e


if __name__ == "__main__":
    main()
