import argparse
import sys
from pathlib import Path

from .config import AnalysisConfig
from .errors import HifError


def log(tag, msg):
    print(f"[{tag}] {msg}", file=sys.stderr, flush=True)


def _sheet(value):
    return int(value) if value.isdigit() else value


def build_parser():
    parser = argparse.ArgumentParser(
        prog="hif-gam",
        description="Fit the post-feeding oxygen consumption GAM and integrate the heat increment of feeding.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Analyse a respirometry spreadsheet.")
    run.add_argument("data", type=Path, help="Input .xlsx/.xls/.csv file.")
    run.add_argument("--out", type=Path, default=Path("hif_results"), help="Output directory.")
    run.add_argument("--sheet", type=_sheet, default=0, help="Sheet index or name for spreadsheets.")
    run.add_argument("--config", type=Path, default=None, help="JSON analysis config.")
    run.add_argument("--grid-start", type=float, default=None)
    run.add_argument("--grid-stop", type=float, default=None)
    run.add_argument("--grid-step", type=float, default=None)
    run.add_argument(
        "--grid-observed",
        action="store_true",
        help="Predict at every observed time instead of a regular grid.",
    )
    run.add_argument("--seed", type=int, default=None, help="Seed for simulation-based diagnostics.")
    run.add_argument("--no-plots", action="store_true")
    run.add_argument("--pygam-check", action="store_true", help="Cross-check fitted values against pyGAM.")
    run.add_argument("--save-model", action="store_true", help="Write model.joblib next to the results.")
    run.add_argument("--progress", action="store_true", help="Show optimiser progress.")

    sim = sub.add_parser("simulate", help="Write a synthetic dataset with the expected columns.")
    sim.add_argument("out", type=Path, help="Output .csv or .xlsx path.")
    sim.add_argument("--animals", type=int, default=6)
    sim.add_argument("--sessions", type=int, default=3)
    sim.add_argument("--seed", type=int, default=20260301)
    return parser


def _config_from_args(args):
    cfg = AnalysisConfig.from_json(args.config) if args.config is not None else AnalysisConfig()
    changes = {}
    for name in ("start", "stop", "step"):
        value = getattr(args, f"grid_{name}")
        if value is not None:
            changes[name] = value
    if args.grid_observed:
        changes["observed"] = True
    if changes:
        cfg = cfg.with_grid(**changes)
    if args.seed is not None:
        cfg = cfg.with_seed(args.seed)
    return cfg


def cmd_run(args):
    cfg = _config_from_args(args)
    from .pipeline import run_analysis

    result = run_analysis(
        args.data,
        args.out,
        config=cfg,
        sheet=args.sheet,
        make_plots=not args.no_plots,
        pygam_check=args.pygam_check,
        save_model=args.save_model,
        progress=args.progress,
        log=log,
    )
    print(result.summary.to_text())
    print(f"\nAUC total: {result.auc.total:.4f}")
    print(f"Wrote: {args.out}")
    return 0


def cmd_simulate(args):
    from .synthetic import simulate_observations

    df = simulate_observations(n_animals=args.animals, sessions_per_animal=args.sessions, seed=args.seed)
    out = args.out
    out.parent.mkdir(parents=True, exist_ok=True)
    if out.suffix.lower() in {".xlsx", ".xlsm"}:
        df.to_excel(out, index=False)
    else:
        df.to_csv(out, index=False)
    log("WRITE", f"{len(df)} synthetic observations -> {out}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.command == "run":
            return cmd_run(args)
        return cmd_simulate(args)
    except (HifError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
