"""Command line interface for SlabLab."""
from __future__ import annotations

import argparse
import sys

from slablab.analyses import get_analysis_registry
from slablab.errors import SlabLabError
from slablab.logging_utils import close_run_logger, setup_run_logger
from slablab.models import load_project
from slablab.preflight import run_preflight
from slablab.runner import SlabAnalysisEngine
from slablab.system import load_universe


def _progress(current: int, total: int, message: str) -> None:
    percent = int(100 * current / max(total, 1))
    sys.stdout.write(f"\r[{percent:3d}%] {message}")
    sys.stdout.flush()
    if current >= total:
        sys.stdout.write("\n")


def _apply_overrides(project, args: argparse.Namespace) -> None:
    if getattr(args, "output", None):
        project.outputs.output_dir = args.output
    if getattr(args, "timesteps", None) is not None:
        project.system.timesteps = args.timesteps
    if getattr(args, "analysis", None):
        project.analysis.analyses = list(args.analysis)
    if getattr(args, "strict", False):
        project.analysis.strict = True


def run_command(args: argparse.Namespace) -> int:
    project = load_project(args.project)
    _apply_overrides(project, args)

    logger, log_path = setup_run_logger(project.outputs.output_dir)
    logger.info("CLI analysis requested: %s", ", ".join(project.analysis.analyses))
    engine = SlabAnalysisEngine(project)
    try:
        result = engine.run(progress=_progress if args.progress else None, logger=logger)
    except (SlabLabError, ValueError) as exc:
        timestep = getattr(exc, "timestep", None)
        where = f" (timestep {timestep})" if timestep is not None else ""
        logger.error("Run aborted%s: %s", where, exc)
        print(f"Error{where}: {exc}", file=sys.stderr)
        print(f"Log written to {log_path}", file=sys.stderr)
        return 1
    finally:
        close_run_logger()

    summary = result.summary
    print(f"Processed {summary.steps} timesteps ({summary.checkpoints} checkpoints, {summary.rewinds} rewinds)")
    print(f"Log written to {log_path}")
    if result.metadata_path:
        print(f"Metadata written to {result.metadata_path}")
    if result.warnings:
        print("Warnings:")
        for warning in result.warnings[:10]:
            print(f"  - {warning}")
    return 0


def list_command(args: argparse.Namespace) -> int:
    for name, cls in sorted(get_analysis_registry().items()):
        print(f"{name:26s} {cls.description}")
    return 0


def check_command(args: argparse.Namespace) -> int:
    project = load_project(args.project)
    _apply_overrides(project, args)
    universe = load_universe(project.inputs)
    report = run_preflight(project, universe)
    summary = report.trajectory_summary
    print(f"Atoms: {summary.get('n_atoms')} | Frames: {summary.get('n_frames')}")
    print("Elements: " + ", ".join(f"{elem}={count}" for elem, count in report.element_counts.items()))
    for warning in report.warnings:
        print(f"WARNING: {warning}")
    for error in report.errors:
        print(f"ERROR: {error}")
    print("Preflight OK" if report.ok else "Preflight FAILED")
    return 0 if report.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SlabLab CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run slab analyses over a trajectory")
    run_parser.add_argument("--project", required=True, help="Project JSON/YAML file")
    run_parser.add_argument("--output", help="Output directory")
    run_parser.add_argument("--timesteps", type=int, help="Number of timesteps to process")
    run_parser.add_argument(
        "--analysis",
        action="append",
        help="Analysis to run (repeatable); overrides the project list",
    )
    run_parser.add_argument("--strict", action="store_true", help="Fail on a truncated trajectory")
    run_parser.add_argument("--progress", action="store_true", help="Show progress bar")
    run_parser.set_defaults(func=run_command)

    list_parser = subparsers.add_parser("list", help="List available analyses")
    list_parser.set_defaults(func=list_command)

    check_parser = subparsers.add_parser("check", help="Run preflight checks only")
    check_parser.add_argument("--project", required=True, help="Project JSON/YAML file")
    check_parser.add_argument("--timesteps", type=int, help="Number of timesteps to process")
    check_parser.set_defaults(func=check_command)
    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
