from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np

from .config import ValidationSettings
from .estimator import estimate
from .io import load_parameters
from .validation import ValidationOutcome, ValidationSession, validate


logger = logging.getLogger(__name__)


def _existing_path(value: str) -> Path:
    path = Path(value)
    if not path.exists():
        raise argparse.ArgumentTypeError(f"File not found: {value}")
    return path


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="m6ss", add_help=True)
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    est = sub.add_parser("estimate", help="Run the simulator and the model on one parameter set")
    est.add_argument("--params", required=True, type=_existing_path, help="Path to parameters (json|yaml)")
    est.add_argument("--runs", type=_positive_int, default=1_000_000, help="Number of simulated attempts")
    est.add_argument("--seed", type=int, default=None, help="Seed of the simulator random generator")
    est.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write report JSON to this path (default: stdout)",
    )

    val = sub.add_parser("validate", help="Compare the model with the simulator on random parameter sets")
    val.add_argument("--settings", type=_existing_path, default=None, help="Path to validation settings yaml")
    val.add_argument("--cases", type=_positive_int, default=None, help="Random cases per scan regime")
    val.add_argument("--samples", type=_positive_int, default=None, help="Simulated attempts per case")
    val.add_argument("--threads", type=_positive_int, default=1, help="Number of worker threads")
    val.add_argument("--db", type=Path, default=None, help="SQLite database for the comparisons")
    val.add_argument("--seed", type=int, default=None, help="Seed of the validation random generators")
    return parser


def _estimate(args: argparse.Namespace) -> int:
    parameters = load_parameters(args.params)
    report = estimate(parameters, args.runs, np.random.default_rng(args.seed))

    payload = report.model_dump(mode="json")
    text = json.dumps(payload, indent=2, sort_keys=True)
    if args.output is None:
        print(text)
        return 0

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(text + "\n", encoding="utf-8")
    return 0


def _validate(args: argparse.Namespace) -> int:
    settings = ValidationSettings.from_yaml(args.settings) if args.settings else ValidationSettings()
    update = {}
    if args.cases is not None:
        update["num_random_cases"] = args.cases
    if args.samples is not None:
        update["num_sim_samples_per_case"] = args.samples
    if args.db is not None:
        update["database"] = str(args.db)
    settings = settings.model_copy(update=update)

    with ValidationSession(settings.database, settings.batch_size) as session:
        outcome = validate(settings, num_threads=args.threads, session=session, seed=args.seed)
        logger.info("stored %d comparisons in %s", session.insert_count, session.path)

    print(outcome.name)
    return 0 if outcome == ValidationOutcome.VALID else 1


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        if args.command == "estimate":
            return _estimate(args)
        return _validate(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        return 2


def run() -> None:
    sys.exit(main())
