from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .algorithms import ALGORITHMS, available, get_algorithms
from .batch import lint_batch, optimize_batch, run
from .report import build_report, save_report_csv, save_report_json
from .settings import OptimizeSettings, load_settings, validate


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("inputs", nargs="+", help="PNG files and/or folders")
    p.add_argument(
        "--algo",
        action="append",
        dest="algorithms",
        choices=sorted(ALGORITHMS),
        help="Algorithm to try, repeatable; order decides ties (default: pillow)",
    )
    p.add_argument("--jobs", type=int, default=None, help="Files processed at once (default: 4)")
    p.add_argument("--no-recursive", action="store_true", help="Do not scan folders recursively")
    p.add_argument("--config", type=Path, default=None, help="JSON settings file")
    p.add_argument("--report", type=Path, default=None, help="Write report.json and report.csv here")
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose output")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pio",
        description="PNG Image Optimizer: keep the smallest of several lossless encodings",
    )
    sub = p.add_subparsers(dest="command", required=True)

    opt = sub.add_parser("optimize", help="Replace images in place with their smallest encoding")
    _add_common(opt)

    lint = sub.add_parser("lint", help="List images some algorithm could still shrink")
    _add_common(lint)
    lint.add_argument(
        "--tolerance",
        type=int,
        default=None,
        help="Ignore savings of this many bytes or fewer (default: 0)",
    )

    sub.add_parser("algorithms", help="List known algorithms and whether they can run here")

    return p


def _settings_from_args(args: argparse.Namespace) -> OptimizeSettings:
    s = OptimizeSettings()
    if args.config:
        s = load_settings(args.config, s)

    # Command-line flags win over the config file
    if args.algorithms:
        s = replace(s, algorithms=tuple(args.algorithms))
    if args.jobs is not None:
        s = replace(s, jobs=args.jobs)
    if args.no_recursive:
        s = replace(s, recursive=False)
    if getattr(args, "tolerance", None) is not None:
        s = replace(s, tolerance=args.tolerance)

    return validate(s)


def _write_reports(args: argparse.Namespace, outcomes, summary) -> None:
    if not args.report:
        return
    report = build_report(outcomes, summary, mode=args.command)

    json_path = args.report / "report.json"
    save_report_json(report, json_path)

    csv_path = args.report / "report.csv"
    save_report_csv(report, csv_path)

    print("\nReport written:", json_path)
    print("CSV written   :", csv_path)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "algorithms":
        for name in ALGORITHMS:
            status = "ok" if available(name) else "missing"
            print(f"  {name:<10} {status}")
        return 0

    setup_logging(args.verbose)

    try:
        settings = _settings_from_args(args)
        algorithms = get_algorithms(settings.algorithms)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    inputs = [Path(p) for p in args.inputs]

    if args.command == "optimize":
        outcomes, summary = run(optimize_batch(inputs, settings, algorithms))

        print("\n=== Batch Summary ===")
        print("Total found:", summary.total_files)
        print("Optimized  :", summary.optimized)
        print("Failed     :", summary.failed)
        print(f"Saved      : {summary.saved_bytes} bytes ({summary.saved_percent:.1f}%)")

        _write_reports(args, outcomes, summary)
        return 1 if summary.failed else 0

    if args.command == "lint":
        outcomes, summary = run(lint_batch(inputs, settings, algorithms))

        for o in outcomes:
            if o.flagged:
                print(o.path)

        if summary.failed:
            print(f"{summary.failed} file(s) could not be checked", file=sys.stderr)

        _write_reports(args, outcomes, summary)
        return 1 if (summary.flagged or summary.failed) else 0

    parser.print_help()
    return 2
