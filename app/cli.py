"""Command line driver: solve the Brill-wave problem and write the fields as ASCII files.

    ellsolve dirname norder NrInterior NzInterior dr dz
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from config import settings
from schemas import (
    DEFAULT_GRID,
    DR_MAX,
    DR_MIN,
    NR_INTERIOR_MAX,
    NR_INTERIOR_MIN,
    check_parameters,
)
from services.ascii_io import (
    FIELD_FILES,
    OutputDirectoryError,
    inspect_output_directory,
    prepare_output_directory,
    write_field,
)
from services.compute_elliptic import EllipticRun, run_elliptic_solve
from services.dispatcher import CONFIGURATION_LABELS
from services.problems import PROBLEM_KINDS


logger = logging.getLogger("ellsolve")

Prompt = Callable[[str], str]

USAGE_NOTES = (
    "Usage is  $ ellsolve dirname norder NrInterior NzInterior dr dz",
    "  [dirname] is a valid directory name.",
    "  [norder] is 2 or 4, the finite difference order.",
    f"  [NrInterior] and [NzInterior] are interior point counts in [{NR_INTERIOR_MIN}, {NR_INTERIOR_MAX}].",
    f"  [dr] and [dz] are spatial steps in [{DR_MIN:.3e}, {DR_MAX:.3e}].",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ellsolve",
        description="Solve the flat axisymmetric elliptic equation on a cell-centred r-z grid.",
    )
    parser.add_argument("dirname", nargs="?", help="output directory")
    parser.add_argument("norder", nargs="?", type=int, help="finite difference order (2 or 4)")
    parser.add_argument("nr_interior", nargs="?", type=int, metavar="NrInterior")
    parser.add_argument("nz_interior", nargs="?", type=int, metavar="NzInterior")
    parser.add_argument("dr", nargs="?", type=float)
    parser.add_argument("dz", nargs="?", type=float)
    parser.add_argument("--problem", default="brill", choices=PROBLEM_KINDS)
    parser.add_argument("--boundary", default=None, choices=("dirichlet", "robin"))
    parser.add_argument("--amplitude", type=float, default=1.0)
    parser.add_argument("--u-inf", dest="u_inf", type=float, default=1.0)
    parser.add_argument(
        "--configurations",
        default=",".join(CONFIGURATION_LABELS),
        help="comma-separated solve configurations, run in order",
    )
    parser.add_argument("-y", "--yes", action="store_true", help="answer yes to every prompt")
    return parser


def confirm(question: str, ask: Prompt, assume_yes: bool) -> bool:
    if assume_yes:
        print(f"{question} y")
        return True
    if not settings.interactive:
        print(f"{question} (non-interactive, assuming n)")
        return False
    answer = ask(f"{question}\n").strip()
    return answer[:1] in ("y", "Y")


def _positional_values(args: argparse.Namespace) -> List:
    return [args.dirname, args.norder, args.nr_interior, args.nz_interior, args.dr, args.dz]


def _write_outputs(target: Path, run: EllipticRun) -> None:
    grid = run.grid
    fields = run.fields
    best = run.best
    r, z = fields.r, fields.z
    write_field(target / "r.asc", grid, r, z, r)
    write_field(target / "z.asc", grid, r, z, z)
    write_field(target / "s.asc", grid, r, z, fields.linear_term)
    write_field(target / "f.asc", grid, r, z, fields.source)
    write_field(target / "u.asc", grid, r, z, best.solution)
    write_field(target / "res.asc", grid, r, z, best.residual)


def main(argv: Optional[Sequence[str]] = None, ask: Prompt = input) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    values = _positional_values(args)
    if any(value is None for value in values):
        print("ellsolve: WARNING! " + USAGE_NOTES[0])
        for note in USAGE_NOTES[1:]:
            print(note)
        if not confirm("Press (y/n) to proceed with default arguments:", ask, args.yes):
            print("ellsolve: aborted.")
            return 1
        dirname = settings.output_dir
        grid = dict(DEFAULT_GRID)
    else:
        dirname = args.dirname
        grid = {
            "order": args.norder,
            "nr_interior": args.nr_interior,
            "nz_interior": args.nz_interior,
            "dr": args.dr,
            "dz": args.dz,
        }

    payload = {
        "grid": grid,
        "problem": {"kind": args.problem, "amplitude": args.amplitude, "u_inf": args.u_inf, "boundary": args.boundary},
        "solver": {"configurations": [label for label in args.configurations.split(",") if label.strip()]},
        "outputs": {"include_fields": False},
    }
    check = check_parameters(payload)
    if not check.ok:
        for error in check.errors:
            print(f"ellsolve: ERROR! {error}")
        return 1

    target = Path(dirname)
    status = inspect_output_directory(target)
    if status.exists and status.is_dir:
        print(f"ellsolve: WARNING! Directory {target} already exists.")
        if not confirm("Press (y/n) to proceed and possibly overwrite files:", ask, args.yes):
            print("ellsolve: aborted.")
            return 1
    try:
        target, _ = prepare_output_directory(target)
    except OutputDirectoryError as exc:
        print(f"ellsolve: WARNING! {exc}")
        if not confirm("Press (y/n) to proceed and write in current directory:", ask, args.yes):
            print("ellsolve: aborted.")
            return 1
        target = Path.cwd()

    run = run_elliptic_solve(check.request, request_id=target.name or "ellsolve")
    for outcome in run.outcomes:
        record = outcome.record
        if record.ok:
            logger.info("%-22s %.6e s  residual max %.3e", record.label, record.elapsed_seconds, record.residual_max)
        else:
            logger.error("%-22s failed: %s", record.label, record.error)

    if run.best is None:
        logger.error("no configuration produced a solution, nothing written")
        return 1
    _write_outputs(target, run)
    if run.result.metadata.error_max is not None:
        logger.info("max error against the exact solution: %.3e", run.result.metadata.error_max)
    logger.info("wrote %s to %s", ", ".join(FIELD_FILES), target)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
