"""End-to-end elliptic solve: grid, problem, operator, dispatch and result payload."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import List, Optional

import numpy as np

from config import settings
from schemas import (
    FieldOutputs,
    GridSummary,
    SolveMetadata,
    SolveRecordModel,
    SolveRequest,
    SolveResult,
)
from services.assembler import Assembly, assemble_operator
from services.dispatcher import (
    SolveDispatcher,
    SolveOutcome,
    build_rhs,
    configuration_by_label,
    last_successful,
)
from services.grid import Grid, PointKind
from services.problems import ProblemFields, build_problem
from services.residual import residual_norms
from services.solver_backend import SuperLUBackend, get_backend
from services.stencils import Parity


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class EllipticRun:
    grid: Grid
    fields: ProblemFields
    assembly: Assembly
    rhs: np.ndarray
    outcomes: List[SolveOutcome]
    result: SolveResult

    @property
    def best(self) -> Optional[SolveOutcome]:
        return last_successful(self.outcomes)


def build_grid(request: SolveRequest) -> Grid:
    spec = request.grid
    return Grid(order=spec.order, nr_interior=spec.nr_interior, nz_interior=spec.nz_interior, dr=spec.dr, dz=spec.dz)


def _to_rows(grid: Grid, values: np.ndarray) -> List[List[float]]:
    return grid.as_2d(values).tolist()


def _record_model(outcome: SolveOutcome) -> SolveRecordModel:
    record = outcome.record
    return SolveRecordModel(
        label=record.label,
        reorder=record.reorder,
        refinement=record.refinement,
        status=record.status,
        elapsed_seconds=record.elapsed_seconds,
        residual_max=record.residual_max,
        residual_norm=record.residual_norm,
        iterations=record.iterations,
        error=record.error,
    )


def run_elliptic_solve(
    request: SolveRequest,
    request_id: str,
    backend: Optional[SuperLUBackend] = None,
) -> EllipticRun:
    """Run every requested configuration and report the last successful solution."""
    grid = build_grid(request)
    problem_spec = request.problem
    problem = build_problem(problem_spec.kind, problem_spec.amplitude, problem_spec.u_inf, problem_spec.boundary)
    fields = problem.fields(grid)

    backend = backend or get_backend(settings.solver_rtol, settings.solver_maxiter)
    assembly = assemble_operator(
        grid,
        fields.linear_term,
        boundary=problem.boundary,
        r_parity=Parity[request.solver.r_parity.upper()],
        z_parity=Parity[request.solver.z_parity.upper()],
        index_base=backend.index_base,
        workers=settings.assembly_workers,
    )
    rhs = build_rhs(grid, assembly, fields.source, fields.boundary_values, problem.u_inf)
    logger.info(
        "request %s: %s problem on %dx%d grid (order %d), %d unknowns, nnz=%d",
        request_id,
        problem.name,
        grid.nr_total,
        grid.nz_total,
        grid.order,
        grid.size,
        assembly.operator.nnz,
    )

    configurations = [configuration_by_label(label) for label in request.solver.configurations]
    dispatcher = SolveDispatcher(backend, wait_seconds=settings.backend_wait_seconds)
    outcomes = dispatcher.run(assembly.operator, rhs, configurations)

    warnings: List[str] = []
    failed = [outcome.record.label for outcome in outcomes if not outcome.record.ok]
    if failed:
        warnings.append(f"configurations failed: {', '.join(failed)}")

    best = last_successful(outcomes)
    field_outputs: Optional[FieldOutputs] = None
    error_max: Optional[float] = None
    if best is None:
        warnings.append("no configuration produced a solution")
    else:
        error_field = None
        if fields.exact is not None:
            error_field = best.solution - fields.exact
            error_max, _ = residual_norms(error_field, assembly.kinds != PointKind.GHOST)
        if request.outputs.include_fields:
            field_outputs = FieldOutputs(
                r=grid.r.tolist(),
                z=grid.z.tolist(),
                solution=_to_rows(grid, best.solution),
                residual=_to_rows(grid, best.residual) if request.outputs.include_residual else None,
                error=_to_rows(grid, error_field) if error_field is not None else None,
            )

    result = SolveResult(
        metadata=SolveMetadata(
            request_id=request_id,
            problem=problem_spec,
            boundary=problem.boundary.value,
            solver=request.solver,
            fields_from=best.record.label if best is not None else None,
            error_max=error_max,
            warnings=warnings,
        ),
        grid=GridSummary(
            order=grid.order,
            ghost=grid.ghost,
            nr_interior=grid.nr_interior,
            nz_interior=grid.nz_interior,
            nr_total=grid.nr_total,
            nz_total=grid.nz_total,
            dr=grid.dr,
            dz=grid.dz,
            unknowns=grid.size,
            nnz=assembly.operator.nnz,
            index_base=assembly.operator.index_base,
        ),
        records=[_record_model(outcome) for outcome in outcomes],
        fields=field_outputs,
    )
    return EllipticRun(grid=grid, fields=fields, assembly=assembly, rhs=rhs, outcomes=outcomes, result=result)
