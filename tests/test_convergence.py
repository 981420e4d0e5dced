"""Manufactured-solution convergence of the discretisation."""

from __future__ import annotations

import numpy as np
import pytest

from services.assembler import assemble_operator
from services.dispatcher import SolveDispatcher, build_rhs, configuration_by_label
from services.grid import Grid, PointKind
from services.problems import gaussian, gaussian_laplacian, manufactured_gaussian
from services.residual import evaluate_residual, residual_norms
from services.solver_backend import SuperLUBackend


# (interior points, step) with a fixed physical extent of 4.
REFINEMENTS = [(16, 0.25), (32, 0.125), (64, 0.0625)]


def _truncation_and_error(order: int, nr: int, h: float):
    problem = manufactured_gaussian(amplitude=1.0)
    grid = Grid(order=order, nr_interior=nr, nz_interior=nr, dr=h, dz=h)
    fields = problem.fields(grid)
    assembly = assemble_operator(grid, fields.linear_term, boundary=problem.boundary)
    rhs = build_rhs(grid, assembly, fields.source, fields.boundary_values, problem.u_inf)
    interior = assembly.kinds == PointKind.INTERIOR

    truncation = evaluate_residual(assembly.operator, fields.exact, rhs)
    truncation_max, _ = residual_norms(truncation, interior)

    outcome = SolveDispatcher(SuperLUBackend()).run(assembly.operator, rhs, [configuration_by_label("normal")])[0]
    assert outcome.record.ok, outcome.record.error
    error_max, _ = residual_norms(outcome.solution - fields.exact, interior)
    return truncation_max, error_max


def test_manufactured_source_matches_laplacian() -> None:
    r = np.array([0.1, 0.7, 1.3])
    z = np.array([0.2, 0.0, 2.0])
    h = 1e-4
    u = gaussian
    numeric = (
        (u(r + h, z) - 2 * u(r, z) + u(r - h, z)) / h**2
        + (u(r + h, z) - u(r - h, z)) / (2 * h * r)
        + (u(r, z + h) - 2 * u(r, z) + u(r, z - h)) / h**2
    )
    assert np.allclose(numeric, gaussian_laplacian(r, z), rtol=1e-5, atol=1e-6)


@pytest.mark.parametrize("order, expected_rate", [(2, 3.0), (4, 10.0)])
def test_truncation_error_converges_at_design_order(order, expected_rate) -> None:
    truncation = [_truncation_and_error(order, nr, h)[0] for nr, h in REFINEMENTS]
    for coarse, fine in zip(truncation, truncation[1:]):
        assert coarse / fine > expected_rate


@pytest.mark.parametrize("order, expected_rate", [(2, 3.0), (4, 8.0)])
def test_solution_error_converges(order, expected_rate) -> None:
    errors = [_truncation_and_error(order, nr, h)[1] for nr, h in REFINEMENTS]
    assert errors[0] > errors[1] > errors[2]
    assert errors[1] / errors[2] > expected_rate
    assert errors[-1] < (5e-2 if order == 2 else 1e-3)
