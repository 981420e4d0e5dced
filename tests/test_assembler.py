"""CSR invariants and operator assembly tests."""

from __future__ import annotations

import math

import numpy as np
import pytest

from services.assembler import BoundaryCondition, assemble_operator
from services.csr import CsrOperator, StructuralError
from services.grid import Grid, PointKind
from services.stencils import Parity


def _operator(values, columns, offsets, n, base=0) -> CsrOperator:
    return CsrOperator(
        values=np.asarray(values, dtype=float),
        columns=np.asarray(columns, dtype=np.int64),
        row_offsets=np.asarray(offsets, dtype=np.int64),
        nrows=n,
        ncols=n,
        nnz=len(values),
        index_base=base,
    )


def test_csr_check_accepts_valid_operator() -> None:
    op = _operator([2.0, -1.0, -1.0, 2.0], [0, 1, 0, 1], [0, 2, 4], 2).check()
    assert op.row_counts().tolist() == [2, 2]
    cols, vals = op.row(1)
    assert cols.tolist() == [0, 1]
    assert vals.tolist() == [-1.0, 2.0]
    assert np.allclose(op.matvec(np.array([1.0, 1.0])), [1.0, 1.0])


@pytest.mark.parametrize(
    "values, columns, offsets",
    [
        ([1.0, 1.0], [1, 0], [0, 2, 2]),
        ([1.0, 1.0], [0, 0], [0, 2, 2]),
        ([1.0, 1.0], [0, 2], [0, 1, 2]),
        ([1.0, 1.0], [0, 1], [1, 1, 2]),
        ([1.0, 1.0], [0, 1], [0, 1, 3]),
        ([1.0, 1.0], [0, 1], [0, 2, 1]),
    ],
)
def test_csr_check_rejects_broken_operators(values, columns, offsets) -> None:
    with pytest.raises(StructuralError):
        _operator(values, columns, offsets, 2).check()


def test_csr_rebase_round_trip() -> None:
    op = _operator([2.0, -1.0, 3.0], [0, 1, 1], [0, 2, 3], 2)
    one = op.rebased(1).check()
    assert one.row_offsets.tolist() == [1, 3, 4]
    assert one.columns.tolist() == [1, 2, 2]
    assert np.allclose(one.to_scipy().toarray(), op.to_scipy().toarray())
    assert one.row(0)[0].tolist() == [0, 1]


@pytest.mark.parametrize("order", [2, 4])
@pytest.mark.parametrize("boundary", [BoundaryCondition.DIRICHLET, BoundaryCondition.ROBIN])
def test_assembled_operator_satisfies_csr_invariants(order, boundary) -> None:
    grid = Grid(order=order, nr_interior=8, nz_interior=7, dr=0.5, dz=0.5)
    assembly = assemble_operator(grid, grid.new_field(0.1), boundary=boundary)
    op = assembly.operator
    assert op.nrows == op.ncols == grid.size
    assert op.row_offsets[0] == 0
    assert op.row_offsets[-1] == op.nnz
    assert int(op.row_counts().sum()) == op.nnz
    assert np.all(op.row_counts() >= 1)
    for k in range(op.nrows):
        cols, _ = op.row(k)
        assert np.all(np.diff(cols) > 0)


def test_order_two_row_widths() -> None:
    grid = Grid(order=2, nr_interior=8, nz_interior=8, dr=0.5, dz=0.5)
    assembly = assemble_operator(grid, grid.new_field(0.0), boundary=BoundaryCondition.ROBIN)
    counts = assembly.operator.row_counts()
    kinds = assembly.kinds
    assert counts[kinds == PointKind.INTERIOR].max() <= 5
    assert counts[grid.index(5, 5)] == 5
    assert np.all(counts[kinds == PointKind.GHOST] == 2)


@pytest.mark.parametrize("boundary", [BoundaryCondition.DIRICHLET, BoundaryCondition.ROBIN])
def test_order_two_rows_hold_at_most_five_entries_on_driver_grid(boundary) -> None:
    grid = Grid(order=2, nr_interior=32, nz_interior=32, dr=0.5, dz=0.5)
    assembly = assemble_operator(grid, grid.new_field(0.0), boundary=boundary)
    counts = assembly.operator.row_counts()
    assert assembly.operator.nrows == 35 * 35
    assert counts.max() <= 5
    assert counts[grid.index(grid.ghost + 10, grid.ghost + 10)] == 5


def test_interior_rows_never_couple_to_ghost_columns() -> None:
    for order in (2, 4):
        grid = Grid(order=order, nr_interior=order + 2, nz_interior=order + 3, dr=0.3, dz=0.2)
        assembly = assemble_operator(grid, grid.new_field(0.0), boundary=BoundaryCondition.ROBIN)
        kinds = assembly.kinds
        for k in np.flatnonzero(kinds == PointKind.INTERIOR):
            cols, _ = assembly.operator.row(int(k))
            assert not np.any(kinds[cols] == PointKind.GHOST)


def test_ghost_rows_pin_to_mirror_with_parity_sign() -> None:
    grid = Grid(order=2, nr_interior=6, nz_interior=6, dr=0.5, dz=0.5)
    assembly = assemble_operator(grid, grid.new_field(0.0), r_parity=Parity.ODD, z_parity=Parity.EVEN)
    op = assembly.operator

    cols, vals = op.row(grid.index(1, 4))
    assert cols.tolist() == sorted([grid.index(1, 4), grid.index(2, 4)])
    assert dict(zip(cols.tolist(), vals.tolist()))[grid.index(2, 4)] == 1.0

    cols, vals = op.row(grid.index(3, 0))
    assert dict(zip(cols.tolist(), vals.tolist())) == {grid.index(3, 0): 1.0, grid.index(3, 3): -1.0}

    # Corner ghosts pick up both signs.
    cols, vals = op.row(grid.index(0, 1))
    assert dict(zip(cols.tolist(), vals.tolist())) == {grid.index(0, 1): 1.0, grid.index(3, 2): 1.0}


def test_axis_fold_lands_on_the_diagonal() -> None:
    grid = Grid(order=2, nr_interior=6, nz_interior=6, dr=0.5, dz=0.25)
    g = grid.ghost
    k = grid.index(g, 4)
    row = dict(zip(*[a.tolist() for a in assemble_operator(grid, grid.new_field(0.0)).operator.row(k)]))
    assert math.isclose(row[k], -2.0 / 0.25 - 2.0 / 0.0625)
    assert math.isclose(row[grid.index(g + 1, 4)], 2.0 / 0.25)
    assert grid.index(g - 1, 4) not in row


def test_dirichlet_couplings_are_lifted() -> None:
    grid = Grid(order=2, nr_interior=5, nz_interior=5, dr=0.5, dz=0.5)
    assembly = assemble_operator(grid, grid.new_field(0.0), boundary=BoundaryCondition.DIRICHLET)
    kinds = assembly.kinds
    op = assembly.operator

    for k in np.flatnonzero(kinds == PointKind.BOUNDARY):
        cols, vals = op.row(int(k))
        assert cols.tolist() == [int(k)]
        assert vals.tolist() == [1.0]

    assert assembly.lift_rows.size > 0
    assert np.all(kinds[assembly.lift_rows] == PointKind.INTERIOR)
    assert np.all(kinds[assembly.lift_columns] == PointKind.BOUNDARY)
    for row, col in zip(assembly.lift_rows, assembly.lift_columns):
        cols, _ = op.row(int(row))
        assert int(col) not in cols.tolist()

    robin = assemble_operator(grid, grid.new_field(0.0), boundary=BoundaryCondition.ROBIN)
    assert robin.lift_rows.size == 0


def test_linear_term_lands_on_diagonal_only() -> None:
    grid = Grid(order=2, nr_interior=5, nz_interior=5, dr=0.5, dz=0.5)
    base = assemble_operator(grid, grid.new_field(0.0)).operator.to_scipy().toarray()
    shifted = assemble_operator(grid, grid.new_field(0.5)).operator.to_scipy().toarray()
    diff = shifted - base
    interior = grid.kinds() == PointKind.INTERIOR
    assert np.allclose(np.diag(diff)[interior], 0.5)
    assert np.allclose(np.diag(diff)[~interior], 0.0)
    assert np.allclose(diff - np.diag(np.diag(diff)), 0.0)


def test_parallel_assembly_matches_serial() -> None:
    grid = Grid(order=4, nr_interior=12, nz_interior=9, dr=0.25, dz=0.5)
    r, z = grid.coordinates()
    linear = np.exp(-r * r - z * z)
    serial = assemble_operator(grid, linear, boundary=BoundaryCondition.ROBIN)
    parallel = assemble_operator(grid, linear, boundary=BoundaryCondition.ROBIN, workers=4)
    assert np.array_equal(serial.operator.row_offsets, parallel.operator.row_offsets)
    assert np.array_equal(serial.operator.columns, parallel.operator.columns)
    assert np.array_equal(serial.operator.values, parallel.operator.values)


def test_one_based_assembly() -> None:
    grid = Grid(order=2, nr_interior=5, nz_interior=5, dr=0.5, dz=0.5)
    zero = assemble_operator(grid, grid.new_field(0.0)).operator
    one = assemble_operator(grid, grid.new_field(0.0), index_base=1).operator
    assert one.index_base == 1
    assert one.row_offsets[0] == 1
    assert one.row_offsets[-1] == one.nnz + 1
    assert one.columns.min() >= 1
    assert np.array_equal(one.rebased(0).columns, zero.columns)
    assert np.allclose(one.to_scipy().toarray(), zero.to_scipy().toarray())


def test_assembly_rejects_bad_inputs() -> None:
    grid = Grid(order=2, nr_interior=5, nz_interior=5, dr=0.5, dz=0.5)
    with pytest.raises(ValueError):
        assemble_operator(grid, np.zeros(grid.size - 1))
    with pytest.raises(ValueError):
        assemble_operator(grid, grid.new_field(), index_base=2)
