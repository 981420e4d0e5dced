"""Assemble the discretised operator into a CSR matrix."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np

from services.csr import CsrOperator, StructuralError
from services.grid import Axis, Grid, PointKind
from services.stencils import Parity, StencilGenerator


logger = logging.getLogger(__name__)


class BoundaryCondition(str, Enum):
    DIRICHLET = "dirichlet"
    ROBIN = "robin"


@dataclass(frozen=True, eq=False)
class Assembly:
    """Operator plus the Dirichlet couplings removed from it (row, column, coefficient)."""

    grid: Grid
    operator: CsrOperator
    kinds: np.ndarray
    boundary: BoundaryCondition
    lift_rows: np.ndarray
    lift_columns: np.ndarray
    lift_values: np.ndarray


class _Block:
    """Rows of one contiguous block, built independently of every other block."""

    def __init__(self, start: int, stop: int) -> None:
        self.start = start
        self.stop = stop
        self.rows: List[Dict[int, float]] = []
        self.lifts: List[Tuple[int, int, float]] = []


def _add_entry(row: Dict[int, float], col: int, value: float) -> None:
    row[col] = row.get(col, 0.0) + value


def _build_block(
    block: _Block,
    grid: Grid,
    kinds: np.ndarray,
    linear_term: np.ndarray,
    boundary: BoundaryCondition,
    stencils: StencilGenerator,
) -> _Block:
    parity = stencils.parity_table.parity
    for k in range(block.start, block.stop):
        i, j = grid.unravel(k)
        row: Dict[int, float] = {}
        kind = kinds[k]

        if kind == PointKind.GHOST:
            mi, mj = grid.mirror(i, j)
            sign = 1
            if mi != i:
                sign *= int(parity[Axis.R])
            if mj != j:
                sign *= int(parity[Axis.Z])
            _add_entry(row, k, 1.0)
            _add_entry(row, grid.index(mi, mj), -float(sign))
        elif kind == PointKind.BOUNDARY:
            if boundary is BoundaryCondition.DIRICHLET:
                _add_entry(row, k, 1.0)
            else:
                stencil = stencils.robin(i, j)
                _add_entry(row, k, stencil.diagonal)
                for offset, coef in stencil.neighbors:
                    _add_entry(row, k + offset, coef)
        else:
            stencil = stencils.point(i, j, float(linear_term[k]))
            _add_entry(row, k, stencil.diagonal)
            for offset, coef in stencil.neighbors:
                col = k + offset
                if kinds[col] == PointKind.GHOST:
                    raise StructuralError(f"interior row {k} references ghost column {col}")
                if kinds[col] == PointKind.BOUNDARY and boundary is BoundaryCondition.DIRICHLET:
                    block.lifts.append((k, col, coef))
                else:
                    _add_entry(row, col, coef)

        block.rows.append({col: value for col, value in row.items() if value != 0.0})
    return block


def _fill_block(
    block: _Block,
    offsets: np.ndarray,
    values: np.ndarray,
    columns: np.ndarray,
    index_base: int,
) -> None:
    # Each block writes only inside [offsets[start], offsets[stop]).
    for k, row in zip(range(block.start, block.stop), block.rows):
        pos = offsets[k]
        for col in sorted(row):
            values[pos] = row[col]
            columns[pos] = col + index_base
            pos += 1


def _split_rows(size: int, workers: int) -> List[_Block]:
    bounds = np.linspace(0, size, max(1, workers) + 1).astype(int)
    return [_Block(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]


def _run(blocks: Sequence[_Block], workers: int, fn, *args) -> List:
    if workers <= 1 or len(blocks) <= 1:
        return [fn(block, *args) for block in blocks]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(lambda block: fn(block, *args), blocks))


def assemble_operator(
    grid: Grid,
    linear_term: np.ndarray,
    boundary: BoundaryCondition = BoundaryCondition.DIRICHLET,
    r_parity: Parity = Parity.EVEN,
    z_parity: Parity = Parity.EVEN,
    index_base: int = 0,
    workers: int = 1,
) -> Assembly:
    """Walk the grid in row-major order and pack one CSR row per point."""
    if index_base not in (0, 1):
        raise ValueError(f"index base must be 0 or 1 (got {index_base})")
    linear = np.asarray(linear_term, dtype=float)
    if linear.shape != (grid.size,):
        raise ValueError(f"linear term has shape {linear.shape}, grid has {grid.size} points")
    boundary = BoundaryCondition(boundary)

    kinds = grid.kinds()
    stencils = StencilGenerator(grid, r_parity, z_parity)
    blocks = _split_rows(grid.size, workers)
    _run(blocks, workers, _build_block, grid, kinds, linear, boundary, stencils)

    counts = np.fromiter((len(row) for block in blocks for row in block.rows), dtype=np.int64, count=grid.size)
    offsets = np.zeros(grid.size + 1, dtype=np.int64)
    np.cumsum(counts, out=offsets[1:])
    nnz = int(offsets[-1])

    values = np.empty(nnz, dtype=float)
    columns = np.empty(nnz, dtype=np.int64)
    _run(blocks, workers, _fill_block, offsets, values, columns, index_base)

    operator = CsrOperator(
        values=values,
        columns=columns,
        row_offsets=offsets + index_base,
        nrows=grid.size,
        ncols=grid.size,
        nnz=nnz,
        index_base=index_base,
    ).check()
    if int(operator.row_counts().sum()) != operator.nnz:
        raise StructuralError(f"row counts sum to {int(operator.row_counts().sum())}, nnz={operator.nnz}")

    lifts = [lift for block in blocks for lift in block.lifts]
    logger.debug("assembled %d x %d operator with nnz=%d (%s boundary)", grid.size, grid.size, nnz, boundary.value)
    return Assembly(
        grid=grid,
        operator=operator,
        kinds=kinds,
        boundary=boundary,
        lift_rows=np.array([lift[0] for lift in lifts], dtype=np.int64),
        lift_columns=np.array([lift[1] for lift in lifts], dtype=np.int64),
        lift_values=np.array([lift[2] for lift in lifts], dtype=float),
    )
