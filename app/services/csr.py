"""Compressed sparse row operator with explicit index base."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import scipy.sparse as sp


class StructuralError(RuntimeError):
    """A CSR or stencil invariant was violated; the operator cannot be trusted."""


@dataclass(frozen=True, eq=False)
class CsrOperator:
    """Parallel values/columns/row-offset arrays; column and offset entries include index_base."""

    values: np.ndarray
    columns: np.ndarray
    row_offsets: np.ndarray
    nrows: int
    ncols: int
    nnz: int
    index_base: int = 0

    def check(self) -> "CsrOperator":
        """Raise StructuralError unless every CSR invariant holds."""
        base = self.index_base
        if base not in (0, 1):
            raise StructuralError(f"index base must be 0 or 1 (got {base})")
        offsets = self.row_offsets
        if offsets.shape != (self.nrows + 1,):
            raise StructuralError(f"row_offsets has length {offsets.size}, expected {self.nrows + 1}")
        if self.values.shape != (self.nnz,) or self.columns.shape != (self.nnz,):
            raise StructuralError(
                f"values/columns lengths {self.values.size}/{self.columns.size} do not match nnz={self.nnz}"
            )
        if offsets[0] != base:
            raise StructuralError(f"first row offset is {offsets[0]}, expected index base {base}")
        if offsets[-1] - base != self.nnz:
            raise StructuralError(f"row offsets account for {offsets[-1] - base} entries, nnz={self.nnz}")
        if np.any(np.diff(offsets) < 0):
            raise StructuralError("row offsets are decreasing")
        if self.nnz:
            lo = int(self.columns.min())
            hi = int(self.columns.max())
            if lo < base or hi >= base + self.ncols:
                raise StructuralError(f"column index range [{lo}, {hi}] outside [{base}, {base + self.ncols})")
            # Columns must strictly increase inside each row; the first entry of a row may drop.
            steps = np.diff(self.columns)
            row_starts = offsets[1:-1] - base
            inside = np.ones(steps.size, dtype=bool)
            starts = row_starts[(row_starts > 0) & (row_starts < self.nnz)]
            inside[starts - 1] = False
            if np.any(steps[inside] <= 0):
                raise StructuralError("column indices are unsorted or duplicated within a row")
        return self

    def row_counts(self) -> np.ndarray:
        return np.diff(self.row_offsets)

    def row(self, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Zero-based columns and values of row k."""
        if not 0 <= k < self.nrows:
            raise IndexError(f"row {k} outside operator with {self.nrows} rows")
        start = self.row_offsets[k] - self.index_base
        stop = self.row_offsets[k + 1] - self.index_base
        return self.columns[start:stop] - self.index_base, self.values[start:stop]

    def rebased(self, index_base: int) -> "CsrOperator":
        shift = index_base - self.index_base
        return CsrOperator(
            values=self.values.copy(),
            columns=self.columns + shift,
            row_offsets=self.row_offsets + shift,
            nrows=self.nrows,
            ncols=self.ncols,
            nnz=self.nnz,
            index_base=index_base,
        )

    def to_scipy(self) -> sp.csr_matrix:
        base = self.index_base
        return sp.csr_matrix(
            (self.values, self.columns - base, self.row_offsets - base),
            shape=(self.nrows, self.ncols),
        )

    def matvec(self, vector: np.ndarray) -> np.ndarray:
        x = np.asarray(vector, dtype=float)
        if x.shape != (self.ncols,):
            raise ValueError(f"vector has shape {x.shape}, operator expects ({self.ncols},)")
        return self.to_scipy() @ x
