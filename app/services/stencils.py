"""Finite difference stencils for the axisymmetric operator u_rr + u_r/r + u_zz + s u.

Coefficients come from Fornberg's recursion on integer offsets, so the same
code produces centred, off-centred and one-sided templates for order 2 and 4.

Near r=0 (and z=0) a stencil reaches into the ghost zone. Ghost values are
never referenced by interior rows: the parity table folds each ghost
coefficient onto the mirrored interior point, scaled by the axis parity
(+1 for even fields, -1 for odd ones).
"""

from __future__ import annotations

from enum import IntEnum
from functools import lru_cache
from typing import Dict, Iterable, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from services.csr import StructuralError
from services.grid import Axis, Grid


# Weights below this fraction of the largest weight are rounding noise.
_WEIGHT_SNAP = 1e-13


class Parity(IntEnum):
    EVEN = 1
    ODD = -1


class Fold(NamedTuple):
    source_offset: int
    target_offset: int
    sign: int


class PointStencil(NamedTuple):
    diagonal: float
    neighbors: Tuple[Tuple[int, float], ...]


@lru_cache(maxsize=None)
def _fornberg(offsets: Tuple[int, ...], derivative: int) -> Tuple[float, ...]:
    x = [float(value) for value in offsets]
    n = len(x)
    c = np.zeros((n, derivative + 1))
    c[0, 0] = 1.0
    c1 = 1.0
    c4 = x[0]
    for i in range(1, n):
        mn = min(i, derivative)
        c2 = 1.0
        c5 = c4
        c4 = x[i]
        for j in range(i):
            c3 = x[i] - x[j]
            c2 *= c3
            if j == i - 1:
                for k in range(mn, 0, -1):
                    c[i, k] = c1 * (k * c[i - 1, k - 1] - c5 * c[i - 1, k]) / c2
                c[i, 0] = -c1 * c5 * c[i - 1, 0] / c2
            for k in range(mn, 0, -1):
                c[j, k] = (c4 * c[j, k] - k * c[j, k - 1]) / c3
            c[j, 0] = c4 * c[j, 0] / c3
        c1 = c2

    weights = c[:, derivative]
    scale = np.abs(weights).max()
    weights[np.abs(weights) < _WEIGHT_SNAP * scale] = 0.0
    return tuple(float(w) for w in weights)


def fd_weights(offsets: Sequence[int], derivative: int) -> Tuple[float, ...]:
    """Weights approximating the given derivative at offset 0 (unit spacing)."""
    offsets = tuple(int(o) for o in offsets)
    if len(set(offsets)) != len(offsets):
        raise ValueError("stencil offsets must be distinct")
    if derivative < 0 or len(offsets) <= derivative:
        raise ValueError(f"{len(offsets)} points cannot resolve derivative {derivative}")
    return _fornberg(offsets, derivative)


def stencil_offsets(order: int, derivative: int, position: int, total: int) -> Tuple[int, ...]:
    """Pick the stencil template for a point, using only indices inside [0, total)."""
    half = order // 2
    if position - half >= 0 and position + half < total:
        return tuple(range(-half, half + 1))

    # Off-centred template ending at the last grid point.
    width = order + derivative
    hi = total - 1 - position
    lo = hi - width + 1
    if position + lo < 0 or hi < 0:
        raise StructuralError(
            f"no order-{order} template for derivative {derivative} at index {position} of {total}"
        )
    return tuple(range(lo, hi + 1))


def _accumulate(entries: Dict[int, float], offsets: Iterable[int], weights: Iterable[float], scale: float) -> None:
    for offset, weight in zip(offsets, weights):
        if weight != 0.0:
            entries[offset] = entries.get(offset, 0.0) + weight * scale


class ParityTable:
    """Fold rules keyed by (axis, distance from the axis, order)."""

    def __init__(self, order: int, ghost: int, r_parity: Parity = Parity.EVEN, z_parity: Parity = Parity.EVEN) -> None:
        self.order = order
        self.ghost = ghost
        self.parity = {Axis.R: Parity(r_parity), Axis.Z: Parity(z_parity)}
        self._rules: Dict[Tuple[Axis, int, int], Tuple[Fold, ...]] = {}
        for axis in (Axis.R, Axis.Z):
            sign = int(self.parity[axis])
            for distance in range(ghost):
                self._rules[(axis, distance, order)] = tuple(
                    Fold(offset, -2 * distance - offset - 1, sign)
                    for offset in range(-distance - 1, -distance - ghost - 1, -1)
                )

    def rules(self, axis: Axis, distance: int) -> Tuple[Fold, ...]:
        return self._rules.get((axis, distance, self.order), ())

    def keys(self):
        return self._rules.keys()

    def fold(self, axis: Axis, distance: int, entries: Dict[int, float]) -> Dict[int, float]:
        """Return entries with every ghost reference folded onto its mirror point."""
        rules = {rule.source_offset: rule for rule in self.rules(axis, distance)}
        folded: Dict[int, float] = {}
        for offset, coef in entries.items():
            if distance + offset >= 0:
                folded[offset] = folded.get(offset, 0.0) + coef
                continue
            rule = rules.get(offset)
            if rule is None:
                raise StructuralError(
                    f"{axis.value}-stencil at distance {distance} reaches offset {offset} beyond the ghost zone"
                )
            folded[rule.target_offset] = folded.get(rule.target_offset, 0.0) + rule.sign * coef
        return folded


class StencilGenerator:
    """Per-point coefficients for a grid, with per-axis stencils cached."""

    def __init__(
        self,
        grid: Grid,
        r_parity: Parity = Parity.EVEN,
        z_parity: Parity = Parity.EVEN,
        parity_table: Optional[ParityTable] = None,
    ) -> None:
        self.grid = grid
        self.parity_table = parity_table or ParityTable(grid.order, grid.ghost, r_parity, z_parity)
        self._axis_cache: Dict[Tuple[Axis, int], Dict[int, float]] = {}
        self._gradient_cache: Dict[Tuple[Axis, int], Dict[int, float]] = {}

    def _check_index(self, axis: Axis, index: int) -> None:
        if not self.grid.ghost <= index < self.grid.total(axis):
            raise ValueError(f"{axis.value}-index {index} is not a physical grid point")

    def axis_stencil(self, axis: Axis, index: int) -> Dict[int, float]:
        """Folded 1-D coefficients: D2/h^2 (+ D1/(r h) along r), keyed by axis offset."""
        key = (axis, index)
        cached = self._axis_cache.get(key)
        if cached is not None:
            return dict(cached)

        self._check_index(axis, index)
        grid = self.grid
        total = grid.total(axis)
        h = grid.step(axis)
        entries: Dict[int, float] = {}
        offsets = stencil_offsets(grid.order, 2, index, total)
        _accumulate(entries, offsets, fd_weights(offsets, 2), 1.0 / (h * h))
        if axis is Axis.R:
            r = float(grid.r[index])
            offsets = stencil_offsets(grid.order, 1, index, total)
            _accumulate(entries, offsets, fd_weights(offsets, 1), 1.0 / (r * h))

        folded = self.parity_table.fold(axis, index - grid.ghost, entries)
        self._axis_cache[key] = folded
        return dict(folded)

    def gradient_stencil(self, axis: Axis, index: int) -> Dict[int, float]:
        """Folded first-derivative coefficients D1/h, keyed by axis offset."""
        key = (axis, index)
        cached = self._gradient_cache.get(key)
        if cached is not None:
            return dict(cached)

        self._check_index(axis, index)
        grid = self.grid
        offsets = stencil_offsets(grid.order, 1, index, grid.total(axis))
        entries: Dict[int, float] = {}
        _accumulate(entries, offsets, fd_weights(offsets, 1), 1.0 / grid.step(axis))
        folded = self.parity_table.fold(axis, index - grid.ghost, entries)
        self._gradient_cache[key] = folded
        return dict(folded)

    def _combine(self, diagonal: float, r_entries: Dict[int, float], z_entries: Dict[int, float]) -> PointStencil:
        nz_total = self.grid.nz_total
        neighbors: Dict[int, float] = {}
        for offset, coef in r_entries.items():
            if offset == 0:
                diagonal += coef
            else:
                neighbors[offset * nz_total] = coef
        for offset, coef in z_entries.items():
            if offset == 0:
                diagonal += coef
            else:
                neighbors[offset] = neighbors.get(offset, 0.0) + coef
        return PointStencil(diagonal, tuple(sorted(neighbors.items())))

    def point(self, i: int, j: int, linear: float = 0.0) -> PointStencil:
        """Operator row at an interior point; the linear term lands on the diagonal."""
        return self._combine(linear, self.axis_stencil(Axis.R, i), self.axis_stencil(Axis.Z, j))

    def robin(self, i: int, j: int) -> PointStencil:
        """Outer condition r u_r + z u_z + u = u_inf (u ~ u_inf + C/rho)."""
        grid = self.grid
        r = float(grid.r[i])
        z = float(grid.z[j])
        r_entries = {o: r * c for o, c in self.gradient_stencil(Axis.R, i).items()}
        z_entries = {o: z * c for o, c in self.gradient_stencil(Axis.Z, j).items()}
        return self._combine(1.0, r_entries, z_entries)
