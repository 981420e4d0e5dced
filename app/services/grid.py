"""Cell-centred axisymmetric r-z grid with ghost zones."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Tuple

import numpy as np


# Ghost-zone width per finite difference order.
GHOST_BY_ORDER = {2: 2, 4: 3}


class Axis(str, Enum):
    R = "r"
    Z = "z"


class PointKind(IntEnum):
    INTERIOR = 0
    GHOST = 1
    BOUNDARY = 2


@dataclass(frozen=True)
class Grid:
    """Structured grid: ghost points near r=0 / z=0, one boundary point at the far end."""

    order: int
    nr_interior: int
    nz_interior: int
    dr: float
    dz: float

    def __post_init__(self) -> None:
        if self.order not in GHOST_BY_ORDER:
            raise ValueError(f"finite difference order {self.order} is not supported, only 2 or 4")
        if self.dr <= 0.0 or self.dz <= 0.0:
            raise ValueError("grid steps dr and dz must be positive")
        min_interior = self.order + 2
        if self.nr_interior < min_interior or self.nz_interior < min_interior:
            raise ValueError(
                f"order {self.order} needs at least {min_interior} interior points per axis "
                f"(got nr={self.nr_interior}, nz={self.nz_interior})"
            )

    @property
    def ghost(self) -> int:
        return GHOST_BY_ORDER[self.order]

    @property
    def nr_total(self) -> int:
        return self.ghost + self.nr_interior + 1

    @property
    def nz_total(self) -> int:
        return self.ghost + self.nz_interior + 1

    @property
    def size(self) -> int:
        return self.nr_total * self.nz_total

    @property
    def shape(self) -> Tuple[int, int]:
        return self.nr_total, self.nz_total

    def total(self, axis: Axis) -> int:
        return self.nr_total if axis is Axis.R else self.nz_total

    def step(self, axis: Axis) -> float:
        return self.dr if axis is Axis.R else self.dz

    def axis_coordinates(self, axis: Axis) -> np.ndarray:
        """Cell-centre coordinates along one axis, ghosts included."""
        index = np.arange(self.total(axis), dtype=float)
        return (index - self.ghost + 0.5) * self.step(axis)

    @property
    def r(self) -> np.ndarray:
        return self.axis_coordinates(Axis.R)

    @property
    def z(self) -> np.ndarray:
        return self.axis_coordinates(Axis.Z)

    def index(self, i: int, j: int) -> int:
        # 2D -> 1D indexing: k = i * nz_total + j
        if not (0 <= i < self.nr_total and 0 <= j < self.nz_total):
            raise IndexError(f"grid point ({i}, {j}) outside {self.nr_total}x{self.nz_total} grid")
        return i * self.nz_total + j

    def unravel(self, k: int) -> Tuple[int, int]:
        if not 0 <= k < self.size:
            raise IndexError(f"linear index {k} outside grid of size {self.size}")
        return divmod(k, self.nz_total)

    def kind(self, i: int, j: int) -> PointKind:
        if i < self.ghost or j < self.ghost:
            return PointKind.GHOST
        if i == self.nr_total - 1 or j == self.nz_total - 1:
            return PointKind.BOUNDARY
        return PointKind.INTERIOR

    def kinds(self) -> np.ndarray:
        """Flattened point classification (values of PointKind)."""
        kinds = np.full(self.shape, PointKind.INTERIOR, dtype=np.int8)
        kinds[-1, :] = PointKind.BOUNDARY
        kinds[:, -1] = PointKind.BOUNDARY
        kinds[: self.ghost, :] = PointKind.GHOST
        kinds[:, : self.ghost] = PointKind.GHOST
        return kinds.ravel()

    def mirror_index(self, index: int) -> int:
        """Reflect an axis index across r=0 (or z=0); non-ghost indices map to themselves."""
        if index < self.ghost:
            return 2 * self.ghost - 1 - index
        return index

    def mirror(self, i: int, j: int) -> Tuple[int, int]:
        return self.mirror_index(i), self.mirror_index(j)

    def coordinates(self) -> Tuple[np.ndarray, np.ndarray]:
        """Flattened r and z coordinate fields."""
        r_grid, z_grid = np.meshgrid(self.r, self.z, indexing="ij")
        return r_grid.ravel(), z_grid.ravel()

    def new_field(self, fill: float = 0.0) -> np.ndarray:
        return np.full(self.size, fill, dtype=float)

    def as_2d(self, field: np.ndarray) -> np.ndarray:
        values = np.asarray(field, dtype=float)
        if values.size != self.size:
            raise ValueError(f"field has {values.size} values, grid has {self.size} points")
        return values.reshape(self.shape)
