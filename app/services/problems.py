"""Problem presets: Brill-wave initial data and a manufactured Gaussian."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from services.assembler import BoundaryCondition
from services.grid import Grid


FieldFunction = Callable[[np.ndarray, np.ndarray], np.ndarray]

PROBLEM_KINDS = ("brill", "manufactured")


def brill_linear_term(r: np.ndarray, z: np.ndarray, amplitude: float = 1.0) -> np.ndarray:
    """s = (q_rr + q_zz) / 4 for the Brill seed q = a r^2 exp(-r^2 - z^2)."""
    r2 = r * r
    return amplitude * np.exp(-r2 - z * z) * (0.5 + r2 * (-3.0 + r2 + z * z))


def gaussian(r: np.ndarray, z: np.ndarray) -> np.ndarray:
    return np.exp(-r * r - z * z)


def gaussian_laplacian(r: np.ndarray, z: np.ndarray) -> np.ndarray:
    """u_rr + u_r/r + u_zz for u = exp(-r^2 - z^2)."""
    return (4.0 * r * r + 4.0 * z * z - 6.0) * gaussian(r, z)


@dataclass(frozen=True)
class ProblemFields:
    r: np.ndarray
    z: np.ndarray
    linear_term: np.ndarray
    source: np.ndarray
    boundary_values: np.ndarray
    exact: Optional[np.ndarray]


@dataclass(frozen=True)
class Problem:
    """Laplacian(u) + s u = f with an outer boundary condition."""

    name: str
    boundary: BoundaryCondition
    u_inf: float
    linear_term: FieldFunction
    source: FieldFunction
    boundary_value: FieldFunction
    exact: Optional[FieldFunction] = None

    def fields(self, grid: Grid) -> ProblemFields:
        r, z = grid.coordinates()
        return ProblemFields(
            r=r,
            z=z,
            linear_term=np.asarray(self.linear_term(r, z), dtype=float),
            source=np.asarray(self.source(r, z), dtype=float),
            boundary_values=np.asarray(self.boundary_value(r, z), dtype=float),
            exact=None if self.exact is None else np.asarray(self.exact(r, z), dtype=float),
        )


def brill_wave(
    amplitude: float = 1.0,
    u_inf: float = 1.0,
    boundary: BoundaryCondition = BoundaryCondition.ROBIN,
) -> Problem:
    return Problem(
        name="brill",
        boundary=BoundaryCondition(boundary),
        u_inf=u_inf,
        linear_term=lambda r, z: brill_linear_term(r, z, amplitude),
        source=lambda r, z: np.zeros_like(r),
        boundary_value=lambda r, z: np.full_like(r, u_inf),
    )


def manufactured_gaussian(
    amplitude: float = 1.0,
    boundary: BoundaryCondition = BoundaryCondition.DIRICHLET,
) -> Problem:
    """Exact solution exp(-r^2 - z^2); the source is built to match it."""

    def source(r: np.ndarray, z: np.ndarray) -> np.ndarray:
        return gaussian_laplacian(r, z) + brill_linear_term(r, z, amplitude) * gaussian(r, z)

    return Problem(
        name="manufactured",
        boundary=BoundaryCondition(boundary),
        u_inf=0.0,
        linear_term=lambda r, z: brill_linear_term(r, z, amplitude),
        source=source,
        boundary_value=gaussian,
        exact=gaussian,
    )


def build_problem(
    kind: str,
    amplitude: float = 1.0,
    u_inf: float = 1.0,
    boundary: Optional[str] = None,
) -> Problem:
    if kind == "brill":
        return brill_wave(amplitude, u_inf, BoundaryCondition(boundary or BoundaryCondition.ROBIN))
    if kind == "manufactured":
        return manufactured_gaussian(amplitude, BoundaryCondition(boundary or BoundaryCondition.DIRICHLET))
    raise ValueError(f"unknown problem '{kind}', expected one of {', '.join(PROBLEM_KINDS)}")
