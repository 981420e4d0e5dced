"""Residual diagnostics for an assembled system."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from services.csr import CsrOperator


def evaluate_residual(operator: CsrOperator, solution: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """Return operator . solution - rhs as a new field; inputs are left untouched."""
    x = np.asarray(solution, dtype=float)
    b = np.asarray(rhs, dtype=float)
    if b.shape != (operator.nrows,):
        raise ValueError(f"rhs has shape {b.shape}, operator has {operator.nrows} rows")
    return operator.matvec(x) - b


def residual_norms(residual: np.ndarray, mask: Optional[np.ndarray] = None) -> Tuple[float, float]:
    """Max and L2 norms, optionally restricted to masked points."""
    values = np.asarray(residual, dtype=float)
    if mask is not None:
        values = values[np.asarray(mask, dtype=bool)]
    if values.size == 0:
        return 0.0, 0.0
    return float(np.abs(values).max()), float(np.linalg.norm(values))
