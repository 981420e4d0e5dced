"""Sparse direct/iterative solver backend on SciPy's SuperLU.

One process-wide session: calls are sequential and the cached reordering is
shared, so it must be reset before switching to a structurally different
matrix.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
import logging
import threading
from typing import Iterator, List, Optional

import numpy as np
import scipy.sparse.linalg as spla

from services.csr import CsrOperator, StructuralError


logger = logging.getLogger(__name__)


class ReorderMode(str, Enum):
    NONE = "none"
    COMPUTE = "compute"
    REUSE = "reuse"


class RefinementMethod(str, Enum):
    NONE = "none"
    CGS = "cgs"
    BICGSTAB = "bicgstab"
    GMRES = "gmres"


_KRYLOV = {
    RefinementMethod.CGS: spla.cgs,
    RefinementMethod.BICGSTAB: spla.bicgstab,
    RefinementMethod.GMRES: spla.gmres,
}


class SolverBackendError(RuntimeError):
    """Base class for backend failures."""


class BackendUnavailableError(SolverBackendError):
    """The backend session is not initialised or has been released."""


class BackendBusyError(SolverBackendError):
    """Another thread held the session for longer than the caller would wait."""


class ReorderingUnavailableError(SolverBackendError):
    """A cached reordering was requested but none has been computed."""


class ReorderingMismatchError(StructuralError):
    """A reordering token was applied to a structurally different matrix."""


class NumericalFailure(SolverBackendError):
    """Singular factor, non-finite solution or refinement that did not converge."""

    def __init__(
        self,
        message: str,
        reorder: ReorderMode = ReorderMode.NONE,
        refinement: RefinementMethod = RefinementMethod.NONE,
        code: int = -1,
    ) -> None:
        super().__init__(f"{message} (reorder={reorder.value}, refinement={refinement.value})")
        self.reorder = reorder
        self.refinement = refinement
        self.code = code


@dataclass(frozen=True, eq=False)
class ReorderToken:
    """Fill-reducing column order for one nonzero pattern."""

    column_order: np.ndarray
    nrows: int
    nnz: int

    def matches(self, operator: CsrOperator) -> bool:
        return operator.nrows == self.nrows and operator.nnz == self.nnz


@dataclass(frozen=True)
class BackendSolution:
    solution: np.ndarray
    residual_norm: float
    iterations: int


class SuperLUBackend:
    """Direct LU (with optional fill-reducing order) plus Krylov refinement."""

    index_base = 0

    def __init__(self, rtol: float = 1e-10, maxiter: int = 500) -> None:
        self.rtol = rtol
        self.maxiter = maxiter
        self.lock = threading.Lock()
        self._owner: Optional[int] = None
        self._ready = False
        self._problem_size_hint = 0
        self._cached_token: Optional[ReorderToken] = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def held_by_current_thread(self) -> bool:
        return self._owner == threading.get_ident()

    @property
    def cached_token(self) -> Optional[ReorderToken]:
        return self._cached_token

    def initialize(self, problem_size_hint: int) -> None:
        if problem_size_hint <= 0:
            raise ValueError("problem size hint must be positive")
        self._problem_size_hint = problem_size_hint
        self._ready = True
        logger.debug("solver backend initialised for %d unknowns", problem_size_hint)

    def release(self) -> None:
        self._cached_token = None
        self._ready = False
        logger.debug("solver backend released")

    def reset_reordering(self) -> None:
        self._cached_token = None

    @contextmanager
    def session(self, problem_size_hint: int, timeout: Optional[float] = None) -> Iterator["SuperLUBackend"]:
        """Hold the process-wide session for a batch of sequential calls.

        The session is not reentrant: opening it again from the thread that
        holds it raises instead of blocking. ``timeout`` bounds the wait for a
        session held by another thread (None waits until it is released).
        """
        if self.held_by_current_thread:
            raise SolverBackendError("solver session is already open in this thread")
        acquired = self.lock.acquire() if timeout is None else self.lock.acquire(timeout=max(0.0, timeout))
        if not acquired:
            raise BackendBusyError(f"solver session still busy after {timeout:.1f}s")
        self._owner = threading.get_ident()
        try:
            self.initialize(problem_size_hint)
            try:
                yield self
            finally:
                self.release()
        finally:
            self._owner = None
            self.lock.release()

    def _require_ready(self) -> None:
        if not self._ready:
            raise BackendUnavailableError("solver backend is not initialised")

    def _check_operator(self, operator: CsrOperator) -> None:
        if operator.index_base != self.index_base:
            raise StructuralError(
                f"operator uses index base {operator.index_base}, backend expects {self.index_base}"
            )
        if operator.nrows != operator.ncols:
            raise StructuralError(f"operator is {operator.nrows}x{operator.ncols}, expected square")

    def factorize_or_reorder(self, operator: CsrOperator, mode: ReorderMode) -> Optional[ReorderToken]:
        """Return the reordering token to solve with (None for natural order)."""
        self._require_ready()
        self._check_operator(operator)
        mode = ReorderMode(mode)

        if mode is ReorderMode.NONE:
            return None

        if mode is ReorderMode.REUSE:
            token = self._cached_token
            if token is None:
                raise ReorderingUnavailableError("no cached reordering; run with reorder=compute first")
            if not token.matches(operator):
                raise ReorderingMismatchError(
                    f"cached reordering is for {token.nrows} rows / nnz={token.nnz}, "
                    f"operator has {operator.nrows} rows / nnz={operator.nnz}"
                )
            return token

        try:
            lu = spla.splu(operator.to_scipy().tocsc(), permc_spec="COLAMD")
        except RuntimeError as exc:
            raise NumericalFailure(str(exc), reorder=mode) from exc
        # Pr A Pc = LU with Pc[i, perm_c[i]] = 1, so column c of A Pc is column argsort(perm_c)[c] of A.
        token = ReorderToken(column_order=np.argsort(lu.perm_c), nrows=operator.nrows, nnz=operator.nnz)
        self._cached_token = token
        return token

    def solve(
        self,
        operator: CsrOperator,
        token: Optional[ReorderToken],
        rhs: np.ndarray,
        refinement: RefinementMethod = RefinementMethod.NONE,
    ) -> BackendSolution:
        self._require_ready()
        self._check_operator(operator)
        refinement = RefinementMethod(refinement)
        reorder = ReorderMode.NONE if token is None else ReorderMode.REUSE
        b = np.asarray(rhs, dtype=float)
        if b.shape != (operator.nrows,):
            raise ValueError(f"rhs has shape {b.shape}, operator has {operator.nrows} rows")
        if token is not None and not token.matches(operator):
            raise ReorderingMismatchError(
                f"reordering is for {token.nrows} rows / nnz={token.nnz}, "
                f"operator has {operator.nrows} rows / nnz={operator.nnz}"
            )

        matrix = operator.to_scipy()
        if token is None:
            lu = self._factor(matrix.tocsc(), reorder, refinement)
            direct = lu.solve
        else:
            order = token.column_order
            lu = self._factor(matrix[:, order].tocsc(), reorder, refinement)

            def direct(vector: np.ndarray) -> np.ndarray:
                x = np.empty_like(vector)
                x[order] = lu.solve(vector)
                return x

        x = direct(b)
        iterations = 0
        if refinement is not RefinementMethod.NONE:
            x, iterations = self._refine(matrix, b, x, direct, reorder, refinement)

        if not np.all(np.isfinite(x)):
            raise NumericalFailure("solution contains non-finite values", reorder, refinement)
        residual_norm = float(np.linalg.norm(matrix @ x - b))
        return BackendSolution(solution=x, residual_norm=residual_norm, iterations=iterations)

    def _factor(self, matrix, reorder: ReorderMode, refinement: RefinementMethod):
        try:
            return spla.splu(matrix, permc_spec="NATURAL")
        except RuntimeError as exc:
            raise NumericalFailure(str(exc), reorder, refinement) from exc

    def _refine(self, matrix, b, x0, direct, reorder: ReorderMode, refinement: RefinementMethod):
        preconditioner = spla.LinearOperator(matrix.shape, matvec=direct, dtype=float)
        steps: List[int] = []

        def count(_):
            steps.append(1)

        kwargs = {"x0": x0, "rtol": self.rtol, "maxiter": self.maxiter, "M": preconditioner, "callback": count}
        if refinement is RefinementMethod.GMRES:
            kwargs["callback_type"] = "x"
        x, info = _KRYLOV[refinement](matrix, b, **kwargs)
        if info > 0:
            raise NumericalFailure(f"{refinement.value} did not converge in {info} iterations", reorder, refinement, info)
        if info < 0:
            raise NumericalFailure(f"{refinement.value} broke down", reorder, refinement, info)
        return x, len(steps)


_backend: Optional[SuperLUBackend] = None
_backend_guard = threading.Lock()


def get_backend(rtol: float = 1e-10, maxiter: int = 500) -> SuperLUBackend:
    """Process-wide backend instance."""
    global _backend
    with _backend_guard:
        if _backend is None:
            _backend = SuperLUBackend(rtol=rtol, maxiter=maxiter)
        return _backend
