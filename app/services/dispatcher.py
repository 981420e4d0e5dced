"""Solve strategy dispatch: one backend call per configuration, timed and checked."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Iterable, List, Optional, Sequence

import numpy as np

from services.assembler import Assembly, BoundaryCondition
from services.csr import CsrOperator
from services.grid import Grid, PointKind
from services.residual import evaluate_residual, residual_norms
from services.solver_backend import (
    NumericalFailure,
    RefinementMethod,
    ReorderingUnavailableError,
    ReorderMode,
    ReorderToken,
    SuperLUBackend,
    get_backend,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolveConfiguration:
    label: str
    reorder: ReorderMode
    refinement: RefinementMethod = RefinementMethod.NONE
    description: str = ""


BENCHMARK_CONFIGURATIONS = (
    SolveConfiguration("normal", ReorderMode.NONE, RefinementMethod.NONE, "normal solver"),
    SolveConfiguration("compute_permutation", ReorderMode.COMPUTE, RefinementMethod.NONE, "permutation calculation"),
    SolveConfiguration("with_permutation", ReorderMode.REUSE, RefinementMethod.NONE, "solver with permutation"),
    SolveConfiguration("cgs", ReorderMode.NONE, RefinementMethod.CGS, "solver with CGS"),
    SolveConfiguration("cgs_with_permutation", ReorderMode.REUSE, RefinementMethod.CGS, "solver with CGS and permutation"),
)

CONFIGURATION_LABELS = tuple(configuration.label for configuration in BENCHMARK_CONFIGURATIONS)


def configuration_by_label(label: str) -> SolveConfiguration:
    for configuration in BENCHMARK_CONFIGURATIONS:
        if configuration.label == label:
            return configuration
    raise ValueError(f"unknown solve configuration '{label}', expected one of {', '.join(CONFIGURATION_LABELS)}")


@dataclass(frozen=True)
class SolveRecord:
    label: str
    reorder: str
    refinement: str
    status: str
    elapsed_seconds: float
    residual_max: Optional[float] = None
    residual_norm: Optional[float] = None
    iterations: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(frozen=True, eq=False)
class SolveOutcome:
    configuration: SolveConfiguration
    record: SolveRecord
    solution: Optional[np.ndarray] = None
    residual: Optional[np.ndarray] = None
    token: Optional[ReorderToken] = None


def build_rhs(
    grid: Grid,
    assembly: Assembly,
    source: np.ndarray,
    boundary_values: np.ndarray,
    u_inf: float = 1.0,
) -> np.ndarray:
    """Right-hand side: source inside, pinned values or u_inf on the boundary, zero on ghosts."""
    source = np.asarray(source, dtype=float)
    boundary_values = np.asarray(boundary_values, dtype=float)
    if source.shape != (grid.size,) or boundary_values.shape != (grid.size,):
        raise ValueError(f"source and boundary fields must have {grid.size} values")

    kinds = assembly.kinds
    rhs = grid.new_field()
    interior = kinds == PointKind.INTERIOR
    boundary = kinds == PointKind.BOUNDARY
    rhs[interior] = source[interior]
    if assembly.boundary is BoundaryCondition.DIRICHLET:
        rhs[boundary] = boundary_values[boundary]
    else:
        rhs[boundary] = u_inf
    if assembly.lift_rows.size:
        np.subtract.at(rhs, assembly.lift_rows, assembly.lift_values * boundary_values[assembly.lift_columns])
    return rhs


def _failed_record(configuration: SolveConfiguration, elapsed: float, error: Exception) -> SolveRecord:
    return SolveRecord(
        label=configuration.label,
        reorder=configuration.reorder.value,
        refinement=configuration.refinement.value,
        status="failed",
        elapsed_seconds=elapsed,
        error=str(error),
    )


class SolveDispatcher:
    """Runs solve configurations against the shared backend session."""

    def __init__(self, backend: Optional[SuperLUBackend] = None, wait_seconds: Optional[float] = None) -> None:
        self.backend = backend or get_backend()
        self.wait_seconds = wait_seconds

    def solve(
        self,
        operator: CsrOperator,
        rhs: np.ndarray,
        configuration: SolveConfiguration,
        token: Optional[ReorderToken] = None,
    ) -> SolveOutcome:
        """One backend call; numerical failures propagate as NumericalFailure."""
        start = time.perf_counter()
        if token is None or configuration.reorder is ReorderMode.COMPUTE:
            token = self.backend.factorize_or_reorder(operator, configuration.reorder)
        elif configuration.reorder is ReorderMode.NONE:
            token = None
        result = self.backend.solve(operator, token, rhs, configuration.refinement)
        elapsed = time.perf_counter() - start

        residual = evaluate_residual(operator, result.solution, rhs)
        residual_max, _ = residual_norms(residual)
        record = SolveRecord(
            label=configuration.label,
            reorder=configuration.reorder.value,
            refinement=configuration.refinement.value,
            status="ok",
            elapsed_seconds=elapsed,
            residual_max=residual_max,
            residual_norm=result.residual_norm,
            iterations=result.iterations,
        )
        return SolveOutcome(configuration, record, result.solution, residual, token)

    def run(
        self,
        operator: CsrOperator,
        rhs: np.ndarray,
        configurations: Iterable[SolveConfiguration] = BENCHMARK_CONFIGURATIONS,
    ) -> List[SolveOutcome]:
        """Run every configuration in one session; a numerical failure only fails its own record.

        A session the calling thread already holds is reused as is.
        """
        if self.backend.held_by_current_thread:
            return self._run_configurations(operator, rhs, configurations)
        with self.backend.session(operator.nrows, timeout=self.wait_seconds):
            return self._run_configurations(operator, rhs, configurations)

    def _run_configurations(
        self,
        operator: CsrOperator,
        rhs: np.ndarray,
        configurations: Iterable[SolveConfiguration],
    ) -> List[SolveOutcome]:
        outcomes: List[SolveOutcome] = []
        for configuration in configurations:
            logger.info("solving with configuration '%s' (%s)", configuration.label, configuration.description)
            start = time.perf_counter()
            try:
                outcome = self.solve(operator, rhs, configuration)
            except (NumericalFailure, ReorderingUnavailableError) as exc:
                elapsed = time.perf_counter() - start
                logger.warning("configuration '%s' failed: %s", configuration.label, exc)
                outcomes.append(SolveOutcome(configuration, _failed_record(configuration, elapsed, exc)))
                continue
            logger.info(
                "configuration '%s' took %.3e s (residual max %.3e)",
                configuration.label,
                outcome.record.elapsed_seconds,
                outcome.record.residual_max,
            )
            outcomes.append(outcome)
        return outcomes


def last_successful(outcomes: Sequence[SolveOutcome]) -> Optional[SolveOutcome]:
    for outcome in reversed(outcomes):
        if outcome.record.ok:
            return outcome
    return None
