"""Pydantic models for the elliptic solve API and the command line."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from services.dispatcher import CONFIGURATION_LABELS


NR_INTERIOR_MIN = 32
NR_INTERIOR_MAX = 2048
NZ_INTERIOR_MIN = 32
NZ_INTERIOR_MAX = 2048
DR_MIN = 0.000976562
DR_MAX = 1.0
DZ_MIN = 0.000976562
DZ_MAX = 1.0

DEFAULT_GRID = {"order": 2, "nr_interior": 256, "nz_interior": 64, "dr": 0.03125, "dz": 0.125}


class AppBaseModel(BaseModel):
    """Base model with strict field handling."""

    model_config = ConfigDict(extra="forbid")


class Meta(AppBaseModel):
    """Client metadata for the request."""

    request_id: Optional[str] = Field(default=None, max_length=128)
    note: Optional[str] = Field(default=None, max_length=240)

    @field_validator("request_id")
    @classmethod
    def validate_request_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        cleaned = value.strip()
        if not cleaned:
            return None
        if "/" in cleaned or "\\" in cleaned or cleaned.startswith("."):
            raise ValueError("meta.request_id must not contain path separators or start with '.'")
        return cleaned


class GridSpec(AppBaseModel):
    """Finite difference order, interior point counts and spatial steps."""

    order: Literal[2, 4] = Field(default=DEFAULT_GRID["order"])
    nr_interior: int = Field(default=DEFAULT_GRID["nr_interior"], ge=NR_INTERIOR_MIN, le=NR_INTERIOR_MAX)
    nz_interior: int = Field(default=DEFAULT_GRID["nz_interior"], ge=NZ_INTERIOR_MIN, le=NZ_INTERIOR_MAX)
    dr: float = Field(default=DEFAULT_GRID["dr"], ge=DR_MIN, le=DR_MAX)
    dz: float = Field(default=DEFAULT_GRID["dz"], ge=DZ_MIN, le=DZ_MAX)


class ProblemSpec(AppBaseModel):
    """Which right-hand side and boundary condition to solve."""

    kind: Literal["brill", "manufactured"] = Field(default="brill")
    amplitude: float = Field(default=1.0)
    u_inf: float = Field(default=1.0)
    boundary: Optional[Literal["dirichlet", "robin"]] = Field(default=None)

    @field_validator("amplitude", "u_inf")
    @classmethod
    def validate_finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("problem parameters must be finite")
        return value


class SolverSpec(AppBaseModel):
    """Solve configurations to run, in order, and the symmetry parities."""

    configurations: List[str] = Field(default_factory=lambda: list(CONFIGURATION_LABELS), min_length=1)
    r_parity: Literal["even", "odd"] = Field(default="even")
    z_parity: Literal["even", "odd"] = Field(default="even")

    @field_validator("configurations")
    @classmethod
    def validate_configurations(cls, value: List[str]) -> List[str]:
        cleaned = [label.strip() for label in value]
        unknown = [label for label in cleaned if label not in CONFIGURATION_LABELS]
        if unknown:
            raise ValueError(
                f"unknown solve configuration(s) {', '.join(unknown)}; expected {', '.join(CONFIGURATION_LABELS)}"
            )
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("solver.configurations must not repeat a label")
        return cleaned


class OutputOptions(AppBaseModel):
    """Which fields to return alongside the solve records."""

    include_fields: bool = Field(default=True)
    include_residual: bool = Field(default=False)


class SolveRequest(AppBaseModel):
    """Elliptic solve request."""

    meta: Meta = Field(default_factory=Meta)
    grid: GridSpec = Field(default_factory=GridSpec)
    problem: ProblemSpec = Field(default_factory=ProblemSpec)
    solver: SolverSpec = Field(default_factory=SolverSpec)
    outputs: OutputOptions = Field(default_factory=OutputOptions)


@dataclass(frozen=True)
class ParameterCheck:
    ok: bool
    request: Optional[SolveRequest]
    errors: List[str] = field(default_factory=list)


def check_parameters(payload: Dict[str, Any]) -> ParameterCheck:
    """Validate request data without raising; errors are `location: message` strings."""
    try:
        request = SolveRequest.model_validate(payload)
    except ValidationError as exc:
        errors = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            errors.append(f"{location}: {error['msg']}" if location else error["msg"])
        return ParameterCheck(ok=False, request=None, errors=errors)
    return ParameterCheck(ok=True, request=request)


class GridSummary(AppBaseModel):
    """Derived grid and operator sizes."""

    order: int
    ghost: int
    nr_interior: int
    nz_interior: int
    nr_total: int
    nz_total: int
    dr: float
    dz: float
    unknowns: int
    nnz: int
    index_base: int


class SolveRecordModel(AppBaseModel):
    """Timing and residual of one solve configuration."""

    label: str
    reorder: str
    refinement: str
    status: Literal["ok", "failed"]
    elapsed_seconds: float
    residual_max: Optional[float] = Field(default=None)
    residual_norm: Optional[float] = Field(default=None)
    iterations: Optional[int] = Field(default=None)
    error: Optional[str] = Field(default=None)


class FieldOutputs(AppBaseModel):
    """Fields on the full grid as [nr_total][nz_total] arrays."""

    r: List[float]
    z: List[float]
    solution: List[List[float]]
    residual: Optional[List[List[float]]] = Field(default=None)
    error: Optional[List[List[float]]] = Field(default=None)


class SolveMetadata(AppBaseModel):
    """Echoed inputs and derived metadata."""

    request_id: str
    problem: ProblemSpec
    boundary: str
    solver: SolverSpec
    fields_from: Optional[str] = Field(default=None)
    error_max: Optional[float] = Field(default=None)
    warnings: List[str] = Field(default_factory=list)


class SolveResult(AppBaseModel):
    """Full solve output payload."""

    metadata: SolveMetadata
    grid: GridSummary
    records: List[SolveRecordModel]
    fields: Optional[FieldOutputs] = Field(default=None)


class StorageInfo(AppBaseModel):
    """Storage information for large results."""

    backend: str
    url: Optional[str] = Field(default=None)
    bucket: Optional[str] = Field(default=None)
    key: Optional[str] = Field(default=None)
    local_path: Optional[str] = Field(default=None)
    expires_in: Optional[int] = Field(default=None)


class SolveResponse(AppBaseModel):
    """API response for solve requests."""

    request_id: str
    stored: bool
    size_bytes: int
    result: Optional[SolveResult] = Field(default=None)
    result_url: Optional[str] = Field(default=None)
    storage: StorageInfo
