"""Plain-text field files and output directory handling."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from services.grid import Grid


logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

FIELD_FILES = ("r.asc", "z.asc", "s.asc", "f.asc", "u.asc", "res.asc")


class OutputDirectoryError(OSError):
    """The output directory cannot be created or written."""


@dataclass(frozen=True)
class DirectoryCheck:
    path: str
    exists: bool
    is_dir: bool
    writable: bool

    @property
    def usable(self) -> bool:
        return self.exists and self.is_dir and self.writable


@dataclass(frozen=True)
class FieldFile:
    nr_total: int
    nz_total: int
    r: np.ndarray
    z: np.ndarray
    values: np.ndarray


def write_field(path: PathLike, grid: Grid, r: np.ndarray, z: np.ndarray, values: np.ndarray) -> Path:
    """Write `nr_total nz_total` then one `r z value` line per point in row-major order."""
    columns = [np.asarray(a, dtype=float).ravel() for a in (r, z, values)]
    for column in columns:
        if column.size != grid.size:
            raise ValueError(f"field has {column.size} values, grid has {grid.size} points")
    target = Path(path)
    data = np.column_stack(columns)
    with target.open("w", encoding="ascii") as handle:
        handle.write(f"{grid.nr_total} {grid.nz_total}\n")
        np.savetxt(handle, data, fmt="%.16e")
    logger.debug("wrote %s (%d points)", target, grid.size)
    return target


def read_field(path: PathLike) -> FieldFile:
    with Path(path).open("r", encoding="ascii") as handle:
        header = handle.readline().split()
        if len(header) != 2:
            raise ValueError(f"{path}: first line must hold the grid dimensions")
        nr_total, nz_total = int(header[0]), int(header[1])
        data = np.loadtxt(handle, dtype=float, ndmin=2)
    if data.shape != (nr_total * nz_total, 3):
        raise ValueError(f"{path}: expected {nr_total * nz_total} rows of 3 values, found {data.shape}")
    return FieldFile(nr_total=nr_total, nz_total=nz_total, r=data[:, 0], z=data[:, 1], values=data[:, 2])


def inspect_output_directory(path: PathLike) -> DirectoryCheck:
    """Report on a directory without touching the file system."""
    target = Path(path)
    exists = target.exists()
    is_dir = target.is_dir()
    writable = is_dir and os.access(target, os.W_OK | os.X_OK)
    return DirectoryCheck(path=str(target), exists=exists, is_dir=is_dir, writable=writable)


def prepare_output_directory(path: PathLike) -> Tuple[Path, bool]:
    """Create the directory if needed; returns the path and whether it already existed."""
    check = inspect_output_directory(path)
    target = Path(check.path)
    if check.exists and not check.is_dir:
        raise OutputDirectoryError(f"{target} exists and is not a directory")
    if not check.exists:
        try:
            target.mkdir(parents=True)
        except OSError as exc:
            raise OutputDirectoryError(f"could not create {target}: {exc}") from exc
        logger.info("created output directory %s", target)
    if not os.access(target, os.W_OK | os.X_OK):
        raise OutputDirectoryError(f"{target} is not writable")
    return target, check.exists
