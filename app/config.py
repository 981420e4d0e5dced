"""App configuration for solver defaults, storage and response sizing."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import tempfile


@dataclass(frozen=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    output_dir: str
    s3_bucket: str
    s3_prefix: str
    inline_max_bytes: int
    presign_expiry_seconds: int
    local_storage_dir: str
    solver_rtol: float
    solver_maxiter: int
    assembly_workers: int
    backend_wait_seconds: float
    log_level: str
    interactive: bool

    @staticmethod
    def from_env() -> "Settings":
        """Create settings from environment variables with defaults."""
        def to_bool(value: str | None, default: bool) -> bool:
            if value is None:
                return default
            normalized = value.strip().lower()
            if normalized in {"1", "true", "yes", "on"}:
                return True
            if normalized in {"0", "false", "no", "off"}:
                return False
            return default

        output_dir = os.getenv("ELLSOLVE_OUTPUT_DIR", "output").strip() or "output"
        s3_bucket = os.getenv("S3_BUCKET", "").strip()
        s3_prefix = os.getenv("S3_PREFIX", "ellsolve-results/").strip()
        inline_max_bytes = int(os.getenv("INLINE_MAX_BYTES", "200000"))
        presign_expiry_seconds = int(os.getenv("PRESIGN_EXPIRY_SECONDS", "3600"))
        default_local_dir = os.path.join(tempfile.gettempdir(), "ellsolve_results")
        local_storage_dir = os.getenv("LOCAL_STORAGE_DIR", default_local_dir)
        solver_rtol = float(os.getenv("ELLSOLVE_SOLVER_RTOL", "1e-10"))
        solver_maxiter = max(1, int(os.getenv("ELLSOLVE_SOLVER_MAXITER", "500")))
        assembly_workers = max(1, int(os.getenv("ELLSOLVE_ASSEMBLY_WORKERS", "1")))
        backend_wait_seconds = max(0.0, float(os.getenv("ELLSOLVE_BACKEND_WAIT_SECONDS", "60")))
        log_level = os.getenv("ELLSOLVE_LOG_LEVEL", "INFO").strip().upper() or "INFO"
        # Unknown names map to "Level NAME" rather than a number.
        if not isinstance(logging.getLevelName(log_level), int):
            log_level = "INFO"
        interactive = to_bool(os.getenv("ELLSOLVE_INTERACTIVE"), True)
        return Settings(
            output_dir=output_dir,
            s3_bucket=s3_bucket,
            s3_prefix=s3_prefix,
            inline_max_bytes=inline_max_bytes,
            presign_expiry_seconds=presign_expiry_seconds,
            local_storage_dir=local_storage_dir,
            solver_rtol=solver_rtol,
            solver_maxiter=solver_maxiter,
            assembly_workers=assembly_workers,
            backend_wait_seconds=backend_wait_seconds,
            log_level=log_level,
            interactive=interactive,
        )


settings = Settings.from_env()
