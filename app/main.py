"""FastAPI entrypoint for the axisymmetric elliptic solver.

Run locally with:
    uvicorn main:app --app-dir app --reload
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from config import settings
from schemas import SolveRequest, SolveResponse, StorageInfo
from services.compute_elliptic import run_elliptic_solve
from services.csr import StructuralError
from services.result_store import build_store
from services.solver_backend import BackendBusyError, BackendUnavailableError


logger = logging.getLogger(__name__)

app = FastAPI(title="Axisymmetric Elliptic Solver API", version="0.1.0")
store = build_store()


def _estimate_json_size(payload: dict) -> tuple[int, bytes]:
    """Estimate JSON payload size in bytes and return the encoded payload."""
    json_bytes = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
    return len(json_bytes), json_bytes


SOLVE_MAX_CONCURRENCY = max(1, int(os.getenv("SOLVE_MAX_CONCURRENCY", "1")))
SOLVE_QUEUE_WAIT_SECONDS = max(0.1, float(os.getenv("SOLVE_QUEUE_WAIT_SECONDS", "8")))
SOLVE_SEMAPHORE = asyncio.Semaphore(SOLVE_MAX_CONCURRENCY)
SOLVE_TIMEOUT_SECONDS = float(os.getenv("SOLVE_TIMEOUT_SECONDS", "120"))


@app.post("/solve", response_model=SolveResponse)
@app.post("/api/solve", response_model=SolveResponse)
async def solve(request: SolveRequest) -> SolveResponse:
    """Assemble the operator, run the requested solve configurations and return the records."""
    try:
        await asyncio.wait_for(SOLVE_SEMAPHORE.acquire(), timeout=SOLVE_QUEUE_WAIT_SECONDS)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=429,
            detail=(
                "Server busy. "
                f"Max concurrency={SOLVE_MAX_CONCURRENCY}, queue wait>{SOLVE_QUEUE_WAIT_SECONDS:.0f}s. "
                "Try again in a moment."
            ),
        )

    try:
        request_id = request.meta.request_id or str(uuid4())
        try:
            run = await asyncio.wait_for(
                asyncio.to_thread(run_elliptic_solve, request, request_id),
                timeout=SOLVE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            raise HTTPException(
                status_code=504,
                detail=f"Solve timeout (>{SOLVE_TIMEOUT_SECONDS:.0f}s). Reduce the grid size.",
            )
        except BackendBusyError as exc:
            raise HTTPException(status_code=503, detail=f"Solver busy: {exc}") from exc
        except (StructuralError, BackendUnavailableError) as exc:
            logger.error("request %s: operator or backend failure: %s", request_id, exc)
            raise HTTPException(status_code=500, detail=f"Solver failure: {exc}") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        result = run.result
        payload = result.model_dump(mode="json", exclude_none=True)
        size_bytes, json_bytes = _estimate_json_size(payload)

        if size_bytes > settings.inline_max_bytes:
            stored = store.store_bytes(json_bytes, request_id=request_id)
            storage = StorageInfo(
                backend=stored.backend,
                url=stored.url,
                bucket=stored.bucket,
                key=stored.key,
                local_path=stored.local_path,
                expires_in=settings.presign_expiry_seconds if stored.backend == "s3" else None,
            )
            return SolveResponse(
                request_id=request_id,
                stored=True,
                size_bytes=size_bytes,
                result=None,
                result_url=stored.url,
                storage=storage,
            )

        storage = StorageInfo(backend="inline", url=None, bucket=None, key=None, local_path=None, expires_in=None)
        return SolveResponse(
            request_id=request_id,
            stored=False,
            size_bytes=size_bytes,
            result=result,
            result_url=None,
            storage=storage,
        )
    finally:
        SOLVE_SEMAPHORE.release()


def _resolve_result_path(result_path: str) -> Path:
    base_dir = Path(store.local_dir).resolve()
    candidate = (base_dir / result_path).resolve()
    try:
        candidate.relative_to(base_dir)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid result path.")
    if not candidate.is_file():
        raise HTTPException(status_code=404, detail="Result not found.")
    return candidate


@app.get("/results/{result_path:path}")
@app.get("/api/results/{result_path:path}")
def get_result(result_path: str) -> FileResponse:
    file_path = _resolve_result_path(result_path)
    return FileResponse(file_path, media_type="application/json", filename=file_path.name)
