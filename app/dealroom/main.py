from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Dict

import anyio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .automation.audit import AUDIT_FILENAME, append_run_log
from .automation.run_capture import run_capture
from .config import CONFIG
from .field_registry import field_registry_payload
from .platforms import platforms_payload
from .schemas import CaptureRequest

RUNS_DIR = CONFIG.runs_dir

logging.basicConfig(level=CONFIG.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
LOGGER = logging.getLogger("dealroom")

app = FastAPI(title="Deal Room Capture")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/field_registry")
async def field_registry() -> Dict[str, object]:
    return field_registry_payload()


@app.get("/platforms")
async def platforms() -> Dict[str, object]:
    return platforms_payload()


def _create_run_dir() -> Path:
    run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
    run_dir = RUNS_DIR / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


@app.get("/runs/{run_id}")
async def run_audit(run_id: str):
    audit_path = RUNS_DIR / Path(run_id).name / AUDIT_FILENAME
    if not audit_path.exists():
        return JSONResponse({"error": f"No audit for run {run_id}"}, status_code=404)
    return JSONResponse(json.loads(audit_path.read_text(encoding="utf-8")))


@app.post("/capture")
async def capture(request: CaptureRequest):
    if not request.url.lower().startswith(("http://", "https://")):
        return JSONResponse({"error": "url must be http(s)"}, status_code=400)
    run_dir = _create_run_dir()
    append_run_log(run_dir, f"Capture requested for {request.url}")
    try:
        summary = await anyio.to_thread.run_sync(
            partial(
                run_capture,
                request.url,
                run_dir,
                headless=request.headless,
                max_steps=request.max_steps,
                skip_sensitive=request.skip_sensitive,
                only_required=request.only_required,
                aggressive=request.aggressive,
                form_data=request.form_data or None,
            )
        )
        return JSONResponse({"run_id": run_dir.name, "summary": summary})
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Capture crashed for %s", request.url)
        append_run_log(run_dir, f"Capture failed: {exc}")
        summary = {"url": request.url, "status": "error", "downloads": [], "errors": [str(exc)]}
        return JSONResponse({"run_id": run_dir.name, "summary": summary}, status_code=500)
