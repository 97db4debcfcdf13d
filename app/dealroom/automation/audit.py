from __future__ import annotations

import json
import logging
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from playwright.sync_api import Error as PlaywrightError

from ..fallback_policy import FallbackRunContext

LOGGER = logging.getLogger(__name__)

STATS_FILENAME = "fallback-stats.json"
AUDIT_FILENAME = "audit.json"


def append_run_log(run_dir: Path, message: str) -> None:
    run_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).isoformat()
    with (run_dir / "run.log").open("a") as f:
        f.write(f"[{timestamp}] {message}\n")


def write_json_artifact(run_dir: Path, filename: str, payload: Dict) -> Path:
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / filename
    with path.open("w") as f:
        json.dump(payload, f, indent=2, default=str)
    return path


def write_snapshot(page, directory: Optional[Path], name: str) -> Dict[str, Optional[str]]:
    """Screenshot plus HTML of the page. Audit only; failures are logged."""
    if directory is None:
        return {}
    directory.mkdir(parents=True, exist_ok=True)
    stem = f"{name}-{int(time.time() * 1000)}"
    png_path = directory / f"{stem}.png"
    html_path = directory / f"{stem}.html"
    out: Dict[str, Optional[str]] = {"png": None, "html": None}
    try:
        page.screenshot(path=str(png_path), full_page=True)
        out["png"] = str(png_path)
    except PlaywrightError as exc:
        LOGGER.warning("Snapshot screenshot failed: %s", exc)
    try:
        html_path.write_text(page.content(), encoding="utf-8")
        out["html"] = str(html_path)
    except PlaywrightError as exc:
        LOGGER.warning("Snapshot HTML failed: %s", exc)
    return out


def write_fallback_stats(run_dir: Path, ctx: FallbackRunContext, enabled: bool) -> Path:
    return write_json_artifact(run_dir, STATS_FILENAME, ctx.stats(enabled))


def write_audit(run_dir: Path, payload: Dict) -> Path:
    return write_json_artifact(run_dir, AUDIT_FILENAME, payload)


def zip_artifacts(base_dir: Path) -> Path:
    archive = shutil.make_archive(str(base_dir.parent / base_dir.name), "zip", root_dir=str(base_dir))
    return Path(archive)
