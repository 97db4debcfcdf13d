from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import ValidationError

from .config import CONFIG, env_flag
from .pipeline.normalize import normalize_host
from .schemas import HostFallbackConfig

LOGGER = logging.getLogger(__name__)

KILL_SWITCH_ENV = "DEALROOM_ASSIST_GLOBAL_DISABLE"

# Assisted fallback stays off unless a host is listed here as enabled.
DEFAULT_HOSTS = {
    "invest.jll.com": HostFallbackConfig(enabled=True, budget_tokens=4000, step_timeout_ms=20000, max_steps_per_run=6),
    "buildout.com": HostFallbackConfig(enabled=True, budget_tokens=3000, step_timeout_ms=15000, max_steps_per_run=5),
    "crexi.com": HostFallbackConfig(enabled=True, budget_tokens=3000, step_timeout_ms=15000, max_steps_per_run=5),
    "example.badforms.com": HostFallbackConfig(enabled=False, budget_tokens=4000, step_timeout_ms=20000),
    "localhost": HostFallbackConfig(enabled=False, budget_tokens=2000, step_timeout_ms=10000, max_steps_per_run=3),
    "": HostFallbackConfig(enabled=False, budget_tokens=2000, step_timeout_ms=10000, max_steps_per_run=3),
}


@dataclass
class FallbackRunContext:
    """Per-job assisted fallback budget. Only the escalator mutates it."""

    max_steps: int
    artifacts_dir: Optional[Path] = None
    steps_used: int = 0
    host: str = ""

    @property
    def remaining(self) -> int:
        return max(self.max_steps - self.steps_used, 0)

    def exhausted(self) -> bool:
        return self.steps_used >= self.max_steps

    def record_attempt(self) -> None:
        if self.exhausted():
            raise RuntimeError("steps_used would exceed max_steps")
        self.steps_used += 1

    def stats(self, enabled: bool) -> dict:
        return {
            "host": self.host,
            "enabled": enabled,
            "steps_used": self.steps_used,
            "max_steps": self.max_steps,
            "artifacts_dir": str(self.artifacts_dir) if self.artifacts_dir else None,
        }


def host_from_url(url: Optional[str]) -> str:
    try:
        return normalize_host(urlsplit(url or "").hostname or "")
    except ValueError:
        return ""


def _load_host_overrides(path: Optional[Path]) -> dict:
    if not path:
        return {}
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Failed to load fallback host table %s: %s", path, exc)
        return {}
    out = {}
    for host, cfg in (raw.items() if isinstance(raw, dict) else []):
        try:
            out[normalize_host(host)] = HostFallbackConfig.model_validate(cfg)
        except ValidationError as exc:
            LOGGER.warning("Skipping invalid fallback config for %s: %s", host, exc)
    return out


@lru_cache(maxsize=1)
def host_table() -> Mapping[str, HostFallbackConfig]:
    table = dict(DEFAULT_HOSTS)
    table.update(_load_host_overrides(CONFIG.fallback.hosts_path))
    return MappingProxyType(table)


def fallback_config_for(
    host: str,
    table: Optional[Mapping[str, HostFallbackConfig]] = None,
) -> Optional[HostFallbackConfig]:
    table = host_table() if table is None else table
    normalized = normalize_host(host)
    if normalized in table:
        return table[normalized]
    if normalized.startswith("www.") and normalized[4:] in table:
        return table[normalized[4:]]
    return None


def assist_globally_disabled() -> bool:
    return env_flag(KILL_SWITCH_ENV, CONFIG.fallback.global_disable)


def make_fallback_context(
    url: str,
    run_dir: Path,
    table: Optional[Mapping[str, HostFallbackConfig]] = None,
) -> Tuple[FallbackRunContext, Optional[HostFallbackConfig]]:
    host = host_from_url(url)
    cfg = fallback_config_for(host, table)
    max_steps = cfg.max_steps_per_run if cfg else CONFIG.fallback.default_max_steps
    ctx = FallbackRunContext(max_steps=max_steps, artifacts_dir=run_dir / "assist", host=host)
    return ctx, cfg
