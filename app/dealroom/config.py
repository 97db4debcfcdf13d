from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).parent
TARGET_URL_ENV = "DEALROOM_TARGET_URL"


def _load_dotenv() -> None:
    repo_root = Path(__file__).resolve().parents[2]
    candidates = [repo_root / ".env", Path.cwd() / ".env"]
    for env_path in candidates:
        if not env_path.exists():
            continue
        try:
            for line in env_path.read_text().splitlines():
                stripped = line.strip()
                if not stripped or stripped.startswith("#") or "=" not in stripped:
                    continue
                key, value = stripped.split("=", 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")
                if key and key not in os.environ:
                    os.environ[key] = value
        except OSError:
            continue
        break


_load_dotenv()


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_path(name: str) -> Optional[Path]:
    raw = os.getenv(name, "").strip()
    return Path(raw).expanduser() if raw else None


@dataclass(frozen=True)
class BrowserConfig:
    headless: bool = env_flag("DEALROOM_HEADLESS", True)
    slow_mo_ms: int = _env_int("DEALROOM_SLOW_MO_MS", 0)
    nav_timeout_ms: int = _env_int("DEALROOM_NAV_TIMEOUT_MS", 45000)
    action_timeout_ms: int = _env_int("DEALROOM_ACTION_TIMEOUT_MS", 15000)


@dataclass(frozen=True)
class AutofillConfig:
    max_steps: int = _env_int("DEALROOM_MAX_STEPS", 3)
    skip_sensitive: bool = env_flag("DEALROOM_SKIP_SENSITIVE", True)
    only_required: bool = env_flag("DEALROOM_ONLY_REQUIRED", False)
    aggressive: bool = env_flag("DEALROOM_AGGRESSIVE", False)
    opt_in_marketing: bool = env_flag("DEALROOM_OPT_IN_MARKETING", False)
    multi_language: bool = env_flag("DEALROOM_CONSENT_MULTI_LANGUAGE", False)
    formdata_path: Optional[Path] = _env_path("DEALROOM_FORMDATA_PATH")
    platform_config_path: Optional[Path] = _env_path("DEALROOM_PLATFORM_CONFIG_PATH")


@dataclass(frozen=True)
class DownloadConfig:
    poll_ms: int = _env_int("DEALROOM_DOWNLOAD_POLL_MS", 400)
    appear_timeout_ms: int = _env_int("DEALROOM_DOWNLOAD_APPEAR_TIMEOUT_MS", 60000)
    stable_timeout_ms: int = _env_int("DEALROOM_DOWNLOAD_STABLE_TIMEOUT_MS", 120000)
    stable_window_ms: int = _env_int("DEALROOM_DOWNLOAD_STABLE_WINDOW_MS", 1500)
    stable_polls: int = _env_int("DEALROOM_DOWNLOAD_STABLE_POLLS", 3)
    # Browsers rename temp files on completion; a temp candidate must idle longer.
    temp_stable_window_ms: int = _env_int("DEALROOM_DOWNLOAD_TEMP_STABLE_WINDOW_MS", 5000)
    event_timeout_ms: int = _env_int("DEALROOM_DOWNLOAD_EVENT_TIMEOUT_MS", 60000)
    os_download_dir: Path = _env_path("DEALROOM_DOWNLOAD_DIR") or Path.home() / "Downloads"
    watch_os_downloads: bool = env_flag("DEALROOM_WATCH_OS_DOWNLOADS", True)
    force_zip_extension: bool = env_flag("DEALROOM_FORCE_ZIP_EXTENSION", False)


@dataclass(frozen=True)
class FallbackConfig:
    global_disable: bool = env_flag("DEALROOM_ASSIST_GLOBAL_DISABLE", False)
    hosts_path: Optional[Path] = _env_path("DEALROOM_FALLBACK_HOSTS_PATH")
    default_max_steps: int = _env_int("DEALROOM_ASSIST_MAX_STEPS", 3)


@dataclass(frozen=True)
class AppConfig:
    log_level: str = os.getenv("DEALROOM_LOG_LEVEL", "INFO")
    runs_dir: Path = _env_path("DEALROOM_RUNS_DIR") or BASE_DIR / "runs"
    zip_artifacts: bool = env_flag("DEALROOM_ZIP_ARTIFACTS", False)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    autofill: AutofillConfig = field(default_factory=AutofillConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)


CONFIG = AppConfig()


def resolve_target_url(override: Optional[str] = None) -> Optional[str]:
    if override:
        return override
    return os.getenv(TARGET_URL_ENV) or None
