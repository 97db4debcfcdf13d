"""Failure taxonomy for the capture engine.

Policy failures (fallback disabled, budget exhausted) are always raised to the
caller. Per-element DOM probe failures never reach this module; they are
logged and treated as "no match" where they happen.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class CaptureEngineError(Exception):
    """Base exception for all engine failures."""

    reason = "capture_engine_error"

    def __init__(self, message: str = "", context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        super().__init__(message or self.reason)


class ValidationBlocked(CaptureEngineError):
    """The page reports validation errors; advancing would submit an incomplete form."""

    reason = "validation_blocked"

    def __init__(self, issues: List[Dict[str, Any]], message: str = ""):
        self.issues = list(issues)
        summary = ", ".join(
            str(issue.get("label") or issue.get("kind") or "?") for issue in self.issues[:5]
        )
        super().__init__(message or f"Validation errors on page: {summary}", {"issues": self.issues})


class AdvanceNotFound(CaptureEngineError):
    """No submit/continue control matched on the page."""

    reason = "advance_not_found"


class DownloadError(CaptureEngineError):
    reason = "download_error"


class CaptureTimeout(DownloadError):
    """Neither the event channel nor any filesystem channel resolved in time."""

    reason = "capture_timeout"


class StabilizationTimeout(DownloadError):
    """A file appeared but never stopped growing."""

    reason = "stabilization_timeout"

    def __init__(self, path: str, last_size: int, message: str = ""):
        self.path = path
        self.last_size = last_size
        super().__init__(
            message or f"File never stabilized: {path} (last size {last_size} bytes)",
            {"path": path, "last_size": last_size},
        )


class StagingError(DownloadError):
    reason = "staging_error"


class FallbackError(CaptureEngineError):
    reason = "fallback_error"


class FallbackDisabled(FallbackError):
    """Assisted fallback is switched off globally or for this host."""

    reason = "fallback_disabled"


class FallbackBudgetExceeded(FallbackError):
    """The per-run step budget for assisted fallback is spent."""

    reason = "fallback_budget_exceeded"

    def __init__(self, steps_used: int, max_steps: int):
        self.steps_used = steps_used
        self.max_steps = max_steps
        super().__init__(
            f"Fallback budget exhausted ({steps_used}/{max_steps} steps used)",
            {"steps_used": steps_used, "max_steps": max_steps},
        )


class AssistUnavailable(FallbackError):
    """The assisted action adapter could not be reached or returned nothing usable."""

    reason = "assist_unavailable"
