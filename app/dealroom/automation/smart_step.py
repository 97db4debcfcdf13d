"""Deterministic-first fill and submit steps with a gated assisted fallback.

The assisted path is the only place the engine takes a non-deterministic,
cost-bearing action. It runs only when deterministic strategies failed, the
global kill switch is off, the page's host is enabled in the fallback table,
and the run's step budget has room. Every delegation is bracketed by
before/after snapshots and counted whether or not it succeeds.
"""
from __future__ import annotations

import logging
import re
import weakref
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError

from ..errors import FallbackBudgetExceeded, FallbackDisabled
from ..fallback_policy import FallbackRunContext, assist_globally_disabled, fallback_config_for, host_from_url
from ..field_registry import CanonicalKey
from ..pipeline.classify import classify_text
from ..pipeline.prompts import SUBMIT_INSTRUCTION, fill_instruction
from ..schemas import HostFallbackConfig
from .assist import ActionAdapter, LLMActionAdapter
from .audit import write_snapshot
from .dom import first_visible, iter_frames

LOGGER = logging.getLogger(__name__)

SUBMIT_BUTTON_RE = re.compile(r"submit|continue|next|apply|download", re.IGNORECASE)
SUBMIT_LINK_RE = re.compile(r"download|export", re.IGNORECASE)


def _css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _fill_strategies(scope, label: str, key: Optional[CanonicalKey]) -> List[Tuple[str, Callable]]:
    strategies: List[Tuple[str, Callable]] = [
        ("label_exact", lambda: scope.get_by_label(label, exact=True)),
        ("placeholder", lambda: scope.get_by_placeholder(label)),
        ("role_textbox", lambda: scope.get_by_role("textbox", name=label)),
        ("aria_label", lambda: scope.locator(f'input[aria-label="{_css_string(label)}"], textarea[aria-label="{_css_string(label)}"]')),
    ]
    if key is not None:
        strategies.append(("classified_label", lambda: _classified_label_locator(scope, key)))
    return strategies


def _classified_label_locator(scope, key: CanonicalKey):
    try:
        texts = scope.locator("label").all_inner_texts()
    except PlaywrightError:
        return None
    for text in texts:
        text = text.strip()
        if text and classify_text(text) == key:
            return scope.get_by_label(text, exact=True)
    return None


def deterministic_fill(page, label: str, value: str, key: Optional[CanonicalKey] = None) -> Optional[str]:
    for frame in iter_frames(page):
        for name, build in _fill_strategies(frame, label, key):
            try:
                locator = build()
            except PlaywrightError:
                continue
            if locator is None:
                continue
            target = first_visible(locator)
            if target is None:
                continue
            try:
                target.fill(value, timeout=2500)
            except PlaywrightError as exc:
                LOGGER.debug("Fill strategy %s failed for %r: %s", name, label, exc)
                continue
            return name
    return None


def deterministic_click_submit(page) -> Optional[str]:
    strategies = [
        ("role_button", lambda scope: scope.get_by_role("button", name=SUBMIT_BUTTON_RE)),
        ("submit_selector", lambda scope: scope.locator('button[type="submit"], input[type="submit"]')),
        ("role_link", lambda scope: scope.get_by_role("link", name=SUBMIT_LINK_RE)),
    ]
    for name, build in strategies:
        for frame in iter_frames(page):
            target = first_visible(build(frame))
            if target is None:
                continue
            try:
                target.click(timeout=2000)
            except PlaywrightError as exc:
                LOGGER.debug("Submit strategy %s failed: %s", name, exc)
                continue
            return name
    return None


# Calls made without a run context still share one step budget per page.
_PAGE_BUDGETS: "weakref.WeakKeyDictionary" = weakref.WeakKeyDictionary()


def _budget_for(page, ctx: Optional[FallbackRunContext], host: str, cfg: HostFallbackConfig) -> FallbackRunContext:
    if ctx is not None:
        return ctx
    budget = _PAGE_BUDGETS.get(page)
    if budget is None:
        budget = FallbackRunContext(max_steps=cfg.max_steps_per_run, host=host)
        _PAGE_BUDGETS[page] = budget
    return budget


def _check_policy(
    page,
    ctx: Optional[FallbackRunContext],
    hosts: Optional[Mapping[str, HostFallbackConfig]],
    what: str,
) -> Tuple[str, HostFallbackConfig, FallbackRunContext]:
    if assist_globally_disabled():
        raise FallbackDisabled(f"Assisted fallback globally disabled; deterministic {what} failed")
    host = host_from_url(page.url)
    cfg = fallback_config_for(host, hosts)
    if cfg is None or not cfg.enabled:
        raise FallbackDisabled(f"Assisted fallback disabled for host {host!r}; deterministic {what} failed")
    budget = _budget_for(page, ctx, host, cfg)
    if budget.exhausted():
        raise FallbackBudgetExceeded(budget.steps_used, budget.max_steps)
    return host, cfg, budget


def _delegate(
    page,
    instruction: str,
    kind: str,
    ctx: FallbackRunContext,
    adapter: Optional[ActionAdapter],
    cfg: HostFallbackConfig,
) -> Dict[str, object]:
    adapter = adapter or LLMActionAdapter()
    step_no = ctx.steps_used + 1
    pre = write_snapshot(page, ctx.artifacts_dir, f"pre-{kind}-{step_no}")
    ctx.record_attempt()
    try:
        outcome = adapter.act(page, instruction, timeout_ms=cfg.step_timeout_ms, max_tokens=cfg.budget_tokens or None)
    finally:
        post = write_snapshot(page, ctx.artifacts_dir, f"post-{kind}-{step_no}")
    return {"outcome": outcome, "snapshots": {"pre": pre, "post": post}}


def fill_field_smart(
    page,
    label: str,
    value: str,
    key: Optional[CanonicalKey] = None,
    ctx: Optional[FallbackRunContext] = None,
    adapter: Optional[ActionAdapter] = None,
    hosts: Optional[Mapping[str, HostFallbackConfig]] = None,
) -> Dict[str, object]:
    strategy = deterministic_fill(page, label, value, key)
    if strategy:
        LOGGER.info("Fill %r: deterministic success via %s", label, strategy)
        return {"method": "deterministic", "strategy": strategy}

    host, cfg, budget = _check_policy(page, ctx, hosts, f"fill for {label!r}")
    details = _delegate(page, fill_instruction(label, value), "fill", budget, adapter, cfg)
    LOGGER.info("Fill %r: assisted step on %s (%d/%d steps used)", label, host, budget.steps_used, budget.max_steps)
    return {"method": "assisted", "host": host, **details}


def click_submit_smart(
    page,
    ctx: Optional[FallbackRunContext] = None,
    adapter: Optional[ActionAdapter] = None,
    hosts: Optional[Mapping[str, HostFallbackConfig]] = None,
) -> Dict[str, object]:
    strategy = deterministic_click_submit(page)
    if strategy:
        LOGGER.info("Submit: deterministic success via %s", strategy)
        return {"method": "deterministic", "strategy": strategy}

    host, cfg, budget = _check_policy(page, ctx, hosts, "submit")
    details = _delegate(page, SUBMIT_INSTRUCTION, "submit", budget, adapter, cfg)
    LOGGER.info("Submit: assisted step on %s (%d/%d steps used)", host, budget.steps_used, budget.max_steps)
    return {"method": "assisted", "host": host, **details}
