"""Fill, validate, then advance through multi-step gate forms.

Each step runs FILL -> VALIDATE -> (ERRORS_FOUND -> stop) | (CLEAN -> ADVANCE)
-> WAIT_SETTLE. Advancing is only attempted on a page that reports no
validation errors, so an incomplete form is never submitted.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..errors import AdvanceNotFound, ValidationBlocked
from ..fallback_policy import FallbackRunContext
from ..pipeline.classify import classify_text
from ..schemas import FieldSelector, PlatformConfig
from .autofill import AutofillOptions, FormAutofiller
from .consent import ConsentDetector, ConsentOptions
from .dom import TOUCH_ALL_CONTROLS_JS, click_field_selector, first_visible, iter_frames, settle
from .smart_step import click_submit_smart, fill_field_smart

LOGGER = logging.getLogger(__name__)

VALIDATION_SCAN_JS = """
() => {
  const clean = (s) => (s || '').replace(/\\s+/g, ' ').trim();
  const visible = (el) => {
    if (!el || !el.getClientRects().length) return false;
    const style = window.getComputedStyle(el);
    return style.visibility !== 'hidden' && style.display !== 'none';
  };
  const labelFor = (el) => {
    const id = el.getAttribute('id');
    if (id) {
      const lb = document.querySelector(`label[for="${CSS.escape(id)}"]`);
      if (lb) return clean(lb.innerText || lb.textContent);
    }
    const wrap = el.closest('label');
    if (wrap) return clean(wrap.innerText || wrap.textContent);
    return clean(el.getAttribute('aria-label') || el.getAttribute('placeholder') || el.getAttribute('name') || '');
  };
  const hasValue = (el) => {
    const type = (el.getAttribute('type') || '').toLowerCase();
    if (type === 'checkbox' || type === 'radio') return !!el.checked;
    return typeof el.value === 'string' && el.value.trim() !== '';
  };
  const issues = [];
  const seen = new Set();
  for (const el of document.querySelectorAll('input, select, textarea, [aria-invalid="true"]')) {
    if (!visible(el) || el.disabled) continue;
    const type = (el.getAttribute('type') || '').toLowerCase();
    if (['hidden', 'submit', 'button', 'reset', 'image'].includes(type)) continue;
    if (el.getAttribute('aria-invalid') === 'true') {
      issues.push({ kind: 'aria_invalid', label: labelFor(el), message: '', hasValue: hasValue(el) });
      seen.add(el);
      continue;
    }
    if (typeof el.checkValidity === 'function' && el.willValidate && !el.checkValidity()) {
      issues.push({ kind: 'native', label: labelFor(el), message: el.validationMessage || '', hasValue: hasValue(el) });
      seen.add(el);
    }
  }
  const containers = [
    '.error', '.errors', '.error-message', '.field-error', '.form-error', '.invalid-feedback',
    '.validation-error', '.has-error .help-block', '.text-danger', '.mat-error', '[role="alert"]',
  ];
  for (const node of document.querySelectorAll(containers.join(','))) {
    if (!visible(node)) continue;
    const text = clean(node.innerText || node.textContent);
    if (!text) continue;
    issues.push({ kind: 'inline_error', label: '', message: text.slice(0, 200) });
  }
  return issues;
}
"""

ADVANCE_SELECTORS = [
    FieldSelector(selector='button[type="submit"]'),
    FieldSelector(selector='input[type="submit"]'),
]
ADVANCE_NAME_PATTERNS = [
    r"^\s*submit\b",
    r"^\s*(next|continue|proceed)\b",
    r"\b(register|sign\s*up|request\s*access|get\s*access|view\s*documents|enter)\b",
]


@dataclass
class ValidationIssue:
    kind: str
    label: str = ""
    message: str = ""
    frame_url: str = ""
    has_value: bool = False


@dataclass
class AdvanceResult:
    clicked: bool
    navigated: bool
    control: str = ""
    url_before: str = ""
    url_after: str = ""
    method: str = "deterministic"


@dataclass
class NavigationOptions:
    max_steps: int = 3
    submit: bool = True
    escalate: bool = False
    navigation_timeout_ms: int = 5000
    autofill: AutofillOptions = field(default_factory=AutofillOptions)
    consent: ConsentOptions = field(default_factory=lambda: ConsentOptions(click_buttons=False))


@dataclass
class StepReport:
    step: int
    filled: int = 0
    consents: int = 0
    advance: Optional[Dict[str, object]] = None
    escalated: List[str] = field(default_factory=list)


@dataclass
class NavigationReport:
    steps: List[StepReport] = field(default_factory=list)
    stopped_reason: str = ""
    advance_not_found: bool = False

    @property
    def total_filled(self) -> int:
        return sum(step.filled for step in self.steps)

    def as_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["total_filled"] = self.total_filled
        return data


def _click_outside(page) -> None:
    try:
        inert = page.evaluate(
            """() => {
                const el = document.elementFromPoint(2, 2);
                if (!el) return true;
                return !el.closest('a, button, input, select, textarea, label, [role="button"], [onclick]');
            }"""
        )
        if inert:
            page.mouse.click(2, 2)
    except PlaywrightError as exc:
        LOGGER.debug("Click outside skipped: %s", exc)


def validate_page(page, settle_ms: int = 250) -> List[ValidationIssue]:
    for frame in iter_frames(page):
        try:
            frame.evaluate(TOUCH_ALL_CONTROLS_JS)
        except PlaywrightError as exc:
            LOGGER.debug("Blur pass failed in %s: %s", frame.url, exc)
    _click_outside(page)
    if settle_ms:
        page.wait_for_timeout(settle_ms)
    issues: List[ValidationIssue] = []
    for frame in iter_frames(page):
        try:
            raw = frame.evaluate(VALIDATION_SCAN_JS) or []
        except PlaywrightError as exc:
            LOGGER.debug("Validation scan failed in %s: %s", frame.url, exc)
            continue
        for item in raw:
            issues.append(
                ValidationIssue(
                    kind=str(item.get("kind") or ""),
                    label=str(item.get("label") or ""),
                    message=str(item.get("message") or ""),
                    frame_url=frame.url,
                    has_value=bool(item.get("hasValue")),
                )
            )
    if issues:
        LOGGER.info("Validation found %d issue(s) on %s", len(issues), page.url)
    return issues


def _advance_candidates(platform: Optional[PlatformConfig]) -> List[FieldSelector]:
    selectors: List[FieldSelector] = []
    if platform is not None:
        selectors.extend(platform.navigation.next_button)
        selectors.extend(platform.navigation.submit_button)
    selectors.extend(ADVANCE_SELECTORS)
    return selectors


def _wait_for_url_change(page, before: str, timeout_ms: int) -> bool:
    try:
        page.wait_for_url(lambda url: url != before, timeout=timeout_ms)
        return True
    except PlaywrightTimeoutError:
        return page.url != before


def advance(page, platform: Optional[PlatformConfig] = None, navigation_timeout_ms: int = 5000) -> AdvanceResult:
    """Click the best submit/continue control and report whether the URL changed."""
    before = page.url
    control = ""
    for selector in _advance_candidates(platform):
        for frame in iter_frames(page):
            if click_field_selector(frame, selector):
                control = selector.describe()
                break
        if control:
            break
    if not control:
        for expr in ADVANCE_NAME_PATTERNS:
            rx = re.compile(expr, re.IGNORECASE)
            for frame in iter_frames(page):
                target = first_visible(frame.get_by_role("button", name=rx))
                if target is None:
                    continue
                try:
                    target.click(timeout=3000)
                except PlaywrightError as exc:
                    LOGGER.debug("Advance click /%s/ failed: %s", expr, exc)
                    continue
                control = f"button:{expr}"
                break
            if control:
                break
    if not control:
        raise AdvanceNotFound(f"No submit/continue control found on {before}")
    navigated = _wait_for_url_change(page, before, navigation_timeout_ms)
    if not navigated:
        # Some flows swap content in place; reported, not fatal.
        LOGGER.info("Clicked %s but URL did not change (%s)", control, before)
    return AdvanceResult(clicked=True, navigated=navigated, control=control, url_before=before, url_after=page.url)


class NavigationAdvancer:
    def __init__(
        self,
        autofiller: FormAutofiller,
        consent: Optional[ConsentDetector] = None,
        platform: Optional[PlatformConfig] = None,
        fallback_ctx: Optional[FallbackRunContext] = None,
        adapter=None,
    ):
        self.autofiller = autofiller
        self.consent = consent or ConsentDetector()
        self.platform = platform
        self.fallback_ctx = fallback_ctx
        self.adapter = adapter

    def _escalate_issues(self, page, issues: List[ValidationIssue], report: StepReport) -> bool:
        attempted = False
        for issue in issues:
            if issue.kind == "inline_error" or not issue.label:
                continue
            if issue.has_value:
                # Text the user or the site put there is never overwritten.
                LOGGER.info("Not escalating %r: the control already holds a value", issue.label)
                continue
            key = classify_text(issue.label)
            value = self.autofiller.bucket.value_for(key)
            if not value:
                continue
            fill_field_smart(page, issue.label, value, key=key, ctx=self.fallback_ctx, adapter=self.adapter)
            report.escalated.append(issue.label)
            attempted = True
        return attempted

    def step(self, page, index: int, options: NavigationOptions) -> StepReport:
        report = StepReport(step=index)
        options = replace(
            options,
            consent=replace(options.consent, platform=options.consent.platform or self.platform),
            autofill=replace(options.autofill, platform=options.autofill.platform or self.platform),
        )

        consent_result = self.consent.handle_page(page, options.consent)
        report.consents = consent_result.total
        report.filled = self.autofiller.autofill_page(page, options.autofill)
        if report.filled == 0:
            report.filled = self.autofiller.fill_fallback_selectors(page, options.autofill)

        if not options.submit:
            return report

        issues = validate_page(page)
        if issues and options.escalate and self.fallback_ctx is not None:
            if self._escalate_issues(page, issues, report):
                issues = validate_page(page)
        if issues:
            raise ValidationBlocked([asdict(issue) for issue in issues])

        try:
            result = advance(page, self.platform, options.navigation_timeout_ms)
        except AdvanceNotFound:
            if not (options.escalate and self.fallback_ctx is not None):
                raise
            before = page.url
            outcome = click_submit_smart(page, ctx=self.fallback_ctx, adapter=self.adapter)
            navigated = _wait_for_url_change(page, before, options.navigation_timeout_ms)
            result = AdvanceResult(
                clicked=True,
                navigated=navigated,
                control=str(outcome.get("strategy") or ""),
                url_before=before,
                url_after=page.url,
                method=str(outcome.get("method")),
            )
        report.advance = asdict(result)

        settle(page)
        # Second-stage gates often reveal a new agreement after navigation.
        self.consent.handle_page(page, options.consent)
        return report

    def run(
        self,
        page,
        options: Optional[NavigationOptions] = None,
        stop_when: Optional[Callable[[object], bool]] = None,
    ) -> NavigationReport:
        options = options or NavigationOptions()
        report = NavigationReport()
        for index in range(1, options.max_steps + 1):
            if stop_when is not None and stop_when(page):
                report.stopped_reason = "target_reached"
                break
            try:
                step = self.step(page, index, options)
            except AdvanceNotFound as exc:
                LOGGER.info("Step %d: %s", index, exc)
                report.advance_not_found = True
                report.stopped_reason = "advance_not_found"
                break
            report.steps.append(step)
            if not options.submit:
                report.stopped_reason = "submit_disabled"
                break
            navigated = bool(step.advance and step.advance.get("navigated"))
            if not step.filled and not navigated:
                report.stopped_reason = "no_progress"
                break
        else:
            report.stopped_reason = "max_steps"
        return report
