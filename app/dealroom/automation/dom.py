from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional

from playwright.sync_api import Error as PlaywrightError

from ..schemas import FieldSelector

LOGGER = logging.getLogger(__name__)

FILLABLE_QUERY = "input, textarea, select"
NON_FILLABLE_TYPES = {"button", "submit", "reset", "file", "image", "hidden", "checkbox", "radio"}

DESCRIBE_CONTROL_JS = """
el => {
  const clean = (s) => (s || '').replace(/\\s+/g, ' ').trim();
  const byId = (id) => {
    if (!id) return null;
    try { return el.ownerDocument.getElementById(id); } catch (e) { return null; }
  };
  let label = '';
  const id = el.getAttribute('id');
  if (id) {
    try {
      const lb = el.ownerDocument.querySelector(`label[for="${CSS.escape(id)}"]`);
      if (lb) label = clean(lb.innerText || lb.textContent);
    } catch (e) {}
  }
  if (!label) {
    const wrap = el.closest('label');
    if (wrap) label = clean(wrap.innerText || wrap.textContent);
  }
  let aria = el.getAttribute('aria-label') || '';
  const labelledBy = el.getAttribute('aria-labelledby');
  if (!aria && labelledBy) {
    aria = labelledBy.split(/\\s+/).map(byId).filter(Boolean)
      .map(n => clean(n.innerText || n.textContent)).join(' ');
  }
  let context = '';
  const parent = el.closest('div, li, td, p, fieldset, section') || el.parentElement;
  if (parent) context = clean(parent.innerText || parent.textContent).slice(0, 200);
  const tag = el.tagName.toLowerCase();
  let placeholderSelected = false;
  let selectedText = '';
  if (tag === 'select') {
    const opt = el.selectedIndex >= 0 ? el.options[el.selectedIndex] : null;
    selectedText = opt ? clean(opt.text) : '';
    placeholderSelected = !opt || opt.value === '' || opt.disabled ||
      /^(select|choose|please|--|-)/i.test(selectedText);
  }
  return {
    tag,
    name: el.getAttribute('name') || '',
    id: id || '',
    type: tag === 'input' ? (el.getAttribute('type') || 'text').toLowerCase() : tag,
    placeholder: el.getAttribute('placeholder') || '',
    ariaLabel: clean(aria),
    label,
    context,
    autocomplete: (el.getAttribute('autocomplete') || '').toLowerCase(),
    required: !!(el.required || el.getAttribute('aria-required') === 'true'),
    readonly: !!el.readOnly,
    value: tag === 'select' ? (placeholderSelected ? '' : el.value) : (el.value || ''),
    selectedText,
  };
}
"""

SET_NATIVE_VALUE_JS = """
(el, value) => {
  const proto = el instanceof HTMLTextAreaElement ? HTMLTextAreaElement.prototype
    : el instanceof HTMLSelectElement ? HTMLSelectElement.prototype
    : HTMLInputElement.prototype;
  const desc = Object.getOwnPropertyDescriptor(proto, 'value');
  if (el.focus) el.focus();
  if (desc && desc.set) { desc.set.call(el, value); } else { el.value = value; }
  el.dispatchEvent(new Event('input', { bubbles: true }));
  el.dispatchEvent(new Event('change', { bubbles: true }));
  el.dispatchEvent(new Event('blur', { bubbles: true }));
  if (el.blur) el.blur();
  return el.value;
}
"""

TOUCH_ALL_CONTROLS_JS = """
() => {
  const fields = Array.from(document.querySelectorAll('input, textarea, select'));
  for (const el of fields) {
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    el.dispatchEvent(new Event('blur', { bubbles: true }));
  }
  if (document.activeElement && document.activeElement.blur) document.activeElement.blur();
  return fields.length;
}
"""

TOGGLE_TEXT_JS = """
el => {
  const clean = (s) => (s || '').replace(/\\s+/g, ' ').trim();
  const parts = [];
  const doc = el.ownerDocument;
  const id = el.getAttribute('id');
  if (id) {
    try {
      const lb = doc.querySelector(`label[for="${CSS.escape(id)}"]`);
      if (lb) parts.push(clean(lb.innerText || lb.textContent));
    } catch (e) {}
  }
  const wrap = el.closest('label');
  if (wrap) parts.push(clean(wrap.innerText || wrap.textContent));
  const aria = el.getAttribute('aria-label');
  if (aria) parts.push(clean(aria));
  const labelledBy = el.getAttribute('aria-labelledby');
  if (labelledBy) {
    for (const ref of labelledBy.split(/\\s+/)) {
      const node = doc.getElementById(ref);
      if (node) parts.push(clean(node.innerText || node.textContent));
    }
  }
  const title = el.getAttribute('title');
  if (title) parts.push(clean(title));
  const own = parts.join(' ').trim();
  let context = '';
  const parent = el.parentElement;
  if (parent) context = clean(parent.innerText || parent.textContent).slice(0, 300);
  if (!own && el.getAttribute('role') === 'checkbox') context = clean(el.innerText || el.textContent) || context;
  const checked = el.getAttribute('role') === 'checkbox' || el.getAttribute('role') === 'radio'
    ? el.getAttribute('aria-checked') === 'true'
    : !!el.checked;
  return {
    own,
    context,
    name: el.getAttribute('name') || '',
    value: el.getAttribute('value') || '',
    checked,
    disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
  };
}
"""


def iter_frames(page) -> List:
    """Main frame first, then nested frames, skipping detached ones."""
    frames = []
    for frame in page.frames:
        try:
            if frame.is_detached():
                continue
        except PlaywrightError:
            continue
        frames.append(frame)
    return frames


def query_all(scope, selector: str) -> List:
    try:
        return scope.query_selector_all(selector)
    except PlaywrightError as exc:
        LOGGER.debug("query_selector_all(%s) failed: %s", selector, exc)
        return []


def is_interactable(handle) -> bool:
    try:
        return handle.is_visible() and handle.is_enabled()
    except PlaywrightError:
        return False


def locator_for(scope, selector: FieldSelector):
    if selector.selector:
        return scope.locator(selector.selector)
    if selector.xpath:
        return scope.locator(f"xpath={selector.xpath}")
    if selector.text:
        return scope.get_by_text(selector.text, exact=False)
    return None


def first_visible(locator, limit: int = 10):
    try:
        count = min(locator.count(), limit)
    except PlaywrightError:
        return None
    for index in range(count):
        candidate = locator.nth(index)
        try:
            if candidate.is_visible():
                return candidate
        except PlaywrightError:
            continue
    return None


def click_field_selector(scope, selector: FieldSelector, timeout_ms: int = 3000) -> bool:
    locator = locator_for(scope, selector)
    if locator is None:
        return False
    target = first_visible(locator)
    if target is None:
        return False
    try:
        if selector.wait_before_ms:
            scope_page = getattr(scope, "page", scope)
            scope_page.wait_for_timeout(selector.wait_before_ms)
        if selector.scroll_into_view:
            target.scroll_into_view_if_needed(timeout=timeout_ms)
        target.click(timeout=timeout_ms, force=selector.force)
        return True
    except PlaywrightError as exc:
        LOGGER.debug("Click on %s failed: %s", selector.describe(), exc)
        return False


def click_first(page, selectors: Iterable[FieldSelector], timeout_ms: int = 3000) -> Optional[str]:
    """Try each selector in every frame; return the one that was clicked."""
    for selector in selectors:
        for frame in iter_frames(page):
            if click_field_selector(frame, selector, timeout_ms):
                return selector.describe()
    return None


def click_text_patterns(page, patterns: Iterable[str], roles=("button", "link"), timeout_ms: int = 3000) -> Optional[str]:
    for pattern in patterns:
        rx = re.compile(pattern, re.IGNORECASE)
        for frame in iter_frames(page):
            for role in roles:
                try:
                    target = first_visible(frame.get_by_role(role, name=rx))
                except PlaywrightError:
                    target = None
                if target is None:
                    continue
                try:
                    target.click(timeout=timeout_ms)
                    return f"{role}:{pattern}"
                except PlaywrightError as exc:
                    LOGGER.debug("Click on %s /%s/ failed: %s", role, pattern, exc)
    return None


def settle(page, timeout_ms: int = 5000) -> None:
    try:
        page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except PlaywrightError as exc:
        LOGGER.debug("Page did not settle within %dms: %s", timeout_ms, exc)
