from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError

from ..field_registry import FIELDS, SENSITIVE_KEYS, CanonicalKey, FieldSpec, coerce_key
from ..pipeline.classify import FieldDescriptor, is_sensitive_descriptor, resolve_key
from ..pipeline.form_data import DataBucket
from ..pipeline.matching import similarity
from ..pipeline.normalize import phone_digits_match, phone_variants
from ..schemas import PlatformConfig
from .dom import (
    DESCRIBE_CONTROL_JS,
    FILLABLE_QUERY,
    NON_FILLABLE_TYPES,
    SET_NATIVE_VALUE_JS,
    first_visible,
    is_interactable,
    iter_frames,
    locator_for,
    query_all,
)

LOGGER = logging.getLogger(__name__)

FALLBACK_SELECTORS: Dict[CanonicalKey, List[str]] = {
    CanonicalKey.EMAIL: [
        'input[type="email"]',
        'input[name*="email" i]',
        'input[id*="email" i]',
        'input[aria-label*="email" i]',
        'input[placeholder*="email" i]',
    ],
    CanonicalKey.PASSWORD: ['input[type="password"]'],
    CanonicalKey.FIRST_NAME: [
        'input[name*="first" i]',
        'input[id*="first" i]',
        'input[placeholder*="first" i]',
    ],
    CanonicalKey.LAST_NAME: [
        'input[name*="last" i]',
        'input[id*="last" i]',
        'input[placeholder*="last" i]',
    ],
    CanonicalKey.FULL_NAME: [
        'input[name*="name" i]:not([name*="first" i]):not([name*="last" i]):not([name*="user" i])',
        'input[placeholder*="name" i]:not([placeholder*="first" i]):not([placeholder*="last" i])',
    ],
    CanonicalKey.COMPANY: [
        'input[name*="company" i], input[name*="organization" i]',
        'input[placeholder*="company" i], input[placeholder*="organization" i]',
        'input[id*="company" i], input[id*="organization" i]',
    ],
    CanonicalKey.PHONE: [
        'input[type="tel"]',
        'input[name*="phone" i]',
        'input[id*="phone" i]',
        'input[aria-label*="phone" i]',
        'input[placeholder*="phone" i]',
        'input[name*="tel" i]',
        'input[id*="tel" i]',
    ],
}


@dataclass
class AutofillOptions:
    only_required: bool = False
    skip_sensitive: bool = True
    platform: Optional[PlatformConfig] = None


def _get_select_options(handle) -> List[Dict[str, str]]:
    try:
        return handle.evaluate(
            """el => Array.from(el.options).map(o => ({value: o.value, label: o.label || o.text}))"""
        )
    except PlaywrightError:
        return []


def _abbrev(label: str) -> str:
    parts = re.split(r"[^A-Za-z]+", label.strip())
    return "".join([p[0] for p in parts if p]).upper()


def select_option(handle, value: str, options: Optional[List[Dict[str, str]]] = None) -> Tuple[bool, str]:
    options = options or _get_select_options(handle)
    if not options:
        return False, "no_select_options"
    raw = value.strip()
    if not raw:
        return False, "empty_value"

    def match_key(field: str) -> Optional[str]:
        for opt in options:
            if opt.get(field, "").strip().lower() == raw.lower():
                return opt.get(field, "")
        return None

    matched_value = match_key("value")
    if matched_value is not None:
        handle.select_option(value=matched_value, timeout=2000)
        return True, "matched_value"

    matched_label = match_key("label")
    if matched_label is not None:
        handle.select_option(label=matched_label, timeout=2000)
        return True, "matched_label"

    if len(raw) <= 3:
        for opt in options:
            if _abbrev(opt.get("label", "")) == raw.upper():
                handle.select_option(label=opt.get("label", ""), timeout=2000)
                return True, "matched_abbrev"

    best_label = ""
    best_score = 0.0
    for opt in options:
        label = opt.get("label", "")
        score = similarity(raw, label)
        if score > best_score:
            best_score = score
            best_label = label
    if best_score >= 0.82 and best_label:
        handle.select_option(label=best_label, timeout=2000)
        return True, f"matched_fuzzy:{best_score:.2f}"

    return False, "no_select_match"


def set_native_value(handle, value: str) -> str:
    return handle.evaluate(SET_NATIVE_VALUE_JS, value) or ""


def describe_control(handle) -> Optional[Dict[str, object]]:
    try:
        return handle.evaluate(DESCRIBE_CONTROL_JS)
    except PlaywrightError as exc:
        LOGGER.debug("describe_control failed: %s", exc)
        return None


class FormAutofiller:
    """Fill visible, empty, non-sensitive controls from a DataBucket."""

    def __init__(self, bucket: DataBucket, fields: List[FieldSpec] = FIELDS):
        self.bucket = bucket
        self.fields = fields
        self.records: List[Dict[str, object]] = []

    def autofill_page(self, page, options: Optional[AutofillOptions] = None) -> int:
        options = options or AutofillOptions()
        changed = 0
        if options.platform and options.platform.fields:
            changed += self.fill_platform_fields(page, options)
        for frame in iter_frames(page):
            changed += self.autofill_frame(frame, options)
        LOGGER.info("Autofill changed %d fields on %s", changed, page.url)
        return changed

    def autofill_frame(self, frame, options: AutofillOptions) -> int:
        changed = 0
        for handle in query_all(frame, FILLABLE_QUERY):
            try:
                key = self._fill_handle(handle, options, frame_url=frame.url)
            except PlaywrightError as exc:
                # One broken control must not stop the scan.
                LOGGER.debug("Skipping control after DOM error: %s", exc)
                continue
            if key is not None:
                changed += 1
        return changed

    def pending_controls(self, page) -> int:
        """Visible, empty, fillable controls across all frames."""
        count = 0
        for frame in iter_frames(page):
            for handle in query_all(frame, FILLABLE_QUERY):
                info = describe_control(handle)
                if info and not self._should_skip(info, AutofillOptions()) and is_interactable(handle):
                    count += 1
        return count

    def _should_skip(self, info: Dict[str, object], options: AutofillOptions) -> Optional[str]:
        if str(info.get("type") or "") in NON_FILLABLE_TYPES:
            return "non_fillable_type"
        if info.get("readonly"):
            return "readonly"
        if str(info.get("value") or "").strip():
            return "prefilled"
        if options.only_required and not info.get("required"):
            return "not_required"
        return None

    def _fill_handle(self, handle, options: AutofillOptions, frame_url: str = "") -> Optional[CanonicalKey]:
        info = describe_control(handle)
        if not info:
            return None
        if self._should_skip(info, options):
            return None
        if not is_interactable(handle):
            return None
        descriptor = FieldDescriptor.from_dict(info)
        key = resolve_key(descriptor, self.fields)
        if options.skip_sensitive and is_sensitive_descriptor(descriptor, key):
            LOGGER.debug("Skipping sensitive control %s", descriptor.text[:60])
            return None
        value = self.bucket.value_for(key)
        if not value:
            return None
        if not self._write_value(handle, key, value, descriptor.tag):
            return None
        self.records.append(
            {"key": key.value, "frame_url": frame_url, "control": descriptor.name or descriptor.id or descriptor.label}
        )
        return key

    def _write_value(self, handle, key: CanonicalKey, value: str, tag: str) -> bool:
        if tag == "select":
            ok, reason = select_option(handle, value)
            if not ok:
                LOGGER.debug("Select for %s not filled: %s", key.value, reason)
            return ok
        if key == CanonicalKey.PHONE:
            for variant in phone_variants(value):
                readback = set_native_value(handle, variant)
                if phone_digits_match(value, readback):
                    return True
            set_native_value(handle, "")
            return False
        readback = set_native_value(handle, value)
        if readback.strip():
            return True
        # Some frameworks reset the value on synthetic events; fall back to typing.
        handle.fill(value, timeout=2000)
        return bool((handle.input_value(timeout=2000) or "").strip())

    def fill_platform_fields(self, page, options: AutofillOptions) -> int:
        changed = 0
        for raw_key, selector in options.platform.fields.items():
            key = coerce_key(raw_key)
            if key is None:
                continue
            if options.skip_sensitive and key in SENSITIVE_KEYS:
                continue
            value = self.bucket.value_for(key)
            if not value:
                continue
            for frame in iter_frames(page):
                locator = locator_for(frame, selector)
                target = first_visible(locator) if locator is not None else None
                if target is None:
                    continue
                try:
                    handle = target.element_handle(timeout=2000)
                    info = describe_control(handle) or {}
                    if self._should_skip(info, options):
                        break
                    if self._write_value(handle, key, value, str(info.get("tag") or "input")):
                        changed += 1
                        self.records.append({"key": key.value, "frame_url": frame.url, "control": selector.describe()})
                        break
                except PlaywrightError as exc:
                    LOGGER.debug("Platform selector %s failed: %s", selector.describe(), exc)
        return changed

    def fill_fallback_selectors(self, page, options: Optional[AutofillOptions] = None) -> int:
        """Narrow per-key selectors, used when the heuristic scan changed nothing."""
        options = options or AutofillOptions()
        changed = 0
        for key, selectors in FALLBACK_SELECTORS.items():
            value = self.bucket.value_for(key)
            if not value:
                continue
            values = phone_variants(value) if key == CanonicalKey.PHONE else [value]
            if self._fill_by_selectors(page, selectors, values, key, options):
                changed += 1
        LOGGER.info("Fallback selectors changed %d fields", changed)
        return changed

    def _fill_by_selectors(self, page, selectors: List[str], values: List[str], key: CanonicalKey, options) -> bool:
        for frame in iter_frames(page):
            for selector in selectors:
                target = first_visible(frame.locator(selector))
                if target is None:
                    continue
                try:
                    current = target.input_value(timeout=1500)
                    if current.strip():
                        continue
                    if options.only_required and not target.evaluate("el => !!el.required"):
                        continue
                    for candidate in values:
                        target.fill(candidate, timeout=1500)
                        readback = target.input_value(timeout=1500)
                        if key == CanonicalKey.PHONE and not phone_digits_match(candidate, readback):
                            continue
                        if readback.strip():
                            self.records.append({"key": key.value, "frame_url": frame.url, "control": selector})
                            return True
                except PlaywrightError as exc:
                    LOGGER.debug("Fallback selector %s failed: %s", selector, exc)
        return False
