from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Pattern

from playwright.sync_api import Error as PlaywrightError

from ..config import CONFIG
from ..schemas import PlatformConfig
from .dom import TOGGLE_TEXT_JS, click_field_selector, first_visible, is_interactable, iter_frames, query_all

LOGGER = logging.getLogger(__name__)

CHECKBOX_QUERY = 'input[type="checkbox"], [role="checkbox"]'
RADIO_QUERY = 'input[type="radio"]'
POSITIVE_RE = re.compile(r"\b(yes|agree|accept|confirm|allow|i do)\b", re.IGNORECASE)
NEGATIVE_RE = re.compile(r"\b(no|not|disagree|decline|reject|deny)\b", re.IGNORECASE)
# Marketing text is only checked when it is also the agreement gate itself.
GATE_RE = re.compile(r"(terms|\bnda\b|non[-\s]?disclosure|confidential|privacy|agreement)", re.IGNORECASE)


@dataclass(frozen=True)
class ConsentPattern:
    regex: Pattern[str]
    priority: int
    target_type: str
    action: str
    marketing: bool = False


def _pattern(expr: str, priority: int, target_type: str, action: str, marketing: bool = False) -> ConsentPattern:
    return ConsentPattern(re.compile(expr, re.IGNORECASE), priority, target_type, action, marketing)


DEFAULT_PATTERNS: List[ConsentPattern] = [
    _pattern(r"(i\s*agree|accept.*terms|accept.*conditions|agree.*terms|agree.*conditions)", 10, "checkbox", "check"),
    _pattern(r"(confidential|\bnda\b|non[-\s]?disclosure|privacy|data\s*protection)", 9, "checkbox", "check"),
    _pattern(r"(terms.*service|terms.*use|terms.*conditions|legal.*terms)", 8, "checkbox", "check"),
    _pattern(r"(consent|authori[sz]e|permission|\ballow\b|\bpermit\b)", 7, "checkbox", "check"),
    _pattern(r"(acknowledge|confirm|understand|read.*understand)", 6, "checkbox", "check"),
    _pattern(r"(newsletter|marketing|promotional|updates|communications)", 3, "checkbox", "check", marketing=True),
    _pattern(r"(yes.*agree|no.*disagree|\bagree\b|\baccept\b|consent|confidential)", 8, "radio", "select"),
    _pattern(r"^\s*i\s*agree\b", 10, "button", "click"),
    _pattern(r"agree\s*(&|and)\s*continue", 10, "button", "click"),
    _pattern(r"accept\s*(&|and)\s*continue", 9, "button", "click"),
    _pattern(r"^\s*(i\s*)?accept\b", 9, "button", "click"),
    _pattern(r"^\s*continue\b", 7, "button", "click"),
    _pattern(r"^\s*proceed\b", 7, "button", "click"),
    _pattern(r"^\s*confirm\b", 6, "button", "click"),
]

MULTI_LANGUAGE_PATTERNS: List[ConsentPattern] = [
    _pattern(r"(j'accepte|accepter|d'accord)", 8, "checkbox", "check"),
    _pattern(r"(acepto|aceptar|de\s*acuerdo)", 8, "checkbox", "check"),
    _pattern(r"(ich\s*stimme\s*zu|akzeptieren|einverstanden)", 8, "checkbox", "check"),
    _pattern(r"(accetto|accettare|d'accordo)", 8, "checkbox", "check"),
    _pattern(r"(同意|接受|确认)", 8, "checkbox", "check"),
]


@dataclass
class ConsentOptions:
    aggressive: bool = CONFIG.autofill.aggressive
    opt_in_marketing: bool = CONFIG.autofill.opt_in_marketing
    multi_language: bool = CONFIG.autofill.multi_language
    click_buttons: bool = True
    custom_patterns: List[str] = field(default_factory=list)
    platform: Optional[PlatformConfig] = None


@dataclass
class ConsentResult:
    checkboxes_checked: int = 0
    radios_selected: int = 0
    buttons_clicked: int = 0
    matched: List[Dict[str, object]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.checkboxes_checked + self.radios_selected + self.buttons_clicked

    def as_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["total"] = self.total
        return data


class ConsentDetector:
    def __init__(self, patterns: Optional[List[ConsentPattern]] = None):
        self.base_patterns = list(patterns or DEFAULT_PATTERNS)

    def patterns_for(self, target_type: str, options: ConsentOptions) -> List[ConsentPattern]:
        patterns = list(self.base_patterns)
        if options.multi_language:
            patterns.extend(MULTI_LANGUAGE_PATTERNS)
        for expr in options.custom_patterns:
            patterns.append(_pattern(expr, 5, "checkbox", "check"))
        selected = [p for p in patterns if p.target_type == target_type]
        return sorted(selected, key=lambda p: -p.priority)

    def match(self, text: str, target_type: str, options: ConsentOptions) -> Optional[ConsentPattern]:
        if not text:
            return None
        candidates = self.patterns_for(target_type, options)
        hits = [pattern for pattern in candidates if pattern.regex.search(text)]
        if not hits:
            return None
        allow_marketing = options.aggressive or options.opt_in_marketing
        if not allow_marketing and any(p.marketing for p in hits):
            if not GATE_RE.search(text):
                return None
        return hits[0]

    def declines_marketing(self, text: str, options: ConsentOptions) -> bool:
        """True when the text is a marketing opt-in that must stay unchecked."""
        if not text or options.aggressive or options.opt_in_marketing or GATE_RE.search(text):
            return False
        return any(p.marketing and p.regex.search(text) for p in self.patterns_for("checkbox", options))

    def handle_page(self, page, options: Optional[ConsentOptions] = None) -> ConsentResult:
        options = options or ConsentOptions()
        result = ConsentResult()
        if options.platform is not None:
            self.apply_platform_consent(page, options.platform, result)
        for frame in iter_frames(page):
            self._check_boxes(frame, options, result)
            self._select_radios(frame, options, result)
        if options.click_buttons:
            self._click_agreement_button(page, options, result)
        LOGGER.info(
            "Consent: %d checkboxes, %d radios, %d buttons",
            result.checkboxes_checked,
            result.radios_selected,
            result.buttons_clicked,
        )
        return result

    def apply_platform_consent(self, page, platform: PlatformConfig, result: ConsentResult) -> None:
        consent = platform.consent
        for selector in consent.checkboxes + consent.radio_buttons:
            for frame in iter_frames(page):
                locator = frame.locator(selector.selector) if selector.selector else (
                    frame.get_by_label(selector.text) if selector.text else None
                )
                target = first_visible(locator) if locator is not None else None
                if target is None:
                    continue
                try:
                    if target.is_checked():
                        break
                    target.check(timeout=3000, force=selector.force)
                except PlaywrightError:
                    if not click_field_selector(frame, selector):
                        continue
                if selector in consent.radio_buttons:
                    result.radios_selected += 1
                else:
                    result.checkboxes_checked += 1
                result.matched.append({"kind": "platform", "selector": selector.describe()})
                break

    def _toggle_info(self, handle) -> Optional[Dict[str, object]]:
        try:
            return handle.evaluate(TOGGLE_TEXT_JS)
        except PlaywrightError as exc:
            LOGGER.debug("Toggle describe failed: %s", exc)
            return None

    def _check_boxes(self, frame, options: ConsentOptions, result: ConsentResult) -> None:
        for handle in query_all(frame, CHECKBOX_QUERY):
            info = self._toggle_info(handle)
            if not info or info.get("checked") or info.get("disabled"):
                continue
            text = " ".join(str(info.get(k) or "") for k in ("own", "name")).strip()
            pattern = self.match(text, "checkbox", options)
            # A box that labels itself as marketing is never rescued by its neighbours' text.
            if pattern is None and info.get("context") and not self.declines_marketing(text, options):
                text = str(info.get("context"))
                pattern = self.match(text, "checkbox", options)
            if pattern is None:
                continue
            if self._activate(handle):
                result.checkboxes_checked += 1
                result.matched.append({"kind": "checkbox", "text": text[:120], "priority": pattern.priority})

    def _activate(self, handle) -> bool:
        try:
            role = handle.get_attribute("role")
            if role in ("checkbox", "radio"):
                handle.click(timeout=3000)
            elif is_interactable(handle):
                handle.check(timeout=3000)
            else:
                # Styled inputs are often visually hidden behind their label.
                handle.evaluate("el => { if (!el.checked) el.click(); }")
        except PlaywrightError as exc:
            LOGGER.debug("Check failed, retrying with DOM click: %s", exc)
            try:
                handle.evaluate("el => { if (!el.checked) el.click(); }")
            except PlaywrightError:
                return False
        try:
            info = handle.evaluate(TOGGLE_TEXT_JS)
        except PlaywrightError:
            return False
        return bool(info and info.get("checked"))

    def _select_radios(self, frame, options: ConsentOptions, result: ConsentResult) -> None:
        groups: Dict[str, List] = {}
        for handle in query_all(frame, RADIO_QUERY):
            info = self._toggle_info(handle)
            if not info:
                continue
            groups.setdefault(str(info.get("name") or id(handle)), []).append((handle, info))
        for name, members in groups.items():
            if any(info.get("checked") for _, info in members):
                continue
            gate = None
            for _, info in members:
                text = f"{info.get('own') or ''} {info.get('context') or ''}".strip()
                gate = self.match(text, "radio", options)
                if gate:
                    break
            if gate is None:
                continue
            choice = members[0]
            for handle, info in members:
                own = f"{info.get('own') or ''} {info.get('value') or ''}"
                if POSITIVE_RE.search(own) and not NEGATIVE_RE.search(own):
                    choice = (handle, info)
                    break
            if self._activate(choice[0]):
                result.radios_selected += 1
                result.matched.append({"kind": "radio", "group": name, "text": str(choice[1].get("own"))[:120]})

    def _click_agreement_button(self, page, options: ConsentOptions, result: ConsentResult) -> None:
        for pattern in self.patterns_for("button", options):
            rx = pattern.regex
            for frame in iter_frames(page):
                target = None
                for role in ("button", "link"):
                    try:
                        target = first_visible(frame.get_by_role(role, name=rx))
                    except PlaywrightError:
                        target = None
                    if target is not None:
                        break
                if target is None:
                    continue
                try:
                    if not target.is_enabled():
                        continue
                    target.click(timeout=3000)
                except PlaywrightError as exc:
                    LOGGER.debug("Agreement button click failed: %s", exc)
                    continue
                result.buttons_clicked += 1
                result.matched.append({"kind": "button", "pattern": rx.pattern})
                return
