"""Map a form control's textual signals to a canonical field kind.

Three passes run over the whole field table in its fixed order: exact
substring, then regex, then token-set similarity against each key's fuzzy
phrases. The first key to match in the earliest pass wins; nothing is scored
across keys. Primary signals (label, aria-label, placeholder, name, id,
autocomplete, type) are classified before the bounded surrounding text is
consulted, so a neighbouring field's label cannot capture the control.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..field_registry import AUTOCOMPLETE_MAP, FIELDS, SENSITIVE_KEYS, SENSITIVE_PATTERN, CanonicalKey, FieldSpec
from .matching import normalize_text, token_similarity

LOGGER = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.7
CONTEXT_LIMIT = 200
GENERIC_INPUT_TYPES = {"", "text", "search", "textarea", "select", "select-one", "number"}


@dataclass(frozen=True)
class FieldDescriptor:
    tag: str = "input"
    name: str = ""
    id: str = ""
    type: str = ""
    placeholder: str = ""
    aria_label: str = ""
    label: str = ""
    context: str = ""
    autocomplete: str = ""
    required: bool = False
    value: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "FieldDescriptor":
        return cls(
            tag=str(data.get("tag") or "input").lower(),
            name=str(data.get("name") or ""),
            id=str(data.get("id") or ""),
            type=str(data.get("type") or "").lower(),
            placeholder=str(data.get("placeholder") or ""),
            aria_label=str(data.get("ariaLabel") or data.get("aria_label") or ""),
            label=str(data.get("label") or ""),
            context=str(data.get("context") or "")[:CONTEXT_LIMIT],
            autocomplete=str(data.get("autocomplete") or "").lower(),
            required=bool(data.get("required")),
            value=str(data.get("value") or ""),
        )

    def primary_signals(self) -> List[str]:
        raw = [self.label, self.aria_label, self.placeholder, self.name, self.id]
        if self.autocomplete and self.autocomplete not in {"on", "off"}:
            raw.append(self.autocomplete)
        if self.type not in GENERIC_INPUT_TYPES:
            raw.append(self.type)
        signals = []
        for item in raw:
            normalized = normalize_text(item)
            if normalized and normalized not in signals:
                signals.append(normalized)
        return signals

    @property
    def text(self) -> str:
        parts = self.primary_signals()
        context = normalize_text(self.context[:CONTEXT_LIMIT])
        if context:
            parts.append(context)
        return " | ".join(parts)


def _joined_runs(text: str, longest: int = 3) -> set:
    """Adjacent token runs with the spaces removed: "first name" -> {"first", "name", "firstname"}."""
    tokens = text.split()
    return {
        "".join(tokens[start:end])
        for start in range(len(tokens))
        for end in range(start + 1, min(len(tokens), start + longest) + 1)
    }


def _exact_match(spec: FieldSpec, signals: Sequence[str]) -> bool:
    for signal in signals:
        runs = _joined_runs(signal)
        for phrase in spec.exact:
            phrase_norm = normalize_text(phrase)
            if phrase_norm in signal:
                return True
            # "first name" and "f name" still hit the "firstname" and "fname" phrases.
            if " " not in phrase_norm and phrase_norm in runs and len(phrase_norm) > 4:
                return True
    return False


def _regex_match(spec: FieldSpec, signals: Sequence[str]) -> bool:
    return any(pattern.search(signal) for pattern in spec.regex for signal in signals)


def _fuzzy_match(spec: FieldSpec, signals: Sequence[str], threshold: float) -> bool:
    for signal in signals:
        for phrase in spec.fuzzy:
            if token_similarity(signal, phrase) >= threshold:
                return True
    return False


def classify_signals(
    signals: Sequence[str],
    fields: Sequence[FieldSpec] = FIELDS,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> Optional[CanonicalKey]:
    signals = [normalize_text(signal) for signal in signals if normalize_text(signal)]
    if not signals:
        return None
    for spec in fields:
        if _exact_match(spec, signals):
            return spec.key
    for spec in fields:
        if _regex_match(spec, signals):
            return spec.key
    for spec in fields:
        if _fuzzy_match(spec, signals, threshold):
            return spec.key
    return None


def classify_descriptor(
    descriptor: FieldDescriptor,
    fields: Sequence[FieldSpec] = FIELDS,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> Optional[CanonicalKey]:
    key = classify_signals(descriptor.primary_signals(), fields, threshold)
    if key is None and descriptor.context:
        key = classify_signals([descriptor.context[:CONTEXT_LIMIT]], fields, threshold)
    if key is not None:
        LOGGER.debug("Classified %r as %s", descriptor.text[:80], key.value)
    return key


def classify_text(text: str, threshold: float = DEFAULT_FUZZY_THRESHOLD) -> Optional[CanonicalKey]:
    return classify_signals([text], FIELDS, threshold)


def resolve_key(
    descriptor: FieldDescriptor,
    fields: Sequence[FieldSpec] = FIELDS,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> Optional[CanonicalKey]:
    """Autocomplete attribute first, then the control type, then free text."""
    for token in descriptor.autocomplete.split():
        if token in AUTOCOMPLETE_MAP:
            return AUTOCOMPLETE_MAP[token]
    for spec in fields:
        if descriptor.type and descriptor.type in spec.input_types:
            return spec.key
    return classify_descriptor(descriptor, fields, threshold)


def is_sensitive_descriptor(descriptor: FieldDescriptor, key: Optional[CanonicalKey] = None) -> bool:
    if key is not None and key in SENSITIVE_KEYS:
        return True
    haystack = " ".join(
        [descriptor.label, descriptor.aria_label, descriptor.placeholder, descriptor.name, descriptor.id, descriptor.autocomplete]
    )
    if SENSITIVE_PATTERN.search(haystack):
        return True
    return any(token.startswith("cc-") for token in descriptor.autocomplete.split())