from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Optional

from ..config import CONFIG
from ..field_registry import FIELDS, PREFIXED_ONLY_ENV_ALIASES, CanonicalKey, coerce_key
from .classify import classify_text

LOGGER = logging.getLogger(__name__)

FRONT_MATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---", re.DOTALL)
FRONT_MATTER_LINE_RE = re.compile(r"^\s*([A-Za-z0-9 _-]+)\s*:\s*(.+?)\s*$")
KEY_VALUE_LINE_RE = re.compile(r"^[-*+]?\s*([A-Za-z0-9 _\-/]+?)\s*[:=]\s*(.+)$")


class DataBucket(Mapping[CanonicalKey, str]):
    """Read-only canonical key -> value mapping for one job."""

    def __init__(self, values: Optional[Mapping[object, Optional[str]]] = None):
        cleaned: Dict[CanonicalKey, str] = {}
        for raw_key, raw_value in (values or {}).items():
            key = coerce_key(raw_key)
            if key is None:
                LOGGER.debug("Ignoring unknown form data key %r", raw_key)
                continue
            if raw_value is None or not str(raw_value).strip():
                continue
            cleaned[key] = str(raw_value).strip()
        self._values = MappingProxyType(cleaned)

    def __getitem__(self, key: object) -> str:
        canonical = coerce_key(key)
        if canonical is None:
            raise KeyError(key)
        return self._values[canonical]

    def __iter__(self) -> Iterator[CanonicalKey]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        canonical = coerce_key(key)
        return canonical is not None and canonical in self._values

    def value_for(self, key: Optional[CanonicalKey]) -> Optional[str]:
        if key is None:
            return None
        value = self._values.get(key)
        if value:
            return value
        # Full name can stand in for split names and vice versa.
        if key == CanonicalKey.FULL_NAME:
            first = self._values.get(CanonicalKey.FIRST_NAME)
            last = self._values.get(CanonicalKey.LAST_NAME)
            joined = " ".join(part for part in (first, last) if part)
            return joined or None
        full = self._values.get(CanonicalKey.FULL_NAME)
        if full and key in (CanonicalKey.FIRST_NAME, CanonicalKey.LAST_NAME):
            parts = full.split()
            if key == CanonicalKey.FIRST_NAME:
                return parts[0]
            if len(parts) > 1:
                return " ".join(parts[1:])
        return None

    def merged(self, other: Mapping[CanonicalKey, str]) -> "DataBucket":
        combined: Dict[object, Optional[str]] = dict(self._values)
        combined.update(other)
        return DataBucket(combined)

    def redacted(self) -> Dict[str, str]:
        out = {}
        for key, value in self._values.items():
            if key == CanonicalKey.PASSWORD or len(value) <= 2:
                out[key.value] = "***"
            else:
                out[key.value] = value[:2] + "***"
        return out

    def __repr__(self) -> str:
        return f"DataBucket({self.redacted()!r})"


def _parse_front_matter(text: str) -> Optional[Dict[str, str]]:
    match = FRONT_MATTER_RE.match(text)
    if not match:
        return None
    out: Dict[str, str] = {}
    for line in match.group(1).splitlines():
        kv = FRONT_MATTER_LINE_RE.match(line)
        if kv:
            out[kv.group(1).strip()] = kv.group(2).strip().strip('"').strip("'")
    return out


def _parse_key_value_lines(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    in_code = False
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("```"):
            in_code = not in_code
            continue
        if not line or in_code:
            continue
        match = KEY_VALUE_LINE_RE.match(line)
        if match:
            out[match.group(1).strip()] = match.group(2).strip()
    return out


def map_to_canonical(pairs: Mapping[str, str]) -> Dict[CanonicalKey, str]:
    out: Dict[CanonicalKey, str] = {}
    for raw_key, value in pairs.items():
        if not value:
            continue
        key = coerce_key(raw_key.strip().replace(" ", "_")) or classify_text(raw_key)
        if key is None:
            LOGGER.debug("Form data key %r has no canonical match", raw_key)
            continue
        out[key] = value
    return out


def load_form_data(path: Optional[Path] = None) -> Dict[CanonicalKey, str]:
    target = path or CONFIG.autofill.formdata_path or Path.cwd() / "formdata.md"
    try:
        text = Path(target).read_text(encoding="utf-8")
    except OSError:
        return {}
    if not text.strip():
        return {}
    pairs = _parse_front_matter(text)
    if pairs is None:
        pairs = _parse_key_value_lines(text)
    mapped = map_to_canonical(pairs)
    LOGGER.info("Loaded %d form data values from %s", len(mapped), target)
    return mapped


def load_from_environment(env: Optional[Mapping[str, str]] = None) -> Dict[CanonicalKey, str]:
    env = os.environ if env is None else env
    out: Dict[CanonicalKey, str] = {}
    for spec in FIELDS:
        for alias in spec.env_aliases:
            names = [f"DEALROOM_{alias}"]
            if alias not in PREFIXED_ONLY_ENV_ALIASES:
                names.append(alias)
            for name in names:
                value = env.get(name)
                if value and value.strip():
                    out[spec.key] = value.strip()
                    break
            if spec.key in out:
                break
    return out


def build_data_bucket(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[object, Optional[str]]] = None,
) -> DataBucket:
    """Environment first, then the form data file, then explicit overrides."""
    bucket = DataBucket(load_from_environment(env))
    bucket = bucket.merged(load_form_data(path))
    if overrides:
        cleaned = DataBucket(overrides)
        bucket = bucket.merged(dict(cleaned.items()))
    return bucket
