from __future__ import annotations

import re
from typing import List, Optional, Tuple

TEMP_SUFFIXES = (".crdownload", ".part", ".partial", ".download", ".tmp")
SAFE_FILENAME_RE = re.compile(r"[^a-z0-9\-_.]+")
GUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def digits_only(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def normalize_phone(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    digits = digits_only(value)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"{digits[0:3]}-{digits[3:6]}-{digits[6:10]}"
    return value.strip()


def phone_variants(value: Optional[str]) -> List[str]:
    """Format variants tried in order against masked phone inputs."""
    if not value or not value.strip():
        return []
    raw = value.strip()
    digits = digits_only(raw)
    variants = [raw]
    if digits:
        variants.append(digits)
    if len(digits) >= 10:
        last10 = digits[-10:]
        variants.extend(
            [
                last10,
                f"{last10[0:3]}-{last10[3:6]}-{last10[6:10]}",
                f"({last10[0:3]}) {last10[3:6]}-{last10[6:10]}",
                f"+1{last10}",
            ]
        )
    if digits:
        variants.append(f"+{digits}")
    seen = set()
    out = []
    for variant in variants:
        if variant and variant not in seen:
            seen.add(variant)
            out.append(variant)
    return out


def phone_digits_match(expected: Optional[str], actual: Optional[str]) -> bool:
    want = digits_only(expected)
    got = digits_only(actual)
    if not want or not got:
        return False
    return want[-10:] == got[-10:] or want == got


def is_temporary_name(name: str) -> bool:
    lower = name.lower()
    return any(lower.endswith(suffix) for suffix in TEMP_SUFFIXES)


def strip_temp_suffix(name: str) -> str:
    lower = name.lower()
    for suffix in TEMP_SUFFIXES:
        if lower.endswith(suffix):
            return name[: -len(suffix)]
    return name


def split_stem(name: str) -> Tuple[str, str]:
    base = strip_temp_suffix(name)
    if "." in base.strip("."):
        stem, ext = base.rsplit(".", 1)
        return stem, "." + ext
    return base, ""


def sanitize_filename(name: str, default: str = "download") -> str:
    cleaned = SAFE_FILENAME_RE.sub("_", (name or "").strip().lower())
    cleaned = re.sub(r"_+", "_", cleaned).strip("._")
    return cleaned or default


def needs_zip_extension(name: str) -> bool:
    stem, ext = split_stem(name)
    return not ext or bool(GUID_RE.match(stem))


def staged_filename(name: str, force_zip: bool = False) -> str:
    base = strip_temp_suffix(name)
    if force_zip and needs_zip_extension(base) and not base.lower().endswith(".zip"):
        base = f"{base}.zip"
    return sanitize_filename(base)


def normalize_host(host: Optional[str]) -> str:
    if not host:
        return ""
    text = host.strip().lower().rstrip(".")
    if ":" in text and not text.startswith("["):
        text = text.split(":", 1)[0]
    return text
