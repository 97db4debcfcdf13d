from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .config import CONFIG
from .schemas import FieldSelector, PlatformConfig

LOGGER = logging.getLogger(__name__)


def _sel(selector: str) -> FieldSelector:
    return FieldSelector(selector=selector)


def _text(text: str) -> FieldSelector:
    return FieldSelector(text=text)


BUILTIN_PLATFORMS: List[PlatformConfig] = [
    PlatformConfig(
        name="buildout",
        url_patterns=[r"buildout\.com", r"buildoutnow\.com"],
        fields={
            "email": _sel('input[type="email"], input[name*="email"]'),
            "first_name": _sel('input[name*="first"], input[placeholder*="First"]'),
            "last_name": _sel('input[name*="last"], input[placeholder*="Last"]'),
            "company": _sel('input[name*="company"], input[placeholder*="Company"]'),
            "phone": _sel('input[type="tel"], input[name*="phone"]'),
        },
        consent={
            "checkboxes": [
                _sel('input[type="checkbox"][name*="agree"]'),
                _sel('input[type="checkbox"][name*="nda"]'),
                _text("I agree to the Confidentiality Agreement"),
            ],
            "buttons": [_sel('button:has-text("I Agree")'), _sel('button:has-text("Accept & Continue")')],
        },
        navigation={
            "deal_room_entry": [
                _sel('a:has-text("Enter Deal Room")'),
                _sel('button:has-text("Continue to Deal Room")'),
            ],
            "documents_tab": [_sel('[role="tab"]:has-text("Documents")'), _sel('a:has-text("Files")')],
        },
        download={"download_all": [_sel('button:has-text("Download All")'), _sel('a[title*="Download All"]')]},
    ),
    PlatformConfig(
        name="crexi",
        url_patterns=[r"crexi\.com"],
        fields={
            "email": _sel('#email, input[name="email"]'),
            "first_name": _sel('#firstName, input[name="firstName"]'),
            "last_name": _sel('#lastName, input[name="lastName"]'),
            "company": _sel('#company, input[name="company"]'),
            "phone": _sel('#phone, input[name="phone"]'),
        },
        consent={
            "checkboxes": [
                _sel('input[type="checkbox"][name*="confidentiality"]'),
                _sel('mat-checkbox[formcontrolname*="agree"]'),
            ],
        },
        navigation={
            "deal_room_entry": [_sel('button:has-text("View Property Details")'), _sel('a:has-text("Documents")')],
        },
        download={"download_all": [_sel('button:has-text("Download All Documents")')]},
    ),
    PlatformConfig(
        name="rcm",
        url_patterns=[r"rcm1\.net", r"lightbox\.rcm"],
        fields={
            "email": _sel('input[ng-model*="email"]'),
            "first_name": _sel('input[ng-model*="firstName"]'),
            "last_name": _sel('input[ng-model*="lastName"]'),
            "company": _sel('input[ng-model*="company"]'),
        },
        consent={
            "checkboxes": [_sel('input[type="checkbox"][ng-model*="agree"]')],
            "buttons": [_sel('button[ng-click*="accept"]')],
        },
        navigation={
            "deal_room_entry": [_text("Enter Virtual Deal Room")],
            "documents_tab": [_sel('a[ui-sref*="documents"]')],
        },
        download={
            "select_all": [_sel('input[type="checkbox"][ng-model*="selectAll"]'), _sel('th input[type="checkbox"]')],
            "download_button": [_sel("button.vdr-download-button"), _text("Download")],
            "confirm_dialog": [_sel('[role="dialog"] button:has-text("OK")'), _sel('.modal button:has-text("Yes")')],
        },
    ),
    PlatformConfig(
        name="dealcloud",
        url_patterns=[r"dealcloud\.com", r"dealcloud\.app"],
        fields={
            "email": _sel('input[data-field="Email"]'),
            "first_name": _sel('input[data-field="FirstName"]'),
            "last_name": _sel('input[data-field="LastName"]'),
            "company": _sel('input[data-field="Company"]'),
        },
        consent={"checkboxes": [_sel('input[type="checkbox"][data-field*="Accept"]')]},
        navigation={"documents_tab": [_sel('[data-tab="documents"]')]},
        download={"download_all": [_sel('button[data-action="download-all"]')]},
    ),
]


def load_custom_platforms(path: Optional[Path]) -> List[PlatformConfig]:
    if not path:
        return []
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Failed to load platform config %s: %s", path, exc)
        return []
    if isinstance(raw, dict):
        raw = [raw]
    configs = []
    for item in raw if isinstance(raw, list) else []:
        try:
            configs.append(PlatformConfig.model_validate(item))
        except ValidationError as exc:
            LOGGER.warning("Skipping invalid platform config in %s: %s", path, exc)
    LOGGER.info("Loaded %d custom platform configurations from %s", len(configs), path)
    return configs


@lru_cache(maxsize=1)
def platform_registry() -> Dict[str, PlatformConfig]:
    registry: Dict[str, PlatformConfig] = {config.name: config for config in BUILTIN_PLATFORMS}
    # Custom entries replace built-ins of the same name.
    for config in load_custom_platforms(CONFIG.autofill.platform_config_path):
        registry[config.name] = config
    return registry


def get_platform_config(url: str) -> Optional[PlatformConfig]:
    for config in platform_registry().values():
        if config.matches(url):
            LOGGER.info("Matched platform %s for %s", config.name, url)
            return config
    return None


def platforms_payload() -> Dict[str, object]:
    return {
        "platforms": [
            {"name": config.name, "url_patterns": list(config.url_patterns)}
            for config in platform_registry().values()
        ]
    }
