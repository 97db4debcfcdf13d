from __future__ import annotations

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class FieldSelector(BaseModel):
    selector: Optional[str] = None
    xpath: Optional[str] = None
    text: Optional[str] = None
    wait_before_ms: int = 0
    scroll_into_view: bool = True
    force: bool = False

    def describe(self) -> str:
        return self.selector or (f"xpath={self.xpath}" if self.xpath else f"text={self.text}")


class ConsentSelectors(BaseModel):
    checkboxes: List[FieldSelector] = Field(default_factory=list)
    buttons: List[FieldSelector] = Field(default_factory=list)
    radio_buttons: List[FieldSelector] = Field(default_factory=list)


class NavigationSelectors(BaseModel):
    deal_room_entry: List[FieldSelector] = Field(default_factory=list)
    documents_tab: List[FieldSelector] = Field(default_factory=list)
    next_button: List[FieldSelector] = Field(default_factory=list)
    submit_button: List[FieldSelector] = Field(default_factory=list)


class DownloadSelectors(BaseModel):
    select_all: List[FieldSelector] = Field(default_factory=list)
    download_button: List[FieldSelector] = Field(default_factory=list)
    download_all: List[FieldSelector] = Field(default_factory=list)
    confirm_dialog: List[FieldSelector] = Field(default_factory=list)


class PlatformConfig(BaseModel):
    name: str
    url_patterns: List[str]
    fields: Dict[str, FieldSelector] = Field(default_factory=dict)
    consent: ConsentSelectors = Field(default_factory=ConsentSelectors)
    navigation: NavigationSelectors = Field(default_factory=NavigationSelectors)
    download: DownloadSelectors = Field(default_factory=DownloadSelectors)

    @field_validator("url_patterns")
    @classmethod
    def _patterns_compile(cls, value: List[str]) -> List[str]:
        for pattern in value:
            re.compile(pattern)
        return value

    def matches(self, url: str) -> bool:
        return any(re.search(pattern, url or "", re.IGNORECASE) for pattern in self.url_patterns)


class HostFallbackConfig(BaseModel):
    enabled: bool = False
    budget_tokens: int = 0
    step_timeout_ms: int = 30000
    max_steps_per_run: int = 3


class CaptureRequest(BaseModel):
    url: str
    headless: Optional[bool] = None
    max_steps: Optional[int] = None
    skip_sensitive: Optional[bool] = None
    only_required: Optional[bool] = None
    aggressive: Optional[bool] = None
    form_data: Dict[str, str] = Field(default_factory=dict)


class StagedFile(BaseModel):
    path: str
    size_bytes: int
    channel: str
    source: Optional[str] = None
    original_name: Optional[str] = None
