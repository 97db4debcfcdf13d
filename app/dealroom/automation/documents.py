"""Deal room entry, document grid handling and bundle download triggers."""
from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Tuple

from playwright.sync_api import Error as PlaywrightError

from ..errors import CaptureTimeout, DownloadError
from ..schemas import FieldSelector, PlatformConfig, StagedFile
from .dom import click_first, click_text_patterns, first_visible, iter_frames, locator_for, settle
from .downloads import DownloadAcquirer

LOGGER = logging.getLogger(__name__)

DEAL_ROOM_URL_RE = re.compile(r"/buyer/vdr|deal[\s_-]*room|data[\s_-]*room", re.IGNORECASE)
DEAL_ROOM_ENTRY_PATTERNS = [
    r"(continue|enter|go|proceed)\s*(to)?\s*(the)?\s*deal\s*room",
    r"view\s*deal\s*room",
    r"deal\s*room",
    r"data\s*room|deal\s*center",
]
DOCUMENTS_TAB_SELECTORS = [
    FieldSelector(selector='[role="tab"]:has-text("Documents")'),
    FieldSelector(selector='a:has-text("Documents")'),
    FieldSelector(selector='a:has-text("Files")'),
]
SELECT_ALL_SELECTORS = [
    'thead input[type="checkbox"]',
    'th input[type="checkbox"]',
    'input[type="checkbox"][aria-label*="select all" i]',
]
SELECT_ALL_NAME_RE = re.compile(r"select\s*all", re.IGNORECASE)
SIZE_LABELLED_DOWNLOAD_RE = re.compile(r"^\s*download\s*\(\s*[\d.,]+\s*(b|kb|mb|gb)\s*\)", re.IGNORECASE)
DOWNLOAD_ALL_SELECTORS = [
    FieldSelector(selector='button:has-text("Download All")'),
    FieldSelector(selector='a:has-text("Download All")'),
    FieldSelector(selector='button[title*="Download All"]'),
    FieldSelector(selector='[aria-label*="Download All"]'),
]
CONFIRM_NAME_RE = re.compile(
    r"^\s*(okay|ok|yes|confirm|proceed|start|create\s*zip|generate|prepare|download)\b", re.IGNORECASE
)
DIALOG_SCOPE = '[role="dialog"], [role="alertdialog"], dialog, .modal'
FILE_LINK_SELECTOR = (
    'a[href$=".pdf" i], a[href$=".zip" i], a[href$=".xlsx" i], a[href$=".xls" i], '
    'a[href$=".docx" i], a[href$=".doc" i], a[download], a[href*="download" i]'
)

DEAL_ROOM_PROBE_JS = """
() => {
  const body = (document.body && document.body.innerText || '').toLowerCase();
  if (body.includes('virtual deal room') || body.includes('rcm lightbox')) return true;
  const controls = Array.from(document.querySelectorAll('button, [role="button"], a'));
  if (controls.some(b => /download/i.test((b.innerText || b.textContent || '').trim()))) return true;
  if (document.querySelector('thead input[type="checkbox"], th input[type="checkbox"]')) return true;
  const headers = Array.from(document.querySelectorAll('th, [role="columnheader"]'))
    .map(th => (th.innerText || '').trim());
  return headers.some(t => /name/i.test(t)) && headers.some(t => /last\\s*modified/i.test(t));
}
"""


def is_deal_room_page(page) -> bool:
    if DEAL_ROOM_URL_RE.search(page.url or ""):
        return True
    for frame in iter_frames(page):
        try:
            if frame.evaluate(DEAL_ROOM_PROBE_JS):
                return True
        except PlaywrightError as exc:
            LOGGER.debug("Deal room probe failed in %s: %s", frame.url, exc)
    return False


def _await_popup_or_navigation(page, popups: List, before: str, timeout_ms: int, poll_ms: int = 250):
    waited = 0
    while waited < timeout_ms:
        if popups:
            popup = popups[0]
            try:
                popup.wait_for_load_state("domcontentloaded", timeout=10000)
                popup.bring_to_front()
            except PlaywrightError as exc:
                LOGGER.debug("Popup not ready: %s", exc)
            return popup
        if page.url != before:
            return page
        page.wait_for_timeout(poll_ms)
        waited += poll_ms
    return None


def enter_deal_room_if_present(page, platform: Optional[PlatformConfig] = None, timeout_ms: int = 8000):
    """Click a deal room entry control. Returns the page that now shows the deal room."""
    if is_deal_room_page(page):
        return page
    popups: List = []
    on_popup = popups.append
    page.on("popup", on_popup)
    try:
        before = page.url
        clicked = None
        if platform is not None:
            clicked = click_first(page, platform.navigation.deal_room_entry)
        if not clicked:
            clicked = click_text_patterns(page, DEAL_ROOM_ENTRY_PATTERNS)
        if not clicked:
            return page
        LOGGER.info("Deal room entry clicked: %s", clicked)
        target = _await_popup_or_navigation(page, popups, before, timeout_ms)
    finally:
        page.remove_listener("popup", on_popup)
    if target is None:
        LOGGER.info("Deal room entry clicked but no navigation or popup")
        return page
    if target is not page:
        LOGGER.info("Deal room opened in popup: %s", target.url)
    settle(target)
    return target


def goto_documents(page, platform: Optional[PlatformConfig] = None) -> bool:
    selectors = list(platform.navigation.documents_tab) if platform is not None else []
    clicked = click_first(page, selectors + DOCUMENTS_TAB_SELECTORS)
    if clicked:
        LOGGER.info("Opened documents via %s", clicked)
        settle(page)
        page.wait_for_timeout(300)
    return bool(clicked)


def select_all_documents(page, platform: Optional[PlatformConfig] = None) -> bool:
    if platform is not None and click_first(page, platform.download.select_all):
        return True
    for frame in iter_frames(page):
        candidates = [frame.get_by_role("checkbox", name=SELECT_ALL_NAME_RE)]
        candidates.extend(frame.locator(sel) for sel in SELECT_ALL_SELECTORS)
        for locator in candidates:
            target = first_visible(locator)
            if target is None:
                continue
            try:
                if not target.is_checked():
                    target.check(timeout=2000)
                LOGGER.info("Selected all document rows")
                return True
            except PlaywrightError as exc:
                LOGGER.debug("Select all failed: %s", exc)
    return False


def confirm_dialogs(page, platform: Optional[PlatformConfig] = None, attempts: int = 3, wait_ms: int = 500) -> int:
    """Click OK/Yes/Start/Create Zip style buttons in any frame's dialog."""
    clicked = 0
    for attempt in range(attempts):
        hit = None
        if platform is not None:
            hit = click_first(page, platform.download.confirm_dialog, timeout_ms=2000)
        if not hit:
            for frame in iter_frames(page):
                target = first_visible(frame.locator(DIALOG_SCOPE).get_by_role("button", name=CONFIRM_NAME_RE))
                if target is None:
                    continue
                try:
                    target.click(timeout=2000)
                    hit = frame.url
                    break
                except PlaywrightError as exc:
                    LOGGER.debug("Confirm click failed: %s", exc)
        if hit:
            clicked += 1
            LOGGER.info("Confirmed download dialog (%s)", hit)
        if attempt < attempts - 1:
            page.wait_for_timeout(wait_ms)
    return clicked


def find_download_trigger(page, platform: Optional[PlatformConfig] = None) -> Optional[Tuple[str, object]]:
    """First visible download control: platform selectors, size-labelled button, then Download All."""
    platform_selectors: List[FieldSelector] = []
    if platform is not None:
        platform_selectors = list(platform.download.download_button) + list(platform.download.download_all)
    for selector in platform_selectors:
        for frame in iter_frames(page):
            locator = locator_for(frame, selector)
            target = first_visible(locator) if locator is not None else None
            if target is not None:
                return selector.describe(), target
    for frame in iter_frames(page):
        target = first_visible(frame.get_by_role("button", name=SIZE_LABELLED_DOWNLOAD_RE))
        if target is not None:
            return "size_labelled_download", target
    for selector in DOWNLOAD_ALL_SELECTORS:
        for frame in iter_frames(page):
            target = first_visible(frame.locator(selector.selector))
            if target is not None:
                return selector.describe(), target
    return None


def enumerate_file_links(page) -> List[str]:
    hrefs: List[str] = []
    for frame in iter_frames(page):
        try:
            found = frame.eval_on_selector_all(FILE_LINK_SELECTOR, "els => els.map(a => a.href).filter(Boolean)")
        except PlaywrightError as exc:
            LOGGER.debug("File link scan failed in %s: %s", frame.url, exc)
            continue
        for href in found:
            if href not in hrefs:
                hrefs.append(href)
    return hrefs


def _click(target) -> Callable[[], None]:
    def trigger() -> None:
        try:
            target.click(timeout=5000)
        except PlaywrightError:
            target.evaluate("el => el.click()")
    return trigger


def _open_link(page, href: str) -> Callable[[], None]:
    def trigger() -> None:
        page.evaluate("u => { window.location.href = u; }", href)
    return trigger


def download_documents(
    page,
    acquirer: DownloadAcquirer,
    platform: Optional[PlatformConfig] = None,
    errors: Optional[List[str]] = None,
) -> List[StagedFile]:
    """Download the bundle, or every linked file when the bundle control is missing or yields nothing."""
    errors = errors if errors is not None else []
    found = find_download_trigger(page, platform)
    if found is not None:
        name, target = found
        LOGGER.info("Download trigger: %s", name)

        def confirm() -> None:
            confirm_dialogs(page, platform)

        for attempt in (1, 2):
            try:
                return [acquirer.capture(_click(target), page=page, after_trigger=confirm)]
            except CaptureTimeout as exc:
                if attempt == 1:
                    LOGGER.info("No download after %s, retrying once: %s", name, exc)
                    continue
                errors.append(f"{exc.reason}: {exc}")
                LOGGER.warning("Bundle download failed: %s", exc)
            except DownloadError as exc:
                errors.append(f"{exc.reason}: {exc}")
                LOGGER.warning("Bundle download failed: %s", exc)
                break

    staged: List[StagedFile] = []
    links = enumerate_file_links(page)
    LOGGER.info("Falling back to %d file link(s)", len(links))
    start_url = page.url
    for href in links:
        try:
            staged.append(acquirer.capture(_open_link(page, href), page=page))
        except DownloadError as exc:
            errors.append(f"{exc.reason}: {href}: {exc}")
            LOGGER.warning("Link download failed for %s: %s", href, exc)
        if page.url != start_url:
            try:
                page.go_back(wait_until="domcontentloaded")
            except PlaywrightError as exc:
                LOGGER.debug("go_back failed: %s", exc)
    return staged
