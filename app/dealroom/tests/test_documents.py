from __future__ import annotations

from pathlib import Path

from dealroom.config import DownloadConfig
from dealroom.automation.documents import (
    confirm_dialogs,
    download_documents,
    enter_deal_room_if_present,
    enumerate_file_links,
    find_download_trigger,
    is_deal_room_page,
    select_all_documents,
)
from dealroom.automation.downloads import DownloadAcquirer

EVENTS_ONLY = DownloadConfig(poll_ms=50, event_timeout_ms=5000, watch_os_downloads=False)
BUNDLE_URL = "https://files.example.test/bundles/42"

DEAL_ROOM = f"""
<table>
  <thead><tr><th><input type="checkbox" aria-label="Select all rows"></th><th>Name</th><th>Last Modified</th></tr></thead>
  <tbody>
    <tr><td><input type="checkbox"></td><td>Offering Memorandum.pdf</td><td>Today</td></tr>
    <tr><td><input type="checkbox"></td><td>Rent Roll.xlsx</td><td>Today</td></tr>
  </tbody>
</table>
<button id="dl" onclick="document.getElementById('dlg').style.display = 'block'">Download (12 KB)</button>
<div id="dlg" role="dialog" style="display: none">
  <p>Your archive is ready to be prepared.</p>
  <button onclick="this.parentNode.style.display = 'none'; window.location.href = '{BUNDLE_URL}'">Create Zip</button>
</div>
"""


def _attachment(page, url: str, filename: str, body: bytes) -> None:
    page.context.route(
        url,
        lambda route: route.fulfill(
            status=200,
            body=body,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Disposition": f'attachment; filename="{filename}"',
            },
        ),
    )


def test_deal_room_detection(serve) -> None:
    page = serve(DEAL_ROOM)
    assert is_deal_room_page(page)
    page = serve("<form><input name='email'></form>", url="https://forms.example.test/other")
    assert not is_deal_room_page(page)
    page = serve("<p>Loading</p>", url="https://forms.example.test/buyer/vdr/42")
    assert is_deal_room_page(page)


def test_select_all_and_size_labelled_trigger(serve) -> None:
    page = serve(DEAL_ROOM)
    assert select_all_documents(page)
    assert page.is_checked('thead input[type="checkbox"]')
    name, target = find_download_trigger(page)
    assert name == "size_labelled_download"
    assert target.get_attribute("id") == "dl"


def test_confirm_dialogs_counts_clicks(serve) -> None:
    page = serve(
        """
        <div role="dialog"><p>Start download?</p><button onclick="this.parentNode.remove()">OK</button></div>
        <button>Cancel everything</button>
        """
    )
    assert confirm_dialogs(page, attempts=2, wait_ms=50) == 1
    assert confirm_dialogs(page, attempts=1, wait_ms=0) == 0


def test_bundle_download_through_dialog(serve, browser_downloads: Path, tmp_path: Path) -> None:
    page = serve(DEAL_ROOM, url="https://deals.example.test/listing/42/documents")
    _attachment(page, BUNDLE_URL, "Downtown Portfolio.zip", b"PK\x03\x04" + b"0" * 256)
    acquirer = DownloadAcquirer(
        tmp_path / "downloads", directories=[], config=EVENTS_ONLY, managed_dir=browser_downloads
    )
    errors = []
    staged = download_documents(page, acquirer, errors=errors)
    assert errors == []
    assert len(staged) == 1
    assert staged[0].channel == "event"
    assert Path(staged[0].path).name == "downtown_portfolio.zip"
    assert staged[0].size_bytes == 260
    assert staged[0].original_name == "Downtown Portfolio.zip"


def test_link_fallback_without_bundle_control(serve, browser_downloads: Path, tmp_path: Path) -> None:
    page = serve(
        """
        <a href="https://files.example.test/om.pdf">Offering Memorandum</a>
        <a href="https://files.example.test/rent-roll.xlsx">Rent Roll</a>
        <a href="/about">About</a>
        """
    )
    _attachment(page, "https://files.example.test/om.pdf", "OM.pdf", b"%PDF-1.7 memo")
    _attachment(page, "https://files.example.test/rent-roll.xlsx", "Rent Roll.xlsx", b"xlsx-bytes")
    assert enumerate_file_links(page) == [
        "https://files.example.test/om.pdf",
        "https://files.example.test/rent-roll.xlsx",
    ]
    acquirer = DownloadAcquirer(
        tmp_path / "downloads", directories=[], config=EVENTS_ONLY, managed_dir=browser_downloads
    )
    staged = download_documents(page, acquirer)
    assert sorted(Path(item.path).name for item in staged) == ["om.pdf", "rent_roll.xlsx"]


def test_enter_deal_room_in_popup(serve) -> None:
    page = serve('<a href="https://room.example.test/listing/42" target="_blank">Enter Deal Room</a>')
    page.context.route(
        "https://room.example.test/**",
        lambda route: route.fulfill(status=200, content_type="text/html", body="<button>Download All</button>"),
    )
    target = enter_deal_room_if_present(page)
    assert target is not page
    assert target.url == "https://room.example.test/listing/42"
    assert is_deal_room_page(target)
