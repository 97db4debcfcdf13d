from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Iterator

import pytest

from dealroom.automation.audit import AUDIT_FILENAME, STATS_FILENAME
from dealroom.automation.run_capture import run_capture

GATE = """
<html><body>
<h1>Downtown Portfolio</h1>
<form action="room.html" method="get">
  <label for="em">Email</label><input id="em" name="email" type="email" required>
  <label><input type="checkbox" name="nda" required> I agree to the Confidentiality Agreement</label>
  <button type="submit">Continue</button>
</form>
</body></html>
"""

ROOM = """
<html><body>
<table>
  <thead><tr><th><input type="checkbox" aria-label="Select all"></th><th>Name</th><th>Last Modified</th></tr></thead>
  <tbody><tr><td><input type="checkbox"></td><td>Offering Memorandum.pdf</td><td>Today</td></tr></tbody>
</table>
<a href="bundle.zip">Download All</a>
</body></html>
"""


class QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format, *args) -> None:
        return None


@pytest.fixture()
def listing_site(tmp_path: Path) -> Iterator[str]:
    site = tmp_path / "site"
    site.mkdir()
    (site / "gate.html").write_text(GATE)
    (site / "room.html").write_text(ROOM)
    (site / "bundle.zip").write_bytes(b"PK\x05\x06" + b"\x00" * 18)
    server = ThreadingHTTPServer(("127.0.0.1", 0), partial(QuietHandler, directory=str(site)))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}/gate.html"
    server.shutdown()
    server.server_close()


def test_capture_end_to_end(listing_site: str, tmp_path: Path) -> None:
    run_dir = tmp_path / "run"
    # The sync Playwright driver is per thread; keep this run off the fixture's thread.
    with ThreadPoolExecutor(max_workers=1) as pool:
        summary = pool.submit(
            run_capture,
            listing_site,
            run_dir,
            headless=True,
            max_steps=3,
            form_data={"email": "jane@example.com"},
            download_dirs=[],
        ).result(timeout=180)

    assert summary["status"] == "success", summary["errors"]
    assert summary["filled"] == 1
    assert summary["navigation"]["stopped_reason"] == "target_reached"
    assert summary["deal_room"] is True
    assert summary["selected_all"] is True
    assert summary["final_url"].split("?")[0].endswith("/room.html")
    download = summary["downloads"][0]
    assert download["channel"] == "event"
    assert Path(download["path"]).name == "bundle.zip"
    assert Path(download["path"]).parent == run_dir / "downloads"
    assert download["size_bytes"] == 22
    assert summary["fallback"]["steps_used"] == 0

    audit = json.loads((run_dir / AUDIT_FILENAME).read_text())
    assert audit["status"] == "success"
    assert audit["fields"][0]["key"] == "email"
    assert "jane@example.com" not in (run_dir / "run.log").read_text()
    assert (run_dir / STATS_FILENAME).exists()
    assert (run_dir / "trace.zip").exists()
