from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from dealroom.config import DownloadConfig
from dealroom.errors import CaptureTimeout, StabilizationTimeout, StagingError
from dealroom.automation.downloads import DirectoryMonitor, DownloadAcquirer, stage_file, unique_destination

FAST = DownloadConfig(
    poll_ms=50,
    appear_timeout_ms=3000,
    stable_timeout_ms=5000,
    stable_window_ms=300,
    stable_polls=3,
    temp_stable_window_ms=2000,
    event_timeout_ms=500,
    watch_os_downloads=False,
)


def _later(delay: float, fn) -> threading.Thread:
    def run() -> None:
        time.sleep(delay)
        fn()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


def test_temp_file_renamed_mid_poll(tmp_path: Path) -> None:
    watch = tmp_path / "watch"
    out = tmp_path / "out"
    watch.mkdir()
    (watch / "a.txt").write_text("old")
    monitor = DirectoryMonitor(watch, config=FAST)
    monitor.baseline()

    def browser_download() -> None:
        temp = watch / "b.tmp"
        temp.write_bytes(b"x" * 1000)
        time.sleep(0.1)
        with temp.open("ab") as f:
            f.write(b"y" * 1000)
        time.sleep(0.3)
        temp.rename(watch / "b.zip")

    writer = _later(0.1, browser_download)
    path, size = monitor.watch()
    staged = stage_file(path, out)
    writer.join()

    assert path.name == "b.zip"
    assert size == 2000
    assert Path(staged.path).name == "b.zip"
    assert staged.size_bytes == 2000
    assert staged.original_name == "b.zip"
    assert staged.channel == "filesystem"
    assert Path(staged.path).read_bytes() == b"x" * 1000 + b"y" * 1000
    assert (watch / "b.zip").exists()


def test_zero_byte_then_growth(tmp_path: Path) -> None:
    watch = tmp_path / "watch"
    watch.mkdir()
    monitor = DirectoryMonitor(watch, config=FAST, stable_window_ms=400)
    monitor.baseline()
    done = {}

    def grow() -> None:
        target = watch / "report.pdf"
        target.write_bytes(b"")
        for _ in range(3):
            time.sleep(0.15)
            with target.open("ab") as f:
                f.write(b"z" * 1024)
        done["at"] = time.monotonic()

    writer = _later(0.05, grow)
    candidate = monitor.await_appearance()
    path, size = monitor.await_stability(candidate)
    returned_at = time.monotonic()
    writer.join()

    assert path.name == "report.pdf"
    assert size == 3 * 1024
    assert returned_at >= done["at"] + 0.35


def test_appearance_timeout(tmp_path: Path) -> None:
    monitor = DirectoryMonitor(tmp_path, config=FAST, appear_timeout_ms=200)
    monitor.baseline()
    with pytest.raises(CaptureTimeout):
        monitor.await_appearance()


def test_stabilization_timeout(tmp_path: Path) -> None:
    monitor = DirectoryMonitor(tmp_path, config=FAST, stable_timeout_ms=500)
    monitor.baseline()
    stop = threading.Event()

    def trickle() -> None:
        target = tmp_path / "slow.zip"
        while not stop.is_set():
            with target.open("ab") as f:
                f.write(b"a")
            time.sleep(0.03)

    writer = threading.Thread(target=trickle, daemon=True)
    writer.start()
    try:
        with pytest.raises(StabilizationTimeout) as excinfo:
            monitor.watch()
    finally:
        stop.set()
        writer.join()
    assert excinfo.value.path.endswith("slow.zip")
    assert excinfo.value.last_size > 0


def test_matchers_and_hidden_files(tmp_path: Path) -> None:
    monitor = DirectoryMonitor(tmp_path, config=FAST, matchers=[r"\.pdf$"])
    monitor.baseline()
    (tmp_path / "notes.txt").write_text("ignore me")
    (tmp_path / ".com.google.Chrome.abc").write_text("ignore me too")
    (tmp_path / "om.pdf").write_bytes(b"%PDF")
    candidate = monitor.await_appearance()
    assert candidate.path.name == "om.pdf"
    assert not candidate.temporary


def test_stage_copies_and_deduplicates(tmp_path: Path) -> None:
    source = tmp_path / "Offering Memo.PDF"
    source.write_bytes(b"%PDF-1.7")
    out = tmp_path / "out"
    first = stage_file(source, out)
    second = stage_file(source, out)
    assert Path(first.path).name == "offering_memo.pdf"
    assert Path(second.path).name == "offering_memo_1.pdf"
    assert source.exists()
    assert unique_destination(out, "fresh.zip") == out / "fresh.zip"


def test_stage_rejects_empty_file(tmp_path: Path) -> None:
    source = tmp_path / "empty.zip"
    source.write_bytes(b"")
    with pytest.raises(StagingError):
        stage_file(source, tmp_path / "out")


def test_acquirer_races_filesystem_channels(tmp_path: Path) -> None:
    quiet = tmp_path / "quiet"
    busy = tmp_path / "busy"
    quiet.mkdir()
    busy.mkdir()
    (busy / "old.zip").write_bytes(b"old")
    acquirer = DownloadAcquirer(tmp_path / "out", directories=[quiet, busy], config=FAST)

    def trigger() -> None:
        _later(0.1, lambda: (busy / "bundle.zip").write_bytes(b"PK" * 100))

    staged = acquirer.capture(trigger)
    assert Path(staged.path).name == "bundle.zip"
    assert staged.size_bytes == 200
    assert staged.source == str(busy / "bundle.zip")


def test_acquirer_reports_capture_timeout(tmp_path: Path) -> None:
    config = DownloadConfig(poll_ms=50, appear_timeout_ms=300, stable_timeout_ms=300, watch_os_downloads=False)
    acquirer = DownloadAcquirer(tmp_path / "out", directories=[tmp_path], config=config)
    with pytest.raises(CaptureTimeout):
        acquirer.capture(lambda: None)


def test_acquirer_prefers_stabilization_error(tmp_path: Path) -> None:
    config = DownloadConfig(
        poll_ms=50, appear_timeout_ms=1000, stable_timeout_ms=300, stable_polls=3, watch_os_downloads=False
    )
    acquirer = DownloadAcquirer(tmp_path / "out", directories=[tmp_path], config=config)
    with pytest.raises(StabilizationTimeout):
        acquirer.capture(lambda: (tmp_path / "empty.zip").write_bytes(b""))


class FakeEmitter:
    def __init__(self):
        self.listeners = {}

    def on(self, event: str, handler) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler) -> None:
        self.listeners[event].remove(handler)

    def emit(self, event: str, payload) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(payload)


class FakePage(FakeEmitter):
    def __init__(self):
        super().__init__()
        self.context = FakeEmitter()

    def wait_for_timeout(self, timeout_ms: int) -> None:
        time.sleep(timeout_ms / 1000.0)


class FakeDownload:
    def __init__(self, suggested_filename: str, url: str):
        self.suggested_filename = suggested_filename
        self.url = url


def test_event_channel_wins_and_loser_is_not_staged(tmp_path: Path) -> None:
    managed = tmp_path / "managed"
    os_downloads = tmp_path / "os"
    managed.mkdir()
    os_downloads.mkdir()
    out = tmp_path / "out"
    page = FakePage()
    payload = b"PK" * 200
    acquirer = DownloadAcquirer(out, directories=[os_downloads], config=FAST, managed_dir=managed)

    def trigger() -> None:
        page.emit("download", FakeDownload("Bundle.zip", "https://files.example.test/bundle"))
        (managed / "0c5e7f3a-58f4-4a8e-9d3c-1f2e3d4c5b6a").write_bytes(payload)
        _later(0.4, lambda: (os_downloads / "Bundle.zip").write_bytes(payload))

    staged = acquirer.capture(trigger, page=page)
    assert staged.channel == "event"
    assert staged.original_name == "Bundle.zip"
    assert staged.source == "https://files.example.test/bundle"
    assert Path(staged.path).read_bytes() == payload

    time.sleep(1.0)
    assert sorted(p.name for p in out.iterdir()) == ["bundle.zip"]
    assert page.listeners["download"] == []
    assert page.context.listeners["page"] == []


def test_popup_pages_get_the_download_listener(tmp_path: Path) -> None:
    managed = tmp_path / "managed"
    managed.mkdir()
    page = FakePage()
    popup = FakePage()
    acquirer = DownloadAcquirer(tmp_path / "out", directories=[], config=FAST, managed_dir=managed)

    def trigger() -> None:
        page.context.emit("page", popup)
        popup.emit("download", FakeDownload("Rent Roll.xlsx", "https://files.example.test/rr"))
        (managed / "guid-rr").write_bytes(b"xlsx")

    staged = acquirer.capture(trigger, page=page)
    assert Path(staged.path).name == "rent_roll.xlsx"
    assert popup.listeners["download"] == []


def test_stalled_event_download_times_out(tmp_path: Path) -> None:
    managed = tmp_path / "managed"
    managed.mkdir()
    page = FakePage()
    acquirer = DownloadAcquirer(tmp_path / "out", directories=[], config=FAST, managed_dir=managed)
    started = time.monotonic()
    with pytest.raises(CaptureTimeout) as excinfo:
        acquirer.capture(lambda: page.emit("download", FakeDownload("a.zip", "https://x.test/a")), page=page)
    assert time.monotonic() - started < 3
    assert excinfo.value.context["events_seen"] == 1


def test_cancel_stops_a_waiting_monitor(tmp_path: Path) -> None:
    monitor = DirectoryMonitor(tmp_path, config=FAST, appear_timeout_ms=10000)
    monitor.baseline()
    _later(0.1, monitor.cancel)
    started = time.monotonic()
    with pytest.raises(CaptureTimeout):
        monitor.await_appearance()
    assert time.monotonic() - started < 2
