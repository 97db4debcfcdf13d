"""Capture a downloaded file from whichever channel produces it first.

Two kinds of channel race for every trigger:

* one :class:`DirectoryMonitor` per watched directory, each in a worker
  thread, which waits for a new file to appear and waits for it to stop
  growing;
* the browser ``download`` event, pumped on the Playwright thread. The event
  only carries the suggested filename; its bytes are settled by a monitor on
  the browser's managed download directory under ``event_timeout_ms``, so no
  blocking Playwright download call is ever made.

Only the first settled file is copied into the run's output directory. The
remaining monitors are cancelled and their results are discarded.
"""
from __future__ import annotations

import logging
import re
import shutil
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from ..config import CONFIG, DownloadConfig
from ..errors import CaptureTimeout, StabilizationTimeout, StagingError
from ..pipeline.normalize import is_temporary_name, split_stem, staged_filename
from ..schemas import StagedFile

LOGGER = logging.getLogger(__name__)

Matcher = Union[str, Pattern[str]]


@dataclass
class DownloadCandidate:
    path: Path
    temporary: bool
    size_bytes: int = 0
    mtime: float = 0.0

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def observe(cls, path: Path) -> "DownloadCandidate":
        try:
            stat = path.stat()
        except OSError:
            return cls(path, temporary=is_temporary_name(path.name))
        return cls(path, temporary=is_temporary_name(path.name), size_bytes=stat.st_size, mtime=stat.st_mtime)


def unique_destination(out_dir: Path, filename: str) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    dest = out_dir / filename
    if not dest.exists():
        return dest
    stem, ext = split_stem(filename)
    counter = 1
    while True:
        candidate = out_dir / f"{stem}_{counter}{ext}"
        if not candidate.exists():
            return candidate
        counter += 1


class DirectoryMonitor:
    """Watches one directory for a single new, fully written file."""

    def __init__(
        self,
        directory: Path,
        config: DownloadConfig = CONFIG.download,
        matchers: Optional[Sequence[Matcher]] = None,
        poll_ms: Optional[int] = None,
        appear_timeout_ms: Optional[int] = None,
        stable_timeout_ms: Optional[int] = None,
        stable_window_ms: Optional[int] = None,
        stable_polls: Optional[int] = None,
        temp_stable_window_ms: Optional[int] = None,
    ):
        self.directory = Path(directory)
        self.poll_s = (poll_ms if poll_ms is not None else config.poll_ms) / 1000.0
        self.appear_timeout_s = (appear_timeout_ms if appear_timeout_ms is not None else config.appear_timeout_ms) / 1000.0
        self.stable_timeout_s = (stable_timeout_ms if stable_timeout_ms is not None else config.stable_timeout_ms) / 1000.0
        self.stable_window_s = (stable_window_ms if stable_window_ms is not None else config.stable_window_ms) / 1000.0
        self.stable_polls = stable_polls if stable_polls is not None else config.stable_polls
        self.temp_stable_window_s = (
            temp_stable_window_ms if temp_stable_window_ms is not None else config.temp_stable_window_ms
        ) / 1000.0
        self.matchers: List[Pattern[str]] = [
            re.compile(m, re.IGNORECASE) if isinstance(m, str) else m for m in (matchers or [])
        ]
        self._baseline: Optional[set] = None
        self._cancelled = threading.Event()

    def __repr__(self) -> str:
        return f"DirectoryMonitor({str(self.directory)!r})"

    def cancel(self) -> None:
        self._cancelled.set()

    def _sleep(self) -> None:
        if self._cancelled.wait(self.poll_s):
            raise CaptureTimeout(f"Watch of {self.directory} cancelled", {"directory": str(self.directory)})

    def _list_names(self) -> set:
        try:
            return {p.name for p in self.directory.iterdir() if p.is_file()}
        except FileNotFoundError:
            return set()

    def baseline(self) -> set:
        self._baseline = self._list_names()
        LOGGER.debug("Baseline for %s: %d file(s)", self.directory, len(self._baseline))
        return self._baseline

    def _matches(self, name: str) -> bool:
        if not self.matchers:
            return True
        final_name = split_stem(name)[0]
        return any(rx.search(name) or rx.search(final_name) for rx in self.matchers)

    def new_files(self) -> List[Path]:
        """New files since the baseline, newest first. Hidden files are ignored."""
        if self._baseline is None:
            self.baseline()
        out = []
        for name in self._list_names() - self._baseline:
            if name.startswith("."):
                continue
            path = self.directory / name
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            out.append((mtime, path))
        out.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in out]

    def await_appearance(self) -> DownloadCandidate:
        deadline = time.monotonic() + self.appear_timeout_s
        while True:
            fresh = [p for p in self.new_files() if self._matches(p.name)]
            final = [p for p in fresh if not is_temporary_name(p.name)]
            if final:
                LOGGER.info("New file in %s: %s", self.directory, final[0].name)
                return DownloadCandidate.observe(final[0])
            if fresh:
                # Browsers write to a temp name first; the final name follows on completion.
                LOGGER.info("Temporary download in %s: %s", self.directory, fresh[0].name)
                return DownloadCandidate.observe(fresh[0])
            if time.monotonic() >= deadline:
                raise CaptureTimeout(
                    f"No new file in {self.directory} after {self.appear_timeout_s:.1f}s",
                    {"directory": str(self.directory)},
                )
            self._sleep()

    def _reresolve(self, missing: Path) -> Optional[Path]:
        stem = split_stem(missing.name)[0].lower()
        fresh = [p for p in self.new_files() if not is_temporary_name(p.name) and self._matches(p.name)]
        for path in fresh:
            if split_stem(path.name)[0].lower() == stem:
                return path
        return fresh[0] if fresh else None

    def await_stability(self, candidate: DownloadCandidate) -> Tuple[Path, int]:
        deadline = time.monotonic() + self.stable_timeout_s
        path = candidate.path
        temporary = candidate.temporary
        last_size = -1
        unchanged = 0
        unchanged_since = time.monotonic()
        while True:
            now = time.monotonic()
            try:
                size = path.stat().st_size
            except OSError:
                size = None
            if size is None:
                resolved = self._reresolve(path)
                if resolved is not None:
                    LOGGER.info("Download renamed: %s -> %s", path.name, resolved.name)
                    path = resolved
                    temporary = is_temporary_name(path.name)
                    last_size, unchanged, unchanged_since = -1, 0, now
                    continue
            elif size > 0 and size == last_size:
                unchanged += 1
                window = self.temp_stable_window_s if temporary else self.stable_window_s
                if unchanged >= self.stable_polls and now - unchanged_since >= window:
                    LOGGER.info("Stable: %s (%d bytes)", path.name, size)
                    return path, size
            else:
                last_size, unchanged, unchanged_since = size, 0, now
            if now >= deadline:
                raise StabilizationTimeout(str(path), max(last_size, 0))
            self._sleep()

    def watch(self) -> Tuple[Path, int]:
        """Wait for one new file to appear and settle. Nothing is copied."""
        candidate = self.await_appearance()
        return self.await_stability(candidate)


def stage_file(
    source: Path,
    out_dir: Path,
    force_zip: bool = False,
    name: Optional[str] = None,
    channel: str = "filesystem",
    origin: Optional[str] = None,
) -> StagedFile:
    """Copy a settled file into ``out_dir`` under a sanitized, unused name."""
    original = name or source.name
    dest = unique_destination(out_dir, staged_filename(original, force_zip))
    try:
        shutil.copy2(source, dest)
        size = dest.stat().st_size
    except OSError as exc:
        raise StagingError(f"Could not copy {source} to {dest}: {exc}") from exc
    if size == 0:
        raise StagingError(f"Staged file is empty: {dest}", {"path": str(dest)})
    return StagedFile(
        path=str(dest),
        size_bytes=size,
        channel=channel,
        source=origin or str(source),
        original_name=original,
    )


class DownloadAcquirer:
    def __init__(
        self,
        out_dir: Path,
        directories: Optional[Iterable[Path]] = None,
        config: DownloadConfig = CONFIG.download,
        matchers: Optional[Sequence[Matcher]] = None,
        force_zip: Optional[bool] = None,
        monitor_factory: Optional[Callable[[Path], DirectoryMonitor]] = None,
        managed_dir: Optional[Path] = None,
    ):
        self.out_dir = Path(out_dir)
        self.config = config
        if directories is None:
            directories = [config.os_download_dir] if config.watch_os_downloads else []
        self.managed_dir = Path(managed_dir) if managed_dir is not None else None
        self.directories = [Path(d) for d in directories if self.managed_dir is None or Path(d) != self.managed_dir]
        self.force_zip = config.force_zip_extension if force_zip is None else force_zip
        self.monitor_factory = monitor_factory or (lambda d: DirectoryMonitor(d, config=config, matchers=matchers))

    def _managed_monitor(self) -> Optional[DirectoryMonitor]:
        if self.managed_dir is None:
            return None
        # The browser names its own files by GUID, so filename matchers do not apply here.
        return DirectoryMonitor(self.managed_dir, config=self.config, appear_timeout_ms=self.config.event_timeout_ms)

    def _stage_winner(
        self,
        monitor: DirectoryMonitor,
        source: Path,
        managed: Optional[DirectoryMonitor],
        events: List,
    ) -> StagedFile:
        if monitor is managed and events:
            download = events[0]
            suggested = download.suggested_filename or "bundle.zip"
            return stage_file(
                source, self.out_dir, self.force_zip, name=suggested, channel="event", origin=download.url
            )
        return stage_file(source, self.out_dir, self.force_zip)

    def capture(
        self,
        trigger: Callable[[], object],
        page=None,
        after_trigger: Optional[Callable[[], object]] = None,
    ) -> StagedFile:
        monitors = [self.monitor_factory(d) for d in self.directories]
        managed = self._managed_monitor()
        if managed is not None:
            monitors.append(managed)
        for monitor in monitors:
            monitor.baseline()

        events: List = []
        watched: List = []

        def on_download(download) -> None:
            events.append(download)

        def on_page(new_page) -> None:
            new_page.on("download", on_download)
            watched.append(new_page)

        context = None
        if page is not None:
            if managed is None:
                LOGGER.warning("No managed download directory; browser download events cannot be captured")
            # downloads are page events; popups opened by the trigger get the same listener
            context = page.context
            on_page(page)
            context.on("page", on_page)

        poll_s = self.config.poll_ms / 1000.0
        executor = ThreadPoolExecutor(max_workers=max(len(monitors), 1), thread_name_prefix="download-watch")
        futures: Dict[Future, DirectoryMonitor] = {}
        errors: List[Exception] = []
        try:
            for monitor in monitors:
                futures[executor.submit(monitor.watch)] = monitor
            trigger()
            if after_trigger is not None:
                after_trigger()

            pending = dict(futures)
            while pending:
                for future in [f for f in pending if f.done()]:
                    monitor = pending.pop(future)
                    exc = future.exception()
                    if exc is not None:
                        LOGGER.info("%s gave up: %s", monitor, exc)
                        errors.append(exc)
                        continue
                    source, _ = future.result()
                    try:
                        staged = self._stage_winner(monitor, source, managed, events)
                    except StagingError as staging_exc:
                        LOGGER.warning("Could not stage %s: %s", source, staging_exc)
                        errors.append(staging_exc)
                        continue
                    LOGGER.info("Captured via %s channel (%s): %s", staged.channel, monitor, staged.path)
                    return staged
                if not pending:
                    break
                if page is not None:
                    page.wait_for_timeout(self.config.poll_ms)
                else:
                    time.sleep(poll_s)
        finally:
            for monitor in monitors:
                monitor.cancel()
            if context is not None:
                context.remove_listener("page", on_page)
                for watched_page in watched:
                    watched_page.remove_listener("download", on_download)
            executor.shutdown(wait=False)

        unsettled = [e for e in errors if isinstance(e, StabilizationTimeout)]
        if unsettled:
            raise unsettled[0]
        staging = [e for e in errors if isinstance(e, StagingError)]
        if staging:
            raise staging[0]
        raise CaptureTimeout(
            "No download captured from any channel",
            {
                "directories": [str(d) for d in self.directories],
                "managed_dir": str(self.managed_dir) if self.managed_dir else None,
                "events_seen": len(events),
            },
        )
