from __future__ import annotations

import argparse
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from dealroom.automation.run_capture import run_capture
from dealroom.config import CONFIG, resolve_target_url


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one deal room capture against a listing URL.")
    parser.add_argument("url", nargs="?", help="Listing URL (defaults to DEALROOM_TARGET_URL)")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--max-steps", type=int, default=None)
    parser.add_argument("--aggressive", action="store_true", help="Also tick marketing opt-ins")
    parser.add_argument("--download-dir", action="append", type=Path, default=None,
                        help="Extra directory to watch for downloads (repeatable)")
    parser.add_argument("--run-dir", type=Path, default=None)
    args = parser.parse_args()

    url = resolve_target_url(args.url)
    if not url:
        parser.error("a URL or DEALROOM_TARGET_URL is required")

    logging.basicConfig(level=CONFIG.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    run_dir = args.run_dir or CONFIG.runs_dir / (
        datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
    )
    download_dirs = None
    if args.download_dir:
        download_dirs = list(args.download_dir)
        if CONFIG.download.watch_os_downloads:
            download_dirs.append(CONFIG.download.os_download_dir)

    summary = run_capture(
        url,
        run_dir,
        headless=False if args.headed else None,
        max_steps=args.max_steps,
        aggressive=True if args.aggressive else None,
        download_dirs=download_dirs,
    )
    print(json.dumps(summary, indent=2, default=str))


if __name__ == "__main__":
    main()
