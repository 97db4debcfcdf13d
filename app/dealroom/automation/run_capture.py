from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from ..config import CONFIG
from ..errors import CaptureEngineError, FallbackError, ValidationBlocked
from ..fallback_policy import assist_globally_disabled, make_fallback_context
from ..pipeline.form_data import build_data_bucket
from ..platforms import get_platform_config
from .assist import ActionAdapter
from .audit import append_run_log, write_audit, write_fallback_stats, zip_artifacts
from .autofill import AutofillOptions, FormAutofiller
from .consent import ConsentDetector, ConsentOptions
from .dom import settle
from .documents import (
    download_documents,
    enter_deal_room_if_present,
    goto_documents,
    is_deal_room_page,
    select_all_documents,
)
from .downloads import DownloadAcquirer
from .navigate import NavigationAdvancer, NavigationOptions

LOGGER = logging.getLogger(__name__)


def run_capture(
    url: str,
    run_dir: Path,
    headless: Optional[bool] = None,
    slow_mo_ms: Optional[int] = None,
    max_steps: Optional[int] = None,
    skip_sensitive: Optional[bool] = None,
    only_required: Optional[bool] = None,
    aggressive: Optional[bool] = None,
    form_data: Optional[Mapping[str, str]] = None,
    download_dirs: Optional[Iterable[Path]] = None,
    adapter: Optional[ActionAdapter] = None,
) -> Dict:
    """Open a listing, clear its gate forms, and capture the document bundle."""
    run_dir.mkdir(parents=True, exist_ok=True)
    trace_path = run_dir / "trace.zip"
    downloads_dir = run_dir / "downloads"
    browser_downloads_dir = run_dir / "browser-downloads"
    start_time = time.perf_counter()

    browser_cfg = CONFIG.browser
    autofill_cfg = CONFIG.autofill
    headless = browser_cfg.headless if headless is None else headless
    slow_mo_ms = browser_cfg.slow_mo_ms if slow_mo_ms is None else slow_mo_ms
    max_steps = autofill_cfg.max_steps if max_steps is None else max_steps
    skip_sensitive = autofill_cfg.skip_sensitive if skip_sensitive is None else skip_sensitive
    only_required = autofill_cfg.only_required if only_required is None else only_required
    aggressive = autofill_cfg.aggressive if aggressive is None else aggressive

    bucket = build_data_bucket(autofill_cfg.formdata_path, overrides=form_data)
    platform = get_platform_config(url)
    ctx, host_cfg = make_fallback_context(url, run_dir)
    assist_enabled = bool(host_cfg and host_cfg.enabled) and not assist_globally_disabled()

    append_run_log(
        run_dir,
        f"Capture start. URL: {url} | platform={platform.name if platform else 'generic'} | "
        f"headless={headless} | max_steps={max_steps} | assist={'on' if assist_enabled else 'off'}",
    )
    append_run_log(run_dir, f"Form data keys: {sorted(bucket.redacted())}")

    summary: Dict[str, object] = {
        "url": url,
        "platform": platform.name if platform else None,
        "status": "started",
        "final_url": "",
        "filled": 0,
        "consent": {},
        "navigation": {},
        "deal_room": False,
        "documents_tab": False,
        "selected_all": False,
        "downloads": [],
        "errors": [],
    }
    errors: List[str] = summary["errors"]

    autofiller = FormAutofiller(bucket)
    consent = ConsentDetector()
    nav_options = NavigationOptions(
        max_steps=max_steps,
        escalate=assist_enabled,
        navigation_timeout_ms=browser_cfg.action_timeout_ms,
        autofill=AutofillOptions(only_required=only_required, skip_sensitive=skip_sensitive, platform=platform),
        consent=ConsentOptions(aggressive=aggressive, click_buttons=False, platform=platform),
    )
    acquirer = DownloadAcquirer(downloads_dir, directories=download_dirs, managed_dir=browser_downloads_dir)

    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(
            headless=headless, slow_mo=slow_mo_ms, downloads_path=str(browser_downloads_dir)
        )
        context = browser.new_context(accept_downloads=True)
        context.tracing.start(screenshots=True, snapshots=True, sources=True)
        page = context.new_page()
        try:
            page.set_default_timeout(browser_cfg.action_timeout_ms)
            page.goto(url, wait_until="domcontentloaded", timeout=browser_cfg.nav_timeout_ms)
            settle(page)

            # agreement buttons on an unfilled form would submit it empty
            interstitial = autofiller.pending_controls(page) == 0
            pre = consent.handle_page(
                page, ConsentOptions(aggressive=aggressive, click_buttons=interstitial, platform=platform)
            )
            summary["consent"] = pre.as_dict()
            append_run_log(run_dir, f"Consent pre-pass: {pre.total} control(s)")

            advancer = NavigationAdvancer(autofiller, consent, platform, fallback_ctx=ctx, adapter=adapter)
            nav = advancer.run(page, nav_options, stop_when=is_deal_room_page)
            summary["navigation"] = nav.as_dict()
            summary["filled"] = nav.total_filled
            append_run_log(
                run_dir,
                f"Navigation: {len(nav.steps)} step(s), filled {nav.total_filled}, stopped: {nav.stopped_reason}",
            )

            active = enter_deal_room_if_present(page, platform)
            summary["deal_room"] = is_deal_room_page(active)
            summary["documents_tab"] = goto_documents(active, platform)
            summary["selected_all"] = select_all_documents(active, platform)
            append_run_log(
                run_dir,
                f"Deal room: {summary['deal_room']} | documents tab: {summary['documents_tab']} | "
                f"select all: {summary['selected_all']}",
            )

            staged = download_documents(active, acquirer, platform, errors)
            summary["downloads"] = [item.model_dump() for item in staged]
            for item in staged:
                append_run_log(run_dir, f"Staged {item.path} ({item.size_bytes} bytes via {item.channel})")
            summary["final_url"] = active.url
            summary["status"] = "success" if staged else "no_downloads"
        except ValidationBlocked as exc:
            summary["status"] = exc.reason
            summary["validation_issues"] = exc.issues
            errors.append(str(exc))
            append_run_log(run_dir, f"Stopped: {exc}")
        except FallbackError as exc:
            summary["status"] = exc.reason
            errors.append(str(exc))
            append_run_log(run_dir, f"Fallback refused: {exc}")
        except (CaptureEngineError, PlaywrightError) as exc:
            summary["status"] = getattr(exc, "reason", "browser_error")
            errors.append(str(exc))
            LOGGER.exception("Capture failed for %s", url)
            append_run_log(run_dir, f"Capture failed: {exc}")
        finally:
            if not summary["final_url"]:
                summary["final_url"] = page.url
            try:
                context.tracing.stop(path=str(trace_path))
            except PlaywrightError as exc:
                LOGGER.warning("Trace capture failed: %s", exc)
            context.close()
            browser.close()

    summary["fallback"] = ctx.stats(assist_enabled)
    summary["duration_ms"] = int((time.perf_counter() - start_time) * 1000)
    summary["trace"] = str(trace_path)
    write_fallback_stats(run_dir, ctx, assist_enabled)
    write_audit(run_dir, {**summary, "fields": autofiller.records})
    if CONFIG.zip_artifacts:
        summary["artifacts_zip"] = str(zip_artifacts(run_dir))
    append_run_log(
        run_dir,
        f"Capture complete. Status {summary['status']}; downloads {len(summary['downloads'])}; "
        f"assisted steps {ctx.steps_used}/{ctx.max_steps}; runtime {summary['duration_ms']}ms",
    )
    return summary
