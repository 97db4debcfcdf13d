import sys
from pathlib import Path
from typing import Callable, Iterator

import pytest
from playwright.sync_api import sync_playwright

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(scope="session")
def browser_downloads(tmp_path_factory) -> Path:
    return tmp_path_factory.mktemp("browser-downloads")


@pytest.fixture(scope="session")
def chromium(browser_downloads: Path) -> Iterator:
    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=True, downloads_path=str(browser_downloads))
        yield browser
        browser.close()


@pytest.fixture()
def page(chromium) -> Iterator:
    context = chromium.new_context(accept_downloads=True)
    page = context.new_page()
    page.set_default_timeout(5000)
    yield page
    context.close()


@pytest.fixture()
def serve(page) -> Callable[..., object]:
    """Serve inline HTML at a fake URL so host-based lookups see a real hostname."""

    def _serve(html: str, url: str = "https://forms.example.test/gate") -> object:
        page.route(url, lambda route: route.fulfill(status=200, content_type="text/html", body=html))
        page.goto(url, wait_until="domcontentloaded")
        return page

    return _serve
