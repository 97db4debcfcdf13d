from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from dealroom import main
from dealroom.automation.audit import AUDIT_FILENAME


@pytest.fixture()
def client(tmp_path: Path, monkeypatch) -> TestClient:
    monkeypatch.setattr(main, "RUNS_DIR", tmp_path)
    return TestClient(main.app)


def test_metadata_endpoints(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    registry = client.get("/field_registry").json()
    assert "email" in [field["key"] for field in registry["fields"]]
    assert registry["autocomplete"]["tel"] == "phone"
    names = [platform["name"] for platform in client.get("/platforms").json()["platforms"]]
    assert names


def test_capture_rejects_non_http_urls(client: TestClient, tmp_path: Path) -> None:
    response = client.post("/capture", json={"url": "file:///etc/passwd"})
    assert response.status_code == 400
    assert list(tmp_path.iterdir()) == []


def test_capture_runs_in_worker_thread(client: TestClient, tmp_path: Path, monkeypatch) -> None:
    calls = []

    def fake_run_capture(url, run_dir, **kwargs):
        calls.append((url, run_dir, kwargs))
        (run_dir / AUDIT_FILENAME).write_text(json.dumps({"url": url, "status": "success"}))
        return {"url": url, "status": "success", "downloads": []}

    monkeypatch.setattr(main, "run_capture", fake_run_capture)
    response = client.post(
        "/capture",
        json={"url": "https://invest.jll.com/listing/1", "max_steps": 2, "form_data": {"email": "a@b.com"}},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["status"] == "success"
    url, run_dir, kwargs = calls[0]
    assert url == "https://invest.jll.com/listing/1"
    assert run_dir.parent == tmp_path
    assert kwargs["max_steps"] == 2
    assert kwargs["form_data"] == {"email": "a@b.com"}
    assert (run_dir / "run.log").exists()

    audit = client.get(f"/runs/{body['run_id']}")
    assert audit.status_code == 200
    assert audit.json()["status"] == "success"


def test_capture_crash_is_reported(client: TestClient, monkeypatch) -> None:
    def boom(url, run_dir, **kwargs):
        raise RuntimeError("browser exploded")

    monkeypatch.setattr(main, "run_capture", boom)
    response = client.post("/capture", json={"url": "https://example.com"})
    assert response.status_code == 500
    assert response.json()["summary"]["status"] == "error"
    assert "browser exploded" in response.json()["summary"]["errors"][0]


def test_unknown_run_is_404(client: TestClient) -> None:
    assert client.get("/runs/does-not-exist").status_code == 404
