from __future__ import annotations

import json

import pytest

from dealroom.errors import AssistUnavailable
from dealroom.automation import assist
from dealroom.automation.assist import ActionAdapter, LLMActionAdapter


class FakeResponse:
    def __init__(self, content: str):
        self.content = content

    def raise_for_status(self) -> None:
        return None

    def json(self):
        return {"choices": [{"message": {"content": self.content}}]}


def _fake_post(content: str, sent: list):
    def post(url, json=None, headers=None, timeout=None):
        sent.append({"url": url, "payload": json, "headers": headers, "timeout": timeout})
        return FakeResponse(content)

    return post


def test_adapter_requires_endpoint_and_key(monkeypatch) -> None:
    for name in ("LLM_ENDPOINT", "LLM_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(AssistUnavailable):
        LLMActionAdapter()
    with pytest.raises(AssistUnavailable):
        LLMActionAdapter(endpoint="https://llm.example.test/v1/chat/completions")


def test_openai_key_implies_default_endpoint(monkeypatch) -> None:
    monkeypatch.delenv("LLM_ENDPOINT", raising=False)
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    adapter = LLMActionAdapter()
    assert adapter.endpoint == assist.DEFAULT_OPENAI_ENDPOINT
    assert adapter.api_key == "sk-test"


def test_fill_action_targets_inventory_ref(serve, monkeypatch) -> None:
    page = serve('<label for="x">Contact Info</label><input id="x"><button>Send</button>')
    sent = []
    reply = '```json\n{"action": "fill", "ref": "r0", "value": "a@b.com", "reason": "email field"}\n```'
    monkeypatch.setattr(assist.requests, "post", _fake_post(reply, sent))
    adapter = LLMActionAdapter(endpoint="https://llm.example.test/v1/chat/completions", api_key="k", model="m")
    outcome = adapter.act(page, 'Find the input field labeled "Email" and type exactly: "a@b.com".', timeout_ms=3000)
    assert outcome == {"action": "fill", "ref": "r0", "value": "a@b.com", "reason": "email field"}
    assert page.input_value("#x") == "a@b.com"
    payload = sent[0]["payload"]
    assert payload["model"] == "m"
    assert payload["temperature"] == 0
    assert "Contact Info" in payload["messages"][1]["content"]
    assert sent[0]["headers"]["Authorization"] == "Bearer k"
    assert "max_tokens" not in payload


def test_unknown_ref_and_decline(serve, monkeypatch) -> None:
    page = serve('<input id="x"><button>Send</button>')
    adapter = LLMActionAdapter(endpoint="https://llm.example.test/v1/chat/completions", api_key="k")
    monkeypatch.setattr(assist.requests, "post", _fake_post(json.dumps({"action": "click", "ref": "r99"}), []))
    with pytest.raises(AssistUnavailable):
        adapter.act(page, "Click submit", timeout_ms=1000)
    monkeypatch.setattr(assist.requests, "post", _fake_post(json.dumps({"action": "none", "reason": "no form"}), []))
    with pytest.raises(AssistUnavailable):
        adapter.act(page, "Click submit", timeout_ms=1000)
    monkeypatch.setattr(assist.requests, "post", _fake_post("not json", []))
    with pytest.raises(AssistUnavailable):
        adapter.act(page, "Click submit", timeout_ms=1000)


def test_token_budget_caps_the_completion(serve, monkeypatch) -> None:
    page = serve('<button>Continue</button>')
    sent = []
    monkeypatch.setattr(assist.requests, "post", _fake_post(json.dumps({"action": "click", "ref": "r0"}), sent))
    adapter = LLMActionAdapter(endpoint="https://llm.example.test/v1/chat/completions", api_key="k")
    outcome = adapter.act(page, "Click continue", timeout_ms=2000, max_tokens=1500)
    assert outcome["action"] == "click"
    assert sent[0]["payload"]["max_tokens"] == 1500
    with pytest.raises(TypeError):
        ActionAdapter()
