from __future__ import annotations

import abc
import json
import logging
import os
import re
from typing import Dict, List, Optional, Tuple

import requests
from playwright.sync_api import Error as PlaywrightError

from ..errors import AssistUnavailable
from ..pipeline.prompts import SYSTEM_PROMPT, build_action_prompt

LOGGER = logging.getLogger(__name__)

DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
REF_ATTR = "data-dealroom-ref"
INVENTORY_LIMIT = 80

INVENTORY_JS = """
(args) => {
  const [attr, limit] = args;
  const clean = (s) => (s || '').replace(/\\s+/g, ' ').trim().slice(0, 120);
  const visible = (el) => {
    if (!el.getClientRects().length) return false;
    const style = window.getComputedStyle(el);
    return style.visibility !== 'hidden' && style.display !== 'none';
  };
  const nodes = document.querySelectorAll(
    'input, textarea, select, button, a[href], [role="button"], [role="checkbox"], [role="textbox"], [role="link"]'
  );
  const out = [];
  let n = 0;
  for (const el of nodes) {
    if (out.length >= limit) break;
    const type = (el.getAttribute('type') || '').toLowerCase();
    if (type === 'hidden' || !visible(el)) continue;
    const ref = `r${n++}`;
    el.setAttribute(attr, ref);
    let label = '';
    const id = el.getAttribute('id');
    if (id) {
      const lb = document.querySelector(`label[for="${CSS.escape(id)}"]`);
      if (lb) label = clean(lb.innerText || lb.textContent);
    }
    if (!label && el.closest('label')) label = clean(el.closest('label').innerText);
    out.push({
      ref,
      tag: el.tagName.toLowerCase(),
      type,
      role: el.getAttribute('role') || '',
      label,
      text: clean(el.innerText || el.value || ''),
      name: el.getAttribute('name') || '',
      placeholder: el.getAttribute('placeholder') || '',
      aria_label: el.getAttribute('aria-label') || '',
    });
  }
  return out;
}
"""


def _resolve_llm_config() -> Tuple[Optional[str], Optional[str], str, float]:
    endpoint = os.getenv("LLM_ENDPOINT")
    api_key = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY")
    model = (
        os.getenv("LLM_MODEL")
        or os.getenv("OPENAI_MODEL")
        or DEFAULT_OPENAI_MODEL
    ).strip()
    if not endpoint and os.getenv("OPENAI_API_KEY"):
        endpoint = DEFAULT_OPENAI_ENDPOINT
    timeout = float(os.getenv("LLM_TIMEOUT", "20"))
    return endpoint, api_key, model, timeout


def _strip_fences(content: str) -> str:
    text = content.strip()
    match = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    return match.group(1) if match else text


class ActionAdapter(abc.ABC):
    """Performs one natural-language step on a page."""

    name = "base"

    @abc.abstractmethod
    def act(self, page, instruction: str, timeout_ms: int, max_tokens: Optional[int] = None) -> Dict[str, object]:
        """Carry out the instruction; ``max_tokens`` caps the completion when set."""


class LLMActionAdapter(ActionAdapter):
    """Asks an OpenAI-compatible chat endpoint to pick one element and action."""

    name = "llm"

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        env_endpoint, env_key, env_model, env_timeout = _resolve_llm_config()
        self.endpoint = endpoint or env_endpoint
        self.api_key = api_key or env_key
        self.model = model or env_model
        self.timeout = timeout if timeout is not None else env_timeout
        if not self.endpoint:
            raise AssistUnavailable("LLM endpoint not configured")
        if not self.api_key:
            raise AssistUnavailable("LLM API key not configured")

    def collect_inventory(self, page) -> List[Dict[str, object]]:
        try:
            return page.evaluate(INVENTORY_JS, [REF_ATTR, INVENTORY_LIMIT]) or []
        except PlaywrightError as exc:
            raise AssistUnavailable(f"Could not inventory page: {exc}") from exc

    def request_action(
        self,
        instruction: str,
        inventory: List[Dict],
        page_url: str,
        timeout_s: float,
        max_tokens: Optional[int] = None,
    ) -> Dict:
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_action_prompt(instruction, inventory, page_url)},
            ],
            "temperature": 0,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        try:
            resp = requests.post(self.endpoint, json=payload, headers=headers, timeout=timeout_s)
            resp.raise_for_status()
            data = resp.json()
            content = (
                data.get("choices", [{}])[0]
                .get("message", {})
                .get("content", "")
            )
            parsed = json.loads(_strip_fences(content))
        except (requests.RequestException, ValueError, IndexError, AttributeError) as exc:
            raise AssistUnavailable(f"LLM action request failed: {exc}") from exc
        if not isinstance(parsed, dict):
            raise AssistUnavailable("LLM action returned non-object JSON")
        return parsed

    def act(self, page, instruction: str, timeout_ms: int, max_tokens: Optional[int] = None) -> Dict[str, object]:
        inventory = self.collect_inventory(page)
        if not inventory:
            raise AssistUnavailable("No interactive elements on page")
        timeout_s = min(self.timeout, max(timeout_ms / 1000.0, 1.0))
        action = self.request_action(instruction, inventory, page.url, timeout_s, max_tokens)
        kind = str(action.get("action") or "none").lower()
        ref = action.get("ref")
        refs = {item.get("ref") for item in inventory}
        if kind == "none" or not ref:
            raise AssistUnavailable(f"LLM declined the step: {action.get('reason') or 'no reason'}")
        if ref not in refs:
            raise AssistUnavailable(f"LLM returned unknown element ref {ref!r}")
        target = page.locator(f'[{REF_ATTR}="{ref}"]').first
        value = action.get("value")
        LOGGER.info("Assisted %s on %s (%s)", kind, ref, action.get("reason") or "")
        if kind == "fill":
            target.fill(str(value or ""), timeout=timeout_ms)
        elif kind == "click":
            target.click(timeout=timeout_ms)
        elif kind == "select":
            target.select_option(label=str(value or ""), timeout=timeout_ms)
        else:
            raise AssistUnavailable(f"Unsupported action {kind!r}")
        return {"action": kind, "ref": ref, "value": value, "reason": action.get("reason")}
