from __future__ import annotations

import json
from typing import Dict, List


ACTION_PROMPT = """
You operate one step of a web form on behalf of a registered user.
You receive an instruction and an inventory of the visible interactive elements on the page.
Each element has a "ref". Pick exactly one element and one action.
Return JSON only in this shape:
{
  "action": "fill|click|select|none",
  "ref": "r12",
  "value": "text to type or option label to select, null for click",
  "reason": "short explanation tied to the element's label or text"
}
Rules:
- Only use refs that appear in the inventory.
- For "fill", value must be exactly the text given in the instruction.
- Never fill payment card, bank, or government id fields.
- Never click links that leave the site or cancel the flow.
- If no element fits, return {"action": "none", "ref": null, "value": null, "reason": "..."}.
""".strip()

SYSTEM_PROMPT = "Return JSON only. Do not wrap in markdown."


def build_action_prompt(instruction: str, inventory: List[Dict], page_url: str = "") -> str:
    return (
        f"{ACTION_PROMPT}\n\n"
        f"Page URL: {page_url}\n"
        f"Instruction: {instruction}\n\n"
        f"Elements:\n{json.dumps(inventory, indent=2)}\n"
    )


def fill_instruction(label: str, value: str) -> str:
    return f'Find the input field labeled or described as "{label}" and type exactly: {json.dumps(value)}.'


SUBMIT_INSTRUCTION = (
    "Click the primary submit/continue/next/apply/download button on this page."
)
