from __future__ import annotations

from collections.abc import Iterable
from typing import Any

HistoryEntry = dict[str, Any]

_ALLOWED_INSERT_ROLES = {"system", "user", "assistant"}


def normalize_role(role: str) -> str:
    """Map loosely specified roles onto the chat roles the model understands."""

    role_norm = (role or "").strip().lower()
    if role_norm in _ALLOWED_INSERT_ROLES:
        return role_norm
    return "user"


def build_llm_messages(instructions: str, history: Iterable[HistoryEntry]) -> list[HistoryEntry]:
    messages: list[HistoryEntry] = []
    if instructions:
        messages.append({"role": "system", "content": instructions})
    messages.extend(dict(entry) for entry in history)
    return messages


def assistant_tool_call_entry(
    call_id: str, name: str, arguments: str, *, content: str | None = None
) -> HistoryEntry:
    return {
        "role": "assistant",
        "content": content or None,
        "tool_calls": [
            {
                "id": call_id,
                "type": "function",
                "function": {"name": name, "arguments": arguments},
            }
        ],
    }


def tool_result_entry(call_id: str, message: str) -> HistoryEntry:
    return {"role": "tool", "tool_call_id": call_id, "content": message}


def dtmf_prompt(digit: str) -> str:
    return f"DTMF: {digit}"
