from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any

from ..session.models import ToolCall

logger = logging.getLogger(__name__)

# Stage one: bounded extraction of a candidate JSON payload.
_FENCED = re.compile(r"```(?:json)?\s*\n?(?P<body>[\[{][\s\S]*?[\]}])\s*```", re.IGNORECASE)

_TOOL_FENCE = re.compile(r"```(?:json)?\s*[\[{]\s*\{?\s*\"tool\"\s*:[\s\S]*?```", re.IGNORECASE)
_OPEN_TOOL_FENCE = re.compile(r"```(?:json)?\s*[\[{]\s*\{?\s*\"tool\"\s*:(?:(?!```)[\s\S])*$", re.IGNORECASE)
_INLINE_START = re.compile(r"\[\s*\{\s*\"tool\"\s*:|\{\s*\"tool\"\s*:")


def new_call_id() -> str:
    return f"tool_{uuid.uuid4().hex[:12]}"


def _outermost_json(text: str) -> str | None:
    """Return the first balanced top-level {...} or [...] span, honoring strings."""
    start = -1
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"' and start != -1:
            in_str = True
        elif ch in "{[":
            if start == -1:
                start = i
            depth += 1
        elif ch in "}]" and start != -1:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json_payload(text: str) -> str | None:
    m = _FENCED.search(text)
    if m:
        return m.group("body")
    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        return _outermost_json(stripped)
    m = _INLINE_START.search(text)
    if m:
        return _outermost_json(text[m.start() :])
    return None


def _directive(item: Any) -> ToolCall | None:
    if not isinstance(item, dict):
        return None
    name = item.get("tool")
    if not isinstance(name, str) or not name.strip():
        return None
    params = item.get("parameters", {})
    if params is None:
        params = {}
    if not isinstance(params, dict):
        return None
    return ToolCall(id=new_call_id(), name=name.strip(), parameters=params)


def parse_tool_directives(text: str) -> list[ToolCall]:
    """Parse `{"tool":..., "parameters":...}` or an array of them out of model text.

    Returns an empty list when the text is not a tool directive; the caller
    then treats it as the final natural-language answer.
    """
    if not text or not text.strip():
        return []
    payload = extract_json_payload(text)
    if payload is None:
        return []
    # Stage two: validated deserialization.
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.debug("tool directive payload is not valid JSON: %s", e)
        return []

    items = obj if isinstance(obj, list) else [obj]
    calls: list[ToolCall] = []
    for item in items:
        call = _directive(item)
        if call is None:
            # A malformed element invalidates the whole batch.
            logger.debug("rejecting directive batch: bad element %r", item)
            return []
        calls.append(call)
    return calls


def strip_tool_calls(text: str) -> str:
    """Remove tool-directive JSON from text meant for display."""
    if not text or not text.strip():
        return text
    out = _TOOL_FENCE.sub("", text)
    out = _OPEN_TOOL_FENCE.sub("", out)
    payload = extract_json_payload(out)
    if payload and parse_tool_directives(payload):
        out = out.replace(payload, "", 1)
    return out.strip()
