from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .app_context import AppContext
from .compaction.compactor import is_summary
from .compaction.tokens import count_tokens
from .events.store import ToolExecution
from .llm.base import AIRequest, AIResponse
from .llm.errors import AIError, AIErrorKind
from .session.models import Message, ToolCall
from .tools.base import ToolResult
from .tools.directives import parse_tool_directives, strip_tool_calls

logger = logging.getLogger(__name__)

TextSink = Callable[[str], None]

SYSTEM_PROMPT = """You are pymosaic, a terminal coding agent working inside the user's workspace.
Rules:
- Use the tools below to inspect files and run commands; never invent file contents or command output.
- Prefer list_directory / search_code / read_file before changing anything.
- Modify existing files with update_file; write_file only creates new files.
- Paths are relative to the workspace root. Access outside the workspace is denied.
- Some tools need the user's approval. If a call is rejected, do not retry it unchanged.

To call tools, answer with a JSON directive, preferably inside a ```json code block.

Single tool:
```json
{"tool": "tool_name", "parameters": {...}}
```

Several tools, executed in order:
```json
[
  {"tool": "tool_1", "parameters": {...}},
  {"tool": "tool_2", "parameters": {...}}
]
```

Tool results come back in the next message. When no more tools are needed,
answer in plain text without any directive.
"""

MAX_STEPS_NOTICE = "Reached max steps ({n}) without a final answer."

_OPEN_FENCE = "```"


@dataclass
class TurnResult:
    final_text: str
    steps: int = 0
    error: Optional[str] = None
    tool_results: list[tuple[ToolCall, ToolResult]] = field(default_factory=list)


def build_system_prompt(ctx: AppContext) -> str:
    parts = [SYSTEM_PROMPT, "Available tools:"]
    for schema in ctx.tools.schemas():
        parts.append(f"Tool: {schema['name']}\nDescription: {schema['description']}")
        parts.append(f"Parameters: {json.dumps(schema['parameters'], ensure_ascii=False, indent=2)}")
    extra = (ctx.behavior.system_prompt or "").strip()
    if extra:
        parts.append(f"Additional instructions:\n{extra}")
    return "\n\n".join(parts)


def enrich_tool_result(call: ToolCall, result: ToolResult) -> str:
    """Render one tool outcome as the text the model reads on the next step."""
    text = (
        f'Tool "{call.name}" executed with parameters:\n'
        f"{json.dumps(call.parameters, ensure_ascii=False, indent=2, default=str)}\n\n"
    )
    if result.success:
        text += f"Result: SUCCESS\n{json.dumps(result.data, ensure_ascii=False, indent=2, default=str)}\n\n"
        text += "Analyze these results and continue: call further tools or answer the user."
    else:
        text += f"Result: FAILED\nError: {result.error}\n\n"
        text += (
            "The tool failed. Try a different tool or different parameters, "
            "or explain the problem to the user if there is no alternative."
        )
    if result.metadata:
        text += f"\n\nAdditional context: {json.dumps(result.metadata, ensure_ascii=False, indent=2, default=str)}"
    return text


def display_name(tool_name: str) -> str:
    return tool_name.replace("_", " ").title()


def _clip(text: str, n: int = 80) -> str:
    line = (text or "").strip().splitlines()[0] if (text or "").strip() else ""
    return line if len(line) <= n else line[: n - 3] + "..."


_SUMMARY_KEYS: list[tuple[str, Callable[[Any], str]]] = [
    ("count", lambda v: f"{v} matches"),
    ("entries", lambda v: f"{len(v)} entries"),
    ("lines_read", lambda v: f"{v} lines"),
    ("bytes_written", lambda v: f"{v} bytes written"),
    ("updates_applied", lambda v: f"{v} updates applied"),
    ("exit_code", lambda v: f"exit {v}"),
    ("status", lambda v: f"HTTP {v}"),
    ("exists", lambda v: "exists" if v else "not found"),
]


def summarize_result(result: ToolResult) -> str:
    if not result.success:
        return _clip(result.error or "failed")
    data = result.data
    if isinstance(data, dict):
        for key, fmt in _SUMMARY_KEYS:
            if key in data:
                return fmt(data[key])
    return "done"


class _DisplayStream:
    """Forwards streamed text to a sink with tool-directive JSON held back."""

    def __init__(self, sink: TextSink):
        self.sink = sink
        self.raw = ""
        self.shown = ""

    def _emit(self, visible: str) -> None:
        if len(visible) > len(self.shown) and visible.startswith(self.shown):
            self.sink(visible[len(self.shown) :])
            self.shown = visible

    def feed(self, delta: str) -> None:
        self.raw += delta
        visible = strip_tool_calls(self.raw)
        # An unclosed fence or bracket may still turn into a directive.
        if visible.count(_OPEN_FENCE) % 2:
            visible = visible[: visible.rfind(_OPEN_FENCE)]
        m = re.search(r"[\[{][^\]}]*$", visible)
        if m:
            visible = visible[: m.start()]
        self._emit(visible.rstrip().rstrip("`").rstrip())

    def restart(self) -> None:
        """Begin a new attempt; text already shown is not repeated."""
        self.raw = ""

    def finish(self, content: str) -> None:
        visible = strip_tool_calls(content)
        if visible and not visible.startswith(self.shown):
            # A retried attempt diverged from what was already printed.
            self.sink("\n" + visible)
            self.shown = visible
            return
        self._emit(visible)


def _ensure_system_prompt(ctx: AppContext) -> None:
    history = ctx.history
    prompt = build_system_prompt(ctx)
    for i, m in enumerate(history):
        if m.role == "system" and not is_summary(m):
            history[i] = Message(role="system", content=prompt, timestamp=m.timestamp)
            return
    history.insert(0, Message(role="system", content=prompt))


def _compact(ctx: AppContext, step: int) -> None:
    max_tokens, reserved = ctx.compaction_window()
    res = ctx.compactor.compact_if_needed(ctx.history, max_tokens, reserved)
    if res.messages_compacted == 0:
        return
    # In place: the AgentContext shares this list.
    ctx.history[:] = res.messages
    ctx.events.append(
        "compaction.applied",
        {
            "step": step,
            "tokens_before": res.tokens_before,
            "tokens_after": res.tokens_after,
            "messages_compacted": res.messages_compacted,
        },
    )


async def _call_provider(
    ctx: AppContext,
    request: AIRequest,
    on_text: Optional[TextSink],
    display: Optional[_DisplayStream],
) -> AIResponse:
    if display is None:
        response = await ctx.gateway.send(request)
        if on_text:
            visible = strip_tool_calls(response.content)
            if visible:
                on_text(visible)
        return response

    display.restart()
    response = await ctx.gateway.stream(request, display.feed)
    display.finish(response.content)
    return response


def _as_ai_error(ctx: AppContext, e: Exception) -> AIError:
    if isinstance(e, AIError):
        return e
    cfg = ctx.gateway.config
    kind = AIErrorKind.TIMEOUT if isinstance(e, TimeoutError) else AIErrorKind.UNKNOWN
    return AIError(kind, str(e) or type(e).__name__, provider=cfg.name, model=cfg.model, retryable=False)


async def run_agent_once(
    ctx: AppContext,
    user_prompt: str,
    max_steps: int | None = None,
    *,
    on_text: Optional[TextSink] = None,
) -> TurnResult:
    """Run one user turn: call the provider, execute tool directives, repeat.

    The loop ends when the model answers without a directive, when a provider
    call fails after retries, or after `max_steps` provider calls.
    asyncio.CancelledError is never caught here.
    """
    history = ctx.history
    _ensure_system_prompt(ctx)
    history.append(Message(role="user", content=user_prompt))

    limit = max_steps or ctx.behavior.max_steps
    turn = TurnResult(final_text="")
    last_visible = ""

    for step in range(1, limit + 1):
        turn.steps = step
        _compact(ctx, step)

        wire = [m.to_wire(keep_tool_role=ctx.gateway.keeps_tool_role) for m in history]
        request = ctx.gateway.build_request(wire)
        ctx.events.append(
            "llm.request",
            {"step": step, "messages": len(wire), "tokens": count_tokens(history), "model": request.model},
        )

        display = _DisplayStream(on_text or (lambda _s: None)) if ctx.stream else None
        t0 = time.perf_counter()
        try:
            response = await ctx.retry.execute_with_retry(
                lambda: _call_provider(ctx, request, on_text, display),
                f"{ctx.gateway.label} request",
            )
        except Exception as e:
            err = _as_ai_error(ctx, e)
            text = err.describe()
            logger.error("provider call failed: %s", text)
            ctx.events.append("llm.error", {"step": step, **err.to_dict()})
            history.append(Message(role="assistant", content=f"❌ {text}"))
            turn.error = text
            turn.final_text = text
            return turn

        calls = parse_tool_directives(response.content)
        ctx.events.append(
            "llm.response",
            {
                "step": step,
                "elapsed_ms": int((time.perf_counter() - t0) * 1000),
                "text": response.content[:4000],
                "has_reasoning": bool(response.reasoning),
                "tool_calls": [{"id": c.id, "tool": c.name, "parameters": c.parameters} for c in calls],
            },
        )
        history.append(Message(role="assistant", content=response.content))

        if not calls:
            turn.final_text = response.content
            return turn

        visible = strip_tool_calls(response.content)
        if visible:
            last_visible = visible

        # Sequential, in issue order; a failure does not stop the batch.
        for call in calls:
            result = await _execute_call(ctx, call, step)
            turn.tool_results.append((call, result))
            history.append(
                Message(
                    role="tool",
                    content=enrich_tool_result(call, result),
                    tool_call=call,
                    tool_result=result,
                )
            )

    turn.final_text = last_visible or MAX_STEPS_NOTICE.format(n=limit)
    logger.warning("turn stopped after %d steps", limit)
    return turn


async def _execute_call(ctx: AppContext, call: ToolCall, step: int) -> ToolResult:
    shown = display_name(call.name)
    ctx.events.append("tool.call", {"step": step, "id": call.id, "tool": call.name, "parameters": call.parameters})
    ctx.events.publish_tool_execution(
        ToolExecution(name=call.name, display_name=shown, status="running", parameters=call.parameters)
    )

    t0 = time.perf_counter()
    outcome = await ctx.gate.execute(
        ctx.tools,
        call.name,
        call.parameters,
        ctx.agent,
        ctx.behavior.tool_timeout_ms,
        bypass=ctx.approve_all,
    )
    if outcome.approve_all:
        ctx.approve_all = True
    result = outcome.result

    ctx.events.publish_tool_execution(
        ToolExecution(
            name=call.name,
            display_name=shown,
            status="completed" if result.success else "error",
            summary=summarize_result(result),
            parameters=call.parameters,
        )
    )
    ctx.events.append(
        "tool.result",
        {
            "step": step,
            "id": call.id,
            "tool": call.name,
            "success": result.success,
            "error": result.error,
            "decision": outcome.decision.value if outcome.decision else None,
            "elapsed_ms": int((time.perf_counter() - t0) * 1000),
        },
    )
    return result
