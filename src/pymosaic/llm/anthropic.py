from __future__ import annotations

from contextlib import aclosing
from typing import Any, Optional

from .base import (
    AIRequest,
    AIResponse,
    DeltaCallback,
    HttpAdapter,
    ThinkStreamFilter,
    TokenUsage,
    merge_reasoning,
    split_thinking,
)
from .errors import AIError

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 8192
THINKING_BUDGET = 10000


def _usage(obj: Any) -> Optional[TokenUsage]:
    if not isinstance(obj, dict):
        return None
    return TokenUsage.of(obj.get("input_tokens"), obj.get("output_tokens"))


class AnthropicAdapter(HttpAdapter):
    """Messages API. System prompts travel out of band; thinking blocks become `reasoning`."""

    label = "Anthropic"
    default_base_url = "https://api.anthropic.com/v1"

    def headers(self) -> dict[str, str]:
        if not self.config.api_key:
            raise AIError.missing_api_key(self.label, self.config.model)
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def url(self) -> str:
        return (self.config.base_url or self.default_base_url).rstrip("/") + "/messages"

    def payload(self, request: AIRequest, *, stream: bool) -> dict[str, Any]:
        system = [m["content"] for m in request.messages if m["role"] == "system"]
        turns = [m for m in request.messages if m["role"] != "system"]
        max_tokens = request.max_tokens or DEFAULT_MAX_TOKENS
        body: dict[str, Any] = {
            "model": request.model,
            "max_tokens": max_tokens,
            "messages": [{"role": m["role"], "content": m["content"]} for m in turns],
        }
        if system:
            body["system"] = "\n\n".join(system)
        if request.reasoning:
            # The thinking budget must stay below max_tokens.
            body["max_tokens"] = max(max_tokens, THINKING_BUDGET + 1024)
            body["thinking"] = {"type": "enabled", "budget_tokens": THINKING_BUDGET}
        if stream:
            body["stream"] = True
        return body

    def _finish(self, content: str, reasoning: Optional[str], usage: Optional[TokenUsage], raw: dict) -> AIResponse:
        if not content and not reasoning:
            raise AIError.empty_response(self.label, self.config.model)
        return AIResponse(content=content, reasoning=reasoning, usage=usage, raw=raw)

    async def send(self, request: AIRequest) -> AIResponse:
        data = await self._post_json(self.url(), self.headers(), self.payload(request, stream=False))
        text: list[str] = []
        thinking: list[str] = []
        for block in data.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "thinking":
                thinking.append(str(block.get("thinking") or block.get("text") or ""))
            elif block.get("text"):
                text.append(str(block["text"]))
        content, inline = split_thinking("".join(text))
        return self._finish(content, merge_reasoning("".join(thinking), inline), _usage(data.get("usage")), data)

    async def stream(self, request: AIRequest, on_delta: DeltaCallback) -> AIResponse:
        filt = ThinkStreamFilter()
        parts: list[str] = []
        thinking: list[str] = []
        prompt_tokens: Optional[int] = None
        output_tokens: Optional[int] = None

        def emit(text: str) -> None:
            if text:
                parts.append(text)
                on_delta(text)

        events = self._sse_events(self.url(), self.headers(), self.payload(request, stream=True))
        async with aclosing(events):
            async for ev in events:
                kind = ev.get("type")
                if kind == "error":
                    err = ev.get("error") or {}
                    raise AIError.stream_error(self.label, str(err.get("message") or err), self.config.model)
                if kind == "message_start":
                    usage = (ev.get("message") or {}).get("usage") or {}
                    prompt_tokens = usage.get("input_tokens", prompt_tokens)
                    output_tokens = usage.get("output_tokens", output_tokens)
                elif kind == "message_delta":
                    output_tokens = (ev.get("usage") or {}).get("output_tokens", output_tokens)
                elif kind == "content_block_delta":
                    delta = ev.get("delta") or {}
                    if delta.get("type") == "thinking_delta":
                        thinking.append(str(delta.get("thinking") or ""))
                    elif delta.get("type") == "text_delta":
                        emit(filt.feed(str(delta.get("text") or "")))
        emit(filt.flush())

        usage = TokenUsage.of(prompt_tokens, output_tokens) if prompt_tokens is not None else None
        return self._finish("".join(parts), merge_reasoning("".join(thinking), filt.reasoning), usage, {})
