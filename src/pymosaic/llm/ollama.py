from __future__ import annotations

import json
import logging
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

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def _usage(obj: dict[str, Any]) -> Optional[TokenUsage]:
    if "prompt_eval_count" not in obj and "eval_count" not in obj:
        return None
    return TokenUsage.of(obj.get("prompt_eval_count"), obj.get("eval_count"))


class OllamaAdapter(HttpAdapter):
    """Local Ollama server (`/api/chat`). Streams newline-delimited JSON, not SSE."""

    label = "Ollama"
    # Ollama accepts the bare "tool" role.
    keeps_tool_role = True

    def url(self) -> str:
        return (self.config.base_url or DEFAULT_OLLAMA_URL).rstrip("/") + "/api/chat"

    def headers(self) -> dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.config.api_key:
            h["Authorization"] = f"Bearer {self.config.api_key}"
        return h

    def payload(self, request: AIRequest, *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {"model": request.model, "messages": request.messages, "stream": stream}
        if request.max_tokens:
            body["options"] = {"num_predict": request.max_tokens}
        return body

    def _finish(self, content: str, reasoning: Optional[str], usage: Optional[TokenUsage], raw: dict) -> AIResponse:
        if not content and not reasoning:
            raise AIError.empty_response(self.label, self.config.model)
        return AIResponse(content=content, reasoning=reasoning, usage=usage, raw=raw)

    async def send(self, request: AIRequest) -> AIResponse:
        data = await self._post_json(self.url(), self.headers(), self.payload(request, stream=False))
        if data.get("error"):
            raise AIError.from_network_error(str(data["error"]), self.label, self.config.model)
        msg = data.get("message") or {}
        content, inline = split_thinking(str(msg.get("content") or ""))
        return self._finish(content, merge_reasoning(msg.get("thinking"), inline), _usage(data), data)

    async def stream(self, request: AIRequest, on_delta: DeltaCallback) -> AIResponse:
        filt = ThinkStreamFilter()
        parts: list[str] = []
        thinking: list[str] = []
        usage: Optional[TokenUsage] = None

        def emit(text: str) -> None:
            if text:
                parts.append(text)
                on_delta(text)

        lines = self._stream_lines(self.url(), self.headers(), self.payload(request, stream=True))
        async with aclosing(lines):
            async for line in lines:
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("skipping undecodable NDJSON line: %r", line[:200])
                    continue
                if chunk.get("error"):
                    raise AIError.stream_error(self.label, str(chunk["error"]), self.config.model)
                msg = chunk.get("message") or {}
                if msg.get("thinking"):
                    thinking.append(str(msg["thinking"]))
                if msg.get("content"):
                    emit(filt.feed(str(msg["content"])))
                if chunk.get("done"):
                    usage = _usage(chunk)
                    break
        emit(filt.flush())

        return self._finish("".join(parts), merge_reasoning("".join(thinking), filt.reasoning), usage, {})
