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


def _usage(obj: Any) -> Optional[TokenUsage]:
    if not isinstance(obj, dict):
        return None
    return TokenUsage(obj.get("prompt_tokens"), obj.get("completion_tokens"), obj.get("total_tokens"))


class OpenAICompatAdapter(HttpAdapter):
    """Chat Completions wire shared by OpenAI, OpenRouter, xAI, Mistral and custom gateways."""

    label = "OpenAI"
    default_base_url: Optional[str] = "https://api.openai.com/v1"
    requires_api_key = True
    # Sent only when the request asks for reasoning.
    reasoning_effort: Optional[str] = "medium"

    def base_url(self) -> str:
        url = (self.config.base_url or self.default_base_url or "").strip()
        if not url:
            raise AIError.missing_base_url(self.label, self.config.model)
        return url.rstrip("/")

    def headers(self) -> dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.config.api_key:
            h["Authorization"] = f"Bearer {self.config.api_key}"
        elif self.requires_api_key:
            raise AIError.missing_api_key(self.label, self.config.model)
        return h

    def payload(self, request: AIRequest, *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "messages": request.messages,
            "stream": stream,
        }
        if request.max_tokens:
            body["max_tokens"] = request.max_tokens
        if request.reasoning and self.reasoning_effort:
            body["reasoning_effort"] = self.reasoning_effort
        return body

    def _finish(self, content: str, reasoning: Optional[str], usage: Optional[TokenUsage], raw: dict) -> AIResponse:
        if not content and not reasoning:
            raise AIError.empty_response(self.label, self.config.model)
        return AIResponse(content=content, reasoning=reasoning, usage=usage, raw=raw)

    async def send(self, request: AIRequest) -> AIResponse:
        url = self.base_url() + "/chat/completions"
        data = await self._post_json(url, self.headers(), self.payload(request, stream=False))

        choices = data.get("choices") or []
        msg = (choices[0].get("message") if choices and isinstance(choices[0], dict) else None) or {}
        content, inline = split_thinking(str(msg.get("content") or ""))
        reasoning = merge_reasoning(msg.get("reasoning_content") or msg.get("reasoning"), inline)
        return self._finish(content, reasoning, _usage(data.get("usage")), data)

    async def stream(self, request: AIRequest, on_delta: DeltaCallback) -> AIResponse:
        url = self.base_url() + "/chat/completions"
        filt = ThinkStreamFilter()
        parts: list[str] = []
        side_reasoning: list[str] = []
        usage: Optional[TokenUsage] = None

        def emit(text: str) -> None:
            if text:
                parts.append(text)
                on_delta(text)

        events = self._sse_events(url, self.headers(), self.payload(request, stream=True))
        async with aclosing(events):
            async for ev in events:
                if ev.get("error"):
                    err = ev["error"]
                    raise AIError.stream_error(
                        self.label, str(err.get("message") if isinstance(err, dict) else err), self.config.model
                    )
                if ev.get("usage"):
                    usage = _usage(ev["usage"])
                choices = ev.get("choices") or []
                if not choices or not isinstance(choices[0], dict):
                    continue
                delta = choices[0].get("delta") or {}
                side = delta.get("reasoning_content") or delta.get("reasoning")
                if side:
                    side_reasoning.append(str(side))
                if delta.get("content"):
                    emit(filt.feed(str(delta["content"])))
        emit(filt.flush())

        reasoning = merge_reasoning("".join(side_reasoning), filt.reasoning)
        return self._finish("".join(parts), reasoning, usage, {})


class OpenRouterAdapter(OpenAICompatAdapter):
    label = "OpenRouter"
    default_base_url = "https://openrouter.ai/api/v1"
    reasoning_effort = None

    def headers(self) -> dict[str, str]:
        h = super().headers()
        h["X-Title"] = "pymosaic"
        return h


class XAIAdapter(OpenAICompatAdapter):
    label = "xAI"
    default_base_url = "https://api.x.ai/v1"
    reasoning_effort = None


class MistralAdapter(OpenAICompatAdapter):
    label = "Mistral"
    default_base_url = "https://api.mistral.ai/v1"
    reasoning_effort = None


class CustomAdapter(OpenAICompatAdapter):
    """Any OpenAI-compatible endpoint (vLLM, LM Studio, gateways). base_url is mandatory."""

    label = "Custom"
    default_base_url = None
    requires_api_key = False
    reasoning_effort = None
