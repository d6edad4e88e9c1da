from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from .anthropic import AnthropicAdapter
from .base import AIRequest, AIResponse, BackendType, DeltaCallback, Provider, ProviderConfig
from .errors import AIError, AIErrorKind
from .ollama import OllamaAdapter
from .openai_compat import (
    CustomAdapter,
    MistralAdapter,
    OpenAICompatAdapter,
    OpenRouterAdapter,
    XAIAdapter,
)

logger = logging.getLogger(__name__)

BACKENDS: dict[BackendType, Callable[[ProviderConfig, Optional[httpx.AsyncClient]], Provider]] = {
    BackendType.OPENAI: OpenAICompatAdapter,
    BackendType.OPENROUTER: OpenRouterAdapter,
    BackendType.XAI: XAIAdapter,
    BackendType.MISTRAL: MistralAdapter,
    BackendType.CUSTOM: CustomAdapter,
    BackendType.ANTHROPIC: AnthropicAdapter,
    BackendType.OLLAMA: OllamaAdapter,
}


def resolve_backend(type_name: str) -> BackendType:
    try:
        return BackendType((type_name or "").strip().lower())
    except ValueError:
        known = ", ".join(b.value for b in BackendType)
        raise AIError(
            AIErrorKind.CONFIG,
            f"Unknown provider type: {type_name!r}. Known types: {known}",
            provider=type_name or "unknown",
        ) from None


class ProviderGateway:
    """Single entry point for chat completions; picks the backend adapter from the config."""

    def __init__(self, config: ProviderConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.backend = resolve_backend(config.type)
        self.adapter: Provider = BACKENDS[self.backend](config, client)

    @property
    def label(self) -> str:
        return self.adapter.label

    @property
    def keeps_tool_role(self) -> bool:
        return self.adapter.keeps_tool_role

    def build_request(self, messages: list[dict[str, str]]) -> AIRequest:
        return AIRequest(
            messages=messages,
            model=self.config.model,
            reasoning=self.config.reasoning,
            max_tokens=self.config.max_tokens,
        )

    async def send(self, request: AIRequest) -> AIResponse:
        logger.debug("%s send: model=%s messages=%d", self.label, request.model, len(request.messages))
        return await self.adapter.send(request)

    async def stream(self, request: AIRequest, on_delta: DeltaCallback) -> AIResponse:
        logger.debug("%s stream: model=%s messages=%d", self.label, request.model, len(request.messages))
        return await self.adapter.stream(request, on_delta)
