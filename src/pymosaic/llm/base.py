from __future__ import annotations

import json
import logging
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional, Protocol, runtime_checkable

import httpx

from .errors import AIError

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], None]

DEFAULT_HTTP_TIMEOUT_S = 180.0


class BackendType(str, Enum):
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    XAI = "xai"
    MISTRAL = "mistral"
    CUSTOM = "custom"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    type: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    reasoning: bool = False
    max_tokens: Optional[int] = None
    context_window: Optional[int] = None


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @classmethod
    def of(cls, prompt: Optional[int], completion: Optional[int]) -> "TokenUsage":
        total = (prompt or 0) + (completion or 0) if prompt is not None or completion is not None else None
        return cls(prompt, completion, total)


@dataclass
class AIRequest:
    messages: list[dict[str, str]]
    model: str
    reasoning: bool = False
    max_tokens: Optional[int] = None


@dataclass
class AIResponse:
    content: str
    reasoning: Optional[str] = None
    usage: Optional[TokenUsage] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Inline reasoning markers
# ---------------------------------------------------------------------------

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


def _join_reasoning(blocks: list[str]) -> Optional[str]:
    parts = [b.strip() for b in blocks if b.strip()]
    return "\n\n".join(parts) if parts else None


def split_thinking(text: str) -> tuple[str, Optional[str]]:
    """Remove <think>...</think> blocks from text; return (visible, reasoning).

    An unterminated trailing <think> block counts as reasoning.
    """
    visible: list[str] = []
    blocks: list[str] = []
    rest = text or ""
    while True:
        i = rest.find(THINK_OPEN)
        if i < 0:
            visible.append(rest)
            break
        visible.append(rest[:i])
        rest = rest[i + len(THINK_OPEN):]
        j = rest.find(THINK_CLOSE)
        if j < 0:
            blocks.append(rest)
            break
        blocks.append(rest[:j])
        rest = rest[j + len(THINK_CLOSE):]
    return "".join(visible).strip(), _join_reasoning(blocks)


def _partial_suffix(buf: str, tag: str) -> int:
    for k in range(min(len(tag) - 1, len(buf)), 0, -1):
        if buf.endswith(tag[:k]):
            return k
    return 0


class ThinkStreamFilter:
    """Incremental counterpart of split_thinking.

    The concatenation of everything `feed` and `flush` return equals the
    visible text split_thinking would produce for the whole stream.
    """

    def __init__(self) -> None:
        self._buf = ""
        self._inside = False
        self._blocks: list[str] = []
        self._started = False
        self._pending_ws = ""

    @property
    def reasoning(self) -> Optional[str]:
        return _join_reasoning(self._blocks)

    def _visible(self, text: str) -> str:
        if not text:
            return ""
        if not self._started:
            text = text.lstrip()
            if not text:
                return ""
            self._started = True
        text = self._pending_ws + text
        kept = text.rstrip()
        # Trailing whitespace is released only once more visible text follows.
        self._pending_ws = text[len(kept):]
        return kept

    def feed(self, chunk: str) -> str:
        self._buf += chunk
        out: list[str] = []
        while self._buf:
            tag = THINK_CLOSE if self._inside else THINK_OPEN
            idx = self._buf.find(tag)
            if idx >= 0:
                head, self._buf = self._buf[:idx], self._buf[idx + len(tag):]
                if self._inside:
                    self._blocks[-1] += head
                else:
                    out.append(self._visible(head))
                    self._blocks.append("")
                self._inside = not self._inside
                continue
            keep = _partial_suffix(self._buf, tag)
            head = self._buf[: len(self._buf) - keep]
            self._buf = self._buf[len(self._buf) - keep:]
            if self._inside:
                self._blocks[-1] += head
            else:
                out.append(self._visible(head))
            break
        return "".join(out)

    def flush(self) -> str:
        rest, self._buf = self._buf, ""
        if self._inside:
            self._blocks[-1] += rest
            return ""
        return self._visible(rest)


def merge_reasoning(*parts: Optional[str]) -> Optional[str]:
    return _join_reasoning([p for p in parts if p])


# ---------------------------------------------------------------------------
# HTTP plumbing shared by the backend adapters
# ---------------------------------------------------------------------------


def _error_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


@runtime_checkable
class Provider(Protocol):
    """A chat backend. `label` names it in errors; `keeps_tool_role` says whether
    tool results may be sent with the `tool` role."""

    label: str
    keeps_tool_role: bool
    config: ProviderConfig

    async def send(self, request: AIRequest) -> AIResponse: ...

    async def stream(self, request: AIRequest, on_delta: DeltaCallback) -> AIResponse: ...


class HttpAdapter:
    """httpx plumbing shared by the backend adapters: client ownership and error mapping."""

    label = "Provider"
    keeps_tool_role = False

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
    ):
        self.config = config
        self._client = client
        self.timeout_s = timeout_s

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            yield client

    async def _post_json(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        model = self.config.model
        logger.debug("POST %s (%s)", url, self.label)
        try:
            async with self._http() as client:
                resp = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise AIError.from_network_error(e, self.label, model) from e
        if resp.status_code >= 400:
            raise AIError.from_status(resp.status_code, self.label, model, _error_body(resp), resp.reason_phrase)
        try:
            data = resp.json()
        except ValueError as e:
            raise AIError.parsing_error(self.label, str(e), model) from e
        if not isinstance(data, dict):
            raise AIError.parsing_error(self.label, "expected a JSON object", model)
        return data

    async def _stream_lines(
        self, url: str, headers: dict[str, str], payload: dict[str, Any]
    ) -> AsyncIterator[str]:
        model = self.config.model
        logger.debug("POST %s (%s, streaming)", url, self.label)
        try:
            async with self._http() as client:
                async with client.stream("POST", url, headers=headers, json=payload) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise AIError.from_status(
                            resp.status_code, self.label, model, _error_body(resp), resp.reason_phrase
                        )
                    async for line in resp.aiter_lines():
                        yield line
        except httpx.HTTPError as e:
            raise AIError.from_network_error(e, self.label, model) from e

    async def _sse_events(
        self, url: str, headers: dict[str, str], payload: dict[str, Any]
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded `data:` payloads of a server-sent-event stream until [DONE]."""
        async with aclosing(self._stream_lines(url, headers, payload)) as lines:
            async for line in lines:
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("skipping undecodable SSE line: %r", data[:200])
                    continue
                if isinstance(event, dict):
                    yield event
