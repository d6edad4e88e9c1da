from __future__ import annotations

import json
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any, Optional

import httpx

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec

USER_AGENT = "pymosaic/0.1 (AI Agent)"
MAX_CONTENT_CHARS = 100_000
MAX_CONTENT_BYTES = 5 * 1024 * 1024
FETCH_TIMEOUT_S = 30.0
_BODY_METHODS = {"POST", "PUT", "PATCH"}


class _HTMLTextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"}:
            self._skip_depth += 1

    def handle_endtag(self, tag: str):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"} and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str):  # type: ignore[override]
        if self._skip_depth > 0:
            return
        text = data.strip()
        if text:
            self._parts.append(text)

    def text(self) -> str:
        return re.sub(r"\n{3,}", "\n\n", "\n".join(self._parts)).strip()


def html_to_text(html: str) -> str:
    parser = _HTMLTextExtractor()
    parser.feed(html)
    parser.close()
    return parser.text()


@dataclass
class FetchTool:
    """Fetch a URL and return readable text. HTML is reduced to its visible text."""

    spec: ToolSpec = ToolSpec(
        name="fetch",
        description=(
            "Fetch a specific URL (documentation pages, package metadata, API references). "
            "Fetch only what you need; binary content such as images or video is refused."
        ),
        parameters=(
            ToolParameter("url", "string", "The URL to fetch", required=True),
            ToolParameter("method", "string", "HTTP method (GET, POST, ...)", default="GET"),
            ToolParameter("headers", "object", "Optional HTTP headers"),
            ToolParameter("body", "string", "Optional request body for POST, PUT or PATCH"),
        ),
    )
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        url = str(args.get("url") or "").strip()
        if not url:
            return ToolResult.fail("URL parameter is required")
        method = str(args.get("method") or "GET").upper()
        headers = {str(k): str(v) for k, v in (args.get("headers") or {}).items()}
        headers.setdefault("User-Agent", USER_AGENT)
        body = args.get("body") if method in _BODY_METHODS else None

        try:
            async with httpx.AsyncClient(
                transport=self.transport, timeout=FETCH_TIMEOUT_S, follow_redirects=True
            ) as client:
                async with client.stream(method, url, headers=headers, content=body) as resp:
                    content_type = resp.headers.get("content-type", "").lower()
                    length = resp.headers.get("content-length")
                    if length and length.isdigit() and int(length) > MAX_CONTENT_BYTES:
                        return ToolResult.fail(
                            f"Resource too large ({length} bytes). Please fetch a more specific resource."
                        )
                    if content_type.startswith(("image/", "video/", "audio/")):
                        return ToolResult.fail(
                            "Cannot fetch binary content (images, videos, audio). Please fetch text-based resources."
                        )
                    raw = bytearray()
                    async for chunk in resp.aiter_bytes():
                        raw.extend(chunk)
                        if len(raw) > MAX_CONTENT_BYTES:
                            return ToolResult.fail(
                                f"Resource too large (over {MAX_CONTENT_BYTES} bytes). "
                                "Please fetch a more specific resource."
                            )
        except httpx.TimeoutException:
            return ToolResult.fail(f"Request timeout after {FETCH_TIMEOUT_S:g} seconds")
        except httpx.HTTPError as e:
            return ToolResult.fail(f"fetch failed: {e}")

        text = bytes(raw).decode(resp.charset_encoding or "utf-8", errors="replace")
        if "application/json" in content_type:
            try:
                text = json.dumps(json.loads(text), indent=2, ensure_ascii=False)
            except ValueError:
                pass
        elif "html" in content_type:
            text = html_to_text(text)

        truncated = len(text) > MAX_CONTENT_CHARS
        if truncated:
            text = text[:MAX_CONTENT_CHARS] + "\n\n[Content truncated - too long]"

        return ToolResult.ok({
            "url": url,
            "status": resp.status_code,
            "status_text": resp.reason_phrase,
            "content_type": content_type,
            "content": text,
            "truncated": truncated,
        })
