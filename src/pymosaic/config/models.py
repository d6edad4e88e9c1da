from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..llm.retry import RetryConfig
from ..tools.approval import TOOLS_REQUIRING_APPROVAL

DEFAULT_MAX_STEPS = 25
DEFAULT_TOOL_TIMEOUT_MS = 120_000
DEFAULT_CONTEXT_TOKENS = 128_000
DEFAULT_RESERVED_TOKENS = 16_384


class ConfigError(ValueError):
    """Invalid or unreadable configuration."""


@dataclass(frozen=True)
class CompactionConfig:
    max_tokens: int = DEFAULT_CONTEXT_TOKENS
    reserved_for_response: int = DEFAULT_RESERVED_TOKENS

    @staticmethod
    def from_obj(obj: Any) -> "CompactionConfig":
        if not isinstance(obj, dict):
            return CompactionConfig()
        mt = obj.get("max_tokens", DEFAULT_CONTEXT_TOKENS)
        rr = obj.get("reserved_for_response", DEFAULT_RESERVED_TOKENS)
        if not isinstance(mt, int) or not isinstance(rr, int) or mt <= 0 or rr < 0:
            raise ConfigError("compaction.max_tokens and compaction.reserved_for_response must be non-negative integers")
        if rr >= mt:
            raise ConfigError("compaction.reserved_for_response must be smaller than compaction.max_tokens")
        return CompactionConfig(max_tokens=mt, reserved_for_response=rr)


@dataclass
class BehaviorConfig:
    """Behavior config loaded from JSON (global < project < explicit path)."""

    max_steps: int = DEFAULT_MAX_STEPS
    tool_timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS
    stream: bool = False
    retry: RetryConfig = field(default_factory=RetryConfig)
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    # Set when the file names a compaction window; otherwise the provider's context_window applies.
    compaction_explicit: bool = False
    requires_approval: frozenset[str] = TOOLS_REQUIRING_APPROVAL
    system_prompt: str = ""

    loaded_from: list[Path] = field(default_factory=list)
