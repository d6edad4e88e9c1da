from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ..tools.base import ToolResult

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
    role: Role
    content: str
    # Tags synthetic messages, e.g. compaction summaries.
    name: str | None = None
    tool_call: ToolCall | None = None
    tool_result: "ToolResult | None" = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_wire(self, *, keep_tool_role: bool = False) -> dict[str, str]:
        """Normalized {role, content} dict handed to provider adapters.

        Most backends reject a bare "tool" role without their native
        tool-calling envelope, so tool results travel as user messages
        unless the backend accepts them (Ollama).
        """
        role = self.role
        if role == "tool" and not keep_tool_role:
            role = "user"
        return {"role": role, "content": self.content}
