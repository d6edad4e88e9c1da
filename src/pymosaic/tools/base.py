from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Protocol

from .sandbox import PathSandbox

if TYPE_CHECKING:
    from ..session.models import Message

ParamType = Literal["string", "number", "integer", "boolean", "object", "array"]

_MISSING = object()


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: ParamType
    description: str = ""
    required: bool = False
    default: Any = _MISSING

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()

    def to_schema(self) -> dict[str, Any]:
        """Schema shape exposed to the model in the system prompt."""
        props: dict[str, Any] = {}
        for p in self.parameters:
            prop: dict[str, Any] = {"type": p.type, "description": p.description}
            if p.has_default:
                prop["default"] = p.default
            props[p.name] = prop
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": props,
                "required": [p.name for p in self.parameters if p.required],
            },
        }


class Tool(Protocol):
    spec: ToolSpec
    async def execute(self, ctx: "AgentContext", args: dict[str, Any]) -> "ToolResult": ...


@dataclass(frozen=True)
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @staticmethod
    def ok(data: Any = None, **metadata: Any) -> "ToolResult":
        return ToolResult(success=True, data=data, metadata=metadata or None)

    @staticmethod
    def fail(error: str, data: Any = None, **metadata: Any) -> "ToolResult":
        return ToolResult(success=False, data=data, error=error, metadata=metadata or None)


@dataclass
class AgentContext:
    cwd: Path
    sandbox: PathSandbox
    environment: dict[str, str] = field(default_factory=dict)
    # Shared by reference with the orchestration loop for one turn.
    history: list["Message"] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None

    def __post_init__(self) -> None:
        # Every path a tool touches goes through this sandbox.
        if not isinstance(self.sandbox, PathSandbox):
            raise ValueError("AgentContext requires a PathSandbox")
        self.cwd = Path(self.cwd)
