from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .base import AgentContext, Tool, ToolResult, ToolSpec

logger = logging.getLogger(__name__)


def _runtime_type(value: Any) -> str:
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if value is None:
        return "null"
    return type(value).__name__


def _type_matches(declared: str, actual: str) -> bool:
    if declared == actual:
        return True
    # JSON numbers: an integer value satisfies "number".
    return declared == "number" and actual == "integer"


@dataclass
class ToolRegistry:
    _tools: dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        name = tool.spec.name
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise KeyError(f"Unknown tool: {name}")
        return self._tools[name]

    def get_optional(self, name: str) -> Optional[Tool]:
        """Return a tool if registered, otherwise None.

        Use this in agent loops to avoid crashing when the model hallucinates
        an unknown tool name.
        """
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def list_specs(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def schema(self, name: str) -> dict[str, Any] | None:
        tool = self._tools.get(name)
        return tool.spec.to_schema() if tool else None

    def schemas(self) -> list[dict[str, Any]]:
        return [t.spec.to_schema() for t in self._tools.values()]

    @staticmethod
    def validate_parameters(spec: ToolSpec, params: dict[str, Any]) -> str | None:
        for p in spec.parameters:
            if p.required and p.name not in params:
                return f"Missing required parameter: {p.name}"
            if p.name in params:
                actual = _runtime_type(params[p.name])
                if not _type_matches(p.type, actual):
                    return f"Invalid type for parameter {p.name}: expected {p.type}, got {actual}"
        return None

    async def execute(
        self,
        name: str,
        params: dict[str, Any],
        ctx: AgentContext,
        timeout_ms: int | None = None,
    ) -> ToolResult:
        """Validate and run a tool. Never raises: failures become ToolResults."""
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(f"Tool {name} not found")

        if not isinstance(params, dict):
            return ToolResult.fail(f"Invalid parameters for {name}: expected an object")
        err = self.validate_parameters(tool.spec, params)
        if err:
            return ToolResult.fail(err)

        args = {p.name: p.default for p in tool.spec.parameters if p.has_default}
        args.update(params)

        task = asyncio.ensure_future(tool.execute(ctx, args))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000 if timeout_ms else None)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.warning("tool %s timed out after %sms", name, timeout_ms)
            return ToolResult.fail("Tool execution timeout")

        try:
            return task.result()
        except Exception as e:
            logger.debug("tool %s raised", name, exc_info=True)
            return ToolResult.fail(str(e) or f"Unknown error during {name} execution")
