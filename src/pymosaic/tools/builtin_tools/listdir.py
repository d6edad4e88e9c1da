from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec
from ..sandbox import PathSecurityError


@dataclass
class ListDirTool:
    spec: ToolSpec = ToolSpec(
        name="list_directory",
        description="List the contents of a directory within the workspace.",
        parameters=(
            ToolParameter("path", "string", "Path to the directory to list (must be within workspace)", default="."),
            ToolParameter("max_entries", "integer", "Max entries to return", default=500),
        ),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        path = args.get("path") or "."
        max_entries = int(args.get("max_entries", 500))
        try:
            p = ctx.sandbox.validate(path)
        except PathSecurityError as e:
            return ToolResult.fail(str(e))
        if not p.exists():
            return ToolResult.fail(f"Path not found: {path}")
        if not p.is_dir():
            return ToolResult.fail(f"Not a directory: {path}")

        children = await asyncio.to_thread(
            lambda: sorted(p.iterdir(), key=lambda x: (not x.is_dir(), x.name.lower()))
        )
        entries = [
            {"name": c.name, "type": "directory" if c.is_dir() else "file", "path": str(c)}
            for c in children[:max_entries]
        ]
        return ToolResult.ok({"path": str(p), "entries": entries}, truncated=len(children) > max_entries)
