from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec
from ..sandbox import PathSecurityError


@dataclass
class WriteFileTool:
    spec: ToolSpec = ToolSpec(
        name="write_file",
        description="Create a new file with content. Only for new files; use update_file to modify existing ones.",
        parameters=(
            ToolParameter("path", "string", "Path to the new file to create (must be within workspace)", required=True),
            ToolParameter("content", "string", "Content to write to the new file", required=True),
        ),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        content = args["content"]
        try:
            p = ctx.sandbox.admit_for_write(args["path"])
        except PathSecurityError as e:
            return ToolResult.fail(str(e))

        if p.exists():
            return ToolResult.fail("File already exists. Use update_file tool to modify existing files.")

        def _write() -> None:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        return ToolResult.ok(
            {
                "path": str(p),
                "bytes_written": len(content.encode("utf-8")),
                "lines": len(content.split("\n")),
            }
        )
