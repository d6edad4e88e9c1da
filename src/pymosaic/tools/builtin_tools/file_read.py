from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec
from ..sandbox import PathSecurityError

# Never handed to the model, even inside the workspace.
FORBIDDEN_FILES = frozenset({".env", "package-lock.json", "yarn.lock", "pymosaic.json", ".pymosaic.json"})


@dataclass
class ReadFileTool:
    spec: ToolSpec = ToolSpec(
        name="read_file",
        description="Read the contents of a file within the workspace. Optionally start at a line offset and limit the number of lines.",
        parameters=(
            ToolParameter("path", "string", "Path to the file to read (must be within workspace)", required=True),
            ToolParameter("offset", "integer", "Line number to start reading from (0-based). Default: 0", default=0),
            ToolParameter("limit", "integer", "Maximum number of lines to read. Default: unlimited"),
        ),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        try:
            p = ctx.sandbox.validate(args["path"])
        except PathSecurityError as e:
            return ToolResult.fail(str(e))
        if p.name in FORBIDDEN_FILES:
            return ToolResult.fail("Access to this file is forbidden")
        if not p.is_file():
            return ToolResult.fail(f"File not found: {args['path']}")

        text = await asyncio.to_thread(p.read_text, encoding="utf-8", errors="replace")
        lines = text.split("\n")

        offset = max(0, int(args.get("offset") or 0))
        limit = args.get("limit")
        end = offset + int(limit) if limit is not None else None
        selected = lines[offset:end]

        return ToolResult.ok(
            {
                "content": "\n".join(selected),
                "path": str(p),
                "offset": offset,
                "lines_read": len(selected),
                "total_lines": len(lines),
                "truncated": end is not None and end < len(lines),
            }
        )
