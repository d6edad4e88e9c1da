from __future__ import annotations

import asyncio
import difflib
from dataclasses import dataclass
from typing import Any

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec
from ..preview import apply_line_updates
from ..sandbox import PathSecurityError


@dataclass
class UpdateFileTool:
    spec: ToolSpec = ToolSpec(
        name="update_file",
        description=(
            "Update specific lines in an existing file. Several line ranges may be changed at once. "
            "Line numbers are 1-indexed and inclusive; to replace the whole file use startLine=1 "
            "and endLine=<total lines>."
        ),
        parameters=(
            ToolParameter("path", "string", "Path to the file to update (must be within workspace)", required=True),
            ToolParameter(
                "updates",
                "array",
                "Updates to apply. Each has startLine (1-indexed), endLine (1-indexed) and newContent.",
                required=True,
            ),
        ),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        try:
            p = ctx.sandbox.validate(args["path"])
        except PathSecurityError as e:
            return ToolResult.fail(str(e))
        if not p.is_file():
            return ToolResult.fail(f"File not found: {args['path']}")

        updates = args["updates"]
        if not all(isinstance(u, dict) for u in updates):
            return ToolResult.fail("Each update must be an object with startLine, endLine and newContent")

        text = await asyncio.to_thread(p.read_text, encoding="utf-8")
        trailing_newline = text.endswith("\n")
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines = lines[:-1]

        try:
            new_lines = apply_line_updates(lines, updates)
        except (ValueError, TypeError) as e:
            return ToolResult.fail(str(e))

        new_text = "\n".join(new_lines) + ("\n" if trailing_newline else "")
        await asyncio.to_thread(p.write_text, new_text, encoding="utf-8")

        diff = list(difflib.unified_diff(lines, new_lines, fromfile=args["path"], tofile=args["path"], lineterm="", n=2))
        return ToolResult.ok(
            {
                "path": str(p),
                "updates_applied": len(updates),
                "total_lines": len(new_lines),
                "diff_lines": diff,
            }
        )
