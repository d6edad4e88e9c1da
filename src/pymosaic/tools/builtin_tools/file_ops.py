from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec
from ..sandbox import PathSecurityError


@dataclass
class DeleteFileTool:
    spec: ToolSpec = ToolSpec(
        name="delete_file",
        description="Delete a file (or a directory and its contents) within the workspace.",
        parameters=(
            ToolParameter("path", "string", "Path to the file to delete (must be within workspace)", required=True),
        ),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        try:
            p = ctx.sandbox.validate(args["path"])
        except PathSecurityError as e:
            return ToolResult.fail(str(e))
        if p == ctx.sandbox.root:
            return ToolResult.fail("Refusing to delete the workspace root")
        if not p.exists():
            return ToolResult.fail(f"File not found: {args['path']}")

        if p.is_dir() and not p.is_symlink():
            await asyncio.to_thread(shutil.rmtree, p)
        else:
            await asyncio.to_thread(p.unlink)
        return ToolResult.ok({"path": str(p)})


@dataclass
class FileExistsTool:
    spec: ToolSpec = ToolSpec(
        name="file_exists",
        description="Check whether a file or directory exists within the workspace.",
        parameters=(ToolParameter("path", "string", "Path to check (must be within workspace)", required=True),),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        try:
            p = ctx.sandbox.validate(args["path"])
        except PathSecurityError as e:
            return ToolResult.fail(str(e))
        try:
            st = await asyncio.to_thread(p.stat)
        except FileNotFoundError:
            return ToolResult.ok({"exists": False})
        return ToolResult.ok(
            {
                "exists": True,
                "type": "directory" if p.is_dir() else "file",
                "size": st.st_size,
                "modified": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat(),
            }
        )


@dataclass
class CreateDirectoryTool:
    spec: ToolSpec = ToolSpec(
        name="create_directory",
        description=(
            "Create a directory. Inside the workspace any path is allowed; outside it only new "
            "directories may be created, and they become accessible afterwards."
        ),
        parameters=(
            ToolParameter("path", "string", "Path of the directory to create", required=True),
            ToolParameter("recursive", "boolean", "Create parent directories as needed", default=True),
        ),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        recursive = bool(args.get("recursive", True))
        try:
            p = ctx.sandbox.validate(args["path"])
        except PathSecurityError:
            # External target: only a directory that does not exist yet may be admitted.
            try:
                p = await asyncio.to_thread(ctx.sandbox.admit_new_directory, args["path"])
            except PathSecurityError as e:
                return ToolResult.fail(str(e))
            return ToolResult.ok({"path": str(p), "created": True, "external": True})

        existed = p.is_dir()
        await asyncio.to_thread(p.mkdir, parents=recursive, exist_ok=True)
        return ToolResult.ok({"path": str(p), "created": not existed, "external": False})
