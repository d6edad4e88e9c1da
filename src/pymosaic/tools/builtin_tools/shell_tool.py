from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import dataclass
from typing import Any

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec
from ..sandbox import PathSecurityError
from ...util.subprocess import run_cmd

DEFAULT_TIMEOUT_S = 120
MAX_OUTPUT_CHARS = 10 * 1024 * 1024


def _shell_argv(command: str) -> list[str]:
    # Runs through the system shell: builtins, pipes, && and env expansion are available.
    if os.name == "nt":
        return ["cmd.exe", "/c", command]
    shell = "bash" if shutil.which("bash") else "sh"
    return [shell, "-c", command]


def _clip(s: str) -> str:
    s = s.strip()
    return s if len(s) <= MAX_OUTPUT_CHARS else s[:MAX_OUTPUT_CHARS] + "\n... (truncated)"


@dataclass
class ShellTool:
    spec: ToolSpec = ToolSpec(
        name="execute_shell",
        description="Execute a shell command in the workspace. Returns stdout, stderr and the exit code.",
        parameters=(
            ToolParameter("command", "string", "Shell command to execute", required=True),
            ToolParameter("cwd", "string", "Working directory for the command (must be within workspace)"),
        ),
    )
    timeout_s: float = DEFAULT_TIMEOUT_S

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        command = (args.get("command") or "").strip()
        if not command:
            return ToolResult.fail("Empty command.")

        cwd = ctx.cwd
        if args.get("cwd"):
            try:
                cwd = ctx.sandbox.validate(args["cwd"])
            except PathSecurityError as e:
                return ToolResult.fail(str(e))

        env = {**os.environ, **ctx.environment}
        try:
            res = await run_cmd(_shell_argv(command), cwd=str(cwd), timeout=self.timeout_s, env=env)
        except asyncio.TimeoutError:
            return ToolResult.fail(f"Command timed out after {self.timeout_s:g}s", command=command)

        data = {"stdout": _clip(res.stdout), "stderr": _clip(res.stderr), "command": command}
        if res.returncode != 0:
            return ToolResult.fail(f"Command failed with exit code {res.returncode}", {**data, "exit_code": res.returncode})
        return ToolResult.ok(data)
