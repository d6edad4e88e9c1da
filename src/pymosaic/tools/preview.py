from __future__ import annotations

import difflib
import json
from pathlib import Path
from typing import Any

from .base import AgentContext

MAX_PREVIEW_LINES = 400


def _numbered(lines: list[str], marker: str) -> str:
    shown = lines[:MAX_PREVIEW_LINES]
    out = "".join(f"  {i:>4} {marker}  {line}\n" for i, line in enumerate(shown, start=1))
    if len(lines) > len(shown):
        out += f"  ... ({len(lines) - len(shown)} more lines)\n"
    return out


def write_preview(path: str, content: str) -> str:
    return f"Writing to: {path}\n\n" + _numbered((content or "").split("\n"), "+")


def apply_line_updates(lines: list[str], updates: list[dict[str, Any]]) -> list[str]:
    """Apply 1-based inclusive line-range updates bottom-up. Raises ValueError on bad ranges."""
    out = list(lines)
    ordered = sorted(updates, key=lambda u: int(u.get("startLine", 0)), reverse=True)
    for u in ordered:
        start = int(u.get("startLine", 0))
        end = int(u.get("endLine", 0))
        if start < 1 or end < start - 1 or end > len(out):
            raise ValueError(f"Invalid line range: {start}-{end}. File has {len(out)} lines.")
        new_text = str(u.get("newContent", ""))
        new_lines = new_text.split("\n")
        if new_lines and new_lines[-1] == "":
            new_lines = new_lines[:-1]
        out[start - 1 : end] = new_lines
    return out


def update_preview(path: str, old_text: str, updates: list[dict[str, Any]]) -> str:
    old_lines = old_text.splitlines()
    try:
        new_lines = apply_line_updates(old_lines, updates)
    except (ValueError, TypeError) as e:
        return f"Updating: {path}\n\n(cannot preview: {e})"
    diff = difflib.unified_diff(old_lines, new_lines, fromfile=path, tofile=path, lineterm="", n=3)
    body = "\n".join(diff)
    return f"Updating: {path}\n\n{body or '(no changes)'}"


def delete_preview(path: Path, display: str) -> str:
    if path.is_dir():
        return f"Deleting directory: {display}\n\nThis will remove the entire directory and all its contents."
    if not path.is_file():
        return f"Deleting: {display}\n\nFile does not exist or cannot be read."
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return f"Deleting: {display}\n\nFile does not exist or cannot be read."
    return f"Deleting file: {display}\n\n" + _numbered(text.split("\n"), "-")


def shell_preview(command: str, cwd: str | None = None) -> str:
    where = f" (in {cwd})" if cwd else ""
    return f"Executing shell command{where}:\n\n  $ {command}\n\nThis command will be executed in your system shell."


def generate_preview(tool_name: str, params: dict[str, Any], ctx: AgentContext) -> str:
    """Human-readable preview shown before a mutating tool runs."""
    path = str(params.get("path", ""))
    if tool_name == "write_file":
        return write_preview(path, str(params.get("content", "")))
    if tool_name == "update_file":
        target = ctx.sandbox.validate(path)
        if not target.is_file():
            return f"Updating: {path}\n\n(cannot read file: not a regular file)"
        try:
            old = target.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            return f"Updating: {path}\n\n(cannot read file: {e})"
        updates = params.get("updates")
        return update_preview(path, old, updates if isinstance(updates, list) else [])
    if tool_name == "delete_file":
        return delete_preview(ctx.sandbox.validate(path), path)
    if tool_name == "create_directory":
        return f"Creating directory: {path}\n\nA new directory will be created at this location."
    if tool_name == "execute_shell":
        return shell_preview(str(params.get("command", "")), params.get("cwd"))

    try:
        s = json.dumps(params, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        s = str(params)
    if len(s) > 2000:
        s = s[:2000] + "\n... (truncated)"
    return f"{tool_name}\n\n{s}"
