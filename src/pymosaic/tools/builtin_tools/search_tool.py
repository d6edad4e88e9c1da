from __future__ import annotations

import asyncio
import os
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import AgentContext, ToolParameter, ToolResult, ToolSpec
from ..sandbox import PathSecurityError

IGNORED_DIRS = frozenset({
    "node_modules", "dist", "build", "out", "coverage", ".git", ".next", ".nuxt", ".cache",
    "vendor", "target", "bin", "obj", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache",
})

MAX_FILE_BYTES = 2 * 1024 * 1024


def _search(
    root: Path,
    rx: re.Pattern[str],
    extensions: list[str],
    include_ignored: bool,
    max_results: int,
) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for dirpath, dirnames, filenames in os.walk(root):
        if not include_ignored:
            dirnames[:] = [d for d in dirnames if d not in IGNORED_DIRS and not d.startswith(".")]
        dirnames.sort()
        for name in sorted(filenames):
            if extensions and not any(name.endswith(ext) for ext in extensions):
                continue
            f = Path(dirpath) / name
            try:
                if f.stat().st_size > MAX_FILE_BYTES:
                    continue
                text = f.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                # Binary or unreadable files are skipped.
                continue
            rel = f.relative_to(root)
            for i, line in enumerate(text.splitlines(), start=1):
                m = rx.search(line)
                if m:
                    results.append({
                        "file": rel.as_posix(),
                        "directory": "root" if rel.parent == Path(".") else rel.parent.as_posix(),
                        "line": i,
                        "column": m.start() + 1,
                        "content": line.strip(),
                    })
                    if len(results) >= max_results:
                        return results
    return results


@dataclass
class SearchCodeTool:
    spec: ToolSpec = ToolSpec(
        name="search_code",
        description=(
            "Search code files for a regex pattern. Common build and dependency directories are "
            "skipped unless include_ignored_dirs is true (e.g. pattern \"def\\s+\\w+\" finds function definitions)."
        ),
        parameters=(
            ToolParameter("pattern", "string", "Regex pattern to search for", required=True),
            ToolParameter("directory", "string", "Directory to search in (relative to workspace)", default="."),
            ToolParameter("file_extensions", "array", "File extensions to search, e.g. [\".py\", \".ts\"]. Empty means all", default=[]),
            ToolParameter("max_results", "integer", "Maximum number of results to return", default=100),
            ToolParameter("case_sensitive", "boolean", "Whether the search is case-sensitive", default=False),
            ToolParameter("include_ignored_dirs", "boolean", "Include node_modules, build, .git and similar", default=False),
        ),
    )

    async def execute(self, ctx: AgentContext, args: dict[str, Any]) -> ToolResult:
        directory = args.get("directory") or "."
        try:
            root = ctx.sandbox.validate(directory)
        except PathSecurityError as e:
            return ToolResult.fail(str(e))
        if not root.is_dir():
            return ToolResult.fail(f"Not a directory: {directory}")

        case_sensitive = bool(args.get("case_sensitive", False))
        try:
            rx = re.compile(args["pattern"], 0 if case_sensitive else re.IGNORECASE)
        except re.error as e:
            return ToolResult.fail(f"Invalid regex: {e}")

        extensions = [str(x) for x in (args.get("file_extensions") or [])]
        max_results = max(1, int(args.get("max_results", 100)))
        matches = await asyncio.to_thread(
            _search, root, rx, extensions, bool(args.get("include_ignored_dirs", False)), max_results
        )

        by_dir = Counter(m["directory"] for m in matches)
        return ToolResult.ok({
            "pattern": args["pattern"],
            "case_sensitive": case_sensitive,
            "search_directory": directory,
            "matches": matches,
            "count": len(matches),
            "truncated": len(matches) >= max_results,
            "directory_summary": [{"directory": d, "matches": n} for d, n in by_dir.most_common()],
        })
