from __future__ import annotations

from .registry import ToolRegistry

from .builtin_tools.file_read import ReadFileTool
from .builtin_tools.file_write import WriteFileTool
from .builtin_tools.file_update import UpdateFileTool
from .builtin_tools.file_ops import CreateDirectoryTool, DeleteFileTool, FileExistsTool
from .builtin_tools.listdir import ListDirTool
from .builtin_tools.shell_tool import ShellTool
from .builtin_tools.search_tool import SearchCodeTool
from .builtin_tools.fetch_tool import FetchTool


def register_builtin_tools(registry: ToolRegistry) -> None:
    registry.register(ReadFileTool())
    registry.register(WriteFileTool())
    registry.register(UpdateFileTool())
    registry.register(DeleteFileTool())
    registry.register(FileExistsTool())
    registry.register(ListDirTool())
    registry.register(CreateDirectoryTool())
    registry.register(ShellTool())
    registry.register(SearchCodeTool())
    registry.register(FetchTool())
