from __future__ import annotations

from pathlib import Path

import pytest

from pymosaic.tools.base import AgentContext
from pymosaic.tools.builtin import register_builtin_tools
from pymosaic.tools.registry import ToolRegistry
from pymosaic.tools.sandbox import PathSandbox


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def sandbox(workspace: Path) -> PathSandbox:
    return PathSandbox(workspace)


@pytest.fixture
def agent_ctx(workspace: Path, sandbox: PathSandbox) -> AgentContext:
    return AgentContext(cwd=workspace, sandbox=sandbox)


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()
    register_builtin_tools(reg)
    return reg
