from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

from .base import AgentContext, ToolResult
from .preview import generate_preview
from .sandbox import PathSandbox

if TYPE_CHECKING:
    from .registry import ToolRegistry

logger = logging.getLogger(__name__)

TOOLS_REQUIRING_APPROVAL = frozenset({
    "write_file",
    "update_file",
    "delete_file",
    "create_directory",
    "execute_shell",
})

REJECTED_ERROR = "Tool execution rejected by user"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    APPROVE_ALL = "approve_all"
    REJECT = "reject"
    MODIFY = "modify"


@dataclass(frozen=True)
class ApprovalResolution:
    decision: ApprovalDecision
    instructions: str | None = None


@dataclass
class ApprovalRequest:
    """A pending human decision. The UI resolves it through one of the callbacks."""

    tool_name: str
    parameters: dict[str, Any]
    preview: str
    _future: "asyncio.Future[ApprovalResolution]" = field(repr=False, default=None)  # type: ignore[assignment]

    def _resolve(self, resolution: ApprovalResolution) -> None:
        if self._future is not None and not self._future.done():
            self._future.set_result(resolution)

    def approve(self) -> None:
        self._resolve(ApprovalResolution(ApprovalDecision.APPROVE))

    def reject(self) -> None:
        self._resolve(ApprovalResolution(ApprovalDecision.REJECT))

    def approve_all(self) -> None:
        self._resolve(ApprovalResolution(ApprovalDecision.APPROVE_ALL))

    def modify(self, instructions: str) -> None:
        self._resolve(ApprovalResolution(ApprovalDecision.MODIFY, instructions=instructions.strip()))

    @property
    def resolved(self) -> bool:
        return self._future is not None and self._future.done()


def path_admissible(tool_name: str, params: dict[str, Any], sandbox: PathSandbox) -> bool:
    """Whether the sandbox would let this call touch its path, checked without side effects."""
    if tool_name == "write_file":
        return sandbox.can_write(str(params["path"]))
    if tool_name == "create_directory":
        return sandbox.can_create_directory(str(params["path"]))
    if tool_name == "execute_shell":
        return params.get("cwd") is None or sandbox.is_safe(str(params["cwd"]))
    if "path" in params:
        return sandbox.is_safe(str(params["path"]))
    return True


@dataclass(frozen=True)
class GateOutcome:
    result: ToolResult
    # None when the tool ran without asking.
    decision: ApprovalDecision | None = None
    instructions: str | None = None

    @property
    def approve_all(self) -> bool:
        return self.decision is ApprovalDecision.APPROVE_ALL


class ApprovalGate:
    """Single-slot mailbox between the agent loop and the approval UI.

    At most one ApprovalRequest is outstanding. A second caller waits on the
    slot lock until the first request is resolved; the waiting coroutine is
    suspended on a future, never polling.
    """

    def __init__(self, requires_approval: Iterable[str] = TOOLS_REQUIRING_APPROVAL):
        self.requires_approval = frozenset(requires_approval)
        self._slot = asyncio.Lock()
        self._channel: asyncio.Queue[ApprovalRequest] = asyncio.Queue(maxsize=1)
        self._pending: ApprovalRequest | None = None

    @property
    def pending(self) -> ApprovalRequest | None:
        return self._pending

    @property
    def state(self) -> str:
        return "awaiting_decision" if self._pending is not None else "idle"

    def needs_approval(self, tool_name: str) -> bool:
        return tool_name in self.requires_approval

    async def next_request(self) -> ApprovalRequest:
        """UI side: wait for the next request to render."""
        return await self._channel.get()

    async def request(self, tool_name: str, parameters: dict[str, Any], preview: str) -> ApprovalResolution:
        async with self._slot:
            req = ApprovalRequest(
                tool_name=tool_name,
                parameters=parameters,
                preview=preview,
                _future=asyncio.get_running_loop().create_future(),
            )
            self._pending = req
            self._channel.put_nowait(req)
            logger.debug("awaiting approval for %s", tool_name)
            try:
                return await req._future
            finally:
                self._pending = None
                # Drop the request if the UI never picked it up.
                while not self._channel.empty():
                    self._channel.get_nowait()

    async def execute(
        self,
        registry: "ToolRegistry",
        name: str,
        params: dict[str, Any],
        ctx: AgentContext,
        timeout_ms: int | None = None,
        *,
        bypass: bool = False,
    ) -> GateOutcome:
        tool = registry.get_optional(name)
        if tool is None or bypass or not self.needs_approval(name):
            return GateOutcome(await registry.execute(name, params, ctx, timeout_ms))

        # Invalid parameters and paths the sandbox refuses fail without a prompt.
        if not isinstance(params, dict) or registry.validate_parameters(tool.spec, params):
            return GateOutcome(await registry.execute(name, params, ctx, timeout_ms))
        if not path_admissible(name, params, ctx.sandbox):
            return GateOutcome(await registry.execute(name, params, ctx, timeout_ms))

        try:
            preview = await asyncio.to_thread(generate_preview, name, params, ctx)
        except Exception as e:
            preview = f"{name}: preview unavailable ({e})"

        resolution = await self.request(name, params, preview)

        if resolution.decision is ApprovalDecision.REJECT:
            return GateOutcome(ToolResult.fail(REJECTED_ERROR), resolution.decision)
        if resolution.decision is ApprovalDecision.MODIFY:
            text = resolution.instructions or ""
            return GateOutcome(
                ToolResult.fail(f"User requested modification: {text}", modification=text),
                resolution.decision,
                text,
            )

        result = await registry.execute(name, params, ctx, timeout_ms)
        return GateOutcome(result, resolution.decision)
