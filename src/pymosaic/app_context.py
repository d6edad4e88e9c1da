from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from .compaction.compactor import ConversationCompactor
from .config.loader import load_behavior_config
from .config.models import BehaviorConfig
from .events.store import EventStore
from .llm.factory import resolve_gateway
from .llm.gateway import ProviderGateway
from .llm.retry import RetryHandler
from .session.models import Message
from .tools.approval import ApprovalGate
from .tools.base import AgentContext
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry
from .tools.sandbox import PathSandbox


@dataclass
class AppContext:
    """Everything one agent session needs, wired once at startup."""

    cwd: Path
    gateway: ProviderGateway
    tools: ToolRegistry
    gate: ApprovalGate
    retry: RetryHandler
    compactor: ConversationCompactor
    behavior: BehaviorConfig
    events: EventStore
    agent: AgentContext
    # Session-wide bypass set by an "approve all" decision.
    approve_all: bool = False
    stream: bool = False

    @property
    def session_id(self) -> str:
        return self.events.session_id

    @property
    def sandbox(self) -> PathSandbox:
        return self.agent.sandbox

    @property
    def history(self) -> list[Message]:
        return self.agent.history

    def compaction_window(self) -> tuple[int, int]:
        """(max_tokens, reserved_for_response) for the current provider."""
        c = self.behavior.compaction
        window = self.gateway.config.context_window
        if window and not self.behavior.compaction_explicit and window > c.reserved_for_response:
            return window, c.reserved_for_response
        return c.max_tokens, c.reserved_for_response

    @staticmethod
    def build(
        cwd: Path,
        gateway: ProviderGateway,
        behavior: BehaviorConfig | None = None,
        *,
        events: EventStore | None = None,
        auto_approve: bool = False,
        stream: bool | None = None,
        retry: RetryHandler | None = None,
    ) -> "AppContext":
        behavior = behavior or BehaviorConfig()
        cwd = Path(cwd).resolve()
        tools = ToolRegistry()
        register_builtin_tools(tools)
        events = events or EventStore.in_memory(uuid.uuid4().hex[:12])
        return AppContext(
            cwd=cwd,
            gateway=gateway,
            tools=tools,
            gate=ApprovalGate(behavior.requires_approval),
            retry=retry or RetryHandler(behavior.retry),
            compactor=ConversationCompactor(),
            behavior=behavior,
            events=events,
            agent=AgentContext(cwd=cwd, sandbox=PathSandbox(cwd), session_id=events.session_id),
            approve_all=auto_approve,
            stream=behavior.stream if stream is None else stream,
        )

    @staticmethod
    def from_env(
        cwd: Path,
        provider: str | None,
        model: str | None = None,
        *,
        config_path: Optional[Path] = None,
        behavior_config: Optional[Path] = None,
        session_id: str | None = None,
        auto_approve: bool = False,
        stream: bool | None = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "AppContext":
        if config_path:
            config_path = config_path.expanduser().resolve()

        gateway = resolve_gateway(provider=provider, model=model, yaml_path=config_path, client=client)
        behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config)
        events = EventStore.open(session_id or uuid.uuid4().hex[:12])

        return AppContext.build(
            cwd,
            gateway,
            behavior,
            events=events,
            auto_approve=auto_approve,
            stream=stream,
        )
