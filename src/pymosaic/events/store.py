from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Literal, Optional

from platformdirs import user_data_dir

logger = logging.getLogger(__name__)

APP_NAME = "pymosaic"

ExecutionStatus = Literal["running", "completed", "error"]


def _events_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "events"
    d.mkdir(parents=True, exist_ok=True)
    return d


@dataclass
class Event:
    ts: float
    type: str
    data: dict[str, Any]


@dataclass
class ToolExecution:
    """Status line the terminal shows for one tool call."""

    name: str
    display_name: str
    status: ExecutionStatus
    summary: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], None]


@dataclass
class EventStore:
    """Append-only jsonl event log per session, with in-process listeners.

    `path=None` keeps events in memory only (tests, dry runs). Reading is
    tolerant of partial corruption.
    """

    session_id: str
    path: Optional[Path] = None
    _listeners: list[Listener] = field(default_factory=list, repr=False)
    _memory: list[Event] = field(default_factory=list, repr=False)

    @staticmethod
    def open(session_id: str) -> "EventStore":
        path = _events_dir() / f"{session_id}.jsonl"
        return EventStore(session_id=session_id, path=path)

    @staticmethod
    def in_memory(session_id: str = "memory") -> "EventStore":
        return EventStore(session_id=session_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def append(self, event_type: str, data: dict[str, Any]) -> Event:
        ev = Event(ts=time.time(), type=event_type, data=data)
        if self.path is None:
            self._memory.append(ev)
        else:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(ev), ensure_ascii=False, default=str) + "\n")
        for listener in list(self._listeners):
            try:
                listener(ev)
            except Exception:
                logger.exception("event listener failed for %s", event_type)
        return ev

    def publish_tool_execution(self, execution: ToolExecution) -> Event:
        return self.append("tool.execution", asdict(execution))

    def iter_events(self) -> Iterable[Event]:
        if self.path is None:
            return list(self._memory)
        if not self.path.exists():
            return []
        out: list[Event] = []
        for line in self.path.read_text(encoding="utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
                out.append(Event(ts=float(obj.get("ts", 0.0)), type=str(obj.get("type")), data=obj.get("data") or {}))
            except (ValueError, TypeError, AttributeError):
                continue
        return out
