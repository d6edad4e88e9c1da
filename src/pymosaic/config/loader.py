from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from ..llm.retry import RetryConfig
from .models import BehaviorConfig, CompactionConfig, ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "pymosaic"


def _candidate_paths(cwd: Path) -> list[Path]:
    # project-level (higher priority)
    return [
        cwd / ".pymosaic.json",
        cwd / "pymosaic.json",
    ]


def _global_candidate_paths() -> list[Path]:
    return [Path(user_config_dir(APP_NAME)) / "pymosaic.json"]


def _load_json(p: Path) -> dict[str, Any]:
    try:
        obj = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read behavior config {p}: {e}") from e
    if not isinstance(obj, dict):
        raise ConfigError(f"Behavior config {p} must contain a JSON object")
    return obj


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dicts(out[k], v)  # type: ignore
        else:
            out[k] = v
    return out


def _positive_int(merged: dict[str, Any], key: str, default: int) -> int:
    v = merged.get(key, default)
    if not isinstance(v, int) or isinstance(v, bool) or v <= 0:
        raise ConfigError(f"{key} must be a positive integer, got {v!r}")
    return v


def behavior_from_dict(merged: dict[str, Any]) -> BehaviorConfig:
    cfg = BehaviorConfig()
    cfg.max_steps = _positive_int(merged, "max_steps", cfg.max_steps)
    cfg.tool_timeout_ms = _positive_int(merged, "tool_timeout_ms", cfg.tool_timeout_ms)
    cfg.stream = bool(merged.get("stream", cfg.stream))

    retry = merged.get("retry")
    if retry is not None:
        if not isinstance(retry, dict):
            raise ConfigError("retry must be an object")
        try:
            cfg.retry = RetryConfig.from_dict(retry)
        except TypeError as e:
            raise ConfigError(f"invalid retry config: {e}") from e

    if "compaction" in merged:
        cfg.compaction = CompactionConfig.from_obj(merged["compaction"])
        cfg.compaction_explicit = True

    approval = merged.get("approval")
    if isinstance(approval, dict) and "requires_approval" in approval:
        names = approval["requires_approval"]
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ConfigError("approval.requires_approval must be a list of tool names")
        cfg.requires_approval = frozenset(names)

    sp = merged.get("system_prompt", "")
    if not isinstance(sp, str):
        raise ConfigError("system_prompt must be a string")
    cfg.system_prompt = sp
    return cfg


def load_behavior_config(*, cwd: Path, explicit_path: Path | None = None) -> BehaviorConfig:
    """Load behavior config.

    Merge order: global < project < explicit_path.
    """
    merged: dict[str, Any] = {}
    loaded_from: list[Path] = []

    for p in _global_candidate_paths():
        if p.is_file():
            merged = _merge_dicts(merged, _load_json(p))
            loaded_from.append(p)

    for p in _candidate_paths(cwd):
        if p.is_file():
            merged = _merge_dicts(merged, _load_json(p))
            loaded_from.append(p)
            break  # first match wins for project-level

    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if not p.is_file():
            raise ConfigError(f"Behavior config not found: {p}")
        merged = _merge_dicts(merged, _load_json(p))
        loaded_from.append(p)

    cfg = behavior_from_dict(merged)
    cfg.loaded_from = loaded_from
    logger.debug("behavior config loaded from %s", [str(p) for p in loaded_from] or "(defaults)")
    return cfg
