from __future__ import annotations

import logging
import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Dict, Optional

import httpx
import yaml

from ..config.models import ConfigError
from .base import BackendType, ProviderConfig
from .gateway import ProviderGateway

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "pymosaic.yaml"

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")

REASONING_KEYWORDS = ("o1", "o3", "o4", "thinking", "reasoning", "r1", "deepseek-reasoner")


def is_reasoning_model(model: str) -> bool:
    m = (model or "").lower()
    return any(k in m for k in REASONING_KEYWORDS)


class ProviderRegistry:
    def __init__(self) -> None:
        self._items: Dict[str, ProviderConfig] = {}

    def add(self, cfg: ProviderConfig) -> None:
        key = cfg.name.strip().lower()
        if not key:
            raise ConfigError("Provider name cannot be empty.")
        self._items[key] = cfg

    def get(self, name: str) -> ProviderConfig:
        key = (name or "").strip().lower()
        if not key:
            raise ConfigError("Missing --provider.")
        if key not in self._items:
            known = ", ".join(sorted(self._items.keys())) or "(none)"
            raise ConfigError(f"Unknown provider '{name}'. Known providers: {known}")
        return self._items[key]

    def names(self) -> list[str]:
        return sorted(self._items.keys())

    def items(self) -> list[ProviderConfig]:
        return [self._items[k] for k in self.names()]


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if not val:
            raise ConfigError(f"Placeholder '${{{var}}}' not found in environment or is empty.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def _optional_int(name: str, key: str, v: object) -> Optional[int]:
    if v is None:
        return None
    if not isinstance(v, int) or isinstance(v, bool) or v <= 0:
        raise ConfigError(f"providers.{name}.{key} must be a positive integer")
    return v


def provider_from_obj(name: str, cfg: object) -> ProviderConfig:
    if not isinstance(cfg, dict):
        raise ConfigError(f"providers.{name} must be a mapping/dict.")

    type_name = str(cfg.get("type") or "").strip().lower()
    model = str(cfg.get("model") or "").strip()
    missing = [k for k, v in {"type": type_name, "model": model}.items() if not v]
    if missing:
        raise ConfigError(f"providers.{name} missing required field(s): {', '.join(missing)}")
    if type_name not in {b.value for b in BackendType}:
        known = ", ".join(b.value for b in BackendType)
        raise ConfigError(f"providers.{name}.type '{type_name}' is not one of: {known}")

    api_key = cfg.get("api_key")
    api_key = _expand_env_placeholders(str(api_key).strip()) if api_key else None
    base_url = cfg.get("base_url")
    base_url = _expand_env_placeholders(str(base_url).strip()) if base_url else None
    if type_name == BackendType.CUSTOM.value and not base_url:
        raise ConfigError(f"providers.{name}: type 'custom' requires base_url")

    reasoning = cfg.get("reasoning")
    if reasoning is None:
        reasoning = is_reasoning_model(model)

    return ProviderConfig(
        name=str(name),
        type=type_name,
        model=model,
        api_key=api_key or None,
        base_url=base_url or None,
        reasoning=bool(reasoning),
        max_tokens=_optional_int(name, "max_tokens", cfg.get("max_tokens")),
        context_window=_optional_int(name, "context_window", cfg.get("context_window")),
    )


def load_provider_registry(yaml_path: str | Path) -> ProviderRegistry:
    p = Path(yaml_path).expanduser().resolve()
    if not p.exists():
        raise ConfigError(f"Config YAML not found: {p}")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    providers = data.get("providers") if isinstance(data, dict) else None
    if not isinstance(providers, dict) or not providers:
        raise ConfigError("YAML must contain a non-empty 'providers:' mapping.")

    reg = ProviderRegistry()
    for name, cfg in providers.items():
        reg.add(provider_from_obj(str(name), cfg))
    return reg


def resolve_gateway(
    provider: Optional[str],
    model: Optional[str] = None,
    yaml_path: Optional[Path] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ProviderGateway:
    """Build a gateway for a named provider, with an optional model override."""
    yaml_path = (yaml_path or Path(DEFAULT_CONFIG_FILE)).expanduser().resolve()
    logger.debug("provider config: %s", yaml_path)
    cfg = load_provider_registry(yaml_path).get(provider or "")
    if model:
        cfg = replace(cfg, model=model, reasoning=is_reasoning_model(model) or cfg.reasoning)
    return ProviderGateway(cfg, client)
