"""Provider registry (YAML) and behavior config (JSON) loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pymosaic.config import loader
from pymosaic.config.loader import load_behavior_config
from pymosaic.config.models import ConfigError
from pymosaic.llm.factory import is_reasoning_model, load_provider_registry, resolve_gateway

YAML = """
providers:
  main:
    type: openai
    model: gpt-4o
    api_key: ${PYMOSAIC_TEST_KEY}
    context_window: 64000
  local:
    type: ollama
    model: deepseek-r1:8b
  thinker:
    type: anthropic
    model: claude-x
    api_key: k
    reasoning: true
    max_tokens: 4096
"""


@pytest.fixture
def yaml_file(tmp_path: Path) -> Path:
    p = tmp_path / "pymosaic.yaml"
    p.write_text(YAML, encoding="utf-8")
    return p


@pytest.fixture(autouse=True)
def no_global_config(monkeypatch, tmp_path):
    monkeypatch.setattr(loader, "_global_candidate_paths", lambda: [tmp_path / "global" / "pymosaic.json"])


class TestProviderRegistry:
    def test_loads_and_expands_env(self, yaml_file, monkeypatch):
        monkeypatch.setenv("PYMOSAIC_TEST_KEY", "sk-123")
        reg = load_provider_registry(yaml_file)
        assert reg.names() == ["local", "main", "thinker"]
        main = reg.get("MAIN")
        assert main.api_key == "sk-123"
        assert main.context_window == 64000
        assert main.reasoning is False

    def test_reasoning_autodetect_and_explicit(self, yaml_file, monkeypatch):
        monkeypatch.setenv("PYMOSAIC_TEST_KEY", "x")
        reg = load_provider_registry(yaml_file)
        assert reg.get("local").reasoning is True
        assert reg.get("thinker").reasoning is True
        assert reg.get("thinker").max_tokens == 4096

    def test_missing_env_placeholder(self, yaml_file, monkeypatch):
        monkeypatch.delenv("PYMOSAIC_TEST_KEY", raising=False)
        with pytest.raises(ConfigError, match="PYMOSAIC_TEST_KEY"):
            load_provider_registry(yaml_file)

    def test_unknown_provider_lists_known(self, yaml_file, monkeypatch):
        monkeypatch.setenv("PYMOSAIC_TEST_KEY", "x")
        with pytest.raises(ConfigError, match="Known providers: local, main, thinker"):
            load_provider_registry(yaml_file).get("nope")

    @pytest.mark.parametrize(
        "body, message",
        [
            ("providers: {}", "non-empty 'providers:'"),
            ("providers:\n  a:\n    type: openai\n", "missing required field"),
            ("providers:\n  a:\n    type: gemini\n    model: g\n", "is not one of"),
            ("providers:\n  a:\n    type: custom\n    model: m\n", "requires base_url"),
            ("providers:\n  a:\n    type: openai\n    model: m\n    max_tokens: -1\n", "positive integer"),
            ("providers: [", "Invalid YAML"),
        ],
    )
    def test_invalid(self, tmp_path, body, message):
        p = tmp_path / "bad.yaml"
        p.write_text(body, encoding="utf-8")
        with pytest.raises(ConfigError, match=message):
            load_provider_registry(p)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_provider_registry(tmp_path / "absent.yaml")

    def test_resolve_gateway_with_model_override(self, yaml_file, monkeypatch):
        monkeypatch.setenv("PYMOSAIC_TEST_KEY", "x")
        gw = resolve_gateway("main", model="o3-mini", yaml_path=yaml_file)
        assert gw.config.model == "o3-mini"
        assert gw.config.reasoning is True
        assert gw.label == "OpenAI"


@pytest.mark.parametrize(
    "model, expected",
    [("o1-preview", True), ("deepseek-reasoner", True), ("qwen-thinking", True), ("gpt-4o", False), ("llama3", False)],
)
def test_is_reasoning_model(model, expected):
    assert is_reasoning_model(model) is expected


class TestBehaviorConfig:
    def test_defaults(self, workspace):
        cfg = load_behavior_config(cwd=workspace)
        assert cfg.max_steps == 25
        assert cfg.retry.max_retries == 3
        assert cfg.compaction.max_tokens == 128000
        assert cfg.compaction_explicit is False
        assert "write_file" in cfg.requires_approval
        assert cfg.loaded_from == []

    def test_merge_order(self, workspace, tmp_path, monkeypatch):
        global_file = tmp_path / "global.json"
        global_file.write_text(json.dumps({"max_steps": 5, "retry": {"max_retries": 1, "initial_delay_ms": 50}}))
        monkeypatch.setattr(loader, "_global_candidate_paths", lambda: [global_file])
        (workspace / ".pymosaic.json").write_text(json.dumps({"retry": {"max_retries": 7}, "stream": True}))
        explicit = tmp_path / "explicit.json"
        explicit.write_text(json.dumps({"max_steps": 9, "system_prompt": "Be terse."}))

        cfg = load_behavior_config(cwd=workspace, explicit_path=explicit)
        assert cfg.max_steps == 9
        assert cfg.retry.max_retries == 7
        assert cfg.retry.initial_delay_ms == 50
        assert cfg.stream is True
        assert cfg.system_prompt == "Be terse."
        assert cfg.loaded_from == [global_file, workspace / ".pymosaic.json", explicit.resolve()]

    def test_first_project_file_wins(self, workspace):
        (workspace / ".pymosaic.json").write_text(json.dumps({"max_steps": 3}))
        (workspace / "pymosaic.json").write_text(json.dumps({"max_steps": 4}))
        assert load_behavior_config(cwd=workspace).max_steps == 3

    def test_compaction_and_approval(self, workspace):
        (workspace / "pymosaic.json").write_text(json.dumps({
            "compaction": {"max_tokens": 8000, "reserved_for_response": 1000},
            "approval": {"requires_approval": ["execute_shell"]},
        }))
        cfg = load_behavior_config(cwd=workspace)
        assert cfg.compaction.max_tokens == 8000
        assert cfg.compaction_explicit is True
        assert cfg.requires_approval == frozenset({"execute_shell"})

    @pytest.mark.parametrize(
        "data",
        [
            {"max_steps": 0},
            {"max_steps": "ten"},
            {"retry": "fast"},
            {"compaction": {"max_tokens": 100, "reserved_for_response": 200}},
            {"approval": {"requires_approval": "all"}},
            {"system_prompt": 3},
        ],
    )
    def test_invalid_values(self, workspace, data):
        (workspace / "pymosaic.json").write_text(json.dumps(data))
        with pytest.raises(ConfigError):
            load_behavior_config(cwd=workspace)

    def test_unreadable_json(self, workspace):
        (workspace / "pymosaic.json").write_text("{not json")
        with pytest.raises(ConfigError, match="Cannot read behavior config"):
            load_behavior_config(cwd=workspace)

    def test_explicit_missing(self, workspace, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_behavior_config(cwd=workspace, explicit_path=tmp_path / "nope.json")

    def test_unknown_retry_keys_are_ignored(self, workspace):
        (workspace / "pymosaic.json").write_text(json.dumps({"retry": {"bogus": 1, "max_retries": 2}}))
        assert load_behavior_config(cwd=workspace).retry.max_retries == 2
